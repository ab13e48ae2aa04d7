"""
ValidationCache -- caching proxy in front of one RegistryClient.

Responsibility:
    Normalises identifiers, serves results from a time-bounded cache,
    calls the registry on a miss, and turns registry outages into FALLBACK
    results. Tracks hit/miss/call/error counters for ``stats()``.

Invariants enforced:
    - Malformed input raises IdentifierFormatError before the cache or
      registry is touched. Format errors are not counted anywhere.
    - A hit within TTL never reaches the registry.
    - FALLBACK results (registry unreachable) are never cached; a
      registry "not registered" answer is a REGISTRY result and is cached.
    - Entry expiry is computed from ``inserted_at`` and ``ttl`` on every
      read; expired entries are evicted lazily or by ``sweep()``.
    - Per-key locking: concurrent misses for one identifier coalesce into
      one registry call, unrelated identifiers never wait on each other.
      The shared lock only guards dict bookkeeping, never a registry call.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator

from onboarding_kernel.domain.clock import Clock
from onboarding_kernel.domain.identifiers import RegistryIdentifier, normalize_identifier
from onboarding_kernel.domain.validation import (
    CacheEntry,
    CacheStats,
    RegistryStatus,
    ResultSource,
    ValidationResult,
)
from onboarding_kernel.exceptions import (
    BatchSizeExceededError,
    IdentifierNotRegisteredError,
    InvalidArgumentError,
    RegistryUnavailableError,
)
from onboarding_kernel.logging_config import get_logger
from onboarding_registry.client import RegistryClient

logger = get_logger("registry.cache")

FALLBACK_WARNING = "registry unavailable: result is unknown, not invalid"


class ValidationCache:
    """TTL cache and fallback policy for one registry."""

    def __init__(
        self,
        client: RegistryClient,
        clock: Clock,
        ttl_seconds: float,
        max_batch_size: int,
        max_entries: int = 1000,
        max_workers: int = 4,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_batch_size < 1 or max_entries < 1 or max_workers < 1:
            raise ValueError("max_batch_size, max_entries and max_workers must be >= 1")

        self.client = client
        self.kind = client.kind
        self.name = client.name
        self.ttl_seconds = ttl_seconds
        self.max_batch_size = max_batch_size
        self.max_entries = max_entries
        self.max_workers = max_workers
        self._clock = clock

        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._entries_lock = threading.Lock()
        self._key_locks: dict[str, list] = {}
        self._key_locks_guard = threading.Lock()

        self._stats_lock = threading.Lock()
        self._total = 0
        self._hits = 0
        self._misses = 0
        self._registry_calls = 0
        self._errors = 0
        self._last_request_at: datetime | None = None

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    def lookup(self, identifier: str) -> ValidationResult:
        """
        Validate one identifier.

        Raises:
            IdentifierFormatError: Malformed input. No registry call is made.
        """
        normalized = normalize_identifier(self.kind, identifier)
        return self._lookup_normalized(normalized)

    def lookup_many(self, identifiers: Iterable[str]) -> dict[str, ValidationResult]:
        """
        Validate a set of identifiers independently.

        The whole request is checked (batch cap, every format) before any
        registry call. Each identifier then resolves on its own to a
        REGISTRY, CACHE or FALLBACK result.

        Returns:
            A mapping covering every requested identifier, keyed by the
            string as given.

        Raises:
            BatchSizeExceededError: More distinct identifiers than
                ``max_batch_size``.
            IdentifierFormatError: Any identifier is malformed.
            InvalidArgumentError: ``identifiers`` is a single string.
        """
        if isinstance(identifiers, (str, bytes)):
            raise InvalidArgumentError(
                "identifiers", "expected a collection of identifiers, not a single string",
            )
        requested = list(dict.fromkeys(identifiers))
        if len(requested) > self.max_batch_size:
            raise BatchSizeExceededError(
                len(requested),
                self.max_batch_size,
                tuple(requested[self.max_batch_size:]),
            )
        if not requested:
            return {}

        normalized = {raw: normalize_identifier(self.kind, raw) for raw in requested}
        unique = list(dict.fromkeys(normalized.values()))

        workers = min(self.max_workers, len(unique))
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix=f"{self.name}-lookup",
        ) as pool:
            resolved = dict(zip(unique, pool.map(self._lookup_normalized, unique)))

        return {raw: resolved[ident] for raw, ident in normalized.items()}

    def stats(self) -> CacheStats:
        with self._stats_lock:
            total, hits, misses = self._total, self._hits, self._misses
            calls, errors, last = self._registry_calls, self._errors, self._last_request_at
        return CacheStats(
            registry=self.name,
            total=total,
            hits=hits,
            misses=misses,
            registry_calls=calls,
            errors=errors,
            last_request_at=last,
            size=self.size,
        )

    @property
    def size(self) -> int:
        with self._entries_lock:
            return len(self._entries)

    def sweep(self) -> int:
        """Evict every expired entry. Returns the number removed."""
        now = self._clock.now()
        with self._entries_lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(
                "cache_swept", extra={"registry": self.name, "evicted": len(expired)}
            )
        return len(expired)

    def clear(self) -> int:
        with self._entries_lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("cache_cleared", extra={"registry": self.name, "evicted": count})
        return count

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    @contextmanager
    def _key_lock(self, key: str) -> Iterator[None]:
        with self._key_locks_guard:
            slot = self._key_locks.get(key)
            if slot is None:
                slot = self._key_locks[key] = [threading.Lock(), 0]
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._key_locks_guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._key_locks[key]

    def _lookup_normalized(self, identifier: RegistryIdentifier) -> ValidationResult:
        key = identifier.value
        with self._stats_lock:
            self._total += 1
            self._last_request_at = self._clock.now()

        with self._key_lock(key):
            now = self._clock.now()
            with self._entries_lock:
                entry = self._entries.get(key)
                if entry is not None and entry.is_expired(now):
                    del self._entries[key]
                    entry = None

            if entry is not None:
                with self._stats_lock:
                    self._hits += 1
                logger.debug("cache_hit", extra={"registry": self.name, "identifier": key})
                return entry.result.served_from_cache()

            with self._stats_lock:
                self._misses += 1
                self._registry_calls += 1
            return self._fetch_and_store(identifier)

    def _fetch_and_store(self, identifier: RegistryIdentifier) -> ValidationResult:
        key = identifier.value
        try:
            record = self.client.fetch(identifier)
        except IdentifierNotRegisteredError as exc:
            result = ValidationResult(
                identifier=key,
                is_valid=False,
                status=RegistryStatus.INACTIVE,
                source=ResultSource.REGISTRY,
                validated_at=self._clock.now(),
                error=exc.reason,
            )
        except RegistryUnavailableError as exc:
            with self._stats_lock:
                self._errors += 1
            logger.warning(
                "registry_call_failed",
                extra={
                    "registry": self.name,
                    "identifier": key,
                    "error_code": exc.code,
                    "reason": exc.reason,
                },
            )
            return ValidationResult(
                identifier=key,
                is_valid=False,
                status=RegistryStatus.UNKNOWN,
                source=ResultSource.FALLBACK,
                validated_at=self._clock.now(),
                error=f"{exc.code}: {exc.reason}",
                warnings=(FALLBACK_WARNING,),
            )
        else:
            is_active = record.status is RegistryStatus.ACTIVE
            result = ValidationResult(
                identifier=key,
                is_valid=is_active,
                status=record.status,
                source=ResultSource.REGISTRY,
                validated_at=self._clock.now(),
                normalized_name=record.name,
                address=record.address,
                error=None if is_active else f"registered but {record.status.value.lower()}",
            )

        self._store(key, result)
        logger.info(
            "registry_lookup_completed",
            extra={
                "registry": self.name,
                "identifier": key,
                "is_valid": result.is_valid,
                "status": result.status.value,
            },
        )
        return result

    def _store(self, key: str, result: ValidationResult) -> None:
        entry = CacheEntry(result=result, inserted_at=self._clock.now(), ttl_seconds=self.ttl_seconds)
        with self._entries_lock:
            if key in self._entries:
                del self._entries[key]
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(
                    "cache_evicted", extra={"registry": self.name, "identifier": evicted}
                )
            self._entries[key] = entry
