"""
Registry adapters.

Responsibility:
    Thin adapters over the external authoritative registries (company
    register, VAT register). Each call returns a normalised
    ``RegistryRecord`` or raises a typed ``RegistryError``; nothing here
    caches, retries or decides fallback behaviour. That is ValidationCache's
    job.

Invariants enforced:
    - Every call carries a hard timeout (httpx).
    - The registry's rate limit is respected locally: a call over the
      limit raises RateLimitedError immediately instead of waiting.
    - Registry status strings map through an exhaustive table. An
      unrecognised value raises RegistryPayloadError rather than passing
      through as UNKNOWN.

Failure modes:
    - RegistryTimeoutError, RateLimitedError, RegistryPayloadError,
      RegistryUnavailableError (connection errors, non-2xx),
      IdentifierNotRegisteredError (HTTP 404).
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Mapping

import httpx

from onboarding_kernel.domain.clock import Clock
from onboarding_kernel.domain.identifiers import IdentifierKind, RegistryIdentifier
from onboarding_kernel.domain.validation import Address, RegistryRecord, RegistryStatus
from onboarding_kernel.exceptions import (
    IdentifierNotRegisteredError,
    RateLimitedError,
    RegistryPayloadError,
    RegistryTimeoutError,
    RegistryUnavailableError,
)
from onboarding_kernel.logging_config import get_logger

logger = get_logger("registry.client")

COMPANY_STATUS_MAP: Mapping[str, RegistryStatus] = {
    "active": RegistryStatus.ACTIVE,
    "actief": RegistryStatus.ACTIVE,
    "inactive": RegistryStatus.INACTIVE,
    "inactief": RegistryStatus.INACTIVE,
    "dissolved": RegistryStatus.INACTIVE,
    "opgeheven": RegistryStatus.INACTIVE,
    "uitgeschreven": RegistryStatus.INACTIVE,
    "bankrupt": RegistryStatus.INACTIVE,
}

TAX_STATUS_MAP: Mapping[str, RegistryStatus] = {
    "valid": RegistryStatus.ACTIVE,
    "active": RegistryStatus.ACTIVE,
    "invalid": RegistryStatus.INACTIVE,
    "inactive": RegistryStatus.INACTIVE,
    "deregistered": RegistryStatus.INACTIVE,
}


class RateLimiter:
    """Fixed-window request limiter driven by the injected clock."""

    def __init__(self, max_requests: int, window_seconds: float, clock: Clock):
        if max_requests < 1 or window_seconds <= 0:
            raise ValueError("rate limit requires max_requests >= 1 and window_seconds > 0")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._window_start: datetime | None = None
        self._count = 0

    def try_acquire(self) -> bool:
        now = self._clock.now()
        with self._lock:
            if (
                self._window_start is None
                or (now - self._window_start).total_seconds() >= self.window_seconds
            ):
                self._window_start = now
                self._count = 0
            if self._count >= self.max_requests:
                return False
            self._count += 1
            return True


class RegistryClient(ABC):
    """One external registry."""

    name: str
    kind: IdentifierKind

    @abstractmethod
    def fetch(self, identifier: RegistryIdentifier) -> RegistryRecord:
        """Look up a normalised identifier.

        Raises:
            RegistryUnavailableError: The registry gave no authoritative
                answer (timeout, rate limit, bad payload, non-2xx).
            IdentifierNotRegisteredError: The registry says it does not know
                the identifier.
        """

    def close(self) -> None:
        """Release network resources."""


class HttpRegistryClient(RegistryClient):
    """
    JSON-over-HTTP registry adapter.

    ``GET {base_url}/{identifier}`` is expected to answer with an object
    holding at least ``name`` and ``status``; ``trade_name``,
    ``legal_form`` and ``address`` are optional.
    """

    def __init__(
        self,
        name: str,
        kind: IdentifierKind,
        base_url: str,
        status_map: Mapping[str, RegistryStatus],
        timeout_seconds: float = 5.0,
        rate_limiter: RateLimiter | None = None,
        headers: Mapping[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.name = name
        self.kind = kind
        self.timeout_seconds = timeout_seconds
        self._status_map = {k.lower(): v for k, v in status_map.items()}
        self._rate_limiter = rate_limiter
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds),
            headers=dict(headers or {}),
            transport=transport,
        )

    def fetch(self, identifier: RegistryIdentifier) -> RegistryRecord:
        value = identifier.value
        if self._rate_limiter is not None and not self._rate_limiter.try_acquire():
            raise RateLimitedError(
                self.name,
                value,
                f"local limit of {self._rate_limiter.max_requests} requests per "
                f"{self._rate_limiter.window_seconds:g}s reached",
            )

        try:
            response = self._http.get(f"/{value}")
        except httpx.TimeoutException as exc:
            raise RegistryTimeoutError(
                self.name, value, f"no answer within {self.timeout_seconds:g}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise RegistryUnavailableError(
                self.name, value, f"{type(exc).__name__}: {exc}"
            ) from exc

        if response.status_code == 404:
            raise IdentifierNotRegisteredError(self.name, value, "not found in registry")
        if response.status_code == 429:
            raise RateLimitedError(self.name, value, "registry reported HTTP 429")
        if not response.is_success:
            raise RegistryUnavailableError(
                self.name, value, f"registry answered HTTP {response.status_code}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise RegistryPayloadError(self.name, value, "response is not JSON") from exc

        return self._parse(value, payload)

    def _parse(self, value: str, payload: Any) -> RegistryRecord:
        if not isinstance(payload, dict):
            raise RegistryPayloadError(self.name, value, "response is not a JSON object")

        name = payload.get("name")
        if not isinstance(name, str) or not name.strip():
            raise RegistryPayloadError(self.name, value, "response has no name")

        raw_status = payload.get("status")
        if not isinstance(raw_status, str):
            raise RegistryPayloadError(self.name, value, "response has no status")
        status = self._status_map.get(raw_status.strip().lower())
        if status is None:
            logger.error(
                "registry_status_unrecognised",
                extra={"registry": self.name, "identifier": value, "raw_status": raw_status},
            )
            raise RegistryPayloadError(
                self.name, value, f"unrecognised registry status {raw_status!r}"
            )

        address = payload.get("address")
        return RegistryRecord(
            identifier=value,
            name=name.strip(),
            status=status,
            trade_name=payload.get("trade_name"),
            legal_form=payload.get("legal_form"),
            address=Address.from_dict(address) if isinstance(address, dict) else None,
        )

    def close(self) -> None:
        self._http.close()


class CompanyRegistryClient(HttpRegistryClient):
    """Company register (chamber of commerce) adapter."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        rate_limiter: RateLimiter | None = None,
        headers: Mapping[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
        name: str = "company_registry",
    ):
        super().__init__(
            name=name,
            kind=IdentifierKind.COMPANY,
            base_url=base_url,
            status_map=COMPANY_STATUS_MAP,
            timeout_seconds=timeout_seconds,
            rate_limiter=rate_limiter,
            headers=headers,
            transport=transport,
        )

    def fetch_company_info(self, identifier: RegistryIdentifier) -> RegistryRecord:
        return self.fetch(identifier)


class TaxRegistryClient(HttpRegistryClient):
    """VAT register adapter."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        rate_limiter: RateLimiter | None = None,
        headers: Mapping[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
        name: str = "tax_registry",
    ):
        super().__init__(
            name=name,
            kind=IdentifierKind.TAX,
            base_url=base_url,
            status_map=TAX_STATUS_MAP,
            timeout_seconds=timeout_seconds,
            rate_limiter=rate_limiter,
            headers=headers,
            transport=transport,
        )

    def fetch_tax_info(self, identifier: RegistryIdentifier) -> RegistryRecord:
        return self.fetch(identifier)

