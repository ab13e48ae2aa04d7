"""
Validation result value objects (``onboarding_kernel.domain.validation``).

Responsibility
--------------
Immutable results produced by ValidationCache, the normalised registry
payload returned by registry adapters, and the cache statistics snapshot.

Invariants enforced
-------------------
* ``source == FALLBACK`` implies ``error`` is set and
  ``status == UNKNOWN`` (checked in ``__post_init__``).
* A registry answering "not registered" is a REGISTRY result with
  ``is_valid=False`` and a known status; it is never a FALLBACK.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any


class RegistryStatus(str, Enum):
    """Registration status of an identifier."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    UNKNOWN = "UNKNOWN"


class ResultSource(str, Enum):
    """Where a validation result came from."""

    REGISTRY = "REGISTRY"
    CACHE = "CACHE"
    FALLBACK = "FALLBACK"


@dataclass(frozen=True, slots=True)
class Address:
    street: str | None = None
    house_number: str | None = None
    postal_code: str | None = None
    city: str | None = None
    country: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "street": self.street,
            "house_number": self.house_number,
            "postal_code": self.postal_code,
            "city": self.city,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Address | None:
        if not data:
            return None
        return cls(**{k: data.get(k) for k in (
            "street", "house_number", "postal_code", "city", "country",
        )})


@dataclass(frozen=True, slots=True)
class RegistryRecord:
    """Normalised answer from a registry adapter."""

    identifier: str
    name: str
    status: RegistryStatus
    trade_name: str | None = None
    legal_form: str | None = None
    address: Address | None = None


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one identifier. Never mutated after creation."""

    identifier: str
    is_valid: bool
    status: RegistryStatus
    source: ResultSource
    validated_at: datetime
    normalized_name: str | None = None
    address: Address | None = None
    error: str | None = None
    warnings: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.source is ResultSource.FALLBACK:
            if not self.error:
                raise ValueError("FALLBACK result requires an error")
            if self.status is not RegistryStatus.UNKNOWN:
                raise ValueError("FALLBACK result must have status UNKNOWN")
            if self.is_valid:
                raise ValueError("FALLBACK result cannot be valid")

    @property
    def is_fallback(self) -> bool:
        return self.source is ResultSource.FALLBACK

    def served_from_cache(self) -> ValidationResult:
        """Copy of this result marked as served from the cache."""
        return replace(self, source=ResultSource.CACHE)

    def to_dict(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "is_valid": self.is_valid,
            "status": self.status.value,
            "source": self.source.value,
            "validated_at": self.validated_at.isoformat(),
            "normalized_name": self.normalized_name,
            "address": self.address.to_dict() if self.address else None,
            "error": self.error,
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValidationResult:
        return cls(
            identifier=data["identifier"],
            is_valid=data["is_valid"],
            status=RegistryStatus(data["status"]),
            source=ResultSource(data["source"]),
            validated_at=datetime.fromisoformat(data["validated_at"]),
            normalized_name=data.get("normalized_name"),
            address=Address.from_dict(data.get("address")),
            error=data.get("error"),
            warnings=tuple(data.get("warnings", ())),
        )


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A cached result. Expiry is computed from ``inserted_at`` and ``ttl_seconds``."""

    result: ValidationResult
    inserted_at: datetime
    ttl_seconds: float

    def is_expired(self, now: datetime) -> bool:
        return (now - self.inserted_at).total_seconds() > self.ttl_seconds


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Point-in-time snapshot of ValidationCache counters."""

    registry: str
    total: int
    hits: int
    misses: int
    registry_calls: int
    errors: int
    last_request_at: datetime | None
    size: int

    @property
    def hit_rate(self) -> float:
        return self.hits / self.total if self.total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "registry": self.registry,
            "total": self.total,
            "hits": self.hits,
            "misses": self.misses,
            "registry_calls": self.registry_calls,
            "errors": self.errors,
            "last_request_at": (
                self.last_request_at.isoformat() if self.last_request_at else None
            ),
            "size": self.size,
            "hit_rate": round(self.hit_rate, 4),
        }


@dataclass(frozen=True, slots=True)
class LastValidation:
    """Most recent company and tax results attached to a workflow."""

    company: ValidationResult | None = None
    tax: ValidationResult | None = None

    @property
    def requires_manual_review(self) -> bool:
        return any(r is not None and r.is_fallback for r in (self.company, self.tax))

    def to_dict(self) -> dict[str, Any]:
        return {
            "company": self.company.to_dict() if self.company else None,
            "tax": self.tax.to_dict() if self.tax else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> LastValidation:
        data = data or {}
        return cls(
            company=ValidationResult.from_dict(data["company"]) if data.get("company") else None,
            tax=ValidationResult.from_dict(data["tax"]) if data.get("tax") else None,
        )


def validation_errors(results: dict[str, ValidationResult]) -> list[str]:
    """Messages for results the registry explicitly rejected.

    FALLBACK results are not errors: the submission proceeds and is
    flagged for manual review (see ``fallback_warnings``).
    """
    return [
        f"{kind}: {result.error or 'identifier is not valid'}"
        for kind, result in results.items()
        if not result.is_valid and not result.is_fallback
    ]


def fallback_warnings(results: dict[str, ValidationResult]) -> list[str]:
    return [
        f"{kind}: registry unavailable, manual review required ({result.error})"
        for kind, result in results.items()
        if result.is_fallback
    ]
