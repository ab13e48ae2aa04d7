"""
Onboarding configuration schema.

Frozen dataclasses that the loader parses YAML into. ``OnboardingConfig``
is the runtime artifact returned by ``get_active_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///onboarding.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10


@dataclass(frozen=True)
class RateLimitConfig:
    """At most ``max_requests`` calls per ``window_seconds``."""

    max_requests: int
    window_seconds: float


@dataclass(frozen=True)
class RegistryConfig:
    """One external registry and the cache in front of it."""

    name: str
    base_url: str
    timeout_seconds: float
    cache_ttl_seconds: float
    max_batch_size: int
    max_cache_entries: int
    max_workers: int
    rate_limit: RateLimitConfig
    headers: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class RegistriesConfig:
    company: RegistryConfig
    tax: RegistryConfig


@dataclass(frozen=True)
class TokenConfig:
    ttl_hours: float = 24


@dataclass(frozen=True)
class ApprovalConfig:
    max_bulk_items: int = 50
    auto_activate: bool = True
    max_page_size: int = 100
    default_page_size: int = 10


@dataclass(frozen=True)
class CacheSweepConfig:
    enabled: bool = True
    interval_seconds: float = 300


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class OnboardingConfig:
    """Validated runtime configuration."""

    registries: RegistriesConfig
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    tokens: TokenConfig = field(default_factory=TokenConfig)
    approvals: ApprovalConfig = field(default_factory=ApprovalConfig)
    cache_sweep: CacheSweepConfig = field(default_factory=CacheSweepConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
