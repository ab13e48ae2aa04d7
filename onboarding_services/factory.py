"""
Wiring from ``OnboardingConfig`` to a ready ``OnboardingPipeline``.

The kernel never reads configuration itself; this module is the only
place where config values become constructor arguments.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Callable

from sqlalchemy.orm import Session

from onboarding_config.schema import OnboardingConfig, RegistryConfig
from onboarding_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from onboarding_kernel.domain.clock import Clock, SystemClock
from onboarding_kernel.logging_config import configure_logging, get_logger
from onboarding_registry.cache import ValidationCache
from onboarding_registry.client import (
    CompanyRegistryClient,
    RateLimiter,
    RegistryClient,
    TaxRegistryClient,
)
from onboarding_registry.sweeper import CacheSweeper
from onboarding_services.audit import AuditSink, SessionAuditSink
from onboarding_services.notifications import LoggingNotifier, Notifier
from onboarding_services.pipeline import OnboardingPipeline

logger = get_logger("services.factory")


def _http_client_kwargs(registry: RegistryConfig, clock: Clock) -> dict:
    return {
        "base_url": registry.base_url,
        "timeout_seconds": registry.timeout_seconds,
        "rate_limiter": RateLimiter(
            registry.rate_limit.max_requests,
            registry.rate_limit.window_seconds,
            clock,
        ),
        "headers": dict(registry.headers),
        "name": registry.name,
    }


def build_cache(
    registry: RegistryConfig, client: RegistryClient, clock: Clock,
) -> ValidationCache:
    return ValidationCache(
        client,
        clock,
        ttl_seconds=registry.cache_ttl_seconds,
        max_batch_size=registry.max_batch_size,
        max_entries=registry.max_cache_entries,
        max_workers=registry.max_workers,
    )


def build_pipeline(
    config: OnboardingConfig,
    clock: Clock | None = None,
    session_factory: Callable[[], Session] | None = None,
    company_client: RegistryClient | None = None,
    tax_client: RegistryClient | None = None,
    notifier: Notifier | None = None,
    audit_sink: AuditSink | None = None,
    start_sweeper: bool = False,
) -> OnboardingPipeline:
    """
    Assemble a pipeline from configuration.

    Anything passed explicitly (clock, session factory, registry
    clients, notifier, audit sink) replaces what the config would build.
    Without a ``session_factory`` the engine is initialised from
    ``config.database`` and the tables are created.
    """
    configure_logging(level=config.logging.level)
    clock = clock or SystemClock()

    if session_factory is None:
        init_engine_from_url(
            config.database.url,
            echo=config.database.echo,
            pool_size=config.database.pool_size,
            max_overflow=config.database.max_overflow,
        )
        create_tables()
        session_factory = get_session_factory()

    registries = config.registries
    company_client = company_client or CompanyRegistryClient(
        **_http_client_kwargs(registries.company, clock)
    )
    tax_client = tax_client or TaxRegistryClient(
        **_http_client_kwargs(registries.tax, clock)
    )
    company_cache = build_cache(registries.company, company_client, clock)
    tax_cache = build_cache(registries.tax, tax_client, clock)

    sweeper = None
    if config.cache_sweep.enabled:
        sweeper = CacheSweeper(
            [company_cache, tax_cache],
            interval_seconds=config.cache_sweep.interval_seconds,
        )
        if start_sweeper:
            sweeper.start()

    pipeline = OnboardingPipeline(
        session_factory,
        company_cache,
        tax_cache,
        clock=clock,
        notifier=notifier or LoggingNotifier(),
        audit_sink=audit_sink or SessionAuditSink(session_factory, clock),
        token_ttl=timedelta(hours=config.tokens.ttl_hours),
        auto_activate=config.approvals.auto_activate,
        max_bulk_items=config.approvals.max_bulk_items,
        max_page_size=config.approvals.max_page_size,
        default_page_size=config.approvals.default_page_size,
        sweeper=sweeper,
    )
    logger.info(
        "pipeline_built",
        extra={
            "config_checksum": config.checksum,
            "company_registry": company_client.name,
            "tax_registry": tax_client.name,
            "auto_activate": config.approvals.auto_activate,
            "sweeper": sweeper is not None and start_sweeper,
        },
    )
    return pipeline
