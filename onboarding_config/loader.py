"""
Configuration Loader (``onboarding_config.loader``).

Responsibility
--------------
Loads YAML files, merges an override file over the packaged defaults,
parses the result into ``onboarding_config.schema`` dataclasses and
validates it. Runtime callers use ``onboarding_config.get_active_config()``
instead of calling this module directly.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing keys, wrong types, out-of-range values, unknown sections
  -> ``ConfigValidationError`` (a ``ValueError``).
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from onboarding_config.schema import (
    ApprovalConfig,
    CacheSweepConfig,
    DatabaseConfig,
    LoggingConfig,
    OnboardingConfig,
    RateLimitConfig,
    RegistriesConfig,
    RegistryConfig,
    TokenConfig,
)

KNOWN_SECTIONS = frozenset({
    "database", "registries", "tokens", "approvals", "cache_sweep", "logging",
})


class ConfigValidationError(ValueError):
    """Configuration failed parsing or validation."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigValidationError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigValidationError([f"{path}: top level must be a mapping"])
    return data


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the merged configuration document."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _parse_registry(path: str, data: dict[str, Any]) -> RegistryConfig:
    limit = data["rate_limit"]
    return RegistryConfig(
        name=str(data.get("name", path.rsplit(".", 1)[-1])),
        base_url=str(data["base_url"]),
        timeout_seconds=float(data["timeout_seconds"]),
        cache_ttl_seconds=float(data["cache_ttl_seconds"]),
        max_batch_size=int(data["max_batch_size"]),
        max_cache_entries=int(data.get("max_cache_entries", 1000)),
        max_workers=int(data.get("max_workers", 4)),
        rate_limit=RateLimitConfig(
            max_requests=int(limit["max_requests"]),
            window_seconds=float(limit["window_seconds"]),
        ),
        headers=tuple(sorted((str(k), str(v)) for k, v in (data.get("headers") or {}).items())),
    )


def parse_config(data: dict[str, Any]) -> OnboardingConfig:
    """
    Parse a merged configuration document.

    Raises:
        ConfigValidationError: on unknown sections or missing/invalid keys.
    """
    unknown = sorted(set(data) - KNOWN_SECTIONS)
    if unknown:
        raise ConfigValidationError([f"unknown configuration section {k!r}" for k in unknown])

    try:
        registries = data["registries"]
        db = data.get("database") or {}
        tokens = data.get("tokens") or {}
        approvals = data.get("approvals") or {}
        sweep = data.get("cache_sweep") or {}
        log = data.get("logging") or {}

        config = OnboardingConfig(
            registries=RegistriesConfig(
                company=_parse_registry("registries.company", registries["company"]),
                tax=_parse_registry("registries.tax", registries["tax"]),
            ),
            database=DatabaseConfig(
                url=str(db.get("url", DatabaseConfig.url)),
                echo=bool(db.get("echo", False)),
                pool_size=int(db.get("pool_size", DatabaseConfig.pool_size)),
                max_overflow=int(db.get("max_overflow", DatabaseConfig.max_overflow)),
            ),
            tokens=TokenConfig(ttl_hours=float(tokens.get("ttl_hours", TokenConfig.ttl_hours))),
            approvals=ApprovalConfig(
                max_bulk_items=int(approvals.get("max_bulk_items", ApprovalConfig.max_bulk_items)),
                auto_activate=bool(approvals.get("auto_activate", ApprovalConfig.auto_activate)),
                max_page_size=int(approvals.get("max_page_size", ApprovalConfig.max_page_size)),
                default_page_size=int(
                    approvals.get("default_page_size", ApprovalConfig.default_page_size)
                ),
            ),
            cache_sweep=CacheSweepConfig(
                enabled=bool(sweep.get("enabled", CacheSweepConfig.enabled)),
                interval_seconds=float(
                    sweep.get("interval_seconds", CacheSweepConfig.interval_seconds)
                ),
            ),
            logging=LoggingConfig(level=str(log.get("level", LoggingConfig.level)).upper()),
            checksum=compute_checksum(data),
        )
    except KeyError as exc:
        raise ConfigValidationError([f"missing required key {exc.args[0]!r}"]) from exc
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError([f"invalid value: {exc}"]) from exc

    validate_config(config)
    return config


def validate_config(config: OnboardingConfig) -> None:
    """
    Raises:
        ConfigValidationError: listing every violated rule.
    """
    errors: list[str] = []
    for label, reg in (("company", config.registries.company), ("tax", config.registries.tax)):
        prefix = f"registries.{label}"
        if not reg.base_url.startswith(("http://", "https://")):
            errors.append(f"{prefix}.base_url must be an http(s) URL")
        for attr in ("timeout_seconds", "cache_ttl_seconds"):
            if getattr(reg, attr) <= 0:
                errors.append(f"{prefix}.{attr} must be positive")
        for attr in ("max_batch_size", "max_cache_entries", "max_workers"):
            if getattr(reg, attr) < 1:
                errors.append(f"{prefix}.{attr} must be at least 1")
        if reg.rate_limit.max_requests < 1 or reg.rate_limit.window_seconds <= 0:
            errors.append(f"{prefix}.rate_limit must allow at least one request per positive window")

    if config.registries.company.cache_ttl_seconds >= config.registries.tax.cache_ttl_seconds:
        errors.append(
            "registries.company.cache_ttl_seconds must be shorter than "
            "registries.tax.cache_ttl_seconds"
        )
    if config.tokens.ttl_hours <= 0:
        errors.append("tokens.ttl_hours must be positive")
    if config.approvals.max_bulk_items < 1:
        errors.append("approvals.max_bulk_items must be at least 1")
    if config.approvals.max_page_size < 1:
        errors.append("approvals.max_page_size must be at least 1")
    if not 1 <= config.approvals.default_page_size <= config.approvals.max_page_size:
        errors.append("approvals.default_page_size must be between 1 and max_page_size")
    if config.cache_sweep.interval_seconds <= 0:
        errors.append("cache_sweep.interval_seconds must be positive")
    if config.logging.level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        errors.append(f"logging.level {config.logging.level!r} is not a logging level")

    if errors:
        raise ConfigValidationError(errors)
