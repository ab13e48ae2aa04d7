"""
onboarding_config -- single public entrypoint for pipeline configuration.

Responsibility:
    ``get_active_config()`` is the only way to obtain configuration at
    runtime. It loads the packaged defaults, merges an optional override
    file, validates, and returns a frozen ``OnboardingConfig``.

Architecture position:
    Sits above ``onboarding_kernel`` and ``onboarding_registry`` and below
    ``onboarding_services``. The kernel never imports from this package;
    ``onboarding_services.factory`` translates config into constructor
    arguments.

Failure modes:
    - ``FileNotFoundError`` -- override file does not exist.
    - ``ConfigValidationError`` (a ``ValueError``) -- schema or range errors.
"""

from __future__ import annotations

import logging
from pathlib import Path

from onboarding_config.loader import (
    ConfigValidationError,
    deep_merge,
    load_yaml_file,
    parse_config,
)
from onboarding_config.schema import OnboardingConfig

_logger = logging.getLogger("onboarding.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults" / "onboarding.yaml"


def get_active_config(config_path: Path | str | None = None) -> OnboardingConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Optional YAML file whose keys override the defaults.

    Returns:
        A validated, frozen ``OnboardingConfig``.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    source = str(DEFAULTS_PATH)
    if config_path is not None:
        data = deep_merge(data, load_yaml_file(Path(config_path)))
        source = str(config_path)

    config = parse_config(data)

    _logger.info(
        "onboarding_config_loaded",
        extra={
            "config_source": source,
            "checksum": config.checksum,
            "company_ttl_seconds": config.registries.company.cache_ttl_seconds,
            "tax_ttl_seconds": config.registries.tax.cache_ttl_seconds,
            "auto_activate": config.approvals.auto_activate,
        },
    )
    return config


__all__ = [
    "DEFAULTS_PATH",
    "ConfigValidationError",
    "OnboardingConfig",
    "get_active_config",
]
