"""
Onboarding Registry

Adapters for the external company and VAT registries, the ValidationCache
that fronts them, and the periodic cache sweeper.
"""

from onboarding_registry.cache import ValidationCache
from onboarding_registry.client import (
    COMPANY_STATUS_MAP,
    TAX_STATUS_MAP,
    CompanyRegistryClient,
    HttpRegistryClient,
    RateLimiter,
    RegistryClient,
    TaxRegistryClient,
)
from onboarding_registry.sweeper import CacheSweeper

__all__ = [
    "COMPANY_STATUS_MAP",
    "CacheSweeper",
    "CompanyRegistryClient",
    "HttpRegistryClient",
    "RateLimiter",
    "RegistryClient",
    "TAX_STATUS_MAP",
    "TaxRegistryClient",
    "ValidationCache",
]
