"""Kernel utilities."""

from onboarding_kernel.utils.batch import Err, Ok, process_batch
from onboarding_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_event,
    hash_payload,
    hash_token,
)

__all__ = [
    "Err",
    "Ok",
    "canonicalize_json",
    "hash_audit_event",
    "hash_payload",
    "hash_token",
    "process_batch",
]
