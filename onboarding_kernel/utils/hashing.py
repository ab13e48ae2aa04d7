"""
Deterministic hashing for audit chains and confirmation tokens.

Audit payloads are hashed over canonical JSON (sorted keys, compact
separators) so the same logical payload always yields the same digest,
whichever process wrote it.
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

CHAIN_GENESIS = "GENESIS"


def _encode(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, tuple):
        return list(value)
    raise TypeError(f"cannot canonicalize {type(value).__name__}")


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def to_json_safe(data: Any) -> Any:
    """Plain JSON types only, ready for a JSON column."""
    return json.loads(canonicalize_json(data))


def hash_payload(payload: dict) -> str:
    return _sha256(canonicalize_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Link hash of one audit event.

    Covers the identifying fields, the payload digest and the previous
    event's hash, so editing or removing any earlier event changes every
    later hash.
    """
    return _sha256(
        "|".join((entity_type, str(entity_id), action, payload_hash, prev_hash or CHAIN_GENESIS))
    )


def hash_token(token: str) -> str:
    """Digest under which a confirmation token is stored and looked up."""
    return _sha256(token)
