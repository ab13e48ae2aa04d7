"""Confirmation token value objects."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class TokenPurpose(str, Enum):
    EMAIL_CONFIRMATION = "EMAIL_CONFIRMATION"


@dataclass(frozen=True)
class IssuedToken:
    """A freshly issued token. ``token`` is the only copy of the secret."""

    token: str
    client_id: UUID
    purpose: TokenPurpose
    issued_at: datetime
    expires_at: datetime

    def __repr__(self) -> str:
        return (
            f"IssuedToken(client_id={self.client_id}, purpose={self.purpose.value}, "
            f"expires_at={self.expires_at.isoformat()})"
        )


@dataclass(frozen=True)
class RedeemedToken:
    client_id: UUID
    purpose: TokenPurpose
    redeemed_at: datetime
    source_address: str | None = None
