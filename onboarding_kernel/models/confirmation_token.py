"""
Module: onboarding_kernel.models.confirmation_token
Responsibility: ORM persistence for email confirmation tokens.

Invariants enforced:
    - Only the SHA-256 digest of a token is stored (UNIQUE token_hash).
    - ``version`` is the version_id_col, so two concurrent redemptions of
      the same token cannot both set ``redeemed_at``.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from onboarding_kernel.db.base import Base, UUIDString


class ConfirmationTokenModel(Base):
    """Persistent single-use confirmation token."""

    __tablename__ = "confirmation_tokens"

    __table_args__ = (
        Index("ix_confirmation_tokens_client_purpose", "client_id", "purpose"),
    )

    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    client_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    purpose: Mapped[str] = mapped_column(String(32), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    redeemed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    superseded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    source_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ConfirmationToken client={self.client_id} purpose={self.purpose} "
            f"redeemed={self.redeemed_at is not None}>"
        )

    @property
    def is_live(self) -> bool:
        return self.redeemed_at is None and self.superseded_at is None
