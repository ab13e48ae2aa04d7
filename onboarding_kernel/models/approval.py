"""
Module: onboarding_kernel.models.approval
Responsibility: ORM persistence for onboarding approval records.

Architecture position: Kernel > Models. May import from db/base.py and
    domain/ only.

Invariants enforced:
    - DB check constraint limits status values.
    - One approval record per client (UNIQUE client_id).
    - ``version`` is the version_id_col: the single review UPDATE only
      lands if nobody reviewed the record since it was read.

Failure modes:
    - StaleDataError when two reviewers decide the same record at once.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from onboarding_kernel.db.base import Base, UUIDString
from onboarding_kernel.domain.approval import (
    ApprovalRecord,
    ApprovalStatus,
    ValidationChecks,
)


class ApprovalRecordModel(Base):
    """Persistent approval record.

    Created in PENDING_APPROVAL when the client confirms their email and
    reviewed exactly once.
    """

    __tablename__ = "approval_records"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING_APPROVAL', 'APPROVED', 'REJECTED')",
            name="ck_approval_records_valid_status",
        ),
        UniqueConstraint("client_id", name="uq_approval_records_client"),
        Index("ix_approval_records_status_requested", "status", "requested_at"),
    )

    client_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ApprovalStatus.PENDING_APPROVAL.value,
    )
    requested_at: Mapped[datetime] = mapped_column(nullable=False)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reviewer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    validation_checks: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<ApprovalRecord {self.id} client={self.client_id} status={self.status}>"

    def to_dto(self) -> ApprovalRecord:
        """Convert ORM model to frozen domain DTO."""
        return ApprovalRecord(
            id=self.id,
            client_id=self.client_id,
            status=ApprovalStatus(self.status),
            requested_at=self.requested_at,
            version=self.version,
            reviewed_at=self.reviewed_at,
            reviewer_id=self.reviewer_id,
            notes=self.notes,
            rejection_reason=self.rejection_reason,
            validation_checks=ValidationChecks.from_dict(self.validation_checks),
        )
