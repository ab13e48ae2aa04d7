"""
Approval domain types (``onboarding_kernel.domain.approval``).

Pure value objects for the ApprovalEngine: record statuses, decision
outcomes, the immutable ``ApprovalRecord`` snapshot, bulk decision
items and their per-item results, and paged listings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from onboarding_kernel.domain.workflow import WorkflowEvent


class ApprovalStatus(str, Enum):
    """Approval record lifecycle states."""

    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING_APPROVAL: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
}


class DecisionOutcome(str, Enum):
    """Decision a reviewer can make."""

    APPROVE = "APPROVE"
    REJECT = "REJECT"

    @property
    def resulting_status(self) -> ApprovalStatus:
        if self is DecisionOutcome.APPROVE:
            return ApprovalStatus.APPROVED
        return ApprovalStatus.REJECTED

    @property
    def workflow_event(self) -> WorkflowEvent:
        if self is DecisionOutcome.APPROVE:
            return WorkflowEvent.APPROVE
        return WorkflowEvent.REJECT


@dataclass(frozen=True)
class ValidationChecks:
    """What was verified before the record reached a reviewer."""

    company_validated: bool = False
    tax_validated: bool = False
    email_confirmed: bool = False
    requires_manual_review: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {
            "company_validated": self.company_validated,
            "tax_validated": self.tax_validated,
            "email_confirmed": self.email_confirmed,
            "requires_manual_review": self.requires_manual_review,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ValidationChecks:
        data = data or {}
        return cls(
            company_validated=bool(data.get("company_validated", False)),
            tax_validated=bool(data.get("tax_validated", False)),
            email_confirmed=bool(data.get("email_confirmed", False)),
            requires_manual_review=bool(data.get("requires_manual_review", False)),
        )


@dataclass(frozen=True)
class ApprovalRecord:
    """Durable decision artifact for one client's onboarding."""

    id: UUID
    client_id: UUID
    status: ApprovalStatus
    requested_at: datetime
    version: int
    reviewed_at: datetime | None = None
    reviewer_id: UUID | None = None
    notes: str | None = None
    rejection_reason: str | None = None
    validation_checks: ValidationChecks = field(default_factory=ValidationChecks)

    @property
    def is_pending(self) -> bool:
        return self.status is ApprovalStatus.PENDING_APPROVAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "client_id": str(self.client_id),
            "status": self.status.value,
            "requested_at": self.requested_at.isoformat(),
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "reviewer_id": str(self.reviewer_id) if self.reviewer_id else None,
            "notes": self.notes,
            "rejection_reason": self.rejection_reason,
            "validation_checks": self.validation_checks.to_dict(),
        }


@dataclass(frozen=True)
class DecisionItem:
    """One entry of a bulk decision request."""

    client_id: UUID
    outcome: DecisionOutcome
    actor_id: UUID
    notes: str | None = None
    rejection_reason: str | None = None


class BulkItemStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class BulkDecisionResult:
    """Outcome of one bulk item, in input order."""

    index: int
    client_id: UUID | None
    status: BulkItemStatus
    record_status: ApprovalStatus | None = None
    record: ApprovalRecord | None = None
    error_code: str | None = None
    detail: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is BulkItemStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "client_id": str(self.client_id) if self.client_id else None,
            "status": self.status.value,
            "record_status": self.record_status.value if self.record_status else None,
            "error_code": self.error_code,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class ApprovalPage:
    """One page of approval records, newest first."""

    records: tuple[ApprovalRecord, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.total else 0
