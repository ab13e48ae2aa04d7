"""ORM models for the onboarding kernel."""

from onboarding_kernel.models.approval import ApprovalRecordModel
from onboarding_kernel.models.audit_event import AuditAction, AuditEvent
from onboarding_kernel.models.confirmation_token import ConfirmationTokenModel
from onboarding_kernel.models.workflow_state import (
    OnboardingWorkflowModel,
    StepHistoryModel,
)

__all__ = [
    "ApprovalRecordModel",
    "AuditAction",
    "AuditEvent",
    "ConfirmationTokenModel",
    "OnboardingWorkflowModel",
    "StepHistoryModel",
]
