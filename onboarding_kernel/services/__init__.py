"""Kernel write services. Every service flushes; callers commit."""

from onboarding_kernel.services.approval_engine import (
    ApprovalEngine,
    coerce_decision_item,
    coerce_outcome,
    coerce_uuid,
)
from onboarding_kernel.services.auditor_service import AuditorService, AuditTraceEntry
from onboarding_kernel.services.base import BaseService
from onboarding_kernel.services.state_machine import (
    ConfirmationOutcome,
    OnboardingStateMachine,
    VerificationOutcome,
)
from onboarding_kernel.services.token_service import ConfirmationTokenService

__all__ = [
    "ApprovalEngine",
    "AuditTraceEntry",
    "AuditorService",
    "BaseService",
    "ConfirmationOutcome",
    "ConfirmationTokenService",
    "OnboardingStateMachine",
    "VerificationOutcome",
    "coerce_decision_item",
    "coerce_outcome",
    "coerce_uuid",
]
