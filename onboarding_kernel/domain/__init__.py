"""
Pure domain layer.

Immutable value objects and the onboarding transition table with NO
dependencies on the ORM, the database, the clock (beyond the Clock
interface) or I/O.
"""

from onboarding_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    ApprovalPage,
    ApprovalRecord,
    ApprovalStatus,
    BulkDecisionResult,
    BulkItemStatus,
    DecisionItem,
    DecisionOutcome,
    ValidationChecks,
)
from onboarding_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from onboarding_kernel.domain.identifiers import (
    IdentifierKind,
    RegistryIdentifier,
    normalize_company_number,
    normalize_identifier,
    normalize_tax_number,
    parse_kind,
)
from onboarding_kernel.domain.tokens import IssuedToken, RedeemedToken, TokenPurpose
from onboarding_kernel.domain.validation import (
    Address,
    CacheEntry,
    CacheStats,
    LastValidation,
    RegistryRecord,
    RegistryStatus,
    ResultSource,
    ValidationResult,
    fallback_warnings,
    validation_errors,
)
from onboarding_kernel.domain.workflow import (
    INITIAL_STEP,
    TERMINAL_STEPS,
    WORKFLOW_TRANSITIONS,
    OnboardingStep,
    OnboardingWorkflowState,
    StepHistoryEntry,
    SubmissionResult,
    WorkflowEvent,
    allowed_events,
    resolve_transition,
)

__all__ = [
    "APPROVAL_TRANSITIONS",
    "Address",
    "ApprovalPage",
    "ApprovalRecord",
    "ApprovalStatus",
    "BulkDecisionResult",
    "BulkItemStatus",
    "CacheEntry",
    "CacheStats",
    "Clock",
    "DecisionItem",
    "DecisionOutcome",
    "DeterministicClock",
    "INITIAL_STEP",
    "IdentifierKind",
    "IssuedToken",
    "LastValidation",
    "OnboardingStep",
    "OnboardingWorkflowState",
    "RedeemedToken",
    "RegistryIdentifier",
    "RegistryRecord",
    "RegistryStatus",
    "ResultSource",
    "StepHistoryEntry",
    "SubmissionResult",
    "SystemClock",
    "TERMINAL_STEPS",
    "TokenPurpose",
    "ValidationChecks",
    "ValidationResult",
    "WORKFLOW_TRANSITIONS",
    "WorkflowEvent",
    "allowed_events",
    "fallback_warnings",
    "normalize_company_number",
    "normalize_identifier",
    "normalize_tax_number",
    "parse_kind",
    "resolve_transition",
    "validation_errors",
]
