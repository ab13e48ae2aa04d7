"""
Onboarding workflow domain types (``onboarding_kernel.domain.workflow``).

Responsibility
--------------
The onboarding lifecycle as data: steps, events, the transition table,
and the immutable workflow snapshot handed to callers.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects. ZERO I/O.

Invariants enforced
-------------------
* ``WORKFLOW_TRANSITIONS`` is the only source of valid (step, event)
  pairs. ``resolve_transition`` raises ``InvalidTransitionError`` for any
  other pair; it never returns the current step unchanged.
* REJECTED and ACTIVE are terminal. APPROVED has exactly one way out
  (ACTIVATE -> ACTIVE).
* ``step_history`` is ordered by ``entered_at``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from onboarding_kernel.domain.validation import LastValidation
from onboarding_kernel.exceptions import InvalidTransitionError


class OnboardingStep(str, Enum):
    """Named stages of a client's onboarding lifecycle."""

    SUBMITTED = "SUBMITTED"
    VERIFICATION = "VERIFICATION"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ACTIVE = "ACTIVE"


class WorkflowEvent(str, Enum):
    """Events that drive step transitions."""

    START_VERIFICATION = "START_VERIFICATION"
    VALIDATION_PASSED = "VALIDATION_PASSED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    TOKEN_REDEEMED = "TOKEN_REDEEMED"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    ACTIVATE = "ACTIVATE"


WORKFLOW_TRANSITIONS: dict[tuple[OnboardingStep, WorkflowEvent], OnboardingStep] = {
    (OnboardingStep.SUBMITTED, WorkflowEvent.START_VERIFICATION): OnboardingStep.VERIFICATION,
    (OnboardingStep.VERIFICATION, WorkflowEvent.VALIDATION_PASSED): OnboardingStep.AWAITING_CONFIRMATION,
    (OnboardingStep.VERIFICATION, WorkflowEvent.VALIDATION_FAILED): OnboardingStep.SUBMITTED,
    (OnboardingStep.AWAITING_CONFIRMATION, WorkflowEvent.TOKEN_REDEEMED): OnboardingStep.PENDING_APPROVAL,
    (OnboardingStep.PENDING_APPROVAL, WorkflowEvent.APPROVE): OnboardingStep.APPROVED,
    (OnboardingStep.PENDING_APPROVAL, WorkflowEvent.REJECT): OnboardingStep.REJECTED,
    (OnboardingStep.APPROVED, WorkflowEvent.ACTIVATE): OnboardingStep.ACTIVE,
}

INITIAL_STEP = OnboardingStep.SUBMITTED

TERMINAL_STEPS: frozenset[OnboardingStep] = frozenset({
    OnboardingStep.REJECTED,
    OnboardingStep.ACTIVE,
})


def resolve_transition(
    current: OnboardingStep,
    event: WorkflowEvent,
    client_id: UUID | None = None,
) -> OnboardingStep:
    """Return the step reached by delivering ``event`` in ``current``.

    Raises:
        InvalidTransitionError: No transition is listed for the pair.
    """
    target = WORKFLOW_TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidTransitionError(
            current.value,
            event.value,
            str(client_id) if client_id is not None else None,
        )
    return target


def allowed_events(current: OnboardingStep) -> frozenset[WorkflowEvent]:
    return frozenset(e for (s, e) in WORKFLOW_TRANSITIONS if s is current)


@dataclass(frozen=True, slots=True)
class StepHistoryEntry:
    step: OnboardingStep
    entered_at: datetime
    actor_id: UUID | None = None
    event: WorkflowEvent | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step.value,
            "entered_at": self.entered_at.isoformat(),
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "event": self.event.value if self.event else None,
        }


@dataclass(frozen=True)
class OnboardingWorkflowState:
    """Immutable snapshot of one client's onboarding workflow."""

    client_id: UUID
    current_step: OnboardingStep
    version: int
    step_history: tuple[StepHistoryEntry, ...] = ()
    last_validation: LastValidation = field(default_factory=LastValidation)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.current_step in TERMINAL_STEPS

    @property
    def requires_manual_review(self) -> bool:
        return self.last_validation.requires_manual_review

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_id": str(self.client_id),
            "current_step": self.current_step.value,
            "version": self.version,
            "step_history": [h.to_dict() for h in self.step_history],
            "last_validation": self.last_validation.to_dict(),
            "requires_manual_review": self.requires_manual_review,
            "is_terminal": self.is_terminal,
        }


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of ``submit_for_verification``."""

    workflow_state: OnboardingWorkflowState
    validation_errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def passed(self) -> bool:
        return not self.validation_errors
