"""
OnboardingStateMachine -- the client onboarding lifecycle.

Responsibility:
    Owns every write to ``OnboardingWorkflowModel``: creation, step
    transitions, step history and the attached validation results. Also
    triggers the side effects tied to specific transitions (token issuance
    on VALIDATION_PASSED, approval-record creation on TOKEN_REDEEMED).

Architecture position:
    Kernel > Services. Flushes only; the caller commits.

Invariants enforced:
    - Only pairs listed in ``WORKFLOW_TRANSITIONS`` move a workflow. Any
      other event raises InvalidTransitionError before anything is
      written, so the stored step is unchanged.
    - Compare-and-swap: the UPDATE carries the version that was read. A
      concurrent writer that moved the workflow first turns this flush into
      ConcurrencyConflictError. Callers holding an older snapshot can pass
      ``expected_version`` to fail fast.
    - Step history ``entered_at`` never decreases.

Failure modes:
    - WorkflowNotFoundError, InvalidTransitionError, ConcurrencyConflictError.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select

from onboarding_kernel.domain.approval import ApprovalRecord, ApprovalStatus, ValidationChecks
from onboarding_kernel.domain.clock import Clock
from onboarding_kernel.domain.identifiers import IdentifierKind
from onboarding_kernel.domain.tokens import IssuedToken, TokenPurpose
from onboarding_kernel.domain.validation import (
    LastValidation,
    ValidationResult,
    fallback_warnings,
    validation_errors,
)
from onboarding_kernel.domain.workflow import (
    INITIAL_STEP,
    OnboardingWorkflowState,
    WorkflowEvent,
    resolve_transition,
)
from onboarding_kernel.exceptions import ConcurrencyConflictError, WorkflowNotFoundError
from onboarding_kernel.logging_config import get_logger
from onboarding_kernel.models.approval import ApprovalRecordModel
from onboarding_kernel.models.workflow_state import OnboardingWorkflowModel, StepHistoryModel
from onboarding_kernel.selectors.workflow_selector import WorkflowSelector
from onboarding_kernel.services.base import BaseService
from onboarding_kernel.services.token_service import ConfirmationTokenService
from onboarding_kernel.utils.hashing import to_json_safe

logger = get_logger("services.state_machine")


@dataclass(frozen=True)
class VerificationOutcome:
    state: OnboardingWorkflowState
    token: IssuedToken | None
    validation_errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConfirmationOutcome:
    state: OnboardingWorkflowState
    approval: ApprovalRecord


class OnboardingStateMachine(BaseService):
    """Drives onboarding workflows through their defined transitions."""

    ENTITY_TYPE = "OnboardingWorkflow"

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        tokens: ConfirmationTokenService | None = None,
    ):
        super().__init__(session, clock)
        self._tokens = tokens or ConfirmationTokenService(session, self.clock)

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    def get_state(self, client_id: UUID) -> OnboardingWorkflowState:
        """Current workflow snapshot. No side effects."""
        return WorkflowSelector(self.session).get(client_id)

    def _load(self, client_id: UUID) -> OnboardingWorkflowModel:
        model = self.session.execute(
            select(OnboardingWorkflowModel).where(
                OnboardingWorkflowModel.client_id == client_id
            )
        ).scalar_one_or_none()
        if model is None:
            raise WorkflowNotFoundError(str(client_id))
        return model

    # -----------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------

    def ensure_workflow(
        self, client_id: UUID, actor_id: UUID | None = None,
    ) -> tuple[OnboardingWorkflowModel, bool]:
        """Return the client's workflow, creating it in SUBMITTED if absent."""
        existing = self.session.execute(
            select(OnboardingWorkflowModel).where(
                OnboardingWorkflowModel.client_id == client_id
            )
        ).scalar_one_or_none()
        if existing is not None:
            return existing, False

        now = self.clock.now()
        model = OnboardingWorkflowModel(
            client_id=client_id,
            current_step=INITIAL_STEP.value,
            last_validation=None,
            created_at=now,
            updated_at=now,
        )
        model.history.append(
            StepHistoryModel(
                position=0,
                step=INITIAL_STEP.value,
                event=None,
                entered_at=now,
                actor_id=actor_id,
            )
        )
        self.session.add(model)
        self._flush_versioned(self.ENTITY_TYPE, client_id)
        logger.info("workflow_created", extra={"client_id": str(client_id)})
        return model, True

    def advance(
        self,
        client_id: UUID,
        event: WorkflowEvent,
        *,
        actor_id: UUID | None = None,
        expected_version: int | None = None,
        last_validation: LastValidation | None = None,
    ) -> OnboardingWorkflowState:
        """
        Deliver ``event`` to the client's workflow.

        Raises:
            WorkflowNotFoundError: No workflow for the client.
            ConcurrencyConflictError: ``expected_version`` is stale, or a
                concurrent writer updated the row first.
            InvalidTransitionError: ``event`` has no transition from the
                current step. Nothing is written.
        """
        model = self._load(client_id)
        if expected_version is not None and model.version != expected_version:
            raise ConcurrencyConflictError(self.ENTITY_TYPE, str(client_id))

        current = model.step
        target = resolve_transition(current, event, client_id)

        now = self.clock.now()
        if model.history:
            now = max(now, model.history[-1].entered_at)

        model.current_step = target.value
        model.updated_at = now
        model.history.append(
            StepHistoryModel(
                position=len(model.history),
                step=target.value,
                event=event.value,
                entered_at=now,
                actor_id=actor_id,
            )
        )
        if last_validation is not None:
            model.last_validation = to_json_safe(last_validation.to_dict())

        self._flush_versioned(self.ENTITY_TYPE, client_id)

        logger.info(
            "workflow_transitioned",
            extra={
                "client_id": str(client_id),
                "from_step": current.value,
                "to_step": target.value,
                "workflow_event": event.value,
                "version": model.version,
            },
        )
        return model.to_dto()

    def start_verification(
        self, client_id: UUID, actor_id: UUID | None = None,
    ) -> OnboardingWorkflowState:
        """Create the workflow if needed and move SUBMITTED -> VERIFICATION."""
        self.ensure_workflow(client_id, actor_id)
        return self.advance(
            client_id, WorkflowEvent.START_VERIFICATION, actor_id=actor_id,
        )

    def complete_verification(
        self,
        client_id: UUID,
        results: dict[IdentifierKind, ValidationResult],
        *,
        actor_id: UUID | None = None,
        expected_version: int | None = None,
    ) -> VerificationOutcome:
        """
        Resolve VERIFICATION from the registry results.

        Every result valid, or a FALLBACK (registry unreachable, flagged for
        manual review): VALIDATION_PASSED, issuing a confirmation token.
        Any result the registry explicitly rejected: VALIDATION_FAILED,
        back to SUBMITTED with the errors.

        Only a passing submission is stored as ``last_validation``, and it
        replaces whatever an earlier attempt left there.
        """
        current = LastValidation(
            company=results.get(IdentifierKind.COMPANY),
            tax=results.get(IdentifierKind.TAX),
        )
        by_name = {kind.value: result for kind, result in results.items()}

        errors = tuple(validation_errors(by_name))
        warnings = tuple(fallback_warnings(by_name))
        event = WorkflowEvent.VALIDATION_FAILED if errors else WorkflowEvent.VALIDATION_PASSED

        # A failed submission records history only; its results go back to the caller.
        state = self.advance(
            client_id,
            event,
            actor_id=actor_id,
            expected_version=expected_version,
            last_validation=current if event is WorkflowEvent.VALIDATION_PASSED else None,
        )

        token = None
        if event is WorkflowEvent.VALIDATION_PASSED:
            token = self._tokens.issue(client_id, TokenPurpose.EMAIL_CONFIRMATION)
        else:
            logger.info(
                "verification_failed",
                extra={"client_id": str(client_id), "errors": list(errors)},
            )

        return VerificationOutcome(
            state=state,
            token=token,
            validation_errors=errors,
            warnings=warnings,
        )

    def reissue_confirmation(self, client_id: UUID) -> IssuedToken:
        """Issue a fresh token for a client still awaiting confirmation.

        Raises:
            InvalidTransitionError: The workflow is not in AWAITING_CONFIRMATION.
        """
        model = self._load(client_id)
        # Validity of a later TOKEN_REDEEMED is the precondition for a resend.
        resolve_transition(model.step, WorkflowEvent.TOKEN_REDEEMED, client_id)
        return self._tokens.issue(client_id, TokenPurpose.EMAIL_CONFIRMATION)

    def confirm(
        self, token: str, source_address: str | None = None,
    ) -> ConfirmationOutcome:
        """
        Redeem a confirmation token and move to PENDING_APPROVAL.

        The token redemption, the transition and the new ApprovalRecord are
        written in the caller's transaction: if any step fails the caller
        rolls back and the token stays unredeemed.
        """
        redeemed = self._tokens.redeem(
            token, source_address, purpose=TokenPurpose.EMAIL_CONFIRMATION,
        )
        client_id = redeemed.client_id

        state = self.advance(client_id, WorkflowEvent.TOKEN_REDEEMED)

        validation = state.last_validation
        checks = ValidationChecks(
            company_validated=bool(validation.company and validation.company.is_valid),
            tax_validated=bool(validation.tax and validation.tax.is_valid),
            email_confirmed=True,
            requires_manual_review=validation.requires_manual_review,
        )
        now = self.clock.now()
        record = ApprovalRecordModel(
            client_id=client_id,
            status=ApprovalStatus.PENDING_APPROVAL.value,
            requested_at=now,
            validation_checks=checks.to_dict(),
        )
        self.session.add(record)
        self._flush_versioned("ApprovalRecord", client_id)

        logger.info(
            "approval_requested",
            extra={
                "client_id": str(client_id),
                "approval_id": str(record.id),
                "requires_manual_review": checks.requires_manual_review,
            },
        )
        return ConfirmationOutcome(state=state, approval=record.to_dto())


__all__ = [
    "ConfirmationOutcome",
    "OnboardingStateMachine",
    "VerificationOutcome",
]
