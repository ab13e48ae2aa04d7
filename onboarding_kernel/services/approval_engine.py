"""
ApprovalEngine -- review decisions on pending onboarding approvals.

Responsibility:
    Applies APPROVE / REJECT decisions to ``ApprovalRecordModel`` rows and
    drives the matching workflow transition, singly or in bulk with
    per-item outcomes.

Architecture position:
    Kernel > Services. Flushes only; the caller commits.

Invariants enforced:
    - A record is reviewed exactly once: only PENDING_APPROVAL records
      are eligible and the review UPDATE is version-guarded.
    - The record update and the workflow transition happen in the same
      transaction (or SAVEPOINT in bulk). If the transition fails the
      caller rolls back and the review is never visible as committed.
    - Bulk results preserve input order; one item's failure rolls back
      that item's SAVEPOINT only.

Failure modes:
    - InvalidArgumentError: REJECT without a reason, unknown outcome.
    - ApprovalNotFoundError: no pending record for the client.
    - ConcurrencyConflictError: a concurrent reviewer won the race.
    - InvalidTransitionError: the workflow is not in PENDING_APPROVAL.
    - BatchSizeExceededError: bulk request above the configured cap.
"""

from typing import Any, Mapping, Sequence
from uuid import UUID

from sqlalchemy import select

from onboarding_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    ApprovalRecord,
    ApprovalStatus,
    BulkDecisionResult,
    BulkItemStatus,
    DecisionItem,
    DecisionOutcome,
)
from onboarding_kernel.domain.clock import Clock
from onboarding_kernel.domain.workflow import OnboardingWorkflowState, WorkflowEvent
from onboarding_kernel.exceptions import (
    ApprovalNotFoundError,
    BatchSizeExceededError,
    ConcurrencyConflictError,
    InvalidArgumentError,
)
from onboarding_kernel.logging_config import get_logger
from onboarding_kernel.models.approval import ApprovalRecordModel
from onboarding_kernel.services.base import BaseService
from onboarding_kernel.services.state_machine import OnboardingStateMachine
from onboarding_kernel.utils.batch import Ok, process_batch

logger = get_logger("services.approval_engine")

DEFAULT_MAX_BULK_ITEMS = 50


def coerce_outcome(outcome: DecisionOutcome | str) -> DecisionOutcome:
    """
    Raises:
        InvalidArgumentError: Not APPROVE or REJECT.
    """
    if isinstance(outcome, DecisionOutcome):
        return outcome
    try:
        return DecisionOutcome(str(outcome).upper())
    except ValueError:
        raise InvalidArgumentError(
            "outcome", "must be APPROVE or REJECT"
        ) from None


def coerce_uuid(value: UUID | str, field: str) -> UUID:
    """
    Raises:
        InvalidArgumentError: ``value`` is not a UUID.
    """
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise InvalidArgumentError(field, "must be a UUID") from None


def coerce_decision_item(raw: DecisionItem | Mapping[str, Any]) -> DecisionItem:
    """Build a DecisionItem from a request mapping.

    Raises:
        InvalidArgumentError: Missing or malformed field.
    """
    if isinstance(raw, DecisionItem):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidArgumentError("item", "must be a mapping")
    for required in ("client_id", "outcome", "actor_id"):
        if raw.get(required) in (None, ""):
            raise InvalidArgumentError(required, "is required")
    return DecisionItem(
        client_id=coerce_uuid(raw["client_id"], "client_id"),
        outcome=coerce_outcome(raw["outcome"]),
        actor_id=coerce_uuid(raw["actor_id"], "actor_id"),
        notes=raw.get("notes"),
        rejection_reason=raw.get("rejection_reason"),
    )


def _item_client_id(raw: Any) -> UUID | None:
    if isinstance(raw, DecisionItem):
        return raw.client_id
    if isinstance(raw, Mapping):
        try:
            return coerce_uuid(raw.get("client_id"), "client_id")
        except InvalidArgumentError:
            return None
    return None


class ApprovalEngine(BaseService):
    """Resolve pending approval records to APPROVED or REJECTED."""

    ENTITY_TYPE = "ApprovalRecord"

    def __init__(
        self,
        session,
        state_machine: OnboardingStateMachine,
        clock: Clock | None = None,
        auto_activate: bool = True,
        max_bulk_items: int = DEFAULT_MAX_BULK_ITEMS,
    ):
        super().__init__(session, clock)
        self._state_machine = state_machine
        self._auto_activate = auto_activate
        self._max_bulk_items = max_bulk_items

    def _load_pending(self, client_id: UUID) -> ApprovalRecordModel:
        model = self.session.execute(
            select(ApprovalRecordModel).where(
                ApprovalRecordModel.client_id == client_id,
                ApprovalRecordModel.status == ApprovalStatus.PENDING_APPROVAL.value,
            )
        ).scalar_one_or_none()
        if model is None:
            raise ApprovalNotFoundError(str(client_id))
        return model

    def decide(
        self,
        client_id: UUID,
        outcome: DecisionOutcome | str,
        actor_id: UUID,
        notes: str | None = None,
        rejection_reason: str | None = None,
        expected_version: int | None = None,
    ) -> ApprovalRecord:
        """
        Record a review decision and advance the workflow.

        Preconditions:
            - A PENDING_APPROVAL record exists for ``client_id``.
            - REJECT carries a non-empty ``rejection_reason``.

        Postconditions:
            - The record is APPROVED or REJECTED with reviewer and time set.
            - The workflow is APPROVED (then ACTIVE when auto-activation is
              on) or REJECTED.
        """
        outcome = coerce_outcome(outcome)
        reason = rejection_reason.strip() if rejection_reason else None
        if outcome is DecisionOutcome.REJECT and not reason:
            raise InvalidArgumentError(
                "rejection_reason", "a reason is required when rejecting"
            )

        model = self._load_pending(client_id)
        if expected_version is not None and model.version != expected_version:
            raise ConcurrencyConflictError(self.ENTITY_TYPE, str(model.id))

        new_status = outcome.resulting_status
        assert new_status in APPROVAL_TRANSITIONS[ApprovalStatus(model.status)]

        model.status = new_status.value
        model.reviewed_at = self.clock.now()
        model.reviewer_id = actor_id
        model.notes = notes
        model.rejection_reason = reason if outcome is DecisionOutcome.REJECT else None
        self._flush_versioned(self.ENTITY_TYPE, model.id)

        self._state_machine.advance(
            client_id, outcome.workflow_event, actor_id=actor_id,
        )
        if outcome is DecisionOutcome.APPROVE and self._auto_activate:
            self._state_machine.advance(
                client_id, WorkflowEvent.ACTIVATE, actor_id=actor_id,
            )

        logger.info(
            "approval_decided",
            extra={
                "client_id": str(client_id),
                "approval_id": str(model.id),
                "outcome": outcome.value,
                "reviewer_id": str(actor_id),
                "auto_activated": outcome is DecisionOutcome.APPROVE and self._auto_activate,
            },
        )
        return model.to_dto()

    def activate(self, client_id: UUID, actor_id: UUID) -> OnboardingWorkflowState:
        """APPROVED -> ACTIVE for deployments without auto-activation."""
        return self._state_machine.advance(
            client_id, WorkflowEvent.ACTIVATE, actor_id=actor_id,
        )

    def decide_bulk(
        self, items: Sequence[DecisionItem | Mapping[str, Any]],
    ) -> list[BulkDecisionResult]:
        """
        Decide every item independently, in input order.

        Each item runs in its own SAVEPOINT: a failing item (malformed,
        not pending, already decided) leaves no partial writes and does
        not affect the others.

        Raises:
            BatchSizeExceededError: More items than ``max_bulk_items``.
        """
        if len(items) > self._max_bulk_items:
            raise BatchSizeExceededError(
                len(items),
                self._max_bulk_items,
                tuple(str(_item_client_id(item)) for item in items[self._max_bulk_items:]),
            )

        def handle(raw):
            item = coerce_decision_item(raw)
            return self.decide(
                item.client_id,
                item.outcome,
                item.actor_id,
                notes=item.notes,
                rejection_reason=item.rejection_reason,
            )

        outcomes = process_batch(
            items, handle, isolation=self.session.begin_nested, logger=logger,
        )

        results = []
        for outcome in outcomes:
            if isinstance(outcome, Ok):
                results.append(
                    BulkDecisionResult(
                        index=outcome.index,
                        client_id=outcome.value.client_id,
                        status=BulkItemStatus.SUCCESS,
                        record_status=outcome.value.status,
                        record=outcome.value,
                    )
                )
            else:
                results.append(
                    BulkDecisionResult(
                        index=outcome.index,
                        client_id=_item_client_id(outcome.item),
                        status=BulkItemStatus.ERROR,
                        error_code=outcome.code,
                        detail=outcome.message,
                    )
                )

        logger.info(
            "bulk_decision_completed",
            extra={
                "total": len(results),
                "succeeded": sum(1 for r in results if r.succeeded),
                "failed": sum(1 for r in results if not r.succeeded),
            },
        )
        return results
