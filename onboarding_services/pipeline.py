"""
OnboardingPipeline -- the public face of client verification and approval.

Responsibility:
    Exposes every onboarding operation to the outer surface (an HTTP
    layer, a CLI, a worker) and owns the transaction boundary of each
    one. Kernel services only flush; this module commits or rolls back.

Architecture position:
    Services layer. Composes ValidationCache (registry access), the
    kernel services (state machine, approval engine, tokens) and the
    post-commit collaborators (notifier, audit sink).

Invariants enforced:
    - Registry lookups never run inside an open database transaction.
    - Notifications and audit entries are emitted only after the primary
      transaction has committed. Their failure is logged as a warning and
      never undoes or fails the committed operation.
    - Every operation runs inside ``LogContext.bind`` so its log lines
      carry the operation name, client and actor.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Callable, Iterable, Iterator, Mapping, Sequence
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from onboarding_kernel.db.engine import session_scope
from onboarding_kernel.domain.approval import (
    ApprovalPage,
    ApprovalRecord,
    ApprovalStatus,
    BulkDecisionResult,
    DecisionItem,
    DecisionOutcome,
)
from onboarding_kernel.domain.clock import Clock, SystemClock
from onboarding_kernel.domain.identifiers import (
    IdentifierKind,
    RegistryIdentifier,
    normalize_identifier,
    parse_kind,
)
from onboarding_kernel.domain.validation import CacheStats, ValidationResult
from onboarding_kernel.domain.workflow import (
    OnboardingStep,
    OnboardingWorkflowState,
    SubmissionResult,
    WorkflowEvent,
)
from onboarding_kernel.exceptions import InvalidArgumentError
from onboarding_kernel.logging_config import LogContext, get_logger
from onboarding_kernel.models.audit_event import AuditAction
from onboarding_kernel.selectors.approval_selector import ApprovalSelector
from onboarding_kernel.selectors.workflow_selector import WorkflowSelector
from onboarding_kernel.services.approval_engine import (
    ApprovalEngine,
    coerce_outcome,
    coerce_uuid,
)
from onboarding_kernel.services.auditor_service import AuditTraceEntry
from onboarding_kernel.services.state_machine import OnboardingStateMachine
from onboarding_kernel.services.token_service import (
    DEFAULT_TOKEN_TTL,
    ConfirmationTokenService,
)
from onboarding_registry.cache import ValidationCache
from onboarding_registry.sweeper import CacheSweeper
from onboarding_services.audit import AuditSink
from onboarding_services.notifications import LoggingNotifier, Notifier

logger = get_logger("services.pipeline")

# Attributed to actions the system takes on its own behalf.
SYSTEM_ACTOR_ID = UUID(int=0)

WORKFLOW_ENTITY = "OnboardingWorkflow"
APPROVAL_ENTITY = "ApprovalRecord"


class OnboardingPipeline:
    """Client verification and onboarding approval operations."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        company_cache: ValidationCache,
        tax_cache: ValidationCache,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        audit_sink: AuditSink | None = None,
        token_ttl: timedelta = DEFAULT_TOKEN_TTL,
        auto_activate: bool = True,
        max_bulk_items: int = 50,
        max_page_size: int = 100,
        default_page_size: int = 10,
        sweeper: CacheSweeper | None = None,
    ):
        self._session_factory = session_factory
        self._caches: dict[IdentifierKind, ValidationCache] = {
            IdentifierKind.COMPANY: company_cache,
            IdentifierKind.TAX: tax_cache,
        }
        self._clock = clock or SystemClock()
        self._notifier = notifier or LoggingNotifier()
        self._audit_sink = audit_sink
        self._token_ttl = token_ttl
        self._auto_activate = auto_activate
        self._max_bulk_items = max_bulk_items
        self._max_page_size = max_page_size
        self._default_page_size = default_page_size
        self.sweeper = sweeper

    # -----------------------------------------------------------------
    # Plumbing
    # -----------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        with session_scope(self._session_factory) as session:
            yield session

    def _state_machine(self, session: Session) -> OnboardingStateMachine:
        tokens = ConfirmationTokenService(session, self._clock, ttl=self._token_ttl)
        return OnboardingStateMachine(session, self._clock, tokens)

    def _approval_engine(self, session: Session) -> ApprovalEngine:
        return ApprovalEngine(
            session,
            self._state_machine(session),
            self._clock,
            auto_activate=self._auto_activate,
            max_bulk_items=self._max_bulk_items,
        )

    @contextmanager
    def _operation(self, name: str, **context: Any) -> Iterator[None]:
        started = time.monotonic()
        correlation_id = LogContext.get_all().get("correlation_id") or uuid4()
        with LogContext.bind(operation=name, correlation_id=correlation_id, **context):
            logger.debug("operation_started")
            yield
            logger.debug(
                "operation_completed",
                extra={"duration_ms": round((time.monotonic() - started) * 1000, 2)},
            )

    def _cache_for(self, kind: IdentifierKind | str) -> ValidationCache:
        return self._caches[parse_kind(kind)]

    def _after_commit(
        self, warnings: list[str], description: str, action: Callable[[], None],
    ) -> None:
        """Run a post-commit side effect; a failure becomes a warning."""
        try:
            action()
        except Exception as exc:
            logger.warning(
                "post_commit_action_failed",
                extra={"action": description, "error": f"{type(exc).__name__}: {exc}"},
                exc_info=True,
            )
            warnings.append(f"{description} failed: {type(exc).__name__}")

    def _audit(
        self,
        warnings: list[str],
        actor_id: UUID,
        action: AuditAction,
        entity_type: str,
        entity_id: UUID,
        context: dict[str, Any] | None = None,
    ) -> None:
        sink = self._audit_sink
        if sink is None:
            return
        self._after_commit(
            warnings,
            f"audit {action.value}",
            lambda: sink.record(actor_id, action, entity_type, entity_id, context),
        )

    @staticmethod
    def _parse_identifiers(
        identifiers: Mapping[IdentifierKind | str, str | None],
    ) -> dict[IdentifierKind, RegistryIdentifier]:
        if not isinstance(identifiers, Mapping):
            raise InvalidArgumentError("identifiers", "must map company/tax to a value")
        parsed: dict[IdentifierKind, RegistryIdentifier] = {}
        for raw_kind, raw_value in identifiers.items():
            if raw_value is None or (isinstance(raw_value, str) and not raw_value.strip()):
                continue
            kind = parse_kind(raw_kind)
            parsed[kind] = normalize_identifier(kind, raw_value)
        if not parsed:
            raise InvalidArgumentError("identifiers", "at least one identifier is required")
        return parsed

    # -----------------------------------------------------------------
    # Verification and confirmation
    # -----------------------------------------------------------------

    def submit_for_verification(
        self,
        client_id: UUID | str,
        identifiers: Mapping[IdentifierKind | str, str | None],
        actor_id: UUID | str | None = None,
    ) -> SubmissionResult:
        """
        Validate a client's registry identifiers and start onboarding.

        Creates the workflow on first submission. All identifiers pass (or
        a registry was unreachable, which flags the client for manual
        review): the workflow waits for email confirmation and a
        confirmation link is sent. Any identifier explicitly rejected by
        its registry: the workflow returns to SUBMITTED with the errors.

        Raises:
            IdentifierFormatError: A malformed identifier. Nothing is
                written and no registry is called.
            InvalidArgumentError: No identifiers, bad ids, unknown kind.
            InvalidTransitionError: The workflow is past SUBMITTED.
        """
        client_id = coerce_uuid(client_id, "client_id")
        actor = coerce_uuid(actor_id, "actor_id") if actor_id is not None else SYSTEM_ACTOR_ID

        with self._operation(
            "submit_for_verification", client_id=client_id, actor_id=actor,
        ):
            parsed = self._parse_identifiers(identifiers)

            with self._transaction() as session:
                started = self._state_machine(session).start_verification(client_id, actor)

            try:
                results = {
                    kind: self._caches[kind].lookup(identifier.value)
                    for kind, identifier in parsed.items()
                }
            except Exception as crash:
                logger.exception("verification_lookup_crashed")
                try:
                    with self._transaction() as session:
                        self._state_machine(session).advance(
                            client_id,
                            WorkflowEvent.VALIDATION_FAILED,
                            actor_id=actor,
                            expected_version=started.version,
                        )
                except Exception:
                    # The lookup error is what the caller needs to see.
                    logger.exception(
                        "verification_revert_failed",
                        extra={"lookup_error": type(crash).__name__},
                    )
                raise crash

            with self._transaction() as session:
                outcome = self._state_machine(session).complete_verification(
                    client_id,
                    results,
                    actor_id=actor,
                    expected_version=started.version,
                )

            warnings = list(outcome.warnings)
            self._audit(
                warnings,
                actor,
                AuditAction.VALIDATION_COMPLETED,
                WORKFLOW_ENTITY,
                client_id,
                {
                    "results": {k.value: r.to_dict() for k, r in results.items()},
                    "passed": not outcome.validation_errors,
                },
            )
            if outcome.token is not None:
                token = outcome.token
                self._after_commit(
                    warnings,
                    "confirmation link delivery",
                    lambda: self._notifier.send_confirmation_link(client_id, token.token),
                )
                self._audit(
                    warnings,
                    actor,
                    AuditAction.TOKEN_ISSUED,
                    WORKFLOW_ENTITY,
                    client_id,
                    {"purpose": token.purpose.value, "expires_at": token.expires_at},
                )

            logger.info(
                "submission_processed",
                extra={
                    "current_step": outcome.state.current_step.value,
                    "validation_errors": list(outcome.validation_errors),
                    "warning_count": len(warnings),
                },
            )
            return SubmissionResult(
                workflow_state=outcome.state,
                validation_errors=outcome.validation_errors,
                warnings=tuple(warnings),
            )

    def redeem_confirmation(
        self, token: str, source_address: str | None = None,
    ) -> OnboardingWorkflowState:
        """
        Redeem an email confirmation token.

        Moves the workflow to PENDING_APPROVAL and creates the pending
        ApprovalRecord in the same transaction as the redemption.

        Raises:
            TokenNotFoundError, TokenAlreadyUsedError, TokenExpiredError,
            InvalidTransitionError.
        """
        with self._operation("redeem_confirmation"):
            with self._transaction() as session:
                outcome = self._state_machine(session).confirm(token, source_address)

            client_id = outcome.state.client_id
            approval = outcome.approval
            warnings: list[str] = []
            self._audit(
                warnings,
                SYSTEM_ACTOR_ID,
                AuditAction.TOKEN_REDEEMED,
                WORKFLOW_ENTITY,
                client_id,
                {"source_address": source_address},
            )
            self._audit(
                warnings,
                SYSTEM_ACTOR_ID,
                AuditAction.APPROVAL_REQUESTED,
                APPROVAL_ENTITY,
                approval.id,
                {"client_id": client_id, "validation_checks": approval.validation_checks.to_dict()},
            )
            self._after_commit(
                warnings,
                "pending approval notification",
                lambda: self._notifier.notify_pending_approval(client_id, approval.id),
            )
            return outcome.state

    def resend_confirmation(
        self, client_id: UUID | str, actor_id: UUID | str | None = None,
    ) -> OnboardingWorkflowState:
        """
        Issue and send a fresh confirmation link.

        The previous live token stops working.

        Raises:
            WorkflowNotFoundError, InvalidTransitionError (not awaiting
            confirmation).
        """
        client_id = coerce_uuid(client_id, "client_id")
        actor = coerce_uuid(actor_id, "actor_id") if actor_id is not None else SYSTEM_ACTOR_ID

        with self._operation("resend_confirmation", client_id=client_id, actor_id=actor):
            with self._transaction() as session:
                machine = self._state_machine(session)
                issued = machine.reissue_confirmation(client_id)
                state = machine.get_state(client_id)

            warnings: list[str] = []
            self._after_commit(
                warnings,
                "confirmation link delivery",
                lambda: self._notifier.send_confirmation_link(client_id, issued.token),
            )
            self._audit(
                warnings,
                actor,
                AuditAction.TOKEN_ISSUED,
                WORKFLOW_ENTITY,
                client_id,
                {"purpose": issued.purpose.value, "expires_at": issued.expires_at, "resend": True},
            )
            return state

    # -----------------------------------------------------------------
    # Approval
    # -----------------------------------------------------------------

    def list_pending(
        self,
        status: ApprovalStatus | str = ApprovalStatus.PENDING_APPROVAL,
        page: int = 1,
        limit: int | None = None,
    ) -> ApprovalPage:
        """
        One page of approval records in ``status``, newest first.

        Raises:
            InvalidArgumentError: Unknown status, ``page < 1`` or ``limit``
                outside ``1..max_page_size``.
        """
        if not isinstance(status, ApprovalStatus):
            try:
                status = ApprovalStatus(str(status).upper())
            except ValueError:
                raise InvalidArgumentError(
                    "status", f"must be one of {[s.value for s in ApprovalStatus]}"
                ) from None
        if limit is None:
            limit = self._default_page_size
        if isinstance(page, bool) or not isinstance(page, int) or page < 1:
            raise InvalidArgumentError("page", "must be an integer >= 1")
        if (
            isinstance(limit, bool)
            or not isinstance(limit, int)
            or not 1 <= limit <= self._max_page_size
        ):
            raise InvalidArgumentError(
                "limit", f"must be an integer between 1 and {self._max_page_size}"
            )

        with self._operation("list_pending"):
            with self._transaction() as session:
                return ApprovalSelector(session).list_by_status(status, page, limit)

    def decide(
        self,
        client_id: UUID | str,
        outcome: DecisionOutcome | str,
        actor_id: UUID | str,
        notes: str | None = None,
        rejection_reason: str | None = None,
    ) -> ApprovalRecord:
        """
        Approve or reject a pending client.

        Raises:
            InvalidArgumentError: Unknown outcome, REJECT without a reason.
            ApprovalNotFoundError: Nothing pending for the client,
                including when another reviewer decided first.
            ConcurrencyConflictError: A concurrent reviewer won the race.
        """
        client_id = coerce_uuid(client_id, "client_id")
        actor = coerce_uuid(actor_id, "actor_id")
        outcome = coerce_outcome(outcome)

        with self._operation("decide", client_id=client_id, actor_id=actor):
            with self._transaction() as session:
                record = self._approval_engine(session).decide(
                    client_id,
                    outcome,
                    actor,
                    notes=notes,
                    rejection_reason=rejection_reason,
                )
                state = WorkflowSelector(session).get(client_id)

            self._after_decision(record, state.current_step)
            return record

    def decide_bulk(
        self, items: Sequence[DecisionItem | Mapping[str, Any]],
    ) -> list[BulkDecisionResult]:
        """
        Decide many clients independently.

        Returns one result per item in input order; an item that fails
        (malformed, not pending) reports its error without affecting the
        others.

        Raises:
            BatchSizeExceededError: More items than ``max_bulk_items``.
        """
        items = list(items)
        with self._operation("decide_bulk"):
            if not items:
                return []

            with self._transaction() as session:
                results = self._approval_engine(session).decide_bulk(items)
                succeeded = [r for r in results if r.succeeded]
                steps = {
                    r.client_id: WorkflowSelector(session).get(r.client_id).current_step
                    for r in succeeded
                }

            for result in succeeded:
                self._after_decision(result.record, steps[result.client_id])
            return results

    def _after_decision(self, record: ApprovalRecord, step: OnboardingStep) -> None:
        warnings: list[str] = []
        reviewer = record.reviewer_id or SYSTEM_ACTOR_ID
        action = (
            AuditAction.APPROVAL_GRANTED
            if record.status is ApprovalStatus.APPROVED
            else AuditAction.APPROVAL_REJECTED
        )
        self._audit(
            warnings,
            reviewer,
            action,
            APPROVAL_ENTITY,
            record.id,
            {
                "client_id": record.client_id,
                "notes": record.notes,
                "rejection_reason": record.rejection_reason,
            },
        )
        if step is OnboardingStep.ACTIVE:
            self._audit(
                warnings, reviewer, AuditAction.CLIENT_ACTIVATED,
                WORKFLOW_ENTITY, record.client_id,
            )
        self._after_commit(
            warnings,
            "decision notice",
            lambda: self._notifier.send_decision_notice(
                record.client_id, record.status, record.rejection_reason or record.notes,
            ),
        )

    def activate(
        self, client_id: UUID | str, actor_id: UUID | str,
    ) -> OnboardingWorkflowState:
        """
        APPROVED -> ACTIVE, for deployments without auto-activation.

        Raises:
            WorkflowNotFoundError, InvalidTransitionError.
        """
        client_id = coerce_uuid(client_id, "client_id")
        actor = coerce_uuid(actor_id, "actor_id")

        with self._operation("activate", client_id=client_id, actor_id=actor):
            with self._transaction() as session:
                state = self._approval_engine(session).activate(client_id, actor)

            self._audit([], actor, AuditAction.CLIENT_ACTIVATED, WORKFLOW_ENTITY, client_id)
            return state

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    def get_workflow_state(self, client_id: UUID | str) -> OnboardingWorkflowState:
        """
        Raises:
            WorkflowNotFoundError: The client never submitted.
        """
        client_id = coerce_uuid(client_id, "client_id")
        with self._operation("get_workflow_state", client_id=client_id):
            with self._transaction() as session:
                return WorkflowSelector(session).get(client_id)

    def audit_trail(self, client_id: UUID | str) -> tuple[AuditTraceEntry, ...]:
        """Audit entries for a client and its approval record, oldest first."""
        client_id = coerce_uuid(client_id, "client_id")
        if self._audit_sink is None:
            return ()
        with self._operation("audit_trail", client_id=client_id):
            with self._transaction() as session:
                approval = ApprovalSelector(session).find_for_client(client_id)
            entity_ids = [client_id] + ([approval.id] if approval is not None else [])
            return self._audit_sink.trail(entity_ids)

    # -----------------------------------------------------------------
    # Identifier validation
    # -----------------------------------------------------------------

    def validate_identifier(
        self, kind: IdentifierKind | str, identifier: str,
    ) -> ValidationResult:
        """
        Validate one identifier against its registry, through the cache.

        Raises:
            IdentifierFormatError: Malformed identifier (no registry call).
            InvalidArgumentError: Unknown kind.
        """
        cache = self._cache_for(kind)
        with self._operation("validate_identifier"):
            return cache.lookup(identifier)

    def validate_identifiers(
        self, kind: IdentifierKind | str, identifiers: Iterable[str],
    ) -> dict[str, ValidationResult]:
        """
        Validate several identifiers of one kind.

        Raises:
            BatchSizeExceededError: More than the registry's batch cap.
            IdentifierFormatError: Any identifier is malformed.
            InvalidArgumentError: Unknown kind, or a single string instead
                of a collection.
        """
        cache = self._cache_for(kind)
        with self._operation("validate_identifiers"):
            return cache.lookup_many(identifiers)

    def cache_stats(self) -> dict[str, CacheStats]:
        return {kind.value: cache.stats() for kind, cache in self._caches.items()}

    def clear_cache(self, kind: IdentifierKind | str | None = None) -> int:
        if kind is None:
            return sum(cache.clear() for cache in self._caches.values())
        return self._cache_for(kind).clear()

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    def close(self) -> None:
        if self.sweeper is not None:
            self.sweeper.stop()
        for cache in self._caches.values():
            cache.client.close()


__all__ = [
    "OnboardingPipeline",
    "SYSTEM_ACTOR_ID",
]
