"""End-to-end onboarding through OnboardingPipeline."""

from uuid import uuid4

import pytest

from onboarding_kernel.db.engine import session_scope
from onboarding_kernel.domain.approval import ApprovalStatus, BulkItemStatus, DecisionOutcome
from onboarding_kernel.domain.validation import RegistryStatus, ResultSource
from onboarding_kernel.domain.workflow import OnboardingStep, WorkflowEvent
from onboarding_kernel.exceptions import (
    ApprovalNotFoundError,
    IdentifierFormatError,
    IdentifierNotRegisteredError,
    InvalidArgumentError,
    InvalidTransitionError,
    RegistryTimeoutError,
    TokenAlreadyUsedError,
    TokenSupersededError,
    WorkflowNotFoundError,
)
from onboarding_kernel.models.audit_event import AuditAction
from onboarding_kernel.services.state_machine import OnboardingStateMachine
from tests.conftest import COMPANY_NUMBER, TAX_NUMBER, TEST_ACTOR_ID

REVIEWER = uuid4()
IDENTIFIERS = {"company": COMPANY_NUMBER, "tax": TAX_NUMBER}


class TestHappyPath:
    def test_submission_to_active(self, pipeline, notifier):
        client_id = uuid4()

        submitted = pipeline.submit_for_verification(client_id, IDENTIFIERS, TEST_ACTOR_ID)
        assert submitted.passed
        assert submitted.warnings == ()
        assert submitted.workflow_state.current_step is OnboardingStep.AWAITING_CONFIRMATION
        assert notifier.links[0][0] == client_id

        state = pipeline.redeem_confirmation(notifier.last_token(client_id), "198.51.100.7")
        assert state.current_step is OnboardingStep.PENDING_APPROVAL
        assert notifier.pending[0][0] == client_id

        record = pipeline.decide(client_id, DecisionOutcome.APPROVE, REVIEWER, notes="all good")
        assert record.status is ApprovalStatus.APPROVED
        assert notifier.decisions == [(client_id, "APPROVED", "all good")]

        final = pipeline.get_workflow_state(client_id)
        assert final.current_step is OnboardingStep.ACTIVE
        assert [h.step for h in final.step_history] == [
            OnboardingStep.SUBMITTED,
            OnboardingStep.VERIFICATION,
            OnboardingStep.AWAITING_CONFIRMATION,
            OnboardingStep.PENDING_APPROVAL,
            OnboardingStep.APPROVED,
            OnboardingStep.ACTIVE,
        ]
        assert final.last_validation.company.normalized_name == "Client 12345678 B.V."
        assert final.last_validation.tax.identifier == TAX_NUMBER

    def test_string_ids_are_accepted(self, pipeline):
        client_id = uuid4()
        result = pipeline.submit_for_verification(str(client_id), IDENTIFIERS, str(TEST_ACTOR_ID))
        assert result.workflow_state.client_id == client_id

    def test_audit_trail_is_chained(self, pipeline, pending_client, audit_sink):
        client_id = pending_client()
        pipeline.decide(client_id, "APPROVE", REVIEWER)

        trail = pipeline.audit_trail(client_id)

        assert [e.action for e in trail] == [
            AuditAction.VALIDATION_COMPLETED,
            AuditAction.TOKEN_ISSUED,
            AuditAction.TOKEN_REDEEMED,
            AuditAction.APPROVAL_REQUESTED,
            AuditAction.APPROVAL_GRANTED,
            AuditAction.CLIENT_ACTIVATED,
        ]
        assert [e.seq for e in trail] == sorted(e.seq for e in trail)
        assert audit_sink.validate_chain()

    def test_token_is_never_logged(self, pipeline, notifier, captured_logs):
        client_id = uuid4()
        pipeline.submit_for_verification(client_id, IDENTIFIERS)
        token = notifier.last_token(client_id)

        assert all(token not in str(record) for record in captured_logs())

    def test_operation_context_is_logged(self, pipeline, captured_logs):
        client_id = uuid4()
        pipeline.submit_for_verification(client_id, IDENTIFIERS, TEST_ACTOR_ID)

        transitions = [r for r in captured_logs() if r["message"] == "workflow_transitioned"]
        assert transitions
        assert all(r["operation"] == "submit_for_verification" for r in transitions)
        assert all(r["client_id"] == str(client_id) for r in transitions)
        assert len({r["correlation_id"] for r in transitions}) == 1


class TestSubmission:
    def test_malformed_identifier_writes_nothing(self, pipeline, company_client, tax_client):
        client_id = uuid4()

        with pytest.raises(IdentifierFormatError):
            pipeline.submit_for_verification(client_id, {"company": "12AB", "tax": TAX_NUMBER})

        assert company_client.call_count == 0
        assert tax_client.call_count == 0
        with pytest.raises(WorkflowNotFoundError):
            pipeline.get_workflow_state(client_id)

    @pytest.mark.parametrize("identifiers", [{}, {"company": None, "tax": "  "}])
    def test_requires_an_identifier(self, pipeline, identifiers):
        with pytest.raises(InvalidArgumentError):
            pipeline.submit_for_verification(uuid4(), identifiers)

    def test_unregistered_company_returns_to_submitted(self, pipeline, company_client, notifier):
        company_client.errors[COMPANY_NUMBER] = IdentifierNotRegisteredError(
            "company_registry", COMPANY_NUMBER, "not found in registry"
        )
        client_id = uuid4()

        result = pipeline.submit_for_verification(client_id, IDENTIFIERS)

        assert not result.passed
        assert result.validation_errors == ("company: not found in registry",)
        assert result.workflow_state.current_step is OnboardingStep.SUBMITTED
        assert notifier.links == []

    def test_resubmission_after_failure(self, pipeline, company_client):
        client_id = uuid4()
        company_client.errors[COMPANY_NUMBER] = IdentifierNotRegisteredError(
            "company_registry", COMPANY_NUMBER, "not found in registry"
        )
        pipeline.submit_for_verification(client_id, IDENTIFIERS)

        result = pipeline.submit_for_verification(client_id, {"company": "87654321", "tax": TAX_NUMBER})

        assert result.passed
        assert result.workflow_state.current_step is OnboardingStep.AWAITING_CONFIRMATION

    def test_rejected_tax_number_is_not_carried_into_retry(self, pipeline, tax_client, notifier):
        client_id = uuid4()
        tax_client.errors[TAX_NUMBER] = IdentifierNotRegisteredError(
            "tax_registry", TAX_NUMBER, "not found in registry"
        )
        failed = pipeline.submit_for_verification(client_id, IDENTIFIERS)
        assert not failed.passed
        assert pipeline.get_workflow_state(client_id).last_validation.tax is None

        retried = pipeline.submit_for_verification(client_id, {"company": COMPANY_NUMBER})

        state = retried.workflow_state
        assert state.current_step is OnboardingStep.AWAITING_CONFIRMATION
        assert state.last_validation.company.is_valid
        assert state.last_validation.tax is None

        pipeline.redeem_confirmation(notifier.last_token(client_id))
        checks = pipeline.list_pending().records[0].validation_checks
        assert checks.company_validated
        assert not checks.tax_validated
        assert not checks.requires_manual_review

    def test_registry_outage_proceeds_for_manual_review(self, pipeline, tax_client, notifier):
        tax_client.failure = RegistryTimeoutError("tax_registry", TAX_NUMBER, "no answer within 5s")
        client_id = uuid4()

        result = pipeline.submit_for_verification(client_id, IDENTIFIERS)

        assert result.passed
        assert result.workflow_state.requires_manual_review
        assert any("manual review" in w for w in result.warnings)

        pipeline.redeem_confirmation(notifier.last_token(client_id))
        page = pipeline.list_pending()
        assert page.records[0].validation_checks.requires_manual_review

    def test_submission_after_confirmation_is_rejected(self, pipeline, pending_client):
        client_id = pending_client()
        with pytest.raises(InvalidTransitionError):
            pipeline.submit_for_verification(client_id, IDENTIFIERS)
        assert pipeline.get_workflow_state(client_id).current_step is OnboardingStep.PENDING_APPROVAL

    def test_crashing_lookup_rolls_workflow_back(self, pipeline, company_client):
        company_client.failure = RuntimeError("bug in adapter")
        client_id = uuid4()

        with pytest.raises(RuntimeError):
            pipeline.submit_for_verification(client_id, IDENTIFIERS)

        assert pipeline.get_workflow_state(client_id).current_step is OnboardingStep.SUBMITTED

    def test_failed_revert_keeps_the_lookup_error(
        self, pipeline, company_client, session_factory, deterministic_clock, captured_logs,
    ):
        client_id = uuid4()

        def moved_by_another_writer(identifier):
            with session_scope(session_factory) as session:
                OnboardingStateMachine(session, deterministic_clock).advance(
                    client_id, WorkflowEvent.VALIDATION_FAILED,
                )
            raise RuntimeError("bug in adapter")

        company_client.before_fetch = moved_by_another_writer

        with pytest.raises(RuntimeError, match="bug in adapter"):
            pipeline.submit_for_verification(client_id, IDENTIFIERS)

        messages = [r["message"] for r in captured_logs()]
        assert "verification_revert_failed" in messages
        assert pipeline.get_workflow_state(client_id).current_step is OnboardingStep.SUBMITTED


class TestPostCommitFailures:
    def test_notification_failure_does_not_undo_submission(self, pipeline, notifier, captured_logs):
        notifier.fail = True
        client_id = uuid4()

        result = pipeline.submit_for_verification(client_id, IDENTIFIERS)

        assert result.workflow_state.current_step is OnboardingStep.AWAITING_CONFIRMATION
        assert any("confirmation link delivery failed" in w for w in result.warnings)
        assert any(r["message"] == "post_commit_action_failed" for r in captured_logs())

    def test_link_can_be_resent(self, pipeline, notifier):
        notifier.fail = True
        client_id = uuid4()
        pipeline.submit_for_verification(client_id, IDENTIFIERS)
        notifier.fail = False

        state = pipeline.resend_confirmation(client_id, TEST_ACTOR_ID)

        assert state.current_step is OnboardingStep.AWAITING_CONFIRMATION
        assert pipeline.redeem_confirmation(notifier.last_token(client_id)).current_step is (
            OnboardingStep.PENDING_APPROVAL
        )

    def test_resend_invalidates_previous_link(self, pipeline, notifier):
        client_id = uuid4()
        pipeline.submit_for_verification(client_id, IDENTIFIERS)
        old = notifier.last_token(client_id)
        pipeline.resend_confirmation(client_id)

        with pytest.raises(TokenSupersededError):
            pipeline.redeem_confirmation(old)

    def test_decision_notice_failure_keeps_decision(self, pipeline, pending_client, notifier):
        client_id = pending_client()
        notifier.fail = True

        record = pipeline.decide(client_id, "REJECT", REVIEWER, rejection_reason="incomplete")

        assert record.status is ApprovalStatus.REJECTED
        assert pipeline.get_workflow_state(client_id).current_step is OnboardingStep.REJECTED


class TestConfirmation:
    def test_second_redemption_is_already_used(self, pipeline, notifier):
        client_id = uuid4()
        pipeline.submit_for_verification(client_id, IDENTIFIERS)
        token = notifier.last_token(client_id)
        pipeline.redeem_confirmation(token)

        with pytest.raises(TokenAlreadyUsedError):
            pipeline.redeem_confirmation(token)
        assert len(pipeline.list_pending().records) == 1


class TestApprovals:
    def test_bulk_with_one_not_pending(self, pipeline, pending_client):
        first, third = pending_client(), pending_client()

        results = pipeline.decide_bulk([
            {"client_id": first, "outcome": "APPROVE", "actor_id": REVIEWER},
            {"client_id": uuid4(), "outcome": "APPROVE", "actor_id": REVIEWER},
            {"client_id": third, "outcome": "REJECT", "actor_id": REVIEWER, "rejection_reason": "risk"},
        ])

        assert [r.status for r in results] == [
            BulkItemStatus.SUCCESS, BulkItemStatus.ERROR, BulkItemStatus.SUCCESS,
        ]
        assert results[1].error_code == "APPROVAL_NOT_FOUND"
        assert pipeline.get_workflow_state(first).current_step is OnboardingStep.ACTIVE
        assert pipeline.get_workflow_state(third).current_step is OnboardingStep.REJECTED

    def test_empty_bulk(self, pipeline):
        assert pipeline.decide_bulk([]) == []

    def test_list_pending_pages_newest_first(self, pipeline, pending_client, deterministic_clock):
        created = []
        for _ in range(3):
            created.append(pending_client())
            deterministic_clock.advance(60)

        first = pipeline.list_pending(page=1, limit=2)
        second = pipeline.list_pending("pending_approval", page=2, limit=2)

        assert (first.total, first.pages) == (3, 2)
        assert [r.client_id for r in first.records] == [created[2], created[1]]
        assert [r.client_id for r in second.records] == [created[0]]

    def test_list_by_decided_status(self, pipeline, pending_client):
        client_id = pending_client()
        pipeline.decide(client_id, "REJECT", REVIEWER, rejection_reason="risk")

        assert pipeline.list_pending().total == 0
        rejected = pipeline.list_pending(ApprovalStatus.REJECTED)
        assert rejected.records[0].rejection_reason == "risk"

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"page": 0}, "page"),
            ({"limit": 0}, "limit"),
            ({"limit": 101}, "limit"),
            ({"status": "LOST"}, "status"),
        ],
    )
    def test_list_pending_validates_arguments(self, pipeline, kwargs, field):
        with pytest.raises(InvalidArgumentError) as exc_info:
            pipeline.list_pending(**kwargs)
        assert exc_info.value.field == field

    def test_decide_without_pending_record(self, pipeline):
        with pytest.raises(ApprovalNotFoundError):
            pipeline.decide(uuid4(), "APPROVE", REVIEWER)

    def test_manual_activation(self, session_factory, company_cache, tax_cache, deterministic_clock, notifier):
        from onboarding_services.pipeline import OnboardingPipeline

        pipeline = OnboardingPipeline(
            session_factory, company_cache, tax_cache,
            clock=deterministic_clock, notifier=notifier, auto_activate=False,
        )
        client_id = uuid4()
        pipeline.submit_for_verification(client_id, IDENTIFIERS)
        pipeline.redeem_confirmation(notifier.last_token(client_id))
        pipeline.decide(client_id, "APPROVE", REVIEWER)
        assert pipeline.get_workflow_state(client_id).current_step is OnboardingStep.APPROVED

        assert pipeline.activate(client_id, REVIEWER).current_step is OnboardingStep.ACTIVE
        assert pipeline.audit_trail(client_id) == ()


class TestIdentifierValidation:
    def test_validate_identifier_uses_cache(self, pipeline, company_client):
        first = pipeline.validate_identifier("company", "1234 5678")
        second = pipeline.validate_identifier("company", COMPANY_NUMBER)

        assert first.source is ResultSource.REGISTRY
        assert second.source is ResultSource.CACHE
        assert company_client.call_count == 1

        stats = pipeline.cache_stats()
        assert set(stats) == {"company", "tax"}
        assert (stats["company"].hits, stats["company"].registry_calls) == (1, 1)
        assert stats["tax"].total == 0

    def test_fallback_result(self, pipeline, tax_client):
        tax_client.failure = RegistryTimeoutError("tax_registry", TAX_NUMBER, "slow")

        result = pipeline.validate_identifier("tax", TAX_NUMBER)

        assert result.status is RegistryStatus.UNKNOWN
        assert result.error

    def test_validate_identifiers(self, pipeline):
        results = pipeline.validate_identifiers("tax", [TAX_NUMBER, "DE123456789"])
        assert all(r.is_valid for r in results.values())

    def test_single_string_is_not_split_into_characters(self, pipeline, company_client):
        with pytest.raises(InvalidArgumentError) as exc_info:
            pipeline.validate_identifiers("company", COMPANY_NUMBER)

        assert exc_info.value.field == "identifiers"
        assert company_client.call_count == 0

    def test_unknown_kind(self, pipeline):
        with pytest.raises(InvalidArgumentError):
            pipeline.validate_identifier("passport", "X123")

    def test_clear_cache(self, pipeline):
        pipeline.validate_identifier("company", COMPANY_NUMBER)
        pipeline.validate_identifier("tax", TAX_NUMBER)
        assert pipeline.clear_cache() == 2
        assert pipeline.cache_stats()["company"].size == 0

    def test_close_releases_clients(self, pipeline, company_client, tax_client):
        pipeline.close()
        assert company_client.closed and tax_client.closed
