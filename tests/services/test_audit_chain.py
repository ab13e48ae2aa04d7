"""Hash-chained audit trail."""

from uuid import uuid4

import pytest
from sqlalchemy import select

from onboarding_kernel.exceptions import AuditChainBrokenError
from onboarding_kernel.models.audit_event import AuditAction, AuditEvent
from onboarding_kernel.services.auditor_service import AuditorService


@pytest.fixture
def auditor(session, deterministic_clock) -> AuditorService:
    return AuditorService(session, deterministic_clock)


class TestAuditChain:
    def test_events_link_to_predecessor(self, auditor, test_actor_id):
        client_id = uuid4()
        first = auditor.record(test_actor_id, AuditAction.VALIDATION_COMPLETED, "OnboardingWorkflow", client_id)
        second = auditor.record(
            test_actor_id, AuditAction.VALIDATION_COMPLETED, "OnboardingWorkflow", client_id,
            {"passed": True},
        )

        assert (first.seq, second.seq) == (1, 2)
        assert first.prev_hash is None
        assert second.prev_hash == first.hash
        assert auditor.validate_chain()
        assert auditor.count() == 2

    def test_tampered_payload_breaks_chain(self, auditor, session, test_actor_id):
        client_id = uuid4()
        auditor.record(test_actor_id, AuditAction.APPROVAL_REQUESTED, "ApprovalRecord", client_id, {"a": 1})
        auditor.record(test_actor_id, AuditAction.APPROVAL_GRANTED, "ApprovalRecord", client_id)

        event = session.execute(select(AuditEvent).where(AuditEvent.seq == 1)).scalar_one()
        event.payload = {"a": 2}
        session.flush()

        with pytest.raises(AuditChainBrokenError):
            auditor.validate_chain()

    def test_trail_filters_by_entity(self, auditor, test_actor_id):
        mine, other = uuid4(), uuid4()
        auditor.record(test_actor_id, AuditAction.TOKEN_ISSUED, "OnboardingWorkflow", mine)
        auditor.record(test_actor_id, AuditAction.TOKEN_ISSUED, "OnboardingWorkflow", other)
        auditor.record(test_actor_id, AuditAction.TOKEN_REDEEMED, "OnboardingWorkflow", mine)

        trail = auditor.trail_for([mine])

        assert [e.action for e in trail] == [AuditAction.TOKEN_ISSUED, AuditAction.TOKEN_REDEEMED]
        assert auditor.trail_for([]) == ()
