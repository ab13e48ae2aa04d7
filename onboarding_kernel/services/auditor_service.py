"""
AuditorService -- tamper-evident audit trail for onboarding actions.

Responsibility:
    Appends hash-chained ``AuditEvent`` rows and validates the chain.

Architecture position:
    Kernel > Services. Flushes only; the caller commits.

Invariants enforced:
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
    - seq is strictly increasing; a concurrent writer allocating the same
      seq fails on the UNIQUE constraint instead of forking the chain.

Failure modes:
    - AuditChainBrokenError from validate_chain() on any mismatch.
    - IntegrityError on a concurrent seq race.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from onboarding_kernel.domain.clock import Clock, SystemClock
from onboarding_kernel.exceptions import AuditChainBrokenError
from onboarding_kernel.logging_config import get_logger
from onboarding_kernel.models.audit_event import AuditAction, AuditEvent
from onboarding_kernel.utils.hashing import hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    entity_type: str
    entity_id: UUID
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def _get_last_event(self) -> AuditEvent | None:
        return self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def record(
        self,
        actor_id: UUID,
        action: AuditAction,
        entity_type: str,
        entity_id: UUID,
        context: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Append an audit event linked to the previous one.

        Postconditions:
            - A new ``AuditEvent`` row is flushed with ``seq`` one greater
              than the previous event and a valid hash chain link.
        """
        last = self._get_last_event()
        seq = (last.seq if last else 0) + 1
        prev_hash = last.hash if last else None

        payload_data = to_json_safe(context or {})
        computed_payload_hash = hash_payload(payload_data)
        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return audit_event

    def trail_for(self, entity_ids: list[UUID]) -> tuple[AuditTraceEntry, ...]:
        """Audit entries touching any of ``entity_ids``, in chain order."""
        if not entity_ids:
            return ()
        events = self._session.execute(
            select(AuditEvent)
            .where(AuditEvent.entity_id.in_(entity_ids))
            .order_by(AuditEvent.seq)
        ).scalars().all()
        return tuple(
            AuditTraceEntry(
                seq=e.seq,
                entity_type=e.entity_type,
                entity_id=e.entity_id,
                action=AuditAction(e.action),
                occurred_at=e.occurred_at,
                actor_id=e.actor_id,
                payload=e.payload or {},
                hash=e.hash,
            )
            for e in events
        )

    def count(self) -> int:
        return self._session.execute(select(func.count(AuditEvent.id))).scalar_one()

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        prev_hash: str | None = None
        for event in events:
            if event.prev_hash != prev_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"audit_event_id": str(event.id), "seq": event.seq},
                )
                raise AuditChainBrokenError(
                    str(event.id), str(prev_hash), str(event.prev_hash),
                )

            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=event.action,
                payload_hash=hash_payload(event.payload or {}),
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"audit_event_id": str(event.id), "seq": event.seq},
                )
                raise AuditChainBrokenError(str(event.id), expected_hash, event.hash)
            prev_hash = event.hash

        return True
