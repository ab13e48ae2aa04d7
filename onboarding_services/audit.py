"""
Audit sink.

The pipeline records audit entries after the primary transaction has
committed, through an ``AuditSink``. Recording is fire-and-forget from
the pipeline's point of view: the pipeline logs a failure as a warning
and carries on.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from onboarding_kernel.db.engine import session_scope
from onboarding_kernel.domain.clock import Clock
from onboarding_kernel.models.audit_event import AuditAction
from onboarding_kernel.services.auditor_service import AuditorService, AuditTraceEntry


class AuditSink(Protocol):
    def record(
        self,
        actor_id: UUID,
        action: AuditAction,
        entity_type: str,
        entity_id: UUID,
        context: dict[str, Any] | None = None,
    ) -> None: ...

    def trail(self, entity_ids: list[UUID]) -> tuple[AuditTraceEntry, ...]: ...


class SessionAuditSink:
    """Writes hash-chained audit events in their own short transaction."""

    def __init__(self, session_factory: Callable[[], Session], clock: Clock):
        self._session_factory = session_factory
        self._clock = clock

    def record(
        self,
        actor_id: UUID,
        action: AuditAction,
        entity_type: str,
        entity_id: UUID,
        context: dict[str, Any] | None = None,
    ) -> None:
        with session_scope(self._session_factory) as session:
            AuditorService(session, self._clock).record(
                actor_id, action, entity_type, entity_id, context,
            )

    def trail(self, entity_ids: list[UUID]) -> tuple[AuditTraceEntry, ...]:
        with session_scope(self._session_factory) as session:
            return AuditorService(session, self._clock).trail_for(entity_ids)

    def validate_chain(self) -> bool:
        with session_scope(self._session_factory) as session:
            return AuditorService(session, self._clock).validate_chain()
