"""
Outbound notifications.

Delivery is an external collaborator. The pipeline calls the notifier
after its transaction has committed; a delivery failure never rolls
anything back (a confirmation token stays valid for a manual resend).
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from onboarding_kernel.domain.approval import ApprovalStatus
from onboarding_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class Notifier(Protocol):
    def send_confirmation_link(self, client_id: UUID, token: str) -> None: ...

    def notify_pending_approval(self, client_id: UUID, approval_id: UUID) -> None: ...

    def send_decision_notice(
        self, client_id: UUID, status: ApprovalStatus, message: str | None,
    ) -> None: ...


class LoggingNotifier:
    """Notifier that records deliveries in the structured log only.

    Used where no mail gateway is wired in. The token itself is never
    logged.
    """

    def send_confirmation_link(self, client_id: UUID, token: str) -> None:
        logger.info(
            "confirmation_link_sent",
            extra={"client_id": str(client_id), "token_length": len(token)},
        )

    def notify_pending_approval(self, client_id: UUID, approval_id: UUID) -> None:
        logger.info(
            "pending_approval_notified",
            extra={"client_id": str(client_id), "approval_id": str(approval_id)},
        )

    def send_decision_notice(
        self, client_id: UUID, status: ApprovalStatus, message: str | None,
    ) -> None:
        logger.info(
            "decision_notice_sent",
            extra={"client_id": str(client_id), "status": status.value},
        )
