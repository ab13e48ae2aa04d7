"""Read-only queries over approval records."""

from uuid import UUID

from sqlalchemy import func, select

from onboarding_kernel.domain.approval import ApprovalPage, ApprovalRecord, ApprovalStatus
from onboarding_kernel.models.approval import ApprovalRecordModel
from onboarding_kernel.selectors.base import BaseSelector


class ApprovalSelector(BaseSelector):
    def list_by_status(
        self,
        status: ApprovalStatus,
        page: int,
        limit: int,
    ) -> ApprovalPage:
        """One page of records in ``status``, newest request first.

        Preconditions: page >= 1 and limit >= 1 (validated by the caller).
        """
        total = self.session.execute(
            select(func.count(ApprovalRecordModel.id)).where(
                ApprovalRecordModel.status == status.value
            )
        ).scalar_one()

        models = self.session.execute(
            select(ApprovalRecordModel)
            .where(ApprovalRecordModel.status == status.value)
            .order_by(
                ApprovalRecordModel.requested_at.desc(),
                ApprovalRecordModel.id,
            )
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()

        return ApprovalPage(
            records=tuple(m.to_dto() for m in models),
            total=total,
            page=page,
            limit=limit,
        )

    def find_for_client(self, client_id: UUID) -> ApprovalRecord | None:
        model = self.session.execute(
            select(ApprovalRecordModel).where(ApprovalRecordModel.client_id == client_id)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None
