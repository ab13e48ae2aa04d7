"""Read-only queries over onboarding workflows."""

from uuid import UUID

from sqlalchemy import select

from onboarding_kernel.domain.workflow import OnboardingWorkflowState
from onboarding_kernel.exceptions import WorkflowNotFoundError
from onboarding_kernel.models.workflow_state import OnboardingWorkflowModel
from onboarding_kernel.selectors.base import BaseSelector


class WorkflowSelector(BaseSelector):
    def find(self, client_id: UUID) -> OnboardingWorkflowState | None:
        model = self.session.execute(
            select(OnboardingWorkflowModel).where(
                OnboardingWorkflowModel.client_id == client_id
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def get(self, client_id: UUID) -> OnboardingWorkflowState:
        """
        Raises:
            WorkflowNotFoundError: No workflow for the client.
        """
        state = self.find(client_id)
        if state is None:
            raise WorkflowNotFoundError(str(client_id))
        return state
