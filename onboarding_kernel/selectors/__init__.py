"""Read-only selectors."""

from onboarding_kernel.selectors.approval_selector import ApprovalSelector
from onboarding_kernel.selectors.base import BaseSelector
from onboarding_kernel.selectors.workflow_selector import WorkflowSelector

__all__ = ["ApprovalSelector", "BaseSelector", "WorkflowSelector"]
