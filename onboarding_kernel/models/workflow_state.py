"""
Module: onboarding_kernel.models.workflow_state
Responsibility: ORM persistence for onboarding workflows and their step
    history.
Architecture position: Kernel > Models. May import from db/base.py and
    domain/ only.

Invariants enforced:
    - One workflow per client (UNIQUE client_id).
    - ``version`` is the SQLAlchemy version_id_col: every UPDATE carries
      ``WHERE version = <read version>``, so a concurrent writer that moved
      the step first makes this flush fail with StaleDataError.
    - Step history rows are append-only and ordered by ``position``.

Failure modes:
    - IntegrityError on a second workflow for the same client.
    - StaleDataError when the compare-and-swap UPDATE matches no row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from onboarding_kernel.db.base import Base, UUIDString
from onboarding_kernel.domain.validation import LastValidation
from onboarding_kernel.domain.workflow import (
    OnboardingStep,
    OnboardingWorkflowState,
    StepHistoryEntry,
    WorkflowEvent,
)


class OnboardingWorkflowModel(Base):
    """Persistent onboarding workflow, one row per client."""

    __tablename__ = "onboarding_workflows"

    __table_args__ = (
        UniqueConstraint("client_id", name="uq_onboarding_workflows_client"),
        Index("ix_onboarding_workflows_step", "current_step"),
    )

    client_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    current_step: Mapped[str] = mapped_column(String(32), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    last_validation: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    history: Mapped[list[StepHistoryModel]] = relationship(
        "StepHistoryModel",
        back_populates="workflow",
        order_by="StepHistoryModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<OnboardingWorkflow client={self.client_id} "
            f"step={self.current_step} v{self.version}>"
        )

    @property
    def step(self) -> OnboardingStep:
        return OnboardingStep(self.current_step)

    def to_dto(self) -> OnboardingWorkflowState:
        """Convert ORM model to frozen domain DTO."""
        return OnboardingWorkflowState(
            client_id=self.client_id,
            current_step=OnboardingStep(self.current_step),
            version=self.version,
            step_history=tuple(h.to_dto() for h in self.history),
            last_validation=LastValidation.from_dict(self.last_validation),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class StepHistoryModel(Base):
    """One entry of a workflow's step history."""

    __tablename__ = "onboarding_step_history"

    __table_args__ = (
        UniqueConstraint("workflow_id", "position", name="uq_step_history_position"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("onboarding_workflows.id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    step: Mapped[str] = mapped_column(String(32), nullable=False)
    event: Mapped[str | None] = mapped_column(String(32), nullable=True)
    entered_at: Mapped[datetime] = mapped_column(nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    workflow: Mapped[OnboardingWorkflowModel] = relationship(
        "OnboardingWorkflowModel", back_populates="history",
    )

    def to_dto(self) -> StepHistoryEntry:
        return StepHistoryEntry(
            step=OnboardingStep(self.step),
            entered_at=self.entered_at,
            actor_id=self.actor_id,
            event=WorkflowEvent(self.event) if self.event else None,
        )
