"""Workflow run and per-step log models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import RunStatus, RunStepStatus
from db.base import BaseModel


class WorkflowRun(BaseModel):
    """One execution attempt of a workflow.

    All resumable state lives here plus in WorkflowScheduledStep:
    ``current_step`` indexes the step list sorted by step_order and
    ``context`` holds the serialized run context.
    """

    __tablename__ = "workflow_runs"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    workflow_name: Mapped[str] = mapped_column(default="")
    organization_id: Mapped[str] = mapped_column(nullable=False, index=True)
    trigger_type: Mapped[str] = mapped_column(nullable=False)
    trigger_data: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(default=RunStatus.RUNNING.value, index=True)
    current_step: Mapped[int] = mapped_column(default=0)
    context: Mapped[dict] = mapped_column(JSON, default=dict)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="runs", lazy="noload"
    )
    step_logs: Mapped[list["WorkflowRunStep"]] = relationship(
        "WorkflowRunStep",
        back_populates="run",
        cascade="all, delete-orphan",
        lazy="noload",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            RunStatus.COMPLETED.value,
            RunStatus.FAILED.value,
            RunStatus.CANCELLED.value,
        )


class WorkflowRunStep(BaseModel):
    """Audit row for one step attempt; a new row per attempt."""

    __tablename__ = "workflow_run_steps"

    run_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    step_order: Mapped[int] = mapped_column(nullable=False)
    step_type: Mapped[str] = mapped_column(nullable=False)
    action_type: Mapped[Optional[str]] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(default=RunStepStatus.RUNNING.value)
    input_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    output_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    run: Mapped["WorkflowRun"] = relationship(
        "WorkflowRun", back_populates="step_logs", lazy="noload"
    )
