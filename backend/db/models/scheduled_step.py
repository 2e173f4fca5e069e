"""Delay wake-up rows consumed by the resume sweep."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import ScheduledStepStatus
from db.base import BaseModel


class WorkflowScheduledStep(BaseModel):
    """A paused run waiting for ``execute_at``.

    ``context`` is the frozen run context captured when the delay step ran.
    Status moves pending -> executed or pending -> cancelled, never back.
    """

    __tablename__ = "workflow_scheduled_steps"
    __table_args__ = (
        Index("ix_scheduled_steps_status_execute_at", "status", "execute_at"),
    )

    run_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_order: Mapped[int] = mapped_column(nullable=False)
    execute_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    context: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(default=ScheduledStepStatus.PENDING.value)
