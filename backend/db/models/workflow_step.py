"""WorkflowStep model."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class WorkflowStep(BaseModel):
    """A single step in a workflow.

    Attributes:
        workflow_id: Parent workflow
        step_order: Position in the default sequence, unique per workflow
        step_type: action, condition, delay or loop
        action_type: Handler tag, action steps only
        name: Optional label
        config: Step-type specific payload
        else_goto_step: step_order to jump to when a condition is false
    """

    __tablename__ = "workflow_steps"
    __table_args__ = (
        UniqueConstraint("workflow_id", "step_order", name="uq_workflow_steps_order"),
    )

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_order: Mapped[int] = mapped_column(nullable=False)
    step_type: Mapped[str] = mapped_column(nullable=False)
    action_type: Mapped[Optional[str]] = mapped_column(nullable=True)
    name: Mapped[Optional[str]] = mapped_column(nullable=True)
    config: Mapped[dict] = mapped_column(JSON, default=dict)
    else_goto_step: Mapped[Optional[int]] = mapped_column(nullable=True)

    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="steps", lazy="noload"
    )
