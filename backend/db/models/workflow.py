"""Workflow definition model."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import TriggerType
from db.base import BaseModel


class Workflow(BaseModel):
    """An automation definition owned by an organization.

    Attributes:
        id: Unique identifier (UUID string)
        organization_id: Owning organization
        name: Human readable name
        description: Optional free text
        trigger_type: event, schedule, webhook or manual
        trigger_config: Payload matching trigger_type
        is_active: Only active workflows are picked up by triggers
        created_by_id: User who created the workflow
    """

    __tablename__ = "workflows"

    organization_id: Mapped[str] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(nullable=False)
    description: Mapped[Optional[str]] = mapped_column(nullable=True)
    trigger_type: Mapped[str] = mapped_column(
        default=TriggerType.EVENT.value, index=True
    )
    trigger_config: Mapped[dict] = mapped_column(JSON, default=dict)
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    created_by_id: Mapped[Optional[str]] = mapped_column(nullable=True)

    steps: Mapped[list["WorkflowStep"]] = relationship(
        "WorkflowStep",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowStep.step_order",
        lazy="selectin",
    )
    runs: Mapped[list["WorkflowRun"]] = relationship(
        "WorkflowRun",
        back_populates="workflow",
        cascade="all, delete-orphan",
        lazy="noload",
    )
