"""CRM-side records that workflow actions read and write."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class Contact(BaseModel):
    __tablename__ = "contacts"

    organization_id: Mapped[str] = mapped_column(nullable=False, index=True)
    company_id: Mapped[str] = mapped_column(nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(default="")
    last_name: Mapped[str] = mapped_column(default="")
    email: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    phone: Mapped[Optional[str]] = mapped_column(nullable=True)
    job_title: Mapped[Optional[str]] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(default="active")
    # Columns not modelled above land here
    custom_fields: Mapped[dict] = mapped_column(JSON, default=dict)


class ContactTag(BaseModel):
    __tablename__ = "contact_tags"
    __table_args__ = (UniqueConstraint("contact_id", "tag_name", name="uq_contact_tags"),)

    contact_id: Mapped[str] = mapped_column(
        ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tag_name: Mapped[str] = mapped_column(nullable=False)


class CompanyTag(BaseModel):
    __tablename__ = "company_tags"
    __table_args__ = (UniqueConstraint("company_id", "tag_name", name="uq_company_tags"),)

    company_id: Mapped[str] = mapped_column(nullable=False, index=True)
    tag_name: Mapped[str] = mapped_column(nullable=False)


class Opportunity(BaseModel):
    __tablename__ = "opportunities"

    organization_id: Mapped[str] = mapped_column(nullable=False, index=True)
    company_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    name: Mapped[str] = mapped_column(default="")
    stage: Mapped[Optional[str]] = mapped_column(nullable=True)
    status: Mapped[Optional[str]] = mapped_column(nullable=True)
    value: Mapped[Optional[float]] = mapped_column(nullable=True)
    probability: Mapped[Optional[int]] = mapped_column(nullable=True)
    owner_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    custom_fields: Mapped[dict] = mapped_column(JSON, default=dict)


class Project(BaseModel):
    __tablename__ = "projects"

    organization_id: Mapped[str] = mapped_column(nullable=False, index=True)
    company_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    template_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    name: Mapped[str] = mapped_column(nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(default="idea")
    source: Mapped[str] = mapped_column(default="Manual")
    created_by_id: Mapped[Optional[str]] = mapped_column(nullable=True)


class ProjectTemplate(BaseModel):
    __tablename__ = "project_templates"

    organization_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    name: Mapped[str] = mapped_column(nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class TemplatePhase(BaseModel):
    __tablename__ = "template_phases"

    template_id: Mapped[str] = mapped_column(
        ForeignKey("project_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    phase_number: Mapped[int] = mapped_column(nullable=False)
    phase_name: Mapped[str] = mapped_column(default="")
    default_data: Mapped[dict] = mapped_column(JSON, default=dict)


class ProjectPhase(BaseModel):
    __tablename__ = "project_phases"

    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    phase_number: Mapped[int] = mapped_column(nullable=False)
    data: Mapped[dict] = mapped_column(JSON, default=dict)
    completed: Mapped[bool] = mapped_column(default=False)


class Task(BaseModel):
    __tablename__ = "tasks"

    organization_id: Mapped[str] = mapped_column(nullable=False, index=True)
    project_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    title: Mapped[str] = mapped_column(nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(default="todo")
    priority: Mapped[str] = mapped_column(default="medium")
    assignee_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    created_by_id: Mapped[Optional[str]] = mapped_column(nullable=True)


class ActivityFeedEntry(BaseModel):
    __tablename__ = "activity_feed"

    organization_id: Mapped[str] = mapped_column(nullable=False, index=True)
    company_id: Mapped[str] = mapped_column(nullable=False, index=True)
    entity_type: Mapped[Optional[str]] = mapped_column(nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    event_type: Mapped[str] = mapped_column(default="workflow_action")
    message: Mapped[str] = mapped_column(Text, default="")
    details: Mapped[dict] = mapped_column(JSON, default=dict)
