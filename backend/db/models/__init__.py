"""Database models for the workflow automation engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.workflow import Workflow
from db.models.workflow_step import WorkflowStep
from db.models.workflow_run import WorkflowRun, WorkflowRunStep
from db.models.scheduled_step import WorkflowScheduledStep
from db.models.crm import (
    ActivityFeedEntry,
    CompanyTag,
    Contact,
    ContactTag,
    Opportunity,
    Project,
    ProjectPhase,
    ProjectTemplate,
    Task,
    TemplatePhase,
)
from db.models.notification import (
    Notification,
    NotificationPreference,
    PushDevice,
    SlackIntegration,
)

__all__ = [
    "Workflow",
    "WorkflowStep",
    "WorkflowRun",
    "WorkflowRunStep",
    "WorkflowScheduledStep",
    "Contact",
    "ContactTag",
    "CompanyTag",
    "Opportunity",
    "Project",
    "ProjectTemplate",
    "TemplatePhase",
    "ProjectPhase",
    "Task",
    "ActivityFeedEntry",
    "Notification",
    "NotificationPreference",
    "PushDevice",
    "SlackIntegration",
]
