"""Typed config payloads for each action type.

Models are deliberately lenient about values that can only be judged after
interpolation (an empty recipient, a missing id); handlers turn those into
soft skips or hard failures. Structural problems (wrong types, unknown
enum values, out-of-range numbers) are rejected here.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from core.constants import TagEntityType


class ActionConfig(BaseModel):
    """Base for action configs; unknown keys are ignored."""

    class Config:
        extra = "ignore"


# ─── Communication ─────────────────────────────────────────────

class SendEmailConfig(ActionConfig):
    to: str = Field(default="", description="Recipient address, e.g. {{contact.email}}")
    subject: str = Field(default="", description="Subject line (templated)")
    body_html: str = Field(default="", description="HTML body (templated)")
    body_text: Optional[str] = Field(default=None, description="Plain text body")
    from_name: Optional[str] = Field(default=None, description="Sender name override")


class SendNotificationConfig(ActionConfig):
    user_id: Optional[str] = Field(default=None, description="Explicit user id (templated)")
    user_field: Optional[str] = Field(default=None, description="Context path holding a user id")
    title: str = ""
    message: str = ""
    type: str = "info"
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SendPushConfig(ActionConfig):
    user_id: Optional[str] = None
    user_field: Optional[str] = None
    title: str = ""
    message: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SendSlackConfig(ActionConfig):
    channel: str = Field(default="", description="Channel id or #name (templated)")
    message: str = Field(default="", description="Message text (templated)")
    use_blocks: bool = False
    notify_channel: bool = False
    username: Optional[str] = None
    icon_emoji: Optional[str] = None


# ─── Tasks ─────────────────────────────────────────────────────

TaskStatus = Literal["todo", "in_progress", "done", "archived"]
TaskPriority = Literal["low", "medium", "high", "critical"]


class CreateTaskConfig(ActionConfig):
    project_id: Optional[str] = None
    project_field: Optional[str] = None
    title: str = Field(min_length=1, description="Task title (templated)")
    description: Optional[str] = None
    status: TaskStatus = "todo"
    priority: TaskPriority = "medium"
    assignee_field: Optional[str] = Field(default=None, description="Context path holding the assignee id")
    due_date_offset_days: Optional[int] = Field(default=None, ge=0)
    tags: List[str] = Field(default_factory=list)


class TaskUpdates(BaseModel):
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assignee_id: Optional[str] = None
    assignee_field: Optional[str] = None
    due_date: Optional[str] = None
    due_date_offset_days: Optional[int] = None


class UpdateTaskConfig(ActionConfig):
    task_id: Optional[str] = None
    task_field: Optional[str] = None
    updates: TaskUpdates = Field(default_factory=TaskUpdates)


# ─── Contacts & opportunities ──────────────────────────────────

class CreateContactConfig(ActionConfig):
    company_id: Optional[str] = None
    company_field: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    additional_fields: Dict[str, Any] = Field(default_factory=dict)


class UpdateContactConfig(ActionConfig):
    contact_id: Optional[str] = None
    contact_field: Optional[str] = None
    updates: Dict[str, Any] = Field(default_factory=dict)


class UpdateOpportunityConfig(ActionConfig):
    opportunity_id: Optional[str] = None
    opportunity_field: Optional[str] = None
    updates: Dict[str, Any] = Field(default_factory=dict)


class TagConfig(ActionConfig):
    entity_type: TagEntityType = TagEntityType.CONTACT
    entity_field: str = Field(min_length=1, description="Context path holding the entity id")
    tag_name: str = Field(min_length=1, description="Tag name (templated)")


# ─── Projects ──────────────────────────────────────────────────

class CreateProjectConfig(ActionConfig):
    name: str = Field(min_length=1, description="Project name (templated)")
    description: Optional[str] = None
    company_id: Optional[str] = None
    company_field: Optional[str] = None


class CreateProjectFromTemplateConfig(CreateProjectConfig):
    template_id: Optional[str] = Field(default=None, description="Project template id (templated)")


# ─── Activity ──────────────────────────────────────────────────

class CreateActivityConfig(ActionConfig):
    company_id: Optional[str] = None
    company_field: Optional[str] = None
    message: str = ""
    entity_type: Optional[str] = None
    entity_field: Optional[str] = None
    event_type: str = "workflow_action"


# ─── Integrations ──────────────────────────────────────────────

class WebhookCallConfig(ActionConfig):
    url: str = Field(min_length=1, description="Target URL (templated)")
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    body_template: Optional[str] = Field(default=None, description="JSON body with {{placeholders}}")
    output_field: Optional[str] = None
    timeout_ms: Optional[int] = Field(default=None, gt=0)

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


# ─── AI ────────────────────────────────────────────────────────

class AIGenerateConfig(ActionConfig):
    prompt_template: str = Field(min_length=1)
    output_field: str = "generated"
    structured: bool = False


class AICategorizeConfig(ActionConfig):
    field_to_analyze: str = Field(min_length=1)
    categories: List[str] = Field(min_length=1)
    output_field: str = "category"


class AISummarizeConfig(ActionConfig):
    field_to_summarize: str = Field(min_length=1)
    max_length: int = Field(default=500, gt=0)
    output_field: str = "summary"
