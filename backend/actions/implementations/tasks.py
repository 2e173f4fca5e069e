"""Task actions: create and update project tasks."""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import structlog

from actions.base import ActionServices, BaseAction, resolve_id, skipped
from actions.schemas import CreateTaskConfig, UpdateTaskConfig
from core.constants import ActionType
from core.exceptions import ActionError, StoreError
from core.utils import as_utc, json_safe
from workflow.templating import get_nested_value, interpolate_template

logger = structlog.get_logger(__name__)


def _parse_due_date(value: str, action_type: ActionType) -> datetime:
    try:
        return as_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    except ValueError as e:
        raise ActionError(f"Invalid due_date: {value}", action_type=action_type.value) from e


def _context_user(ctx: Dict[str, Any], path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    value = get_nested_value(ctx, path)
    return value if isinstance(value, str) and value else None


class CreateTaskAction(BaseAction):
    """Create a task, optionally inside a project.

    Config:
        project_id / project_field: Owning project
        title, description: Templated text
        status, priority: Initial values (todo / medium)
        assignee_field: Context path holding the assignee's user id
        due_date_offset_days: Due date relative to now
        tags: Labels stored on the task
    """

    action_type = ActionType.CREATE_TASK
    display_name = "Create Task"
    config_model = CreateTaskConfig

    async def execute(self, config: CreateTaskConfig, ctx: Dict[str, Any], services: ActionServices):
        due_date = None
        if config.due_date_offset_days is not None:
            due_date = services.clock() + timedelta(days=config.due_date_offset_days)

        row = {
            "organization_id": ctx.get("organization_id"),
            "project_id": resolve_id(config.project_id, config.project_field, ctx),
            "title": interpolate_template(config.title, ctx),
            "description": interpolate_template(config.description, ctx) if config.description else None,
            "status": config.status,
            "priority": config.priority,
            "assignee_id": _context_user(ctx, config.assignee_field),
            "due_date": due_date,
            "tags": [interpolate_template(tag, ctx) for tag in config.tags],
            "created_by_id": ctx.get("triggered_by_user_id"),
        }

        logger.info("Creating task", title=row["title"], project_id=row["project_id"])
        try:
            task = await services.crm.create_task(row)
        except StoreError as e:
            raise ActionError(f"Failed to create task: {e.message}", action_type=self.action_type.value) from e

        return {
            "success": True,
            "task_id": task["id"],
            "task": task,
            "created_at": services.now_iso(),
        }


class UpdateTaskAction(BaseAction):
    action_type = ActionType.UPDATE_TASK
    display_name = "Update Task"
    config_model = UpdateTaskConfig

    async def execute(self, config: UpdateTaskConfig, ctx: Dict[str, Any], services: ActionServices):
        task_id = resolve_id(config.task_id, config.task_field, ctx)
        if not task_id:
            raise ActionError("No task ID found for task update", action_type=self.action_type.value)

        changes = config.updates
        updates: Dict[str, Any] = {}
        if changes.status:
            updates["status"] = changes.status
        if changes.priority:
            updates["priority"] = changes.priority
        if changes.assignee_field:
            updates["assignee_id"] = _context_user(ctx, changes.assignee_field)
        elif "assignee_id" in changes.model_fields_set:
            # explicit null unassigns
            updates["assignee_id"] = (
                interpolate_template(changes.assignee_id, ctx) if changes.assignee_id else None
            )
        if changes.due_date_offset_days is not None:
            updates["due_date"] = services.clock() + timedelta(days=changes.due_date_offset_days)
        elif changes.due_date:
            updates["due_date"] = _parse_due_date(interpolate_template(changes.due_date, ctx), self.action_type)

        if not updates:
            return skipped("No updates specified", task_id=task_id)

        try:
            task = await services.crm.update_task(task_id, updates)
        except StoreError as e:
            raise ActionError(f"Failed to update task: {e.message}", action_type=self.action_type.value) from e
        if task is None:
            raise ActionError(f"Task not found: {task_id}", action_type=self.action_type.value)

        return {
            "success": True,
            "task_id": task_id,
            "updates": json_safe(updates),
            "task": task,
            "updated_at": services.now_iso(),
        }


TASK_ACTION_TYPES = {
    ActionType.CREATE_TASK: CreateTaskAction,
    ActionType.UPDATE_TASK: UpdateTaskAction,
}
