"""Project actions: blank projects and projects instantiated from a template."""

from typing import Any, Dict

import structlog

from actions.base import ActionServices, BaseAction, resolve_id
from actions.schemas import CreateProjectConfig, CreateProjectFromTemplateConfig
from core.constants import ActionType
from core.exceptions import ActionError, StoreError
from workflow.templating import interpolate_template

logger = structlog.get_logger(__name__)


def _project_row(config: CreateProjectConfig, ctx: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": interpolate_template(config.name, ctx),
        "description": interpolate_template(config.description, ctx) if config.description else None,
        "company_id": resolve_id(config.company_id, config.company_field, ctx),
        "organization_id": ctx.get("organization_id"),
        "created_by_id": ctx.get("triggered_by_user_id"),
        "status": "idea",
        "source": "Manual",
    }


class CreateProjectAction(BaseAction):
    action_type = ActionType.CREATE_PROJECT
    display_name = "Create Project"
    config_model = CreateProjectConfig

    async def execute(self, config: CreateProjectConfig, ctx: Dict[str, Any], services: ActionServices):
        row = _project_row(config, ctx)
        logger.info("Creating project", name=row["name"], company_id=row["company_id"])
        try:
            project = await services.crm.create_project(row)
        except StoreError as e:
            raise ActionError(
                f"Failed to create project: {e.message}", action_type=self.action_type.value
            ) from e

        return {
            "success": True,
            "project_id": project["id"],
            "project": project,
            "created_at": services.now_iso(),
        }


class CreateProjectFromTemplateAction(BaseAction):
    """Create a project and copy the template's phases onto it.

    Phase copy errors are logged; the project itself is kept.
    """

    action_type = ActionType.CREATE_PROJECT_FROM_TEMPLATE
    display_name = "Create Project From Template"
    config_model = CreateProjectFromTemplateConfig

    async def execute(
        self, config: CreateProjectFromTemplateConfig, ctx: Dict[str, Any], services: ActionServices
    ):
        if not config.template_id:
            raise ActionError(
                "template_id is required for create_project_from_template action",
                action_type=self.action_type.value,
            )
        template_id = interpolate_template(config.template_id, ctx).strip()

        try:
            template = await services.crm.get_project_template(template_id)
        except StoreError as e:
            raise ActionError(
                f"Template not found: {template_id}", action_type=self.action_type.value
            ) from e
        if template is None:
            raise ActionError(f"Template not found: {template_id}", action_type=self.action_type.value)

        row = _project_row(config, ctx)
        if row["description"] is None:
            row["description"] = template.get("description")
        row["template_id"] = template_id

        logger.info(
            "Creating project from template",
            name=row["name"],
            template_id=template_id,
            template_name=template.get("name"),
        )
        try:
            project = await services.crm.create_project(row)
        except StoreError as e:
            raise ActionError(
                f"Failed to create project: {e.message}", action_type=self.action_type.value
            ) from e

        phases_created = 0
        try:
            phases = await services.crm.list_template_phases(template_id)
            if phases:
                phases_created = await services.crm.create_project_phases(
                    [
                        {
                            "project_id": project["id"],
                            "phase_number": phase["phase_number"],
                            "data": phase.get("default_data") or {},
                            "completed": False,
                        }
                        for phase in phases
                    ]
                )
        except StoreError as e:
            logger.warning("Failed to copy template phases", project_id=project["id"], error=e.message)

        return {
            "success": True,
            "project_id": project["id"],
            "project": project,
            "template_id": template_id,
            "template_name": template.get("name"),
            "phases_created": phases_created,
            "created_at": services.now_iso(),
        }


PROJECT_ACTION_TYPES = {
    ActionType.CREATE_PROJECT: CreateProjectAction,
    ActionType.CREATE_PROJECT_FROM_TEMPLATE: CreateProjectFromTemplateAction,
}
