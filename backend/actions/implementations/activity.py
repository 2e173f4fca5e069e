"""Activity feed action."""

from typing import Any, Dict

import structlog

from actions.base import ActionServices, BaseAction, resolve_id, skipped
from actions.schemas import CreateActivityConfig
from core.constants import ActionType
from core.exceptions import ActionError, StoreError, StoreTableMissingError
from workflow.templating import get_nested_value, interpolate_template

logger = structlog.get_logger(__name__)


class CreateActivityAction(BaseAction):
    """Append an entry to a company's activity feed.

    Soft-skips when no company id resolves or when the feed table is not
    provisioned for this deployment.
    """

    action_type = ActionType.CREATE_ACTIVITY
    display_name = "Log Activity"
    config_model = CreateActivityConfig

    async def execute(self, config: CreateActivityConfig, ctx: Dict[str, Any], services: ActionServices):
        company_id = resolve_id(config.company_id, config.company_field, ctx)
        if not company_id:
            return skipped("No company ID found for activity")

        entity_id = get_nested_value(ctx, config.entity_field) if config.entity_field else None
        row = {
            "organization_id": ctx.get("organization_id"),
            "company_id": company_id,
            "entity_type": config.entity_type,
            "entity_id": str(entity_id) if entity_id is not None else None,
            "event_type": config.event_type,
            "message": interpolate_template(config.message, ctx),
            "details": {
                "source": "workflow",
                "triggered_by_user_id": ctx.get("triggered_by_user_id"),
            },
        }

        try:
            activity = await services.crm.create_activity(row)
        except StoreTableMissingError as e:
            logger.warning("Activity feed table missing", table=e.table)
            return skipped("Activity feed not available", company_id=company_id)
        except StoreError as e:
            raise ActionError(
                f"Failed to create activity: {e.message}", action_type=self.action_type.value
            ) from e

        return {
            "success": True,
            "activity_id": activity["id"],
            "company_id": company_id,
            "created_at": services.now_iso(),
        }


ACTIVITY_ACTION_TYPES = {
    ActionType.CREATE_ACTIVITY: CreateActivityAction,
}
