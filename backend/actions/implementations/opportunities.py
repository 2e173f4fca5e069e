"""Opportunity actions."""

from typing import Any, Dict

import structlog

from actions.base import ActionServices, BaseAction, resolve_id, skipped
from actions.schemas import UpdateOpportunityConfig
from core.constants import ActionType
from core.exceptions import ActionError, StoreError
from workflow.templating import interpolate_object

logger = structlog.get_logger(__name__)


class UpdateOpportunityAction(BaseAction):
    """Patch an opportunity, e.g. move it to the next stage."""

    action_type = ActionType.UPDATE_OPPORTUNITY
    display_name = "Update Opportunity"
    config_model = UpdateOpportunityConfig

    async def execute(self, config: UpdateOpportunityConfig, ctx: Dict[str, Any], services: ActionServices):
        opportunity_id = resolve_id(config.opportunity_id, config.opportunity_field, ctx)
        if not opportunity_id:
            raise ActionError(
                "No opportunity ID found for opportunity update",
                action_type=self.action_type.value,
            )

        updates = dict(interpolate_object(config.updates, ctx))
        updates["updated_at"] = services.now_iso()
        if len(updates) == 1:
            return skipped("No updates specified", opportunity_id=opportunity_id)

        logger.info(
            "Updating opportunity",
            opportunity_id=opportunity_id,
            fields=[k for k in updates if k != "updated_at"],
        )
        try:
            opportunity = await services.crm.update_opportunity(opportunity_id, updates)
        except StoreError as e:
            raise ActionError(
                f"Failed to update opportunity: {e.message}", action_type=self.action_type.value
            ) from e
        if opportunity is None:
            raise ActionError(
                f"Failed to update opportunity: {opportunity_id} not found",
                action_type=self.action_type.value,
            )

        return {
            "success": True,
            "opportunity_id": opportunity["id"],
            "updates": updates,
            "opportunity": opportunity,
            "updated_at": services.now_iso(),
        }


OPPORTUNITY_ACTION_TYPES = {
    ActionType.UPDATE_OPPORTUNITY: UpdateOpportunityAction,
}
