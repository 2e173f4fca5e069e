"""Slack messaging action."""

from typing import Any, Dict

import structlog

from actions.base import ActionServices, BaseAction, skipped
from actions.schemas import SendSlackConfig
from core.constants import ActionType
from core.exceptions import ActionError, IntegrationError
from workflow.templating import interpolate_template

logger = structlog.get_logger(__name__)


class SendSlackAction(BaseAction):
    """Post to a channel using the organization's Slack integration."""

    action_type = ActionType.SEND_SLACK
    display_name = "Send Slack Message"
    config_model = SendSlackConfig

    async def execute(self, config: SendSlackConfig, ctx: Dict[str, Any], services: ActionServices):
        organization_id = ctx.get("organization_id") or ""
        integration = await services.slack.get_organization_slack_integration(organization_id)
        if not integration:
            logger.info("Slack not connected", organization_id=organization_id)
            return skipped("Slack integration not configured")

        channel = interpolate_template(config.channel, ctx).strip()
        message = interpolate_template(config.message, ctx).strip()
        if not channel or not message:
            return skipped("Slack channel and message are required", channel=channel or None)

        blocks = None
        if config.use_blocks:
            blocks = [{"type": "section", "text": {"type": "mrkdwn", "text": message}}]

        try:
            posted = await services.slack.post_message(
                integration["access_token"],
                channel,
                message,
                blocks=blocks,
                username=config.username,
                icon_emoji=config.icon_emoji,
                notify_channel=config.notify_channel,
            )
        except IntegrationError as e:
            raise ActionError(e.message, action_type=self.action_type.value) from e
        if posted is None:
            raise ActionError(
                f"Failed to post Slack message to {channel}", action_type=self.action_type.value
            )

        return {
            "success": True,
            "channel": posted.get("channel") or channel,
            "ts": posted.get("ts"),
            "sent_at": services.now_iso(),
        }


SLACK_ACTION_TYPES = {
    ActionType.SEND_SLACK: SendSlackAction,
}
