"""Communication actions: email, in-app notification and push.

All three soft-skip when there is nobody to deliver to.
"""

import re
from typing import Any, Dict

import structlog

from actions.base import ActionServices, BaseAction, resolve_id, skipped
from actions.schemas import SendEmailConfig, SendNotificationConfig, SendPushConfig
from core.constants import ActionType
from core.exceptions import ActionError
from workflow.templating import interpolate_object, interpolate_template

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class SendEmailAction(BaseAction):
    """Send an email through the configured delivery provider.

    Config:
        to: Recipient address, usually ``{{contact.email}}``
        subject, body_html: Templated content
        body_text: Optional plain text alternative
        from_name: Optional sender name override
    """

    action_type = ActionType.SEND_EMAIL
    display_name = "Send Email"
    config_model = SendEmailConfig

    async def execute(self, config: SendEmailConfig, ctx: Dict[str, Any], services: ActionServices):
        to = interpolate_template(config.to, ctx).strip()
        if not to or not EMAIL_PATTERN.match(to):
            logger.warning("Invalid or missing recipient", to=to)
            return skipped("Invalid or missing recipient email", to=to or None)

        subject = interpolate_template(config.subject, ctx)
        body_html = interpolate_template(config.body_html, ctx)
        body_text = interpolate_template(config.body_text, ctx) if config.body_text else None
        from_name = interpolate_template(config.from_name, ctx) if config.from_name else None

        result = await services.email.send_email(
            to,
            subject,
            body_html,
            text_body=body_text,
            from_name=from_name,
            organization_id=ctx.get("organization_id"),
        )
        if not result.get("success"):
            raise ActionError(
                f"Failed to send email: {result.get('error') or 'unknown error'}",
                action_type=self.action_type.value,
            )

        return {
            "success": True,
            "to": to,
            "subject": subject,
            "sent_at": services.now_iso(),
        }


class SendNotificationAction(BaseAction):
    """Create an in-app notification for one user."""

    action_type = ActionType.SEND_NOTIFICATION
    display_name = "Send Notification"
    config_model = SendNotificationConfig

    async def execute(self, config: SendNotificationConfig, ctx: Dict[str, Any], services: ActionServices):
        user_id = resolve_id(config.user_id, config.user_field, ctx)
        if not user_id:
            return skipped("No user ID found for notification")

        notification = await services.notifier.create_notification(
            user_id,
            config.type,
            interpolate_template(config.title, ctx),
            interpolate_template(config.message, ctx),
            interpolate_object(config.metadata, ctx),
        )
        if notification is None:
            return skipped("Notification not created", user_id=user_id)

        return {
            "success": True,
            "notification_id": notification.get("id"),
            "user_id": user_id,
            "sent_at": services.now_iso(),
        }


class SendPushAction(BaseAction):
    """Push a message to the user's registered devices."""

    action_type = ActionType.SEND_PUSH
    display_name = "Send Push Notification"
    config_model = SendPushConfig

    async def execute(self, config: SendPushConfig, ctx: Dict[str, Any], services: ActionServices):
        user_id = resolve_id(config.user_id, config.user_field, ctx)
        if not user_id:
            return skipped("No user ID found for push notification")

        delivered = await services.notifier.send_push_notification(
            user_id,
            interpolate_template(config.title, ctx),
            interpolate_template(config.message, ctx),
            interpolate_object(config.metadata, ctx),
        )
        if not delivered:
            return skipped("Push notification not delivered", user_id=user_id)

        return {"success": True, "user_id": user_id, "sent_at": services.now_iso()}


COMMUNICATION_ACTION_TYPES = {
    ActionType.SEND_EMAIL: SendEmailAction,
    ActionType.SEND_NOTIFICATION: SendNotificationAction,
    ActionType.SEND_PUSH: SendPushAction,
}
