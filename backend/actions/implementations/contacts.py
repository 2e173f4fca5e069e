"""Contact actions: create, update and tag management."""

from typing import Any, Dict

import structlog

from actions.base import ActionServices, BaseAction, resolve_id, skipped
from actions.schemas import CreateContactConfig, TagConfig, UpdateContactConfig
from core.constants import ActionType
from core.exceptions import ActionError, StoreError
from workflow.templating import get_nested_value, interpolate_object, interpolate_template

logger = structlog.get_logger(__name__)


class CreateContactAction(BaseAction):
    """Insert a contact under a company.

    The company id is required: either ``company_id`` (templated) or a
    ``company_field`` path into the context.
    """

    action_type = ActionType.CREATE_CONTACT
    display_name = "Create Contact"
    config_model = CreateContactConfig

    async def execute(self, config: CreateContactConfig, ctx: Dict[str, Any], services: ActionServices):
        company_id = resolve_id(config.company_id, config.company_field, ctx)
        if not company_id:
            raise ActionError(
                "No company ID found for contact creation", action_type=self.action_type.value
            )

        first_name = interpolate_template(config.first_name, ctx)
        last_name = interpolate_template(config.last_name, ctx)
        data: Dict[str, Any] = {
            "organization_id": ctx.get("organization_id"),
            "company_id": company_id,
            "first_name": first_name,
            "last_name": last_name,
            "email": interpolate_template(config.email, ctx) if config.email else None,
            "status": "active",
        }
        if config.additional_fields:
            data.update(interpolate_object(config.additional_fields, ctx))

        logger.info("Creating contact", company_id=company_id, first_name=first_name, last_name=last_name)
        try:
            contact = await services.crm.create_contact(data)
        except StoreError as e:
            raise ActionError(
                f"Failed to create contact: {e.message}", action_type=self.action_type.value
            ) from e

        return {
            "success": True,
            "contact_id": contact["id"],
            "contact": contact,
            "created_at": services.now_iso(),
        }


class UpdateContactAction(BaseAction):
    action_type = ActionType.UPDATE_CONTACT
    display_name = "Update Contact"
    config_model = UpdateContactConfig

    async def execute(self, config: UpdateContactConfig, ctx: Dict[str, Any], services: ActionServices):
        contact_id = resolve_id(config.contact_id, config.contact_field, ctx)
        if not contact_id:
            raise ActionError(
                "No contact ID found for contact update", action_type=self.action_type.value
            )

        updates = dict(interpolate_object(config.updates, ctx))
        updates["updated_at"] = services.now_iso()
        if len(updates) == 1:
            logger.warning("No updates specified", contact_id=contact_id)
            return skipped("No updates specified", contact_id=contact_id)

        try:
            contact = await services.crm.update_contact(contact_id, updates)
        except StoreError as e:
            raise ActionError(
                f"Failed to update contact: {e.message}", action_type=self.action_type.value
            ) from e
        if contact is None:
            raise ActionError(
                f"Failed to update contact: {contact_id} not found",
                action_type=self.action_type.value,
            )

        return {
            "success": True,
            "contact_id": contact["id"],
            "updates": updates,
            "contact": contact,
            "updated_at": services.now_iso(),
        }


def _tag_target(config: TagConfig, ctx: Dict[str, Any], action_type: ActionType) -> tuple[str, str]:
    entity_id = get_nested_value(ctx, config.entity_field)
    if not entity_id or not isinstance(entity_id, str):
        raise ActionError(f"No entity ID found at {config.entity_field}", action_type=action_type.value)
    return entity_id, interpolate_template(config.tag_name, ctx)


class AddTagAction(BaseAction):
    """Tag a contact or company; an existing tag is a no-op."""

    action_type = ActionType.ADD_TAG
    display_name = "Add Tag"
    config_model = TagConfig

    async def execute(self, config: TagConfig, ctx: Dict[str, Any], services: ActionServices):
        entity_id, tag_name = _tag_target(config, ctx, self.action_type)
        entity_type = config.entity_type

        try:
            existing = await services.crm.find_tag(entity_type, entity_id, tag_name)
            if existing:
                logger.info("Tag already exists", entity_id=entity_id, tag_name=tag_name)
                return skipped(
                    "Tag already exists",
                    success=True,
                    tag_id=existing["id"],
                    tag_name=tag_name,
                )
            tag = await services.crm.add_tag(entity_type, entity_id, tag_name)
        except StoreError as e:
            raise ActionError(f"Failed to add tag: {e.message}", action_type=self.action_type.value) from e

        return {
            "success": True,
            "tag_id": tag["id"],
            "tag_name": tag_name,
            "entity_type": entity_type.value,
            "entity_id": entity_id,
            "created_at": services.now_iso(),
        }


class RemoveTagAction(BaseAction):
    action_type = ActionType.REMOVE_TAG
    display_name = "Remove Tag"
    config_model = TagConfig

    async def execute(self, config: TagConfig, ctx: Dict[str, Any], services: ActionServices):
        entity_id, tag_name = _tag_target(config, ctx, self.action_type)

        try:
            removed = await services.crm.remove_tag(config.entity_type, entity_id, tag_name)
        except StoreError as e:
            raise ActionError(
                f"Failed to remove tag: {e.message}", action_type=self.action_type.value
            ) from e

        if removed == 0:
            logger.info("Tag did not exist", entity_id=entity_id, tag_name=tag_name)
            return skipped("Tag did not exist", success=True, tag_name=tag_name)

        return {
            "success": True,
            "tag_name": tag_name,
            "entity_type": config.entity_type.value,
            "entity_id": entity_id,
            "removed_at": services.now_iso(),
        }


CONTACT_ACTION_TYPES = {
    ActionType.CREATE_CONTACT: CreateContactAction,
    ActionType.UPDATE_CONTACT: UpdateContactAction,
    ActionType.ADD_TAG: AddTagAction,
    ActionType.REMOVE_TAG: RemoveTagAction,
}
