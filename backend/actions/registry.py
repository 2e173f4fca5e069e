"""
Action Registry: maps each ActionType to its handler class.

The registry refuses to build unless every ActionType member has exactly
one handler, so a new enum member without an implementation fails at
startup instead of at dispatch time.
"""

from typing import Any, Dict, Optional, Type

from actions.base import ActionResult, ActionServices, BaseAction
from actions.implementations.activity import ACTIVITY_ACTION_TYPES
from actions.implementations.ai import AI_ACTION_TYPES
from actions.implementations.communication import COMMUNICATION_ACTION_TYPES
from actions.implementations.contacts import CONTACT_ACTION_TYPES
from actions.implementations.opportunities import OPPORTUNITY_ACTION_TYPES
from actions.implementations.projects import PROJECT_ACTION_TYPES
from actions.implementations.slack import SLACK_ACTION_TYPES
from actions.implementations.tasks import TASK_ACTION_TYPES
from actions.implementations.webhook import WEBHOOK_ACTION_TYPES
from core.constants import ActionType
from core.exceptions import ActionError
from workflow.context import WorkflowContext

BUILTIN_ACTION_GROUPS = (
    COMMUNICATION_ACTION_TYPES,
    TASK_ACTION_TYPES,
    CONTACT_ACTION_TYPES,
    OPPORTUNITY_ACTION_TYPES,
    PROJECT_ACTION_TYPES,
    ACTIVITY_ACTION_TYPES,
    WEBHOOK_ACTION_TYPES,
    SLACK_ACTION_TYPES,
    AI_ACTION_TYPES,
)


class ActionRegistry:
    """Central registry for all action handler implementations."""

    def __init__(self, groups=BUILTIN_ACTION_GROUPS):
        self._actions: Dict[ActionType, BaseAction] = {}
        for group in groups:
            for action_type, action_class in group.items():
                self.register(action_type, action_class)

        missing = [t.value for t in ActionType if t not in self._actions]
        if missing:
            raise RuntimeError(f"No handler registered for action types: {', '.join(missing)}")

    def register(self, action_type: ActionType, action_class: Type[BaseAction]) -> None:
        if action_type in self._actions:
            raise RuntimeError(f"Duplicate handler for action type {action_type.value}")
        if action_class.action_type != action_type:
            raise RuntimeError(
                f"{action_class.__name__} handles {action_class.action_type.value}, "
                f"not {action_type.value}"
            )
        self._actions[action_type] = action_class()

    def get(self, action_type: Any) -> Optional[BaseAction]:
        try:
            return self._actions.get(ActionType(action_type))
        except ValueError:
            return None

    async def dispatch(
        self,
        action_type: Any,
        config: Optional[Dict[str, Any]],
        context: WorkflowContext,
        services: ActionServices,
    ) -> ActionResult:
        """Run the handler for ``action_type``; unknown types are a hard failure."""
        action = self.get(action_type)
        if action is None:
            raise ActionError(f"Unknown action type: {action_type}", action_type=str(action_type))
        return await action.run(config, context, services)

    def list_all(self) -> list:
        """Registered actions with metadata and JSON schema."""
        return [
            {
                "action_type": action_type.value,
                "display_name": action.display_name,
                "description": action.description or (action.__doc__ or "").strip().split("\n")[0],
                "config_schema": action.config_model.model_json_schema(),
            }
            for action_type, action in self._actions.items()
        ]

    @property
    def available_types(self) -> list:
        return [t.value for t in self._actions]


# Singleton
_registry: Optional[ActionRegistry] = None


def get_action_registry() -> ActionRegistry:
    global _registry
    if _registry is None:
        _registry = ActionRegistry()
    return _registry
