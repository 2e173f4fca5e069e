"""
Base action interface for all workflow action handlers.

Every action type (email, tagging, webhook call, AI generation, etc.)
inherits from BaseAction, declares its pydantic config model and
implements execute().
"""

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Type

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from app.config import Settings, get_settings
from core.constants import ActionType
from core.exceptions import ActionError
from core.utils import isoformat_utc, utc_now
from integrations.ai import AIProvider
from integrations.email_sender import EmailSender
from integrations.notifications import Notifier
from integrations.slack import SlackClient
from services.crm_store import CrmStore
from workflow.context import WorkflowContext
from workflow.templating import get_nested_value, interpolate_template

logger = structlog.get_logger(__name__)


@dataclass
class ActionServices:
    """Collaborators handed to every action."""

    crm: CrmStore
    email: EmailSender
    notifier: Notifier
    slack: SlackClient
    ai: AIProvider
    settings: Settings = field(default_factory=get_settings)
    http_transport: Optional[httpx.AsyncBaseTransport] = None
    clock: Callable[[], datetime] = utc_now

    def now_iso(self) -> str:
        return isoformat_utc(self.clock())


class ActionResult:
    """Output of one action plus timing."""

    def __init__(self, output: Any, duration_ms: float = 0):
        self.output = output
        self.duration_ms = duration_ms

    @property
    def skipped(self) -> bool:
        return isinstance(self.output, dict) and bool(self.output.get("skipped"))


# ─── Helpers shared by handlers ────────────────────────────────

def skipped(reason: str, success: bool = False, **extra: Any) -> Dict[str, Any]:
    """Success-shaped output for an action whose preconditions were not met."""
    return {"success": success, "skipped": True, "reason": reason, **extra}


def resolve_id(
    literal: Optional[str],
    field_path: Optional[str],
    ctx: Dict[str, Any],
) -> Optional[str]:
    """Id from an interpolated literal, else from a context path (strings only)."""
    if literal:
        value = interpolate_template(literal, ctx)
        return value.strip() or None
    if field_path:
        value = get_nested_value(ctx, field_path)
        return value if isinstance(value, str) and value else None
    return None


def text_at(ctx: Dict[str, Any], path: str) -> Optional[str]:
    """Value at ``path`` as text; dicts and lists are JSON-encoded."""
    value = get_nested_value(ctx, path)
    if value is None or value == "" or value == [] or value == {}:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


class BaseAction(ABC):
    """
    Abstract base class for action handlers.

    Subclasses must define:
    - action_type / display_name (class attributes)
    - config_model (pydantic model for the step config)
    - execute(config, ctx, services) -> output
    """

    action_type: ActionType
    display_name: str = "Action"
    description: str = ""
    config_model: Type[BaseModel]

    @classmethod
    def parse_config(cls, raw: Optional[Dict[str, Any]]) -> BaseModel:
        try:
            return cls.config_model.model_validate(raw or {})
        except ValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
                for err in e.errors()
            )
            raise ActionError(
                f"Invalid {cls.action_type.value} config: {errors}",
                action_type=cls.action_type.value,
            ) from e

    @abstractmethod
    async def execute(
        self,
        config: Any,
        ctx: Dict[str, Any],
        services: ActionServices,
    ) -> Dict[str, Any]:
        """
        Perform the action.

        Args:
            config: Parsed config model
            ctx: Run context as a plain dict (template namespace)
            services: External collaborators

        Returns:
            Output stored at ``steps[step_order]``. Raise to fail the step.
        """

    async def run(
        self,
        raw_config: Optional[Dict[str, Any]],
        context: WorkflowContext,
        services: ActionServices,
    ) -> ActionResult:
        """
        Parse config and execute with timing and logging.

        Errors are logged and re-raised; the engine turns them into a
        failed step.
        """
        start = time.monotonic()
        logger.info(
            "Action starting",
            action_type=self.action_type.value,
            organization_id=context.organization_id,
        )
        try:
            config = self.parse_config(raw_config)
            output = await self.execute(config, context.to_dict(), services)
        except Exception as e:
            logger.error(
                "Action failed",
                action_type=self.action_type.value,
                error=str(e),
                duration_ms=round((time.monotonic() - start) * 1000, 2),
            )
            raise

        result = ActionResult(output, duration_ms=(time.monotonic() - start) * 1000)
        logger.info(
            "Action completed",
            action_type=self.action_type.value,
            skipped=result.skipped,
            duration_ms=round(result.duration_ms, 2),
        )
        return result
