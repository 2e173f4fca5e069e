"""Event bus: fan domain events out to matching event-triggered workflows.

Callers emit after a CRM change (``opportunity.won``, ``contact.created``
and so on). Every active event-triggered workflow of the organization is
checked against the event type, the entity type and the trigger filters;
each match is started as a background task so the emitter never waits on,
or sees errors from, the automations it sets off.

Filter syntax (keys are dotted paths into the entity data):

    {"status": "won"}                     equality, case-insensitive for strings
    {"amount": {"$gte": 1000}}            numeric comparison
    {"stage": {"$in": ["won", "lost"]}}   membership
    {"email": {"$exists": true}}          presence
"""

import asyncio
from typing import Any, Mapping, Optional

import structlog

from core.constants import TriggerType
from core.exceptions import WorkflowValidationError
from db.models import Workflow
from services.workflow_store import WorkflowStore
from workflow.conditions import to_number
from workflow.engine import WorkflowEngine
from workflow.templating import get_nested_value
from workflow.validation import EventTriggerConfig, parse_trigger_config

logger = structlog.get_logger(__name__)


# ─── Filter matching ──────────────────────────────────────────

def _numbers(left: Any, right: Any) -> Optional[tuple]:
    a, b = to_number(left), to_number(right)
    if a is None or b is None:
        return None
    return a, b


def _match_operators(value: Any, ops: Mapping[str, Any]) -> bool:
    if "$in" in ops:
        candidates = ops["$in"] if isinstance(ops["$in"], (list, tuple)) else [ops["$in"]]
        if value not in candidates:
            return False

    if "$ne" in ops and value == ops["$ne"]:
        return False

    for op, check in (
        ("$gt", lambda a, b: a > b),
        ("$gte", lambda a, b: a >= b),
        ("$lt", lambda a, b: a < b),
        ("$lte", lambda a, b: a <= b),
    ):
        if op in ops:
            pair = _numbers(value, ops[op])
            if pair is None or not check(*pair):
                return False

    if "$contains" in ops:
        if not isinstance(value, str) or str(ops["$contains"]) not in value:
            return False

    if "$exists" in ops:
        exists = value is not None
        if bool(ops["$exists"]) != exists:
            return False

    return True


def matches_filters(filters: Optional[Mapping[str, Any]], data: Optional[Mapping[str, Any]]) -> bool:
    """True when every filter predicate holds for ``data``."""
    for key, expected in (filters or {}).items():
        value = get_nested_value(data or {}, key)

        if isinstance(expected, Mapping):
            if not _match_operators(value, expected):
                return False
            continue

        if not _plain_equal(value, expected):
            return False

    return True


def _plain_equal(value: Any, expected: Any) -> bool:
    # True must not match 1
    if isinstance(value, bool) != isinstance(expected, bool):
        return False
    if value == expected:
        return True
    return isinstance(value, str) and isinstance(expected, str) and value.lower() == expected.lower()


def workflow_matches_event(
    config: EventTriggerConfig,
    event_type: str,
    entity_type: str,
    entity_data: Optional[Mapping[str, Any]] = None,
) -> bool:
    if config.event_types and event_type not in config.event_types:
        return False
    if config.entity_type and config.entity_type != entity_type:
        return False
    if entity_data is not None and config.filters and not matches_filters(config.filters, entity_data):
        return False
    return True


# ─── Event Bus ────────────────────────────────────────────────

class EventBus:
    """Dispatches events to the engine without blocking the emitter."""

    def __init__(self, store: WorkflowStore, engine: WorkflowEngine):
        self.store = store
        self.engine = engine
        self._tasks: set[asyncio.Task] = set()

    async def emit(
        self,
        event_type: str,
        entity_type: str,
        entity_id: str,
        entity_data: Optional[dict],
        organization_id: str,
        user_id: Optional[str] = None,
    ) -> int:
        """Start every matching workflow in the background.

        Returns:
            Number of workflow runs dispatched. Never raises.
        """
        log = logger.bind(event_type=event_type, entity_type=entity_type, organization_id=organization_id)
        log.debug("Event received", entity_id=entity_id)

        workflows = await self._load_event_workflows(organization_id)
        if not workflows:
            log.debug("No active event-triggered workflows")
            return 0

        trigger_data = {
            "event_type": event_type,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "user_id": user_id,
            entity_type: entity_data or {},
        }

        dispatched = 0
        for workflow in workflows:
            config = self._event_config(workflow)
            if config is None:
                continue
            if not workflow_matches_event(config, event_type, entity_type, entity_data or {}):
                continue

            log.info("Triggering workflow", workflow_id=workflow.id, workflow_name=workflow.name)
            task = asyncio.create_task(self._run(workflow, dict(trigger_data)))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            dispatched += 1

        return dispatched

    async def get_matching_workflow_count(
        self,
        event_type: str,
        entity_type: str,
        organization_id: str,
        entity_data: Optional[dict] = None,
    ) -> int:
        """How many workflows an event would start; filters apply only with entity data."""
        count = 0
        for workflow in await self._load_event_workflows(organization_id):
            config = self._event_config(workflow)
            if config is not None and workflow_matches_event(config, event_type, entity_type, entity_data):
                count += 1
        return count

    async def drain(self) -> None:
        """Wait for every dispatched run to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    # ─── Internals ────────────────────────────────────────────

    async def _load_event_workflows(self, organization_id: str) -> list[Workflow]:
        try:
            return await self.store.list_active_workflows(TriggerType.EVENT, organization_id)
        except Exception as e:
            logger.error("Failed to load event workflows", organization_id=organization_id, error=str(e))
            return []

    @staticmethod
    def _event_config(workflow: Workflow) -> Optional[EventTriggerConfig]:
        try:
            return parse_trigger_config(TriggerType.EVENT, workflow.trigger_config)
        except WorkflowValidationError as e:
            logger.warning("Skipping workflow with invalid trigger config", workflow_id=workflow.id, error=e.message)
            return None

    async def _run(self, workflow: Workflow, trigger_data: dict) -> None:
        try:
            run = await self.engine.execute_workflow(workflow, workflow.steps, trigger_data)
            logger.info("Event workflow finished", workflow_id=workflow.id, run_id=run.id, status=run.status)
        except Exception as e:
            logger.error("Workflow execution failed", workflow_id=workflow.id, error=str(e), exc_info=True)
