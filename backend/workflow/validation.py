"""Workflow definition validation.

Trigger configs and non-action step configs are pydantic models; action
step configs are validated by the config model of their handler. The
engine parses configs through the same models at run time.
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Type
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, ValidationError, field_validator

from actions.registry import get_action_registry
from core.constants import ConditionOperator, DelayUnit, ScheduleType, StepType, TriggerType
from core.exceptions import ActionError, WorkflowValidationError

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
_OPERATOR_VALUES = {op.value for op in ConditionOperator}


# ─── Trigger configs ───────────────────────────────────────────

class EventTriggerConfig(BaseModel):
    """Empty ``event_types`` matches every event."""

    event_types: List[str] = Field(default_factory=list)
    entity_type: Optional[str] = None
    filters: Dict[str, Any] = Field(default_factory=dict)


class ScheduleTriggerConfig(BaseModel):
    schedule_type: ScheduleType = Field(description="daily, weekly, monthly or cron")
    time: Optional[str] = Field(default=None, description="HH:MM, defaults to 09:00")
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6, description="Sunday = 0")
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    cron: Optional[str] = None
    timezone: Optional[str] = Field(default=None, description="IANA zone, e.g. Europe/Sofia")

    @field_validator("time")
    @classmethod
    def _check_time(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not TIME_PATTERN.match(value):
            raise ValueError("time must be HH:MM (24h)")
        return value

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value:
            try:
                ZoneInfo(value)
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ValueError(f"Unknown timezone: {value}") from e
        return value


class WebhookTriggerConfig(BaseModel):
    secret: Optional[str] = None
    allowed_ips: List[str] = Field(default_factory=list)


class ManualTriggerConfig(BaseModel):
    description: Optional[str] = None


TRIGGER_CONFIG_MODELS: Dict[TriggerType, Type[BaseModel]] = {
    TriggerType.EVENT: EventTriggerConfig,
    TriggerType.SCHEDULE: ScheduleTriggerConfig,
    TriggerType.WEBHOOK: WebhookTriggerConfig,
    TriggerType.MANUAL: ManualTriggerConfig,
}


# ─── Step configs ──────────────────────────────────────────────

class ConditionStepConfig(BaseModel):
    """Unknown operators parse; ``evaluate`` treats them as false."""

    field: str = Field(min_length=1, description="Context path to evaluate")
    operator: str = Field(min_length=1)
    value: Any = None


class DelayStepConfig(BaseModel):
    delay_type: DelayUnit = DelayUnit.MINUTES
    delay_value: float = Field(ge=0)


class LoopStepConfig(BaseModel):
    collection_field: str = Field(min_length=1)
    item_variable: str = Field(default="item", min_length=1)
    max_iterations: Optional[int] = Field(default=None, ge=1, le=1000)


STEP_CONFIG_MODELS: Dict[StepType, Type[BaseModel]] = {
    StepType.CONDITION: ConditionStepConfig,
    StepType.DELAY: DelayStepConfig,
    StepType.LOOP: LoopStepConfig,
}


def _format_errors(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}" for err in e.errors()
    )


def parse_trigger_config(trigger_type: Any, config: Optional[dict]) -> BaseModel:
    try:
        model = TRIGGER_CONFIG_MODELS[TriggerType(trigger_type)]
    except ValueError as e:
        raise WorkflowValidationError(f"Unknown trigger type: {trigger_type}") from e
    try:
        return model.model_validate(config or {})
    except ValidationError as e:
        raise WorkflowValidationError(
            f"Invalid {TriggerType(trigger_type).value} trigger config: {_format_errors(e)}"
        ) from e


def parse_step_config(step_type: Any, config: Optional[dict]) -> BaseModel:
    """Typed config for condition, delay and loop steps."""
    try:
        model = STEP_CONFIG_MODELS[StepType(step_type)]
    except (ValueError, KeyError) as e:
        raise WorkflowValidationError(f"No step config model for step type: {step_type}") from e
    try:
        return model.model_validate(config or {})
    except ValidationError as e:
        raise WorkflowValidationError(
            f"Invalid {StepType(step_type).value} step config: {_format_errors(e)}"
        ) from e


def find_duplicate_step_orders(steps: Iterable[Any]) -> List[int]:
    seen: set = set()
    duplicates: List[int] = []
    for step in steps:
        order = step.step_order
        if order in seen and order not in duplicates:
            duplicates.append(order)
        seen.add(order)
    return sorted(duplicates)


def validate_workflow(workflow: Any, steps: Optional[Iterable[Any]] = None) -> None:
    """
    Check a workflow definition before it is saved or run.

    Raises:
        WorkflowValidationError: listing every problem found
    """
    steps = list(steps if steps is not None else workflow.steps)
    problems: List[str] = []

    try:
        parse_trigger_config(workflow.trigger_type, workflow.trigger_config)
    except WorkflowValidationError as e:
        problems.append(e.message)

    duplicates = find_duplicate_step_orders(steps)
    if duplicates:
        problems.append(f"Duplicate step_order values: {', '.join(str(d) for d in duplicates)}")

    registry = get_action_registry()
    for step in sorted(steps, key=lambda s: s.step_order):
        label = f"step {step.step_order}"
        try:
            step_type = StepType(step.step_type)
        except ValueError:
            problems.append(f"{label}: unknown step type {step.step_type!r}")
            continue

        if step_type == StepType.ACTION:
            if not step.action_type:
                problems.append(f"{label}: action steps require an action_type")
                continue
            action = registry.get(step.action_type)
            if action is None:
                problems.append(f"{label}: unknown action type {step.action_type!r}")
                continue
            try:
                action.parse_config(step.config)
            except ActionError as e:
                problems.append(f"{label}: {e.message}")
        else:
            try:
                config = parse_step_config(step_type, step.config)
            except WorkflowValidationError as e:
                problems.append(f"{label}: {e.message}")
                continue
            if step_type == StepType.CONDITION and config.operator not in _OPERATOR_VALUES:
                problems.append(f"{label}: unknown operator {config.operator!r}")

    if problems:
        raise WorkflowValidationError("; ".join(problems))
