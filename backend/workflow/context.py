"""Run context threaded through every step of a workflow run."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping, Optional

from core.constants import CONTEXT_ENTITY_KEYS
from core.utils import isoformat_utc, json_safe

_KNOWN_KEYS = {
    "trigger",
    "steps",
    "organization_id",
    "triggered_by_user_id",
    "triggered_at",
    *CONTEXT_ENTITY_KEYS,
}


def _freeze(mapping: Optional[Mapping]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class WorkflowContext:
    """Immutable data bag for one run.

    ``steps`` maps ``str(step_order)`` to that step's output. A step never
    edits the context it receives; ``with_step_output`` returns a new context
    with exactly one more entry.
    """

    organization_id: str
    trigger: Mapping[str, Any] = field(default_factory=dict)
    steps: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    triggered_by_user_id: Optional[str] = None
    triggered_at: Optional[str] = None
    contact: Optional[dict] = None
    opportunity: Optional[dict] = None
    task: Optional[dict] = None
    project: Optional[dict] = None
    company: Optional[dict] = None
    # Keys we do not model are carried through persistence untouched
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.steps, MappingProxyType):
            object.__setattr__(self, "steps", _freeze(self.steps))

    @classmethod
    def from_trigger(
        cls,
        trigger_type: str,
        trigger_data: Optional[dict],
        organization_id: str,
        triggered_at: datetime,
    ) -> "WorkflowContext":
        """Initial context for a new run."""
        data = dict(trigger_data or {})
        entities = {
            key: data[key] for key in CONTEXT_ENTITY_KEYS if isinstance(data.get(key), dict)
        }
        return cls(
            organization_id=organization_id,
            trigger={
                "type": trigger_type,
                "event_type": data.get("event_type"),
                "entity_type": data.get("entity_type"),
                "entity_id": data.get("entity_id"),
                "data": data,
            },
            triggered_by_user_id=data.get("user_id"),
            triggered_at=isoformat_utc(triggered_at),
            **entities,
        )

    def with_step_output(self, step_order: int, output: Any) -> "WorkflowContext":
        steps = dict(self.steps)
        steps[str(step_order)] = output
        return replace(self, steps=MappingProxyType(steps))

    def step_output(self, step_order: int) -> Any:
        return self.steps.get(str(step_order))

    def to_dict(self) -> dict:
        """Storage-neutral form; also the namespace templates resolve against."""
        data = dict(self.extra)
        data.update(
            {
                "trigger": dict(self.trigger),
                "steps": dict(self.steps),
                "organization_id": self.organization_id,
                "triggered_by_user_id": self.triggered_by_user_id,
                "triggered_at": self.triggered_at,
            }
        )
        for key in CONTEXT_ENTITY_KEYS:
            data[key] = getattr(self, key)
        return json_safe(data)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkflowContext":
        return cls(
            organization_id=data.get("organization_id") or "",
            trigger=dict(data.get("trigger") or {}),
            steps={str(k): v for k, v in (data.get("steps") or {}).items()},
            triggered_by_user_id=data.get("triggered_by_user_id"),
            triggered_at=data.get("triggered_at"),
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
            **{key: data.get(key) for key in CONTEXT_ENTITY_KEYS},
        )
