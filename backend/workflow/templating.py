"""Template interpolation for step and action configs.

Placeholders use ``{{ path.to.value }}`` syntax and are resolved against the
run context dict. ``items[0].name`` is treated as ``items.0.name``.

Rendering rules:
- missing or null values render as an empty string
- dicts and lists render as compact JSON
- booleans render as ``true`` / ``false``
- output that still contains placeholders (values that were themselves
  templates) is rendered again, up to ``MAX_TEMPLATE_DEPTH`` passes
"""

import json
import re
from typing import Any, Iterable, Mapping

import structlog

logger = structlog.get_logger(__name__)

TEMPLATE_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")
_INDEX_PATTERN = re.compile(r"\[(\d+)\]")

MAX_TEMPLATE_DEPTH = 10

STANDARD_CONTEXT_FIELDS = (
    "trigger",
    "trigger.type",
    "trigger.event_type",
    "trigger.entity_type",
    "trigger.entity_id",
    "trigger.data",
    "contact",
    "opportunity",
    "task",
    "project",
    "company",
    "steps",
    "organization_id",
    "triggered_by_user_id",
    "triggered_at",
)

_MISSING = object()


# ─── Path access ──────────────────────────────────────────────

def _split_path(path: str) -> list[str]:
    return _INDEX_PATTERN.sub(r".\1", path.strip()).split(".")


def get_nested_value(obj: Any, path: str) -> Any:
    """Resolve a dot path inside nested dicts and lists.

    Returns None when any segment is missing.
    """
    if not isinstance(obj, (dict, list)) or not path:
        return None

    current = obj
    for key in _split_path(path):
        if isinstance(current, Mapping):
            current = current.get(key, _MISSING)
        elif isinstance(current, list):
            if not key.isdigit() or int(key) >= len(current):
                return None
            current = current[int(key)]
        else:
            return None
        if current is _MISSING or current is None:
            return None
    return current


def set_nested_value(obj: dict, path: str, value: Any) -> None:
    """Set a dot path inside ``obj``, creating intermediate dicts."""
    keys = path.split(".")
    current = obj
    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[keys[-1]] = value


# ─── Rendering ────────────────────────────────────────────────

def stringify(value: Any) -> str:
    """Render a resolved value the way it appears inside a template."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def interpolate_template(template: Any, context: Mapping[str, Any], depth: int = 0) -> Any:
    """Replace every placeholder in ``template``; non-strings are returned unchanged."""
    if not isinstance(template, str) or not template:
        return template

    if depth > MAX_TEMPLATE_DEPTH:
        logger.warning("template_depth_exceeded", depth=depth)
        return template

    result = TEMPLATE_PATTERN.sub(
        lambda match: stringify(get_nested_value(context, match.group(1).strip())),
        template,
    )

    if result != template and TEMPLATE_PATTERN.search(result):
        return interpolate_template(result, context, depth + 1)
    return result


def interpolate_object(obj: Any, context: Mapping[str, Any]) -> Any:
    """Interpolate every string inside nested dicts and lists."""
    if isinstance(obj, str):
        return interpolate_template(obj, context)
    if isinstance(obj, list):
        return [interpolate_object(item, context) for item in obj]
    if isinstance(obj, dict):
        return {key: interpolate_object(value, context) for key, value in obj.items()}
    return obj


# ─── Introspection ────────────────────────────────────────────

def has_template_variables(value: Any) -> bool:
    return isinstance(value, str) and TEMPLATE_PATTERN.search(value) is not None


def extract_template_variables(value: Any) -> list[str]:
    """Distinct placeholder paths in order of first appearance."""
    if not isinstance(value, str):
        return []
    found: list[str] = []
    for match in TEMPLATE_PATTERN.finditer(value):
        path = match.group(1).strip()
        if path not in found:
            found.append(path)
    return found


def validate_template_variables(
    config: Any,
    available_fields: Iterable[str] = STANDARD_CONTEXT_FIELDS,
) -> tuple[bool, list[str]]:
    """Check that every placeholder in ``config`` starts with a known field.

    Returns:
        (valid, missing_paths)
    """
    fields = tuple(available_fields)
    missing: list[str] = []

    def _check(value: Any) -> None:
        if isinstance(value, str):
            for variable in extract_template_variables(value):
                known = any(
                    variable == name or variable.startswith(f"{name}.")
                    for name in fields
                )
                if not known and variable not in missing:
                    missing.append(variable)
        elif isinstance(value, list):
            for item in value:
                _check(item)
        elif isinstance(value, dict):
            for item in value.values():
                _check(item)

    _check(config)
    return not missing, missing
