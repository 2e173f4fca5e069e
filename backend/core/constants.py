"""Constants and enums for the workflow automation engine."""

from enum import Enum


class TriggerType(str, Enum):
    """How a workflow is started."""

    EVENT = "event"
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"
    MANUAL = "manual"


class StepType(str, Enum):
    """Kind of workflow step."""

    ACTION = "action"
    CONDITION = "condition"
    DELAY = "delay"
    LOOP = "loop"


class ActionType(str, Enum):
    """Closed set of action handlers. Every member must have a registered handler."""

    SEND_EMAIL = "send_email"
    SEND_NOTIFICATION = "send_notification"
    SEND_PUSH = "send_push"
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"
    CREATE_CONTACT = "create_contact"
    UPDATE_CONTACT = "update_contact"
    UPDATE_OPPORTUNITY = "update_opportunity"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    CREATE_PROJECT = "create_project"
    CREATE_PROJECT_FROM_TEMPLATE = "create_project_from_template"
    CREATE_ACTIVITY = "create_activity"
    WEBHOOK_CALL = "webhook_call"
    SEND_SLACK = "send_slack"
    AI_GENERATE = "ai_generate"
    AI_CATEGORIZE = "ai_categorize"
    AI_SUMMARIZE = "ai_summarize"


class RunStatus(str, Enum):
    """Workflow run status."""

    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_RUN_STATUSES = frozenset(
    {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED}
)


class RunStepStatus(str, Enum):
    """Status of one step attempt in the run log."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


class ScheduledStepStatus(str, Enum):
    """Status of a delay wake-up row."""

    PENDING = "pending"
    EXECUTED = "executed"
    CANCELLED = "cancelled"


class ScheduleType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CRON = "cron"


class DelayUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class ConditionOperator(str, Enum):
    """Comparison operators understood by the condition evaluator."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    IN = "in"
    NOT_IN = "not_in"


class ConditionLogic(str, Enum):
    AND = "and"
    OR = "or"


class TagEntityType(str, Enum):
    CONTACT = "contact"
    COMPANY = "company"


# Entity snapshots copied from trigger data into the run context
CONTEXT_ENTITY_KEYS = ("contact", "opportunity", "task", "project", "company")
