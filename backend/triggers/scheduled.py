"""Scheduled trigger processing and delayed-step resumption.

Both sweeps are meant to run on a fixed cadence (Celery beat or the cron
endpoint). Neither keeps state between calls:

- ``process_scheduled_workflows`` starts every schedule-triggered workflow
  whose configured time falls within the window around ``now``.
- ``resume_delayed_workflows`` claims due ``workflow_scheduled_steps`` rows
  with a compare-and-set and resumes their runs. A lost claim means another
  worker already took the row.

Important: stored timestamps are naive UTC; schedule times are compared in
the schedule's own timezone (default ``SCHEDULE_TIMEZONE``).
"""

from datetime import datetime, timezone
from typing import Callable, Optional, Union
from zoneinfo import ZoneInfo

import structlog

from app.config import Settings, get_settings
from core.constants import ScheduledStepStatus, ScheduleType, TriggerType
from core.exceptions import WorkflowValidationError
from core.utils import isoformat_utc, utc_now
from services.workflow_store import WorkflowStore
from workflow.engine import WorkflowEngine
from workflow.validation import ScheduleTriggerConfig, parse_trigger_config

logger = structlog.get_logger(__name__)

DEFAULT_TIME = "09:00"
DEFAULT_DAY_OF_WEEK = 1  # Monday, with Sunday = 0
DEFAULT_DAY_OF_MONTH = 1
MINUTES_PER_DAY = 24 * 60

_cron_warning_logged = False


def _local_now(now: datetime, tz_name: Optional[str]) -> datetime:
    aware = now if now.tzinfo is not None else now.replace(tzinfo=timezone.utc)
    if not tz_name:
        return aware
    return aware.astimezone(ZoneInfo(tz_name))


def should_run_now(
    config: Union[ScheduleTriggerConfig, dict],
    now: datetime,
    window_minutes: int = 5,
    default_timezone: Optional[str] = None,
) -> bool:
    """Whether a schedule is due at ``now``.

    Due means within ``window_minutes`` of the target time (either side,
    wrapping at midnight) and, for weekly and monthly schedules, on the
    configured day. Cron schedules are not supported and never run.

    Args:
        config: Schedule trigger config
        now: Current time; naive values are taken as UTC
        window_minutes: Half-width of the acceptance window
        default_timezone: Zone used when the config has none
    """
    global _cron_warning_logged

    if not isinstance(config, ScheduleTriggerConfig):
        config = ScheduleTriggerConfig.model_validate(config or {})

    local = _local_now(now, config.timezone or default_timezone)

    target_hour, target_minute = (int(part) for part in (config.time or DEFAULT_TIME).split(":"))
    diff = abs((local.hour * 60 + local.minute) - (target_hour * 60 + target_minute))
    if window_minutes < diff < MINUTES_PER_DAY - window_minutes:
        return False

    if config.schedule_type == ScheduleType.DAILY:
        return True
    if config.schedule_type == ScheduleType.WEEKLY:
        day_of_week = (local.weekday() + 1) % 7
        target = DEFAULT_DAY_OF_WEEK if config.day_of_week is None else config.day_of_week
        return day_of_week == target
    if config.schedule_type == ScheduleType.MONTHLY:
        target = DEFAULT_DAY_OF_MONTH if config.day_of_month is None else config.day_of_month
        return local.day == target

    if not _cron_warning_logged:
        logger.warning("Cron schedules are not supported; skipping", cron=config.cron)
        _cron_warning_logged = True
    return False


class ScheduledProcessor:
    """Runs the schedule and resume sweeps against a store and engine."""

    def __init__(
        self,
        store: WorkflowStore,
        engine: WorkflowEngine,
        clock: Callable[[], datetime] = utc_now,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.engine = engine
        self.clock = clock
        self.settings = settings or get_settings()

    async def process_scheduled_workflows(self) -> dict[str, int]:
        """Start every schedule-triggered workflow that is due now.

        Returns:
            ``{"processed": n, "errors": n}``
        """
        now = self.clock()
        logger.info("Processing scheduled workflows", timestamp=isoformat_utc(now))

        try:
            workflows = await self.store.list_active_workflows(TriggerType.SCHEDULE)
        except Exception as e:
            logger.error("Failed to load scheduled workflows", error=str(e))
            return {"processed": 0, "errors": 1}

        processed = 0
        errors = 0
        for workflow in workflows:
            try:
                config = parse_trigger_config(TriggerType.SCHEDULE, workflow.trigger_config)
            except WorkflowValidationError as e:
                logger.warning("Skipping workflow with invalid schedule", workflow_id=workflow.id, error=e.message)
                continue

            if not should_run_now(
                config,
                now,
                window_minutes=self.settings.SCHEDULE_WINDOW_MINUTES,
                default_timezone=self.settings.SCHEDULE_TIMEZONE,
            ):
                continue

            logger.info(
                "Running scheduled workflow",
                workflow_id=workflow.id,
                workflow_name=workflow.name,
                schedule_type=config.schedule_type.value,
            )
            try:
                await self.engine.execute_workflow(
                    workflow,
                    workflow.steps,
                    {
                        "scheduled": True,
                        "run_time": isoformat_utc(now),
                        "schedule_type": config.schedule_type.value,
                    },
                )
                processed += 1
            except Exception as e:
                logger.error("Scheduled workflow execution failed", workflow_id=workflow.id, error=str(e))
                errors += 1

        logger.info("Scheduled processing complete", processed=processed, errors=errors, total=len(workflows))
        return {"processed": processed, "errors": errors}

    async def resume_delayed_workflows(self) -> dict[str, int]:
        """Resume paused runs whose delay has elapsed.

        Returns:
            ``{"resumed": n, "skipped": n, "errors": n}``; a row is skipped when
            another worker claimed it first or its run can no longer resume.
        """
        now = self.clock()
        logger.info("Checking for delayed workflows to resume", timestamp=isoformat_utc(now))

        try:
            due = await self.store.list_due_scheduled_steps(now, self.settings.RESUME_BATCH_SIZE)
        except Exception as e:
            logger.error("Failed to load scheduled steps", error=str(e))
            return {"resumed": 0, "skipped": 0, "errors": 1}

        resumed = 0
        skipped = 0
        errors = 0
        for scheduled in due:
            log = logger.bind(scheduled_step_id=scheduled.id, run_id=scheduled.run_id)
            try:
                if not await self.store.claim_scheduled_step(scheduled.id):
                    log.debug("Scheduled step already claimed")
                    skipped += 1
                    continue

                log.info("Resuming workflow", step_order=scheduled.step_order)
                run = await self.engine.resume_workflow(scheduled.run_id, scheduled.context or {})
                if run is None:
                    skipped += 1
                else:
                    resumed += 1
            except Exception as e:
                log.error("Failed to resume workflow", error=str(e))
                await self._cancel_quietly(scheduled.id)
                errors += 1

        logger.info(
            "Resumption complete", resumed=resumed, skipped=skipped, errors=errors, total=len(due)
        )
        return {"resumed": resumed, "skipped": skipped, "errors": errors}

    async def get_pending_scheduled_steps_count(self) -> int:
        try:
            return await self.store.count_pending_scheduled_steps()
        except Exception as e:
            logger.error("Failed to count pending scheduled steps", error=str(e))
            return 0

    async def cancel_scheduled_steps(self, run_id: str) -> int:
        """Cancel every pending wake-up of a run."""
        try:
            return await self.store.cancel_scheduled_steps(run_id)
        except Exception as e:
            logger.error("Failed to cancel scheduled steps", run_id=run_id, error=str(e))
            return 0

    async def _cancel_quietly(self, scheduled_step_id: str) -> None:
        try:
            await self.store.set_scheduled_step_status(scheduled_step_id, ScheduledStepStatus.CANCELLED)
        except Exception as e:
            logger.error("Could not cancel scheduled step", scheduled_step_id=scheduled_step_id, error=str(e))
