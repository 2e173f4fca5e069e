"""Workflow Execution Engine: durable, resumable step runner.

Runs a workflow's steps in ``step_order`` as a state machine persisted in
``workflow_runs``:

    running ⇄ paused → completed | failed        (cancelled is set out-of-band)

- Steps are sorted by ``step_order``; the run's ``current_step`` is an index
  into that sorted list and is checkpointed before every step together
  with the context.
- Each step's output is merged into a new context at ``steps[step_order]``.
- Condition steps jump to ``step_order + 1`` or ``else_goto_step``; a jump
  target that does not exist ends the run as completed.
- Delay steps pause the run, then insert a ``workflow_scheduled_steps`` row.
  Nothing waits in memory; the scheduled processor calls
  ``resume_workflow`` once the row is due.
- Loop steps record up to ``max_iterations`` items; they do not run nested
  steps.

Step failures are written to the run, never raised to the caller. Run writes
only apply while the run is still ``running``, so a run cancelled mid-step
stays cancelled and its remaining steps are skipped.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Union

import structlog

from actions.base import ActionServices
from actions.registry import ActionRegistry, get_action_registry
from app.config import Settings, get_settings
from core.constants import (
    TERMINAL_RUN_STATUSES,
    DelayUnit,
    RunStatus,
    RunStepStatus,
    StepType,
)
from core.exceptions import WorkflowEngineError, WorkflowValidationError
from core.utils import isoformat_utc, utc_now
from db.models import Workflow, WorkflowRun, WorkflowStep
from services.workflow_store import WorkflowStore
from workflow.conditions import evaluate
from workflow.context import WorkflowContext
from workflow.templating import get_nested_value
from workflow.validation import (
    ConditionStepConfig,
    DelayStepConfig,
    LoopStepConfig,
    find_duplicate_step_orders,
    parse_step_config,
)

logger = structlog.get_logger(__name__)

# Guards against else_goto_step cycles
MAX_STEPS_PER_RUN = 1000

_DELAY_UNITS = {
    DelayUnit.MINUTES: "minutes",
    DelayUnit.HOURS: "hours",
    DelayUnit.DAYS: "days",
}


# ─── Step Result ──────────────────────────────────────────────

@dataclass
class StepExecutionResult:
    """Outcome of one step.

    ``next_step_order`` is only set by condition steps; ``paused`` and
    ``resume_at`` only by delay steps.
    """

    status: RunStepStatus
    output: Any = None
    error: Optional[str] = None
    next_step_order: Optional[int] = None
    paused: bool = False
    resume_at: Optional[datetime] = None

    @property
    def failed(self) -> bool:
        return self.status == RunStepStatus.FAILED


def sort_steps(steps: Iterable[WorkflowStep]) -> list[WorkflowStep]:
    """Steps in execution order; duplicate step_order values are rejected."""
    ordered = sorted(steps, key=lambda s: s.step_order)
    duplicates = find_duplicate_step_orders(ordered)
    if duplicates:
        raise WorkflowValidationError(
            f"Duplicate step_order values: {', '.join(str(d) for d in duplicates)}"
        )
    return ordered


# ─── Engine ───────────────────────────────────────────────────

class WorkflowEngine:
    """Drives workflow runs against a WorkflowStore.

    Stateless between calls: everything needed to continue a run lives in
    the store, so any number of engines may run side by side.
    """

    def __init__(
        self,
        store: WorkflowStore,
        services: ActionServices,
        registry: Optional[ActionRegistry] = None,
        clock: Callable[[], datetime] = utc_now,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.services = services
        self.registry = registry or get_action_registry()
        self.clock = clock
        self.settings = settings or get_settings()

    # ─── Public API ───────────────────────────────────────────

    async def execute_workflow(
        self,
        workflow: Workflow,
        steps: Optional[Iterable[WorkflowStep]] = None,
        trigger_data: Optional[dict] = None,
    ) -> WorkflowRun:
        """Start a new run and drive it until it completes, fails or pauses.

        Raises:
            WorkflowEngineError: only when the run row itself cannot be created
        """
        trigger_data = dict(trigger_data or {})
        started_at = self.clock()
        context = WorkflowContext.from_trigger(
            workflow.trigger_type, trigger_data, workflow.organization_id, started_at
        )

        try:
            run = await self.store.create_run(workflow, trigger_data, context.to_dict(), started_at)
        except Exception as e:
            logger.error("Failed to create workflow run", workflow_id=workflow.id, error=str(e))
            raise WorkflowEngineError(f"Could not create run for workflow {workflow.id}: {e}") from e

        logger.info(
            "Workflow run started",
            run_id=run.id,
            workflow_id=workflow.id,
            trigger_type=workflow.trigger_type,
        )

        try:
            ordered = sort_steps(steps if steps is not None else workflow.steps)
            await self._run_steps(run.id, ordered, 0, context)
        except Exception as e:
            await self._fail_run(run.id, str(e), context)

        return await self._reload(run)

    async def resume_workflow(
        self,
        run_id: str,
        context: Union[WorkflowContext, dict],
    ) -> Optional[WorkflowRun]:
        """Continue a paused run from its persisted ``current_step``.

        ``context`` is the snapshot captured when the run paused and takes
        precedence over the run's stored context.

        Returns:
            The updated run, or None when the run cannot be resumed (missing
            run or workflow, run not paused, or no step at ``current_step``).
            Exactly one concurrent caller wins the paused to running switch.
        """
        run = await self.store.get_run(run_id)
        if run is None:
            logger.warning("Cannot resume: run not found", run_id=run_id)
            return None
        if RunStatus(run.status) in TERMINAL_RUN_STATUSES:
            logger.info("Cannot resume: run already finished", run_id=run_id, status=run.status)
            return None
        if run.status != RunStatus.PAUSED.value:
            logger.info("Cannot resume: run is not paused", run_id=run_id, status=run.status)
            return None

        workflow = await self.store.get_workflow(run.workflow_id)
        if workflow is None:
            logger.warning("Cannot resume: workflow not found", run_id=run_id, workflow_id=run.workflow_id)
            return None

        if not isinstance(context, WorkflowContext):
            context = WorkflowContext.from_dict(context or {})

        try:
            ordered = sort_steps(workflow.steps)
        except WorkflowValidationError as e:
            await self._fail_run(run_id, e.message, context)
            return await self._reload(run)

        start_index = next(
            (i for i, step in enumerate(ordered) if step.step_order == run.current_step), None
        )
        if start_index is None:
            # The definition was edited while this run was paused
            logger.warning(
                "Cannot resume: no step at current_step",
                run_id=run_id,
                workflow_id=workflow.id,
                current_step=run.current_step,
            )
            return None

        # Another worker may have resumed or cancelled the run since it was read
        if not await self.store.transition_run_status(run_id, (RunStatus.PAUSED,), RunStatus.RUNNING):
            logger.info("Cannot resume: run is no longer paused", run_id=run_id)
            return None

        logger.info("Resuming workflow run", run_id=run_id, workflow_id=workflow.id, from_step=run.current_step)
        try:
            await self._run_steps(run_id, ordered, start_index, context)
        except Exception as e:
            await self._fail_run(run_id, str(e), context)

        return await self._reload(run)

    async def execute_step(
        self,
        run_id: str,
        step: WorkflowStep,
        context: WorkflowContext,
    ) -> StepExecutionResult:
        """Run one step and record it in the run-step log.

        Step errors are caught and returned as a failed result.
        """
        log_id = await self.store.create_run_step(
            run_id,
            step,
            {"config_keys": list((step.config or {}).keys())},
            self.clock(),
        )

        try:
            result = await self._dispatch(run_id, step, context)
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or e.__class__.__name__
            logger.error(
                "Step failed",
                run_id=run_id,
                step_order=step.step_order,
                step_type=step.step_type,
                action_type=step.action_type,
                error=message,
            )
            await self.store.finish_run_step(
                log_id,
                RunStepStatus.FAILED,
                error_message=message,
                completed_at=self.clock(),
            )
            return StepExecutionResult(status=RunStepStatus.FAILED, error=message)

        await self.store.finish_run_step(
            log_id,
            RunStepStatus.PENDING if result.paused else RunStepStatus.SUCCESS,
            output_data=result.output,
            completed_at=self.clock(),
        )
        return result

    async def cancel_run(self, run_id: str) -> bool:
        """Cancel a running or paused run and its pending wake-ups."""
        cancelled = await self.store.transition_run_status(
            run_id,
            (RunStatus.RUNNING, RunStatus.PAUSED),
            RunStatus.CANCELLED,
            completed_at=self.clock(),
        )
        if cancelled:
            count = await self.store.cancel_scheduled_steps(run_id)
            logger.info("Workflow run cancelled", run_id=run_id, scheduled_steps_cancelled=count)
        return cancelled

    # ─── Step loop ────────────────────────────────────────────

    async def _run_steps(
        self,
        run_id: str,
        ordered: list[WorkflowStep],
        index: int,
        context: WorkflowContext,
    ) -> Optional[RunStatus]:
        """Drive the run from ``index``.

        Every run write is conditional on the run still being ``running``.
        When one of them matches nothing (the run was cancelled meanwhile),
        the loop stops and None is returned.
        """
        index_by_order = {step.step_order: i for i, step in enumerate(ordered)}
        executed = 0

        while index < len(ordered):
            if executed >= MAX_STEPS_PER_RUN:
                raise WorkflowEngineError(f"Step limit of {MAX_STEPS_PER_RUN} exceeded")
            executed += 1

            step = ordered[index]
            if not await self.store.update_run_progress(run_id, index, context.to_dict()):
                return self._stopped(run_id, step.step_order)

            result = await self.execute_step(run_id, step, context)
            previous = context
            context = context.with_step_output(step.step_order, result.output)

            if result.failed:
                if not await self._fail_run(run_id, result.error or "Step failed", context):
                    return self._stopped(run_id, step.step_order)
                return RunStatus.FAILED

            if result.paused:
                return await self._pause(run_id, step, index, previous, context, result.resume_at)

            if result.next_step_order is not None:
                index = index_by_order.get(result.next_step_order, len(ordered))
            else:
                index += 1

        completed = await self.store.update_run_status(
            run_id,
            RunStatus.COMPLETED,
            current_step=len(ordered),
            context=context.to_dict(),
            completed_at=self.clock(),
            only_from=(RunStatus.RUNNING,),
        )
        if not completed:
            return self._stopped(run_id, None)
        logger.info("Workflow run completed", run_id=run_id, steps_executed=executed)
        return RunStatus.COMPLETED

    async def _pause(
        self,
        run_id: str,
        step: WorkflowStep,
        index: int,
        previous: WorkflowContext,
        context: WorkflowContext,
        resume_at: datetime,
    ) -> Optional[RunStatus]:
        # The run must be paused before its wake-up row exists
        paused = await self.store.update_run_status(
            run_id,
            RunStatus.PAUSED,
            current_step=index + 1,
            context=context.to_dict(),
            only_from=(RunStatus.RUNNING,),
        )
        if not paused:
            return self._stopped(run_id, step.step_order)

        # The wake-up carries the context as it was before the delay step
        await self.store.create_scheduled_step(
            run_id, step.step_order + 1, resume_at, previous.to_dict()
        )
        logger.info(
            "Workflow run paused for delay",
            run_id=run_id,
            step_order=step.step_order,
        )
        return RunStatus.PAUSED

    def _stopped(self, run_id: str, step_order: Optional[int]) -> None:
        logger.warning("Run is no longer running; stopping", run_id=run_id, step_order=step_order)
        return None

    async def _dispatch(
        self,
        run_id: str,
        step: WorkflowStep,
        context: WorkflowContext,
    ) -> StepExecutionResult:
        try:
            step_type = StepType(step.step_type)
        except ValueError:
            raise WorkflowValidationError(f"Unknown step type: {step.step_type}")

        if step_type == StepType.ACTION:
            if not step.action_type:
                raise WorkflowValidationError("Action type is required for action steps")
            action_result = await self.registry.dispatch(
                step.action_type, step.config, context, self.services
            )
            return StepExecutionResult(status=RunStepStatus.SUCCESS, output=action_result.output)

        config = parse_step_config(step_type, step.config)
        if step_type == StepType.CONDITION:
            return self._evaluate_condition(step, config, context)
        if step_type == StepType.DELAY:
            return self._schedule_delay(run_id, config)
        return self._execute_loop(run_id, step, config, context)

    def _evaluate_condition(
        self,
        step: WorkflowStep,
        config: ConditionStepConfig,
        context: WorkflowContext,
    ) -> StepExecutionResult:
        met = evaluate(config.field, config.operator, config.value, context.to_dict())
        if met or step.else_goto_step is None:
            next_order = step.step_order + 1
        else:
            next_order = step.else_goto_step
        return StepExecutionResult(
            status=RunStepStatus.SUCCESS,
            output={"condition_met": met, "next_step_order": next_order},
            next_step_order=next_order,
        )

    def _schedule_delay(self, run_id: str, config: DelayStepConfig) -> StepExecutionResult:
        execute_at = self.clock() + timedelta(**{_DELAY_UNITS[config.delay_type]: config.delay_value})
        delay_value = int(config.delay_value) if config.delay_value.is_integer() else config.delay_value

        logger.info(
            "Delay scheduled",
            run_id=run_id,
            execute_at=isoformat_utc(execute_at),
            delay_type=config.delay_type.value,
            delay_value=delay_value,
        )
        return StepExecutionResult(
            status=RunStepStatus.SUCCESS,
            output={
                "scheduled_for": isoformat_utc(execute_at),
                "delay_type": config.delay_type.value,
                "delay_value": delay_value,
            },
            paused=True,
            resume_at=execute_at,
        )

    def _execute_loop(
        self,
        run_id: str,
        step: WorkflowStep,
        config: LoopStepConfig,
        context: WorkflowContext,
    ) -> StepExecutionResult:
        collection = get_nested_value(context.to_dict(), config.collection_field)
        if not isinstance(collection, list):
            logger.warning("Loop collection not found or not a list", field=config.collection_field)
            return StepExecutionResult(
                status=RunStepStatus.SUCCESS,
                output={
                    "iterations": 0,
                    "skipped": True,
                    "reason": "Collection not found or not an array",
                },
            )

        max_iterations = config.max_iterations or self.settings.LOOP_DEFAULT_MAX_ITERATIONS
        iterations = min(len(collection), max_iterations)
        logger.info(
            "Executing loop",
            run_id=run_id,
            collection_length=len(collection),
            iterations=iterations,
        )
        # Items are recorded only; nested step execution is not supported
        results = [
            {"index": i, config.item_variable: item}
            for i, item in enumerate(collection[:iterations])
        ]
        return StepExecutionResult(
            status=RunStepStatus.SUCCESS,
            output={
                "iterations": iterations,
                "max_iterations": max_iterations,
                "collection_length": len(collection),
                "results": results,
            },
        )

    # ─── Persistence helpers ──────────────────────────────────

    async def _fail_run(self, run_id: str, message: str, context: WorkflowContext) -> bool:
        """Mark a running or paused run failed; False when it already left those states."""
        logger.error("Workflow run failed", run_id=run_id, error=message)
        try:
            return await self.store.update_run_status(
                run_id,
                RunStatus.FAILED,
                context=context.to_dict(),
                error_message=message,
                completed_at=self.clock(),
                only_from=(RunStatus.RUNNING, RunStatus.PAUSED),
            )
        except Exception as e:
            logger.error("Could not record run failure", run_id=run_id, error=str(e), exc_info=True)
            return False

    async def _reload(self, run: WorkflowRun) -> WorkflowRun:
        try:
            return await self.store.get_run(run.id) or run
        except Exception as e:
            logger.warning("Could not reload run", run_id=run.id, error=str(e))
            return run
