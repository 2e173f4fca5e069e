"""Persistence port for workflow definitions, runs and delay wake-ups.

The engine, event bus and scheduled sweeps only talk to ``WorkflowStore``.
``SqlWorkflowStore`` is the SQLAlchemy adapter; tests may substitute any
object implementing the same coroutines.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.constants import RunStatus, RunStepStatus, ScheduledStepStatus
from core.utils import json_safe
from db.models import (
    Workflow,
    WorkflowRun,
    WorkflowRunStep,
    WorkflowScheduledStep,
    WorkflowStep,
)
from services.base import BaseService


class WorkflowStore(ABC):
    """Repository-style calls used by the workflow subsystem."""

    # ─── Definitions ───────────────────────────────────────

    @abstractmethod
    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        """Workflow with its steps loaded, or None."""

    @abstractmethod
    async def list_active_workflows(
        self, trigger_type: str, organization_id: Optional[str] = None
    ) -> list[Workflow]:
        """Active workflows of one trigger type, steps loaded."""

    # ─── Runs ──────────────────────────────────────────────

    @abstractmethod
    async def create_run(
        self,
        workflow: Workflow,
        trigger_data: dict,
        context: dict,
        started_at: datetime,
    ) -> WorkflowRun: ...

    @abstractmethod
    async def get_run(self, run_id: str) -> Optional[WorkflowRun]: ...

    @abstractmethod
    async def update_run_progress(self, run_id: str, current_step: int, context: dict) -> bool:
        """Checkpoint written before every step; False once the run left ``running``."""

    @abstractmethod
    async def update_run_status(
        self,
        run_id: str,
        status: RunStatus,
        *,
        current_step: Optional[int] = None,
        context: Optional[dict] = None,
        error_message: Optional[str] = None,
        completed_at: Optional[datetime] = None,
        only_from: Optional[Iterable[RunStatus]] = None,
    ) -> bool:
        """Write the run's status; with ``only_from`` the write is skipped
        (and False returned) unless the current status is one of them."""

    @abstractmethod
    async def transition_run_status(
        self,
        run_id: str,
        from_statuses: Iterable[RunStatus],
        to_status: RunStatus,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """Compare-and-set on status; True when this call made the change."""

    # ─── Step log ──────────────────────────────────────────

    @abstractmethod
    async def create_run_step(
        self,
        run_id: str,
        step: WorkflowStep,
        input_data: dict,
        started_at: datetime,
    ) -> str:
        """Insert a ``running`` log row and return its id."""

    @abstractmethod
    async def finish_run_step(
        self,
        log_id: str,
        status: RunStepStatus,
        *,
        output_data: Any = None,
        error_message: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> None: ...

    @abstractmethod
    async def list_run_steps(self, run_id: str) -> list[WorkflowRunStep]: ...

    # ─── Scheduled steps ───────────────────────────────────

    @abstractmethod
    async def create_scheduled_step(
        self,
        run_id: str,
        step_order: int,
        execute_at: datetime,
        context: dict,
    ) -> WorkflowScheduledStep: ...

    @abstractmethod
    async def list_due_scheduled_steps(
        self, now: datetime, limit: int
    ) -> list[WorkflowScheduledStep]:
        """Pending rows with execute_at <= now, oldest first."""

    @abstractmethod
    async def claim_scheduled_step(self, scheduled_step_id: str) -> bool:
        """Atomically move pending -> executed. False if someone else did."""

    @abstractmethod
    async def set_scheduled_step_status(
        self, scheduled_step_id: str, status: ScheduledStepStatus
    ) -> None: ...

    @abstractmethod
    async def cancel_scheduled_steps(self, run_id: str) -> int:
        """Cancel every pending row of a run; returns the count."""

    @abstractmethod
    async def count_pending_scheduled_steps(self) -> int: ...


class SqlWorkflowStore(WorkflowStore):
    """SQLAlchemy adapter; one short transaction per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # ─── Definitions ───────────────────────────────────────

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        async with self._session() as session:
            return await BaseService(Workflow, session).get_by_id(workflow_id)

    async def list_active_workflows(
        self, trigger_type: str, organization_id: Optional[str] = None
    ) -> list[Workflow]:
        query = select(Workflow).where(
            Workflow.is_active.is_(True),
            Workflow.trigger_type == getattr(trigger_type, "value", trigger_type),
        )
        if organization_id is not None:
            query = query.where(Workflow.organization_id == organization_id)
        async with self._session() as session:
            result = await session.execute(query.order_by(Workflow.created_at.asc()))
            return list(result.scalars().all())

    # ─── Runs ──────────────────────────────────────────────

    async def create_run(
        self,
        workflow: Workflow,
        trigger_data: dict,
        context: dict,
        started_at: datetime,
    ) -> WorkflowRun:
        async with self._session() as session:
            return await BaseService(WorkflowRun, session).create(
                {
                    "workflow_id": workflow.id,
                    "workflow_name": workflow.name,
                    "organization_id": workflow.organization_id,
                    "trigger_type": workflow.trigger_type,
                    "trigger_data": json_safe(trigger_data or {}),
                    "status": RunStatus.RUNNING.value,
                    "current_step": 0,
                    "context": context,
                    "started_at": started_at,
                }
            )

    async def get_run(self, run_id: str) -> Optional[WorkflowRun]:
        async with self._session() as session:
            return await BaseService(WorkflowRun, session).get_by_id(run_id)

    async def update_run_progress(self, run_id: str, current_step: int, context: dict) -> bool:
        async with self._session() as session:
            result = await session.execute(
                update(WorkflowRun)
                .where(WorkflowRun.id == run_id, WorkflowRun.status == RunStatus.RUNNING.value)
                .values(current_step=current_step, context=context)
            )
            return (result.rowcount or 0) == 1

    async def update_run_status(
        self,
        run_id: str,
        status: RunStatus,
        *,
        current_step: Optional[int] = None,
        context: Optional[dict] = None,
        error_message: Optional[str] = None,
        completed_at: Optional[datetime] = None,
        only_from: Optional[Iterable[RunStatus]] = None,
    ) -> bool:
        values: dict[str, Any] = {"status": RunStatus(status).value}
        if current_step is not None:
            values["current_step"] = current_step
        if context is not None:
            values["context"] = context
        if error_message is not None:
            values["error_message"] = error_message
        if completed_at is not None:
            values["completed_at"] = completed_at
        stmt = update(WorkflowRun).where(WorkflowRun.id == run_id)
        if only_from is not None:
            stmt = stmt.where(WorkflowRun.status.in_([RunStatus(s).value for s in only_from]))
        async with self._session() as session:
            result = await session.execute(stmt.values(**values))
            return (result.rowcount or 0) == 1

    async def transition_run_status(
        self,
        run_id: str,
        from_statuses: Iterable[RunStatus],
        to_status: RunStatus,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        values: dict[str, Any] = {"status": RunStatus(to_status).value}
        if completed_at is not None:
            values["completed_at"] = completed_at
        async with self._session() as session:
            result = await session.execute(
                update(WorkflowRun)
                .where(
                    WorkflowRun.id == run_id,
                    WorkflowRun.status.in_([RunStatus(s).value for s in from_statuses]),
                )
                .values(**values)
            )
            return (result.rowcount or 0) == 1

    # ─── Step log ──────────────────────────────────────────

    async def create_run_step(
        self,
        run_id: str,
        step: WorkflowStep,
        input_data: dict,
        started_at: datetime,
    ) -> str:
        async with self._session() as session:
            row = await BaseService(WorkflowRunStep, session).create(
                {
                    "run_id": run_id,
                    "step_id": step.id,
                    "step_order": step.step_order,
                    "step_type": step.step_type,
                    "action_type": step.action_type,
                    "status": RunStepStatus.RUNNING.value,
                    "input_data": json_safe(input_data),
                    "started_at": started_at,
                }
            )
            return row.id

    async def finish_run_step(
        self,
        log_id: str,
        status: RunStepStatus,
        *,
        output_data: Any = None,
        error_message: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> None:
        if output_data is not None and not isinstance(output_data, dict):
            output_data = {"value": output_data}
        async with self._session() as session:
            await session.execute(
                update(WorkflowRunStep)
                .where(WorkflowRunStep.id == log_id)
                .values(
                    status=RunStepStatus(status).value,
                    output_data=json_safe(output_data),
                    error_message=error_message,
                    completed_at=completed_at,
                )
            )

    async def list_run_steps(self, run_id: str) -> list[WorkflowRunStep]:
        async with self._session() as session:
            result = await session.execute(
                select(WorkflowRunStep)
                .where(WorkflowRunStep.run_id == run_id)
                .order_by(WorkflowRunStep.started_at.asc(), WorkflowRunStep.created_at.asc())
            )
            return list(result.scalars().all())

    # ─── Scheduled steps ───────────────────────────────────

    async def create_scheduled_step(
        self,
        run_id: str,
        step_order: int,
        execute_at: datetime,
        context: dict,
    ) -> WorkflowScheduledStep:
        async with self._session() as session:
            return await BaseService(WorkflowScheduledStep, session).create(
                {
                    "run_id": run_id,
                    "step_order": step_order,
                    "execute_at": execute_at,
                    "context": context,
                    "status": ScheduledStepStatus.PENDING.value,
                }
            )

    async def list_due_scheduled_steps(
        self, now: datetime, limit: int
    ) -> list[WorkflowScheduledStep]:
        async with self._session() as session:
            result = await session.execute(
                select(WorkflowScheduledStep)
                .where(
                    WorkflowScheduledStep.status == ScheduledStepStatus.PENDING.value,
                    WorkflowScheduledStep.execute_at <= now,
                )
                .order_by(WorkflowScheduledStep.execute_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def claim_scheduled_step(self, scheduled_step_id: str) -> bool:
        # Single conditional UPDATE; the row count is the lock
        async with self._session() as session:
            result = await session.execute(
                update(WorkflowScheduledStep)
                .where(
                    WorkflowScheduledStep.id == scheduled_step_id,
                    WorkflowScheduledStep.status == ScheduledStepStatus.PENDING.value,
                )
                .values(status=ScheduledStepStatus.EXECUTED.value)
            )
            return (result.rowcount or 0) == 1

    async def set_scheduled_step_status(
        self, scheduled_step_id: str, status: ScheduledStepStatus
    ) -> None:
        async with self._session() as session:
            await session.execute(
                update(WorkflowScheduledStep)
                .where(WorkflowScheduledStep.id == scheduled_step_id)
                .values(status=ScheduledStepStatus(status).value)
            )

    async def cancel_scheduled_steps(self, run_id: str) -> int:
        async with self._session() as session:
            result = await session.execute(
                update(WorkflowScheduledStep)
                .where(
                    WorkflowScheduledStep.run_id == run_id,
                    WorkflowScheduledStep.status == ScheduledStepStatus.PENDING.value,
                )
                .values(status=ScheduledStepStatus.CANCELLED.value)
            )
            return result.rowcount or 0

    async def count_pending_scheduled_steps(self) -> int:
        async with self._session() as session:
            result = await session.execute(
                select(func.count())
                .select_from(WorkflowScheduledStep)
                .where(WorkflowScheduledStep.status == ScheduledStepStatus.PENDING.value)
            )
            return result.scalar() or 0
