"""Tests for schedule matching and delayed-step resumption."""

import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

import triggers.scheduled as scheduled_module
from core.constants import RunStatus, ScheduledStepStatus
from db.models import WorkflowRun, WorkflowScheduledStep
from triggers.scheduled import ScheduledProcessor, should_run_now

from conftest import T0

PUSH = {"step_order": 1, "step_type": "action", "action_type": "send_push", "config": {"user_id": "u-1", "title": "Later"}}
DELAY = {"step_order": 0, "step_type": "delay", "config": {"delay_type": "hours", "delay_value": 1}}


@pytest.mark.unit
class TestShouldRunNow:

    @pytest.mark.parametrize(
        "now, expected",
        [
            (datetime(2024, 3, 4, 9, 0), True),
            (datetime(2024, 3, 4, 9, 5), True),
            (datetime(2024, 3, 4, 8, 55), True),
            (datetime(2024, 3, 4, 9, 6), False),
            (datetime(2024, 3, 4, 8, 54), False),
            (datetime(2024, 3, 4, 21, 0), False),
        ],
    )
    def test_daily_window(self, now, expected):
        assert should_run_now({"schedule_type": "daily", "time": "09:00"}, now) is expected

    def test_default_time_is_nine(self):
        assert should_run_now({"schedule_type": "daily"}, datetime(2024, 3, 4, 9, 2)) is True

    def test_window_wraps_midnight(self):
        config = {"schedule_type": "daily", "time": "23:58"}
        assert should_run_now(config, datetime(2024, 3, 5, 0, 2)) is True
        assert should_run_now(config, datetime(2024, 3, 5, 0, 4)) is False

    def test_weekly_defaults_to_monday(self):
        assert should_run_now({"schedule_type": "weekly"}, T0) is True
        assert should_run_now({"schedule_type": "weekly", "day_of_week": 0}, T0) is False
        sunday = datetime(2024, 3, 3, 9, 0)
        assert should_run_now({"schedule_type": "weekly", "day_of_week": 0}, sunday) is True

    def test_monthly(self):
        assert should_run_now({"schedule_type": "monthly"}, T0) is False
        assert should_run_now({"schedule_type": "monthly", "day_of_month": 4}, T0) is True
        assert should_run_now({"schedule_type": "monthly"}, datetime(2024, 4, 1, 9, 0)) is True

    def test_timezone_from_config(self):
        # 09:00 UTC is 11:00 in Sofia (UTC+2 in March)
        config = {"schedule_type": "daily", "time": "11:00", "timezone": "Europe/Sofia"}
        assert should_run_now(config, T0) is True
        assert should_run_now({"schedule_type": "daily", "time": "11:00"}, T0) is False

    def test_default_timezone(self):
        config = {"schedule_type": "daily", "time": "11:00"}
        assert should_run_now(config, T0, default_timezone="Europe/Sofia") is True

    def test_narrower_window(self):
        config = {"schedule_type": "daily", "time": "09:00"}
        assert should_run_now(config, datetime(2024, 3, 4, 9, 3), window_minutes=2) is False

    def test_cron_never_runs(self, monkeypatch):
        monkeypatch.setattr(scheduled_module, "_cron_warning_logged", False)
        config = {"schedule_type": "cron", "cron": "0 9 * * *"}

        assert should_run_now(config, T0) is False
        assert scheduled_module._cron_warning_logged is True
        assert should_run_now(config, T0) is False


@pytest.mark.unit
class TestProcessScheduledWorkflows:

    async def test_runs_due_workflows_only(self, scheduler, make_workflow, workflow_store, session_factory):
        push = dict(PUSH, step_order=0)
        due = await make_workflow([push], trigger_type="schedule", trigger_config={"schedule_type": "daily", "time": "09:00"})
        await make_workflow([push], trigger_type="schedule", trigger_config={"schedule_type": "daily", "time": "15:00"})
        await make_workflow([push], trigger_type="schedule", trigger_config={"schedule_type": "hourly"})
        await make_workflow([push], trigger_type="schedule", trigger_config={"schedule_type": "daily"}, is_active=False)

        result = await scheduler.process_scheduled_workflows()

        assert result == {"processed": 1, "errors": 0}

        async with session_factory() as session:
            runs = list((await session.execute(select(WorkflowRun))).scalars().all())
        assert [r.workflow_id for r in runs] == [due.id]
        assert runs[0].trigger_data == {
            "scheduled": True,
            "run_time": "2024-03-04T09:00:00+00:00",
            "schedule_type": "daily",
        }
        assert runs[0].status == RunStatus.COMPLETED.value

    async def test_nothing_scheduled(self, scheduler):
        assert await scheduler.process_scheduled_workflows() == {"processed": 0, "errors": 0}


class _ExplodingEngine:
    async def resume_workflow(self, run_id, context):
        raise RuntimeError("engine down")


@pytest.mark.unit
class TestResumeDelayedWorkflows:

    async def test_not_due_yet(self, engine, scheduler, make_workflow, clock, workflow_store):
        workflow = await make_workflow([DELAY, PUSH])
        await engine.execute_workflow(workflow)

        clock.advance(minutes=59)
        assert await scheduler.resume_delayed_workflows() == {"resumed": 0, "skipped": 0, "errors": 0}
        assert await scheduler.get_pending_scheduled_steps_count() == 1

    async def test_resumes_due_run(self, engine, scheduler, make_workflow, clock, workflow_store, notifier):
        workflow = await make_workflow([DELAY, PUSH])
        run = await engine.execute_workflow(workflow)

        clock.advance(hours=1)
        assert await scheduler.resume_delayed_workflows() == {"resumed": 1, "skipped": 0, "errors": 0}

        assert (await workflow_store.get_run(run.id)).status == RunStatus.COMPLETED.value
        assert await scheduler.get_pending_scheduled_steps_count() == 0
        assert len(notifier.pushes) == 1

        # A second sweep finds nothing
        assert await scheduler.resume_delayed_workflows() == {"resumed": 0, "skipped": 0, "errors": 0}

    async def test_concurrent_claims_exactly_one_wins(self, engine, make_workflow, workflow_store):
        workflow = await make_workflow([DELAY, PUSH])
        await engine.execute_workflow(workflow)
        (row,) = await workflow_store.list_due_scheduled_steps(T0 + timedelta(hours=1), 10)

        results = await asyncio.gather(
            workflow_store.claim_scheduled_step(row.id),
            workflow_store.claim_scheduled_step(row.id),
        )

        assert sorted(results) == [False, True]

    async def test_concurrent_sweeps_resume_once(self, engine, make_workflow, workflow_store, clock, notifier):
        workflow = await make_workflow([DELAY, PUSH])
        run = await engine.execute_workflow(workflow)
        clock.advance(hours=1)

        first = ScheduledProcessor(workflow_store, engine, clock=clock)
        second = ScheduledProcessor(workflow_store, engine, clock=clock)
        results = await asyncio.gather(first.resume_delayed_workflows(), second.resume_delayed_workflows())

        assert sum(r["resumed"] for r in results) == 1
        assert sum(r["errors"] for r in results) == 0
        assert len(notifier.pushes) == 1
        assert (await workflow_store.get_run(run.id)).status == RunStatus.COMPLETED.value

    async def test_lost_claim_counts_as_skipped(self, engine, scheduler, make_workflow, workflow_store, clock):
        workflow = await make_workflow([DELAY, PUSH])
        await engine.execute_workflow(workflow)
        clock.advance(hours=1)

        original_claim = workflow_store.claim_scheduled_step

        async def claim_after_someone_else(scheduled_step_id):
            await original_claim(scheduled_step_id)
            return await original_claim(scheduled_step_id)

        workflow_store.claim_scheduled_step = claim_after_someone_else

        assert await scheduler.resume_delayed_workflows() == {"resumed": 0, "skipped": 1, "errors": 0}

    async def test_run_cancelled_out_of_band_is_skipped(self, engine, scheduler, make_workflow, workflow_store, clock):
        workflow = await make_workflow([DELAY, PUSH])
        run = await engine.execute_workflow(workflow)
        await workflow_store.update_run_status(run.id, RunStatus.CANCELLED)

        clock.advance(hours=1)
        assert await scheduler.resume_delayed_workflows() == {"resumed": 0, "skipped": 1, "errors": 0}
        assert (await workflow_store.get_run(run.id)).status == RunStatus.CANCELLED.value

    async def test_resume_error_cancels_row(self, engine, make_workflow, workflow_store, clock, session_factory):
        workflow = await make_workflow([DELAY, PUSH])
        await engine.execute_workflow(workflow)
        (row,) = await workflow_store.list_due_scheduled_steps(T0 + timedelta(hours=1), 10)
        clock.advance(hours=1)

        processor = ScheduledProcessor(workflow_store, _ExplodingEngine(), clock=clock)
        assert await processor.resume_delayed_workflows() == {"resumed": 0, "skipped": 0, "errors": 1}

        async with session_factory() as session:
            stored = await session.get(WorkflowScheduledStep, row.id)
        assert stored.status == ScheduledStepStatus.CANCELLED.value

    async def test_cancel_scheduled_steps(self, engine, scheduler, make_workflow):
        workflow = await make_workflow([DELAY, PUSH])
        run = await engine.execute_workflow(workflow)

        assert await scheduler.cancel_scheduled_steps(run.id) == 1
        assert await scheduler.cancel_scheduled_steps(run.id) == 0
        assert await scheduler.get_pending_scheduled_steps_count() == 0
