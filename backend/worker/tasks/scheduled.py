"""Celery tasks wrapping the schedule and delayed-step sweeps.

Each task runs its sweep in a fresh event loop with its own database
engine, since async engines cannot be shared across loops. The sweep's
counters dict is the task result.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from app.dependencies import Container, build_container
from db.session import create_db_engine, create_session_factory
from worker.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _with_container(sweep: Callable[[Container], Awaitable[dict]]) -> dict:
    engine = create_db_engine()
    try:
        container = build_container(create_session_factory(engine))
        result = await sweep(container)
        await container.event_bus.drain()
        return result
    finally:
        await engine.dispose()


def _run_sweep(name: str, sweep: Callable[[Container], Awaitable[dict]]) -> dict:
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        result = loop.run_until_complete(_with_container(sweep))
        logger.info(f"[{name}] Done: {result}")
        return result
    finally:
        loop.close()


@celery_app.task(
    name="worker.tasks.scheduled.process_scheduled_workflows",
    bind=True,
    max_retries=2,
    default_retry_delay=15,
    queue="triggers",
)
def process_scheduled_workflows(self) -> dict:
    """Start schedule-triggered workflows that are due."""
    try:
        return _run_sweep("scheduled", lambda c: c.scheduler.process_scheduled_workflows())
    except Exception as exc:
        logger.error(f"[scheduled] Sweep failed: {exc}", exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="worker.tasks.scheduled.resume_delayed_workflows",
    bind=True,
    max_retries=2,
    default_retry_delay=15,
    queue="triggers",
)
def resume_delayed_workflows(self) -> dict:
    """Resume paused runs whose delay has elapsed."""
    try:
        return _run_sweep("delayed", lambda c: c.scheduler.resume_delayed_workflows())
    except Exception as exc:
        logger.error(f"[delayed] Sweep failed: {exc}", exc_info=True)
        raise self.retry(exc=exc)
