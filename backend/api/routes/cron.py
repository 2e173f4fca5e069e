"""Cron endpoint for external schedulers.

Runs the scheduled-trigger sweep and the delayed-step sweep once. When
``CRON_SECRET`` is set the caller must send ``Authorization: Bearer <secret>``.
"""

import hmac
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, Header

from app.dependencies import Container, get_container
from core.exceptions import UnauthorizedError
from core.utils import isoformat_utc

logger = structlog.get_logger(__name__)

router = APIRouter()


def _check_cron_secret(secret: str, authorization: Optional[str]) -> None:
    if not secret:
        return
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        logger.warning("Unauthorized cron request")
        raise UnauthorizedError("Invalid cron secret")


@router.post("/workflows")
async def run_workflow_sweeps(
    authorization: Optional[str] = Header(default=None),
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    """Process due schedules, then resume due delays."""
    _check_cron_secret(container.settings.CRON_SECRET, authorization)

    scheduled = await container.scheduler.process_scheduled_workflows()
    delayed = await container.scheduler.resume_delayed_workflows()

    logger.info("Cron sweep complete", scheduled=scheduled, delayed=delayed)
    return {
        "success": True,
        "scheduled": scheduled,
        "delayed": delayed,
        "timestamp": isoformat_utc(container.services.clock()),
    }
