"""Inbound webhook trigger for webhook-triggered workflows.

POST /api/v1/webhooks/workflow/{workflow_id} starts a run in the
background and answers 202 straight away; GET describes the endpoint.
"""

import json
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status

from app.dependencies import Container, get_container
from core.constants import TriggerType
from core.exceptions import WorkflowValidationError
from core.webhook_signing import SIGNATURE_HEADERS, verify_webhook_signature
from db.models import Workflow
from workflow.validation import WebhookTriggerConfig, parse_trigger_config

logger = structlog.get_logger(__name__)

router = APIRouter()

_REDACTED_HEADER_PARTS = ("authorization", "cookie")


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def _parse_body(raw: bytes) -> Any:
    if not raw:
        return {}
    text = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {"raw": text}


def _forwardable_headers(request: Request) -> dict[str, str]:
    return {
        key: value
        for key, value in request.headers.items()
        if not any(part in key.lower() for part in _REDACTED_HEADER_PARTS)
    }


async def _load_webhook_workflow(container: Container, workflow_id: str) -> Workflow:
    workflow = await container.store.get_workflow(workflow_id)
    if workflow is None or workflow.trigger_type != TriggerType.WEBHOOK.value:
        logger.warning("Webhook workflow not found", workflow_id=workflow_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Workflow not found or not a webhook-triggered workflow",
        )
    return workflow


def _webhook_config(workflow: Workflow) -> WebhookTriggerConfig:
    try:
        return parse_trigger_config(TriggerType.WEBHOOK, workflow.trigger_config)
    except WorkflowValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)


async def _run_in_background(container: Container, workflow: Workflow, trigger_data: dict) -> None:
    try:
        run = await container.engine.execute_workflow(workflow, workflow.steps, trigger_data)
        logger.info("Webhook workflow finished", workflow_id=workflow.id, run_id=run.id, status=run.status)
    except Exception as e:
        logger.error("Webhook workflow execution failed", workflow_id=workflow.id, error=str(e), exc_info=True)


@router.post("/workflow/{workflow_id}", status_code=status.HTTP_202_ACCEPTED)
async def trigger_workflow_webhook(
    workflow_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    """Trigger a workflow from an external system."""
    workflow = await _load_webhook_workflow(container, workflow_id)
    if not workflow.is_active:
        logger.warning("Webhook workflow is not active", workflow_id=workflow_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Workflow is not active")

    config = _webhook_config(workflow)
    raw_body = await request.body()

    if config.secret:
        signature: Optional[str] = next(
            (request.headers.get(h) for h in SIGNATURE_HEADERS if request.headers.get(h)), None
        )
        if not signature:
            logger.warning("Missing webhook signature", workflow_id=workflow_id)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing webhook signature")
        if not verify_webhook_signature(raw_body, config.secret, signature):
            logger.warning("Invalid webhook signature", workflow_id=workflow_id)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    if config.allowed_ips:
        client_ip = _client_ip(request)
        if client_ip not in config.allowed_ips:
            logger.warning("Webhook IP not allowed", workflow_id=workflow_id, client_ip=client_ip)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="IP address not allowed")

    received_at = datetime.now(timezone.utc).isoformat()
    trigger_data = {
        "webhook": True,
        "payload": _parse_body(raw_body),
        "headers": _forwardable_headers(request),
        "received_at": received_at,
    }

    logger.info(
        "Triggering workflow from webhook",
        workflow_id=workflow_id,
        workflow_name=workflow.name,
        steps_count=len(workflow.steps),
    )
    background_tasks.add_task(_run_in_background, container, workflow, trigger_data)

    return {
        "success": True,
        "message": "Workflow triggered",
        "workflow_id": workflow.id,
        "workflow_name": workflow.name,
        "triggered_at": received_at,
    }


@router.get("/workflow/{workflow_id}")
async def get_workflow_webhook_info(
    workflow_id: str,
    request: Request,
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    """Describe the webhook endpoint of a workflow."""
    workflow = await _load_webhook_workflow(container, workflow_id)
    config = _webhook_config(workflow)
    return {
        "workflow_id": workflow.id,
        "name": workflow.name,
        "is_active": workflow.is_active,
        "trigger_type": workflow.trigger_type,
        "endpoint": request.url.path,
        "method": "POST",
        "signature_required": bool(config.secret),
        "headers": {
            "Content-Type": "application/json",
            "x-webhook-signature": "HMAC-SHA256 hex digest of the raw body (if secret configured)",
        },
    }
