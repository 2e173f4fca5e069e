"""Component wiring and FastAPI dependency injection functions.

``build_container`` assembles stores, integrations, the engine and the
trigger processors around one session factory. The API process uses a
lazily created singleton; Celery tasks build their own container on a
fresh database engine per event loop.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from actions.base import ActionServices
from actions.registry import get_action_registry
from app.config import Settings, get_settings
from core.utils import utc_now
from integrations.ai import ClaudeProvider
from integrations.email_sender import SmtpEmailSender
from integrations.notifications import DbNotifier
from integrations.slack import HttpSlackClient
from services.crm_store import SqlCrmStore
from services.workflow_store import SqlWorkflowStore, WorkflowStore
from triggers.event_bus import EventBus
from triggers.scheduled import ScheduledProcessor
from workflow.engine import WorkflowEngine

logger = structlog.get_logger(__name__)


@dataclass
class Container:
    """Everything a request handler or worker task needs."""

    settings: Settings
    store: WorkflowStore
    services: ActionServices
    engine: WorkflowEngine
    event_bus: EventBus
    scheduler: ScheduledProcessor


def build_container(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Optional[Settings] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Callable[[], datetime] = utc_now,
) -> Container:
    settings = settings or get_settings()
    store = SqlWorkflowStore(session_factory)
    services = ActionServices(
        crm=SqlCrmStore(session_factory),
        email=SmtpEmailSender(settings),
        notifier=DbNotifier(session_factory, settings, transport=http_transport),
        slack=HttpSlackClient(session_factory, settings, transport=http_transport),
        ai=ClaudeProvider(settings, transport=http_transport),
        settings=settings,
        http_transport=http_transport,
        clock=clock,
    )
    engine = WorkflowEngine(store, services, get_action_registry(), clock=clock, settings=settings)
    return Container(
        settings=settings,
        store=store,
        services=services,
        engine=engine,
        event_bus=EventBus(store, engine),
        scheduler=ScheduledProcessor(store, engine, clock=clock, settings=settings),
    )


# Singleton
_container: Optional[Container] = None


def get_container() -> Container:
    """Process-wide container bound to the application's session factory."""
    global _container
    if _container is None:
        from db.session import AsyncSessionLocal

        _container = build_container(AsyncSessionLocal)
        logger.info("Workflow components initialized")
    return _container


def get_workflow_engine() -> WorkflowEngine:
    return get_container().engine


def get_event_bus() -> EventBus:
    return get_container().event_bus
