"""Shared pytest fixtures for the workflow engine test suite.

Provides:
- Async SQLite database file (one per test)
- Workflow and CRM stores on that database
- Fake email, notification, Slack and AI collaborators
- A controllable clock
- Engine, event bus and scheduled processor wired together
- FastAPI app + httpx.AsyncClient with the container overridden
"""

import os
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("CRON_SECRET", "")

from actions.base import ActionServices  # noqa: E402
from actions.registry import get_action_registry  # noqa: E402
from app.config import get_settings  # noqa: E402
from app.dependencies import Container, get_container  # noqa: E402
from db.base import Base  # noqa: E402
from db.models import Workflow, WorkflowStep  # noqa: E402
from db.session import create_session_factory  # noqa: E402
from integrations.ai import AIProvider  # noqa: E402
from integrations.email_sender import EmailSender  # noqa: E402
from integrations.notifications import Notifier  # noqa: E402
from integrations.slack import SlackClient  # noqa: E402
from services.crm_store import SqlCrmStore  # noqa: E402
from services.workflow_store import SqlWorkflowStore  # noqa: E402
from triggers.event_bus import EventBus  # noqa: E402
from triggers.scheduled import ScheduledProcessor  # noqa: E402
from workflow.context import WorkflowContext  # noqa: E402
from workflow.engine import WorkflowEngine  # noqa: E402

ORG_ID = "org1"
T0 = datetime(2024, 3, 4, 9, 0, 0)  # a Monday


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeEmailSender(EmailSender):
    def __init__(self):
        self.sent: list[dict] = []
        self.fail_with: Optional[str] = None

    async def send_email(
        self,
        to,
        subject,
        html_body,
        text_body=None,
        from_address=None,
        from_name=None,
        organization_id=None,
    ) -> dict:
        if self.fail_with:
            return {"success": False, "error": self.fail_with}
        self.sent.append(
            {
                "to": to,
                "subject": subject,
                "html_body": html_body,
                "text_body": text_body,
                "from_name": from_name,
                "organization_id": organization_id,
            }
        )
        return {"success": True}


class FakeNotifier(Notifier):
    def __init__(self):
        self.notifications: list[dict] = []
        self.pushes: list[dict] = []
        self.opted_out: set[str] = set()
        self.push_enabled = True

    async def create_notification(self, user_id, type, title, message, metadata=None):
        if user_id in self.opted_out:
            return None
        notification = {
            "id": str(uuid4()),
            "user_id": user_id,
            "type": type,
            "title": title,
            "message": message,
            "metadata": metadata or {},
        }
        self.notifications.append(notification)
        return notification

    async def send_push_notification(self, user_id, title, message, metadata=None):
        if not self.push_enabled:
            return False
        self.pushes.append({"user_id": user_id, "title": title, "message": message})
        return True


class FakeSlackClient(SlackClient):
    def __init__(self):
        self.integration: Optional[dict] = {
            "id": "slack-1",
            "access_token": "xoxb-test",
            "team_id": "T1",
            "team_name": "Acme",
        }
        self.messages: list[dict] = []
        self.ok = True

    async def get_organization_slack_integration(self, organization_id):
        return self.integration

    async def post_message(
        self,
        access_token,
        channel,
        text,
        blocks=None,
        username=None,
        icon_emoji=None,
        notify_channel=False,
    ):
        if not self.ok:
            return None
        if notify_channel:
            text = f"<!channel> {text}"
        self.messages.append(
            {"token": access_token, "channel": channel, "text": text, "blocks": blocks}
        )
        return {"channel": channel, "ts": "1700000000.000100"}

    async def create_channel(self, access_token, name, is_private=False):
        return {"id": "C123", "name": name}

    async def invite_users_to_channel(self, access_token, channel_id, user_ids):
        return True


class FakeAIProvider(AIProvider):
    def __init__(self, responses: Optional[list[str]] = None, configured: bool = True):
        self.responses = list(responses or [])
        self.prompts: list[str] = []
        self.configured = configured

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def generate(self, prompt, system=None, max_tokens=None) -> str:
        self.prompts.append(prompt)
        return self.responses.pop(0) if self.responses else "ok"


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh database file per test; concurrent sessions each get their own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'workflows.db'}")
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def workflow_store(session_factory) -> SqlWorkflowStore:
    return SqlWorkflowStore(session_factory)


@pytest.fixture
def crm_store(session_factory) -> SqlCrmStore:
    return SqlCrmStore(session_factory)


# ---------------------------------------------------------------------------
# Collaborators and components
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def slack_client() -> FakeSlackClient:
    return FakeSlackClient()


@pytest.fixture
def ai_provider() -> FakeAIProvider:
    return FakeAIProvider()


@pytest.fixture
def services(crm_store, email_sender, notifier, slack_client, ai_provider, clock) -> ActionServices:
    return ActionServices(
        crm=crm_store,
        email=email_sender,
        notifier=notifier,
        slack=slack_client,
        ai=ai_provider,
        settings=get_settings(),
        clock=clock,
    )


@pytest.fixture
def engine(workflow_store, services, clock) -> WorkflowEngine:
    return WorkflowEngine(workflow_store, services, clock=clock)


@pytest.fixture
def event_bus(workflow_store, engine) -> EventBus:
    return EventBus(workflow_store, engine)


@pytest.fixture
def scheduler(workflow_store, engine, clock) -> ScheduledProcessor:
    return ScheduledProcessor(workflow_store, engine, clock=clock)


@pytest.fixture
def container(workflow_store, services, engine, event_bus, scheduler) -> Container:
    return Container(
        settings=get_settings(),
        store=workflow_store,
        services=services,
        engine=engine,
        event_bus=event_bus,
        scheduler=scheduler,
    )


# ---------------------------------------------------------------------------
# Test data fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def make_workflow(session_factory, workflow_store):
    """Persist a workflow with steps and return it reloaded from the store.

    Steps are dicts of WorkflowStep columns, e.g.
    ``{"step_order": 0, "step_type": "action", "action_type": "add_tag", "config": {...}}``.
    """

    async def _make(
        steps: list[dict] = (),
        trigger_type: str = "manual",
        trigger_config: Optional[dict] = None,
        is_active: bool = True,
        organization_id: str = ORG_ID,
        name: str = "Test Workflow",
    ) -> Workflow:
        workflow_id = str(uuid4())
        async with session_factory() as session:
            session.add(
                Workflow(
                    id=workflow_id,
                    organization_id=organization_id,
                    name=name,
                    trigger_type=trigger_type,
                    trigger_config=trigger_config or {},
                    is_active=is_active,
                )
            )
            for step in steps:
                session.add(WorkflowStep(id=str(uuid4()), workflow_id=workflow_id, **step))
            await session.commit()
        return await workflow_store.get_workflow(workflow_id)

    return _make


@pytest.fixture
def run_action(services):
    """Dispatch one action against a context built from trigger data.

    ``steps`` pre-populates earlier step outputs, keyed by step_order.
    Returns the action's output dict.
    """
    registry = get_action_registry()

    async def _run(
        action_type: str,
        config: dict,
        trigger_data: Optional[dict] = None,
        steps: Optional[dict] = None,
    ) -> Any:
        ctx = WorkflowContext.from_trigger("event", trigger_data or {}, ORG_ID, T0)
        for order, output in (steps or {}).items():
            ctx = ctx.with_step_output(order, output)
        result = await registry.dispatch(action_type, config, ctx, services)
        return result.output

    return _run


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def app(container):
    """FastAPI app whose routes use the test container."""
    from app.main import create_app

    test_app = create_app()
    test_app.dependency_overrides[get_container] = lambda: container
    yield test_app
    test_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
