"""Tests for the AI, Slack, notification and email collaborators."""

import json

import httpx
import pytest

from app.config import get_settings
from core.exceptions import IntegrationError
from db.models import Notification, NotificationPreference, PushDevice, SlackIntegration
from integrations.ai import ClaudeProvider, extract_json
from integrations.email_sender import SmtpEmailSender
from integrations.notifications import FCM_SEND_URL, DbNotifier
from integrations.slack import HttpSlackClient

from conftest import ORG_ID


def _settings(**overrides):
    return get_settings().model_copy(update=overrides)


async def _seed(session_factory, *rows):
    async with session_factory() as session:
        session.add_all(rows)
        await session.commit()


# ─── extract_json ─────────────────────────────────────────────

@pytest.mark.unit
class TestExtractJson:

    def test_plain_json(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_markdown_fence(self):
        assert extract_json('Here you go:\n```json\n{"a": [1, 2]}\n```\nThanks') == {"a": [1, 2]}

    def test_balanced_block_in_prose(self):
        text = 'The answer is {"outer": {"inner": "a } in a string"}} as requested.'
        assert extract_json(text) == {"outer": {"inner": "a } in a string"}}

    def test_array_in_prose(self):
        assert extract_json("Categories: [\"hot\", \"cold\"] done") == ["hot", "cold"]

    @pytest.mark.parametrize("text", ["", "   ", "no json here"])
    def test_unparseable(self, text):
        with pytest.raises(ValueError):
            extract_json(text)


# ─── ClaudeProvider ───────────────────────────────────────────

@pytest.mark.unit
class TestClaudeProvider:

    async def test_unconfigured(self):
        provider = ClaudeProvider(_settings(ANTHROPIC_API_KEY=""))
        assert provider.is_configured is False
        with pytest.raises(IntegrationError, match="not configured"):
            await provider.generate("hi")

    async def test_generate_joins_text_blocks(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "content": [
                        {"type": "text", "text": "Hello "},
                        {"type": "tool_use", "id": "x"},
                        {"type": "text", "text": "world"},
                    ],
                    "usage": {"input_tokens": 3, "output_tokens": 2},
                },
            )

        provider = ClaudeProvider(_settings(ANTHROPIC_API_KEY="sk-test"), transport=httpx.MockTransport(handler))

        assert await provider.generate("Say hello", system="Be brief", max_tokens=50) == "Hello world"
        assert seen["url"] == "https://api.anthropic.com/v1/messages"
        assert seen["headers"]["x-api-key"] == "sk-test"
        assert seen["body"]["max_tokens"] == 50
        assert seen["body"]["system"] == "Be brief"
        assert seen["body"]["messages"] == [{"role": "user", "content": "Say hello"}]

    async def test_api_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(529, text="overloaded"))
        provider = ClaudeProvider(_settings(ANTHROPIC_API_KEY="sk-test"), transport=transport)

        with pytest.raises(IntegrationError, match="API error 529"):
            await provider.generate("hi")

    async def test_generate_structured(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"content": [{"type": "text", "text": "```json\n{\"ok\": true}\n```"}]})
        )
        provider = ClaudeProvider(_settings(ANTHROPIC_API_KEY="sk-test"), transport=transport)

        assert await provider.generate_structured("status?") == {"ok": True}

    async def test_generate_structured_unparseable(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"content": [{"type": "text", "text": "sorry"}]})
        )
        provider = ClaudeProvider(_settings(ANTHROPIC_API_KEY="sk-test"), transport=transport)

        with pytest.raises(IntegrationError):
            await provider.generate_structured("status?")


# ─── HttpSlackClient ──────────────────────────────────────────

@pytest.mark.unit
class TestHttpSlackClient:

    async def test_integration_lookup(self, session_factory):
        await _seed(
            session_factory,
            SlackIntegration(organization_id=ORG_ID, access_token="xoxb-1", team_id="T1", team_name="Acme"),
            SlackIntegration(organization_id="org-off", access_token="xoxb-2", is_active=False),
        )
        client = HttpSlackClient(session_factory)

        integration = await client.get_organization_slack_integration(ORG_ID)
        assert integration["access_token"] == "xoxb-1"
        assert integration["team_name"] == "Acme"
        assert await client.get_organization_slack_integration("org-off") is None
        assert await client.get_organization_slack_integration("org-none") is None

    async def test_post_message(self, session_factory):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True, "channel": "C1", "ts": "1.2"})

        client = HttpSlackClient(session_factory, transport=httpx.MockTransport(handler))
        result = await client.post_message("xoxb-1", "#sales", "hello", notify_channel=True)

        assert result == {"channel": "C1", "ts": "1.2"}
        assert seen["url"] == "https://slack.com/api/chat.postMessage"
        assert seen["auth"] == "Bearer xoxb-1"
        assert seen["body"] == {"channel": "#sales", "text": "<!channel> hello"}

    async def test_not_ok_returns_none(self, session_factory):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": False, "error": "channel_not_found"}))
        client = HttpSlackClient(session_factory, transport=transport)

        assert await client.post_message("xoxb-1", "#nope", "hello") is None
        assert await client.invite_users_to_channel("xoxb-1", "C1", ["U1"]) is False

    async def test_http_error_raises(self, session_factory):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        client = HttpSlackClient(session_factory, transport=transport)

        with pytest.raises(IntegrationError, match="Slack chat.postMessage failed"):
            await client.post_message("xoxb-1", "#sales", "hello")

    async def test_create_channel(self, session_factory):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"ok": True, "channel": {"id": "C9", "name": "deal-room"}})
        )
        client = HttpSlackClient(session_factory, transport=transport)

        assert await client.create_channel("xoxb-1", "deal-room") == {"id": "C9", "name": "deal-room"}
        assert await client.invite_users_to_channel("xoxb-1", "C9", []) is True


# ─── DbNotifier ───────────────────────────────────────────────

@pytest.mark.unit
class TestDbNotifier:

    async def test_creates_notification(self, session_factory):
        notifier = DbNotifier(session_factory)

        created = await notifier.create_notification("u-1", "lead", "New lead", "Ada signed up", {"contact_id": "c-1"})

        assert created["title"] == "New lead"
        async with session_factory() as session:
            row = await session.get(Notification, created["id"])
        assert row.details == {"contact_id": "c-1"}
        assert row.is_read is False

    async def test_respects_in_app_preference(self, session_factory):
        await _seed(session_factory, NotificationPreference(user_id="u-1", in_app_enabled=False))
        notifier = DbNotifier(session_factory)

        assert await notifier.create_notification("u-1", "info", "t", "m") is None

    async def test_push_without_devices(self, session_factory):
        notifier = DbNotifier(session_factory, _settings(FCM_SERVER_KEY="key"))
        assert await notifier.send_push_notification("u-1", "t", "m") is False

    async def test_push_to_devices(self, session_factory):
        await _seed(
            session_factory,
            PushDevice(user_id="u-1", token="tok-a"),
            PushDevice(user_id="u-1", token="tok-b"),
        )
        targets = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == FCM_SEND_URL
            assert request.headers["authorization"] == "key=fcm-key"
            targets.append(json.loads(request.content)["to"])
            return httpx.Response(200, json={"success": 1})

        notifier = DbNotifier(session_factory, _settings(FCM_SERVER_KEY="fcm-key"), transport=httpx.MockTransport(handler))

        assert await notifier.send_push_notification("u-1", "Ping", "hello") is True
        assert sorted(targets) == ["tok-a", "tok-b"]

    async def test_push_disabled_by_preference(self, session_factory):
        await _seed(
            session_factory,
            NotificationPreference(user_id="u-1", push_enabled=False),
            PushDevice(user_id="u-1", token="tok-a"),
        )
        notifier = DbNotifier(session_factory, _settings(FCM_SERVER_KEY="fcm-key"))

        assert await notifier.send_push_notification("u-1", "Ping", "hello") is False

    async def test_push_without_server_key(self, session_factory):
        await _seed(session_factory, PushDevice(user_id="u-1", token="tok-a"))
        notifier = DbNotifier(session_factory, _settings(FCM_SERVER_KEY=""))

        assert await notifier.send_push_notification("u-1", "Ping", "hello") is False


# ─── SmtpEmailSender ──────────────────────────────────────────

@pytest.mark.unit
class TestSmtpEmailSender:

    async def test_unconfigured_reports_failure(self):
        sender = SmtpEmailSender(_settings(SMTP_HOST=""))
        assert await sender.send_email("ada@example.com", "Hi", "<p>Hi</p>") == {
            "success": False,
            "error": "SMTP is not configured",
        }

    def test_builds_multipart_message(self):
        sender = SmtpEmailSender(_settings())
        msg = sender._build_message("ada@example.com", "Hi", "<p>Hi</p>", "Hi", "noreply@example.com", "Sales")

        assert msg["To"] == "ada@example.com"
        assert msg["From"] == "Sales <noreply@example.com>"
        assert [part.get_content_type() for part in msg.get_payload()] == ["text/plain", "text/html"]

    async def test_smtp_error_is_reported(self, monkeypatch):
        import smtplib

        sender = SmtpEmailSender(_settings(SMTP_HOST="smtp.example.com"))

        def refuse(*args, **kwargs):
            raise smtplib.SMTPConnectError(421, "try later")

        monkeypatch.setattr(sender, "_send_smtp", refuse)

        result = await sender.send_email("ada@example.com", "Hi", "<p>Hi</p>")
        assert result["success"] is False
        assert "try later" in result["error"]
