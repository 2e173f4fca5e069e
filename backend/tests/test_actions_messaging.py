"""Tests for messaging, Slack, AI and outbound webhook actions."""

import asyncio
import json

import httpx
import pytest

import actions.implementations.webhook as webhook_module
from actions.implementations.webhook import validate_webhook_url
from core.exceptions import ActionError, UnsafeUrlError, WebhookTimeoutError

from conftest import ORG_ID

CONTACT = {"id": "c-1", "first_name": "Ada", "email": "ada@example.com", "notes": "Wants a demo next week."}


@pytest.fixture
def dns(monkeypatch):
    """Name to addresses map consulted instead of the system resolver."""
    records = {"api.example.com": ["93.184.215.14", "2606:2800:21f:cb07:6820:80da:af6b:8b2c"]}

    async def resolve(hostname):
        if hostname not in records:
            raise OSError("Name or service not known")
        return records[hostname]

    monkeypatch.setattr(webhook_module, "_resolve_host", resolve)
    return records


@pytest.mark.unit
class TestSendEmail:

    async def test_sends_interpolated_email(self, run_action, email_sender):
        output = await run_action(
            "send_email",
            {
                "to": "{{contact.email}}",
                "subject": "Hi {{contact.first_name}}",
                "body_html": "<p>{{contact.notes}}</p>",
                "from_name": "Sales",
            },
            trigger_data={"contact": CONTACT},
        )

        assert output == {
            "success": True,
            "to": "ada@example.com",
            "subject": "Hi Ada",
            "sent_at": "2024-03-04T09:00:00+00:00",
        }
        sent = email_sender.sent[0]
        assert sent["html_body"] == "<p>Wants a demo next week.</p>"
        assert sent["from_name"] == "Sales"
        assert sent["organization_id"] == ORG_ID

    @pytest.mark.parametrize("to", ["", "{{contact.email}}", "not-an-address"])
    async def test_bad_recipient_is_skipped(self, run_action, email_sender, to):
        output = await run_action("send_email", {"to": to, "subject": "Hi"})

        assert output["skipped"] is True
        assert output["success"] is False
        assert email_sender.sent == []

    async def test_delivery_failure_is_hard_failure(self, run_action, email_sender):
        email_sender.fail_with = "SMTP not configured"
        with pytest.raises(ActionError, match="Failed to send email: SMTP not configured"):
            await run_action("send_email", {"to": "ada@example.com", "subject": "Hi"})


@pytest.mark.unit
class TestNotifications:

    async def test_notification_from_user_field(self, run_action, notifier):
        output = await run_action(
            "send_notification",
            {
                "user_field": "triggered_by_user_id",
                "title": "New lead",
                "message": "{{contact.first_name}} signed up",
                "type": "lead",
                "metadata": {"contact_id": "{{contact.id}}"},
            },
            trigger_data={"user_id": "user-1", "contact": CONTACT},
        )

        assert output["success"] is True
        assert output["user_id"] == "user-1"
        notification = notifier.notifications[0]
        assert notification["id"] == output["notification_id"]
        assert notification["message"] == "Ada signed up"
        assert notification["type"] == "lead"
        assert notification["metadata"] == {"contact_id": "c-1"}

    async def test_no_user_skips(self, run_action, notifier):
        output = await run_action("send_notification", {"user_field": "trigger.data.owner_id", "title": "x"})
        assert output["skipped"] is True
        assert notifier.notifications == []

    async def test_opted_out_user_skips(self, run_action, notifier):
        notifier.opted_out.add("user-2")
        output = await run_action("send_notification", {"user_id": "user-2", "title": "x"})
        assert output["skipped"] is True
        assert output["user_id"] == "user-2"

    async def test_push(self, run_action, notifier):
        output = await run_action("send_push", {"user_id": "{{trigger.data.owner}}", "title": "Ping"}, trigger_data={"owner": "u-5"})
        assert output["success"] is True
        assert notifier.pushes == [{"user_id": "u-5", "title": "Ping", "message": ""}]

    async def test_push_without_devices_skips(self, run_action, notifier):
        notifier.push_enabled = False
        output = await run_action("send_push", {"user_id": "u-5", "title": "Ping"})
        assert output["skipped"] is True


@pytest.mark.unit
class TestSlack:

    async def test_posts_message(self, run_action, slack_client):
        output = await run_action(
            "send_slack",
            {"channel": "#sales", "message": "Won {{opportunity.name}}", "use_blocks": True, "notify_channel": True},
            trigger_data={"opportunity": {"name": "Big deal"}},
        )

        assert output["success"] is True
        assert output["channel"] == "#sales"
        assert output["ts"] == "1700000000.000100"
        message = slack_client.messages[0]
        assert message["token"] == "xoxb-test"
        assert message["text"] == "<!channel> Won Big deal"
        assert message["blocks"][0]["text"]["text"] == "Won Big deal"

    async def test_not_connected_skips(self, run_action, slack_client):
        slack_client.integration = None
        output = await run_action("send_slack", {"channel": "#sales", "message": "hi"})
        assert output["skipped"] is True
        assert output["reason"] == "Slack integration not configured"

    async def test_empty_message_skips(self, run_action, slack_client):
        output = await run_action("send_slack", {"channel": "#sales", "message": "{{contact.notes}}"})
        assert output["skipped"] is True
        assert slack_client.messages == []

    async def test_post_failure_fails(self, run_action, slack_client):
        slack_client.ok = False
        with pytest.raises(ActionError, match="Failed to post Slack message to #sales"):
            await run_action("send_slack", {"channel": "#sales", "message": "hi"})


@pytest.mark.unit
class TestAIActions:

    async def test_generate(self, run_action, ai_provider):
        ai_provider.responses = ["Dear Ada, thanks!"]
        output = await run_action(
            "ai_generate",
            {"prompt_template": "Write a thank-you note to {{contact.first_name}}", "output_field": "note"},
            trigger_data={"contact": CONTACT},
        )

        assert output["note"] == "Dear Ada, thanks!"
        assert output["prompt_used"] == "Write a thank-you note to Ada"
        assert ai_provider.prompts == ["Write a thank-you note to Ada"]

    async def test_generate_structured(self, run_action, ai_provider):
        ai_provider.responses = ['Sure!\n```json\n{"score": 8}\n```']
        output = await run_action("ai_generate", {"prompt_template": "Score it", "structured": True})
        assert json.loads(output["generated"]) == {"score": 8}

    async def test_unconfigured_provider_fails(self, run_action, ai_provider):
        ai_provider.configured = False
        with pytest.raises(ActionError, match="AI provider API key not configured"):
            await run_action("ai_generate", {"prompt_template": "hello"})

    async def test_categorize_matches_case_insensitively(self, run_action, ai_provider):
        ai_provider.responses = [" hot lead \n"]
        output = await run_action(
            "ai_categorize",
            {"field_to_analyze": "contact.notes", "categories": ["Hot Lead", "Cold Lead"]},
            trigger_data={"contact": CONTACT},
        )
        assert output["category"] == "Hot Lead"
        assert "Hot Lead, Cold Lead" in ai_provider.prompts[0]

    async def test_categorize_keeps_unknown_answer(self, run_action, ai_provider):
        ai_provider.responses = ["Spam"]
        output = await run_action(
            "ai_categorize",
            {"field_to_analyze": "contact.notes", "categories": ["Hot", "Cold"], "output_field": "bucket"},
            trigger_data={"contact": CONTACT},
        )
        assert output["bucket"] == "Spam"

    async def test_categorize_empty_field_skips(self, run_action, ai_provider):
        output = await run_action("ai_categorize", {"field_to_analyze": "contact.notes", "categories": ["A"]})
        assert output["skipped"] is True
        assert output["category"] is None
        assert ai_provider.prompts == []

    async def test_summarize_dict_field(self, run_action, ai_provider):
        ai_provider.responses = ["Short."]
        output = await run_action(
            "ai_summarize",
            {"field_to_summarize": "contact", "max_length": 50},
            trigger_data={"contact": CONTACT},
        )

        assert output["summary"] == "Short."
        assert output["summary_length"] == 6
        assert "in 50 characters or less" in ai_provider.prompts[0]
        assert '"first_name": "Ada"' in ai_provider.prompts[0]


@pytest.mark.unit
class TestWebhookUrlGuard:

    @pytest.mark.parametrize(
        "url",
        [
            "http://localhost/x",
            "http://127.0.0.1/x",
            "http://10.0.0.5/x",
            "http://192.168.1.1/x",
            "http://172.20.1.1/x",
            "http://169.254.169.254/latest/meta-data",
            "http://0.0.0.0:8080/",
            "http://[::1]/x",
            "http://[::ffff:127.0.0.1]/x",
            "http://127.1/x",
            "http://2130706433/x",
            "http://0x7f000001/x",
            "http://0177.0.0.1/x",
            "http://10.1/x",
            "http://localhost./x",
            "ftp://example.com/file",
            "not a url",
        ],
    )
    def test_rejects(self, url):
        with pytest.raises(UnsafeUrlError):
            validate_webhook_url(url)

    def test_accepts_public_https(self):
        assert validate_webhook_url(" https://api.example.com/hook ") == "https://api.example.com/hook"

    def test_172_outside_private_range_is_allowed(self):
        assert validate_webhook_url("http://172.32.0.1/x") == "http://172.32.0.1/x"


@pytest.mark.unit
@pytest.mark.usefixtures("dns")
class TestWebhookCall:

    async def test_blocked_url_never_connects(self, run_action, services):
        calls = []
        services.http_transport = httpx.MockTransport(lambda request: calls.append(request))

        with pytest.raises(UnsafeUrlError):
            await run_action("webhook_call", {"url": "http://{{trigger.data.host}}/x"}, trigger_data={"host": "127.0.0.1"})
        assert calls == []

    async def test_posts_templated_body(self, run_action, services):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"received": True})

        services.http_transport = httpx.MockTransport(handler)
        output = await run_action(
            "webhook_call",
            {
                "url": "https://api.example.com/hook",
                "method": "post",
                "headers": {"X-Org": "{{organization_id}}"},
                "body_template": '{"email": "{{contact.email}}"}',
                "output_field": "reply",
            },
            trigger_data={"contact": CONTACT},
        )

        assert seen["method"] == "POST"
        assert seen["url"] == "https://api.example.com/hook"
        assert seen["headers"]["x-org"] == ORG_ID
        assert seen["headers"]["content-type"] == "application/json"
        assert seen["body"] == {"email": "ada@example.com"}
        assert output["success"] is True
        assert output["status_code"] == 200
        assert output["response"] == {"received": True}
        assert output["reply"] == {"received": True}

    async def test_get_sends_no_body(self, run_action, services):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(200, text="pong")

        services.http_transport = httpx.MockTransport(handler)
        output = await run_action(
            "webhook_call", {"url": "https://api.example.com/ping", "method": "GET", "body_template": "{}"}
        )

        assert bodies == [b""]
        assert output["response"] == "pong"

    async def test_non_2xx_is_returned_not_raised(self, run_action, services):
        services.http_transport = httpx.MockTransport(lambda request: httpx.Response(503, text="down"))

        output = await run_action("webhook_call", {"url": "https://api.example.com/hook"})

        assert output["success"] is False
        assert output["status_code"] == 503
        assert output["response"] == "down"

    async def test_timeout_raises(self, run_action, services):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        services.http_transport = httpx.MockTransport(handler)

        with pytest.raises(WebhookTimeoutError) as exc_info:
            await run_action("webhook_call", {"url": "https://api.example.com/slow", "timeout_ms": 60_000})

        assert exc_info.value.timeout_ms == 30_000
        assert exc_info.value.message == "Webhook request to https://api.example.com/slow timed out after 30000ms"

    async def test_connection_error_fails(self, run_action, services):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        services.http_transport = httpx.MockTransport(handler)

        with pytest.raises(ActionError, match="Webhook request failed"):
            await run_action("webhook_call", {"url": "https://api.example.com/hook"})

    async def test_name_resolving_to_internal_address_never_connects(self, run_action, services, dns):
        dns["intranet.example.com"] = ["93.184.215.14", "10.0.0.7"]
        calls = []
        services.http_transport = httpx.MockTransport(lambda request: calls.append(request))

        with pytest.raises(UnsafeUrlError, match="intranet.example.com"):
            await run_action("webhook_call", {"url": "https://intranet.example.com/hook"})
        assert calls == []

    async def test_unresolvable_host_fails(self, run_action, services):
        services.http_transport = httpx.MockTransport(lambda request: httpx.Response(200))

        with pytest.raises(ActionError, match="Could not resolve webhook host nowhere.invalid"):
            await run_action("webhook_call", {"url": "https://nowhere.invalid/hook"})

    async def test_slow_body_hits_overall_deadline(self, run_action, services):
        class TrickleStream(httpx.AsyncByteStream):
            async def __aiter__(self):
                for _ in range(50):
                    await asyncio.sleep(0.02)
                    yield b"."

        services.http_transport = httpx.MockTransport(
            lambda request: httpx.Response(200, stream=TrickleStream())
        )

        with pytest.raises(WebhookTimeoutError) as exc_info:
            await run_action("webhook_call", {"url": "https://api.example.com/slow", "timeout_ms": 200})

        assert exc_info.value.timeout_ms == 200
