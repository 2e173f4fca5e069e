"""Slack Web API collaborator used by the send_slack action."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from core.exceptions import IntegrationError
from db.models import SlackIntegration
from services.base import BaseService

logger = logging.getLogger(__name__)


class SlackClient(ABC):
    """Call boundary for Slack."""

    @abstractmethod
    async def get_organization_slack_integration(self, organization_id: str) -> Optional[dict]:
        """``{"access_token", "team_id", "team_name"}`` or None when not connected."""

    @abstractmethod
    async def post_message(
        self,
        access_token: str,
        channel: str,
        text: str,
        blocks: Optional[list] = None,
        username: Optional[str] = None,
        icon_emoji: Optional[str] = None,
        notify_channel: bool = False,
    ) -> Optional[dict]:
        """``{"channel", "ts"}`` on success, None when Slack answers ``ok: false``."""

    @abstractmethod
    async def create_channel(
        self, access_token: str, name: str, is_private: bool = False
    ) -> Optional[dict]: ...

    @abstractmethod
    async def invite_users_to_channel(
        self, access_token: str, channel_id: str, user_ids: list[str]
    ) -> bool: ...


class HttpSlackClient(SlackClient):
    """SlackClient over httpx; tokens come from ``slack_integrations``."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._session_factory = session_factory
        self.settings = settings or get_settings()
        self._transport = transport

    async def get_organization_slack_integration(self, organization_id: str) -> Optional[dict]:
        async with self._session_factory() as session:
            row = await BaseService(SlackIntegration, session).find_one(
                organization_id=organization_id, is_active=True
            )
        if row is None:
            return None
        return {
            "id": row.id,
            "access_token": row.access_token,
            "team_id": row.team_id,
            "team_name": row.team_name,
        }

    async def _call(self, access_token: str, method: str, payload: dict[str, Any]) -> dict:
        url = f"{self.settings.SLACK_API_BASE_URL.rstrip('/')}/{method}"
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                response = await client.post(
                    url,
                    headers={"Authorization": f"Bearer {access_token}"},
                    json=payload,
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            raise IntegrationError(f"Slack {method} failed: {e}", provider="slack") from e
        except ValueError as e:
            raise IntegrationError(f"Slack {method} returned invalid JSON", provider="slack") from e

    async def post_message(
        self,
        access_token: str,
        channel: str,
        text: str,
        blocks: Optional[list] = None,
        username: Optional[str] = None,
        icon_emoji: Optional[str] = None,
        notify_channel: bool = False,
    ) -> Optional[dict]:
        payload: dict[str, Any] = {
            "channel": channel,
            "text": f"<!channel> {text}" if notify_channel else text,
        }
        if blocks:
            payload["blocks"] = blocks
        if username:
            payload["username"] = username
        if icon_emoji:
            payload["icon_emoji"] = icon_emoji

        data = await self._call(access_token, "chat.postMessage", payload)
        if not data.get("ok"):
            logger.error(f"Slack postMessage failed: {data.get('error')}")
            return None
        return {"channel": data.get("channel"), "ts": data.get("ts")}

    async def create_channel(
        self, access_token: str, name: str, is_private: bool = False
    ) -> Optional[dict]:
        data = await self._call(
            access_token, "conversations.create", {"name": name, "is_private": is_private}
        )
        if not data.get("ok"):
            logger.error(f"Slack conversations.create failed: {data.get('error')}")
            return None
        channel = data.get("channel") or {}
        return {"id": channel.get("id"), "name": channel.get("name")}

    async def invite_users_to_channel(
        self, access_token: str, channel_id: str, user_ids: list[str]
    ) -> bool:
        if not user_ids:
            return True
        data = await self._call(
            access_token,
            "conversations.invite",
            {"channel": channel_id, "users": ",".join(user_ids)},
        )
        if not data.get("ok"):
            logger.error(f"Slack conversations.invite failed: {data.get('error')}")
            return False
        return True
