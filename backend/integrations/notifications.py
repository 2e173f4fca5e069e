"""In-app and push notification collaborator.

``DbNotifier`` writes in-app notifications to the ``notifications`` table
and fans push messages out to a user's registered devices through the FCM
HTTP endpoint. Both honour the per-user ``notification_preferences`` row;
a user without one receives everything.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from core.exceptions import IntegrationError
from db.models import Notification, NotificationPreference, PushDevice
from services.base import BaseService, record_to_dict

logger = structlog.get_logger(__name__)

FCM_SEND_URL = "https://fcm.googleapis.com/fcm/send"


class Notifier(ABC):
    """Call boundary for user-facing notifications."""

    @abstractmethod
    async def create_notification(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[dict]:
        """Store an in-app notification; None when the user opted out."""

    @abstractmethod
    async def send_push_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Push to the user's devices; False when nothing was delivered."""


class DbNotifier(Notifier):
    """Notifier backed by the application database and FCM."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._session_factory = session_factory
        self.settings = settings or get_settings()
        self._transport = transport

    async def _preferences(self, session: AsyncSession, user_id: str) -> Optional[NotificationPreference]:
        return await BaseService(NotificationPreference, session).find_one(user_id=user_id)

    async def create_notification(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[dict]:
        async with self._session_factory() as session:
            prefs = await self._preferences(session, user_id)
            if prefs is not None and not prefs.in_app_enabled:
                logger.info("In-app notifications disabled", user_id=user_id)
                return None

            row = await BaseService(Notification, session).create(
                {
                    "user_id": user_id,
                    "type": type or "info",
                    "title": title,
                    "message": message,
                    "details": metadata or {},
                }
            )
            await session.commit()
            return record_to_dict(row)

    async def send_push_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> bool:
        async with self._session_factory() as session:
            prefs = await self._preferences(session, user_id)
            if prefs is not None and not prefs.push_enabled:
                logger.info("Push notifications disabled", user_id=user_id)
                return False
            devices = await BaseService(PushDevice, session).find_all(user_id=user_id)

        if not devices:
            return False
        if not self.settings.FCM_SERVER_KEY:
            logger.warning("FCM_SERVER_KEY not configured, push skipped", user_id=user_id)
            return False

        delivered = 0
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                for device in devices:
                    response = await client.post(
                        FCM_SEND_URL,
                        headers={"Authorization": f"key={self.settings.FCM_SERVER_KEY}"},
                        json={
                            "to": device.token,
                            "notification": {"title": title, "body": message},
                            "data": metadata or {},
                        },
                    )
                    if response.is_success:
                        delivered += 1
                    else:
                        logger.warning(
                            "Push delivery rejected",
                            user_id=user_id,
                            status=response.status_code,
                        )
        except httpx.HTTPError as e:
            raise IntegrationError(f"Push delivery failed: {e}", provider="fcm") from e

        return delivered > 0
