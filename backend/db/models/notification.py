"""In-app notifications, push devices and per-user delivery preferences."""

from typing import Optional

from sqlalchemy import JSON, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class Notification(BaseModel):
    __tablename__ = "notifications"

    user_id: Mapped[str] = mapped_column(nullable=False, index=True)
    type: Mapped[str] = mapped_column(default="info")
    title: Mapped[str] = mapped_column(nullable=False)
    message: Mapped[str] = mapped_column(Text, default="")
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    is_read: Mapped[bool] = mapped_column(default=False)


class NotificationPreference(BaseModel):
    """Missing row means everything is enabled."""

    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(nullable=False, unique=True)
    in_app_enabled: Mapped[bool] = mapped_column(default=True)
    push_enabled: Mapped[bool] = mapped_column(default=True)


class PushDevice(BaseModel):
    __tablename__ = "push_devices"
    __table_args__ = (UniqueConstraint("user_id", "token", name="uq_push_devices"),)

    user_id: Mapped[str] = mapped_column(nullable=False, index=True)
    token: Mapped[str] = mapped_column(nullable=False)
    platform: Mapped[Optional[str]] = mapped_column(nullable=True)


class SlackIntegration(BaseModel):
    """Bot token for an organization's Slack workspace."""

    __tablename__ = "slack_integrations"

    organization_id: Mapped[str] = mapped_column(nullable=False, unique=True)
    access_token: Mapped[str] = mapped_column(nullable=False)
    team_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    team_name: Mapped[Optional[str]] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True)
