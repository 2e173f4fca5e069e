"""Persistence port for the CRM records touched by workflow actions.

Handlers receive plain dicts back so that they never hold ORM state
across awaits.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.constants import TagEntityType
from core.exceptions import StoreError, StoreTableMissingError
from db.models import (
    ActivityFeedEntry,
    CompanyTag,
    Contact,
    ContactTag,
    Opportunity,
    Project,
    ProjectPhase,
    ProjectTemplate,
    Task,
    TemplatePhase,
)
from services.base import BaseService, record_to_dict

_MISSING_TABLE_MARKERS = ("no such table", "does not exist", "undefinedtable")


class CrmStore(ABC):
    """Record operations the action handlers depend on."""

    # ─── Contacts ──────────────────────────────────────────

    @abstractmethod
    async def create_contact(self, data: dict[str, Any]) -> dict: ...

    @abstractmethod
    async def update_contact(self, contact_id: str, updates: dict[str, Any]) -> Optional[dict]: ...

    # ─── Tags ──────────────────────────────────────────────

    @abstractmethod
    async def find_tag(
        self, entity_type: TagEntityType, entity_id: str, tag_name: str
    ) -> Optional[dict]: ...

    @abstractmethod
    async def add_tag(self, entity_type: TagEntityType, entity_id: str, tag_name: str) -> dict: ...

    @abstractmethod
    async def remove_tag(self, entity_type: TagEntityType, entity_id: str, tag_name: str) -> int:
        """Delete the tag row(s); returns the number removed."""

    # ─── Opportunities ─────────────────────────────────────

    @abstractmethod
    async def update_opportunity(
        self, opportunity_id: str, updates: dict[str, Any]
    ) -> Optional[dict]: ...

    # ─── Projects ──────────────────────────────────────────

    @abstractmethod
    async def create_project(self, data: dict[str, Any]) -> dict: ...

    @abstractmethod
    async def get_project_template(self, template_id: str) -> Optional[dict]: ...

    @abstractmethod
    async def list_template_phases(self, template_id: str) -> list[dict]: ...

    @abstractmethod
    async def create_project_phases(self, rows: list[dict[str, Any]]) -> int: ...

    # ─── Tasks ─────────────────────────────────────────────

    @abstractmethod
    async def create_task(self, data: dict[str, Any]) -> dict: ...

    @abstractmethod
    async def update_task(self, task_id: str, updates: dict[str, Any]) -> Optional[dict]: ...

    # ─── Activity feed ─────────────────────────────────────

    @abstractmethod
    async def create_activity(self, data: dict[str, Any]) -> dict:
        """Raises StoreTableMissingError when the feed table is absent."""


def _split_custom(model, data: dict[str, Any]) -> dict[str, Any]:
    """Move keys without a column into ``custom_fields``."""
    columns = set(model.__table__.columns.keys())
    known = {k: v for k, v in data.items() if k in columns}
    extra = {k: v for k, v in data.items() if k not in columns}
    if extra and "custom_fields" in columns:
        known["custom_fields"] = {**(known.get("custom_fields") or {}), **extra}
    return known


class SqlCrmStore(CrmStore):
    """SQLAlchemy adapter for CrmStore."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, table: str) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                message = str(e).lower()
                if any(marker in message for marker in _MISSING_TABLE_MARKERS):
                    raise StoreTableMissingError(table) from e
                raise StoreError(f"{table}: {e}") from e

    @staticmethod
    def _tag_model(entity_type: TagEntityType):
        if TagEntityType(entity_type) == TagEntityType.CONTACT:
            return ContactTag, "contact_id"
        return CompanyTag, "company_id"

    # ─── Contacts ──────────────────────────────────────────

    async def create_contact(self, data: dict[str, Any]) -> dict:
        async with self._session("contacts") as session:
            row = await BaseService(Contact, session).create(_split_custom(Contact, data))
            return record_to_dict(row)

    async def update_contact(self, contact_id: str, updates: dict[str, Any]) -> Optional[dict]:
        async with self._session("contacts") as session:
            service = BaseService(Contact, session)
            current = await service.get_by_id(contact_id)
            if current is None:
                return None
            values = _split_custom(Contact, _without_timestamp(updates))
            if "custom_fields" in values:
                values["custom_fields"] = {**(current.custom_fields or {}), **values["custom_fields"]}
            return record_to_dict(await service.update(contact_id, values))

    # ─── Tags ──────────────────────────────────────────────

    async def find_tag(
        self, entity_type: TagEntityType, entity_id: str, tag_name: str
    ) -> Optional[dict]:
        model, id_column = self._tag_model(entity_type)
        async with self._session(model.__tablename__) as session:
            row = await BaseService(model, session).find_one(
                **{id_column: entity_id, "tag_name": tag_name}
            )
            return record_to_dict(row)

    async def add_tag(self, entity_type: TagEntityType, entity_id: str, tag_name: str) -> dict:
        model, id_column = self._tag_model(entity_type)
        async with self._session(model.__tablename__) as session:
            row = await BaseService(model, session).create(
                {id_column: entity_id, "tag_name": tag_name}
            )
            return record_to_dict(row)

    async def remove_tag(self, entity_type: TagEntityType, entity_id: str, tag_name: str) -> int:
        model, id_column = self._tag_model(entity_type)
        async with self._session(model.__tablename__) as session:
            return await BaseService(model, session).delete_where(
                **{id_column: entity_id, "tag_name": tag_name}
            )

    # ─── Opportunities ─────────────────────────────────────

    async def update_opportunity(
        self, opportunity_id: str, updates: dict[str, Any]
    ) -> Optional[dict]:
        async with self._session("opportunities") as session:
            service = BaseService(Opportunity, session)
            current = await service.get_by_id(opportunity_id)
            if current is None:
                return None
            values = _split_custom(Opportunity, _without_timestamp(updates))
            if "custom_fields" in values:
                values["custom_fields"] = {**(current.custom_fields or {}), **values["custom_fields"]}
            return record_to_dict(await service.update(opportunity_id, values))

    # ─── Projects ──────────────────────────────────────────

    async def create_project(self, data: dict[str, Any]) -> dict:
        async with self._session("projects") as session:
            return record_to_dict(await BaseService(Project, session).create(data))

    async def get_project_template(self, template_id: str) -> Optional[dict]:
        async with self._session("project_templates") as session:
            return record_to_dict(await BaseService(ProjectTemplate, session).get_by_id(template_id))

    async def list_template_phases(self, template_id: str) -> list[dict]:
        async with self._session("template_phases") as session:
            rows = await BaseService(TemplatePhase, session).find_all(
                order_by="phase_number", template_id=template_id
            )
            return [record_to_dict(row) for row in rows]

    async def create_project_phases(self, rows: list[dict[str, Any]]) -> int:
        async with self._session("project_phases") as session:
            created = await BaseService(ProjectPhase, session).create_many(rows)
            return len(created)

    # ─── Tasks ─────────────────────────────────────────────

    async def create_task(self, data: dict[str, Any]) -> dict:
        async with self._session("tasks") as session:
            return record_to_dict(await BaseService(Task, session).create(data))

    async def update_task(self, task_id: str, updates: dict[str, Any]) -> Optional[dict]:
        async with self._session("tasks") as session:
            row = await BaseService(Task, session).update(task_id, _without_timestamp(updates))
            return record_to_dict(row)

    # ─── Activity feed ─────────────────────────────────────

    async def create_activity(self, data: dict[str, Any]) -> dict:
        async with self._session("activity_feed") as session:
            return record_to_dict(await BaseService(ActivityFeedEntry, session).create(data))


def _without_timestamp(updates: dict[str, Any]) -> dict[str, Any]:
    # updated_at is maintained by the column's onupdate hook
    return {k: v for k, v in updates.items() if k != "updated_at"}
