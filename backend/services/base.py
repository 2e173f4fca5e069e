"""Base CRUD service shared by the SQLAlchemy store adapters.

Wraps one ``AsyncSession`` and one model class. The stores open a session
per operation and compose these services inside it; nothing here commits.
"""

from typing import Any, Generic, Optional, Type, TypeVar
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.utils import json_safe
from db.base import BaseModel

ModelType = TypeVar("ModelType", bound=BaseModel)


def record_to_dict(instance: Optional[BaseModel]) -> Optional[dict[str, Any]]:
    """Column values of a row as a JSON-safe dict."""
    if instance is None:
        return None
    return json_safe(
        {column.key: getattr(instance, column.key) for column in instance.__table__.columns}
    )


class BaseService(Generic[ModelType]):
    """Generic CRUD service for any SQLAlchemy model.

    Usage:
        contacts = BaseService(Contact, session)
        row = await contacts.create({"first_name": "Ada", ...})
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    # ─── Read ──────────────────────────────────────────────

    async def get_by_id(self, id: str) -> Optional[ModelType]:
        result = await self.db.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def get_by_id_and_org(self, id: str, organization_id: str) -> Optional[ModelType]:
        """Get a single record scoped to an organization."""
        result = await self.db.execute(
            select(self.model).where(
                self.model.id == id,
                self.model.organization_id == organization_id,
            )
        )
        return result.scalar_one_or_none()

    async def find_one(self, **filters: Any) -> Optional[ModelType]:
        query = select(self.model)
        for field, value in filters.items():
            query = query.where(getattr(self.model, field) == value)
        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def find_all(self, order_by: Optional[str] = None, **filters: Any) -> list[ModelType]:
        query = select(self.model)
        for field, value in filters.items():
            query = query.where(getattr(self.model, field) == value)
        if order_by:
            query = query.order_by(getattr(self.model, order_by).asc())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ─── Create ────────────────────────────────────────────

    async def create(self, data: dict[str, Any]) -> ModelType:
        """Insert a record and return it with defaults populated."""
        data = dict(data)
        data.setdefault("id", str(uuid4()))
        instance = self.model(**data)
        self.db.add(instance)
        await self.db.flush()
        await self.db.refresh(instance)
        return instance

    async def create_many(self, rows: list[dict[str, Any]]) -> list[ModelType]:
        instances = [self.model(**{"id": str(uuid4()), **row}) for row in rows]
        self.db.add_all(instances)
        await self.db.flush()
        return instances

    # ─── Update ────────────────────────────────────────────

    async def update(self, id: str, data: dict[str, Any]) -> Optional[ModelType]:
        """Set the given columns on a record.

        Unlike a form update, None is written through; callers decide what
        to send.

        Returns:
            Updated model instance or None if not found
        """
        instance = await self.get_by_id(id)
        if not instance:
            return None

        for key, value in data.items():
            setattr(instance, key, value)

        await self.db.flush()
        await self.db.refresh(instance)
        return instance

    # ─── Delete ────────────────────────────────────────────

    async def delete_where(self, **filters: Any) -> int:
        """Delete matching rows and return how many were removed."""
        stmt = delete(self.model)
        for field, value in filters.items():
            stmt = stmt.where(getattr(self.model, field) == value)
        result = await self.db.execute(stmt)
        return result.rowcount or 0
