"""Minimal generic repository for SQLAlchemy models.

Provides basic CRUD with explicit session passing. For anything beyond
that, feature repositories add their own queries or use the session directly.

Example:
    class UserRepository(BaseRepository[User]):
        async def exists(self, session: AsyncSession, user_id: int) -> bool:
            ...

    user_repo = UserRepository()
    user = await user_repo.get(session, 42)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import select

from chat_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Generic repository for CRUD operations.

    Provides:
        - get(session, id) -> T | None
        - get_by(session, attr, value) -> T | None
        - create(session, instance) -> T

    The session is always explicit and never committed here; callers own
    the transaction.
    """

    __slots__ = ("_lazy", "model")

    def __init__(self, model: type[T]) -> None:
        self.model = model
        self._lazy = get_lazy_logger(f"repository.{model.__name__}")

    async def get(self, session: AsyncSession, id: Any) -> T | None:  # noqa: A002
        """Get entity by primary key."""
        instance = await session.get(self.model, id)
        self._lazy.debug(
            lambda: f"db.get: {self.model.__name__}({id}) -> {'found' if instance else 'not found'}"
        )
        return instance

    async def get_by(self, session: AsyncSession, attr: Any, value: Any) -> T | None:
        """Get a single entity by an attribute value."""
        result = await session.execute(select(self.model).where(attr == value))
        return result.scalar_one_or_none()

    async def create(self, session: AsyncSession, instance: T) -> T:
        """Add an entity and flush so generated columns are populated."""
        session.add(instance)
        await session.flush()
        self._lazy.debug(lambda: f"db.create: {self.model.__name__}")
        return instance
