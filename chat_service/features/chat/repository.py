"""Repositories for the chat feature."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import and_, exists, select, update

from chat_service.core.database.repository import BaseRepository
from chat_service.features.chat.models import (
    Conversation,
    ConversationMember,
    Message,
    User,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession


class UserRepository(BaseRepository[User]):
    def __init__(self) -> None:
        super().__init__(User)

    async def exists(self, session: AsyncSession, user_id: int) -> bool:
        result = await session.execute(select(exists().where(User.id == user_id)))
        return bool(result.scalar())

    async def existing_ids(self, session: AsyncSession, user_ids: Sequence[int]) -> set[int]:
        result = await session.execute(select(User.id).where(User.id.in_(user_ids)))
        return set(result.scalars().all())

    async def set_online_status(
        self,
        session: AsyncSession,
        user_id: int,
        is_online: bool,
        last_seen: datetime,
    ) -> bool:
        """Update the durable presence flag. Returns False for an unknown user."""
        result = await session.execute(
            update(User)
            .where(User.id == user_id)
            .values(is_online=is_online, last_seen=last_seen)
        )
        self._lazy.debug(lambda: f"db.set_online_status({user_id}, {is_online}) -> {result.rowcount}")
        return bool(result.rowcount)

    async def mark_all_offline(self, session: AsyncSession, last_seen: datetime) -> int:
        """Clear stale online flags (after an unclean shutdown)."""
        result = await session.execute(
            update(User).where(User.is_online.is_(True)).values(is_online=False, last_seen=last_seen)
        )
        return int(result.rowcount or 0)


class ConversationRepository(BaseRepository[Conversation]):
    def __init__(self) -> None:
        super().__init__(Conversation)

    async def is_member(self, session: AsyncSession, conversation_id: str, user_id: int) -> bool:
        stmt = select(
            exists().where(
                and_(
                    ConversationMember.conversation_id == conversation_id,
                    ConversationMember.user_id == user_id,
                )
            )
        )
        result = await session.execute(stmt)
        return bool(result.scalar())

    async def ids_for_user(self, session: AsyncSession, user_id: int) -> list[str]:
        stmt = (
            select(ConversationMember.conversation_id)
            .where(ConversationMember.user_id == user_id)
            .order_by(ConversationMember.conversation_id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_user(self, session: AsyncSession, user_id: int) -> Sequence[Conversation]:
        """Conversations of a user, most recently active first, with members loaded."""
        stmt = (
            select(Conversation)
            .join(ConversationMember, ConversationMember.conversation_id == Conversation.id)
            .where(ConversationMember.user_id == user_id)
            .order_by(Conversation.updated_at.desc(), Conversation.id)
        )
        result = await session.execute(stmt)
        return result.scalars().unique().all()

    async def get_by_direct_key(self, session: AsyncSession, direct_key: str) -> Conversation | None:
        return await self.get_by(session, Conversation.direct_key, direct_key)


class MessageRepository(BaseRepository[Message]):
    def __init__(self) -> None:
        super().__init__(Message)

    async def list_page(
        self,
        session: AsyncSession,
        conversation_id: str,
        *,
        limit: int,
        before: Message | None = None,
    ) -> Sequence[Message]:
        """Newest ``limit`` messages (older than ``before`` if given), newest first."""
        stmt = select(Message).where(Message.conversation_id == conversation_id)
        if before is not None:
            stmt = stmt.where(
                (Message.created_at < before.created_at)
                | and_(Message.created_at == before.created_at, Message.id < before.id)
            )
        stmt = stmt.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)
        result = await session.execute(stmt)
        messages = result.scalars().all()
        self._lazy.debug(
            lambda: f"db.list_page({conversation_id!r}, limit={limit}) -> {len(messages)} rows"
        )
        return messages


def get_user_repository() -> UserRepository:
    return UserRepository()


def get_conversation_repository() -> ConversationRepository:
    return ConversationRepository()


def get_message_repository() -> MessageRepository:
    return MessageRepository()
