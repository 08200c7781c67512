"""SQL-backed chat persistence gateway.

The realtime layer and the HTTP routes reach the database only through
this class. Each call opens its own session from the session factory, so
no transaction ever stays open across a transport send. Driver and ORM
errors surface as ``DurablePersistenceFailure``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from chat_service.features.chat.models import (
    Conversation,
    ConversationMember,
    ConversationType,
    Message,
    direct_key_for,
)
from chat_service.features.chat.repository import (
    get_conversation_repository,
    get_message_repository,
    get_user_repository,
)
from chat_service.features.chat.schemas import ConversationSummary
from chat_service.infra.metrics.prometheus import chat_messages_persisted_total
from chat_service.infra.realtime.exceptions import (
    DurablePersistenceFailure,
    NotAMember,
    UnknownMessage,
    UnknownUser,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


@runtime_checkable
class ChatGateway(Protocol):
    """Everything the realtime layer and chat routes need from storage."""

    async def is_member(self, conversation_id: str, user_id: int) -> bool: ...

    async def create_message(
        self,
        conversation_id: str,
        sender_id: int,
        content: str | None,
        attachment_ref: str | None = None,
    ) -> Message: ...

    async def set_user_online_status(self, user_id: int, is_online: bool, last_seen: datetime) -> None: ...

    async def list_conversations_for(self, user_id: int) -> list[str]: ...

    async def user_exists(self, user_id: int) -> bool: ...

    async def get_or_create_direct_conversation(self, user_a: int, user_b: int) -> str: ...

    async def create_conversation(
        self,
        creator_id: int,
        member_ids: Sequence[int],
        *,
        type: ConversationType = ConversationType.GROUP,
        title: str | None = None,
    ) -> ConversationSummary: ...

    async def list_messages(
        self,
        conversation_id: str,
        *,
        limit: int,
        before: str | None = None,
    ) -> tuple[list[Message], bool]: ...

    async def mark_message_read(self, message_id: str, reader_id: int) -> tuple[Message, bool]: ...

    async def list_conversation_summaries(self, user_id: int) -> list[ConversationSummary]: ...


class SqlChatGateway:
    """ChatGateway backed by SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._users = get_user_repository()
        self._conversations = get_conversation_repository()
        self._messages = get_message_repository()

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error(
                "Persistence operation failed",
                extra={"operation": operation, "error": str(exc)},
            )
            raise DurablePersistenceFailure(
                f"{operation} failed", details={"operation": operation}
            ) from exc

    # ──────────────────────────────────────────────────────────────
    # Membership and presence
    # ──────────────────────────────────────────────────────────────

    async def is_member(self, conversation_id: str, user_id: int) -> bool:
        async with self._session("is_member") as session:
            return await self._conversations.is_member(session, conversation_id, user_id)

    async def list_conversations_for(self, user_id: int) -> list[str]:
        async with self._session("list_conversations_for") as session:
            return await self._conversations.ids_for_user(session, user_id)

    async def set_user_online_status(self, user_id: int, is_online: bool, last_seen: datetime) -> None:
        async with self._session("set_user_online_status") as session:
            updated = await self._users.set_online_status(session, user_id, is_online, last_seen)
            await session.commit()
        if not updated:
            logger.warning("Presence update for unknown user", extra={"user_id": user_id})

    async def mark_all_offline(self) -> int:
        async with self._session("mark_all_offline") as session:
            count = await self._users.mark_all_offline(session, datetime.now(UTC))
            await session.commit()
        return count

    async def user_exists(self, user_id: int) -> bool:
        async with self._session("user_exists") as session:
            return await self._users.exists(session, user_id)

    # ──────────────────────────────────────────────────────────────
    # Conversations
    # ──────────────────────────────────────────────────────────────

    async def get_or_create_direct_conversation(self, user_a: int, user_b: int) -> str:
        """Return the direct conversation between two users, creating it if needed.

        Raises:
            UnknownUser: If either user does not exist
        """
        key = direct_key_for(user_a, user_b)
        async with self._session("get_or_create_direct_conversation") as session:
            existing = await self._conversations.get_by_direct_key(session, key)
            if existing is not None:
                return existing.id

            known = await self._users.existing_ids(session, [user_a, user_b])
            for user_id in (user_a, user_b):
                if user_id not in known:
                    raise UnknownUser(user_id)

            conversation = Conversation(type=ConversationType.DIRECT, direct_key=key)
            conversation.members = [
                ConversationMember(user_id=user_id) for user_id in sorted({user_a, user_b})
            ]
            try:
                await self._conversations.create(session, conversation)
                await session.commit()
            except IntegrityError:
                # Lost a creation race for the same pair.
                await session.rollback()
                existing = await self._conversations.get_by_direct_key(session, key)
                if existing is None:
                    raise
                return existing.id

            logger.info(
                "Direct conversation created",
                extra={"conversation_id": conversation.id, "members": [user_a, user_b]},
            )
            return conversation.id

    async def create_conversation(
        self,
        creator_id: int,
        member_ids: Sequence[int],
        *,
        type: ConversationType = ConversationType.GROUP,  # noqa: A002
        title: str | None = None,
    ) -> ConversationSummary:
        """Create a conversation containing the creator and the given members.

        Raises:
            UnknownUser: If any member does not exist
        """
        if type == ConversationType.DIRECT:
            peers = [m for m in member_ids if m != creator_id] or [creator_id]
            conversation_id = await self.get_or_create_direct_conversation(creator_id, peers[0])
            summaries = await self.list_conversation_summaries(creator_id)
            return next(s for s in summaries if s.id == conversation_id)

        members = sorted({creator_id, *member_ids})
        async with self._session("create_conversation") as session:
            known = await self._users.existing_ids(session, members)
            for user_id in members:
                if user_id not in known:
                    raise UnknownUser(user_id)

            conversation = Conversation(type=ConversationType.GROUP, title=title)
            conversation.members = [ConversationMember(user_id=user_id) for user_id in members]
            await self._conversations.create(session, conversation)
            await session.commit()

            logger.info(
                "Group conversation created",
                extra={"conversation_id": conversation.id, "member_count": len(members)},
            )
            return ConversationSummary(
                id=conversation.id,
                type=conversation.type.value,
                title=conversation.title,
                member_ids=members,
                last_message=None,
                updated_at=conversation.updated_at,
            )

    async def list_conversation_summaries(self, user_id: int) -> list[ConversationSummary]:
        async with self._session("list_conversation_summaries") as session:
            conversations = await self._conversations.list_for_user(session, user_id)
            return [
                ConversationSummary(
                    id=conversation.id,
                    type=conversation.type.value,
                    title=conversation.title,
                    member_ids=sorted(member.user_id for member in conversation.members),
                    last_message=conversation.last_message,
                    updated_at=conversation.updated_at,
                )
                for conversation in conversations
            ]

    # ──────────────────────────────────────────────────────────────
    # Messages
    # ──────────────────────────────────────────────────────────────

    async def create_message(
        self,
        conversation_id: str,
        sender_id: int,
        content: str | None,
        attachment_ref: str | None = None,
    ) -> Message:
        """Persist a message and bump the conversation's preview and activity time.

        Membership is checked by the caller before this is invoked.
        """
        async with self._session("create_message") as session:
            message = Message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                content=content,
                attachment_ref=attachment_ref,
            )
            await self._messages.create(session, message)

            conversation = await self._conversations.get(session, conversation_id)
            if conversation is not None:
                conversation.last_message = content if content is not None else "[attachment]"
                conversation.updated_at = message.created_at
            await session.commit()

        chat_messages_persisted_total.labels(source="gateway").inc()
        return message

    async def list_messages(
        self,
        conversation_id: str,
        *,
        limit: int,
        before: str | None = None,
    ) -> tuple[list[Message], bool]:
        """One page of history, oldest first.

        Args:
            conversation_id: Conversation to read
            limit: Page size
            before: Return messages older than this message id

        Returns:
            (messages, has_more) where has_more says older messages exist.

        Raises:
            UnknownMessage: If ``before`` does not name a message of the conversation
        """
        async with self._session("list_messages") as session:
            anchor = None
            if before is not None:
                anchor = await self._messages.get(session, before)
                if anchor is None or anchor.conversation_id != conversation_id:
                    raise UnknownMessage(before)

            rows = list(
                await self._messages.list_page(session, conversation_id, limit=limit + 1, before=anchor)
            )
        has_more = len(rows) > limit
        page = rows[:limit]
        page.reverse()
        return page, has_more

    async def mark_message_read(self, message_id: str, reader_id: int) -> tuple[Message, bool]:
        """Mark a message as read by a member other than its sender.

        Returns:
            (message, changed) where changed is False when nothing was updated
            (already read, or the reader is the sender).

        Raises:
            UnknownMessage: If the message does not exist
            NotAMember: If the reader is not a member of the message's conversation
        """
        async with self._session("mark_message_read") as session:
            message = await self._messages.get(session, message_id)
            if message is None:
                raise UnknownMessage(message_id)
            if not await self._conversations.is_member(session, message.conversation_id, reader_id):
                raise NotAMember(message.conversation_id, reader_id)

            if message.sender_id == reader_id or message.is_read:
                return message, False

            message.is_read = True
            await session.commit()
            return message, True
