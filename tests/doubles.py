"""Test doubles for transports and the chat gateway, plus small helpers."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
import itertools
import json
from typing import Any
import uuid

from chat_service.features.chat.models import ConversationType, direct_key_for
from chat_service.features.chat.schemas import ConversationSummary
from chat_service.infra.realtime.exceptions import (
    DurablePersistenceFailure,
    NotAMember,
    UnknownMessage,
    UnknownUser,
)


# ============================================================================
# Transport doubles
# ============================================================================


class FakeTransport:
    """Records sent frames and close calls.

    Args:
        fail: Raise on every send
        delay: Seconds each send takes
        block: Never finish a send (until cancelled)
    """

    def __init__(self, *, fail: bool = False, delay: float = 0.0, block: bool = False) -> None:
        self.fail = fail
        self.delay = delay
        self.block = block
        self.sent: list[str] = []
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self.on_send: Any = None

    async def send_text(self, data: str) -> None:
        if self.on_send is not None:
            await self.on_send()
        if self.block:
            await asyncio.Event().wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            msg = "connection reset"
            raise RuntimeError(msg)
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_code = code
        self.close_reason = reason

    @property
    def envelopes(self) -> list[dict[str, Any]]:
        return [json.loads(frame) for frame in self.sent]

    @property
    def types(self) -> list[str]:
        return [envelope["type"] for envelope in self.envelopes]

    def of_type(self, type_: str) -> list[dict[str, Any]]:
        return [envelope for envelope in self.envelopes if envelope["type"] == type_]


class FakeSocket(FakeTransport):
    """Accepted WebSocket double: a FakeTransport with scripted inbound frames."""

    def __init__(self, frames: list[str | bytes] | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.frames = deque(frames or [])
        self.disconnect_code = 1000

    async def receive(self) -> dict[str, Any]:
        if not self.frames:
            return {"type": "websocket.disconnect", "code": self.disconnect_code}
        frame = self.frames.popleft()
        key = "bytes" if isinstance(frame, bytes) else "text"
        return {"type": "websocket.receive", key: frame}


# ============================================================================
# Gateway doubles
# ============================================================================


@dataclass
class StoredMessage:
    conversation_id: str
    sender_id: int
    content: str | None
    attachment_ref: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    is_read: bool = False


class FakeGateway:
    """In-memory ChatGateway.

    Set ``fail_*`` attributes to make an operation raise
    DurablePersistenceFailure.
    """

    def __init__(self, users: list[int] | None = None) -> None:
        self.users: set[int] = set(users or [1, 2, 3, 4])
        self.members: dict[str, set[int]] = {}
        self.types: dict[str, str] = {}
        self.titles: dict[str, str | None] = {}
        self.messages: list[StoredMessage] = []
        self.online_writes: list[tuple[int, bool]] = []
        self.fail_presence = False
        self.fail_directory = False
        self.fail_writes = False
        self.fail_reads = False
        self._ids = itertools.count(1)

    def add_conversation(self, members: list[int], conversation_id: str | None = None, type_: str = "group") -> str:
        conversation_id = conversation_id or f"conv-{next(self._ids)}"
        self.members[conversation_id] = set(members)
        self.types[conversation_id] = type_
        self.titles[conversation_id] = None
        return conversation_id

    async def is_member(self, conversation_id: str, user_id: int) -> bool:
        if self.fail_reads:
            raise DurablePersistenceFailure("is_member failed")
        return user_id in self.members.get(conversation_id, set())

    async def list_conversations_for(self, user_id: int) -> list[str]:
        if self.fail_directory:
            raise DurablePersistenceFailure("list_conversations_for failed")
        return sorted(cid for cid, members in self.members.items() if user_id in members)

    async def set_user_online_status(self, user_id: int, is_online: bool, last_seen: datetime) -> None:
        if self.fail_presence:
            raise DurablePersistenceFailure("set_user_online_status failed")
        self.online_writes.append((user_id, is_online))

    async def mark_all_offline(self) -> int:
        return 0

    async def user_exists(self, user_id: int) -> bool:
        return user_id in self.users

    async def get_or_create_direct_conversation(self, user_a: int, user_b: int) -> str:
        for user_id in (user_a, user_b):
            if user_id not in self.users:
                raise UnknownUser(user_id)
        key = f"direct-{direct_key_for(user_a, user_b)}"
        if key not in self.members:
            self.add_conversation([user_a, user_b], key, type_=ConversationType.DIRECT.value)
        return key

    async def create_conversation(
        self,
        creator_id: int,
        member_ids: list[int],
        *,
        type: ConversationType = ConversationType.GROUP,  # noqa: A002
        title: str | None = None,
    ) -> ConversationSummary:
        if type == ConversationType.DIRECT:
            conversation_id = await self.get_or_create_direct_conversation(creator_id, member_ids[0])
        else:
            members = sorted({creator_id, *member_ids})
            for user_id in members:
                if user_id not in self.users:
                    raise UnknownUser(user_id)
            conversation_id = self.add_conversation(members)
            self.titles[conversation_id] = title
        return self._summary(conversation_id)

    async def create_message(
        self,
        conversation_id: str,
        sender_id: int,
        content: str | None,
        attachment_ref: str | None = None,
    ) -> StoredMessage:
        if self.fail_writes:
            raise DurablePersistenceFailure("create_message failed")
        message = StoredMessage(conversation_id, sender_id, content, attachment_ref)
        self.messages.append(message)
        return message

    async def list_messages(
        self,
        conversation_id: str,
        *,
        limit: int,
        before: str | None = None,
    ) -> tuple[list[StoredMessage], bool]:
        rows = [m for m in self.messages if m.conversation_id == conversation_id]
        if before is not None:
            ids = [m.id for m in rows]
            if before not in ids:
                raise UnknownMessage(before)
            rows = rows[: ids.index(before)]
        page = rows[-limit:]
        return page, len(rows) > limit

    async def mark_message_read(self, message_id: str, reader_id: int) -> tuple[StoredMessage, bool]:
        message = next((m for m in self.messages if m.id == message_id), None)
        if message is None:
            raise UnknownMessage(message_id)
        if reader_id not in self.members.get(message.conversation_id, set()):
            raise NotAMember(message.conversation_id, reader_id)
        if message.sender_id == reader_id or message.is_read:
            return message, False
        message.is_read = True
        return message, True

    async def list_conversation_summaries(self, user_id: int) -> list[ConversationSummary]:
        if self.fail_reads:
            raise DurablePersistenceFailure("list_conversation_summaries failed")
        return [self._summary(cid) for cid in sorted(self.members) if user_id in self.members[cid]]

    def _summary(self, conversation_id: str) -> ConversationSummary:
        last = next((m for m in reversed(self.messages) if m.conversation_id == conversation_id), None)
        return ConversationSummary(
            id=conversation_id,
            type=self.types[conversation_id],
            title=self.titles.get(conversation_id),
            member_ids=sorted(self.members[conversation_id]),
            last_message=last.content if last else None,
            updated_at=last.created_at if last else datetime.now(UTC),
        )


# ============================================================================
# Helpers
# ============================================================================


async def connect_user(hub, user_id: int | None, transport: FakeTransport | None = None) -> tuple[str, FakeTransport]:
    """Admit, identify and auto-subscribe a connection like a session would."""
    transport = transport or FakeTransport()
    connection = hub.admit(transport)
    if user_id is not None:
        await hub.identify(connection.connection_id, user_id)
        await hub.auto_subscribe(connection.connection_id)
    return connection.connection_id, transport


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
