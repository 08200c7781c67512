"""Chat operations shared by the WebSocket session and the REST routes.

Every write is persisted before anything is fanned out. A message that
failed to persist is never delivered.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chat_service.features.chat.models import ConversationType
from chat_service.features.chat.schemas import MessagePage, MessageRead
from chat_service.features.realtime.schemas import (
    MessageReadEnvelope,
    NewMessageEnvelope,
    UserTypingEnvelope,
)
from chat_service.infra.realtime.exceptions import NotAMember

if TYPE_CHECKING:
    from collections.abc import Sequence

    from chat_service.features.chat.gateway import ChatGateway
    from chat_service.features.chat.schemas import ConversationSummary
    from chat_service.features.realtime.hub import RealtimeHub

logger = logging.getLogger(__name__)


class ChatService:
    """Persist-then-deliver chat operations.

    Example:
        service = ChatService(gateway, hub)
        message, delivered = await service.send_message(
            1, "hello", conversation_id="c0ffee", origin_connection_id="abc"
        )
    """

    def __init__(self, gateway: ChatGateway, hub: RealtimeHub) -> None:
        self.gateway = gateway
        self.hub = hub

    async def send_message(
        self,
        sender_id: int,
        content: str | None,
        *,
        conversation_id: str | None = None,
        receiver_id: int | None = None,
        attachment_ref: str | None = None,
        origin_connection_id: str | None = None,
    ) -> tuple[MessageRead, int]:
        """Persist a message, then deliver it.

        Recipients are the subscribers of the conversation plus, for a direct
        send, every live connection of the receiver. The originating
        connection is skipped; the sender's other tabs receive it.

        Args:
            sender_id: Authoring user
            content: Message text
            conversation_id: Target conversation
            receiver_id: Target user; the direct conversation is created on demand
            attachment_ref: Opaque attachment reference
            origin_connection_id: Connection the message arrived on, if any

        Returns:
            (message, delivered_count)

        Raises:
            NotAMember: If the sender is not a member of the conversation
            UnknownUser: If the receiver does not exist
            DurablePersistenceFailure: If storage fails (nothing is delivered)
        """
        include_users: tuple[int, ...] = ()
        if receiver_id is not None:
            conversation_id = await self.gateway.get_or_create_direct_conversation(sender_id, receiver_id)
            include_users = (receiver_id,)
            self._attach_live_connections(conversation_id, (sender_id, receiver_id))
        elif conversation_id is None:
            msg = "conversation_id or receiver_id is required"
            raise ValueError(msg)
        elif not await self.gateway.is_member(conversation_id, sender_id):
            raise NotAMember(conversation_id, sender_id)

        stored = await self.gateway.create_message(conversation_id, sender_id, content, attachment_ref)
        message = MessageRead.model_validate(stored)

        delivered = await self.hub.fanout.deliver_to_conversation(
            conversation_id,
            NewMessageEnvelope(message=message),
            include_users=include_users,
            exclude_connections=(origin_connection_id,) if origin_connection_id else (),
        )
        logger.info(
            "Message sent",
            extra={
                "message_id": message.id,
                "conversation_id": conversation_id,
                "sender_id": sender_id,
                "delivered_count": delivered,
            },
        )
        return message, delivered

    async def mark_as_read(self, message_id: str, reader_id: int) -> MessageRead:
        """Mark a message read and tell the conversation and the sender.

        Nothing is fanned out when the message was already read or the
        reader is its sender.
        """
        stored, changed = await self.gateway.mark_message_read(message_id, reader_id)
        message = MessageRead.model_validate(stored)
        if changed:
            await self.hub.fanout.deliver_to_conversation(
                message.conversation_id,
                MessageReadEnvelope(
                    message_id=message.id,
                    conversation_id=message.conversation_id,
                    reader_id=reader_id,
                ),
                include_users=(message.sender_id,),
            )
        return message

    async def typing(
        self,
        connection_id: str,
        user_id: int,
        conversation_id: str,
        is_typing: bool,
    ) -> int:
        """Relay a typing indicator to the other participants.

        Only connections already subscribed to the conversation may send one;
        the subscription itself was membership-checked.
        """
        if conversation_id not in self.hub.subscriptions.subscriptions_of(connection_id):
            raise NotAMember(conversation_id, user_id)

        return await self.hub.fanout.deliver_to_conversation(
            conversation_id,
            UserTypingEnvelope(conversation_id=conversation_id, user_id=user_id, is_typing=is_typing),
            exclude_user=user_id,
        )

    async def history(
        self,
        user_id: int,
        conversation_id: str,
        *,
        limit: int | None = None,
        before: str | None = None,
    ) -> MessagePage:
        if not await self.gateway.is_member(conversation_id, user_id):
            raise NotAMember(conversation_id, user_id)

        settings = self.hub.settings
        page_size = min(limit or settings.history_page_size, settings.max_history_page_size)
        messages, has_more = await self.gateway.list_messages(conversation_id, limit=page_size, before=before)
        return MessagePage(
            conversation_id=conversation_id,
            messages=[MessageRead.model_validate(m) for m in messages],
            has_more=has_more,
        )

    async def conversation_summaries(self, user_id: int) -> list[ConversationSummary]:
        return await self.gateway.list_conversation_summaries(user_id)

    async def create_conversation(
        self,
        creator_id: int,
        member_ids: Sequence[int],
        *,
        type: str = "group",  # noqa: A002
        title: str | None = None,
    ) -> ConversationSummary:
        """Create a conversation and subscribe its members' live connections to it."""
        summary = await self.gateway.create_conversation(
            creator_id,
            member_ids,
            type=ConversationType(type),
            title=title,
        )
        self._attach_live_connections(summary.id, summary.member_ids)
        return summary

    def _attach_live_connections(self, conversation_id: str, user_ids: Sequence[int]) -> None:
        # Membership was established by the caller, so no per-connection check is needed.
        if not self.hub.settings.auto_subscribe:
            return
        for user_id in user_ids:
            for connection in self.hub.registry.living_connections_of(user_id):
                self.hub.subscriptions.subscribe_verified(connection.connection_id, (conversation_id,))


__all__ = ["ChatService"]
