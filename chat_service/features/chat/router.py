"""Chat REST endpoints.

Endpoints:
- GET  /chats: the caller's conversations, most recently active first
- POST /chats: create a direct or group conversation
- GET  /chats/{conversation_id}/messages: one page of history
- POST /chats/{conversation_id}/messages: persist a message and fan it out

Messages posted here travel the same fan-out path as messages sent over
the WebSocket, so connected members receive ``new_message`` envelopes.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, status

from chat_service.core.dependencies import ChatServiceDep, CurrentUserId
from chat_service.features.chat.schemas import (
    ConversationCreate,
    ConversationSummary,
    MessageCreate,
    MessagePage,
    MessageSent,
)

router = APIRouter(prefix="/chats", tags=["chats"])


@router.get("", response_model=list[ConversationSummary], summary="List my conversations")
async def list_conversations(user_id: CurrentUserId, service: ChatServiceDep) -> list[ConversationSummary]:
    return await service.conversation_summaries(user_id)


@router.post(
    "",
    response_model=ConversationSummary,
    status_code=status.HTTP_201_CREATED,
    summary="Create a conversation",
)
async def create_conversation(
    payload: ConversationCreate,
    user_id: CurrentUserId,
    service: ChatServiceDep,
) -> ConversationSummary:
    """Create a conversation with the caller as a member.

    Creating a direct conversation that already exists returns it.
    """
    return await service.create_conversation(
        user_id,
        payload.member_ids,
        type=payload.type,
        title=payload.title,
    )


@router.get(
    "/{conversation_id}/messages",
    response_model=MessagePage,
    summary="Message history",
    responses={403: {"description": "Not a member of the conversation"}},
)
async def list_messages(
    conversation_id: str,
    user_id: CurrentUserId,
    service: ChatServiceDep,
    limit: Annotated[int | None, Query(ge=1, le=1000, description="Page size")] = None,
    before: Annotated[str | None, Query(description="Return messages older than this message id")] = None,
) -> MessagePage:
    return await service.history(user_id, conversation_id, limit=limit, before=before)


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageSent,
    status_code=status.HTTP_201_CREATED,
    summary="Send a message",
    responses={403: {"description": "Not a member of the conversation"}},
)
async def send_message(
    conversation_id: str,
    payload: MessageCreate,
    user_id: CurrentUserId,
    service: ChatServiceDep,
) -> MessageSent:
    message, delivered = await service.send_message(
        user_id,
        payload.content,
        conversation_id=conversation_id,
        attachment_ref=payload.attachment_ref,
    )
    return MessageSent(message=message, delivered_count=delivered)
