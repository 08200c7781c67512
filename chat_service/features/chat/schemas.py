"""Pydantic schemas for the chat feature."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class MessageRead(BaseModel):
    """A message exactly as persisted. Also the body of ``new_message`` envelopes."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    sender_id: int
    content: str | None = None
    attachment_ref: str | None = None
    created_at: datetime
    is_read: bool = False


class ConversationSummary(BaseModel):
    """Conversation as listed for one member."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    type: Literal["direct", "group"]
    title: str | None = None
    member_ids: list[int] = Field(default_factory=list)
    last_message: str | None = None
    updated_at: datetime


class ConversationCreate(BaseModel):
    """Payload for creating a conversation.

    A direct conversation takes exactly one other member and is reused when
    it already exists.
    """

    type: Literal["direct", "group"] = "group"
    member_ids: list[int] = Field(..., min_length=1, max_length=500)
    title: str | None = Field(default=None, max_length=200)

    @model_validator(mode="after")
    def _direct_has_one_peer(self) -> ConversationCreate:
        if self.type == "direct" and len(set(self.member_ids)) != 1:
            msg = "A direct conversation needs exactly one other member"
            raise ValueError(msg)
        return self


class MessageCreate(BaseModel):
    content: str | None = Field(default=None, min_length=1, max_length=10000)
    attachment_ref: str | None = Field(default=None, min_length=1, max_length=500)

    @model_validator(mode="after")
    def _has_body(self) -> MessageCreate:
        if self.content is None and self.attachment_ref is None:
            msg = "Either content or attachment_ref is required"
            raise ValueError(msg)
        return self


class MessageSent(BaseModel):
    """Result of sending a message through the HTTP API."""

    message: MessageRead
    delivered_count: int = Field(..., ge=0, description="Recipient connections reached")


class MessagePage(BaseModel):
    conversation_id: str
    messages: list[MessageRead]
    has_more: bool = False
