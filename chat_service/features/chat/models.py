"""Chat database models: users, conversations, memberships, and messages."""

from __future__ import annotations

from datetime import datetime
import enum

from sqlalchemy import (
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chat_service.core.database import Base, IntegerPKMixin, StringPKMixin, TimestampMixin, UTCDateTime, utcnow


class ConversationType(enum.StrEnum):
    DIRECT = "direct"
    GROUP = "group"


class User(Base, IntegerPKMixin, TimestampMixin):
    """Chat participant with a durable online flag.

    ``is_online`` mirrors the in-memory presence state on a best-effort
    basis; the registry is authoritative while the process runs.
    """

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    avatar: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_online: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_seen: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name={self.name!r}, online={self.is_online})>"


class Conversation(Base, StringPKMixin, TimestampMixin):
    """Direct (two members) or group conversation."""

    __tablename__ = "conversations"

    type: Mapped[ConversationType] = mapped_column(
        Enum(ConversationType, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ConversationType.GROUP,
    )
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    # "<low_user_id>:<high_user_id>" for direct conversations; unique so
    # concurrent creations for the same pair collapse into one row.
    direct_key: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    last_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    members: Mapped[list[ConversationMember]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id!r}, type={self.type})>"


class ConversationMember(Base):
    __tablename__ = "conversation_members"
    __table_args__ = (UniqueConstraint("conversation_id", "user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), index=True, nullable=False,
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False,
    )
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    conversation: Mapped[Conversation] = relationship(back_populates="members")


class Message(Base, StringPKMixin):
    """A chat message. Either ``content`` or ``attachment_ref`` is set."""

    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_conversation_created", "conversation_id", "created_at"),)

    conversation_id: Mapped[str] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False,
    )
    sender_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False,
    )
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachment_ref: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<Message(id={self.id!r}, conversation_id={self.conversation_id!r})>"


def direct_key_for(user_a: int, user_b: int) -> str:
    low, high = sorted((user_a, user_b))
    return f"{low}:{high}"
