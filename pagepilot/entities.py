# pagepilot/entities.py
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

Base = declarative_base()

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JsonColumn = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MessageKind(str, Enum):
    NAVIGATION = "navigationAI"
    CLICK = "clickAI"
    HIGHLIGHT = "highlightAI"
    FILL_FORM = "fillFormAI"
    RESEARCH_ANALYZE = "analyzeAI"
    RESEARCH_ORGANIZE = "organizeAI"


class Conversation(Base):
    """
    One voice session. Rows are created by the chat-initiation flow; the
    resolvers only bump the counters.
    """

    __tablename__ = "voice_conversations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    most_recent_conversation_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False))
    total_messages: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    # "good" / "bad" once the visitor rated the session
    helpful: Mapped[str | None] = mapped_column(String(8))


class Turn(Base):
    """Append-only record of one resolved exchange."""

    __tablename__ = "voice_chats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    voice_conversation_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("voice_conversations.id"),
        nullable=False,
    )
    message_type: Mapped[str] = mapped_column(String(32), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    response_id: Mapped[str | None] = mapped_column(String(128))

    action: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    action_type: Mapped[str | None] = mapped_column(String(32))

    research: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    research_context: Mapped[str | None] = mapped_column(Text)
    found_answer: Mapped[bool | None] = mapped_column(Boolean)
    organized_links: Mapped[list | None] = mapped_column(JsonColumn)

    form_fills: Mapped[list | None] = mapped_column(JsonColumn)
    missing_fields: Mapped[list | None] = mapped_column(JsonColumn)

    __table_args__ = (
        Index("ix_voice_chats_conversation", "voice_conversation_id", "created_at"),
    )
