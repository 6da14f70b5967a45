# pagepilot/ledger.py
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import case, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from pagepilot.entities import Conversation, MessageKind, Turn, utcnow
from pagepilot.errors import ActionValidationError, ConversationNotFoundError

logger = logging.getLogger("pagepilot")

ACTION_KINDS = {
    MessageKind.NAVIGATION,
    MessageKind.CLICK,
    MessageKind.HIGHLIGHT,
    MessageKind.FILL_FORM,
}
RESEARCH_KINDS = {
    MessageKind.RESEARCH_ANALYZE,
    MessageKind.RESEARCH_ORGANIZE,
}


@dataclass(frozen=True)
class TurnRecord:
    conversation_id: str
    kind: MessageKind
    content: str
    response_id: Optional[str] = None
    action_type: Optional[str] = None
    research_context: Optional[str] = None
    found_answer: Optional[bool] = None
    organized_links: Optional[List[Dict[str, Any]]] = None
    form_fills: Optional[List[Dict[str, Any]]] = None
    missing_fields: Optional[List[str]] = None


@dataclass(frozen=True)
class PersistResult:
    """Outcome of a best-effort ledger write. Callers log failures and move on."""

    ok: bool
    turn_id: Optional[str] = None
    error: Optional[str] = None


class ConversationLedger:
    """
    Write side of the conversation store:
    - record_stats(): atomic per-request counter bump, before the model call
    - append_turn(): insert-only, never raises
    Chain tokens are never read back from here; callers thread them through.
    """

    def __init__(self, session_factory: sessionmaker):
        self.SessionFactory = session_factory

    def record_stats(self, conversation_id: str) -> None:
        now = utcnow()
        last_seen = Conversation.most_recent_conversation_at
        stmt = (
            update(Conversation)
            .where(Conversation.id == str(conversation_id))
            .values(
                total_messages=Conversation.total_messages + 1,
                # never move activity time backwards
                most_recent_conversation_at=case(
                    (or_(last_seen.is_(None), last_seen < now), now),
                    else_=last_seen,
                ),
            )
            .execution_options(synchronize_session=False)
        )

        session: Session = self.SessionFactory()
        try:
            result = session.execute(stmt)
            if result.rowcount == 0:
                session.rollback()
                raise ConversationNotFoundError(str(conversation_id))
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def append_turn(self, record: TurnRecord) -> PersistResult:
        turn_id = str(uuid4())
        session: Session = self.SessionFactory()
        try:
            session.add(
                Turn(
                    id=turn_id,
                    voice_conversation_id=str(record.conversation_id),
                    message_type=record.kind.value,
                    content=record.content or "",
                    response_id=record.response_id or None,
                    action=record.kind in ACTION_KINDS,
                    action_type=record.action_type,
                    research=record.kind in RESEARCH_KINDS,
                    research_context=record.research_context,
                    found_answer=record.found_answer,
                    organized_links=record.organized_links,
                    form_fills=record.form_fills,
                    missing_fields=record.missing_fields,
                )
            )
            session.commit()
            return PersistResult(ok=True, turn_id=turn_id)
        except (SQLAlchemyError, TypeError, ValueError) as e:
            session.rollback()
            return PersistResult(ok=False, error=f"{type(e).__name__}: {e}")
        finally:
            session.close()

    def record_feedback(self, conversation_id: str, helpful: Any) -> str:
        normalized = helpful.strip().lower() if isinstance(helpful, str) else None
        if normalized not in ("good", "bad"):
            raise ActionValidationError("helpful", "helpful must be 'good' or 'bad'")

        session: Session = self.SessionFactory()
        try:
            result = session.execute(
                update(Conversation)
                .where(Conversation.id == str(conversation_id))
                .values(helpful=normalized)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                session.rollback()
                raise ConversationNotFoundError(str(conversation_id))
            session.commit()
            return normalized
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    # -----------------------
    # Chat-initiation / audit helpers
    # -----------------------

    def create_conversation(self, conversation_id: Optional[str] = None) -> str:
        conversation_id = conversation_id or str(uuid4())
        session: Session = self.SessionFactory()
        try:
            session.add(Conversation(id=str(conversation_id), total_messages=0))
            session.commit()
            return str(conversation_id)
        finally:
            session.close()

    def get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        session: Session = self.SessionFactory()
        try:
            row = session.get(Conversation, str(conversation_id))
            if row is None:
                return None
            return {
                "id": row.id,
                "created_at": row.created_at,
                "most_recent_conversation_at": row.most_recent_conversation_at,
                "total_messages": row.total_messages,
                "helpful": row.helpful,
            }
        finally:
            session.close()

    def list_turns(self, conversation_id: str) -> List[Dict[str, Any]]:
        session: Session = self.SessionFactory()
        try:
            rows = session.scalars(
                select(Turn)
                .where(Turn.voice_conversation_id == str(conversation_id))
                .order_by(Turn.created_at, Turn.id)
            ).all()
            return [
                {
                    "id": t.id,
                    "message_type": t.message_type,
                    "content": t.content,
                    "response_id": t.response_id,
                    "action": t.action,
                    "action_type": t.action_type,
                    "research": t.research,
                    "research_context": t.research_context,
                    "found_answer": t.found_answer,
                    "organized_links": t.organized_links,
                    "form_fills": t.form_fills,
                    "missing_fields": t.missing_fields,
                    "created_at": t.created_at,
                }
                for t in rows
            ]
        finally:
            session.close()
