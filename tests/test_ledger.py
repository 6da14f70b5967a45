"""Tests for the conversation ledger (stats, turns, feedback)."""

from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from pagepilot.entities import Base, MessageKind
from pagepilot.errors import ActionValidationError, ConversationNotFoundError
from pagepilot.ledger import ConversationLedger, TurnRecord


def test_record_stats_bumps_counter_and_activity(ledger, conversation):
    ledger.record_stats(conversation)
    ledger.record_stats(conversation)

    row = ledger.get_conversation(conversation)
    assert row["total_messages"] == 2
    assert row["most_recent_conversation_at"] is not None


def test_record_stats_unknown_conversation(ledger):
    with pytest.raises(ConversationNotFoundError) as exc_info:
        ledger.record_stats("nope")
    assert exc_info.value.status_code == 404


def test_record_stats_is_atomic_under_concurrency(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)
    ledger = ConversationLedger(sessionmaker(bind=engine, future=True))
    conversation = ledger.create_conversation()

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(ledger.record_stats, [conversation] * 20))

    assert ledger.get_conversation(conversation)["total_messages"] == 20
    engine.dispose()


def test_activity_time_never_moves_backwards(ledger, conversation):
    ledger.record_stats(conversation)
    first = ledger.get_conversation(conversation)["most_recent_conversation_at"]
    ledger.record_stats(conversation)
    second = ledger.get_conversation(conversation)["most_recent_conversation_at"]
    assert second >= first


def test_append_turn_persists_action_fields(ledger, conversation):
    result = ledger.append_turn(
        TurnRecord(
            conversation_id=conversation,
            kind=MessageKind.CLICK,
            content="Clicking checkout",
            response_id="resp_1",
            action_type="click",
        )
    )

    assert result.ok
    turns = ledger.list_turns(conversation)
    assert len(turns) == 1
    turn = turns[0]
    assert turn["id"] == result.turn_id
    assert turn["message_type"] == "clickAI"
    assert turn["action"] is True
    assert turn["research"] is False
    assert turn["action_type"] == "click"
    assert turn["response_id"] == "resp_1"


def test_append_turn_persists_research_fields(ledger, conversation):
    links = [{"url": "https://a.example", "relevanceScore": 80, "reason": "pricing"}]
    ledger.append_turn(
        TurnRecord(
            conversation_id=conversation,
            kind=MessageKind.RESEARCH_ORGANIZE,
            content="Organized research links based on relevance",
            research_context="plans",
            organized_links=links,
        )
    )

    turn = ledger.list_turns(conversation)[0]
    assert turn["message_type"] == "organizeAI"
    assert turn["research"] is True
    assert turn["action"] is False
    assert turn["organized_links"] == links
    assert turn["research_context"] == "plans"


def test_append_turn_failure_is_reported_not_raised(session_factory, conversation):
    ledger = ConversationLedger(session_factory)

    def broken_session():
        session = session_factory()

        def commit():
            raise OperationalError("INSERT", {}, Exception("disk full"))

        session.commit = commit
        return session

    ledger.SessionFactory = broken_session
    result = ledger.append_turn(TurnRecord(conversation_id=conversation, kind=MessageKind.HIGHLIGHT, content="x"))

    assert not result.ok
    assert "OperationalError" in result.error


def test_record_feedback(ledger, conversation):
    assert ledger.record_feedback(conversation, " GOOD ") == "good"
    assert ledger.get_conversation(conversation)["helpful"] == "good"


@pytest.mark.parametrize("value", ["meh", None, 1, True])
def test_record_feedback_rejects_other_values(ledger, conversation, value):
    with pytest.raises(ActionValidationError):
        ledger.record_feedback(conversation, value)


def test_record_feedback_unknown_conversation(ledger):
    with pytest.raises(ConversationNotFoundError):
        ledger.record_feedback("missing", "bad")
