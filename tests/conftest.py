"""Shared fixtures: SQLite ledger, fake inference client, real scheduler."""

import itertools
import json
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from pagepilot.backend import ActionBackend
from pagepilot.entities import Base
from pagepilot.ledger import ConversationLedger
from pagepilot.llm_client import ActionLlmClient
from pagepilot.token_bucket import TokenBucketScheduler

CONVERSATION_ID = "conv-1"


class FakeResponses:
    """Stands in for AsyncOpenAI().responses; replays queued outputs in order."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.outputs: List[Any] = []
        self.ids = (f"resp_test_{n}" for n in itertools.count(1))

    def queue(self, *outputs: Any) -> None:
        for out in outputs:
            self.outputs.append(out if isinstance(out, (str, Exception)) else json.dumps(out))

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        out = self.outputs.pop(0) if self.outputs else ""
        if isinstance(out, Exception):
            raise out
        return SimpleNamespace(
            id=next(self.ids),
            output_text=out,
            usage=SimpleNamespace(input_tokens=10, output_tokens=5, total_tokens=15),
        )


class FakeOpenAI:
    def __init__(self):
        self.responses = FakeResponses()


@pytest.fixture
def session_factory(tmp_path):
    # a file database, so resolver threads each get their own connection
    engine = create_engine(f"sqlite:///{tmp_path / 'pagepilot.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, future=True)
    engine.dispose()


@pytest.fixture
def ledger(session_factory):
    return ConversationLedger(session_factory)


@pytest.fixture
def conversation(ledger):
    return ledger.create_conversation(CONVERSATION_ID)


@pytest.fixture
def scheduler():
    return TokenBucketScheduler(
        reservoir=200_000,
        refill_interval=60.0,
        max_concurrent=2,
        min_time=0.0,
        call_timeout=5.0,
        admission_timeout=5.0,
    )


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def llm(scheduler, fake_openai):
    return ActionLlmClient("gpt-5-mini", scheduler=scheduler, openai_client=fake_openai)


@pytest.fixture
def backend(scheduler, ledger, llm):
    return ActionBackend(scheduler=scheduler, ledger=ledger, action_llm=llm)
