"""Tests for the scheduler-gated inference client."""

import asyncio

import pytest

from pagepilot.errors import InferenceRateLimitedError, SchedulerExhaustedError, SchedulerTimeoutError
from pagepilot.llm_client import ActionLlmClient
from pagepilot.token_bucket import TokenBucketScheduler


@pytest.mark.asyncio
async def test_invoke_goes_through_scheduler(llm, scheduler, fake_openai):
    fake_openai.responses.queue({"answer": "ok"})

    reply = await llm.invoke("Be brief.", "hello")

    assert reply.text == '{"answer": "ok"}'
    assert reply.response_id == "resp_test_1"
    assert scheduler.submitted == 1
    call = fake_openai.responses.calls[0]
    assert call["model"] == "gpt-5-mini"
    assert call["instructions"] == "Be brief."
    assert call["input"] == "hello"
    assert "previous_response_id" not in call


@pytest.mark.asyncio
async def test_previous_response_id_and_output_budget_are_forwarded(scheduler, fake_openai):
    llm = ActionLlmClient(
        "gpt-5-nano_fast",
        scheduler=scheduler,
        openai_client=fake_openai,
        max_output_tokens=300,
    )
    fake_openai.responses.queue("{}")

    await llm.invoke("i", "x", previous_response_id="resp_abc")

    call = fake_openai.responses.calls[0]
    assert call["model"] == "gpt-5-nano"
    assert call["previous_response_id"] == "resp_abc"
    assert call["max_output_tokens"] == 300
    assert call["reasoning"] == {"effort": "minimal"}
    assert call["text"] == {"verbosity": "low"}


def test_weight_counts_characters_and_output_budget(scheduler, fake_openai):
    llm = ActionLlmClient("gpt-5-mini", scheduler=scheduler, openai_client=fake_openai, max_output_tokens=100)
    assert llm.estimate_weight("a" * 40, "b" * 41) == 21 + 100


@pytest.mark.asyncio
async def test_rate_limit_is_not_retried(llm, fake_openai):
    fake_openai.responses.queue(RuntimeError("Error code: 429 - Too Many Requests"))

    with pytest.raises(InferenceRateLimitedError) as exc_info:
        await llm.invoke("i", "x")

    assert exc_info.value.status_code == 429
    assert len(fake_openai.responses.calls) == 1


@pytest.mark.asyncio
async def test_provider_timeout_maps_to_scheduler_timeout(llm, fake_openai):
    fake_openai.responses.queue(asyncio.TimeoutError())

    with pytest.raises(SchedulerTimeoutError):
        await llm.invoke("i", "x")


@pytest.mark.asyncio
async def test_scheduler_exhaustion_passes_through(fake_openai):
    scheduler = TokenBucketScheduler(reservoir=10, max_concurrent=1, min_time=0.0, admission_timeout=0.05)
    llm = ActionLlmClient("gpt-5-mini", scheduler=scheduler, openai_client=fake_openai)
    fake_openai.responses.queue("{}", "{}")

    await llm.invoke("", "x" * 40)
    with pytest.raises(SchedulerExhaustedError):
        await llm.invoke("", "y" * 40)
    assert len(fake_openai.responses.calls) == 1


@pytest.mark.asyncio
async def test_usage_is_accumulated(llm, fake_openai):
    fake_openai.responses.queue("{}", "{}")

    await llm.invoke("i", "a")
    await llm.invoke("i", "b")

    usage = llm.get_accrued_usage()
    assert usage["prompt_token_count"] == 20
    assert usage["candidates_token_count"] == 10
