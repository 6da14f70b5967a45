# pagepilot/llm_client.py
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import openai
from openai import AsyncOpenAI
from langchain_google_vertexai import ChatVertexAI
from langchain_core.messages import HumanMessage, SystemMessage

from pagepilot.errors import InferenceRateLimitedError, PilotError, SchedulerTimeoutError
from pagepilot.model_props import (
    DEFAULT_CHARS_PER_TOKEN,
    estimate_token_weight,
    is_openai_model,
    parse_model_name,
)
from pagepilot.token_bucket import TokenBucketScheduler

logger = logging.getLogger("pagepilot")


@dataclass(frozen=True)
class ModelReply:
    text: str
    response_id: Optional[str]


def _is_timeout_error(e: Exception) -> bool:
    if isinstance(e, (asyncio.TimeoutError, openai.APITimeoutError)):
        return True
    msg = repr(e)
    return "TimeoutError" in msg or "timed out" in msg.lower()


def _is_resource_exhausted_error(e: Exception) -> bool:
    if isinstance(e, openai.RateLimitError):
        return True
    msg = str(e)
    return (
        "429" in msg
        and (
            "RESOURCE_EXHAUSTED" in msg
            or "Resource has been exhausted" in msg
            or "Too Many Requests" in msg
        )
    )


class BaseLlmClient:
    """
    Common usage accounting for both providers.
    """

    last_usage: Optional[Dict[str, int]]

    def _accumulate(self, inc: Dict[str, int]) -> None:
        if self.last_usage is None:
            self.last_usage = inc
            return
        for k, v in inc.items():
            self.last_usage[k] = (self.last_usage.get(k, 0) or 0) + (v or 0)

    def _merge_usage(self, resp: Any) -> None:
        if resp is None:
            return
        usage = getattr(resp, "usage", None)
        if usage is None:
            return
        details = getattr(usage, "input_tokens_details", None)
        self._accumulate({
            "prompt_token_count": getattr(usage, "input_tokens", 0) or 0,
            "candidates_token_count": getattr(usage, "output_tokens", 0) or 0,
            "total_token_count": getattr(usage, "total_tokens", 0) or 0,
            "cached_content_token_count": getattr(details, "cached_tokens", 0) if details else 0,
        })

    def _merge_vertex_usage(self, usage_metadata: Any) -> None:
        if not usage_metadata:
            return

        def get(*keys: str) -> int:
            for k in keys:
                if isinstance(usage_metadata, dict):
                    v = usage_metadata.get(k)
                else:
                    v = getattr(usage_metadata, k, None)
                if v:
                    return int(v)
            return 0

        self._accumulate({
            "prompt_token_count": get("prompt_token_count", "input_tokens"),
            "candidates_token_count": get("candidates_token_count", "output_tokens"),
            "total_token_count": get("total_token_count", "total_tokens"),
            "cached_content_token_count": get("cached_content_token_count"),
        })

    def get_accrued_usage(self) -> Dict[str, int]:
        return dict(self.last_usage or {})


class ActionLlmClient(BaseLlmClient):
    """
    Instruction + input wrapper around one model, with every call admitted
    through the shared TokenBucketScheduler:

        reply = await llm.invoke(instructions, input_text, previous_response_id="resp_...")

    Under the hood:
    - OpenAI: Responses API (client.responses.create), chainable via previous_response_id
    - Vertex: ChatVertexAI.ainvoke([SystemMessage, HumanMessage]); no chaining
    No retries here: a rate-limit answer is raised to the caller.
    """

    def __init__(
        self,
        model_name: str,
        *,
        scheduler: TokenBucketScheduler,
        vertex_project: str | None = None,
        vertex_region: str | None = None,
        timeout: float | None = None,
        max_output_tokens: int | None = None,
        chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
        openai_client: Any = None,
        vertex_client: Any = None,
    ):
        self.provider = "openai" if is_openai_model(model_name) else "vertex"
        self.model_name = model_name
        self.scheduler = scheduler
        self.max_output_tokens = max_output_tokens
        self.chars_per_token = chars_per_token
        self._timeout = timeout
        self.last_usage: Optional[Dict[str, int]] = None
        self._openai_params: Dict[str, Any] = {}

        if self.provider == "vertex":
            self._client = None
            self._vertex = vertex_client or ChatVertexAI(
                project=vertex_project,
                location=vertex_region,
                model_name=model_name,
                timeout=timeout,
                max_output_tokens=max_output_tokens,
            )
        elif self.provider == "openai":
            self._vertex = None
            self.model_name, self._openai_params = parse_model_name(self.model_name)
            if openai_client is None:
                client_kwargs: Dict[str, Any] = {"max_retries": 0}
                if timeout is not None:
                    client_kwargs["timeout"] = timeout
                openai_client = AsyncOpenAI(**client_kwargs)
            self._client = openai_client
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider}")

    def estimate_weight(self, instructions: str, input_text: str) -> int:
        return estimate_token_weight(
            (instructions, input_text),
            max_output_tokens=self.max_output_tokens,
            chars_per_token=self.chars_per_token,
        )

    async def _invoke_once(
        self,
        instructions: str,
        input_text: str,
        previous_response_id: Optional[str],
    ) -> ModelReply:
        """
        Single HTTP call without retries/backoff.
        """
        if self.provider == "vertex":
            if previous_response_id:
                logger.debug("Vertex provider ignores previous_response_id=%s", previous_response_id)
            resp = await self._vertex.ainvoke(
                [SystemMessage(content=instructions), HumanMessage(content=input_text)]
            )

            usage_md = getattr(resp, "usage_metadata", None)
            if usage_md is None:
                rm = getattr(resp, "response_metadata", None)
                if isinstance(rm, dict):
                    usage_md = rm.get("usage_metadata")
            self._merge_vertex_usage(usage_md)

            if isinstance(resp, str):
                return ModelReply(text=resp.strip(), response_id=None)
            return ModelReply(
                text=str(getattr(resp, "content", resp)).strip(),
                response_id=getattr(resp, "id", None),
            )

        kwargs: Dict[str, Any] = dict(self._openai_params)
        if previous_response_id:
            kwargs["previous_response_id"] = previous_response_id
        if self.max_output_tokens:
            kwargs["max_output_tokens"] = self.max_output_tokens

        resp = await self._client.responses.create(
            model=self.model_name,
            instructions=instructions,
            input=input_text,
            **kwargs,
        )
        self._merge_usage(resp)

        text = getattr(resp, "output_text", "") or ""
        return ModelReply(text=text.strip(), response_id=getattr(resp, "id", None))

    async def invoke(
        self,
        instructions: str,
        input_text: str,
        *,
        previous_response_id: Optional[str] = None,
    ) -> ModelReply:
        weight = self.estimate_weight(instructions, input_text)
        try:
            return await self.scheduler.submit(
                weight,
                lambda: self._invoke_once(instructions, input_text, previous_response_id),
            )
        except PilotError:
            raise
        except Exception as e:
            if _is_resource_exhausted_error(e):
                logger.warning("[LLM] %s got 429 (weight=%s), not retrying: %s", self.model_name, weight, e)
                raise InferenceRateLimitedError(f"Inference service rate-limited the call: {e}") from e
            if _is_timeout_error(e):
                logger.warning("[LLM] %s timed out (weight=%s): %s", self.model_name, weight, e)
                raise SchedulerTimeoutError(float(self._timeout or 0.0)) from e
            raise
