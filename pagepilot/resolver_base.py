# pagepilot/resolver_base.py
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from pagepilot.entities import MessageKind
from pagepilot.errors import ActionValidationError
from pagepilot.ledger import ConversationLedger, TurnRecord
from pagepilot.llm_client import ActionLlmClient, ModelReply
from pagepilot.output_parsing import Fallback, OutputParser, OutputShape, ParseOutcome, Parsed
from pagepilot.response_chain import outgoing_response_id, previous_response_id_for
from pagepilot.utils import Utils

logger = logging.getLogger("pagepilot")


class ActionResolver(Utils):
    """
    One intent's request lifecycle:

        validate -> record stats -> build payload -> scheduler/model call
                 -> parse (or fallback) -> check -> append turn -> respond

    Subclasses supply the intent-specific pieces: request validation, the
    model input, the output shape, the fallback, the acceptance check and
    the response/turn mapping. Validation, scheduler and stats failures
    raise; parse problems and ledger write failures do not.
    """

    intent: str = ""
    kind: MessageKind
    instructions: str = ""
    shape: OutputShape

    def __init__(self, llm: ActionLlmClient, ledger: ConversationLedger, parser: OutputParser | None = None):
        self.llm = llm
        self.ledger = ledger
        self.parser = parser or OutputParser()

    async def resolve(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise ActionValidationError("body", "Request body must be a JSON object")

        request = self.validate(payload)
        conversation_id = request["conversationId"]
        logger.info("doing %s action %s", self.intent, self.describe_request(request))

        # liveness reflects arrival, so this happens before the model call
        await asyncio.to_thread(self.ledger.record_stats, conversation_id)

        previous_response_id = previous_response_id_for(request.get("responseId"), intent=self.intent)
        input_text = self.build_input(request)
        logger.debug("%s input:\n%s", self.intent, input_text)

        reply: ModelReply = await self.llm.invoke(
            self.instructions,
            input_text,
            previous_response_id=previous_response_id,
        )
        logger.debug("%s raw output:\n%s", self.intent, reply.text)

        outcome: ParseOutcome = self.parser.parse(reply.text, self.shape, self.fallback_fields(request))
        if isinstance(outcome, Parsed):
            outcome = self.check_output(outcome.fields, request)
        if isinstance(outcome, Fallback):
            logger.warning("%s: model output unusable (%s), using fallback", self.intent, outcome.reason)

        response = self.build_response(outcome.fields, outgoing_response_id(reply.response_id), request)

        persisted = await asyncio.to_thread(
            self.ledger.append_turn,
            self.turn_record(response, reply.response_id, request),
        )
        if not persisted.ok:
            self.color_print(
                f"{self.intent}: failed to save turn for conversation {conversation_id}: {persisted.error}",
                color="red",
            )

        logger.info("done %s action %s", self.intent, self.describe_response(response))
        return response

    # -----------------------
    # Hooks
    # -----------------------

    def validate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def build_input(self, request: Dict[str, Any]) -> str:
        raise NotImplementedError

    def fallback_fields(self, request: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def check_output(self, fields: Dict[str, Any], request: Dict[str, Any]) -> ParseOutcome:
        return Parsed(fields)

    def build_response(self, fields: Dict[str, Any], response_id: str, request: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def turn_record(self, response: Dict[str, Any], raw_response_id: Optional[str], request: Dict[str, Any]) -> TurnRecord:
        raise NotImplementedError

    def describe_request(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "conversationId": request.get("conversationId"),
            "question": request.get("question"),
        }

    def describe_response(self, response: Dict[str, Any]) -> Dict[str, Any]:
        return {"responseId": response.get("responseId")}

    # -----------------------
    # Validation helpers
    # -----------------------

    def _require_str(self, payload: Dict[str, Any], key: str, message: str) -> str:
        value = payload.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and key == "conversationId":
            value = str(value)
        if not isinstance(value, str) or not value.strip():
            raise ActionValidationError(key, message)
        return value.strip()

    def _optional_str(self, payload: Dict[str, Any], key: str) -> str:
        value = payload.get(key)
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ActionValidationError(key, f"{key} must be a string")
        return value.strip()

    def _require_list(self, payload: Dict[str, Any], key: str, message: str, *, allow_empty: bool = False) -> List[Any]:
        value = payload.get(key)
        if not isinstance(value, list) or (not value and not allow_empty):
            raise ActionValidationError(key, message)
        return value

    def _base_request(self, payload: Dict[str, Any], *, response_id_required: bool) -> Dict[str, Any]:
        request: Dict[str, Any] = {}
        if response_id_required:
            request["responseId"] = self._require_str(payload, "responseId", "Response ID is required")
        else:
            incoming = payload.get("responseId")
            request["responseId"] = incoming if isinstance(incoming, str) else None
        return request

    def _dump_affordances(self, value: Any) -> str:
        return json.dumps(value, indent=2, ensure_ascii=False)
