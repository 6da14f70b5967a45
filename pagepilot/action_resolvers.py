# pagepilot/action_resolvers.py
import logging
import re
from html.parser import HTMLParser
from typing import Any, Dict, List, Optional

from pagepilot.action_prompts import (
    ACTION_INPUT_TEMPLATE,
    CLICK_INSTRUCTIONS,
    FILL_FORM_INPUT_TEMPLATE,
    FILL_FORM_INSTRUCTIONS,
    HIGHLIGHT_INSTRUCTIONS,
    NAVIGATE_INSTRUCTIONS,
)
from pagepilot.entities import MessageKind
from pagepilot.errors import ActionValidationError
from pagepilot.ledger import TurnRecord
from pagepilot.output_parsing import Fallback, OutputShape, ParseOutcome, Parsed
from pagepilot.resolver_base import ActionResolver

logger = logging.getLogger("pagepilot")

FALLBACK_ANSWER = "I'm analyzing the page to find what you need"
CLICK_FALLBACK_ANSWER = "I'm analyzing the buttons to find what you need"

_MARKUP_RE = re.compile(r"<\s*/?\s*[a-zA-Z][^>]*>")


class _ActionIntentResolver(ActionResolver):
    """Shared request handling for the four page-action intents."""

    action_type: str = ""
    default_answer: str = ""
    affordance_label: str = ""
    affordance_key: str = ""

    def validate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        request = self._base_request(payload, response_id_required=True)
        request["question"] = self._require_str(payload, "question", "Question is required")
        request["answer"] = self._require_str(payload, "answer", "Answer is required")
        request["conversationId"] = self._require_str(payload, "conversationId", "Conversation ID is required")
        return request

    def describe_request(self, request: Dict[str, Any]) -> Dict[str, Any]:
        info = super().describe_request(request)
        info[self.affordance_key] = len(request.get(self.affordance_key) or ())
        return info

    def _normalize_action(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(fields)
        declared = out.get("actionType")
        if declared and declared != self.action_type:
            logger.debug("%s: model declared actionType %r, normalizing", self.intent, declared)
        out["actionType"] = self.action_type
        if not (out.get("answer") or "").strip():
            out["answer"] = self.default_answer
        else:
            out["answer"] = out["answer"].strip()
        return out

    def check_output(self, fields: Dict[str, Any], request: Dict[str, Any]) -> ParseOutcome:
        return Parsed(self._normalize_action(fields))

    def build_input(self, request: Dict[str, Any]) -> str:
        return self.unsafe_string_format(
            ACTION_INPUT_TEMPLATE,
            QUESTION=request["question"],
            ANSWER=request["answer"],
            AFFORDANCE_LABEL=self.affordance_label,
            AFFORDANCES=self.render_affordances(request),
        )

    def render_affordances(self, request: Dict[str, Any]) -> str:
        raise NotImplementedError

    def turn_record(self, response: Dict[str, Any], raw_response_id: Optional[str], request: Dict[str, Any]) -> TurnRecord:
        return TurnRecord(
            conversation_id=request["conversationId"],
            kind=self.kind,
            content=response["answer"],
            response_id=raw_response_id,
            action_type=self.action_type,
        )


class NavigateResolver(_ActionIntentResolver):
    intent = "navigation"
    kind = MessageKind.NAVIGATION
    action_type = "navigate"
    instructions = NAVIGATE_INSTRUCTIONS
    default_answer = "Navigation action completed"
    affordance_label = "Available Page Links"
    affordance_key = "links"
    shape = OutputShape(
        required={"url": (str,)},
        optional={"answer": (str,), "actionType": (str,)},
    )

    def validate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        request = super().validate(payload)
        links = self._require_list(payload, "links", "Links array is required")
        entries: List[Dict[str, str]] = []
        for link in links:
            # widgets send either bare urls or {url, title} objects
            url = link.get("url") if isinstance(link, dict) else link
            if not isinstance(url, str) or not url.strip():
                raise ActionValidationError("links", "Each link must be a non-empty URL string")
            entry = {"url": url.strip()}
            title = link.get("title") if isinstance(link, dict) else None
            if isinstance(title, str) and title.strip():
                entry["title"] = title.strip()
            entries.append(entry)
        request["links"] = entries
        request["urls"] = [entry["url"] for entry in entries]
        return request

    def render_affordances(self, request: Dict[str, Any]) -> str:
        return self._dump_affordances(request["links"])

    def fallback_fields(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "answer": FALLBACK_ANSWER,
            "actionType": self.action_type,
            "url": request["urls"][0],
        }

    def check_output(self, fields: Dict[str, Any], request: Dict[str, Any]) -> ParseOutcome:
        url = fields["url"].strip()
        if url not in request["urls"]:
            return Fallback(self.fallback_fields(request), f"url {url!r} is not among the supplied links")
        return Parsed(self._normalize_action({**fields, "url": url}))

    def build_response(self, fields: Dict[str, Any], response_id: str, request: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "answer": fields["answer"],
            "actionType": self.action_type,
            "url": fields["url"],
            "responseId": response_id,
        }

    def describe_response(self, response: Dict[str, Any]) -> Dict[str, Any]:
        return {"url": response["url"], "responseId": response["responseId"]}


class ClickResolver(_ActionIntentResolver):
    intent = "click"
    kind = MessageKind.CLICK
    action_type = "click"
    instructions = CLICK_INSTRUCTIONS
    default_answer = "Click action completed"
    affordance_label = "Available Buttons"
    affordance_key = "buttonData"
    shape = OutputShape(
        required={"buttonText": (str,), "buttonId": (str,)},
        optional={"answer": (str,), "actionType": (str,)},
    )

    def validate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        request = super().validate(payload)
        buttons = self._require_list(payload, "buttonData", "Button data array is required")
        normalized = []
        for button in buttons:
            if not isinstance(button, dict) or not (button.get("text") or button.get("id")):
                raise ActionValidationError("buttonData", "Each button must be an object with text or id")
            normalized.append({
                "text": self._coerce_field_to_str(button.get("text")),
                "id": self._coerce_field_to_str(button.get("id")),
            })
        request["buttonData"] = normalized
        return request

    def render_affordances(self, request: Dict[str, Any]) -> str:
        return self._dump_affordances(request["buttonData"])

    def fallback_fields(self, request: Dict[str, Any]) -> Dict[str, Any]:
        first = request["buttonData"][0]
        return {
            "answer": CLICK_FALLBACK_ANSWER,
            "actionType": self.action_type,
            "buttonText": first["text"],
            "buttonId": first["id"],
        }

    def build_response(self, fields: Dict[str, Any], response_id: str, request: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "answer": fields["answer"],
            "actionType": self.action_type,
            "buttonText": fields["buttonText"],
            "buttonId": fields["buttonId"],
            "responseId": response_id,
        }

    def describe_response(self, response: Dict[str, Any]) -> Dict[str, Any]:
        return {"buttonId": response["buttonId"], "responseId": response["responseId"]}


class _FirstElementText(HTMLParser):
    """Collects the text of the first element on a page that carries visible text."""

    _VOID_TAGS = {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr"}
    _HIDDEN_TAGS = {"script", "style", "template", "noscript"}

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self._stack: List[str] = []
        self._depth: Optional[int] = None
        self._parts: List[str] = []
        self.done = False

    def handle_starttag(self, tag, attrs):
        if tag in self._VOID_TAGS:
            return
        self._stack.append(tag)

    def handle_endtag(self, tag):
        if tag in self._VOID_TAGS or tag not in self._stack:
            return
        while self._stack:
            if self._stack.pop() == tag:
                break
        if self._depth is not None and len(self._stack) < self._depth:
            self.done = True

    def handle_data(self, data):
        if self.done:
            return
        if self._depth is not None:
            self._parts.append(data)
            return
        if not data.strip() or (self._stack and self._stack[-1] in self._HIDDEN_TAGS):
            return
        self._depth = len(self._stack)
        self._parts.append(data.strip().splitlines()[0] if self._depth == 0 else data)
        if self._depth == 0:
            self.done = True

    @property
    def text(self) -> str:
        return " ".join(" ".join(self._parts).split())


def first_element_text(page_text: str) -> str:
    parser = _FirstElementText()
    parser.feed(page_text)
    parser.close()
    return parser.text


class HighlightResolver(_ActionIntentResolver):
    intent = "highlight"
    kind = MessageKind.HIGHLIGHT
    action_type = "highlight"
    instructions = HIGHLIGHT_INSTRUCTIONS
    default_answer = "Highlight action completed"
    affordance_label = "Available Page Text"
    affordance_key = "pageText"
    shape = OutputShape(
        required={"words": (str,)},
        optional={"answer": (str,), "actionType": (str,)},
    )

    def validate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        request = super().validate(payload)
        request["pageText"] = self._require_str(payload, "pageText", "Page text is required")
        if not first_element_text(request["pageText"]):
            raise ActionValidationError("pageText", "Page text has no visible text")
        return request

    def render_affordances(self, request: Dict[str, Any]) -> str:
        return request["pageText"]

    def fallback_fields(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "answer": FALLBACK_ANSWER,
            "actionType": self.action_type,
            "words": first_element_text(request["pageText"]),
        }

    def check_output(self, fields: Dict[str, Any], request: Dict[str, Any]) -> ParseOutcome:
        words = fields["words"].strip()
        if not words:
            return Fallback(self.fallback_fields(request), "empty words")
        # single-element selection is a prompt contract; only flag obvious breaches
        if _MARKUP_RE.search(words):
            logger.warning("highlight: returned words contain markup, may span several elements: %r", words[:120])
        return Parsed(self._normalize_action({**fields, "words": words}))

    def build_response(self, fields: Dict[str, Any], response_id: str, request: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "answer": fields["answer"],
            "actionType": self.action_type,
            "words": fields["words"],
            "responseId": response_id,
        }

    def describe_response(self, response: Dict[str, Any]) -> Dict[str, Any]:
        return {"words": response["words"][:80], "responseId": response["responseId"]}


class FillFormResolver(_ActionIntentResolver):
    intent = "fillForm"
    kind = MessageKind.FILL_FORM
    action_type = "fillForm"
    instructions = FILL_FORM_INSTRUCTIONS
    default_answer = "Form filled"
    affordance_key = "formData"
    shape = OutputShape(
        required={"formFills": (list,)},
        optional={"answer": (str,), "actionType": (str,), "missingFields": (list,)},
    )

    def validate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        request = super().validate(payload)
        fields = self._require_list(payload, "formData", "Form data array is required", allow_empty=True)
        if not all(isinstance(f, dict) for f in fields):
            raise ActionValidationError("formData", "Each form field must be an object")
        request["formData"] = fields
        request["html"] = self._optional_str(payload, "html")
        return request

    def build_input(self, request: Dict[str, Any]) -> str:
        return self.unsafe_string_format(
            FILL_FORM_INPUT_TEMPLATE,
            QUESTION=request["question"],
            ANSWER=request["answer"],
            FORM_HTML=request["html"] or "(not provided)",
            AFFORDANCES=self._dump_affordances(request["formData"]),
        )

    def fallback_fields(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "answer": "I couldn't fill the form, please try again",
            "actionType": self.action_type,
            "formFills": [],
            "missingFields": ["Unable to parse form data"],
        }

    def check_output(self, fields: Dict[str, Any], request: Dict[str, Any]) -> ParseOutcome:
        known_ids = {self._coerce_field_to_str(f.get("id")) for f in request["formData"] if f.get("id")}
        fills = []
        for fill in fields["formFills"]:
            if not isinstance(fill, dict) or not fill.get("id"):
                continue
            field_id = self._coerce_field_to_str(fill["id"])
            if known_ids and field_id not in known_ids:
                logger.warning("fillForm: dropping fill for unknown field id %r", field_id)
                continue
            fills.append({
                "id": field_id,
                "value": self._coerce_field_to_str(fill.get("value")),
                "fieldClass": self._coerce_field_to_str(fill.get("fieldClass")),
                "label": self._coerce_field_to_str(fill.get("label")),
            })
        missing = [self._coerce_field_to_str(m) for m in fields.get("missingFields") or [] if m is not None]
        return Parsed(self._normalize_action({**fields, "formFills": fills, "missingFields": missing}))

    def build_response(self, fields: Dict[str, Any], response_id: str, request: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "answer": fields["answer"],
            "actionType": self.action_type,
            "formFills": fields["formFills"],
            "missingFields": fields.get("missingFields") or [],
            "responseId": response_id,
        }

    def turn_record(self, response: Dict[str, Any], raw_response_id: Optional[str], request: Dict[str, Any]) -> TurnRecord:
        return TurnRecord(
            conversation_id=request["conversationId"],
            kind=self.kind,
            content=response["answer"],
            response_id=raw_response_id,
            action_type=self.action_type,
            form_fills=response["formFills"],
            missing_fields=response["missingFields"],
        )

    def describe_response(self, response: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "filled": [f["id"] for f in response["formFills"]],
            "missing": response["missingFields"],
            "responseId": response["responseId"],
        }
