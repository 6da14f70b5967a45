# pagepilot/research_resolvers.py
import logging
from typing import Any, Dict, List, Optional

from pagepilot.action_prompts import (
    ORGANIZE_LINK_TEMPLATE,
    RESEARCH_ANALYZE_INPUT_TEMPLATE,
    RESEARCH_ANALYZE_INSTRUCTIONS,
    RESEARCH_ORGANIZE_INPUT_TEMPLATE,
    RESEARCH_ORGANIZE_INSTRUCTIONS,
)
from pagepilot.entities import MessageKind
from pagepilot.errors import ActionValidationError
from pagepilot.ledger import TurnRecord
from pagepilot.output_parsing import OutputShape, ParseOutcome, Parsed
from pagepilot.resolver_base import ActionResolver

logger = logging.getLogger("pagepilot")

CONFIDENCE_LEVELS = ("high", "medium", "low")
ORGANIZED_CONTENT = "Organized research links based on relevance"


class _ResearchResolver(ActionResolver):

    def validate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        request = self._base_request(payload, response_id_required=False)
        request["conversationId"] = self._require_str(payload, "conversationId", "Conversation ID is required")
        request["context"] = self._require_str(payload, "context", "Research context is required")
        return request

    def describe_request(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "conversationId": request["conversationId"],
            "context": request["context"][:80],
            "chained": bool(request.get("responseId")),
        }


class ResearchAnalyzeResolver(_ResearchResolver):
    """Answers a research question from one page's extracted data."""

    intent = "research-analyze"
    kind = MessageKind.RESEARCH_ANALYZE
    instructions = RESEARCH_ANALYZE_INSTRUCTIONS
    shape = OutputShape(
        required={"answer": (str,), "foundAnswer": (bool,)},
        optional={"confidence": (str,)},
    )

    def validate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        request = super().validate(payload)
        request["question"] = self._require_str(payload, "question", "Question is required")
        page_data = payload.get("pageData")
        if page_data is None or page_data == "" or page_data == {} or page_data == []:
            raise ActionValidationError("pageData", "Page data is required")
        request["pageData"] = page_data
        return request

    def build_input(self, request: Dict[str, Any]) -> str:
        page_data = request["pageData"]
        return self.unsafe_string_format(
            RESEARCH_ANALYZE_INPUT_TEMPLATE,
            CONTEXT=request["context"],
            QUESTION=request["question"],
            PAGE_DATA=page_data if isinstance(page_data, str) else self._dump_affordances(page_data),
        )

    def fallback_fields(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "answer": "Failed to analyze the page content",
            "foundAnswer": False,
            "confidence": "low",
        }

    def check_output(self, fields: Dict[str, Any], request: Dict[str, Any]) -> ParseOutcome:
        confidence = (fields.get("confidence") or "").strip().lower()
        if confidence not in CONFIDENCE_LEVELS:
            confidence = "medium" if fields["foundAnswer"] else "low"
        return Parsed({
            "answer": fields["answer"].strip(),
            "foundAnswer": fields["foundAnswer"],
            "confidence": confidence,
        })

    def build_response(self, fields: Dict[str, Any], response_id: str, request: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "answer": fields["answer"],
            "foundAnswer": fields["foundAnswer"],
            "confidence": fields.get("confidence", "low"),
            "responseId": response_id,
        }

    def turn_record(self, response: Dict[str, Any], raw_response_id: Optional[str], request: Dict[str, Any]) -> TurnRecord:
        return TurnRecord(
            conversation_id=request["conversationId"],
            kind=self.kind,
            content=response["answer"],
            response_id=raw_response_id,
            research_context=request["context"],
            found_answer=response["foundAnswer"],
        )

    def describe_response(self, response: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "foundAnswer": response["foundAnswer"],
            "confidence": response["confidence"],
            "responseId": response["responseId"],
        }


class ResearchOrganizeResolver(_ResearchResolver):
    """Ranks candidate links by likely relevance to the research context."""

    intent = "research-organize"
    kind = MessageKind.RESEARCH_ORGANIZE
    instructions = RESEARCH_ORGANIZE_INSTRUCTIONS
    shape = OutputShape(
        required={"organizedLinks": (list,)},
        list_key="organizedLinks",
        list_aliases=("links", "rankedLinks", "results"),
    )

    def validate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        request = super().validate(payload)
        request["question"] = self._optional_str(payload, "question")
        links = self._require_list(payload, "links", "Links array is required and must not be empty")
        normalized: List[Dict[str, str]] = []
        for link in links:
            if isinstance(link, str):
                link = {"url": link}
            if not isinstance(link, dict) or not isinstance(link.get("url"), str) or not link["url"].strip():
                raise ActionValidationError("links", "Each link must have a url")
            normalized.append({
                "url": link["url"].strip(),
                "title": self._coerce_field_to_str(link.get("title")),
                "description": self._coerce_field_to_str(link.get("description")),
            })
        request["links"] = normalized
        return request

    def build_input(self, request: Dict[str, Any]) -> str:
        rendered = "\n".join(
            self.unsafe_string_format(
                ORGANIZE_LINK_TEMPLATE,
                INDEX=i + 1,
                URL=link["url"],
                TITLE=link["title"] or "No title",
                DESCRIPTION=link["description"] or "No description",
            )
            for i, link in enumerate(request["links"])
        )
        return self.unsafe_string_format(
            RESEARCH_ORGANIZE_INPUT_TEMPLATE,
            CONTEXT=request["context"],
            QUESTION=request["question"] or request["context"],
            LINKS=rendered,
        )

    def fallback_fields(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "organizedLinks": [{
                "url": request["links"][0]["url"],
                "relevanceScore": 0,
                "reason": "Could not rank the links, starting with the first one",
            }]
        }

    def check_output(self, fields: Dict[str, Any], request: Dict[str, Any]) -> ParseOutcome:
        supplied = {link["url"] for link in request["links"]}
        seen = set()
        ranked = []
        for entry in fields["organizedLinks"]:
            if not isinstance(entry, dict) or not isinstance(entry.get("url"), str):
                continue
            url = entry["url"].strip()
            if url not in supplied:
                logger.warning("research-organize: dropping link not in the request: %r", url)
                continue
            if url in seen:
                continue
            seen.add(url)
            score = entry.get("relevanceScore")
            if isinstance(score, bool) or not isinstance(score, (int, float)):
                score = 0
            ranked.append({
                "url": url,
                "relevanceScore": max(0, min(100, score)),
                "reason": self._coerce_field_to_str(entry.get("reason")),
            })
        ranked.sort(key=lambda e: e["relevanceScore"], reverse=True)
        return Parsed({"organizedLinks": ranked})

    def build_response(self, fields: Dict[str, Any], response_id: str, request: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "organizedLinks": fields["organizedLinks"],
            "context": request["context"],
            "question": request["question"],
            "responseId": response_id,
        }

    def turn_record(self, response: Dict[str, Any], raw_response_id: Optional[str], request: Dict[str, Any]) -> TurnRecord:
        return TurnRecord(
            conversation_id=request["conversationId"],
            kind=self.kind,
            content=ORGANIZED_CONTENT,
            response_id=raw_response_id,
            research_context=request["context"],
            organized_links=response["organizedLinks"],
        )

    def describe_response(self, response: Dict[str, Any]) -> Dict[str, Any]:
        return {"ranked": len(response["organizedLinks"]), "responseId": response["responseId"]}
