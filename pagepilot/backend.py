# pagepilot/backend.py
import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import sessionmaker

from pagepilot.action_resolvers import ClickResolver, FillFormResolver, HighlightResolver, NavigateResolver
from pagepilot.config import PilotSettings, load_settings
from pagepilot.db_helpers import create_session_factory
from pagepilot.entities import Base
from pagepilot.errors import ActionValidationError, PilotError
from pagepilot.ledger import ConversationLedger
from pagepilot.llm_client import ActionLlmClient
from pagepilot.output_parsing import OutputParser
from pagepilot.research_resolvers import ResearchAnalyzeResolver, ResearchOrganizeResolver
from pagepilot.resolver_base import ActionResolver
from pagepilot.token_bucket import TokenBucketScheduler
from pagepilot.utils import Utils

logger = logging.getLogger("pagepilot")

ACTION_INTENTS = ("navigation", "click", "highlight", "fillForm")
RESEARCH_INTENTS = ("research-analyze", "research-organize")


class ActionBackend(Utils):
    """
    Owns the process-wide pieces (one scheduler, one ledger, one client per
    model) and dispatches intents to their resolvers.
    """

    def __init__(
        self,
        *,
        scheduler: TokenBucketScheduler,
        ledger: ConversationLedger,
        action_llm: ActionLlmClient,
        research_llm: Optional[ActionLlmClient] = None,
    ):
        self.scheduler = scheduler
        self.ledger = ledger
        self.action_llm = action_llm
        self.research_llm = research_llm or action_llm

        parser = OutputParser()
        resolvers = [
            NavigateResolver(self.action_llm, ledger, parser),
            ClickResolver(self.action_llm, ledger, parser),
            HighlightResolver(self.action_llm, ledger, parser),
            FillFormResolver(self.action_llm, ledger, parser),
            ResearchAnalyzeResolver(self.research_llm, ledger, parser),
            ResearchOrganizeResolver(self.research_llm, ledger, parser),
        ]
        self.resolvers: Dict[str, ActionResolver] = {r.intent: r for r in resolvers}

    async def handle(self, intent: str, payload: Any) -> Dict[str, Any]:
        resolver = self.resolvers.get(intent)
        if resolver is None:
            raise ActionValidationError("intent", f"Unknown intent: {intent}")

        try:
            preview = json.dumps(payload, indent=2)[:2000]
        except (TypeError, ValueError):
            preview = str(payload)[:2000]
        logger.debug(f"{intent} request {preview}")

        try:
            return await resolver.resolve(payload)
        except PilotError as e:
            logger.info(f"{intent} failed ({type(e).__name__}, {e.status_code}): {e.message}")
            raise

    def record_feedback(self, conversation_id: Any, helpful: Any) -> Dict[str, Any]:
        if conversation_id is None or not str(conversation_id).strip():
            raise ActionValidationError("conversationId", "Conversation ID is required")
        stored = self.ledger.record_feedback(str(conversation_id).strip(), helpful)
        logger.info(f"feedback '{stored}' recorded for conversation {conversation_id}")
        return {"success": True, "helpful": stored}

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "scheduler": self.scheduler.snapshot(),
            "models": {
                "action": self.action_llm.model_name,
                "research": self.research_llm.model_name,
            },
        }


def build_default_backend(
    settings: Optional[PilotSettings] = None,
    session_factory: Optional[sessionmaker] = None,
) -> ActionBackend:
    settings = settings or load_settings()
    if session_factory is None:
        session_factory = create_session_factory()
        Base.metadata.create_all(session_factory.kw["bind"])

    scheduler = TokenBucketScheduler.from_settings(settings)

    def client_for(model_name: str) -> ActionLlmClient:
        return ActionLlmClient(
            model_name,
            scheduler=scheduler,
            vertex_project=settings.vertex_project,
            vertex_region=settings.vertex_region,
            timeout=settings.call_timeout_seconds,
            max_output_tokens=settings.max_output_tokens,
            chars_per_token=settings.chars_per_token,
        )

    action_llm = client_for(settings.action_model)
    research_llm = action_llm if settings.research_model == settings.action_model else client_for(settings.research_model)

    logger.info(
        f"Backend ready: action={settings.action_model} research={settings.research_model} "
        f"reservoir={settings.reservoir_tokens}/{settings.refill_interval_seconds}s "
        f"concurrency={settings.max_concurrent_calls}"
    )
    return ActionBackend(
        scheduler=scheduler,
        ledger=ConversationLedger(session_factory),
        action_llm=action_llm,
        research_llm=research_llm,
    )
