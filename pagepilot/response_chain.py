# pagepilot/response_chain.py
"""
Chain tokens: the inference service's own response ids, threaded by the
caller from one call to the next.

Only ids carrying the Responses API prefix are ever forwarded as
`previous_response_id`; ids minted by the widget, the chat route or another
provider are treated as absent.
"""
import logging
from typing import Any, Optional

logger = logging.getLogger("pagepilot")

RESPONSE_ID_PREFIX = "resp_"


def is_model_response_id(value: Any) -> bool:
    return (
        isinstance(value, str)
        and value.startswith(RESPONSE_ID_PREFIX)
        and len(value) > len(RESPONSE_ID_PREFIX)
        and not any(ch.isspace() for ch in value)
    )


def previous_response_id_for(incoming: Any, *, intent: str = "") -> Optional[str]:
    """
    Return `incoming` if it may be sent as continuation context, else None.
    """
    if incoming is None or incoming == "":
        return None
    if is_model_response_id(incoming):
        return incoming
    logger.warning(
        "Dropping foreign chain token for %s: %r is not a model response id",
        intent or "call",
        incoming if isinstance(incoming, str) else type(incoming).__name__,
    )
    return None


def outgoing_response_id(reply_id: Optional[str]) -> str:
    """
    The id handed back to the caller for the next call of the sequence.
    Provider ids without the prefix are still returned; the next call drops them.
    """
    return reply_id or ""
