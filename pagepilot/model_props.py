# pagepilot/model_props.py
from __future__ import annotations

import math
from typing import Any, Dict, Iterable, Optional, Tuple

# Rough estimation: 4 characters per token for English text
DEFAULT_CHARS_PER_TOKEN = 4


def is_openai_model(model_name) -> bool:
    prefixes = ("gpt-", "gpt4", "gpt-4", "gpt-5", "o3", "o4")
    return any((model_name or "").startswith(p) for p in prefixes)


def estimate_token_weight(
    texts: Iterable[Optional[str]],
    *,
    max_output_tokens: Optional[int] = None,
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
) -> int:
    """
    Scheduler weight for one call: input characters / chars_per_token,
    plus the declared output budget, rounded up.
    """
    if chars_per_token < 1:
        raise ValueError("chars_per_token must be at least 1")
    chars = sum(len(t) for t in texts if t)
    return int(math.ceil(chars / chars_per_token + (max_output_tokens or 0)))


def parse_model_name(raw: str) -> Tuple[str, Dict[str, Any]]:
    """Parse strings like:
        - 'gpt-5-mini'
        - 'gpt-5-mini_fast'
        - 'gpt-5-nano_low_minimal'
        - 'gpt-5-mini_standard-flex'
    into (base_model, openai_params).
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("parse_model_name: No Model Name passed. ")

    parts = raw.split("_")
    base = parts[0]
    if len(parts) <= 1:
        return base, {}

    verbosity: Optional[str] = None
    reasoning_effort: Optional[str] = None
    service_tier: Optional[str] = None

    verbosity_tokens = {"low", "medium", "high"}
    reasoning_tokens = {"minimal", "low", "medium", "high"}
    service_tier_tokens = {"auto", "default", "flex", "priority"}

    # Action answers are spoken aloud, so presets lean short.
    wildcards: Dict[str, Tuple[Optional[str], Optional[str], Optional[str]]] = {
        "standard": ("low", "low", None),
        "std": ("low", "low", None),
        "fast": ("low", "minimal", None),
        "deep": ("medium", "high", None),
        "standard-flex": ("low", "low", "flex"),
        "fast-flex": ("low", "minimal", "flex"),
        "standard-priority": ("low", "low", "priority"),
        "fast-priority": ("low", "minimal", "priority"),
    }

    unknown = []
    for tok in parts[1:]:
        t = tok.strip().lower()
        if not t:
            continue

        if t in wildcards:
            w_verb, w_reason, w_tier = wildcards[t]
            if verbosity is None and w_verb is not None:
                verbosity = w_verb
            if reasoning_effort is None and w_reason is not None:
                reasoning_effort = w_reason
            if service_tier is None and w_tier is not None:
                service_tier = w_tier
            continue

        if verbosity is None and t in verbosity_tokens:
            verbosity = t
            continue

        if reasoning_effort is None and t in reasoning_tokens:
            reasoning_effort = t
            continue

        if service_tier is None and t in service_tier_tokens:
            service_tier = t
            continue

        unknown.append(t)

    if unknown:
        raise ValueError(f"parse_model_name: Unknown model suffix token(s) {unknown} in '{raw}'. ")

    params: Dict[str, Any] = {}
    if verbosity is not None:
        params.setdefault("text", {})["verbosity"] = verbosity
    if reasoning_effort is not None:
        params.setdefault("reasoning", {})["effort"] = reasoning_effort
    params["service_tier"] = service_tier or "default"

    return base, params
