# pagepilot/config.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

import commentjson
from dotenv import load_dotenv

load_dotenv()

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

logger = logging.getLogger("pagepilot")


def configure_logging(level: int | str | None = None) -> None:
    level = level or os.getenv("PAGEPILOT_LOG_LEVEL", "INFO")
    logging.basicConfig(level=level, format=LOG_FORMAT)


@dataclass(frozen=True)
class PilotSettings:
    # token bucket
    reservoir_tokens: int = 200_000
    refill_interval_seconds: float = 60.0
    max_concurrent_calls: int = 2
    min_call_spacing_seconds: float = 0.2
    call_timeout_seconds: Optional[float] = 60.0
    admission_timeout_seconds: Optional[float] = 30.0
    chars_per_token: int = 4
    max_output_tokens: Optional[int] = None

    # models
    action_model: str = "gpt-5-mini"
    research_model: str = "gpt-5-nano"
    vertex_project: str = "your-project-id"
    vertex_region: str = "us-central1"


_ENV_FIELDS = {
    "PAGEPILOT_RESERVOIR_TOKENS": ("reservoir_tokens", int),
    "PAGEPILOT_REFILL_INTERVAL_SECONDS": ("refill_interval_seconds", float),
    "PAGEPILOT_MAX_CONCURRENT_CALLS": ("max_concurrent_calls", int),
    "PAGEPILOT_MIN_CALL_SPACING_SECONDS": ("min_call_spacing_seconds", float),
    "PAGEPILOT_CALL_TIMEOUT_SECONDS": ("call_timeout_seconds", float),
    "PAGEPILOT_ADMISSION_TIMEOUT_SECONDS": ("admission_timeout_seconds", float),
    "PAGEPILOT_CHARS_PER_TOKEN": ("chars_per_token", int),
    "PAGEPILOT_MAX_OUTPUT_TOKENS": ("max_output_tokens", int),
    "PAGEPILOT_ACTION_MODEL": ("action_model", str),
    "PAGEPILOT_RESEARCH_MODEL": ("research_model", str),
    "GOOGLE_CLOUD_PROJECT": ("vertex_project", str),
    "GOOGLE_CLOUD_REGION": ("vertex_region", str),
}

# config-file keys -> PilotSettings fields
_SCHEDULER_KEYS = {
    "reservoir": "reservoir_tokens",
    "refill_interval": "refill_interval_seconds",
    "max_concurrent": "max_concurrent_calls",
    "min_time": "min_call_spacing_seconds",
    "call_timeout": "call_timeout_seconds",
    "admission_timeout": "admission_timeout_seconds",
    "chars_per_token": "chars_per_token",
    "max_output_tokens": "max_output_tokens",
}
_MODEL_KEYS = {
    "action": "action_model",
    "research": "research_model",
}


def _coerce_optional(raw: str, cast):
    # "none" / "" switch a timeout off
    if raw.strip().lower() in ("", "none", "null"):
        return None
    return cast(raw)


def _load_config_file(path: str) -> Dict[str, Any]:
    """
    Load scheduler + model overrides from a JSON-with-comments file.
    Fails fast if the file or required top-level keys are missing.
    """
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"pagepilot config file not found at '{cfg_path}'.")

    with cfg_path.open("r", encoding="utf-8") as f:
        data = commentjson.load(f)

    for key in ("SCHEDULER", "MODELS"):
        if key not in data or not isinstance(data[key], dict):
            raise ValueError(f"pagepilot config missing or invalid key: {key}")

    overrides: Dict[str, Any] = {}
    for section, mapping in (("SCHEDULER", _SCHEDULER_KEYS), ("MODELS", _MODEL_KEYS)):
        for k, v in data[section].items():
            if k not in mapping:
                raise ValueError(f"pagepilot config: unknown {section} key '{k}'")
            overrides[mapping[k]] = v
    return overrides


def load_settings(config_path: str | None = None) -> PilotSettings:
    overrides: Dict[str, Any] = {}
    for env_name, (field_name, cast) in _ENV_FIELDS.items():
        raw = os.getenv(env_name)
        if raw is None:
            continue
        try:
            overrides[field_name] = _coerce_optional(raw, cast)
        except ValueError as e:
            raise ValueError(f"Invalid value for {env_name}: {raw!r}") from e

    config_path = config_path or os.getenv("PAGEPILOT_CONFIG_PATH")
    if config_path:
        overrides.update(_load_config_file(config_path))

    settings = replace(PilotSettings(), **overrides)
    if settings.reservoir_tokens <= 0:
        raise ValueError("reservoir_tokens must be positive")
    if settings.max_concurrent_calls < 1:
        raise ValueError("max_concurrent_calls must be at least 1")
    if settings.chars_per_token < 1:
        raise ValueError("chars_per_token must be at least 1")

    logger.debug("Loaded settings: %s", settings)
    return settings
