# pagepilot/output_parsing.py
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from pagepilot.utils import Utils

logger = logging.getLogger("pagepilot")


@dataclass(frozen=True)
class Parsed:
    """Model output that loaded and matched the intent's shape."""

    fields: Dict[str, Any]


@dataclass(frozen=True)
class Fallback:
    """Deterministic substitute used when the model output was unusable."""

    fields: Dict[str, Any]
    reason: str = ""


ParseOutcome = Union[Parsed, Fallback]


@dataclass(frozen=True)
class OutputShape:
    """
    Required and optional keys of a model answer, each with accepted types.
    `list_key` wraps a bare JSON array under that key (organize answers are
    often emitted as a top-level list).
    """

    required: Mapping[str, Tuple[type, ...]]
    optional: Mapping[str, Tuple[type, ...]] = field(default_factory=dict)
    list_key: Optional[str] = None
    list_aliases: Tuple[str, ...] = ()

    def check(self, data: Any) -> Tuple[Optional[Dict[str, Any]], str]:
        if isinstance(data, list):
            if not self.list_key:
                return None, "expected an object, got an array"
            data = {self.list_key: data}
        if not isinstance(data, dict):
            return None, f"expected an object, got {type(data).__name__}"

        if self.list_key and self.list_key not in data:
            for alias in self.list_aliases:
                if isinstance(data.get(alias), list):
                    data = {**data, self.list_key: data[alias]}
                    break

        out: Dict[str, Any] = {}
        for key, types in self.required.items():
            if key not in data:
                return None, f"missing field '{key}'"
            if not _is_instance(data[key], types):
                return None, f"field '{key}' has type {type(data[key]).__name__}"
            out[key] = data[key]
        for key, types in self.optional.items():
            if key in data and data[key] is not None:
                if not _is_instance(data[key], types):
                    return None, f"field '{key}' has type {type(data[key]).__name__}"
                out[key] = data[key]
        return out, ""


def _is_instance(value: Any, types: Tuple[type, ...]) -> bool:
    # bool is an int subclass; only accept it where bool is asked for
    if isinstance(value, bool) and bool not in types:
        return False
    return isinstance(value, types)


class OutputParser(Utils):

    def parse(self, raw: Optional[str], shape: OutputShape, fallback: Dict[str, Any]) -> ParseOutcome:
        if not raw or not raw.strip():
            return Fallback(dict(fallback), "empty model output")
        try:
            data = self.load_fault_tolerant_json(raw)
        except ValueError as e:
            logger.debug("Model output is not JSON: %s", e)
            return Fallback(dict(fallback), "model output is not JSON")

        fields, problem = shape.check(data)
        if fields is None:
            return Fallback(dict(fallback), problem)
        return Parsed(fields)
