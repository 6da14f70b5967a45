"""Tests for tolerant model-output parsing and shape checks."""

import pytest

from pagepilot.output_parsing import Fallback, OutputParser, OutputShape, Parsed
from pagepilot.utils import Utils

NAV_SHAPE = OutputShape(required={"url": (str,)}, optional={"answer": (str,)})
FALLBACK = {"answer": "fallback", "url": "https://example.com/"}


@pytest.fixture
def parser():
    return OutputParser()


def test_plain_json_is_parsed(parser):
    outcome = parser.parse('{"answer": "Going there", "url": "/pricing"}', NAV_SHAPE, FALLBACK)
    assert outcome == Parsed({"answer": "Going there", "url": "/pricing"})


def test_fenced_json_with_trailing_comma_is_parsed(parser):
    raw = '```json\n{"answer": "Going", "url": "/contact",}\n```'
    outcome = parser.parse(raw, NAV_SHAPE, FALLBACK)
    assert isinstance(outcome, Parsed)
    assert outcome.fields["url"] == "/contact"


def test_prose_falls_back(parser):
    outcome = parser.parse("I think you should visit the pricing page.", NAV_SHAPE, FALLBACK)
    assert isinstance(outcome, Fallback)
    assert outcome.fields == FALLBACK


def test_empty_output_falls_back(parser):
    outcome = parser.parse("   ", NAV_SHAPE, FALLBACK)
    assert isinstance(outcome, Fallback)
    assert outcome.reason == "empty model output"


def test_missing_required_field_falls_back(parser):
    outcome = parser.parse('{"answer": "hi"}', NAV_SHAPE, FALLBACK)
    assert isinstance(outcome, Fallback)
    assert "url" in outcome.reason


def test_wrong_type_falls_back(parser):
    outcome = parser.parse('{"url": 42}', NAV_SHAPE, FALLBACK)
    assert isinstance(outcome, Fallback)


def test_bool_is_not_accepted_as_number():
    shape = OutputShape(required={"score": (int, float)})
    fields, problem = shape.check({"score": True})
    assert fields is None
    assert "score" in problem


def test_bare_array_is_wrapped_under_list_key(parser):
    shape = OutputShape(required={"organizedLinks": (list,)}, list_key="organizedLinks", list_aliases=("links",))
    outcome = parser.parse('[{"url": "a", "relevanceScore": 90}]', shape, {"organizedLinks": []})
    assert outcome == Parsed({"organizedLinks": [{"url": "a", "relevanceScore": 90}]})

    aliased = parser.parse('{"links": [{"url": "b"}]}', shape, {"organizedLinks": []})
    assert aliased == Parsed({"organizedLinks": [{"url": "b"}]})


def test_array_without_list_key_falls_back(parser):
    outcome = parser.parse('[1, 2]', NAV_SHAPE, FALLBACK)
    assert isinstance(outcome, Fallback)


def test_fault_tolerant_json_rejects_scalars():
    with pytest.raises(ValueError):
        Utils().load_fault_tolerant_json("just words")


def test_unsafe_string_format_leaves_unknown_braces():
    out = Utils().unsafe_string_format('{"a": 1} {NAME} {OTHER}', print_unused_keys_report=False, NAME="x")
    assert out == '{"a": 1} x {OTHER}'


def test_unsafe_string_format_does_not_rescan_values():
    out = Utils().unsafe_string_format("{A} {B}", A="{B}", B="b")
    assert out == "{B} b"
