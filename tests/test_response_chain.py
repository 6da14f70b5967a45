"""Tests for which chain tokens may be forwarded to the inference service."""

import pytest

from pagepilot.response_chain import is_model_response_id, outgoing_response_id, previous_response_id_for


@pytest.mark.parametrize("value", ["resp_123", "resp_68a1b2c3d4"])
def test_model_ids_are_forwarded(value):
    assert is_model_response_id(value)
    assert previous_response_id_for(value, intent="click") == value


@pytest.mark.parametrize("value", ["abc123", "msg_123", "resp_", "resp_ 12", "RESP_123", 123, {"id": "resp_1"}])
def test_foreign_ids_are_dropped(value):
    assert previous_response_id_for(value) is None


@pytest.mark.parametrize("value", [None, ""])
def test_absent_ids_stay_absent(value):
    assert previous_response_id_for(value) is None


def test_foreign_id_drop_is_logged(caplog):
    with caplog.at_level("WARNING", logger="pagepilot"):
        previous_response_id_for("chat-42", intent="research-analyze")
    assert "research-analyze" in caplog.text


def test_outgoing_id_is_returned_as_is():
    assert outgoing_response_id("resp_9") == "resp_9"
    assert outgoing_response_id(None) == ""
