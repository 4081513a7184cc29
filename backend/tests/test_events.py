"""Tests for inbound payload parsing and ack shaping."""
import pytest
from pydantic import ValidationError

from marketchat.chat.events import SendMessageAck, SendMessagePayload, coerce_request_id


@pytest.mark.parametrize("value, expected", [
    (None, None),
    ("req-1", "req-1"),
    (7, "7"),
    (1.5, "1.5"),
])
def test_request_id_is_normalised(value, expected):
    assert coerce_request_id(value) == expected


@pytest.mark.parametrize("value", [True, {"x": 1}, ["a"]])
def test_request_id_rejects_other_types(value):
    with pytest.raises(ValueError):
        coerce_request_id(value)


def test_payload_coerces_numeric_request_id():
    payload = SendMessagePayload.model_validate(
        {"conversationId": "c1", "content": "hi", "requestId": 42}
    )
    assert payload.requestId == "42"


def test_payload_rejects_structured_request_id():
    with pytest.raises(ValidationError):
        SendMessagePayload.model_validate(
            {"conversationId": "c1", "content": "hi", "requestId": {"x": 1}}
        )


def test_failed_ack_omits_unset_fields():
    assert SendMessageAck.failed("nope").to_payload() == {
        "event": "sendMessage", "success": False, "error": "nope"
    }
