from __future__ import annotations

import json

import pytest
from conftest import media_message, start_message

from telephony.media_stream import MalformedMessageError, parse_media_stream_message


def test_media_payload_is_base64_decoded():
    message = parse_media_stream_message(media_message(b"\x7f\x00\xff", track="inbound"))

    assert message.event == "media"
    assert message.audio == b"\x7f\x00\xff"
    assert message.track == "inbound"
    assert message.stream_sid == "MZ1"


def test_start_carries_call_metadata():
    message = parse_media_stream_message(start_message(call_sid="CA42", stream_sid="MZ9"))

    assert message.event == "start"
    assert message.call_sid == "CA42"
    assert message.stream_sid == "MZ9"
    assert message.media_format["sampleRate"] == 8000


def test_bytes_messages_are_accepted():
    message = parse_media_stream_message(b'{"event": "stop"}')
    assert message.event == "stop"
    assert message.is_known


def test_unknown_events_parse_but_are_flagged():
    message = parse_media_stream_message(json.dumps({"event": "connected", "protocol": "Call"}))
    assert message.event == "connected"
    assert not message.is_known


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "not json",
        "[1, 2, 3]",
        json.dumps({"streamSid": "MZ1"}),
        json.dumps({"event": ""}),
        json.dumps({"event": "media"}),
        json.dumps({"event": "media", "media": {}}),
        json.dumps({"event": "media", "media": {"payload": 123}}),
        json.dumps({"event": "media", "media": {"payload": "not*base64"}}),
    ],
)
def test_malformed_envelopes_raise(raw):
    with pytest.raises(MalformedMessageError):
        parse_media_stream_message(raw)


def test_deeply_nested_json_is_malformed():
    with pytest.raises(MalformedMessageError):
        parse_media_stream_message("[" * 100000 + "]" * 100000)


def test_rejected_media_envelope_keeps_its_event():
    with pytest.raises(MalformedMessageError) as excinfo:
        parse_media_stream_message(json.dumps({"event": "media", "media": {"payload": "not*base64"}}))
    assert excinfo.value.event == "media"

    with pytest.raises(MalformedMessageError) as excinfo:
        parse_media_stream_message("not json")
    assert excinfo.value.event is None


def test_malformed_error_is_a_value_error():
    assert issubclass(MalformedMessageError, ValueError)
