"""Parsing of Twilio Media Streams websocket messages."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any

KNOWN_EVENTS = frozenset({"start", "media", "stop"})


class MalformedMessageError(ValueError):
    """Raised when an inbound websocket message is not a usable envelope.

    ``event`` is set when the envelope named its event before being rejected.
    """

    def __init__(self, detail: str, *, event: str | None = None) -> None:
        super().__init__(detail)
        self.event = event


@dataclass(frozen=True)
class MediaStreamMessage:
    event: str
    audio: bytes = b""
    track: str | None = None
    call_sid: str | None = None
    stream_sid: str | None = None
    media_format: dict[str, Any] = field(default_factory=dict)

    @property
    def is_known(self) -> bool:
        return self.event in KNOWN_EVENTS


def parse_media_stream_message(text: str | bytes) -> MediaStreamMessage:
    """Parse one websocket message into a ``MediaStreamMessage``.

    Raises:
        MalformedMessageError: If the message is not JSON, has no ``event``, or
            carries a ``media`` event without a decodable payload.
    """

    try:
        message = json.loads(text)
    except (ValueError, RecursionError) as exc:
        raise MalformedMessageError(f"not JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise MalformedMessageError("envelope is not a JSON object")

    event = message.get("event")
    if not isinstance(event, str) or not event:
        raise MalformedMessageError("envelope has no event")

    stream_sid = message.get("streamSid")

    if event == "media":
        media = message.get("media")
        if not isinstance(media, dict):
            raise MalformedMessageError("media event without media object", event=event)
        payload = media.get("payload")
        if not isinstance(payload, str):
            raise MalformedMessageError("media event without payload", event=event)
        try:
            audio = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedMessageError(f"payload is not base64: {exc}", event=event) from exc
        track = media.get("track")
        return MediaStreamMessage(
            event=event,
            audio=audio,
            track=str(track) if track else None,
            stream_sid=stream_sid,
        )

    if event == "start":
        start = message.get("start") or {}
        if not isinstance(start, dict):
            start = {}
        media_format = start.get("mediaFormat") or {}
        return MediaStreamMessage(
            event=event,
            call_sid=start.get("callSid"),
            stream_sid=start.get("streamSid") or stream_sid,
            media_format=media_format if isinstance(media_format, dict) else {},
        )

    return MediaStreamMessage(event=event, stream_sid=stream_sid)
