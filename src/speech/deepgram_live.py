"""Deepgram live transcription over a raw websocket connection."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import ConnectionClosed, InvalidStatus

from config.settings import Settings, get_settings
from speech.base import (
    UpstreamEvent,
    UpstreamEventHandler,
    UpstreamEventKind,
    extract_transcript,
)
from speech.errors import UpstreamClosedError, UpstreamConnectError

LOGGER = logging.getLogger(__name__)

KEEP_ALIVE_MESSAGE = json.dumps({"type": "KeepAlive"})
CLOSE_STREAM_MESSAGE = json.dumps({"type": "CloseStream"})

Connector = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class LiveOptions:
    """Query parameters negotiated when the live stream is opened.

    Encoding, sample rate and channel count match the telephony source
    (8 kHz mono mu-law); nothing is resampled on the way through.
    """

    model: str = "nova-2"
    language: str = "en"
    encoding: str = "mulaw"
    sample_rate: int = 8000
    channels: int = 1
    interim_results: bool = True
    punctuate: bool = True
    smart_format: bool = True
    endpointing: int | None = 300
    utterance_end_ms: int | None = 1000
    vad_events: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> LiveOptions:
        return cls(
            model=settings.deepgram_model,
            language=settings.deepgram_language,
            endpointing=settings.deepgram_endpointing_ms,
            utterance_end_ms=settings.deepgram_utterance_end_ms,
            vad_events=settings.deepgram_vad_events,
        )

    def to_query(self) -> dict[str, str]:
        params: dict[str, Any] = {
            "model": self.model,
            "language": self.language,
            "encoding": self.encoding,
            "sample_rate": self.sample_rate,
            "channels": self.channels,
            "interim_results": self.interim_results,
            "punctuate": self.punctuate,
            "smart_format": self.smart_format,
            "endpointing": self.endpointing,
            "utterance_end_ms": self.utterance_end_ms,
            "vad_events": self.vad_events,
        }
        query: dict[str, str] = {}
        for key, value in params.items():
            if value is None:
                continue
            if isinstance(value, bool):
                query[key] = "true" if value else "false"
            else:
                query[key] = str(value)
        return query


def describe_error(error: Any) -> dict[str, Any]:
    """Flatten an error object or payload into a loggable dict."""

    if isinstance(error, dict):
        return {
            "message": error.get("message") or error.get("description"),
            "code": error.get("code") or error.get("variant"),
            "status": error.get("status"),
            "type": error.get("type"),
            "raw": json.dumps(error, default=str),
        }

    details: dict[str, Any] = {
        "message": str(error),
        "code": getattr(error, "code", None),
        "status": None,
        "type": type(error).__name__,
        "raw": repr(error),
    }
    if isinstance(error, InvalidStatus):
        details["status"] = error.response.status_code
        details["code"] = error.response.headers.get("dg-error")
    return details


class DeepgramLiveConnection:
    """A single live ``listen`` stream.

    The connection opens in the background as soon as ``start`` is called.
    Outbound audio and control messages go through a queue drained by a writer
    task, so ``send``/``keep_alive``/``finish`` are safe to call from
    synchronous event handlers. Server messages are translated into
    ``UpstreamEvent`` instances and handed to ``on_event``.
    """

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        on_event: UpstreamEventHandler,
        connect: Connector = websocket_connect,
    ) -> None:
        self._url = url
        self._headers = {"Authorization": f"Token {api_key}"}
        self._on_event = on_event
        self._connect = connect
        self._outbound: asyncio.Queue[bytes | str] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._finishing = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())

    def send(self, frame: bytes) -> None:
        if self._closed or self._finishing:
            raise UpstreamClosedError()
        if not frame:
            # An empty binary message asks Deepgram to close the stream.
            return
        self._outbound.put_nowait(bytes(frame))

    def keep_alive(self) -> None:
        if self._closed or self._finishing:
            return
        self._outbound.put_nowait(KEEP_ALIVE_MESSAGE)

    def finish(self) -> None:
        if self._closed or self._finishing:
            return
        self._finishing = True
        self._outbound.put_nowait(CLOSE_STREAM_MESSAGE)

    async def wait_closed(self) -> None:
        if self._task is None:
            return
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            # Only a cancelled connection task counts as closed; the caller's
            # own cancellation propagates.
            if not self._task.cancelled():
                raise

    async def _run(self) -> None:
        try:
            ws = await self._connect(self._url, additional_headers=self._headers)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.error("Deepgram live connection failed to open: %s", exc)
            self._emit(UpstreamEvent(UpstreamEventKind.ERROR, data=describe_error(exc)))
            self._mark_closed({"reason": "connect_failed"})
            return

        self._emit(UpstreamEvent(UpstreamEventKind.READY))
        writer = asyncio.create_task(self._write_loop(ws))
        try:
            await self._read_loop(ws)
        except ConnectionClosed as exc:
            LOGGER.warning("Deepgram live connection dropped: %s", exc)
        except Exception as exc:
            LOGGER.exception("Deepgram live connection reader crashed")
            self._emit(UpstreamEvent(UpstreamEventKind.ERROR, data=describe_error(exc)))
        finally:
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await writer
            with contextlib.suppress(Exception):
                await ws.close()
            self._mark_closed(
                {
                    "code": getattr(ws, "close_code", None),
                    "reason": getattr(ws, "close_reason", None),
                }
            )

    async def _write_loop(self, ws: Any) -> None:
        while True:
            item = await self._outbound.get()
            try:
                await ws.send(item)
            except ConnectionClosed:
                LOGGER.warning("Dropping outbound message: Deepgram connection is closed")
                return
            except Exception as exc:
                LOGGER.exception("Deepgram live connection writer failed")
                self._finishing = True
                self._emit(UpstreamEvent(UpstreamEventKind.ERROR, data=describe_error(exc)))
                # Closing the socket ends the read loop, which reports the close.
                with contextlib.suppress(Exception):
                    await ws.close()
                return
            if item == CLOSE_STREAM_MESSAGE:
                return

    async def _read_loop(self, ws: Any) -> None:
        async for message in ws:
            if isinstance(message, bytes):
                LOGGER.debug("Ignoring %d-byte binary message from Deepgram", len(message))
                continue
            try:
                payload = json.loads(message)
            except json.JSONDecodeError:
                LOGGER.warning("Ignoring non-JSON message from Deepgram: %.200s", message)
                continue
            if isinstance(payload, dict):
                self._handle_message(payload)

    def _handle_message(self, payload: dict[str, Any]) -> None:
        message_type = str(payload.get("type") or "")
        if message_type == "Results":
            transcript = extract_transcript(payload)
            if transcript is not None:
                self._emit(
                    UpstreamEvent(
                        UpstreamEventKind.TRANSCRIPT,
                        transcript=transcript,
                        data=payload,
                    )
                )
        elif message_type == "Error":
            self._emit(UpstreamEvent(UpstreamEventKind.ERROR, data=describe_error(payload)))
        elif message_type == "Metadata":
            LOGGER.debug("Deepgram metadata request_id=%s", payload.get("request_id"))
        elif message_type in {"SpeechStarted", "UtteranceEnd"}:
            LOGGER.debug("Deepgram %s event", message_type)
        else:
            LOGGER.debug("Unhandled Deepgram message type %r", message_type)

    def _mark_closed(self, details: dict[str, Any]) -> None:
        if self._closed:
            return
        self._closed = True
        self._emit(UpstreamEvent(UpstreamEventKind.CLOSE, data=details))

    def _emit(self, event: UpstreamEvent) -> None:
        try:
            self._on_event(event)
        except Exception:
            LOGGER.exception("Upstream event handler failed for %s", event.kind.name)


class DeepgramClient:
    """Process-wide Deepgram client; hands out one live connection per call."""

    def __init__(
        self,
        api_key: str | None,
        *,
        listen_url: str = "wss://api.deepgram.com/v1/listen",
        options: LiveOptions | None = None,
        connect: Connector = websocket_connect,
    ) -> None:
        if not api_key:
            raise ValueError("Deepgram API key must be configured.")
        self._api_key = api_key
        self._listen_url = listen_url
        self._options = options or LiveOptions()
        self._connect = connect

    def listen_url(self, options: LiveOptions | None = None) -> str:
        query = urlencode((options or self._options).to_query())
        return f"{self._listen_url}?{query}"

    def live(
        self,
        on_event: UpstreamEventHandler,
        options: LiveOptions | None = None,
    ) -> DeepgramLiveConnection:
        """Create and start a live connection.

        Raises:
            UpstreamConnectError: If the connection object cannot be created.
        """

        try:
            connection = DeepgramLiveConnection(
                url=self.listen_url(options),
                api_key=self._api_key,
                on_event=on_event,
                connect=self._connect,
            )
            connection.start()
        except Exception as exc:
            raise UpstreamConnectError(f"Failed to create Deepgram live connection: {exc}") from exc
        return connection


def build_deepgram_client() -> DeepgramClient:
    """Instantiate the client from application settings."""

    settings = get_settings()
    return DeepgramClient(
        settings.deepgram_api_key,
        listen_url=settings.deepgram_listen_url,
        options=LiveOptions.from_settings(settings),
    )
