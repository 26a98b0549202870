from __future__ import annotations

import base64
import json
import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

# Must be set before anything calls get_settings().
os.environ["DEEPGRAM_API_KEY"] = "test-key"
os.environ["DEEPGRAM_VERIFY_ON_STARTUP"] = "false"
os.environ.pop("TRANSCRIPT_WEBHOOK_URL", None)

from speech.base import UpstreamEvent, UpstreamEventKind  # noqa: E402
from speech.errors import UpstreamClosedError  # noqa: E402


def media_message(audio: bytes, *, track: str | None = None) -> str:
    media = {"payload": base64.b64encode(audio).decode("ascii")}
    if track:
        media["track"] = track
    return json.dumps({"event": "media", "streamSid": "MZ1", "media": media})


def start_message(call_sid: str = "CA123", stream_sid: str = "MZ1") -> str:
    return json.dumps(
        {
            "event": "start",
            "streamSid": stream_sid,
            "start": {
                "callSid": call_sid,
                "streamSid": stream_sid,
                "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
            },
        }
    )


def stop_message() -> str:
    return json.dumps({"event": "stop", "streamSid": "MZ1"})


class FakeUpstream:
    """Records everything a session asks of its upstream connection."""

    def __init__(self, on_event) -> None:
        self.on_event = on_event
        self.sent: list[bytes] = []
        self.keepalives = 0
        self.finish_calls = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, frame: bytes) -> None:
        if self._closed:
            raise UpstreamClosedError()
        self.sent.append(frame)

    def keep_alive(self) -> None:
        self.keepalives += 1

    def finish(self) -> None:
        self.finish_calls += 1

    async def wait_closed(self) -> None:
        return None

    def emit(self, kind: UpstreamEventKind, **kwargs) -> None:
        if kind is UpstreamEventKind.CLOSE:
            self._closed = True
        self.on_event(UpstreamEvent(kind, **kwargs))


class FakeInbound:
    def __init__(self) -> None:
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1

    async def wait_closed(self) -> None:
        return None


class FakeTicker:
    def __init__(self, interval: float, callback) -> None:
        self.interval = interval
        self.callback = callback
        self.cancel_calls = 0

    def cancel(self) -> None:
        self.cancel_calls += 1

    def tick(self) -> None:
        self.callback()


class SessionHarness:
    def __init__(self, **session_kwargs) -> None:
        from telephony.call_session import CallSession

        self.inbound = FakeInbound()
        self.upstreams: list[FakeUpstream] = []
        self.tickers: list[FakeTicker] = []
        self.transcripts: list[tuple[str, str, float]] = []

        def upstream_factory(on_event):
            upstream = FakeUpstream(on_event)
            self.upstreams.append(upstream)
            return upstream

        def ticker_factory(interval, callback):
            ticker = FakeTicker(interval, callback)
            self.tickers.append(ticker)
            return ticker

        session_kwargs.setdefault("flow_log_every", 0)
        self.session = CallSession(
            self.inbound,
            upstream_factory,
            transcript_sink=lambda sid, text, ts: self.transcripts.append((sid, text, ts)),
            ticker_factory=ticker_factory,
            **session_kwargs,
        )

    @property
    def upstream(self) -> FakeUpstream:
        return self.upstreams[0]


@pytest.fixture()
def harness() -> SessionHarness:
    return SessionHarness()


@pytest.fixture(scope="session")
def app():
    import importlib

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
