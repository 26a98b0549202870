"""Per-call bridge between a Twilio media stream and a live transcription stream."""

from __future__ import annotations

import logging
import uuid
from typing import Protocol

from integrations.transcript_sink import TranscriptSink
from speech.base import UpstreamConnection, UpstreamEvent, UpstreamEventKind, UpstreamFactory
from speech.errors import UpstreamConnectError
from telephony.audio_queue import DEFAULT_CAPACITY, AudioFrameQueue
from telephony.g711 import ulaw_level_dbfs
from telephony.keepalive import KeepAliveTicker, Ticker, TickerFactory
from telephony.media_stream import MalformedMessageError, MediaStreamMessage, parse_media_stream_message
from telephony.state_machine import Effect, SessionEventKind, SessionState, transition

LOGGER = logging.getLogger(__name__)

_UPSTREAM_EVENTS = {
    UpstreamEventKind.READY: SessionEventKind.UPSTREAM_READY,
    UpstreamEventKind.TRANSCRIPT: SessionEventKind.UPSTREAM_TRANSCRIPT,
    UpstreamEventKind.ERROR: SessionEventKind.UPSTREAM_ERROR,
    UpstreamEventKind.CLOSE: SessionEventKind.UPSTREAM_CLOSED,
}


class InboundChannel(Protocol):
    """Caller-side connection owned by a session."""

    def close(self) -> None:  # pragma: no cover - protocol stub
        ...

    async def wait_closed(self) -> None:  # pragma: no cover - protocol stub
        ...


class CallSession:
    """Owns one inbound channel, one upstream connection and one audio queue.

    Every handler is synchronous and runs to completion, so transitions of a
    single session never interleave on the event loop.
    """

    def __init__(
        self,
        inbound: InboundChannel,
        upstream_factory: UpstreamFactory,
        *,
        transcript_sink: TranscriptSink,
        session_id: str | None = None,
        queue_capacity: int = DEFAULT_CAPACITY,
        keepalive_interval: float = 10.0,
        flow_log_every: int = 50,
        ticker_factory: TickerFactory = KeepAliveTicker,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.call_sid: str | None = None
        self.stream_sid: str | None = None
        self.frame_count = 0
        self.byte_count = 0
        self.dropped_frames = 0

        self._state = SessionState.CONNECTING
        self._inbound = inbound
        self._inbound_closed = False
        self._queue = AudioFrameQueue(queue_capacity)
        self._transcript_sink = transcript_sink
        self._keepalive_interval = keepalive_interval
        self._flow_log_every = flow_log_every
        self._ticker_factory = ticker_factory
        self._keepalive: Ticker | None = None
        self._upstream: UpstreamConnection | None = None

        try:
            self._upstream = upstream_factory(self.handle_upstream_event)
        except Exception as exc:
            LOGGER.error("Session %s: failed to create upstream connection: %s", self.id, exc)
            self._state = SessionState.CLOSED
            self._close_inbound("upstream_create_failed")
            if isinstance(exc, UpstreamConnectError):
                raise
            raise UpstreamConnectError(str(exc)) from exc

        LOGGER.info("Session %s: upstream connection created", self.id)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is SessionState.CLOSED

    @property
    def queued_frames(self) -> int:
        return len(self._queue)

    # Inbound side

    def handle_message(self, text: str | bytes) -> None:
        """Handle one raw websocket message from the caller side."""

        try:
            message = parse_media_stream_message(text)
        except MalformedMessageError as exc:
            if exc.event == "media":
                self.frame_count += 1
            LOGGER.warning("Session %s: discarding malformed message: %s", self.id, exc)
            return

        if not message.is_known:
            LOGGER.debug("Session %s: ignoring %r event", self.id, message.event)
        elif message.event == "media":
            self._handle_media(message)
        elif message.event == "start":
            self.call_sid = message.call_sid or self.call_sid
            self.stream_sid = message.stream_sid or self.stream_sid
            self._dispatch(SessionEventKind.INBOUND_START, message=message)
        else:
            LOGGER.info("Session %s: Twilio stream stopped", self.id)
            self._dispatch(SessionEventKind.INBOUND_STOP)

    def inbound_closed(self) -> None:
        LOGGER.info("Session %s: Twilio websocket closed", self.id)
        self._inbound_closed = True
        self._dispatch(SessionEventKind.INBOUND_CLOSED)

    def inbound_error(self, error: BaseException) -> None:
        LOGGER.error("Session %s: Twilio socket error: %s", self.id, error)
        self._dispatch(SessionEventKind.INBOUND_ERROR)

    def _handle_media(self, message: MediaStreamMessage) -> None:
        # Every media envelope is counted, bridged or not.
        frame = message.audio
        self.frame_count += 1
        self.byte_count += len(frame)
        if message.track and message.track != "inbound":
            return

        if self._flow_log_every and self.frame_count % self._flow_log_every == 0:
            LOGGER.info(
                "Session %s: audio flowing (%d frames, %d bytes, state=%s, level=%.1f dBFS)",
                self.id,
                self.frame_count,
                self.byte_count,
                self._state.value,
                ulaw_level_dbfs(frame),
            )

        if not frame:
            return
        self._dispatch(SessionEventKind.INBOUND_MEDIA, frame=frame)

    # Upstream side

    def handle_upstream_event(self, event: UpstreamEvent) -> None:
        if event.kind is UpstreamEventKind.READY:
            LOGGER.info("Session %s: Deepgram stream open (ready)", self.id)
        elif event.kind is UpstreamEventKind.CLOSE:
            LOGGER.info("Session %s: Deepgram close event %s", self.id, event.data)
        self._dispatch(_UPSTREAM_EVENTS[event.kind], upstream_event=event)

    async def wait_closed(self) -> None:
        """Wait until both owned connections have been released."""

        if self._upstream is not None:
            await self._upstream.wait_closed()
        await self._inbound.wait_closed()

    # Transitions

    def _dispatch(
        self,
        kind: SessionEventKind,
        *,
        frame: bytes = b"",
        message: MediaStreamMessage | None = None,
        upstream_event: UpstreamEvent | None = None,
    ) -> None:
        previous = self._state
        self._state, effects = transition(previous, kind)
        if self._state is not previous:
            LOGGER.info(
                "Session %s: %s -> %s on %s",
                self.id,
                previous.value,
                self._state.value,
                kind.value,
            )

        for effect in effects:
            try:
                self._apply(effect, kind, frame, message, upstream_event)
            except Exception:
                LOGGER.exception("Session %s: %s failed", self.id, effect.value)

    def _apply(
        self,
        effect: Effect,
        kind: SessionEventKind,
        frame: bytes,
        message: MediaStreamMessage | None,
        upstream_event: UpstreamEvent | None,
    ) -> None:
        if effect is Effect.ENQUEUE_FRAME:
            if self._queue.enqueue(frame) is not None:
                self.dropped_frames += 1
        elif effect is Effect.FORWARD_FRAME:
            self._forward(frame)
        elif effect is Effect.DISCARD_FRAME:
            self.dropped_frames += 1
        elif effect is Effect.FLUSH_QUEUE:
            frames = self._queue.drain_in_order()
            LOGGER.info("Session %s: flushing %d queued audio frames", self.id, len(frames))
            for queued in frames:
                self._forward(queued)
        elif effect is Effect.DISCARD_QUEUE:
            discarded = self._queue.clear()
            if discarded:
                self.dropped_frames += discarded
                LOGGER.info("Session %s: discarded %d queued audio frames", self.id, discarded)
        elif effect is Effect.START_KEEPALIVE:
            self._keepalive = self._ticker_factory(self._keepalive_interval, self._on_keepalive_tick)
        elif effect is Effect.STOP_KEEPALIVE:
            self._stop_keepalive()
        elif effect is Effect.SEND_KEEPALIVE:
            if self._upstream is not None and not self._upstream.closed:
                self._upstream.keep_alive()
        elif effect is Effect.FINISH_UPSTREAM:
            if self._upstream is not None and not self._upstream.closed:
                self._upstream.finish()
        elif effect is Effect.CLOSE_INBOUND:
            self._close_inbound(kind.value)
        elif effect is Effect.LOG_START:
            LOGGER.info(
                "Session %s: Twilio stream started (call_sid=%s, stream_sid=%s, format=%s)",
                self.id,
                self.call_sid,
                self.stream_sid,
                message.media_format if message else {},
            )
        elif effect is Effect.EMIT_TRANSCRIPT:
            self._emit_transcript(upstream_event)
        elif effect is Effect.LOG_UPSTREAM_ERROR:
            LOGGER.error(
                "Session %s: Deepgram error event %s",
                self.id,
                upstream_event.data if upstream_event else {},
            )

    def _forward(self, frame: bytes) -> None:
        upstream = self._upstream
        if upstream is None or upstream.closed:
            self.dropped_frames += 1
            return
        try:
            upstream.send(frame)
        except Exception as exc:
            self.dropped_frames += 1
            LOGGER.warning("Session %s: error sending audio upstream: %s", self.id, exc)

    def _emit_transcript(self, event: UpstreamEvent | None) -> None:
        if event is None or event.transcript is None:
            return
        text = event.transcript.text.strip()
        if not text:
            return
        if not event.transcript.is_final:
            LOGGER.debug("Session %s: interim transcript: %s", self.id, text)
            return

        LOGGER.info("Session %s: caller said: %s", self.id, text)
        self._transcript_sink(self.id, text, event.timestamp)

    def _on_keepalive_tick(self) -> None:
        self._dispatch(SessionEventKind.KEEPALIVE_TICK)

    def _stop_keepalive(self) -> None:
        if self._keepalive is not None:
            self._keepalive.cancel()
            self._keepalive = None

    def _close_inbound(self, why: str) -> None:
        if not self._inbound_closed:
            self._inbound_closed = True
            try:
                self._inbound.close()
            except Exception:
                LOGGER.exception("Session %s: closing Twilio websocket failed", self.id)
        LOGGER.info("Session %s: stopped stream (why=%s)", self.id, why)
