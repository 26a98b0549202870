"""Twilio Media Streams websocket endpoint.

Each accepted websocket gets its own ``CallSession``; nothing is shared between
calls apart from the process-wide Deepgram client and transcript sink.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from api.dependencies import get_transcript_sink, get_upstream_factory
from config.settings import get_settings
from integrations.transcript_sink import TranscriptSink
from speech.base import UpstreamFactory
from speech.errors import UpstreamConnectError
from telephony.call_session import CallSession

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])


class WebSocketInbound:
    """Adapts a Starlette websocket to the session's inbound channel."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._close_task: asyncio.Task | None = None

    def close(self) -> None:
        if self._close_task is None:
            self._close_task = asyncio.get_running_loop().create_task(self._close())

    async def wait_closed(self) -> None:
        if self._close_task is not None:
            await self._close_task

    async def _close(self) -> None:
        if (
            self._websocket.application_state is WebSocketState.DISCONNECTED
            or self._websocket.client_state is WebSocketState.DISCONNECTED
        ):
            return
        try:
            await self._websocket.close()
        except (RuntimeError, OSError, WebSocketDisconnect) as exc:
            # The caller hung up between the state check and the close frame.
            LOGGER.debug("Twilio websocket already closed: %s", exc)


@router.websocket("/stream")
async def twilio_media_stream(
    websocket: WebSocket,
    upstream_factory: UpstreamFactory = Depends(get_upstream_factory),
    transcript_sink: TranscriptSink = Depends(get_transcript_sink),
) -> None:
    await websocket.accept()
    settings = get_settings()

    inbound = WebSocketInbound(websocket)
    try:
        session = CallSession(
            inbound,
            upstream_factory,
            transcript_sink=transcript_sink,
            queue_capacity=settings.audio_queue_capacity,
            keepalive_interval=settings.keepalive_interval_seconds,
            flow_log_every=settings.audio_flow_log_every,
        )
    except UpstreamConnectError:
        # The session already asked the inbound channel to close.
        await inbound.wait_closed()
        return

    LOGGER.info("Twilio websocket connected (session %s)", session.id)
    try:
        while not session.closed:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                session.inbound_closed()
                break
            text = message.get("text")
            session.handle_message(text if text is not None else message.get("bytes") or b"")
    except WebSocketDisconnect:
        session.inbound_closed()
    except Exception as exc:
        LOGGER.exception("Twilio websocket receive failed (session %s)", session.id)
        session.inbound_error(exc)

    await session.wait_closed()
    LOGGER.info(
        "Session %s finished: %d frames, %d bytes, %d dropped",
        session.id,
        session.frame_count,
        session.byte_count,
        session.dropped_frames,
    )
