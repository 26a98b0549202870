"""Destinations for finalized caller transcripts."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import httpx

from config.settings import get_settings

LOGGER = logging.getLogger(__name__)

# (session_id, text, unix timestamp) -> None
TranscriptSink = Callable[[str, str, float], None]


class LoggingTranscriptSink:
    """Writes each finalized utterance to the application log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    def __call__(self, session_id: str, text: str, timestamp: float) -> None:
        self._logger.info("Sentence [%s @ %s]: %s", session_id, _isoformat(timestamp), text)

    async def aclose(self) -> None:
        return None


class WebhookTranscriptSink:
    """Posts finalized utterances to an HTTP endpoint.

    Delivery runs in background tasks so the caller's handler never waits on
    the network; failures are logged and dropped.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        api_key: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(timeout=timeout, headers=headers, transport=transport)
        self._pending: set[asyncio.Task] = set()

    def __call__(self, session_id: str, text: str, timestamp: float) -> None:
        payload: dict[str, Any] = {
            "session_id": session_id,
            "text": text,
            "timestamp": _isoformat(timestamp),
        }
        task = asyncio.get_running_loop().create_task(self._post(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _post(self, payload: dict[str, Any]) -> None:
        try:
            response = await self._client.post(self._endpoint, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.error("Transcript webhook delivery failed: %s", exc)

    async def aclose(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self._client.aclose()


def build_transcript_sink() -> LoggingTranscriptSink | WebhookTranscriptSink:
    """Return the sink selected by configuration."""

    settings = get_settings()
    if settings.transcript_webhook_url:
        return WebhookTranscriptSink(
            settings.transcript_webhook_url,
            api_key=settings.transcript_webhook_api_key,
            timeout=settings.transcript_webhook_timeout_seconds,
        )
    return LoggingTranscriptSink()


def _isoformat(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()
