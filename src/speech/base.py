"""Shared abstractions for live transcription connections."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Protocol


class UpstreamEventKind(Enum):
    READY = auto()
    TRANSCRIPT = auto()
    ERROR = auto()
    CLOSE = auto()


@dataclass(frozen=True)
class TranscriptResult:
    """Best-candidate text of one recognition result."""

    text: str
    is_final: bool
    speech_final: bool = False
    confidence: float | None = None


@dataclass(frozen=True)
class UpstreamEvent:
    kind: UpstreamEventKind
    transcript: TranscriptResult | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


UpstreamEventHandler = Callable[[UpstreamEvent], None]


class UpstreamConnection(Protocol):
    """One live connection to the speech-recognition service.

    ``send``, ``keep_alive`` and ``finish`` never block: they hand work to the
    connection's own writer. Events are delivered through the handler given at
    creation time.
    """

    @property
    def closed(self) -> bool:  # pragma: no cover - protocol stub
        ...

    def send(self, frame: bytes) -> None:
        """Forward one audio frame. Raises ``UpstreamClosedError`` once closed."""

    def keep_alive(self) -> None:
        """Ask the service to keep an idle stream open."""

    def finish(self) -> None:
        """Request a graceful flush-and-close. Idempotent."""

    async def wait_closed(self) -> None:
        """Return once the connection has fully shut down."""


UpstreamFactory = Callable[[UpstreamEventHandler], UpstreamConnection]


def extract_transcript(payload: dict[str, Any]) -> TranscriptResult | None:
    """Pull the best alternative out of a ``Results`` message.

    Returns ``None`` when the payload carries no alternatives.
    """

    channel = payload.get("channel")
    if not isinstance(channel, dict):
        return None
    alternatives = channel.get("alternatives")
    if not isinstance(alternatives, list) or not alternatives:
        return None
    best = alternatives[0]
    if not isinstance(best, dict):
        return None

    confidence = best.get("confidence")
    return TranscriptResult(
        text=str(best.get("transcript") or ""),
        is_final=bool(payload.get("is_final")),
        speech_final=bool(payload.get("speech_final")),
        confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
    )
