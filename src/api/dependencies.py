"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules. The Deepgram client
and the transcript sink are process-wide and built once; only the per-call
connection objects are created per session.
"""

from __future__ import annotations

from functools import lru_cache

from integrations.transcript_sink import TranscriptSink, build_transcript_sink
from speech.base import UpstreamFactory
from speech.deepgram_live import DeepgramClient, build_deepgram_client


@lru_cache(maxsize=1)
def _deepgram_client_factory() -> DeepgramClient:
    return build_deepgram_client()


@lru_cache(maxsize=1)
def _transcript_sink_factory() -> TranscriptSink:
    return build_transcript_sink()


def get_deepgram_client() -> DeepgramClient:
    return _deepgram_client_factory()


def get_upstream_factory() -> UpstreamFactory:
    return get_deepgram_client().live


def get_transcript_sink() -> TranscriptSink:
    return _transcript_sink_factory()
