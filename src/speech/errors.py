"""Domain-specific exceptions for the upstream transcription connection.

These exceptions are safe to import from API layers without pulling in the websocket client.
"""

from __future__ import annotations


class TranscriptionError(Exception):
    default_detail: str = "Transcription upstream error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class UpstreamConnectError(TranscriptionError):
    default_detail = "Could not create the live transcription connection."


class UpstreamClosedError(TranscriptionError):
    default_detail = "Live transcription connection is closed."
