"""Entry point for the Twilio to Deepgram live transcription bridge."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from api.dependencies import get_deepgram_client, get_transcript_sink
from api.routes import router as api_router
from config.settings import get_settings
from integrations.deepgram_auth import verify_deepgram_credentials

LOGGER = logging.getLogger(__name__)


def _log_unhandled(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    # Keep serving the other calls; only record what escaped.
    LOGGER.error(
        "Unhandled exception in event loop: %s",
        context.get("message"),
        exc_info=context.get("exception"),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    asyncio.get_running_loop().set_exception_handler(_log_unhandled)

    try:
        get_deepgram_client()
    except ValueError:
        LOGGER.error("DEEPGRAM_API_KEY is missing/blank. Check the service environment.")
        raise
    LOGGER.info("Deepgram client initialized (API key length %d)", len(settings.deepgram_api_key or ""))

    probe: asyncio.Task | None = None
    if settings.deepgram_verify_on_startup:
        probe = asyncio.create_task(
            verify_deepgram_credentials(
                settings.deepgram_api_key or "",
                base_url=settings.deepgram_api_url,
            )
        )

    yield

    if probe is not None and not probe.done():
        probe.cancel()
    sink = get_transcript_sink()
    aclose = getattr(sink, "aclose", None)
    if aclose is not None:
        await aclose()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Twilio Deepgram Bridge",
    description="Bridges Twilio Media Streams audio to Deepgram live transcription.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")


def main() -> None:
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
