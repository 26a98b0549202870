"""Boot-time check that the configured Deepgram key is accepted."""

from __future__ import annotations

import logging

import httpx

LOGGER = logging.getLogger(__name__)


async def verify_deepgram_credentials(
    api_key: str,
    *,
    base_url: str = "https://api.deepgram.com",
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Call an authenticated REST endpoint and log the outcome.

    Never raises: a bad key or an unreachable API only produces error logs, so
    the service still starts and the first call surfaces the real failure.
    """

    url = f"{base_url.rstrip('/')}/v1/projects"
    headers = {"Authorization": f"Token {api_key}"}
    try:
        async with httpx.AsyncClient(timeout=10, transport=transport) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:
        LOGGER.error("Deepgram auth test request failed (network/runtime): %s", exc)
        return False

    LOGGER.info(
        "Deepgram auth test status=%s body_preview=%.200s",
        response.status_code,
        response.text,
    )
    if not response.is_success:
        LOGGER.error("Deepgram auth test failed. Fix the API key before testing calls.")
        return False
    return True
