"""FastAPI routes exposing the bridge."""

from __future__ import annotations

from fastapi import APIRouter

from api.schemas import HealthResponse
from api.stream_routes import router as stream_router

router = APIRouter()
router.include_router(stream_router)


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse()
