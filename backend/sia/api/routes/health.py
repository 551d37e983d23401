from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter

from sia.core.config import get_settings

router = APIRouter()

settings = get_settings()


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/health/live")
def health_live() -> dict:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "scheduling_api": settings.scheduling_api_base_url,
    }
