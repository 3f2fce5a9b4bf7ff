from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from premiumcollect.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from premiumcollect.apps.api.response import Envelope, success_response
from premiumcollect.persistence.db import pool_stats
from premiumcollect.services.broadcaster import broadcaster

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    live_sessions: int
    db_pool: dict[str, int | None]


@router.get("/health", response_model=Envelope[HealthResponse])
async def health(request: Request) -> dict:
    payload = HealthResponse(
        status="ok",
        live_sessions=broadcaster.session_count,
        db_pool=pool_stats(),
    )
    return success_response(request=request, data=payload)
