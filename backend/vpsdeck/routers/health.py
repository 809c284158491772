from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter


router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health():
    """Public liveness check; no admin key required."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
