from __future__ import annotations

from fastapi import APIRouter

from ... import __version__

router = APIRouter(prefix="/api")


@router.get("/ping")
async def ping() -> dict[str, str]:
    """Liveness check that also reports the running version."""
    return {"status": "ok", "version": __version__}
