from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from beacon.config import settings
from beacon.db import get_conn
from beacon.version import APP_VERSION


router = APIRouter()


def _database_backend_label(database_url: str) -> str:
    url = (database_url or "").strip().lower()
    if url.startswith("sqlite:///"):
        return "sqlite"
    return "unknown"


@router.get("/")
def root() -> dict[str, str]:
    return {"service": "beacon-backend", "status": "running", "version": APP_VERSION}


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "environment": settings.app_env}


@router.get("/ready", response_model=None)
def ready() -> JSONResponse:
    payload: dict[str, object] = {
        "status": "ready",
        "environment": settings.app_env,
        "checks": {},
    }
    try:
        with get_conn() as conn:
            conn.execute("SELECT 1").fetchone()
        payload["checks"] = {"db": {"ok": True, "backend": _database_backend_label(settings.database_url)}}
    except Exception as exc:
        payload["status"] = "not_ready"
        payload["checks"] = {
            "db": {"ok": False, "backend": _database_backend_label(settings.database_url), "error": str(exc)}
        }
        return JSONResponse(status_code=503, content=payload)
    return JSONResponse(status_code=200, content=payload)
