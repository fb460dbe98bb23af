"""
Scribe Health Check Routes
"""
import sys
from typing import Any, Dict

import psutil
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..database import get_db, isoformat, utc_now
from ..dependencies import get_cache
from ..services.cache import Cache

router = APIRouter(prefix="/api/health", tags=["health"])

START_TIME = utc_now()


def get_uptime() -> str:
    """Get service uptime as human-readable string"""
    delta = utc_now() - START_TIME
    hours, remainder = divmod(delta.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    if delta.days > 0:
        return f"{delta.days}d {hours}h {minutes}m"
    elif hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    return f"{minutes}m {seconds}s"


def check_database(db: Session) -> Dict[str, Any]:
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy"}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


def check_cache(cache: Cache) -> Dict[str, Any]:
    # The cache is optional; an outage degrades reads but does not block traffic.
    return {"status": "healthy" if cache.ping() else "degraded"}


def check_system() -> Dict[str, Any]:
    try:
        memory = psutil.virtual_memory()
        return {
            "status": "healthy" if memory.percent < 90 else "warning",
            "cpu_percent": psutil.cpu_percent(interval=0.1),
            "memory_percent": memory.percent,
            "memory_available_gb": round(memory.available / (1024**3), 2),
            "python_version": sys.version.split()[0],
        }
    except Exception as e:
        return {"status": "unknown", "error": str(e)}


@router.get("")
def health_live():
    """Liveness probe - is the service running?"""
    return {
        "ok": True,
        "status": "alive",
        "uptime": get_uptime(),
        "timestamp": isoformat(utc_now()),
    }


@router.get("/ready")
def health_ready(db: Session = Depends(get_db), cache: Cache = Depends(get_cache)):
    """Readiness probe - database must answer; cache may be degraded."""
    database = check_database(db)
    cache_status = check_cache(cache)
    ready = database["status"] == "healthy"
    return {
        "ok": ready,
        "status": "ready" if ready else "not_ready",
        "checks": {
            "database": database["status"],
            "cache": cache_status["status"],
        },
        "timestamp": isoformat(utc_now()),
    }


@router.get("/full")
def health_full(db: Session = Depends(get_db), cache: Cache = Depends(get_cache)):
    """Full health check with host metrics."""
    checks = {
        "database": check_database(db),
        "cache": check_cache(cache),
        "system": check_system(),
    }
    statuses = [c["status"] for c in checks.values()]
    if "unhealthy" in statuses:
        overall = "unhealthy"
    elif "degraded" in statuses or "warning" in statuses:
        overall = "degraded"
    else:
        overall = "healthy"

    return {
        "ok": overall == "healthy",
        "status": overall,
        "uptime": get_uptime(),
        "started_at": isoformat(START_TIME),
        "checks": checks,
        "timestamp": isoformat(utc_now()),
    }
