"""
Monitoring and health check API routes
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from config import config, get_logger
from database.db import Database
from exceptions import NotFoundError
from server.dependencies import get_db
from server.metrics import get_metrics_text

logger = get_logger(__name__)


router = APIRouter()

HEALTH_CHECK_COLLECTION = "voting_sessions"
HEALTH_CHECK_ID = "__health__"


@router.get("/")
async def root():
    """API status and info"""
    return {
        "service": "ballotbox API",
        "status": "running",
        "version": "1.0.0",
        "endpoints": {
            "sessions": "POST /api/v1/sessions - Create a voting session",
            "session": "GET /api/v1/sessions/{id} - Session with options and tally",
            "vote": "POST /api/v1/sessions/{id}/vote - Cast or change your vote",
            "retract": "DELETE /api/v1/sessions/{id}/vote - Withdraw your vote",
            "results": "GET /api/v1/sessions/{id}/results - Current tally",
            "health": "GET /api/v1/health - Health check",
            "metrics": "GET /metrics - Prometheus metrics",
        },
    }


@router.get("/api/v1/health")
async def health_check(db: Database = Depends(get_db)):
    """Health check endpoint"""
    health_status: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "1.0.0",
        "checks": {},
    }

    try:
        # Key lookup on an id that never exists; a miss still proves the store answered
        try:
            await db.gateway.get_document(HEALTH_CHECK_COLLECTION, HEALTH_CHECK_ID)
        except NotFoundError:
            pass
        health_status["checks"]["store"] = {
            "status": "healthy",
            "backend": config.STORE,
        }
    except Exception as e:
        logger.error("health check store lookup failed", error=str(e))
        health_status["checks"]["store"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "unhealthy"

    health_status["checks"]["configuration"] = {
        "status": "healthy",
        "voting_window_enforced": config.ENFORCE_VOTING_WINDOW,
        "voter_hash_secret": "configured" if config.VOTER_HASH_SECRET else "development",
        "admin_token": "configured" if config.ADMIN_TOKEN else "missing",
    }

    return health_status


@router.get("/metrics")
async def prometheus_metrics():
    """Prometheus metrics in text exposition format"""
    return Response(content=get_metrics_text(), media_type="text/plain; version=0.0.4")
