"""
ballotbox API Server

FastAPI application wiring the vote service to HTTP.
Routes, dependencies and middleware are organized into focused modules.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import config, get_logger
from database.db import Database
from server.middleware.logging import log_requests
from server.middleware.metrics import metrics_middleware
from server.middleware.request_id import RequestIDMiddleware
from server.routes import admin, monitoring, sessions, votes
from voting.audit import AuditRecorder
from voting.service import VoteService

logger = get_logger(__name__)


# Lifespan context manager for store initialization
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the document store and vote service, close the store on shutdown"""
    db = await Database.create()
    logger.info("initialized document store", store=config.STORE)

    app.state.db = db
    app.state.vote_service = VoteService(
        db,
        audit=AuditRecorder(db.audit, fallback_path=config.AUDIT_FALLBACK_PATH),
    )

    yield

    try:
        await db.close()
        logger.info("closed document store")
    except Exception as e:
        # Don't crash on shutdown - log and continue
        logger.error("error closing document store", error=str(e), exc_info=True)


# Initialize FastAPI app with lifespan
app = FastAPI(title="ballotbox API", description="Voting sessions with consistent tallies", lifespan=lifespan)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

# Request ID middleware (must be early in stack for tracing)
app.add_middleware(RequestIDMiddleware)


# Register middleware (execution order: metrics -> logging)
# FastAPI middleware stack: last registered runs first, so register in reverse order
@app.middleware("http")
async def log_requests_middleware(request, call_next):
    return await log_requests(request, call_next)


@app.middleware("http")
async def metrics_middleware_wrapper(request, call_next):
    return await metrics_middleware(request, call_next)


# Mount routers
app.include_router(monitoring.router)  # Root, health and metrics
app.include_router(sessions.router)    # Session lifecycle and options
app.include_router(votes.router)       # Cast, retract, results
app.include_router(admin.router)       # Vote manager and audit logs


if __name__ == "__main__":
    import uvicorn

    if not config.ADMIN_TOKEN:
        logger.warning(
            "WARNING: No admin token configured. Admin endpoints will not work."
        )
        logger.warning("Set BALLOTBOX_ADMIN_TOKEN to enable admin functionality.")

    logger.info("Starting ballotbox API server...")
    logger.info("configuration", config_summary=config.summary())

    uvicorn.run(
        app,
        host=config.API_HOST,
        port=config.API_PORT,
        access_log=False,  # Custom middleware logs requests
    )
