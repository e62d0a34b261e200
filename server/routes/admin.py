"""
Admin API routes

Vote manager and audit log viewer. Every route requires the admin bearer token.
"""

import secrets
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from config import config, get_logger
from database.db import Database
from database.models import AUDIT_CATEGORIES, AUDIT_SEVERITIES
from exceptions import BallotboxError
from server.dependencies import get_db, get_vote_service
from server.utils.responses import audit_payload, list_response, success_response, vote_payload
from server.utils.validation import require_session, to_http_exception
from voting.service import VoteService

logger = get_logger(__name__).bind(component="admin_api")


router = APIRouter(prefix="/api/v1", tags=["admin"])


async def verify_admin_token(authorization: str = Header(None)):
    """Verify admin bearer token"""
    if not config.ADMIN_TOKEN:
        raise HTTPException(
            status_code=500, detail="Admin authentication not configured"
        )

    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    try:
        scheme, token = authorization.split(" ")
        if scheme.lower() != "bearer":
            raise HTTPException(status_code=401, detail="Invalid authentication scheme")

        if not secrets.compare_digest(token, config.ADMIN_TOKEN):
            raise HTTPException(status_code=403, detail="Invalid admin token")

    except ValueError:
        raise HTTPException(
            status_code=401, detail="Invalid authorization header format"
        )

    return True


@router.get("/sessions/{session_id}/votes")
async def list_session_votes(
    session_id: str,
    service: VoteService = Depends(get_vote_service),
    is_admin: bool = Depends(verify_admin_token),
):
    """List every ledger entry of a session, oldest first

    Voter ids are the stored keyed hashes.
    """
    try:
        votes = await service.list_votes(session_id)
    except BallotboxError as e:
        raise to_http_exception(e)

    return list_response([vote_payload(v) for v in votes], key="votes", session_id=session_id)


@router.delete("/votes/{vote_id}")
async def delete_vote(
    vote_id: str,
    service: VoteService = Depends(get_vote_service),
    is_admin: bool = Depends(verify_admin_token),
):
    """Delete one ledger entry and decrement its option"""
    try:
        await service.admin_delete_vote(vote_id)
    except BallotboxError as e:
        raise to_http_exception(e)

    return success_response({"deleted": vote_id})


@router.post("/sessions/{session_id}/reconcile")
async def reconcile_session(
    session_id: str,
    service: VoteService = Depends(get_vote_service),
    is_admin: bool = Depends(verify_admin_token),
):
    """Recount the tally from the ledger

    Returns the per-option correction that was applied (empty if none).
    """
    try:
        drift = await service.reconcile_tally(session_id)
        tally = await service.get_tally(session_id)
    except BallotboxError as e:
        raise to_http_exception(e)

    return success_response({"session_id": session_id, "corrected": drift, "tally": tally})


@router.get("/audit-logs")
async def get_recent_audit_logs(
    limit: int = Query(100, ge=1, le=1000),
    severity: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    db: Database = Depends(get_db),
    is_admin: bool = Depends(verify_admin_token),
):
    """Most recent audit entries across all sessions, newest first

    Optional severity/category filters; each entry carries its session title.
    """
    if severity and severity.upper() not in AUDIT_SEVERITIES:
        raise HTTPException(status_code=400, detail=f"Unknown severity: {severity}")
    if category and category.lower() not in AUDIT_CATEGORIES:
        raise HTTPException(status_code=400, detail=f"Unknown category: {category}")

    entries = await db.audit.list_recent(limit=limit, severity=severity, category=category)

    titles: Dict[str, Optional[str]] = {}
    for session_id in {e.session_id for e in entries}:
        session = await db.sessions.get_session(session_id)
        titles[session_id] = session.title if session else None

    return list_response(
        [audit_payload(e, session_title=titles[e.session_id]) for e in entries],
        key="audit_logs",
    )


@router.get("/audit-logs/{session_id}")
async def get_session_audit_logs(
    session_id: str,
    db: Database = Depends(get_db),
    is_admin: bool = Depends(verify_admin_token),
):
    """Audit entries for one session, newest first"""
    await require_session(db, session_id)
    entries = await db.audit.list_for_session(session_id)
    return list_response([audit_payload(e) for e in entries], key="audit_logs", session_id=session_id)
