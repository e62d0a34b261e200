"""Voting session API - session lifecycle and option management

Endpoints:
- Create sessions and list them by owner
- Edit descriptive fields (title, description, status, window)
- Add, rename and remove options (tally and ledger follow)
"""

from fastapi import APIRouter, Depends, Query, status

from config import get_logger
from database.db import Database
from exceptions import BallotboxError
from server.dependencies import get_db, get_vote_service, get_voter_id
from server.models.requests import (
    OptionCreateRequest,
    OptionRenameRequest,
    SessionCreateRequest,
    SessionUpdateRequest,
)
from server.routes.admin import verify_admin_token
from server.utils.responses import list_response, session_payload, success_response
from server.utils.validation import require_session, to_http_exception
from voting.service import VoteService

logger = get_logger(__name__).bind(component="sessions_api")

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])


# -----------------------------------------------------------------------------
# Sessions
# -----------------------------------------------------------------------------


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_session(
    body: SessionCreateRequest,
    owner_id: str = Depends(get_voter_id),
    db: Database = Depends(get_db),
):
    """Create a voting session owned by the caller.

    Every option starts with a zero count.
    """
    try:
        session = await db.sessions.create_session(
            title=body.title,
            options=body.options,
            description=body.description,
            created_by=owner_id,
            start_time=body.start_time,
            end_time=body.end_time,
            status=body.status,
        )
    except BallotboxError as e:
        raise to_http_exception(e)

    return success_response({"session": session_payload(session)})


@router.get("")
async def list_sessions(
    owner: str = Query(..., min_length=1),
    db: Database = Depends(get_db),
):
    """Sessions created by an owner, newest first"""
    sessions = await db.sessions.list_sessions_for_owner(owner)
    return list_response([session_payload(s) for s in sessions], key="sessions")


@router.get("/{session_id}")
async def get_session(session_id: str, db: Database = Depends(get_db)):
    """Get session metadata, options and tally"""
    session = await require_session(db, session_id)
    return success_response({"session": session_payload(session)})


@router.put("/{session_id}")
async def update_session(
    session_id: str,
    body: SessionUpdateRequest,
    db: Database = Depends(get_db),
    is_admin: bool = Depends(verify_admin_token),
):
    """Update descriptive fields. Options and tally are not editable here."""
    fields = body.model_dump(exclude_unset=True)
    try:
        session = await db.sessions.update_details(session_id, **fields)
    except BallotboxError as e:
        raise to_http_exception(e)

    return success_response({"session": session_payload(session)})


# -----------------------------------------------------------------------------
# Options
# -----------------------------------------------------------------------------


@router.post("/{session_id}/options", status_code=status.HTTP_201_CREATED)
async def add_option(
    session_id: str,
    body: OptionCreateRequest,
    service: VoteService = Depends(get_vote_service),
    is_admin: bool = Depends(verify_admin_token),
):
    """Append an option with a zero count"""
    try:
        session = await service.add_option(session_id, body.label)
    except BallotboxError as e:
        raise to_http_exception(e)

    return success_response({"session": session_payload(session)})


@router.put("/{session_id}/options/{label}")
async def rename_option(
    session_id: str,
    label: str,
    body: OptionRenameRequest,
    service: VoteService = Depends(get_vote_service),
    is_admin: bool = Depends(verify_admin_token),
):
    """Rename an option. Its count and ledger entries move with it."""
    try:
        await service.rename_option(session_id, label, body.new_label)
        session = await service.get_session(session_id)
    except BallotboxError as e:
        raise to_http_exception(e)

    return success_response({"session": session_payload(session)})


@router.delete("/{session_id}/options/{label}")
async def remove_option(
    session_id: str,
    label: str,
    service: VoteService = Depends(get_vote_service),
    is_admin: bool = Depends(verify_admin_token),
):
    """Remove an option together with every vote cast for it"""
    try:
        await service.remove_option(session_id, label)
        session = await service.get_session(session_id)
    except BallotboxError as e:
        raise to_http_exception(e)

    return success_response({"session": session_payload(session)})
