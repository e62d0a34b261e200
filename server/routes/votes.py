"""Vote API routes - cast, change and retract votes, read results."""

from fastapi import APIRouter, Depends

from config import get_logger
from database.db import Database
from exceptions import BallotboxError
from server.dependencies import get_db, get_vote_service, get_voter_id
from server.models.requests import VoteCastRequest
from server.utils.responses import results_payload, success_response
from server.utils.validation import require_session, to_http_exception
from voting.service import VoteService

logger = get_logger(__name__).bind(component="votes_api")

router = APIRouter(prefix="/api/v1/sessions", tags=["votes"])


@router.post("/{session_id}/vote")
async def cast_vote(
    session_id: str,
    body: VoteCastRequest,
    voter_id: str = Depends(get_voter_id),
    service: VoteService = Depends(get_vote_service),
):
    """Cast or change the caller's vote.

    Submitting again with a different option moves the vote; submitting
    the same option again changes nothing.
    """
    try:
        record = await service.cast_vote(session_id, voter_id, body.option)
        tally = await service.get_tally(session_id)
    except BallotboxError as e:
        raise to_http_exception(e)

    return success_response({
        "vote": {"id": record.id, "option": record.option, "cast_at": record.cast_at.isoformat()},
        "tally": tally,
    })


@router.delete("/{session_id}/vote")
async def retract_vote(
    session_id: str,
    voter_id: str = Depends(get_voter_id),
    service: VoteService = Depends(get_vote_service),
):
    """Withdraw the caller's vote"""
    try:
        await service.retract_vote(session_id, voter_id)
        tally = await service.get_tally(session_id)
    except BallotboxError as e:
        raise to_http_exception(e)

    return success_response({"tally": tally})


@router.get("/{session_id}/my-vote")
async def get_my_vote(
    session_id: str,
    voter_id: str = Depends(get_voter_id),
    service: VoteService = Depends(get_vote_service),
    db: Database = Depends(get_db),
):
    """Option the caller currently holds (null if none)"""
    await require_session(db, session_id)
    try:
        option = await service.get_voter_choice(session_id, voter_id)
    except BallotboxError as e:
        raise to_http_exception(e)

    return success_response({"session_id": session_id, "option": option})


@router.get("/{session_id}/results")
async def get_results(session_id: str, db: Database = Depends(get_db)):
    """Tally per option in display order"""
    session = await require_session(db, session_id)
    return success_response(results_payload(session))
