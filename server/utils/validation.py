"""Error translation and existence checks for API routes."""

from fastapi import HTTPException, status

from exceptions import (
    BallotboxError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    VotingClosedError,
)
from server.metrics import metrics


def to_http_exception(error: BallotboxError) -> HTTPException:
    """Map a domain error to the HTTP status the API reports for it

    NotFound -> 404, VotingClosed -> 403, InvalidArgument -> 400,
    Conflict -> 409, anything else -> 500.
    """
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))

    # VotingClosedError subclasses InvalidArgumentError, check it first
    if isinstance(error, VotingClosedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Voting is closed for this session")

    if isinstance(error, InvalidArgumentError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))

    if isinstance(error, ConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Too much concurrent activity on this session, try again",
        )

    metrics.record_error("api", error)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")


async def require_session(db, session_id: str):
    """Get voting session or raise 404."""
    session = await db.sessions.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Voting session not found")
    return session
