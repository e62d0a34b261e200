"""FastAPI Dependencies

Centralized dependency injection for reuse across all route modules.
Provides type-safe, testable access to shared resources.
"""

from fastapi import HTTPException, Request, status

from database.db import Database
from voting.service import VoteService


def get_db(request: Request) -> Database:
    """Dependency to get shared database instance from app state

    Usage in routes:
        @router.get("/endpoint")
        async def endpoint(db: Database = Depends(get_db)):
            session = await db.sessions.get_session(session_id)
            return session
    """
    return request.app.state.db


def get_vote_service(request: Request) -> VoteService:
    """Dependency to get the shared VoteService from app state"""
    return request.app.state.vote_service


async def get_voter_id(request: Request) -> str:
    """Caller identity asserted by the upstream identity provider

    The provider authenticates the user and forwards the id in X-Voter-ID.
    The raw id is hashed by the vote service before it is stored.

    Raises:
        HTTPException 401 if the header is missing or blank
    """
    voter_id = request.headers.get("x-voter-id", "").strip()
    if not voter_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
        )
    return voter_id
