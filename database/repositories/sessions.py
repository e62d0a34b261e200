"""Voting session repository

Sessions own the options list and the tally map. Outside a transaction
this repository only creates sessions and edits descriptive fields; the
options and tally are written exclusively through stage_* helpers inside
vote service transactions.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from config import get_logger
from database.gateway import Transaction
from database.models import SessionStatus, VotingSession, utc_now
from database.repositories.base import BaseRepository
from exceptions import InvalidArgumentError, NotFoundError

logger = get_logger(__name__).bind(component="session_repository")

# Fields update_details may touch; options/tally/revision are excluded
EDITABLE_FIELDS = ("title", "description", "status", "start_time", "end_time")


def validate_option_labels(options: List[str]) -> List[str]:
    """Strip labels and reject empty or duplicate ones"""
    cleaned = []
    for label in options:
        if not isinstance(label, str) or not label.strip():
            raise InvalidArgumentError("Option labels cannot be empty", field="options")
        label = label.strip()
        if label in cleaned:
            raise InvalidArgumentError("Option labels must be unique", field="options", value=label)
        cleaned.append(label)
    return cleaned


def _validate_window(start_time: Optional[datetime], end_time: Optional[datetime]) -> None:
    if start_time and end_time and end_time <= start_time:
        raise InvalidArgumentError("end_time must be after start_time", field="end_time", value=end_time)


class SessionRepository(BaseRepository):
    """Repository for voting session documents"""

    collection = "voting_sessions"
    model = VotingSession

    # -------------------------------------------------------------------------
    # Session CRUD
    # -------------------------------------------------------------------------

    async def create_session(
        self,
        title: str,
        options: List[str],
        description: str = "",
        created_by: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        status: SessionStatus = SessionStatus.PENDING,
    ) -> VotingSession:
        """Create a session with a zeroed tally for every option

        Args:
            title: Session title
            options: Ordered option labels (unique, non-empty)
            description: Free text
            created_by: Owner identifier
            start_time: Voting window start
            end_time: Voting window end

        Returns:
            Created session with its generated id
        """
        if not title or not title.strip():
            raise InvalidArgumentError("Session title cannot be empty", field="title")
        labels = validate_option_labels(options)
        _validate_window(start_time, end_time)

        now = utc_now()
        session = VotingSession(
            title=title.strip(),
            description=description,
            created_by=created_by,
            options=labels,
            tally={label: 0 for label in labels},
            status=status,
            start_time=start_time,
            end_time=end_time,
            created_at=now,
            updated_at=now,
        )
        created = await self._insert(session)

        logger.info(
            "created voting session",
            session_id=created.id,
            options=len(labels),
            created_by=created_by,
        )
        return created

    async def get_session(self, session_id: str) -> Optional[VotingSession]:
        """Get a session by id, or None"""
        return await self._get(session_id)

    async def list_sessions_for_owner(self, owner: str) -> List[VotingSession]:
        """Sessions created by an owner, newest first"""
        sessions = await self._query([("created_by", owner)])
        return sorted(sessions, key=lambda s: s.created_at or utc_now(), reverse=True)

    async def update_details(self, session_id: str, **fields: Any) -> VotingSession:
        """Update descriptive fields (title, description, status, window)

        Raises:
            InvalidArgumentError: unknown field or invalid window
            NotFoundError: session does not exist
        """
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise InvalidArgumentError("Field cannot be edited", field=sorted(unknown)[0])

        current = await self.get_session(session_id)
        if current is None:
            raise NotFoundError("Voting session not found", resource="voting_session", identifier=session_id)

        try:
            merged = VotingSession.model_validate({**current.model_dump(), **fields})
        except ValueError as e:
            raise InvalidArgumentError(f"Invalid session fields: {e}", field=sorted(fields)[0])
        if not merged.title or not merged.title.strip():
            raise InvalidArgumentError("Session title cannot be empty", field="title")
        _validate_window(merged.start_time, merged.end_time)

        merged.updated_at = utc_now()
        changes = merged.model_dump(mode="json", include=set(fields) | {"updated_at"})
        doc = await self.gateway.update_document(self.collection, session_id, changes)

        logger.info("updated voting session", session_id=session_id, fields=sorted(fields))
        return self._to_model(doc)

    # -------------------------------------------------------------------------
    # Transactional helpers
    # -------------------------------------------------------------------------

    async def get_in(self, txn: Transaction, session_id: str) -> VotingSession:
        """Read (and lock) a session inside a transaction"""
        try:
            doc = await txn.get(self.collection, session_id)
        except NotFoundError:
            raise NotFoundError("Voting session not found", resource="voting_session", identifier=session_id)
        return self._to_model(doc)

    def stage_state(
        self,
        txn: Transaction,
        session: VotingSession,
        tally: Dict[str, int],
        options: Optional[List[str]] = None,
    ) -> None:
        """Stage a tally (and optionally options) write, bumping the revision"""
        fields: Dict[str, Any] = {
            "tally": dict(tally),
            "revision": session.revision + 1,
            "updated_at": utc_now().isoformat(),
        }
        if options is not None:
            fields["options"] = list(options)
        txn.update(self.collection, session.id, fields)
