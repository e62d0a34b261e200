"""
Database Models for ballotbox

Pydantic models with runtime validation for the voting entities.
Documents are stored JSON-encoded (datetimes as ISO strings); the
document key travels as `id`.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Timezone-aware current time"""
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CLOSED = "closed"


class AuditAction(str, Enum):
    NEW_VOTE = "new_vote"
    CHANGE_VOTE = "change_vote"
    DELETE_VOTE = "delete_vote"


class DocumentModel(BaseModel):
    """Base for models persisted through the document gateway"""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        """JSON-compatible body for storage (id excluded)"""
        return self.model_dump(mode="json", exclude={"id"})

    @classmethod
    def from_document(cls, doc: Dict[str, Any]):
        return cls.model_validate(doc)


class VotingSession(DocumentModel):
    """A single poll: options, tally, and validity window

    Invariant: tally keys are a subset of options, every value is >= 0,
    and the values sum to the number of ledger entries for the session.
    """

    title: str
    description: str = ""
    created_by: Optional[str] = None
    options: List[str] = Field(default_factory=list)
    tally: Dict[str, int] = Field(default_factory=dict)
    status: SessionStatus = SessionStatus.PENDING
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    revision: int = 0  # Bumped by every tally/options write

    @field_validator("start_time", "end_time", "created_at", "updated_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive datetimes are taken as UTC"""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("tally")
    @classmethod
    def validate_tally(cls, v: Dict[str, int]) -> Dict[str, int]:
        for option, count in v.items():
            if count < 0:
                raise ValueError(f"Negative count for option {option}")
        return v

    def accepts_votes_at(self, now: datetime) -> bool:
        """Closed sessions and instants outside [start_time, end_time] reject votes"""
        if self.status == SessionStatus.CLOSED:
            return False
        if self.start_time and now < self.start_time:
            return False
        if self.end_time and now > self.end_time:
            return False
        return True

    def total_votes(self) -> int:
        return sum(self.tally.values())


class VoteRecord(DocumentModel):
    """Ledger entry: the current vote of one voter in one session"""

    session_id: str
    voter_id: str  # Keyed hash, never the raw identifier
    option: str
    cast_at: datetime


AUDIT_SEVERITIES = ("DEBUG", "INFO", "NOTICE", "WARNING", "ERROR", "CRITICAL")
AUDIT_CATEGORIES = ("voting", "session", "auth", "system")


class AuditEntry(DocumentModel):
    """Append-only record of a vote mutation"""

    session_id: str
    voter_id: str
    action: AuditAction
    details: Dict[str, Optional[str]] = Field(default_factory=dict)
    severity: str = "INFO"
    category: str = "voting"
    event_time: datetime
    written_at: Optional[datetime] = None
    error: Optional[str] = None  # Set only on degraded fallback records

    @field_validator("severity")
    @classmethod
    def validate_severity(cls, v: str) -> str:
        v = v.upper()
        if v not in AUDIT_SEVERITIES:
            raise ValueError(f"Unknown severity: {v}")
        return v

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: str) -> str:
        v = v.lower()
        if v not in AUDIT_CATEGORIES:
            raise ValueError(f"Unknown category: {v}")
        return v
