"""Document repositories over the persistence gateway"""

from database.repositories.base import BaseRepository
from database.repositories.sessions import SessionRepository
from database.repositories.ledger import LedgerRepository
from database.repositories.audit import AuditRepository

__all__ = [
    "BaseRepository",
    "SessionRepository",
    "LedgerRepository",
    "AuditRepository",
]
