"""Database facade with repository pattern

Wires one document gateway to the session, ledger and audit repositories.
"""

from typing import Optional

from config import config, get_logger
from database.gateway import DocumentGateway
from database.memory_store import MemoryDocumentStore
from database.postgres_store import PostgresDocumentStore
from database.repositories import AuditRepository, LedgerRepository, SessionRepository
from exceptions import ConfigurationError

logger = get_logger(__name__).bind(component="database")


class Database:
    """Document-backed database with repository pattern

    Usage:
        db = await Database.create()
        session = await db.sessions.get_session(session_id)
        votes = await db.ledger.list_votes(session_id)
        await db.close()
    """

    gateway: DocumentGateway

    sessions: SessionRepository
    ledger: LedgerRepository
    audit: AuditRepository

    def __init__(self, gateway: DocumentGateway):
        """Initialize with a gateway and repositories

        Use Database.create() unless a gateway is already at hand (tests).
        """
        self.gateway = gateway

        self.sessions = SessionRepository(gateway)
        self.ledger = LedgerRepository(gateway)
        self.audit = AuditRepository(gateway)

        logger.info("database initialized with repositories", store=type(gateway).__name__)

    @classmethod
    async def create(cls, store: Optional[str] = None, dsn: Optional[str] = None) -> "Database":
        """Create database for the configured store

        Args:
            store: "memory" or "postgres" (defaults to config.STORE)
            dsn: PostgreSQL connection string (postgres store only)

        Returns:
            Initialized Database instance
        """
        store = store or config.STORE

        if store == "memory":
            logger.warning("using in-memory document store - data is not persisted")
            return cls(MemoryDocumentStore())

        if store == "postgres":
            gateway = await PostgresDocumentStore.create(dsn=dsn)
            await gateway.init_schema()
            return cls(gateway)

        raise ConfigurationError(f"Unknown document store: {store}", config_key="BALLOTBOX_STORE")

    async def close(self):
        """Release the underlying store"""
        await self.gateway.close()
