"""Audit log repository (append-only)"""

from typing import List, Optional

from database.models import AuditEntry, utc_now
from database.repositories.base import BaseRepository


class AuditRepository(BaseRepository):
    """Repository for audit entries. Exposes no update or delete."""

    collection = "audit_logs"
    model = AuditEntry

    async def append(self, entry: AuditEntry) -> AuditEntry:
        """Write an entry, stamping written_at"""
        stamped = entry.model_copy(update={"written_at": utc_now()})
        return await self._insert(stamped)

    async def list_for_session(self, session_id: str) -> List[AuditEntry]:
        """Entries for one session, newest first"""
        entries = await self._query([("session_id", session_id)])
        return sorted(entries, key=lambda e: e.event_time, reverse=True)

    async def list_recent(
        self,
        limit: int = 100,
        severity: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[AuditEntry]:
        """Most recent entries across all sessions, newest first

        Args:
            limit: Maximum number of entries returned
            severity: Only entries with this severity (case-insensitive)
            category: Only entries with this category (case-insensitive)
        """
        filters = []
        if severity:
            filters.append(("severity", severity.upper()))
        if category:
            filters.append(("category", category.lower()))

        entries = await self._query(filters)
        entries.sort(key=lambda e: e.event_time, reverse=True)
        return entries[:limit]
