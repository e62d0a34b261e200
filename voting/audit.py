"""Audit recorder - best-effort, append-only vote event emission

record() never raises. An entry that fails validation is logged and
dropped. A failed write to the audit collection is logged
and a degraded copy of the entry (with the error attached) is appended to
a local JSON-lines file. If that also fails, the failure is logged and
dropped; the vote it describes has already committed.
"""

import asyncio
import json
import os
from datetime import datetime
from typing import Dict, Optional

from config import config, get_logger
from database.models import AuditAction, AuditEntry, utc_now
from database.repositories.audit import AuditRepository
from exceptions import AuditSinkError
from server.metrics import metrics
from voting.identity import short_hash

logger = get_logger(__name__).bind(component="audit_recorder")


class AuditRecorder:
    """Writes AuditEntry records for vote mutations"""

    def __init__(self, repository: AuditRepository, fallback_path: Optional[str] = None):
        self.repository = repository
        self.fallback_path = fallback_path or config.AUDIT_FALLBACK_PATH

    async def record(
        self,
        session_id: str,
        voter_id: str,
        action: AuditAction,
        details: Dict[str, Optional[str]],
        event_time: Optional[datetime] = None,
        severity: str = "INFO",
        category: str = "voting",
    ) -> Optional[AuditEntry]:
        """Append an audit entry

        Args:
            session_id: Session the vote belongs to
            voter_id: Hashed voter id
            action: new_vote, change_vote or delete_vote
            details: previous/new/deleted option labels
            event_time: When the vote mutation committed (defaults to now)
            severity: Log severity label stored with the entry
            category: voting, session, auth or system

        Returns:
            Stored entry, or None if the degraded path was taken
        """
        try:
            entry = AuditEntry(
                session_id=session_id,
                voter_id=voter_id,
                action=action,
                details=details,
                severity=severity,
                category=category,
                event_time=event_time or utc_now(),
            )
        except ValueError as e:
            # pydantic ValidationError is a ValueError subclass
            logger.error(
                "audit entry rejected",
                session_id=session_id,
                voter=short_hash(voter_id),
                action=action.value,
                error=str(e),
            )
            metrics.audit_failures.labels(action=action.value).inc()
            return None

        try:
            stored = await self.repository.append(entry)
        except Exception as e:
            error = AuditSinkError("Failed to write audit entry", action=action.value, original_error=e)
            logger.error(
                "audit write failed",
                session_id=session_id,
                voter=short_hash(voter_id),
                action=action.value,
                error=str(error),
            )
            metrics.audit_failures.labels(action=action.value).inc()
            await asyncio.to_thread(self._write_fallback, entry, error)
            return None

        logger.info(
            "audit recorded",
            session_id=session_id,
            voter=short_hash(voter_id),
            action=action.value,
            audit_id=stored.id,
        )
        return stored

    def _write_fallback(self, entry: AuditEntry, error: AuditSinkError) -> None:
        """Append a degraded record to the local fallback file (runs in a worker thread)"""
        degraded = entry.model_copy(update={"written_at": utc_now(), "error": str(error)})
        try:
            directory = os.path.dirname(self.fallback_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.fallback_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(degraded.model_dump(mode="json")) + "\n")
            metrics.audit_fallbacks.inc()
            logger.warning("audit entry written to fallback file", path=self.fallback_path)
        except OSError as e:
            logger.error("audit fallback write failed", path=self.fallback_path, error=str(e))
