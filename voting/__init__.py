"""Voting core - ledger, tally and audit kept consistent

- Vote service: cast, change, retract and admin-delete votes in one
  transaction over the session document and the ledger
- Tally aggregator: pure delta arithmetic and recount from the ledger
- Audit recorder: best-effort append-only event log
"""

from voting.tally import apply_delta, rebuild_tally, tally_drift
from voting.audit import AuditRecorder
from voting.service import VoteService

__all__ = ["VoteService", "AuditRecorder", "apply_delta", "rebuild_tally", "tally_drift"]
