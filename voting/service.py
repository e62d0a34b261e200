"""Vote service - the single entry point for tally mutations

Every operation that changes a tally runs one gateway transaction that:
1. reads (and locks) the session document,
2. reads the voter's ledger entries,
3. stages the ledger write and the new tally computed with apply_delta.

The ledger lookup sits inside the transaction so a retried attempt sees
the winner's write. Audit records are emitted after commit and can never
fail the vote.

Option cascades (remove/rename) read the session first as well, then
rewrite the session and every ledger entry for the label in the same
transaction, so they serialize with casts and retractions on the session
lock.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from config import config, get_logger
from database.db import Database
from database.gateway import Transaction
from database.models import AuditAction, VoteRecord, VotingSession, utc_now
from database.repositories.sessions import validate_option_labels
from exceptions import ConflictError, InvalidArgumentError, NotFoundError, VotingClosedError
from server.metrics import metrics
from voting.audit import AuditRecorder
from voting.identity import hash_voter_id, short_hash
from voting.tally import apply_delta, rebuild_tally, tally_drift

logger = get_logger(__name__).bind(component="vote_service")


def _require(value: Optional[str], field: str) -> str:
    if not value or not value.strip():
        raise InvalidArgumentError(f"{field} is required", field=field)
    return value.strip()


class VoteService:
    """Orchestrates ledger, tally and audit for every vote mutation"""

    def __init__(
        self,
        db: Database,
        audit: Optional[AuditRecorder] = None,
        voter_hash_secret: Optional[str] = None,
        enforce_voting_window: Optional[bool] = None,
        max_attempts: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.audit = audit or AuditRecorder(db.audit)
        self.voter_hash_secret = voter_hash_secret
        self.enforce_voting_window = (
            config.ENFORCE_VOTING_WINDOW if enforce_voting_window is None else enforce_voting_window
        )
        self.max_attempts = max_attempts
        self.clock = clock

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def voter_hash(self, voter_id: str) -> str:
        """Keyed hash under which this voter is stored"""
        return hash_voter_id(voter_id, self.voter_hash_secret)

    def _check_window(self, session: VotingSession, now: datetime) -> None:
        if self.enforce_voting_window and not session.accepts_votes_at(now):
            raise VotingClosedError(
                "Voting session is not accepting votes",
                field="session_id",
                value=session.id,
            )

    async def _transact(self, fn: Callable[[Transaction], object]):
        try:
            return await self.db.gateway.run_transaction(fn, max_attempts=self.max_attempts)
        except ConflictError as e:
            metrics.record_error("vote_service", e)
            raise

    # -------------------------------------------------------------------------
    # Vote operations
    # -------------------------------------------------------------------------

    async def cast_vote(self, session_id: str, voter_id: str, option: str) -> VoteRecord:
        """Record or change a voter's vote

        Args:
            session_id: Target session
            voter_id: Authenticated voter identifier (hashed before storage)
            option: Option label, must be one of the session's current options

        Returns:
            The voter's current VoteRecord

        Raises:
            InvalidArgumentError: missing ids or unknown option
            VotingClosedError: session closed or outside its window
            NotFoundError: session does not exist
            ConflictError: retries exhausted under contention
        """
        session_id = _require(session_id, "session_id")
        option = _require(option, "option")
        voter_hash = self.voter_hash(voter_id)

        async def _cast(txn: Transaction) -> Tuple[VoteRecord, Optional[str], bool]:
            now = self.clock()
            session = await self.db.sessions.get_in(txn, session_id)
            if option not in session.options:
                raise InvalidArgumentError("Option is not part of this session", field="option", value=option)
            self._check_window(session, now)

            priors = await self.db.ledger.find_votes_in(txn, session_id, voter_hash)
            previous = priors[-1].option if priors else None

            # Same vote again: nothing to write
            if len(priors) == 1 and priors[0].option == option:
                return priors[0], previous, False

            tally = session.tally
            kept_count = False
            for prior in priors:
                if prior.option == option and not kept_count:
                    kept_count = True
                else:
                    tally = apply_delta(tally, prior.option, None)
                self.db.ledger.stage_delete(txn, prior.id)
            if not kept_count:
                tally = apply_delta(tally, None, option)

            record = self.db.ledger.stage_insert(
                txn,
                VoteRecord(session_id=session_id, voter_id=voter_hash, option=option, cast_at=now),
            )
            self.db.sessions.stage_state(txn, session, tally)
            return record, previous, True

        record, previous, changed = await self._transact(_cast)

        action = AuditAction.CHANGE_VOTE if previous is not None else AuditAction.NEW_VOTE
        if changed:
            metrics.votes_recorded.labels(action=action.value).inc()
        logger.info(
            "vote cast",
            session_id=session_id,
            voter=short_hash(voter_hash),
            option=option,
            previous_option=previous,
            changed=changed,
        )

        await self.audit.record(
            session_id,
            voter_hash,
            action,
            {"previous_option": previous, "new_option": option},
            event_time=record.cast_at if changed else self.clock(),
        )
        return record

    async def retract_vote(self, session_id: str, voter_id: str) -> None:
        """Remove a voter's vote and decrement its option

        Raises:
            NotFoundError: session missing or voter has no vote
            VotingClosedError: session closed or outside its window
        """
        session_id = _require(session_id, "session_id")
        voter_hash = self.voter_hash(voter_id)

        async def _retract(txn: Transaction) -> str:
            session = await self.db.sessions.get_in(txn, session_id)
            self._check_window(session, self.clock())

            priors = await self.db.ledger.find_votes_in(txn, session_id, voter_hash)
            if not priors:
                raise NotFoundError("No vote recorded for this voter", resource="vote", identifier=session_id)

            tally = session.tally
            for prior in priors:
                tally = apply_delta(tally, prior.option, None)
                self.db.ledger.stage_delete(txn, prior.id)
            self.db.sessions.stage_state(txn, session, tally)
            return priors[-1].option

        removed_option = await self._transact(_retract)

        metrics.votes_recorded.labels(action=AuditAction.DELETE_VOTE.value).inc()
        logger.info("vote retracted", session_id=session_id, voter=short_hash(voter_hash), option=removed_option)

        await self.audit.record(
            session_id,
            voter_hash,
            AuditAction.DELETE_VOTE,
            {"deleted_option": removed_option},
            event_time=self.clock(),
        )

    async def admin_delete_vote(self, vote_id: str) -> None:
        """Delete a ledger entry by id (administrative; ignores the voting window)

        Raises:
            NotFoundError: record does not exist
        """
        vote_id = _require(vote_id, "vote_id")

        # Locate the session first; the transaction re-reads the record
        record = await self.db.ledger.get_vote(vote_id)
        if record is None:
            raise NotFoundError("Vote record not found", resource="vote", identifier=vote_id)

        async def _delete(txn: Transaction) -> VoteRecord:
            session = await self.db.sessions.get_in(txn, record.session_id)
            current = await self.db.ledger.get_in(txn, vote_id)
            self.db.ledger.stage_delete(txn, vote_id)
            self.db.sessions.stage_state(txn, session, apply_delta(session.tally, current.option, None))
            return current

        deleted = await self._transact(_delete)

        metrics.votes_recorded.labels(action=AuditAction.DELETE_VOTE.value).inc()
        logger.info(
            "vote deleted by admin",
            session_id=deleted.session_id,
            vote_id=vote_id,
            option=deleted.option,
        )

        await self.audit.record(
            deleted.session_id,
            deleted.voter_id,
            AuditAction.DELETE_VOTE,
            {"deleted_option": deleted.option},
            event_time=self.clock(),
            severity="NOTICE",
        )

    # -------------------------------------------------------------------------
    # Option management
    # -------------------------------------------------------------------------

    async def add_option(self, session_id: str, label: str) -> VotingSession:
        """Append an option with a zero count

        Raises:
            InvalidArgumentError: empty or duplicate label
            NotFoundError: session does not exist
        """
        session_id = _require(session_id, "session_id")
        label = _require(label, "label")

        async def _add(txn: Transaction) -> VotingSession:
            session = await self.db.sessions.get_in(txn, session_id)
            options = validate_option_labels(session.options + [label])
            tally = dict(session.tally)
            tally[label] = 0
            self.db.sessions.stage_state(txn, session, tally, options=options)
            return session.model_copy(update={"options": options, "tally": tally, "revision": session.revision + 1})

        updated = await self._transact(_add)

        metrics.option_changes.labels(change="add").inc()
        logger.info("option added", session_id=session_id, option=label)
        return updated

    async def remove_option(self, session_id: str, label: str) -> None:
        """Remove an option, its tally key, and every ledger entry for it

        The session write and the ledger deletes commit together.

        Raises:
            InvalidArgumentError: label not in the session
            NotFoundError: session does not exist
        """
        session_id = _require(session_id, "session_id")
        label = _require(label, "label")

        async def _remove(txn: Transaction) -> int:
            session = await self.db.sessions.get_in(txn, session_id)
            if label not in session.options:
                raise InvalidArgumentError("Option is not part of this session", field="label", value=label)
            votes = await self.db.ledger.list_for_option_in(txn, session_id, label)

            for vote in votes:
                self.db.ledger.stage_delete(txn, vote.id)
            options = [opt for opt in session.options if opt != label]
            tally = {opt: count for opt, count in session.tally.items() if opt != label}
            self.db.sessions.stage_state(txn, session, tally, options=options)
            return len(votes)

        purged = await self._transact(_remove)

        metrics.option_changes.labels(change="remove").inc()
        logger.info("option removed", session_id=session_id, option=label, purged_votes=purged)

    async def rename_option(self, session_id: str, old_label: str, new_label: str) -> None:
        """Relabel an option in place, carrying its count and its ledger entries

        tally[new_label] is overwritten with tally[old_label]. The ledger
        entries are relabelled in the same transaction as the session, so a
        concurrent cast or retract sees either the old label everywhere or
        the new one everywhere.

        Raises:
            InvalidArgumentError: old label missing, new label empty or taken
            NotFoundError: session does not exist
        """
        session_id = _require(session_id, "session_id")
        old_label = _require(old_label, "old_label")
        new_label = _require(new_label, "new_label")
        if old_label == new_label:
            return

        async def _rename(txn: Transaction) -> int:
            session = await self.db.sessions.get_in(txn, session_id)
            if old_label not in session.options:
                raise InvalidArgumentError("Option is not part of this session", field="old_label", value=old_label)
            if new_label in session.options:
                raise InvalidArgumentError("Option label already exists", field="new_label", value=new_label)
            votes = await self.db.ledger.list_for_option_in(txn, session_id, old_label)

            for vote in votes:
                self.db.ledger.stage_option(txn, vote.id, new_label)
            options = [new_label if opt == old_label else opt for opt in session.options]
            tally = dict(session.tally)
            if old_label in tally:
                tally[new_label] = tally.pop(old_label)
            self.db.sessions.stage_state(txn, session, tally, options=options)
            return len(votes)

        relabelled = await self._transact(_rename)

        metrics.option_changes.labels(change="rename").inc()
        logger.info(
            "option renamed",
            session_id=session_id,
            old_label=old_label,
            new_label=new_label,
            relabelled_votes=relabelled,
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_session(self, session_id: str) -> VotingSession:
        session = await self.db.sessions.get_session(_require(session_id, "session_id"))
        if session is None:
            raise NotFoundError("Voting session not found", resource="voting_session", identifier=session_id)
        return session

    async def get_tally(self, session_id: str) -> Dict[str, int]:
        """Current option -> count mapping"""
        session = await self.get_session(session_id)
        return dict(session.tally)

    async def get_voter_choice(self, session_id: str, voter_id: str) -> Optional[str]:
        """Option the voter currently holds, or None"""
        session_id = _require(session_id, "session_id")
        record = await self.db.ledger.find_vote(session_id, self.voter_hash(voter_id))
        return record.option if record else None

    async def list_votes(self, session_id: str) -> List[VoteRecord]:
        """Ledger entries for a session (admin vote manager)"""
        await self.get_session(session_id)
        return await self.db.ledger.list_votes(session_id)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def reconcile_tally(self, session_id: str) -> Dict[str, int]:
        """Recount the tally from the ledger and store the result

        Returns:
            Per-option correction applied (empty when the tally was consistent)
        """
        session_id = _require(session_id, "session_id")

        async def _reconcile(txn: Transaction) -> Dict[str, int]:
            session = await self.db.sessions.get_in(txn, session_id)
            votes = await self.db.ledger.list_votes_in(txn, session_id)
            rebuilt = rebuild_tally(session.options, votes)
            drift = tally_drift(session.tally, rebuilt)
            if drift:
                self.db.sessions.stage_state(txn, session, rebuilt)
            return drift

        drift = await self._transact(_reconcile)

        metrics.tally_reconciliations.labels(outcome="corrected" if drift else "clean").inc()
        if drift:
            logger.warning("tally corrected from ledger", session_id=session_id, drift=drift)
        else:
            logger.info("tally consistent with ledger", session_id=session_id)
        return drift
