"""Vote ledger repository

One VoteRecord per (session, voter) pair. Voter ids reaching this layer
are already hashed. Single-record writes happen inside vote service
transactions, including the option cascades (remove/rename).
"""

from collections import Counter
from typing import Dict, List, Optional

from config import get_logger
from database.gateway import Transaction
from database.models import VoteRecord
from database.repositories.base import BaseRepository
from exceptions import NotFoundError

logger = get_logger(__name__).bind(component="ledger_repository")


class LedgerRepository(BaseRepository):
    """Repository for vote records"""

    collection = "votes"
    model = VoteRecord

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_vote(self, vote_id: str) -> Optional[VoteRecord]:
        return await self._get(vote_id)

    async def find_vote(self, session_id: str, voter_id: str) -> Optional[VoteRecord]:
        """Current vote of a voter in a session, or None"""
        votes = await self._query([("session_id", session_id), ("voter_id", voter_id)])
        return self._latest(votes)

    async def list_votes(self, session_id: str) -> List[VoteRecord]:
        """All ledger entries for a session, oldest first"""
        votes = await self._query([("session_id", session_id)])
        return sorted(votes, key=lambda v: v.cast_at)

    async def count_by_option(self, session_id: str) -> Dict[str, int]:
        """Ledger entries per option label"""
        votes = await self._query([("session_id", session_id)])
        return dict(Counter(v.option for v in votes))

    @staticmethod
    def _latest(votes: List[VoteRecord]) -> Optional[VoteRecord]:
        if not votes:
            return None
        return max(votes, key=lambda v: v.cast_at)

    # -------------------------------------------------------------------------
    # Transactional helpers
    # -------------------------------------------------------------------------

    async def find_votes_in(self, txn: Transaction, session_id: str, voter_id: str) -> List[VoteRecord]:
        """Every ledger entry for (session, voter), oldest first

        More than one entry means the uniqueness invariant was broken by an
        earlier writer; callers replace them all.
        """
        docs = await txn.query(self.collection, [("session_id", session_id), ("voter_id", voter_id)])
        votes = sorted((self._to_model(doc) for doc in docs), key=lambda v: v.cast_at)
        if len(votes) > 1:
            logger.warning(
                "duplicate ledger entries for voter",
                session_id=session_id,
                voter_id=voter_id[:12],
                count=len(votes),
            )
        return votes

    async def list_votes_in(self, txn: Transaction, session_id: str) -> List[VoteRecord]:
        """All ledger entries for a session, read inside a transaction"""
        docs = await txn.query(self.collection, [("session_id", session_id)])
        return [self._to_model(doc) for doc in docs]

    async def get_in(self, txn: Transaction, vote_id: str) -> VoteRecord:
        try:
            doc = await txn.get(self.collection, vote_id)
        except NotFoundError:
            raise NotFoundError("Vote record not found", resource="vote", identifier=vote_id)
        return self._to_model(doc)

    async def list_for_option_in(self, txn: Transaction, session_id: str, option: str) -> List[VoteRecord]:
        """Ledger entries in a session that hold an option, read inside a transaction"""
        docs = await txn.query(self.collection, [("session_id", session_id), ("option", option)])
        return [self._to_model(doc) for doc in docs]

    def stage_option(self, txn: Transaction, vote_id: str, option: str) -> None:
        txn.update(self.collection, vote_id, {"option": option})

    def stage_insert(self, txn: Transaction, record: VoteRecord) -> VoteRecord:
        vote_id = txn.insert(self.collection, record.to_document(), record.id)
        return record.model_copy(update={"id": vote_id})

    def stage_delete(self, txn: Transaction, vote_id: str) -> None:
        txn.delete(self.collection, vote_id)
