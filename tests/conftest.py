"""Shared fixtures: in-memory store, database, vote service, one open session"""

import pytest

from database.db import Database
from database.memory_store import MemoryDocumentStore
from voting.audit import AuditRecorder
from voting.service import VoteService

TEST_VOTER_SECRET = "test-voter-secret"


@pytest.fixture
def store():
    """Memory store with no backoff sleep between retries"""
    return MemoryDocumentStore(retry_delay=0)


@pytest.fixture
def db(store):
    return Database(store)


@pytest.fixture
def fallback_path(tmp_path):
    return str(tmp_path / "audit_fallback.jsonl")


@pytest.fixture
def recorder(db, fallback_path):
    return AuditRecorder(db.audit, fallback_path=fallback_path)


@pytest.fixture
def service(db, recorder):
    return VoteService(
        db,
        audit=recorder,
        voter_hash_secret=TEST_VOTER_SECRET,
        enforce_voting_window=True,
    )


@pytest.fixture
async def session(db):
    """Open session with three options and an empty tally"""
    return await db.sessions.create_session(
        title="Favourite colour",
        options=["Red", "Blue", "Green"],
        created_by="owner-1",
    )
