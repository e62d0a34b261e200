"""
Tests for the Vote Service

Covers the ledger/tally invariants end to end on the in-memory store:
1. Cast, change and retract (scenarios from a two-option session)
2. Idempotent recast and change-vote arithmetic
3. Uniqueness and tally correctness under asyncio.gather concurrency
4. Bounded retries surfacing as ConflictError
5. Option add/rename/remove cascades and tally reconciliation
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from database.models import AuditAction, SessionStatus, VoteRecord
from exceptions import ConflictError, InvalidArgumentError, NotFoundError, TransactionConflict, VotingClosedError
from voting.service import VoteService
from voting.tally import rebuild_tally


async def assert_consistent(db, session_id: str):
    """tally[o] equals the ledger count for o, for every option"""
    session = await db.sessions.get_session(session_id)
    counts = await db.ledger.count_by_option(session_id)
    for option in session.options:
        assert session.tally.get(option, 0) == counts.get(option, 0), option
    assert session.total_votes() == sum(counts.get(o, 0) for o in session.options)


async def _ledger_for(service, session_id: str, voter_id: str):
    return await service.db.gateway.query_documents(
        "votes", [("session_id", session_id), ("voter_id", service.voter_hash(voter_id))]
    )


@pytest.fixture
async def two_option_session(db):
    return await db.sessions.create_session(title="Colour", options=["Red", "Blue"])


class TestCastRetractScenarios:
    """Cast, change, retract on a Red/Blue session"""

    async def test_first_vote_counts_and_audits(self, service, db, two_option_session):
        s = two_option_session

        record = await service.cast_vote(s.id, "u1", "Red")

        assert record.option == "Red"
        assert record.id
        assert await service.get_tally(s.id) == {"Red": 1, "Blue": 0}
        assert len(await _ledger_for(service, s.id, "u1")) == 1

        entries = await db.audit.list_for_session(s.id)
        assert len(entries) == 1
        assert entries[0].action == AuditAction.NEW_VOTE
        assert entries[0].details == {"previous_option": None, "new_option": "Red"}

    async def test_change_vote_moves_count(self, service, db, two_option_session):
        s = two_option_session
        await service.cast_vote(s.id, "u1", "Red")

        record = await service.cast_vote(s.id, "u1", "Blue")

        assert record.option == "Blue"
        assert await service.get_tally(s.id) == {"Red": 0, "Blue": 1}
        assert await service.get_voter_choice(s.id, "u1") == "Blue"
        assert len(await _ledger_for(service, s.id, "u1")) == 1

        changes = [e for e in await db.audit.list_for_session(s.id) if e.action == AuditAction.CHANGE_VOTE]
        assert len(changes) == 1
        assert changes[0].details == {"previous_option": "Red", "new_option": "Blue"}

    async def test_retract_removes_vote(self, service, db, two_option_session):
        s = two_option_session
        await service.cast_vote(s.id, "u1", "Red")
        await service.cast_vote(s.id, "u1", "Blue")

        await service.retract_vote(s.id, "u1")

        assert await service.get_tally(s.id) == {"Red": 0, "Blue": 0}
        assert await service.get_voter_choice(s.id, "u1") is None
        assert await _ledger_for(service, s.id, "u1") == []

        deletes = [e for e in await db.audit.list_for_session(s.id) if e.action == AuditAction.DELETE_VOTE]
        assert len(deletes) == 1
        assert deletes[0].details == {"deleted_option": "Blue"}

    async def test_remove_option_drops_key_and_votes(self, service, db, two_option_session):
        s = two_option_session
        await service.cast_vote(s.id, "u1", "Red")
        await service.cast_vote(s.id, "u2", "Red")
        await service.cast_vote(s.id, "u3", "Blue")

        await service.remove_option(s.id, "Red")

        session = await service.get_session(s.id)
        assert session.options == ["Blue"]
        assert "Red" not in session.tally
        assert session.tally == {"Blue": 1}
        assert await db.ledger.count_by_option(s.id) == {"Blue": 1}

    async def test_concurrent_voters_same_option(self, service, db):
        s = await db.sessions.create_session(title="Only blue", options=["Blue"])

        await asyncio.gather(
            service.cast_vote(s.id, "u1", "Blue"),
            service.cast_vote(s.id, "u2", "Blue"),
        )

        assert await service.get_tally(s.id) == {"Blue": 2}
        votes = await db.ledger.list_votes(s.id)
        assert len(votes) == 2
        assert {v.voter_id for v in votes} == {service.voter_hash("u1"), service.voter_hash("u2")}


class TestVoteInvariants:
    """Idempotence, change arithmetic, uniqueness, concurrency"""

    async def test_recast_same_option_is_idempotent(self, service, db, session):
        first = await service.cast_vote(session.id, "u1", "Red")
        after_first = await service.get_session(session.id)

        second = await service.cast_vote(session.id, "u1", "Red")
        after_second = await service.get_session(session.id)

        assert second.id == first.id
        assert after_second.tally == after_first.tally
        assert after_second.revision == after_first.revision
        assert len(await _ledger_for(service, session.id, "u1")) == 1

    async def test_recast_same_option_audits_change_vote(self, service, db, session):
        await service.cast_vote(session.id, "u1", "Red")
        await service.cast_vote(session.id, "u1", "Red")

        actions = sorted(e.action.value for e in await db.audit.list_for_session(session.id))
        assert actions == ["change_vote", "new_vote"]

    async def test_change_vote_shifts_exactly_one(self, service, db, session):
        await service.cast_vote(session.id, "u2", "Red")
        await service.cast_vote(session.id, "u3", "Blue")
        await service.cast_vote(session.id, "u1", "Red")
        before = await service.get_tally(session.id)

        await service.cast_vote(session.id, "u1", "Blue")
        after = await service.get_tally(session.id)

        assert after["Red"] == before["Red"] - 1
        assert after["Blue"] == before["Blue"] + 1
        assert after["Green"] == before["Green"]
        await assert_consistent(db, session.id)

    async def test_sequence_keeps_one_record_per_voter(self, service, db, session):
        for option in ["Red", "Blue", "Blue", "Green", "Red"]:
            await service.cast_vote(session.id, "u1", option)
        await service.retract_vote(session.id, "u1")
        await service.cast_vote(session.id, "u1", "Green")

        assert len(await _ledger_for(service, session.id, "u1")) == 1
        assert await service.get_tally(session.id) == {"Red": 0, "Blue": 0, "Green": 1}

    async def test_revision_bumps_on_each_change(self, service, session):
        await service.cast_vote(session.id, "u1", "Red")
        await service.cast_vote(session.id, "u1", "Blue")
        await service.retract_vote(session.id, "u1")

        assert (await service.get_session(session.id)).revision == 3

    async def test_many_concurrent_voters(self, service, db, session):
        voters = [f"voter-{i}" for i in range(25)]

        await asyncio.gather(*(service.cast_vote(session.id, v, "Green") for v in voters))

        assert (await service.get_tally(session.id))["Green"] == 25
        votes = await db.ledger.list_votes(session.id)
        assert len({v.voter_id for v in votes}) == 25
        await assert_consistent(db, session.id)

    async def test_concurrent_changes_from_one_voter(self, service, db, session):
        await asyncio.gather(
            service.cast_vote(session.id, "u1", "Red"),
            service.cast_vote(session.id, "u1", "Blue"),
            service.cast_vote(session.id, "u1", "Green"),
        )

        assert len(await _ledger_for(service, session.id, "u1")) == 1
        assert (await service.get_session(session.id)).total_votes() == 1
        await assert_consistent(db, session.id)

    async def test_concurrent_mixed_operations(self, service, db, session):
        await asyncio.gather(*(service.cast_vote(session.id, f"u{i}", "Red") for i in range(10)))

        await asyncio.gather(
            *(service.cast_vote(session.id, f"u{i}", "Blue") for i in range(0, 10, 2)),
            *(service.retract_vote(session.id, f"u{i}") for i in range(1, 10, 2)),
        )

        assert await service.get_tally(session.id) == {"Red": 0, "Blue": 5, "Green": 0}
        await assert_consistent(db, session.id)

    async def test_duplicate_ledger_entries_collapse_on_recast(self, service, db, store, session):
        # Simulate a broken uniqueness invariant left by an earlier writer
        t0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for offset, option in enumerate(["Red", "Blue"]):
            record = VoteRecord(
                session_id=session.id,
                voter_id=service.voter_hash("u1"),
                option=option,
                cast_at=t0 + timedelta(minutes=offset),
            )
            await store.insert_document("votes", record.to_document())
        await store.update_document("voting_sessions", session.id, {"tally": {"Red": 1, "Blue": 1, "Green": 0}})

        await service.cast_vote(session.id, "u1", "Blue")

        assert len(await _ledger_for(service, session.id, "u1")) == 1
        assert await service.get_tally(session.id) == {"Red": 0, "Blue": 1, "Green": 0}


class TestVoteErrors:
    """NotFound, InvalidArgument, VotingClosed, Conflict"""

    async def test_missing_session(self, service):
        with pytest.raises(NotFoundError):
            await service.cast_vote("no-such-session", "u1", "Red")

    async def test_unknown_option_rejected_without_mutation(self, service, db, session):
        with pytest.raises(InvalidArgumentError):
            await service.cast_vote(session.id, "u1", "Purple")

        assert await service.get_tally(session.id) == {"Red": 0, "Blue": 0, "Green": 0}
        assert await db.ledger.list_votes(session.id) == []
        assert await db.audit.list_for_session(session.id) == []

    @pytest.mark.parametrize("voter_id", ["", "   "])
    async def test_blank_voter_rejected(self, service, session, voter_id):
        with pytest.raises(InvalidArgumentError):
            await service.cast_vote(session.id, voter_id, "Red")

    async def test_blank_session_rejected(self, service):
        with pytest.raises(InvalidArgumentError):
            await service.cast_vote("", "u1", "Red")

    async def test_retract_without_vote(self, service, session):
        with pytest.raises(NotFoundError):
            await service.retract_vote(session.id, "u1")

    async def test_closed_session_rejects_votes(self, service, db, session):
        await db.sessions.update_details(session.id, status=SessionStatus.CLOSED)

        with pytest.raises(VotingClosedError):
            await service.cast_vote(session.id, "u1", "Red")

    async def test_closed_session_rejects_retraction(self, service, db, session):
        await service.cast_vote(session.id, "u1", "Red")
        await db.sessions.update_details(session.id, status=SessionStatus.CLOSED)

        with pytest.raises(VotingClosedError):
            await service.retract_vote(session.id, "u1")
        assert await service.get_voter_choice(session.id, "u1") == "Red"

    async def test_window_uses_service_clock(self, service, db, recorder):
        s = await db.sessions.create_session(
            title="January poll",
            options=["Yes", "No"],
            start_time=datetime(2026, 1, 1, tzinfo=timezone.utc),
            end_time=datetime(2026, 1, 31, tzinfo=timezone.utc),
        )

        def service_at(now):
            return VoteService(db, audit=recorder, voter_hash_secret=service.voter_hash_secret,
                               enforce_voting_window=True, clock=lambda: now)

        with pytest.raises(VotingClosedError):
            await service_at(datetime(2025, 12, 31, tzinfo=timezone.utc)).cast_vote(s.id, "u1", "Yes")
        with pytest.raises(VotingClosedError):
            await service_at(datetime(2026, 2, 1, tzinfo=timezone.utc)).cast_vote(s.id, "u1", "Yes")

        record = await service_at(datetime(2026, 1, 15, tzinfo=timezone.utc)).cast_vote(s.id, "u1", "Yes")
        assert record.cast_at == datetime(2026, 1, 15, tzinfo=timezone.utc)

    async def test_window_not_enforced_when_disabled(self, service, db, recorder, session):
        await db.sessions.update_details(session.id, status=SessionStatus.CLOSED)
        lenient = VoteService(db, audit=recorder, voter_hash_secret=service.voter_hash_secret, enforce_voting_window=False)

        await lenient.cast_vote(session.id, "u1", "Red")

        assert (await lenient.get_tally(session.id))["Red"] == 1

    async def test_exhausted_retries_raise_conflict(self, service, store, session, monkeypatch):
        async def always_conflict(fn):
            raise TransactionConflict("lost race", collection="voting_sessions", document_id=session.id)

        monkeypatch.setattr(store, "_run_once", always_conflict)

        with pytest.raises(ConflictError) as exc_info:
            await service.cast_vote(session.id, "u1", "Red")

        assert exc_info.value.attempts == store.max_attempts
        assert exc_info.value.is_retryable
        monkeypatch.undo()
        assert await service.get_tally(session.id) == {"Red": 0, "Blue": 0, "Green": 0}


class TestAdminDeleteVote:
    """Deleting a ledger entry by id"""

    async def test_deletes_and_decrements(self, service, db, session):
        record = await service.cast_vote(session.id, "u1", "Blue")
        await service.cast_vote(session.id, "u2", "Blue")

        await service.admin_delete_vote(record.id)

        assert await service.get_tally(session.id) == {"Red": 0, "Blue": 1, "Green": 0}
        assert await db.ledger.get_vote(record.id) is None

        deletes = [e for e in await db.audit.list_for_session(session.id) if e.action == AuditAction.DELETE_VOTE]
        assert len(deletes) == 1
        assert deletes[0].voter_id == service.voter_hash("u1")
        assert deletes[0].details == {"deleted_option": "Blue"}
        assert deletes[0].severity == "NOTICE"

    async def test_ignores_voting_window(self, service, db, session):
        record = await service.cast_vote(session.id, "u1", "Red")
        await db.sessions.update_details(session.id, status=SessionStatus.CLOSED)

        await service.admin_delete_vote(record.id)

        assert (await service.get_tally(session.id))["Red"] == 0

    async def test_floors_at_zero_on_drifted_tally(self, service, store, session):
        record = await service.cast_vote(session.id, "u1", "Red")
        await store.update_document("voting_sessions", session.id, {"tally": {"Red": 0, "Blue": 0, "Green": 0}})

        await service.admin_delete_vote(record.id)

        assert (await service.get_tally(session.id))["Red"] == 0

    async def test_missing_record(self, service):
        with pytest.raises(NotFoundError):
            await service.admin_delete_vote("does-not-exist")


class TestOptionManagement:
    """add_option, rename_option, remove_option"""

    async def test_add_option_starts_at_zero(self, service, session):
        updated = await service.add_option(session.id, "Yellow")

        assert updated.options == ["Red", "Blue", "Green", "Yellow"]
        assert (await service.get_tally(session.id))["Yellow"] == 0

        await service.cast_vote(session.id, "u1", "Yellow")
        assert (await service.get_tally(session.id))["Yellow"] == 1

    async def test_add_duplicate_option(self, service, session):
        with pytest.raises(InvalidArgumentError):
            await service.add_option(session.id, "Red")

    async def test_rename_carries_count_and_ledger(self, service, db, session):
        await service.cast_vote(session.id, "u1", "Red")
        await service.cast_vote(session.id, "u2", "Red")

        await service.rename_option(session.id, "Red", "Crimson")

        s = await service.get_session(session.id)
        assert s.options == ["Crimson", "Blue", "Green"]
        assert s.tally == {"Crimson": 2, "Blue": 0, "Green": 0}
        assert await service.get_voter_choice(session.id, "u1") == "Crimson"
        await assert_consistent(db, session.id)

    async def test_old_label_rejected_after_rename(self, service, session):
        await service.rename_option(session.id, "Red", "Crimson")

        with pytest.raises(InvalidArgumentError):
            await service.cast_vote(session.id, "u1", "Red")

    async def test_change_after_rename_moves_renamed_count(self, service, db, session):
        await service.cast_vote(session.id, "u1", "Red")
        await service.rename_option(session.id, "Red", "Crimson")

        await service.cast_vote(session.id, "u1", "Blue")

        assert await service.get_tally(session.id) == {"Crimson": 0, "Blue": 1, "Green": 0}
        await assert_consistent(db, session.id)

    @pytest.mark.parametrize(
        "racing_action,expected_crimson,expected_choice",
        [("cast", 2, "Crimson"), ("retract", 1, None)],
    )
    async def test_rename_serializes_with_racing_vote(
        self, service, db, session, monkeypatch, racing_action, expected_crimson, expected_choice
    ):
        await service.cast_vote(session.id, "u1", "Red")
        await service.cast_vote(session.id, "u2", "Red")

        list_for_option_in = db.ledger.list_for_option_in
        racing = []

        async def list_while_voter_races(txn, session_id, option):
            # u1 acts while the rename is between its session read and its ledger rewrite
            if not racing:
                if racing_action == "cast":
                    racing.append(asyncio.create_task(service.cast_vote(session_id, "u1", "Crimson")))
                else:
                    racing.append(asyncio.create_task(service.retract_vote(session_id, "u1")))
                await asyncio.sleep(0)
            return await list_for_option_in(txn, session_id, option)

        monkeypatch.setattr(db.ledger, "list_for_option_in", list_while_voter_races)

        await service.rename_option(session.id, "Red", "Crimson")
        await racing[0]

        s = await service.get_session(session.id)
        assert s.tally == {"Crimson": expected_crimson, "Blue": 0, "Green": 0}
        assert s.tally == rebuild_tally(s.options, await db.ledger.list_votes(session.id))
        assert await service.get_voter_choice(session.id, "u1") == expected_choice
        await assert_consistent(db, session.id)

    async def test_remove_serializes_with_racing_cast(self, service, db, session, monkeypatch):
        await service.cast_vote(session.id, "u1", "Red")
        await service.cast_vote(session.id, "u2", "Blue")

        list_for_option_in = db.ledger.list_for_option_in
        racing = []

        async def list_while_voter_races(txn, session_id, option):
            if not racing:
                racing.append(asyncio.create_task(service.cast_vote(session_id, "u1", "Blue")))
                await asyncio.sleep(0)
            return await list_for_option_in(txn, session_id, option)

        monkeypatch.setattr(db.ledger, "list_for_option_in", list_while_voter_races)

        await service.remove_option(session.id, "Red")
        await racing[0]

        s = await service.get_session(session.id)
        assert s.tally == {"Blue": 2, "Green": 0}
        assert s.tally == rebuild_tally(s.options, await db.ledger.list_votes(session.id))

    async def test_rename_with_concurrent_voters(self, service, db, session):
        voters = [f"u{i}" for i in range(6)]
        for voter in voters:
            await service.cast_vote(session.id, voter, "Red")

        await asyncio.gather(
            service.rename_option(session.id, "Red", "Crimson"),
            *[service.cast_vote(session.id, voter, "Blue") for voter in voters[:3]],
            service.retract_vote(session.id, voters[3]),
        )

        s = await service.get_session(session.id)
        assert s.tally == {"Crimson": 2, "Blue": 3, "Green": 0}
        await assert_consistent(db, session.id)

    async def test_rename_to_existing_label(self, service, session):
        with pytest.raises(InvalidArgumentError):
            await service.rename_option(session.id, "Red", "Blue")

    async def test_rename_missing_label(self, service, session):
        with pytest.raises(InvalidArgumentError):
            await service.rename_option(session.id, "Purple", "Violet")

    async def test_remove_missing_label(self, service, session):
        with pytest.raises(InvalidArgumentError):
            await service.remove_option(session.id, "Purple")

    async def test_removed_option_rejects_votes(self, service, session):
        await service.remove_option(session.id, "Green")

        with pytest.raises(InvalidArgumentError):
            await service.cast_vote(session.id, "u1", "Green")

    async def test_option_changes_on_missing_session(self, service):
        with pytest.raises(NotFoundError):
            await service.add_option("missing", "Yellow")
        with pytest.raises(NotFoundError):
            await service.remove_option("missing", "Red")
        with pytest.raises(NotFoundError):
            await service.rename_option("missing", "Red", "Crimson")


class TestReconcileTally:
    """Recounting the stored tally from the ledger"""

    async def test_consistent_tally_is_untouched(self, service, session):
        await service.cast_vote(session.id, "u1", "Red")
        revision = (await service.get_session(session.id)).revision

        assert await service.reconcile_tally(session.id) == {}
        assert (await service.get_session(session.id)).revision == revision

    async def test_drifted_tally_is_corrected(self, service, db, store, session):
        await service.cast_vote(session.id, "u1", "Red")
        await store.update_document("voting_sessions", session.id, {"tally": {"Red": 5, "Blue": 0, "Green": 0}})

        drift = await service.reconcile_tally(session.id)

        assert drift == {"Red": -4}
        assert await service.get_tally(session.id) == {"Red": 1, "Blue": 0, "Green": 0}
        await assert_consistent(db, session.id)

    async def test_reconcile_missing_session(self, service):
        with pytest.raises(NotFoundError):
            await service.reconcile_tally("missing")


class TestReads:
    """get_tally, get_voter_choice, list_votes"""

    async def test_voter_choice_is_per_voter(self, service, session):
        await service.cast_vote(session.id, "u1", "Red")

        assert await service.get_voter_choice(session.id, "u1") == "Red"
        assert await service.get_voter_choice(session.id, "u2") is None

    async def test_list_votes_stores_only_hashes(self, service, session):
        await service.cast_vote(session.id, "alice@example.com", "Red")

        votes = await service.list_votes(session.id)

        assert len(votes) == 1
        assert votes[0].voter_id == service.voter_hash("alice@example.com")
        assert "alice" not in votes[0].voter_id

    async def test_get_tally_missing_session(self, service):
        with pytest.raises(NotFoundError):
            await service.get_tally("missing")
