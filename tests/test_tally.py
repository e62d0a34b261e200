"""
Tests for tally arithmetic

apply_delta is the only path by which a stored tally changes, so every
combination of present/missing keys and None endpoints is covered.
"""

import itertools
from datetime import datetime, timezone

import pytest

from database.models import VoteRecord
from voting.tally import apply_delta, rebuild_tally, tally_drift


def _vote(option: str, voter: str = "v") -> VoteRecord:
    return VoteRecord(
        session_id="s1",
        voter_id=voter,
        option=option,
        cast_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


class TestApplyDelta:
    """Single-vote moves between options"""

    def test_new_vote_increments_present_key(self):
        assert apply_delta({"A": 2, "B": 0}, None, "B") == {"A": 2, "B": 1}

    def test_new_vote_on_missing_key_starts_at_one(self):
        assert apply_delta({"A": 2}, None, "B") == {"A": 2, "B": 1}

    def test_retraction_decrements(self):
        assert apply_delta({"A": 2, "B": 1}, "A", None) == {"A": 1, "B": 1}

    def test_retraction_floors_at_zero(self):
        assert apply_delta({"A": 0}, "A", None) == {"A": 0}

    def test_retraction_of_missing_key_leaves_it_missing(self):
        assert apply_delta({"A": 1}, "B", None) == {"A": 1}

    def test_change_moves_one_vote(self):
        assert apply_delta({"A": 1, "B": 0}, "A", "B") == {"A": 0, "B": 1}

    def test_change_from_missing_key_only_increments(self):
        assert apply_delta({"B": 3}, "A", "B") == {"B": 4}

    def test_change_to_missing_key_creates_it(self):
        assert apply_delta({"A": 1}, "A", "C") == {"A": 0, "C": 1}

    def test_same_option_is_noop(self):
        assert apply_delta({"A": 5}, "A", "A") == {"A": 5}

    def test_both_none_is_noop(self):
        assert apply_delta({"A": 5}, None, None) == {"A": 5}

    def test_input_is_not_mutated(self):
        tally = {"A": 1, "B": 2}
        result = apply_delta(tally, "A", "B")
        assert tally == {"A": 1, "B": 2}
        assert result is not tally

    def test_noop_returns_copy(self):
        tally = {"A": 1}
        result = apply_delta(tally, "A", "A")
        assert result == tally
        assert result is not tally

    @pytest.mark.parametrize(
        "from_option,to_option",
        list(itertools.product([None, "A", "B", "Z"], repeat=2)),
    )
    def test_counts_never_negative(self, from_option, to_option):
        """Every move over a tally with a zero entry stays non-negative"""
        result = apply_delta({"A": 0, "B": 1}, from_option, to_option)
        assert all(count >= 0 for count in result.values())

    @pytest.mark.parametrize(
        "from_option,to_option",
        [("A", "B"), ("B", "A"), ("A", "A")],
    )
    def test_change_preserves_total_when_source_positive(self, from_option, to_option):
        tally = {"A": 3, "B": 2}
        assert sum(apply_delta(tally, from_option, to_option).values()) == 5


class TestRebuildTally:
    """Recounting a tally from ledger entries"""

    def test_counts_each_option(self):
        votes = [_vote("A", "v1"), _vote("B", "v2"), _vote("A", "v3")]
        assert rebuild_tally(["A", "B", "C"], votes) == {"A": 2, "B": 1, "C": 0}

    def test_ignores_votes_outside_options(self):
        votes = [_vote("A", "v1"), _vote("Gone", "v2")]
        assert rebuild_tally(["A"], votes) == {"A": 1}

    def test_empty_ledger_gives_zeroes(self):
        assert rebuild_tally(["A", "B"], []) == {"A": 0, "B": 0}


class TestTallyDrift:
    """Differences between a stored tally and a recount"""

    def test_consistent_tally_has_no_drift(self):
        assert tally_drift({"A": 1, "B": 0}, {"A": 1, "B": 0}) == {}

    def test_reports_signed_difference(self):
        assert tally_drift({"A": 3, "B": 0}, {"A": 1, "B": 1}) == {"A": -2, "B": 1}

    def test_reports_key_missing_from_stored(self):
        assert tally_drift({"A": 1}, {"A": 1, "B": 0}) == {"B": 0}

    def test_reports_stale_key(self):
        assert tally_drift({"A": 1, "Old": 2}, {"A": 1}) == {"Old": -2}
