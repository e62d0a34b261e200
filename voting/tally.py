"""Shared tally computation logic

apply_delta is the only way a stored tally changes. It is pure: it
returns a new dict and never touches its input.
"""

from typing import Dict, Iterable, List, Optional

from database.models import VoteRecord


def apply_delta(
    tally: Dict[str, int],
    from_option: Optional[str],
    to_option: Optional[str],
) -> Dict[str, int]:
    """Move one vote from from_option to to_option

    Rules:
    - Decrementing a present key floors at 0.
    - Decrementing a missing key leaves it missing.
    - Incrementing a missing key starts it at 1.
    - from_option == to_option is a no-op.

    Args:
        tally: Current option -> count mapping
        from_option: Option losing a vote, or None for a new vote
        to_option: Option gaining a vote, or None for a retraction

    Returns:
        New tally mapping
    """
    result = dict(tally)
    if from_option == to_option:
        return result

    if from_option is not None and from_option in result:
        result[from_option] = max(result[from_option] - 1, 0)

    if to_option is not None:
        result[to_option] = result.get(to_option, 0) + 1

    return result


def rebuild_tally(options: Iterable[str], votes: List[VoteRecord]) -> Dict[str, int]:
    """Recount a tally from ledger entries

    Keys are exactly the options; votes for labels outside options are ignored.
    """
    tally = {option: 0 for option in options}
    for vote in votes:
        if vote.option in tally:
            tally[vote.option] += 1
    return tally


def tally_drift(stored: Dict[str, int], rebuilt: Dict[str, int]) -> Dict[str, int]:
    """Per-option difference rebuilt - stored, omitting options that agree"""
    drift = {}
    for option in set(stored) | set(rebuilt):
        delta = rebuilt.get(option, 0) - stored.get(option, 0)
        if delta or (option in stored) != (option in rebuilt):
            drift[option] = delta
    return drift
