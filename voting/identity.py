"""Voter identifier hashing

Voter ids arrive already authenticated by the upstream identity provider.
Only a keyed HMAC-SHA256 of the id is stored, in both the ledger and the
audit log. The same key must be used for every lookup, so rotating
BALLOTBOX_VOTER_HASH_SECRET orphans existing votes.
"""

import hashlib
import hmac
from typing import Optional

from config import config
from exceptions import InvalidArgumentError


def hash_voter_id(voter_id: str, secret: Optional[str] = None) -> str:
    """Keyed hash of a voter identifier (64 hex chars)"""
    if not voter_id or not voter_id.strip():
        raise InvalidArgumentError("Voter id cannot be empty", field="voter_id")
    key = (secret or config.get_voter_hash_secret()).encode()
    return hmac.new(key, voter_id.strip().encode(), hashlib.sha256).hexdigest()


def short_hash(voter_hash: str) -> str:
    """Truncated hash for log lines"""
    return voter_hash[:12]
