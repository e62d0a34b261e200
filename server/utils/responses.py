"""Standardized API response helpers.

Ensures consistent response structure across all endpoints.
All successful responses include {"success": True, ...}
"""

from typing import List, Optional

from database.models import AuditEntry, VoteRecord, VotingSession


def success_response(data: dict, **extras) -> dict:
    """Standard success response wrapper.

    Usage:
        return success_response({"session": session_payload(session)})

    Returns:
        {"success": True, **data, **extras}
    """
    return {"success": True, **data, **extras}


def list_response(
    items: list,
    key: str = "items",
    total: Optional[int] = None,
    **extras
) -> dict:
    """Standard list response with total count.

    Returns:
        {"success": True, key: items, "total": N, **extras}
    """
    return {
        "success": True,
        key: items,
        "total": total if total is not None else len(items),
        **extras
    }


def session_payload(session: VotingSession) -> dict:
    """Public view of a session (tally included)"""
    payload = session.model_dump(mode="json")
    payload["total_votes"] = session.total_votes()
    return payload


def results_payload(session: VotingSession) -> dict:
    """Tally in option order, with shares of the total"""
    total = session.total_votes()
    results: List[dict] = []
    for option in session.options:
        count = session.tally.get(option, 0)
        results.append({
            "option": option,
            "votes": count,
            "share": round(count / total, 4) if total else 0.0,
        })
    return {"session_id": session.id, "results": results, "total_votes": total}


def vote_payload(record: VoteRecord) -> dict:
    return record.model_dump(mode="json")


def audit_payload(entry: AuditEntry, **extras) -> dict:
    """Audit entry, plus any listing-specific fields (e.g. session_title)"""
    return {**entry.model_dump(mode="json"), **extras}
