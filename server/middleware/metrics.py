"""
Prometheus metrics middleware for API requests

Instruments all API requests with:
- Request count (by endpoint, method, status_code)
- Request duration (by endpoint, method)

Usage:
    from server.middleware.metrics import metrics_middleware
    app.middleware("http")(metrics_middleware)
"""

import time
from fastapi import Request

from server.metrics import metrics

# Path segments that are followed by a document key
_ID_PARENTS = {
    "sessions": ":session_id",
    "votes": ":vote_id",
    "options": ":label",
    "audit-logs": ":session_id",
}

# Fixed sub-resources that may follow a parent and are not ids
_SUB_RESOURCES = {"vote", "votes", "my-vote", "results", "options", "reconcile"}


async def metrics_middleware(request: Request, call_next):
    """Record Prometheus metrics for all API requests"""
    start_time = time.time()

    endpoint = _normalize_endpoint(request.url.path)
    method = request.method

    try:
        response = await call_next(request)
        duration = time.time() - start_time

        metrics.api_requests.labels(
            endpoint=endpoint,
            method=method,
            status_code=response.status_code
        ).inc()

        metrics.api_request_duration.labels(
            endpoint=endpoint,
            method=method
        ).observe(duration)

        return response

    except Exception:
        duration = time.time() - start_time

        # Record error as 500
        metrics.api_requests.labels(
            endpoint=endpoint,
            method=method,
            status_code=500
        ).inc()

        metrics.api_request_duration.labels(
            endpoint=endpoint,
            method=method
        ).observe(duration)

        raise


def _normalize_endpoint(path: str) -> str:
    """Normalize endpoint path for metrics cardinality control

    Converts:
        /api/v1/sessions/3f9a0c/vote -> /api/v1/sessions/:session_id/vote
        /api/v1/sessions/3f9a0c/options/Red -> /api/v1/sessions/:session_id/options/:label
        /api/v1/votes/8b21de -> /api/v1/votes/:vote_id

    Args:
        path: Raw URL path

    Returns:
        Normalized path with keys replaced by placeholders
    """
    parts = [part for part in path.split('/') if part]
    normalized_parts = []

    for i, part in enumerate(parts):
        prev_part = parts[i - 1] if i > 0 else None
        if _is_id_like(part, prev_part):
            normalized_parts.append(_ID_PARENTS[prev_part])
        else:
            normalized_parts.append(part)

    return '/' + '/'.join(normalized_parts)


def _is_id_like(part: str, prev_part) -> bool:
    """Check if a path part is a document key or option label

    A part is an id when it follows a collection segment and is not one
    of the fixed sub-resource names.
    """
    if prev_part not in _ID_PARENTS:
        return False

    # /sessions/{id}/votes: "votes" here is a sub-resource, not a key
    return part not in _SUB_RESOURCES or prev_part == "options"
