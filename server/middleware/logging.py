"""
Request/response logging middleware
"""


import time
from fastapi import Request

from config import get_logger
from voting.identity import hash_voter_id, short_hash

logger = get_logger(__name__)


def _caller_tag(request: Request) -> str:
    """Short hash of the caller's voter id, never the raw id"""
    voter_id = request.headers.get("x-voter-id", "").strip()
    if not voter_id:
        return "anon"
    return short_hash(hash_voter_id(voter_id))[:7]


async def log_requests(request: Request, call_next):
    """Log incoming requests and responses"""
    # Skip logging for metrics endpoint (Prometheus scraping noise)
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    path_info = f"{request.method} {request.url.path}"
    caller = _caller_tag(request)

    try:
        response = await call_next(request)
        duration = time.time() - start_time

        logger.info(
            f"{path_info} voter:{caller} → {response.status_code} ({duration:.3f}s)"
        )
        return response

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"{path_info} voter:{caller} → ERROR ({duration:.3f}s): {str(e)}"
        )
        raise
