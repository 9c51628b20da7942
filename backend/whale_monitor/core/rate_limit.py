"""
Rate Limiting Configuration

Uses slowapi for rate limiting admin trigger endpoints
"""

import hashlib

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request


def get_client_identifier(request: Request) -> str:
    """
    Get identifier for rate limiting

    For admin requests: a digest of the bearer token
    For everything else: use IP address
    """
    authorization = request.headers.get("authorization")
    if authorization and authorization.startswith("Bearer "):
        digest = hashlib.sha256(authorization.encode()).hexdigest()[:16]
        return f"admin:{digest}"

    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_client_identifier,
    default_limits=["1000 per hour"],
    storage_uri="memory://",  # Use in-memory storage (upgrade to Redis for multi-instance)
)
