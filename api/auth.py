"""Bearer token authentication for the registry and optimization endpoints."""

import hmac
import os

from fastapi import Header, HTTPException


async def require_bearer_token(authorization: str | None = Header(default=None)) -> None:
    """
    Dependency: require Authorization: Bearer <token> matching API_AUTH_TOKEN.
    Raises 503 if the server has no token configured, 401 if the header is missing or wrong.
    """
    expected = os.environ.get("API_AUTH_TOKEN")
    if not expected:
        raise HTTPException(status_code=503, detail="Server configuration error: API_AUTH_TOKEN not set")
    scheme, _, value = (authorization or "").strip().partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(value.strip().encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")
