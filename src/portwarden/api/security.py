# API Security - per-process API token for the web front end
#
# A random token is generated on startup and served once by /api/session.
# Every backup endpoint requires it in the X-Session-Token header. It is
# unrelated to the vault session (BW_SESSION), which never leaves the
# orchestrator.

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

API_TOKEN_HEADER = "X-Session-Token"

_API_TOKEN: Optional[str] = None


def initialize_api_token() -> str:
    """Generate a new API token for this process and return it."""
    global _API_TOKEN
    _API_TOKEN = secrets.token_urlsafe(32)
    return _API_TOKEN


def get_api_token() -> str:
    """
    Get the current API token.

    Raises:
        RuntimeError: If initialize_api_token() has not run yet
    """
    if _API_TOKEN is None:
        raise RuntimeError("API token not initialized. Call initialize_api_token() first.")
    return _API_TOKEN


async def verify_api_token(
    x_session_token: Optional[str] = Header(None, alias=API_TOKEN_HEADER),
) -> str:
    """
    FastAPI dependency guarding the backup endpoints.

    Raises:
        HTTPException: 503 before startup, 401 if the header is missing or wrong
    """
    if _API_TOKEN is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="API token not initialized",
        )
    if x_session_token is None or not secrets.compare_digest(x_session_token, _API_TOKEN):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or missing {API_TOKEN_HEADER} header",
        )
    return x_session_token
