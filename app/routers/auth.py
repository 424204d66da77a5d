"""
Admin authentication dependency.
Verifies the dashboard bearer token and resolves it to the caller's tenant id.
"""

import httpx
import structlog
from fastapi import Depends, Header, HTTPException, status

from app.config import settings
from app.dependencies import get_session_store
from app.services.admin_sessions import AdminSessionStore

logger = structlog.get_logger()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _verify_supabase_token(token: str) -> dict:
    """Verify a Supabase JWT with the Supabase auth API. The user id is the tenant id."""
    auth_url = f"{settings.supabase_url}/auth/v1/user"
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": settings.supabase_service_key,
    }
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(auth_url, headers=headers, timeout=10.0)
    except httpx.HTTPError as http_error:
        logger.error("HTTP error during token verification", error=str(http_error))
        raise _unauthorized("Token verification failed") from http_error

    if response.status_code != 200:
        raise _unauthorized("Invalid or expired token")

    user_data = response.json()
    if not user_data or not user_data.get("id"):
        raise _unauthorized("Invalid token payload")

    return {"tenant_id": user_data["id"], "email": user_data.get("email")}


async def verify_token(
    authorization: str | None = Header(None),
    sessions: AdminSessionStore = Depends(get_session_store),
) -> dict:
    """
    Verify the admin bearer token from the Authorization header.

    Args:
        authorization: Authorization header value (Bearer <token>)

    Returns:
        {"tenant_id": ..., "email": ...}

    Raises:
        HTTPException: If token is invalid or missing
    """
    if not authorization:
        raise _unauthorized("Authorization header is required")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _unauthorized("Invalid authorization header format")
    token = parts[1]

    if settings.supabase_enabled:
        return await _verify_supabase_token(token)

    tenant_id = sessions.resolve(token)
    if tenant_id is None:
        raise _unauthorized("Invalid or expired token")
    return {"tenant_id": tenant_id, "email": None}
