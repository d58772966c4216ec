"""Minimal auth dependency.

Stub implementation that extracts team_id/user_id from bearer token or uses dev defaults.
Real session validation lives in the web application in front of this API.
"""

import uuid
from typing import Annotated

from fastapi import Header, HTTPException, status

from backend.app.db.context import RequestContext

DEV_TEAM_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
DEV_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")


async def get_current_context(
    authorization: Annotated[str | None, Header()] = None,
) -> RequestContext:
    """Extract request context from authorization header.

    Either:
    - Parses a simple "Bearer <team_id>:<user_id>" format
    - Returns dev defaults if no header

    Args:
        authorization: Authorization header (e.g., "Bearer <token>")

    Returns:
        RequestContext with team_id and user_id

    Raises:
        HTTPException: If authorization is invalid
    """
    if not authorization:
        return RequestContext(team_id=DEV_TEAM_ID, user_id=DEV_USER_ID)

    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = authorization[7:]  # Strip "Bearer "

    if ":" in token:
        try:
            team_id_str, user_id_str = token.split(":", 1)
            return RequestContext(
                team_id=uuid.UUID(team_id_str),
                user_id=uuid.UUID(user_id_str),
            )
        except ValueError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token format (expected team_id:user_id)",
                headers={"WWW-Authenticate": "Bearer"},
            ) from e

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid bearer token",
        headers={"WWW-Authenticate": "Bearer"},
    )
