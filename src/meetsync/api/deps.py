"""FastAPI dependencies for authentication and lifespan-built services.

Services are constructed once in the lifespan and stored on app.state.
A missing service means startup did not complete, which is a 503.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.meetsync.core.security import verify_token


async def get_current_user_id(request: Request) -> str:
    """Return the provider user id (`sub`) from the Bearer token.

    Raises:
        HTTPException(401): If no valid Bearer token is present.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = verify_token(auth_header[7:])
    return str(payload["sub"])


def _from_state(request: Request, name: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not initialized",
        )
    return service


def get_dispatcher(request: Request) -> Any:
    return _from_state(request, "webhook_dispatcher")


def get_reconciler(request: Request) -> Any:
    return _from_state(request, "reconciler")


def get_calendar_cache(request: Request) -> Any:
    return _from_state(request, "calendar_cache")


def get_calendar_repository(request: Request) -> Any:
    return _from_state(request, "calendar_repository")


def get_auto_scheduler(request: Request) -> Any:
    return _from_state(request, "auto_scheduler")
