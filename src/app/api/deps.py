"""FastAPI dependency injection for workspace-scoped knowledge endpoints.

These dependencies are used in endpoint function signatures to inject the
workspace context, the requester identity, and the knowledge services that
the lifespan placed on app.state.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.app.core.workspace import WorkspaceContext, get_current_workspace
from src.knowledge.schemas import Requester


async def get_workspace() -> WorkspaceContext:
    """Get the current workspace context (set by WorkspaceMiddleware)."""
    try:
        return get_current_workspace()
    except RuntimeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing X-Workspace-ID header",
        )


async def get_requester(request: Request) -> Requester:
    """Build the requester from identity headers forwarded by the gateway.

    X-User-ID carries the user id; X-User-Permissions carries a
    comma-separated list of ``scope:action`` grants.

    Raises:
        HTTPException(401): If X-User-ID is missing.
    """
    user_id = (request.headers.get("X-User-ID") or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-ID header",
        )
    raw = request.headers.get("X-User-Permissions") or ""
    permissions = frozenset(p.strip() for p in raw.split(",") if p.strip())
    return Requester(user_id=user_id, permissions=permissions)


def get_state_service(request: Request, name: str) -> Any:
    """Retrieve a service from app.state, 503 if not available."""
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Knowledge service '{name}' not initialized",
        )
    return service
