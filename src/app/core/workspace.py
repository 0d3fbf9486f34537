"""Workspace context propagation via Python contextvars.

Every knowledge item, chunk and query is scoped to a workspace. The
WorkspaceContext is set by middleware at the start of each request and is
accessible anywhere in the call stack via get_current_workspace().
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

# ── Workspace Context ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class WorkspaceContext:
    """Immutable workspace context for the current request."""

    workspace_id: str


_workspace_context: contextvars.ContextVar[WorkspaceContext] = contextvars.ContextVar(
    "workspace_context"
)


def get_current_workspace() -> WorkspaceContext:
    """Get the workspace context for the current request.

    Raises RuntimeError if no workspace context has been set (i.e., the call
    is not within a workspace-scoped request).
    """
    try:
        return _workspace_context.get()
    except LookupError:
        raise RuntimeError("No workspace context set -- request is not workspace-scoped")


def set_workspace_context(ctx: WorkspaceContext) -> contextvars.Token[WorkspaceContext]:
    """Set the workspace context for the current request. Returns a token for reset."""
    return _workspace_context.set(ctx)


def reset_workspace_context(token: contextvars.Token[WorkspaceContext]) -> None:
    _workspace_context.reset(token)


# ── Paths that skip workspace resolution ────────────────────────────────────

SKIP_WORKSPACE_PATHS = (
    "/health",
    "/metrics",
    "/docs",
    "/openapi.json",
    "/redoc",
)


# ── Workspace Middleware ────────────────────────────────────────────────────


class WorkspaceMiddleware(BaseHTTPMiddleware):
    """Middleware that reads the X-Workspace-ID header and sets context.

    Paths in SKIP_WORKSPACE_PATHS are excluded (health checks, metrics, docs).
    A missing header is rejected with 400 before the route runs.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if any(path.startswith(skip) for skip in SKIP_WORKSPACE_PATHS):
            return await call_next(request)

        workspace_id = (request.headers.get("X-Workspace-ID") or "").strip()
        if not workspace_id:
            return JSONResponse(status_code=400, content={"detail": "Missing X-Workspace-ID header"})

        token = set_workspace_context(WorkspaceContext(workspace_id=workspace_id))
        try:
            return await call_next(request)
        finally:
            reset_workspace_context(token)
