from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .backend import Backend
from .errors import AuthenticationError
from .permissions import Action
from .session import SessionContext, SessionStore
from .settings import Settings

_security = HTTPBearer(auto_error=False)


def get_backend(request: Request) -> Backend:
    return request.app.state.backend


def get_sessions(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_bearer_token(creds: Optional[HTTPAuthorizationCredentials] = Depends(_security)) -> str:
    """
    Extract the bearer access token.

    Raises:
        AuthenticationError(401) if the Authorization header is missing or not a bearer token.
    """
    if creds is None or not creds.credentials:
        raise AuthenticationError()
    return creds.credentials


# PUBLIC_INTERFACE
async def get_current_session(
    token: str = Depends(get_bearer_token),
    sessions: SessionStore = Depends(get_sessions),
) -> SessionContext:
    """
    Resolve the SessionContext of the caller.

    A token the auth provider still accepts always yields a context; one is
    opened on demand if the process has not seen this session yet.

    Raises:
        AuthenticationError(401) if the token is unknown, expired or belongs to a recovery session.
    """
    return await sessions.resolve(token)


# PUBLIC_INTERFACE
def require_action(action: Action) -> Callable[..., SessionContext]:
    """
    Return a dependency that resolves the caller's session and checks it may perform `action`.

    Usage:
        @router.get("/users")
        async def list_users(ctx: SessionContext = Depends(require_action(Action.VIEW_USERS))): ...

    Raises:
        AuthorizationError(403) when the session role lacks the action.
    """

    async def _enforce(ctx: SessionContext = Depends(get_current_session)) -> SessionContext:
        ctx.require(action)
        return ctx

    return _enforce


def get_clock(request: Request) -> Callable[[], datetime]:
    return request.app.state.clock
