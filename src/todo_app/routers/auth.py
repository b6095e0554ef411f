from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, status

from ..backend import AuthApiError, AuthSession, Backend
from ..dependencies import get_app_settings, get_backend, get_bearer_token, get_current_session, get_sessions
from ..errors import AuthenticationError, ConflictError, NotFoundError
from ..permissions import Action, can, navigation_for
from ..schemas import (
    IdentityOut,
    MessageOut,
    NavItemOut,
    PasswordResetRequest,
    PasswordUpdateRequest,
    RedirectOut,
    RefreshRequest,
    SessionOut,
    SignInRequest,
    SignUpRequest,
)
from ..session import Identity, SessionContext, SessionStore
from ..settings import Settings

log = structlog.get_logger()

router = APIRouter(
    prefix="/api/v1/auth",
    tags=["auth"],
)

INVALID_RESET_LINK = "Invalid or expired reset link"


def identity_out(identity: Identity) -> IdentityOut:
    return IdentityOut(
        id=identity.id,
        email=identity.email,
        name=identity.name,
        avatar_url=identity.avatar_url,
        role=identity.role.value,
        is_admin=can(identity.role, Action.VIEW_USERS),
        navigation=[NavItemOut(name=i.name, href=i.href) for i in navigation_for(identity.role)],
    )


async def _session_out(sessions: SessionStore, session: AuthSession) -> SessionOut:
    ctx = await sessions.resolve(session.access_token)
    return SessionOut(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        expires_at=session.expires_at,
        user=identity_out(ctx.identity),
    )


# PUBLIC_INTERFACE
@router.post(
    "/sign-up",
    response_model=SessionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Sign Up",
    description="Register with email, password and display name. Returns a signed-in session.",
    responses={
        201: {"description": "Account created and signed in"},
        409: {"description": "Email already registered"},
    },
)
async def sign_up(
    payload: SignUpRequest,
    backend: Backend = Depends(get_backend),
    sessions: SessionStore = Depends(get_sessions),
) -> SessionOut:
    try:
        session = await backend.auth.sign_up(payload.email, payload.password, payload.name)
    except AuthApiError as exc:
        if "already registered" in str(exc):
            raise ConflictError(str(exc)) from exc
        raise AuthenticationError(str(exc)) from exc
    return await _session_out(sessions, session)


# PUBLIC_INTERFACE
@router.post(
    "/sign-in",
    response_model=SessionOut,
    summary="Sign In",
    description="Sign in with email and password.",
    responses={
        200: {"description": "Signed in"},
        401: {"description": "Invalid login credentials"},
    },
)
async def sign_in(
    payload: SignInRequest,
    backend: Backend = Depends(get_backend),
    sessions: SessionStore = Depends(get_sessions),
) -> SessionOut:
    try:
        session = await backend.auth.sign_in_with_password(payload.email, payload.password)
    except AuthApiError as exc:
        log.info("auth.sign_in_failed", error=str(exc))
        raise AuthenticationError(str(exc)) from exc
    return await _session_out(sessions, session)


# PUBLIC_INTERFACE
@router.post(
    "/sign-out",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Sign Out",
    description="End the current session. Its listener, notifications and toasts are discarded.",
    responses={
        204: {"description": "Signed out"},
        401: {"description": "Not authenticated"},
    },
)
async def sign_out(token: str = Depends(get_bearer_token), backend: Backend = Depends(get_backend)) -> None:
    try:
        await backend.auth.sign_out(token)
    except AuthApiError as exc:
        raise AuthenticationError(str(exc)) from exc
    return None


# PUBLIC_INTERFACE
@router.post(
    "/refresh",
    response_model=SessionOut,
    summary="Refresh Session",
    description="Exchange a refresh token for a new access token. The session context is kept.",
    responses={
        200: {"description": "Session refreshed"},
        401: {"description": "Invalid refresh token"},
    },
)
async def refresh(
    payload: RefreshRequest,
    backend: Backend = Depends(get_backend),
    sessions: SessionStore = Depends(get_sessions),
) -> SessionOut:
    try:
        session = await backend.auth.refresh_session(payload.refresh_token)
    except AuthApiError as exc:
        raise AuthenticationError(str(exc)) from exc
    return await _session_out(sessions, session)


# PUBLIC_INTERFACE
@router.get(
    "/oauth/{provider}",
    response_model=RedirectOut,
    summary="Start OAuth Sign In",
    description="Return the provider URL to redirect the browser to. The provider returns to SITE_URL/auth/callback.",
    responses={
        200: {"description": "Redirect URL"},
        404: {"description": "Unsupported provider"},
    },
)
async def oauth_start(
    provider: str,
    backend: Backend = Depends(get_backend),
    settings: Settings = Depends(get_app_settings),
) -> RedirectOut:
    try:
        url = await backend.auth.sign_in_with_oauth(provider, f"{settings.site_url}/auth/callback")
    except AuthApiError as exc:
        raise NotFoundError(str(exc)) from exc
    return RedirectOut(url=url)


# PUBLIC_INTERFACE
@router.get(
    "/callback",
    response_model=SessionOut,
    summary="OAuth Callback",
    description="Exchange the authorization code returned by the provider for a session.",
    responses={
        200: {"description": "Signed in"},
        401: {"description": "Invalid or expired auth code"},
    },
)
async def oauth_callback(
    code: str = Query(..., min_length=1, description="Authorization code from the provider"),
    backend: Backend = Depends(get_backend),
    sessions: SessionStore = Depends(get_sessions),
) -> SessionOut:
    try:
        session = await backend.auth.exchange_code_for_session(code)
    except AuthApiError as exc:
        raise AuthenticationError(str(exc)) from exc
    return await _session_out(sessions, session)


# PUBLIC_INTERFACE
@router.post(
    "/reset-password",
    response_model=MessageOut,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Request Password Reset",
    description="Send a recovery link to SITE_URL/auth/update-password. The response does not reveal whether the email is registered.",
)
async def reset_password(
    payload: PasswordResetRequest,
    backend: Backend = Depends(get_backend),
    settings: Settings = Depends(get_app_settings),
) -> MessageOut:
    try:
        await backend.auth.reset_password_for_email(payload.email, f"{settings.site_url}/auth/update-password")
    except AuthApiError as exc:
        log.warning("auth.reset_failed", error=str(exc))
    return MessageOut(message="Check your email for the password reset link")


# PUBLIC_INTERFACE
@router.post(
    "/update-password",
    response_model=MessageOut,
    summary="Update Password",
    description=(
        "Set a new password using the access_token and refresh_token from the recovery link. "
        "The recovery session is signed out afterwards."
    ),
    responses={
        200: {"description": "Password updated"},
        401: {"description": INVALID_RESET_LINK},
    },
)
async def update_password(payload: PasswordUpdateRequest, backend: Backend = Depends(get_backend)) -> MessageOut:
    if not payload.access_token or not payload.refresh_token:
        raise AuthenticationError(INVALID_RESET_LINK)
    try:
        await backend.auth.set_session(payload.access_token, payload.refresh_token)
        await backend.auth.update_user(payload.access_token, password=payload.password)
        await backend.auth.sign_out(payload.access_token)
    except AuthApiError as exc:
        log.info("auth.update_password_failed", error=str(exc))
        raise AuthenticationError(INVALID_RESET_LINK) from exc
    return MessageOut(message="Password updated successfully")


# PUBLIC_INTERFACE
@router.get(
    "/me",
    response_model=IdentityOut,
    summary="Current Identity",
    description=(
        "Identity, role and visible navigation of the current session. "
        "The role is cached for the session; pass refresh=true to re-read it."
    ),
    responses={
        200: {"description": "Current identity"},
        401: {"description": "Not authenticated"},
    },
)
async def me(
    refresh: bool = Query(False, description="Re-read the profile (and role) from the backend"),
    ctx: SessionContext = Depends(get_current_session),
    sessions: SessionStore = Depends(get_sessions),
) -> IdentityOut:
    identity = await sessions.refresh_identity(ctx.access_token) if refresh else ctx.identity
    return identity_out(identity)
