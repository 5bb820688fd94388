############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# session_auth.py: Signed session cookie authentication
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Session cookie authentication.

The cookie holds ``{"uid": <user id>, "email": <email>}`` signed with
itsdangerous. Issuing the cookie after a credential check belongs to the
login flow; this module only signs and verifies it.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request, Response, status
from itsdangerous import BadSignature, URLSafeTimedSerializer

from backend.app.logging_config import get_logger
from backend.app.settings import get_settings

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuthUser:
    """Identity carried by a verified session cookie."""

    user_id: int
    email: Optional[str] = None


def _get_session_serializer() -> URLSafeTimedSerializer:
    """Get a timed serializer for session cookies."""
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt="session")


def get_auth_user(request: Request) -> Optional[AuthUser]:
    """Get the authenticated user from the signed session cookie."""
    settings = get_settings()
    session_data = request.cookies.get(settings.session_cookie_name)
    if not session_data:
        return None

    try:
        payload = _get_session_serializer().loads(session_data, max_age=settings.session_max_age)
    except BadSignature:
        logger.info("invalid_session_cookie", path=request.url.path)
        return None

    if not isinstance(payload, dict):
        return None
    try:
        user_id = int(payload.get("uid"))
    except (TypeError, ValueError):
        return None
    email = payload.get("email")
    return AuthUser(user_id=user_id, email=email if isinstance(email, str) else None)


async def require_user(request: Request) -> AuthUser:
    """Dependency that rejects requests without a valid session."""
    user = get_auth_user(request)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return user


def sign_session(user: AuthUser) -> str:
    return _get_session_serializer().dumps({"uid": user.user_id, "email": user.email})


def issue_session_cookie(response: Response, user: AuthUser) -> None:
    """Set signed session cookie."""
    settings = get_settings()
    response.set_cookie(
        key=settings.session_cookie_name,
        value=sign_session(user),
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
        max_age=settings.session_max_age,
    )


def clear_session_cookie(response: Response) -> None:
    """Clear session cookie."""
    response.delete_cookie(key=get_settings().session_cookie_name)
