"""Shared FastAPI dependencies."""

from fastapi import Request

from app.core.exceptions import ConfigurationError, UnauthorizedError
from app.core.security import load_session_cookie
from app.models.user import User
from app.services.phonepe import PhonePeClient

SESSION_COOKIE_NAME = "wallet_session"


async def get_current_user(request: Request) -> User:
    """Dependency: load session from cookie and return User."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    user_id = payload.get("user_id")
    if not user_id:
        raise UnauthorizedError("Invalid session")
    user = await User.get(user_id)
    if not user:
        raise UnauthorizedError("User not found")
    if payload.get("session_version") != user.session_version:
        raise UnauthorizedError("Session invalidated")
    return user


def get_gateway(request: Request) -> PhonePeClient:
    """Dependency: the PhonePe client built at startup."""
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise ConfigurationError()
    return gateway
