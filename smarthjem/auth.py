"""
Authentication and authorization
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import bcrypt
import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from smarthjem.models import AuthConfig, parse_iso_datetime

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

PUBLIC_USER_FIELDS = (
    "id",
    "username",
    "name",
    "email",
    "is_admin",
    "is_mini_admin",
    "is_blocked",
    "block_reason",
    "blocked_at",
    "admin_info",
    "admin_info_updated_at",
    "last_login_at",
    "phone_number",
    "account_number",
    "email_notifications_enabled",
    "created_at",
)


class UnauthorizedException(HTTPException):
    """401 - authentication required or failed"""

    def __init__(self, detail: str = "Not authenticated") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenException(HTTPException):
    """403 - authenticated but not allowed"""

    def __init__(self, detail: str = "Access denied") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def hash_password(password: str) -> str:
    """Hash a password using bcrypt"""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def _verify_legacy_scrypt(password: str, stored: str) -> bool:
    hashed, _, salt = stored.partition(".")
    if not hashed or not salt:
        return False
    derived = hashlib.scrypt(password.encode("utf-8"), salt=salt.encode("utf-8"), n=16384, r=8, p=1, dklen=64)
    return hmac.compare_digest(derived.hex(), hashed)


def is_legacy_hash(stored: str) -> bool:
    return not stored.startswith("$2") and "." in stored


def verify_password(password: str, stored: str) -> bool:
    """Verify a password against a bcrypt hash, or a legacy scrypt `hex.salt` hash."""
    if not stored:
        return False
    try:
        if is_legacy_hash(stored):
            return _verify_legacy_scrypt(password, stored)
        return bcrypt.checkpw(password.encode("utf-8"), stored.encode("utf-8"))
    except ValueError:
        return False


def create_token(user: dict[str, Any], config: AuthConfig) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user["id"]),
        "username": user["username"],
        "is_admin": bool(user.get("is_admin")),
        "is_mini_admin": bool(user.get("is_mini_admin")),
        "exp": now + timedelta(hours=config.token_hours),
        "iat": now,
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def decode_token(token: str, config: AuthConfig) -> dict[str, Any]:
    try:
        return jwt.decode(token, config.jwt_secret, algorithms=[config.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise UnauthorizedException("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise UnauthorizedException("Invalid token") from exc


def new_reset_token(config: AuthConfig) -> tuple[str, datetime]:
    return secrets.token_urlsafe(32), datetime.now(timezone.utc) + timedelta(hours=config.reset_token_hours)


def reset_token_problem(token_row: dict[str, Any] | None, now: datetime | None = None) -> str | None:
    if token_row is None:
        return "Invalid reset token"
    if token_row.get("used_at"):
        return "Reset token already used"
    expires_at = parse_iso_datetime(token_row.get("expires_at"))
    if expires_at is None or expires_at < (now or datetime.now(timezone.utc)):
        return "Reset token expired"
    return None


def public_user(user: dict[str, Any]) -> dict[str, Any]:
    return {key: user.get(key) for key in PUBLIC_USER_FIELDS}


def has_admin_access(user: dict[str, Any]) -> bool:
    return bool(user.get("is_admin") or user.get("is_mini_admin"))


def can_access(user: dict[str, Any], owner_id: int | None) -> bool:
    """Admins can access everything, others only their own resources."""
    if user.get("is_admin"):
        return True
    return owner_id is not None and int(user["id"]) == int(owner_id)


def _resolve_user(request: Request, credentials: HTTPAuthorizationCredentials | None) -> dict[str, Any]:
    if credentials is None or not credentials.credentials:
        raise UnauthorizedException()
    context = request.app.state.context
    payload = decode_token(credentials.credentials, context.config_manager.load().auth)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError) as exc:
        raise UnauthorizedException("Invalid token") from exc
    user = context.state_store.get_user(user_id)
    if user is None:
        raise UnauthorizedException("User not found")
    if user.get("is_blocked"):
        raise ForbiddenException(f"Account blocked: {user.get('block_reason') or 'contact support'}")
    return user


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict[str, Any]:
    return _resolve_user(request, credentials)


def require_role(check: Callable[[dict[str, Any]], bool], detail: str) -> Callable[..., dict[str, Any]]:
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/admin-only")
        def admin_endpoint(user = Depends(require_admin)):
            ...
    """

    def role_checker(user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
        if not check(user):
            raise ForbiddenException(detail)
        return user

    return role_checker


require_admin = require_role(lambda user: bool(user.get("is_admin")), "Admin access required")
# mini-admins may read admin data but never change it
require_admin_access = require_role(has_admin_access, "Admin access required")
