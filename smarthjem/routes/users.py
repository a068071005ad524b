"""
Login, registration, profile and admin user management
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from smarthjem.auth import (
    UnauthorizedException,
    create_token,
    get_current_user,
    hash_password,
    is_legacy_hash,
    new_reset_token,
    public_user,
    require_admin,
    require_admin_access,
    reset_token_problem,
    verify_password,
)
from smarthjem.context import AppContext, get_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Users"])

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class LoginRequest(BaseModel):
    username: str
    password: str


class RegisterRequest(BaseModel):
    username: str
    password: str
    name: str = ""


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    account_number: Optional[str] = None
    email_notifications_enabled: Optional[bool] = None


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str


class ForgotPasswordRequest(BaseModel):
    username: str


class ResetPasswordRequest(BaseModel):
    token: str
    password: str


class AdminUserCreateRequest(BaseModel):
    username: str
    password: str
    name: str = ""
    is_admin: bool = False
    is_mini_admin: bool = False
    phone_number: Optional[str] = None
    account_number: Optional[str] = None


class AdminUserUpdateRequest(BaseModel):
    username: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    is_admin: Optional[bool] = None
    is_mini_admin: Optional[bool] = None
    phone_number: Optional[str] = None
    account_number: Optional[str] = None
    account_change_reason: str = ""
    email_notifications_enabled: Optional[bool] = None


class AdminInfoRequest(BaseModel):
    admin_info: str = ""


class BlockRequest(BaseModel):
    reason: str = Field(default="", max_length=500)


class AdminPasswordRequest(BaseModel):
    password: str


def _check_username(username: str) -> str:
    username = username.strip().lower()
    if not EMAIL_PATTERN.match(username):
        raise HTTPException(status_code=400, detail="Username must be an email address")
    return username


def _check_password(ctx: AppContext, password: str) -> None:
    minimum = ctx.config_manager.load().auth.min_password_length
    if len(password) < minimum:
        raise HTTPException(status_code=400, detail=f"Password must be at least {minimum} characters")


def _get_user_or_404(ctx: AppContext, user_id: int) -> dict[str, Any]:
    user = ctx.state_store.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _change_account_number(
    ctx: AppContext, user: dict[str, Any], new_value: str, changed_by: int, reason: str
) -> None:
    if (user.get("account_number") or "") == (new_value or ""):
        return
    ctx.state_store.record_account_number_change(
        user_id=user["id"],
        changed_by_id=changed_by,
        old_account_number=user.get("account_number"),
        new_account_number=new_value,
        change_reason=reason,
    )
    logger.info("Account number changed for user %s by %s", user["id"], changed_by)


@router.post("/login")
def login(request: LoginRequest, ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    user = ctx.state_store.get_user_by_username(request.username)
    if user is None or not verify_password(request.password, user["password_hash"]):
        raise UnauthorizedException("Invalid username or password")
    if user.get("is_blocked"):
        raise HTTPException(
            status_code=403,
            detail={"message": "Account blocked", "reason": user.get("block_reason") or ""},
        )
    updates: dict[str, Any] = {"last_login_at": datetime.now(timezone.utc)}
    if is_legacy_hash(user["password_hash"]):
        updates["password_hash"] = hash_password(request.password)
    user = ctx.state_store.update_user(user["id"], **updates)
    token = create_token(user, ctx.config_manager.load().auth)
    return {"token": token, "user": public_user(user)}


@router.post("/register", status_code=201)
def register(request: RegisterRequest, ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    username = _check_username(request.username)
    _check_password(ctx, request.password)
    if ctx.state_store.get_user_by_username(username) is not None:
        raise HTTPException(status_code=409, detail="Username already exists")
    user = ctx.state_store.create_user(
        username=username,
        password_hash=hash_password(request.password),
        name=request.name.strip(),
        email=username,
    )
    token = create_token(user, ctx.config_manager.load().auth)
    return {"token": token, "user": public_user(user)}


@router.post("/logout")
def logout() -> dict[str, str]:
    return {"message": "logged out"}


@router.get("/user")
def current_user(user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    return public_user(user)


@router.put("/user/profile")
def update_profile(
    request: ProfileUpdateRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    fields = request.model_dump(exclude_none=True)
    if "account_number" in fields:
        _change_account_number(ctx, user, fields["account_number"], user["id"], "changed by user")
    updated = ctx.state_store.update_user(user["id"], **fields)
    return public_user(updated)


@router.put("/user/password")
def change_password(
    request: PasswordChangeRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    if not verify_password(request.current_password, user["password_hash"]):
        raise HTTPException(status_code=400, detail="Current password is wrong")
    _check_password(ctx, request.new_password)
    ctx.state_store.update_user(user["id"], password_hash=hash_password(request.new_password))
    return {"message": "password changed"}


@router.post("/forgot-password")
def forgot_password(request: ForgotPasswordRequest, ctx: AppContext = Depends(get_context)) -> dict[str, str]:
    user = ctx.state_store.get_user_by_username(request.username)
    if user is not None and not user.get("is_blocked"):
        token, expires_at = new_reset_token(ctx.config_manager.load().auth)
        ctx.state_store.create_reset_token(user["id"], token, expires_at)
        ctx.notifier.send_password_reset(user, token)
    return {"message": "If the account exists, a reset link has been sent"}


@router.post("/reset-password")
def reset_password(request: ResetPasswordRequest, ctx: AppContext = Depends(get_context)) -> dict[str, str]:
    token_row = ctx.state_store.get_reset_token(request.token)
    problem = reset_token_problem(token_row)
    if problem:
        raise HTTPException(status_code=400, detail=problem)
    _check_password(ctx, request.password)
    ctx.state_store.update_user(token_row["user_id"], password_hash=hash_password(request.password))
    ctx.state_store.mark_reset_token_used(token_row["id"])
    return {"message": "password updated"}


@router.get("/admin/users")
def list_users(
    _: dict[str, Any] = Depends(require_admin_access),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return [public_user(user) for user in ctx.state_store.list_users()]


@router.post("/admin/users", status_code=201)
def create_user(
    request: AdminUserCreateRequest,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    username = _check_username(request.username)
    _check_password(ctx, request.password)
    if ctx.state_store.get_user_by_username(username) is not None:
        raise HTTPException(status_code=409, detail="Username already exists")
    user = ctx.state_store.create_user(
        username=username,
        password_hash=hash_password(request.password),
        name=request.name.strip(),
        email=username,
        is_admin=request.is_admin,
        is_mini_admin=request.is_mini_admin,
        phone_number=request.phone_number,
        account_number=request.account_number,
    )
    return public_user(user)


@router.put("/admin/users/{user_id}")
def update_user(
    user_id: int,
    request: AdminUserUpdateRequest,
    admin: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    user = _get_user_or_404(ctx, user_id)
    fields = request.model_dump(exclude_none=True, exclude={"account_change_reason"})
    if "username" in fields:
        fields["username"] = _check_username(fields["username"])
        other = ctx.state_store.get_user_by_username(fields["username"])
        if other is not None and other["id"] != user_id:
            raise HTTPException(status_code=409, detail="Username already exists")
    if "account_number" in fields:
        _change_account_number(
            ctx, user, fields["account_number"], admin["id"], request.account_change_reason or "changed by admin"
        )
    return public_user(ctx.state_store.update_user(user_id, **fields))


@router.put("/admin/users/{user_id}/admin-info")
def set_admin_info(
    user_id: int,
    request: AdminInfoRequest,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    _get_user_or_404(ctx, user_id)
    updated = ctx.state_store.update_user(
        user_id, admin_info=request.admin_info, admin_info_updated_at=datetime.now(timezone.utc)
    )
    return public_user(updated)


@router.delete("/admin/users/{user_id}")
def delete_user(
    user_id: int,
    admin: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    if user_id == admin["id"]:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    _get_user_or_404(ctx, user_id)
    ctx.state_store.delete_user(user_id)
    logger.info("User %s deleted by admin %s", user_id, admin["id"])
    return {"message": "user deleted"}


@router.post("/admin/users/{user_id}/block")
def block_user(
    user_id: int,
    request: BlockRequest,
    admin: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    if user_id == admin["id"]:
        raise HTTPException(status_code=400, detail="You cannot block your own account")
    _get_user_or_404(ctx, user_id)
    updated = ctx.state_store.update_user(
        user_id, is_blocked=True, block_reason=request.reason, blocked_at=datetime.now(timezone.utc)
    )
    return public_user(updated)


@router.post("/admin/users/{user_id}/unblock")
def unblock_user(
    user_id: int,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    _get_user_or_404(ctx, user_id)
    updated = ctx.state_store.update_user(user_id, is_blocked=False, block_reason=None, blocked_at=None)
    return public_user(updated)


@router.put("/admin/users/{user_id}/password")
def admin_set_password(
    user_id: int,
    request: AdminPasswordRequest,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    _get_user_or_404(ctx, user_id)
    _check_password(ctx, request.password)
    ctx.state_store.update_user(user_id, password_hash=hash_password(request.password))
    return {"message": "password changed"}


@router.post("/admin/users/{user_id}/reset-link")
def admin_reset_link(
    user_id: int,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    user = _get_user_or_404(ctx, user_id)
    config = ctx.config_manager.load()
    token, expires_at = new_reset_token(config.auth)
    ctx.state_store.create_reset_token(user_id, token, expires_at)
    sent = ctx.notifier.send_password_reset(user, token)
    return {
        "link": f"{config.smtp.app_url}/reset-password?token={token}",
        "expires_at": expires_at.isoformat(),
        "email_sent": sent,
    }


@router.get("/admin/users/{user_id}/account-number-logs")
def account_number_logs(
    user_id: int,
    _: dict[str, Any] = Depends(require_admin_access),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    _get_user_or_404(ctx, user_id)
    return ctx.state_store.list_account_number_logs(user_id)
