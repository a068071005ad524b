"""
iCal feed subscriptions and feed maintenance
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from smarthjem.auth import can_access, get_current_user, require_admin, require_admin_access
from smarthjem.context import AppContext, get_context
from smarthjem.ical_client import IcalFeedClient, describe_fetch_error, is_google_calendar_url, validate_feed_url
from smarthjem.models import DEFAULT_FEED_COLOR, IcalFeed, serialize_datetime
from smarthjem.routes.events import parse_dt
from smarthjem.sync_engine import SYNC_ERRORS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Feeds"])

FEED_TYPES = ("import", "export")


class FeedCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=200)
    url: str
    color: str = DEFAULT_FEED_COLOR
    feed_type: str = Field(default="import", alias="feedType")
    user_id: Optional[int] = Field(default=None, alias="userId")


class FeedUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    url: Optional[str] = None
    color: Optional[str] = None
    enabled: Optional[bool] = None
    feed_type: Optional[str] = Field(default=None, alias="feedType")


class SimilarRequest(BaseModel):
    threshold: float = Field(default=0.8, ge=0.0, le=1.0)


def feed_dict(feed: IcalFeed, owner: dict[str, Any] | None = None) -> dict[str, Any]:
    payload = {
        "id": feed.id,
        "user_id": feed.user_id,
        "name": feed.name,
        "url": feed.url,
        "color": feed.color,
        "enabled": feed.enabled,
        "feed_type": feed.feed_type,
        "last_synced": serialize_datetime(feed.last_synced),
    }
    if owner is not None:
        payload["user"] = {"id": owner["id"], "username": owner["username"], "name": owner.get("name") or ""}
    return payload


def _feed_or_404(ctx: AppContext, feed_id: int) -> IcalFeed:
    feed = ctx.state_store.get_feed(feed_id)
    if feed is None:
        raise HTTPException(status_code=404, detail="Feed not found")
    return feed


def _check_url(ctx: AppContext, url: str, feed_id: int | None = None) -> str:
    try:
        url = validate_feed_url(url)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    existing = ctx.state_store.get_feed_by_url(url)
    if existing is not None and existing.id != feed_id:
        raise HTTPException(status_code=409, detail="This feed URL is already in use")
    return url


def _check_feed_type(feed_type: str) -> str:
    if feed_type not in FEED_TYPES:
        raise HTTPException(status_code=400, detail=f"feedType must be one of: {', '.join(FEED_TYPES)}")
    return feed_type


def _validate_remote(ctx: AppContext, url: str) -> None:
    config = ctx.config_manager.load()
    ok, message, _ = IcalFeedClient(config.ical, config.sync.timezone).validate(url)
    if ok:
        return
    if is_google_calendar_url(url):
        # google often refuses server side fetches for a while after a calendar is shared
        logger.warning("Saving Google Calendar feed despite failed validation: %s", message)
        return
    raise HTTPException(status_code=400, detail=message)


def _sync_feed(ctx: AppContext, feed: IcalFeed, force: bool = False) -> dict[str, Any]:
    try:
        if force:
            stats = ctx.sync_engine.force_refresh_feed(feed.id)
        else:
            stats = ctx.sync_engine.sync_ical_feed(feed.id)
    except SYNC_ERRORS as exc:
        logger.warning("Sync of feed %s failed: %s", feed.id, exc)
        raise HTTPException(status_code=502, detail=describe_fetch_error(exc)) from exc
    return stats.to_dict()


@router.get("/ical-feed-events")
def list_feed_events(
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    start = parse_dt(startDate, "startDate")
    end = parse_dt(endDate, "endDate")
    feeds = {feed.id: feed for feed in ctx.state_store.list_enabled_feeds(user["id"], feed_type=None)}
    result = []
    for event in ctx.state_store.list_events(user["id"], start, end, source_type="ical"):
        feed = feeds.get(event.source_feed_id)
        if feed is None:
            continue
        payload = event.to_dict()
        payload["feed_name"] = feed.name
        result.append(payload)
    return result


@router.get("/ical-feeds")
def list_own_feeds(
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return [feed_dict(feed) for feed in ctx.state_store.list_feeds(user["id"])]


@router.post("/ical-feeds", status_code=201)
def create_feed(
    request: FeedCreateRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    owner_id = user["id"]
    if request.user_id is not None and request.user_id != user["id"]:
        if not user.get("is_admin"):
            raise HTTPException(status_code=403, detail="Only admins can add feeds for other users")
        if ctx.state_store.get_user(request.user_id) is None:
            raise HTTPException(status_code=404, detail="User not found")
        owner_id = request.user_id
    feed_type = _check_feed_type(request.feed_type)
    url = _check_url(ctx, request.url)
    if feed_type == "import":
        _validate_remote(ctx, url)
    feed = ctx.state_store.create_feed(
        user_id=owner_id, name=request.name.strip(), url=url, color=request.color, feed_type=feed_type
    )
    logger.info("Feed %s added for user %s", feed.id, owner_id)
    payload = feed_dict(feed)
    if feed_type == "import":
        try:
            payload["sync"] = ctx.sync_engine.sync_ical_feed(feed.id).to_dict()
        except SYNC_ERRORS as exc:
            logger.warning("Initial sync of feed %s failed: %s", feed.id, exc)
            payload["sync"] = {"error": describe_fetch_error(exc)}
    return payload


@router.delete("/ical-feeds/{feed_id}")
def delete_feed(
    feed_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    feed = _feed_or_404(ctx, feed_id)
    if not can_access(user, feed.user_id):
        raise HTTPException(status_code=403, detail="Not your feed")
    ctx.state_store.delete_feed(feed_id)
    logger.info("Feed %s deleted by user %s", feed_id, user["id"])
    return {"message": "feed deleted"}


@router.post("/ical-feeds/{feed_id}/sync")
def sync_feed(
    feed_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    feed = _feed_or_404(ctx, feed_id)
    if not can_access(user, feed.user_id):
        raise HTTPException(status_code=403, detail="Not your feed")
    return _sync_feed(ctx, feed)


@router.get("/admin/ical-feeds")
def admin_list_feeds(
    _: dict[str, Any] = Depends(require_admin_access),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    users = {user["id"]: user for user in ctx.state_store.list_users()}
    return [feed_dict(feed, users.get(feed.user_id)) for feed in ctx.state_store.list_feeds()]


@router.put("/admin/ical-feeds/{feed_id}")
def admin_update_feed(
    feed_id: int,
    request: FeedUpdateRequest,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    _feed_or_404(ctx, feed_id)
    fields = request.model_dump(exclude_none=True)
    if "url" in fields:
        fields["url"] = _check_url(ctx, fields["url"], feed_id)
    if "feed_type" in fields:
        _check_feed_type(fields["feed_type"])
    return feed_dict(ctx.state_store.update_feed(feed_id, **fields))


@router.post("/admin/ical-feeds/{feed_id}/force-refresh")
def admin_force_refresh(
    feed_id: int,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    return _sync_feed(ctx, _feed_or_404(ctx, feed_id), force=True)


@router.post("/admin/ical-feeds/sync-all")
def admin_sync_all(
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, int]:
    changes, failures = ctx.sync_engine.sync_all_ical_feeds(include_all_types=True)
    return {"changes": changes, "failures": failures}


@router.post("/admin/ical-feeds/cleanup-duplicates")
def admin_cleanup_duplicates(
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, int]:
    return ctx.sync_engine.find_and_remove_duplicate_ical_events()


@router.post("/admin/ical-feeds/similar-events")
def admin_similar_events(
    request: SimilarRequest,
    _: dict[str, Any] = Depends(require_admin_access),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    return ctx.sync_engine.find_similar_ical_events(request.threshold)
