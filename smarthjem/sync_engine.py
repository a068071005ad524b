from __future__ import annotations

import csv
import io
import logging
import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import requests

from smarthjem.beds24_client import Beds24Client, Beds24Error, TokenGrant
from smarthjem.config_manager import ConfigManager
from smarthjem.ical_client import FeedEvent, FeedFetchError, FeedParseError, IcalFeedClient
from smarthjem.models import (
    AppConfig,
    EventRecord,
    FeedSyncStats,
    SyncResult,
    preservation_threshold,
    sync_window,
    utc_now,
)
from smarthjem.reconciler import (
    apply_enhanced_name,
    beds24_ical_booking_id,
    booking_changed,
    booking_id,
    booking_property_id,
    booking_to_event,
    csv_row_to_event,
    feed_room_id,
    find_duplicate,
    find_enhanced_name,
    group_similar_events,
    is_echo_booking,
    room_mismatch,
    sanitize_description,
)
from smarthjem.state_store import StateStore

logger = logging.getLogger(__name__)

SYNC_ERRORS = (FeedFetchError, FeedParseError, Beds24Error, requests.RequestException)


def _duration_ms(started_at: datetime) -> int:
    return int((datetime.now(timezone.utc) - started_at).total_seconds() * 1000)


def _feed_event_changed(existing: EventRecord, incoming: FeedEvent) -> bool:
    return (
        existing.title != incoming.summary
        or existing.description != sanitize_description(incoming.description)
        or existing.start != incoming.start
        or existing.end != incoming.end
    )


class SyncEngine:
    def __init__(
        self,
        config_manager: ConfigManager,
        state_store: StateStore,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config_manager = config_manager
        self.state_store = state_store
        self._sleep = sleep

    # clients

    def _ical_client(self, config: AppConfig) -> IcalFeedClient:
        return IcalFeedClient(config.ical, config.sync.timezone)

    def beds24_client_for(self, user_id: int, config: AppConfig | None = None) -> Beds24Client | None:
        settings = self.state_store.get_beds24_config(user_id)
        if settings is None or not (settings.api_key or settings.refresh_token):
            return None
        config = config or self.config_manager.load()

        def _persist(grant: TokenGrant) -> None:
            self.state_store.save_beds24_config(
                user_id,
                api_key=grant.token,
                refresh_token=grant.refresh_token,
                token_expiry=grant.expires_at,
            )

        client = Beds24Client(
            config.beds24,
            settings,
            on_token_refresh=_persist,
            timezone_name=config.sync.timezone,
        )
        client.initialize()
        return client

    def _audit(self, scope: str, ref: str, action: str, run_id: int | None, **details: Any) -> None:
        self.state_store.record_audit_event(scope=scope, ref=ref, action=action, details=details, run_id=run_id)

    # ical

    def sync_ical_feed(self, feed_id: int, run_id: int | None = None) -> FeedSyncStats:
        feed = self.state_store.get_feed(feed_id)
        if feed is None:
            raise LookupError(f"Feed {feed_id} not found")
        config = self.config_manager.load()
        now = utc_now()
        window_start, window_end = sync_window(now, config.sync.past_days, config.sync.future_days)
        keep_after = preservation_threshold(now, config.sync.preservation_years)
        scope = f"ical_feed:{feed.id}"
        stats = FeedSyncStats(feed_id=feed.id)

        feed_events = self._ical_client(config).fetch_events(feed.url)
        existing = {event.source_uid: event for event in self.state_store.list_feed_events(feed.id)}
        seen_uids: set[str] = set()
        room_id = feed_room_id(feed.url)

        for item in feed_events:
            seen_uids.add(item.uid)
            if item.start < window_start or item.start > window_end:
                continue
            current = existing.get(item.uid)
            if room_mismatch(item.summary, room_id):
                stats.skipped += 1
                if current is not None and not current.csv_protected:
                    self.state_store.delete_event(current.id)
                    stats.deleted += 1
                    self._audit(scope, item.uid, "delete_other_room", run_id, title=item.summary)
                continue
            if current is not None:
                if current.csv_protected:
                    stats.protected += 1
                    continue
                if not _feed_event_changed(current, item):
                    continue
                current.title = item.summary
                current.description = sanitize_description(item.description)
                current.start = item.start
                current.end = item.end
                current.all_day = item.all_day
                current.source = dict(current.source or {}, original_data=item.original_data)
                self.state_store.save_event(current)
                stats.updated += 1
                self._audit(scope, item.uid, "update", run_id, title=item.summary)
                continue
            self.state_store.create_event(
                EventRecord(
                    user_id=feed.user_id,
                    title=item.summary,
                    description=sanitize_description(item.description),
                    start=item.start,
                    end=item.end,
                    color=feed.color,
                    all_day=item.all_day,
                    location=item.original_data.get("location", ""),
                    source={
                        "type": "ical",
                        "feed_id": feed.id,
                        "uid": item.uid,
                        "url": feed.url,
                        "original_data": item.original_data,
                    },
                )
            )
            stats.created += 1
            self._audit(scope, item.uid, "create", run_id, title=item.summary)

        for uid, event in existing.items():
            if uid in seen_uids:
                continue
            if event.csv_protected:
                stats.protected += 1
                continue
            if not (window_start <= event.start <= window_end) or event.start < keep_after:
                continue
            self.state_store.delete_event(event.id)
            stats.deleted += 1
            self._audit(scope, uid, "delete_missing", run_id, title=event.title)

        self.state_store.update_feed(feed.id, last_synced=utc_now())
        logger.info(
            "Synced feed %s: %s created, %s updated, %s deleted",
            feed.id,
            stats.created,
            stats.updated,
            stats.deleted,
        )
        return stats

    def sync_user_ical_feeds(
        self, user_id: int, include_all_types: bool = False, run_id: int | None = None
    ) -> tuple[list[FeedSyncStats], int]:
        feed_type = None if include_all_types else "import"
        results: list[FeedSyncStats] = []
        failures = 0
        for feed in self.state_store.list_enabled_feeds(user_id, feed_type=feed_type):
            try:
                results.append(self.sync_ical_feed(feed.id, run_id=run_id))
            except SYNC_ERRORS as exc:
                failures += 1
                logger.warning("Feed %s failed to sync: %s", feed.id, exc)
                self._audit(f"ical_feed:{feed.id}", "feed", "sync_failed", run_id, error=str(exc))
        return results, failures

    def sync_all_ical_feeds(
        self, run_id: int | None = None, include_all_types: bool = False
    ) -> tuple[int, int]:
        changes = 0
        failures = 0
        feed_type = None if include_all_types else "import"
        for feed in self.state_store.list_enabled_feeds(feed_type=feed_type):
            try:
                changes += self.sync_ical_feed(feed.id, run_id=run_id).changes
            except SYNC_ERRORS as exc:
                failures += 1
                logger.warning("Feed %s failed to sync: %s", feed.id, exc)
                self._audit(f"ical_feed:{feed.id}", "feed", "sync_failed", run_id, error=str(exc))
        return changes, failures

    def force_refresh_feed(self, feed_id: int, run_id: int | None = None) -> FeedSyncStats:
        removed = self.state_store.delete_feed_events(feed_id)
        logger.info("Force refresh of feed %s removed %s events", feed_id, removed)
        return self.sync_ical_feed(feed_id, run_id=run_id)

    # beds24

    def _has_beds24_ical_feed(self, user_id: int) -> bool:
        return any(
            "beds24.com" in feed.url.lower() for feed in self.state_store.list_enabled_feeds(user_id)
        )

    def sync_beds24_user(self, user_id: int, run_id: int | None = None, force_full: bool = False) -> dict[str, Any]:
        settings = self.state_store.get_beds24_config(user_id)
        if settings is None or not settings.sync_enabled:
            return {"skipped": True, "reason": "sync disabled"}
        if self._has_beds24_ical_feed(user_id):
            logger.info("User %s imports Beds24 via iCal, skipping API sync", user_id)
            return {"skipped": True, "reason": "beds24 ical feed active"}

        config = self.config_manager.load()
        client = self.beds24_client_for(user_id, config)
        if client is None:
            return {"skipped": True, "reason": "not configured"}

        now = utc_now()
        window_start, window_end = sync_window(now, config.sync.past_days, config.sync.future_days)
        full_due = settings.last_full_sync is None or now - settings.last_full_sync >= timedelta(
            hours=config.sync.full_sync_hours
        )
        delta = not force_full and not full_due and settings.last_sync is not None
        modified_since = (
            settings.last_sync - timedelta(minutes=config.sync.delta_buffer_minutes) if delta else None
        )
        bookings = client.fetch_bookings(window_start.date(), window_end.date(), modified_since)

        scope = f"beds24:{user_id}"
        counts = {"created": 0, "updated": 0, "deleted": 0, "skipped": 0}
        user_events = self.state_store.list_events(user_id)
        beds24_events = {e.source_uid: e for e in user_events if e.source_type == "beds24"}
        ical_events = [e for e in user_events if e.source_type == "ical"]
        other_events = [e for e in user_events if e.source_type != "beds24"]
        own_blocks = {
            str((e.source or {}).get("beds24_booking_id"))
            for e in user_events
            if e.source_type == "local_with_beds24"
        }
        processed: set[str] = set()

        for booking in bookings:
            if not isinstance(booking, dict):
                counts["skipped"] += 1
                continue
            bid = booking_id(booking)
            if not bid:
                counts["skipped"] += 1
                continue
            processed.add(bid)
            prop = booking_property_id(booking)
            if settings.prop_id and prop and prop != settings.prop_id:
                counts["skipped"] += 1
                continue
            if bid in own_blocks or is_echo_booking(booking):
                counts["skipped"] += 1
                continue
            conversion = booking_to_event(
                booking,
                user_id=user_id,
                timezone_name=config.sync.timezone,
                checkin_hour=config.beds24.checkin_hour,
                checkout_hour=config.beds24.checkout_hour,
            )
            if conversion is None:
                counts["skipped"] += 1
                continue
            incoming = conversion.event
            if conversion.needs_name_enhancement:
                name = find_enhanced_name(incoming, ical_events)
                if name:
                    apply_enhanced_name(incoming, name)

            current = beds24_events.get(incoming.source_uid)
            if current is not None:
                if current.csv_protected:
                    counts["skipped"] += 1
                    continue
                if not booking_changed(current, incoming):
                    continue
                incoming.id = current.id
                incoming.admin_color_override = current.admin_color_override
                self.state_store.save_event(incoming)
                counts["updated"] += 1
                self._audit(scope, incoming.source_uid, "update", run_id, title=incoming.title)
                continue

            duplicate = find_duplicate(incoming, bid, other_events)
            if duplicate is not None:
                counts["skipped"] += 1
                self._audit(scope, incoming.source_uid, "skip_duplicate", run_id, duplicate_of=duplicate.id)
                continue
            created = self.state_store.create_event(incoming)
            beds24_events[created.source_uid] = created
            counts["created"] += 1
            self._audit(scope, created.source_uid, "create", run_id, title=created.title)

        if not delta:
            for uid, event in beds24_events.items():
                bid = str((event.source or {}).get("booking_id") or uid.removeprefix("beds24-"))
                if bid in processed or event.csv_protected:
                    continue
                if not (window_start <= event.start <= window_end):
                    continue
                self.state_store.delete_event(event.id)
                counts["deleted"] += 1
                self._audit(scope, uid, "delete_missing", run_id, title=event.title)
            for event in ical_events:
                ical_bid = beds24_ical_booking_id(event.source_uid)
                if ical_bid is None or ical_bid in processed or event.csv_protected:
                    continue
                self.state_store.delete_event(event.id)
                counts["deleted"] += 1
                self._audit(scope, event.source_uid, "delete_stale_ical_copy", run_id, title=event.title)

        updates: dict[str, Any] = {"last_sync": now}
        if not delta:
            updates["last_full_sync"] = now
        self.state_store.save_beds24_config(user_id, **updates)
        counts["mode"] = "delta" if delta else "full"
        logger.info(
            "Beds24 %s sync for user %s: %s created, %s updated, %s deleted",
            counts["mode"],
            user_id,
            counts["created"],
            counts["updated"],
            counts["deleted"],
        )
        return counts

    def sync_all_beds24(self, run_id: int | None = None) -> tuple[int, int]:
        changes = 0
        failures = 0
        config = self.config_manager.load()
        for index, settings in enumerate(self.state_store.list_beds24_configs(enabled_only=True)):
            if index > 0:
                self._sleep(config.sync.user_delay_seconds)
            try:
                result = self.sync_beds24_user(settings.user_id, run_id=run_id)
            except SYNC_ERRORS as exc:
                failures += 1
                logger.warning("Beds24 sync failed for user %s: %s", settings.user_id, exc)
                self._audit(f"beds24:{settings.user_id}", "user", "sync_failed", run_id, error=str(exc))
                continue
            changes += sum(int(result.get(key, 0)) for key in ("created", "updated", "deleted"))
        return changes, failures

    # local events mirrored to beds24

    def push_block(self, event: EventRecord) -> EventRecord:
        try:
            client = self.beds24_client_for(event.user_id)
            if client is None:
                return event
            block_id = client.create_block(event.start, event.end, event.title)
        except SYNC_ERRORS as exc:
            logger.warning("Could not create Beds24 block for event %s: %s", event.id, exc)
            return event
        if not block_id:
            return event
        event.source = {"type": "local_with_beds24", "beds24_booking_id": block_id, "uid": f"local-{event.id}"}
        return self.state_store.save_event(event)

    def update_block(self, event: EventRecord) -> None:
        block_id = (event.source or {}).get("beds24_booking_id")
        if event.source_type != "local_with_beds24" or not block_id:
            return
        try:
            client = self.beds24_client_for(event.user_id)
            if client is not None:
                client.update_block(str(block_id), event.start, event.end, event.title)
        except SYNC_ERRORS as exc:
            logger.warning("Could not update Beds24 block %s: %s", block_id, exc)

    def delete_block(self, event: EventRecord) -> None:
        block_id = (event.source or {}).get("beds24_booking_id")
        if event.source_type != "local_with_beds24" or not block_id:
            return
        try:
            client = self.beds24_client_for(event.user_id)
            if client is not None:
                client.delete_block(str(block_id))
        except SYNC_ERRORS as exc:
            logger.warning("Could not delete Beds24 block %s: %s", block_id, exc)

    # runs

    def sync_user(self, user_id: int, trigger: str = "on_demand") -> SyncResult:
        started_at = datetime.now(timezone.utc)
        run_id = self.state_store.start_sync_run(trigger=trigger, message=f"user {user_id}")
        stats, failures = self.sync_user_ical_feeds(user_id, run_id=run_id)
        changes = sum(item.changes for item in stats)
        try:
            result = self.sync_beds24_user(user_id, run_id=run_id)
            changes += sum(int(result.get(key, 0)) for key in ("created", "updated", "deleted"))
        except SYNC_ERRORS as exc:
            failures += 1
            logger.warning("Beds24 sync failed for user %s: %s", user_id, exc)
        return self._finish(run_id, started_at, trigger, changes, failures)

    def run_once(self, trigger: str = "manual") -> SyncResult:
        started_at = datetime.now(timezone.utc)
        has_feeds = bool(self.state_store.list_enabled_feeds())
        has_beds24 = bool(self.state_store.list_beds24_configs(enabled_only=True))
        if not has_feeds and not has_beds24:
            message = "No enabled feeds or Beds24 configs. Sync skipped."
            duration_ms = _duration_ms(started_at)
            self.state_store.record_sync_run(
                trigger=trigger,
                status="skipped",
                message=message,
                duration_ms=duration_ms,
                changes_applied=0,
                failures=0,
            )
            return SyncResult(
                status="skipped",
                message=message,
                duration_ms=duration_ms,
                changes_applied=0,
                failures=0,
                trigger=trigger,
            )

        run_id = self.state_store.start_sync_run(trigger=trigger)
        try:
            ical_changes, ical_failures = self.sync_all_ical_feeds(
                run_id=run_id, include_all_types=trigger == "manual"
            )
            beds24_changes, beds24_failures = self.sync_all_beds24(run_id=run_id)
        except Exception as exc:
            logger.error("Sync run %s crashed", run_id, exc_info=True)
            duration_ms = _duration_ms(started_at)
            message = f"{type(exc).__name__}: {exc}"
            self.state_store.finish_sync_run(
                run_id=run_id,
                status="failed",
                message=message,
                duration_ms=duration_ms,
                changes_applied=0,
                failures=1,
            )
            return SyncResult(
                status="failed",
                message=message,
                duration_ms=duration_ms,
                changes_applied=0,
                failures=1,
                trigger=trigger,
            )
        return self._finish(
            run_id, started_at, trigger, ical_changes + beds24_changes, ical_failures + beds24_failures
        )

    def _finish(
        self, run_id: int, started_at: datetime, trigger: str, changes: int, failures: int
    ) -> SyncResult:
        status = "partial" if failures else "success"
        message = f"{changes} changes applied, {failures} failures"
        duration_ms = _duration_ms(started_at)
        self.state_store.finish_sync_run(
            run_id=run_id,
            status=status,
            message=message,
            duration_ms=duration_ms,
            changes_applied=changes,
            failures=failures,
        )
        return SyncResult(
            status=status,
            message=message,
            duration_ms=duration_ms,
            changes_applied=changes,
            failures=failures,
            trigger=trigger,
        )

    # maintenance

    def find_and_remove_duplicate_ical_events(self) -> dict[str, int]:
        groups: dict[tuple[Any, ...], list[EventRecord]] = defaultdict(list)
        for event in self.state_store.list_events_by_source_type("ical"):
            groups[(event.user_id, event.title, event.start, event.end)].append(event)
        doomed: list[int] = []
        found = 0
        for events in groups.values():
            if len(events) < 2:
                continue
            found += 1
            keep = max(event.id for event in events)
            doomed.extend(event.id for event in events if event.id != keep)
        removed = self.state_store.delete_events(doomed)
        logger.info("Duplicate cleanup: %s groups, %s events removed", found, removed)
        return {"found": found, "removed": removed}

    def find_similar_ical_events(self, threshold: float = 0.8) -> dict[str, Any]:
        per_user: dict[int, list[EventRecord]] = defaultdict(list)
        for event in self.state_store.list_events_by_source_type("ical"):
            per_user[event.user_id].append(event)
        groups = []
        for events in per_user.values():
            groups.extend(group_similar_events(events, threshold))
        return {
            "groups": [group.to_dict() for group in groups],
            "total_events": sum(len(events) for events in per_user.values()),
        }

    def import_beds24_csv(self, user_id: int, csv_text: str) -> dict[str, int]:
        config = self.config_manager.load()
        reader = csv.DictReader(io.StringIO(csv_text.lstrip("\ufeff")))
        existing = {e.source_uid: e for e in self.state_store.list_events(user_id, source_type="beds24")}
        summary = {"totalRows": 0, "imported": 0, "skipped": 0, "errors": 0}
        for row in reader:
            summary["totalRows"] += 1
            try:
                event = csv_row_to_event(
                    {str(k).strip(): str(v or "").strip() for k, v in row.items() if k},
                    user_id=user_id,
                    timezone_name=config.sync.timezone,
                    checkin_hour=config.beds24.checkin_hour,
                    checkout_hour=config.beds24.checkout_hour,
                )
            except ValueError as exc:
                summary["errors"] += 1
                logger.warning("CSV row %s rejected: %s", summary["totalRows"], exc)
                continue
            if event is None:
                summary["skipped"] += 1
                continue
            current = existing.get(event.source_uid)
            if current is not None:
                event.id = current.id
                event.admin_color_override = current.admin_color_override
            existing[event.source_uid] = self.state_store.save_event(event)
            summary["imported"] += 1
        logger.info("CSV import for user %s: %s", user_id, summary)
        return summary
