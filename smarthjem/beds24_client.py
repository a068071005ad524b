from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable

import requests

from smarthjem.models import Beds24Config, Beds24Settings, resolve_timezone

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 86400
BLOCK_STATUS = "black"
BLOCK_LAST_NAME = "Sperre"
BLOCK_DEFAULT_FIRST_NAME = "Eier"


class Beds24Error(RuntimeError):
    pass


class Beds24AuthError(Beds24Error):
    pass


class Beds24RateLimitError(Beds24Error):
    pass


class Beds24ConfigError(Beds24Error):
    pass


@dataclass
class TokenGrant:
    token: str
    refresh_token: str
    expires_at: datetime
    scopes: list[str]


def _grant_from_payload(payload: Any, fallback_refresh: str = "") -> TokenGrant:
    if not isinstance(payload, dict) or not payload.get("token"):
        raise Beds24AuthError("No token received from Beds24")
    try:
        expires_in = int(payload.get("expiresIn") or DEFAULT_EXPIRES_IN)
    except (TypeError, ValueError):
        expires_in = DEFAULT_EXPIRES_IN
    scopes = payload.get("scopes") or []
    if isinstance(scopes, str):
        scopes = [x.strip() for x in scopes.split(",") if x.strip()]
    return TokenGrant(
        token=str(payload["token"]),
        refresh_token=str(payload.get("refreshToken") or fallback_refresh),
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        scopes=[str(x) for x in scopes],
    )


def block_dates(start: datetime, end: datetime | None, timezone_name: str = "UTC") -> tuple[str, str]:
    tz = resolve_timezone(timezone_name)
    arrival = start.astimezone(tz).date()
    departure = (end or start).astimezone(tz).date()
    if departure <= arrival:
        departure = arrival + timedelta(days=1)
    return arrival.isoformat(), departure.isoformat()


def _created_booking_id(payload: Any) -> str | None:
    items = payload if isinstance(payload, list) else [payload]
    for item in items:
        if not isinstance(item, dict):
            continue
        nested = item.get("new") if isinstance(item.get("new"), dict) else {}
        value = item.get("id") or item.get("bookId") or nested.get("id")
        if value:
            return str(value)
    return None


def exchange_invite_code(
    config: Beds24Config, invite_code: str, session: requests.Session | None = None
) -> TokenGrant:
    http = session or requests.Session()
    response = http.get(
        f"{config.api_base_url}/authentication/setup",
        headers={"code": invite_code.strip(), "Accept": "application/json"},
        timeout=config.timeout_seconds,
    )
    if not response.ok:
        raise Beds24AuthError(f"Invite code exchange failed: HTTP {response.status_code}")
    return _grant_from_payload(response.json())


class Beds24Client:
    def __init__(
        self,
        config: Beds24Config,
        settings: Beds24Settings,
        session: requests.Session | None = None,
        on_token_refresh: Callable[[TokenGrant], None] | None = None,
        timezone_name: str = "UTC",
    ) -> None:
        self.config = config
        self.settings = settings
        self.session = session or requests.Session()
        self.on_token_refresh = on_token_refresh
        self.timezone_name = timezone_name

    def is_configured(self) -> bool:
        return bool(self.settings.api_key or self.settings.refresh_token)

    def _url(self, path: str) -> str:
        return f"{self.config.api_base_url}/{path.lstrip('/')}"

    def _needs_refresh(self) -> bool:
        if not self.settings.refresh_token:
            return False
        if not self.settings.api_key or self.settings.token_expiry is None:
            return True
        margin = timedelta(minutes=self.config.refresh_margin_minutes)
        return self.settings.token_expiry - datetime.now(timezone.utc) < margin

    def refresh_access_token(self) -> TokenGrant:
        if not self.settings.refresh_token:
            raise Beds24AuthError("No refresh token configured")
        response = self.session.get(
            self._url("/authentication/token"),
            headers={"refreshToken": self.settings.refresh_token, "Accept": "application/json"},
            timeout=self.config.timeout_seconds,
        )
        if not response.ok:
            raise Beds24AuthError(f"Token refresh failed: HTTP {response.status_code}")
        grant = _grant_from_payload(response.json(), fallback_refresh=self.settings.refresh_token)
        self.settings.api_key = grant.token
        self.settings.refresh_token = grant.refresh_token
        self.settings.token_expiry = grant.expires_at
        logger.info("Refreshed Beds24 access token for user %s", self.settings.user_id)
        if self.on_token_refresh is not None:
            self.on_token_refresh(grant)
        return grant

    def initialize(self) -> None:
        if not self.is_configured():
            raise Beds24ConfigError("Beds24 is not configured for this user")
        if self._needs_refresh():
            self.refresh_access_token()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        retry_auth: bool = True,
    ) -> Any:
        response = self.session.request(
            method,
            self._url(path),
            headers={"token": self.settings.api_key, "Accept": "application/json"},
            params=params,
            json=json,
            timeout=self.config.timeout_seconds,
        )
        if response.status_code == 401:
            if retry_auth and self.settings.refresh_token:
                self.refresh_access_token()
                return self._request(method, path, params=params, json=json, retry_auth=False)
            raise Beds24AuthError("Beds24 rejected the access token")
        if response.status_code == 429:
            raise Beds24RateLimitError("Beds24 rate limit reached")
        if not response.ok:
            raise Beds24Error(f"Beds24 answered HTTP {response.status_code}: {response.text[:300]}")
        if not response.content:
            return None
        payload = response.json()
        if isinstance(payload, dict) and payload.get("error"):
            raise Beds24Error(str(payload.get("error") or payload.get("message")))
        return payload

    def test_connection(self) -> tuple[bool, str]:
        try:
            self.initialize()
            self._request("GET", "/properties")
        except (Beds24Error, requests.RequestException) as exc:
            return False, f"{type(exc).__name__}: {exc}"
        return True, "Connected to Beds24"

    def fetch_bookings(
        self,
        arrival_from: date,
        arrival_to: date,
        modified_since: datetime | None = None,
    ) -> list[dict[str, Any]]:
        if not self.settings.prop_id:
            raise Beds24ConfigError("No Beds24 property id configured")
        params: dict[str, Any] = {
            "arrivalFrom": arrival_from.isoformat(),
            "arrivalTo": arrival_to.isoformat(),
            "propertyId": self.settings.prop_id,
        }
        if modified_since is not None:
            params["modifiedSince"] = modified_since.astimezone(timezone.utc).isoformat()
        payload = self._request("GET", "/bookings", params=params)
        if isinstance(payload, dict) and payload.get("message") and "data" not in payload:
            raise Beds24Error(str(payload["message"]))
        if isinstance(payload, dict) and isinstance(payload.get("data"), list):
            return payload["data"]
        if isinstance(payload, list):
            return payload
        logger.warning("Unexpected Beds24 bookings payload for user %s", self.settings.user_id)
        return []

    def _property_id(self) -> int:
        prop_id = self.settings.prop_id.strip()
        if not prop_id:
            raise Beds24ConfigError("No Beds24 property id configured")
        if not prop_id.isdecimal():
            raise Beds24ConfigError(f"Beds24 property id must be numeric, got {prop_id!r}")
        return int(prop_id)

    def create_block(self, start: datetime, end: datetime | None, title: str = "") -> str | None:
        property_id = self._property_id()
        arrival, departure = block_dates(start, end, self.timezone_name)
        payload = {
            "propertyId": property_id,
            "arrival": arrival,
            "departure": departure,
            "status": BLOCK_STATUS,
            "firstName": title or BLOCK_DEFAULT_FIRST_NAME,
            "lastName": BLOCK_LAST_NAME,
            "numAdult": 0,
            "numChild": 0,
        }
        return _created_booking_id(self._request("POST", "/bookings", json=payload))

    def update_block(self, booking_id: str, start: datetime, end: datetime | None, title: str = "") -> None:
        arrival, departure = block_dates(start, end, self.timezone_name)
        self._request(
            "PUT",
            f"/bookings/{booking_id}",
            json={
                "arrival": arrival,
                "departure": departure,
                "firstName": title or BLOCK_DEFAULT_FIRST_NAME,
                "lastName": BLOCK_LAST_NAME,
            },
        )

    def delete_block(self, booking_id: str) -> None:
        self._request("DELETE", f"/bookings/{booking_id}")
