"""UPS tracking API client."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from cardvault.ingest.models import TrackingActivity, TrackingInfo
from cardvault.utils.errors import ErrorKind, PipelineError, classify_status
from cardvault.utils.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://onlinetools.ups.com/api"
TOKEN_TTL_SECONDS = 55 * 60

STATUS_CODES = {
    "I": "in_transit",
    "D": "delivered",
    "X": "exception",
    "P": "pickup",
    "M": "manifested",
    "OR": "origin_scan",
    "AD": "arrived_destination",
    "OD": "out_for_delivery",
    "DP": "departed_facility",
    "AR": "arrived_facility",
}
TERMINAL_STATUSES = {"delivered", "exception"}


def map_status(code: str | None) -> str:
    return STATUS_CODES.get((code or "").upper(), "unknown")


@dataclass(slots=True)
class _Token:
    value: str
    expires_at: float


class UPSClient:
    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        api_base: str | None = None,
        session: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.client_id = client_id or os.environ.get("UPS_CLIENT_ID")
        self.client_secret = client_secret or os.environ.get("UPS_CLIENT_SECRET")
        self.api_base = (api_base or os.environ.get("UPS_API_BASE", DEFAULT_API_BASE)).rstrip("/")
        self._session = session or httpx.AsyncClient(timeout=30.0)
        self._rate_limiter = rate_limiter or RateLimiter(rate=0.5)
        self._token: _Token | None = None

    async def close(self) -> None:
        await self._session.aclose()

    async def access_token(self) -> str:
        if self._token and self._token.expires_at > time.monotonic():
            return self._token.value
        if not self.client_id or not self.client_secret:
            raise PipelineError(ErrorKind.PERMANENT_AUTH, "UPS API credentials not configured")
        try:
            response = await self._session.post(
                f"{self.api_base}/oauth/token",
                data={"grant_type": "client_credentials"},
                auth=(self.client_id, self.client_secret),
            )
        except httpx.HTTPError as exc:
            raise PipelineError(ErrorKind.NETWORK_ERROR, f"UPS token request failed: {exc}") from exc
        if not response.is_success:
            raise PipelineError(classify_status(response.status_code), f"UPS token request returned {response.status_code}")
        try:
            token = response.json()["access_token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise PipelineError(ErrorKind.NETWORK_ERROR, "UPS token response had no access_token") from exc
        self._token = _Token(value=token, expires_at=time.monotonic() + TOKEN_TTL_SECONDS)
        return token

    async def tracking_info(self, tracking_number: str) -> TrackingInfo:
        token = await self.access_token()
        await self._rate_limiter.wait_for_host(httpx.URL(self.api_base).host)
        try:
            response = await self._session.get(
                f"{self.api_base}/track/v1/details/{tracking_number}",
                headers={"Authorization": f"Bearer {token}", "transId": tracking_number, "transactionSrc": "cardvault"},
            )
        except httpx.HTTPError as exc:
            raise PipelineError(ErrorKind.NETWORK_ERROR, f"UPS request failed: {exc}") from exc
        if not response.is_success:
            raise PipelineError(
                classify_status(response.status_code), f"UPS returned {response.status_code} for {tracking_number}"
            )
        try:
            shipments = (response.json().get("trackResponse") or {}).get("shipment") or []
        except (ValueError, AttributeError) as exc:
            raise PipelineError(ErrorKind.NETWORK_ERROR, f"UPS returned an unreadable body for {tracking_number}") from exc
        if not shipments:
            raise PipelineError(ErrorKind.NOT_FOUND, f"No shipment data for {tracking_number}")
        return parse_shipment(tracking_number, shipments[0])


def parse_shipment(tracking_number: str, shipment: dict[str, Any]) -> TrackingInfo:
    packages = shipment.get("package") or [{}]
    package = packages[0]
    activities = [
        activity
        for activity in (_parse_activity(raw) for raw in package.get("activity") or [])
        if activity is not None
    ]
    current = package.get("currentStatus") or {}
    code = current.get("type") or current.get("code")
    if code is None and package.get("activity"):
        code = ((package["activity"][0].get("status") or {}).get("type"))
    delivery_dates = package.get("deliveryDate") or []
    estimated = None
    if delivery_dates:
        estimated = _parse_ups_datetime(delivery_dates[0].get("date"), None)
    return TrackingInfo(
        tracking_number=tracking_number,
        status=map_status(code),
        description=current.get("description"),
        estimated_delivery=estimated,
        activities=activities,
    )


def _parse_activity(raw: dict[str, Any]) -> TrackingActivity | None:
    occurred_at = _parse_ups_datetime(raw.get("date"), raw.get("time"))
    if occurred_at is None:
        return None
    status = raw.get("status") or {}
    address = (raw.get("location") or {}).get("address") or {}
    location = ", ".join(part for part in (address.get("city"), address.get("stateProvince")) if part) or None
    return TrackingActivity(
        status_type=status.get("type") or "Unknown",
        description=status.get("description") or "No description",
        occurred_at=occurred_at,
        location=location,
    )


def _parse_ups_datetime(day: str | None, clock: str | None) -> datetime | None:
    if not day:
        return None
    try:
        return datetime.strptime(f"{day}{clock or '000000'}", "%Y%m%d%H%M%S")
    except ValueError:
        logger.warning("Unparseable UPS date %s %s", day, clock)
        return None
