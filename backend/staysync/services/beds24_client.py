"""Beds24 v2 API client with token auth, retries and shared rate limiting."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import httpx

from staysync.errors import AuthError, RateLimitExceeded, UpstreamTransportError
from staysync.models import DateRange, Occupancy
from staysync.services.auth import AuthStrategy, build_auth_strategy

if TYPE_CHECKING:
    from staysync.config import Settings
    from staysync.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def _reset_hint(headers: Mapping[str, str]) -> float | None:
    """Seconds until the upstream accepts calls again, if it said so."""
    for header in ("Retry-After", "X-RateLimit-5min-Resets-In"):
        raw = headers.get(header)
        if raw is None:
            continue
        try:
            return max(0.0, float(raw))
        except ValueError:
            continue
    return None


class Beds24Client:
    """Adapter for the Beds24 v2 API.

    Every call goes through the shared rate limiter and carries the token
    supplied by the configured auth strategy.
    """

    def __init__(
        self,
        settings: "Settings",
        rate_limiter: "RateLimiter",
        auth: AuthStrategy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._settings = settings
        self.rate_limiter = rate_limiter
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._sleep = sleep
        self.max_retries = max(1, settings.beds24_max_retries)
        self.backoff = settings.beds24_retry_backoff
        self.call_timeout = settings.adapter_timeout
        self.auth = auth or build_auth_strategy(settings, self._get_client, rate_limiter)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._settings.beds24_base_url,
                timeout=self._settings.beds24_timeout,
                headers={
                    "Accept": "application/json",
                    "User-Agent": self._settings.user_agent,
                },
                transport=self._transport,
            )
        return self._client

    async def request_json(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Perform one logical upstream call.

        Each attempt is bounded by ``adapter_timeout``, counted from the moment
        the rate limiter lets it through. Timeouts, connection errors and 5xx
        are retried with exponential backoff. A 429 waits for the server's reset
        hint and is retried once. A 401/403 triggers one token refresh when the
        strategy supports it.
        """
        attempt = 0
        throttled = False
        reauthenticated = False

        while True:
            attempt += 1
            await self.rate_limiter.acquire()
            token = await self.auth.get_valid_token()
            client = await self._get_client()

            # the deadline starts once the rate limiter has granted the slot
            try:
                resp = await asyncio.wait_for(
                    client.request(
                        method,
                        path,
                        params=params,
                        json=json,
                        headers={self.auth.header_name: token},
                    ),
                    timeout=self.call_timeout,
                )
            except asyncio.TimeoutError:
                error = UpstreamTransportError(f"{method} {path} timeout after {self.call_timeout}s")
            except httpx.TimeoutException as e:
                error = UpstreamTransportError(f"{method} {path} timeout: {e}")
            except httpx.RequestError as e:
                error = UpstreamTransportError(f"{method} {path} request error: {e}")
            else:
                self.rate_limiter.update_from_headers(resp.headers)
                status = resp.status_code

                if status == 429:
                    hint = _reset_hint(resp.headers)
                    if throttled:
                        raise RateLimitExceeded(f"{method} {path} still throttled", retry_after=hint)
                    throttled = True
                    self.rate_limiter.defer(hint if hint is not None else self.backoff)
                    attempt -= 1
                    continue

                if status in (401, 403):
                    if self.auth.can_refresh and not reauthenticated:
                        logger.warning(f"Beds24 rejected token ({status}), refreshing")
                        reauthenticated = True
                        self.auth.invalidate()
                        attempt -= 1
                        continue
                    raise AuthError(f"Beds24 rejected credentials for {method} {path}: {status}")

                if status >= 500:
                    error = UpstreamTransportError(f"{method} {path} status {status}", status)
                elif status >= 400:
                    raise UpstreamTransportError(
                        f"{method} {path} status {status}: {resp.text[:200]}", status
                    )
                else:
                    return self._decode(resp, method, path)

            logger.warning(f"Beds24 {error} (attempt {attempt}/{self.max_retries})")
            if attempt >= self.max_retries:
                raise error
            await self._sleep(self.backoff * 2 ** (attempt - 1))

    @staticmethod
    def _decode(resp: httpx.Response, method: str, path: str) -> Any:
        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamTransportError(
                f"{method} {path} returned invalid JSON", resp.status_code
            ) from e
        if isinstance(data, dict) and data.get("success") is False:
            message = data.get("error") or data.get("message") or "unknown error"
            raise UpstreamTransportError(f"Beds24 error on {path}: {message}", resp.status_code)
        return data

    async def get_bookings(self, prop_id: str, room_id: str, date_range: DateRange) -> Any:
        """Bookings overlapping the range (arrival before its end, departure after its start)."""
        return await self.request_json(
            "GET",
            "/bookings",
            params={
                "propertyId": prop_id,
                "roomId": room_id,
                "arrivalTo": (date_range.end - timedelta(days=1)).isoformat(),
                "departureFrom": (date_range.start + timedelta(days=1)).isoformat(),
            },
        )

    async def get_calendar(self, prop_id: str, room_id: str, date_range: DateRange) -> Any:
        return await self.request_json(
            "GET",
            "/inventory/rooms/calendar",
            params={
                "propertyId": prop_id,
                "roomId": room_id,
                "startDate": date_range.start.isoformat(),
                "endDate": (date_range.end - timedelta(days=1)).isoformat(),
                "includePrices": "true",
                "includeNumAvail": "true",
                "includeMinStay": "true",
                "includeMaxStay": "true",
            },
        )

    async def get_offers(
        self, prop_id: str, room_id: str, date_range: DateRange, occupancy: Occupancy
    ) -> Any:
        return await self.request_json(
            "GET",
            "/inventory/rooms/offers",
            params={
                "propertyId": prop_id,
                "roomId": room_id,
                "arrival": date_range.start.isoformat(),
                "departure": date_range.end.isoformat(),
                "numAdults": occupancy.adults,
                "numChildren": occupancy.children,
            },
        )

    async def get_properties(self, prop_id: str | None = None) -> Any:
        params: dict[str, Any] = {"includeAllRooms": "true"}
        if prop_id:
            params["id"] = prop_id
        return await self.request_json("GET", "/properties", params=params)

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None
