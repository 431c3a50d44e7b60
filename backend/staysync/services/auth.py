"""Beds24 authentication: a static long-life token or a refreshable access token."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import httpx

from staysync.errors import AuthError, ConfigurationError
from staysync.services.normalize import first_present

if TYPE_CHECKING:
    from staysync.config import Settings
    from staysync.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

EXPIRY_BUFFER = timedelta(minutes=5)
DEFAULT_EXPIRES_IN = 86400


class AuthStrategy(ABC):
    header_name = "token"
    can_refresh = False

    @abstractmethod
    async def get_valid_token(self) -> str:
        ...

    def invalidate(self) -> None:
        """Forget the current token after the upstream rejected it."""


class LongLifeToken(AuthStrategy):
    """Static long-life token; nothing to refresh, so a 401 is final."""

    def __init__(self, token: str):
        if not token:
            raise ConfigurationError("A long-life token is required")
        self._token = token

    async def get_valid_token(self) -> str:
        return self._token


class RefreshableToken(AuthStrategy):
    """Access token refreshed ahead of expiry.

    Concurrent callers that find the token inside the expiry buffer all await
    the same refresh task, so only one refresh request is ever in flight.
    """

    can_refresh = True

    def __init__(
        self,
        refresh_token: str,
        http: Callable[[], Awaitable[httpx.AsyncClient]],
        access_token: str = "",
        expires_at: datetime | None = None,
        rate_limiter: "RateLimiter | None" = None,
        max_attempts: int = 3,
        backoff: float = 1.0,
        refresh_path: str = "/authentication/token",
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not refresh_token:
            raise ConfigurationError("A refresh token is required")
        self._refresh_token = refresh_token
        self._http = http
        self._access_token = access_token
        self._expires_at = expires_at if access_token else None
        self._rate_limiter = rate_limiter
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.refresh_path = refresh_path
        self._now = now
        self._sleep = sleep
        self._refresh_task: asyncio.Task | None = None
        self.refresh_count = 0

    def needs_refresh(self) -> bool:
        if not self._access_token or self._expires_at is None:
            return True
        return self._now() >= self._expires_at - EXPIRY_BUFFER

    async def get_valid_token(self) -> str:
        if not self.needs_refresh():
            return self._access_token

        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh())
            self._refresh_task.add_done_callback(self._clear_task)
        # shield: one caller's cancellation must not abort the shared refresh
        return await asyncio.shield(self._refresh_task)

    def _clear_task(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    def invalidate(self) -> None:
        self._expires_at = None

    async def _refresh(self) -> str:
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                if self._rate_limiter is not None:
                    await self._rate_limiter.acquire()
                client = await self._http()
                resp = await client.post(
                    self.refresh_path,
                    json={"refreshToken": self._refresh_token},
                    headers={"refreshToken": self._refresh_token},
                )
                resp.raise_for_status()
                self._apply(resp.json())
                self.refresh_count += 1
                logger.info("Beds24 access token refreshed")
                return self._access_token
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                logger.warning(
                    f"Beds24 token refresh failed (attempt {attempt}/{self.max_attempts}): {e}"
                )
                if attempt < self.max_attempts:
                    await self._sleep(self.backoff * 2 ** (attempt - 1))

        raise AuthError(
            f"Token refresh failed after {self.max_attempts} attempts: {last_error}"
        ) from last_error

    def _apply(self, payload: object) -> None:
        if not isinstance(payload, dict):
            raise ValueError("Invalid refresh response format")
        body = payload.get("data") if isinstance(payload.get("data"), dict) else payload

        token = first_present(body, "token", "accessToken", "access_token")
        if not isinstance(token, str) or not token:
            raise ValueError("Invalid refresh response format")

        expires_in = first_present(body, "expiresIn", "expires_in")
        try:
            seconds = int(expires_in) if expires_in is not None else DEFAULT_EXPIRES_IN
        except (TypeError, ValueError):
            seconds = DEFAULT_EXPIRES_IN

        self._access_token = token
        self._expires_at = self._now() + timedelta(seconds=seconds)
        rotated = first_present(body, "refreshToken", "refresh_token")
        if isinstance(rotated, str) and rotated:
            self._refresh_token = rotated


def build_auth_strategy(
    settings: "Settings",
    http: Callable[[], Awaitable[httpx.AsyncClient]],
    rate_limiter: "RateLimiter | None" = None,
) -> AuthStrategy:
    if settings.beds24_long_life_token:
        return LongLifeToken(settings.beds24_long_life_token)
    if settings.beds24_refresh_token:
        expires_at = None
        if settings.beds24_access_token:
            expires_at = datetime.now(timezone.utc) + timedelta(
                seconds=settings.beds24_token_expires_in
            )
        return RefreshableToken(
            refresh_token=settings.beds24_refresh_token,
            http=http,
            access_token=settings.beds24_access_token,
            expires_at=expires_at,
            rate_limiter=rate_limiter,
            backoff=settings.beds24_retry_backoff,
        )
    raise ConfigurationError(
        "Set BEDS24_LONG_LIFE_TOKEN or BEDS24_REFRESH_TOKEN to reach the upstream"
    )
