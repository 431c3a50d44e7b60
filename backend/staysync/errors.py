"""Exceptions raised by the availability and pricing engine.

Every error carries a stable ``code`` so calling layers can map failures to
their own responses (e.g. "price unavailable" for IncompletePricingError).
"""

from datetime import date


class StaySyncError(Exception):
    code = "ERR_STAYSYNC"


class ConfigurationError(StaySyncError):
    code = "ERR_CONFIG"


class UnknownRoomError(StaySyncError):
    code = "ERR_UNKNOWN_ROOM"

    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(f"Unknown apartment slug: {slug}")


class AuthError(StaySyncError):
    """Token refresh or upstream authentication failed."""
    code = "ERR_AUTH"


class UpstreamTransportError(StaySyncError):
    """Timeout, connection failure or unusable upstream response."""
    code = "ERR_UPSTREAM"

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimitExceeded(UpstreamTransportError):
    """Upstream kept throttling after the permitted retry."""
    code = "ERR_RATE_LIMIT"

    def __init__(self, message: str, retry_after: float | None = None):
        self.retry_after = retry_after
        super().__init__(message, status_code=429)


class UpstreamUnavailable(StaySyncError):
    """Every source adapter failed, so no window can be reconciled."""
    code = "ERR_UPSTREAM_UNAVAILABLE"

    def __init__(self, failures: dict[str, str]):
        self.failures = failures
        detail = ", ".join(f"{k}: {v}" for k, v in failures.items())
        super().__init__(f"All upstream sources failed ({detail})")


class IncompletePricingError(StaySyncError):
    code = "ERR_PRICE_UNAVAILABLE"

    def __init__(self, missing: list[date]):
        self.missing = missing
        days = ", ".join(d.isoformat() for d in missing)
        super().__init__(f"No resolved price for {days}")


class DatesUnavailableError(StaySyncError):
    code = "ERR_DATES_UNAVAILABLE"

    def __init__(self, unavailable: list[date]):
        self.unavailable = unavailable
        days = ", ".join(d.isoformat() for d in unavailable)
        super().__init__(f"The requested dates are not available: {days}")


class InvalidStayError(StaySyncError):
    code = "ERR_INVALID_STAY"
