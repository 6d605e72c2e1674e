"""
Typed error hierarchy shared by every connector.

All upstream failures are mapped onto one of six kinds. Each carries a
machine-readable code and a recovery action so callers can branch on
``recovery_action`` instead of message text.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

RECONNECT = "reconnect"
RETRY_WITH_BACKOFF = "retry_with_backoff"
ABORT_WITH_MESSAGE = "abort_with_message"
SELECT_ACCOUNT = "select_account"

NETWORK_RETRY_AFTER_MS = 2000
DEFAULT_RATE_LIMIT_RETRY_S = 60.0


class PrismError(RuntimeError):
    """Base class for every classified failure."""

    def __init__(
        self,
        message: str,
        code: str,
        recovery_action: str,
        platform: Optional[str] = None,
        retry_after_ms: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.recovery_action = recovery_action
        self.platform = platform
        self.retry_after_ms = retry_after_ms

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "error": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "recovery_action": self.recovery_action,
            "platform": self.platform,
        }
        if self.retry_after_ms is not None:
            out["retry_after_ms"] = self.retry_after_ms
        return out


class TokenExpiredError(PrismError):
    def __init__(self, platform: str):
        super().__init__(
            f"Your {platform} connection has expired. Please reconnect.",
            "TOKEN_EXPIRED",
            RECONNECT,
            platform=platform,
        )


class RateLimitError(PrismError):
    def __init__(self, platform: str, retry_after_ms: int):
        super().__init__(
            f"Rate limited by {platform}. Retrying automatically...",
            "RATE_LIMITED",
            RETRY_WITH_BACKOFF,
            platform=platform,
            retry_after_ms=retry_after_ms,
        )


class AccountAccessError(PrismError):
    def __init__(self, platform: str):
        super().__init__(
            f"Cannot access the selected {platform} ad account. "
            "Check permissions or select a different account.",
            "ACCOUNT_ACCESS",
            SELECT_ACCOUNT,
            platform=platform,
        )


class NetworkError(PrismError):
    def __init__(self, platform: str, message: Optional[str] = None, code: str = "NETWORK_ERROR"):
        super().__init__(
            message or f"Network error connecting to {platform}. Retrying...",
            code,
            RETRY_WITH_BACKOFF,
            platform=platform,
            retry_after_ms=NETWORK_RETRY_AFTER_MS,
        )


class FetchTimeoutError(NetworkError):
    """The whole account fetch did not settle inside its time budget."""

    def __init__(self, platform: str, timeout_s: float):
        super().__init__(
            platform,
            message=f"{platform} did not respond within {timeout_s:g}s.",
            code="TIMEOUT",
        )
        self.timeout_s = timeout_s


class ApiError(PrismError):
    def __init__(self, platform: str, message: str, status_code: Optional[int] = None):
        super().__init__(
            f"{platform} API error: {message}",
            "API_ERROR",
            ABORT_WITH_MESSAGE,
            platform=platform,
        )
        self.status_code = status_code


class DataValidationError(PrismError):
    def __init__(self, message: str, platform: Optional[str] = None):
        super().__init__(
            f"Data validation error: {message}",
            "DATA_VALIDATION",
            ABORT_WITH_MESSAGE,
            platform=platform,
        )


# ── Classification ────────────────────────────────────────────────────


def parse_retry_after_ms(value: Optional[str], default_s: float = DEFAULT_RATE_LIMIT_RETRY_S) -> int:
    """Retry-After in seconds (integer or fractional, as Shopify sends) to milliseconds."""
    try:
        seconds = float(value) if value not in (None, "") else default_s
    except (TypeError, ValueError):
        seconds = default_s
    if seconds < 0:
        seconds = default_s
    return int(seconds * 1000)


def classify_http_error(
    platform: str,
    status_code: int,
    headers: Optional[Mapping[str, str]] = None,
    platform_code: Any = None,
    message: Optional[str] = None,
    token_expired_codes: frozenset = frozenset(),
    rate_limit_codes: frozenset = frozenset(),
    account_access_codes: frozenset = frozenset(),
) -> PrismError:
    """
    Map a non-2xx response onto exactly one error kind.

    HTTP status is checked first, then the platform-specific error code from
    the body. Anything unmatched is an ApiError.
    """
    headers = headers or {}
    if status_code == 401 or platform_code in token_expired_codes:
        return TokenExpiredError(platform)
    if status_code == 429 or platform_code in rate_limit_codes:
        return RateLimitError(platform, parse_retry_after_ms(headers.get("retry-after")))
    if status_code == 403 or platform_code in account_access_codes:
        return AccountAccessError(platform)
    return ApiError(platform, message or f"HTTP {status_code}", status_code=status_code)


def classify_exception(exc: BaseException, platform: str) -> PrismError:
    """Turn any exception escaping a connector into a PrismError."""
    if isinstance(exc, PrismError):
        return exc
    if isinstance(exc, httpx.TransportError):
        return NetworkError(platform)
    return ApiError(platform, str(exc) or type(exc).__name__)


# ── Retry helper ──────────────────────────────────────────────────────


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    max_sleep_s: float = 10.0,
) -> T:
    """
    Await ``fn()``, retrying only errors whose recovery action is
    retry_with_backoff. Sleeps ``retry_after_ms`` between attempts, capped at
    ``max_sleep_s``.
    """
    attempt = 1
    while True:
        try:
            return await fn()
        except PrismError as e:
            if e.recovery_action != RETRY_WITH_BACKOFF or attempt >= max_attempts:
                raise
            sleep_s = min((e.retry_after_ms or NETWORK_RETRY_AFTER_MS) / 1000.0, max_sleep_s)
            logger.warning(
                "%s %s. Sleeping %.1fs (attempt %d/%d)",
                e.platform,
                e.code,
                sleep_s,
                attempt,
                max_attempts,
            )
            await asyncio.sleep(sleep_s)
            attempt += 1
