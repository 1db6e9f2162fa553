"""
Provider Rate Limiter.

Per-provider QPS windows, daily quotas and throttle backoff for the external
providers missions call out to. The limiter never calls a provider itself;
the state store asks it before honoring an execution request and passes its
errors through unchanged.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Callable, Mapping, Optional

from ..error_instrumentation import log_with_context
from ..exceptions import NotConfiguredError, RateLimitedError

QPS_WINDOW_SECONDS = 1.0
QUOTA_WARNING_RATIO = 0.8
MAX_THROTTLE_ATTEMPTS = 3


@dataclass(frozen=True)
class ProviderLimit:
    """Static limits of one provider."""

    qps: int
    daily_quota: Optional[int]
    backoff_max_seconds: float


PROVIDER_LIMITS: Mapping[str, ProviderLimit] = MappingProxyType(
    {
        "serp": ProviderLimit(qps=1, daily_quota=1000, backoff_max_seconds=60),
        "gsc": ProviderLimit(qps=5, daily_quota=25000, backoff_max_seconds=30),
        "ga4": ProviderLimit(qps=10, daily_quota=50000, backoff_max_seconds=30),
        "ads": ProviderLimit(qps=1, daily_quota=15000, backoff_max_seconds=60),
        "ahrefs": ProviderLimit(qps=1, daily_quota=None, backoff_max_seconds=60),
        "perplexity": ProviderLimit(qps=1, daily_quota=None, backoff_max_seconds=60),
        "gemini": ProviderLimit(qps=5, daily_quota=None, backoff_max_seconds=30),
        "refract": ProviderLimit(qps=2, daily_quota=None, backoff_max_seconds=30),
    }
)


def _next_midnight_utc(now: float) -> float:
    current = datetime.fromtimestamp(now, tz=timezone.utc)
    midnight = (current + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.timestamp()


@dataclass
class _Usage:
    calls: list[float] = field(default_factory=list)
    daily: int = 0
    reset_at: float = 0.0
    backoff_until: float = 0.0
    attempt: int = 0


class RateLimiter:
    """
    In-process rate limiter keyed by provider name.

    Attributes:
        limits: Provider table (defaults to PROVIDER_LIMITS)
        clock: Returns epoch seconds; injectable for tests

    Example:
        >>> limiter = RateLimiter()
        >>> limiter.check("serp")
        >>> limiter.record_call("serp")
        >>> limiter.check("serp")  # raises RateLimitedError within the same second
    """

    def __init__(
        self,
        limits: Optional[Mapping[str, ProviderLimit]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.limits = limits if limits is not None else PROVIDER_LIMITS
        self.clock = clock
        self._usage: dict[str, _Usage] = {}

    def _limit(self, provider: str) -> ProviderLimit:
        limit = self.limits.get(provider)
        if limit is None:
            raise NotConfiguredError(provider, "no rate limits configured for provider")
        return limit

    def _usage_for(self, provider: str, now: float) -> _Usage:
        usage = self._usage.get(provider)
        if usage is None:
            usage = _Usage(reset_at=_next_midnight_utc(now))
            self._usage[provider] = usage
        if usage.reset_at <= now:
            usage.daily = 0
            usage.reset_at = _next_midnight_utc(now)
        return usage

    def check(self, provider: str) -> None:
        """
        Check whether a call to `provider` may proceed now.

        Raises:
            NotConfiguredError: Unknown provider
            RateLimitedError: Backoff active, QPS window full or daily quota used
        """
        limit = self._limit(provider)
        now = self.clock()
        usage = self._usage_for(provider, now)

        if usage.backoff_until > now:
            raise RateLimitedError(
                provider,
                retry_after=usage.backoff_until - now,
                message="provider in backoff",
            )

        recent = [t for t in usage.calls if t > now - QPS_WINDOW_SECONDS]
        if len(recent) >= limit.qps:
            raise RateLimitedError(
                provider,
                retry_after=QPS_WINDOW_SECONDS - (now - recent[0]),
                message=f"QPS limit ({limit.qps}/s) exceeded",
            )

        if limit.daily_quota is not None:
            if usage.daily >= limit.daily_quota:
                log_with_context(
                    "warning",
                    "provider_quota_exhausted",
                    provider=provider,
                    daily_used=usage.daily,
                    daily_quota=limit.daily_quota,
                )
                raise RateLimitedError(
                    provider,
                    retry_after=usage.reset_at - now,
                    message=f"daily quota ({limit.daily_quota}) exceeded",
                )
            if usage.daily >= limit.daily_quota * QUOTA_WARNING_RATIO:
                log_with_context(
                    "warning",
                    "provider_quota_warning",
                    provider=provider,
                    daily_used=usage.daily,
                    daily_quota=limit.daily_quota,
                )

    def record_call(self, provider: str) -> None:
        """Count one call made to `provider`."""
        self._limit(provider)
        now = self.clock()
        usage = self._usage_for(provider, now)
        usage.calls = [t for t in usage.calls if t > now - 10 * QPS_WINDOW_SECONDS]
        usage.calls.append(now)
        usage.daily += 1

    def record_throttle(self, provider: str) -> float:
        """
        Register a provider-side throttle (HTTP 429) and back off.

        Returns:
            Backoff delay in seconds (2s, 4s, 8s... capped per provider)
        """
        limit = self._limit(provider)
        now = self.clock()
        usage = self._usage_for(provider, now)
        usage.attempt += 1
        delay = min(2.0**usage.attempt, limit.backoff_max_seconds)
        if usage.attempt >= MAX_THROTTLE_ATTEMPTS:
            delay = limit.backoff_max_seconds
        usage.backoff_until = now + delay
        log_with_context(
            "warning",
            "provider_throttled",
            provider=provider,
            attempt=usage.attempt,
            backoff_seconds=delay,
        )
        return delay

    def reset_backoff(self, provider: str) -> None:
        usage = self._usage.get(provider)
        if usage is not None:
            usage.backoff_until = 0.0
            usage.attempt = 0

    def usage(self, provider: str) -> dict[str, Optional[float]]:
        """Current counters for `provider`."""
        limit = self._limit(provider)
        usage = self._usage_for(provider, self.clock())
        return {
            "daily_used": usage.daily,
            "daily_quota": limit.daily_quota,
            "backoff_until": usage.backoff_until or None,
        }
