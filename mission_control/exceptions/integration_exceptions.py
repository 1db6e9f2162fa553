"""
Integration Exception Classes.

Errors originating from external collaborators (search/analytics
providers, agent runtime). The engine passes them through unchanged so its
own state stays consistent regardless of third-party availability.

This module provides:
- NotConfiguredError: provider unknown or missing credentials (permanent)
- RateLimitedError: provider quota or QPS window exhausted (transient)
"""

from __future__ import annotations

from .mission_exceptions import ConfigurationError, ErrorCode


class NotConfiguredError(ConfigurationError):
    """
    Raised when a provider is not configured.

    This is a permanent error - do not retry until configuration changes.

    Example:
        >>> raise NotConfiguredError("ahrefs", "no API key configured")
    """

    def __init__(self, provider: str, message: str = "provider not configured") -> None:
        """
        Initialize NotConfiguredError.

        Args:
            provider: Provider name
            message: Error description
        """
        super().__init__(f"{provider}: {message}", error_code=ErrorCode.NOT_CONFIGURED.value)
        self.provider = provider


class RateLimitedError(ConfigurationError):
    """
    Raised when a provider rate limit or daily quota is exhausted.

    This is a transient error - retry after `retry_after` seconds.

    Attributes:
        retry_after: Suggested retry delay in seconds

    Example:
        >>> raise RateLimitedError("serp", retry_after=1.0)
    """

    def __init__(
        self,
        provider: str,
        retry_after: float | None = None,
        message: str = "rate limit exceeded",
    ) -> None:
        """
        Initialize RateLimitedError.

        Args:
            provider: Provider name
            retry_after: Suggested retry delay in seconds
            message: Error description
        """
        super().__init__(f"{provider}: {message}", error_code=ErrorCode.RATE_LIMITED.value)
        self.provider = provider
        self.retry_after = retry_after
