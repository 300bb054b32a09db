"""Error taxonomy shared by the scraping and analysis layers."""

from __future__ import annotations

import traceback
from dataclasses import dataclass, asdict
from typing import Any, Optional

# Scraping error codes
PROXY_ERROR = "PROXY_ERROR"
TIMEOUT = "TIMEOUT"
RATE_LIMITED = "RATE_LIMITED"
BLOCKED = "BLOCKED"
VALIDATION_ERROR = "VALIDATION_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"
PARSER_ERROR = "PARSER_ERROR"

ERROR_CODES = (
    PROXY_ERROR,
    TIMEOUT,
    RATE_LIMITED,
    BLOCKED,
    VALIDATION_ERROR,
    NETWORK_ERROR,
    PARSER_ERROR,
)


@dataclass
class ErrorPayload:
    """Structured error carried by every unsuccessful result object."""

    code: str
    message: str
    recoverable: bool = True
    context: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_exception(cls, exc: BaseException, code: str, recoverable: bool = True) -> "ErrorPayload":
        """Build a payload from an exception, keeping its traceback as context."""
        context = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return cls(code=code, message=str(exc), recoverable=recoverable, context=context)


class ScrapingError(RuntimeError):
    """Raised when an outbound scrape fails, classified by code."""

    def __init__(
        self,
        code: str,
        message: str,
        status: Optional[int] = None,
        retryable: bool = True,
        proxy: Optional[str] = None,
        user_agent: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        if code not in ERROR_CODES:
            raise ValueError(f"Unknown scraping error code: {code}")
        super().__init__(message)
        self.code = code
        self.status = status or 500
        self.retryable = retryable
        self.proxy = proxy
        self.user_agent = user_agent
        self.context = context or {}

    def __repr__(self) -> str:
        return (
            f"ScrapingError(code={self.code!r}, status={self.status}, "
            f"retryable={self.retryable}, message={str(self)!r})"
        )


class NoAvailableProxiesError(ScrapingError):
    """Raised when no proxy in the pool qualifies for selection."""

    def __init__(self, message: str = "No available proxies"):
        super().__init__(PROXY_ERROR, message, status=503, retryable=False)


class ProxyPoolError(ScrapingError):
    """Raised when the proxy pool cannot be loaded or is too small."""

    def __init__(self, message: str):
        super().__init__(PROXY_ERROR, message, status=500, retryable=False)


class RateLimitError(RuntimeError):
    """Raised when a caller exceeds its rate limit."""

    def __init__(self, message: str, retry_after: int, blocked: bool = False):
        super().__init__(message)
        self.retry_after = retry_after
        self.blocked = blocked


class GiftProcessingError(RuntimeError):
    """Raised inside gift processing; surfaced to callers as an ErrorPayload."""

    def __init__(
        self,
        message: str,
        code: str,
        recoverable: bool = True,
        context: Optional[str] = None,
    ):
        super().__init__(message)
        self.code = code
        self.recoverable = recoverable
        self.context = context

    def to_payload(self) -> ErrorPayload:
        return ErrorPayload(
            code=self.code,
            message=str(self),
            recoverable=self.recoverable,
            context=self.context,
        )


class LLMServiceError(RuntimeError):
    """Raised when the generative text service fails or returns unusable output."""
