"""Retry interceptor for the HTTP transport.

Decides, after a failed attempt, whether the transport should try again:
  - only for retryable methods (idempotent ones plus POST)
  - only for retryable status codes, or connection-level errors
  - at most ``retry_limit`` times per request

Backoff strategy:
  delay = min(base * 2^attempt + jitter, max_delay)
  jitter = random(0, base * 0.5)
"""

from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from reqdispatch.dispatch.request import Request

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = frozenset({"DELETE", "GET", "HEAD", "OPTIONS", "PUT", "TRACE"})
DEFAULT_RETRYABLE_METHODS = IDEMPOTENT_METHODS | {"POST"}
DEFAULT_RETRYABLE_STATUS_CODES = frozenset({408, 500, 502, 503, 504})


class RetryPolicy:
    """Transport interceptor that retries transient failures with exponential backoff.

    Usage:
        transport = HttpTransport(interceptors=[RetryPolicy(retry_limit=3)])
    """

    def __init__(
        self,
        retry_limit: int = 2,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        retryable_methods: frozenset[str] | set[str] | None = None,
        retryable_status_codes: frozenset[int] | set[int] | None = None,
    ):
        self.retry_limit = retry_limit
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.retryable_methods = frozenset(
            m.upper() for m in (retryable_methods if retryable_methods is not None else DEFAULT_RETRYABLE_METHODS)
        )
        self.retryable_status_codes = frozenset(
            retryable_status_codes if retryable_status_codes is not None else DEFAULT_RETRYABLE_STATUS_CODES
        )

    async def adapt(self, request: Request, http_request: httpx.Request) -> httpx.Request:
        return http_request

    async def retry(
        self,
        request: Request,
        http_request: httpx.Request,
        response: httpx.Response | None,
        error: Exception,
        attempt: int,
    ) -> float | None:
        """Return a delay in seconds before the next attempt, or None to give up.

        Args:
            request: The dispatched request
            http_request: The wire request that failed
            response: The response, when the server answered
            error: The error raised for the attempt
            attempt: Current attempt number (0-based)
        """
        if attempt >= self.retry_limit:
            return None

        if http_request.method.upper() not in self.retryable_methods:
            return None

        if response is not None:
            if response.status_code not in self.retryable_status_codes:
                return None
        elif not isinstance(error, httpx.TransportError):
            return None

        delay = self.calculate_backoff(attempt, self.base_delay, self.max_delay)
        logger.info(
            "Retry %d/%d for %s %s in %.2fs",
            attempt + 1,
            self.retry_limit,
            request.kind,
            request.request_id,
            delay,
        )
        return delay

    @staticmethod
    def calculate_backoff(
        attempt: int,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
    ) -> float:
        """Calculate exponential backoff with jitter.

        Formula: min(base * 2^attempt + jitter, max_delay)
        Jitter: random(0, base * 0.5)
        """
        exponential = base_delay * (2**attempt)
        jitter = random.uniform(0, base_delay * 0.5)
        return min(exponential + jitter, max_delay)
