"""Bounded exponential backoff for calls to the vector index."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import grpc
import httpx
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}
_RETRYABLE_GRPC = {
    grpc.StatusCode.UNAVAILABLE,
    grpc.StatusCode.DEADLINE_EXCEEDED,
    grpc.StatusCode.RESOURCE_EXHAUSTED,
}


def is_transient(exc: BaseException) -> bool:
    """True for transport-level failures worth retrying.

    Client errors (4xx, validation, dimension mismatches) are never
    transient: the same request would fail again.
    """
    if isinstance(exc, (httpx.TransportError, ResponseHandlingException)):
        return True
    if isinstance(exc, UnexpectedResponse):
        return exc.status_code in _RETRYABLE_STATUS
    if isinstance(exc, grpc.RpcError):
        code = exc.code() if callable(getattr(exc, "code", None)) else None
        return code in _RETRYABLE_GRPC
    return isinstance(exc, (ConnectionError, TimeoutError))


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 0.5
    max_delay: float = 8.0
    multiplier: float = 2.0
    jitter: float = 0.1

    @classmethod
    def none(cls) -> RetryPolicy:
        """A policy that tries exactly once."""
        return cls(max_attempts=1, base_delay=0.0, max_delay=0.0, jitter=0.0)

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the *attempt*-th failure (1-based)."""
        delay = min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, self.jitter * delay)
        return delay

    async def call(
        self,
        func: Callable[[], Awaitable[T]],
        *,
        description: str = "index request",
    ) -> T:
        """Await ``func()`` until it succeeds, fails permanently, or attempts run out.

        The last transient exception is re-raised when attempts are exhausted.
        """
        attempt = 1
        while True:
            try:
                return await func()
            except Exception as exc:
                if not is_transient(exc) or attempt >= self.max_attempts:
                    raise
                delay = self.delay(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s. Retrying in %.2fs.",
                    description,
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)
                attempt += 1
