"""Capped exponential backoff shared by cluster calls and watch resubscription."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from cubeharvest.config import Settings
from cubeharvest.domain.errors import ClusterUnavailable, TransientClusterError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """How often and how patiently a failing call is retried."""

    attempts: int = 5
    initial_seconds: float = 0.2
    max_seconds: float = 4.0
    factor: float = 2.0

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the ``attempt``-th failure (0-based)."""

        return min(self.max_seconds, self.initial_seconds * self.factor**attempt)

    @classmethod
    def from_settings(cls, settings: Settings) -> BackoffPolicy:
        return cls(
            attempts=settings.retry_attempts,
            initial_seconds=settings.backoff_initial_seconds,
            max_seconds=settings.backoff_max_seconds,
        )


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: BackoffPolicy,
    *,
    description: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` retrying ``TransientClusterError``.

    Any other exception propagates immediately.  Once ``policy.attempts`` calls
    have failed, ``ClusterUnavailable`` is raised from the last failure.
    """

    last_error: TransientClusterError | None = None
    for attempt in range(policy.attempts):
        try:
            return await operation()
        except TransientClusterError as exc:
            last_error = exc
            if attempt + 1 >= policy.attempts:
                break
            delay = policy.delay(attempt)
            logger.warning("%s failed (%s); retrying in %.2fs", description, exc, delay)
            await sleep(delay)
    raise ClusterUnavailable(
        f"{description} failed after {policy.attempts} attempts"
    ) from last_error
