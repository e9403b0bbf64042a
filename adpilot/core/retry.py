"""AdPilot — Bounded exponential backoff for transient failures."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from adpilot.config import settings
from adpilot.core.errors import PublishPipelineError, RateLimitError
from adpilot.core.logging import get_logger

logger = get_logger("core.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try, and how long to wait in between."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    @classmethod
    def from_settings(cls, max_attempts: int | None = None) -> "RetryPolicy":
        return cls(
            max_attempts=max_attempts or settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    label: str,
) -> T:
    """Run ``operation``, retrying transient pipeline errors.

    Fatal errors propagate on first sight. A transient error on the last
    attempt propagates unchanged, so callers see its real kind. A rate-limit
    hint longer than ``max_delay`` is not slept through; the error is raised
    so the caller can come back later.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except PublishPipelineError as e:
            if not e.transient or attempt >= policy.max_attempts:
                raise

            wait = policy.delay_for(attempt)
            if isinstance(e, RateLimitError) and e.retry_after is not None:
                if e.retry_after > policy.max_delay:
                    logger.warning(
                        f"{label}: retry hint {e.retry_after}s exceeds budget, giving up",
                        extra={"attempt": attempt},
                    )
                    raise
                wait = max(wait, e.retry_after)

            logger.warning(
                f"{label}: {e.kind.value} ({e}). Retrying in {wait}s "
                f"(attempt {attempt}/{policy.max_attempts})",
                extra={"attempt": attempt},
            )
            await asyncio.sleep(wait)

    raise RuntimeError(f"{label}: retry loop exited without result")
