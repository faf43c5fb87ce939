"""Generic poll-until-terminal primitive with an explicit retry policy."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, Tuple, Type, TypeVar

from core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 20
    interval: float = 1.0
    backoff: float = 1.0  # 1.0 = fixed interval
    max_interval: Optional[float] = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.interval < 0:
            raise ValueError("interval must be >= 0")

    def delay_before(self, attempt: int) -> float:
        """Delay to wait before poll number ``attempt`` (1-based, attempt >= 2)."""
        delay = self.interval * (self.backoff ** max(0, attempt - 2))
        if self.max_interval is not None:
            delay = min(delay, self.max_interval)
        return delay

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.poll_max_attempts,
            interval=settings.poll_interval_seconds,
            backoff=settings.poll_backoff,
        )


@dataclass
class PollResult(Generic[T]):
    value: Optional[T]
    attempts: int
    terminal: bool


class PollCancelled(Exception):
    """Raised when the cancel token is set while polling."""


async def poll_until_terminal(
    fetch: Callable[[], Awaitable[T]],
    is_terminal: Callable[[T], bool],
    policy: RetryPolicy,
    sleep: Sleep = asyncio.sleep,
    cancel_event: Optional[asyncio.Event] = None,
    retry_on: Tuple[Type[BaseException], ...] = (),
) -> PollResult[T]:
    """Call ``fetch`` until ``is_terminal`` holds or the policy runs out.

    Exceptions listed in ``retry_on`` count as a non-terminal attempt; anything
    else propagates. Returns the last value seen (``None`` if every attempt
    raised a retryable error).
    """
    last: Optional[T] = None
    for attempt in range(1, policy.max_attempts + 1):
        if attempt > 1:
            await sleep(policy.delay_before(attempt))
        if cancel_event is not None and cancel_event.is_set():
            raise PollCancelled()
        try:
            last = await fetch()
        except retry_on as exc:
            logger.debug("Poll attempt %d failed: %s", attempt, exc)
            continue
        logger.debug("Poll attempt %d/%d -> %r", attempt, policy.max_attempts, last)
        if is_terminal(last):
            return PollResult(value=last, attempts=attempt, terminal=True)
    return PollResult(value=last, attempts=policy.max_attempts, terminal=False)
