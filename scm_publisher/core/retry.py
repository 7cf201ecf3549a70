"""Bounded retry for rate-limited platform calls, and the publish deadline."""
import logging
import time
from typing import Callable, Optional, TypeVar

from scm_publisher.core.errors import PublishFailed, UpstreamRateLimited, UpstreamTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Deadline:
    """Wall-clock budget shared by every step of one publish."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.seconds = seconds
        self.expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, step: str = ""):
        if self.expired:
            raise UpstreamTimeout(
                f"Publish exceeded its {self.seconds:g}s deadline" + (f" during {step}" if step else "")
            )


def backoff_delay(attempt: int, base: float, cap: float, retry_after: Optional[float] = None) -> float:
    """Delay before retry number `attempt` (1-based); honours Retry-After up to cap."""
    delay = base * (2 ** (attempt - 1))
    if retry_after is not None:
        delay = max(delay, retry_after)
    return min(delay, cap)


def call_with_backoff(
    fn: Callable[[], T],
    attempts: int = 3,
    base: float = 1.0,
    cap: float = 30.0,
    deadline: Optional[Deadline] = None,
    sleep: Callable[[float], None] = time.sleep,
    step: str = "",
) -> T:
    """Call fn, retrying UpstreamRateLimited with exponential backoff.

    Exhausting the attempts raises PublishFailed; a retry that would not fit
    in the deadline raises UpstreamTimeout instead.
    """
    for attempt in range(1, attempts + 1):
        if deadline:
            deadline.check(step)
        try:
            return fn()
        except UpstreamRateLimited as e:
            if attempt == attempts:
                raise PublishFailed(
                    f"Rate limited by SCM platform{' during ' + step if step else ''}; "
                    f"gave up after {attempts} attempts"
                ) from e
            delay = backoff_delay(attempt, base, cap, e.retry_after)
            if deadline and delay >= deadline.remaining():
                raise UpstreamTimeout(
                    f"Rate-limit backoff of {delay:g}s exceeds the remaining publish deadline"
                ) from e
            logger.warning(f"Rate limited{' during ' + step if step else ''}, retrying in {delay:g}s "
                           f"({attempt}/{attempts})")
            sleep(delay)
