"""Per endpoint class request pacing."""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from contextvars import ContextVar
from enum import Enum

from slackscope.config.models import RateLimitConfig
from slackscope.domain.errors import RateLimitedError
from slackscope.infrastructure.logging import get_logger

logger = get_logger(__name__)

# Event loop time by which the current caller gives up, if it has a timeout
_caller_deadline: ContextVar[float | None] = ContextVar("caller_deadline", default=None)


@asynccontextmanager
async def caller_timeout(timeout: float | None) -> AsyncIterator[None]:
    """Bound the enclosed calls by timeout and let the gate wait up to it.

    Inside the block the remaining time replaces the configured max_wait as
    the budget of every acquire.
    """
    async with asyncio.timeout(timeout) as scope:
        token = _caller_deadline.set(scope.when())
        try:
            yield
        finally:
            _caller_deadline.reset(token)


class EndpointClass(str, Enum):
    """Upstream rate limit tiers."""

    TIER2 = "tier2"
    TIER3 = "tier3"
    TIER4 = "tier4"


OPERATION_CLASSES: dict[str, EndpointClass] = {
    "auth.test": EndpointClass.TIER4,
    "users.info": EndpointClass.TIER4,
    "users.list": EndpointClass.TIER2,
    "conversations.list": EndpointClass.TIER2,
    "client.userBoot": EndpointClass.TIER2,
    "emoji.list": EndpointClass.TIER2,
    "search.messages": EndpointClass.TIER2,
    "conversations.history": EndpointClass.TIER3,
    "conversations.replies": EndpointClass.TIER3,
}


def endpoint_class_for(operation: str) -> EndpointClass:
    """Return the endpoint class of an operation, tier 3 when unknown."""
    return OPERATION_CLASSES.get(operation, EndpointClass.TIER3)


class RateGate:
    """Admits requests per endpoint class at a minimum spacing.

    Each admitted caller reserves the next free slot of its class before
    sleeping, so queued callers are spaced out rather than released together.
    An upstream "retry after" signal pushes the next free slot forward.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._clock = clock
        self._sleep = sleep
        self._intervals = {
            EndpointClass.TIER2: 60.0 / config.tier2,
            EndpointClass.TIER3: 60.0 / config.tier3,
            EndpointClass.TIER4: 60.0 / config.tier4,
        }
        self._next_slot: dict[EndpointClass, float] = {}

    @property
    def max_retries(self) -> int:
        """Return how often a rate-limited call is retried."""
        return self._config.max_retries

    def interval(self, endpoint_class: EndpointClass) -> float:
        """Return the minimum spacing of an endpoint class in seconds."""
        return self._intervals[endpoint_class]

    async def acquire(
        self, endpoint_class: EndpointClass, max_wait: float | None = None
    ) -> None:
        """Wait until a request of the given class may be sent.

        Args:
            endpoint_class: Class of the endpoint about to be called.
            max_wait: Longest acceptable wait. Defaults to the time left before
                the enclosing caller_timeout, or the configured max_wait
                outside one.

        Raises:
            RateLimitedError: If the wait would exceed the budget. No slot is
                reserved in that case.
        """
        budget = self._budget() if max_wait is None else max_wait
        now = self._clock()
        slot = max(now, self._next_slot.get(endpoint_class, now))
        wait = slot - now
        if wait > budget:
            raise RateLimitedError(endpoint_class.value, wait)
        self._next_slot[endpoint_class] = slot + self._intervals[endpoint_class]
        if wait > 0:
            logger.debug(
                "Waiting for rate gate",
                endpoint_class=endpoint_class.value,
                wait_seconds=round(wait, 3),
            )
            await self._sleep(wait)

    def _budget(self) -> float:
        deadline = _caller_deadline.get()
        if deadline is None:
            return self._config.max_wait
        return max(0.0, deadline - asyncio.get_running_loop().time())

    def penalize(self, endpoint_class: EndpointClass, retry_after: float) -> None:
        """Hold back the endpoint class for at least retry_after seconds."""
        until = self._clock() + retry_after
        if until > self._next_slot.get(endpoint_class, 0.0):
            self._next_slot[endpoint_class] = until
        logger.warning(
            "Upstream requested backoff",
            endpoint_class=endpoint_class.value,
            retry_after=retry_after,
        )
