"""
Politeness Gate
===============
robots.txt authorization plus per-origin request pacing.

Every network request the fetch client or renderer issues goes through
``request_slot``, which enforces for the request's origin:

- at most ``origin_concurrency`` requests in flight (bounded semaphore,
  acquired with a timeout so no wait is unbounded);
- at least ``min_request_interval_seconds`` between request starts;
- the robots.txt crawl delay (capped at ``max_crawl_delay_seconds``) before
  the first request to a newly seen origin.

State is keyed by origin. The registry lock is held only to get-or-create
an origin entry; the timestamp check-and-update happens under that origin's
own lock, so unrelated origins never serialize on each other.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, NamedTuple, Optional

from .errors import FetchTimeout, RobotsDisallowed
from .robots import RobotsHandler, robots_agent_token
from .run_config import CrawlerRunConfig
from .utils import origin_of

logger = logging.getLogger(__name__)


class Authorization(NamedTuple):
    allowed: bool
    delay_seconds: float


@dataclass
class DomainRateState:
    """Mutable per-origin pacing state shared across concurrent invocations."""
    origin: str
    concurrency_limit: int
    last_request_at: Optional[float] = None
    crawl_delay_seconds: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    slots: threading.BoundedSemaphore = field(default=None, repr=False)

    def __post_init__(self):
        if self.slots is None:
            self.slots = threading.BoundedSemaphore(self.concurrency_limit)


class PolitenessGate:
    """Authorizes URLs against robots.txt and paces requests per origin."""

    def __init__(
        self,
        config: Optional[CrawlerRunConfig] = None,
        robots: Optional[RobotsHandler] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or CrawlerRunConfig()
        self.robots = robots or RobotsHandler(self.config)
        self._clock = clock
        self._sleep = sleep
        self._states: Dict[str, DomainRateState] = {}
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Per-origin registry
    # ------------------------------------------------------------------
    def state_for(self, url: str) -> DomainRateState:
        origin = origin_of(url)
        with self._registry_lock:
            state = self._states.get(origin)
            if state is None:
                state = DomainRateState(origin, self.config.origin_concurrency)
                self._states[origin] = state
            return state

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------
    def authorize(self, url: str) -> Authorization:
        """
        Check robots.txt for *url*.

        Never raises; any internal failure is logged and treated as allowed.

        Returns:
            Authorization(allowed, delay_seconds) where the delay is the
            robots crawl delay capped at ``max_crawl_delay_seconds``
        """
        try:
            policy = self.robots.get_policy(url)
            delay = min(policy.crawl_delay_seconds, self.config.max_crawl_delay_seconds)
            state = self.state_for(url)
            with state.lock:
                state.crawl_delay_seconds = delay
            allowed = policy.allows(url, robots_agent_token(self.config.bot_user_agent))
            if not allowed:
                logger.info(f"[ROBOTS] Disallowed: {url}")
            return Authorization(allowed, delay)
        except Exception as e:
            logger.warning(f"[ROBOTS] Authorization check failed for {url}: {e}; allowing")
            return Authorization(True, 0.0)

    def require(self, url: str) -> Authorization:
        """Like ``authorize`` but raises ``RobotsDisallowed`` for a forbidden URL."""
        auth = self.authorize(url)
        if not auth.allowed:
            raise RobotsDisallowed(url)
        return auth

    # ------------------------------------------------------------------
    # Pacing
    # ------------------------------------------------------------------
    def _reserve_start(self, state: DomainRateState) -> float:
        """Atomically compute the wait before this request and book its start time."""
        with state.lock:
            now = self._clock()
            if state.last_request_at is None:
                wait = state.crawl_delay_seconds
            else:
                wait = max(
                    0.0,
                    state.last_request_at + self.config.min_request_interval_seconds - now,
                )
            state.last_request_at = now + wait
            return wait

    @contextmanager
    def request_slot(self, url: str) -> Iterator[float]:
        """
        Hold one of the origin's request slots for the duration of a request.

        Yields the seconds waited for spacing.

        Raises:
            FetchTimeout: if no slot frees up within ``slot_acquire_timeout_seconds``
        """
        state = self.state_for(url)
        if not state.slots.acquire(timeout=self.config.slot_acquire_timeout_seconds):
            raise FetchTimeout(
                f"No request slot for {state.origin} within "
                f"{self.config.slot_acquire_timeout_seconds:.0f}s"
            )
        try:
            wait = self._reserve_start(state)
            if wait > 0:
                logger.debug(f"[ROBOTS] Waiting {wait:.2f}s before request to {state.origin}")
                self._sleep(wait)
            yield wait
        finally:
            state.slots.release()


# ---------------------------------------------------------------------------
# Process-wide default gate
# ---------------------------------------------------------------------------

_default_gate: Optional[PolitenessGate] = None
_default_gate_lock = threading.Lock()


def default_gate(config: Optional[CrawlerRunConfig] = None) -> PolitenessGate:
    """Return the process-wide gate, creating it on first use."""
    global _default_gate
    with _default_gate_lock:
        if _default_gate is None:
            _default_gate = PolitenessGate(config)
        return _default_gate
