"""
Robots.txt Handler
Fetches, parses and caches robots.txt per origin.

The cache is process-scoped and shared by concurrent invocations: a global
lock guards only the get-or-create of an origin entry, and each origin has
its own fetch lock so robots.txt is requested at most once per expiry
window (single-flight).
"""

import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from urllib.robotparser import RobotFileParser

import requests

from .run_config import CrawlerRunConfig
from .utils import origin_of

logger = logging.getLogger(__name__)


_COMPATIBLE_TOKEN = re.compile(r'compatible;\s*([\w.-]+)', re.IGNORECASE)


def robots_agent_token(user_agent: str) -> str:
    """
    Product token robots.txt groups are matched against.

    ``Mozilla/5.0 (compatible; KnowledgeBaseCrawler/1.0; +url)`` gives
    ``KnowledgeBaseCrawler``; a plain ``Name/1.0`` gives ``Name``.
    """
    match = _COMPATIBLE_TOKEN.search(user_agent or '')
    if match:
        return match.group(1)
    return (user_agent or '*').split('/')[0].strip() or '*'


@dataclass(frozen=True)
class RobotsPolicy:
    """Parsed robots.txt for one origin. ``parser`` is None for the permissive policy."""
    origin: str
    parser: Optional[RobotFileParser]
    crawl_delay_seconds: float
    fetched_at: float

    @property
    def permissive(self) -> bool:
        return self.parser is None

    def allows(self, url: str, user_agent: str) -> bool:
        if self.parser is None:
            return True
        return self.parser.can_fetch(user_agent, url)

    def is_fresh(self, now: float, ttl: float) -> bool:
        return (now - self.fetched_at) < ttl


class _OriginEntry:
    __slots__ = ("lock", "policy")

    def __init__(self):
        self.lock = threading.Lock()
        self.policy: Optional[RobotsPolicy] = None


class RobotsHandler:
    """
    Handles robots.txt fetching and caching with a freshness window.

    Fetch failures (non-2xx, timeout, connection errors) yield a permissive
    policy, which is cached like any other so a broken origin is not hammered.
    """

    def __init__(
        self,
        config: Optional[CrawlerRunConfig] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CrawlerRunConfig()
        self.session = session or requests.Session()
        # Rules and crawl delay are read for the crawler's bot identity
        self.agent = robots_agent_token(self.config.bot_user_agent)
        self._clock = clock
        self._entries: Dict[str, _OriginEntry] = {}
        self._registry_lock = threading.Lock()

    def _entry(self, origin: str) -> _OriginEntry:
        with self._registry_lock:
            entry = self._entries.get(origin)
            if entry is None:
                entry = _OriginEntry()
                self._entries[origin] = entry
            return entry

    def get_policy(self, url: str) -> RobotsPolicy:
        """
        Return the cached policy for the URL's origin, fetching it if stale.

        Args:
            url: Any URL from the target origin

        Returns:
            RobotsPolicy (permissive when robots.txt is unavailable)
        """
        origin = origin_of(url)
        entry = self._entry(origin)
        with entry.lock:
            now = self._clock()
            policy = entry.policy
            if policy is not None and policy.is_fresh(now, self.config.robots_ttl_seconds):
                return policy
            policy = self._fetch_policy(origin, now)
            entry.policy = policy
            return policy

    def _fetch_policy(self, origin: str, now: float) -> RobotsPolicy:
        robots_url = f"{origin}/robots.txt"
        try:
            logger.info(f"[ROBOTS] Fetching {robots_url}")
            response = self.session.get(
                robots_url,
                headers={"User-Agent": self.config.bot_user_agent},
                timeout=self.config.robots_timeout_seconds,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            logger.warning(f"[ROBOTS] Failed to fetch robots.txt for {origin}: {e}; allowing all")
            return RobotsPolicy(origin, None, 0.0, now)

        if not 200 <= response.status_code < 300:
            logger.warning(
                f"[ROBOTS] Status {response.status_code} for {robots_url}; allowing all"
            )
            return RobotsPolicy(origin, None, 0.0, now)

        rp = RobotFileParser()
        rp.set_url(robots_url)
        rp.parse(response.text.splitlines())

        delay = rp.crawl_delay(self.agent) or rp.crawl_delay("*") or 0
        try:
            delay = float(delay)
        except (TypeError, ValueError):
            delay = 0.0

        logger.info(f"[ROBOTS] Parsed robots.txt for {origin} (crawl-delay {delay:g}s)")
        return RobotsPolicy(origin, rp, delay, now)

    def clear_cache(self) -> None:
        """Clear the robots.txt cache."""
        with self._registry_lock:
            self._entries.clear()
        logger.info("[ROBOTS] Cache cleared")
