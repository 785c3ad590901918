"""
Sitemap Seeding
===============
Starts a knowledge-base crawl from a site's sitemap.

The usual sitemap locations are tried in order; the first one that yields
URLs wins. A ``<sitemapindex>`` is followed one level down (a bounded number
of child sitemaps). Same-origin URLs are submitted as crawl jobs, spread out
in groups of ten so the queue does not start them all at once. When no
sitemap yields anything the root URL alone is submitted.
"""

import logging
import xml.etree.ElementTree as ET
from typing import List, Optional

import requests

from .errors import InvalidJobError
from .interfaces import JobDispatcher
from .run_config import CrawlerRunConfig
from .utils import canonicalize_url, is_valid_url, origin_of

logger = logging.getLogger(__name__)


SITEMAP_PATHS = (
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/sitemaps.xml",
    "/sitemap/sitemap.xml",
)

MAX_SEED_DEPTH = 5
SEED_BASE_DELAY_SECONDS = 15
SEED_GROUP_SIZE = 10
SEED_GROUP_STEP_SECONDS = 2


def seed_delay(index: int) -> int:
    """Delay for the *index*-th seeded URL: ``floor(index / 10) * 2 + 15``."""
    return (index // SEED_GROUP_SIZE) * SEED_GROUP_STEP_SECONDS + SEED_BASE_DELAY_SECONDS


def _local_name(tag: str) -> str:
    # Sitemaps use xmlns; match on the local part only.
    return tag.rsplit('}', 1)[-1]


def parse_sitemap(xml_text: str):
    """
    Parse one sitemap document.

    Returns:
        ``(kind, locs)`` where kind is ``urlset``, ``sitemapindex`` or ``None``
        when the text is not a sitemap
    """
    try:
        root = ET.fromstring(xml_text.strip().encode('utf-8'))
    except ET.ParseError as e:
        logger.debug(f"[SITEMAP] Not parseable as XML: {e}")
        return None, []

    kind = _local_name(root.tag)
    if kind not in ("urlset", "sitemapindex"):
        return None, []

    locs = []
    for elem in root.iter():
        if _local_name(elem.tag) == "loc" and elem.text and elem.text.strip():
            locs.append(elem.text.strip())
    return kind, locs


class SitemapReader:
    """Fetches and flattens a site's sitemap into page URLs."""

    def __init__(self, config: Optional[CrawlerRunConfig] = None,
                 session: Optional[requests.Session] = None):
        self.config = config or CrawlerRunConfig()
        self.session = session or requests.Session()
        self.session.headers.setdefault('User-Agent', self.config.bot_user_agent)

    def _get(self, url: str, timeout: float) -> Optional[str]:
        try:
            response = self.session.get(url, timeout=timeout, allow_redirects=True)
        except requests.RequestException as e:
            logger.debug(f"[SITEMAP] {url} unreachable: {e}")
            return None
        if not response.ok:
            logger.debug(f"[SITEMAP] {url} returned HTTP {response.status_code}")
            return None
        return response.text

    def read(self, site_url: str) -> List[str]:
        """
        Page URLs from the first sitemap location that yields any.

        Args:
            site_url: Any URL on the site; only its origin is used

        Returns:
            Same-origin page URLs in document order, deduplicated, capped at
            ``sitemap_max_urls``
        """
        origin = origin_of(site_url)
        if not origin:
            return []

        for path in SITEMAP_PATHS:
            sitemap_url = origin + path
            text = self._get(sitemap_url, self.config.sitemap_timeout_seconds)
            if not text:
                continue

            kind, locs = parse_sitemap(text)
            if kind == "sitemapindex":
                logger.info(f"[SITEMAP] Index at {sitemap_url} lists {len(locs)} sitemaps")
                locs = self._expand_index(locs)
            elif kind is None:
                continue

            urls = self._same_origin(locs, origin)
            if urls:
                logger.info(f"[SITEMAP] {len(urls)} URLs from {sitemap_url}")
                return urls
        return []

    def _expand_index(self, child_sitemaps: List[str]) -> List[str]:
        locs: List[str] = []
        for child in child_sitemaps[:self.config.sitemap_max_children]:
            text = self._get(child, self.config.sitemap_child_timeout_seconds)
            if not text:
                continue
            kind, child_locs = parse_sitemap(text)
            if kind == "urlset":
                locs.extend(child_locs)
            if len(locs) >= self.config.sitemap_max_urls:
                break
        return locs

    def _same_origin(self, locs: List[str], origin: str) -> List[str]:
        seen = set()
        urls: List[str] = []
        for loc in locs:
            if not is_valid_url(loc) or origin_of(loc) != origin:
                continue
            canonical = canonicalize_url(loc)
            if canonical in seen:
                continue
            seen.add(canonical)
            urls.append(loc)
            if len(urls) >= self.config.sitemap_max_urls:
                break
        return urls


def seed_crawl(
    knowledge_base_id: str,
    url: str,
    owner_id: str,
    max_depth: int,
    dispatcher: JobDispatcher,
    config: Optional[CrawlerRunConfig] = None,
    session: Optional[requests.Session] = None,
) -> dict:
    """
    Enqueue the initial crawl jobs for a site.

    Args:
        knowledge_base_id: Target knowledge base
        url: Site URL (http/https)
        owner_id: Owner passed through to every job
        max_depth: Remaining depth given to each seeded job (0..5)
        dispatcher: Queue the jobs are submitted to
        config: Run configuration (timeouts and caps)
        session: Optional ``requests.Session`` for sitemap fetches

    Returns:
        ``{"discovered", "enqueued", "failed", "method"}``

    Raises:
        InvalidJobError: on a non-http(s) URL or an out-of-range depth
    """
    if not is_valid_url(url):
        raise InvalidJobError(f"url must be an absolute http(s) URL: {url!r}")
    try:
        max_depth = int(max_depth)
    except (TypeError, ValueError):
        raise InvalidJobError(f"max depth must be an integer: {max_depth!r}")
    if not 0 <= max_depth <= MAX_SEED_DEPTH:
        raise InvalidJobError(f"max depth must be between 0 and {MAX_SEED_DEPTH}: {max_depth}")

    reader = SitemapReader(config, session)
    urls = reader.read(url)
    method = "sitemap"
    if not urls:
        logger.info(f"[SITEMAP] No sitemap for {url}; seeding the root URL only")
        urls = [url]
        method = "fallback"

    enqueued = failed = 0
    for index, page_url in enumerate(urls):
        try:
            dispatcher.submit_crawl_job(
                knowledge_base_id, page_url, owner_id, max_depth, seed_delay(index),
            )
            enqueued += 1
        except Exception as e:
            failed += 1
            logger.warning(f"[SITEMAP] Could not enqueue {page_url}: {e}")

    logger.info(
        f"[SITEMAP] Seeded {enqueued}/{len(urls)} URLs for {url} "
        f"(method={method}, depth={max_depth}, failed={failed})"
    )
    return {
        "discovered": len(urls),
        "enqueued": enqueued,
        "failed": failed,
        "method": method,
    }
