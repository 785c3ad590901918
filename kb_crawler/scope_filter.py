"""
Link Discovery
==============
Finds in-scope hyperlinks on a fetched or rendered page.

A link survives when it:

- resolves to an ``http``/``https`` URL (``mailto:``, ``javascript:``,
  ``tel:`` and fragment-only links are dropped);
- shares the page's origin (scheme, host and port);
- has no authentication/account/dashboard/admin/API/static-asset path
  segment, no static-asset file extension and no configured deny-pattern
  match;
- carries a query string of at most ``max_query_length`` characters.

Survivors are canonicalized (``utils.canonicalize_url``), deduplicated in
first-seen order, the page's own URL is dropped, and the list is capped.

Public API
----------
- ``ScopeFilter``: per-page filter with compiled deny patterns
- ``discover_links``: HTML → ``List[LinkCandidate]``
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from .models import LinkCandidate
from .utils import canonicalize_url, origin_of

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------
# Built-in deny rules
# -----------------------------------------------------------------------

DENIED_SEGMENTS = (
    "login", "logout", "signin", "sign-in", "signup", "sign-up", "register",
    "auth", "oauth", "account", "accounts", "my-account", "dashboard",
    "admin", "wp-admin", "api", "cdn", "assets", "static", "_next",
    "wp-content", "wp-includes", "wp-json",
)

_DENIED_PATH_RE = re.compile(
    r"(?:^|/)(?:" + "|".join(re.escape(s) for s in DENIED_SEGMENTS) + r")(?:/|$)",
    re.IGNORECASE,
)

# File extensions to skip (non-HTML resources)
SKIP_EXTENSIONS = frozenset({
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".svg", ".webp", ".ico",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".zip", ".rar", ".tar", ".gz", ".7z",
    ".mp3", ".mp4", ".avi", ".mov", ".wmv", ".flv", ".webm",
    ".css", ".js", ".json", ".xml", ".rss", ".atom",
    ".woff", ".woff2", ".ttf", ".eot", ".otf",
})

_NON_HTTP_PREFIXES = ("javascript:", "mailto:", "tel:", "data:", "sms:", "ftp:")


# -----------------------------------------------------------------------
# ScopeFilter
# -----------------------------------------------------------------------

@dataclass
class ScopeFilter:
    """
    Decides which links on one page are worth crawling.

    Parameters
    ----------
    page_url : str
        URL of the page the links were found on (defines the origin).
    deny_patterns : list[str]
        Extra regex patterns; a URL whose full string matches is rejected.
        Compiled once at init.
    max_query_length : int
        Links with a longer query string are rejected.
    """

    page_url: str = ""
    deny_patterns: List[str] = field(default_factory=list)
    max_query_length: int = 200

    # --- computed at post-init ---
    _origin: str = field(init=False, repr=False, default="")
    _compiled_deny: List[re.Pattern] = field(init=False, repr=False, default_factory=list)

    def __post_init__(self):
        self._origin = origin_of(self.page_url)
        if not self._origin:
            logger.warning(f"[LINKS] Could not determine origin of page URL: {self.page_url}")

        self._compiled_deny = []
        for pat in self.deny_patterns:
            try:
                self._compiled_deny.append(re.compile(pat, re.IGNORECASE))
            except re.error as exc:
                logger.warning(f"[LINKS] Invalid deny-pattern '{pat}': {exc}")

    def resolve(self, href: str) -> Optional[str]:
        """Absolute URL for *href* (fragment removed), or None for non-page links."""
        if not href:
            return None
        href = href.strip()
        if not href or href.startswith("#") or href.lower().startswith(_NON_HTTP_PREFIXES):
            return None
        try:
            absolute = urljoin(self.page_url, href)
        except ValueError:
            return None
        absolute, _, _ = absolute.partition("#")
        return absolute

    def accept(self, absolute_url: str) -> bool:
        """
        Return True if *absolute_url* passes **all** checks:

        1. HTTP(S) scheme
        2. Same origin as the page
        3. No denied path segment or asset extension
        4. Query string within the length limit
        5. Not matched by any deny-pattern
        """
        if not self._origin:
            return False
        try:
            parts = urlsplit(absolute_url)
        except ValueError:
            return False

        if parts.scheme not in ("http", "https"):
            return False
        if origin_of(absolute_url) != self._origin:
            return False

        path = parts.path or "/"
        if _DENIED_PATH_RE.search(path):
            return False
        last_segment = path.rsplit("/", 1)[-1].lower()
        if any(last_segment.endswith(ext) for ext in SKIP_EXTENSIONS):
            return False

        if len(parts.query) > self.max_query_length:
            return False

        for rx in self._compiled_deny:
            if rx.search(absolute_url):
                return False

        return True

    def filter_and_clean(self, href: str) -> Optional[LinkCandidate]:
        """Resolve, check and canonicalize one ``href``; None if rejected."""
        absolute = self.resolve(href)
        if absolute is None or not self.accept(absolute):
            return None
        return LinkCandidate(absolute, canonicalize_url(absolute))

    def select(self, hrefs: Iterable[str], max_links: Optional[int] = None) -> List[LinkCandidate]:
        """Filter *hrefs* in order, dropping duplicates and the page itself."""
        if max_links is not None and max_links <= 0:
            return []
        own = canonicalize_url(self.page_url)
        seen = {own}
        found: List[LinkCandidate] = []
        for href in hrefs:
            candidate = self.filter_and_clean(href)
            if candidate is None or candidate.canonical_url in seen:
                continue
            seen.add(candidate.canonical_url)
            found.append(candidate)
            if max_links is not None and len(found) >= max_links:
                break
        return found


# -----------------------------------------------------------------------
# HTML entry point
# -----------------------------------------------------------------------

def extract_hrefs(html: str) -> List[str]:
    soup = BeautifulSoup(html or "", "lxml")
    return [anchor["href"] for anchor in soup.find_all("a", href=True)]


def discover_links(
    html: str,
    page_url: str,
    max_links: Optional[int] = None,
    deny_patterns: Sequence[str] = (),
    max_query_length: int = 200,
) -> List[LinkCandidate]:
    """
    Extract in-scope links from *html*.

    Args:
        html: Rendered or static page markup
        page_url: URL of that page
        max_links: Cap on the number of links returned (None for no cap)
        deny_patterns: Extra regex deny patterns
        max_query_length: Longest acceptable query string

    Returns:
        LinkCandidates in first-seen order
    """
    if not html:
        return []
    scope = ScopeFilter(
        page_url=page_url,
        deny_patterns=list(deny_patterns),
        max_query_length=max_query_length,
    )
    hrefs = extract_hrefs(html)
    links = scope.select(hrefs, max_links)
    logger.info(f"[LINKS] {len(links)} in-scope links of {len(hrefs)} anchors on {page_url}")
    return links
