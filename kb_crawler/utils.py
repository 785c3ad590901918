"""
Utility Functions
URL canonicalization, origin helpers, retry/backoff logic, and text helpers.
"""

import logging
import re
import time
from typing import Callable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# URL canonicalization
# ---------------------------------------------------------------------------

# Common tracking parameters to remove (utm_* is matched by prefix)
TRACKING_PARAMS = frozenset({
    'fbclid', 'gclid', 'mc_cid', 'mc_eid', 'ref', 'source',
})
TRACKING_PREFIXES = ('utm_',)


def _is_tracking_param(key: str) -> bool:
    lowered = key.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PREFIXES)


def canonicalize_url(raw_url: str) -> str:
    """
    Normalize a URL into a stable deduplication key.

    Strips tracking parameters and the fragment, removes trailing slashes
    from non-root paths, and sorts the remaining query parameters by key.
    Never raises: anything that cannot be parsed comes back unchanged.

    Args:
        raw_url: The URL to canonicalize

    Returns:
        Canonical URL string (idempotent: canonicalizing it again is a no-op)
    """
    if not isinstance(raw_url, str):
        return raw_url

    url = raw_url.strip()
    try:
        parts = urlsplit(url)
        if not parts.scheme or not parts.netloc:
            return raw_url

        path = parts.path or '/'
        if path != '/' and path.endswith('/'):
            path = path.rstrip('/') or '/'

        params = [
            (key, value)
            for key, value in parse_qsl(parts.query, keep_blank_values=True)
            if not _is_tracking_param(key)
        ]
        params.sort()
        query = urlencode(params)

        return urlunsplit((
            parts.scheme.lower(),
            parts.netloc.lower(),
            path,
            query,
            '',
        ))
    except (ValueError, TypeError) as e:
        logger.debug(f"Could not canonicalize {raw_url!r}: {e}")
        return raw_url


def origin_of(url: str) -> str:
    """Return ``scheme://host[:port]`` for *url* (empty string if unparseable)."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return ''
    if not parts.scheme or not parts.netloc:
        return ''
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


def hostname_of(url: str) -> str:
    try:
        return (urlsplit(url).hostname or '').lower()
    except ValueError:
        return ''


def is_valid_url(url: str) -> bool:
    """
    Check if a URL is a valid absolute http(s) URL.

    Args:
        url: URL to validate

    Returns:
        True if valid, False otherwise
    """
    if not url or not isinstance(url, str):
        return False
    try:
        parts = urlsplit(url.strip())
        return parts.scheme in ('http', 'https') and bool(parts.netloc)
    except ValueError:
        return False


# Locale segments like /ar, /ar-sa, /ar_AE or ?lang=ar
_ARABIC_LOCALE_SEGMENT = re.compile(r'^ar(?:[-_][a-z]{2})?$', re.IGNORECASE)


def is_arabic_locale_url(url: str) -> bool:
    """True when the URL path or ``lang`` query parameter signals an Arabic locale."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if any(_ARABIC_LOCALE_SEGMENT.match(seg) for seg in parts.path.split('/') if seg):
        return True
    return any(
        key.lower() in ('lang', 'locale', 'hl') and value.lower().startswith('ar')
        for key, value in parse_qsl(parts.query)
    )


# ---------------------------------------------------------------------------
# Retry / backoff
# ---------------------------------------------------------------------------

class RetryHandler:
    """
    Bounded retry with linear backoff (``attempt * base_delay`` seconds).
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the retry handler.

        Args:
            max_attempts: Total attempts, including the first one
            base_delay: Seconds of backoff per attempt number
            sleep: Sleep function (injectable for tests)
        """
        self.max_attempts = max(1, int(max_attempts))
        self.base_delay = base_delay
        self.sleep = sleep

    def calculate_delay(self, attempt: int) -> float:
        """
        Delay to wait after a failed attempt.

        Args:
            attempt: The attempt that just failed (1-indexed)

        Returns:
            Delay in seconds
        """
        return max(0.0, attempt * self.base_delay)

    def should_retry(self, attempt: int) -> bool:
        """True while *attempt* (1-indexed, just failed) leaves budget for another try."""
        return attempt < self.max_attempts

    def backoff(self, attempt: int) -> float:
        """Sleep for the delay after *attempt* and return it."""
        delay = self.calculate_delay(attempt)
        if delay > 0:
            self.sleep(delay)
        return delay


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')


def clean_text(text: Optional[str]) -> str:
    """
    Clean extracted text: drop control characters and collapse whitespace.

    Args:
        text: Raw text to clean

    Returns:
        Cleaned text
    """
    if not text:
        return ""
    text = _CONTROL_CHARS.sub(' ', text)
    text = re.sub(r'\s+', ' ', text)
    return text.strip()


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit].rstrip()
