"""
Fetch Client
Timed HTTP GET with browser-like headers, HTML validation and failure
classification. Every request runs inside a politeness slot for its origin.
"""

import logging
import re
from typing import Mapping, Optional

import requests

from .errors import FetchConnectionError, FetchHTTPError, FetchTimeout, InvalidContent
from .politeness import PolitenessGate, default_gate
from .run_config import CrawlerRunConfig

logger = logging.getLogger(__name__)


_TAG_PATTERN = re.compile(r'<[a-zA-Z][^>]*>')
# 20+ characters of letters (Latin or Arabic) and spaces, starting with a letter
_READABLE_RUN = re.compile(r'[A-Za-z\u0600-\u06FF][A-Za-z\u0600-\u06FF ]{19,}')
# Control characters or decode replacement characters in a row
_BINARY_RUN = re.compile(r'[\x00-\x08\x0e-\x1f\x7f\ufffd]{5,}')

_NON_HTML_TYPES = ('image/', 'audio/', 'video/', 'font/', 'application/pdf',
                   'application/zip', 'application/octet-stream')


def is_valid_html_content(text: Optional[str]) -> bool:
    """
    Decide whether a response body looks like renderable HTML.

    Rejects empty bodies, bodies whose first 200 characters look binary, and
    bodies with neither a tag nor a readable run of text.
    """
    if not text or not text.strip():
        return False
    if _BINARY_RUN.search(text[:200]):
        return False
    return bool(_TAG_PATTERN.search(text) or _READABLE_RUN.search(text))


class FetchClient:
    """
    HTTP fetcher shared by the static and reader-mode strategies.
    """

    def __init__(
        self,
        config: Optional[CrawlerRunConfig] = None,
        gate: Optional[PolitenessGate] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config or CrawlerRunConfig()
        self.gate = gate or default_gate(self.config)
        self.session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with realistic browser headers."""
        session = requests.Session()
        session.headers.update({
            'User-Agent': self.config.desktop_user_agent,
            'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
            'Accept-Language': 'en-US,en;q=0.5',
            'Accept-Encoding': 'gzip, deflate',
            'Connection': 'keep-alive',
            'Upgrade-Insecure-Requests': '1',
            'Sec-Fetch-Dest': 'document',
            'Sec-Fetch-Mode': 'navigate',
            'Sec-Fetch-Site': 'none',
            'Cache-Control': 'no-cache',
        })
        return session

    def fetch(
        self,
        url: str,
        user_agent: Optional[str] = None,
        extra_headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """
        GET *url* and return its HTML.

        Args:
            url: Page to fetch (redirects are followed)
            user_agent: User-Agent override (defaults to the desktop UA)
            extra_headers: Additional request headers
            timeout: Seconds; defaults to the configured fetch timeout

        Raises:
            FetchTimeout, FetchConnectionError, FetchHTTPError, InvalidContent
        """
        headers = {'User-Agent': user_agent or self.config.desktop_user_agent}
        if extra_headers:
            headers.update(extra_headers)
        timeout = timeout or self.config.fetch_timeout_seconds

        with self.gate.request_slot(url):
            logger.debug(f"[FETCH] GET {url} (timeout {timeout:.0f}s)")
            try:
                response = self.session.get(
                    url, headers=headers, timeout=timeout, allow_redirects=True,
                )
            except requests.Timeout as e:
                raise FetchTimeout(f"Timed out after {timeout:.0f}s fetching {url}") from e
            except requests.ConnectionError as e:
                raise FetchConnectionError(f"Connection failed for {url}: {e}") from e
            except requests.RequestException as e:
                raise FetchConnectionError(f"Request failed for {url}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise FetchHTTPError(response.status_code, url)

        content_type = (response.headers.get('Content-Type') or '').lower()
        if content_type.startswith(_NON_HTML_TYPES):
            raise InvalidContent(f"Non-HTML content type {content_type!r} for {url}")

        html = response.text
        if not is_valid_html_content(html):
            raise InvalidContent(f"Response for {url} does not look like HTML")

        logger.debug(f"[FETCH] {response.status_code} {url} ({len(html)} chars)")
        return html
