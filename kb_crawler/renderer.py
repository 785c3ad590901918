"""
Headless Renderer
Playwright (sync API) wrapper used by the dynamic strategy.

The browser is launched lazily on the first render and reused for the rest
of the invocation. ``close()`` (or leaving the ``with`` block) releases it on
every exit path; the crawler entrypoint always does so in a ``finally``.
"""

import logging
import re
import threading
from typing import NamedTuple, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeout
from playwright.sync_api import sync_playwright

from .errors import BrowserLaunchFailure, FetchConnectionError, FetchHTTPError, RenderTimeout
from .politeness import PolitenessGate, default_gate
from .run_config import CrawlerRunConfig

logger = logging.getLogger(__name__)


# URL patterns for analytics/tracking scripts to block
_BLOCKED_URL_PATTERNS = [
    re.compile(r"google[-_]?analytics", re.IGNORECASE),
    re.compile(r"googletagmanager", re.IGNORECASE),
    re.compile(r"facebook\.net", re.IGNORECASE),
    re.compile(r"doubleclick\.net", re.IGNORECASE),
    re.compile(r"hotjar\.", re.IGNORECASE),
]

_TEXT_READY_JS = "(min) => document.body && document.body.innerText.length > min"


class RenderedPage(NamedTuple):
    html: str
    title: str


class BrowserRenderer:
    """
    Lazily-started headless Chromium, one per invocation.
    """

    def __init__(
        self,
        config: Optional[CrawlerRunConfig] = None,
        gate: Optional[PolitenessGate] = None,
    ):
        self.config = config or CrawlerRunConfig()
        self.gate = gate or default_gate(self.config)
        self._playwright = None
        self._browser = None
        self._lock = threading.Lock()

    @property
    def started(self) -> bool:
        return self._browser is not None

    def _ensure_browser(self):
        """Launch Playwright and Chromium on first use."""
        with self._lock:
            if self._browser is not None:
                return self._browser
            try:
                self._playwright = sync_playwright().start()
                self._browser = self._playwright.chromium.launch(
                    headless=self.config.headless,
                    args=['--disable-gpu', '--no-sandbox', '--disable-dev-shm-usage'],
                )
            except Exception as e:
                self._shutdown()
                raise BrowserLaunchFailure(f"Could not launch headless browser: {e}") from e
            logger.info("[RENDER] Headless browser started")
            return self._browser

    def _route_handler(self, route) -> None:
        """Block non-essential resources for speed."""
        request = route.request
        if request.resource_type in self.config.blocked_resource_types:
            route.abort()
            return
        if request.resource_type == "script":
            for pattern in _BLOCKED_URL_PATTERNS:
                if pattern.search(request.url):
                    route.abort()
                    return
        route.continue_()

    def render(self, url: str, user_agent: Optional[str] = None) -> RenderedPage:
        """
        Open *url* in the headless browser and capture the rendered DOM.

        Waits for the body text to exceed ``render_text_threshold`` characters
        (or ``render_text_wait_seconds`` to pass), then scrolls once to trigger
        lazy content.

        Raises:
            BrowserLaunchFailure: the browser could not be started
            RenderTimeout: navigation exceeded ``render_timeout_seconds``
            FetchHTTPError: the document response had a non-2xx status
            FetchConnectionError: any other navigation failure
        """
        browser = self._ensure_browser()
        timeout_ms = int(self.config.render_timeout_seconds * 1000)

        with self.gate.request_slot(url):
            context = browser.new_context(
                user_agent=user_agent or self.config.desktop_user_agent,
                viewport={'width': 1920, 'height': 1080},
                java_script_enabled=True,
            )
            try:
                context.route("**/*", self._route_handler)
                page = context.new_page()
                try:
                    logger.debug(f"[RENDER] Navigating to {url}")
                    response = page.goto(url, timeout=timeout_ms, wait_until='domcontentloaded')
                    if response is not None and response.status >= 400:
                        raise FetchHTTPError(response.status, url)

                    try:
                        page.wait_for_function(
                            _TEXT_READY_JS,
                            arg=self.config.render_text_threshold,
                            timeout=int(self.config.render_text_wait_seconds * 1000),
                        )
                    except PlaywrightTimeout:
                        logger.debug(f"[RENDER] Text threshold not reached for {url}; continuing")

                    page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
                    page.wait_for_timeout(int(self.config.render_settle_seconds * 1000))

                    html = page.content()
                    title = page.title() or ""
                finally:
                    page.close()
            except PlaywrightTimeout as e:
                raise RenderTimeout(f"Render timed out for {url}: {e}") from e
            except PlaywrightError as e:
                raise FetchConnectionError(f"Render failed for {url}: {e}") from e
            finally:
                context.close()

        logger.info(f"[RENDER] Rendered {url} ({len(html)} chars)")
        return RenderedPage(html, title)

    def _shutdown(self) -> None:
        if self._browser is not None:
            try:
                self._browser.close()
            except PlaywrightError as e:
                logger.debug(f"[RENDER] Browser close failed: {e}")
            self._browser = None
        if self._playwright is not None:
            try:
                self._playwright.stop()
            except PlaywrightError as e:
                logger.debug(f"[RENDER] Playwright stop failed: {e}")
            self._playwright = None

    def close(self) -> None:
        """Release the browser process (no-op if it was never started)."""
        with self._lock:
            was_started = self._browser is not None
            self._shutdown()
        if was_started:
            logger.info("[RENDER] Headless browser closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
