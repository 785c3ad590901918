"""
Extraction Strategy Set
=======================
Named extraction strategies and the per-URL ordering heuristic.

A strategy is a plain ``(name, run)`` pair where ``run(url)`` returns a
``StrategyOutcome`` (a result or None, plus any HTML it saw) or raises:

- ``FetchError`` subclasses for transient network trouble (the
  orchestrator retries these);
- ``StrategySkipped`` when the strategy cannot handle the page;
- ``BrowserLaunchFailure`` when rendering is unavailable.

Ordering is a pure function of the URL (``select_strategy_names``):

    hydration-heavy host → dynamic, hydration, readability, semantic
    everything else      → static, readability, semantic [, dynamic]
"""

import logging
import threading
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple

from .errors import StrategySkipped
from .fetcher import FetchClient
from .hydration import HydrationHostRegistry, default_registry, has_hydration_payload, mine_hydration
from .models import ExtractionResult, StrategyOutcome
from .quality import looks_clean, passes_gate
from .reader import extract_reader_mode
from .renderer import BrowserRenderer
from .run_config import CrawlerRunConfig
from .scraper import detect_spa, extract_by_density, extract_semantic, extract_visible_text, page_title
from .utils import is_arabic_locale_url

logger = logging.getLogger(__name__)


STATIC = "static"
DYNAMIC = "dynamic"
HYDRATION = "hydration"
READABILITY = "readability"
SEMANTIC = "semantic"


class Strategy(NamedTuple):
    name: str
    run: Callable[[str], StrategyOutcome]


# ---------------------------------------------------------------------------
# Selection (pure)
# ---------------------------------------------------------------------------

def is_hydration_heavy(
    url: str,
    config: CrawlerRunConfig,
    registry: Optional[HydrationHostRegistry] = None,
) -> bool:
    """Hostname hints from config, or a host already seen serving an SPA shell."""
    if config.is_hydration_host(url):
        return True
    return registry is not None and url in registry


def select_strategy_names(
    url: str,
    config: CrawlerRunConfig,
    registry: Optional[HydrationHostRegistry] = None,
) -> Tuple[str, ...]:
    """
    Ordered strategy names for *url*.

    Args:
        url: Target URL
        config: Run configuration (rendering switches)
        registry: Hosts learned to be hydration-heavy in this process

    Returns:
        Tuple of strategy names, most preferred first
    """
    if is_hydration_heavy(url, config, registry):
        names = [DYNAMIC, HYDRATION, READABILITY, SEMANTIC]
        if not config.enable_rendering:
            names.remove(DYNAMIC)
    else:
        names = [STATIC, READABILITY, SEMANTIC]
        if config.enable_rendering and config.render_non_hydration_sites:
            names.append(DYNAMIC)
    return tuple(names)


# ---------------------------------------------------------------------------
# Strategy implementations
# ---------------------------------------------------------------------------

class StrategySet:
    """
    Builds the strategy functions for one invocation.

    Shares only the fetch client, the (lazily launched) renderer and a
    request-scoped cache of pages already fetched with a given user agent.
    """

    def __init__(
        self,
        config: Optional[CrawlerRunConfig] = None,
        fetcher: Optional[FetchClient] = None,
        renderer: Optional[BrowserRenderer] = None,
        registry: Optional[HydrationHostRegistry] = None,
    ):
        self.config = config or CrawlerRunConfig()
        self.fetcher = fetcher or FetchClient(self.config)
        self.renderer = renderer
        self.registry = registry if registry is not None else default_registry
        self._pages: Dict[Tuple[str, str], str] = {}
        self._pages_lock = threading.Lock()
        self._functions = {
            STATIC: self.static,
            DYNAMIC: self.dynamic,
            HYDRATION: self.hydration,
            READABILITY: self.readability,
            SEMANTIC: self.semantic,
        }

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------
    def build(self, names: Sequence[str]) -> List[Strategy]:
        return [Strategy(name, self._functions[name]) for name in names]

    def for_url(self, url: str) -> List[Strategy]:
        names = select_strategy_names(url, self.config, self.registry)
        logger.info(f"[STRATEGY] Order for {url}: {' → '.join(names)}")
        return self.build(names)

    # ------------------------------------------------------------------
    # Fetch helpers
    # ------------------------------------------------------------------
    def _timeout_for(self, url: str) -> float:
        heavy = is_hydration_heavy(url, self.config, self.registry)
        return self.config.for_url(url, hydration_heavy=heavy).fetch_timeout_seconds

    def fetch_page(self, url: str, user_agent: Optional[str] = None, extra_headers=None) -> str:
        """Fetch *url*, reusing a copy already fetched with the same user agent."""
        user_agent = user_agent or self.config.desktop_user_agent
        key = (url, user_agent)
        with self._pages_lock:
            cached = self._pages.get(key)
        if cached is not None:
            return cached
        html = self.fetcher.fetch(
            url, user_agent=user_agent, extra_headers=extra_headers,
            timeout=self._timeout_for(url),
        )
        with self._pages_lock:
            self._pages[key] = html
        return html

    def cached_page(self) -> Optional[str]:
        """Any page fetched so far in this invocation (desktop copy preferred)."""
        with self._pages_lock:
            for (_, agent), html in self._pages.items():
                if agent == self.config.desktop_user_agent:
                    return html
            return next(iter(self._pages.values()), None)

    # ------------------------------------------------------------------
    # Pass chains
    # ------------------------------------------------------------------
    def _accept(self, result: Optional[ExtractionResult]) -> bool:
        return passes_gate(result, self.config.min_gate_words) and looks_clean(result)

    def _first_good(self, url: str, passes) -> Optional[ExtractionResult]:
        for label, run_pass in passes:
            result = run_pass()
            if self._accept(result):
                logger.debug(f"[STRATEGY] {label} pass produced {result.word_count} words for {url}")
                return result
        return None

    def _dom_passes(self, html: str, url: str, title: Optional[str] = None):
        cfg = self.config
        passes = [
            ("semantic", lambda: extract_semantic(html, url, cfg.semantic_min_chars)),
            ("readability", lambda: extract_reader_mode(html, url, cfg.reader_min_chars)),
        ]
        if has_hydration_payload(html):
            passes.append(("hydration", lambda: mine_hydration(
                html, url, fallback_title=title,
                min_chars=cfg.hydration_min_chars, max_segments=cfg.hydration_max_segments,
            )))
        passes.append(("density", lambda: extract_by_density(
            html, url, threshold=cfg.density_threshold,
            relaxed_threshold=cfg.density_relaxed_threshold,
        )))
        passes.append(("density-relaxed", lambda: extract_by_density(
            html, url, relaxed=True, threshold=cfg.density_threshold,
            relaxed_threshold=cfg.density_relaxed_threshold,
        )))
        return passes

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------
    def static(self, url: str) -> StrategyOutcome:
        """Desktop fetch; semantic → reader → hydration (if markers) → density."""
        html = self.fetch_page(url)
        if detect_spa(html):
            self.registry.mark(url)
            raise StrategySkipped(f"SPA shell detected at {url}", html=html)
        title = page_title(html)
        result = self._first_good(url, self._dom_passes(html, url, title))
        return StrategyOutcome(result, html)

    def dynamic(self, url: str) -> StrategyOutcome:
        """Headless render, then the DOM passes plus a visible-text fallback."""
        if self.renderer is None or not self.config.enable_rendering:
            raise StrategySkipped("Rendering disabled")
        page = self.renderer.render(url, user_agent=self.config.desktop_user_agent)
        html = page.html
        title = page.title or None

        passes = self._dom_passes(html, url, title)
        passes.append(("dynamic-fallback", lambda: ExtractionResult(
            page.title or page_title(html), extract_visible_text(html), "dynamic-fallback",
            raw_html=html,
        )))
        result = self._first_good(url, passes)
        if result is not None and page.title and result.title in ("", "Untitled"):
            result = result.with_title(page.title)
        return StrategyOutcome(result, html)

    def hydration(self, url: str) -> StrategyOutcome:
        """Mine hydration payloads in the static HTML."""
        html = self.fetch_page(url)
        title = page_title(html)
        result = mine_hydration(
            html, url, fallback_title=title,
            min_chars=self.config.hydration_min_chars,
            max_segments=self.config.hydration_max_segments,
        )
        return StrategyOutcome(result, html)

    def readability(self, url: str) -> StrategyOutcome:
        """Bot user agent fetch and article extraction."""
        headers = None
        if is_arabic_locale_url(url):
            headers = {'Accept-Language': 'ar,en;q=0.5'}
        html = self.fetch_page(url, user_agent=self.config.bot_user_agent, extra_headers=headers)
        result = extract_reader_mode(html, url, self.config.reader_min_chars)
        return StrategyOutcome(result, html)

    def semantic(self, url: str) -> StrategyOutcome:
        """Semantic selectors, then relaxed density scoring."""
        html = self.fetch_page(url)
        cfg = self.config
        result = self._first_good(url, [
            ("semantic", lambda: extract_semantic(html, url, cfg.semantic_min_chars)),
            ("density-relaxed", lambda: extract_by_density(
                html, url, relaxed=True, threshold=cfg.density_threshold,
                relaxed_threshold=cfg.density_relaxed_threshold,
            )),
        ])
        return StrategyOutcome(result, html)
