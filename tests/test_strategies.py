"""
Tests for strategies.py: per-URL ordering and the individual strategies.

The fetch client and renderer are mocks; the extraction passes run for real
on small fixtures.
"""

from unittest.mock import MagicMock, Mock, patch

import pytest

from kb_crawler.errors import StrategySkipped
from kb_crawler.hydration import HydrationHostRegistry
from kb_crawler.models import ExtractionResult
from kb_crawler.renderer import RenderedPage
from kb_crawler.run_config import CrawlerRunConfig
from kb_crawler.strategies import (
    DYNAMIC, HYDRATION, READABILITY, SEMANTIC, STATIC,
    StrategySet, is_hydration_heavy, select_strategy_names,
)

from pages import BLOG_HTML, NEXT_SHELL, SENTENCE, SPA_SHELL


def fetcher_returning(html):
    fetcher = Mock()
    fetcher.fetch.return_value = html
    return fetcher


# ====================================================================
# 1. Selection
# ====================================================================

class TestSelection:

    def test_plain_site(self):
        names = select_strategy_names("https://example.com/blog/post", CrawlerRunConfig())
        assert names == (STATIC, READABILITY, SEMANTIC)

    def test_hydration_host(self):
        names = select_strategy_names("https://shop.vercel.app/about", CrawlerRunConfig())
        assert names == (DYNAMIC, HYDRATION, READABILITY, SEMANTIC)

    def test_hydration_host_without_rendering(self):
        cfg = CrawlerRunConfig(enable_rendering=False)
        assert select_strategy_names("https://shop.vercel.app/", cfg) == (HYDRATION, READABILITY, SEMANTIC)

    def test_render_non_hydration_sites(self):
        cfg = CrawlerRunConfig(render_non_hydration_sites=True)
        names = select_strategy_names("https://example.com/", cfg)
        assert names == (STATIC, READABILITY, SEMANTIC, DYNAMIC)

    def test_learned_host(self):
        registry = HydrationHostRegistry()
        registry.mark("https://app.example.com/")
        cfg = CrawlerRunConfig()
        assert is_hydration_heavy("https://app.example.com/pricing", cfg, registry) is True
        assert select_strategy_names("https://app.example.com/pricing", cfg, registry)[0] == DYNAMIC

    def test_selection_is_deterministic(self):
        cfg = CrawlerRunConfig()
        urls = ["https://example.com/a", "https://x.netlify.app/b", "https://example.com/_next/c"]
        assert [select_strategy_names(u, cfg) for u in urls] == [select_strategy_names(u, cfg) for u in urls]


# ====================================================================
# 2. Strategies
# ====================================================================

class TestStrategies:

    def _set(self, html=BLOG_HTML, renderer=None, **overrides):
        cfg = CrawlerRunConfig(**overrides)
        return StrategySet(cfg, fetcher_returning(html), renderer, HydrationHostRegistry())

    def test_static_extracts_article(self):
        outcome = self._set().static("https://example.com/blog/sleep")
        assert outcome.result is not None
        assert outcome.result.method == "semantic"
        assert outcome.html == BLOG_HTML

    def test_static_skips_spa_shell_and_remembers_host(self):
        strategies = self._set(SPA_SHELL)
        with pytest.raises(StrategySkipped) as exc_info:
            strategies.static("https://app.example.com/")
        assert exc_info.value.html == SPA_SHELL
        assert "https://app.example.com/other" in strategies.registry

    def test_page_fetched_once_per_user_agent(self):
        strategies = self._set()
        strategies.static("https://example.com/blog/sleep")
        strategies.semantic("https://example.com/blog/sleep")
        assert strategies.fetcher.fetch.call_count == 1
        assert strategies.cached_page() == BLOG_HTML

    def test_hydration_heavy_url_gets_longer_timeout(self):
        strategies = self._set(NEXT_SHELL)
        strategies.hydration("https://shop.vercel.app/about")
        assert strategies.fetcher.fetch.call_args.kwargs["timeout"] == 60.0

    def test_hydration_strategy(self):
        outcome = self._set(NEXT_SHELL).hydration("https://shop.vercel.app/about")
        assert outcome.result.method == "hydration"
        assert SENTENCE in outcome.result.content

    def test_readability_uses_bot_agent_and_arabic_language(self):
        strategies = self._set()
        fake = ExtractionResult("T", "text " * 30, "readability")
        with patch("kb_crawler.strategies.extract_reader_mode", return_value=fake) as reader:
            outcome = strategies.readability("https://example.com/ar/about")
        kwargs = strategies.fetcher.fetch.call_args.kwargs
        assert kwargs["user_agent"] == CrawlerRunConfig().bot_user_agent
        assert kwargs["extra_headers"] == {"Accept-Language": "ar,en;q=0.5"}
        assert outcome.result is fake
        reader.assert_called_once()

    def test_readability_plain_url_has_no_language_header(self):
        strategies = self._set()
        with patch("kb_crawler.strategies.extract_reader_mode", return_value=None):
            strategies.readability("https://example.com/about")
        assert strategies.fetcher.fetch.call_args.kwargs["extra_headers"] is None

    def test_semantic_strategy(self):
        outcome = self._set().semantic("https://example.com/blog/sleep")
        assert outcome.result.method == "semantic"

    def test_dynamic_uses_rendered_dom(self):
        renderer = MagicMock()
        renderer.render.return_value = RenderedPage(BLOG_HTML, "Rendered Title")
        strategies = self._set("<html></html>", renderer=renderer)
        outcome = strategies.dynamic("https://shop.vercel.app/blog")
        assert outcome.html == BLOG_HTML
        assert outcome.result.method == "semantic"
        strategies.fetcher.fetch.assert_not_called()

    def test_dynamic_without_renderer_is_skipped(self):
        with pytest.raises(StrategySkipped):
            self._set().dynamic("https://shop.vercel.app/")

    def test_dynamic_skipped_when_rendering_disabled(self):
        with pytest.raises(StrategySkipped):
            self._set(renderer=MagicMock(), enable_rendering=False).dynamic("https://shop.vercel.app/")

    def test_for_url_builds_named_strategies(self):
        strategies = self._set()
        built = strategies.for_url("https://example.com/")
        assert [s.name for s in built] == [STATIC, READABILITY, SEMANTIC]
        assert all(callable(s.run) for s in built)
