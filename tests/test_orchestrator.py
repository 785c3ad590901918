"""
Tests for orchestrator.py: retries, strategy fall-through, the time budget
and the last-resort chain.
"""

from unittest.mock import Mock

from kb_crawler.errors import (
    BrowserLaunchFailure, FetchConnectionError, FetchTimeout, StrategySkipped,
)
from kb_crawler.models import ExtractionResult, StrategyOutcome
from kb_crawler.orchestrator import FAILED_TITLE, LAST_RESORT, StrategyOrchestrator
from kb_crawler.run_config import CrawlerRunConfig
from kb_crawler.strategies import Strategy

from pages import BLOG_HTML


GOOD = ExtractionResult("Good Page", "meaningful words " * 20, "semantic")
URL = "https://example.com/page"


def strategy_set(cached=None, fetched=None, fetch_error=None):
    strategies = Mock()
    strategies.config = CrawlerRunConfig()
    strategies.cached_page.return_value = cached
    if fetch_error is not None:
        strategies.fetch_page.side_effect = fetch_error
    else:
        strategies.fetch_page.return_value = fetched
    return strategies


def orchestrator(strategies=None, clock=None, sleep=None, **overrides):
    strategies = strategies or strategy_set(fetch_error=FetchConnectionError("offline"))
    return StrategyOrchestrator(
        strategies,
        CrawlerRunConfig(**overrides),
        clock=clock or (lambda: 0.0),
        sleep=sleep or Mock(),
    )


# ====================================================================
# 1. Retries
# ====================================================================

class TestRetries:

    def test_timeouts_then_success(self):
        """Two timeouts then success: three attempts, linear backoff."""
        sleep = Mock()
        run = Mock(side_effect=[FetchTimeout("t1"), FetchTimeout("t2"), StrategyOutcome(GOOD, "<html/>")])
        outcome = orchestrator(sleep=sleep).run(URL, [Strategy("static", run)])
        assert outcome.result.strategy == "static"
        assert outcome.exhausted is False
        assert run.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]
        assert outcome.attempts[0].attempts == 3
        assert outcome.attempts[0].outcome == "accepted"

    def test_retry_budget_exhausted_moves_on(self):
        failing = Mock(side_effect=FetchConnectionError("down"))
        succeeding = Mock(return_value=StrategyOutcome(GOOD, "<html/>"))
        outcome = orchestrator().run(URL, [Strategy("static", failing), Strategy("semantic", succeeding)])
        assert failing.call_count == 3
        assert outcome.result.strategy == "semantic"
        assert outcome.attempts[0].outcome == "failed"

    def test_custom_retry_count(self):
        failing = Mock(side_effect=FetchTimeout("slow"))
        orchestrator(max_retries=1).run(URL, [Strategy("static", failing)])
        assert failing.call_count == 1


# ====================================================================
# 2. Fall-through
# ====================================================================

class TestFallThrough:

    def test_empty_result_is_not_retried(self):
        empty = Mock(return_value=StrategyOutcome(None, "<html>static</html>"))
        good = Mock(return_value=StrategyOutcome(GOOD, "<html>good</html>"))
        outcome = orchestrator().run(URL, [Strategy("static", empty), Strategy("readability", good)])
        assert empty.call_count == 1
        assert outcome.result.strategy == "readability"
        assert outcome.html == "<html>good</html>"
        assert [a.outcome for a in outcome.attempts] == ["empty", "accepted"]

    def test_short_result_rejected_by_gate(self):
        short = ExtractionResult("T", "only a few words", "semantic")
        first = Mock(return_value=StrategyOutcome(short, "<html/>"))
        second = Mock(return_value=StrategyOutcome(GOOD, "<html/>"))
        outcome = orchestrator().run(URL, [Strategy("static", first), Strategy("semantic", second)])
        assert first.call_count == 1
        assert outcome.attempts[0].outcome == "rejected"
        assert outcome.result.strategy == "semantic"

    def test_skipped_strategy_keeps_its_html(self):
        skipped = Mock(side_effect=StrategySkipped("SPA shell", html="<html>shell</html>"))
        empty = Mock(return_value=StrategyOutcome(None, None))
        outcome = orchestrator().run(URL, [Strategy("static", skipped), Strategy("semantic", empty)])
        assert skipped.call_count == 1
        assert outcome.html == "<html>shell</html>"
        assert outcome.attempts[0].outcome == "skipped"

    def test_browser_failure_and_crash_move_on(self):
        no_browser = Mock(side_effect=BrowserLaunchFailure("no chromium"))
        crash = Mock(side_effect=KeyError("oops"))
        good = Mock(return_value=StrategyOutcome(GOOD, "<html/>"))
        outcome = orchestrator().run(URL, [
            Strategy("dynamic", no_browser), Strategy("hydration", crash), Strategy("readability", good),
        ])
        assert no_browser.call_count == 1
        assert crash.call_count == 1
        assert outcome.result.strategy == "readability"

    def test_rendered_html_kept_for_link_discovery(self):
        """A rejected render still supplies the HTML when a later strategy is accepted."""
        rendered = '<html><body><main><a href="/docs/intro">Intro</a></main></body></html>'
        shell = '<html><body><div id="root"></div></body></html>'
        dynamic = Mock(return_value=StrategyOutcome(None, rendered))
        hydration = Mock(return_value=StrategyOutcome(GOOD, shell))
        outcome = orchestrator().run(URL, [Strategy("dynamic", dynamic), Strategy("hydration", hydration)])
        assert outcome.result.strategy == "hydration"
        assert outcome.html == rendered

    def test_rendered_html_kept_when_exhausted(self):
        rendered = "<html><body><p>rendered</p></body></html>"
        dynamic = Mock(return_value=StrategyOutcome(None, rendered))
        semantic = Mock(return_value=StrategyOutcome(None, "<html><body></body></html>"))
        outcome = orchestrator().run(URL, [Strategy("dynamic", dynamic), Strategy("semantic", semantic)])
        assert outcome.exhausted is True
        assert outcome.html == rendered

    def test_default_order_comes_from_strategy_set(self):
        strategies = strategy_set()
        strategies.for_url.return_value = [Strategy("static", Mock(return_value=StrategyOutcome(GOOD)))]
        outcome = orchestrator(strategies).run(URL)
        strategies.for_url.assert_called_once_with(URL)
        assert outcome.result.strategy == "static"


# ====================================================================
# 3. Time budget
# ====================================================================

class TestBudget:

    def test_expired_deadline_skips_to_last_resort(self):
        run = Mock(return_value=StrategyOutcome(GOOD))
        outcome = orchestrator(clock=lambda: 100.0).run(URL, [Strategy("static", run)], deadline=50.0)
        run.assert_not_called()
        assert outcome.exhausted is True
        assert outcome.attempts[0].outcome == "timeout"

    def test_no_retry_past_deadline(self):
        now = [0.0]

        def slow(_url):
            now[0] += 30.0
            raise FetchTimeout("slow")

        run = Mock(side_effect=slow)
        outcome = orchestrator(clock=lambda: now[0]).run(URL, [Strategy("static", run)], deadline=40.0)
        assert run.call_count == 2
        assert outcome.attempts[0].outcome == "timeout"


# ====================================================================
# 4. Last resort
# ====================================================================

class TestLastResort:

    def test_visible_text_from_cached_page(self):
        strategies = strategy_set(cached=BLOG_HTML)
        empty = Mock(return_value=StrategyOutcome(None, None))
        outcome = orchestrator(strategies).run(URL, [Strategy("static", empty)])
        assert outcome.exhausted is True
        assert outcome.result.method == "fallback-visible-text"
        assert outcome.result.strategy == LAST_RESORT
        assert "Keep the bedroom cool" in outcome.result.content

    def test_strategy_html_preferred_over_cache(self):
        strategies = strategy_set(cached="<html><body></body></html>")
        empty = Mock(return_value=StrategyOutcome(None, BLOG_HTML))
        outcome = orchestrator(strategies).run(URL, [Strategy("static", empty)])
        assert outcome.result.method == "fallback-visible-text"

    def test_fetches_when_nothing_cached(self):
        strategies = strategy_set(fetched=BLOG_HTML)
        result = orchestrator(strategies).last_resort(URL)
        strategies.fetch_page.assert_called_once_with(URL)
        assert result.strategy == LAST_RESORT

    def test_meta_description_step(self):
        description = "A thorough description of the page " * 3
        html = f'<html><head><meta name="description" content="{description}"></head><body></body></html>'
        result = orchestrator().last_resort(URL, html)
        assert result.method == "fallback-meta"

    def test_raw_body_slice(self):
        words = (
            "Internationalization documentation accessibility configuration implementation "
            "administration communication understanding organizations transportation "
            "responsibility entertainment"
        )
        html = f"<html><body><nav>{words}</nav></body></html>"
        result = orchestrator().last_resort(URL, html)
        assert result.method == "fallback-raw"
        assert result.content == words

    def test_failure_marker_when_everything_fails(self):
        result = orchestrator().last_resort(URL)
        assert result.method == "failed"
        assert result.title == FAILED_TITLE
        assert result.content == ""

    def test_failure_marker_for_blank_page(self):
        strategies = strategy_set(cached="<html><body><p>hi</p></body></html>")
        assert orchestrator(strategies).last_resort(URL).method == "failed"
