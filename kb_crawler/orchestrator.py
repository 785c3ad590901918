"""
Strategy Orchestrator
=====================
Runs the ordered strategy list for one URL until a result passes the
lightweight gate, then falls back to a last-resort chain.

    SelectingStrategy → RunningStrategy → (Accepted | Exhausted)

Per strategy:
  - transient ``FetchError``s are retried up to ``max_retries`` attempts with
    linear backoff (``attempt * retry_backoff_seconds``);
  - a result that fails the gate (or no result at all) moves straight to
    the next strategy, with no retry;
  - any other error ends that strategy.

The HTML handed back for link discovery is the rendered DOM whenever the
dynamic strategy produced one, even if a later strategy was accepted.

The invocation deadline is checked before every attempt; once it passes,
remaining strategies are abandoned for the last-resort chain, which never
raises.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .errors import (
    AllStrategiesExhausted, BrowserLaunchFailure, CrawlerError, FetchError, StrategySkipped,
)
from .hydration import mine_hydration
from .models import ExtractionResult, StrategyAttempt, StrategyOutcome
from .quality import passes_gate
from .run_config import CrawlerRunConfig
from .scraper import extract_body_text, extract_meta_description, extract_visible_text, page_title
from .strategies import DYNAMIC, Strategy, StrategySet
from .utils import RetryHandler, truncate

logger = logging.getLogger(__name__)


LAST_RESORT = "last-resort"
FAILED_TITLE = "Extraction Failed"


@dataclass
class Orchestration:
    """What the orchestrator hands back to the entrypoint."""
    result: ExtractionResult
    html: Optional[str] = None
    attempts: List[StrategyAttempt] = field(default_factory=list)
    exhausted: bool = False


def failure_marker() -> ExtractionResult:
    return ExtractionResult(FAILED_TITLE, "", "failed", strategy=LAST_RESORT)


class StrategyOrchestrator:
    """
    Tries strategies in order with bounded retries.
    """

    def __init__(
        self,
        strategies: StrategySet,
        config: Optional[CrawlerRunConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.strategies = strategies
        self.config = config or strategies.config
        self._clock = clock
        self.retry = RetryHandler(
            max_attempts=self.config.max_retries,
            base_delay=self.config.retry_backoff_seconds,
            sleep=sleep,
        )

    def _expired(self, deadline: Optional[float], extra: float = 0.0) -> bool:
        return deadline is not None and self._clock() + extra >= deadline

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------
    def run(
        self,
        url: str,
        strategies: Optional[Sequence[Strategy]] = None,
        deadline: Optional[float] = None,
    ) -> Orchestration:
        """
        Extract content from *url*.

        Args:
            url: Target URL
            strategies: Ordered strategies (defaults to the per-URL selection)
            deadline: ``clock()`` value after which no new attempt starts

        Returns:
            Orchestration with the accepted (or last-resort) result; never raises
        """
        if strategies is None:
            strategies = self.strategies.for_url(url)

        attempts: List[StrategyAttempt] = []
        last_html: Optional[str] = None
        # Link discovery prefers the rendered DOM over any later static HTML
        rendered_html: Optional[str] = None

        for strategy in strategies:
            record = StrategyAttempt(strategy.name)
            attempts.append(record)
            if self._expired(deadline):
                record.outcome = "timeout"
                logger.warning(f"[STRATEGY] Time budget spent before {strategy.name} for {url}")
                break

            outcome = self._run_with_retry(strategy, url, record, deadline)
            if outcome is None:
                continue
            if outcome.html:
                last_html = outcome.html
                if strategy.name == DYNAMIC:
                    rendered_html = outcome.html

            if passes_gate(outcome.result, self.config.min_gate_words):
                record.outcome = "accepted"
                result = outcome.result.with_strategy(strategy.name)
                logger.info(
                    f"[STRATEGY] {strategy.name} accepted for {url}: "
                    f"{result.word_count} words via {result.method}"
                )
                return Orchestration(result, rendered_html or last_html, attempts)

            if record.outcome == "pending":
                record.outcome = "empty" if outcome.result is None else "rejected"
            logger.info(f"[STRATEGY] {strategy.name} gave no usable content for {url}")

        exhausted = AllStrategiesExhausted(f"No strategy produced content for {url}")
        logger.warning(f"[STRATEGY] {exhausted}; running last-resort chain")
        html = rendered_html or last_html
        result = self.last_resort(url, html, deadline)
        return Orchestration(result, html, attempts, exhausted=True)

    def _run_with_retry(
        self,
        strategy: Strategy,
        url: str,
        record: StrategyAttempt,
        deadline: Optional[float],
    ) -> Optional[StrategyOutcome]:
        attempt = 0
        while True:
            attempt += 1
            if attempt > 1 and self._expired(deadline):
                record.outcome = "timeout"
                return None
            record.attempts = attempt
            try:
                return strategy.run(url)
            except FetchError as e:
                record.error = str(e)
                if not self.retry.should_retry(attempt):
                    record.outcome = "failed"
                    logger.warning(
                        f"[STRATEGY] {strategy.name} attempt {attempt}/{self.retry.max_attempts} "
                        f"failed for {url}: {e}; giving up on this strategy"
                    )
                    return None
                delay = self.retry.calculate_delay(attempt)
                if self._expired(deadline, extra=delay):
                    record.outcome = "timeout"
                    logger.warning(f"[STRATEGY] {strategy.name} out of time for {url} after: {e}")
                    return None
                logger.warning(
                    f"[STRATEGY] {strategy.name} attempt {attempt}/{self.retry.max_attempts} "
                    f"failed for {url}: {e}; retrying in {delay:.1f}s"
                )
                self.retry.backoff(attempt)
            except StrategySkipped as e:
                record.outcome = "skipped"
                record.error = str(e)
                logger.info(f"[STRATEGY] {strategy.name} skipped for {url}: {e}")
                return StrategyOutcome(None, e.html)
            except BrowserLaunchFailure as e:
                record.outcome = "failed"
                record.error = str(e)
                logger.warning(f"[STRATEGY] {strategy.name} unavailable: {e}")
                return None
            except CrawlerError as e:
                record.outcome = "failed"
                record.error = str(e)
                logger.warning(f"[STRATEGY] {strategy.name} failed for {url}: {e}")
                return None
            except Exception as e:
                record.outcome = "failed"
                record.error = f"{type(e).__name__}: {e}"
                logger.warning(f"[STRATEGY] {strategy.name} crashed for {url}", exc_info=True)
                return None

    # ------------------------------------------------------------------
    # Last-resort chain
    # ------------------------------------------------------------------
    def last_resort(
        self,
        url: str,
        html: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> ExtractionResult:
        """
        Visible text → meta description → hydration → raw body slice →
        failure marker. Never raises.
        """
        html = html or self.strategies.cached_page()
        if html is None and not self._expired(deadline):
            try:
                html = self.strategies.fetch_page(url)
            except CrawlerError as e:
                logger.warning(f"[STRATEGY] Last-resort fetch failed for {url}: {e}")
        if not html:
            return failure_marker()

        try:
            title = page_title(html)
        except Exception as e:
            logger.warning(f"[STRATEGY] Title lookup failed for {url}: {e}")
            title = "Untitled"

        cfg = self.config
        chain = [
            ("fallback-visible-text", lambda: ExtractionResult(
                title, extract_visible_text(html), "fallback-visible-text")),
            ("fallback-meta", lambda: ExtractionResult(
                title, extract_meta_description(html), "fallback-meta")),
            ("fallback-hydration", lambda: self._hydration_fallback(html, url, title)),
        ]
        for name, step in chain:
            try:
                result = step()
            except Exception as e:
                logger.warning(f"[STRATEGY] {name} failed for {url}: {e}")
                continue
            if passes_gate(result, cfg.min_gate_words):
                logger.info(f"[STRATEGY] Last resort {name} used for {url} ({result.word_count} words)")
                return result.with_strategy(LAST_RESORT)

        try:
            body = extract_body_text(html)
        except Exception as e:
            logger.warning(f"[STRATEGY] Raw body read failed for {url}: {e}")
            body = ""
        if len(body) > 100:
            logger.info(f"[STRATEGY] Last resort raw body slice used for {url}")
            return ExtractionResult(
                title, truncate(body, cfg.fallback_body_chars), "fallback-raw", strategy=LAST_RESORT,
            )

        logger.warning(f"[STRATEGY] Every extractor failed for {url}")
        return failure_marker()

    def _hydration_fallback(self, html: str, url: str, title: str) -> Optional[ExtractionResult]:
        mined = mine_hydration(
            html, url, fallback_title=title,
            min_chars=self.config.hydration_min_chars,
            max_segments=self.config.hydration_max_segments,
        )
        if mined is None:
            return None
        return ExtractionResult(mined.title, mined.content, "fallback-hydration")
