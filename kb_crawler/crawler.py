"""
Knowledge Base Crawler
Invocation entrypoint: one crawl job in, one summary out.

    payload → CrawlJob → robots/politeness → strategy orchestrator →
    quality validator → document store (+ indexing job) →
    link discovery → recursive dispatch

``handle`` never raises. Malformed input and unexpected faults come back as
``status="failed", reason="internal_error"``; rejected content as
``reason="no_content"``; a robots.txt block as ``status="skipped"``.
"""

import logging
import time
from typing import Any, Callable, Mapping, Optional

from .dispatcher import CrawlDispatcher
from .errors import InvalidJobError, RobotsDisallowed
from .fetcher import FetchClient
from .hydration import HydrationHostRegistry, default_registry
from .interfaces import DocumentStore, JobDispatcher
from .models import CrawlJob, CrawlSummary
from .orchestrator import StrategyOrchestrator
from .politeness import PolitenessGate, default_gate
from .quality import is_valid
from .renderer import BrowserRenderer
from .run_config import CrawlerRunConfig
from .scope_filter import discover_links
from .strategies import StrategySet
from .utils import canonicalize_url

logger = logging.getLogger(__name__)


class KnowledgeBaseCrawler:
    """
    Handles crawl invocations against a document store and job dispatcher.

    Safe to share across threads: per-invocation state (renderer, fetched
    pages) is created inside ``handle``; the politeness gate and the
    hydration-host registry are the only shared structures.
    """

    def __init__(
        self,
        store: DocumentStore,
        jobs: JobDispatcher,
        config: Optional[CrawlerRunConfig] = None,
        gate: Optional[PolitenessGate] = None,
        fetcher: Optional[FetchClient] = None,
        registry: Optional[HydrationHostRegistry] = None,
        renderer_factory: Optional[Callable[[], BrowserRenderer]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or CrawlerRunConfig()
        self.store = store
        self.jobs = jobs
        self.gate = gate or default_gate(self.config)
        self.fetcher = fetcher or FetchClient(self.config, self.gate)
        self.registry = registry if registry is not None else default_registry
        self.renderer_factory = renderer_factory or (
            lambda: BrowserRenderer(self.config, self.gate)
        )
        self.dispatcher = CrawlDispatcher(store, jobs, self.config)
        self._clock = clock
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Entrypoint
    # ------------------------------------------------------------------
    def handle(self, payload: Mapping[str, Any]) -> CrawlSummary:
        """
        Run one crawl invocation.

        Args:
            payload: ``{knowledge_base_id, url, owner_id, remaining_depth}``
                     (camelCase queue keys are accepted too)

        Returns:
            CrawlSummary; never raises
        """
        started = self._clock()
        try:
            job = CrawlJob.from_payload(payload)
        except InvalidJobError as e:
            logger.error(f"[CRAWL] Invalid job payload: {e}")
            url = payload.get("url") or payload.get("webUrl") if isinstance(payload, Mapping) else None
            return CrawlSummary(
                url=str(url or ""), status="failed", reason="internal_error", details=str(e),
            )

        summary = CrawlSummary(url=job.target_url, depth=job.remaining_depth)
        try:
            self._process(job, summary, deadline=started + self.config.invocation_budget_seconds)
        except Exception as e:
            logger.exception(f"[CRAWL] Unexpected failure for {job.target_url}")
            summary.status = "failed"
            summary.accepted = False
            summary.reason = "internal_error"
            summary.details = f"{type(e).__name__}: {e}"
        finally:
            summary.elapsed_seconds = round(self._clock() - started, 3)

        logger.info(
            f"[CRAWL] {job.target_url} → {summary.status}"
            f"{' (' + summary.reason + ')' if summary.reason else ''} in {summary.elapsed_seconds:.1f}s"
        )
        return summary

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _process(self, job: CrawlJob, summary: CrawlSummary, deadline: float) -> None:
        url = job.target_url
        logger.info(f"[CRAWL] Start {url} (kb={job.knowledge_base_id}, depth={job.remaining_depth})")

        try:
            self.gate.require(url)
        except RobotsDisallowed as e:
            summary.status = "skipped"
            summary.reason = "disallowed"
            summary.details = str(e)
            return

        renderer = self.renderer_factory() if self.config.enable_rendering else None
        try:
            strategies = StrategySet(self.config, self.fetcher, renderer, self.registry)
            orchestrator = StrategyOrchestrator(
                strategies, self.config, clock=self._clock, sleep=self._sleep,
            )
            outcome = orchestrator.run(url, deadline=deadline)
        finally:
            if renderer is not None:
                renderer.close()

        result = outcome.result
        summary.attempts = outcome.attempts
        summary.title = result.title
        summary.word_count = result.word_count
        summary.method = result.method
        summary.strategy = result.strategy

        if not is_valid(result, url, self.config.min_valid_words, self.config.min_valid_chars):
            summary.status = "failed"
            summary.reason = "no_content"
            summary.details = (
                f"Insufficient content: {result.word_count} words via {result.method}"
            )
            logger.warning(f"[QUALITY] No acceptable content for {url} ({summary.details})")
            return

        summary.accepted = True
        self._store(job, result, summary)

        if job.remaining_depth > 0 and outcome.html:
            links = discover_links(
                outcome.html, url,
                max_links=self.config.link_cap_for_depth(job.remaining_depth),
                deny_patterns=self.config.extra_deny_patterns,
                max_query_length=self.config.max_query_length,
            )
            summary.apply_dispatch(self.dispatcher.dispatch(job, links))

    def _store(self, job: CrawlJob, result, summary: CrawlSummary) -> None:
        canonical = canonicalize_url(job.target_url)
        upsert = self.store.upsert_document(
            job.knowledge_base_id, canonical, result.title, result.content, result.word_count,
        )
        summary.document_id = upsert.document_id
        summary.document_action = upsert.action
        logger.info(
            f"[CRAWL] Document {upsert.document_id} {upsert.action}: "
            f"\"{result.title}\" ({result.word_count} words via {result.method})"
        )

        if upsert.action not in ("created", "updated"):
            return
        try:
            self.jobs.submit_indexing_job(
                job.knowledge_base_id, upsert.document_id, job.owner_id,
                self.config.indexing_delay_seconds,
            )
        except Exception as e:
            logger.warning(f"[CRAWL] Could not queue indexing for {upsert.document_id}: {e}")
