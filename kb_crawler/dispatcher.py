"""
Recursive Crawl Dispatcher
Turns a page's discovered links into follow-up crawl jobs.

Steps for a page with remaining depth ``d > 0``:
  1. cap the candidates with the depth table (3→25, 2→20, 1→15);
  2. drop canonical URLs the store already has (one batched lookup);
  3. submit the rest in batches of ``child_batch_size`` with a per-batch
     delay of ``base + batch_index * step`` seconds, each at depth ``d - 1``.

Each submission is independent: failures are collected in the report and
never fail the parent.
"""

import logging
from typing import Optional, Sequence

from .errors import ChildSubmissionFailed
from .interfaces import DocumentStore, JobDispatcher
from .models import CrawlJob, DispatchReport, LinkCandidate
from .run_config import CrawlerRunConfig

logger = logging.getLogger(__name__)


class CrawlDispatcher:
    """Depth-bounded fan-out of child crawl jobs."""

    def __init__(
        self,
        store: DocumentStore,
        jobs: JobDispatcher,
        config: Optional[CrawlerRunConfig] = None,
    ):
        self.store = store
        self.jobs = jobs
        self.config = config or CrawlerRunConfig()

    def batch_delay(self, batch_index: int) -> int:
        return (
            self.config.child_base_delay_seconds
            + batch_index * self.config.child_batch_delay_step_seconds
        )

    def _existing(self, job: CrawlJob, canonical_urls) -> set:
        try:
            return set(self.store.find_existing_canonical_urls(job.knowledge_base_id, canonical_urls))
        except Exception as e:
            logger.warning(
                f"[DISPATCH] Existence lookup failed for {len(canonical_urls)} URLs: {e}; "
                f"treating all as new"
            )
            return set()

    def dispatch(self, job: CrawlJob, links: Sequence[LinkCandidate]) -> DispatchReport:
        """
        Submit child jobs for *links* found on *job*'s page.

        Returns:
            DispatchReport with submitted/skipped/failed counts
        """
        report = DispatchReport()
        if job.remaining_depth <= 0 or not links:
            return report

        cap = self.config.link_cap_for_depth(job.remaining_depth)
        capped = list(links[:cap])
        report.capped_to = len(capped)
        if not capped:
            return report

        existing = self._existing(job, [link.canonical_url for link in capped])
        fresh = [link for link in capped if link.canonical_url not in existing]
        report.skipped_existing = len(capped) - len(fresh)

        child_depth = job.remaining_depth - 1
        size = max(1, self.config.child_batch_size)
        for batch_index, start in enumerate(range(0, len(fresh), size)):
            delay = self.batch_delay(batch_index)
            for link in fresh[start:start + size]:
                try:
                    self.jobs.submit_crawl_job(
                        job.knowledge_base_id, link.absolute_url, job.owner_id,
                        child_depth, delay,
                    )
                    report.submitted += 1
                except Exception as e:
                    failure = ChildSubmissionFailed(link.absolute_url, e)
                    logger.warning(f"[DISPATCH] {failure}")
                    report.failed += 1
                    report.failures.append({"url": link.absolute_url, "error": str(e)})

        logger.info(
            f"[DISPATCH] {job.target_url}: {report.submitted} submitted, "
            f"{report.skipped_existing} already known, {report.failed} failed "
            f"(cap {cap}, child depth {child_depth})"
        )
        return report
