"""
Crawl Data Model
================
Request-scoped records passed between the crawler components.

Only ``RobotsPolicy`` and ``DomainRateState`` (see ``robots.py`` and
``politeness.py``) outlive a single invocation; everything here is created
and discarded within one crawl.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Mapping, NamedTuple, Optional

from .errors import InvalidJobError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrawlJob:
    """One unit of work handed to the crawler by the external queue."""
    target_url: str
    knowledge_base_id: str
    owner_id: str
    remaining_depth: int = 0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CrawlJob":
        """
        Build a job from an invocation payload.

        Accepts both the snake_case keys used inside this package and the
        camelCase keys used by the queue (``kbId``, ``webUrl``, ``userId``,
        ``depth``).

        Raises:
            InvalidJobError: if a required field is missing or malformed
        """
        if not isinstance(payload, Mapping):
            raise InvalidJobError(f"payload must be a mapping, got {type(payload).__name__}")

        def pick(*keys):
            for key in keys:
                value = payload.get(key)
                if value not in (None, ""):
                    return value
            return None

        kb_id = pick("knowledge_base_id", "knowledgeBaseId", "kbId", "kb_id")
        url = pick("target_url", "url", "webUrl", "targetUrl")
        owner = pick("owner_id", "ownerId", "userId", "user_id")
        depth = pick("remaining_depth", "remainingDepth", "depth")

        missing = [
            name for name, value in
            (("knowledge_base_id", kb_id), ("url", url), ("owner_id", owner))
            if value is None
        ]
        if missing:
            raise InvalidJobError(f"missing required fields: {', '.join(missing)}")

        if not isinstance(url, str) or not url.lower().startswith(("http://", "https://")):
            raise InvalidJobError(f"url must be an absolute http(s) URL: {url!r}")

        try:
            depth = int(depth) if depth is not None else 0
        except (TypeError, ValueError):
            raise InvalidJobError(f"remaining depth must be an integer: {depth!r}")
        if depth < 0:
            raise InvalidJobError(f"remaining depth must be >= 0: {depth}")

        return cls(
            target_url=url.strip(),
            knowledge_base_id=str(kb_id),
            owner_id=str(owner),
            remaining_depth=depth,
        )


@dataclass(frozen=True)
class ExtractionResult:
    """
    Candidate content produced by one extraction pass.

    ``word_count`` is derived from ``content``; callers never pass it.
    ``method`` names the pass that produced the text (``semantic``,
    ``readability``, ``density``, ``hydration``, ...) and ``strategy`` the
    orchestrator strategy that ran it (filled in on acceptance).
    """
    title: str
    content: str
    method: str
    strategy: str = ""
    raw_html: Optional[str] = field(default=None, repr=False, compare=False)

    @property
    def word_count(self) -> int:
        return len(self.content.split())

    def with_strategy(self, name: str) -> "ExtractionResult":
        return replace(self, strategy=name)

    def with_title(self, title: str) -> "ExtractionResult":
        return replace(self, title=title) if title else self

    def to_dict(self) -> dict:
        return {
            'title': self.title,
            'content': self.content,
            'word_count': self.word_count,
            'method': self.method,
            'strategy': self.strategy,
        }


class LinkCandidate(NamedTuple):
    """A discovered in-scope hyperlink."""
    absolute_url: str
    canonical_url: str


class StrategyOutcome(NamedTuple):
    """What a strategy hands back: a result (or None) and the HTML it saw."""
    result: Optional[ExtractionResult]
    html: Optional[str] = None


@dataclass
class StrategyAttempt:
    """Bookkeeping for one strategy run, reported in the summary."""
    strategy: str
    attempts: int = 0
    outcome: str = "pending"   # accepted | rejected | empty | failed | skipped | timeout
    error: str = ""


@dataclass
class DispatchReport:
    """Result of submitting child crawl jobs for one page."""
    submitted: int = 0
    skipped_existing: int = 0
    failed: int = 0
    capped_to: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class CrawlSummary:
    """
    What an invocation returns.

    ``status`` is ``ok`` (content accepted), ``skipped`` (robots disallowed)
    or ``failed`` (``reason`` is ``no_content`` or ``internal_error``).
    """
    url: str
    depth: int = 0
    status: str = "ok"
    accepted: bool = False
    reason: str = ""
    details: str = ""
    title: str = ""
    word_count: int = 0
    method: str = ""
    strategy: str = ""
    document_id: Optional[str] = None
    document_action: str = ""
    child_jobs_submitted: int = 0
    child_jobs_skipped_existing: int = 0
    child_jobs_failed: int = 0
    child_failures: List[Dict[str, str]] = field(default_factory=list)
    attempts: List[StrategyAttempt] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    def apply_dispatch(self, report: DispatchReport) -> None:
        self.child_jobs_submitted = report.submitted
        self.child_jobs_skipped_existing = report.skipped_existing
        self.child_jobs_failed = report.failed
        self.child_failures = list(report.failures)

    def to_dict(self) -> dict:
        return asdict(self)
