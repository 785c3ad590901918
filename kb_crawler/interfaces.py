"""
External Collaborators
======================
Interfaces the crawler talks to at its boundary, plus in-memory
implementations used by the CLI and tests.

- ``DocumentStore``: existence lookup by canonical URL and upsert with an
  update-if-better policy.
- ``JobDispatcher``: follow-up crawl jobs and indexing jobs, each with a
  delay.
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, NamedTuple, Optional, Set, Tuple

logger = logging.getLogger(__name__)


# Overwrite an existing document only when it has fewer than this share of
# the new extraction's words.
UPDATE_RATIO = 0.6


def should_replace(existing_words: int, new_words: int, ratio: float = UPDATE_RATIO) -> bool:
    return existing_words < ratio * new_words


class UpsertOutcome(NamedTuple):
    document_id: str
    action: str  # created | updated | unchanged


class DocumentStore(ABC):
    """Persistence for extracted documents, keyed by (knowledge base, canonical URL)."""

    @abstractmethod
    def find_existing_canonical_urls(
        self, knowledge_base_id: str, canonical_urls: Iterable[str],
    ) -> Set[str]:
        """Return the subset of *canonical_urls* already stored (one batched lookup)."""

    @abstractmethod
    def upsert_document(
        self,
        knowledge_base_id: str,
        canonical_url: str,
        title: str,
        content: str,
        word_count: int,
    ) -> UpsertOutcome:
        """Create the document, or replace it if the new extraction is clearly better."""


class JobDispatcher(ABC):
    """Queue that schedules further work."""

    @abstractmethod
    def submit_crawl_job(
        self,
        knowledge_base_id: str,
        url: str,
        owner_id: str,
        remaining_depth: int,
        delay_seconds: float,
    ) -> None:
        """Schedule a crawl of *url*."""

    @abstractmethod
    def submit_indexing_job(
        self,
        knowledge_base_id: str,
        document_id: str,
        owner_id: str,
        delay_seconds: float,
    ) -> None:
        """Schedule embedding/indexing of a stored document."""


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------

@dataclass
class StoredDocument:
    document_id: str
    knowledge_base_id: str
    canonical_url: str
    title: str
    content: str
    word_count: int


class InMemoryDocumentStore(DocumentStore):
    """Thread-safe dict-backed store."""

    def __init__(self):
        self._docs: Dict[Tuple[str, str], StoredDocument] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def find_existing_canonical_urls(self, knowledge_base_id, canonical_urls):
        wanted = set(canonical_urls)
        with self._lock:
            return {
                url for (kb, url) in self._docs
                if kb == knowledge_base_id and url in wanted
            }

    def upsert_document(self, knowledge_base_id, canonical_url, title, content, word_count):
        key = (knowledge_base_id, canonical_url)
        with self._lock:
            existing = self._docs.get(key)
            if existing is None:
                doc = StoredDocument(
                    f"doc-{next(self._ids)}", knowledge_base_id, canonical_url,
                    title, content, word_count,
                )
                self._docs[key] = doc
                return UpsertOutcome(doc.document_id, "created")

            if should_replace(existing.word_count, word_count):
                existing.title = title
                existing.content = content
                existing.word_count = word_count
                return UpsertOutcome(existing.document_id, "updated")
            return UpsertOutcome(existing.document_id, "unchanged")

    def get(self, knowledge_base_id: str, canonical_url: str) -> Optional[StoredDocument]:
        with self._lock:
            return self._docs.get((knowledge_base_id, canonical_url))

    def documents(self) -> List[StoredDocument]:
        with self._lock:
            return list(self._docs.values())


@dataclass(frozen=True)
class CrawlJobRecord:
    knowledge_base_id: str
    url: str
    owner_id: str
    remaining_depth: int
    delay_seconds: float

    def to_payload(self) -> dict:
        return {
            "knowledge_base_id": self.knowledge_base_id,
            "url": self.url,
            "owner_id": self.owner_id,
            "remaining_depth": self.remaining_depth,
        }


@dataclass(frozen=True)
class IndexingJobRecord:
    knowledge_base_id: str
    document_id: str
    owner_id: str
    delay_seconds: float


class InMemoryJobDispatcher(JobDispatcher):
    """
    Records submitted jobs; ``pop_crawl_job`` lets the CLI drain the queue.
    Delays are recorded, not slept.
    """

    def __init__(self):
        self.crawl_jobs: List[CrawlJobRecord] = []
        self.indexing_jobs: List[IndexingJobRecord] = []
        self._pending: List[CrawlJobRecord] = []
        self._lock = threading.Lock()

    def submit_crawl_job(self, knowledge_base_id, url, owner_id, remaining_depth, delay_seconds):
        job = CrawlJobRecord(knowledge_base_id, url, owner_id, remaining_depth, delay_seconds)
        with self._lock:
            self.crawl_jobs.append(job)
            self._pending.append(job)
        logger.debug(f"[DISPATCH] Queued crawl {url} (depth {remaining_depth}, +{delay_seconds}s)")

    def submit_indexing_job(self, knowledge_base_id, document_id, owner_id, delay_seconds):
        with self._lock:
            self.indexing_jobs.append(
                IndexingJobRecord(knowledge_base_id, document_id, owner_id, delay_seconds)
            )

    def pop_crawl_job(self) -> Optional[CrawlJobRecord]:
        with self._lock:
            return self._pending.pop(0) if self._pending else None

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)
