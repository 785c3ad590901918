"""
Knowledge Base Crawler
A polite, multi-strategy page extractor that feeds a knowledge base.

One invocation takes ``{knowledge_base_id, url, owner_id, remaining_depth}``,
extracts the page's main content, stores it, and enqueues follow-up crawls
for in-scope links.

CLI Usage:
    python -m kb_crawler crawl <url> [--depth N] [--drain]
    python -m kb_crawler seed <url> [--max-depth N]
"""

from .crawler import KnowledgeBaseCrawler
from .dispatcher import CrawlDispatcher
from .errors import CrawlerError, InvalidJobError, RobotsDisallowed
from .interfaces import (
    DocumentStore, InMemoryDocumentStore, InMemoryJobDispatcher, JobDispatcher, UpsertOutcome,
)
from .models import CrawlJob, CrawlSummary, ExtractionResult, LinkCandidate
from .orchestrator import StrategyOrchestrator
from .politeness import PolitenessGate
from .robots import RobotsHandler
from .run_config import CrawlerRunConfig
from .scope_filter import ScopeFilter, discover_links
from .sitemap import seed_crawl
from .utils import canonicalize_url

__version__ = "0.1.0"

__all__ = [
    'KnowledgeBaseCrawler',
    'CrawlDispatcher',
    'CrawlerError',
    'InvalidJobError',
    'RobotsDisallowed',
    'DocumentStore',
    'JobDispatcher',
    'InMemoryDocumentStore',
    'InMemoryJobDispatcher',
    'UpsertOutcome',
    'CrawlJob',
    'CrawlSummary',
    'ExtractionResult',
    'LinkCandidate',
    'StrategyOrchestrator',
    'PolitenessGate',
    'RobotsHandler',
    'CrawlerRunConfig',
    'ScopeFilter',
    'discover_links',
    'seed_crawl',
    'canonicalize_url',
]
