#!/usr/bin/env python3
"""
Knowledge Base Crawler CLI
==========================
Runs crawl invocations against the in-memory document store and job queue.

    python -m kb_crawler crawl https://example.com/blog --depth 1 --drain
    python -m kb_crawler seed https://example.com --max-depth 2

Configuration comes from ``KB_CRAWLER_*`` environment variables (a ``.env``
file is loaded first) with the flags below layered on top.
"""

import argparse
import json
import logging
import sys
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from pathlib import Path

from dotenv import load_dotenv

from .crawler import KnowledgeBaseCrawler
from .errors import InvalidJobError
from .interfaces import InMemoryDocumentStore, InMemoryJobDispatcher
from .run_config import CrawlerRunConfig
from .sitemap import seed_crawl
from .utils import canonicalize_url

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )


def _load_env() -> None:
    env_path = Path.cwd() / '.env'
    if env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()


# ---------------------------------------------------------------------------
# crawl
# ---------------------------------------------------------------------------

def drain_queue(crawler: KnowledgeBaseCrawler, jobs: InMemoryJobDispatcher,
                workers: int = 4, max_jobs: int = 200, crawled=()) -> list:
    """
    Process queued child jobs on a thread pool until the queue is empty.

    Queue delays are not honoured; politeness is enforced by the crawler's
    shared gate. A URL is crawled at most once per drain; *crawled* holds the
    (knowledge base, URL) pairs already handled before the drain started.

    Returns:
        List of CrawlSummary for every drained job
    """
    summaries = []
    seen = {(kb, canonicalize_url(url)) for kb, url in crawled}
    started = 0
    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        running = set()
        while True:
            while started < max_jobs:
                record = jobs.pop_crawl_job()
                if record is None:
                    break
                key = (record.knowledge_base_id, canonicalize_url(record.url))
                if key in seen:
                    continue
                seen.add(key)
                started += 1
                running.add(pool.submit(crawler.handle, record.to_payload()))
            if not running:
                break
            done, running = wait(running, return_when=FIRST_COMPLETED)
            for future in done:
                summaries.append(future.result())

    left = jobs.pending_count()
    if left:
        logger.warning(f"[CRAWL] Drain stopped at {max_jobs} jobs; {left} still queued")
    return summaries


def print_summary(summaries: list, store: InMemoryDocumentStore, jobs: InMemoryJobDispatcher,
                  elapsed: float):
    """Print final crawl statistics."""
    statuses = {}
    for s in summaries:
        key = s.status if not s.reason else f"{s.status}/{s.reason}"
        statuses[key] = statuses.get(key, 0) + 1

    print("\n" + "=" * 65)
    print("CRAWL COMPLETE")
    print("=" * 65)
    print(f"  Invocations:         {len(summaries)}")
    for key, count in sorted(statuses.items()):
        print(f"    {key:<20} {count}")
    print(f"  Documents stored:    {len(store.documents())}")
    print(f"  Total words:         {sum(d.word_count for d in store.documents()):,}")
    print(f"  Indexing jobs:       {len(jobs.indexing_jobs)}")
    print(f"  Child jobs queued:   {len(jobs.crawl_jobs)}")
    print(f"  Total time:          {elapsed:.1f}s")
    print("=" * 65)


def run_crawl(args) -> int:
    cfg = CrawlerRunConfig.from_cli_args(args)
    cfg.log_summary(args.url)

    store = InMemoryDocumentStore()
    jobs = InMemoryJobDispatcher()
    crawler = KnowledgeBaseCrawler(store, jobs, cfg)

    started = time.monotonic()
    first = crawler.handle({
        "knowledge_base_id": args.kb_id,
        "url": args.url,
        "owner_id": args.owner_id,
        "remaining_depth": args.depth,
    })
    summaries = [first]
    if args.drain:
        summaries.extend(drain_queue(
            crawler, jobs, args.workers, args.max_jobs, crawled=[(args.kb_id, args.url)],
        ))

    print_summary(summaries, store, jobs, time.monotonic() - started)

    if args.json:
        payload = {
            "summaries": [s.to_dict() for s in summaries],
            "documents": [
                {
                    "document_id": d.document_id,
                    "url": d.canonical_url,
                    "title": d.title,
                    "word_count": d.word_count,
                    "content": d.content,
                }
                for d in store.documents()
            ],
        }
        with open(args.json, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        print(f"  Exported: {args.json}")

    return 1 if first.reason == "internal_error" else 0


# ---------------------------------------------------------------------------
# seed
# ---------------------------------------------------------------------------

def run_seed(args) -> int:
    cfg = CrawlerRunConfig.from_cli_args(args)
    jobs = InMemoryJobDispatcher()
    try:
        result = seed_crawl(args.kb_id, args.url, args.owner_id, args.max_depth, jobs, cfg)
    except InvalidJobError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2))
    for record in jobs.crawl_jobs:
        print(f"  +{record.delay_seconds:>3}s  depth {record.remaining_depth}  {record.url}")
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='python -m kb_crawler',
        description='Knowledge-base web crawler',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m kb_crawler crawl https://example.com/blog/post --depth 1 --drain
  python -m kb_crawler crawl https://example.com --no-render --json out.json
  python -m kb_crawler seed https://example.com --max-depth 2
        """
    )
    sub = parser.add_subparsers(dest='command', required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('url', help='URL to crawl')
    common.add_argument('--kb-id', default='local', help='Knowledge base id (default: local)')
    common.add_argument('--owner-id', default='cli', help='Owner id (default: cli)')
    common.add_argument('--timeout', type=float, help='Fetch timeout in seconds')
    common.add_argument('--retries', type=int, help='Attempts per strategy')
    common.add_argument('--no-render', action='store_true', help='Disable headless rendering')
    common.add_argument('--headed', action='store_true', help='Show the browser window')
    common.add_argument('--deny-pattern', action='append', help='Extra regex for links to skip (repeatable)')
    common.add_argument('--verbose', '-v', action='store_true', help='Debug logging')

    crawl = sub.add_parser('crawl', parents=[common], help='Run one crawl invocation')
    crawl.add_argument('--depth', type=int, default=0, help='Remaining depth for link following (default: 0)')
    crawl.add_argument('--drain', action='store_true', help='Keep crawling the child jobs that get queued')
    crawl.add_argument('--workers', type=int, default=4, help='Concurrent invocations when draining (default: 4)')
    crawl.add_argument('--max-jobs', type=int, default=200, help='Stop draining after this many jobs (default: 200)')
    crawl.add_argument('--json', type=str, help='Write summaries and documents to this JSON file')
    crawl.set_defaults(func=run_crawl)

    seed = sub.add_parser('seed', parents=[common], help='Seed crawl jobs from the sitemap')
    seed.add_argument('--max-depth', type=int, default=2, help='Depth given to seeded jobs (default: 2)')
    seed.set_defaults(func=run_seed)
    return parser


def main(argv=None) -> int:
    _load_env()
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
