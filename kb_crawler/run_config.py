"""
Unified Run Configuration
=========================
Single source of truth for ALL crawler defaults and runtime limits.

Every component (politeness gate, fetch client, renderer, strategies,
orchestrator, link discovery, dispatcher) receives a ``CrawlerRunConfig``
value instead of reading process state, so tests can build isolated
configurations.  The CLI populates it from flags and ``KB_CRAWLER_*``
environment variables.

The object is frozen; derive variants with ``dataclasses.replace`` or
``for_url``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional, Tuple
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical defaults: the only place these numbers live
# ---------------------------------------------------------------------------
_DEFAULTS = {
    # Fetch
    "fetch_timeout_seconds": 45.0,
    "rendering_fetch_timeout_seconds": 60.0,   # hydration-heavy targets
    # Robots / politeness
    "robots_timeout_seconds": 10.0,
    "robots_ttl_seconds": 900.0,               # 15 min
    "max_crawl_delay_seconds": 10.0,
    "origin_concurrency": 2,
    "min_request_interval_seconds": 1.0,
    "slot_acquire_timeout_seconds": 120.0,
    # Retry / budget
    "max_retries": 3,
    "retry_backoff_seconds": 1.0,              # linear: attempt * backoff
    "invocation_budget_seconds": 240.0,
    # Rendering
    "enable_rendering": True,
    "render_non_hydration_sites": False,
    "headless": True,
    "render_timeout_seconds": 20.0,
    "render_text_wait_seconds": 10.0,
    "render_text_threshold": 100,
    "render_settle_seconds": 1.0,
    "blocked_resource_types": ("image", "font", "media", "stylesheet"),
    # Extraction thresholds
    "min_gate_words": 15,
    "min_valid_words": 20,
    "min_valid_chars": 150,
    "semantic_min_chars": 200,
    "reader_min_chars": 100,
    "density_threshold": 100.0,
    "density_relaxed_threshold": 50.0,
    "hydration_min_chars": 50,
    "hydration_max_segments": 20,
    "fallback_body_chars": 2000,
    # Link discovery / dispatch
    "max_query_length": 200,
    "depth_link_caps": ((3, 25), (2, 20), (1, 15), (0, 0)),
    "child_batch_size": 5,
    "child_base_delay_seconds": 5,
    "child_batch_delay_step_seconds": 2,
    "indexing_delay_seconds": 5,
    "extra_deny_patterns": (),
    # Hydration-heavy host hints
    "hydration_host_suffixes": ("vercel.app", "netlify.app"),
    "known_hydration_hosts": (),
    # Sitemap seeding
    "sitemap_timeout_seconds": 10.0,
    "sitemap_child_timeout_seconds": 8.0,
    "sitemap_max_urls": 100,
    "sitemap_max_children": 10,
    # Identity
    "desktop_user_agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    ),
    "bot_user_agent": (
        "Mozilla/5.0 (compatible; KnowledgeBaseCrawler/1.0; +https://example.com/bot)"
    ),
}

_ENV_PREFIX = "KB_CRAWLER_"


@dataclass(frozen=True)
class CrawlerRunConfig:
    """
    Immutable configuration consumed by every crawler subsystem.

    Populate via:
      - ``CrawlerRunConfig()``                 → all defaults
      - ``CrawlerRunConfig(max_retries=1)``    → override one value
      - ``CrawlerRunConfig.from_env()``        → from ``KB_CRAWLER_*`` vars
      - ``CrawlerRunConfig.from_cli_args(ns)`` → from argparse Namespace
    """

    # ---- Fetch ----
    fetch_timeout_seconds: float = _DEFAULTS["fetch_timeout_seconds"]
    rendering_fetch_timeout_seconds: float = _DEFAULTS["rendering_fetch_timeout_seconds"]

    # ---- Robots / politeness ----
    robots_timeout_seconds: float = _DEFAULTS["robots_timeout_seconds"]
    robots_ttl_seconds: float = _DEFAULTS["robots_ttl_seconds"]
    max_crawl_delay_seconds: float = _DEFAULTS["max_crawl_delay_seconds"]
    origin_concurrency: int = _DEFAULTS["origin_concurrency"]
    min_request_interval_seconds: float = _DEFAULTS["min_request_interval_seconds"]
    slot_acquire_timeout_seconds: float = _DEFAULTS["slot_acquire_timeout_seconds"]

    # ---- Retry / budget ----
    max_retries: int = _DEFAULTS["max_retries"]
    retry_backoff_seconds: float = _DEFAULTS["retry_backoff_seconds"]
    invocation_budget_seconds: float = _DEFAULTS["invocation_budget_seconds"]

    # ---- Rendering ----
    enable_rendering: bool = _DEFAULTS["enable_rendering"]
    render_non_hydration_sites: bool = _DEFAULTS["render_non_hydration_sites"]
    headless: bool = _DEFAULTS["headless"]
    render_timeout_seconds: float = _DEFAULTS["render_timeout_seconds"]
    render_text_wait_seconds: float = _DEFAULTS["render_text_wait_seconds"]
    render_text_threshold: int = _DEFAULTS["render_text_threshold"]
    render_settle_seconds: float = _DEFAULTS["render_settle_seconds"]
    blocked_resource_types: Tuple[str, ...] = _DEFAULTS["blocked_resource_types"]

    # ---- Extraction thresholds ----
    min_gate_words: int = _DEFAULTS["min_gate_words"]
    min_valid_words: int = _DEFAULTS["min_valid_words"]
    min_valid_chars: int = _DEFAULTS["min_valid_chars"]
    semantic_min_chars: int = _DEFAULTS["semantic_min_chars"]
    reader_min_chars: int = _DEFAULTS["reader_min_chars"]
    density_threshold: float = _DEFAULTS["density_threshold"]
    density_relaxed_threshold: float = _DEFAULTS["density_relaxed_threshold"]
    hydration_min_chars: int = _DEFAULTS["hydration_min_chars"]
    hydration_max_segments: int = _DEFAULTS["hydration_max_segments"]
    fallback_body_chars: int = _DEFAULTS["fallback_body_chars"]

    # ---- Link discovery / dispatch ----
    max_query_length: int = _DEFAULTS["max_query_length"]
    depth_link_caps: Tuple[Tuple[int, int], ...] = _DEFAULTS["depth_link_caps"]
    child_batch_size: int = _DEFAULTS["child_batch_size"]
    child_base_delay_seconds: int = _DEFAULTS["child_base_delay_seconds"]
    child_batch_delay_step_seconds: int = _DEFAULTS["child_batch_delay_step_seconds"]
    indexing_delay_seconds: int = _DEFAULTS["indexing_delay_seconds"]
    extra_deny_patterns: Tuple[str, ...] = _DEFAULTS["extra_deny_patterns"]

    # ---- Hydration-heavy host hints ----
    hydration_host_suffixes: Tuple[str, ...] = _DEFAULTS["hydration_host_suffixes"]
    known_hydration_hosts: Tuple[str, ...] = _DEFAULTS["known_hydration_hosts"]

    # ---- Sitemap seeding ----
    sitemap_timeout_seconds: float = _DEFAULTS["sitemap_timeout_seconds"]
    sitemap_child_timeout_seconds: float = _DEFAULTS["sitemap_child_timeout_seconds"]
    sitemap_max_urls: int = _DEFAULTS["sitemap_max_urls"]
    sitemap_max_children: int = _DEFAULTS["sitemap_max_children"]

    # ---- Identity ----
    desktop_user_agent: str = _DEFAULTS["desktop_user_agent"]
    bot_user_agent: str = _DEFAULTS["bot_user_agent"]

    # -----------------------------------------------------------------------
    # Derived values
    # -----------------------------------------------------------------------
    def link_cap_for_depth(self, remaining_depth: int) -> int:
        """Maximum child links for a page with ``remaining_depth`` budget left."""
        if remaining_depth <= 0:
            return 0
        caps = dict(self.depth_link_caps)
        if remaining_depth in caps:
            return caps[remaining_depth]
        # Deeper than the table: use the largest configured cap
        return max(caps.values()) if caps else 0

    def is_hydration_host(self, url: str) -> bool:
        """Hostname-based hint that the site ships its text in hydration payloads."""
        try:
            parsed = urlparse(url)
        except ValueError:
            return False
        host = (parsed.hostname or "").lower()
        if not host:
            return False
        if host in self.known_hydration_hosts:
            return True
        if "/_next/" in parsed.path:
            return True
        return any(
            host == suffix or host.endswith("." + suffix)
            for suffix in self.hydration_host_suffixes
        )

    def for_url(self, url: str, hydration_heavy: Optional[bool] = None) -> "CrawlerRunConfig":
        """Return a copy with the fetch timeout suited to *url*."""
        heavy = self.is_hydration_host(url) if hydration_heavy is None else hydration_heavy
        if heavy and self.rendering_fetch_timeout_seconds > self.fetch_timeout_seconds:
            return replace(self, fetch_timeout_seconds=self.rendering_fetch_timeout_seconds)
        return self

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CrawlerRunConfig":
        """
        Build config from ``KB_CRAWLER_<FIELD>`` environment variables.

        Tuples are comma-separated; ``KB_CRAWLER_DEPTH_LINK_CAPS`` uses
        ``depth:cap`` pairs (``3:25,2:20,1:15,0:0``).  Unparseable values are
        logged and ignored.
        """
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = environ.get(_ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            try:
                overrides[f.name] = _parse_env_value(f.name, raw, _DEFAULTS[f.name])
            except ValueError as exc:
                logger.warning(f"[CONFIG] Ignoring {_ENV_PREFIX}{f.name.upper()}={raw!r}: {exc}")
        return cls(**overrides)

    @classmethod
    def from_cli_args(cls, args, base: Optional["CrawlerRunConfig"] = None) -> "CrawlerRunConfig":
        """Apply argparse overrides (``__main__.py``) on top of *base*."""
        cfg = base or cls.from_env()
        overrides = {}
        if getattr(args, "timeout", None):
            overrides["fetch_timeout_seconds"] = float(args.timeout)
        if getattr(args, "no_render", False):
            overrides["enable_rendering"] = False
        if getattr(args, "headed", False):
            overrides["headless"] = False
        if getattr(args, "retries", None):
            overrides["max_retries"] = int(args.retries)
        if getattr(args, "deny_pattern", None):
            overrides["extra_deny_patterns"] = tuple(args.deny_pattern)
        return replace(cfg, **overrides) if overrides else cfg

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self, url: str) -> None:
        """Emit a structured summary to the logger."""
        logger.info("=" * 60)
        logger.info("CRAWL RUN CONFIG")
        logger.info("=" * 60)
        logger.info(f"  URL:              {url}")
        logger.info(f"  Fetch Timeout:    {self.for_url(url).fetch_timeout_seconds:.0f}s")
        logger.info(f"  Retries:          {self.max_retries} (backoff {self.retry_backoff_seconds}s x attempt)")
        logger.info(f"  Budget:           {self.invocation_budget_seconds:.0f}s per invocation")
        logger.info(f"  Politeness:       {self.origin_concurrency} in-flight/origin, "
                    f"{self.min_request_interval_seconds}s spacing")
        logger.info(f"  Rendering:        {'enabled' if self.enable_rendering else 'disabled'}")
        if self.extra_deny_patterns:
            logger.info(f"  Deny Patterns:    {len(self.extra_deny_patterns)} configured")
        logger.info("=" * 60)


def _parse_env_value(name: str, raw: str, default):
    raw = raw.strip()
    if name == "depth_link_caps":
        pairs = []
        for item in filter(None, (p.strip() for p in raw.split(","))):
            depth, _, cap = item.partition(":")
            pairs.append((int(depth), int(cap)))
        return tuple(pairs)
    if isinstance(default, bool):
        if raw.lower() in ("1", "true", "yes", "on"):
            return True
        if raw.lower() in ("0", "false", "no", "off"):
            return False
        raise ValueError("expected a boolean")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, tuple):
        return tuple(p.strip() for p in raw.split(",") if p.strip())
    return raw
