"""
Crawler Errors
==============
Exception taxonomy shared by every component.

Transient fetch failures (``FetchError`` and subclasses) are retried inside a
strategy; everything else ends the strategy and moves the orchestrator on.
Running out of content is never an exception: a strategy returns an outcome
with no result.
"""

from __future__ import annotations


class CrawlerError(Exception):
    """Base class for all crawler errors."""


class InvalidJobError(CrawlerError):
    """The invocation payload is missing fields or malformed."""


class RobotsDisallowed(CrawlerError):
    """robots.txt forbids fetching the URL. Terminal for the invocation."""

    def __init__(self, url: str):
        super().__init__(f"Blocked by robots.txt: {url}")
        self.url = url


# ---------------------------------------------------------------------------
# Transient fetch failures (retried within a strategy)
# ---------------------------------------------------------------------------

class FetchError(CrawlerError):
    """Base class for retryable network failures."""


class FetchTimeout(FetchError):
    """The request did not complete within its timeout."""


class FetchConnectionError(FetchError):
    """DNS, TLS or connection-level failure."""


class FetchHTTPError(FetchError):
    """The server answered with a non-2xx status."""

    def __init__(self, status: int, url: str = ""):
        super().__init__(f"HTTP {status}" + (f" for {url}" if url else ""))
        self.status = status
        self.url = url


class InvalidContent(FetchError):
    """The response body does not look like renderable HTML."""


class RenderTimeout(FetchTimeout):
    """Headless navigation exceeded its timeout."""


# ---------------------------------------------------------------------------
# Structural failures (not retried)
# ---------------------------------------------------------------------------

class BrowserLaunchFailure(CrawlerError):
    """The headless browser could not be started."""


class StrategySkipped(CrawlerError):
    """The strategy decided it cannot handle this page (e.g. SPA shell).

    Carries the HTML the strategy already fetched, if any, so later
    fallbacks can reuse it.
    """

    def __init__(self, message: str, html: str = None):
        super().__init__(message)
        self.html = html


class AllStrategiesExhausted(CrawlerError):
    """No primary strategy produced an acceptable result."""


class ChildSubmissionFailed(CrawlerError):
    """Submitting one follow-up crawl job failed."""

    def __init__(self, url: str, cause: Exception):
        super().__init__(f"Failed to submit child job for {url}: {cause}")
        self.url = url
        self.cause = cause
