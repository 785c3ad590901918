"""
Tests for sitemap.py: sitemap parsing, index expansion and crawl seeding.
"""

from unittest.mock import MagicMock, Mock

import pytest
import requests

from kb_crawler.errors import InvalidJobError
from kb_crawler.interfaces import InMemoryJobDispatcher
from kb_crawler.run_config import CrawlerRunConfig
from kb_crawler.sitemap import SitemapReader, parse_sitemap, seed_crawl, seed_delay

NS = 'xmlns="http://www.sitemaps.org/schemas/sitemap/0.9"'


def urlset(*locs):
    body = "".join(f"<url><loc>{loc}</loc></url>" for loc in locs)
    return f'<?xml version="1.0" encoding="UTF-8"?><urlset {NS}>{body}</urlset>'


def sitemapindex(*locs):
    body = "".join(f"<sitemap><loc>{loc}</loc></sitemap>" for loc in locs)
    return f'<?xml version="1.0" encoding="UTF-8"?><sitemapindex {NS}>{body}</sitemapindex>'


def session_serving(pages):
    """Session whose ``get`` serves *pages* (url → text) and 404s the rest."""
    session = MagicMock()

    def get(url, **kwargs):
        response = Mock()
        if url in pages:
            response.ok, response.status_code, response.text = True, 200, pages[url]
        else:
            response.ok, response.status_code, response.text = False, 404, "Not Found"
        return response

    session.get.side_effect = get
    return session


# ====================================================================
# 1. Parsing
# ====================================================================

class TestParse:

    def test_urlset(self):
        kind, locs = parse_sitemap(urlset("https://a.com/1", "https://a.com/2"))
        assert kind == "urlset"
        assert locs == ["https://a.com/1", "https://a.com/2"]

    def test_index(self):
        kind, locs = parse_sitemap(sitemapindex("https://a.com/posts.xml"))
        assert kind == "sitemapindex"
        assert locs == ["https://a.com/posts.xml"]

    def test_without_namespace(self):
        kind, locs = parse_sitemap("<urlset><url><loc> https://a.com/x </loc></url></urlset>")
        assert kind == "urlset"
        assert locs == ["https://a.com/x"]

    def test_html_is_not_a_sitemap(self):
        assert parse_sitemap("<html><body>Not found</body></html>") == (None, [])

    def test_garbage(self):
        assert parse_sitemap("this is not xml <") == (None, [])


# ====================================================================
# 2. Reader
# ====================================================================

class TestReader:

    def test_first_location_wins(self):
        session = session_serving({
            "https://a.com/sitemap.xml": urlset("https://a.com/1", "https://a.com/2"),
            "https://a.com/sitemap_index.xml": urlset("https://a.com/other"),
        })
        assert SitemapReader(session=session).read("https://a.com/start") == [
            "https://a.com/1", "https://a.com/2",
        ]

    def test_falls_through_to_later_location(self):
        session = session_serving({"https://a.com/sitemaps.xml": urlset("https://a.com/1")})
        assert SitemapReader(session=session).read("https://a.com/") == ["https://a.com/1"]

    def test_index_expanded(self):
        session = session_serving({
            "https://a.com/sitemap.xml": sitemapindex("https://a.com/posts.xml", "https://a.com/pages.xml"),
            "https://a.com/posts.xml": urlset("https://a.com/post-1"),
            "https://a.com/pages.xml": urlset("https://a.com/about"),
        })
        urls = SitemapReader(session=session).read("https://a.com/")
        assert urls == ["https://a.com/post-1", "https://a.com/about"]

    def test_index_children_capped(self):
        session = session_serving({
            "https://a.com/sitemap.xml": sitemapindex("https://a.com/s1.xml", "https://a.com/s2.xml"),
            "https://a.com/s1.xml": urlset("https://a.com/1"),
            "https://a.com/s2.xml": urlset("https://a.com/2"),
        })
        reader = SitemapReader(CrawlerRunConfig(sitemap_max_children=1), session=session)
        assert reader.read("https://a.com/") == ["https://a.com/1"]

    def test_cross_origin_and_duplicates_dropped(self):
        session = session_serving({"https://a.com/sitemap.xml": urlset(
            "https://a.com/1", "https://cdn.other.com/1", "https://a.com/1/", "ftp://a.com/f",
        )})
        assert SitemapReader(session=session).read("https://a.com/") == ["https://a.com/1"]

    def test_url_cap(self):
        locs = [f"https://a.com/{i}" for i in range(10)]
        session = session_serving({"https://a.com/sitemap.xml": urlset(*locs)})
        reader = SitemapReader(CrawlerRunConfig(sitemap_max_urls=3), session=session)
        assert len(reader.read("https://a.com/")) == 3

    def test_network_error_means_no_sitemap(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        assert SitemapReader(session=session).read("https://a.com/") == []


# ====================================================================
# 3. Seeding
# ====================================================================

class TestSeed:

    def test_sitemap_urls_enqueued_with_spread_delays(self):
        locs = [f"https://a.com/{i}" for i in range(12)]
        session = session_serving({"https://a.com/sitemap.xml": urlset(*locs)})
        jobs = InMemoryJobDispatcher()

        result = seed_crawl("kb-1", "https://a.com/", "user-1", 2, jobs, session=session)

        assert result == {"discovered": 12, "enqueued": 12, "failed": 0, "method": "sitemap"}
        assert [j.delay_seconds for j in jobs.crawl_jobs] == [15] * 10 + [17] * 2
        assert all(j.remaining_depth == 2 for j in jobs.crawl_jobs)

    def test_fallback_to_root(self):
        jobs = InMemoryJobDispatcher()
        result = seed_crawl("kb-1", "https://a.com/", "user-1", 1, jobs, session=session_serving({}))
        assert result["method"] == "fallback"
        assert result["enqueued"] == 1
        assert jobs.crawl_jobs[0].url == "https://a.com/"

    def test_failed_submissions_counted(self):
        jobs = Mock()
        jobs.submit_crawl_job.side_effect = RuntimeError("queue full")
        result = seed_crawl("kb-1", "https://a.com/", "user-1", 1, jobs, session=session_serving({}))
        assert result["failed"] == 1
        assert result["enqueued"] == 0

    @pytest.mark.parametrize("url, depth", [
        ("ftp://a.com/", 1),
        ("a.com", 1),
        ("https://a.com/", 6),
        ("https://a.com/", -1),
        ("https://a.com/", "deep"),
    ])
    def test_invalid_input(self, url, depth):
        with pytest.raises(InvalidJobError):
            seed_crawl("kb-1", url, "user-1", depth, InMemoryJobDispatcher(), session=session_serving({}))

    def test_seed_delay(self):
        assert [seed_delay(i) for i in (0, 9, 10, 25)] == [15, 15, 17, 19]
