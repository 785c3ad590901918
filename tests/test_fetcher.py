"""
Tests for fetcher.py and renderer.py.

The requests session and Playwright are mocked; no network or browser.
"""

from unittest.mock import MagicMock, Mock, patch

import pytest
import requests
from playwright.sync_api import TimeoutError as PlaywrightTimeout

from kb_crawler.errors import (
    BrowserLaunchFailure, FetchConnectionError, FetchHTTPError, FetchTimeout,
    InvalidContent, RenderTimeout,
)
from kb_crawler.fetcher import FetchClient, is_valid_html_content
from kb_crawler.politeness import PolitenessGate
from kb_crawler.renderer import BrowserRenderer
from kb_crawler.run_config import CrawlerRunConfig


HTML = "<html><head><title>Hi</title></head><body><p>Hello there world</p></body></html>"


def quiet_gate(config=None):
    return PolitenessGate(config or CrawlerRunConfig(), robots=Mock(), clock=lambda: 0.0, sleep=Mock())


def response(status=200, text=HTML, content_type="text/html; charset=utf-8"):
    return Mock(status_code=status, text=text, headers={"Content-Type": content_type})


def client_with(resp=None, side_effect=None):
    session = MagicMock()
    if side_effect is not None:
        session.get.side_effect = side_effect
    else:
        session.get.return_value = resp
    config = CrawlerRunConfig()
    return FetchClient(config, gate=quiet_gate(config), session=session), session


# ====================================================================
# 1. HTML validity
# ====================================================================

class TestHtmlValidity:

    def test_markup_is_valid(self):
        assert is_valid_html_content(HTML) is True

    def test_plain_readable_text_is_valid(self):
        assert is_valid_html_content("Just a plain sentence with enough letters in it") is True

    def test_empty_is_invalid(self):
        assert is_valid_html_content("") is False
        assert is_valid_html_content("   \n ") is False
        assert is_valid_html_content(None) is False

    def test_binary_prefix_is_invalid(self):
        assert is_valid_html_content("\x00\x01\x02\x03\x04\x05<html>") is False
        assert is_valid_html_content("\ufffd" * 5 + "<p>text</p>") is False

    def test_symbols_only_is_invalid(self):
        assert is_valid_html_content("{} [] 12345 ;;; ===") is False


# ====================================================================
# 2. Fetch client
# ====================================================================

class TestFetchClient:

    def test_returns_html(self):
        client, session = client_with(response())
        assert client.fetch("https://example.com/") == HTML
        kwargs = session.get.call_args.kwargs
        assert kwargs["allow_redirects"] is True
        assert kwargs["timeout"] == 45.0
        assert kwargs["headers"]["User-Agent"] == CrawlerRunConfig().desktop_user_agent

    def test_user_agent_and_headers_override(self):
        client, session = client_with(response())
        client.fetch("https://example.com/", user_agent="Bot/1.0",
                     extra_headers={"Accept-Language": "ar,en;q=0.5"}, timeout=5)
        kwargs = session.get.call_args.kwargs
        assert kwargs["headers"]["User-Agent"] == "Bot/1.0"
        assert kwargs["headers"]["Accept-Language"] == "ar,en;q=0.5"
        assert kwargs["timeout"] == 5

    def test_timeout_classified(self):
        client, _ = client_with(side_effect=requests.Timeout("slow"))
        with pytest.raises(FetchTimeout):
            client.fetch("https://example.com/")

    def test_connection_error_classified(self):
        client, _ = client_with(side_effect=requests.ConnectionError("dns"))
        with pytest.raises(FetchConnectionError):
            client.fetch("https://example.com/")

    def test_http_error_carries_status(self):
        client, _ = client_with(response(status=503))
        with pytest.raises(FetchHTTPError) as exc_info:
            client.fetch("https://example.com/")
        assert exc_info.value.status == 503

    def test_non_html_content_type(self):
        client, _ = client_with(response(content_type="application/pdf"))
        with pytest.raises(InvalidContent):
            client.fetch("https://example.com/file")

    def test_garbage_body(self):
        client, _ = client_with(response(text="\x00\x00\x00\x00\x00\x00"))
        with pytest.raises(InvalidContent):
            client.fetch("https://example.com/")

    def test_request_goes_through_politeness_slot(self):
        client, _ = client_with(response())
        gate = MagicMock()
        client.gate = gate
        client.fetch("https://example.com/page")
        gate.request_slot.assert_called_once_with("https://example.com/page")


# ====================================================================
# 3. Renderer
# ====================================================================

def fake_playwright(status=200, content=HTML, title="Rendered"):
    """sync_playwright() replacement plus handles to the mocked objects."""
    page = MagicMock()
    page.goto.return_value = Mock(status=status)
    page.content.return_value = content
    page.title.return_value = title
    context = MagicMock()
    context.new_page.return_value = page
    browser = MagicMock()
    browser.new_context.return_value = context
    pw = MagicMock()
    pw.chromium.launch.return_value = browser
    factory = MagicMock()
    factory.return_value.start.return_value = pw
    return factory, pw, browser, context, page


class TestBrowserRenderer:

    def _renderer(self):
        config = CrawlerRunConfig()
        return BrowserRenderer(config, gate=quiet_gate(config))

    def test_render_returns_dom_and_title(self):
        factory, pw, browser, context, page = fake_playwright()
        with patch("kb_crawler.renderer.sync_playwright", factory):
            with self._renderer() as renderer:
                rendered = renderer.render("https://example.com/")
                assert renderer.started is True
        assert rendered.html == HTML
        assert rendered.title == "Rendered"
        assert page.goto.call_args.kwargs["wait_until"] == "domcontentloaded"
        context.route.assert_called_once()
        context.close.assert_called_once()
        browser.close.assert_called_once()
        pw.stop.assert_called_once()

    def test_browser_launched_once_per_invocation(self):
        factory, pw, _, _, _ = fake_playwright()
        with patch("kb_crawler.renderer.sync_playwright", factory):
            renderer = self._renderer()
            renderer.render("https://example.com/a")
            renderer.render("https://example.com/b")
            renderer.close()
        assert pw.chromium.launch.call_count == 1

    def test_http_error_status(self):
        factory, _, _, context, _ = fake_playwright(status=404)
        with patch("kb_crawler.renderer.sync_playwright", factory):
            with self._renderer() as renderer:
                with pytest.raises(FetchHTTPError):
                    renderer.render("https://example.com/missing")
        context.close.assert_called_once()

    def test_navigation_timeout(self):
        factory, _, _, context, page = fake_playwright()
        page.goto.side_effect = PlaywrightTimeout("Timeout 20000ms exceeded")
        with patch("kb_crawler.renderer.sync_playwright", factory):
            with self._renderer() as renderer:
                with pytest.raises(RenderTimeout):
                    renderer.render("https://example.com/")
        context.close.assert_called_once()

    def test_text_wait_timeout_is_tolerated(self):
        factory, _, _, _, page = fake_playwright()
        page.wait_for_function.side_effect = PlaywrightTimeout("no text")
        with patch("kb_crawler.renderer.sync_playwright", factory):
            with self._renderer() as renderer:
                assert renderer.render("https://example.com/").html == HTML

    def test_launch_failure(self):
        factory, pw, _, _, _ = fake_playwright()
        pw.chromium.launch.side_effect = Exception("Executable doesn't exist")
        with patch("kb_crawler.renderer.sync_playwright", factory):
            renderer = self._renderer()
            with pytest.raises(BrowserLaunchFailure):
                renderer.render("https://example.com/")
        assert renderer.started is False
        pw.stop.assert_called_once()

    def test_route_handler_blocks_resources(self):
        renderer = self._renderer()
        image = MagicMock()
        image.request.resource_type = "image"
        renderer._route_handler(image)
        image.abort.assert_called_once()

        tracker = MagicMock()
        tracker.request.resource_type = "script"
        tracker.request.url = "https://www.googletagmanager.com/gtm.js"
        renderer._route_handler(tracker)
        tracker.abort.assert_called_once()

        doc = MagicMock()
        doc.request.resource_type = "document"
        doc.request.url = "https://example.com/"
        renderer._route_handler(doc)
        doc.continue_.assert_called_once()
        doc.abort.assert_not_called()

    def test_close_without_start_is_noop(self):
        self._renderer().close()
