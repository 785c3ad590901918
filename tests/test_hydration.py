"""
Tests for hydration.py: payload mining, segment filters and title resolution.
"""

import pytest

from kb_crawler.hydration import (
    DEFAULT_TITLE,
    HydrationHostRegistry,
    assemble_segments,
    clean_segment,
    collect_segments,
    detect_hydration_markers,
    has_hydration_payload,
    is_potentially_meaningful,
    is_quality_content,
    mine_hydration,
    resolve_title,
    unescape_js,
)

from pages import NEXT_SHELL, SENTENCE


# ====================================================================
# 1. Filters
# ====================================================================

class TestFilters:

    def test_css_utility_string_rejected(self):
        assert is_potentially_meaningful("flex items-center justify-between px-4 py-2") is False

    def test_sentence_accepted(self):
        assert is_potentially_meaningful(SENTENCE) is True

    def test_letter_run_spans_single_spaces(self):
        assert is_potentially_meaningful("Contact us at our office") is True

    def test_length_bounds(self):
        assert is_potentially_meaningful("Too short") is False
        assert is_potentially_meaningful("word " * 120) is False

    def test_technical_noise_rejected(self):
        assert is_potentially_meaningful("static/chunks/app/page-abc123.js loaded here") is False
        assert is_potentially_meaningful('className: "hero-banner wide layout"') is False
        assert is_potentially_meaningful("function (e) { return something useful }") is False

    @pytest.mark.parametrize("text", [
        "Our return policy lets you send back any item within thirty days.",
        "The dashboard is built with Node.js and runs on our own servers.",
        "Shipping is free: true for every order above fifty dollars.",
        "Let us know what you think; we read every message",
    ])
    def test_prose_with_code_words_accepted(self, text):
        assert is_potentially_meaningful(text) is True

    @pytest.mark.parametrize("text", [
        "const total = items.length for the basket",
        "return value; and then continue the loop",
        'loading the bundle main-3f2a1b9c.js for this page',
        'the settings {"enabled": true, "visible": false}',
        "window.addEventListener(handler) });",
    ])
    def test_code_shapes_rejected(self, text):
        assert is_potentially_meaningful(text) is False

    def test_returns_sentence_survives_mining(self):
        sentence = "Our return policy lets you send back any item within thirty days."
        html = f'<script>self.__next_f.push([1,"{sentence}"])</script>'
        assert sentence in collect_segments(html)

    def test_quality_needs_prose_signal(self):
        assert is_quality_content("Our team builds reliable software.") is True
        assert is_quality_content("ok no yes hi") is False

    def test_quality_rejects_repetition(self):
        assert is_quality_content("the cat " * 6) is False

    def test_clean_segment(self):
        assert clean_segment("  Fish &amp; chips\\nserved daily,  ") == "Fish & chips served daily"

    def test_unescape_js(self):
        assert unescape_js("Caf\\u00e9 \\\"quoted\\\"") == 'Café "quoted"'


# ====================================================================
# 2. Assembly
# ====================================================================

class TestAssembly:

    def test_substring_duplicates_dropped(self):
        segments = assemble_segments([
            "Our team builds reliable software.",
            "Our team builds reliable software",
            "Completely different words appear here today.",
        ])
        assert segments == [
            "Completely different words appear here today.",
            "Our team builds reliable software.",
        ]

    def test_high_token_overlap_dropped(self):
        segments = assemble_segments([
            "alpha beta gamma delta epsilon",
            "alpha beta gamma delta zeta",
        ])
        assert len(segments) == 1

    def test_equal_length_segments_keep_input_order(self):
        first = "Bakers start work early at dawn."
        second = "Trains leave the station hourly."
        assert len(first) == len(second)
        assert assemble_segments([first, second]) == [first, second]
        assert assemble_segments([second, first]) == [second, first]

    def test_segment_cap(self):
        many = [
            "Volunteers repaired the garden fence.",
            "Trains leave every twenty minutes.",
            "Bakers start work before sunrise.",
            "Museums close early on holidays.",
            "Rivers flood after heavy rain.",
            "Students enjoy the new library.",
            "Engineers tested the bridge twice.",
        ]
        assert len(assemble_segments(many, max_segments=5)) == 5


# ====================================================================
# 3. Mining
# ====================================================================

class TestMining:

    def test_push_payload_sentence_recovered(self):
        result = mine_hydration(NEXT_SHELL, "https://app.example.com/about")
        assert result is not None
        assert result.method == "hydration"
        assert SENTENCE in result.content
        assert "items-center" not in result.content

    def test_unicode_escape_resolved(self):
        segments = collect_segments(NEXT_SHELL)
        assert any(s.startswith("Café owners") for s in segments)

    def test_too_little_text(self):
        html = '<script>self.__next_f.push([1,"Short words only here."])</script>'
        assert mine_hydration(html, "https://example.com/", min_chars=50) is None

    def test_markup_text_source(self):
        html = (
            "<html><body><div><span>Volunteers repaired the community garden fence on Saturday.</span>"
            "<span>The library will host a reading club for children every Tuesday.</span></div></body></html>"
        )
        result = mine_hydration(html, "https://example.com/news", min_chars=50)
        assert result is not None
        assert "reading club" in result.content

    def test_empty_html(self):
        assert mine_hydration("", "https://example.com/") is None


# ====================================================================
# 4. Titles
# ====================================================================

class TestTitles:

    def test_fallback_title_wins(self):
        assert resolve_title(NEXT_SHELL, "https://x.com/about", "Company Overview") == "Company Overview"

    def test_serialized_title_node(self):
        html = '<script>self.__next_f.push([1,"[\\"$\\",\\"title\\",null,{\\"children\\":\\"Acme Pricing Plans\\"}]"])</script>'
        assert resolve_title(html, "https://x.com/", "Untitled") == "Acme Pricing Plans"

    def test_url_segment_mapping(self):
        assert resolve_title("<html></html>", "https://x.com/company/faq") == "FAQ"
        assert resolve_title("<html></html>", "https://x.com/contact/") == "Contact Us"

    def test_default_title(self):
        assert resolve_title("<html></html>", "https://x.com/misc/page") == DEFAULT_TITLE


# ====================================================================
# 5. Markers and host registry
# ====================================================================

class TestMarkers:

    def test_marker_count(self):
        assert detect_hydration_markers(NEXT_SHELL) >= 2
        assert has_hydration_payload(NEXT_SHELL) is True

    def test_plain_page_has_no_markers(self):
        html = "<html><body><p>Plain server rendered page.</p></body></html>"
        assert detect_hydration_markers(html) == 0
        assert has_hydration_payload(html) is False

    def test_registry_is_per_host(self):
        registry = HydrationHostRegistry()
        registry.mark("https://App.example.com/start")
        assert "https://app.example.com/other" in registry
        assert "https://example.com/" not in registry
        registry.clear()
        assert "https://app.example.com/other" not in registry
