"""
Page Scraper
DOM extraction passes: semantic-selector, content-density and visible-text,
plus title/meta helpers and SPA-shell detection.
"""

import logging
import re
from typing import List, Optional

from bs4 import BeautifulSoup, Comment

from .models import ExtractionResult
from .utils import clean_text

logger = logging.getLogger(__name__)

_BS_PARSER = "lxml"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def make_soup(html: str) -> BeautifulSoup:
    """
    Parse HTML with lxml.

    Guard: if lxml produced a broken parse (plenty of body text but no
    anchors while the markup clearly has some), retry with html.parser.
    """
    html = html or ""
    soup = BeautifulSoup(html, _BS_PARSER)
    body = soup.find('body')
    body_len = len(body.get_text(strip=True)) if body else 0
    if body_len > 200 and not soup.find('a', href=True) and '<a ' in html:
        soup = BeautifulSoup(html, 'html.parser')
    return soup


def element_text(element) -> str:
    if element is None:
        return ""
    return clean_text(element.get_text(separator=' ', strip=True))


# ---------------------------------------------------------------------------
# Noise removal
# ---------------------------------------------------------------------------

# Tags that never hold primary content
NOISE_TAGS = {
    'script', 'style', 'noscript', 'nav', 'header', 'footer', 'aside',
    'iframe', 'svg', 'canvas', 'template', 'button',
}

# Never removed, whatever their class says
PROTECTED_TAGS = {'html', 'body', 'main', 'article'}

# class/id words matched as substrings (distinctive enough not to collide)
NOISE_SUBSTRINGS = (
    'advert', 'sponsor', 'social', 'share', 'comment', 'cookie', 'consent',
    'banner', 'popup', 'newsletter', 'sidebar', 'breadcrumb', 'navigation',
    'navbar',
)

# class/id words matched as whole tokens (short words that occur inside others)
NOISE_TOKENS = {'ad', 'ads', 'menu', 'nav', 'modal', 'promo'}

_TOKEN_SPLIT = re.compile(r'[\s_\-]+')


def _is_noise_by_attributes(element) -> bool:
    classes = element.get('class') or []
    if isinstance(classes, str):
        classes = [classes]
    identifier = element.get('id') or ''
    combined = ' '.join(classes + [identifier]).lower()
    if not combined.strip():
        return False
    if any(word in combined for word in NOISE_SUBSTRINGS):
        return True
    tokens = set(_TOKEN_SPLIT.split(combined))
    return bool(tokens & NOISE_TOKENS)


def strip_noise(soup: BeautifulSoup) -> BeautifulSoup:
    """
    Remove boilerplate elements in place and return the soup.

    Matches by tag name and by class/id words. A class-matched container
    that wraps the page's main content (``main``, ``article``, ``h1`` or a
    ``role=main`` element) is kept, as are link-dense blocks that carry
    real text.
    """
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    targets = []
    for element in soup.find_all(True):
        if element.name in PROTECTED_TAGS:
            continue
        if element.name in NOISE_TAGS:
            targets.append(element)
            continue
        if _is_noise_by_attributes(element):
            if element.find(['main', 'article', 'h1']) or element.find(attrs={'role': 'main'}):
                continue
            targets.append(element)
            continue
        # Short link farms (tag clouds, pagination, inline menus)
        if element.name in ('div', 'section', 'ul'):
            if len(element.find_all('a')) > 3 and len(element.get_text(strip=True)) < 100:
                targets.append(element)

    for element in targets:
        if element.decomposed:
            continue
        element.decompose()
    return soup


# ---------------------------------------------------------------------------
# Title / meta
# ---------------------------------------------------------------------------

_TITLE_SUFFIX = re.compile(r'\s*[|\-–]\s*.*$')


def _meta_content(soup: BeautifulSoup, **attrs) -> str:
    tag = soup.find('meta', attrs=attrs)
    if tag and tag.get('content'):
        return clean_text(tag['content'])
    return ""


def extract_title(soup: BeautifulSoup, default: str = "Untitled") -> str:
    """
    Pick a page title: first <h1>, then a title/headline classed element,
    then <title> without its site suffix, then og:title, then twitter:title.
    """
    def h1():
        return element_text(soup.find('h1'))

    def classed():
        return element_text(soup.select_one('[class*="title"], [class*="headline"]'))

    def title_tag():
        tag = soup.find('title')
        return _TITLE_SUFFIX.sub('', clean_text(tag.get_text())) if tag else ""

    def og():
        return _meta_content(soup, property='og:title')

    def twitter():
        return _meta_content(soup, name='twitter:title')

    for candidate in (h1, classed, title_tag, og, twitter):
        title = candidate()
        if title and 3 < len(title) < 200:
            return title
    return default


def extract_meta_description(html: str) -> str:
    """Concatenate the distinct description meta tags of a page."""
    soup = make_soup(html)
    parts: List[str] = []
    for attrs in ({'name': 'description'}, {'property': 'og:description'},
                  {'name': 'twitter:description'}):
        value = _meta_content(soup, **attrs)
        if value and value not in parts:
            parts.append(value)
    return ' '.join(parts)


# ---------------------------------------------------------------------------
# Extraction passes
# ---------------------------------------------------------------------------

SEMANTIC_SELECTORS = [
    'main article',
    '[role="main"] article',
    'main',
    'article',
    '[role="main"]',
    '.content-area',
    '.main-content',
    '.post-content',
    '.entry-content',
    '.article-content',
    '#content',
    '#main-content',
]


def extract_semantic(html: str, url: str = "", min_chars: int = 200) -> Optional[ExtractionResult]:
    """
    Semantic-selector pass: the first content container whose text exceeds
    *min_chars* wins.
    """
    soup = make_soup(html)
    title = extract_title(soup)
    strip_noise(soup)

    for selector in SEMANTIC_SELECTORS:
        element = soup.select_one(selector)
        if element is None:
            continue
        text = element_text(element)
        if len(text) > min_chars:
            logger.debug(f"[STRATEGY] semantic match {selector!r} ({len(text)} chars) for {url}")
            return ExtractionResult(title, text, "semantic", raw_html=html)
    return None


_DENSITY_CANDIDATES = ['div', 'section', 'article', 'main', 'td']
_HEADINGS = ['h1', 'h2', 'h3', 'h4', 'h5', 'h6']


def score_block(element) -> float:
    """
    Content-density score of one block element.

    ``text_len * (1 - link_ratio) + 10*paragraphs + 15*headings``, minus 50
    when link text is more than 30% of the block's text.
    """
    text = element.get_text(separator=' ', strip=True)
    text_len = len(text)
    if text_len == 0:
        return 0.0
    link_len = sum(len(a.get_text(strip=True)) for a in element.find_all('a'))
    link_ratio = min(1.0, link_len / text_len)
    paragraphs = len(element.find_all('p'))
    headings = len(element.find_all(_HEADINGS))
    score = text_len * (1 - link_ratio) + 10 * paragraphs + 15 * headings
    if link_ratio > 0.3:
        score -= 50
    return score


def extract_by_density(
    html: str,
    url: str = "",
    relaxed: bool = False,
    threshold: float = 100.0,
    relaxed_threshold: float = 50.0,
) -> Optional[ExtractionResult]:
    """
    Content-density pass: highest-scoring block above the threshold
    (``relaxed_threshold`` in relaxed mode).
    """
    soup = make_soup(html)
    title = extract_title(soup)
    strip_noise(soup)

    limit = relaxed_threshold if relaxed else threshold
    best, best_score = None, limit
    for element in soup.find_all(_DENSITY_CANDIDATES):
        score = score_block(element)
        if score > best_score:
            best, best_score = element, score

    if best is None:
        return None
    text = element_text(best)
    if not text:
        return None
    if title == "Untitled":
        title = element_text(best.find(['h1', 'h2', 'h3'])) or title
    logger.debug(f"[STRATEGY] density pick <{best.name}> score={best_score:.0f} for {url}")
    return ExtractionResult(title, text, "density", raw_html=html)


def extract_visible_text(html: str) -> str:
    """Whole-page visible text after noise removal."""
    soup = strip_noise(make_soup(html))
    body = soup.find('body') or soup
    return element_text(body)


def extract_body_text(html: str) -> str:
    """Body text with only script/style removed (no boilerplate stripping)."""
    soup = make_soup(html)
    for element in soup.find_all(['script', 'style', 'noscript', 'template']):
        element.decompose()
    body = soup.find('body') or soup
    return element_text(body)


def page_title(html: str) -> str:
    return extract_title(make_soup(html))


# ---------------------------------------------------------------------------
# SPA shell detection
# ---------------------------------------------------------------------------

_FRAMEWORK_MARKERS = (
    '__NEXT_DATA__', '__NUXT__', 'data-reactroot', 'ng-app', 'ng-version',
    '<app-root', 'id="root"', 'id="app"', 'data-v-app',
)
_SCRIPT_TAG = re.compile(r'<script\b', re.IGNORECASE)


def detect_spa(html: str) -> bool:
    """
    True when the page is an empty client-rendered shell: under 200
    characters of body text plus framework markers or more than 5 scripts.
    """
    if not html:
        return False
    if len(extract_body_text(html)) >= 200:
        return False
    scripts = len(_SCRIPT_TAG.findall(html))
    has_markers = any(marker in html for marker in _FRAMEWORK_MARKERS)
    return has_markers or scripts > 5
