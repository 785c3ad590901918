"""
Hydration-Payload Mining
========================
Recovers page text from serialized component trees that frameworks embed in
``<script>`` payloads for client hydration, where the visible DOM is often
near-empty until JavaScript runs.

Works on raw HTML text, not a parsed DOM:

1. Collect candidate segments from three sources: strings inside
   ``self.__next_f.push([n, "..."])`` payloads (unescaped), quoted string
   literals of 20-300 characters in inline scripts, and 20-200 character
   text runs between ``>`` and ``<`` in the markup.
2. Keep segments that could be prose (``is_potentially_meaningful``).
3. Clean them (``clean_segment``) and keep the ones that read like
   sentences (``is_quality_content``).
4. Deduplicate longest-first and join at most ``max_segments`` of them.
"""

import html as html_lib
import logging
import re
import threading
from typing import Iterable, List, Optional, Set
from urllib.parse import urlsplit

from .models import ExtractionResult
from .utils import hostname_of

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Segment sources
# ---------------------------------------------------------------------------

_PUSH_PAYLOAD = re.compile(
    r'self\.__next_f\.push\(\s*\[\s*\d+\s*,\s*"((?:[^"\\]|\\.)*)"'
)
_PAYLOAD_SPLIT = re.compile(r'["\[\]{}\n]')
_INLINE_SCRIPT = re.compile(
    r'<script\b(?![^>]*\bsrc=)[^>]*>(.*?)</script>', re.IGNORECASE | re.DOTALL
)
_DOUBLE_QUOTED = re.compile(r'"((?:[^"\\\n]|\\.)*)"')
_SINGLE_QUOTED = re.compile(r"'((?:[^'\\\n]|\\.)*)'")
_SCRIPT_OR_STYLE = re.compile(
    r'<(script|style)\b[^>]*>.*?</\1>', re.IGNORECASE | re.DOTALL
)
_MARKUP_TEXT = re.compile(r'>([^<>]{20,200})<')
_ESCAPE = re.compile(r'\\(u[0-9a-fA-F]{4}|.)', re.DOTALL)

_SIMPLE_ESCAPES = {'n': '\n', 't': ' ', 'r': '', 'b': '', 'f': '', '/': '/'}


def unescape_js(text: str) -> str:
    """Resolve one level of JavaScript string escapes."""
    def replace(match):
        code = match.group(1)
        if code.startswith('u') and len(code) == 5:
            return chr(int(code[1:], 16))
        return _SIMPLE_ESCAPES.get(code, code)
    return _ESCAPE.sub(replace, text)


def _payload_segments(html: str) -> Iterable[str]:
    for match in _PUSH_PAYLOAD.finditer(html):
        payload = unescape_js(match.group(1))
        for piece in _PAYLOAD_SPLIT.split(payload):
            yield piece


def _script_literal_segments(html: str) -> Iterable[str]:
    for script in _INLINE_SCRIPT.finditer(html):
        body = script.group(1)
        for pattern in (_DOUBLE_QUOTED, _SINGLE_QUOTED):
            for literal in pattern.finditer(body):
                value = literal.group(1)
                if 20 <= len(value) <= 300:
                    yield unescape_js(value)


def _markup_segments(html: str) -> Iterable[str]:
    markup = _SCRIPT_OR_STYLE.sub('<', html)
    for match in _MARKUP_TEXT.finditer(markup):
        yield html_lib.unescape(match.group(1))


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

_LETTERS = r'A-Za-z\u0600-\u06FF'
# Letter run that may continue across single spaces ("Contact us at")
_LETTER_RUN = re.compile(rf'[{_LETTERS}]+(?: [{_LETTERS}]+)*')

_CSS_PREFIXES = (
    'flex', 'grid', 'items', 'justify', 'content', 'self', 'place', 'text',
    'font', 'bg', 'border', 'rounded', 'shadow', 'p', 'px', 'py', 'pt', 'pb',
    'pl', 'pr', 'm', 'mx', 'my', 'mt', 'mb', 'ml', 'mr', 'w', 'h', 'min',
    'max', 'gap', 'space', 'top', 'bottom', 'left', 'right', 'inset', 'z',
    'opacity', 'transition', 'duration', 'ease', 'leading', 'tracking',
    'overflow', 'col', 'row', 'order', 'object', 'cursor', 'whitespace',
    'break', 'sr', 'outline', 'ring', 'fill', 'stroke', 'aspect', 'animate',
    'translate', 'scale', 'rotate', 'divide', 'line', 'decoration', 'list',
)
_CSS_UTILITY_TOKEN = re.compile(
    r'^(?:[a-z0-9]+:)*-?(?:' + '|'.join(_CSS_PREFIXES) + r')-[\w./\[\]#%()-]+$'
)
_CSS_BARE_TOKENS = {
    'flex', 'grid', 'block', 'inline', 'inline-block', 'hidden', 'relative',
    'absolute', 'fixed', 'sticky', 'container', 'truncate', 'underline',
    'uppercase', 'lowercase', 'capitalize', 'italic', 'border', 'rounded',
    'shadow', 'transition', 'grow', 'shrink', 'antialiased', 'prose',
}

_TECHNICAL_NOISE = [
    re.compile(r'^[\W\d_]+$'),                            # punctuation / digits only
    re.compile(r'^[\s\-]*[a-fA-F0-9\-]{6,}[\s\-]*$'),     # hex ids / hashes
    re.compile(r'static/chunks|webpack|/_next/|__next|turbopack', re.IGNORECASE),
    re.compile(r'\$L\w|\$S\w|\$[A-Z]|^I\[|^HL\['),        # flight references
    # asset paths and hashed bundle names, not product names like Node.js
    re.compile(r'/[\w./-]*\.(?:js|css|mjs|woff2?)\b|\b[\w-]+[-.][a-f0-9]{6,}\.(?:js|css|mjs)\b'),
    re.compile(r'application/vnd|font/woff|crossOrigin|parallelRouterKey|__PAGE__'),
    re.compile(r'\b(?:className|onClick|onChange|href|src|srcSet|viewBox|strokeWidth|'
               r'dangerouslySetInnerHTML|xmlns)\b'),
    re.compile(r'\b[a-z]+[A-Z]\w*"?\s*:'),                  # camelCase attribute keys
    re.compile(r'^(?:true|false|null|undefined)$|"\s*:\s*(?:true|false|null|undefined)\b|'
               r'\b\w+\s*:\s*(?:true|false|null|undefined)\s*[,}]'),
    re.compile(r'function\s*\(|=>|\b(?:var|const|let)\s+[\w$]+\s*=|'
               r'\breturn\s+[\w$.]+\s*[;(]|[)}\]];\s*$'),
]


def _css_token_ratio(text: str) -> float:
    tokens = text.split()
    if not tokens:
        return 0.0
    css = sum(
        1 for token in tokens
        if token in _CSS_BARE_TOKENS or _CSS_UTILITY_TOKEN.match(token)
    )
    return css / len(tokens)


def is_potentially_meaningful(text: str) -> bool:
    """
    Cheap first filter for a raw segment.

    Length 15-500, at least 10 letters in one run (single spaces allowed
    inside the run), and none of the technical-noise patterns.
    """
    text = text.strip()
    if not 15 <= len(text) <= 500:
        return False
    if not any(len(m.group(0).replace(' ', '')) >= 10 for m in _LETTER_RUN.finditer(text)):
        return False
    if _css_token_ratio(text) >= 0.5:
        return False
    return not any(pattern.search(text) for pattern in _TECHNICAL_NOISE)


_CONTROL = re.compile(r'[\x00-\x1f\x7f]')


def clean_segment(text: str) -> str:
    """Unescape, strip control characters and collapse whitespace."""
    text = unescape_js(text) if '\\' in text else text
    text = html_lib.unescape(text)
    text = _CONTROL.sub(' ', text)
    text = re.sub(r'\s+', ' ', text)
    return text.strip(' ,:;')


ENGLISH_STOP_WORDS = {
    'the', 'and', 'or', 'in', 'on', 'at', 'to', 'for', 'of', 'with', 'by',
    'is', 'are', 'our', 'your', 'we', 'you', 'this', 'that', 'from',
}
ARABIC_STOP_WORDS = {
    'في', 'من', 'إلى', 'على', 'مع', 'عن', 'هذا', 'هذه', 'التي', 'الذي',
}
_SENTENCE_PUNCTUATION = re.compile(r'[.!?؟،]')
_WORD_STRIP = '.,;:!?"\'()[]{}؟،'


def _has_long_word_run(words: List[str], run: int = 3, min_len: int = 4) -> bool:
    streak = 0
    for word in words:
        streak = streak + 1 if len(word.strip(_WORD_STRIP)) >= min_len else 0
        if streak >= run:
            return True
    return False


def is_quality_content(text: str) -> bool:
    """
    Second filter on a cleaned segment: does it read like prose?

    Needs sentence punctuation, a stop word (English or Arabic) or three
    consecutive words of 4+ characters; at least 4 words longer than 2
    characters; and, past 10 words, a unique-word ratio of at least 0.5.
    """
    words = text.split()
    if sum(1 for w in words if len(w) > 2) < 4:
        return False

    lowered = {w.strip(_WORD_STRIP).lower() for w in words}
    has_signal = (
        bool(_SENTENCE_PUNCTUATION.search(text))
        or bool(lowered & ENGLISH_STOP_WORDS)
        or bool(lowered & ARABIC_STOP_WORDS)
        or _has_long_word_run(words)
    )
    if not has_signal:
        return False

    if len(words) > 10:
        unique_ratio = len({w.lower() for w in words}) / len(words)
        if unique_ratio < 0.5:
            return False
    return True


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def _tokens(text: str) -> Set[str]:
    return {w.strip(_WORD_STRIP).lower() for w in text.split() if w.strip(_WORD_STRIP)}


def assemble_segments(segments: Iterable[str], max_segments: int = 20) -> List[str]:
    """
    Deduplicate longest-first.

    A candidate is dropped when it is a substring or superset of an
    accepted segment, or when its token overlap with one exceeds 70% of
    the shorter segment's token count.
    """
    accepted: List[str] = []
    accepted_tokens: List[Set[str]] = []
    # first-seen order breaks length ties
    for candidate in sorted(dict.fromkeys(segments), key=len, reverse=True):
        tokens = _tokens(candidate)
        duplicate = False
        for existing, existing_tokens in zip(accepted, accepted_tokens):
            if candidate in existing or existing in candidate:
                duplicate = True
                break
            shorter = min(len(tokens), len(existing_tokens)) or 1
            if len(tokens & existing_tokens) > 0.7 * shorter:
                duplicate = True
                break
        if duplicate:
            continue
        accepted.append(candidate)
        accepted_tokens.append(tokens)
        if len(accepted) >= max_segments:
            break
    return accepted


def collect_segments(html: str) -> List[str]:
    """All segments from the three sources that pass both filters."""
    survivors = []
    for source in (_payload_segments, _script_literal_segments, _markup_segments):
        for raw in source(html):
            if not is_potentially_meaningful(raw):
                continue
            cleaned = clean_segment(raw)
            if cleaned and is_quality_content(cleaned):
                survivors.append(cleaned)
    return survivors


# ---------------------------------------------------------------------------
# Title resolution
# ---------------------------------------------------------------------------

_FLIGHT_TITLE = re.compile(r'"title"[^}]*?"children":\s*"([^"]+)"')

URL_TITLES = {
    'faq': 'FAQ',
    'contact': 'Contact Us',
    'about': 'About',
    'pricing': 'Pricing',
    'blog': 'Blog',
    'terms': 'Terms of Service',
    'privacy': 'Privacy Policy',
}

DEFAULT_TITLE = "Extracted Content"


def resolve_title(html: str, url: str, fallback_title: Optional[str] = None) -> str:
    """
    Caller fallback, then a serialized ``"title"`` node, then a URL path
    segment mapping, then ``Extracted Content``.
    """
    if fallback_title and fallback_title != "Untitled":
        return fallback_title

    flat = html.replace('\\"', '"')
    match = _FLIGHT_TITLE.search(flat)
    if match and len(match.group(1).strip()) > 3:
        return clean_segment(match.group(1))

    try:
        segments = [s.lower() for s in urlsplit(url).path.split('/') if s]
    except ValueError:
        segments = []
    for segment in reversed(segments):
        if segment in URL_TITLES:
            return URL_TITLES[segment]
    return DEFAULT_TITLE


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def mine_hydration(
    html: str,
    url: str = "",
    fallback_title: Optional[str] = None,
    min_chars: int = 50,
    max_segments: int = 20,
) -> Optional[ExtractionResult]:
    """
    Extract text from hydration payloads in *html*.

    Returns:
        ExtractionResult with method ``hydration``, or None when the
        assembled text is shorter than *min_chars*
    """
    if not html:
        return None
    segments = assemble_segments(collect_segments(html), max_segments)
    content = ' '.join(segments)
    logger.debug(f"[HYDRATION] {len(segments)} segments, {len(content)} chars for {url}")
    if len(content) < min_chars:
        return None
    title = resolve_title(html, url, fallback_title)
    return ExtractionResult(title, content, "hydration", raw_html=html)


HYDRATION_INDICATORS = [
    re.compile(re.escape('self.__next_f.push')),
    re.compile(re.escape('"$Sreact.fragment"')),
    re.compile(re.escape('static/chunks/app/')),
    re.compile(re.escape('parallelRouterKey')),
    re.compile(r'I\[\d+,\['),
    re.compile(r'"children":\s*"\$'),
    re.compile(r'app/layout-[a-f0-9]+\.js'),
    re.compile(r'window\.__NUXT__|__NEXT_DATA__'),
]


def detect_hydration_markers(html: str) -> int:
    """Number of distinct framework-payload indicators present in *html*."""
    if not html:
        return 0
    return sum(1 for indicator in HYDRATION_INDICATORS if indicator.search(html))


def has_hydration_payload(html: str) -> bool:
    return detect_hydration_markers(html) >= 2


class HydrationHostRegistry:
    """Hosts observed (in this process) to ship their text in hydration payloads."""

    def __init__(self):
        self._hosts: Set[str] = set()
        self._lock = threading.Lock()

    def mark(self, url: str) -> None:
        host = hostname_of(url)
        if not host:
            return
        with self._lock:
            if host not in self._hosts:
                self._hosts.add(host)
                logger.info(f"[HYDRATION] Remembering {host} as hydration-heavy")

    def __contains__(self, url: str) -> bool:
        host = hostname_of(url)
        with self._lock:
            return host in self._hosts

    def clear(self) -> None:
        with self._lock:
            self._hosts.clear()


default_registry = HydrationHostRegistry()
