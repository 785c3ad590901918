"""
Content Quality Validator
Decides whether an extraction result is real page content.

Two levels:
- ``passes_gate``: the loose check the orchestrator uses to stop trying
  strategies (word count only).
- ``is_valid``: the final acceptance rule applied before a document is
  stored (length, noise, language signals, locale awareness).
"""

import logging
import re
from typing import Optional

from .models import ExtractionResult
from .utils import is_arabic_locale_url

logger = logging.getLogger(__name__)


MIN_GATE_WORDS = 15
MIN_VALID_WORDS = 20
MIN_VALID_CHARS = 150

_SENTENCE_PUNCTUATION = re.compile(r'[.!?؟،]')
_ENGLISH_SIGNAL = re.compile(
    r'\b(?:the|and|or|in|on|at|to|for|of|with|by|'
    r'price|service|contact|about|help|support|terms|privacy)\b',
    re.IGNORECASE,
)
_ARABIC_SIGNAL = re.compile(
    r'(?:^|\s)(?:في|من|إلى|على|مع|عن|هذا|هذه|التي|الذي|'
    r'سعر|خدمة|تواصل|حول|مساعدة|دعم|شروط|خصوصية)(?=\s|$|[.،؟!])'
)
_ARABIC_SCRIPT = re.compile(r'[\u0600-\u06FF]')
_LETTER = re.compile(r'[A-Za-z\u00C0-\u024F\u0600-\u06FF]')
_TECHNICAL_TOKENS = re.compile(
    r'className|onClick|function\s*\(|static/chunks|webpack|__next|\$L\w|=>|'
    r'\{"|"\}|\[\s*"|":\s*"',
)

TECHNICAL_TERMS = ('component', 'props', 'children', 'classname', 'onclick', 'href', 'src')


def _head(content: str, size: int = 200) -> str:
    """First *size* non-whitespace characters."""
    return ''.join(content.split())[:size]


def letter_ratio(text: str) -> float:
    if not text:
        return 0.0
    return len(_LETTER.findall(text)) / len(text)


def _head_is_noise(content: str) -> bool:
    """A head made almost entirely of digits, brackets or punctuation."""
    return letter_ratio(_head(content)) < 0.25


def _head_is_technical(content: str) -> bool:
    head = content.strip()[:200]
    if letter_ratio(_head(content)) < 0.5:
        return True
    return len(_TECHNICAL_TOKENS.findall(head)) >= 2


def has_language_signal(content: str) -> bool:
    return bool(
        _SENTENCE_PUNCTUATION.search(content)
        or _ENGLISH_SIGNAL.search(content)
        or _ARABIC_SIGNAL.search(content)
    )


def passes_gate(result: Optional[ExtractionResult], min_words: int = MIN_GATE_WORDS) -> bool:
    """Loose acceptance used while strategies are still being tried."""
    return (
        result is not None
        and result.method != "failed"
        and result.word_count >= min_words
    )


def is_valid(
    result: Optional[ExtractionResult],
    url: str,
    min_words: int = MIN_VALID_WORDS,
    min_chars: int = MIN_VALID_CHARS,
) -> bool:
    """
    Final acceptance rule.

    General: at least *min_words* words, more than *min_chars* characters,
    a head that is not digit/punctuation noise, and at least one language
    signal (sentence punctuation, English or Arabic stop/topic word).

    Arabic-locale URLs additionally need Arabic script and a head that
    does not look technical.
    """
    if result is None or result.method == "failed":
        return False

    content = result.content or ""
    reason = None
    if result.word_count < min_words:
        reason = f"only {result.word_count} words"
    elif len(content) <= min_chars:
        reason = f"only {len(content)} chars"
    elif _head_is_noise(content):
        reason = "head is structural noise"
    elif not has_language_signal(content):
        reason = "no language signal"
    elif is_arabic_locale_url(url):
        if not _ARABIC_SCRIPT.search(content):
            reason = "Arabic-locale URL without Arabic text"
        elif _head_is_technical(content):
            reason = "Arabic-locale URL with technical head"

    if reason:
        logger.debug(f"[QUALITY] Rejected {result.method} result for {url}: {reason}")
        return False
    return True


def technical_ratio(result: ExtractionResult) -> float:
    """Occurrences of component/markup vocabulary per word."""
    if not result.word_count:
        return 1.0
    lowered = result.content.lower()
    hits = sum(lowered.count(term) for term in TECHNICAL_TERMS)
    return hits / result.word_count


def looks_clean(result: Optional[ExtractionResult], max_ratio: float = 0.1) -> bool:
    """A result whose technical-term ratio stays at or under *max_ratio*."""
    if result is None:
        return False
    return technical_ratio(result) <= max_ratio
