"""
Reader-mode extraction
Article extraction through trafilatura, used by the reader-mode strategy and
as a secondary pass inside the static and dynamic strategies.
"""

import logging
from typing import Optional

import trafilatura

from .models import ExtractionResult
from .scraper import page_title
from .utils import clean_text

logger = logging.getLogger(__name__)


def extract_reader_mode(html: str, url: str = "", min_chars: int = 100) -> Optional[ExtractionResult]:
    """
    Run the article extractor over *html*.

    Args:
        html: Page markup
        url: Page URL (helps the extractor resolve metadata)
        min_chars: Extracted text must be longer than this

    Returns:
        ExtractionResult with method ``readability``, or None
    """
    if not html:
        return None
    try:
        text = trafilatura.extract(
            html,
            url=url or None,
            include_comments=False,
            include_links=False,
            include_tables=True,
        )
    except Exception as e:
        logger.warning(f"[STRATEGY] Reader-mode extraction failed for {url}: {e}")
        return None

    text = clean_text(text)
    if len(text) <= min_chars:
        return None

    title = ""
    try:
        metadata = trafilatura.extract_metadata(html, default_url=url or None)
        if metadata is not None and metadata.title:
            title = clean_text(metadata.title)
    except Exception as e:
        logger.debug(f"[STRATEGY] Reader-mode metadata failed for {url}: {e}")
    if not title or not 3 < len(title) < 200:
        title = page_title(html)

    return ExtractionResult(title, text, "readability", raw_html=html)
