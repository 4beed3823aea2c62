"""Text shaping helpers for OCR output and downstream prompts."""

from __future__ import annotations

import re

from compliance.providers.base import OCRResult

_IMAGE_REF   = re.compile(r"!\[[^\]]*\]\([^)]*\)")
_INLINE_WS   = re.compile(r"[ \t\f\v]+")
_BLANK_LINES = re.compile(r"\n{3,}")
_ANY_WS      = re.compile(r"\s+")


def clean_page_text(text: str) -> str:
    text = _IMAGE_REF.sub("", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _INLINE_WS.sub(" ", text)
    lines = [line.strip() for line in text.split("\n")]
    return _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()


def format_ocr_text(result: OCRResult) -> str:
    """
    Join OCR pages into one string, one header per page:

        --- Page 1 ---
        <text>

        --- Page 2 ---
        <text>
    """
    blocks = [
        f"--- Page {n} ---\n{clean_page_text(page.text)}"
        for n, page in enumerate(result.pages, start=1)
    ]
    return "\n\n".join(blocks)


def raw_ocr_text(result: OCRResult) -> str:
    """Page texts without headers; what the confidence heuristic scores."""
    return "\n\n".join(clean_page_text(p.text) for p in result.pages if p.text.strip())


def summarize_for_search(text: str, limit: int = 500) -> str:
    """Whitespace-normalised prefix of ``text`` used to enrich search queries."""
    return _ANY_WS.sub(" ", text[:limit]).strip()
