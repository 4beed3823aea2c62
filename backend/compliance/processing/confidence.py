"""
OCR confidence heuristic.

    confidence = 0.5 * length_adequacy
               + 0.3 * artifact_freedom
               + 0.2 * structural_presence

clamped to [0.1, 1.0], where

    length_adequacy     = min(1, chars / (BASELINE_CHARS_PER_PAGE * pages))
    artifact_freedom    = 1 - min(1, artifact_density)
    artifact_density    = artifact_runs / max(1, chars / 100)
    structural_presence = 0.9 if the text contains line breaks else 0.5

Artifact runs are typical OCR garbage: runs of control characters, runs of
unusual symbols and implausibly long digit strings.
"""

from __future__ import annotations

import re

BASELINE_CHARS_PER_PAGE = 100

MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 1.0

_WEIGHT_LENGTH    = 0.5
_WEIGHT_ARTIFACTS = 0.3
_WEIGHT_STRUCTURE = 0.2

_ARTIFACT_PATTERNS = (
    re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]{2,}"),   # control characters (whitespace excluded)
    re.compile(r"[^\w\s.,;:!?(){}\[\]\"'/\\-]{3,}"),         # unusual symbol runs
    re.compile(r"\d{20,}"),                                  # implausible digit runs
)


def length_adequacy(text: str, page_count: int) -> float:
    expected = BASELINE_CHARS_PER_PAGE * max(1, page_count)
    return min(1.0, len(text) / expected)


def artifact_freedom(text: str) -> float:
    runs    = sum(len(p.findall(text)) for p in _ARTIFACT_PATTERNS)
    density = runs / max(1.0, len(text) / 100)
    return 1.0 - min(1.0, density)


def structural_presence(text: str) -> float:
    return 0.9 if "\n" in text else 0.5


def score_confidence(text: str, page_count: int) -> float:
    """Return the heuristic confidence in [0.1, 1.0] for extracted text."""
    score = (
        _WEIGHT_LENGTH * length_adequacy(text, page_count)
        + _WEIGHT_ARTIFACTS * artifact_freedom(text)
        + _WEIGHT_STRUCTURE * structural_presence(text)
    )
    return round(max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, score)), 4)
