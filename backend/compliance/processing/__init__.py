"""
Document Processing Helpers
═══════════════════════════

Pure, synchronous helpers used by the document pipeline and the upload
path. Nothing in here performs I/O.

Modules
───────
  validation.py   Magic-byte media type detection, malicious-file checks, filename hygiene
  text.py         OCR page formatting and query summarisation
  confidence.py   Heuristic confidence score for OCR output
"""

from compliance.processing.confidence import score_confidence
from compliance.processing.text import format_ocr_text, raw_ocr_text, summarize_for_search
from compliance.processing.validation import detect_media_type, secure_filename, validate_upload

__all__ = [
    "score_confidence",
    "format_ocr_text",
    "raw_ocr_text",
    "summarize_for_search",
    "detect_media_type",
    "secure_filename",
    "validate_upload",
]
