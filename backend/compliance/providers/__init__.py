"""
External Provider Adapters
══════════════════════════

Narrow, typed wrappers around the three remote collaborators the
compliance pipeline depends on.

Modules
───────
  base.py       Abstract interfaces + result models (OCRResult, SearchResult, AnalysisResult)
  http.py       httpx request helper mapping HTTP failures onto the error taxonomy
  ocr.py        HttpOCRProvider      (URL or base64 data URI → pages of text)
  search.py     HttpSearchProvider   (query → sources + summary)
  analysis.py   LLMAnalysisProvider  (LangChain chat model → structured analysis)

None of the adapters retry on their own; callers wrap them in
compliance.core.retry.execute_with_retry().
"""

from compliance.providers.base import (
    AnalysisProvider,
    AnalysisResult,
    OCRPage,
    OCRProvider,
    OCRResult,
    SearchProvider,
    SearchResult,
    SearchSource,
)

__all__ = [
    "AnalysisProvider",
    "AnalysisResult",
    "OCRPage",
    "OCRProvider",
    "OCRResult",
    "SearchProvider",
    "SearchResult",
    "SearchSource",
]
