"""
Provider contracts for the three external collaborators.

Each provider sits behind a narrow abstract interface and returns a fixed
pydantic model, so pipeline code never inspects untyped response fields.
Failures are raised as RemoteServiceError subclasses (see core.exceptions):
TransientRemoteError for network / 5xx / 429, PermanentRemoteError for the
remaining 4xx.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Literal

from pydantic import BaseModel, Field

SearchFocus = Literal["government", "all"]


# ---------------------------------------------------------------------------
# OCR
# ---------------------------------------------------------------------------

class OCRPage(BaseModel):
    index: int
    text:  str = ""


class OCRResult(BaseModel):
    pages: list[OCRPage] = Field(default_factory=list)
    model: str | None = None

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def has_text(self) -> bool:
        return any(p.text.strip() for p in self.pages)


class OCRProvider(ABC):
    @abstractmethod
    async def extract_text(self, source: bytes | str, *, media_type: str | None = None) -> OCRResult:
        """Extract text from raw bytes or from a publicly reachable URL."""


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class SearchSource(BaseModel):
    title:                str
    url:                  str
    snippet:              str = ""
    is_government_source: bool = False


class SearchResult(BaseModel):
    sources: list[SearchSource] = Field(default_factory=list)
    summary: str = ""


class SearchProvider(ABC):
    @abstractmethod
    async def search(self, query: str, max_results: int = 10, focus: SearchFocus = "all") -> SearchResult:
        ...


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

class AnalysisResult(BaseModel):
    summary:        str
    obligations:    list[str] = Field(default_factory=list)
    recent_changes: list[str] = Field(default_factory=list)
    risks:          list[str] = Field(default_factory=list)
    citations:      list[str] = Field(default_factory=list)


class AnalysisProvider(ABC):
    @abstractmethod
    async def analyze(self, context: str, query: str) -> AnalysisResult:
        ...
