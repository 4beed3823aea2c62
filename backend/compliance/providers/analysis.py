"""
LLM analysis provider.

Sends the assembled compliance context (document text, search results,
user context) to a LangChain chat model and asks for a JSON object with
the AnalysisResult fields. If the model ignores the format, the raw text
is kept as the summary so the analysis stage still succeeds.

Provider SDK errors are translated into RemoteServiceError subclasses so
execute_with_retry() can classify them without importing the openai SDK.
"""

from __future__ import annotations

import json
import logging
import re

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from compliance.core.exceptions import (
    PermanentRemoteError,
    RemoteServiceError,
    TransientRemoteError,
    remote_error_from_status,
)
from compliance.core.retry import is_retryable_error
from compliance.providers.base import AnalysisProvider, AnalysisResult

logger = logging.getLogger(__name__)

_SERVICE = "analysis"

_SYSTEM_PROMPT = """\
You are a regulatory compliance analyst. Using only the supplied context,
answer the user's question about compliance requirements.

Respond with a single JSON object and nothing else:
{
  "summary":        "<concise answer, 2-6 sentences>",
  "obligations":    ["<concrete obligation>", ...],
  "recent_changes": ["<recent regulatory change>", ...],
  "risks":          ["<compliance risk>", ...],
  "citations":      ["<source title or URL backing a statement>", ...]
}
Prefer government sources when sources disagree. Use empty lists when the
context does not support an item."""

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)


def _as_str_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def parse_analysis(raw: str) -> AnalysisResult:
    """Parse the model's reply; fall back to the raw text as the summary."""
    match = _JSON_BLOCK.search(raw)
    if match:
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict) and data.get("summary"):
            return AnalysisResult(
                summary=str(data["summary"]).strip(),
                obligations=_as_str_list(data.get("obligations")),
                recent_changes=_as_str_list(data.get("recent_changes") or data.get("recentChanges")),
                risks=_as_str_list(data.get("risks")),
                citations=_as_str_list(data.get("citations")),
            )

    logger.info("Analysis | reply was not structured JSON; using raw text as summary")
    return AnalysisResult(summary=raw.strip())


class LLMAnalysisProvider(AnalysisProvider):
    def __init__(self, llm: BaseChatModel) -> None:
        self._llm = llm

    @classmethod
    def from_settings(cls, settings) -> "LLMAnalysisProvider":
        from langchain_openai import ChatOpenAI

        return cls(
            ChatOpenAI(
                model=settings.llm_model,
                api_key=settings.openai_api_key,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
                max_retries=0,       # execute_with_retry owns retrying
            )
        )

    async def analyze(self, context: str, query: str) -> AnalysisResult:
        messages = [
            SystemMessage(content=_SYSTEM_PROMPT),
            HumanMessage(content=f"{context}\n\nQUESTION:\n{query}"),
        ]
        try:
            reply = await self._llm.ainvoke(messages)
        except RemoteServiceError:
            raise
        except Exception as exc:
            raise _translate_error(exc) from exc

        content = reply.content if isinstance(reply.content, str) else str(reply.content)
        if not content.strip():
            raise TransientRemoteError(_SERVICE, "empty completion")
        return parse_analysis(content)


def _translate_error(exc: Exception) -> RemoteServiceError:
    status = getattr(exc, "status_code", None)
    message = f"{type(exc).__name__}: {exc}"
    if isinstance(status, int):
        return remote_error_from_status(_SERVICE, status, message)
    if is_retryable_error(exc):
        return TransientRemoteError(_SERVICE, message)
    return PermanentRemoteError(_SERVICE, message)
