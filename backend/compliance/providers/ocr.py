"""
HTTP OCR provider.

Posts either a public URL or the raw bytes (as a base64 data URI) to an
OCR endpoint and maps the returned pages onto OCRResult:

    POST {ocr_api_url}/v1/ocr
    {"model": "...", "document": {"type": "document_url", "document_url": "..."}}
    → {"pages": [{"index": 0, "markdown": "..."}], "model": "..."}

Image media types are sent as ``image_url`` documents. Retrying is not done
here; the document pipeline wraps every call in execute_with_retry().
"""

from __future__ import annotations

import base64
import logging

import httpx

from compliance.providers.base import OCRPage, OCRProvider, OCRResult
from compliance.providers.http import post_json

logger = logging.getLogger(__name__)

_SERVICE = "ocr"


class HttpOCRProvider(OCRProvider):
    def __init__(
        self,
        client: httpx.AsyncClient,
        model:  str = "mistral-ocr-latest",
    ) -> None:
        self._client = client
        self._model  = model

    @classmethod
    def from_settings(cls, settings) -> "HttpOCRProvider":
        client = httpx.AsyncClient(
            base_url=settings.ocr_api_url,
            timeout=settings.ocr_timeout_seconds,
            headers={"Authorization": f"Bearer {settings.ocr_api_key}"},
        )
        return cls(client, model=settings.ocr_model)

    @staticmethod
    def _document_payload(source: bytes | str, media_type: str | None) -> dict:
        is_image = bool(media_type and media_type.startswith("image/"))

        if isinstance(source, bytes):
            encoded = base64.b64encode(source).decode("ascii")
            url     = f"data:{media_type or 'application/pdf'};base64,{encoded}"
        else:
            url = source

        if is_image:
            return {"type": "image_url", "image_url": url}
        return {"type": "document_url", "document_url": url}

    async def extract_text(self, source: bytes | str, *, media_type: str | None = None) -> OCRResult:
        payload = {
            "model":                self._model,
            "document":             self._document_payload(source, media_type),
            "include_image_base64": False,
        }
        data = await post_json(self._client, _SERVICE, "/v1/ocr", payload)

        pages = [
            OCRPage(index=p.get("index", i), text=p.get("markdown") or p.get("text") or "")
            for i, p in enumerate(data.get("pages") or [])
        ]
        logger.info("OCR | pages=%d model=%s", len(pages), data.get("model", self._model))
        return OCRResult(pages=pages, model=data.get("model", self._model))

    async def aclose(self) -> None:
        await self._client.aclose()
