"""Shared httpx helpers for the HTTP-backed providers."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from compliance.core.exceptions import (
    PermanentRemoteError,
    RemoteServiceError,
    TransientRemoteError,
    remote_error_from_status,
)

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase
    if isinstance(body, dict):
        detail = body.get("message") or body.get("detail") or body.get("error")
        if isinstance(detail, dict):
            detail = detail.get("message")
        if detail:
            return str(detail)
    return response.reason_phrase


async def post_json(
    client:  httpx.AsyncClient,
    service: str,
    path:    str,
    payload: dict[str, Any],
) -> dict[str, Any]:
    """
    POST a JSON payload and return the decoded JSON body.

    Raises:
        TransientRemoteError: transport failure, timeout, 5xx or 429.
        PermanentRemoteError: any other non-2xx status, or a non-JSON body.
    """
    try:
        response = await client.post(path, json=payload)
    except httpx.TimeoutException as exc:
        raise TransientRemoteError(service, f"timed out: {exc}") from exc
    except httpx.TransportError as exc:
        raise TransientRemoteError(service, f"{type(exc).__name__}: {exc}") from exc

    if response.is_error:
        err: RemoteServiceError = remote_error_from_status(
            service, response.status_code, _error_message(response),
        )
        logger.warning("%s | HTTP %d: %s", service, response.status_code, err.message)
        raise err

    try:
        data = response.json()
    except ValueError as exc:
        raise PermanentRemoteError(service, "response body is not JSON", status=response.status_code) from exc
    if not isinstance(data, dict):
        raise PermanentRemoteError(service, "unexpected response shape", status=response.status_code)
    return data
