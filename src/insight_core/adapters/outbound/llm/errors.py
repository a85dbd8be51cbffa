"""Map HTTP failures onto ``ProviderError``."""

from __future__ import annotations

from typing import Any

import httpx

from insight_core.domain.exceptions import ProviderError


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def provider_error_from_response(
    provider: str,
    response: httpx.Response | None,
    message: str | None = None,
) -> ProviderError:
    if response is None:
        return ProviderError(provider, message or "unexpected response")
    try:
        detail = response.text[:200]
    except httpx.ResponseNotRead:
        detail = ""
    return ProviderError(
        provider,
        message or f"API error: {response.status_code} {detail}".rstrip(),
        status_code=response.status_code,
        retry_after=_retry_after(response),
    )


def transport_error(provider: str, exc: httpx.HTTPError) -> ProviderError:
    if isinstance(exc, httpx.TimeoutException):
        return ProviderError(provider, f"timeout: {exc}", status_code=504)
    return ProviderError(provider, f"transport error: {type(exc).__name__}: {exc}")


def decode_json_body(provider: str, response: httpx.Response) -> dict[str, Any]:
    """Parse a 2xx body, which must be a JSON object."""
    try:
        data = response.json()
    except ValueError as exc:
        raise ProviderError(provider, f"malformed response: {exc}") from exc
    if not isinstance(data, dict):
        raise ProviderError(
            provider,
            f"malformed response: expected object, got {type(data).__name__}",
        )
    return data
