"""Google Gemini provider over the Generative Language REST API.

The only backend that does not speak the OpenAI format; it has native
JSON-schema enforcement via ``responseMimeType`` + ``responseSchema``.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any, Mapping

import httpx

from insight_core.adapters.outbound.llm.errors import (
    decode_json_body,
    provider_error_from_response,
    transport_error,
)
from insight_core.ports.outbound import LLMProvider
from insight_core.shared.providers.types import GenerateOptions, JsonResult, parse_json_output

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.0-flash"


def _candidate_text(data: Mapping[str, Any]) -> str:
    candidates = data.get("candidates") or [{}]
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(str(p.get("text", "")) for p in parts)


def _total_tokens(data: Mapping[str, Any]) -> Any:
    usage = data.get("usageMetadata")
    return usage.get("totalTokenCount") if isinstance(usage, dict) else None


class GeminiProvider(LLMProvider):
    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        *,
        client: httpx.AsyncClient,
        base_url: str = GEMINI_BASE_URL,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._client = client
        self._base_url = base_url

    async def generate_text(self, prompt: str, options: GenerateOptions | None = None) -> str:
        opts = options or GenerateOptions()
        body = self._body(prompt, opts, temperature=0.4, max_tokens=1024)
        data = await self._post(self._url(opts, "generateContent"), body)
        self.record_usage(_total_tokens(data))
        return _candidate_text(data)

    async def generate_json(
        self,
        prompt: str,
        schema: Mapping[str, Any] | None = None,
        options: GenerateOptions | None = None,
    ) -> JsonResult:
        opts = options or GenerateOptions()
        body = self._body(prompt, opts, temperature=0.3, max_tokens=2048)
        body["generationConfig"]["responseMimeType"] = "application/json"
        if schema is not None:
            body["generationConfig"]["responseSchema"] = dict(schema)
        data = await self._post(self._url(opts, "generateContent"), body)
        self.record_usage(_total_tokens(data))
        return parse_json_output(_candidate_text(data))

    async def generate_stream(
        self, prompt: str, options: GenerateOptions | None = None
    ) -> AsyncIterator[str]:
        opts = options or GenerateOptions()
        body = self._body(prompt, opts, temperature=0.4, max_tokens=2048)
        url = self._url(opts, "streamGenerateContent")
        # usageMetadata on stream chunks is cumulative
        stream_tokens = None

        try:
            async with self._client.stream(
                "POST", url, params={"alt": "sse"}, headers=self._headers, json=body
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise provider_error_from_response(self.name, response)

                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    try:
                        chunk = json.loads(line[6:])
                    except json.JSONDecodeError:
                        continue
                    if not isinstance(chunk, dict):
                        raise provider_error_from_response(
                            self.name, None, f"malformed stream chunk: {line[6:86]}"
                        )
                    stream_tokens = _total_tokens(chunk) or stream_tokens
                    text = _candidate_text(chunk)
                    if text:
                        yield text
            self.record_usage(stream_tokens)
        except httpx.HTTPError as exc:
            raise transport_error(self.name, exc) from exc

    # ── HTTP plumbing ────────────────────────────────────────
    @property
    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key, "Content-Type": "application/json"}

    def _url(self, opts: GenerateOptions, method: str) -> str:
        return f"{self._base_url}/models/{opts.model or self._model}:{method}"

    def _body(
        self,
        prompt: str,
        opts: GenerateOptions,
        *,
        temperature: float,
        max_tokens: int,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": opts.temperature if opts.temperature is not None else temperature,
                "maxOutputTokens": opts.max_tokens or max_tokens,
            },
        }
        if opts.system_prompt:
            body["systemInstruction"] = {"parts": [{"text": opts.system_prompt}]}
        return body

    async def _post(self, url: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(url, headers=self._headers, json=body)
        except httpx.HTTPError as exc:
            raise transport_error(self.name, exc) from exc
        if response.is_error:
            raise provider_error_from_response(self.name, response)
        return decode_json_body(self.name, response)
