"""OpenAI-compatible chat-completions providers.

Groq, xAI, Mistral, Cerebras, OpenRouter and Hugging Face all speak the
OpenAI chat-completions format; subclasses differ only by URL and headers.
Each call is a plain HTTP request; retries, failover and key rotation
belong to the resilient caller.
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

JSON_ONLY_SUFFIX = "\n\nRespond with valid JSON only. No markdown, no code fences."


def _delta_content(chunk: Mapping[str, Any]) -> str | None:
    choices = chunk.get("choices") or [{}]
    first = choices[0] if isinstance(choices[0], dict) else {}
    delta = first.get("delta") or {}
    return delta.get("content") if isinstance(delta, dict) else None


class OpenAICompatibleProvider(LLMProvider):
    name = "openai_compatible"
    base_url = "https://api.openai.com/v1"

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        client: httpx.AsyncClient,
        base_url: str | None = None,
        extra_headers: Mapping[str, str] | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._client = client
        if base_url is not None:
            self.base_url = base_url
        self._extra_headers = dict(extra_headers or {})

    # ── Port implementation ──────────────────────────────────
    async def generate_text(self, prompt: str, options: GenerateOptions | None = None) -> str:
        opts = options or GenerateOptions()
        data = await self._post(self._body(prompt, opts, temperature=0.4, max_tokens=1024))
        self._record_usage(data)
        return self._message_content(data)

    async def generate_json(
        self,
        prompt: str,
        schema: Mapping[str, Any] | None = None,
        options: GenerateOptions | None = None,
    ) -> JsonResult:
        opts = options or GenerateOptions()
        body = self._body(prompt + JSON_ONLY_SUFFIX, opts, temperature=0.3, max_tokens=2048)
        body["response_format"] = {"type": "json_object"}
        data = await self._post(body)
        self._record_usage(data)
        return parse_json_output(self._message_content(data))

    async def generate_stream(
        self, prompt: str, options: GenerateOptions | None = None
    ) -> AsyncIterator[str]:
        opts = options or GenerateOptions()
        body = self._body(prompt, opts, temperature=0.4, max_tokens=2048)
        body["stream"] = True

        try:
            async with self._client.stream(
                "POST", self._url, headers=self._headers, json=body
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise provider_error_from_response(self.name, response)

                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    payload = line[6:].strip()
                    if payload == "[DONE]":
                        return
                    try:
                        parsed = json.loads(payload)
                    except json.JSONDecodeError:
                        # Incomplete chunk
                        continue
                    if not isinstance(parsed, dict):
                        raise provider_error_from_response(
                            self.name, None, f"malformed stream chunk: {payload[:80]}"
                        )
                    self._record_usage(parsed)
                    content = _delta_content(parsed)
                    if content:
                        yield content
        except httpx.HTTPError as exc:
            raise transport_error(self.name, exc) from exc

    # ── HTTP plumbing ────────────────────────────────────────
    @property
    def _url(self) -> str:
        return f"{self.base_url}/chat/completions"

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            **self._extra_headers,
        }

    def _body(
        self,
        prompt: str,
        opts: GenerateOptions,
        *,
        temperature: float,
        max_tokens: int,
    ) -> dict[str, Any]:
        messages: list[dict[str, str]] = []
        if opts.system_prompt:
            messages.append({"role": "system", "content": opts.system_prompt})
        messages.append({"role": "user", "content": prompt})
        return {
            "model": opts.model or self._model,
            "messages": messages,
            "temperature": opts.temperature if opts.temperature is not None else temperature,
            "max_tokens": opts.max_tokens or max_tokens,
        }

    async def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(self._url, headers=self._headers, json=body)
        except httpx.HTTPError as exc:
            raise transport_error(self.name, exc) from exc
        if response.is_error:
            raise provider_error_from_response(self.name, response)
        return decode_json_body(self.name, response)

    def _record_usage(self, data: Mapping[str, Any]) -> None:
        usage = data.get("usage")
        if isinstance(usage, dict):
            self.record_usage(usage.get("total_tokens"))

    def _message_content(self, data: Mapping[str, Any]) -> str:
        try:
            return str(data["choices"][0]["message"]["content"] or "")
        except (KeyError, IndexError, TypeError) as exc:
            raise provider_error_from_response(self.name, None, f"malformed response: {exc}") from exc


# ── Provider subclasses (differ only by URL + optional headers) ──
class GroqProvider(OpenAICompatibleProvider):
    name = "groq"
    base_url = "https://api.groq.com/openai/v1"


class XAIProvider(OpenAICompatibleProvider):
    name = "xai"
    base_url = "https://api.x.ai/v1"


class MistralProvider(OpenAICompatibleProvider):
    name = "mistral"
    base_url = "https://api.mistral.ai/v1"


class CerebrasProvider(OpenAICompatibleProvider):
    name = "cerebras"
    base_url = "https://api.cerebras.ai/v1"


class OpenRouterProvider(OpenAICompatibleProvider):
    name = "openrouter"
    base_url = "https://openrouter.ai/api/v1"

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        client: httpx.AsyncClient,
        referer: str = "https://devtrends.dev",
        title: str = "DevTrends Intelligence Engine",
    ) -> None:
        super().__init__(
            api_key,
            model,
            client=client,
            extra_headers={"HTTP-Referer": referer, "X-Title": title},
        )


class HuggingFaceProvider(OpenAICompatibleProvider):
    name = "huggingface"

    def __init__(self, api_key: str, model: str, *, client: httpx.AsyncClient) -> None:
        super().__init__(
            api_key,
            model,
            client=client,
            base_url=f"https://api-inference.huggingface.co/models/{model}/v1",
        )
