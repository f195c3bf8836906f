"""
Executes a resolved StageModelSelection against the right vendor API.

One call per stage request; the dialect on the selection picks the client:
  anthropic          anthropic.AsyncAnthropic messages API
  openai_responses   openai.AsyncOpenAI responses API
  openai_chat        openai.AsyncOpenAI chat completions
  openai_compatible  openai.AsyncOpenAI pointed at the provider's base URL
  google_gemini      Gemini generateContent over httpx
Vendor failures come back as ProviderUnavailableError.
"""
import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Optional

import anthropic
import httpx
import openai

from agent.llm_models import (
    LlmApiFormat, LlmProvider, ReasoningDepth, ToolsMode, supports_native_reasoning_control,
)
from agent.model_router import StageModelSelection
from data.errors import ProviderUnavailableError

OPENAI_EFFORT = {
    ReasoningDepth.NONE: "minimal",
    ReasoningDepth.MINIMAL: "minimal",
    ReasoningDepth.LOW: "low",
    ReasoningDepth.MEDIUM: "medium",
    ReasoningDepth.HIGH: "high",
    ReasoningDepth.EXTRA: "xhigh",
}

GEMINI_THINKING = {
    ReasoningDepth.NONE: "low",
    ReasoningDepth.MINIMAL: "low",
    ReasoningDepth.LOW: "low",
    ReasoningDepth.MEDIUM: "high",
    ReasoningDepth.HIGH: "high",
    ReasoningDepth.EXTRA: "high",
}

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class LlmStageRequest:
    system_prompt: str
    user_prompt: str
    expect_json: bool = False


@dataclass(frozen=True)
class LlmSource:
    title: str
    url: str


@dataclass(frozen=True)
class LlmStageResponse:
    raw_text: str
    provider: str
    model: str
    parsed_json: Optional[dict] = None
    sources: tuple = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "raw_text": self.raw_text,
            "parsed_json": self.parsed_json,
            "provider": self.provider,
            "model": self.model,
            "sources": [{"title": s.title, "url": s.url} for s in self.sources],
        }


def _json_object_spans(text: str):
    """Yield each balanced {...} span, in order of its opening brace."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_str = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_str:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_str = False
                continue
            if ch == '"':
                in_str = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    yield text[start:i + 1]
                    break
        start = text.find("{", start + 1)


def extract_json(text: str | None) -> dict | None:
    """First JSON object in a model reply, tolerating code fences and chatter."""
    if not text:
        return None
    fenced = _FENCE_RE.search(text)
    candidates = [fenced.group(1)] if fenced else []
    candidates.append(text)
    for chunk in candidates:
        for raw in _json_object_spans(chunk):
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if isinstance(parsed, dict):
                return parsed
    return None


class StageRunner:
    def __init__(self, api_keys: dict | None = None, base_urls: dict | None = None,
                 anthropic_client=None, openai_clients: dict | None = None,
                 http_client: httpx.AsyncClient | None = None):
        self._api_keys = {LlmProvider(k): v for k, v in (api_keys or {}).items()}
        self._base_urls = {LlmProvider(k): v for k, v in (base_urls or {}).items()}
        self._anthropic = anthropic_client
        self._openai_clients = dict(openai_clients or {})
        self._client = http_client

    def has_key(self, provider: LlmProvider) -> bool:
        return bool((self._api_keys.get(provider) or "").strip())

    def _key_for(self, provider: LlmProvider) -> str:
        key = (self._api_keys.get(provider) or "").strip()
        if not key and provider.requires_api_key:
            raise ProviderUnavailableError(provider.value, "no API key configured")
        return key

    def _base_url(self, provider: LlmProvider) -> str:
        return self._base_urls.get(provider) or provider.base_url

    def _get_anthropic(self, key: str):
        if self._anthropic is None:
            self._anthropic = anthropic.AsyncAnthropic(api_key=key)
        return self._anthropic

    def _get_openai(self, provider: LlmProvider, key: str):
        client = self._openai_clients.get(provider)
        if client is None:
            client = openai.AsyncOpenAI(
                api_key=key or "not-needed",
                base_url=self._base_url(provider),
            )
            self._openai_clients[provider] = client
        return client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=60.0)
        return self._client

    async def run(self, selection: StageModelSelection, request: LlmStageRequest) -> LlmStageResponse:
        provider = selection.provider
        key = self._key_for(provider)
        dialect = selection.api_dialect
        print(f"[LLM] {selection.stage.value} via {provider.value}/{selection.model_id} ({dialect.value})")
        try:
            if dialect == LlmApiFormat.ANTHROPIC:
                call = self._run_anthropic(selection, request, key)
            elif dialect == LlmApiFormat.OPENAI_RESPONSES:
                call = self._run_openai_responses(selection, request, key)
            elif dialect == LlmApiFormat.GOOGLE_GEMINI:
                call = self._run_gemini(selection, request, key)
            else:
                call = self._run_chat(selection, request, key)
            text, sources = await asyncio.wait_for(call, timeout=selection.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ProviderUnavailableError(provider.value, f"timed out after {selection.timeout_seconds:.0f}s") from e
        except (anthropic.APIError, openai.APIError) as e:
            status = getattr(e, "status_code", None)
            raise ProviderUnavailableError(provider.value, f"{type(e).__name__}: {e}", status=status) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(provider.value, f"request failed: {e}") from e

        return LlmStageResponse(
            raw_text=text,
            provider=provider.value,
            model=selection.model_id,
            parsed_json=extract_json(text) if request.expect_json else None,
            sources=tuple(sources),
        )

    async def _run_anthropic(self, selection, request, key):
        params = {
            "model": selection.model_id,
            "max_tokens": selection.max_output_tokens,
            "system": request.system_prompt,
            "messages": [{"role": "user", "content": request.user_prompt}],
        }
        if selection.temperature is not None:
            params["temperature"] = selection.temperature
        resp = await self._get_anthropic(key).messages.create(**params)
        text = "".join(getattr(block, "text", "") for block in resp.content if getattr(block, "type", "") == "text")
        return text, []

    async def _run_openai_responses(self, selection, request, key):
        params = {
            "model": selection.model_id,
            "instructions": request.system_prompt,
            "input": request.user_prompt,
            "max_output_tokens": selection.max_output_tokens,
        }
        if supports_native_reasoning_control(LlmProvider.OPENAI, selection.model_id):
            params["reasoning"] = {"effort": OPENAI_EFFORT[selection.reasoning_depth]}
        if selection.temperature is not None:
            params["temperature"] = selection.temperature
        if selection.tools == ToolsMode.WEB_SEARCH:
            params["tools"] = [{"type": "web_search"}]
        resp = await self._get_openai(selection.provider, key).responses.create(**params)

        sources = []
        for item in getattr(resp, "output", None) or []:
            for content in getattr(item, "content", None) or []:
                for ann in getattr(content, "annotations", None) or []:
                    if getattr(ann, "type", "") == "url_citation":
                        sources.append(LlmSource(title=getattr(ann, "title", None) or "Untitled",
                                                 url=getattr(ann, "url", "")))
        return resp.output_text or "", sources

    async def _run_chat(self, selection, request, key):
        params = {
            "model": selection.model_id,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
        }
        if selection.provider == LlmProvider.OPENAI:
            params["max_completion_tokens"] = selection.max_output_tokens
            if request.expect_json:
                params["response_format"] = {"type": "json_object"}
        else:
            params["max_tokens"] = selection.max_output_tokens
        if selection.temperature is not None:
            params["temperature"] = selection.temperature
        resp = await self._get_openai(selection.provider, key).chat.completions.create(**params)
        if not resp.choices:
            return "", []
        return resp.choices[0].message.content or "", []

    async def _run_gemini(self, selection, request, key):
        generation = {"maxOutputTokens": selection.max_output_tokens}
        if selection.temperature is not None:
            generation["temperature"] = selection.temperature
        if supports_native_reasoning_control(LlmProvider.GEMINI, selection.model_id):
            generation["thinkingConfig"] = {"thinkingLevel": GEMINI_THINKING[selection.reasoning_depth]}
        body = {
            "systemInstruction": {"parts": [{"text": request.system_prompt}]},
            "contents": [{"role": "user", "parts": [{"text": request.user_prompt}]}],
            "generationConfig": generation,
        }
        if selection.tools in (ToolsMode.GOOGLE_SEARCH, ToolsMode.WEB_SEARCH):
            body["tools"] = [{"google_search": {}}]
        elif request.expect_json:
            generation["responseMimeType"] = "application/json"

        url = f"{self._base_url(LlmProvider.GEMINI)}/v1beta/models/{selection.model_id}:generateContent"
        client = await self._get_client()
        resp = await client.post(url, json=body, headers={"x-goog-api-key": key})
        if resp.status_code != 200:
            raise ProviderUnavailableError(LlmProvider.GEMINI.value, "generateContent failed", status=resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderUnavailableError(LlmProvider.GEMINI.value, "invalid JSON from generateContent") from e

        candidates = data.get("candidates") or []
        if not candidates:
            return "", []
        first = candidates[0]
        parts = (first.get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts)
        sources = []
        for chunk in (first.get("groundingMetadata") or {}).get("groundingChunks") or []:
            web = chunk.get("web") or {}
            if web.get("uri"):
                sources.append(LlmSource(title=web.get("title") or "Untitled", url=web["uri"]))
        return text, sources

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
