import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from agent.llm_models import LlmApiFormat, LlmProvider, OutputLength, ReasoningDepth, ToolsMode, Verbosity
from agent.model_router import AnalysisStage, StageModelSelection
from agent.stage_runner import LlmStageRequest, StageRunner, extract_json
from data.errors import ProviderUnavailableError


def _selection(provider, model_id, dialect, **overrides):
    values = dict(
        stage=AnalysisStage.VERDICT,
        provider=provider,
        model_id=model_id,
        api_dialect=dialect,
        reasoning_depth=ReasoningDepth.MEDIUM,
        output_length=OutputLength.STANDARD,
        verbosity=Verbosity.MEDIUM,
        temperature=0.2,
        max_output_tokens=800,
        timeout_seconds=5.0,
    )
    values.update(overrides)
    return StageModelSelection(**values)


REQUEST = LlmStageRequest(system_prompt="You are terse.", user_prompt="Rate AAPL.", expect_json=True)


class MockResponse:
    def __init__(self, json_data, status_code=200):
        self._json = json_data
        self.status_code = status_code

    def json(self):
        return self._json


class MockClient:
    def __init__(self, response):
        self.response = response
        self.posts = []
        self.is_closed = False

    async def post(self, url, json=None, headers=None, **kwargs):
        self.posts.append((url, json, headers))
        return self.response

    async def aclose(self):
        self.is_closed = True


# ── JSON extraction ──

def test_extract_json_from_fenced_block():
    text = 'Here you go:\n```json\n{"verdict": "buy", "score": 7}\n```\nThanks'
    assert extract_json(text) == {"verdict": "buy", "score": 7}


def test_extract_json_with_surrounding_chatter():
    text = 'Sure. {"notes": "braces } inside strings", "nested": {"a": 1}} trailing words'
    assert extract_json(text) == {"notes": "braces } inside strings", "nested": {"a": 1}}


def test_extract_json_skips_invalid_candidates():
    assert extract_json("{not json} then {\"ok\": true}") == {"ok": True}
    assert extract_json("no json here") is None
    assert extract_json("") is None
    assert extract_json(None) is None


def test_extract_json_after_braced_preamble():
    text = "Plan {step 1} done.\n{\"verdict\": \"avoid\", \"why\": [\"gap\"]}"
    assert extract_json(text) == {"verdict": "avoid", "why": ["gap"]}


# ── dispatch ──

@pytest.mark.asyncio
async def test_missing_key_raises_before_any_call():
    client = MagicMock()
    client.messages.create = AsyncMock()
    runner = StageRunner(api_keys={}, anthropic_client=client)
    sel = _selection(LlmProvider.ANTHROPIC, "claude-sonnet-4-5", LlmApiFormat.ANTHROPIC)
    with pytest.raises(ProviderUnavailableError):
        await runner.run(sel, REQUEST)
    client.messages.create.assert_not_called()


@pytest.mark.asyncio
async def test_anthropic_messages_call():
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=SimpleNamespace(content=[
        SimpleNamespace(type="text", text='{"verdict": "hold"}'),
    ]))
    runner = StageRunner(api_keys={"anthropic": "sk-ant"}, anthropic_client=client)
    sel = _selection(LlmProvider.ANTHROPIC, "claude-sonnet-4-5", LlmApiFormat.ANTHROPIC)

    resp = await runner.run(sel, REQUEST)

    assert resp.parsed_json == {"verdict": "hold"}
    assert resp.provider == "anthropic"
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["model"] == "claude-sonnet-4-5"
    assert kwargs["max_tokens"] == 800
    assert kwargs["system"] == "You are terse."
    assert kwargs["temperature"] == 0.2


@pytest.mark.asyncio
async def test_openai_responses_with_web_search_and_citations():
    annotation = SimpleNamespace(type="url_citation", title="Reuters", url="https://example.com/a")
    response = SimpleNamespace(
        output_text="AAPL looks fine.",
        output=[SimpleNamespace(content=[SimpleNamespace(annotations=[annotation])])],
    )
    client = MagicMock()
    client.responses.create = AsyncMock(return_value=response)
    runner = StageRunner(api_keys={"openai": "sk"}, openai_clients={LlmProvider.OPENAI: client})
    sel = _selection(LlmProvider.OPENAI, "gpt-5.2", LlmApiFormat.OPENAI_RESPONSES,
                     stage=AnalysisStage.REASONING, tools=ToolsMode.WEB_SEARCH,
                     temperature=None, reasoning_depth=ReasoningDepth.EXTRA)

    resp = await runner.run(sel, LlmStageRequest("sys", "user"))

    assert resp.raw_text == "AAPL looks fine."
    assert resp.parsed_json is None
    assert resp.sources[0].url == "https://example.com/a"
    kwargs = client.responses.create.call_args.kwargs
    assert kwargs["tools"] == [{"type": "web_search"}]
    assert kwargs["reasoning"] == {"effort": "xhigh"}
    assert kwargs["max_output_tokens"] == 800
    assert "temperature" not in kwargs


@pytest.mark.asyncio
async def test_compatible_chat_uses_max_tokens():
    message = SimpleNamespace(content='{"score": 4}')
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=[SimpleNamespace(message=message)]))
    runner = StageRunner(api_keys={"groq": "gsk"}, openai_clients={LlmProvider.GROQ: client})
    sel = _selection(LlmProvider.GROQ, "llama-3.3-70b-versatile", LlmApiFormat.OPENAI_COMPATIBLE)

    resp = await runner.run(sel, REQUEST)

    assert resp.parsed_json == {"score": 4}
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["max_tokens"] == 800
    assert "max_completion_tokens" not in kwargs
    assert "response_format" not in kwargs


@pytest.mark.asyncio
async def test_local_provider_needs_no_key():
    message = SimpleNamespace(content="ok")
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=[SimpleNamespace(message=message)]))
    runner = StageRunner(openai_clients={LlmProvider.OLLAMA: client})
    sel = _selection(LlmProvider.OLLAMA, "qwen2.5:latest", LlmApiFormat.OPENAI_COMPATIBLE)
    resp = await runner.run(sel, LlmStageRequest("sys", "user"))
    assert resp.raw_text == "ok"


@pytest.mark.asyncio
async def test_gemini_generate_content_with_grounding():
    payload = {"candidates": [{
        "content": {"parts": [{"text": "Grounded answer"}]},
        "groundingMetadata": {"groundingChunks": [{"web": {"uri": "https://example.com/g", "title": "G"}}]},
    }]}
    client = MockClient(MockResponse(payload))
    runner = StageRunner(api_keys={"gemini": "g-key"}, http_client=client)
    sel = _selection(LlmProvider.GEMINI, "gemini-2.5-flash", LlmApiFormat.GOOGLE_GEMINI,
                     tools=ToolsMode.GOOGLE_SEARCH)

    resp = await runner.run(sel, LlmStageRequest("sys", "user"))

    assert resp.raw_text == "Grounded answer"
    assert resp.sources[0].title == "G"
    url, body, headers = client.posts[0]
    assert url.endswith("/v1beta/models/gemini-2.5-flash:generateContent")
    assert headers == {"x-goog-api-key": "g-key"}
    assert body["tools"] == [{"google_search": {}}]
    assert body["generationConfig"]["maxOutputTokens"] == 800


@pytest.mark.asyncio
async def test_gemini_http_error_is_unavailable():
    runner = StageRunner(api_keys={"gemini": "g-key"}, http_client=MockClient(MockResponse({}, 500)))
    sel = _selection(LlmProvider.GEMINI, "gemini-2.5-flash", LlmApiFormat.GOOGLE_GEMINI)
    with pytest.raises(ProviderUnavailableError) as exc:
        await runner.run(sel, REQUEST)
    assert exc.value.status == 500


@pytest.mark.asyncio
async def test_timeout_maps_to_unavailable():
    async def slow(**kwargs):
        await asyncio.sleep(5)

    client = MagicMock()
    client.messages.create = slow
    runner = StageRunner(api_keys={"anthropic": "sk-ant"}, anthropic_client=client)
    sel = _selection(LlmProvider.ANTHROPIC, "claude-haiku-4-5", LlmApiFormat.ANTHROPIC, timeout_seconds=0.05)
    with pytest.raises(ProviderUnavailableError) as exc:
        await runner.run(sel, REQUEST)
    assert "timed out" in str(exc.value)


def test_response_to_dict():
    from agent.stage_runner import LlmSource, LlmStageResponse

    resp = LlmStageResponse("text", "openai", "gpt-5.2", {"a": 1}, (LlmSource("T", "https://x"),))
    assert resp.to_dict() == {
        "raw_text": "text",
        "parsed_json": {"a": 1},
        "provider": "openai",
        "model": "gpt-5.2",
        "sources": [{"title": "T", "url": "https://x"}],
    }
