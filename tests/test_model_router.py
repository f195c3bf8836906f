import json
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from unittest.mock import AsyncMock
from agent.llm_models import LlmApiFormat, LlmProvider, OutputLength, ReasoningDepth, ToolsMode, Verbosity
from agent.model_router import (
    AnalysisStage, StageModelConfig, StageModelRouter, UserModelRoutingConfig, resolve,
)
from core.settings import AppSettings


def _settings(**kwargs):
    return AppSettings(**kwargs)


def test_resolve_is_deterministic_for_every_stage():
    settings = _settings()
    for stage in AnalysisStage:
        assert resolve(stage, settings) == resolve(stage, settings)


def test_defaults_use_preferred_provider():
    sel = resolve(AnalysisStage.SHORTLIST, _settings())
    assert sel.provider == LlmProvider.OPENAI
    assert sel.model_id == "gpt-5.2"
    assert sel.api_dialect == LlmApiFormat.OPENAI_RESPONSES
    assert sel.max_output_tokens == 1000
    assert sel.temperature is None

    light = resolve(AnalysisStage.RSS_VERIFY, _settings())
    assert light.model_id == "gpt-5-mini"
    assert light.max_output_tokens == 500


def test_preferred_provider_switches_models_and_dialect():
    sel = resolve(AnalysisStage.VERDICT, _settings(preferred_provider=LlmProvider.ANTHROPIC))
    assert sel.provider == LlmProvider.ANTHROPIC
    assert sel.model_id == "claude-sonnet-4-5"
    assert sel.api_dialect == LlmApiFormat.ANTHROPIC
    assert sel.temperature == 0.2


def test_stage_override_beats_global_provider():
    routing = UserModelRoutingConfig(by_stage={
        AnalysisStage.REASONING: StageModelConfig(provider=LlmProvider.GEMINI, model="gemini-2.5-pro",
                                                  tools=ToolsMode.WEB_SEARCH, timeout_seconds=60),
    })
    settings = _settings(preferred_provider=LlmProvider.OPENAI, model_routing=routing)

    deep = resolve(AnalysisStage.REASONING, settings)
    assert deep.provider == LlmProvider.GEMINI
    assert deep.api_dialect == LlmApiFormat.GOOGLE_GEMINI
    assert deep.tools == ToolsMode.GOOGLE_SEARCH

    other = resolve(AnalysisStage.SHORTLIST, settings)
    assert other.provider == LlmProvider.OPENAI


def test_stage_model_without_provider_infers_vendor():
    routing = UserModelRoutingConfig(by_stage={AnalysisStage.SHORTLIST: StageModelConfig(model="claude-haiku-4-5")})
    sel = resolve(AnalysisStage.SHORTLIST, _settings(model_routing=routing))
    assert sel.provider == LlmProvider.ANTHROPIC
    assert sel.api_dialect == LlmApiFormat.ANTHROPIC


def test_gateway_provider_decides_dialect():
    routing = UserModelRoutingConfig(by_stage={
        AnalysisStage.SHORTLIST: StageModelConfig(provider=LlmProvider.OPENROUTER, model="gpt-5.2"),
    })
    sel = resolve(AnalysisStage.SHORTLIST, _settings(model_routing=routing))
    assert sel.api_dialect == LlmApiFormat.OPENAI_COMPATIBLE


def test_tools_only_on_reasoning_stage():
    routing = UserModelRoutingConfig(by_stage={
        stage: StageModelConfig(tools=ToolsMode.WEB_SEARCH) for stage in AnalysisStage
    })
    settings = _settings(model_routing=routing)
    for stage in AnalysisStage:
        expected = ToolsMode.WEB_SEARCH if stage == AnalysisStage.REASONING else ToolsMode.NONE
        assert resolve(stage, settings).tools == expected


def test_tools_dropped_for_provider_without_web_tools():
    sel = resolve(AnalysisStage.REASONING, _settings(preferred_provider=LlmProvider.ANTHROPIC))
    assert sel.tools == ToolsMode.NONE


def test_depth_output_and_verbosity_pass_through():
    settings = _settings(
        reasoning_depth=ReasoningDepth.EXTRA,
        output_length=OutputLength.SHORT,
        verbosity=Verbosity.HIGH,
    )
    for stage in AnalysisStage:
        sel = resolve(stage, settings)
        assert sel.reasoning_depth == ReasoningDepth.EXTRA
        assert sel.output_length == OutputLength.SHORT
        assert sel.verbosity == Verbosity.HIGH


def test_routing_json_round_trip():
    routing = UserModelRoutingConfig(by_stage={
        AnalysisStage.VERDICT: StageModelConfig(provider=LlmProvider.ANTHROPIC, model="claude-opus-4-6",
                                                max_output_tokens=3000),
    })
    restored = UserModelRoutingConfig.from_json(routing.to_json())
    assert restored == routing
    assert json.loads(routing.to_json())["verdict"]["provider"] == "anthropic"


@pytest.mark.parametrize("raw", [None, "", "not json", "[1, 2]", '{"verdict": {"provider": "nope"}}'])
def test_malformed_routing_json_falls_back_to_defaults(raw):
    cfg = UserModelRoutingConfig.from_json(raw)
    assert cfg.by_stage == {}
    assert cfg.config_for(AnalysisStage.REASONING).timeout_seconds == 60.0


def test_unknown_stage_keys_are_ignored():
    cfg = UserModelRoutingConfig.from_json('{"legacy_stage": {"model": "x"}, "shortlist": {"model": "o3"}}')
    assert cfg.config_for(AnalysisStage.SHORTLIST).model == "o3"


def test_selection_to_dict_is_plain():
    d = resolve(AnalysisStage.SHORTLIST, _settings()).to_dict()
    assert d["provider"] == "openai"
    assert d["api_dialect"] == "openai_responses"
    assert d["stage"] == "shortlist"


@pytest.mark.asyncio
async def test_router_run_hands_selection_to_runner():
    runner = AsyncMock()
    runner.run = AsyncMock(return_value="ok")
    router = StageModelRouter(runner)
    result = await router.run(AnalysisStage.SHORTLIST, _settings(), request="req")
    assert result == "ok"
    selection, request = runner.run.await_args.args
    assert selection.stage == AnalysisStage.SHORTLIST
    assert request == "req"


@pytest.mark.asyncio
async def test_router_without_runner_fails():
    with pytest.raises(RuntimeError):
        await StageModelRouter().run(AnalysisStage.SHORTLIST, _settings(), request=None)
