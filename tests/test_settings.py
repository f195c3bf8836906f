import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pydantic import ValidationError
from agent.llm_models import LlmProvider, ReasoningDepth
from agent.model_router import AnalysisStage, UserModelRoutingConfig
from core.settings import AppSettings, RiskTolerance, ScoringWeights, TradingIntent


def test_defaults():
    s = AppSettings()
    assert s.preferred_provider == LlmProvider.OPENAI
    assert s.risk_tolerance == RiskTolerance.MODERATE
    assert s.min_volume[TradingIntent.SWING] == 500_000
    assert s.max_daily_move[RiskTolerance.CONSERVATIVE] == 5.0
    assert s.enrichment_band_low < s.enrichment_band_high


def test_settings_are_immutable():
    s = AppSettings()
    with pytest.raises(ValidationError):
        s.rsi_oversold = 10


def test_threshold_tables_are_read_only():
    s = AppSettings()
    with pytest.raises(TypeError):
        s.min_volume[TradingIntent.SWING] = 0
    with pytest.raises(TypeError):
        s.max_daily_move.update({RiskTolerance.AGGRESSIVE: 99.0})
    with pytest.raises(TypeError):
        del s.cache_ttl_minutes["quote"]
    assert s.min_volume[TradingIntent.SWING] == 500_000


def test_with_updates_replaces_tables():
    s = AppSettings()
    updated = s.with_updates(min_volume={"day_trade": 2_000_000, "swing": 250_000, "long_term": 50_000})
    assert updated.min_volume[TradingIntent.SWING] == 250_000
    assert s.min_volume[TradingIntent.SWING] == 500_000
    with pytest.raises(TypeError):
        updated.min_volume[TradingIntent.SWING] = 1


def test_with_updates_returns_new_instance():
    s = AppSettings()
    updated = s.with_updates(reasoning_depth="high", risk_tolerance="aggressive")
    assert updated.reasoning_depth == ReasoningDepth.HIGH
    assert updated.risk_tolerance == RiskTolerance.AGGRESSIVE
    assert s.reasoning_depth == ReasoningDepth.MEDIUM


def test_with_updates_keeps_routing():
    routing = UserModelRoutingConfig.from_json('{"verdict": {"model": "claude-sonnet-4-5"}}')
    s = AppSettings(model_routing=routing).with_updates(verbosity="low")
    assert s.model_routing.config_for(AnalysisStage.VERDICT).model == "claude-sonnet-4-5"


@pytest.mark.parametrize("changes", [
    {"rsi_oversold": 80},
    {"enrichment_band_low": 0.9, "enrichment_band_high": 0.2},
    {"risk_tolerance": "yolo"},
    {"rsi_overbought": 140},
])
def test_invalid_updates_rejected(changes):
    with pytest.raises(ValidationError):
        AppSettings().with_updates(**changes)


def test_scoring_weights_cannot_both_be_zero():
    with pytest.raises(ValidationError):
        ScoringWeights(momentum=0, liquidity=0)


def test_unknown_fields_ignored():
    assert AppSettings(theme="dark") == AppSettings()
