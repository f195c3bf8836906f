"""
Immutable runtime settings.

AppSettings is built once (from config.py at startup, or by a request) and
passed explicitly into every component call. Nothing reads it from a global;
a changed setting means a new AppSettings instance via with_updates().
"""
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from agent.llm_models import LlmProvider, OutputLength, ReasoningDepth, Verbosity
from agent.model_router import UserModelRoutingConfig


class TradingIntent(str, Enum):
    DAY_TRADE = "day_trade"
    SWING = "swing"
    LONG_TERM = "long_term"


class RiskTolerance(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class ScreenerThresholds(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    min_price: float = 1.0
    max_price: float | None = None
    min_volume: int = 500_000


class ScoringWeights(BaseModel):
    """Relative weight of momentum vs liquidity in the priority score."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    momentum: float = Field(default=0.5, ge=0)
    liquidity: float = Field(default=0.5, ge=0)

    @model_validator(mode="after")
    def _not_both_zero(self):
        if self.momentum + self.liquidity <= 0:
            raise ValueError("scoring weights cannot both be zero")
        return self


class ReadOnlyDict(dict):
    """Threshold table that refuses in-place edits; build new settings instead."""

    def _read_only(self, *args, **kwargs):
        raise TypeError("settings tables are read-only; use AppSettings.with_updates()")

    __setitem__ = __delitem__ = __ior__ = _read_only
    clear = pop = popitem = setdefault = update = _read_only


def _default_screener() -> dict:
    return {
        RiskTolerance.CONSERVATIVE: ScreenerThresholds(min_price=5.0, max_price=None, min_volume=1_000_000),
        RiskTolerance.MODERATE: ScreenerThresholds(min_price=1.0, max_price=None, min_volume=500_000),
        RiskTolerance.AGGRESSIVE: ScreenerThresholds(min_price=0.1, max_price=20.0, min_volume=100_000),
    }


class AppSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", validate_default=True)

    # LLM routing
    preferred_provider: LlmProvider = LlmProvider.OPENAI
    model_routing: UserModelRoutingConfig = UserModelRoutingConfig()
    reasoning_depth: ReasoningDepth = ReasoningDepth.MEDIUM
    output_length: OutputLength = OutputLength.STANDARD
    verbosity: Verbosity = Verbosity.MEDIUM

    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE

    # Technical thresholds consumed by downstream stages
    vwap_dip_percent: float = Field(default=1.0, ge=0)
    rsi_oversold: float = Field(default=30.0, ge=0, le=100)
    rsi_overbought: float = Field(default=70.0, ge=0, le=100)

    screener: dict[RiskTolerance, ScreenerThresholds] = Field(default_factory=_default_screener)

    # Shortlist tradeability floor
    min_volume: dict[TradingIntent, int] = Field(default_factory=lambda: {
        TradingIntent.DAY_TRADE: 1_000_000,
        TradingIntent.SWING: 500_000,
        TradingIntent.LONG_TERM: 100_000,
    })
    min_price: dict[RiskTolerance, float] = Field(default_factory=lambda: {
        RiskTolerance.CONSERVATIVE: 1.0,
        RiskTolerance.MODERATE: 1.0,
        RiskTolerance.AGGRESSIVE: 0.1,
    })
    # Absolute daily % move beyond which a candidate is flagged avoid
    max_daily_move: dict[RiskTolerance, float] = Field(default_factory=lambda: {
        RiskTolerance.CONSERVATIVE: 5.0,
        RiskTolerance.MODERATE: 10.0,
        RiskTolerance.AGGRESSIVE: 20.0,
    })
    # Conservative accounts also avoid anything priced under this
    conservative_low_price_limit: float = Field(default=5.0, ge=0)

    scoring_weights: dict[TradingIntent, ScoringWeights] = Field(default_factory=lambda: {
        TradingIntent.DAY_TRADE: ScoringWeights(momentum=0.7, liquidity=0.3),
        TradingIntent.SWING: ScoringWeights(momentum=0.5, liquidity=0.5),
        TradingIntent.LONG_TERM: ScoringWeights(momentum=0.2, liquidity=0.8),
    })
    # Scores inside [low, high] are "uncertain" and worth an LLM second opinion
    enrichment_band_low: float = Field(default=0.4, ge=0, le=1)
    enrichment_band_high: float = Field(default=0.7, ge=0, le=1)

    # Data layer
    use_mock_data_when_offline: bool = True
    always_include_mock: bool = False
    cache_ttl_minutes: dict[str, int] = Field(default_factory=lambda: {
        "quote": 1, "intraday": 10, "daily": 1440, "profile": 1440, "metrics": 1440, "sentiment": 30,
    })

    @field_validator("screener", "min_volume", "min_price", "max_daily_move",
                     "scoring_weights", "cache_ttl_minutes", mode="after")
    @classmethod
    def _freeze_tables(cls, value: dict) -> dict:
        return ReadOnlyDict(value)

    @model_validator(mode="after")
    def _check_ranges(self):
        if self.enrichment_band_low > self.enrichment_band_high:
            raise ValueError("enrichment_band_low must not exceed enrichment_band_high")
        if self.rsi_oversold >= self.rsi_overbought:
            raise ValueError("rsi_oversold must be below rsi_overbought")
        for intent in TradingIntent:
            if intent not in self.min_volume or intent not in self.scoring_weights:
                raise ValueError(f"missing thresholds for intent {intent.value}")
        for risk in RiskTolerance:
            if risk not in self.min_price or risk not in self.max_daily_move:
                raise ValueError(f"missing thresholds for risk tolerance {risk.value}")
        return self

    def with_updates(self, **changes) -> "AppSettings":
        """New validated settings with `changes` applied; self is untouched."""
        data = self.model_dump()
        data.update(changes)
        return AppSettings.model_validate(data)
