"""
Shortlist Engine

Turns a symbol universe plus fresh quotes into a bounded, explainable plan:

  1. filter   - drop untradeable quotes (price/volume floors), with reasons
  2. score    - priority in [0, 1] from momentum and liquidity, weighted per intent
  3. flag     - moves beyond the risk tolerance's limit are marked avoid
  4. bound    - non-avoid candidates sorted (priority desc, symbol asc), cut to max
  5. route    - scores in the uncertain band request AI enrichment; the
                routing decision is attached to the item, not executed

execute() is pure and never suspends. build_shortlist() is the async entry
point that pulls quotes through the cache-backed MarketDataService first.
"""
import math
from dataclasses import dataclass, field
from typing import Optional

from agent.model_router import AnalysisStage, StageModelSelection, resolve
from core.settings import AppSettings, RiskTolerance, TradingIntent
from data.errors import InvalidInputError, NoDataAvailableError
from data.models import Quote

MOMENTUM_CAP = 10.0      # +-10% daily change maps onto the full momentum range
LIQUIDITY_DECADES = 3.0  # 1000x the volume floor scores full liquidity


@dataclass(frozen=True)
class ShortlistItem:
    symbol: str
    priority: float
    reasons: tuple = ()
    requested_enrichment: bool = False
    avoid: bool = False
    risk_flags: tuple = ()
    enrichment_route: Optional[StageModelSelection] = None
    quote_source: Optional[str] = None

    def __post_init__(self):
        if self.avoid and not self.risk_flags:
            raise ValueError(f"{self.symbol}: avoid requires at least one risk flag")
        if self.avoid and self.requested_enrichment:
            raise ValueError(f"{self.symbol}: avoided items cannot request enrichment")

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "priority": self.priority,
            "reasons": list(self.reasons),
            "requested_enrichment": self.requested_enrichment,
            "avoid": self.avoid,
            "risk_flags": list(self.risk_flags),
            "enrichment_route": self.enrichment_route.to_dict() if self.enrichment_route else None,
            "quote_source": self.quote_source,
        }


@dataclass(frozen=True)
class ShortlistPlan:
    shortlist: tuple = ()
    global_notes: tuple = ()
    limits_applied: tuple = ()
    data_source: str = "none"
    intent: Optional[TradingIntent] = None
    risk: Optional[RiskTolerance] = None
    max_shortlist: int = 0

    @property
    def symbols(self) -> list[str]:
        return [item.symbol for item in self.shortlist]

    def to_dict(self) -> dict:
        return {
            "shortlist": [item.to_dict() for item in self.shortlist],
            "global_notes": list(self.global_notes),
            "limits_applied": list(self.limits_applied),
            "data_source": self.data_source,
            "intent": self.intent.value if self.intent else None,
            "risk": self.risk.value if self.risk else None,
            "max_shortlist": self.max_shortlist,
        }


@dataclass
class _Candidate:
    symbol: str
    quote: Quote
    priority: float = 0.0
    reasons: list = field(default_factory=list)
    risk_flags: list = field(default_factory=list)

    @property
    def sort_key(self):
        return (-self.priority, self.symbol)


def _check_inputs(symbols, intent, risk, max_shortlist):
    if isinstance(max_shortlist, bool) or not isinstance(max_shortlist, int):
        raise InvalidInputError(f"max_shortlist must be an integer, got {max_shortlist!r}")
    if max_shortlist < 0:
        raise InvalidInputError(f"max_shortlist must be >= 0, got {max_shortlist}")
    if isinstance(symbols, str) or not isinstance(symbols, (list, tuple)):
        raise InvalidInputError("symbols must be a list of ticker strings")
    for s in symbols:
        if not isinstance(s, str) or not s.strip():
            raise InvalidInputError(f"invalid symbol in universe: {s!r}")
    try:
        intent = TradingIntent(intent)
        risk = RiskTolerance(risk)
    except ValueError as e:
        raise InvalidInputError(str(e)) from e
    return intent, risk


def _change(quote: Quote) -> float:
    # missing or non-finite moves score as flat
    change = quote.change_percent
    if change is None or not math.isfinite(change):
        return 0.0
    return change


def _data_source(quotes: list[Quote]) -> str:
    if not quotes:
        return "none"
    synthetic = sum(1 for q in quotes if q.is_synthetic)
    if synthetic == 0:
        return "live"
    if synthetic == len(quotes):
        return "synthetic"
    return "mixed"


class ShortlistCandidates:
    def __init__(self, settings: AppSettings | None = None, router=None):
        self.settings = settings or AppSettings()
        self.router = router

    def _route(self) -> StageModelSelection:
        if self.router is not None:
            return self.router.resolve(AnalysisStage.SHORTLIST, self.settings)
        return resolve(AnalysisStage.SHORTLIST, self.settings)

    def _untradeable_reason(self, quote: Quote, intent: TradingIntent, risk: RiskTolerance) -> str | None:
        floor = self.settings.min_volume[intent]
        min_price = self.settings.min_price[risk]
        if quote.price is None or not math.isfinite(quote.price):
            return "non-finite price"
        if quote.price <= 0:
            return "non-positive price"
        if quote.price < min_price:
            return f"price {quote.price:.2f} below minimum {min_price:.2f}"
        if quote.volume is None or quote.volume <= 0:
            return "no volume"
        if quote.volume < floor:
            return f"volume {quote.volume:,} below {intent.value} floor {floor:,}"
        return None

    def _score(self, c: _Candidate, intent: TradingIntent):
        weights = self.settings.scoring_weights[intent]
        floor = max(self.settings.min_volume[intent], 1)
        change = _change(c.quote)
        momentum = (max(-MOMENTUM_CAP, min(MOMENTUM_CAP, change)) + MOMENTUM_CAP) / (2 * MOMENTUM_CAP)
        liquidity = min(1.0, max(0.0, math.log10(c.quote.volume / floor) / LIQUIDITY_DECADES))
        total = weights.momentum + weights.liquidity
        c.priority = round((weights.momentum * momentum + weights.liquidity * liquidity) / total, 4)
        c.reasons.append(f"momentum {change:+.2f}% (score {momentum:.2f})")
        c.reasons.append(f"liquidity {c.quote.volume:,} shares (score {liquidity:.2f})")

    def _flag(self, c: _Candidate, risk: RiskTolerance):
        change = _change(c.quote)
        limit = self.settings.max_daily_move[risk]
        if abs(change) > limit:
            c.risk_flags.append(f"daily move {change:+.2f}% exceeds {limit:g}% limit for {risk.value} risk")
        low = self.settings.conservative_low_price_limit
        if risk == RiskTolerance.CONSERVATIVE and c.quote.price < low:
            c.risk_flags.append(f"price {c.quote.price:.2f} under {low:.2f} for conservative risk")

    def execute(self, symbols: list[str], quotes: dict[str, Quote], intent: TradingIntent,
                risk: RiskTolerance, max_shortlist: int = 15) -> ShortlistPlan:
        intent, risk = _check_inputs(symbols, intent, risk, max_shortlist)
        quotes = quotes or {}
        universe = list(dict.fromkeys(s.strip() for s in symbols))
        notes: list[str] = []
        limits: list[str] = []

        if max_shortlist == 0:
            limits.append("max_shortlist is 0; no candidates were scored")
            return ShortlistPlan(limits_applied=tuple(limits), intent=intent, risk=risk, max_shortlist=0)

        missing = [s for s in universe if quotes.get(s) is None]
        if missing:
            limits.append(f"{len(missing)} symbol(s) had no quote and were skipped: {', '.join(missing)}")

        priced = [(s, quotes[s]) for s in universe if quotes.get(s) is not None]
        considered = [q for _, q in priced]
        candidates = []
        filtered = []
        for symbol, quote in priced:
            reason = self._untradeable_reason(quote, intent, risk)
            if reason:
                filtered.append(f"{symbol} ({reason})")
                notes.append(f"{symbol} excluded: {reason}")
                continue
            candidates.append(_Candidate(symbol=symbol, quote=quote))
        if filtered:
            limits.append(f"{len(filtered)} candidate(s) filtered out as untradeable: {', '.join(filtered)}")

        for c in candidates:
            self._score(c, intent)
            self._flag(c, risk)

        ranked = sorted((c for c in candidates if not c.risk_flags), key=lambda c: c.sort_key)
        avoided = sorted((c for c in candidates if c.risk_flags), key=lambda c: c.sort_key)

        kept = ranked[:max_shortlist]
        truncated = len(ranked) - len(kept)
        if truncated > 0:
            limits.append(f"{truncated} candidate(s) exceeded max shortlist size of {max_shortlist} and were truncated")

        room = max_shortlist - len(kept)
        shown_avoided = avoided[:room]
        if len(avoided) > len(shown_avoided):
            limits.append(f"{len(avoided) - len(shown_avoided)} avoid-flagged candidate(s) omitted for lack of room")

        band_low = self.settings.enrichment_band_low
        band_high = self.settings.enrichment_band_high
        route = None
        items = []
        for c in kept:
            uncertain = band_low <= c.priority <= band_high
            if uncertain:
                route = route or self._route()
                c.reasons.append("score in uncertain band; AI enrichment requested")
            elif c.priority > band_high:
                c.reasons.append("clear pass")
            else:
                c.reasons.append("weak setup")
            items.append(ShortlistItem(
                symbol=c.symbol,
                priority=c.priority,
                reasons=tuple(c.reasons),
                requested_enrichment=uncertain,
                enrichment_route=route if uncertain else None,
                quote_source=c.quote.source,
            ))
        for c in shown_avoided:
            items.append(ShortlistItem(
                symbol=c.symbol,
                priority=c.priority,
                reasons=tuple(c.reasons),
                avoid=True,
                risk_flags=tuple(c.risk_flags),
                quote_source=c.quote.source,
            ))

        if considered and not candidates:
            notes.append("Every candidate failed the tradeability filter")
        source = _data_source(considered)
        if source in ("synthetic", "mixed"):
            synthetic = [s for s, q in priced if q.is_synthetic]
            notes.append(f"Synthetic (mock) quotes used for: {', '.join(synthetic)}")

        print(f"[SHORTLIST] {len(universe)} symbols -> {len(items)} items "
              f"({len(filtered)} filtered, {truncated} truncated, {len(avoided)} flagged, source={source})")
        return ShortlistPlan(
            shortlist=tuple(items),
            global_notes=tuple(notes),
            limits_applied=tuple(limits),
            data_source=source,
            intent=intent,
            risk=risk,
            max_shortlist=max_shortlist,
        )


async def build_shortlist(service, symbols: list[str], intent: TradingIntent, risk: RiskTolerance,
                          max_shortlist: int = 15, settings: AppSettings | None = None,
                          router=None) -> ShortlistPlan:
    """Fetch quotes through the cache-backed service, then run the pipeline."""
    intent, risk = _check_inputs(symbols, intent, risk, max_shortlist)
    universe = list(dict.fromkeys(s.strip().upper() for s in symbols))
    engine = ShortlistCandidates(settings, router)
    quotes = {}
    if universe and max_shortlist > 0:
        try:
            quotes = await service.get_quotes(universe)
        except NoDataAvailableError as e:
            print(f"[SHORTLIST] No quotes available: {e}")
    return engine.execute(universe, quotes, intent, risk, max_shortlist)
