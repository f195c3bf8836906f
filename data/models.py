"""
Standardized market data records.

Every provider normalizes its payloads into these records, so the rest of
the system never sees vendor field names. Each record carries `source`, the
name of the provider that produced it. The offline generator stamps
SYNTHETIC_SOURCE so downstream consumers can tell synthetic data from live.
"""
from dataclasses import dataclass, fields, replace, asdict
from datetime import date, datetime, timezone
from typing import Optional

SYNTHETIC_SOURCE = "mock"


def _iso(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class Quote:
    symbol: str
    price: float
    volume: int
    timestamp: datetime
    change_percent: Optional[float] = None
    source: str = "unknown"

    @property
    def is_synthetic(self) -> bool:
        return self.source == SYNTHETIC_SOURCE

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "volume": self.volume,
            "timestamp": _iso(self.timestamp),
            "change_percent": self.change_percent,
            "source": self.source,
        }


@dataclass(frozen=True)
class IntradayBar:
    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: int
    source: str = "unknown"


@dataclass(frozen=True)
class DailyBar:
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: int
    source: str = "unknown"


@dataclass(frozen=True)
class CompanyProfile:
    name: str
    sector: Optional[str] = None
    industry: Optional[str] = None
    description: Optional[str] = None
    source: str = "unknown"

    @property
    def is_complete(self) -> bool:
        return self.sector is not None and self.description is not None


@dataclass(frozen=True)
class FinancialMetrics:
    market_cap: Optional[int] = None
    pe_ratio: Optional[float] = None
    eps: Optional[float] = None
    earnings_date: Optional[str] = None
    dividend_yield: Optional[float] = None
    pb_ratio: Optional[float] = None
    debt_to_equity: Optional[float] = None
    source: str = "unknown"

    @property
    def has_critical_fields(self) -> bool:
        return self.market_cap is not None and self.pe_ratio is not None and self.eps is not None


@dataclass(frozen=True)
class SentimentData:
    score: float
    label: str
    source: str = "unknown"


@dataclass(frozen=True)
class SearchResult:
    symbol: str
    name: str
    exchange: Optional[str] = None
    source: str = "unknown"


def sentiment_label(score: float) -> str:
    if score >= 0.25:
        return "Bullish"
    if score <= -0.25:
        return "Bearish"
    return "Neutral"


def merge_profiles(base: CompanyProfile, extra: CompanyProfile, symbol: str) -> CompanyProfile:
    """Fill gaps in `base` from `extra`. The first provider's values win."""
    name = base.name
    if (not name or name == symbol) and extra.name:
        name = extra.name
    return replace(
        base,
        name=name,
        sector=base.sector or extra.sector,
        industry=base.industry or extra.industry,
        description=base.description or extra.description,
    )


def merge_metrics(base: FinancialMetrics, extra: FinancialMetrics) -> FinancialMetrics:
    """Fill missing metric fields in `base` from `extra`."""
    updates = {}
    for f in fields(FinancialMetrics):
        if f.name == "source":
            continue
        if getattr(base, f.name) is None and getattr(extra, f.name) is not None:
            updates[f.name] = getattr(extra, f.name)
    return replace(base, **updates) if updates else base


def record_to_dict(record) -> dict:
    """Serialize any record above, including nested dates."""
    if hasattr(record, "to_dict"):
        return record.to_dict()
    return {k: _iso(v) for k, v in asdict(record).items()}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
