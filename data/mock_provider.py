"""
Offline market data generator.
Used when no provider keys are configured (or when explicitly forced on) so
the pipeline still runs. Values are deterministic per symbol and every
record is tagged source="mock".
"""
from datetime import datetime, timedelta
from typing import Callable

from data.capabilities import Capability
from data.models import (
    SYNTHETIC_SOURCE, CompanyProfile, DailyBar, FinancialMetrics, IntradayBar,
    Quote, SearchResult, SentimentData, utc_now,
)

MOCK_UNIVERSE = [
    ("AAPL", "Apple Inc."), ("MSFT", "Microsoft Corporation"), ("NVDA", "NVIDIA Corporation"),
    ("AMZN", "Amazon.com, Inc."), ("GOOGL", "Alphabet Inc."), ("META", "Meta Platforms, Inc."),
    ("TSLA", "Tesla, Inc."), ("AMD", "Advanced Micro Devices, Inc."), ("NFLX", "Netflix, Inc."),
    ("CRM", "Salesforce, Inc."),
]


def _seed(symbol: str) -> int:
    return sum((i + 1) * ord(c) for i, c in enumerate(symbol.upper()))


class MockMarketDataProvider:
    name = SYNTHETIC_SOURCE
    capabilities = frozenset(Capability)

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock

    def _base_price(self, symbol: str) -> float:
        return 100.0 + (_seed(symbol) % 40) * 4.25

    async def get_quotes(self, symbols: list[str]) -> dict[str, Quote]:
        now = self._clock()
        quotes = {}
        for symbol in symbols:
            seed = _seed(symbol)
            quotes[symbol] = Quote(
                symbol=symbol,
                price=self._base_price(symbol),
                volume=1_500_000 + (seed % 10) * 100_000,
                timestamp=now,
                change_percent=round(((seed % 9) - 4) * 0.5, 2),
                source=SYNTHETIC_SOURCE,
            )
        return quotes

    async def get_intraday(self, symbol: str, days: int) -> list[IntradayBar]:
        if days <= 0:
            return []
        count = days * 30
        now = self._clock()
        base = self._base_price(symbol)
        bars = []
        for i in range(count):
            close = base + (i % 5 - 2) * 0.2
            bars.append(IntradayBar(
                time=now - timedelta(minutes=(count - 1 - i) * 5),
                open=close - 0.05,
                high=close + 0.1,
                low=close - 0.1,
                close=close,
                volume=5_000 + i * 50,
                source=SYNTHETIC_SOURCE,
            ))
        return bars

    async def get_daily(self, symbol: str, days: int) -> list[DailyBar]:
        if days <= 0:
            return []
        today = self._clock().date()
        bars = []
        for i in range(days):
            base = 80.0 + i * 0.4
            bars.append(DailyBar(
                date=today - timedelta(days=days - 1 - i),
                open=base - 0.3,
                high=base + 0.6,
                low=base - 0.8,
                close=base + 0.1,
                volume=2_000_000 + i * 10_000,
                source=SYNTHETIC_SOURCE,
            ))
        return bars

    async def get_profile(self, symbol: str) -> CompanyProfile:
        return CompanyProfile(
            name=f"{symbol} Corp",
            sector="Technology",
            industry="Software",
            description=f"Mock profile for {symbol}.",
            source=SYNTHETIC_SOURCE,
        )

    async def get_metrics(self, symbol: str) -> FinancialMetrics:
        return FinancialMetrics(market_cap=125_000_000_000, pe_ratio=22.5, eps=3.2, source=SYNTHETIC_SOURCE)

    async def get_sentiment(self, symbol: str) -> SentimentData:
        return SentimentData(score=0.05, label="Neutral", source=SYNTHETIC_SOURCE)

    async def search_symbols(self, query: str, limit: int = 10) -> list[SearchResult]:
        q = query.strip().upper()
        return [
            SearchResult(symbol=s, name=n, exchange="MOCK", source=SYNTHETIC_SOURCE)
            for s, n in MOCK_UNIVERSE
            if q and (q in s or q in n.upper())
        ][:limit]

    async def screen_stocks(self, min_price: float | None = None, max_price: float | None = None,
                            min_volume: int | None = None, sector: str | None = None,
                            limit: int = 50) -> list[str]:
        quotes = await self.get_quotes([s for s, _ in MOCK_UNIVERSE])
        picked = []
        for symbol, q in quotes.items():
            if min_price is not None and q.price < min_price:
                continue
            if max_price is not None and q.price > max_price:
                continue
            if min_volume is not None and q.volume < min_volume:
                continue
            picked.append(symbol)
        return picked[:limit]

    async def _ranked(self, key, reverse: bool, limit: int) -> list[str]:
        quotes = await self.get_quotes([s for s, _ in MOCK_UNIVERSE])
        ordered = sorted(quotes.values(), key=lambda q: (key(q), q.symbol), reverse=reverse)
        return [q.symbol for q in ordered][:limit]

    async def get_top_gainers(self, limit: int = 10) -> list[str]:
        return await self._ranked(lambda q: q.change_percent or 0.0, True, limit)

    async def get_top_losers(self, limit: int = 10) -> list[str]:
        return await self._ranked(lambda q: q.change_percent or 0.0, False, limit)

    async def get_most_active(self, limit: int = 10) -> list[str]:
        return await self._ranked(lambda q: q.volume, True, limit)
