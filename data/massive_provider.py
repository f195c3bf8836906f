from datetime import datetime, timedelta, timezone

from data.capabilities import Capability
from data.errors import ProviderUnavailableError
from data.http_provider import HttpMarketDataProvider
from data.models import CompanyProfile, DailyBar, FinancialMetrics, IntradayBar, Quote, SearchResult


def _from_nanos(ns) -> datetime:
    return datetime.fromtimestamp(ns / 1e9, tz=timezone.utc)


def _from_millis(ms) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


class MassiveProvider(HttpMarketDataProvider):
    """
    Massive (formerly Polygon.io) REST API.
    Snapshots for quotes and movers, aggregates for bars, and the reference
    tickers endpoint for profiles, market cap, search and a plain ticker list.
    """

    name = "massive"
    BASE_URL = "https://api.polygon.io"
    capabilities = frozenset({
        Capability.QUOTE, Capability.INTRADAY, Capability.DAILY, Capability.PROFILE,
        Capability.METRICS, Capability.SEARCH, Capability.SCREEN,
    })

    def __init__(self, api_key: str, timeout: float = 10.0):
        super().__init__(timeout=timeout)
        self.api_key = api_key

    def _auth_params(self) -> dict:
        return {"apiKey": self.api_key}

    async def get_quotes(self, symbols: list[str]) -> dict[str, Quote]:
        if not symbols:
            return {}
        data = await self._get(
            "/v2/snapshot/locale/us/markets/stocks/tickers", {"tickers": ",".join(symbols)},
        )
        quotes = {}
        for t in data.get("tickers") or []:
            symbol = t.get("ticker")
            day = t.get("day") or {}
            last = t.get("lastTrade") or {}
            price = last.get("p") or day.get("c")
            if not symbol or not price:
                continue
            updated = last.get("t") or t.get("updated")
            quotes[symbol] = Quote(
                symbol=symbol,
                price=float(price),
                volume=int(day.get("v") or 0),
                timestamp=_from_nanos(updated) if updated else datetime.now(timezone.utc),
                change_percent=t.get("todaysChangePerc"),
                source=self.name,
            )
        return quotes

    async def _aggs(self, symbol: str, multiplier: int, timespan: str, days: int) -> list[dict]:
        end = datetime.now(timezone.utc).date()
        start = end - timedelta(days=days)
        data = await self._get(
            f"/v2/aggs/ticker/{symbol}/range/{multiplier}/{timespan}/{start.isoformat()}/{end.isoformat()}",
            {"adjusted": "true", "sort": "asc", "limit": 50000},
        )
        return data.get("results") or []

    async def get_intraday(self, symbol: str, days: int) -> list[IntradayBar]:
        if days <= 0:
            return []
        return [
            IntradayBar(time=_from_millis(r["t"]), open=r["o"], high=r["h"], low=r["l"],
                        close=r["c"], volume=int(r.get("v") or 0), source=self.name)
            for r in await self._aggs(symbol, 5, "minute", days)
        ]

    async def get_daily(self, symbol: str, days: int) -> list[DailyBar]:
        if days <= 0:
            return []
        return [
            DailyBar(date=_from_millis(r["t"]).date(), open=r["o"], high=r["h"], low=r["l"],
                     close=r["c"], volume=int(r.get("v") or 0), source=self.name)
            for r in await self._aggs(symbol, 1, "day", days)
        ]

    async def _details(self, symbol: str) -> dict:
        data = await self._get(f"/v3/reference/tickers/{symbol}")
        return data.get("results") or {}

    async def get_profile(self, symbol: str) -> CompanyProfile | None:
        details = await self._details(symbol)
        if not details.get("name"):
            return None
        return CompanyProfile(
            name=details["name"],
            sector=details.get("sic_description") or None,
            industry=details.get("sic_description") or None,
            description=details.get("description") or None,
            source=self.name,
        )

    async def get_metrics(self, symbol: str) -> FinancialMetrics | None:
        details = await self._details(symbol)
        market_cap = details.get("market_cap")
        if market_cap is None:
            return None
        return FinancialMetrics(market_cap=int(market_cap), source=self.name)

    async def search_symbols(self, query: str, limit: int = 10) -> list[SearchResult]:
        data = await self._get(
            "/v3/reference/tickers", {"search": query, "active": "true", "market": "stocks", "limit": limit},
        )
        return [
            SearchResult(symbol=r["ticker"], name=r.get("name") or r["ticker"],
                         exchange=r.get("primary_exchange"), source=self.name)
            for r in data.get("results") or [] if r.get("ticker")
        ][:limit]

    async def screen_stocks(self, min_price: float | None = None, max_price: float | None = None,
                            min_volume: int | None = None, sector: str | None = None,
                            limit: int = 50) -> list[str]:
        # no server-side price or volume filters on this plan; returns the active list
        data = await self._get(
            "/v3/reference/tickers", {"market": "stocks", "active": "true", "limit": limit},
        )
        return [r["ticker"] for r in data.get("results") or [] if r.get("ticker")][:limit]

    async def _movers(self, direction: str, limit: int) -> list[str]:
        data = await self._get(f"/v2/snapshot/locale/us/markets/stocks/{direction}")
        return [t["ticker"] for t in data.get("tickers") or [] if t.get("ticker")][:limit]

    async def get_top_gainers(self, limit: int = 10) -> list[str]:
        return await self._movers("gainers", limit)

    async def get_top_losers(self, limit: int = 10) -> list[str]:
        return await self._movers("losers", limit)

    async def get_most_active(self, limit: int = 10) -> list[str]:
        raise ProviderUnavailableError(self.name, "most-active list not offered")
