from datetime import datetime, timedelta, timezone

from data.capabilities import Capability
from data.errors import ProviderUnavailableError
from data.http_provider import HttpMarketDataProvider
from data.models import (
    CompanyProfile, DailyBar, FinancialMetrics, IntradayBar, Quote,
    SearchResult, SentimentData, sentiment_label,
)


def _num(val):
    if val is None:
        return None
    try:
        return float(val)
    except (TypeError, ValueError):
        return None


class FMPProvider(HttpMarketDataProvider):
    """
    Financial Modeling Prep API provider.
    Free tier: 250 calls/day, end-of-day data.
    Best source for profiles, TTM metrics and the native stock screener.
    """

    name = "fmp"
    BASE_URL = "https://financialmodelingprep.com/api/v3"
    V4_URL = "https://financialmodelingprep.com/api/v4"
    capabilities = frozenset(Capability)

    def __init__(self, api_key: str, timeout: float = 15.0):
        super().__init__(timeout=timeout)
        self.api_key = api_key

    def _auth_params(self) -> dict:
        return {"apikey": self.api_key}

    async def _get_list(self, path: str, params: dict | None = None, base_url: str | None = None) -> list:
        data = await self._get(path, params, base_url=base_url)
        if isinstance(data, dict) and data.get("Error Message"):
            raise ProviderUnavailableError(self.name, data["Error Message"])
        if not isinstance(data, list):
            raise ProviderUnavailableError(self.name, f"{path} returned unexpected payload")
        return data

    async def get_quotes(self, symbols: list[str]) -> dict[str, Quote]:
        if not symbols:
            return {}
        rows = await self._get_list(f"/quote/{','.join(symbols)}")
        quotes = {}
        for row in rows:
            symbol = row.get("symbol")
            price = _num(row.get("price"))
            if not symbol or price is None:
                continue
            ts = row.get("timestamp")
            quotes[symbol] = Quote(
                symbol=symbol,
                price=price,
                volume=int(row.get("volume") or 0),
                timestamp=datetime.fromtimestamp(ts, tz=timezone.utc) if ts else datetime.now(timezone.utc),
                change_percent=_num(row.get("changesPercentage")),
                source=self.name,
            )
        return quotes

    async def get_intraday(self, symbol: str, days: int) -> list[IntradayBar]:
        if days <= 0:
            return []
        end = datetime.now(timezone.utc).date()
        start = end - timedelta(days=days)
        rows = await self._get_list(
            f"/historical-chart/5min/{symbol}",
            {"from": start.isoformat(), "to": end.isoformat()},
        )
        bars = []
        for row in reversed(rows):
            try:
                bars.append(IntradayBar(
                    time=datetime.strptime(row["date"], "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc),
                    open=float(row["open"]),
                    high=float(row["high"]),
                    low=float(row["low"]),
                    close=float(row["close"]),
                    volume=int(row.get("volume") or 0),
                    source=self.name,
                ))
            except (KeyError, TypeError, ValueError):
                continue
        return bars

    async def get_daily(self, symbol: str, days: int) -> list[DailyBar]:
        if days <= 0:
            return []
        data = await self._get(f"/historical-price-full/{symbol}", {"timeseries": days})
        rows = data.get("historical", []) if isinstance(data, dict) else []
        bars = []
        for row in reversed(rows):
            try:
                bars.append(DailyBar(
                    date=datetime.strptime(row["date"], "%Y-%m-%d").date(),
                    open=float(row["open"]),
                    high=float(row["high"]),
                    low=float(row["low"]),
                    close=float(row["close"]),
                    volume=int(row.get("volume") or 0),
                    source=self.name,
                ))
            except (KeyError, TypeError, ValueError):
                continue
        return bars

    async def get_profile(self, symbol: str) -> CompanyProfile | None:
        rows = await self._get_list(f"/profile/{symbol}")
        if not rows:
            return None
        p = rows[0]
        return CompanyProfile(
            name=p.get("companyName") or symbol,
            sector=p.get("sector") or None,
            industry=p.get("industry") or None,
            description=p.get("description") or None,
            source=self.name,
        )

    async def get_metrics(self, symbol: str) -> FinancialMetrics | None:
        rows = await self._get_list(f"/key-metrics-ttm/{symbol}")
        if not rows:
            return None
        m = rows[0]
        market_cap = _num(m.get("marketCapTTM"))
        return FinancialMetrics(
            market_cap=int(market_cap) if market_cap is not None else None,
            pe_ratio=_num(m.get("peRatioTTM")),
            eps=_num(m.get("netIncomePerShareTTM")),
            dividend_yield=_num(m.get("dividendYieldTTM")),
            pb_ratio=_num(m.get("pbRatioTTM")),
            debt_to_equity=_num(m.get("debtToEquityTTM")),
            source=self.name,
        )

    async def get_sentiment(self, symbol: str) -> SentimentData | None:
        rows = await self._get_list(
            "/historical/social-sentiment", {"symbol": symbol, "page": 0}, base_url=self.V4_URL,
        )
        readings = []
        for row in rows[:24]:
            for key in ("stocktwitsSentiment", "twitterSentiment"):
                v = _num(row.get(key))
                if v is not None and v > 0:
                    readings.append(v)
        if not readings:
            return None
        # FMP reports 0..1 bullish share; rescale to -1..1
        score = round((sum(readings) / len(readings) - 0.5) * 2, 3)
        return SentimentData(score=score, label=sentiment_label(score), source=self.name)

    async def search_symbols(self, query: str, limit: int = 10) -> list[SearchResult]:
        rows = await self._get_list("/search", {"query": query, "limit": limit})
        return [
            SearchResult(symbol=r["symbol"], name=r.get("name") or r["symbol"],
                         exchange=r.get("exchangeShortName") or r.get("stockExchange"), source=self.name)
            for r in rows if r.get("symbol")
        ][:limit]

    async def screen_stocks(self, min_price: float | None = None, max_price: float | None = None,
                            min_volume: int | None = None, sector: str | None = None,
                            limit: int = 50) -> list[str]:
        params = {"limit": limit, "isActivelyTrading": "true", "country": "US"}
        if min_price is not None:
            params["priceMoreThan"] = min_price
        if max_price is not None:
            params["priceLowerThan"] = max_price
        if min_volume is not None:
            params["volumeMoreThan"] = min_volume
        if sector:
            params["sector"] = sector
        rows = await self._get_list("/stock-screener", params)
        return [r["symbol"] for r in rows if r.get("symbol")][:limit]

    async def _movers(self, kind: str, limit: int) -> list[str]:
        rows = await self._get_list(f"/stock_market/{kind}")
        return [r["symbol"] for r in rows if r.get("symbol")][:limit]

    async def get_top_gainers(self, limit: int = 10) -> list[str]:
        return await self._movers("gainers", limit)

    async def get_top_losers(self, limit: int = 10) -> list[str]:
        return await self._movers("losers", limit)

    async def get_most_active(self, limit: int = 10) -> list[str]:
        return await self._movers("actives", limit)
