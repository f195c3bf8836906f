import asyncio
import time
from datetime import datetime, timezone

import finnhub

from data.capabilities import Capability
from data.errors import ProviderUnavailableError
from data.models import (
    CompanyProfile, DailyBar, FinancialMetrics, IntradayBar, Quote,
    SearchResult, SentimentData, sentiment_label,
)

SECONDS_PER_DAY = 86400


class FinnhubProvider:
    """
    Quotes, candles, profiles, basic financials, news sentiment and symbol
    lookup via Finnhub's free API.

    The official client is synchronous, so every call runs in a worker
    thread to keep the event loop free.
    """

    name = "finnhub"
    capabilities = frozenset({
        Capability.QUOTE, Capability.INTRADAY, Capability.DAILY, Capability.PROFILE,
        Capability.METRICS, Capability.SENTIMENT, Capability.SEARCH,
    })

    def __init__(self, api_key: str, client=None):
        self.client = client or finnhub.Client(api_key=api_key)

    async def _call(self, method: str, *args, **kwargs):
        try:
            return await asyncio.to_thread(getattr(self.client, method), *args, **kwargs)
        except finnhub.FinnhubAPIException as e:
            raise ProviderUnavailableError(self.name, f"{method} failed: {e}", status=getattr(e, "status_code", None)) from e
        except finnhub.FinnhubRequestException as e:
            raise ProviderUnavailableError(self.name, f"{method} request failed: {e}") from e
        except Exception as e:
            raise ProviderUnavailableError(self.name, f"{method} failed: {e}") from e

    async def get_quotes(self, symbols: list[str]) -> dict[str, Quote]:
        quotes = {}
        for symbol in symbols:
            data = await self._call("quote", symbol)
            price = data.get("c")
            ts = data.get("t")
            if not price or price <= 0 or not ts:
                continue
            quotes[symbol] = Quote(
                symbol=symbol,
                price=float(price),
                # the quote endpoint has no volume field
                volume=int(data.get("v") or 0),
                timestamp=datetime.fromtimestamp(ts, tz=timezone.utc),
                change_percent=data.get("dp"),
                source=self.name,
            )
        return quotes

    async def _candles(self, symbol: str, days: int, resolution: str) -> dict:
        now = int(time.time())
        start = now - max(days, 1) * SECONDS_PER_DAY
        data = await self._call("stock_candles", symbol, resolution, start, now)
        if data.get("s") != "ok":
            return {}
        return data

    def _rows(self, data: dict):
        count = min(len(data.get(k) or []) for k in ("t", "o", "h", "l", "c"))
        volumes = data.get("v") or []
        for i in range(count):
            yield (data["t"][i], data["o"][i], data["h"][i], data["l"][i], data["c"][i],
                   int(volumes[i]) if i < len(volumes) else 0)

    async def get_intraday(self, symbol: str, days: int) -> list[IntradayBar]:
        if days <= 0:
            return []
        data = await self._candles(symbol, days, "5")
        if not data:
            return []
        return [
            IntradayBar(time=datetime.fromtimestamp(t, tz=timezone.utc), open=o, high=h, low=l,
                        close=c, volume=v, source=self.name)
            for t, o, h, l, c, v in self._rows(data)
        ]

    async def get_daily(self, symbol: str, days: int) -> list[DailyBar]:
        if days <= 0:
            return []
        data = await self._candles(symbol, days, "D")
        if not data:
            return []
        return [
            DailyBar(date=datetime.fromtimestamp(t, tz=timezone.utc).date(), open=o, high=h, low=l,
                     close=c, volume=v, source=self.name)
            for t, o, h, l, c, v in self._rows(data)
        ]

    async def get_profile(self, symbol: str) -> CompanyProfile | None:
        data = await self._call("company_profile2", symbol=symbol)
        if not data or not data.get("name"):
            return None
        return CompanyProfile(
            name=data["name"],
            sector=None,
            industry=data.get("finnhubIndustry"),
            description=None,
            source=self.name,
        )

    async def get_metrics(self, symbol: str) -> FinancialMetrics | None:
        data = await self._call("company_basic_financials", symbol, "all")
        metric = (data or {}).get("metric")
        if not metric:
            return None
        market_cap = metric.get("marketCapitalization")
        dividend = metric.get("currentDividendYieldTTM")
        debt_equity = metric.get("totalDebt/totalEquityAnnual")
        return FinancialMetrics(
            # Finnhub reports market cap in millions and yields in percent
            market_cap=int(market_cap * 1_000_000) if market_cap is not None else None,
            pe_ratio=metric.get("peTTM"),
            eps=metric.get("epsTTM"),
            dividend_yield=dividend / 100.0 if dividend is not None else None,
            pb_ratio=metric.get("pbAnnual"),
            debt_to_equity=debt_equity,
            source=self.name,
        )

    async def get_sentiment(self, symbol: str) -> SentimentData | None:
        data = await self._call("news_sentiment", symbol)
        sentiment = (data or {}).get("sentiment") or {}
        bullish = sentiment.get("bullishPercent")
        bearish = sentiment.get("bearishPercent")
        if bullish is None or bearish is None:
            return None
        score = round(float(bullish) - float(bearish), 3)
        return SentimentData(score=score, label=sentiment_label(score), source=self.name)

    async def search_symbols(self, query: str, limit: int = 10) -> list[SearchResult]:
        data = await self._call("symbol_lookup", query)
        return [
            SearchResult(symbol=r["symbol"], name=r.get("description") or r["symbol"], source=self.name)
            for r in (data or {}).get("result", []) if r.get("symbol")
        ][:limit]
