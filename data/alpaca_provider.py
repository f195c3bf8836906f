from datetime import datetime, timedelta, timezone

from data.capabilities import MARKET_DATA
from data.errors import ProviderUnavailableError
from data.http_provider import HttpMarketDataProvider
from data.models import DailyBar, IntradayBar, Quote


def _parse_ts(value: str) -> datetime:
    # Alpaca sends RFC 3339 with nanoseconds; trim to microseconds
    value = value.replace("Z", "+00:00")
    if "." in value:
        head, rest = value.split(".", 1)
        frac, _, tz = rest.partition("+")
        value = f"{head}.{frac[:6]}+{tz}" if tz else f"{head}.{frac[:6]}"
    return datetime.fromisoformat(value)


class AlpacaProvider(HttpMarketDataProvider):
    """Alpaca market data (IEX feed). Needs both the key id and the secret."""

    name = "alpaca"
    BASE_URL = "https://data.alpaca.markets"
    capabilities = MARKET_DATA

    def __init__(self, api_key: str, api_secret: str, feed: str = "iex", timeout: float = 10.0):
        if not api_key or not api_secret:
            raise ValueError("Alpaca requires both an API key and a secret")
        self.api_key = api_key
        self.api_secret = api_secret
        self.feed = feed
        super().__init__(timeout=timeout)

    def _default_headers(self) -> dict:
        return {
            "Accept": "application/json",
            "APCA-API-KEY-ID": self.api_key,
            "APCA-API-SECRET-KEY": self.api_secret,
        }

    async def get_quotes(self, symbols: list[str]) -> dict[str, Quote]:
        if not symbols:
            return {}
        data = await self._get("/v2/stocks/snapshots", {"symbols": ",".join(symbols), "feed": self.feed})
        if not isinstance(data, dict):
            raise ProviderUnavailableError(self.name, "snapshots returned unexpected payload")
        quotes = {}
        for symbol, snap in data.items():
            if not snap:
                continue
            trade = snap.get("latestTrade") or {}
            bar = snap.get("dailyBar") or {}
            prev = snap.get("prevDailyBar") or {}
            price = trade.get("p") or bar.get("c")
            if not price:
                continue
            change = None
            if prev.get("c"):
                change = round((price - prev["c"]) / prev["c"] * 100, 4)
            quotes[symbol] = Quote(
                symbol=symbol,
                price=float(price),
                volume=int(bar.get("v") or 0),
                timestamp=_parse_ts(trade["t"]) if trade.get("t") else datetime.now(timezone.utc),
                change_percent=change,
                source=self.name,
            )
        return quotes

    async def _bars(self, symbol: str, timeframe: str, days: int) -> list[dict]:
        start = (datetime.now(timezone.utc) - timedelta(days=days)).strftime("%Y-%m-%dT%H:%M:%SZ")
        data = await self._get(
            f"/v2/stocks/{symbol}/bars",
            {"timeframe": timeframe, "start": start, "limit": 10000, "feed": self.feed, "adjustment": "split"},
        )
        return data.get("bars") or []

    async def get_intraday(self, symbol: str, days: int) -> list[IntradayBar]:
        if days <= 0:
            return []
        return [
            IntradayBar(time=_parse_ts(b["t"]), open=b["o"], high=b["h"], low=b["l"],
                        close=b["c"], volume=int(b.get("v") or 0), source=self.name)
            for b in await self._bars(symbol, "5Min", days)
        ]

    async def get_daily(self, symbol: str, days: int) -> list[DailyBar]:
        if days <= 0:
            return []
        return [
            DailyBar(date=_parse_ts(b["t"]).date(), open=b["o"], high=b["h"], low=b["l"],
                     close=b["c"], volume=int(b.get("v") or 0), source=self.name)
            for b in await self._bars(symbol, "1Day", days)
        ]
