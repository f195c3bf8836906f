import threading
import time
from datetime import datetime, timezone

from data.capabilities import Capability
from data.errors import ProviderUnavailableError
from data.http_provider import HttpMarketDataProvider
from data.models import CompanyProfile, DailyBar, FinancialMetrics, IntradayBar, Quote


def _num(val):
    try:
        return float(val) if val not in (None, "") else None
    except (TypeError, ValueError):
        return None


class TwelveDataProvider(HttpMarketDataProvider):
    name = "twelvedata"
    BASE_URL = "https://api.twelvedata.com"
    capabilities = frozenset({
        Capability.QUOTE, Capability.INTRADAY, Capability.DAILY,
        Capability.PROFILE, Capability.METRICS,
    })

    def __init__(self, api_key: str, max_per_minute: int = 8, clock=time.time):
        super().__init__(timeout=10.0)
        self.api_key = api_key
        self._rate_lock = threading.Lock()
        self._call_times = []
        self._max_per_minute = max_per_minute
        self._clock = clock

    def _auth_params(self) -> dict:
        return {"apikey": self.api_key}

    def _check_rate_limit(self) -> bool:
        with self._rate_lock:
            now = self._clock()
            self._call_times = [t for t in self._call_times if now - t < 60]
            if len(self._call_times) >= self._max_per_minute:
                return False
            self._call_times.append(now)
            return True

    async def _request(self, path: str, params: dict) -> dict:
        if not self._check_rate_limit():
            print(f"[TwelveData] Rate limit reached ({self._max_per_minute}/min), skipping {path}")
            raise ProviderUnavailableError(self.name, "local rate limit reached", status=429)
        data = await self._get(path, params)
        if isinstance(data, dict) and data.get("status") == "error":
            code = data.get("code", 0)
            msg = data.get("message", "unknown")
            if code == 401 or "api_key" in msg.lower():
                raise ProviderUnavailableError(self.name, f"auth error: {msg}", status=401)
            if code == 429 or "minute" in msg.lower() or "credit" in msg.lower():
                raise ProviderUnavailableError(self.name, f"rate limit: {msg}", status=429)
            raise ProviderUnavailableError(self.name, msg, status=code or None)
        return data

    def _to_quote(self, symbol: str, row: dict) -> Quote | None:
        price = _num(row.get("close"))
        if price is None:
            return None
        ts = row.get("timestamp")
        return Quote(
            symbol=symbol,
            price=price,
            volume=int(_num(row.get("volume")) or 0),
            timestamp=datetime.fromtimestamp(int(ts), tz=timezone.utc) if ts else datetime.now(timezone.utc),
            change_percent=_num(row.get("percent_change")),
            source=self.name,
        )

    async def get_quotes(self, symbols: list[str]) -> dict[str, Quote]:
        if not symbols:
            return {}
        data = await self._request("/quote", {"symbol": ",".join(symbols)})
        # single-symbol requests come back unwrapped
        rows = {symbols[0]: data} if len(symbols) == 1 else data
        quotes = {}
        for symbol, row in rows.items():
            if not isinstance(row, dict) or row.get("status") == "error":
                continue
            quote = self._to_quote(symbol, row)
            if quote:
                quotes[symbol] = quote
        return quotes

    async def _series(self, symbol: str, interval: str, size: int) -> list[dict]:
        data = await self._request("/time_series", {"symbol": symbol, "interval": interval, "outputsize": str(size)})
        return list(reversed(data.get("values") or []))

    async def get_intraday(self, symbol: str, days: int) -> list[IntradayBar]:
        if days <= 0:
            return []
        bars = []
        for v in await self._series(symbol, "5min", days * 78):
            try:
                bars.append(IntradayBar(
                    time=datetime.strptime(v["datetime"], "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc),
                    open=float(v["open"]), high=float(v["high"]), low=float(v["low"]),
                    close=float(v["close"]), volume=int(float(v.get("volume", 0))), source=self.name,
                ))
            except (KeyError, TypeError, ValueError):
                continue
        return bars

    async def get_daily(self, symbol: str, days: int) -> list[DailyBar]:
        if days <= 0:
            return []
        bars = []
        for v in await self._series(symbol, "1day", days):
            try:
                bars.append(DailyBar(
                    date=datetime.strptime(v["datetime"], "%Y-%m-%d").date(),
                    open=float(v["open"]), high=float(v["high"]), low=float(v["low"]),
                    close=float(v["close"]), volume=int(float(v.get("volume", 0))), source=self.name,
                ))
            except (KeyError, TypeError, ValueError):
                continue
        return bars

    async def get_profile(self, symbol: str) -> CompanyProfile | None:
        data = await self._request("/profile", {"symbol": symbol})
        if not data.get("name"):
            return None
        return CompanyProfile(
            name=data["name"],
            sector=data.get("sector") or None,
            industry=data.get("industry") or None,
            description=data.get("description") or None,
            source=self.name,
        )

    async def get_metrics(self, symbol: str) -> FinancialMetrics | None:
        data = await self._request("/statistics", {"symbol": symbol})
        stats = data.get("statistics") or {}
        if not stats:
            return None
        valuation = stats.get("valuations_metrics") or {}
        income = (stats.get("financials") or {}).get("income_statement") or {}
        dividends = stats.get("dividends_and_splits") or {}
        market_cap = _num(valuation.get("market_capitalization"))
        return FinancialMetrics(
            market_cap=int(market_cap) if market_cap is not None else None,
            pe_ratio=_num(valuation.get("trailing_pe")),
            eps=_num(income.get("diluted_eps_ttm")),
            dividend_yield=_num(dividends.get("trailing_annual_dividend_yield")),
            pb_ratio=_num(valuation.get("price_to_book_mrq")),
            source=self.name,
        )
