import asyncio
import time as _time
from typing import Callable

from data.cache import CacheTtlConfig, TTLCache
from data.capabilities import Capability
from data.errors import InvalidInputError, NoDataAvailableError
from data.models import CompanyProfile, FinancialMetrics, Quote, merge_metrics, merge_profiles, record_to_dict
from data.provider_registry import ProviderAggregator, ProviderBundle, ProviderStatusTracker

MAX_SYMBOLS_PER_REQUEST = 100
SEARCH_CACHE_KEY = "search"


def _normalize_symbol(symbol) -> str:
    if not isinstance(symbol, str) or not symbol.strip():
        raise InvalidInputError(f"invalid symbol: {symbol!r}")
    return symbol.strip().upper()


def _check_days(days) -> int:
    if not isinstance(days, int) or isinstance(days, bool) or days <= 0:
        raise InvalidInputError(f"days must be a positive integer, got {days!r}")
    return days


class MarketDataService:
    """
    Unified interface for all market data.
    Callers talk to THIS, never directly to an adapter.

    Every read goes cache first, then the capability's fallback chain. Each
    data kind has its own TTLCache so quotes can expire in a minute while
    daily bars live for a day.
    """

    def __init__(self, bundle: ProviderBundle, ttl_config: CacheTtlConfig | None = None,
                 clock: Callable[[], float] = _time.time, provider_timeout: float = 10.0,
                 status: ProviderStatusTracker | None = None):
        self.bundle = bundle
        self.ttl_config = ttl_config or CacheTtlConfig()
        self.aggregator = ProviderAggregator(
            bundle, status=status or ProviderStatusTracker(clock=clock), timeout=provider_timeout,
        )
        self._caches = {
            kind: TTLCache(self.ttl_config.ttl_for(kind), clock=clock)
            for kind in CacheTtlConfig.KINDS
        }
        # Search and screener lists follow the quote TTL.
        self._caches["lists"] = TTLCache(self.ttl_config.quote, clock=clock)
        self._hits = 0
        self._misses = 0

    def _cache(self, kind: str) -> TTLCache:
        return self._caches[kind]

    def _cached(self, kind: str, key: str):
        value = self._cache(kind).get(key)
        if value is None:
            self._misses += 1
        else:
            self._hits += 1
        return value

    async def get_quotes(self, symbols: list[str]) -> dict[str, Quote]:
        """
        Quotes for as many of `symbols` as any provider can price.
        Symbols nobody could price are simply absent from the result; raises
        NoDataAvailableError only when none could be priced at all.
        """
        if isinstance(symbols, str):
            symbols = [symbols]
        wanted = list(dict.fromkeys(_normalize_symbol(s) for s in symbols))
        if len(wanted) > MAX_SYMBOLS_PER_REQUEST:
            raise InvalidInputError(f"at most {MAX_SYMBOLS_PER_REQUEST} symbols per request")
        if not wanted:
            return {}

        cache = self._cache("quote")
        result = {}
        missing = []
        for symbol in wanted:
            quote = self._cached("quote", symbol)
            if quote is None:
                missing.append(symbol)
            else:
                result[symbol] = quote

        if missing:
            try:
                fetched = await self.aggregator.fetch_partial(
                    Capability.QUOTE, missing, lambda p, syms: p.get_quotes(syms),
                )
            except NoDataAvailableError:
                if not result:
                    raise
                fetched = {}
            for symbol, quote in fetched.items():
                cache.put(symbol, quote)
                result[symbol] = quote
            unpriced = [s for s in missing if s not in fetched]
            if unpriced:
                print(f"[FALLBACK] No quote from any provider for: {', '.join(unpriced)}")
        return {s: result[s] for s in wanted if s in result}

    async def get_quote(self, symbol: str) -> Quote:
        symbol = _normalize_symbol(symbol)
        quotes = await self.get_quotes([symbol])
        return quotes[symbol]

    async def _bars(self, kind: str, capability: Capability, method: str, symbol: str, days: int) -> list:
        symbol = _normalize_symbol(symbol)
        days = _check_days(days)
        key = f"{symbol}:{days}"
        cached = self._cached(kind, key)
        if cached is not None:
            return cached
        bars = await self.aggregator.fetch(
            capability, lambda p: getattr(p, method)(symbol, days), key=symbol,
        )
        self._cache(kind).put(key, bars)
        return bars

    async def get_intraday(self, symbol: str, days: int = 1) -> list:
        return await self._bars("intraday", Capability.INTRADAY, "get_intraday", symbol, days)

    async def get_daily(self, symbol: str, days: int = 120) -> list:
        return await self._bars("daily", Capability.DAILY, "get_daily", symbol, days)

    async def get_profile(self, symbol: str) -> CompanyProfile:
        """Company profile, gap-filled across providers until sector and description are known."""
        symbol = _normalize_symbol(symbol)
        cached = self._cached("profile", symbol)
        if cached is not None:
            return cached
        profile = await self.aggregator.fetch_merged(
            Capability.PROFILE,
            lambda p: p.get_profile(symbol),
            key=symbol,
            merge=lambda base, extra: merge_profiles(base, extra, symbol),
            complete=lambda p: p.is_complete,
        )
        self._cache("profile").put(symbol, profile)
        return profile

    async def get_metrics(self, symbol: str) -> FinancialMetrics:
        """Key metrics, gap-filled until market cap, P/E and EPS are all known."""
        symbol = _normalize_symbol(symbol)
        cached = self._cached("metrics", symbol)
        if cached is not None:
            return cached
        metrics = await self.aggregator.fetch_merged(
            Capability.METRICS,
            lambda p: p.get_metrics(symbol),
            key=symbol,
            merge=merge_metrics,
            complete=lambda m: m.has_critical_fields,
        )
        self._cache("metrics").put(symbol, metrics)
        return metrics

    async def get_sentiment(self, symbol: str):
        symbol = _normalize_symbol(symbol)
        cached = self._cached("sentiment", symbol)
        if cached is not None:
            return cached
        sentiment = await self.aggregator.fetch(
            Capability.SENTIMENT, lambda p: p.get_sentiment(symbol), key=symbol,
        )
        self._cache("sentiment").put(symbol, sentiment)
        return sentiment

    async def search_symbols(self, query: str, limit: int = 10) -> list:
        if not isinstance(query, str) or not query.strip():
            raise InvalidInputError("search query must not be blank")
        if limit <= 0:
            raise InvalidInputError(f"limit must be positive, got {limit}")
        query = query.strip()
        key = f"{SEARCH_CACHE_KEY}:{query.upper()}:{limit}"
        cached = self._cached("lists", key)
        if cached is not None:
            return cached
        results = await self.aggregator.fetch(
            Capability.SEARCH, lambda p: p.search_symbols(query, limit), key=query,
        )
        results = list(results)[:limit]
        self._cache("lists").put(key, results)
        return results

    async def screen_stocks(self, min_price: float | None = None, max_price: float | None = None,
                            min_volume: int | None = None, sector: str | None = None,
                            limit: int = 50) -> list[str]:
        if limit <= 0:
            raise InvalidInputError(f"limit must be positive, got {limit}")
        if min_price is not None and max_price is not None and min_price > max_price:
            raise InvalidInputError("min_price is above max_price")
        key = f"screen:{min_price}:{max_price}:{min_volume}:{sector}:{limit}"
        cached = self._cached("lists", key)
        if cached is not None:
            return cached
        symbols = await self.aggregator.fetch(
            Capability.SCREEN,
            lambda p: p.screen_stocks(min_price=min_price, max_price=max_price,
                                      min_volume=min_volume, sector=sector, limit=limit),
            key="screener",
        )
        symbols = list(symbols)[:limit]
        self._cache("lists").put(key, symbols)
        return symbols

    async def _movers(self, method: str, limit: int) -> list[str]:
        if limit <= 0:
            raise InvalidInputError(f"limit must be positive, got {limit}")
        key = f"{method}:{limit}"
        cached = self._cached("lists", key)
        if cached is not None:
            return cached
        symbols = await self.aggregator.fetch(
            Capability.SCREEN, lambda p: getattr(p, method)(limit), key=method,
        )
        symbols = list(symbols)[:limit]
        self._cache("lists").put(key, symbols)
        return symbols

    async def get_top_gainers(self, limit: int = 10) -> list[str]:
        return await self._movers("get_top_gainers", limit)

    async def get_top_losers(self, limit: int = 10) -> list[str]:
        return await self._movers("get_top_losers", limit)

    async def get_most_active(self, limit: int = 10) -> list[str]:
        return await self._movers("get_most_active", limit)

    async def gather_context(self, symbols: list[str], daily_days: int = 30) -> dict:
        """
        Fan out quote/profile/metrics/sentiment/daily lookups for several
        symbols at once. Each symbol's chains still fall back sequentially;
        only distinct symbols and capabilities run concurrently.
        A lookup with no data comes back as None instead of failing the batch.
        """
        daily_days = _check_days(daily_days)
        symbols = list(dict.fromkeys(_normalize_symbol(s) for s in symbols))
        if not symbols:
            return {}

        async def _or_none(coro):
            try:
                return await coro
            except NoDataAvailableError:
                return None

        quotes_task = _or_none(self.get_quotes(symbols))
        per_symbol = []
        for symbol in symbols:
            per_symbol.append(asyncio.gather(
                _or_none(self.get_profile(symbol)),
                _or_none(self.get_metrics(symbol)),
                _or_none(self.get_sentiment(symbol)),
                _or_none(self.get_daily(symbol, daily_days)),
            ))
        quotes, *details = await asyncio.gather(quotes_task, *per_symbol)
        quotes = quotes or {}

        context = {}
        for symbol, (profile, metrics, sentiment, daily) in zip(symbols, details):
            context[symbol] = {
                "quote": quotes.get(symbol),
                "profile": profile,
                "metrics": metrics,
                "sentiment": sentiment,
                "daily": daily,
            }
        return context

    def clear_cache(self):
        for cache in self._caches.values():
            cache.clear()
        print("[CACHE] All market data caches cleared")

    def cache_stats(self) -> dict:
        total = self._hits + self._misses
        return {
            "sizes": {kind: cache.size for kind, cache in self._caches.items()},
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 3) if total else 0.0,
            "ttl_seconds": {kind: self.ttl_config.ttl_for(kind) for kind in CacheTtlConfig.KINDS},
        }

    def provider_status(self) -> dict:
        return {
            "chains": self.bundle.describe(),
            **self.aggregator.status.snapshot(),
        }

    async def close(self):
        seen = set()
        for capability in Capability:
            for provider in self.bundle.providers_for(capability):
                if id(provider) in seen:
                    continue
                seen.add(id(provider))
                closer = getattr(provider, "close", None)
                if closer is not None:
                    await closer()


def context_to_dict(context: dict) -> dict:
    """JSON-friendly copy of gather_context() output."""
    out = {}
    for symbol, parts in context.items():
        out[symbol] = {
            name: (None if value is None
                   else [record_to_dict(r) for r in value] if isinstance(value, list)
                   else record_to_dict(value))
            for name, value in parts.items()
        }
    return out
