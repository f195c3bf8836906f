"""
The fixed set of market data capabilities.

Each capability maps to the adapter coroutine(s) that implement it. An
adapter advertises what it supports through its `capabilities` frozenset;
the registry only places an adapter in a capability chain it advertises.

    quote      get_quotes(symbols) -> {symbol: Quote}
    intraday   get_intraday(symbol, days) -> [IntradayBar]
    daily      get_daily(symbol, days) -> [DailyBar]
    profile    get_profile(symbol) -> CompanyProfile | None
    metrics    get_metrics(symbol) -> FinancialMetrics | None
    sentiment  get_sentiment(symbol) -> SentimentData | None
    search     search_symbols(query, limit) -> [SearchResult]
    screen     screen_stocks(...), get_top_gainers(limit),
               get_top_losers(limit), get_most_active(limit) -> [symbol]
"""
from enum import Enum


class Capability(str, Enum):
    QUOTE = "quote"
    INTRADAY = "intraday"
    DAILY = "daily"
    PROFILE = "profile"
    METRICS = "metrics"
    SENTIMENT = "sentiment"
    SEARCH = "search"
    SCREEN = "screen"


CAPABILITY_METHODS = {
    Capability.QUOTE: ("get_quotes",),
    Capability.INTRADAY: ("get_intraday",),
    Capability.DAILY: ("get_daily",),
    Capability.PROFILE: ("get_profile",),
    Capability.METRICS: ("get_metrics",),
    Capability.SENTIMENT: ("get_sentiment",),
    Capability.SEARCH: ("search_symbols",),
    Capability.SCREEN: ("screen_stocks", "get_top_gainers", "get_top_losers", "get_most_active"),
}

MARKET_DATA = frozenset({Capability.QUOTE, Capability.INTRADAY, Capability.DAILY})


def implements(provider, capability: Capability) -> bool:
    """True when the provider advertises the capability and has its methods."""
    if capability not in getattr(provider, "capabilities", ()):
        return False
    return all(callable(getattr(provider, m, None)) for m in CAPABILITY_METHODS[capability])
