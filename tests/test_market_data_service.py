import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from unittest.mock import AsyncMock, MagicMock
from data.cache import CacheTtlConfig
from data.capabilities import Capability
from data.errors import InvalidInputError, NoDataAvailableError, ProviderUnavailableError
from data.market_data_service import MarketDataService, context_to_dict
from data.mock_provider import MockMarketDataProvider
from data.models import CompanyProfile, FinancialMetrics, Quote, SearchResult, utc_now
from data.provider_registry import ApiKeys, ProviderBundle, build_provider_bundle


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _provider(name, **methods):
    p = MagicMock()
    p.name = name
    p.capabilities = frozenset(Capability)
    for method, value in methods.items():
        setattr(p, method, value)
    return p


def _quote(symbol, source="live", price=50.0):
    return Quote(symbol=symbol, price=price, volume=2_000_000, timestamp=utc_now(), change_percent=1.0, source=source)


def _service(chains, clock=None):
    return MarketDataService(ProviderBundle.from_chains(chains), CacheTtlConfig(), clock=clock or FakeClock())


@pytest.mark.asyncio
async def test_quotes_are_cached_until_ttl():
    clock = FakeClock()
    get_quotes = AsyncMock(side_effect=lambda syms: {s: _quote(s) for s in syms})
    svc = _service({Capability.QUOTE: [_provider("live", get_quotes=get_quotes)]}, clock)

    await svc.get_quotes(["AAPL"])
    await svc.get_quotes(["aapl"])
    assert get_quotes.await_count == 1

    clock.now += 61
    await svc.get_quotes(["AAPL"])
    assert get_quotes.await_count == 2


@pytest.mark.asyncio
async def test_only_uncached_symbols_are_fetched():
    get_quotes = AsyncMock(side_effect=lambda syms: {s: _quote(s) for s in syms})
    svc = _service({Capability.QUOTE: [_provider("live", get_quotes=get_quotes)]})

    await svc.get_quotes(["AAPL"])
    result = await svc.get_quotes(["AAPL", "MSFT"])

    assert list(result) == ["AAPL", "MSFT"]
    get_quotes.assert_awaited_with(["MSFT"])


@pytest.mark.asyncio
async def test_unpriced_symbols_are_absent_not_zero():
    get_quotes = AsyncMock(return_value={"AAPL": _quote("AAPL")})
    svc = _service({Capability.QUOTE: [_provider("live", get_quotes=get_quotes)]})
    result = await svc.get_quotes(["AAPL", "ZZZZ"])
    assert "ZZZZ" not in result


@pytest.mark.asyncio
async def test_all_providers_down_raises_no_data():
    failing = AsyncMock(side_effect=ProviderUnavailableError("live", "down", status=500))
    svc = _service({Capability.QUOTE: [_provider("live", get_quotes=failing)]})
    with pytest.raises(NoDataAvailableError):
        await svc.get_quotes(["AAPL"])


@pytest.mark.asyncio
async def test_invalid_inputs_fail_fast():
    svc = _service({})
    with pytest.raises(InvalidInputError):
        await svc.get_quotes(["  "])
    with pytest.raises(InvalidInputError):
        await svc.get_daily("AAPL", 0)
    with pytest.raises(InvalidInputError):
        await svc.search_symbols("")
    with pytest.raises(InvalidInputError):
        await svc.screen_stocks(min_price=10, max_price=5)


@pytest.mark.asyncio
async def test_daily_bars_cached_per_days():
    mock = MockMarketDataProvider()
    svc = _service({Capability.DAILY: [mock]})
    bars_30 = await svc.get_daily("AAPL", 30)
    bars_60 = await svc.get_daily("AAPL", 60)
    assert len(bars_30) == 30
    assert len(bars_60) == 60
    assert svc.cache_stats()["sizes"]["daily"] == 2


@pytest.mark.asyncio
async def test_profile_merges_until_complete():
    first = AsyncMock(return_value=CompanyProfile(name="AAPL", sector="Technology", source="fmp"))
    second = AsyncMock(return_value=CompanyProfile(name="Apple Inc.", description="Phones", source="finnhub"))
    third = AsyncMock()
    svc = _service({Capability.PROFILE: [
        _provider("fmp", get_profile=first),
        _provider("finnhub", get_profile=second),
        _provider("massive", get_profile=third),
    ]})

    profile = await svc.get_profile("AAPL")

    assert profile.name == "Apple Inc."
    assert profile.sector == "Technology"
    assert profile.description == "Phones"
    third.assert_not_awaited()


@pytest.mark.asyncio
async def test_metrics_keep_partial_result_when_chain_ends():
    only = AsyncMock(return_value=FinancialMetrics(market_cap=10, source="massive"))
    svc = _service({Capability.METRICS: [_provider("massive", get_metrics=only)]})
    metrics = await svc.get_metrics("AAPL")
    assert metrics.market_cap == 10
    assert metrics.pe_ratio is None


@pytest.mark.asyncio
async def test_sentiment_none_falls_through_to_mock():
    empty = AsyncMock(return_value=None)
    svc = _service({Capability.SENTIMENT: [_provider("fmp", get_sentiment=empty), MockMarketDataProvider()]})
    sentiment = await svc.get_sentiment("AAPL")
    assert sentiment.source == "mock"
    assert sentiment.label == "Neutral"


@pytest.mark.asyncio
async def test_movers_and_search_with_mock():
    svc = MarketDataService(build_provider_bundle(ApiKeys()))
    gainers = await svc.get_top_gainers(3)
    losers = await svc.get_top_losers(3)
    active = await svc.get_most_active(5)
    found = await svc.search_symbols("apple")
    assert len(gainers) == 3 and len(losers) == 3 and len(active) == 5
    assert set(gainers).isdisjoint(losers)
    assert found[0].symbol == "AAPL"


@pytest.mark.asyncio
async def test_search_first_provider_with_results_wins():
    fmp = AsyncMock(return_value=[SearchResult("AAPL", "Apple Inc.", source="fmp")])
    massive = AsyncMock(return_value=[SearchResult("AAPL", "Apple Inc.", source="massive"),
                                      SearchResult("AAPLX", "Apple X", source="massive")])
    svc = _service({Capability.SEARCH: [_provider("fmp", search_symbols=fmp),
                                        _provider("massive", search_symbols=massive)]})
    found = await svc.search_symbols("AAPL")
    assert [r.symbol for r in found] == ["AAPL"]
    assert found[0].source == "fmp"
    massive.assert_not_called()


@pytest.mark.asyncio
async def test_search_falls_through_empty_and_trims_to_limit():
    fmp = AsyncMock(return_value=[])
    massive = AsyncMock(return_value=[SearchResult(f"AB{i}", f"AB {i}", source="massive") for i in range(5)])
    svc = _service({Capability.SEARCH: [_provider("fmp", search_symbols=fmp),
                                        _provider("massive", search_symbols=massive)]})
    found = await svc.search_symbols("ab", limit=3)
    assert [r.symbol for r in found] == ["AB0", "AB1", "AB2"]
    massive.assert_awaited_once_with("ab", 3)


@pytest.mark.asyncio
async def test_screen_first_provider_with_results_wins():
    fmp = AsyncMock(return_value=["AAPL", "MSFT"])
    massive = AsyncMock(return_value=["NVDA"])
    svc = _service({Capability.SCREEN: [_provider("fmp", screen_stocks=fmp),
                                        _provider("massive", screen_stocks=massive)]})
    assert await svc.screen_stocks(min_price=5, limit=10) == ["AAPL", "MSFT"]
    massive.assert_not_called()


@pytest.mark.asyncio
async def test_gather_context_turns_no_data_into_none():
    mock = MockMarketDataProvider()
    svc = _service({
        Capability.QUOTE: [mock],
        Capability.PROFILE: [mock],
        Capability.METRICS: [mock],
        Capability.DAILY: [mock],
    })
    ctx = await svc.gather_context(["AAPL", "MSFT"], daily_days=5)

    assert set(ctx) == {"AAPL", "MSFT"}
    assert ctx["AAPL"]["quote"].is_synthetic
    assert ctx["AAPL"]["sentiment"] is None
    assert len(ctx["MSFT"]["daily"]) == 5

    as_dict = context_to_dict(ctx)
    assert as_dict["AAPL"]["sentiment"] is None
    assert as_dict["AAPL"]["quote"]["source"] == "mock"


@pytest.mark.asyncio
async def test_clear_cache_and_stats():
    mock = MockMarketDataProvider()
    svc = _service({Capability.QUOTE: [mock]})
    await svc.get_quotes(["AAPL"])
    await svc.get_quotes(["AAPL"])
    stats = svc.cache_stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["sizes"]["quote"] == 1
    svc.clear_cache()
    assert svc.cache_stats()["sizes"]["quote"] == 0


def test_provider_status_lists_chains():
    svc = MarketDataService(build_provider_bundle(ApiKeys()))
    status = svc.provider_status()
    assert status["chains"]["quote"] == ["mock"]
    assert status["blacklisted"] == []
