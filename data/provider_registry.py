"""
Provider registry and fallback aggregator.

Which adapters serve which capability is decided once, from the credentials
on hand, when the bundle is built. At call time the aggregator walks a
capability's chain strictly in order: the first adapter that answers with
data wins and later adapters are never called. A failed adapter (error,
timeout, empty answer) passes the request to the next one. When the chain is
exhausted the call raises NoDataAvailableError, never an empty default.

Caller cancellation (asyncio.CancelledError) is not a provider failure and
propagates straight out without trying the next adapter.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

from data.alpaca_provider import AlpacaProvider
from data.capabilities import Capability, implements
from data.errors import NoDataAvailableError, ProviderUnavailableError
from data.finnhub_provider import FinnhubProvider
from data.fmp_provider import FMPProvider
from data.massive_provider import MassiveProvider
from data.mock_provider import MockMarketDataProvider
from data.twelvedata_provider import TwelveDataProvider

FORBIDDEN_COOLDOWN_SECONDS = 10 * 60
DEFAULT_PROVIDER_TIMEOUT = 10.0


def _present(value: str | None) -> bool:
    return value is not None and value.strip() != ""


@dataclass(frozen=True)
class ApiKeys:
    alpaca_key: str | None = None
    alpaca_secret: str | None = None
    massive: str | None = None
    finnhub: str | None = None
    fmp: str | None = None
    twelvedata: str | None = None

    def has_alpaca(self) -> bool:
        return _present(self.alpaca_key) and _present(self.alpaca_secret)

    def has_any(self) -> bool:
        return bool(self.present_sources())

    def present_sources(self) -> tuple[str, ...]:
        """Names of sources whose required credentials are all present."""
        sources = []
        if self.has_alpaca():
            sources.append("alpaca")
        for name in ("massive", "twelvedata", "finnhub", "fmp"):
            if _present(getattr(self, name)):
                sources.append(name)
        return tuple(sources)

    def __repr__(self):
        return f"ApiKeys(sources={list(self.present_sources())})"


SOURCE_FACTORIES: dict[str, Callable[[ApiKeys], Any]] = {
    "alpaca": lambda k: AlpacaProvider(k.alpaca_key.strip(), k.alpaca_secret.strip()),
    "massive": lambda k: MassiveProvider(k.massive.strip()),
    "twelvedata": lambda k: TwelveDataProvider(k.twelvedata.strip()),
    "finnhub": lambda k: FinnhubProvider(k.finnhub.strip()),
    "fmp": lambda k: FMPProvider(k.fmp.strip()),
}

# Real-time feeds first for prices; fundamentals-heavy sources first for company data.
CAPABILITY_PRIORITY: dict[Capability, tuple[str, ...]] = {
    Capability.QUOTE: ("alpaca", "massive", "twelvedata", "finnhub", "fmp"),
    Capability.INTRADAY: ("alpaca", "massive", "twelvedata", "finnhub", "fmp"),
    Capability.DAILY: ("alpaca", "massive", "twelvedata", "finnhub", "fmp"),
    Capability.PROFILE: ("fmp", "finnhub", "massive", "twelvedata", "alpaca"),
    Capability.METRICS: ("fmp", "finnhub", "massive", "twelvedata"),
    Capability.SENTIMENT: ("fmp", "finnhub"),
    Capability.SCREEN: ("fmp", "massive"),
    Capability.SEARCH: ("fmp", "massive", "finnhub"),
}


@dataclass(frozen=True)
class ProviderBundle:
    chains: dict = field(default_factory=dict)

    def providers_for(self, capability: Capability) -> tuple:
        return self.chains.get(capability, ())

    def is_empty(self) -> bool:
        return all(not chain for chain in self.chains.values())

    def describe(self) -> dict[str, list[str]]:
        return {cap.value: [p.name for p in self.providers_for(cap)] for cap in Capability}

    @classmethod
    def from_chains(cls, chains: dict) -> "ProviderBundle":
        return cls(chains={Capability(c): tuple(ps) for c, ps in chains.items()})


def build_provider_bundle(keys: ApiKeys, include_mock: bool = True, always_include_mock: bool = False,
                          factories: dict[str, Callable[[ApiKeys], Any]] | None = None) -> ProviderBundle:
    """
    Build the per-capability fallback chains for a set of credentials.

    A credentialed source is included only when every credential it needs is
    present and non-blank. The offline generator is appended to a chain that
    has no credentialed adapter (when include_mock), or to every chain when
    always_include_mock is set.
    """
    factories = factories or SOURCE_FACTORIES
    present = set(keys.present_sources())
    adapters = {name: factories[name](keys) for name in present if name in factories}
    mock = MockMarketDataProvider() if (include_mock or always_include_mock) else None

    chains = {}
    for capability, order in CAPABILITY_PRIORITY.items():
        chain = [adapters[name] for name in order if name in adapters and implements(adapters[name], capability)]
        if mock is not None and (always_include_mock or not chain):
            chain.append(mock)
        chains[capability] = tuple(chain)

    print(f"[INIT] Providers configured: {', '.join(sorted(adapters)) or 'none'}"
          f"{' (+mock fallback)' if mock is not None else ''}")
    return ProviderBundle(chains=chains)


class ProviderStatusTracker:
    """
    Per-provider counters plus a temporary blacklist.
    A provider that answers 403 is skipped until its cooldown passes.
    """

    def __init__(self, cooldown_seconds: float = FORBIDDEN_COOLDOWN_SECONDS, clock: Callable[[], float] = time.time):
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._blacklist: dict[str, float] = {}
        self._stats: dict[str, dict] = {}

    def _entry(self, name: str) -> dict:
        return self._stats.setdefault(name, {
            "attempted": 0, "success": 0, "failed": 0, "skipped": 0, "last_error": None,
        })

    def is_blacklisted(self, name: str) -> bool:
        until = self._blacklist.get(name)
        if until is None:
            return False
        if self._clock() >= until:
            del self._blacklist[name]
            print(f"[PROVIDER] {name} cooldown over, back in rotation")
            return False
        return True

    def blacklist(self, name: str, seconds: float | None = None):
        self._blacklist[name] = self._clock() + (seconds if seconds is not None else self.cooldown_seconds)
        print(f"[PROVIDER] {name} blocked (403), skipping for {seconds or self.cooldown_seconds:.0f}s")

    def record_attempt(self, name: str):
        self._entry(name)["attempted"] += 1

    def record_success(self, name: str):
        self._entry(name)["success"] += 1

    def record_failure(self, name: str, error: str):
        entry = self._entry(name)
        entry["failed"] += 1
        entry["last_error"] = error[:200]

    def record_skip(self, name: str):
        self._entry(name)["skipped"] += 1

    def blacklisted(self) -> list[str]:
        return [name for name in list(self._blacklist) if self.is_blacklisted(name)]

    def snapshot(self) -> dict:
        return {
            "providers": {name: dict(s) for name, s in self._stats.items()},
            "blacklisted": self.blacklisted(),
        }


def _has_data(result) -> bool:
    if result is None:
        return False
    if isinstance(result, (list, tuple, dict, set)):
        return len(result) > 0
    return True


class ProviderAggregator:
    def __init__(self, bundle: ProviderBundle, status: ProviderStatusTracker | None = None,
                 timeout: float = DEFAULT_PROVIDER_TIMEOUT):
        self.bundle = bundle
        self.status = status or ProviderStatusTracker()
        self.timeout = timeout

    def _eligible(self, capability: Capability) -> list:
        chain = self.bundle.providers_for(capability)
        eligible = []
        for provider in chain:
            if self.status.is_blacklisted(provider.name):
                self.status.record_skip(provider.name)
                continue
            eligible.append(provider)
        if chain and not eligible:
            print(f"[FALLBACK] All {capability.value} providers are blacklisted")
        return eligible

    async def _attempt(self, provider, capability: Capability, call: Callable[[Any], Awaitable], failures: list):
        """
        One adapter call. Returns (ok, result). Provider failures are recorded
        and reported as ok=False; cancellation is left to propagate.
        """
        name = provider.name
        self.status.record_attempt(name)
        try:
            result = await asyncio.wait_for(call(provider), timeout=self.timeout)
        except asyncio.TimeoutError:
            msg = f"{name}: timed out after {self.timeout:.0f}s"
        except ProviderUnavailableError as e:
            msg = str(e)
            if e.is_forbidden:
                self.status.blacklist(name)
        except Exception as e:
            msg = f"{name}: unexpected {type(e).__name__}: {e}"
        else:
            return True, result
        failures.append(msg)
        self.status.record_failure(name, msg)
        print(f"[FALLBACK] {capability.value} via {name} failed: {msg}")
        return False, None

    async def fetch(self, capability: Capability, call: Callable[[Any], Awaitable], key: str = "",
                    is_valid: Callable[[Any], bool] = _has_data):
        """Return the first non-empty result in chain order."""
        failures: list[str] = []
        for provider in self._eligible(capability):
            ok, result = await self._attempt(provider, capability, call, failures)
            if not ok:
                continue
            if is_valid(result):
                self.status.record_success(provider.name)
                return result
            failures.append(f"{provider.name}: empty")
        raise NoDataAvailableError(capability.value, key, failures)

    async def fetch_partial(self, capability: Capability, keys: Iterable[str],
                          call: Callable[[Any, list[str]], Awaitable[dict]]) -> dict:
        """
        Batched variant: each adapter is asked only for the keys still
        missing. Returns whatever was found; raises only when nothing was.
        """
        keys = list(dict.fromkeys(keys))
        if not keys:
            return {}
        missing = list(keys)
        found: dict = {}
        failures: list[str] = []
        for provider in self._eligible(capability):
            if not missing:
                break
            ask = list(missing)
            ok, result = await self._attempt(provider, capability, lambda p: call(p, ask), failures)
            if not ok:
                continue
            got = {k: v for k, v in (result or {}).items() if k in missing}
            if not got:
                failures.append(f"{provider.name}: empty")
                continue
            self.status.record_success(provider.name)
            found.update(got)
            missing = [k for k in missing if k not in got]
            if missing:
                print(f"[FALLBACK] {capability.value}: {len(got)} from {provider.name}, {len(missing)} still missing")
        if not found:
            raise NoDataAvailableError(capability.value, ",".join(keys), failures)
        return found

    async def fetch_merged(self, capability: Capability, call: Callable[[Any], Awaitable], key: str,
                           merge: Callable[[Any, Any], Any], complete: Callable[[Any], bool]):
        """
        Record variant: keep asking providers and fill gaps field by field
        until `complete` holds or the chain ends.
        """
        merged = None
        failures: list[str] = []
        for provider in self._eligible(capability):
            ok, result = await self._attempt(provider, capability, call, failures)
            if not ok:
                continue
            if result is None:
                failures.append(f"{provider.name}: empty")
                continue
            self.status.record_success(provider.name)
            merged = result if merged is None else merge(merged, result)
            if complete(merged):
                break
        if merged is None:
            raise NoDataAvailableError(capability.value, key, failures)
        return merged

