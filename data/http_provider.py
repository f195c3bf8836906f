import httpx

from data.errors import ProviderUnavailableError


class HttpMarketDataProvider:
    """
    Shared plumbing for REST market data adapters.

    Subclasses set `name`, `BASE_URL` and `capabilities`, and supply auth via
    _auth_params() or _default_headers(). Any transport error, non-200
    status or unreadable body becomes ProviderUnavailableError so the
    aggregator can move on to the next provider.
    """

    name = "http"
    BASE_URL = ""
    capabilities: frozenset = frozenset()

    def __init__(self, timeout: float = 10.0):
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    def _default_headers(self) -> dict:
        return {"Accept": "application/json"}

    def _auth_params(self) -> dict:
        return {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers=self._default_headers(),
                timeout=self._timeout,
                follow_redirects=True,
            )
        return self._client

    async def _get(self, path: str, params: dict | None = None, base_url: str | None = None) -> dict | list:
        query = dict(params or {})
        query.update(self._auth_params())
        url = f"{base_url or self.BASE_URL}{path}"
        try:
            client = await self._get_client()
            resp = await client.get(url, params=query)
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(self.name, f"{path} request failed: {e}") from e

        if resp.status_code == 429:
            print(f"[PROVIDER] {self.name} rate limited on {path}")
        if resp.status_code != 200:
            raise ProviderUnavailableError(self.name, f"{path} failed", status=resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise ProviderUnavailableError(self.name, f"{path} returned invalid JSON") from e

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"
