"""
Error taxonomy for the market data layer.

  ProviderUnavailableError  one adapter failed; the aggregator falls through
                            to the next adapter in the chain
  NoDataAvailableError      every adapter in a chain failed or came back
                            empty; surfaced to the caller as "no data"
  InvalidInputError         malformed arguments; raised before any work

Caller cancellation is plain asyncio.CancelledError and is never treated as
a provider failure.
"""


class ProviderUnavailableError(Exception):
    def __init__(self, provider: str, message: str, status: int | None = None):
        self.provider = provider
        self.status = status
        super().__init__(f"{provider}: {message}" + (f" (HTTP {status})" if status else ""))

    @property
    def is_forbidden(self) -> bool:
        return self.status == 403


class NoDataAvailableError(LookupError):
    def __init__(self, capability: str, key: str = "", failures: list[str] | None = None):
        self.capability = capability
        self.key = key
        self.failures = list(failures or [])
        detail = f" for {key}" if key else ""
        tried = f" (tried: {'; '.join(self.failures)})" if self.failures else ""
        super().__init__(f"No {capability} data available{detail}{tried}")


class InvalidInputError(ValueError):
    pass
