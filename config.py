import os


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        print(f"[CONFIG] {name}={raw!r} is not an integer, using {default}")
        return default


# Market data providers
FINNHUB_API_KEY = os.getenv("FINNHUB_API_KEY")
FMP_API_KEY = os.getenv("FMP_API_KEY")
MASSIVE_API_KEY = os.getenv("MASSIVE_API_KEY") or os.getenv("POLYGON_API_KEY")
TWELVEDATA_API_KEY = os.getenv("TWELVEDATA_API_KEY")
ALPACA_API_KEY = os.getenv("ALPACA_API_KEY")
ALPACA_API_SECRET = os.getenv("ALPACA_API_SECRET")

# LLM providers
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
DEEPSEEK_API_KEY = os.getenv("DEEPSEEK_API_KEY")
PREFERRED_LLM_PROVIDER = os.getenv("PREFERRED_LLM_PROVIDER", "openai")
MODEL_ROUTING_JSON = os.getenv("MODEL_ROUTING_JSON")

# API access
AGENT_API_KEY = os.getenv("AGENT_API_KEY")

# Data layer switches
USE_MOCK_DATA_WHEN_OFFLINE = _bool_env("USE_MOCK_DATA_WHEN_OFFLINE", True)
ALWAYS_INCLUDE_MOCK = _bool_env("ALWAYS_INCLUDE_MOCK", False)
PROVIDER_TIMEOUT_SECONDS = _int_env("PROVIDER_TIMEOUT_SECONDS", 10)

CACHE_TTL_MINUTES = {
    "quote": _int_env("CACHE_TTL_QUOTE_MINUTES", 1),
    "intraday": _int_env("CACHE_TTL_INTRADAY_MINUTES", 10),
    "daily": _int_env("CACHE_TTL_DAILY_MINUTES", 1440),
    "profile": _int_env("CACHE_TTL_PROFILE_MINUTES", 1440),
    "metrics": _int_env("CACHE_TTL_METRICS_MINUTES", 1440),
    "sentiment": _int_env("CACHE_TTL_SENTIMENT_MINUTES", 30),
}
