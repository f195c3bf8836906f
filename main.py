from fastapi import Depends, FastAPI, Request, Header, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from pydantic import BaseModel, ConfigDict, ValidationError
from typing import List, Optional

import json as _json
import uuid as _uuid
from datetime import datetime as _dt, timezone as _tz

from agent.model_router import AnalysisStage
from core.settings import RiskTolerance, TradingIntent
from data.errors import InvalidInputError, NoDataAvailableError
import config

AGENT_API_KEY = config.AGENT_API_KEY

app = FastAPI(title="Signal Synthesis API")

limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


def _meta() -> dict:
    return {"request_id": str(_uuid.uuid4()), "as_of": _dt.now(_tz.utc).isoformat()}


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    print(f"[VALIDATION_ERROR] path={request.url.path} method={request.method}")
    print(f"[VALIDATION_ERROR] errors={exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={
            "detail": _json.loads(_json.dumps(exc.errors(), default=str)),
            "message": "Request validation failed. Check field names and types.",
            **_meta(),
        },
    )


@app.exception_handler(_json.JSONDecodeError)
async def json_decode_exception_handler(request: Request, exc: _json.JSONDecodeError):
    print(f"[JSON_DECODE_ERROR] path={request.url.path} error={exc}")
    return JSONResponse(
        status_code=400,
        content={"detail": f"Malformed JSON: {exc}", "message": "Could not parse request body as JSON.", **_meta()},
    )


@app.exception_handler(NoDataAvailableError)
async def no_data_exception_handler(request: Request, exc: NoDataAvailableError):
    print(f"[NO_DATA] path={request.url.path} {exc}")
    return JSONResponse(
        status_code=404,
        content={"error": "no_data", "capability": exc.capability, "key": exc.key, "detail": str(exc), **_meta()},
    )


@app.exception_handler(InvalidInputError)
async def invalid_input_exception_handler(request: Request, exc: InvalidInputError):
    return JSONResponse(status_code=422, content={"error": "invalid_input", "detail": str(exc), **_meta()})


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

data_service = None
router = None
base_settings = None
_init_done = False


def _do_init():
    global data_service, router, base_settings, _init_done
    try:
        from agent.llm_models import LlmProvider
        from agent.model_router import StageModelRouter, UserModelRoutingConfig
        from agent.stage_runner import StageRunner
        from core.settings import AppSettings
        from data.cache import CacheTtlConfig
        from data.market_data_service import MarketDataService
        from data.provider_registry import ApiKeys, build_provider_bundle

        base_settings = AppSettings(
            preferred_provider=LlmProvider.from_id(config.PREFERRED_LLM_PROVIDER) or LlmProvider.OPENAI,
            model_routing=UserModelRoutingConfig.from_json(config.MODEL_ROUTING_JSON),
            use_mock_data_when_offline=config.USE_MOCK_DATA_WHEN_OFFLINE,
            always_include_mock=config.ALWAYS_INCLUDE_MOCK,
            cache_ttl_minutes=config.CACHE_TTL_MINUTES,
        )
        keys = ApiKeys(
            alpaca_key=config.ALPACA_API_KEY,
            alpaca_secret=config.ALPACA_API_SECRET,
            massive=config.MASSIVE_API_KEY,
            finnhub=config.FINNHUB_API_KEY,
            fmp=config.FMP_API_KEY,
            twelvedata=config.TWELVEDATA_API_KEY,
        )
        bundle = build_provider_bundle(
            keys,
            include_mock=base_settings.use_mock_data_when_offline,
            always_include_mock=base_settings.always_include_mock,
        )
        data_service = MarketDataService(
            bundle,
            ttl_config=CacheTtlConfig.from_minutes(**base_settings.cache_ttl_minutes),
            provider_timeout=config.PROVIDER_TIMEOUT_SECONDS,
        )
        runner = StageRunner(api_keys={
            LlmProvider.ANTHROPIC: config.ANTHROPIC_API_KEY,
            LlmProvider.OPENAI: config.OPENAI_API_KEY,
            LlmProvider.GEMINI: config.GEMINI_API_KEY,
            LlmProvider.OPENROUTER: config.OPENROUTER_API_KEY,
            LlmProvider.DEEPSEEK: config.DEEPSEEK_API_KEY,
        })
        router = StageModelRouter(runner)
        if not AGENT_API_KEY:
            print("[INIT] WARNING: AGENT_API_KEY not set, API key check disabled")
        print("[INIT] All services initialized successfully")
    except Exception as e:
        print(f"[INIT] ERROR during initialization: {e}")
        import traceback
        traceback.print_exc()
    finally:
        _init_done = True


@app.on_event("startup")
async def startup_event():
    import threading
    threading.Thread(target=_do_init, daemon=True).start()


@app.on_event("shutdown")
async def shutdown_event():
    if data_service is not None:
        await data_service.close()

# ============================================================
# API Routes
# ============================================================


async def _wait_for_init():
    import asyncio
    for _ in range(60):
        if _init_done:
            break
        await asyncio.sleep(0.5)
    if data_service is None:
        raise HTTPException(status_code=503, detail="Server is still starting up. Please try again in a moment.")


async def verify_api_key(x_api_key: Optional[str] = Header(None)):
    """Verify the API key sent in the X-API-Key header."""
    if not AGENT_API_KEY:
        return None
    if not x_api_key:
        raise HTTPException(
            status_code=401,
            detail="Missing API key. Include X-API-Key header.",
        )
    if x_api_key != AGENT_API_KEY:
        raise HTTPException(
            status_code=403,
            detail="Invalid API key.",
        )
    return x_api_key


def _settings_with(overrides: Optional[dict]):
    if not overrides:
        return base_settings
    try:
        return base_settings.with_updates(**overrides)
    except ValidationError as e:
        raise InvalidInputError(f"invalid settings: {e.errors(include_url=False)}") from e


@app.get("/")
async def root():
    """Health check: visit this URL to confirm the backend is running."""
    return {"status": "running", "message": "Signal Synthesis API is live"}


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "init_complete": _init_done,
        "data_service_loaded": data_service is not None,
        "router_loaded": router is not None,
    }


@app.get("/providers")
@limiter.limit("30/minute")
async def providers(request: Request, api_key: str = Depends(verify_api_key)):
    await _wait_for_init()
    return {**data_service.provider_status(), "cache": data_service.cache_stats()}


@app.get("/quotes")
@limiter.limit("30/minute")
async def quotes(request: Request, symbols: str, api_key: str = Depends(verify_api_key)):
    await _wait_for_init()
    wanted = [s.strip().upper() for s in symbols.split(",") if s.strip()]
    if not wanted:
        raise InvalidInputError("symbols must list at least one ticker")
    result = await data_service.get_quotes(wanted)
    return {
        "quotes": {s: q.to_dict() for s, q in result.items()},
        "missing": [s for s in dict.fromkeys(wanted) if s not in result],
        **_meta(),
    }


class ShortlistRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    symbols: List[str]
    intent: TradingIntent = TradingIntent.SWING
    risk: Optional[RiskTolerance] = None
    max_shortlist: int = 15
    settings: Optional[dict] = None


@app.post("/shortlist")
@limiter.limit("10/minute")
async def shortlist(request: Request, body: ShortlistRequest, api_key: str = Depends(verify_api_key)):
    from core.shortlist_engine import build_shortlist
    await _wait_for_init()
    settings = _settings_with(body.settings)
    plan = await build_shortlist(
        data_service,
        body.symbols,
        body.intent,
        body.risk or settings.risk_tolerance,
        body.max_shortlist,
        settings=settings,
        router=router,
    )
    return {**plan.to_dict(), **_meta()}


@app.get("/route/{stage}")
@limiter.limit("30/minute")
async def route_stage(request: Request, stage: AnalysisStage, api_key: str = Depends(verify_api_key)):
    from agent.model_router import resolve
    await _wait_for_init()
    return resolve(stage, base_settings).to_dict()


@app.get("/context")
@limiter.limit("10/minute")
async def context(request: Request, symbols: str, days: int = 30, api_key: str = Depends(verify_api_key)):
    from data.market_data_service import context_to_dict
    await _wait_for_init()
    wanted = [s.strip().upper() for s in symbols.split(",") if s.strip()]
    if not wanted:
        raise InvalidInputError("symbols must list at least one ticker")
    if len(wanted) > 10:
        raise InvalidInputError("at most 10 symbols per context request")
    ctx = await data_service.gather_context(wanted, daily_days=days)
    return {"context": context_to_dict(ctx), **_meta()}
