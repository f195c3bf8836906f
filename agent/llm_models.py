"""
LLM provider and model catalogue.

Everything here is pure string/enum logic: given a model identifier, work out
which vendor serves it and which request dialect that vendor speaks. The
router and the stage runner both lean on these helpers, so they must stay
side-effect free and deterministic.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class LlmApiFormat(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI_CHAT = "openai_chat"
    OPENAI_RESPONSES = "openai_responses"
    GOOGLE_GEMINI = "google_gemini"
    OPENAI_COMPATIBLE = "openai_compatible"


# Unrecognized model ids are sent through the generic OpenAI-compatible shape.
DEFAULT_API_FORMAT = LlmApiFormat.OPENAI_COMPATIBLE


@dataclass(frozen=True)
class ProviderInfo:
    display_name: str
    base_url: str
    api_format: LlmApiFormat
    requires_api_key: bool = True


class LlmProvider(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GEMINI = "gemini"
    MINIMAX = "minimax"
    OPENROUTER = "openrouter"
    TOGETHER = "together"
    GROQ = "groq"
    DEEPSEEK = "deepseek"
    SILICONFLOW = "siliconflow"
    OLLAMA = "ollama"
    LOCALAI = "localai"
    VLLM = "vllm"
    TGI = "tgi"
    SGLANG = "sglang"
    CUSTOM = "custom"

    @property
    def info(self) -> ProviderInfo:
        return PROVIDERS[self]

    @property
    def base_url(self) -> str:
        return self.info.base_url

    @property
    def api_format(self) -> LlmApiFormat:
        return self.info.api_format

    @property
    def requires_api_key(self) -> bool:
        return self.info.requires_api_key

    def supports_web_tools(self) -> bool:
        return self in (LlmProvider.OPENAI, LlmProvider.GEMINI)

    @classmethod
    def from_id(cls, provider_id: str | None) -> Optional["LlmProvider"]:
        if not provider_id:
            return None
        key = provider_id.strip().lower()
        if key == "google":
            return cls.GEMINI
        for provider in cls:
            if provider.value == key or provider.name.lower() == key:
                return provider
        return None


PROVIDERS: dict[LlmProvider, ProviderInfo] = {
    LlmProvider.ANTHROPIC: ProviderInfo("Anthropic", "https://api.anthropic.com", LlmApiFormat.ANTHROPIC),
    LlmProvider.OPENAI: ProviderInfo("OpenAI", "https://api.openai.com/v1", LlmApiFormat.OPENAI_RESPONSES),
    LlmProvider.GEMINI: ProviderInfo("Google Gemini", "https://generativelanguage.googleapis.com", LlmApiFormat.GOOGLE_GEMINI),
    LlmProvider.MINIMAX: ProviderInfo("MiniMax", "https://api.minimaxi.com/v1", LlmApiFormat.OPENAI_COMPATIBLE),
    LlmProvider.OPENROUTER: ProviderInfo("OpenRouter", "https://openrouter.ai/api/v1", LlmApiFormat.OPENAI_COMPATIBLE),
    LlmProvider.TOGETHER: ProviderInfo("Together AI", "https://api.together.xyz/v1", LlmApiFormat.OPENAI_COMPATIBLE),
    LlmProvider.GROQ: ProviderInfo("Groq", "https://api.groq.com/openai/v1", LlmApiFormat.OPENAI_COMPATIBLE),
    LlmProvider.DEEPSEEK: ProviderInfo("DeepSeek", "https://api.deepseek.com", LlmApiFormat.OPENAI_COMPATIBLE),
    LlmProvider.SILICONFLOW: ProviderInfo("SiliconFlow", "https://api.siliconflow.com/v1", LlmApiFormat.OPENAI_COMPATIBLE),
    LlmProvider.OLLAMA: ProviderInfo("Ollama", "http://localhost:11434/v1", LlmApiFormat.OPENAI_COMPATIBLE, False),
    LlmProvider.LOCALAI: ProviderInfo("LocalAI", "http://localhost:8080/v1", LlmApiFormat.OPENAI_COMPATIBLE, False),
    LlmProvider.VLLM: ProviderInfo("vLLM", "http://localhost:8000/v1", LlmApiFormat.OPENAI_COMPATIBLE, False),
    LlmProvider.TGI: ProviderInfo("TGI", "http://localhost:8080/v1", LlmApiFormat.OPENAI_COMPATIBLE, False),
    LlmProvider.SGLANG: ProviderInfo("SGLang", "http://localhost:30000/v1", LlmApiFormat.OPENAI_COMPATIBLE, False),
    LlmProvider.CUSTOM: ProviderInfo("Custom", "http://localhost:8000/v1", LlmApiFormat.OPENAI_COMPATIBLE),
}


class ReasoningDepth(str, Enum):
    NONE = "none"
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXTRA = "extra"


class OutputLength(str, Enum):
    SHORT = "short"
    STANDARD = "standard"
    FULL = "full"


class Verbosity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ToolsMode(str, Enum):
    NONE = "none"
    WEB_SEARCH = "web_search"
    GOOGLE_SEARCH = "google_search"


@dataclass(frozen=True)
class LlmModel:
    provider: LlmProvider
    model_id: str
    label: str
    low_cost: bool = False
    api_format: LlmApiFormat | None = None

    @property
    def resolved_api_format(self) -> LlmApiFormat:
        return self.api_format or self.provider.api_format


_R = LlmApiFormat.OPENAI_RESPONSES

KNOWN_MODELS: tuple[LlmModel, ...] = (
    LlmModel(LlmProvider.ANTHROPIC, "claude-opus-4-6", "Claude Opus 4.6"),
    LlmModel(LlmProvider.ANTHROPIC, "claude-sonnet-4-5", "Claude Sonnet 4.5"),
    LlmModel(LlmProvider.ANTHROPIC, "claude-haiku-4-5", "Claude Haiku 4.5", low_cost=True),
    LlmModel(LlmProvider.OPENAI, "gpt-5.2", "GPT-5.2", api_format=_R),
    LlmModel(LlmProvider.OPENAI, "gpt-5-mini", "GPT-5 Mini", low_cost=True, api_format=_R),
    LlmModel(LlmProvider.OPENAI, "gpt-5-nano", "GPT-5 Nano", low_cost=True, api_format=_R),
    LlmModel(LlmProvider.OPENAI, "gpt-5.1", "GPT-5.1", low_cost=True, api_format=_R),
    LlmModel(LlmProvider.OPENAI, "gpt-5.2-codex", "GPT-5.2 Codex", api_format=_R),
    LlmModel(LlmProvider.OPENAI, "gpt-5.1-codex-mini", "GPT-5.1 Codex Mini", low_cost=True, api_format=_R),
    LlmModel(LlmProvider.OPENAI, "computer-use-preview", "Computer Use Preview", api_format=_R),
    LlmModel(LlmProvider.GEMINI, "gemini-3-pro-preview-09-2026", "Gemini 3 Pro"),
    LlmModel(LlmProvider.GEMINI, "gemini-3-flash-preview-09-2026", "Gemini 3 Flash", low_cost=True),
    LlmModel(LlmProvider.GEMINI, "gemini-2.5-pro", "Gemini 2.5 Pro"),
    LlmModel(LlmProvider.GEMINI, "gemini-2.5-flash", "Gemini 2.5 Flash", low_cost=True),
    LlmModel(LlmProvider.MINIMAX, "M2", "MiniMax M2"),
    LlmModel(LlmProvider.MINIMAX, "M2-Pro", "MiniMax M2 Pro"),
    LlmModel(LlmProvider.OLLAMA, "llama3.3:latest", "Llama 3.3 8B", low_cost=True),
    LlmModel(LlmProvider.OLLAMA, "qwen2.5:latest", "Qwen 2.5 7B", low_cost=True),
    LlmModel(LlmProvider.OLLAMA, "deepseek-r1:latest", "DeepSeek R1"),
    LlmModel(LlmProvider.OPENROUTER, "anthropic/claude-sonnet-4-5", "Claude Sonnet 4.5 (OpenRouter)"),
    LlmModel(LlmProvider.OPENROUTER, "openai/gpt-5.2", "GPT-5.2 (OpenRouter)"),
    LlmModel(LlmProvider.OPENROUTER, "meta-llama/llama-3.3-70b-instruct", "Llama 3.3 70B (OpenRouter)"),
    LlmModel(LlmProvider.OPENROUTER, "deepseek/deepseek-r1", "DeepSeek R1 (OpenRouter)"),
    LlmModel(LlmProvider.TOGETHER, "meta-llama/Llama-3.3-70B-Instruct-Turbo", "Llama 3.3 70B Turbo (Together)"),
    LlmModel(LlmProvider.GROQ, "openai/gpt-oss-120b", "GPT-OSS 120B (Groq)"),
    LlmModel(LlmProvider.GROQ, "llama-3.3-70b-versatile", "Llama 3.3 70B (Groq)"),
    LlmModel(LlmProvider.DEEPSEEK, "deepseek-chat", "DeepSeek Chat", low_cost=True),
    LlmModel(LlmProvider.DEEPSEEK, "deepseek-reasoner", "DeepSeek Reasoner"),
    LlmModel(LlmProvider.SILICONFLOW, "Qwen/Qwen2.5-72B-Instruct", "Qwen 2.5 72B (SiliconFlow)"),
    LlmModel(LlmProvider.SILICONFLOW, "deepseek-ai/DeepSeek-V3", "DeepSeek V3 (SiliconFlow)"),
)

_MODELS_BY_ID = {m.model_id.lower(): m for m in KNOWN_MODELS}

MODEL_ALIASES = {
    "gpt-5": "gpt-5.2",
    "gpt-5.2-mini": "gpt-5-mini",
    "gpt-5.1-mini": "gpt-5-mini",
    "gpt-5.2-nano": "gpt-5-nano",
    "gpt-5.1-nano": "gpt-5-nano",
    "gpt-4o": "gpt-5-mini",
    "gemini-3-flash": "gemini-3-flash-preview-09-2026",
    "gemini-3-pro": "gemini-3-pro-preview-09-2026",
}

_OPENROUTER_PREFIXES = ("anthropic/", "openai/", "meta-llama/", "deepseek/")
_OPENAI_PREFIXES = ("gpt-", "o1", "o3", "o4", "computer-use", "chatgpt")
_REASONING_PREFIXES = ("o1", "o3", "o4", "gpt-5", "computer-use")
_REASONING_FRAGMENTS = ("gpt-5", "-o1", "-o3", "-o4", "o1-", "o3-", "o4-")


def normalize_model_id(model_id: str | None) -> str:
    """Resolve aliases and casing; unknown ids come back trimmed but otherwise untouched."""
    trimmed = (model_id or "").strip()
    if not trimmed:
        return ""
    canonical = re.sub(r"[_\s]+", "-", trimmed.lower())
    if canonical in MODEL_ALIASES:
        return MODEL_ALIASES[canonical]
    known = _MODELS_BY_ID.get(canonical)
    return known.model_id if known else trimmed


def find_model(model_id: str | None) -> LlmModel | None:
    return _MODELS_BY_ID.get(normalize_model_id(model_id).lower())


def models_for_provider(provider: LlmProvider) -> list[LlmModel]:
    return [m for m in KNOWN_MODELS if m.provider == provider]


def infer_provider(model_id: str | None) -> LlmProvider | None:
    """Best guess at the vendor for a model id, or None if nothing matches."""
    normalized = normalize_model_id(model_id)
    if not normalized:
        return None
    known = find_model(normalized)
    if known:
        return known.provider
    lower = normalized.lower()
    if lower.startswith(_OPENROUTER_PREFIXES):
        return LlmProvider.OPENROUTER
    if ":" in lower:
        return LlmProvider.OLLAMA
    if "claude" in lower:
        return LlmProvider.ANTHROPIC
    if "gemini" in lower:
        return LlmProvider.GEMINI
    if "minimax" in lower or lower.startswith("m2"):
        return LlmProvider.MINIMAX
    if lower.startswith(_OPENAI_PREFIXES):
        return LlmProvider.OPENAI
    return None


def is_reasoning_family(model_id: str | None) -> bool:
    lower = normalize_model_id(model_id).lower()
    return lower.startswith(_REASONING_PREFIXES) or any(f in lower for f in _REASONING_FRAGMENTS)


def is_legacy_openai_model(model_id: str | None) -> bool:
    lower = normalize_model_id(model_id).lower()
    if "gpt-3.5" in lower:
        return True
    return "gpt-4" in lower and "gpt-4o" not in lower and "gpt-4-turbo" not in lower


def supports_custom_temperature(model_id: str | None) -> bool:
    return not is_reasoning_family(model_id)


def supports_native_reasoning_control(provider: LlmProvider, model_id: str | None) -> bool:
    lower = normalize_model_id(model_id).lower()
    if provider == LlmProvider.OPENAI:
        return is_reasoning_family(lower)
    if provider == LlmProvider.GEMINI:
        return lower.startswith("gemini-3")
    return False


def detect_api_format(model_id: str | None) -> LlmApiFormat:
    """
    Classify a model id into exactly one request dialect.

    Known models use their catalogue entry. Otherwise the inferred vendor
    decides: OpenAI ids go to the Responses API except legacy gpt-3.5/gpt-4
    chat models, other vendors use their own dialect, and anything
    unrecognized falls back to the OpenAI-compatible shape.
    """
    known = find_model(model_id)
    if known:
        return known.resolved_api_format
    provider = infer_provider(model_id)
    if provider is None:
        return DEFAULT_API_FORMAT
    if provider == LlmProvider.OPENAI:
        return LlmApiFormat.OPENAI_CHAT if is_legacy_openai_model(model_id) else LlmApiFormat.OPENAI_RESPONSES
    return provider.api_format


def uses_openai_responses_api(model_id: str | None) -> bool:
    return detect_api_format(model_id) == LlmApiFormat.OPENAI_RESPONSES
