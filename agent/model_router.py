"""
Stage -> model routing.

resolve() turns (pipeline stage, settings) into one concrete selection:
which provider, which model id, which request dialect, and the execution
knobs for that stage. It is pure: no network, no globals, same answer for
the same inputs. Running the selection is StageRunner's job.
"""
import json
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from agent.llm_models import (
    LlmApiFormat, LlmProvider, OutputLength, ReasoningDepth, ToolsMode, Verbosity,
    detect_api_format, infer_provider, normalize_model_id, supports_custom_temperature,
)


class AnalysisStage(str, Enum):
    SHORTLIST = "shortlist"
    ENRICHMENT = "enrichment"
    VERDICT = "verdict"
    REASONING = "reasoning"
    RSS_VERIFY = "rss_verify"


LIGHT_STAGES = {AnalysisStage.RSS_VERIFY}

# (main, light) model per provider, used when a stage names no model.
DEFAULT_MODELS = {
    LlmProvider.OPENAI: ("gpt-5.2", "gpt-5-mini"),
    LlmProvider.ANTHROPIC: ("claude-sonnet-4-5", "claude-haiku-4-5"),
    LlmProvider.GEMINI: ("gemini-2.5-pro", "gemini-2.5-flash"),
    LlmProvider.MINIMAX: ("M2", "M2"),
    LlmProvider.OPENROUTER: ("openai/gpt-5.2", "meta-llama/llama-3.3-70b-instruct"),
    LlmProvider.TOGETHER: ("meta-llama/Llama-3.3-70B-Instruct-Turbo", "meta-llama/Llama-3.3-70B-Instruct-Turbo"),
    LlmProvider.GROQ: ("llama-3.3-70b-versatile", "llama-3.3-70b-versatile"),
    LlmProvider.DEEPSEEK: ("deepseek-reasoner", "deepseek-chat"),
    LlmProvider.SILICONFLOW: ("deepseek-ai/DeepSeek-V3", "Qwen/Qwen2.5-72B-Instruct"),
    LlmProvider.OLLAMA: ("llama3.3:latest", "llama3.3:latest"),
    LlmProvider.LOCALAI: ("localai-default-model", "localai-default-model"),
    LlmProvider.VLLM: ("vllm-default-model", "vllm-default-model"),
    LlmProvider.TGI: ("tgi-default-model", "tgi-default-model"),
    LlmProvider.SGLANG: ("sglang-default-model", "sglang-default-model"),
    LlmProvider.CUSTOM: ("custom-model", "custom-model"),
}


class StageModelConfig(BaseModel):
    """Per-stage routing entry. provider/model left empty mean "use the global choice"."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    provider: Optional[LlmProvider] = None
    model: Optional[str] = None
    tools: ToolsMode = ToolsMode.NONE
    temperature: float = 0.2
    max_output_tokens: int = 2000
    timeout_seconds: float = 30.0


STAGE_DEFAULTS = {
    AnalysisStage.SHORTLIST: StageModelConfig(temperature=0.2, max_output_tokens=1000),
    AnalysisStage.VERDICT: StageModelConfig(temperature=0.2, max_output_tokens=1500),
    AnalysisStage.ENRICHMENT: StageModelConfig(temperature=0.3, max_output_tokens=2000),
    AnalysisStage.REASONING: StageModelConfig(
        tools=ToolsMode.WEB_SEARCH, temperature=0.2, max_output_tokens=2000, timeout_seconds=60.0,
    ),
    AnalysisStage.RSS_VERIFY: StageModelConfig(temperature=0.1, max_output_tokens=500),
}


class UserModelRoutingConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    by_stage: dict[AnalysisStage, StageModelConfig] = {}

    def config_for(self, stage: AnalysisStage) -> StageModelConfig:
        return self.by_stage.get(stage) or STAGE_DEFAULTS[stage]

    def to_json(self) -> str:
        return json.dumps({
            stage.value: cfg.model_dump(mode="json", exclude_none=True)
            for stage, cfg in self.by_stage.items()
        })

    @classmethod
    def from_json(cls, text: str | None) -> "UserModelRoutingConfig":
        """Parse stored routing JSON. Anything unreadable yields the defaults."""
        if not text or not text.strip():
            return cls()
        try:
            root = json.loads(text)
            if not isinstance(root, dict):
                raise ValueError("routing config must be a JSON object")
            known = {s.value for s in AnalysisStage}
            return cls.model_validate({"by_stage": {k: v for k, v in root.items() if k in known}})
        except ValueError as e:
            print(f"[ROUTER] Ignoring malformed routing config: {e}")
            return cls()


@dataclass(frozen=True)
class StageModelSelection:
    stage: AnalysisStage
    provider: LlmProvider
    model_id: str
    api_dialect: LlmApiFormat
    reasoning_depth: ReasoningDepth
    output_length: OutputLength
    verbosity: Verbosity
    tools: ToolsMode = ToolsMode.NONE
    temperature: Optional[float] = None
    max_output_tokens: int = 2000
    timeout_seconds: float = 30.0

    def to_dict(self) -> dict:
        out = asdict(self)
        for key, value in out.items():
            if isinstance(value, Enum):
                out[key] = value.value
        return out


def _pick_provider(stage_cfg: StageModelConfig, settings) -> LlmProvider:
    if stage_cfg.provider is not None:
        return stage_cfg.provider
    if stage_cfg.model:
        inferred = infer_provider(stage_cfg.model)
        if inferred is not None:
            return inferred
    return settings.preferred_provider


def _pick_model(stage: AnalysisStage, stage_cfg: StageModelConfig, provider: LlmProvider) -> str:
    if stage_cfg.model and stage_cfg.model.strip():
        return normalize_model_id(stage_cfg.model)
    main, light = DEFAULT_MODELS[provider]
    return light if stage in LIGHT_STAGES else main


def _pick_dialect(provider: LlmProvider, model_id: str) -> LlmApiFormat:
    # The endpoint decides the wire shape when the model belongs to someone else
    # (e.g. an OpenAI model served through OpenRouter).
    if infer_provider(model_id) == provider:
        return detect_api_format(model_id)
    return provider.api_format


def _pick_tools(stage: AnalysisStage, stage_cfg: StageModelConfig, provider: LlmProvider) -> ToolsMode:
    if stage != AnalysisStage.REASONING or stage_cfg.tools == ToolsMode.NONE:
        return ToolsMode.NONE
    if not provider.supports_web_tools():
        return ToolsMode.NONE
    if provider == LlmProvider.GEMINI and stage_cfg.tools == ToolsMode.WEB_SEARCH:
        return ToolsMode.GOOGLE_SEARCH
    return stage_cfg.tools


def resolve(stage: AnalysisStage, settings) -> StageModelSelection:
    """
    Resolve a stage against the caller's settings.

    Provider: the stage's own provider, else the vendor its model id points
    at, else the global preferred provider. Model: the stage's model, else
    that provider's default. Depth, output length and verbosity are copied
    from settings untouched.
    """
    stage = AnalysisStage(stage)
    stage_cfg = settings.model_routing.config_for(stage)
    provider = _pick_provider(stage_cfg, settings)
    model_id = _pick_model(stage, stage_cfg, provider)
    return StageModelSelection(
        stage=stage,
        provider=provider,
        model_id=model_id,
        api_dialect=_pick_dialect(provider, model_id),
        reasoning_depth=settings.reasoning_depth,
        output_length=settings.output_length,
        verbosity=settings.verbosity,
        tools=_pick_tools(stage, stage_cfg, provider),
        temperature=stage_cfg.temperature if supports_custom_temperature(model_id) else None,
        max_output_tokens=stage_cfg.max_output_tokens,
        timeout_seconds=stage_cfg.timeout_seconds,
    )


class StageModelRouter:
    """Resolves a stage and hands the request to a runner."""

    def __init__(self, runner=None):
        self.runner = runner

    def resolve(self, stage: AnalysisStage, settings) -> StageModelSelection:
        return resolve(stage, settings)

    async def run(self, stage: AnalysisStage, settings, request):
        if self.runner is None:
            raise RuntimeError("StageModelRouter has no runner configured")
        selection = self.resolve(stage, settings)
        print(f"[ROUTER] {selection.stage.value} -> {selection.provider.value}/{selection.model_id} "
              f"dialect={selection.api_dialect.value} tools={selection.tools.value} depth={selection.reasoning_depth.value}")
        try:
            return await self.runner.run(selection, request)
        except Exception as e:
            print(f"[ROUTER] {selection.stage.value} failed on {selection.provider.value}/{selection.model_id}: {e}")
            raise
