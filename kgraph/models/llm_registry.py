"""Task models for the two generation collaborators, served via OpenRouter.

``subentity_generator`` lists a handful of entities related to one node;
``graph_extractor`` turns a whole research document into nodes and links.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from langchain_openai import ChatOpenAI

from kgraph.config import Settings
from kgraph.utils.logging import get_logger

logger = get_logger(__name__)

_APP_HEADERS = {"HTTP-Referer": "https://kgraph.local", "X-Title": "kgraph"}


@dataclass(frozen=True)
class ModelSpec:
    slug: str
    temperature: float
    purpose: str
    max_tokens: int | None = None


SUBENTITY_TASK = "subentity_generator"
EXTRACTION_TASK = "graph_extractor"

MODEL_CONFIG: dict[str, ModelSpec] = {
    SUBENTITY_TASK: ModelSpec(
        slug="google/gemini-2.5-flash-lite",
        temperature=0.4,
        purpose="List 3-4 entities related to a graph node, one 'Name (Type)' per line",
        max_tokens=512,
    ),
    EXTRACTION_TASK: ModelSpec(
        slug="google/gemini-2.5-flash",
        temperature=0.1,
        purpose="Structured knowledge-graph extraction from a research document",
    ),
}

FALLBACK_CHAINS: dict[str, list[str]] = {
    "google/gemini-2.5-flash-lite": ["openai/gpt-4.1-mini"],
    "google/gemini-2.5-flash": ["openai/gpt-4.1-mini", "anthropic/claude-sonnet-4.6"],
}


def fallback_specs(task: str) -> list[ModelSpec]:
    """Specs for a task's fallbacks: same sampling settings, different model."""
    spec = MODEL_CONFIG.get(task)
    if spec is None:
        return []
    return [
        replace(spec, slug=slug, purpose=f"Fallback for {task}")
        for slug in FALLBACK_CHAINS.get(spec.slug, [])
    ]


class LLMRegistry:
    """Builds one ChatOpenAI client per distinct (slug, sampling) pair and counts usage per task."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._slug_cache: dict[tuple, ChatOpenAI] = {}
        self._models: dict[str, ChatOpenAI] = {task: self._build_model(spec) for task, spec in MODEL_CONFIG.items()}
        self._call_stats: dict[str, dict] = {task: {"calls": 0, "tokens": 0} for task in MODEL_CONFIG}
        logger.debug("llm_registry_ready", tasks=sorted(self._models))

    def _build_model(self, spec: ModelSpec) -> ChatOpenAI:
        key = (spec.slug, spec.temperature, spec.max_tokens)
        model = self._slug_cache.get(key)
        if model is None:
            model = ChatOpenAI(
                model=spec.slug,
                openai_api_key=self._settings.OPENROUTER_API_KEY,
                openai_api_base=self._settings.OPENROUTER_BASE_URL,
                temperature=spec.temperature,
                max_tokens=spec.max_tokens,
                model_kwargs={"extra_headers": dict(_APP_HEADERS)},
            )
            self._slug_cache[key] = model
        return model

    def get_model(self, task: str) -> ChatOpenAI:
        try:
            return self._models[task]
        except KeyError:
            raise KeyError(f"No model registered for task '{task}'") from None

    def get_fallback_chain(self, task: str) -> list[ChatOpenAI]:
        return [self._build_model(spec) for spec in fallback_specs(task)]

    def record_usage(self, task: str, tokens: int) -> None:
        stats = self._call_stats.get(task)
        if stats is not None:
            stats["calls"] += 1
            stats["tokens"] += tokens

    @property
    def stats(self) -> dict[str, dict]:
        return {task: dict(counts) for task, counts in self._call_stats.items()}
