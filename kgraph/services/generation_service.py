"""LLM-backed generation collaborators: sub-entity listing and graph extraction."""

from __future__ import annotations

from typing import Any

from langchain_core.messages import HumanMessage, SystemMessage

from kgraph.models.llm_registry import EXTRACTION_TASK, SUBENTITY_TASK
from kgraph.models.model_router import ModelRouter
from kgraph.models.schemas import ExtractedGraph
from kgraph.prompts.extraction import EXTRACTION_SYSTEM_PROMPT
from kgraph.prompts.subentities import SUBENTITY_SYSTEM_PROMPT
from kgraph.utils.exceptions import GenerationError, LLMError, ModelResponseParsingError
from kgraph.utils.logging import get_logger
from kgraph.utils.text_processing import truncate_content

logger = get_logger(__name__)


def _message_text(result: object) -> str:
    """Flatten an AIMessage's content (plain string or list of typed blocks)."""
    content = getattr(result, "content", result)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    raise ModelResponseParsingError(f"Unexpected model content type: {type(content).__name__}")


class GenerationService:
    """Implements ``generate(seed_label)`` and ``extract(document_text)``."""

    def __init__(self, router: ModelRouter, *, extraction_max_chars: int = 8000) -> None:
        self._router = router
        self._extraction_max_chars = extraction_max_chars

    async def generate(self, seed_label: str) -> str:
        """Return a newline-delimited ``"- Label (Type)"`` list for ``seed_label``."""
        try:
            result = await self._router.invoke(
                SUBENTITY_TASK,
                [
                    SystemMessage(content=SUBENTITY_SYSTEM_PROMPT.format(seed_label=seed_label)),
                    HumanMessage(content="List the related entities now."),
                ],
            )
            text = _message_text(result)
        except LLMError as exc:
            logger.error("subentity_generation_failed", seed_label=seed_label, error=str(exc))
            raise GenerationError(f"Sub-entity generation failed for '{seed_label}'") from exc

        logger.info("subentities_generated", seed_label=seed_label, lines=len(text.splitlines()))
        return text

    async def extract(self, document_text: str) -> dict[str, Any]:
        """Return ``{"nodes": [...], "links": [...]}``. Not referentially validated."""
        prompt = EXTRACTION_SYSTEM_PROMPT.format(
            document_text=truncate_content(document_text, self._extraction_max_chars),
        )
        try:
            result = await self._router.invoke(
                EXTRACTION_TASK,
                [
                    SystemMessage(content=prompt),
                    HumanMessage(content="Extract the knowledge graph now."),
                ],
                structured_output=ExtractedGraph,
            )
        except LLMError as exc:
            logger.error("graph_extraction_failed", chars=len(document_text), error=str(exc))
            raise GenerationError("Knowledge graph extraction failed") from exc

        if isinstance(result, ExtractedGraph):
            raw = result.model_dump()
        elif isinstance(result, dict):
            raw = result
        else:
            raise GenerationError(
                f"Graph extractor returned {type(result).__name__}, expected a graph object"
            )

        logger.info(
            "graph_extracted",
            nodes=len(raw.get("nodes") or []),
            links=len(raw.get("links") or []),
        )
        return raw
