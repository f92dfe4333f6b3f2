"""Run a generation task against its model chain, traced with LangSmith."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

from langsmith import traceable

from kgraph.models.llm_registry import LLMRegistry
from kgraph.utils.exceptions import LLMError
from kgraph.utils.logging import get_logger

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage
    from langchain_openai import ChatOpenAI

logger = get_logger(__name__)


def _usage_tokens(result: Any) -> int:
    usage = getattr(result, "usage_metadata", None)
    if isinstance(usage, dict):
        return int(usage.get("total_tokens") or 0)
    return 0


class ModelRouter:
    """Tries the primary model of a task, then each fallback in order.

    A call that raises or runs past ``timeout`` seconds counts as a failure and
    moves on to the next model in the chain.
    """

    def __init__(self, registry: LLMRegistry, *, timeout: float | None = 60.0) -> None:
        self._registry = registry
        self._timeout = timeout

    def _chain(self, task: str) -> list[tuple[str, ChatOpenAI]]:
        chain = [("primary", self._registry.get_model(task))]
        chain.extend((f"fallback-{i}", model) for i, model in enumerate(self._registry.get_fallback_chain(task)))
        return chain

    @traceable(run_type="chain", name="kgraph_model_invoke")
    async def invoke(
        self,
        task: str,
        messages: list[BaseMessage],
        *,
        structured_output: type | None = None,
    ) -> Any:
        """Invoke the model chain for a task.

        Args:
            task: Registry task name, e.g. "subentity_generator".
            messages: Chat messages to send.
            structured_output: Pydantic model the reply is parsed into, if any.

        Returns:
            The AIMessage, or an instance of ``structured_output``.

        Raises:
            LLMError: every model in the chain failed.
        """
        failures: list[str] = []
        last_error: Exception | None = None

        for label, model in self._chain(task):
            runnable = model if structured_output is None else model.with_structured_output(structured_output)
            start = time.monotonic()
            try:
                result = await asyncio.wait_for(runnable.ainvoke(messages), timeout=self._timeout)
            except Exception as exc:
                last_error = exc
                failures.append(f"{label}: {str(exc) or type(exc).__name__}")
                logger.error("model_invoke_failed", task=task, label=label, model=model.model_name, error=str(exc))
                continue

            elapsed_ms = int((time.monotonic() - start) * 1000)
            tokens = _usage_tokens(result)
            self._registry.record_usage(task, tokens)
            log = logger.debug if label == "primary" else logger.warning
            log(
                "model_invoked" if label == "primary" else "model_fallback_used",
                task=task,
                label=label,
                model=model.model_name,
                tokens=tokens,
                elapsed_ms=elapsed_ms,
            )
            return result

        raise LLMError(f"All models failed for task '{task}': {'; '.join(failures)}") from last_error
