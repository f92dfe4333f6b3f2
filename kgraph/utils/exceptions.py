"""Custom exception hierarchy for the knowledge-graph engine."""

from __future__ import annotations


class KnowledgeGraphError(Exception):
    """Base exception for all knowledge-graph engine errors."""


class LLMError(KnowledgeGraphError):
    """Base for model-related failures."""


class ModelResponseParsingError(LLMError):
    """Failed to parse structured output from model response."""


class GenerationError(KnowledgeGraphError):
    """Sub-entity generation or graph extraction failed.

    The graph is left untouched when this is raised; callers surface it to the user.
    """


class ExpansionInProgressError(KnowledgeGraphError):
    """An expand for the same node is still awaiting its collaborator."""

    def __init__(self, node_id: str) -> None:
        super().__init__(f"Node '{node_id}' is already being expanded")
        self.node_id = node_id


class PersistenceError(KnowledgeGraphError):
    """Project store read/write failure. Only ever logged by the persistence bridge."""


class SessionNotFoundError(KnowledgeGraphError):
    """No live graph session with the requested id."""


class StaleResultError(KnowledgeGraphError):
    """A mutation finished after the graph it was based on had been replaced.

    Its result was discarded and the graph was not changed by it.
    """
