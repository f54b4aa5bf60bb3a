"""External service clients."""

from .assistant import (
    AgentSummary,
    AssistantClient,
    TranscriptionClient,
    parse_agent_summary,
    sequence_history,
)

__all__ = [
    "AgentSummary",
    "AssistantClient",
    "TranscriptionClient",
    "parse_agent_summary",
    "sequence_history",
]
