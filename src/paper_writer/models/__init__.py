"""Data models for Paper Writer."""

from paper_writer.models.model_llm import (
    ChatMessage,
    EmptyContentPolicy,
    LLMConfig,
    Provider,
)
from paper_writer.models.model_pubmed import (
    Citation,
    PubmedAbstract,
    SearchResult,
    SummaryEntry,
)

__all__ = [
    "ChatMessage",
    "Citation",
    "EmptyContentPolicy",
    "LLMConfig",
    "Provider",
    "PubmedAbstract",
    "SearchResult",
    "SummaryEntry",
]
