"""
Pydantic models shared by the LLM clients and the revision pipeline.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class Provider(str, Enum):
    OPENROUTER = "openrouter"  # primary hosted provider
    CUSTOM = "custom"  # any OpenAI-compatible endpoint


class EmptyContentPolicy(str, Enum):
    """What a client does when the remote answers without assistant content."""

    FAIL = "fail"  # raise EmptyContentError
    COERCE = "coerce"  # return ""


class LLMConfig(BaseModel):
    """
    Immutable snapshot of the LLM settings for one logical operation.

    Built fresh from persisted settings before each operation; a request in
    flight keeps the snapshot it was issued with.
    """

    model_config = ConfigDict(frozen=True)

    provider: Provider
    api_key: str
    model_name: str
    base_url: str
    temperature: float
    max_tokens: int


class ModelInfo(BaseModel):
    id: str
    name: str = ""
    description: str | None = None
    context_length: int | None = None
    pricing: dict[str, Any] | None = None


class ChatMessage(BaseModel):
    """One role-tagged message; ``content`` may be multi-part for vision/file."""

    role: Literal["system", "user", "assistant"]
    content: str | list[dict[str, Any]]


class CompletionResult(BaseModel):
    content: str


class ChatCompletionResult(BaseModel):
    """Result of a raw-HTTP chat completion."""

    content: str
    usage: dict[str, Any] | None = None
    model: str | None = None


class RevisionVerdict(BaseModel):
    """Outcome of the reviewer stage, completed by the revisor when needed."""

    needs_revision: bool
    reason: str
    revised_text: str | None = None


class CustomRevisionResult(BaseModel):
    revised_text: str
    reviewer_assessment: str


class FactCheckResult(BaseModel):
    analysis: str
