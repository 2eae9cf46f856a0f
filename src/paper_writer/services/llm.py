"""
LLM transport over any OpenAI-compatible chat-completion endpoint.

One request per call, in one of four modes: plain, streaming, vision
(text + image) and file attachment (text + document).  `chat_completion_json`
adds Markdown fence stripping and JSON decoding on top of plain completion.
"""

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from openai import AsyncOpenAI

from paper_writer.models.model_llm import (
    ChatMessage,
    CompletionResult,
    EmptyContentPolicy,
    LLMConfig,
)

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Awaitable[None] | None]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class LLMError(Exception):
    """Base exception for LLM client failures."""

    pass


class EmptyContentError(LLMError):
    """The remote answered but without any assistant content."""

    pass


class JSONResponseError(LLMError):
    """The assistant content could not be decoded as JSON."""

    def __init__(self, error: Exception, raw: str):
        self.raw = raw
        super().__init__(f"Failed to parse JSON response: {error}. Raw content: {raw}")


class ChatCompletionError(LLMError):
    """Non-2xx answer from a chat-completion endpoint."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ``` or ```json fence and outer whitespace."""
    content = text.strip()
    if content.startswith("```json"):
        content = content[7:].strip()
    elif content.startswith("```"):
        content = content[3:].strip()
    if content.endswith("```"):
        content = content[:-3].strip()
    return content


def check_content(
    content: str | None, policy: EmptyContentPolicy, what: str = "LLM response"
) -> str:
    """Apply ``policy`` to a possibly missing/empty content string."""
    if content:
        return content
    if policy is EmptyContentPolicy.FAIL:
        raise EmptyContentError(f"No content received from {what}")
    return ""


async def emit_chunk(on_chunk: ChunkCallback, text: str) -> None:
    """Deliver one fragment to a sync or async callback."""
    result = on_chunk(text)
    if inspect.isawaitable(result):
        await result


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class LLMTransport:
    """
    Chat-completion client bound to one LLMConfig snapshot.

    Per-call keyword options override the snapshot (``model``,
    ``temperature``, ``max_tokens``), ``timeout`` bounds the request in
    seconds, and anything else is forwarded in the request body.
    """

    def __init__(
        self,
        config: LLMConfig,
        empty_content: EmptyContentPolicy = EmptyContentPolicy.FAIL,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.config = config
        self.empty_content = empty_content
        self._client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
        )

    def get_config(self) -> LLMConfig:
        return self.config

    async def close(self) -> None:
        await self._client.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    # -- Request building ----------------------------------------------------

    def _request_kwargs(
        self, messages: list[dict[str, Any]], options: dict[str, Any]
    ) -> dict[str, Any]:
        options = dict(options)
        timeout = options.pop("timeout", None)
        kwargs: dict[str, Any] = {
            "model": options.pop("model", None) or self.config.model_name,
            "messages": messages,
            "temperature": options.pop("temperature", self.config.temperature),
            "max_tokens": options.pop("max_tokens", self.config.max_tokens),
        }
        if options:
            kwargs["extra_body"] = options
        if timeout is not None:
            kwargs["timeout"] = timeout
        return kwargs

    @staticmethod
    def _prompt_messages(system_prompt: str, user_prompt: str) -> list[dict[str, Any]]:
        return [
            ChatMessage(role="system", content=system_prompt).model_dump(),
            ChatMessage(role="user", content=user_prompt).model_dump(),
        ]

    async def _complete(
        self, messages: list[dict[str, Any]], options: dict[str, Any], what: str
    ) -> CompletionResult:
        kwargs = self._request_kwargs(messages, options)
        logger.info(
            "Chat completion [%s] model=%s provider=%s",
            what,
            kwargs["model"],
            self.config.provider.value,
        )
        response = await self._client.chat.completions.create(**kwargs)
        content = None
        if response.choices:
            content = response.choices[0].message.content
        return CompletionResult(content=check_content(content, self.empty_content, what))

    # -- Modes ---------------------------------------------------------------

    async def chat_completion(
        self, system_prompt: str, user_prompt: str, **options: Any
    ) -> CompletionResult:
        """System + user prompt in, assistant content out."""
        return await self._complete(
            self._prompt_messages(system_prompt, user_prompt), options, "LLM response"
        )

    async def chat_completion_stream(
        self,
        system_prompt: str,
        user_prompt: str,
        on_chunk: ChunkCallback,
        **options: Any,
    ) -> str:
        """
        Stream a completion, handing each fragment to ``on_chunk`` as it arrives.

        Fragments are delivered in arrival order with no extra buffering.
        Returns the concatenated text.
        """
        kwargs = self._request_kwargs(
            self._prompt_messages(system_prompt, user_prompt), options
        )
        kwargs["stream"] = True
        logger.info("Streaming chat completion model=%s", kwargs["model"])

        stream = await self._client.chat.completions.create(**kwargs)
        parts: list[str] = []
        async for chunk in stream:
            if not chunk.choices:
                continue
            text = chunk.choices[0].delta.content
            if text:
                parts.append(text)
                await emit_chunk(on_chunk, text)

        return check_content(
            "".join(parts), self.empty_content, "LLM streaming response"
        )

    async def vision_completion(
        self, prompt: str, image_base64: str, **options: Any
    ) -> CompletionResult:
        """Prompt plus one image, given as a URL or a ``data:`` URI."""
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": image_base64}},
                ],
            }
        ]
        return await self._complete(messages, options, "vision model response")

    async def file_completion(
        self, prompt: str, file_data_uri: str, filename: str, **options: Any
    ) -> CompletionResult:
        """Prompt plus one document, given as a ``data:`` URI."""
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {
                        "type": "file",
                        "file": {"filename": filename, "file_data": file_data_uri},
                    },
                ],
            }
        ]
        return await self._complete(messages, options, "file model response")

    async def chat_completion_json(
        self, system_prompt: str, user_prompt: str, **options: Any
    ) -> Any:
        """
        Plain completion decoded as JSON.

        A surrounding Markdown code fence is removed first.  Decoding errors
        are not retried; the raised JSONResponseError carries the stripped
        text so it can be shown to the user.
        """
        result = await self.chat_completion(system_prompt, user_prompt, **options)
        content = strip_code_fences(result.content)
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise JSONResponseError(e, content) from e
