"""
OpenRouter chat orchestrator.

Talks to the chat-completion endpoint over raw HTTP (aiohttp) instead of an
SDK so it can read the streaming body itself and apply its own retry:

  1. chat_completion: non-streaming, fixed-delay retry
  2. chat_completion_with_json: retries until the reply decodes as JSON
  3. chat_completion_stream: `data:` frames forwarded chunk by chunk
  4. validate_api_key: boolean only, never raises
"""

import json
import logging
from typing import Any

import aiohttp
from pydantic import BaseModel, ConfigDict

from paper_writer.config import ConfigurationError
from paper_writer.constants import (
    CHAT_MAX_RETRIES,
    CHAT_RETRY_DELAY,
    LLM_TIMEOUT,
    OPENROUTER_BASE_URL,
    OPENROUTER_DEFAULT_MAX_TOKENS,
    OPENROUTER_DEFAULT_MODEL,
    OPENROUTER_DEFAULT_TEMPERATURE,
    OPENROUTER_SITE_NAME,
)
from paper_writer.models.model_llm import (
    ChatCompletionResult,
    ChatMessage,
    EmptyContentPolicy,
    LLMConfig,
    ModelInfo,
)
from paper_writer.services.llm import (
    ChatCompletionError,
    ChunkCallback,
    JSONResponseError,
    check_content,
    emit_chunk,
    strip_code_fences,
)
from paper_writer.services.streaming import SSEFrameParser
from paper_writer.utils.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)


class OpenRouterConfig(BaseModel):
    """Connection settings for the orchestrator."""

    model_config = ConfigDict(frozen=True)

    api_key: str
    site_url: str = ""
    site_name: str = OPENROUTER_SITE_NAME
    base_url: str = OPENROUTER_BASE_URL
    timeout_seconds: float = LLM_TIMEOUT
    # Request defaults; per-call options override these.
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


def default_chat_retry() -> RetryPolicy:
    return RetryPolicy.fixed(max_attempts=CHAT_MAX_RETRIES, delay=CHAT_RETRY_DELAY)


class ChatOrchestrator:
    """
    Raw-HTTP OpenRouter client with retry and manual stream framing.

    ``empty_content`` defaults to COERCE: a reply without content comes back
    as an empty string rather than an error.  Pass FAIL to get the
    LLMTransport behaviour.
    """

    def __init__(
        self,
        config: OpenRouterConfig,
        *,
        retry: RetryPolicy | None = None,
        empty_content: EmptyContentPolicy = EmptyContentPolicy.COERCE,
        buffer_partial_lines: bool = True,
    ) -> None:
        if not config.api_key:
            raise ConfigurationError("OpenRouter API key is required")
        self.config = config
        self.retry = retry or default_chat_retry()
        self.empty_content = empty_content
        self.buffer_partial_lines = buffer_partial_lines
        self._session: aiohttp.ClientSession | None = None

    @classmethod
    def from_llm_config(cls, llm_config: LLMConfig, **kwargs: Any) -> "ChatOrchestrator":
        """Build from an LLMConfig snapshot, keeping its model parameters."""
        site_url = kwargs.pop("site_url", "")
        site_name = kwargs.pop("site_name", OPENROUTER_SITE_NAME)
        return cls(
            OpenRouterConfig(
                api_key=llm_config.api_key,
                base_url=llm_config.base_url,
                model=llm_config.model_name,
                temperature=llm_config.temperature,
                max_tokens=llm_config.max_tokens,
                site_url=site_url,
                site_name=site_name,
            ),
            **kwargs,
        )

    # -- Session management --------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    # -- Request building ----------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{path}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.config.site_url,
            "X-Title": self.config.site_name,
        }

    def _body(
        self, messages: list[dict[str, Any]], options: dict[str, Any], stream: bool
    ) -> dict[str, Any]:
        options = dict(options)
        model = (
            options.pop("model", None) or self.config.model or OPENROUTER_DEFAULT_MODEL
        )
        temperature = _first_set(
            options.pop("temperature", None),
            self.config.temperature,
            OPENROUTER_DEFAULT_TEMPERATURE,
        )
        max_tokens = _first_set(
            options.pop("max_tokens", None),
            self.config.max_tokens,
            OPENROUTER_DEFAULT_MAX_TOKENS,
        )
        options.pop("stream", None)
        return {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            **options,
            "stream": stream,
        }

    @staticmethod
    def _prompt_messages(system_prompt: str, user_prompt: str) -> list[dict[str, Any]]:
        return [
            ChatMessage(role="system", content=system_prompt).model_dump(),
            ChatMessage(role="user", content=user_prompt).model_dump(),
        ]

    @staticmethod
    def _timeout(timeout: float | None) -> dict[str, Any]:
        return {} if timeout is None else {"timeout": aiohttp.ClientTimeout(total=timeout)}

    @staticmethod
    async def _raise_for_status(resp: aiohttp.ClientResponse) -> None:
        if 200 <= resp.status < 300:
            return
        try:
            error_data = await resp.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            error_data = {}
        message = None
        if isinstance(error_data, dict) and isinstance(error_data.get("error"), dict):
            message = error_data["error"].get("message")
        raise ChatCompletionError(
            message or f"HTTP {resp.status}: {resp.reason}", status_code=resp.status
        )

    # -- Non-streaming -------------------------------------------------------

    async def _post_completion(
        self, body: dict[str, Any], timeout: float | None
    ) -> dict[str, Any]:
        session = await self._get_session()
        async with session.post(
            self._url("chat/completions"),
            json=body,
            headers=self._headers(),
            **self._timeout(timeout),
        ) as resp:
            await self._raise_for_status(resp)
            return await resp.json(content_type=None)

    async def send_message(
        self,
        model: str,
        messages: list[dict[str, Any]],
        timeout: float | None = None,
        **options: Any,
    ) -> dict[str, Any]:
        """One request, no retry; returns the raw response envelope."""
        body = self._body(messages, {**options, "model": model}, stream=False)
        return await self._post_completion(body, timeout)

    async def chat_completion(
        self,
        system_prompt: str,
        user_prompt: str,
        options: dict[str, Any] | None = None,
        *,
        retry: RetryPolicy | None = None,
        timeout: float | None = None,
    ) -> ChatCompletionResult:
        """
        Non-streaming completion with retry.

        Any failure, whether a network error or a non-2xx status, counts as
        a failed attempt.  The last error is re-raised once attempts run out.
        """
        policy = retry or self.retry
        body = self._body(
            self._prompt_messages(system_prompt, user_prompt), options or {}, stream=False
        )

        async def attempt() -> ChatCompletionResult:
            data = await self._post_completion(body, timeout)
            content = _message_content(data)
            return ChatCompletionResult(
                content=check_content(content, self.empty_content),
                usage=data.get("usage") if isinstance(data, dict) else None,
                model=data.get("model") if isinstance(data, dict) else None,
            )

        logger.info("Chat completion model=%s", body["model"])
        return await retry_async(attempt, policy, label="Chat completion")

    async def chat_completion_with_json(
        self,
        system_prompt: str,
        user_prompt: str,
        options: dict[str, Any] | None = None,
        *,
        retry: RetryPolicy | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        Completion decoded as JSON, retrying on undecodable replies too.

        Each outer attempt makes exactly one request; transport failures and
        JSON decoding failures both use up an attempt.
        """
        policy = retry or self.retry
        single = RetryPolicy.fixed(max_attempts=1, delay=policy.base_delay)

        async def attempt() -> Any:
            result = await self.chat_completion(
                system_prompt, user_prompt, options, retry=single, timeout=timeout
            )
            content = strip_code_fences(result.content)
            try:
                return json.loads(content)
            except json.JSONDecodeError as e:
                raise JSONResponseError(e, content) from e

        return await retry_async(attempt, policy, label="JSON chat completion")

    # -- Streaming -----------------------------------------------------------

    async def chat_completion_stream(
        self,
        system_prompt: str,
        user_prompt: str,
        on_chunk: ChunkCallback,
        options: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> str:
        """
        Streaming completion; each text fragment goes to ``on_chunk`` in order.

        Not retried: fragments already delivered cannot be taken back.
        Cancelling the awaiting task stops reading and releases the
        connection.
        """
        body = self._body(
            self._prompt_messages(system_prompt, user_prompt), options or {}, stream=True
        )
        session = await self._get_session()
        parser = SSEFrameParser(buffer_partial_lines=self.buffer_partial_lines)
        parts: list[str] = []

        logger.info("Streaming chat completion model=%s", body["model"])
        async with session.post(
            self._url("chat/completions"),
            json=body,
            headers=self._headers(),
            **self._timeout(timeout),
        ) as resp:
            await self._raise_for_status(resp)
            async for data in resp.content.iter_any():
                for text in parser.feed(data):
                    parts.append(text)
                    await emit_chunk(on_chunk, text)
            for text in parser.flush():
                parts.append(text)
                await emit_chunk(on_chunk, text)

        return check_content("".join(parts), self.empty_content, "LLM streaming response")

    # -- Models / key validation ---------------------------------------------

    async def _get_models(self, params: dict[str, str] | None = None) -> list[ModelInfo]:
        session = await self._get_session()
        async with session.get(
            self._url("models"), params=params, headers=self._headers()
        ) as resp:
            await self._raise_for_status(resp)
            data = await resp.json(content_type=None)
        return [ModelInfo.model_validate(m) for m in (data or {}).get("data") or []]

    async def get_available_models(self, category: str = "academia") -> list[ModelInfo]:
        return await self._get_models({"category": category})

    async def get_all_models(self) -> list[ModelInfo]:
        return await self._get_models()

    async def validate_api_key(self) -> bool:
        """True if a model listing succeeds with this key; False on any failure."""
        try:
            await self.get_all_models()
        except Exception as e:
            logger.warning("API key validation failed: %s", e)
            return False
        return True


def _message_content(data: Any) -> str | None:
    """Return ``choices[0].message.content`` or None if the path is absent."""
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None


def _first_set(*values: Any) -> Any:
    """First value that is not None; explicit zeros count as set."""
    return next((v for v in values if v is not None), None)
