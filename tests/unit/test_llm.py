"""Unit tests for LLMTransport (OpenAI client mocked)."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from paper_writer.models.model_llm import EmptyContentPolicy, LLMConfig, Provider
from paper_writer.services.llm import (
    EmptyContentError,
    JSONResponseError,
    LLMTransport,
    check_content,
    strip_code_fences,
)


CONFIG = LLMConfig(
    provider=Provider.CUSTOM,
    api_key="test-key",
    model_name="llama3",
    base_url="http://localhost:11434/v1",
    temperature=0.3,
    max_tokens=1000,
)


def _completion(content):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
    )


def _chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


def _stream(*contents):
    async def gen():
        for content in contents:
            yield _chunk(content)

    return gen()


def _transport(create: AsyncMock, **kwargs) -> LLMTransport:
    client = MagicMock()
    client.chat.completions.create = create
    client.close = AsyncMock()
    return LLMTransport(CONFIG, client=client, **kwargs)


class TestHelpers:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ('```json\n{"a": 1}\n```', '{"a": 1}'),
            ('```\n{"a": 1}\n```', '{"a": 1}'),
            ('  {"a": 1}  ', '{"a": 1}'),
        ],
    )
    def test_strip_code_fences(self, text, expected):
        assert strip_code_fences(text) == expected

    def test_check_content_fail(self):
        with pytest.raises(EmptyContentError, match="No content received from LLM response"):
            check_content(None, EmptyContentPolicy.FAIL)

    def test_check_content_coerce(self):
        assert check_content("", EmptyContentPolicy.COERCE) == ""


@pytest.mark.asyncio
class TestChatCompletion:
    async def test_returns_content_and_sends_snapshot(self):
        create = AsyncMock(return_value=_completion("Hello"))
        transport = _transport(create)

        result = await transport.chat_completion("sys", "user")

        assert result.content == "Hello"
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "llama3"
        assert kwargs["temperature"] == 0.3
        assert kwargs["max_tokens"] == 1000
        assert kwargs["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "user"},
        ]
        assert "extra_body" not in kwargs

    async def test_options_override_and_extra_body(self):
        create = AsyncMock(return_value=_completion("x"))
        transport = _transport(create)

        await transport.chat_completion(
            "sys", "user", model="other", temperature=0, top_p=0.9, timeout=30
        )

        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "other"
        assert kwargs["temperature"] == 0
        assert kwargs["extra_body"] == {"top_p": 0.9}
        assert kwargs["timeout"] == 30

    @pytest.mark.parametrize("content", [None, ""])
    async def test_empty_content_raises(self, content):
        transport = _transport(AsyncMock(return_value=_completion(content)))

        with pytest.raises(EmptyContentError):
            await transport.chat_completion("sys", "user")

    async def test_no_choices_raises(self):
        transport = _transport(AsyncMock(return_value=SimpleNamespace(choices=[])))

        with pytest.raises(EmptyContentError):
            await transport.chat_completion("sys", "user")

    async def test_coerce_policy_returns_empty(self):
        transport = _transport(
            AsyncMock(return_value=_completion(None)),
            empty_content=EmptyContentPolicy.COERCE,
        )

        assert (await transport.chat_completion("sys", "user")).content == ""

    async def test_error_propagates(self):
        transport = _transport(AsyncMock(side_effect=RuntimeError("connection reset")))

        with pytest.raises(RuntimeError, match="connection reset"):
            await transport.chat_completion("sys", "user")


@pytest.mark.asyncio
class TestStreaming:
    async def test_chunks_delivered_in_order(self):
        create = AsyncMock(return_value=_stream("Hel", None, "lo", " world"))
        transport = _transport(create)
        received: list[str] = []

        result = await transport.chat_completion_stream("sys", "user", received.append)

        assert received == ["Hel", "lo", " world"]
        assert result == "Hello world"
        assert create.call_args.kwargs["stream"] is True

    async def test_async_callback(self):
        transport = _transport(AsyncMock(return_value=_stream("a", "b")))
        on_chunk = AsyncMock()

        await transport.chat_completion_stream("sys", "user", on_chunk)

        assert [c.args[0] for c in on_chunk.call_args_list] == ["a", "b"]

    async def test_empty_stream_raises(self):
        transport = _transport(AsyncMock(return_value=_stream(None)))

        with pytest.raises(EmptyContentError, match="streaming"):
            await transport.chat_completion_stream("sys", "user", lambda _: None)


@pytest.mark.asyncio
class TestMultimodal:
    async def test_vision_message_shape(self):
        create = AsyncMock(return_value=_completion("a chart"))
        transport = _transport(create)

        result = await transport.vision_completion("Describe", "data:image/png;base64,AAA")

        assert result.content == "a chart"
        content = create.call_args.kwargs["messages"][0]["content"]
        assert content[0] == {"type": "text", "text": "Describe"}
        assert content[1] == {
            "type": "image_url",
            "image_url": {"url": "data:image/png;base64,AAA"},
        }

    async def test_file_message_shape(self):
        create = AsyncMock(return_value=_completion("summary"))
        transport = _transport(create)

        await transport.file_completion("Summarize", "data:application/pdf;base64,AAA", "a.pdf")

        part = create.call_args.kwargs["messages"][0]["content"][1]
        assert part == {
            "type": "file",
            "file": {"filename": "a.pdf", "file_data": "data:application/pdf;base64,AAA"},
        }

    async def test_vision_empty_content_names_mode(self):
        transport = _transport(AsyncMock(return_value=_completion(None)))

        with pytest.raises(EmptyContentError, match="vision model response"):
            await transport.vision_completion("Describe", "data:image/png;base64,AAA")


@pytest.mark.asyncio
class TestChatCompletionJson:
    async def test_fenced_json_decoded(self):
        transport = _transport(AsyncMock(return_value=_completion('```json\n{"a":1}\n```')))

        assert await transport.chat_completion_json("sys", "user") == {"a": 1}

    async def test_invalid_json_carries_raw_content(self):
        transport = _transport(AsyncMock(return_value=_completion("not json at all")))

        with pytest.raises(JSONResponseError) as exc_info:
            await transport.chat_completion_json("sys", "user")

        assert exc_info.value.raw == "not json at all"
        assert "not json at all" in str(exc_info.value)


@pytest.mark.asyncio
async def test_context_manager_closes_client():
    transport = _transport(AsyncMock())

    async with transport as t:
        assert t.get_config() is CONFIG

    transport._client.close.assert_awaited_once()
