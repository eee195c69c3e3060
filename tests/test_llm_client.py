"""Tests for the OpenAI chat adapter."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from cointext.adapters.llm_client import OpenAIChatClient, parse_json_content
from cointext.infra.error_handler import PlanningError, RateLimitError


def fake_openai(create):
    client = MagicMock()
    client.chat.completions.create = create
    return client


def stream_chunk(content=None, usage=None):
    choices = [SimpleNamespace(delta=SimpleNamespace(content=content))] if content is not None else []
    return SimpleNamespace(choices=choices, usage=usage)


async def fake_stream(chunks):
    for chunk in chunks:
        yield chunk


class TestParseJsonContent:
    
    def test_plain_object(self):
        assert parse_json_content('{"intent": "DIRECT_ANSWER"}') == {"intent": "DIRECT_ANSWER"}
    
    def test_fenced_block(self):
        assert parse_json_content('```json\n{"a": 1}\n```') == {"a": 1}
    
    @pytest.mark.parametrize("content", [None, "", "not json", "[1, 2]"])
    def test_rejects_non_objects(self, content):
        with pytest.raises(PlanningError):
            parse_json_content(content)


class TestGenerateJson:
    
    @pytest.mark.asyncio
    async def test_uses_json_mode(self):
        response = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content='{"intent": "TOOL_ENHANCED"}'))],
            usage=SimpleNamespace(prompt_tokens=100, completion_tokens=20),
        )
        create = AsyncMock(return_value=response)
        llm = OpenAIChatClient(api_key="sk-test", planner_max_tokens=1000, client=fake_openai(create))
        
        result = await llm.generate_json("system", "user")
        
        assert result == {"intent": "TOOL_ENHANCED"}
        kwargs = create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0.1
        assert kwargs["max_tokens"] == 1000
    
    @pytest.mark.asyncio
    async def test_sdk_errors_wrapped(self):
        error = Exception("Too many requests")
        error.status_code = 429
        llm = OpenAIChatClient(api_key="sk-test", client=fake_openai(AsyncMock(side_effect=error)))
        
        with pytest.raises(RateLimitError):
            await llm.generate_json("system", "user")


class TestGenerateText:
    
    @pytest.mark.asyncio
    async def test_streams_chunks_and_reports_usage(self):
        usage = SimpleNamespace(prompt_tokens=50, completion_tokens=3, total_tokens=53)
        chunks = [stream_chunk("FUD"), stream_chunk("SCAN"), stream_chunk(""), stream_chunk(usage=usage)]
        create = AsyncMock(return_value=fake_stream(chunks))
        llm = OpenAIChatClient(api_key="sk-test", client=fake_openai(create))
        received = []
        
        text, reported = await llm.generate_text("system", "user", on_chunk=received.append)
        
        assert text == "FUDSCAN"
        assert received == ["FUD", "SCAN"]
        assert reported == {"prompt_tokens": 50, "completion_tokens": 3, "total_tokens": 53}
        assert create.call_args.kwargs["stream"] is True
        assert create.call_args.kwargs["stream_options"] == {"include_usage": True}
    
    @pytest.mark.asyncio
    async def test_async_chunk_callback_awaited(self):
        usage = SimpleNamespace(prompt_tokens=1, completion_tokens=1, total_tokens=2)
        create = AsyncMock(return_value=fake_stream([stream_chunk("hi"), stream_chunk(usage=usage)]))
        llm = OpenAIChatClient(api_key="sk-test", client=fake_openai(create))
        on_chunk = AsyncMock()
        
        await llm.generate_text("system", "user", on_chunk=on_chunk)
        
        on_chunk.assert_awaited_once_with("hi")
    
    def test_missing_api_key(self):
        with pytest.raises(ValueError):
            OpenAIChatClient(api_key=None).client
