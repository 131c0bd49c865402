import json

import httpx
import pytest

from aide.core.errors import CollaboratorError, InvalidResponse, RateLimited
from aide.llm.json_parse import extract_json
from aide.llm.router import MockAIClient, OpenAICompatClient, llm_json
from aide.llm.schemas import ToolCall
from conftest import FakeAI


class TestExtractJson:
    def test_plain(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_code_fence(self):
        assert extract_json('```json\n{"a": [1, 2]}\n```') == {"a": [1, 2]}

    def test_leading_prose_and_trailing_garbage(self):
        assert extract_json('Sure! {"title": "x", "steps": []} hope that helps') == {"title": "x", "steps": []}

    def test_no_json(self):
        with pytest.raises(ValueError):
            extract_json("nothing here")


class TestLlmJson:
    @pytest.mark.asyncio
    async def test_repairs_once(self):
        ai = FakeAI(replies=["oops", '{"ok": true}'])
        assert await llm_json(ai, "sys", "user") == {"ok": True}
        assert len(ai.calls) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_repair(self):
        ai = FakeAI(replies=["oops", "[1, 2]"])
        with pytest.raises(InvalidResponse):
            await llm_json(ai, "sys", "user")


def _client(handler, attempts=1):
    return OpenAICompatClient(
        base_url="https://llm.test/v1",
        api_key="k",
        model="m",
        embedding_model="e",
        max_attempts=attempts,
        transport=httpx.MockTransport(handler),
    )


class TestOpenAICompatClient:
    @pytest.mark.asyncio
    async def test_text_completion(self):
        def handler(request):
            body = json.loads(request.content)
            assert request.url.path == "/v1/chat/completions"
            assert request.headers["authorization"] == "Bearer k"
            assert body["model"] == "m"
            assert "tools" not in body
            return httpx.Response(200, json={"choices": [{"message": {"content": "hello"}}]})

        assert await _client(handler).complete([{"role": "user", "content": "hi"}]) == "hello"

    @pytest.mark.asyncio
    async def test_tool_call_completion(self):
        def handler(request):
            message = {"content": None, "tool_calls": [{"function": {"name": "search_contacts", "arguments": '{"query": "Ada"}'}}]}
            return httpx.Response(200, json={"choices": [{"message": message}]})

        reply = await _client(handler).complete([{"role": "user", "content": "find Ada"}], tools=[{"type": "function"}])
        assert reply == ToolCall(name="search_contacts", arguments={"query": "Ada"})

    @pytest.mark.asyncio
    async def test_embedding(self):
        def handler(request):
            assert request.url.path == "/v1/embeddings"
            return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2]}]})

        assert await _client(handler).embed("text") == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_rate_limit_after_retries(self, monkeypatch):
        calls = []

        async def no_sleep(_):
            return None

        monkeypatch.setattr("aide.llm.router.asyncio.sleep", no_sleep)

        def handler(request):
            calls.append(1)
            return httpx.Response(429, text="slow down")

        with pytest.raises(RateLimited):
            await _client(handler, attempts=3).complete([{"role": "user", "content": "hi"}])
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(400, text="bad request")

        with pytest.raises(CollaboratorError):
            await _client(handler, attempts=3).embed("x")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_malformed_payload(self):
        def handler(request):
            return httpx.Response(200, json={"unexpected": True})

        with pytest.raises(InvalidResponse):
            await _client(handler).complete([{"role": "user", "content": "hi"}])

    @pytest.mark.asyncio
    async def test_missing_key(self):
        client = OpenAICompatClient(api_key="", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with pytest.raises(CollaboratorError):
            await client.embed("x")


class TestMockAIClient:
    @pytest.mark.asyncio
    async def test_deterministic_unit_vectors(self):
        ai = MockAIClient(dim=16)
        a = await ai.embed("Hello")
        assert a == await ai.embed("hello")
        assert len(a) == 16
        assert sum(v * v for v in a) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_echo(self):
        reply = await MockAIClient().complete([{"role": "user", "content": "ping"}])
        assert reply == "Mock reply: ping"
