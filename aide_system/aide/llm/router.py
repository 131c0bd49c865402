"""
AI collaborator adapters and it does:
- Sends chat completions and embedding requests to the model provider
- Maps provider failures onto the collaborator error taxonomy
- Retries transient transport failures (inside the adapter only)
- Parses JSON replies for structured prompts

Main purpose:
Central interface for all model calls.
"""


import asyncio
import hashlib
import json
import math
from typing import Any, Protocol

import httpx

from aide.core.config import settings
from aide.core.errors import CollaboratorError, CollaboratorTimeout, InvalidResponse, RateLimited
from aide.core.logging import get_logger
from aide.llm.json_parse import extract_json
from aide.llm.schemas import ToolCall

log = get_logger("llm.router")

Message = dict[str, str]


class AIClient(Protocol):
    async def complete(self, messages: list[Message], tools: list[dict] | None = None) -> str | ToolCall: ...

    async def embed(self, text: str) -> list[float]: ...


def _safe_snippet(text: str, n: int = 400) -> str:
    return (text or "")[:n].replace("\n", "\\n").replace("\r", "\\r")


class OpenAICompatClient:
    """Any provider speaking the OpenAI ``/chat/completions`` + ``/embeddings`` API."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        embedding_model: str | None = None,
        max_attempts: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.LLM_BASE_URL).rstrip("/")
        self.api_key = settings.LLM_API_KEY if api_key is None else api_key
        self.model = model or settings.LLM_MODEL
        self.embedding_model = embedding_model or settings.EMBEDDING_MODEL
        self.max_attempts = max(1, max_attempts or settings.LLM_MAX_ATTEMPTS)
        self._transport = transport

    async def _post(self, path: str, payload: dict) -> dict:
        if not self.api_key:
            raise CollaboratorError("Missing LLM_API_KEY. Put it in your .env")

        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        timeout = httpx.Timeout(settings.LLM_TIMEOUT_SECONDS, connect=10.0)

        last_err: CollaboratorError | None = None
        for attempt in range(self.max_attempts):
            try:
                async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                    r = await client.post(url, headers=headers, json=payload)
            except httpx.TimeoutException as e:
                last_err = CollaboratorTimeout(f"{path} timed out: {e}")
            except httpx.HTTPError as e:
                last_err = CollaboratorError(f"{path} transport error: {e}")
            else:
                if r.status_code == 429:
                    last_err = RateLimited(f"{path} rate limited: {_safe_snippet(r.text)}")
                elif r.status_code >= 500:
                    last_err = CollaboratorError(f"{path} transient {r.status_code}: {_safe_snippet(r.text)}")
                elif r.status_code >= 400:
                    raise CollaboratorError(f"{path} error {r.status_code}: {_safe_snippet(r.text)}")
                else:
                    try:
                        return r.json()
                    except ValueError as e:
                        raise InvalidResponse(f"{path} returned non-JSON body: {_safe_snippet(r.text)}") from e

            if attempt + 1 < self.max_attempts:
                backoff = 0.6 * (2**attempt)
                log.warning(f"{last_err}. retrying in {backoff:.1f}s (attempt {attempt+1}/{self.max_attempts})")
                await asyncio.sleep(backoff)

        raise last_err

    async def complete(self, messages: list[Message], tools: list[dict] | None = None) -> str | ToolCall:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": settings.LLM_TEMPERATURE,
            "max_tokens": settings.LLM_MAX_TOKENS,
        }
        if tools:
            payload["tools"] = tools

        data = await self._post("/chat/completions", payload)
        try:
            message = data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError):
            raise InvalidResponse(f"Unexpected completion response: {_safe_snippet(json.dumps(data))}")

        if isinstance(message.get("content"), str) and message["content"]:
            return message["content"]

        tool_calls = message.get("tool_calls") or []
        if tool_calls:
            fn = tool_calls[0].get("function") or {}
            try:
                arguments = json.loads(fn.get("arguments") or "{}")
            except json.JSONDecodeError:
                raise InvalidResponse(f"Tool call arguments are not JSON: {fn.get('arguments')!r}")
            if not fn.get("name") or not isinstance(arguments, dict):
                raise InvalidResponse(f"Malformed tool call: {fn!r}")
            return ToolCall(name=fn["name"], arguments=arguments)

        raise InvalidResponse("Completion had neither content nor tool calls")

    async def embed(self, text: str) -> list[float]:
        data = await self._post("/embeddings", {"model": self.embedding_model, "input": text})
        try:
            vector = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError):
            raise InvalidResponse(f"Unexpected embedding response: {_safe_snippet(json.dumps(data))}")
        if not isinstance(vector, list) or not vector:
            raise InvalidResponse("Embedding response is empty")
        return [float(x) for x in vector]


class MockAIClient:
    """Deterministic offline collaborator for no-key development."""

    def __init__(self, dim: int | None = None):
        self.dim = dim or settings.EMBEDDING_DIM

    async def complete(self, messages: list[Message], tools: list[dict] | None = None) -> str | ToolCall:
        last_user = next((m["content"] for m in reversed(messages) if m.get("role") == "user"), "")
        return f"Mock reply: {last_user}"

    async def embed(self, text: str) -> list[float]:
        values: list[float] = []
        counter = 0
        while len(values) < self.dim:
            digest = hashlib.sha256(f"{counter}:{(text or '').lower()}".encode()).digest()
            values.extend((b / 127.5) - 1.0 for b in digest)
            counter += 1
        values = values[: self.dim]
        norm = math.sqrt(sum(v * v for v in values)) or 1.0
        return [v / norm for v in values]


_client: AIClient | None = None


def get_ai_client() -> AIClient:
    global _client
    if _client is None:
        provider = (settings.LLM_PROVIDER or "").lower().strip()
        if provider == "mock":
            _client = MockAIClient()
        elif provider == "openai":
            _client = OpenAICompatClient()
        else:
            raise CollaboratorError(f"Unsupported LLM_PROVIDER={settings.LLM_PROVIDER}. Use openai or mock.")
    return _client


async def llm_json(ai: AIClient, system: str, user: str) -> dict:
    """
    Calls the completion collaborator and returns a parsed JSON dict.
    Asks once for a strict reformat when the first reply is not JSON.
    Raises InvalidResponse when neither reply parses to an object.
    """
    text = await ai.complete([
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ])
    if isinstance(text, ToolCall):
        raise InvalidResponse(f"Expected JSON text, got tool call {text.name}")
    try:
        parsed = extract_json(text)
        if not isinstance(parsed, dict):
            raise ValueError(f"JSON is not an object (got {type(parsed).__name__})")
        return parsed
    except ValueError as e:
        log.warning(f"JSON parse failed (attempt1): {e}. Snippet={_safe_snippet(text)}. Trying repair...")

    repair_system = "You are a strict JSON formatter. Return ONLY a valid JSON object."
    repair_user = f"Fix and output ONLY a JSON object for this content:\n{text}\nReturn ONLY JSON."
    text2 = await ai.complete([
        {"role": "system", "content": repair_system},
        {"role": "user", "content": repair_user},
    ])
    if isinstance(text2, ToolCall):
        raise InvalidResponse(f"Expected JSON text, got tool call {text2.name}")
    try:
        parsed2 = extract_json(text2)
        if not isinstance(parsed2, dict):
            raise ValueError(f"Repair JSON is not an object (got {type(parsed2).__name__})")
        return parsed2
    except ValueError as e2:
        log.error(f"JSON parse failed (attempt2 repair): {e2}. Snippet={_safe_snippet(text2)}")
        raise InvalidResponse(f"Model did not return a JSON object: {e2}") from e2
