"""
Chat orchestrator.
What it does:
- Resolves (or starts) the chat session
- Retrieves grounding context for the query
- Builds the prompt from session history, context and the query
- Calls the completion collaborator, running a tool call if it asks for one
- Persists the user/assistant pair and session aggregates together

And, the main purpose:
Answer a query with retrieval-augmented generation.
"""


import json
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from aide.core.config import settings
from aide.core.errors import AideError, CollaboratorError, InvalidResponse, NotFoundError, ValidationError
from aide.core.ids import new_id, new_session_key
from aide.core.logging import get_logger
from aide.db import repo
from aide.db.models import ChatMessage, ChatSession, utcnow
from aide.llm.prompts import CHAT_SYSTEM
from aide.llm.router import AIClient, get_ai_client
from aide.llm.schemas import ToolCall
from aide.rag.retrieval import format_context, retrieve
from aide.tools.registry import ToolContext, ToolRegistry, default_registry

log = get_logger("rag.chat")

NEW_CHAT_TITLE = "New Chat"


def new_session_id() -> str:
    return new_session_key()


def session_title(first_message: str | None) -> str:
    text = (first_message or "").strip()
    if not text:
        return NEW_CHAT_TITLE
    if len(text) > settings.SESSION_TITLE_MAX:
        return text[: settings.SESSION_TITLE_MAX] + "..."
    return text


def format_tool_result(name: str, result) -> str:
    if not isinstance(result, dict):
        return f"Result: {json.dumps(result, default=str)}"
    if result.get("status") == "sent" and result.get("message"):
        return str(result["message"])
    if isinstance(result.get("contacts"), list):
        contacts = result["contacts"]
        if not contacts:
            return "I didn't find any contacts matching that search."
        listed = ", ".join(f"{c.get('name')} ({c.get('email')})" for c in contacts)
        return f"Here are the {len(contacts)} contacts I found: {listed}"
    if isinstance(result.get("emails"), list):
        emails = result["emails"]
        if not emails:
            return "I didn't find any emails matching that search."
        listed = "\n\n".join(
            f"- From: {e.get('from_name') or e.get('from_email')}\n  Subject: {e.get('subject')}"
            for e in emails
        )
        return f"I found {len(emails)} email(s):\n\n{listed}"
    if isinstance(result.get("events"), list):
        events = result["events"]
        if not events:
            return "No upcoming events found."
        return "Here are the upcoming events: " + ", ".join(e.get("summary") or "Event" for e in events)
    return f"Result: {json.dumps(result, default=str)}"


async def _run_tool_call(user_id: str, call: ToolCall, tools: ToolRegistry) -> str:
    try:
        result = await tools.get(call.name)(ToolContext(user_id=user_id), call.arguments)
    except (AideError, ValueError, TypeError) as e:
        log.warning(f"Chat tool call {call.name} failed for user {user_id}: {e}")
        return f"I tried to {call.name} but encountered an error: {e}"
    return f"I executed {call.name} successfully. " + format_tool_result(call.name, result)


async def answer(
    db: AsyncSession,
    user_id: str,
    session_id: str,
    query: str,
    *,
    ai: AIClient | None = None,
    tools: ToolRegistry | None = None,
) -> str:
    if not user_id:
        raise ValidationError("user_id is required")
    if not session_id:
        raise ValidationError("session_id is required")
    if not (query or "").strip():
        raise ValidationError("Query text is required")

    ai = ai or get_ai_client()
    tools = tools or default_registry()
    received_at = utcnow()

    session = await repo.get_chat_session(db, user_id, session_id)
    history: list[ChatMessage] = []
    if session is None:
        # Only written together with the first message pair.
        session = ChatSession(
            id=new_id("cs"),
            user_id=user_id,
            session_id=session_id,
            title=session_title(query),
            is_active=True,
            message_count=0,
            meta={},
        )
    else:
        history = await repo.list_chat_messages(db, session.id, limit=settings.CHAT_HISTORY_LIMIT)

    try:
        chunks = await retrieve(db, user_id, query, settings.RAG_TOP_K, ai=ai)
    except CollaboratorError as e:
        log.warning(f"Failed to get embeddings, proceeding without context: {e}")
        chunks = []

    messages = [{"role": "system", "content": CHAT_SYSTEM.format(context=format_context(chunks))}]
    messages += [{"role": m.role, "content": m.content} for m in history]
    messages.append({"role": "user", "content": query})

    reply = await ai.complete(messages, tools.describe() or None)
    tool_used = None
    if isinstance(reply, ToolCall):
        tool_used = reply.name
        reply = await _run_tool_call(user_id, reply, tools)
    if not isinstance(reply, str) or not reply.strip():
        raise InvalidResponse("Completion collaborator returned an empty reply")

    answered_at = max(utcnow(), received_at + timedelta(microseconds=1))
    assistant_meta = {"sources": [c.source() for c in chunks]}
    if tool_used:
        assistant_meta["tool"] = tool_used
    pair = [
        ChatMessage(id=new_id("msg"), user_id=user_id, session_pk=session.id, role="user",
                    content=query, meta={}, created_at=received_at),
        ChatMessage(id=new_id("msg"), user_id=user_id, session_pk=session.id, role="assistant",
                    content=reply, meta=assistant_meta, created_at=answered_at),
    ]
    await repo.append_chat_messages(db, session, pair, answered_at)
    log.info(f"Answered query in session {session_id} for user {user_id} ({len(chunks)} context chunk(s))")
    return reply


async def list_sessions(db: AsyncSession, user_id: str, limit: int = 20) -> list[ChatSession]:
    return await repo.list_chat_sessions(db, user_id, limit)


async def get_session(db: AsyncSession, user_id: str, session_id: str) -> ChatSession:
    session = await repo.get_chat_session(db, user_id, session_id)
    if session is None:
        raise NotFoundError(f"Chat session {session_id} not found")
    return session


async def get_session_with_messages(db: AsyncSession, user_id: str, session_id: str) -> tuple[ChatSession, list[ChatMessage]]:
    session = await get_session(db, user_id, session_id)
    return session, await repo.list_chat_messages(db, session.id)


async def archive_session(db: AsyncSession, user_id: str, session_id: str) -> ChatSession:
    session = await get_session(db, user_id, session_id)
    session.is_active = False
    return await repo.save_chat_session(db, session)


async def rename_session(db: AsyncSession, user_id: str, session_id: str, title: str) -> ChatSession:
    title = (title or "").strip()
    if not title or len(title) > 200:
        raise ValidationError("Title must be between 1 and 200 characters")
    session = await get_session(db, user_id, session_id)
    session.title = title
    return await repo.save_chat_session(db, session)
