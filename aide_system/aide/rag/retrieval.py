"""
Retrieval engine: query text -> embedding -> top-K chunks of the user's
own documents, plus formatting of those chunks as grounding context.
"""


from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from aide.core.config import settings
from aide.core.errors import InvalidResponse, ValidationError
from aide.core.logging import get_logger
from aide.llm.prompts import NO_CONTEXT
from aide.llm.router import AIClient, get_ai_client
from aide.rag.store import search_similar

log = get_logger("rag.retrieval")


@dataclass
class RetrievedChunk:
    content: str
    score: float
    document_type: str
    document_id: str
    chunk_index: int = 0
    metadata: dict = field(default_factory=dict)

    def source(self) -> dict:
        return {
            "document_type": self.document_type,
            "document_id": self.document_id,
            "chunk_index": self.chunk_index,
            "score": round(self.score, 4),
        }


async def retrieve(
    db: AsyncSession,
    user_id: str,
    query: str,
    k: int | None = None,
    *,
    ai: AIClient | None = None,
) -> list[RetrievedChunk]:
    if not user_id:
        raise ValidationError("user_id is required")
    if not (query or "").strip():
        raise ValidationError("Query text is required")
    k = settings.RAG_TOP_K if k is None else k
    if k < 0:
        raise ValidationError("k must not be negative")
    if k == 0:
        return []

    ai = ai or get_ai_client()
    vector = await ai.embed(query)
    if not vector:
        raise InvalidResponse("Embedding collaborator returned an empty vector")

    hits = await search_similar(db, user_id, vector, k)
    log.info(f"retrieve: user={user_id} k={k} -> {len(hits)} chunk(s)")
    return [
        RetrievedChunk(
            content=row.content,
            score=score,
            document_type=row.document_type,
            document_id=row.document_id,
            chunk_index=row.chunk_index,
            metadata=dict(row.meta or {}),
        )
        for row, score in hits
    ]


def _snippet(text: str) -> str:
    return (text or "")[: settings.CONTEXT_SNIPPET_CHARS]


def format_context_item(chunk: RetrievedChunk) -> str:
    meta = chunk.metadata
    if chunk.document_type == "gmail_email":
        sender = meta.get("from_email") or "Unknown"
        name = meta.get("from_name") or sender
        display = f"{name} <{sender}>" if name != sender else sender
        return f"Email from {display} - Subject: {meta.get('subject') or 'No subject'}\nContent: {_snippet(chunk.content)}"
    if chunk.document_type == "hubspot_contact":
        company = f" ({meta['company']})" if meta.get("company") else ""
        return f"Contact: {meta.get('name') or 'Unknown Contact'}{company}\nInfo: {_snippet(chunk.content)}"
    if chunk.document_type == "hubspot_note":
        return f"{meta.get('note_type') or 'Note'} for {meta.get('contact_name') or 'Unknown Contact'}:\n{_snippet(chunk.content)}"
    if chunk.document_type == "calendar_event":
        return f"Calendar event: {meta.get('summary') or 'Event'}\n{_snippet(chunk.content)}"
    return f"Content: {_snippet(chunk.content)}"


def format_context(chunks: list[RetrievedChunk]) -> str:
    if not chunks:
        return NO_CONTEXT
    return "\n\n".join(f"{idx}. {format_context_item(c)}" for idx, c in enumerate(chunks, 1))
