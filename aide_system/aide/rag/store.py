"""
Embedding store.

Source documents (emails, CRM contacts and notes, calendar events) are
rendered to text, split into overlapping chunks, embedded and written as
DocumentEmbedding rows. Rows are never updated: re-indexing a document
writes a new generation and searches only look at the newest one.
"""


from typing import Any, Sequence

import numpy as np
from sqlalchemy.ext.asyncio import AsyncSession

from aide.core.config import settings
from aide.core.errors import InvalidResponse, ValidationError
from aide.core.ids import new_id
from aide.core.logging import get_logger
from aide.db import repo
from aide.db.models import DOCUMENT_TYPES, DocumentEmbedding
from aide.llm.router import AIClient, get_ai_client

log = get_logger("rag.store")

MIN_CONTENT_CHARS = {"gmail_email": 10}
DEFAULT_MIN_CONTENT_CHARS = 5


def chunk_text(text: str, size: int | None = None, overlap: int | None = None) -> list[str]:
    size = settings.CHUNK_SIZE if size is None else size
    overlap = settings.CHUNK_OVERLAP if overlap is None else overlap
    if size <= 0 or overlap < 0 or overlap >= size:
        raise ValidationError(f"Invalid chunking: size={size} overlap={overlap}")

    text = (text or "").strip()
    chunks: list[str] = []
    start = 0
    while start < len(text):
        end = min(start + size, len(text))
        if end < len(text):
            # prefer to break on whitespace in the back half of the window
            cut = text.rfind(" ", start + size // 2, end)
            if cut > start:
                end = cut
        piece = text[start:end].strip()
        if piece:
            chunks.append(piece)
        if end >= len(text):
            break
        start = max(end - overlap, start + 1)
    return chunks


def _join(*parts: Any) -> str:
    return " ".join(str(p).strip() for p in parts if p is not None and str(p).strip())


def build_document_content(document_type: str, document: dict) -> tuple[str, dict] | None:
    """Text + metadata to embed for a source document, or None when too short."""
    if document_type == "gmail_email":
        content = f"{document.get('subject') or ''}\n\n{document.get('body_text') or ''}"
        metadata = {k: document.get(k) for k in ("subject", "from_email", "from_name", "to_emails", "date")}
    elif document_type == "hubspot_contact":
        content = _join(
            document.get("first_name"),
            document.get("last_name"),
            document.get("email"),
            document.get("company"),
            document.get("phone"),
            document.get("job_title"),
            document.get("website"),
        )
        metadata = {
            "name": _join(document.get("first_name"), document.get("last_name")) or document.get("email"),
            "email": document.get("email"),
            "company": document.get("company"),
            "phone": document.get("phone"),
        }
    elif document_type == "hubspot_note":
        content = str(document.get("body") or document.get("content") or "")
        metadata = {"contact_name": document.get("contact_name"), "note_type": document.get("note_type") or "Note"}
    elif document_type == "calendar_event":
        attendees = document.get("attendees") or []
        content = "\n".join(
            p for p in (
                str(document.get("summary") or ""),
                str(document.get("description") or ""),
                _join("Starts:", document.get("start")) if document.get("start") else "",
                _join("Attendees:", ", ".join(map(str, attendees))) if attendees else "",
            ) if p
        )
        metadata = {k: document.get(k) for k in ("summary", "start", "end")}
    else:
        raise ValidationError(f"Unsupported document type: {document_type}")

    if len(content.strip()) < MIN_CONTENT_CHARS.get(document_type, DEFAULT_MIN_CONTENT_CHARS):
        return None
    return content.strip(), {k: v for k, v in metadata.items() if v is not None}


async def index_document(
    db: AsyncSession,
    user_id: str,
    document_type: str,
    document_id: str,
    content: str,
    metadata: dict | None = None,
    *,
    ai: AIClient | None = None,
) -> list[DocumentEmbedding]:
    if document_type not in DOCUMENT_TYPES:
        raise ValidationError(f"Unsupported document type: {document_type}")
    if not document_id:
        raise ValidationError("document_id is required")

    ai = ai or get_ai_client()
    chunks = chunk_text(content)
    if not chunks:
        log.debug(f"Skipping {document_type} {document_id}: no content")
        return []

    # Embed everything first so a collaborator failure writes nothing.
    vectors = []
    for chunk in chunks:
        vector = await ai.embed(chunk)
        if len(vector) != settings.EMBEDDING_DIM:
            raise InvalidResponse(f"Embedding has {len(vector)} dimensions, expected {settings.EMBEDDING_DIM}")
        vectors.append(vector)

    generation = await repo.latest_generation(db, user_id, document_type, document_id) + 1
    rows = [
        DocumentEmbedding(
            id=new_id("emb"),
            user_id=user_id,
            document_type=document_type,
            document_id=document_id,
            content=chunk,
            embedding=vector,
            meta=dict(metadata or {}),
            chunk_index=idx,
            generation=generation,
        )
        for idx, (chunk, vector) in enumerate(zip(chunks, vectors))
    ]
    rows = await repo.add_embeddings(db, rows)
    log.info(f"Indexed {document_type} {document_id} for user {user_id}: {len(rows)} chunk(s), generation {generation}")
    return rows


async def index_source_document(
    db: AsyncSession,
    user_id: str,
    document_type: str,
    document: dict,
    *,
    ai: AIClient | None = None,
) -> list[DocumentEmbedding]:
    built = build_document_content(document_type, document)
    if built is None:
        log.debug(f"Skipping {document_type} {document.get('id')}: content too short")
        return []
    content, metadata = built
    return await index_document(db, user_id, document_type, str(document.get("id") or ""), content, metadata, ai=ai)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Vector length mismatch: {len(a)} != {len(b)}")
    return float(cosine_scores(np.asarray(a, dtype=np.float64), np.asarray([b], dtype=np.float64))[0])


def cosine_scores(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of `query` against every row of `matrix`; zero-norm rows score 0."""
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    return np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)


async def search_similar(
    db: AsyncSession,
    user_id: str,
    vector: Sequence[float],
    k: int,
) -> list[tuple[DocumentEmbedding, float]]:
    if k <= 0:
        return []
    rows = []
    for row in await repo.list_current_embeddings(db, user_id):
        if len(row.embedding or []) != len(vector):
            log.warning(f"Skipping embedding {row.id}: dimension {len(row.embedding or [])} != {len(vector)}")
            continue
        rows.append(row)
    if not rows:
        return []

    matrix = np.asarray([row.embedding for row in rows], dtype=np.float64)
    scores = cosine_scores(np.asarray(vector, dtype=np.float64), matrix)
    created = np.asarray([row.created_at.timestamp() for row in rows])
    chunks = np.asarray([row.chunk_index for row in rows])
    # lexsort keys run last-primary: score, then newest, then highest chunk
    order = np.lexsort((-chunks, -created, -scores))[:k]
    return [(rows[i], float(scores[i])) for i in order]
