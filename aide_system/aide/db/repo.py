# aide/db/repo.py

from datetime import datetime
from typing import Iterable

from sqlalchemy import case, select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from aide.db.models import (
    Task,
    TaskLog,
    OngoingInstruction,
    DocumentEmbedding,
    ChatSession,
    ChatMessage,
    utcnow,
)


# Tasks

async def create_task(db: AsyncSession, task: Task) -> Task:
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return task


async def save_task(db: AsyncSession, task: Task) -> Task:
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return task


async def get_task(db: AsyncSession, user_id: str, task_id: str) -> Task | None:
    res = await db.execute(select(Task).where(Task.id == task_id, Task.user_id == user_id))
    return res.scalar_one_or_none()


async def list_tasks(
    db: AsyncSession,
    user_id: str,
    *,
    status: str | None = None,
    assigned_to: str | None = None,
) -> list[Task]:
    stmt = select(Task).where(Task.user_id == user_id)
    if status is not None:
        stmt = stmt.where(Task.status == status)
    if assigned_to is not None:
        stmt = stmt.where(Task.assigned_to == assigned_to)
    res = await db.execute(stmt.order_by(Task.created_at.desc()))
    return list(res.scalars().all())


async def refresh_status(db: AsyncSession, task: Task) -> str:
    # Picks up a cancellation committed by another session.
    res = await db.execute(select(Task.status).where(Task.id == task.id))
    status = res.scalar_one()
    if status != task.status:
        await db.refresh(task)
    return status


async def set_status_unless_cancelled(db: AsyncSession, task: Task, status: str, **values) -> bool:
    """Conditional status write; returns False when a cancel was committed first."""
    res = await db.execute(
        update(Task)
        .where(Task.id == task.id, Task.status != "cancelled")
        .values(status=status, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(task)
    return res.rowcount > 0


# Task logs (append-only)

async def add_task_log(db: AsyncSession, log: TaskLog) -> TaskLog:
    db.add(log)
    await db.commit()
    return log


async def list_task_logs(db: AsyncSession, task_id: str) -> list[TaskLog]:
    res = await db.execute(
        select(TaskLog)
        .where(TaskLog.task_id == task_id)
        # "started" sorts before the terminal entry of the same attempt
        .order_by(TaskLog.step_number, TaskLog.executed_at, case((TaskLog.status == "started", 0), else_=1))
    )
    return list(res.scalars().all())


# Ongoing instructions

async def create_instruction(db: AsyncSession, ins: OngoingInstruction) -> OngoingInstruction:
    db.add(ins)
    await db.commit()
    await db.refresh(ins)
    return ins


async def get_instruction(db: AsyncSession, user_id: str, instruction_id: str) -> OngoingInstruction | None:
    res = await db.execute(
        select(OngoingInstruction).where(
            OngoingInstruction.id == instruction_id,
            OngoingInstruction.user_id == user_id,
        )
    )
    return res.scalar_one_or_none()


async def list_active_instructions(db: AsyncSession, user_id: str) -> list[OngoingInstruction]:
    res = await db.execute(
        select(OngoingInstruction)
        .where(OngoingInstruction.user_id == user_id, OngoingInstruction.is_active.is_(True))
        .order_by(OngoingInstruction.priority.desc(), OngoingInstruction.created_at.desc())
    )
    return list(res.scalars().all())


async def list_instructions(db: AsyncSession, user_id: str) -> list[OngoingInstruction]:
    res = await db.execute(
        select(OngoingInstruction)
        .where(OngoingInstruction.user_id == user_id)
        .order_by(OngoingInstruction.created_at.desc())
    )
    return list(res.scalars().all())


async def deactivate_instruction(db: AsyncSession, ins: OngoingInstruction) -> OngoingInstruction:
    ins.is_active = False
    db.add(ins)
    await db.commit()
    await db.refresh(ins)
    return ins


# Document embeddings

async def latest_generation(db: AsyncSession, user_id: str, document_type: str, document_id: str) -> int:
    res = await db.execute(
        select(func.max(DocumentEmbedding.generation)).where(
            DocumentEmbedding.user_id == user_id,
            DocumentEmbedding.document_type == document_type,
            DocumentEmbedding.document_id == document_id,
        )
    )
    return res.scalar_one_or_none() or 0


async def add_embeddings(db: AsyncSession, rows: Iterable[DocumentEmbedding]) -> list[DocumentEmbedding]:
    rows = list(rows)
    db.add_all(rows)
    await db.commit()
    return rows


async def list_current_embeddings(db: AsyncSession, user_id: str) -> list[DocumentEmbedding]:
    """Newest generation of every document owned by ``user_id``."""
    newest = (
        select(
            DocumentEmbedding.document_type,
            DocumentEmbedding.document_id,
            func.max(DocumentEmbedding.generation).label("generation"),
        )
        .where(DocumentEmbedding.user_id == user_id)
        .group_by(DocumentEmbedding.document_type, DocumentEmbedding.document_id)
        .subquery()
    )
    res = await db.execute(
        select(DocumentEmbedding)
        .join(
            newest,
            (DocumentEmbedding.document_type == newest.c.document_type)
            & (DocumentEmbedding.document_id == newest.c.document_id)
            & (DocumentEmbedding.generation == newest.c.generation),
        )
        .where(DocumentEmbedding.user_id == user_id)
    )
    return list(res.scalars().all())


# Chat

async def get_chat_session(db: AsyncSession, user_id: str, session_id: str) -> ChatSession | None:
    res = await db.execute(
        select(ChatSession).where(ChatSession.user_id == user_id, ChatSession.session_id == session_id)
    )
    return res.scalar_one_or_none()


async def list_chat_sessions(db: AsyncSession, user_id: str, limit: int = 20) -> list[ChatSession]:
    res = await db.execute(
        select(ChatSession)
        .where(ChatSession.user_id == user_id, ChatSession.is_active.is_(True))
        .order_by(ChatSession.last_message_at.desc(), ChatSession.created_at.desc())
        .limit(limit)
    )
    return list(res.scalars().all())


async def list_chat_messages(db: AsyncSession, session_pk: str, limit: int | None = None) -> list[ChatMessage]:
    stmt = select(ChatMessage).where(ChatMessage.session_pk == session_pk)
    if limit is not None:
        res = await db.execute(stmt.order_by(ChatMessage.created_at.desc()).limit(limit))
        return list(reversed(res.scalars().all()))
    res = await db.execute(stmt.order_by(ChatMessage.created_at))
    return list(res.scalars().all())


async def append_chat_messages(
    db: AsyncSession,
    session: ChatSession,
    messages: list[ChatMessage],
    at: datetime,
) -> ChatSession:
    """Insert ``messages`` and bump the session aggregates in one transaction.

    If ``session`` is new and another writer created the same
    (user_id, session_id) first, the messages are re-pointed at the
    existing row and the append is retried once.
    """
    pk, user_id, session_id = session.id, session.user_id, session.session_id
    try:
        return await _append_chat_messages(db, session, messages, at)
    except IntegrityError:
        existing = await get_chat_session(db, user_id, session_id)
        if existing is None or existing.id == pk:
            raise
    for m in messages:
        m.session_pk = existing.id
    return await _append_chat_messages(db, existing, messages, at)


async def _append_chat_messages(
    db: AsyncSession,
    session: ChatSession,
    messages: list[ChatMessage],
    at: datetime,
) -> ChatSession:
    try:
        db.add(session)
        await db.flush()
        db.add_all(messages)
        await db.execute(
            update(ChatSession)
            .where(ChatSession.id == session.id)
            .values(
                message_count=ChatSession.message_count + len(messages),
                last_message_at=at,
            )
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(session)
    return session


async def save_chat_session(db: AsyncSession, session: ChatSession) -> ChatSession:
    db.add(session)
    await db.commit()
    await db.refresh(session)
    return session
