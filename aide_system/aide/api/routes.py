"""
FastAPI routes for interacting with the assistant.
What it provides:
- Instruction endpoints (route / list / deactivate)
- Task endpoints (create / execute / resume / cancel / status / logs)
- Event ingestion for proactive rules
- Chat and retrieval endpoints
- Document indexing

And, the main purpose:
Expose the agent core over HTTP for the UI layer.
"""


from typing import AsyncIterator

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from aide.agent import classifier, proactive, tasks
from aide.api.types import (
    ChatMessageOut,
    ChatRequest,
    ChatSessionOut,
    CreateTaskRequest,
    EventRequest,
    IndexDocumentRequest,
    InstructionOut,
    InstructionRequest,
    RenameSessionRequest,
    RetrieveRequest,
    TaskLogOut,
    TaskOut,
    UserRequest,
)
from aide.db.session import SessionLocal, get_session
from aide.jobs.queue import JobQueue
from aide.jobs.workers import get_job_queue, schedule_task_execution
from aide.llm.router import AIClient, get_ai_client
from aide.rag import chat, retrieval, store
from aide.tools.registry import ToolRegistry, default_registry

router = APIRouter()


async def get_db() -> AsyncIterator[AsyncSession]:
    async for db in get_session():
        yield db


def get_session_factory():
    return SessionLocal


def get_ai() -> AIClient:
    return get_ai_client()


def get_tools() -> ToolRegistry:
    return default_registry()


def get_queue() -> JobQueue:
    return get_job_queue()


def _task_out(t) -> dict:
    return TaskOut.model_validate(t).model_dump(mode="json")


# Instructions

@router.post("/instructions")
async def api_process_instruction(
    req: InstructionRequest,
    db: AsyncSession = Depends(get_db),
    ai: AIClient = Depends(get_ai),
    tools: ToolRegistry = Depends(get_tools),
):
    out = await classifier.process_instruction(db, req.user_id, req.text, session_id=req.session_id, ai=ai, tools=tools)
    body = {"kind": out.kind.value, "ok": out.ok}
    if out.instruction is not None:
        body["instruction"] = InstructionOut.model_validate(out.instruction).model_dump(mode="json")
    if out.task is not None:
        body["task"] = _task_out(out.task)
    if out.answer is not None:
        body["answer"] = out.answer
        body["session_id"] = out.session_id
    if out.error is not None:
        body["error"] = out.error
    return body


@router.get("/instructions")
async def api_list_instructions(user_id: str, active_only: bool = False, db: AsyncSession = Depends(get_db)):
    rows = await classifier.list_instructions(db, user_id, active_only=active_only)
    return [InstructionOut.model_validate(r).model_dump(mode="json") for r in rows]


@router.post("/instructions/{instruction_id}/deactivate")
async def api_deactivate_instruction(instruction_id: str, req: UserRequest, db: AsyncSession = Depends(get_db)):
    ins = await classifier.deactivate_instruction(db, req.user_id, instruction_id)
    return InstructionOut.model_validate(ins).model_dump(mode="json")


# Tasks

@router.post("/tasks")
async def api_create_task(
    req: CreateTaskRequest,
    db: AsyncSession = Depends(get_db),
    tools: ToolRegistry = Depends(get_tools),
):
    t = await tasks.create_task(
        db,
        req.user_id,
        title=req.title,
        description=req.description,
        steps=[s.model_dump(exclude_none=True) for s in req.steps],
        priority=req.priority,
        context=req.context,
        assigned_to=req.assigned_to,
        due_date=req.due_date,
    )
    if req.execute:
        t = await tasks.execute_task(db, req.user_id, t, tools=tools)
    return _task_out(t)


@router.get("/tasks")
async def api_list_tasks(
    user_id: str,
    status: str | None = None,
    assigned_to: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    rows = await tasks.list_tasks(db, user_id, status=status, assigned_to=assigned_to)
    return [_task_out(t) for t in rows]


@router.get("/tasks/{task_id}")
async def api_get_task(task_id: str, user_id: str, db: AsyncSession = Depends(get_db)):
    return _task_out(await tasks.get_task(db, user_id, task_id))


@router.get("/tasks/{task_id}/logs")
async def api_task_logs(task_id: str, user_id: str, db: AsyncSession = Depends(get_db)):
    logs = await tasks.get_task_logs(db, user_id, task_id)
    return [TaskLogOut.model_validate(l).model_dump(mode="json") for l in logs]


@router.post("/tasks/{task_id}/execute")
async def api_execute_task(
    task_id: str,
    req: UserRequest,
    background: bool = False,
    db: AsyncSession = Depends(get_db),
    tools: ToolRegistry = Depends(get_tools),
    queue: JobQueue = Depends(get_queue),
    session_factory=Depends(get_session_factory),
):
    t = await tasks.get_task(db, req.user_id, task_id)
    if background:
        queued = schedule_task_execution(queue, session_factory, req.user_id, t.id, tools=tools)
        return {"task_id": t.id, "queued": queued}
    return _task_out(await tasks.execute_task(db, req.user_id, t, tools=tools))


@router.post("/tasks/{task_id}/next-step")
async def api_execute_next_step(
    task_id: str,
    req: UserRequest,
    db: AsyncSession = Depends(get_db),
    tools: ToolRegistry = Depends(get_tools),
):
    t = await tasks.get_task(db, req.user_id, task_id)
    return _task_out(await tasks.execute_next_step(db, req.user_id, t, tools=tools))


@router.post("/tasks/{task_id}/resume")
async def api_resume_task(
    task_id: str,
    req: UserRequest,
    db: AsyncSession = Depends(get_db),
    tools: ToolRegistry = Depends(get_tools),
):
    return _task_out(await tasks.resume_task(db, req.user_id, task_id, tools=tools))


@router.post("/tasks/{task_id}/cancel")
async def api_cancel_task(task_id: str, req: UserRequest, db: AsyncSession = Depends(get_db)):
    return _task_out(await tasks.cancel_task(db, req.user_id, task_id))


# Events

@router.post("/events")
async def api_event(
    req: EventRequest,
    db: AsyncSession = Depends(get_db),
    ai: AIClient = Depends(get_ai),
    tools: ToolRegistry = Depends(get_tools),
    queue: JobQueue = Depends(get_queue),
    session_factory=Depends(get_session_factory),
):
    ack = await proactive.handle_event(
        db, req.user_id, req.event_type, req.payload,
        ai=ai, tools=tools, queue=queue, session_factory=session_factory,
    )
    return {"ok": True, "event_type": ack.event_type, "matched": ack.matched, "task_ids": ack.task_ids}


# Chat

@router.post("/chat")
async def api_chat(
    req: ChatRequest,
    db: AsyncSession = Depends(get_db),
    ai: AIClient = Depends(get_ai),
    tools: ToolRegistry = Depends(get_tools),
):
    session_id = req.session_id or chat.new_session_id()
    reply = await chat.answer(db, req.user_id, session_id, req.query, ai=ai, tools=tools)
    return {"session_id": session_id, "answer": reply}


@router.get("/chat/sessions")
async def api_chat_sessions(user_id: str, limit: int = 20, db: AsyncSession = Depends(get_db)):
    rows = await chat.list_sessions(db, user_id, limit)
    return [ChatSessionOut.model_validate(s).model_dump(mode="json") for s in rows]


@router.get("/chat/sessions/{session_id}")
async def api_chat_session(session_id: str, user_id: str, db: AsyncSession = Depends(get_db)):
    session, messages = await chat.get_session_with_messages(db, user_id, session_id)
    return {
        "session": ChatSessionOut.model_validate(session).model_dump(mode="json"),
        "messages": [ChatMessageOut.model_validate(m).model_dump(mode="json") for m in messages],
    }


@router.post("/chat/sessions/{session_id}/archive")
async def api_archive_session(session_id: str, req: UserRequest, db: AsyncSession = Depends(get_db)):
    session = await chat.archive_session(db, req.user_id, session_id)
    return ChatSessionOut.model_validate(session).model_dump(mode="json")


@router.post("/chat/sessions/{session_id}/rename")
async def api_rename_session(session_id: str, req: RenameSessionRequest, db: AsyncSession = Depends(get_db)):
    session = await chat.rename_session(db, req.user_id, session_id, req.title)
    return ChatSessionOut.model_validate(session).model_dump(mode="json")


# Retrieval

@router.post("/retrieve")
async def api_retrieve(req: RetrieveRequest, db: AsyncSession = Depends(get_db), ai: AIClient = Depends(get_ai)):
    chunks = await retrieval.retrieve(db, req.user_id, req.query, req.k, ai=ai)
    return [{"content": c.content, "metadata": c.metadata, **c.source()} for c in chunks]


@router.post("/documents")
async def api_index_document(req: IndexDocumentRequest, db: AsyncSession = Depends(get_db), ai: AIClient = Depends(get_ai)):
    rows = await store.index_source_document(db, req.user_id, req.document_type, req.document, ai=ai)
    return {"indexed": len(rows), "generation": rows[0].generation if rows else None}
