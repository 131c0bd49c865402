"""
Proactive event matcher.
What it does:
- Loads the user's active ongoing instructions (priority, then most recent)
- Scores each one against the incoming event's keywords
- Plans a follow-up task for every triggered instruction
- Schedules the task on the job queue without waiting for it

And, the main purpose:
Turn standing rules into work when Gmail/Calendar/CRM events arrive.
Event delivery is never blocked: every failure is logged, not raised.
"""


import json
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from aide.agent.heuristics import extract_event_keywords, normalize_event_type, relevance_score
from aide.agent.planner import make_proactive_plan
from aide.agent.tasks import create_task
from aide.core.config import settings
from aide.core.logging import get_logger
from aide.db import repo
from aide.db.session import SessionLocal
from aide.jobs.queue import JobQueue
from aide.jobs.workers import SessionFactory, get_job_queue, schedule_task_execution
from aide.llm.router import AIClient, get_ai_client
from aide.tools.registry import ToolRegistry, default_registry

log = get_logger("agent.proactive")


@dataclass
class EventAck:
    event_type: str
    matched: list[str] = field(default_factory=list)
    task_ids: list[str] = field(default_factory=list)
    errors: int = 0


def _jsonable(payload: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(payload, default=str))


async def handle_event(
    db: AsyncSession,
    user_id: str,
    event_type: str,
    payload: dict[str, Any] | None,
    *,
    ai: AIClient | None = None,
    tools: ToolRegistry | None = None,
    queue: JobQueue | None = None,
    session_factory: SessionFactory | None = None,
) -> EventAck:
    kind = normalize_event_type(event_type)
    ack = EventAck(event_type=kind)
    if payload is not None and not isinstance(payload, dict):
        log.warning(f"Event {kind} for user {user_id}: payload is {type(payload).__name__}, not a mapping; ignoring it")
        ack.errors += 1
        payload = None
    try:
        payload = _jsonable(payload or {})
        # Plain tuples: a rollback below must not expire what we iterate over.
        instructions = [(i.id, i.instruction, i.priority) for i in await repo.list_active_instructions(db, user_id)]
    except Exception as e:
        log.error(f"Failed to load ongoing instructions for user {user_id}: {e}", exc_info=True)
        ack.errors += 1
        return ack

    if not instructions:
        log.debug(f"No active ongoing instructions for user {user_id}; event {kind} ignored")
        return ack

    try:
        keywords = extract_event_keywords(kind, payload)
    except Exception as e:
        log.error(f"Failed to extract keywords from event {kind}: {e}", exc_info=True)
        ack.errors += 1
        return ack
    log.info(f"Event {kind} for user {user_id}: checking {len(instructions)} instruction(s) against {keywords}")

    for ins in instructions:
        ins_id, text, _ = ins
        try:
            score = relevance_score(text, keywords)
        except Exception as e:
            log.error(f"Failed to score instruction {ins_id} against event {kind}: {e}", exc_info=True)
            ack.errors += 1
            continue
        if score <= settings.RELEVANCE_THRESHOLD:
            continue
        ack.matched.append(ins_id)
        log.info(f"Instruction {ins_id} triggered by {kind} (score {score})")
        try:
            task_id = await _trigger(db, user_id, ins, kind, payload, ai=ai, tools=tools, queue=queue, session_factory=session_factory)
        except Exception as e:
            ack.errors += 1
            log.error(f"Failed to act on instruction {ins_id} for event {kind}: {e}", exc_info=True)
            try:
                await db.rollback()
            except Exception as rollback_error:
                log.error(f"Rollback after failed trigger also failed: {rollback_error}")
            continue
        if task_id:
            ack.task_ids.append(task_id)

    return ack


async def _trigger(
    db: AsyncSession,
    user_id: str,
    ins: tuple[str, str, int],
    kind: str,
    payload: dict[str, Any],
    *,
    ai: AIClient | None,
    tools: ToolRegistry | None,
    queue: JobQueue | None,
    session_factory: SessionFactory | None,
) -> str | None:
    ai = ai or get_ai_client()
    tools = tools or default_registry()
    instruction_id, text, priority = ins
    plan = await make_proactive_plan(ai, tools, instruction=text, event_type=kind, event=payload)
    if not plan.steps:
        log.info(f"Instruction {instruction_id}: planner decided no action is needed for {kind}")
        return None

    task = await create_task(
        db,
        user_id,
        title=plan.title,
        description=f"Triggered by {kind}: {text}",
        steps=[s.model_dump() for s in plan.steps],
        priority=priority,
        assigned_to="ai_agent",
        context={
            "trigger": "ongoing_instruction",
            "instruction_id": instruction_id,
            "event_type": kind,
            "event": payload,
        },
    )

    schedule_task_execution(queue or get_job_queue(), session_factory or SessionLocal, user_id, task.id, tools=tools)
    return task.id
