"""
Task state machine.
What it does:
- Creates tasks with their pre-declared step plan
- Runs steps sequentially through the tool registry
- Writes one started/terminal TaskLog pair per step attempt
- Stops at human-in-the-loop steps (waiting) until resumed
- Handles cancellation between steps

And, the main purpose:
Own the Task lifecycle: pending -> in_progress -> {completed, failed, waiting, cancelled}.
"""


import asyncio
import weakref
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from aide.agent.heuristics import determine_priority
from aide.agent.planner import make_plan
from aide.agent.tracer import step_log, trace
from aide.core.errors import NotFoundError, ValidationError
from aide.core.ids import new_id
from aide.core.logging import get_logger
from aide.db import repo
from aide.db.models import Task, TaskLog, utcnow
from aide.llm.router import AIClient, get_ai_client
from aide.tools.registry import ToolContext, ToolRegistry, default_registry

log = get_logger("agent.tasks")

TERMINAL = {"completed", "failed", "cancelled"}
TRANSITIONS = {
    "pending": {"in_progress", "completed", "cancelled"},
    "in_progress": {"completed", "failed", "waiting", "cancelled"},
    "waiting": {"in_progress", "cancelled"},
    "completed": set(),
    "failed": set(),
    "cancelled": set(),
}


_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


@asynccontextmanager
async def task_lock(task_id: str):
    """Serializes everything that advances one task inside this process."""
    lock = _locks.get(task_id)
    if lock is None:
        lock = asyncio.Lock()
        _locks[task_id] = lock
    async with lock:
        yield


def _transition(task: Task, status: str) -> None:
    _check_transition(task, status)
    task.status = status
    if status == "completed":
        task.completed_at = utcnow()


def _check_transition(task: Task, status: str) -> None:
    if status not in TRANSITIONS[task.status]:
        raise ValidationError(f"Task {task.id} cannot move from {task.status} to {status}")


async def _settle(db: AsyncSession, task: Task, status: str) -> Task:
    # A cancel committed by another session is never overwritten.
    _check_transition(task, status)
    extra = {"completed_at": utcnow()} if status == "completed" else {}
    if not await repo.set_status_unless_cancelled(db, task, status, **extra):
        log.info(f"Task {task.id} was cancelled while running; not marking it {status}")
    return task


def _validate_steps(steps) -> list:
    # Only the container shape is checked here; a step without an action
    # fails when it is reached, leaving a failed log behind.
    if steps is None:
        return []
    if not isinstance(steps, list) or not all(isinstance(s, dict) for s in steps):
        raise ValidationError("steps must be a list of step objects")
    return [dict(s) for s in steps]


async def create_task(
    db: AsyncSession,
    user_id: str,
    *,
    title: str,
    description: str = "",
    steps: list[dict] | None = None,
    priority: int = 1,
    context: dict | None = None,
    assigned_to: str | None = None,
    due_date: datetime | None = None,
    metadata: dict | None = None,
) -> Task:
    if not user_id:
        raise ValidationError("user_id is required")
    if not (title or "").strip():
        raise ValidationError("Task title is required")
    if not isinstance(priority, int) or priority < 1:
        raise ValidationError("priority must be a positive integer")

    task = Task(
        id=new_id("task"),
        user_id=user_id,
        title=title.strip(),
        description=description or "",
        status="pending",
        priority=priority,
        context=dict(context or {}),
        steps=_validate_steps(steps),
        current_step=0,
        assigned_to=assigned_to,
        due_date=due_date,
        meta=dict(metadata or {}),
    )
    task = await repo.create_task(db, task)
    log.info(f"Created task {task.id} for user {user_id}: {task.title} ({len(task.steps)} steps)")
    return task


async def get_task(db: AsyncSession, user_id: str, task_id: str) -> Task:
    task = await repo.get_task(db, user_id, task_id)
    if task is None:
        raise NotFoundError(f"Task {task_id} not found")
    return task


async def list_tasks(db: AsyncSession, user_id: str, *, status: str | None = None, assigned_to: str | None = None) -> list[Task]:
    return await repo.list_tasks(db, user_id, status=status, assigned_to=assigned_to)


async def get_task_logs(db: AsyncSession, user_id: str, task_id: str) -> list[TaskLog]:
    task = await get_task(db, user_id, task_id)
    return await repo.list_task_logs(db, task.id)


async def _run_steps(db: AsyncSession, user_id: str, task: Task, tools: ToolRegistry) -> Task:
    while True:
        if await repo.refresh_status(db, task) == "cancelled":
            log.info(f"Task {task.id} was cancelled before step {task.current_step + 1}")
            return task

        if task.current_step >= len(task.steps):
            task = await _settle(db, task, "completed")
            log.info(f"Task {task.id} finished as {task.status}")
            return task

        step = task.steps[task.current_step]
        step_number = task.current_step + 1
        action = step.get("action")
        action_name = action if isinstance(action, str) and action.strip() else "unknown"

        await trace(db, task, step_number, action_name, "started", f"Starting step: {step.get('description') or action_name}")

        try:
            if action_name == "unknown":
                raise ValidationError(f"Step {step_number} is missing its action")
            params = step.get("parameters") or {}
            if not isinstance(params, dict):
                raise ValidationError(f"Step {step_number} parameters must be an object")
            tool = tools.get(action_name)
            result = await tool(ToolContext(user_id=user_id, task_id=task.id, task_context=dict(task.context or {})), params)
        except Exception as e:
            log.warning(f"Task {task.id} step {step_number} ({action_name}) failed: {e}")
            db.add(step_log(task, step_number, action_name, "failed", f"Step failed: {e}", {"error_type": type(e).__name__}))
            if await repo.refresh_status(db, task) == "cancelled":
                return await repo.save_task(db, task)
            return await _settle(db, task, "failed")

        db.add(step_log(task, step_number, action_name, "completed", "Step completed successfully", {"result": result}))
        task.current_step = step_number
        cancelled = await repo.refresh_status(db, task) == "cancelled"
        if step.get("wait_for_response") and not cancelled:
            task = await _settle(db, task, "waiting")
            log.info(f"Task {task.id} is {task.status} after step {step_number}")
            return task
        task = await repo.save_task(db, task)


async def execute_task(db: AsyncSession, user_id: str, task: Task, *, tools: ToolRegistry | None = None) -> Task:
    tools = tools or default_registry()
    async with task_lock(task.id):
        await repo.refresh_status(db, task)
        if task.status in TERMINAL:
            log.info(f"Task {task.id} already {task.status}; nothing to execute")
            return task
        if task.status == "waiting":
            raise ValidationError(f"Task {task.id} is waiting for a response; resume it instead")

        if not task.steps:
            return await _settle(db, task, "completed")

        if task.status == "pending":
            _transition(task, "in_progress")
            task = await repo.save_task(db, task)
            log.info(f"Task {task.id} started")
        return await _run_steps(db, user_id, task, tools)


async def execute_next_step(db: AsyncSession, user_id: str, task: Task, *, tools: ToolRegistry | None = None) -> Task:
    tools = tools or default_registry()
    async with task_lock(task.id):
        await repo.refresh_status(db, task)
        if task.status in TERMINAL:
            return task
        if task.status == "waiting":
            raise ValidationError(f"Task {task.id} is waiting for a response; resume it instead")
        if task.status == "pending" and task.current_step < len(task.steps):
            _transition(task, "in_progress")
            task = await repo.save_task(db, task)
        return await _run_steps(db, user_id, task, tools)


async def resume_task(db: AsyncSession, user_id: str, task_id: str, *, tools: ToolRegistry | None = None) -> Task:
    tools = tools or default_registry()
    task = await get_task(db, user_id, task_id)
    async with task_lock(task.id):
        await repo.refresh_status(db, task)
        if task.status != "waiting":
            raise ValidationError(f"Task {task.id} is {task.status}, only waiting tasks can be resumed")
        _transition(task, "in_progress")
        task = await repo.save_task(db, task)
        log.info(f"Task {task.id} resumed at step {task.current_step + 1}")
        return await _run_steps(db, user_id, task, tools)


async def cancel_task(db: AsyncSession, user_id: str, task_id: str) -> Task:
    # No task lock: a step in flight finishes its log pair, then the runner sees the cancel.
    task = await get_task(db, user_id, task_id)
    await repo.refresh_status(db, task)
    _transition(task, "cancelled")
    task = await repo.save_task(db, task)
    log.info(f"Task {task.id} cancelled")
    return task


async def create_task_from_instruction(
    db: AsyncSession,
    user_id: str,
    instruction: str,
    *,
    ai: AIClient | None = None,
    tools: ToolRegistry | None = None,
) -> Task:
    ai = ai or get_ai_client()
    tools = tools or default_registry()
    plan = await make_plan(ai, tools, instruction=instruction)
    task = await create_task(
        db,
        user_id,
        title=plan.title,
        description=instruction,
        steps=[s.model_dump() for s in plan.steps],
        priority=determine_priority(instruction),
        assigned_to="ai_agent",
        context={"original_instruction": instruction, "created_by": "ai_agent"},
    )
    return await execute_task(db, user_id, task, tools=tools)
