"""
Job entry points.

Each job opens its own database session; the request that scheduled it has
usually returned (and closed its session) by the time it runs.
"""


from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from aide.agent import tasks
from aide.core.logging import get_logger
from aide.jobs.queue import JobQueue
from aide.tools.registry import ToolRegistry

log = get_logger("jobs.workers")

SessionFactory = Callable[[], AsyncSession]

_queue: JobQueue | None = None


def get_job_queue() -> JobQueue:
    global _queue
    if _queue is None:
        _queue = JobQueue()
    return _queue


def task_job_key(task_id: str) -> str:
    return f"task:{task_id}"


async def run_task_job(
    session_factory: SessionFactory,
    user_id: str,
    task_id: str,
    *,
    tools: ToolRegistry | None = None,
    resume: bool = False,
):
    async with session_factory() as db:
        if resume:
            task = await tasks.resume_task(db, user_id, task_id, tools=tools)
        else:
            task = await tasks.get_task(db, user_id, task_id)
            task = await tasks.execute_task(db, user_id, task, tools=tools)
        log.info(f"Task job {task_id} ended with status {task.status}")
        return task.status


def schedule_task_execution(
    queue: JobQueue,
    session_factory: SessionFactory,
    user_id: str,
    task_id: str,
    *,
    tools: ToolRegistry | None = None,
    resume: bool = False,
) -> bool:
    return queue.enqueue(
        f"execute_task:{task_id}",
        lambda: run_task_job(session_factory, user_id, task_id, tools=tools, resume=resume),
        category="ai",
        unique_key=task_job_key(task_id),
    )
