"""
Writes the append-only step audit trail (TaskLog).
What it records:
- Step start
- Step completion with the tool result
- Step failure with the error

And, the main purpose:
Replay and audit of task execution; one "started" and one terminal entry
per step attempt.
"""


import json
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from aide.core.ids import new_id
from aide.db.models import Task, TaskLog
from aide.db.repo import add_task_log


def _safe_jsonable(value: Any) -> Any:
    try:
        json.dumps(value, ensure_ascii=False)
        return value
    except (TypeError, ValueError):
        return str(value)


def step_log(task: Task, step_number: int, action: str, status: str, details: str = "", metadata: dict | None = None) -> TaskLog:
    return TaskLog(
        id=new_id("log"),
        task_id=task.id,
        step_number=step_number,
        action=action,
        status=status,
        details=details,
        meta={k: _safe_jsonable(v) for k, v in (metadata or {}).items()},
    )


async def trace(db: AsyncSession, task: Task, step_number: int, action: str, status: str, details: str = "", metadata: dict | None = None) -> TaskLog:
    return await add_task_log(db, step_log(task, step_number, action, status, details, metadata))
