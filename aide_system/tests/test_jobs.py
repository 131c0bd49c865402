import asyncio
from datetime import timedelta

import pytest

from aide.agent import tasks
from aide.jobs.cadence import InMemoryPresence, next_sync_delay
from aide.jobs.queue import JobQueue
from aide.jobs.workers import run_task_job, schedule_task_execution, task_job_key


class TestJobQueue:
    @pytest.mark.asyncio
    async def test_duplicate_key_is_dropped_while_pending(self):
        queue = JobQueue({"ai": 1})
        gate = asyncio.Event()
        runs = []

        async def job():
            runs.append(1)
            await gate.wait()

        assert queue.enqueue("a", job, unique_key="task:1") is True
        assert queue.enqueue("a-again", job, unique_key="task:1") is False
        assert queue.is_pending("task:1")

        gate.set()
        await queue.drain()
        assert runs == [1]
        assert not queue.is_pending("task:1")
        assert queue.enqueue("a-later", job, unique_key="task:1") is True
        await queue.drain()
        assert runs == [1, 1]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded_per_category(self):
        queue = JobQueue({"ai": 2, "sync": 1})
        running = 0
        peak = 0

        async def job():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        for i in range(6):
            queue.enqueue(f"job-{i}", job, category="ai")
        await queue.drain()
        assert peak == 2

    @pytest.mark.asyncio
    async def test_failures_are_recorded_not_retried(self):
        queue = JobQueue({"ai": 1})
        attempts = []

        async def job():
            attempts.append(1)
            raise RuntimeError("boom")

        queue.enqueue("bad", job, unique_key="k")
        await queue.drain()
        assert attempts == [1]
        assert [name for name, _ in queue.failures] == ["bad"]
        assert not queue.is_pending("k")

    def test_unknown_category(self):
        with pytest.raises(ValueError):
            JobQueue({"ai": 1}).enqueue("x", lambda: None, category="gpu")


class TestCadence:
    def test_online_and_offline_intervals(self):
        assert next_sync_delay(True) == timedelta(seconds=5)
        assert next_sync_delay(False) == timedelta(minutes=30)

    def test_elapsed_time_is_subtracted(self):
        assert next_sync_delay(True, timedelta(seconds=2)) == timedelta(seconds=3)
        assert next_sync_delay(False, 600) == timedelta(minutes=20)

    def test_never_negative(self):
        assert next_sync_delay(True, timedelta(hours=1)) == timedelta(0)

    def test_presence(self):
        presence = InMemoryPresence()
        assert not presence.is_online("u1")
        presence.mark_online("u1")
        assert presence.is_online("u1")
        presence.mark_offline("u1")
        assert not presence.is_online("u1")


class TestTaskJobs:
    @pytest.mark.asyncio
    async def test_run_task_job_executes_in_its_own_session(self, db, session_factory, tools):
        t = await tasks.create_task(db, "u1", title="job", steps=[{"action": "search_contacts"}])
        status = await run_task_job(session_factory, "u1", t.id, tools=tools)
        assert status == "completed"

    @pytest.mark.asyncio
    async def test_redelivery_of_a_finished_task_is_a_no_op(self, db, session_factory, tools, tool_calls):
        t = await tasks.create_task(db, "u1", title="job", steps=[{"action": "search_contacts"}])
        await run_task_job(session_factory, "u1", t.id, tools=tools)
        await run_task_job(session_factory, "u1", t.id, tools=tools)
        assert len(tool_calls) == 1

    @pytest.mark.asyncio
    async def test_schedule_uses_the_task_key(self, db, session_factory, tools, queue):
        t = await tasks.create_task(db, "u1", title="job", steps=[{"action": "search_contacts"}])
        assert schedule_task_execution(queue, session_factory, "u1", t.id, tools=tools) is True
        assert queue.is_pending(task_job_key(t.id))
        assert schedule_task_execution(queue, session_factory, "u1", t.id, tools=tools) is False
        await queue.drain()
        assert queue.failures == []
