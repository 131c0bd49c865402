import json

import pytest

from aide.agent import classifier
from aide.agent.heuristics import InstructionKind
from aide.core.errors import CollaboratorTimeout, NotFoundError, ValidationError
from aide.db import repo
from conftest import FakeAI


class TestOngoingInstructions:
    @pytest.mark.asyncio
    async def test_urgent_rule(self, db, tools):
        text = "Urgent: notify me immediately if any email contains 'emergency'"
        out = await classifier.process_instruction(db, "u1", text, ai=FakeAI(), tools=tools)
        assert out.kind is InstructionKind.ONGOING
        assert out.ok
        assert out.instruction.priority == 5
        assert out.instruction.is_active is True
        assert out.instruction.instruction == text

    @pytest.mark.asyncio
    async def test_important_rule(self, db):
        ins = await classifier.create_ongoing_instruction(db, "u1", "Important: track all meetings with clients")
        assert ins.priority == 3

    @pytest.mark.asyncio
    async def test_blank_rule_is_rejected(self, db):
        with pytest.raises(ValidationError):
            await classifier.create_ongoing_instruction(db, "u1", "   ")
        assert await classifier.list_instructions(db, "u1") == []

    @pytest.mark.asyncio
    async def test_active_rules_ordered_by_priority(self, db):
        low = await classifier.create_ongoing_instruction(db, "u1", "When a meeting is booked, tell me")
        high = await classifier.create_ongoing_instruction(db, "u1", "Urgent: if the CEO emails, ping me")
        await classifier.create_ongoing_instruction(db, "u2", "Always urgent for someone else")
        active = await classifier.list_instructions(db, "u1", active_only=True)
        assert [i.id for i in active] == [high.id, low.id]

    @pytest.mark.asyncio
    async def test_deactivate(self, db):
        ins = await classifier.create_ongoing_instruction(db, "u1", "When Bob emails, flag it")
        await classifier.deactivate_instruction(db, "u1", ins.id)
        assert await classifier.list_instructions(db, "u1", active_only=True) == []
        assert len(await classifier.list_instructions(db, "u1")) == 1

    @pytest.mark.asyncio
    async def test_deactivate_other_users_rule(self, db):
        ins = await classifier.create_ongoing_instruction(db, "u1", "When Bob emails, flag it")
        with pytest.raises(NotFoundError):
            await classifier.deactivate_instruction(db, "u2", ins.id)


class TestRouting:
    @pytest.mark.asyncio
    async def test_empty_instruction_is_rejected(self, db, tools):
        with pytest.raises(ValidationError):
            await classifier.process_instruction(db, "u1", "  ", ai=FakeAI(), tools=tools)

    @pytest.mark.asyncio
    async def test_task_instruction_runs_a_task(self, db, tools, tool_calls):
        plan = {"title": "Look up Ada", "steps": [{"action": "search_contacts", "parameters": {"query": "Ada"}}]}
        ai = FakeAI(replies=[json.dumps(plan)])
        out = await classifier.process_instruction(db, "u1", "Find Ada in my contacts", ai=ai, tools=tools)
        assert out.kind is InstructionKind.TASK
        assert out.task.status == "completed"
        assert tool_calls == [("search_contacts", "u1", {"query": "Ada"})]

    @pytest.mark.asyncio
    async def test_planner_failure_is_reported_not_raised(self, db, tools):
        ai = FakeAI(replies=[CollaboratorTimeout("planner timed out")])
        out = await classifier.process_instruction(db, "u1", "Send Ada the deck", ai=ai, tools=tools)
        assert out.kind is InstructionKind.TASK
        assert not out.ok
        assert "timed out" in out.error
        assert await repo.list_tasks(db, "u1") == []

    @pytest.mark.asyncio
    async def test_question_is_answered_in_a_session(self, db, tools):
        ai = FakeAI(replies=["Ada works at Acme."])
        out = await classifier.process_instruction(db, "u1", "Who is Ada?", session_id="s-1", ai=ai, tools=tools)
        assert out.kind is InstructionKind.IMMEDIATE
        assert out.answer == "Ada works at Acme."
        assert out.session_id == "s-1"
        session = await repo.get_chat_session(db, "u1", "s-1")
        assert session.message_count == 2

    @pytest.mark.asyncio
    async def test_question_without_session_gets_one(self, db, tools):
        out = await classifier.process_instruction(db, "u1", "Who is Ada?", ai=FakeAI(replies=["No idea."]), tools=tools)
        assert out.session_id
        assert await repo.get_chat_session(db, "u1", out.session_id) is not None
