import asyncio

import pytest

from aide.core.errors import CollaboratorTimeout, InvalidResponse, NotFoundError, RateLimited, ValidationError
from aide.db import repo
from aide.llm.schemas import ToolCall
from aide.rag import chat
from aide.rag.store import index_document
from conftest import FakeAI, vector_for


async def _messages(db, user_id, session_id):
    session = await repo.get_chat_session(db, user_id, session_id)
    if session is None:
        return None, []
    return session, await repo.list_chat_messages(db, session.id)


class TestSessionTitle:
    def test_short_message_is_kept(self):
        assert chat.session_title("Who is Ada?") == "Who is Ada?"

    def test_long_message_is_truncated(self):
        text = "x" * 80
        assert chat.session_title(text) == "x" * 50 + "..."

    def test_exact_length_is_not_marked(self):
        assert chat.session_title("y" * 50) == "y" * 50

    def test_empty_message(self):
        assert chat.session_title("") == "New Chat"
        assert chat.session_title(None) == "New Chat"


class TestAnswer:
    @pytest.mark.asyncio
    async def test_persists_the_pair_and_aggregates(self, db, tools):
        ai = FakeAI(replies=["Hello!"])
        reply = await chat.answer(db, "u1", "s1", "Hi there", ai=ai, tools=tools)

        assert reply == "Hello!"
        session, messages = await _messages(db, "u1", "s1")
        assert session.title == "Hi there"
        assert session.message_count == 2
        assert session.last_message_at is not None
        assert [(m.role, m.content) for m in messages] == [("user", "Hi there"), ("assistant", "Hello!")]

    @pytest.mark.asyncio
    async def test_history_is_sent_on_later_turns(self, db, tools):
        ai = FakeAI(replies=["first answer", "second answer"])
        await chat.answer(db, "u1", "s1", "first question", ai=ai, tools=tools)
        await chat.answer(db, "u1", "s1", "second question", ai=ai, tools=tools)

        sent = ai.calls[-1]["messages"]
        assert sent[0]["role"] == "system"
        assert [m["content"] for m in sent[1:]] == ["first question", "first answer", "second question"]
        session, messages = await _messages(db, "u1", "s1")
        assert session.message_count == 4
        assert len(messages) == 4

    @pytest.mark.asyncio
    async def test_completion_failure_persists_nothing(self, db, tools):
        ai = FakeAI(replies=[RateLimited("slow down")])
        with pytest.raises(RateLimited):
            await chat.answer(db, "u1", "s1", "Hi", ai=ai, tools=tools)
        session, messages = await _messages(db, "u1", "s1")
        assert session is None
        assert messages == []

    @pytest.mark.asyncio
    async def test_failure_on_existing_session_leaves_it_untouched(self, db, tools):
        ai = FakeAI(replies=["one", CollaboratorTimeout("timeout")])
        await chat.answer(db, "u1", "s1", "q1", ai=ai, tools=tools)
        with pytest.raises(CollaboratorTimeout):
            await chat.answer(db, "u1", "s1", "q2", ai=ai, tools=tools)
        session, messages = await _messages(db, "u1", "s1")
        assert session.message_count == 2
        assert len(messages) == 2

    @pytest.mark.asyncio
    async def test_empty_reply_is_an_invalid_response(self, db, tools):
        with pytest.raises(InvalidResponse):
            await chat.answer(db, "u1", "s1", "Hi", ai=FakeAI(replies=["   "]), tools=tools)
        assert (await _messages(db, "u1", "s1"))[0] is None

    @pytest.mark.asyncio
    async def test_blank_query_is_rejected(self, db, tools):
        with pytest.raises(ValidationError):
            await chat.answer(db, "u1", "s1", " ", ai=FakeAI(), tools=tools)

    @pytest.mark.asyncio
    async def test_context_and_sources(self, db, tools):
        content = "Ada Lovelace Acme ada@example.com"
        ai = FakeAI(replies=["Ada is at Acme."], vectors={content: vector_for("ada"), "Where does Ada work?": vector_for("ada")})
        await index_document(db, "u1", "hubspot_contact", "c1", content, {"name": "Ada Lovelace", "company": "Acme"}, ai=ai)

        await chat.answer(db, "u1", "s1", "Where does Ada work?", ai=ai, tools=tools)

        system = ai.calls[-1]["messages"][0]["content"]
        assert "Contact: Ada Lovelace (Acme)" in system
        _, messages = await _messages(db, "u1", "s1")
        sources = messages[-1].meta["sources"]
        assert sources[0]["document_id"] == "c1"
        assert sources[0]["score"] == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_embedding_failure_degrades_to_no_context(self, db, tools):
        ai = FakeAI(replies=["I can't see any records."], embed_error=CollaboratorTimeout("embed timeout"))
        reply = await chat.answer(db, "u1", "s1", "Who is Ada?", ai=ai, tools=tools)
        assert reply == "I can't see any records."
        assert "No specific context provided" in ai.calls[-1]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_tool_call_reply_is_executed(self, db, tools, tool_calls):
        ai = FakeAI(replies=[ToolCall(name="search_contacts", arguments={"query": "Ada"})])
        reply = await chat.answer(db, "u1", "s1", "Look up Ada", ai=ai, tools=tools)

        assert tool_calls == [("search_contacts", "u1", {"query": "Ada"})]
        assert "Ada Lovelace (ada@example.com)" in reply
        assert ai.calls[-1]["tools"]
        _, messages = await _messages(db, "u1", "s1")
        assert messages[-1].meta["tool"] == "search_contacts"

    @pytest.mark.asyncio
    async def test_failed_tool_call_is_reported_in_the_reply(self, db, tools):
        ai = FakeAI(replies=[ToolCall(name="explode", arguments={})])
        reply = await chat.answer(db, "u1", "s1", "Blow up", ai=ai, tools=tools)
        assert reply.startswith("I tried to explode but encountered an error")


class TestConcurrentTurns:
    @pytest.mark.asyncio
    async def test_parallel_turns_in_an_existing_session_are_all_counted(self, session_factory, tools):
        ai = FakeAI()
        async with session_factory() as db:
            await chat.answer(db, "u1", "s1", "opening question", ai=ai, tools=tools)

        async def turn(i):
            async with session_factory() as db:
                return await chat.answer(db, "u1", "s1", f"question {i}", ai=ai, tools=tools)

        await asyncio.gather(*(turn(i) for i in range(4)))

        async with session_factory() as db:
            session, messages = await _messages(db, "u1", "s1")
        assert len(messages) == 10
        assert session.message_count == len(messages)

    @pytest.mark.asyncio
    async def test_parallel_first_turns_share_one_session(self, session_factory, tools):
        ai = FakeAI()

        async def turn(text):
            async with session_factory() as db:
                return await chat.answer(db, "u1", "s-new", text, ai=ai, tools=tools)

        assert await asyncio.gather(turn("first"), turn("second")) == ["ok", "ok"]

        async with session_factory() as db:
            session, messages = await _messages(db, "u1", "s-new")
            sessions = await chat.list_sessions(db, "u1")
        assert [s.session_id for s in sessions] == ["s-new"]
        assert session.message_count == len(messages) == 4
        assert sorted(m.content for m in messages if m.role == "user") == ["first", "second"]


class TestSessions:
    @pytest.mark.asyncio
    async def test_list_is_scoped_and_skips_archived(self, db, tools):
        ai = FakeAI(replies=["a", "b", "c"])
        await chat.answer(db, "u1", "s1", "one", ai=ai, tools=tools)
        await chat.answer(db, "u1", "s2", "two", ai=ai, tools=tools)
        await chat.answer(db, "u2", "s3", "three", ai=ai, tools=tools)

        await chat.archive_session(db, "u1", "s1")
        assert [s.session_id for s in await chat.list_sessions(db, "u1")] == ["s2"]

    @pytest.mark.asyncio
    async def test_get_with_messages(self, db, tools):
        await chat.answer(db, "u1", "s1", "hello", ai=FakeAI(replies=["hi"]), tools=tools)
        session, messages = await chat.get_session_with_messages(db, "u1", "s1")
        assert session.session_id == "s1"
        assert [m.role for m in messages] == ["user", "assistant"]
        with pytest.raises(NotFoundError):
            await chat.get_session_with_messages(db, "u2", "s1")

    @pytest.mark.asyncio
    async def test_rename(self, db, tools):
        await chat.answer(db, "u1", "s1", "hello", ai=FakeAI(replies=["hi"]), tools=tools)
        session = await chat.rename_session(db, "u1", "s1", "Greetings")
        assert session.title == "Greetings"
        with pytest.raises(ValidationError):
            await chat.rename_session(db, "u1", "s1", "t" * 201)

    def test_new_session_ids_are_unique(self):
        assert chat.new_session_id() != chat.new_session_id()
