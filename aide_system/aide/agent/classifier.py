"""
Routes a raw user instruction.
What it does:
- Classifies the instruction (ongoing rule / task / immediate question)
- Stores ongoing rules with their derived priority
- Plans and runs tasks
- Answers immediate questions through the chat orchestrator

And, the main purpose:
Single entry point for natural-language instructions.
"""


from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from aide.agent.heuristics import InstructionKind, classify_instruction, determine_priority
from aide.agent.tasks import create_task_from_instruction
from aide.core.errors import CollaboratorError, NotFoundError, ValidationError
from aide.core.ids import new_id, new_session_key
from aide.core.logging import get_logger
from aide.db import repo
from aide.db.models import OngoingInstruction, Task
from aide.llm.router import AIClient
from aide.rag.chat import answer
from aide.tools.registry import ToolRegistry

log = get_logger("agent.classifier")


@dataclass
class InstructionOutcome:
    kind: InstructionKind
    instruction: OngoingInstruction | None = None
    task: Task | None = None
    answer: str | None = None
    session_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def create_ongoing_instruction(db: AsyncSession, user_id: str, text: str) -> OngoingInstruction:
    text = (text or "").strip()
    if not text:
        raise ValidationError("Instruction text is required")
    ins = OngoingInstruction(
        id=new_id("ins"),
        user_id=user_id,
        instruction=text,
        is_active=True,
        priority=determine_priority(text),
    )
    ins = await repo.create_instruction(db, ins)
    log.info(f"Created ongoing instruction {ins.id} for user {user_id} (priority {ins.priority}): {text}")
    return ins


async def deactivate_instruction(db: AsyncSession, user_id: str, instruction_id: str) -> OngoingInstruction:
    ins = await repo.get_instruction(db, user_id, instruction_id)
    if ins is None:
        raise NotFoundError(f"Instruction {instruction_id} not found")
    ins = await repo.deactivate_instruction(db, ins)
    log.info(f"Deactivated ongoing instruction {ins.id} for user {user_id}")
    return ins


async def list_instructions(db: AsyncSession, user_id: str, *, active_only: bool = False) -> list[OngoingInstruction]:
    if active_only:
        return await repo.list_active_instructions(db, user_id)
    return await repo.list_instructions(db, user_id)


async def process_instruction(
    db: AsyncSession,
    user_id: str,
    text: str,
    *,
    session_id: str | None = None,
    ai: AIClient | None = None,
    tools: ToolRegistry | None = None,
) -> InstructionOutcome:
    if not (text or "").strip():
        raise ValidationError("Instruction text is required")

    kind = classify_instruction(text)
    log.info(f"Instruction for user {user_id} classified as {kind.value}")

    if kind is InstructionKind.ONGOING:
        ins = await create_ongoing_instruction(db, user_id, text)
        return InstructionOutcome(kind=kind, instruction=ins)

    if kind is InstructionKind.TASK:
        try:
            task = await create_task_from_instruction(db, user_id, text, ai=ai, tools=tools)
        except (CollaboratorError, ValidationError) as e:
            log.error(f"Failed to create task from instruction for user {user_id}: {e}")
            return InstructionOutcome(kind=kind, error=str(e))
        return InstructionOutcome(kind=kind, task=task)

    session_id = session_id or new_session_key()
    reply = await answer(db, user_id, session_id, text, ai=ai, tools=tools)
    return InstructionOutcome(kind=kind, answer=reply, session_id=session_id)
