"""
Creates the task plan.
What it does:
- Sends the user instruction (or a triggering event) to the LLM planner prompt
- Generates structured steps (JSON plan) naming registered tool actions
- Validates the plan shape

And, the main purpose:
Convert an instruction into pre-declared, fixed-order steps.
"""


import json

from pydantic import ValidationError as SchemaError

from aide.core.errors import InvalidResponse
from aide.core.logging import get_logger
from aide.llm.prompts import PLANNER_SYSTEM, PROACTIVE_PROMPT
from aide.llm.router import AIClient, llm_json
from aide.llm.schemas import TaskPlan
from aide.tools.registry import ToolRegistry

log = get_logger("agent.planner")


async def _plan(ai: AIClient, tools: ToolRegistry, user: str) -> TaskPlan:
    raw = await llm_json(ai, PLANNER_SYSTEM.format(actions=tools.catalog()), user)
    try:
        plan = TaskPlan.model_validate(raw)
    except SchemaError as e:
        raise InvalidResponse(f"Planner returned an invalid plan: {e}") from e

    unknown = [s.action for s in plan.steps if s.action not in tools.tools]
    if unknown:
        # Left for the step executor to fail on, so the audit trail shows it.
        log.warning(f"Plan '{plan.title}' uses unregistered actions: {unknown}")
    return plan


async def make_plan(ai: AIClient, tools: ToolRegistry, *, instruction: str) -> TaskPlan:
    return await _plan(ai, tools, instruction)


async def make_proactive_plan(
    ai: AIClient,
    tools: ToolRegistry,
    *,
    instruction: str,
    event_type: str,
    event: dict,
) -> TaskPlan:
    prompt = PROACTIVE_PROMPT.format(
        instruction=instruction,
        event_type=event_type,
        event=json.dumps(event, ensure_ascii=False, default=str),
    )
    return await _plan(ai, tools, prompt)
