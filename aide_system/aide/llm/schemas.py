from pydantic import BaseModel, Field
from typing import Any, Dict, List

class PlanStep(BaseModel):
    action: str = Field(..., description="Registered tool name")
    description: str = ""
    parameters: Dict[str, Any] = {}
    wait_for_response: bool = False

class TaskPlan(BaseModel):
    title: str
    steps: List[PlanStep] = []

class ToolCall(BaseModel):
    name: str
    arguments: Dict[str, Any] = {}
