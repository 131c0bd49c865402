"""
API request and response schemas.
What it defines:
- Input payloads for instructions, tasks, events, chat and retrieval
- Response formats for tasks, logs, instructions and chat sessions
- Validation rules

And, the main purpose:
Ensure structured communication between client and server.
"""


from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class InstructionRequest(BaseModel):
    user_id: str = Field(..., description="Your app user identifier")
    text: str
    session_id: str | None = None


class StepIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    # Left optional: a step without an action fails when it runs, with a log entry.
    action: str | None = None
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)
    wait_for_response: bool = False


class CreateTaskRequest(BaseModel):
    user_id: str
    title: str
    description: str = ""
    steps: list[StepIn] = Field(default_factory=list)
    priority: int = Field(1, ge=1)
    context: dict[str, Any] = Field(default_factory=dict)
    assigned_to: str | None = None
    due_date: datetime | None = None
    execute: bool = False


class UserRequest(BaseModel):
    user_id: str


class EventRequest(BaseModel):
    user_id: str
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)


class ChatRequest(BaseModel):
    user_id: str
    query: str
    session_id: str | None = None


class RenameSessionRequest(BaseModel):
    user_id: str
    title: str = Field(..., min_length=1, max_length=200)


class RetrieveRequest(BaseModel):
    user_id: str
    query: str
    k: int | None = Field(None, ge=0)


class IndexDocumentRequest(BaseModel):
    user_id: str
    document_type: str
    document: dict[str, Any]


class TaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    description: str
    status: str
    priority: int
    context: dict[str, Any]
    steps: list[dict[str, Any]]
    current_step: int
    assigned_to: str | None
    due_date: datetime | None
    completed_at: datetime | None
    created_at: datetime


class TaskLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    step_number: int
    action: str
    status: str
    details: str
    metadata: dict[str, Any] = Field(validation_alias="meta")
    executed_at: datetime


class InstructionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    instruction: str
    is_active: bool
    priority: int
    created_at: datetime


class ChatSessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    title: str
    is_active: bool
    message_count: int
    last_message_at: datetime | None


class ChatMessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    role: str
    content: str
    metadata: dict[str, Any] = Field(validation_alias="meta")
    created_at: datetime
