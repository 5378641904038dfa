from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class ToolCall(BaseModel):
    """
    A single model-requested invocation of a tool.

    `arguments` is the JSON text exactly as the provider emitted it. It is
    untrusted and may not parse.
    """

    id: str
    name: str
    arguments: str = "{}"


class ChatMessage(BaseModel):
    """
    A provider-facing message. Assistant turns carry the grouped `tool_calls`
    list; tool turns carry the `tool_call_id` they answer.
    """
    role: MessageRole
    content: str = ""
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None


class Message(BaseModel):
    """
    A persisted conversation row.

    Tool invocations are stored flattened: one assistant row per call with
    `tool_call_id`, `tool_name` and `tool_arguments` set. Tool results keep the
    display copy in `content` and the provider-facing copy in `tool_result`.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    conversation_id: Optional[str] = None
    role: MessageRole
    content: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    tool_arguments: Optional[str] = None
    tool_result: Optional[str] = None

    @property
    def is_tool_invocation(self) -> bool:
        return self.role == MessageRole.ASSISTANT and bool(self.tool_name)


class ChatResponse(BaseModel):
    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)

    @property
    def requires_tool_execution(self) -> bool:
        return len(self.tool_calls) > 0


class ModelInfo(BaseModel):
    id: str
    display_name: str


class SendMessageRequest(BaseModel):
    content: str = Field(..., min_length=1)
    stream: bool = False


class ErrorMessage(BaseModel):
    type: str
    message: str
    retryable: bool


class ChatErrorMessage(BaseModel):
    error: ErrorMessage


class TurnResult(BaseModel):
    final: Optional[Message] = None
    messages: List[Message] = Field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
