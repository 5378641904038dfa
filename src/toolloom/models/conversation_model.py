from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from toolloom.models.chat_model import Message


DEFAULT_TITLE = "New Conversation"


class Conversation(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    title: str = DEFAULT_TITLE
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    provider_id: Optional[str] = None
    messages: List[Message] = Field(default_factory=list)


class CreateConversationRequest(BaseModel):
    title: Optional[str] = None
    provider_id: Optional[str] = None
