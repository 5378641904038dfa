from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, runtime_checkable

from toolloom.core.logger import setup_logger
from toolloom.models.chat_model import Message
from toolloom.models.conversation_model import DEFAULT_TITLE, Conversation

logger = setup_logger(__name__)


@runtime_checkable
class ConversationStore(Protocol):
    """
    Persistence collaborator for conversations and their message rows.
    Implementations own storage; the chat runtime only appends.
    """

    async def create_conversation(self, title: Optional[str] = None, provider_id: Optional[str] = None) -> Conversation:
        ...

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        ...

    async def list_conversations(self) -> List[Conversation]:
        ...

    async def add_message(self, conversation_id: str, message: Message) -> Message:
        ...

    async def get_messages(self, conversation_id: str) -> List[Message]:
        ...

    async def update_title(self, conversation_id: str, title: str) -> None:
        ...


class InMemoryConversationStore:
    """Process-local store. Returned objects are copies."""

    def __init__(self) -> None:
        self._conversations: Dict[str, Conversation] = {}
        self._lock: Optional[asyncio.Lock] = None

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def _require(self, conversation_id: str) -> Conversation:
        conv = self._conversations.get(conversation_id)
        if conv is None:
            raise KeyError(f"Unknown conversation: {conversation_id}")
        return conv

    async def create_conversation(self, title: Optional[str] = None, provider_id: Optional[str] = None) -> Conversation:
        async with self._get_lock():
            conv = Conversation(title=title or DEFAULT_TITLE, provider_id=provider_id)
            self._conversations[conv.id] = conv
            logger.info(f"Created conversation {conv.id}")
            return conv.model_copy(deep=True)

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        async with self._get_lock():
            conv = self._conversations.get(conversation_id)
            return conv.model_copy(deep=True) if conv else None

    async def list_conversations(self) -> List[Conversation]:
        async with self._get_lock():
            convs = sorted(self._conversations.values(), key=lambda c: c.updated_at, reverse=True)
            return [c.model_copy(deep=True) for c in convs]

    async def add_message(self, conversation_id: str, message: Message) -> Message:
        async with self._get_lock():
            conv = self._require(conversation_id)
            stored = message.model_copy(update={"conversation_id": conversation_id})
            conv.messages.append(stored)
            conv.updated_at = datetime.now(timezone.utc)
            return stored.model_copy()

    async def get_messages(self, conversation_id: str) -> List[Message]:
        async with self._get_lock():
            conv = self._require(conversation_id)
            return [m.model_copy() for m in conv.messages]

    async def update_title(self, conversation_id: str, title: str) -> None:
        async with self._get_lock():
            conv = self._require(conversation_id)
            conv.title = title
            conv.updated_at = datetime.now(timezone.utc)
