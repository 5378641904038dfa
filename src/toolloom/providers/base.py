"""
Provider capability contract.

Every LLM backend (OpenAI, Anthropic, Ollama, GitHub Copilot) implements
``LLMProvider`` independently; the registry dispatches to them by id.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence, runtime_checkable

from toolloom.models.chat_model import ChatMessage, ChatResponse, ModelInfo
from toolloom.models.provider_model import ProviderConfig
from toolloom.models.tool_model import ToolDefinition


@runtime_checkable
class LLMProvider(Protocol):
    """
    Protocol for any chat backend.

    ``chat`` raises ``NotConfigured`` without touching the network when
    ``is_configured`` is false, and ``UpstreamError`` on a non-2xx response.
    ``list_available_models`` never raises; it falls back to a static list.
    """

    @property
    def id(self) -> str:
        ...

    @property
    def display_name(self) -> str:
        ...

    @property
    def current_model(self) -> str:
        ...

    @property
    def is_configured(self) -> bool:
        ...

    def configure(self, config: ProviderConfig) -> None:
        ...

    def set_model(self, model_id: str) -> None:
        ...

    async def list_available_models(self) -> List[ModelInfo]:
        ...

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        tools: Optional[Sequence[ToolDefinition]] = None,
    ) -> ChatResponse:
        ...
