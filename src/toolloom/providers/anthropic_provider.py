"""Anthropic Claude provider with tool-use support."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

from anthropic import APIStatusError, AsyncAnthropic

from toolloom.core.exceptions import NotConfigured, UpstreamError
from toolloom.core.logger import setup_logger
from toolloom.core.settings import settings
from toolloom.models.chat_model import ChatMessage, ChatResponse, MessageRole, ModelInfo, ToolCall
from toolloom.models.provider_model import ProviderConfig
from toolloom.models.tool_model import ToolDefinition
from toolloom.providers import catalog

logger = setup_logger(__name__)

MAX_TOKENS = 4096


class AnthropicProvider:
    def __init__(self, provider_id: str = "anthropic") -> None:
        self._id = provider_id
        self._config: Optional[ProviderConfig] = None
        self._client: Optional[AsyncAnthropic] = None

    @property
    def id(self) -> str:
        return self._id

    @property
    def display_name(self) -> str:
        return (self._config and self._config.display_name) or "Anthropic Claude"

    @property
    def current_model(self) -> str:
        return (self._config and self._config.model) or catalog.ANTHROPIC_DEFAULT_MODEL

    @property
    def is_configured(self) -> bool:
        return self._client is not None and bool(self._config and self._config.api_key)

    def configure(self, config: ProviderConfig) -> None:
        previous = self._config
        self._config = config.model_copy()

        same_client = (
            self._client is not None
            and previous is not None
            and previous.api_key == config.api_key
            and previous.endpoint == config.endpoint
        )
        if same_client or not config.api_key:
            return

        kwargs: Dict[str, Any] = {"api_key": config.api_key, "timeout": settings.CHAT_TIMEOUT_S}
        if config.endpoint:
            kwargs["base_url"] = config.endpoint
        self._client = AsyncAnthropic(**kwargs)
        logger.info(f"Configured provider '{self._id}' model='{self.current_model}'")

    def set_model(self, model_id: str) -> None:
        if self._config is not None:
            self._config.model = model_id

    async def list_available_models(self) -> List[ModelInfo]:
        if self._client is None:
            return catalog.static_models(catalog.ANTHROPIC_MODELS)

        try:
            page = await self._client.models.list(limit=100)
            entries = [{"id": m.id, "name": getattr(m, "display_name", None)} for m in page.data]
        except Exception as e:
            logger.warning(f"Live model catalog unavailable for '{self._id}', using static list: {e}")
            return catalog.static_models(catalog.ANTHROPIC_MODELS)

        return catalog.filter_live_models(entries) or catalog.static_models(catalog.ANTHROPIC_MODELS)

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        tools: Optional[Sequence[ToolDefinition]] = None,
    ) -> ChatResponse:
        if not self.is_configured:
            raise NotConfigured(f"Provider '{self._id}' is not configured")

        system_parts: List[str] = []
        conversation: List[ChatMessage] = []
        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                if msg.content:
                    system_parts.append(msg.content)
            else:
                conversation.append(msg)

        kwargs: Dict[str, Any] = {
            "model": self.current_model,
            "max_tokens": MAX_TOKENS,
            "messages": self._convert_messages(conversation),
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)
        if tools:
            kwargs["tools"] = self._convert_tools(tools)

        try:
            response = await self._client.messages.create(**kwargs)
        except APIStatusError as e:
            body = e.response.text if e.response is not None else str(e)
            logger.error(f"Anthropic returned HTTP error {e.status_code}: {body}")
            raise UpstreamError(e.status_code, body, provider=self.display_name) from e

        return self._parse_response(response)

    def _convert_tools(self, tools: Sequence[ToolDefinition]) -> List[Dict[str, Any]]:
        return [
            {
                "name": t.name,
                "description": t.description,
                "input_schema": t.parameters_schema or {"type": "object", "properties": {}},
            }
            for t in tools
        ]

    def _convert_messages(self, messages: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
        """Convert provider-facing messages to Anthropic content blocks."""
        result: List[Dict[str, Any]] = []

        for msg in messages:
            if msg.role == MessageRole.TOOL:
                # Tool results travel as user turns made of tool_result blocks.
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id or "",
                    "content": msg.content,
                }
                last = result[-1] if result else None
                if (
                    last is not None
                    and last["role"] == "user"
                    and isinstance(last["content"], list)
                    and all(b.get("type") == "tool_result" for b in last["content"])
                ):
                    last["content"].append(block)
                else:
                    result.append({"role": "user", "content": [block]})

            elif msg.role == MessageRole.ASSISTANT:
                content: List[Dict[str, Any]] = []
                if msg.content:
                    content.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls or []:
                    content.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": self._decode_arguments(tc),
                    })
                if content:
                    result.append({"role": "assistant", "content": content})

            else:
                result.append({"role": "user", "content": msg.content})

        return result

    @staticmethod
    def _decode_arguments(tc: ToolCall) -> Dict[str, Any]:
        try:
            args = json.loads(tc.arguments or "{}")
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Tool call {tc.id} ({tc.name}) has non-JSON arguments; sending empty input")
            return {}
        return args if isinstance(args, dict) else {}

    def _parse_response(self, response: Any) -> ChatResponse:
        result = ChatResponse()

        for block in response.content:
            if block.type == "text":
                result.content += block.text
            elif block.type == "tool_use":
                result.tool_calls.append(ToolCall(
                    id=block.id,
                    name=block.name,
                    arguments=json.dumps(block.input if block.input is not None else {}, ensure_ascii=False),
                ))

        return result
