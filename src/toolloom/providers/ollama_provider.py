"""Ollama provider over the local /api/chat endpoint."""

from __future__ import annotations

import json
import uuid
from typing import Any, Dict, List, Optional, Sequence

import httpx

from toolloom.core.exceptions import NotConfigured
from toolloom.core.logger import setup_logger
from toolloom.core.settings import settings
from toolloom.models.chat_model import ChatMessage, ChatResponse, MessageRole, ModelInfo, ToolCall
from toolloom.models.provider_model import ProviderConfig
from toolloom.models.tool_model import ToolDefinition
from toolloom.providers import catalog
from toolloom.providers.openai_wire import raise_for_upstream, to_openai_tools

logger = setup_logger(__name__)

OLLAMA_DEFAULT_ENDPOINT = "http://localhost:11434"


class OllamaProvider:
    def __init__(
        self,
        provider_id: str = "ollama",
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._id = provider_id
        self._config: Optional[ProviderConfig] = None
        self._transport = transport

    @property
    def id(self) -> str:
        return self._id

    @property
    def display_name(self) -> str:
        return (self._config and self._config.display_name) or "Ollama (Local)"

    @property
    def current_model(self) -> str:
        return (self._config and self._config.model) or catalog.OLLAMA_DEFAULT_MODEL

    @property
    def is_configured(self) -> bool:
        # A local server needs no key; an endpoint (default or override) is enough.
        return self._config is not None

    @property
    def endpoint(self) -> str:
        endpoint = self._config.endpoint if self._config else None
        return (endpoint or OLLAMA_DEFAULT_ENDPOINT).rstrip("/")

    def configure(self, config: ProviderConfig) -> None:
        self._config = config.model_copy()
        logger.info(f"Configured provider '{self._id}' model='{self.current_model}' endpoint='{self.endpoint}'")

    def set_model(self, model_id: str) -> None:
        if self._config is not None:
            self._config.model = model_id

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.endpoint, timeout=timeout, transport=self._transport)

    async def list_available_models(self) -> List[ModelInfo]:
        if not self.is_configured:
            return catalog.static_models(catalog.OLLAMA_MODELS)

        try:
            async with self._client(settings.MODELS_TIMEOUT_S) as client:
                resp = await client.get("/api/tags")
                resp.raise_for_status()
                entries = [
                    {"id": m.get("name") or m.get("model"), "name": m.get("name")}
                    for m in (resp.json().get("models") or [])
                ]
        except Exception as e:
            logger.warning(f"Ollama model listing failed at {self.endpoint}, using static list: {e}")
            return catalog.static_models(catalog.OLLAMA_MODELS)

        return catalog.filter_live_models(entries) or catalog.static_models(catalog.OLLAMA_MODELS)

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        tools: Optional[Sequence[ToolDefinition]] = None,
    ) -> ChatResponse:
        if not self.is_configured:
            raise NotConfigured(f"Provider '{self._id}' is not configured")

        payload: Dict[str, Any] = {
            "model": self.current_model,
            "messages": self._convert_messages(messages),
            "stream": False,
        }
        if tools:
            payload["tools"] = to_openai_tools(tools)

        logger.info(f"POST {self.endpoint}/api/chat model='{self.current_model}' tools={len(tools or [])}")
        async with self._client(settings.CHAT_TIMEOUT_S) as client:
            resp = await client.post("/api/chat", json=payload)

        if not resp.is_success:
            logger.error(f"Ollama returned HTTP error {resp.status_code}: {resp.text}")
        raise_for_upstream(resp, self.display_name)
        return self._parse_response(resp.json())

    def _convert_messages(self, messages: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
        """Convert to Ollama messages.

        Ollama does not key tool results by call id, so each tool message is
        tagged with the tool name of the assistant call it answers.
        """
        result: List[Dict[str, Any]] = []
        call_names: Dict[str, str] = {}

        for msg in messages:
            role = MessageRole(msg.role).value

            if msg.role == MessageRole.ASSISTANT and msg.tool_calls:
                calls = []
                for tc in msg.tool_calls:
                    call_names[tc.id] = tc.name
                    calls.append({"function": {"name": tc.name, "arguments": self._decode_arguments(tc)}})
                result.append({"role": role, "content": msg.content, "tool_calls": calls})

            elif msg.role == MessageRole.TOOL:
                entry: Dict[str, Any] = {"role": role, "content": msg.content}
                name = call_names.get(msg.tool_call_id or "")
                if name:
                    entry["tool_name"] = name
                result.append(entry)

            else:
                result.append({"role": role, "content": msg.content})

        return result

    @staticmethod
    def _decode_arguments(tc: ToolCall) -> Dict[str, Any]:
        try:
            args = json.loads(tc.arguments or "{}")
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Tool call {tc.id} ({tc.name}) has non-JSON arguments; sending empty object")
            return {}
        return args if isinstance(args, dict) else {}

    def _parse_response(self, data: Dict[str, Any]) -> ChatResponse:
        message = data.get("message") or {}
        response = ChatResponse(content=message.get("content") or "")

        for tc in message.get("tool_calls") or []:
            fn = tc.get("function") or {}
            args = fn.get("arguments")
            if not isinstance(args, str):
                args = json.dumps(args if args is not None else {}, ensure_ascii=False)
            response.tool_calls.append(ToolCall(
                id=tc.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                name=fn.get("name") or "",
                arguments=args,
            ))

        return response
