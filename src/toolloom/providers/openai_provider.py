"""OpenAI chat-completions provider over raw JSON (also serves Azure-style endpoint overrides)."""

from __future__ import annotations

from typing import List, Optional, Sequence

import httpx

from toolloom.core.exceptions import NotConfigured
from toolloom.core.logger import setup_logger
from toolloom.core.settings import settings
from toolloom.models.chat_model import ChatMessage, ChatResponse, ModelInfo
from toolloom.models.provider_model import ProviderConfig
from toolloom.models.tool_model import ToolDefinition
from toolloom.providers import catalog
from toolloom.providers.openai_wire import build_payload, parse_openai_response, raise_for_upstream

logger = setup_logger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"

# Prefixes of ids in the live /models listing that are chat-capable.
CHAT_MODEL_PREFIXES = ("gpt-", "o1", "o3", "o4", "chatgpt-")


class OpenAIProvider:
    def __init__(
        self,
        provider_id: str = "openai",
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
        return (self._config and self._config.display_name) or "OpenAI"

    @property
    def current_model(self) -> str:
        return (self._config and self._config.model) or catalog.OPENAI_DEFAULT_MODEL

    @property
    def is_configured(self) -> bool:
        return self._config is not None and bool(self._config.api_key)

    @property
    def base_url(self) -> str:
        endpoint = self._config.endpoint if self._config else None
        return (endpoint or OPENAI_BASE_URL).rstrip("/")

    def configure(self, config: ProviderConfig) -> None:
        self._config = config.model_copy()
        logger.info(
            f"Configured provider '{self._id}' model='{self.current_model}' base='{self.base_url}' "
            f"has_key={bool(config.api_key)}"
        )

    def set_model(self, model_id: str) -> None:
        if self._config is not None:
            self._config.model = model_id

    def _client(self, timeout: float) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self._config.api_key}"} if self._config else {}
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=self._transport,
        )

    async def list_available_models(self) -> List[ModelInfo]:
        if not self.is_configured:
            return catalog.static_models(catalog.OPENAI_MODELS)

        try:
            async with self._client(settings.MODELS_TIMEOUT_S) as client:
                resp = await client.get("/models")
                resp.raise_for_status()
                entries = [
                    e for e in (resp.json().get("data") or [])
                    if str(e.get("id", "")).startswith(CHAT_MODEL_PREFIXES)
                ]
        except Exception as e:
            logger.warning(f"Live model catalog unavailable for '{self._id}', using static list: {e}")
            return catalog.static_models(catalog.OPENAI_MODELS)

        models = catalog.filter_live_models(entries)
        return models or catalog.static_models(catalog.OPENAI_MODELS)

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        tools: Optional[Sequence[ToolDefinition]] = None,
    ) -> ChatResponse:
        if not self.is_configured:
            raise NotConfigured(f"Provider '{self._id}' is not configured")

        payload = build_payload(self.current_model, messages, tools)
        logger.info(f"POST {self.base_url}/chat/completions model='{self.current_model}' tools={len(tools or [])}")

        async with self._client(settings.CHAT_TIMEOUT_S) as client:
            resp = await client.post("/chat/completions", json=payload)

        if not resp.is_success:
            logger.error(f"Upstream returned HTTP error {resp.status_code}: {resp.text}")
        raise_for_upstream(resp, self.display_name)
        return parse_openai_response(resp.json())
