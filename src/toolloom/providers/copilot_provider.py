"""
GitHub Copilot provider.

Two request paths share one adapter:
- session path: the OAuth token is exchanged for a Copilot session token and
  requests go to the session endpoint with editor identification headers;
- public path: a PAT (or an OAuth token whose exchange failed) is used as a
  bearer token against the OpenAI-compatible GitHub Models API.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from toolloom.auth.token_manager import CopilotTokenManager
from toolloom.core.exceptions import NotConfigured
from toolloom.core.logger import setup_logger
from toolloom.core.settings import settings
from toolloom.models.chat_model import ChatMessage, ChatResponse, ModelInfo
from toolloom.models.provider_model import (
    AuthState,
    CopilotSession,
    DeviceFlowInfo,
    DeviceFlowOutcome,
    ProviderConfig,
)
from toolloom.models.tool_model import ToolDefinition
from toolloom.providers import catalog
from toolloom.providers.openai_wire import build_payload, parse_openai_response, raise_for_upstream

logger = setup_logger(__name__)

GITHUB_MODELS_ENDPOINT = "https://models.github.ai/v1"
PAT_PREFIXES = ("ghp_", "github_pat_")

EDITOR_HEADERS = {
    "editor-version": "vscode/1.96.0",
    "copilot-integration-id": "vscode-chat",
}
CHAT_HEADERS = {
    **EDITOR_HEADERS,
    "editor-plugin-version": "copilot-chat/0.24.0",
    "openai-intent": "conversation-panel",
}


def is_personal_access_token(token: str) -> bool:
    return token.startswith(PAT_PREFIXES)


class CopilotProvider:
    def __init__(
        self,
        provider_id: str = "github-copilot",
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        token_manager: Optional[CopilotTokenManager] = None,
    ) -> None:
        self._id = provider_id
        self._config: Optional[ProviderConfig] = None
        self._transport = transport
        self._tokens = token_manager or CopilotTokenManager(transport=transport)
        # Bearer for the public GitHub Models path (PAT, or OAuth token after a failed exchange).
        self._public_token: Optional[str] = None

    # ------------------------------------------------------------------
    # Identity / state
    # ------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self._id

    @property
    def display_name(self) -> str:
        return (self._config and self._config.display_name) or "GitHub Copilot"

    @property
    def current_model(self) -> str:
        return (self._config and self._config.model) or catalog.COPILOT_DEFAULT_MODEL

    @property
    def token_manager(self) -> CopilotTokenManager:
        return self._tokens

    @property
    def auth_state(self) -> AuthState:
        return self._tokens.state

    @property
    def uses_session_api(self) -> bool:
        return self._public_token is None and self._tokens.oauth_token is not None and not self._tokens.degraded

    @property
    def is_configured(self) -> bool:
        # An OAuth token counts as configured: the session is obtainable, and a
        # failed exchange still leaves the public path usable.
        return bool(self._public_token or self._tokens.oauth_token)

    @property
    def public_endpoint(self) -> str:
        endpoint = self._config.endpoint if self._config else None
        return (endpoint or GITHUB_MODELS_ENDPOINT).rstrip("/")

    def on_device_code(self, callback: Callable[[DeviceFlowInfo], Any]) -> None:
        self._tokens.on_device_code(callback)

    def on_authenticated(self, callback: Callable[[], Any]) -> None:
        self._tokens.on_authenticated(callback)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure(self, config: ProviderConfig) -> None:
        if self._tokens.has_live_session or self._tokens.signed_in_interactively:
            # Merge only: a stored credential must not clobber a live sign-in.
            if config.api_key and config.api_key != self._tokens.oauth_token:
                logger.info(f"Provider '{self._id}' keeps its live session; ignoring stored credential")
            merged = config.model_copy(update={"api_key": self._tokens.oauth_token or ""})
            if self._config is not None and not config.model:
                merged.model = self._config.model
            self._config = merged
            return

        self._config = config.model_copy()
        token = config.api_key
        if not token:
            # Credential removed: drop both paths.
            self._public_token = None
            self._tokens.set_oauth_token("")
            logger.info(f"Provider '{self._id}' has no credential; sign-in required")
        elif is_personal_access_token(token):
            self._public_token = token
            self._tokens.set_oauth_token("")
            logger.info(f"Provider '{self._id}' configured with a PAT; using GitHub Models")
        else:
            self._public_token = None
            self._tokens.set_oauth_token(token)
            logger.info(f"Provider '{self._id}' configured with an OAuth token; session exchange pending")

    def set_model(self, model_id: str) -> None:
        if self._config is not None:
            self._config.model = model_id

    async def authenticate_with_device_flow(
        self,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> DeviceFlowOutcome:
        outcome = await self._tokens.authenticate_with_device_flow(cancel_event)
        if outcome == DeviceFlowOutcome.AUTHENTICATED:
            self._public_token = None
            if self._config is None:
                self._config = ProviderConfig(id=self._id, type="github_copilot")
            self._config.api_key = self._tokens.oauth_token or ""
        return outcome

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def _resolve_session(self) -> Optional[CopilotSession]:
        if self._public_token is not None:
            return None
        session = await self._tokens.ensure_session()
        if session is None and self._tokens.degraded and self._tokens.oauth_token:
            # Sticky fallback until the next sign-in or reconfiguration.
            self._public_token = self._tokens.oauth_token
        return session

    async def list_available_models(self) -> List[ModelInfo]:
        session = await self._resolve_session()
        if session is None:
            return catalog.static_models(catalog.GITHUB_MODELS)

        try:
            async with httpx.AsyncClient(timeout=settings.MODELS_TIMEOUT_S, transport=self._transport) as client:
                resp = await client.get(
                    f"{session.endpoint}/models",
                    headers={"Authorization": f"Bearer {session.token}", **EDITOR_HEADERS},
                )
        except httpx.HTTPError as e:
            logger.warning(f"Copilot model catalog unavailable, using static list: {e}")
            return catalog.static_models(catalog.GITHUB_MODELS)

        if not resp.is_success:
            logger.warning(f"Copilot model catalog returned HTTP {resp.status_code}")
            return catalog.static_models(catalog.COPILOT_MINIMAL_MODELS)

        try:
            entries = resp.json().get("data") or []
        except ValueError:
            return catalog.static_models(catalog.COPILOT_MINIMAL_MODELS)
        return catalog.filter_live_models(entries) or catalog.static_models(catalog.COPILOT_MINIMAL_MODELS)

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        tools: Optional[Sequence[ToolDefinition]] = None,
    ) -> ChatResponse:
        if not self.is_configured:
            raise NotConfigured("GitHub Copilot is not configured. Please sign in first.")

        session = await self._resolve_session()
        payload = build_payload(self.current_model, messages, tools)

        if session is not None:
            url = f"{session.endpoint}/chat/completions"
            headers: Dict[str, str] = {"Authorization": f"Bearer {session.token}", **CHAT_HEADERS}
        elif self._public_token:
            url = f"{self.public_endpoint}/chat/completions"
            headers = {"Authorization": f"Bearer {self._public_token}"}
        else:
            raise NotConfigured("Copilot is not authenticated. Please sign in.")

        logger.info(f"POST {url} model='{self.current_model}' tools={len(tools or [])}")
        async with httpx.AsyncClient(timeout=settings.CHAT_TIMEOUT_S, transport=self._transport) as client:
            resp = await client.post(url, json=payload, headers=headers)

        if not resp.is_success:
            logger.error(f"Copilot returned HTTP error {resp.status_code}: {resp.text}")
        raise_for_upstream(resp, "Copilot")
        return parse_openai_response(resp.json())
