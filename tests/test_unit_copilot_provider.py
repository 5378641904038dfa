# FILE: test_unit_copilot_provider.py

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest

from toolloom.auth.token_manager import COPILOT_TOKEN_URL, CopilotTokenManager
from toolloom.core.exceptions import NotConfigured, UpstreamError
from toolloom.models.chat_model import ChatMessage, MessageRole
from toolloom.models.provider_model import AuthState, ProviderConfig, ProviderType
from toolloom.models.tool_model import ToolDefinition
from toolloom.providers.copilot_provider import CopilotProvider, is_personal_access_token

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
SESSION_API = "https://api.example.githubcopilot.com"

COMPLETION = {
    "choices": [{"message": {"role": "assistant", "content": "hello from copilot"}, "finish_reason": "stop"}]
}


class FakeCopilot:
    def __init__(
        self,
        exchange_status: int = 200,
        models: Optional[httpx.Response] = None,
        lifetimes: Optional[List[timedelta]] = None,
    ):
        self.exchange_status = exchange_status
        self.models = models
        self.lifetimes = list(lifetimes or [])
        self.exchanges = 0
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url == COPILOT_TOKEN_URL:
            if self.exchange_status != 200:
                return httpx.Response(self.exchange_status, json={"message": "forbidden"})
            self.exchanges += 1
            lifetime = self.lifetimes.pop(0) if self.lifetimes else timedelta(minutes=30)
            return httpx.Response(200, json={
                "token": f"sess-{self.exchanges}",
                "expires_at": int((NOW + lifetime).timestamp()),
                "endpoints": {"api": SESSION_API},
            })
        if url.endswith("/chat/completions"):
            return httpx.Response(200, json=COMPLETION)
        if url == f"{SESSION_API}/models" and self.models is not None:
            return httpx.Response(self.models.status_code, content=self.models.content)
        return httpx.Response(404, text="not found")

    def urls(self) -> List[str]:
        return [str(r.url) for r in self.requests]


def _provider(fake: FakeCopilot) -> CopilotProvider:
    transport = httpx.MockTransport(fake.handler)
    manager = CopilotTokenManager(transport=transport, clock=lambda: NOW)
    return CopilotProvider(transport=transport, token_manager=manager)


def _config(api_key: str = "", **kwargs: Any) -> ProviderConfig:
    return ProviderConfig(id="github-copilot", type=ProviderType.GITHUB_COPILOT, api_key=api_key, **kwargs)


def _user(text: str = "hi") -> List[ChatMessage]:
    return [ChatMessage(role=MessageRole.USER, content=text)]


def test_pat_prefixes():
    assert is_personal_access_token("ghp_abc")
    assert is_personal_access_token("github_pat_abc")
    assert not is_personal_access_token("gho_abc")


@pytest.mark.asyncio
async def test_unconfigured_chat_raises_without_network():
    fake = FakeCopilot()
    provider = _provider(fake)

    assert provider.is_configured is False
    with pytest.raises(NotConfigured):
        await provider.chat(_user())
    assert fake.requests == []


@pytest.mark.asyncio
async def test_pat_uses_public_models_api():
    fake = FakeCopilot()
    provider = _provider(fake)
    provider.configure(_config("ghp_secret", model="gpt-4o-mini"))

    response = await provider.chat(_user())

    assert response.content == "hello from copilot"
    assert fake.urls() == ["https://models.github.ai/v1/chat/completions"]
    req = fake.requests[0]
    assert req.headers["authorization"] == "Bearer ghp_secret"
    assert json.loads(req.content)["model"] == "gpt-4o-mini"


@pytest.mark.asyncio
async def test_pat_respects_endpoint_override():
    fake = FakeCopilot()
    provider = _provider(fake)
    provider.configure(_config("github_pat_x", endpoint="https://models.example.com/inference/"))

    await provider.chat(_user())

    assert fake.urls() == ["https://models.example.com/inference/chat/completions"]


@pytest.mark.asyncio
async def test_oauth_token_is_exchanged_and_session_headers_are_sent():
    fake = FakeCopilot()
    provider = _provider(fake)
    provider.configure(_config("gho_oauth"))
    tools = [ToolDefinition(name="files__read", description="Read a file")]

    await provider.chat(_user(), tools)

    assert fake.urls() == [COPILOT_TOKEN_URL, f"{SESSION_API}/chat/completions"]
    chat = fake.requests[1]
    assert chat.headers["authorization"] == "Bearer sess-1"
    assert chat.headers["editor-version"] == "vscode/1.96.0"
    assert chat.headers["editor-plugin-version"] == "copilot-chat/0.24.0"
    assert chat.headers["copilot-integration-id"] == "vscode-chat"
    assert chat.headers["openai-intent"] == "conversation-panel"
    body = json.loads(chat.content)
    assert body["tools"][0]["function"]["name"] == "files__read"
    assert provider.auth_state == AuthState.SESSION_ACTIVE


@pytest.mark.asyncio
async def test_failed_exchange_falls_back_to_public_api_with_oauth_token():
    fake = FakeCopilot(exchange_status=403)
    provider = _provider(fake)
    provider.configure(_config("gho_oauth"))

    response = await provider.chat(_user())

    assert response.content == "hello from copilot"
    assert fake.urls() == [COPILOT_TOKEN_URL, "https://models.github.ai/v1/chat/completions"]
    assert fake.requests[1].headers["authorization"] == "Bearer gho_oauth"
    assert provider.is_configured is True
    assert provider.uses_session_api is False


@pytest.mark.asyncio
async def test_upstream_error_carries_status_and_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="rate limited")

    provider = CopilotProvider(transport=httpx.MockTransport(handler))
    provider.configure(_config("ghp_secret"))

    with pytest.raises(UpstreamError) as exc:
        await provider.chat(_user())

    assert exc.value.status_code == 429
    assert exc.value.body == "rate limited"


@pytest.mark.asyncio
async def test_session_model_catalog_is_filtered_deduped_and_sorted():
    fake = FakeCopilot(models=httpx.Response(200, json={"data": [
        {"id": "gpt-4o", "name": "GPT-4o"},
        {"id": "text-embedding-3-small", "name": "Embedding"},
        {"id": "claude-3.5-sonnet", "name": "Claude 3.5 Sonnet"},
        {"id": "gpt-4o", "name": "GPT-4o"},
        {"id": "goldeneye-preview", "name": "Goldeneye"},
    ]}))
    provider = _provider(fake)
    provider.configure(_config("gho_oauth"))

    models = await provider.list_available_models()

    assert [m.id for m in models] == ["claude-3.5-sonnet", "gpt-4o"]
    listing = fake.requests[-1]
    assert listing.headers["editor-version"] == "vscode/1.96.0"
    assert listing.headers["copilot-integration-id"] == "vscode-chat"


@pytest.mark.asyncio
async def test_session_model_catalog_error_returns_minimal_list():
    fake = FakeCopilot(models=httpx.Response(500, text="boom"))
    provider = _provider(fake)
    provider.configure(_config("gho_oauth"))

    models = await provider.list_available_models()

    assert [m.id for m in models] == ["gpt-4o"]


@pytest.mark.asyncio
async def test_pat_model_catalog_is_static():
    fake = FakeCopilot()
    provider = _provider(fake)
    provider.configure(_config("ghp_secret"))

    models = await provider.list_available_models()

    assert "gpt-4o" in [m.id for m in models]
    assert fake.requests == []


@pytest.mark.asyncio
async def test_reconfigure_merges_instead_of_clobbering_live_session():
    fake = FakeCopilot()
    provider = _provider(fake)
    provider.configure(_config("gho_live"))
    await provider.chat(_user())

    provider.configure(_config("gho_stale_from_disk", model="o3-mini", display_name="Copilot"))

    assert provider.token_manager.oauth_token == "gho_live"
    assert provider.token_manager.session is not None
    assert provider.current_model == "o3-mini"
    assert provider.display_name == "Copilot"

    await provider.chat(_user())
    assert fake.requests[-1].headers["authorization"] == "Bearer sess-1"


@pytest.mark.asyncio
async def test_reconfigure_without_live_session_replaces_credentials():
    fake = FakeCopilot()
    provider = _provider(fake)
    provider.configure(_config("gho_first"))

    provider.configure(_config("ghp_second"))

    assert provider.uses_session_api is False
    await provider.chat(_user())
    assert fake.requests[-1].headers["authorization"] == "Bearer ghp_second"


@pytest.mark.asyncio
async def test_device_flow_sign_in_switches_to_session_api():
    device = {
        "device_code": "dev",
        "user_code": "WXYZ-0000",
        "verification_uri": "https://github.com/login/device",
        "interval": 5,
    }
    calls: Dict[str, int] = {"poll": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url.endswith("/login/device/code"):
            return httpx.Response(200, json=device)
        if url.endswith("/login/oauth/access_token"):
            calls["poll"] += 1
            return httpx.Response(200, json={"access_token": "gho_new"})
        if url == COPILOT_TOKEN_URL:
            return httpx.Response(200, json={
                "token": "sess-9",
                "expires_at": int((NOW + timedelta(minutes=30)).timestamp()),
                "endpoints": {"api": SESSION_API},
            })
        return httpx.Response(200, json=COMPLETION)

    async def no_sleep(seconds: float) -> None:
        return None

    transport = httpx.MockTransport(handler)
    manager = CopilotTokenManager(transport=transport, clock=lambda: NOW, sleep=no_sleep)
    provider = CopilotProvider(transport=transport, token_manager=manager)
    provider.configure(_config("ghp_old"))
    codes = []
    provider.on_device_code(codes.append)

    await provider.authenticate_with_device_flow()

    assert codes[0].user_code == "WXYZ-0000"
    assert provider.uses_session_api is True
    assert provider.is_configured is True
    assert provider.auth_state == AuthState.SESSION_ACTIVE


@pytest.mark.asyncio
@pytest.mark.parametrize("first_key", ["ghp_old", "gho_old"])
async def test_clearing_the_key_unconfigures_the_provider(first_key):
    fake = FakeCopilot()
    provider = _provider(fake)
    provider.configure(_config(first_key))
    assert provider.is_configured is True

    provider.configure(_config(""))

    assert provider.is_configured is False
    assert provider.uses_session_api is False
    assert provider.auth_state == AuthState.UNAUTHENTICATED
    with pytest.raises(NotConfigured):
        await provider.chat(_user())
    assert fake.requests == []


@pytest.mark.asyncio
async def test_chat_refreshes_session_inside_expiry_margin():
    # First session expires in 90s, inside the 2-minute margin; the next chat must re-exchange.
    fake = FakeCopilot(lifetimes=[timedelta(seconds=90), timedelta(minutes=30)])
    provider = _provider(fake)
    provider.configure(_config("gho_oauth"))

    await provider.chat(_user())
    await provider.chat(_user())

    chat_url = f"{SESSION_API}/chat/completions"
    assert fake.urls() == [COPILOT_TOKEN_URL, chat_url, COPILOT_TOKEN_URL, chat_url]
    assert fake.requests[1].headers["authorization"] == "Bearer sess-1"
    assert fake.requests[3].headers["authorization"] == "Bearer sess-2"


@pytest.mark.asyncio
async def test_chat_reuses_session_outside_expiry_margin():
    fake = FakeCopilot(lifetimes=[timedelta(minutes=3)])
    provider = _provider(fake)
    provider.configure(_config("gho_oauth"))

    await provider.chat(_user())
    await provider.chat(_user())

    assert fake.exchanges == 1
