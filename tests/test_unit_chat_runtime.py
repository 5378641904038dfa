# FILE: test_unit_chat_runtime.py

from typing import Any, Dict, List, Optional, Sequence

import pytest

from toolloom.core.exceptions import UpstreamError
from toolloom.models.chat_model import ChatMessage, ChatResponse, MessageRole, ModelInfo, ToolCall
from toolloom.models.tool_model import ToolDefinition
from toolloom.providers.registry import ProviderRegistry
from toolloom.repositories.conversation_repository import InMemoryConversationStore
from toolloom.services.chat_runtime import MAX_CHAT_ROUNDS, complete_chat_turn, run_chat_turn


class FakeProvider:
    """Scripted provider: returns the queued responses in order, then repeats the last one."""

    def __init__(self, responses: List[Any], provider_id: str = "fake", configured: bool = True) -> None:
        self.id = provider_id
        self.display_name = "Fake"
        self.current_model = "fake-1"
        self._configured = configured
        self._responses = list(responses)
        self.calls: List[List[ChatMessage]] = []

    @property
    def is_configured(self) -> bool:
        return self._configured

    def configure(self, config) -> None:
        pass

    def set_model(self, model_id: str) -> None:
        self.current_model = model_id

    async def list_available_models(self) -> List[ModelInfo]:
        return []

    async def chat(self, messages: Sequence[ChatMessage], tools: Optional[Sequence[ToolDefinition]] = None):
        self.calls.append([m.model_copy(deep=True) for m in messages])
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        return item


class FakeExecutor:
    def __init__(self, results: Optional[Dict[str, Any]] = None, tools: Optional[List[ToolDefinition]] = None):
        self._results = results or {}
        self._tools = tools if tools is not None else [ToolDefinition(name="src__x")]
        self.calls: List[tuple] = []

    async def list_tools(self) -> List[ToolDefinition]:
        return self._tools

    async def call_tool(self, name: str, arguments_json: str) -> str:
        self.calls.append((name, arguments_json))
        value = self._results.get(name, "ok")
        if isinstance(value, Exception):
            raise value
        return value


def _tool_response(*calls: ToolCall, content: str = "") -> ChatResponse:
    return ChatResponse(content=content, tool_calls=list(calls))


def _registry(provider: FakeProvider) -> ProviderRegistry:
    registry = ProviderRegistry(providers=[provider])
    registry.set_current(provider.id)
    return registry


async def _run(provider, executor, store, conversation_id, text="hello"):
    return await complete_chat_turn(
        conversation_id=conversation_id,
        user_input=text,
        registry=_registry(provider),
        executor=executor,
        store=store,
    )


@pytest.mark.asyncio
async def test_plain_reply_is_persisted_and_returned():
    store = InMemoryConversationStore()
    conv = await store.create_conversation()
    provider = FakeProvider([ChatResponse(content="hi there")])

    result = await _run(provider, FakeExecutor(), store, conv.id)

    assert result.error is None
    assert result.final.content == "hi there"
    rows = await store.get_messages(conv.id)
    assert [(r.role, r.content) for r in rows] == [
        (MessageRole.USER, "hello"),
        (MessageRole.ASSISTANT, "hi there"),
    ]


@pytest.mark.asyncio
async def test_iteration_cap_stops_after_ten_model_calls_without_error():
    store = InMemoryConversationStore()
    conv = await store.create_conversation()
    provider = FakeProvider([_tool_response(ToolCall(id="t", name="src__x"), content="")])

    result = await _run(provider, FakeExecutor(), store, conv.id)

    assert len(provider.calls) == MAX_CHAT_ROUNDS == 10
    assert result.error is None
    assert result.final is not None
    assert result.final.content == ""


@pytest.mark.asyncio
async def test_tool_results_are_truncated_independently_for_provider_and_display():
    store = InMemoryConversationStore()
    conv = await store.create_conversation()
    raw = "R" * 30_001
    provider = FakeProvider([
        _tool_response(ToolCall(id="a", name="src__big")),
        ChatResponse(content="summarised"),
    ])
    executor = FakeExecutor(results={"src__big": raw})

    await _run(provider, executor, store, conv.id)

    sent = provider.calls[1][-1]
    assert sent.role == MessageRole.TOOL
    assert sent.tool_call_id == "a"
    assert sent.content == "R" * 30_000 + "\n... [truncated]"

    tool_row = [r for r in await store.get_messages(conv.id) if r.role == MessageRole.TOOL][0]
    assert tool_row.content == "R" * 500 + "\n... (30001 chars total)"
    assert tool_row.tool_result == sent.content


@pytest.mark.asyncio
async def test_failing_tool_does_not_abort_the_turn():
    store = InMemoryConversationStore()
    conv = await store.create_conversation()
    provider = FakeProvider([
        _tool_response(ToolCall(id="a", name="src__a"), ToolCall(id="b", name="src__b")),
        ChatResponse(content="recovered"),
    ])
    executor = FakeExecutor(results={"src__a": RuntimeError("boom"), "src__b": "fine"})

    result = await _run(provider, executor, store, conv.id)

    assert result.error is None
    assert result.final.content == "recovered"
    second_call = provider.calls[1]
    grouped = second_call[-3]
    assert grouped.role == MessageRole.ASSISTANT
    assert [tc.id for tc in grouped.tool_calls] == ["a", "b"]
    assert second_call[-2].content == "Tool execution error: boom"
    assert second_call[-1].content == "fine"


@pytest.mark.asyncio
async def test_audit_rows_precede_each_result():
    store = InMemoryConversationStore()
    conv = await store.create_conversation()
    provider = FakeProvider([
        _tool_response(ToolCall(id="a", name="src__x", arguments='{"q": 1}')),
        ChatResponse(content="done"),
    ])

    await _run(provider, FakeExecutor(), store, conv.id)

    rows = await store.get_messages(conv.id)
    audit, result = rows[1], rows[2]
    assert audit.role == MessageRole.ASSISTANT
    assert audit.content == '🔧 Calling tool: src__x\nArgs: {"q": 1}'
    assert (audit.tool_call_id, audit.tool_name, audit.tool_arguments) == ("a", "src__x", '{"q": 1}')
    assert result.role == MessageRole.TOOL
    assert result.tool_call_id == "a"


@pytest.mark.asyncio
async def test_first_message_sets_truncated_title():
    store = InMemoryConversationStore()
    conv = await store.create_conversation()
    text = "q" * 80

    await _run(FakeProvider([ChatResponse(content="ok")]), FakeExecutor(), store, conv.id, text=text)

    title = (await store.get_conversation(conv.id)).title
    assert len(title) == 53
    assert title == "q" * 50 + "..."


@pytest.mark.asyncio
async def test_title_is_left_alone_after_the_first_turn():
    store = InMemoryConversationStore()
    conv = await store.create_conversation()
    provider = FakeProvider([ChatResponse(content="ok")])

    await _run(provider, FakeExecutor(), store, conv.id, text="first question")
    await _run(provider, FakeExecutor(), store, conv.id, text="second question")

    assert (await store.get_conversation(conv.id)).title == "first question"


@pytest.mark.asyncio
async def test_no_configured_provider_fails_before_any_work():
    store = InMemoryConversationStore()
    conv = await store.create_conversation()
    provider = FakeProvider([ChatResponse(content="never")], configured=False)
    executor = FakeExecutor()

    result = await _run(provider, executor, store, conv.id)

    assert result.error["error"]["type"] == "no_provider_configured"
    assert provider.calls == []
    assert await store.get_messages(conv.id) == []


@pytest.mark.asyncio
async def test_provider_error_keeps_persisted_rows():
    store = InMemoryConversationStore()
    conv = await store.create_conversation()
    provider = FakeProvider([
        _tool_response(ToolCall(id="a", name="src__x")),
        UpstreamError(500, "overloaded", provider="Fake"),
    ])

    result = await _run(provider, FakeExecutor(), store, conv.id)

    assert result.final is None
    assert result.error["error"]["type"] == "upstream_error"
    assert result.error["error"]["retryable"] is True
    rows = await store.get_messages(conv.id)
    assert [r.role for r in rows] == [MessageRole.USER, MessageRole.ASSISTANT, MessageRole.TOOL]
    assert (await store.get_conversation(conv.id)).title == "New Conversation"


@pytest.mark.asyncio
async def test_blank_input_only_emits_done():
    store = InMemoryConversationStore()
    conv = await store.create_conversation()
    provider = FakeProvider([ChatResponse(content="never")])

    events = [
        e async for e in run_chat_turn(
            conversation_id=conv.id,
            user_input="   ",
            registry=_registry(provider),
            executor=FakeExecutor(),
            store=store,
        )
    ]

    assert events == [{"type": "done"}]


@pytest.mark.asyncio
async def test_status_events_are_never_persisted():
    store = InMemoryConversationStore()
    conv = await store.create_conversation()
    provider = FakeProvider([
        _tool_response(ToolCall(id="a", name="src__x")),
        ChatResponse(content="done"),
    ])

    events = [
        e async for e in run_chat_turn(
            conversation_id=conv.id,
            user_input="hi",
            registry=_registry(provider),
            executor=FakeExecutor(),
            store=store,
            system_prompt="be helpful",
        )
    ]

    types = [e["type"] for e in events]
    assert "status" in types
    assert types[-3:] == ["status_clear", "final", "done"]
    rows = await store.get_messages(conv.id)
    assert all(r.role != MessageRole.SYSTEM for r in rows)
    assert provider.calls[0][0] == ChatMessage(role=MessageRole.SYSTEM, content="be helpful")
