from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from toolloom.core.exceptions import NotConfigured, UpstreamError
from toolloom.core.logger import setup_logger
from toolloom.models.chat_model import (
    ChatErrorMessage,
    ChatMessage,
    ChatResponse,
    ErrorMessage,
    Message,
    MessageRole,
    TurnResult,
)
from toolloom.models.tool_model import ToolDefinition
from toolloom.providers.registry import ProviderRegistry
from toolloom.repositories.conversation_repository import ConversationStore
from toolloom.services.history import normalize_history
from toolloom.tools.executor import ToolExecutor
from toolloom.utils.text import derive_title, truncate_for_display, truncate_for_provider

logger = setup_logger(__name__)

# Total provider.chat invocations per user turn, the first call included.
MAX_CHAT_ROUNDS = 10


# Runtime emits events that the transport layer can adapt to JSON or SSE.
# event["type"] in {"message", "status", "status_clear", "final", "error", "done"}
# - message: a row that has just been persisted (user input, tool audit row, tool result)
# - status: transient progress text; never persisted
# - status_clear: retract any status shown so far
# - final: the persisted assistant reply that ends the turn
# - error: an error payload compatible with ChatErrorMessage.model_dump()
# - done: indicates completion (always emitted once at the end)


def _error_event(type_: str, message: str, retryable: bool) -> Dict[str, Any]:
    err = ChatErrorMessage(error=ErrorMessage(type=type_, message=message, retryable=retryable))
    return {"type": "error", "payload": err.model_dump()}


def _provider_error_event(e: Exception) -> Dict[str, Any]:
    if isinstance(e, NotConfigured):
        return _error_event("not_configured", str(e), retryable=False)
    if isinstance(e, UpstreamError):
        retryable = e.status_code == 429 or e.status_code >= 500
        return _error_event("upstream_error", str(e), retryable=retryable)
    if isinstance(e, httpx.HTTPError):
        return _error_event("upstream_error", f"Error: {e}", retryable=True)
    return _error_event("runtime_error", f"Error: {e}", retryable=False)


def _status(text: str) -> Dict[str, Any]:
    return {"type": "status", "text": text}


async def run_chat_turn(
    *,
    conversation_id: str,
    user_input: str,
    registry: ProviderRegistry,
    executor: ToolExecutor,
    store: ConversationStore,
    system_prompt: Optional[str] = None,
) -> AsyncIterator[Dict[str, Any]]:
    """Run one user turn: persist input, call the model, execute tools until it stops.

    Provider failures end the turn with an ``error`` event; rows persisted
    before the failure stay in the store. Tool failures are fed back to the
    model as text and never end the turn.
    """
    if not user_input or not user_input.strip():
        yield {"type": "done"}
        return

    provider = registry.current
    if provider is None or not provider.is_configured:
        logger.warning(f"Turn rejected for conversation={conversation_id}: no configured provider")
        yield _error_event(
            "no_provider_configured",
            "Please configure an LLM provider in Settings",
            retryable=False,
        )
        yield {"type": "done"}
        return

    logger.info(f"Turn start conversation={conversation_id} provider='{provider.id}' model='{provider.current_model}'")

    user_row = await store.add_message(conversation_id, Message(role=MessageRole.USER, content=user_input))
    yield {"type": "message", "message": user_row}

    try:
        tools: List[ToolDefinition] = await executor.list_tools()
    except Exception as e:
        logger.exception("Tool catalog unavailable; aborting turn")
        yield {"type": "status_clear"}
        yield _error_event("runtime_error", f"Error: {e}", retryable=True)
        yield {"type": "done"}
        return

    history = await store.get_messages(conversation_id)
    messages: List[ChatMessage] = []
    if system_prompt:
        messages.append(ChatMessage(role=MessageRole.SYSTEM, content=system_prompt))
    messages.extend(normalize_history(history))

    rounds = 0
    try:
        yield _status(f"⏳ Sending to {provider.display_name} ({provider.current_model})...")
        response: ChatResponse = await provider.chat(messages, tools)
        rounds += 1

        while response.requires_tool_execution and rounds < MAX_CHAT_ROUNDS:
            messages.append(ChatMessage(
                role=MessageRole.ASSISTANT,
                content=response.content,
                tool_calls=list(response.tool_calls),
            ))

            for call in response.tool_calls:
                audit = await store.add_message(conversation_id, Message(
                    role=MessageRole.ASSISTANT,
                    content=f"🔧 Calling tool: {call.name}\nArgs: {call.arguments}",
                    tool_call_id=call.id,
                    tool_name=call.name,
                    tool_arguments=call.arguments,
                ))
                yield {"type": "message", "message": audit}

                yield _status(f"⏳ Executing tool '{call.name}'...")
                try:
                    raw = await executor.call_tool(call.name, call.arguments)
                    yield _status(f"✅ Tool returned {len(raw)} chars")
                except Exception as e:
                    logger.warning(f"Tool '{call.name}' (call_id={call.id}) failed: {e}")
                    raw = f"Tool execution error: {e}"
                    yield _status(f"❌ Tool error: {e}")

                for_provider = truncate_for_provider(raw)
                result_row = await store.add_message(conversation_id, Message(
                    role=MessageRole.TOOL,
                    content=truncate_for_display(raw),
                    tool_call_id=call.id,
                    tool_result=for_provider,
                ))
                yield {"type": "message", "message": result_row}

                messages.append(ChatMessage(role=MessageRole.TOOL, content=for_provider, tool_call_id=call.id))

            yield _status(f"⏳ Sending tool results to model (iteration {rounds})...")
            response = await provider.chat(messages, tools)
            rounds += 1
            finish = "tool_calls" if response.requires_tool_execution else "stop"
            yield _status(f"✅ Model responded (finish: {finish})")

    except Exception as e:
        logger.exception(f"Provider '{provider.id}' failed during turn (rounds={rounds})")
        yield {"type": "status_clear"}
        yield _provider_error_event(e)
        yield {"type": "done"}
        return

    if response.requires_tool_execution:
        logger.warning(f"Stopped after {rounds} model calls with tool calls still pending")

    yield {"type": "status_clear"}
    final = await store.add_message(conversation_id, Message(role=MessageRole.ASSISTANT, content=response.content))
    yield {"type": "final", "message": final}

    persisted = await store.get_messages(conversation_id)
    if sum(1 for m in persisted if m.role == MessageRole.USER) == 1:
        await store.update_title(conversation_id, derive_title(user_input))

    logger.info(f"Turn complete conversation={conversation_id} rounds={rounds}")
    yield {"type": "done"}


async def complete_chat_turn(**kwargs: Any) -> TurnResult:
    """Drain ``run_chat_turn`` into a single result (non-streaming callers)."""
    result = TurnResult()
    async for event in run_chat_turn(**kwargs):
        etype = event.get("type")
        if etype == "message":
            result.messages.append(event["message"])
        elif etype == "final":
            result.final = event["message"]
            result.messages.append(event["message"])
        elif etype == "error":
            result.error = event["payload"]
    return result
