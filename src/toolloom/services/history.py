"""
Rebuild the provider-facing message sequence from persisted conversation rows.

Persisted history keeps one flattened assistant row per tool invocation so it
renders chronologically. Providers expect a single assistant turn carrying the
grouped tool calls, followed by one tool message per call.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Set, Union

from toolloom.core.exceptions import NormalizationError
from toolloom.core.logger import setup_logger
from toolloom.models.chat_model import ChatMessage, Message, MessageRole, ToolCall

logger = setup_logger(__name__)

HistoryItem = Union[Message, ChatMessage]


def _is_flattened_call(item: HistoryItem) -> bool:
    return isinstance(item, Message) and item.is_tool_invocation


def normalize_history(history: Sequence[HistoryItem], *, strict: bool = False) -> List[ChatMessage]:
    """Convert persisted rows into provider-facing ``ChatMessage``s.

    - consecutive flattened tool-invocation rows merge into one assistant
      message with empty content and the ordered ``ToolCall`` list
    - tool rows pass through with their ``tool_call_id``
    - already-grouped ``ChatMessage`` input passes through unchanged, so
      running this on its own output is a no-op
    - a tool row with no prior matching call id is logged and kept; with
      ``strict=True`` it raises ``NormalizationError``
    """
    result: List[ChatMessage] = []
    known_ids: Set[str] = set()
    pending: Optional[ChatMessage] = None
    call_index = 0

    def flush() -> None:
        nonlocal pending
        if pending is not None:
            result.append(pending)
            pending = None

    for item in history:
        if _is_flattened_call(item):
            call_id = item.tool_call_id or f"call_{call_index}"
            call_index += 1
            if pending is None:
                pending = ChatMessage(role=MessageRole.ASSISTANT, content="", tool_calls=[])
            pending.tool_calls.append(ToolCall(
                id=call_id,
                name=item.tool_name or "",
                arguments=item.tool_arguments or "{}",
            ))
            known_ids.add(call_id)
            continue

        flush()

        if isinstance(item, ChatMessage):
            for tc in item.tool_calls or []:
                known_ids.add(tc.id)
            if item.role == MessageRole.TOOL:
                _check_orphan(item.tool_call_id, known_ids, strict)
            result.append(item.model_copy(deep=True))
            continue

        if item.role == MessageRole.TOOL:
            _check_orphan(item.tool_call_id, known_ids, strict)
            # The provider copy lives in tool_result; content is the display copy.
            content = item.tool_result if item.tool_result is not None else item.content
            result.append(ChatMessage(role=MessageRole.TOOL, content=content, tool_call_id=item.tool_call_id))
        else:
            result.append(ChatMessage(role=item.role, content=item.content))

    flush()
    return result


def _check_orphan(call_id: Optional[str], known_ids: Set[str], strict: bool) -> None:
    if call_id and call_id in known_ids:
        return
    msg = f"Tool result references unknown call id {call_id!r}"
    if strict:
        raise NormalizationError(msg)
    logger.error(f"History integrity error: {msg}; keeping row")
