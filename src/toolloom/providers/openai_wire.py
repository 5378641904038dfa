"""OpenAI-compatible chat-completions wire format, shared by the OpenAI and Copilot adapters."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

import httpx

from toolloom.core.exceptions import UpstreamError
from toolloom.models.chat_model import ChatMessage, ChatResponse, MessageRole, ToolCall
from toolloom.models.tool_model import ToolDefinition


def to_openai_messages(messages: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
    """Convert provider-facing messages to OpenAI dicts.

    System messages stay in place as `system` role entries. Null fields are
    omitted so the upstream payload stays clean.
    """
    result: List[Dict[str, Any]] = []

    for msg in messages:
        role = MessageRole(msg.role).value

        if msg.role == MessageRole.ASSISTANT and msg.tool_calls:
            entry: Dict[str, Any] = {
                "role": role,
                "tool_calls": [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": tc.arguments},
                    }
                    for tc in msg.tool_calls
                ],
            }
            if msg.content:
                entry["content"] = msg.content
            result.append(entry)

        elif msg.role == MessageRole.TOOL:
            result.append({
                "role": role,
                "content": msg.content,
                "tool_call_id": msg.tool_call_id or "",
            })

        else:
            result.append({"role": role, "content": msg.content})

    return result


def to_openai_tools(tools: Optional[Sequence[ToolDefinition]]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.parameters_schema,
            },
        }
        for t in tools or []
    ]


def build_payload(
    model: str,
    messages: Sequence[ChatMessage],
    tools: Optional[Sequence[ToolDefinition]] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"model": model, "messages": to_openai_messages(messages)}
    if tools:
        payload["tools"] = to_openai_tools(tools)
    return payload


def parse_openai_response(data: Dict[str, Any]) -> ChatResponse:
    """Parse a non-streaming chat-completions body into a ChatResponse."""
    response = ChatResponse()

    choices = data.get("choices") or []
    if not choices:
        return response

    message = (choices[0] or {}).get("message") or {}

    content = message.get("content")
    if isinstance(content, str):
        response.content = content
    elif isinstance(content, list):
        # Some compatible servers return content as a list of typed parts.
        response.content = "".join(
            part.get("text", "") for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        )

    for tc in message.get("tool_calls") or []:
        fn = tc.get("function") or {}
        args = fn.get("arguments")
        if not isinstance(args, str):
            # Arguments are kept as text; re-encode the rare object form.
            args = json.dumps(args if args is not None else {}, ensure_ascii=False)
        response.tool_calls.append(
            ToolCall(id=tc.get("id") or "", name=fn.get("name") or "", arguments=args or "{}")
        )

    return response


def raise_for_upstream(resp: httpx.Response, provider: str) -> None:
    if resp.is_success:
        return
    raise UpstreamError(resp.status_code, resp.text, provider=provider)
