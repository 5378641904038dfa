from __future__ import annotations

import itertools
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from toolloom.core.app_config import TOOL_NAME_SEPARATOR, MCPServerConfig
from toolloom.core.logger import setup_logger

logger = setup_logger(__name__)

MCP_PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "toolloom", "version": "0.1.0"}


class MCPProtocolError(RuntimeError):
    """JSON-RPC level failure reported by (or detected in a reply from) an MCP server."""


@dataclass(frozen=True)
class ProviderTool:
    # tool name as exposed by the MCP server
    name: str
    title: Optional[str]
    description: str
    input_schema: Dict[str, Any]


@dataclass(frozen=True)
class ToolCallResult:
    # what we feed back as the tool content to the LLM
    text: str
    raw: Dict[str, Any]
    is_error: bool = False


def _parse_body(r: httpx.Response) -> Optional[Dict[str, Any]]:
    """Decode a JSON-RPC envelope from a JSON or SSE (text/event-stream) reply."""
    content_type = (r.headers.get("content-type") or "").lower()
    if "text/event-stream" in content_type:
        data_lines = [
            line[len("data:"):].strip()
            for line in r.text.splitlines()
            if line.startswith("data:")
        ]
        return json.loads(data_lines[-1]) if data_lines else None
    if not r.content:
        return None
    return r.json()


class MCPToolProvider:
    """
    Minimal MCP client for tools/list + tools/call over JSON-RPC 2.0.

    Assumes an HTTP endpoint that accepts JSON-RPC POSTs.
    """

    def __init__(
        self,
        *,
        name: str = "mcp",
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout_s: float = 30.0,
        allow_tools: Optional[set[str]] = None,
        deny_tools: Optional[set[str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.name = name
        self.url = url.rstrip("/")
        base_headers: Dict[str, str] = dict(headers or {})
        # Some MCP servers require explicit content negotiation.
        base_headers.setdefault("Accept", "application/json, text/event-stream")
        base_headers.setdefault("Content-Type", "application/json")
        self._headers = base_headers
        # Servers may hand out `mcp-session-id` and expect it back on later requests.
        self._session_id: Optional[str] = None
        self._initialized_session_id: Optional[str] = None
        self._initialized = False
        self._timeout_s = timeout_s
        self._transport = transport
        self._ids = itertools.count(1)
        self.tool_name_prefix = f"{self.name}{TOOL_NAME_SEPARATOR}"
        self.allow_tools = allow_tools
        self.deny_tools = deny_tools

    @classmethod
    def from_config(
        cls,
        cfg: MCPServerConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "MCPToolProvider":
        return cls(
            name=cfg.name,
            url=cfg.url,
            headers=cfg.headers,
            timeout_s=cfg.timeout_s,
            allow_tools=set(cfg.allow_tools) if cfg.allow_tools else None,
            deny_tools=set(cfg.deny_tools) if cfg.deny_tools else None,
            transport=transport,
        )

    def full_name(self, provider_tool_name: str) -> str:
        return f"{self.tool_name_prefix}{provider_tool_name}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(headers=self._headers, timeout=self._timeout_s, transport=self._transport)

    def _adopt_session(self, sid: Optional[str]) -> None:
        if sid and sid != self._session_id:
            self._session_id = sid
            # New session => must re-run initialization handshake.
            self._initialized = False
            self._initialized_session_id = None

    async def _post(self, client: httpx.AsyncClient, payload: Dict[str, Any]) -> httpx.Response:
        async def do_post() -> httpx.Response:
            headers = dict(self._headers)
            if self._session_id:
                headers["mcp-session-id"] = self._session_id
            return await client.post(self.url, json=payload, headers=headers)

        r = await do_post()

        # Servers that require a session id return one with the first 400.
        if r.status_code == 400:
            sid = r.headers.get("mcp-session-id")
            try:
                body = _parse_body(r)
            except ValueError:
                body = None
            message = ""
            if isinstance(body, dict) and isinstance(body.get("error"), dict):
                message = body["error"].get("message") or ""
            if sid and "Missing session ID" in message:
                logger.info(f"MCP '{self.name}' requested session id; retrying")
                self._adopt_session(sid)
                r = await do_post()

        r.raise_for_status()
        self._adopt_session(r.headers.get("mcp-session-id"))
        return r

    async def _rpc(self, client: httpx.AsyncClient, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        req_id = next(self._ids)
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "id": req_id, "method": method}
        if params:
            payload["params"] = params

        r = await self._post(client, payload)
        data = _parse_body(r)
        if not isinstance(data, dict):
            raise MCPProtocolError(f"MCP '{self.name}' returned an empty reply to {method}")

        if "error" in data:
            err = data["error"] or {}
            raise MCPProtocolError(f"MCP JSON-RPC error {err.get('code')}: {err.get('message')}")

        if data.get("id") != req_id:
            raise MCPProtocolError(f"MCP JSON-RPC id mismatch (sent {req_id}, got {data.get('id')})")

        return data.get("result") or {}

    async def _notify(self, client: httpx.AsyncClient, method: str) -> None:
        """Send a JSON-RPC notification (no `id`)."""
        r = await self._post(client, {"jsonrpc": "2.0", "method": method})
        try:
            data = _parse_body(r)
        except ValueError:
            # Many servers return an empty or non-JSON body for notifications.
            return
        if isinstance(data, dict) and "error" in data:
            err = data["error"] or {}
            raise MCPProtocolError(f"MCP JSON-RPC error {err.get('code')}: {err.get('message')}")

    async def _ensure_initialized(self, client: httpx.AsyncClient) -> None:
        """Run MCP initialize handshake once per session."""
        if self._initialized and self._initialized_session_id == self._session_id:
            return

        await self._rpc(
            client,
            "initialize",
            {
                "protocolVersion": MCP_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": CLIENT_INFO,
            },
        )
        await self._notify(client, "notifications/initialized")

        self._initialized = True
        self._initialized_session_id = self._session_id

    async def list_tools(self) -> List[ProviderTool]:
        tools: List[ProviderTool] = []

        async with self._client() as client:
            await self._ensure_initialized(client)
            cursor: Optional[str] = None
            while True:
                params: Dict[str, Any] = {}
                if cursor:
                    params["cursor"] = cursor

                result = await self._rpc(client, "tools/list", params)
                for t in result.get("tools", []):
                    name = t["name"]
                    if self.allow_tools is not None and name not in self.allow_tools:
                        continue
                    if self.deny_tools is not None and name in self.deny_tools:
                        continue

                    tools.append(
                        ProviderTool(
                            name=name,
                            title=t.get("title"),
                            description=t.get("description", ""),
                            input_schema=t.get("inputSchema") or {"type": "object", "properties": {}},
                        )
                    )

                cursor = result.get("nextCursor")
                if not cursor:
                    break

        logger.info(f"MCP '{self.name}' listed {len(tools)} tool(s)")
        return tools

    async def call_tool(self, provider_tool_name: str, arguments: Dict[str, Any]) -> ToolCallResult:
        async with self._client() as client:
            await self._ensure_initialized(client)
            result = await self._rpc(
                client,
                "tools/call",
                {"name": provider_tool_name, "arguments": arguments or {}},
            )

        # Flatten MCP content into one text blob for the tool loop.
        parts: List[str] = []
        for item in result.get("content", []) or []:
            if item.get("type") == "text":
                parts.append(item.get("text", ""))
            else:
                parts.append(json.dumps(item, ensure_ascii=False))

        structured = result.get("structuredContent")
        if structured is not None:
            parts.append(json.dumps({"structuredContent": structured}, ensure_ascii=False))

        text = "\n".join(p for p in parts if p)
        return ToolCallResult(
            text=text if text else json.dumps(result, ensure_ascii=False),
            raw=result,
            is_error=bool(result.get("isError", False)),
        )
