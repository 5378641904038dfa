from __future__ import annotations

import json
from typing import List, Protocol, runtime_checkable

import httpx

from toolloom.core.exceptions import ToolExecutionError
from toolloom.core.logger import setup_logger
from toolloom.models.tool_model import ToolDefinition
from toolloom.tools.providers.mcp_provider import MCPProtocolError
from toolloom.tools.registry import ToolRegistry

logger = setup_logger(__name__)


@runtime_checkable
class ToolExecutor(Protocol):
    """
    The tool collaborator the chat runtime consumes.

    - list_tools: the union of tools across all connected sources, names
      already namespaced `<source>__<tool>`
    - call_tool: run one tool with its JSON argument text; raises on failure
    """

    async def list_tools(self) -> List[ToolDefinition]:
        ...

    async def call_tool(self, name: str, arguments_json: str) -> str:
        ...


class MCPToolExecutor:
    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    async def list_tools(self) -> List[ToolDefinition]:
        return self.registry.definitions()

    async def call_tool(self, name: str, arguments_json: str) -> str:
        tool = self.registry.get_tool(name)
        if not tool:
            raise ToolExecutionError(f"Unknown tool: {name}")

        try:
            arguments = json.loads(arguments_json or "{}")
        except json.JSONDecodeError as e:
            raise ToolExecutionError(f"Invalid JSON arguments for {name}: {e}") from e
        if not isinstance(arguments, dict):
            raise ToolExecutionError(f"Arguments for {name} must be a JSON object")

        provider = self.registry.get_provider(tool.provider_name)
        try:
            result = await provider.call_tool(tool.provider_tool_name, arguments)
        except (httpx.HTTPError, MCPProtocolError, ValueError) as e:
            logger.warning(f"Tool '{name}' failed on source '{tool.provider_name}': {e}")
            raise ToolExecutionError(f"{name} failed: {e}") from e

        if result.is_error:
            logger.info(f"Tool '{name}' reported an error result")
            raise ToolExecutionError(result.text or "Tool call returned isError=true")
        return result.text
