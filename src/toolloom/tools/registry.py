from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from toolloom.core.logger import setup_logger
from toolloom.models.tool_model import ToolDefinition
from toolloom.tools.providers.mcp_provider import MCPToolProvider

logger = setup_logger(__name__)


@dataclass(frozen=True)
class RegisteredTool:
    # name exposed to the LLM, namespaced `<source>__<tool>`
    name: str
    description: str
    parameters: Dict[str, Any]

    # routing
    provider_name: str
    provider_tool_name: str  # the tool name at the source (e.g. MCP "get_weather")

    def definition(self) -> ToolDefinition:
        return ToolDefinition(name=self.name, description=self.description, parameters_schema=self.parameters)


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: Dict[str, RegisteredTool] = {}
        self._providers: Dict[str, MCPToolProvider] = {}

    def register_provider(self, provider: MCPToolProvider) -> None:
        self._providers[provider.name] = provider

    def get_provider(self, provider_name: str) -> MCPToolProvider:
        return self._providers[provider_name]

    def provider_names(self) -> List[str]:
        return list(self._providers.keys())

    def register_tool(self, tool: RegisteredTool) -> None:
        if tool.name in self._tools:
            logger.warning(f"Tool '{tool.name}' registered twice; keeping the latest")
        self._tools[tool.name] = tool

    def get_tool(self, name: str) -> Optional[RegisteredTool]:
        return self._tools.get(name)

    def tools(self) -> List[RegisteredTool]:
        return list(self._tools.values())

    def definitions(self) -> List[ToolDefinition]:
        return [t.definition() for t in self._tools.values()]


async def import_mcp_tools(registry: ToolRegistry, mcp_provider: MCPToolProvider) -> int:
    """Register every tool a server exposes under its namespaced name. Returns the count."""
    registry.register_provider(mcp_provider)
    tools = await mcp_provider.list_tools()

    for t in tools:
        registry.register_tool(
            RegisteredTool(
                name=mcp_provider.full_name(t.name),
                description=t.description or (t.title or t.name),
                parameters=t.input_schema,
                provider_name=mcp_provider.name,
                provider_tool_name=t.name,
            )
        )
    return len(tools)
