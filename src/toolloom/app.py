from contextlib import asynccontextmanager
from typing import Dict

import httpx
from fastapi import FastAPI

from toolloom.core.app_config import AppConfig, config_snapshot, load_app_config
from toolloom.core.logger import setup_logger
from toolloom.core.settings import settings
from toolloom.providers.registry import ProviderRegistry
from toolloom.repositories.conversation_repository import InMemoryConversationStore
from toolloom.routers import chat_router, health_router, providers_router
from toolloom.services.auth_service import DeviceFlowService
from toolloom.services.chat_service import ConversationGuard
from toolloom.tools.executor import MCPToolExecutor
from toolloom.tools.providers.mcp_provider import MCPProtocolError, MCPToolProvider
from toolloom.tools.registry import ToolRegistry, import_mcp_tools

logger = setup_logger(__name__)


async def connect_tool_sources(cfg: AppConfig, registry: ToolRegistry) -> Dict[str, str]:
    """Import tools from every enabled MCP server; unreachable servers are skipped."""
    errors: Dict[str, str] = {}
    for server in cfg.mcp_servers:
        if not server.enabled:
            continue
        provider = MCPToolProvider.from_config(server)
        try:
            count = await import_mcp_tools(registry, provider)
            logger.info(f"Connected MCP server '{server.name}' with {count} tool(s)")
        except (httpx.HTTPError, MCPProtocolError, ValueError) as e:
            logger.warning(f"MCP server '{server.name}' unavailable; skipping: {e}")
            errors[server.name] = str(e)
    return errors


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        logger.info("Starting up toolloom")
        cfg = load_app_config(settings.APP_CONFIG_FILE, missing_ok=True)
        app.state.config_snapshot = config_snapshot(cfg)

        app.state.providers = ProviderRegistry()
        app.state.providers.configure_providers(cfg)

        app.state.tool_registry = ToolRegistry()
        app.state.tool_source_errors = await connect_tool_sources(cfg, app.state.tool_registry)
        app.state.executor = MCPToolExecutor(app.state.tool_registry)

        app.state.store = InMemoryConversationStore()
        app.state.turn_guard = ConversationGuard()
        app.state.device_flows = DeviceFlowService(app.state.providers)
        yield
        logger.info("Shutting down.")
        await app.state.device_flows.aclose()

    except Exception:
        logger.exception("FastAPI failed to start")
        raise

    finally:
        logger.info("Application stopped.")


app = FastAPI(title="toolloom", lifespan=lifespan)

app.include_router(health_router.router, prefix="/health")
app.include_router(providers_router.router, prefix="/v1")
app.include_router(chat_router.router, prefix="/v1")


@app.get("/")
def root():
    return {"status": "ok", "service": "toolloom"}
