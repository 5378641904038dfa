from __future__ import annotations
from typing import Any, Dict, Optional
from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/")
async def health() -> Dict[str, Any]:
    """Basic health check endpoint."""
    return {"status": "ok", "service": "toolloom"}


@router.get("/tools")
async def health_tools(raw_req: Request) -> Dict[str, Any]:
    """Tooling health/diagnostics.

    Reads only from app.state, so it answers even when some tool sources
    failed to connect at startup.
    """
    state = raw_req.app.state

    tool_registry = getattr(state, "tool_registry", None)
    executor = getattr(state, "executor", None)
    tool_source_errors: Dict[str, str] = getattr(state, "tool_source_errors", None) or {}
    config_snapshot: Optional[Dict[str, Any]] = getattr(state, "config_snapshot", None)

    payload: Dict[str, Any] = {
        "tool_count": len(tool_registry.tools()) if tool_registry is not None else 0,
        "tool_sources": tool_registry.provider_names() if tool_registry is not None else [],
        "registry_present": tool_registry is not None,
        "executor_present": executor is not None,
    }

    # Only include errors/config when present (keeps the happy-path response clean).
    if tool_source_errors:
        payload["tool_source_errors"] = tool_source_errors
    if config_snapshot is not None:
        payload["config"] = config_snapshot

    return payload
