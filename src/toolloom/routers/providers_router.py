from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Request

from toolloom.core.exceptions import AuthDeviceFlowFailed
from toolloom.models.chat_model import ModelInfo
from toolloom.models.provider_model import ProviderSummary, SelectModelRequest, SelectProviderRequest
from toolloom.providers.base import LLMProvider
from toolloom.providers.registry import ProviderRegistry
from toolloom.services.auth_service import DeviceFlowService, supports_device_flow

router = APIRouter()


def _registry(raw_req: Request) -> ProviderRegistry:
    return raw_req.app.state.providers


def _provider_or_404(raw_req: Request, provider_id: str) -> LLMProvider:
    provider = _registry(raw_req).get(provider_id)
    if provider is None:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider_id}")
    return provider


def _summary(provider: LLMProvider, current_id: str) -> ProviderSummary:
    return ProviderSummary(
        id=provider.id,
        display_name=provider.display_name,
        configured=provider.is_configured,
        current_model=provider.current_model,
        current=provider.id == current_id,
        auth_state=getattr(provider, "auth_state", None),
    )


@router.get("/providers")
async def list_providers(raw_req: Request) -> Dict[str, Any]:
    registry = _registry(raw_req)
    return {
        "current": registry.current_id,
        "providers": [_summary(p, registry.current_id) for p in registry.all_providers()],
    }


@router.put("/providers/current")
async def select_provider(body: SelectProviderRequest, raw_req: Request) -> ProviderSummary:
    registry = _registry(raw_req)
    try:
        registry.set_current(body.id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _summary(registry.current, registry.current_id)


@router.get("/providers/{provider_id}/models")
async def list_models(provider_id: str, raw_req: Request) -> List[ModelInfo]:
    return await _provider_or_404(raw_req, provider_id).list_available_models()


@router.put("/providers/{provider_id}/model")
async def select_model(provider_id: str, body: SelectModelRequest, raw_req: Request) -> ProviderSummary:
    provider = _provider_or_404(raw_req, provider_id)
    provider.set_model(body.model)
    if provider.current_model != body.model:
        # Adapters ignore model selection until they have been configured.
        raise HTTPException(status_code=409, detail=f"Provider '{provider_id}' is not configured; model unchanged")
    return _summary(provider, _registry(raw_req).current_id)


@router.post("/providers/{provider_id}/device-flow")
async def start_device_flow(provider_id: str, raw_req: Request) -> Dict[str, str]:
    provider = _provider_or_404(raw_req, provider_id)
    if not supports_device_flow(provider):
        raise HTTPException(status_code=400, detail=f"Provider '{provider_id}' does not support device-flow sign-in")

    flows: DeviceFlowService = raw_req.app.state.device_flows
    try:
        info = await flows.start(provider_id)
    except AuthDeviceFlowFailed as e:
        raise HTTPException(status_code=502, detail=str(e))
    return info.model_dump()


@router.get("/providers/{provider_id}/device-flow")
async def device_flow_status(provider_id: str, raw_req: Request) -> Dict[str, Any]:
    provider = _provider_or_404(raw_req, provider_id)
    run = raw_req.app.state.device_flows.get_run(provider_id)
    payload: Dict[str, Any] = {
        "provider_id": provider_id,
        "status": run.status if run is not None else "idle",
        "auth_state": getattr(provider, "auth_state", None),
        "configured": provider.is_configured,
    }
    if run is not None and run.error:
        payload["error"] = run.error
    return payload


@router.delete("/providers/{provider_id}/device-flow")
async def cancel_device_flow(provider_id: str, raw_req: Request) -> Dict[str, Any]:
    _provider_or_404(raw_req, provider_id)
    cancelled = raw_req.app.state.device_flows.cancel(provider_id)
    return {"provider_id": provider_id, "cancelled": cancelled}
