"""
Background device-flow sign-ins driven from the HTTP layer.

The provider announces the user code through its ``on_device_code`` observer;
this service captures it so the starting request can return it while polling
continues in a background task.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from toolloom.core.exceptions import AuthDeviceFlowFailed
from toolloom.core.logger import setup_logger
from toolloom.models.provider_model import DeviceFlowInfo, DeviceFlowOutcome
from toolloom.providers.registry import ProviderRegistry

logger = setup_logger(__name__)


def supports_device_flow(provider: Any) -> bool:
    return callable(getattr(provider, "authenticate_with_device_flow", None))


@dataclass
class DeviceFlowRun:
    provider_id: str
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    code_ready: asyncio.Event = field(default_factory=asyncio.Event)
    info: Optional[DeviceFlowInfo] = None
    outcome: Optional[DeviceFlowOutcome] = None
    error: Optional[str] = None
    task: Optional["asyncio.Task[None]"] = None

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()

    @property
    def status(self) -> str:
        if self.running:
            return "pending"
        if self.error is not None:
            return "failed"
        if self.outcome is not None:
            return self.outcome.value
        return "idle"


class DeviceFlowService:
    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry
        self._runs: Dict[str, DeviceFlowRun] = {}
        self._observed: Set[str] = set()

    def get_run(self, provider_id: str) -> Optional[DeviceFlowRun]:
        return self._runs.get(provider_id)

    def _observe(self, provider_id: str, provider: Any) -> None:
        if provider_id in self._observed:
            return

        def on_code(info: DeviceFlowInfo) -> None:
            run = self._runs.get(provider_id)
            if run is not None:
                run.info = info
                run.code_ready.set()

        provider.on_device_code(on_code)
        self._observed.add(provider_id)

    async def start(self, provider_id: str) -> DeviceFlowInfo:
        """Start (or join) a sign-in and return the code the user must enter.

        Raises ``KeyError`` for unknown providers, ``ValueError`` for providers
        without a device flow, and ``AuthDeviceFlowFailed`` when the flow
        fails before a code is issued.
        """
        provider = self._registry.get(provider_id)
        if provider is None:
            raise KeyError(provider_id)
        if not supports_device_flow(provider):
            raise ValueError(f"Provider '{provider_id}' does not support device-flow sign-in")

        existing = self._runs.get(provider_id)
        if existing is not None and existing.running and existing.info is not None:
            return existing.info

        self._observe(provider_id, provider)
        run = DeviceFlowRun(provider_id=provider_id)
        self._runs[provider_id] = run
        run.task = asyncio.create_task(self._run(run, provider))

        code_waiter = asyncio.ensure_future(run.code_ready.wait())
        try:
            await asyncio.wait({code_waiter, run.task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            code_waiter.cancel()

        if run.info is None:
            raise AuthDeviceFlowFailed("device_code_request_failed", run.error)
        return run.info

    async def _run(self, run: DeviceFlowRun, provider: Any) -> None:
        try:
            run.outcome = await provider.authenticate_with_device_flow(run.cancel_event)
            logger.info(f"Device flow for '{run.provider_id}' finished: {run.outcome.value}")
        except AuthDeviceFlowFailed as e:
            logger.error(f"Device flow for '{run.provider_id}' failed: {e}")
            run.error = str(e)
        except Exception as e:
            logger.exception(f"Device flow for '{run.provider_id}' crashed")
            run.error = str(e)

    def cancel(self, provider_id: str) -> bool:
        run = self._runs.get(provider_id)
        if run is None or not run.running:
            return False
        run.cancel_event.set()
        return True

    async def aclose(self) -> None:
        for run in self._runs.values():
            if run.running:
                run.cancel_event.set()
        tasks = [r.task for r in self._runs.values() if r.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
