"""
GitHub OAuth device flow and Copilot session-token lifecycle.

One manager per provider instance. The OAuth token obtained from the device
flow (or supplied through configuration) is exchanged for a short-lived
Copilot session token bound to an API endpoint. The session is refreshed in
place, two minutes before it expires, before every use. A failed exchange
does not raise: the manager drops into degraded mode and the provider falls
back to the public GitHub Models API with the OAuth token.

State machine:
    UNAUTHENTICATED -> PENDING_USER_APPROVAL -> AUTHENTICATED -> SESSION_ACTIVE
"""

from __future__ import annotations

import asyncio
import inspect
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Union

import httpx

from toolloom.core.exceptions import AuthDeviceFlowFailed
from toolloom.core.logger import setup_logger
from toolloom.core.settings import settings
from toolloom.models.provider_model import (
    AuthState,
    CopilotSession,
    DeviceFlowInfo,
    DeviceFlowOutcome,
)

logger = setup_logger(__name__)

GITHUB_CLIENT_ID = "Iv1.b507a08c87ecfe98"
DEVICE_CODE_URL = "https://github.com/login/device/code"
ACCESS_TOKEN_URL = "https://github.com/login/oauth/access_token"
COPILOT_TOKEN_URL = "https://api.github.com/copilot_internal/v2/token"
DEFAULT_COPILOT_API = "https://api.individual.githubcopilot.com"
DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
OAUTH_SCOPE = "read:user"
USER_AGENT = "toolloom"

MIN_POLL_INTERVAL_S = 5
SLOW_DOWN_STEP_S = 5

Listener = Callable[..., Union[None, Awaitable[None]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CopilotTokenManager:
    def __init__(
        self,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        flow_timeout_s: Optional[float] = None,
        client_id: str = GITHUB_CLIENT_ID,
    ) -> None:
        self._transport = transport
        self._clock = clock
        self._sleep = sleep
        self._flow_timeout_s = flow_timeout_s if flow_timeout_s is not None else settings.DEVICE_FLOW_TIMEOUT_S
        self._client_id = client_id

        self._state = AuthState.UNAUTHENTICATED
        self._oauth_token: Optional[str] = None
        self._session: Optional[CopilotSession] = None
        self._degraded = False
        self._interactive = False
        self._lock: Optional[asyncio.Lock] = None

        self._device_code_listeners: List[Listener] = []
        self._authenticated_listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def oauth_token(self) -> Optional[str]:
        return self._oauth_token

    @property
    def session(self) -> Optional[CopilotSession]:
        return self._session

    @property
    def degraded(self) -> bool:
        """True once a session exchange failed; the public API path is in use."""
        return self._degraded

    @property
    def has_live_session(self) -> bool:
        return self._session is not None and not self._degraded

    @property
    def signed_in_interactively(self) -> bool:
        return self._interactive and self._oauth_token is not None

    def set_oauth_token(self, token: str) -> None:
        """Adopt a stored OAuth token. The exchange runs lazily on first use."""
        self._oauth_token = token or None
        self._session = None
        self._degraded = False
        self._interactive = False
        self._state = AuthState.AUTHENTICATED if token else AuthState.UNAUTHENTICATED

    def _get_lock(self) -> asyncio.Lock:
        # Created lazily so no event loop is needed at construction time.
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def on_device_code(self, callback: Callable[[DeviceFlowInfo], Any]) -> None:
        self._device_code_listeners.append(callback)

    def on_authenticated(self, callback: Callable[[], Any]) -> None:
        self._authenticated_listeners.append(callback)

    async def _notify(self, listeners: List[Listener], *args: Any) -> None:
        for cb in list(listeners):
            result = cb(*args)
            if inspect.isawaitable(result):
                await result

    # ------------------------------------------------------------------
    # Device flow
    # ------------------------------------------------------------------

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={"Accept": "application/json"},
            timeout=settings.TOKEN_TIMEOUT_S,
            transport=self._transport,
        )

    async def authenticate_with_device_flow(
        self,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> DeviceFlowOutcome:
        """Run the OAuth device flow to completion.

        Observers registered with ``on_device_code`` receive the verification
        URI and user code; this method never interacts with the user itself.

        Returns ``DeviceFlowOutcome.CANCELLED`` when ``cancel_event`` is set
        while waiting. Raises ``AuthDeviceFlowFailed`` on a failed device-code
        request, a fatal poll error, or when the flow ceiling is reached.
        """
        previous_state = self._state

        async with self._http() as client:
            device = await self._request_device_code(client)

            interval = max(int(device.get("interval") or 0), MIN_POLL_INTERVAL_S)
            ceiling = self._flow_timeout_s
            expires_in = device.get("expires_in")
            if isinstance(expires_in, (int, float)) and expires_in > 0:
                ceiling = min(ceiling, float(expires_in))

            self._state = AuthState.PENDING_USER_APPROVAL
            info = DeviceFlowInfo(
                verification_uri=device["verification_uri"],
                user_code=device["user_code"],
            )
            logger.info(f"Device flow pending user approval at {info.verification_uri}")

            try:
                await self._notify(self._device_code_listeners, info)
                access_token = await self._poll_for_token(
                    client, device["device_code"], interval, ceiling, cancel_event
                )
            except BaseException:
                self._state = previous_state
                raise

        if access_token is None:
            logger.info("Device flow cancelled by caller")
            self._state = previous_state
            return DeviceFlowOutcome.CANCELLED

        self._oauth_token = access_token
        self._session = None
        self._degraded = False
        self._interactive = True
        self._state = AuthState.AUTHENTICATED
        logger.info("Device flow approved; exchanging OAuth token for a Copilot session")

        await self.refresh_session()
        await self._notify(self._authenticated_listeners)
        return DeviceFlowOutcome.AUTHENTICATED

    async def _request_device_code(self, client: httpx.AsyncClient) -> dict:
        try:
            resp = await client.post(
                DEVICE_CODE_URL,
                json={"client_id": self._client_id, "scope": OAUTH_SCOPE},
            )
        except httpx.HTTPError as e:
            raise AuthDeviceFlowFailed("device_code_request_failed", str(e)) from e

        if not resp.is_success:
            raise AuthDeviceFlowFailed(
                "device_code_request_failed", f"HTTP {resp.status_code}: {resp.text}"
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise AuthDeviceFlowFailed("device_code_request_failed", "response was not JSON") from e

        missing = [k for k in ("device_code", "user_code", "verification_uri") if not data.get(k)]
        if missing:
            raise AuthDeviceFlowFailed(
                "device_code_request_failed", f"missing fields: {', '.join(missing)}"
            )
        return data

    async def _poll_for_token(
        self,
        client: httpx.AsyncClient,
        device_code: str,
        interval: int,
        ceiling: float,
        cancel_event: Optional[asyncio.Event],
    ) -> Optional[str]:
        waited = 0.0
        polls = 0

        while True:
            if waited + interval > ceiling:
                raise AuthDeviceFlowFailed("expired_token", "device flow timed out waiting for approval")

            if await self._pause(interval, cancel_event):
                return None
            waited += interval
            polls += 1

            try:
                resp = await client.post(
                    ACCESS_TOKEN_URL,
                    json={
                        "client_id": self._client_id,
                        "device_code": device_code,
                        "grant_type": DEVICE_GRANT_TYPE,
                    },
                )
                data = resp.json()
            except (httpx.HTTPError, ValueError) as e:
                raise AuthDeviceFlowFailed("token_request_failed", str(e)) from e

            if data.get("access_token"):
                logger.info(f"Device flow approved after {polls} poll(s)")
                return data["access_token"]

            error = data.get("error")
            if error == "slow_down":
                interval += SLOW_DOWN_STEP_S
                logger.info(f"Device flow asked to slow down; polling every {interval}s")
            elif error != "authorization_pending":
                raise AuthDeviceFlowFailed(str(error), data.get("error_description"))

    async def _pause(self, seconds: float, cancel_event: Optional[asyncio.Event]) -> bool:
        """Wait ``seconds``; return True if ``cancel_event`` fired first."""
        if cancel_event is None:
            await self._sleep(seconds)
            return False
        if cancel_event.is_set():
            return True

        sleeper = asyncio.ensure_future(self._sleep(seconds))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            waiter.cancel()
        return cancel_event.is_set()

    # ------------------------------------------------------------------
    # Session exchange
    # ------------------------------------------------------------------

    async def refresh_session(self) -> bool:
        """Exchange the OAuth token for a fresh session; degrade on any failure."""
        if not self._oauth_token:
            return False

        try:
            async with self._http() as client:
                resp = await client.get(
                    COPILOT_TOKEN_URL,
                    headers={
                        "Authorization": f"token {self._oauth_token}",
                        "User-Agent": USER_AGENT,
                    },
                )
            if resp.is_success:
                data = resp.json()
                token = data.get("token")
                if token:
                    endpoint = ((data.get("endpoints") or {}).get("api") or DEFAULT_COPILOT_API).rstrip("/")
                    expires_at = datetime.fromtimestamp(int(data.get("expires_at") or 0), tz=timezone.utc)
                    self._session = CopilotSession(token=token, endpoint=endpoint, expires_at=expires_at)
                    self._degraded = False
                    self._state = AuthState.SESSION_ACTIVE
                    logger.info(f"Copilot session active at {endpoint} until {expires_at.isoformat()}")
                    return True
                logger.warning("Copilot token exchange returned no token")
            else:
                logger.warning(f"Copilot token exchange failed with HTTP {resp.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Copilot token exchange failed: {e}")

        self._degrade()
        return False

    def _degrade(self) -> None:
        logger.warning("Falling back to the public GitHub Models API")
        self._session = None
        self._degraded = True
        self._state = AuthState.AUTHENTICATED

    async def ensure_session(self) -> Optional[CopilotSession]:
        """Return a live session, refreshing it first when within the expiry margin.

        Returns None in degraded mode or without an OAuth token.
        """
        if self._degraded or not self._oauth_token:
            return None

        session = self._session
        if session is not None and not session.is_expired(self._clock()):
            return session

        async with self._get_lock():
            # Another request may have refreshed while we waited.
            session = self._session
            if self._degraded:
                return None
            if session is None or session.is_expired(self._clock()):
                await self.refresh_session()

        return self._session
