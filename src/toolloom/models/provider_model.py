from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Treat a session token as expired this long before its stated expiry.
SESSION_EXPIRY_MARGIN = timedelta(minutes=2)


class ProviderType(str, Enum):
    OPENAI = "openai"
    AZURE_OPENAI = "azure_openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"
    GITHUB_COPILOT = "github_copilot"


class ProviderConfig(BaseModel):
    """Declarative config for a single LLM provider."""

    id: str = ""
    display_name: str = ""
    type: ProviderType
    # API key, PAT, or OAuth token depending on the provider type.
    api_key: str = ""
    model: str = ""
    # Self-hosted / region-specific base URL.
    endpoint: Optional[str] = None
    enabled: bool = True

    @field_validator("display_name", "api_key", "model", mode="before")
    @classmethod
    def _blank_to_empty(cls, v):
        # An empty YAML value (or an unset ${VAR}) loads as None.
        return "" if v is None else v


class CopilotSession(BaseModel):
    """
    Short-lived session credential obtained by exchanging an OAuth token.
    Replaced wholesale on every refresh.
    """

    model_config = ConfigDict(frozen=True)

    token: str
    endpoint: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at - SESSION_EXPIRY_MARGIN


class DeviceFlowInfo(BaseModel):
    """What the user needs to approve the device code out-of-band."""

    verification_uri: str
    user_code: str


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    PENDING_USER_APPROVAL = "pending_user_approval"
    AUTHENTICATED = "authenticated"
    SESSION_ACTIVE = "session_active"


class DeviceFlowOutcome(str, Enum):
    AUTHENTICATED = "authenticated"
    CANCELLED = "cancelled"


class ProviderSummary(BaseModel):
    id: str
    display_name: str
    configured: bool
    current_model: str
    current: bool = False
    auth_state: Optional[AuthState] = None


class SelectProviderRequest(BaseModel):
    id: str = Field(..., min_length=1)


class SelectModelRequest(BaseModel):
    model: str = Field(..., min_length=1)
