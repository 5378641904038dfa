from typing import Optional


class ToolloomError(Exception):
    """Base exception for the service."""


class NotConfigured(ToolloomError):
    """Raised when a provider lacks credentials sufficient for a request."""


class NoProviderConfigured(ToolloomError):
    """Raised when no current provider is selected or it is not configured."""


class UpstreamError(ToolloomError):
    """Raised when a provider returns a non-2xx response."""

    def __init__(self, status_code: int, body: str, provider: Optional[str] = None) -> None:
        self.status_code = status_code
        self.body = body
        self.provider = provider
        prefix = f"{provider} API error" if provider else "Upstream error"
        super().__init__(f"{prefix} {status_code}: {body}")


class ToolExecutionError(ToolloomError):
    """Raised when a single tool invocation fails."""


class AuthDeviceFlowFailed(ToolloomError):
    """Raised on a fatal OAuth device-flow error (anything but pending/slow_down)."""

    def __init__(self, error: str, description: Optional[str] = None) -> None:
        self.error = error
        self.description = description
        msg = f"GitHub auth failed: {error}"
        if description:
            msg += f" - {description}"
        super().__init__(msg)


class NormalizationError(ToolloomError):
    """Raised for malformed persisted history (tool result with no matching call id)."""


class ConfigFileError(ToolloomError):
    """Raised when the application YAML is missing or invalid."""
