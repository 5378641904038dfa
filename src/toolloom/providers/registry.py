from __future__ import annotations

from typing import Callable, Dict, List, Optional

from toolloom.core.app_config import AppConfig
from toolloom.core.logger import setup_logger
from toolloom.models.provider_model import ProviderConfig, ProviderType
from toolloom.providers.anthropic_provider import AnthropicProvider
from toolloom.providers.base import LLMProvider
from toolloom.providers.copilot_provider import CopilotProvider
from toolloom.providers.ollama_provider import OllamaProvider
from toolloom.providers.openai_provider import OpenAIProvider

logger = setup_logger(__name__)

ProviderFactory = Callable[[str], LLMProvider]

PROVIDER_FACTORIES: Dict[ProviderType, ProviderFactory] = {
    ProviderType.OPENAI: OpenAIProvider,
    # Azure OpenAI speaks the same wire format behind an endpoint override.
    ProviderType.AZURE_OPENAI: OpenAIProvider,
    ProviderType.ANTHROPIC: AnthropicProvider,
    ProviderType.OLLAMA: OllamaProvider,
    ProviderType.GITHUB_COPILOT: CopilotProvider,
}

BUILTIN_PROVIDERS = ("openai", "anthropic", "ollama", "github-copilot")


class ProviderRegistry:
    """
    Owns every provider instance for the lifetime of the app.

    Instances are reused across reconfiguration so that an interactive
    sign-in held by an adapter survives a config reload.
    """

    def __init__(self, providers: Optional[List[LLMProvider]] = None) -> None:
        self._providers: Dict[str, LLMProvider] = {}
        self._current_id: Optional[str] = None

        if providers is None:
            providers = [
                OpenAIProvider("openai"),
                AnthropicProvider("anthropic"),
                OllamaProvider("ollama"),
                CopilotProvider("github-copilot"),
            ]
        for provider in providers:
            self.register(provider)

    def register(self, provider: LLMProvider) -> None:
        self._providers[provider.id] = provider

    def get(self, provider_id: str) -> Optional[LLMProvider]:
        return self._providers.get(provider_id)

    def all_providers(self) -> List[LLMProvider]:
        return list(self._providers.values())

    def available_providers(self) -> List[LLMProvider]:
        return [p for p in self._providers.values() if p.is_configured]

    @property
    def current_id(self) -> Optional[str]:
        return self._current_id

    @property
    def current(self) -> Optional[LLMProvider]:
        if self._current_id is None:
            return None
        return self._providers.get(self._current_id)

    def set_current(self, provider_id: str) -> None:
        if provider_id not in self._providers:
            raise ValueError(f"Unknown provider: {provider_id}")
        self._current_id = provider_id
        logger.info(f"Current provider set to '{provider_id}'")

    def configure_provider(self, config: ProviderConfig) -> LLMProvider:
        factory = PROVIDER_FACTORIES[config.type]
        provider = self._providers.get(config.id)
        if provider is not None and not isinstance(provider, factory):
            logger.warning(
                f"Provider '{config.id}' changed type to '{config.type.value}'; "
                f"replacing {type(provider).__name__} instance"
            )
            provider = None
        if provider is None:
            provider = factory(config.id)
            self.register(provider)
            logger.info(f"Registered provider '{config.id}' of type '{config.type.value}'")
        provider.configure(config)
        return provider

    def configure_providers(self, app_config: AppConfig) -> None:
        for provider_id, config in app_config.providers.items():
            if not config.enabled:
                logger.info(f"Provider '{provider_id}' disabled in config; skipping")
                continue
            self.configure_provider(config)

        default = app_config.default_provider
        if default and not app_config.providers[default].enabled:
            logger.warning(f"default_provider '{default}' is disabled; not selecting it")
            default = None

        if default and default in self._providers:
            self._current_id = default
        elif self._current_id is None and self._providers:
            self._current_id = next(iter(self._providers))

        configured = [p.id for p in self.available_providers()]
        logger.info(f"Providers configured={configured} current='{self._current_id}'")
