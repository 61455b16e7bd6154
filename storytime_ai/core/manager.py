"""
AI manager.

Single entry point that resolves the chat service and API client of the
active provider. A provider's ``driver`` picks the implementation from a
fixed table, so several configured providers may share one driver.
"""

import logging
from typing import Dict, List, Optional, Tuple, Type

from ..config.loader import AiConfig, ProviderConfig
from ..sdk.base import ApiClient
from ..sdk.llama_client import LlamaApiClient
from ..sdk.openai_client import Nemotron3ApiClient, OpenAiApiClient
from .accounting import UsageAccounting
from .chat_service import ChatService, LlamaChatService, Nemotron3ChatService, OpenAiChatService
from .errors import UnknownProviderError
from .jobs import Dispatcher

logger = logging.getLogger(__name__)

FALLBACK_PROVIDER = "openai"

DRIVERS: Dict[str, Tuple[Type[ChatService], Type[ApiClient]]] = {
    "openai": (OpenAiChatService, OpenAiApiClient),
    "llama": (LlamaChatService, LlamaApiClient),
    "nemotron3": (Nemotron3ChatService, Nemotron3ApiClient),
}


class AiManager:
    """Resolves chat services and API clients from configuration.

    ``provider(name)`` returns a new manager bound to that provider; the
    instance it was called on keeps its own selection.
    """

    def __init__(
        self,
        config: AiConfig,
        accounting: Optional[UsageAccounting] = None,
        dispatcher: Optional[Dispatcher] = None,
        provider: Optional[str] = None,
    ):
        self.config = config
        self.accounting = accounting
        self.dispatcher = dispatcher
        self._provider = provider

    @property
    def default_provider(self) -> str:
        """Provider used by ``chat()``: the override, else the configured default."""
        return self._provider or self.config.default_provider

    def provider(self, name: str) -> "AiManager":
        return AiManager(self.config, accounting=self.accounting, dispatcher=self.dispatcher, provider=name)

    def available_providers(self) -> List[str]:
        return list(self.config.providers)

    def has_provider(self, name: str) -> bool:
        return self.config.has_provider(name) and self.config.providers[name].driver in DRIVERS

    def chat(self) -> ChatService:
        """Build a fresh chat service for the active provider.

        Raises:
            UnknownProviderError: If the active provider is not configured
        """
        name = self.default_provider
        if not self.has_provider(name):
            raise UnknownProviderError(name)

        provider_config = self.config.providers[name]
        chat_class, client_class = DRIVERS[provider_config.driver]
        logger.debug("resolved chat provider=%s driver=%s model=%s", name, provider_config.driver, provider_config.model)
        return chat_class(
            client_class(provider_config),
            provider_config,
            accounting=self.accounting,
            dispatcher=self.dispatcher,
        )

    def api(self, provider: Optional[str] = None) -> ApiClient:
        """Build an API client, falling back to OpenAI for unknown providers."""
        name = provider or self.default_provider
        if not self.has_provider(name):
            logger.warning("unknown AI provider=%s, falling back to %s", name, FALLBACK_PROVIDER)
            return OpenAiApiClient(self._fallback_config())

        provider_config = self.config.providers[name]
        _, client_class = DRIVERS[provider_config.driver]
        return client_class(provider_config)

    def _fallback_config(self) -> ProviderConfig:
        if self.config.has_provider(FALLBACK_PROVIDER):
            return self.config.providers[FALLBACK_PROVIDER]
        for provider_config in self.config.providers.values():
            if provider_config.driver == FALLBACK_PROVIDER:
                return provider_config
        return ProviderConfig(
            name=FALLBACK_PROVIDER,
            driver=FALLBACK_PROVIDER,
            model="gpt-4.1",
            base_url="https://api.openai.com/v1",
        )
