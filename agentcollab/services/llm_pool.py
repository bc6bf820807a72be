"""LLM client pool for shared model access with concurrency control."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List

from openai import AsyncAzureOpenAI, AsyncOpenAI

from agentcollab.config import ProviderConfig
from agentcollab.core.errors import ProviderNotConfiguredError


class LLMPool:
    """Manages shared provider clients with concurrency limiting."""

    def __init__(self) -> None:
        self._configs: Dict[str, ProviderConfig] = {}
        self._clients: Dict[str, Any] = {}
        self._semaphores: Dict[str, asyncio.Semaphore] = {}

    def register(self, provider: ProviderConfig) -> None:
        """Register a provider; its client is created on first use."""
        self._configs[provider.name] = provider
        self._semaphores[provider.name] = asyncio.Semaphore(provider.max_concurrent)
        self._clients.pop(provider.name, None)

    def providers(self) -> List[str]:
        return list(self._configs)

    def config_for(self, provider: str) -> ProviderConfig:
        if provider not in self._configs:
            raise ProviderNotConfiguredError(f"Provider '{provider}' not registered in LLM pool")
        return self._configs[provider]

    @asynccontextmanager
    async def acquire(self, provider: str) -> AsyncIterator[Any]:
        """Acquire access to a provider client with concurrency control."""
        self.config_for(provider)
        semaphore = self._semaphores[provider]
        await semaphore.acquire()
        try:
            if provider not in self._clients:
                self._clients[provider] = self._build_client(self._configs[provider])
            yield self._clients[provider]
        finally:
            semaphore.release()

    @staticmethod
    def _build_client(config: ProviderConfig) -> Any:
        if config.is_azure:
            return AsyncAzureOpenAI(
                api_key=config.api_key,
                api_version=config.api_version,
                azure_endpoint=config.endpoint,
            )
        return AsyncOpenAI(api_key=config.api_key, base_url=config.endpoint)
