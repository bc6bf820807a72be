"""Completion gateway backed by OpenAI-compatible chat completion endpoints."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol

from loguru import logger

from agentcollab.core.models import GenerationConfig
from agentcollab.services.llm_pool import LLMPool

ChunkHandler = Callable[[str], None]


@dataclass(slots=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(slots=True)
class CompletionResult:
    content: str
    model: str
    provider: str
    usage: Optional[Usage] = None


class CompletionGateway(Protocol):
    """Anything able to turn a prompt into model text."""

    async def complete(self, prompt: str, config: GenerationConfig) -> CompletionResult:
        ...

    async def stream(self, prompt: str, config: GenerationConfig, on_chunk: ChunkHandler) -> CompletionResult:
        ...

    async def test_connection(self, provider: str) -> bool:
        ...

    async def list_models(self, provider: str) -> List[str]:
        ...


def _messages(prompt: str, config: GenerationConfig) -> List[dict]:
    messages = []
    if config.system_prompt:
        messages.append({"role": "system", "content": config.system_prompt})
    messages.append({"role": "user", "content": prompt})
    return messages


class OpenAICompletionGateway:
    """Routes completion calls to the provider named in each agent's generation config."""

    def __init__(self, pool: LLMPool) -> None:
        self._pool = pool

    def _model_for(self, config: GenerationConfig) -> str:
        return config.model or self._pool.config_for(config.provider).default_model

    async def complete(self, prompt: str, config: GenerationConfig) -> CompletionResult:
        model = self._model_for(config)
        async with self._pool.acquire(config.provider) as client:
            response = await client.chat.completions.create(
                model=model,
                messages=_messages(prompt, config),
                temperature=config.temperature,
                max_tokens=config.max_tokens,
            )

        content = response.choices[0].message.content or ""
        usage = None
        if response.usage is not None:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )
        return CompletionResult(content=content, model=response.model or model, provider=config.provider, usage=usage)

    async def stream(self, prompt: str, config: GenerationConfig, on_chunk: ChunkHandler) -> CompletionResult:
        """Stream a completion, handing each text delta to ``on_chunk`` as it arrives."""
        model = self._model_for(config)
        parts: List[str] = []
        async with self._pool.acquire(config.provider) as client:
            response = await client.chat.completions.create(
                model=model,
                messages=_messages(prompt, config),
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                stream=True,
            )
            async for chunk in response:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    parts.append(delta)
                    on_chunk(delta)
        return CompletionResult(content="".join(parts), model=model, provider=config.provider)

    async def test_connection(self, provider: str) -> bool:
        try:
            await self.list_models(provider)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Connection test for provider {provider} failed: {exc}")
            return False
        return True

    async def list_models(self, provider: str) -> List[str]:
        async with self._pool.acquire(provider) as client:
            page = await client.models.list()
            return [model.id for model in page.data]
