"""LLM client pool for shared model access with concurrency control."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from openai import AsyncAzureOpenAI, AsyncOpenAI

from agent_engine.config import LLMConfig


class LLMPool:
    """Manages shared OpenAI-compatible clients with concurrency limiting."""

    def __init__(self) -> None:
        self._configs: Dict[str, LLMConfig] = {}
        self._clients: Dict[str, Any] = {}
        self._semaphores: Dict[str, asyncio.Semaphore] = {}

    def register(self, name: str, config: LLMConfig) -> None:
        """Register a model configuration; the client is built on first use."""
        self._configs[name] = config
        self._clients.pop(name, None)
        self._semaphores[name] = asyncio.Semaphore(config.max_concurrent)

    def register_client(self, name: str, client: Any, max_concurrent: int = 8) -> None:
        """Register an already-constructed client."""
        self._clients[name] = client
        self._semaphores[name] = asyncio.Semaphore(max_concurrent)

    def __contains__(self, name: object) -> bool:
        return name in self._semaphores

    @asynccontextmanager
    async def acquire(self, model_name: str) -> AsyncIterator[Any]:
        """Acquire access to a model client with concurrency control."""
        if model_name not in self._semaphores:
            raise KeyError(f"Model '{model_name}' not registered in LLM pool")

        async with self._semaphores[model_name]:
            client = self._clients.get(model_name)
            if client is None:
                client = self._clients[model_name] = self._build_client(self._configs[model_name])
            yield client

    @staticmethod
    def _build_client(config: LLMConfig) -> Any:
        if config.is_azure:
            return AsyncAzureOpenAI(
                api_key=config.api_key,
                api_version=config.api_version,
                azure_endpoint=config.endpoint,
            )
        return AsyncOpenAI(api_key=config.api_key, base_url=config.endpoint)
