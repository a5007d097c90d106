"""Configuration management for the agent engine."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class LLMConfig:
    """OpenAI-compatible service configuration used for prompt tasks."""

    api_key: str
    endpoint: Optional[str] = None
    api_version: Optional[str] = None
    model: str = "gpt-4o-mini"
    max_concurrent: int = 8

    @property
    def is_azure(self) -> bool:
        return self.api_version is not None and self.endpoint is not None


@dataclass(frozen=True)
class EngineConfig:
    """Engine configuration loaded from environment variables."""

    agents_dir: Path = Path("agent_definitions")
    workspace_dir: Path = Path(".")
    max_concurrent_agents: int = 5
    default_timeout: Optional[float] = 300.0
    database_path: Optional[Path] = None
    event_queue_size: int = 1000
    log_level: str = "INFO"
    llm: Optional[LLMConfig] = None
    environment: str = "development"

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from environment variables."""
        timeout = float(os.getenv("AGENT_ENGINE_DEFAULT_TIMEOUT", "300"))
        database = os.getenv("AGENT_ENGINE_DATABASE")

        return cls(
            agents_dir=Path(os.getenv("AGENT_ENGINE_AGENTS_DIR", "agent_definitions")),
            workspace_dir=Path(os.getenv("AGENT_ENGINE_WORKSPACE_DIR", os.getcwd())),
            max_concurrent_agents=int(os.getenv("AGENT_ENGINE_MAX_CONCURRENT_AGENTS", "5")),
            # A zero timeout disables the per-execution deadline.
            default_timeout=timeout if timeout > 0 else None,
            database_path=Path(database) if database else None,
            event_queue_size=int(os.getenv("AGENT_ENGINE_EVENT_QUEUE_SIZE", "1000")),
            log_level=os.getenv("AGENT_ENGINE_LOG_LEVEL", "INFO"),
            llm=_llm_from_env(),
            environment=os.getenv("ENVIRONMENT", "development"),
        )


def _llm_from_env() -> Optional[LLMConfig]:
    model = os.getenv("AGENT_ENGINE_LLM_MODEL", "gpt-4o-mini")
    max_concurrent = int(os.getenv("AGENT_ENGINE_LLM_MAX_CONCURRENT", "8"))

    azure_key = os.getenv("AZURE_OPENAI_KEY")
    azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
    if azure_key and azure_endpoint:
        return LLMConfig(
            api_key=azure_key,
            endpoint=azure_endpoint,
            api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
            model=model,
            max_concurrent=max_concurrent,
        )

    openai_key = os.getenv("OPENAI_API_KEY")
    if openai_key:
        return LLMConfig(
            api_key=openai_key,
            endpoint=os.getenv("OPENAI_BASE_URL"),
            model=model,
            max_concurrent=max_concurrent,
        )
    return None


# Global config instance
config = EngineConfig.from_env()
