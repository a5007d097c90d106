"""Application runtime composition helpers."""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from agent_engine.config import config
from agent_engine.core.events import EventBus
from agent_engine.orchestration.orchestrator import Orchestrator
from agent_engine.services.catalog import AgentCatalog
from agent_engine.services.llm_pool import LLMPool
from agent_engine.services.recorder import ExecutionRecorder, InMemoryRecorder
from agent_engine.services.sqlite_recorder import SQLiteRecorder
from agent_engine.services.tools import DefaultToolBackend, ToolRegistry


@lru_cache
def get_events() -> EventBus:
    return EventBus(max_queue_size=config.event_queue_size)


@lru_cache
def get_recorder() -> ExecutionRecorder:
    if config.database_path is not None:
        return SQLiteRecorder(config.database_path)
    return InMemoryRecorder()


@lru_cache
def get_tool_registry() -> ToolRegistry:
    return ToolRegistry()


@lru_cache
def get_llm_pool() -> Optional[LLMPool]:
    if config.llm is None:
        return None
    pool = LLMPool()
    pool.register(config.llm.model, config.llm)
    return pool


@lru_cache
def get_orchestrator() -> Orchestrator:
    llm_pool = get_llm_pool()
    backend = DefaultToolBackend(
        tools=get_tool_registry(),
        llm_pool=llm_pool,
        model_name=config.llm.model if config.llm else None,
    )
    return Orchestrator(
        catalog=AgentCatalog(config.agents_dir),
        recorder=get_recorder(),
        backend=backend,
        events=get_events(),
        max_concurrent_agents=config.max_concurrent_agents,
        default_timeout=config.default_timeout,
    )
