"""Tests for the default tool backend and the LLM pool."""
from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

from agent_engine.config import LLMConfig
from agent_engine.core.errors import ExecutionError
from agent_engine.services.llm_pool import LLMPool
from agent_engine.services.tools import (
    DefaultToolBackend,
    PromptContext,
    StepContext,
    ToolRegistry,
)


def _step(**overrides: Any) -> StepContext:
    fields: Dict[str, Any] = {
        "agent": "code-reviewer",
        "step": "analyze",
        "description": "Read the diff",
        "tools": ("read_file", "lint"),
        "input": {"path": "src/"},
    }
    fields.update(overrides)
    return StepContext(**fields)


class FakeCompletions:
    def __init__(self) -> None:
        self.requests: List[Dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.requests.append(kwargs)
        message = SimpleNamespace(content="Looks good", role="assistant")
        return SimpleNamespace(choices=[SimpleNamespace(message=message)], model=kwargs["model"])


@pytest.mark.anyio
async def test_step_invokes_registered_tools() -> None:
    registry = ToolRegistry()
    seen: List[str] = []

    async def read_file(context: StepContext) -> str:
        seen.append(context.input["path"])
        return "contents"

    registry.register("read_file", read_file)
    result = await DefaultToolBackend(tools=registry).run_step(_step())

    assert seen == ["src/"]
    assert result["status"] == "completed"
    assert result["tool_outputs"] == {"read_file": "contents"}
    assert result["tools_unavailable"] == ["lint"]
    assert result["tools_used"] == ["read_file", "lint"]
    assert result["context"]["tools"] == ["read_file", "lint"]
    json.dumps(result)


@pytest.mark.anyio
async def test_failing_tool_raises_execution_error() -> None:
    registry = ToolRegistry()

    async def lint(context: StepContext) -> None:
        raise ValueError("bad config")

    registry.register("lint", lint)
    with pytest.raises(ExecutionError, match="Tool lint failed in step analyze") as exc_info:
        await DefaultToolBackend(tools=registry).run_step(_step())
    assert isinstance(exc_info.value.__cause__, ValueError)


@pytest.mark.anyio
async def test_prompt_without_llm_returns_record() -> None:
    result = await DefaultToolBackend().run_prompt(
        PromptContext(agent="code-reviewer", task="report", prompt="Summarise.", input={"n": 2})
    )
    assert result["prompt_executed"] is True
    assert result["prompt"] == "Summarise."
    assert "response" not in result


@pytest.mark.anyio
async def test_prompt_goes_through_llm_pool() -> None:
    completions = FakeCompletions()
    pool = LLMPool()
    pool.register_client("test-model", SimpleNamespace(chat=SimpleNamespace(completions=completions)))
    backend = DefaultToolBackend(llm_pool=pool, model_name="test-model")

    result = await backend.run_prompt(
        PromptContext(agent="code-reviewer", task="report", prompt="Summarise.", input={"n": 2})
    )

    assert result["response"] == "Looks good"
    assert result["model"] == "test-model"
    [request] = completions.requests
    assert request["messages"][0] == {"role": "system", "content": "Summarise."}
    assert json.loads(request["messages"][1]["content"]) == {"n": 2}


@pytest.mark.anyio
async def test_llm_pool_rejects_unknown_model() -> None:
    pool = LLMPool()
    with pytest.raises(KeyError):
        async with pool.acquire("missing"):
            pass


def test_llm_pool_builds_clients_lazily() -> None:
    pool = LLMPool()
    pool.register("gpt", LLMConfig(api_key="sk-test", model="gpt"))
    assert "gpt" in pool
    assert LLMConfig(api_key="k", endpoint="https://x", api_version="2024-02-15-preview").is_azure
