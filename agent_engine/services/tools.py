"""Tool execution backend invoked by workflow steps and prompt tasks."""
from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from agent_engine.core.errors import ExecutionError
from agent_engine.core.models import utcnow

if TYPE_CHECKING:
    from agent_engine.services.llm_pool import LLMPool

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class StepContext:
    """Input contract handed to the backend for one workflow step."""

    agent: str
    step: str
    description: str
    tools: Tuple[str, ...]
    input: Any
    options: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["tools"] = list(self.tools)
        return data


@dataclass(slots=True)
class PromptContext:
    agent: str
    task: str
    prompt: str
    input: Any
    options: Dict[str, Any] = field(default_factory=dict)


ToolHandler = Callable[[StepContext], Awaitable[Any]]


class ToolBackend(Protocol):
    async def run_step(self, context: StepContext) -> Any: ...

    async def run_prompt(self, context: PromptContext) -> Any: ...


class ToolRegistry:
    """Registry of async tool handlers keyed by tool name."""

    def __init__(self) -> None:
        self._handlers: Dict[str, ToolHandler] = {}

    def register(self, name: str, handler: ToolHandler) -> None:
        self._handlers[name] = handler

    def get(self, name: str) -> Optional[ToolHandler]:
        return self._handlers.get(name)

    def names(self) -> List[str]:
        return sorted(self._handlers)


class DefaultToolBackend:
    """Runs a step's declared tools through the registry and prompts through the LLM pool."""

    def __init__(
        self,
        tools: Optional[ToolRegistry] = None,
        llm_pool: Optional[LLMPool] = None,
        model_name: Optional[str] = None,
    ) -> None:
        self._tools = tools or ToolRegistry()
        self._llm_pool = llm_pool
        self._model_name = model_name

    @property
    def tools(self) -> ToolRegistry:
        return self._tools

    async def run_step(self, context: StepContext) -> Dict[str, Any]:
        started = time.monotonic()
        outputs: Dict[str, Any] = {}
        unavailable: List[str] = []

        for tool in context.tools:
            handler = self._tools.get(tool)
            if handler is None:
                unavailable.append(tool)
                continue
            LOGGER.debug("Agent %s step %s invoking tool %s", context.agent, context.step, tool)
            try:
                outputs[tool] = await handler(context)
            except ExecutionError:
                raise
            except Exception as exc:
                raise ExecutionError(
                    f"Tool {tool} failed in step {context.step} of agent {context.agent}: {exc}"
                ) from exc

        return {
            "step": context.step,
            "status": "completed",
            "description": context.description,
            "tools_used": list(context.tools),
            "tool_outputs": outputs,
            "tools_unavailable": unavailable,
            "execution_time_ms": (time.monotonic() - started) * 1000.0,
            "timestamp": utcnow().isoformat(),
            "context": context.as_dict(),
        }

    async def run_prompt(self, context: PromptContext) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "task": context.task,
            "prompt_executed": True,
            "prompt": context.prompt,
            "input": context.input,
            "agent": context.agent,
            "timestamp": utcnow().isoformat(),
        }
        if self._llm_pool is None or self._model_name is None:
            return result

        model_name = context.options.get("model", self._model_name)
        async with self._llm_pool.acquire(model_name) as client:
            response = await client.chat.completions.create(
                model=model_name,
                messages=[
                    {"role": "system", "content": context.prompt},
                    {"role": "user", "content": json.dumps(context.input, default=str)},
                ],
                temperature=float(context.options.get("temperature", 0.3)),
            )
        result["response"] = response.choices[0].message.content
        result["model"] = model_name
        return result
