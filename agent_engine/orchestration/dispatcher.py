"""Dispatch of tasks to deployed agents."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Dict, Optional

from agent_engine.core.context import CURRENT_FEATURE, SharedContext
from agent_engine.core.errors import ExecutionTimeout, TaskNotFound
from agent_engine.core.events import (
    EXECUTION_COMPLETE,
    EXECUTION_ERROR,
    EXECUTION_START,
    EventBus,
)
from agent_engine.core.models import (
    DEFAULT_TASK,
    AgentDefinition,
    Execution,
    FullWorkflow,
    PromptTask,
    StepTask,
    TaskRef,
    WorkflowStepSpec,
)
from agent_engine.orchestration.registry import DeploymentRegistry
from agent_engine.services.recorder import ExecutionRecorder
from agent_engine.services.tools import PromptContext, StepContext, ToolBackend

LOGGER = logging.getLogger(__name__)

# Dispatcher whose concurrency slot the current task (or its parent) holds.
_SLOT_OWNER: ContextVar[Optional[ExecutionDispatcher]] = ContextVar("slot_owner", default=None)


def resolve_task(agent: AgentDefinition, task: Optional[str]) -> TaskRef:
    """Map a task name to the agent's full workflow, one of its steps, or one of its prompts."""
    if task is None or task == DEFAULT_TASK:
        return FullWorkflow()
    spec = agent.find_step(task)
    if spec is not None:
        return StepTask(spec)
    prompt = agent.prompts.get(task)
    if prompt is not None:
        return PromptTask(name=task, prompt=prompt)
    raise TaskNotFound(task, agent.name)


class ExecutionDispatcher:
    """Run tasks against deployed agents, recording every execution."""

    def __init__(
        self,
        *,
        registry: DeploymentRegistry,
        backend: ToolBackend,
        recorder: ExecutionRecorder,
        context: SharedContext,
        events: EventBus,
        max_concurrent: int = 5,
        default_timeout: Optional[float] = None,
    ) -> None:
        self._registry = registry
        self._backend = backend
        self._recorder = recorder
        self._context = context
        self._events = events
        self._slots = asyncio.Semaphore(max_concurrent)
        self._default_timeout = default_timeout

    async def execute(
        self,
        agent_name: str,
        task: Optional[str] = None,
        input: Any = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Execute ``task`` on ``agent_name``, deploying the agent on first use.

        Failures are recorded and re-raised unchanged.
        """
        input = {} if input is None else input
        options = dict(options or {})
        deployment = await self._registry.ensure_deployed(agent_name)

        execution = Execution(
            agent_name=agent_name,
            task=task or DEFAULT_TASK,
            input=input,
            context_snapshot=self._context.get(CURRENT_FEATURE),
        )
        await self._recorder.record_execution_start(execution)
        LOGGER.info("Executing agent %s task %s", agent_name, execution.task)
        self._events.publish(
            EXECUTION_START,
            agent_name=agent_name,
            task=execution.task,
            execution_id=execution.id,
            input=input,
        )

        # A zero or missing timeout disables the deadline.
        timeout = options.get("timeout", self._default_timeout) or None
        try:
            task_ref = resolve_task(deployment.agent, task)
            async with self._slot():
                output = await asyncio.wait_for(
                    self._run(deployment.agent, task_ref, input, options), timeout
                )
        except asyncio.TimeoutError as exc:
            if timeout is None:
                await self._fail(execution, exc)
                raise
            error = ExecutionTimeout(agent_name, execution.task, timeout)
            await self._fail(execution, error)
            raise error from exc
        except asyncio.CancelledError:
            await self._fail(execution, "cancelled")
            raise
        except Exception as exc:
            await self._fail(execution, exc)
            raise

        execution.mark_completed(output)
        deployment.execution_count += 1
        deployment.last_execution = execution.completed_at
        await self._recorder.record_execution_complete(execution)
        LOGGER.info("Agent %s task %s completed successfully", agent_name, execution.task)
        self._events.publish(
            EXECUTION_COMPLETE,
            agent_name=agent_name,
            task=execution.task,
            execution_id=execution.id,
            result=output,
        )
        return output

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        """Hold a concurrency slot; dispatches nested inside a held slot reuse it."""
        if _SLOT_OWNER.get() is self:
            yield
            return
        async with self._slots:
            token = _SLOT_OWNER.set(self)
            try:
                yield
            finally:
                _SLOT_OWNER.reset(token)

    async def _fail(self, execution: Execution, error: Any) -> None:
        execution.mark_failed(str(error))
        await self._recorder.record_execution_complete(execution)
        LOGGER.error("Agent %s task %s failed: %s", execution.agent_name, execution.task, error)
        self._events.publish(
            EXECUTION_ERROR,
            agent_name=execution.agent_name,
            task=execution.task,
            execution_id=execution.id,
            error=error,
        )

    async def _run(
        self, agent: AgentDefinition, task_ref: TaskRef, input: Any, options: Dict[str, Any]
    ) -> Any:
        if isinstance(task_ref, StepTask):
            return await self._run_step(agent, task_ref.spec, input, options)
        if isinstance(task_ref, PromptTask):
            return await self._backend.run_prompt(
                PromptContext(
                    agent=agent.name,
                    task=task_ref.name,
                    prompt=task_ref.prompt,
                    input=input,
                    options=options,
                )
            )
        return await self._run_full_workflow(agent, input, options)

    async def _run_step(
        self, agent: AgentDefinition, spec: WorkflowStepSpec, input: Any, options: Dict[str, Any]
    ) -> Any:
        return await self._backend.run_step(
            StepContext(
                agent=agent.name,
                step=spec.step,
                description=spec.description,
                tools=agent.step_tools(spec),
                input=input,
                options=options,
            )
        )

    async def _run_full_workflow(
        self, agent: AgentDefinition, input: Any, options: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Run every declared step in order, one at a time."""
        continue_on_error = bool(options.get("continue_on_error", False))
        results: Dict[str, Any] = {}

        for spec in agent.workflow:
            LOGGER.debug("Executing workflow step: %s", spec.step)
            try:
                results[spec.step] = await self._run_step(agent, spec, input, options)
            except Exception as exc:
                LOGGER.error("Workflow step %s failed: %s", spec.step, exc)
                if not continue_on_error:
                    raise
                results[spec.step] = {"error": str(exc)}

        return {
            "workflow_results": results,
            "agent": agent.name,
            "completed_steps": len(results),
            "total_steps": len(agent.workflow),
        }
