"""Orchestrator owning the registry, dispatcher, scheduler and shared context."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from agent_engine.core.context import SharedContext
from agent_engine.core.errors import WorkflowDefinitionError, WorkflowNotFound
from agent_engine.core.events import EventBus
from agent_engine.core.models import (
    AgentMessage,
    AgentStatusReport,
    CatalogEntry,
    CrossAgentStep,
    Deployment,
    WorkflowFailurePolicy,
    WorkflowRun,
    WorkflowStatus,
)
from agent_engine.orchestration.dispatcher import ExecutionDispatcher
from agent_engine.orchestration.registry import DeploymentRegistry
from agent_engine.orchestration.relay import MessagingRelay
from agent_engine.orchestration.scheduler import WorkflowScheduler
from agent_engine.services.catalog import AgentCatalog
from agent_engine.services.recorder import ExecutionRecorder, InMemoryRecorder
from agent_engine.services.tools import DefaultToolBackend, ToolBackend

LOGGER = logging.getLogger(__name__)


def parse_workflow_steps(steps: Sequence[Union[CrossAgentStep, Mapping[str, Any]]]) -> List[CrossAgentStep]:
    """Build ``CrossAgentStep`` objects and reject ambiguous ids or result keys."""
    parsed = [
        step if isinstance(step, CrossAgentStep) else CrossAgentStep.from_dict(step, index)
        for index, step in enumerate(steps)
    ]
    ids: set = set()
    keys: set = set()
    for step in parsed:
        if step.id in ids:
            raise WorkflowDefinitionError(f"Duplicate step id: {step.id}")
        if step.result_key in keys:
            raise WorkflowDefinitionError(
                f"Steps share the result key {step.result_key}; give them explicit ids"
            )
        ids.add(step.id)
        keys.add(step.result_key)
    return parsed


class Orchestrator:
    """Single owner of engine state, constructed once per process."""

    def __init__(
        self,
        *,
        catalog: AgentCatalog,
        recorder: Optional[ExecutionRecorder] = None,
        backend: Optional[ToolBackend] = None,
        events: Optional[EventBus] = None,
        max_concurrent_agents: int = 5,
        default_timeout: Optional[float] = None,
        max_workflows: int = 1000,
    ) -> None:
        self.catalog = catalog
        self.recorder = recorder or InMemoryRecorder()
        self.events = events or EventBus()
        self.context = SharedContext(self.events)
        self.registry = DeploymentRegistry(
            catalog=catalog, recorder=self.recorder, events=self.events
        )
        self.dispatcher = ExecutionDispatcher(
            registry=self.registry,
            backend=backend or DefaultToolBackend(),
            recorder=self.recorder,
            context=self.context,
            events=self.events,
            max_concurrent=max_concurrent_agents,
            default_timeout=default_timeout,
        )
        self.scheduler = WorkflowScheduler(
            dispatcher=self.dispatcher, recorder=self.recorder, events=self.events
        )
        self.relay = MessagingRelay(self.dispatcher)
        self._workflows: Dict[str, WorkflowRun] = {}
        self._max_workflows = max_workflows
        self._running: Dict[str, asyncio.Task] = {}

    # Agents

    async def list_agents(self) -> List[CatalogEntry]:
        entries = []
        for agent in await self.catalog.list_agents():
            entries.append(
                CatalogEntry(
                    agent=agent,
                    status="active" if self.registry.is_deployed(agent.name) else "available",
                    statistics=await self.recorder.get_agent_stats(agent.name),
                )
            )
        return entries

    async def deploy(self, agent_name: str, options: Optional[Dict[str, Any]] = None) -> Deployment:
        return await self.registry.deploy(agent_name, options)

    async def deploy_multiple(
        self, agent_names: Iterable[str], options: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Union[Deployment, Dict[str, str]]]:
        return await self.registry.deploy_multiple(agent_names, options)

    async def stop(self, agent_name: str) -> Dict[str, Any]:
        return await self.registry.stop(agent_name)

    async def get_status(self, agent_name: str) -> AgentStatusReport:
        return await self.registry.get_status(agent_name)

    async def execute(
        self,
        agent_name: str,
        task: Optional[str] = None,
        input: Any = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Any:
        return await self.dispatcher.execute(agent_name, task, input, options)

    async def send_message(self, message: AgentMessage) -> Any:
        return await self.relay.send_message(message)

    # Shared context

    def set_context(self, key: str, value: Any) -> None:
        self.context.set(key, value)

    def get_context(self, key: str) -> Any:
        return self.context.get(key)

    # Workflows

    def create_workflow(
        self,
        steps: Sequence[Union[CrossAgentStep, Mapping[str, Any]]],
        *,
        name: Optional[str] = None,
        failure_policy: WorkflowFailurePolicy = WorkflowFailurePolicy.FAIL_FAST,
    ) -> WorkflowRun:
        """Register a cross-agent workflow run without starting it."""
        run = WorkflowRun(
            steps=tuple(parse_workflow_steps(steps)),
            name=name or "unnamed",
            failure_policy=WorkflowFailurePolicy(failure_policy),
        )
        self._workflows[run.id] = run
        self._prune_workflows()
        return run

    def _prune_workflows(self) -> None:
        """Drop the oldest finished runs once the table exceeds its bound."""
        excess = len(self._workflows) - self._max_workflows
        if excess <= 0:
            return
        finished = [run_id for run_id, run in self._workflows.items() if run.is_terminal]
        for run_id in finished[:excess]:
            del self._workflows[run_id]

    def start_workflow(self, workflow_id: str) -> asyncio.Task:
        """Schedule a created workflow in the background and return its task."""
        run = self.get_workflow(workflow_id)
        if run.status is not WorkflowStatus.CREATED:
            raise WorkflowDefinitionError(f"Workflow {workflow_id} is already {run.status.value}")
        task = asyncio.ensure_future(self.scheduler.run(run))
        self._running[workflow_id] = task
        task.add_done_callback(lambda done: self._forget(workflow_id, done))
        return task

    def _forget(self, workflow_id: str, task: asyncio.Task) -> None:
        self._running.pop(workflow_id, None)
        if not task.cancelled():
            # Failures are already recorded on the run; mark the exception retrieved.
            task.exception()

    async def execute_workflow(self, workflow_id: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Run a created workflow; ``timeout`` bounds the whole run and cancels it on expiry."""
        run = self.get_workflow(workflow_id)
        task = self.start_workflow(workflow_id)
        try:
            return await asyncio.wait_for(task, timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            await self._settle_cancelled(run)
            raise

    async def run_workflow(
        self,
        steps: Sequence[Union[CrossAgentStep, Mapping[str, Any]]],
        *,
        name: Optional[str] = None,
        failure_policy: WorkflowFailurePolicy = WorkflowFailurePolicy.FAIL_FAST,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        run = self.create_workflow(steps, name=name, failure_policy=failure_policy)
        return await self.execute_workflow(run.id, timeout=timeout)

    def get_workflow(self, workflow_id: str) -> WorkflowRun:
        run = self._workflows.get(workflow_id)
        if run is None:
            raise WorkflowNotFound(workflow_id)
        return run

    def list_workflows(self) -> List[WorkflowRun]:
        return list(self._workflows.values())

    async def cancel_workflow(self, workflow_id: str) -> WorkflowRun:
        """Cancel a running workflow, or fail one that has not started."""
        run = self.get_workflow(workflow_id)
        task = self._running.get(workflow_id)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self._settle_cancelled(run)
        return run

    async def _settle_cancelled(self, run: WorkflowRun) -> None:
        # A task cancelled before its first step never reaches the scheduler.
        if not run.is_terminal:
            await self.scheduler.finish_failed(run, "cancelled")

    async def shutdown(self) -> None:
        """Cancel running workflows and stop every deployment."""
        running = [self._workflows[workflow_id] for workflow_id in self._running]
        tasks = list(self._running.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for run in running:
            await self._settle_cancelled(run)
        stopped = await self.registry.stop_all()
        LOGGER.info("Orchestrator shut down; stopped %d agents", len(stopped))
