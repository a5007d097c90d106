"""Execution and statistics recording."""
from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
from typing import Any, Dict, List, Optional, Protocol

from agent_engine.core.models import AgentStats, Execution, WorkflowRun, utcnow


class ExecutionRecorder(Protocol):
    """Persistence contract the dispatcher and scheduler report to."""

    async def record_execution_start(self, execution: Execution) -> None: ...

    async def record_execution_complete(self, execution: Execution) -> None: ...

    async def record_workflow_execution(self, run: WorkflowRun) -> None: ...

    async def get_agent_stats(self, agent_name: str) -> AgentStats: ...

    async def list_executions(
        self, agent_name: Optional[str] = None, limit: int = 50
    ) -> List[Execution]: ...


class InMemoryRecorder:
    """Recorder keeping executions, workflow runs and stats in process memory.

    The execution log and workflow records keep only the newest entries;
    per-agent statistics cover every recorded execution.
    """

    def __init__(self, max_executions: int = 10_000, max_workflows: int = 1000) -> None:
        self._executions: Dict[str, Execution] = {}
        self._stats: Dict[str, AgentStats] = {}
        self._workflows: Dict[str, Dict[str, Any]] = {}
        self._max_executions = max_executions
        self._max_workflows = max_workflows

    async def record_execution_start(self, execution: Execution) -> None:
        self._executions[execution.id] = execution
        _trim(self._executions, self._max_executions)

    async def record_execution_complete(self, execution: Execution) -> None:
        self._executions[execution.id] = execution
        _trim(self._executions, self._max_executions)
        stats = self._stats.get(execution.agent_name)
        if stats is None:
            stats = self._stats[execution.agent_name] = AgentStats(agent_name=execution.agent_name)
        stats.apply(execution)

    async def record_workflow_execution(self, run: WorkflowRun) -> None:
        self._workflows[run.id] = {
            "id": run.id,
            "name": run.name,
            "status": run.status.value,
            "duration_ms": run.duration_ms,
            "agents": [step.agent for step in run.steps],
            "results": dict(run.results) if run.results else None,
            "error": run.error,
        }
        _trim(self._workflows, self._max_workflows)

    async def get_agent_stats(self, agent_name: str) -> AgentStats:
        stats = self._stats.get(agent_name)
        if stats is None:
            return AgentStats(agent_name=agent_name)
        cutoff = utcnow() - timedelta(hours=24)
        recent = sum(
            1
            for execution in self._executions.values()
            if execution.agent_name == agent_name and execution.started_at > cutoff
        )
        return replace(stats, recent_executions_24h=recent)

    async def list_executions(
        self, agent_name: Optional[str] = None, limit: int = 50
    ) -> List[Execution]:
        executions = [
            execution
            for execution in reversed(list(self._executions.values()))
            if agent_name is None or execution.agent_name == agent_name
        ]
        executions.sort(key=lambda execution: execution.started_at, reverse=True)
        return executions[:limit]

    def get_workflow_record(self, workflow_id: str) -> Optional[Dict[str, Any]]:
        return self._workflows.get(workflow_id)


def _trim(entries: Dict[str, Any], limit: int) -> None:
    while len(entries) > limit:
        del entries[next(iter(entries))]
