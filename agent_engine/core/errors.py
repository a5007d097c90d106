"""Exception taxonomy raised by the engine."""
from __future__ import annotations

from typing import Iterable, Tuple


class EngineError(Exception):
    """Base class for every error raised by the engine itself."""


class AlreadyDeployed(EngineError):
    def __init__(self, agent_name: str) -> None:
        super().__init__(f"Agent {agent_name} is already deployed")
        self.agent_name = agent_name


class NotDeployed(EngineError):
    def __init__(self, agent_name: str) -> None:
        super().__init__(f"Agent {agent_name} is not deployed")
        self.agent_name = agent_name


class LoadError(EngineError):
    """An agent definition could not be read or failed validation."""

    def __init__(self, agent_name: str, reason: str, *, missing: bool = False) -> None:
        super().__init__(f"Failed to load agent {agent_name}: {reason}")
        self.agent_name = agent_name
        self.reason = reason
        self.missing = missing


class TaskNotFound(EngineError):
    def __init__(self, task: str, agent_name: str) -> None:
        super().__init__(f"{task} not found in agent {agent_name}")
        self.task = task
        self.agent_name = agent_name


class CircularDependencyError(EngineError):
    """No ready step exists while steps remain (a cycle or a dangling reference)."""

    def __init__(self, remaining: Iterable[str]) -> None:
        self.remaining: Tuple[str, ...] = tuple(remaining)
        super().__init__(
            "Circular dependency detected in workflow; unresolved steps: "
            + ", ".join(self.remaining)
        )


class WorkflowDefinitionError(EngineError):
    """A cross-agent step list is malformed."""


class WorkflowNotFound(EngineError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class ExecutionError(EngineError):
    """Raised by tool backends when a step or prompt cannot be carried out."""


class ExecutionTimeout(ExecutionError):
    def __init__(self, agent_name: str, task: str, timeout: float) -> None:
        super().__init__(f"Agent {agent_name} task {task} exceeded its {timeout:g}s deadline")
        self.agent_name = agent_name
        self.task = task
        self.timeout = timeout
