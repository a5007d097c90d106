"""Core data models shared across engine components."""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

DEFAULT_TASK = "default"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_execution_id() -> str:
    return f"exec_{uuid.uuid4().hex}"


def new_workflow_id() -> str:
    return f"workflow_{uuid.uuid4().hex}"


class AgentType(str, Enum):
    """Kinds of agents a catalog definition may declare."""

    ANALYSIS = "analysis"
    IMPLEMENTATION = "implementation"
    INFRASTRUCTURE = "infrastructure"
    REVIEW = "review"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    SECURITY = "security"
    OPTIMIZATION = "optimization"


class DeploymentStatus(str, Enum):
    DEPLOYED = "deployed"


class ExecutionStatus(str, Enum):
    """Lifecycle of a single dispatch: running, then exactly one terminal state."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowStatus(str, Enum):
    """Lifecycle of a cross-agent workflow run."""

    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowFailurePolicy(str, Enum):
    """How a cross-agent run reacts to a failing step."""

    FAIL_FAST = "fail_fast"
    CONTINUE = "continue"


@dataclass(frozen=True, slots=True)
class WorkflowStepSpec:
    """A named step of an agent's own workflow."""

    step: str
    description: str = ""
    tools: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class AgentDefinition:
    """Agent definition loaded from the catalog."""

    name: str
    version: str
    description: str
    type: AgentType
    tools: Tuple[str, ...] = ()
    workflow: Tuple[WorkflowStepSpec, ...] = ()
    prompts: Mapping[str, str] = field(default_factory=dict)
    source: Optional[str] = None

    def find_step(self, name: str) -> Optional[WorkflowStepSpec]:
        for spec in self.workflow:
            if spec.step == name:
                return spec
        return None

    def step_tools(self, spec: WorkflowStepSpec) -> Tuple[str, ...]:
        return spec.tools or self.tools


@dataclass(slots=True)
class Deployment:
    """Live instance of one agent, owned by the deployment registry."""

    agent: AgentDefinition
    options: Dict[str, Any] = field(default_factory=dict)
    deployed_at: datetime = field(default_factory=utcnow)
    status: DeploymentStatus = DeploymentStatus.DEPLOYED
    execution_count: int = 0
    last_execution: Optional[datetime] = None

    @property
    def agent_name(self) -> str:
        return self.agent.name


@dataclass(slots=True)
class Execution:
    """One recorded run of a task against a deployed agent."""

    agent_name: str
    task: str
    input: Any = None
    context_snapshot: Any = None
    id: str = field(default_factory=new_execution_id)
    status: ExecutionStatus = ExecutionStatus.RUNNING
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    success: Optional[bool] = None
    output: Any = None
    error: Optional[str] = None
    _clock: float = field(default_factory=time.monotonic, repr=False)

    def mark_completed(self, output: Any) -> None:
        self._finish(ExecutionStatus.COMPLETED)
        self.success = True
        self.output = output

    def mark_failed(self, error: str) -> None:
        self._finish(ExecutionStatus.FAILED)
        self.success = False
        self.error = error

    def _finish(self, status: ExecutionStatus) -> None:
        if self.status is not ExecutionStatus.RUNNING:
            raise RuntimeError(f"Execution {self.id} already {self.status.value}")
        self.status = status
        self.completed_at = utcnow()
        self.duration_ms = (time.monotonic() - self._clock) * 1000.0


@dataclass(frozen=True, slots=True)
class CrossAgentStep:
    """A step of a cross-agent workflow, addressed by ``id`` in ``depends_on``."""

    id: str
    agent: str
    task: Optional[str]
    input: Any = None
    options: Mapping[str, Any] = field(default_factory=dict)
    depends_on: FrozenSet[str] = frozenset()
    explicit_id: bool = True

    @property
    def result_key(self) -> str:
        if self.explicit_id:
            return self.id
        return f"{self.agent}_{self.task}"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], index: int) -> CrossAgentStep:
        step_id = data.get("id")
        return cls(
            id=str(step_id) if step_id else f"step_{index}",
            agent=data["agent"],
            task=data.get("task"),
            input=data.get("input") or {},
            options=dict(data.get("options") or {}),
            depends_on=normalize_dependencies(data.get("depends_on")),
            explicit_id=bool(step_id),
        )


def normalize_dependencies(depends_on: Union[None, str, List[str], Tuple[str, ...]]) -> FrozenSet[str]:
    if not depends_on:
        return frozenset()
    if isinstance(depends_on, str):
        return frozenset({depends_on})
    return frozenset(str(dep) for dep in depends_on)


@dataclass(slots=True)
class WorkflowRun:
    """Cross-agent workflow run kept in the orchestrator's workflow table."""

    steps: Tuple[CrossAgentStep, ...]
    name: str = "unnamed"
    failure_policy: WorkflowFailurePolicy = WorkflowFailurePolicy.FAIL_FAST
    id: str = field(default_factory=new_workflow_id)
    status: WorkflowStatus = WorkflowStatus.CREATED
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    results: Dict[str, Any] = field(default_factory=dict)
    failed_steps: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000.0

    @property
    def is_terminal(self) -> bool:
        return self.status in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)

    def mark_running(self) -> None:
        if self.status is not WorkflowStatus.CREATED:
            raise RuntimeError(f"Workflow {self.id} cannot start from {self.status.value}")
        self.status = WorkflowStatus.RUNNING
        self.started_at = utcnow()

    def mark_completed(self) -> None:
        self.status = WorkflowStatus.COMPLETED
        self.completed_at = utcnow()

    def mark_failed(self, error: str) -> None:
        self.status = WorkflowStatus.FAILED
        self.completed_at = utcnow()
        self.error = error


@dataclass(slots=True)
class AgentStats:
    """Rolling aggregate counters for one agent."""

    agent_name: str
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    avg_duration_ms: float = 0.0
    last_execution: Optional[datetime] = None
    recent_executions_24h: int = 0

    @property
    def success_rate(self) -> float:
        if not self.total_executions:
            return 0.0
        return round(self.successful_executions / self.total_executions * 100, 1)

    def apply(self, execution: Execution) -> None:
        """Fold a finished execution into the counters."""
        self.total_executions += 1
        if execution.success:
            self.successful_executions += 1
        else:
            self.failed_executions += 1
        duration = execution.duration_ms or 0.0
        self.avg_duration_ms += (duration - self.avg_duration_ms) / self.total_executions
        self.last_execution = execution.completed_at


@dataclass(slots=True)
class AgentStatusReport:
    name: str
    status: str
    deployment: Optional[Deployment]
    statistics: AgentStats


@dataclass(slots=True)
class CatalogEntry:
    """Catalog definition decorated with its live status."""

    agent: AgentDefinition
    status: str
    statistics: AgentStats


@dataclass(slots=True)
class AgentMessage:
    """Directed request from one agent to another, with an optional callback task."""

    sender: str
    recipient: str
    task: Optional[str]
    data: Any = None
    callback: Optional[str] = None
    correlation_id: Optional[str] = None


# Task references resolved once before dispatch.


@dataclass(frozen=True, slots=True)
class StepTask:
    spec: WorkflowStepSpec


@dataclass(frozen=True, slots=True)
class PromptTask:
    name: str
    prompt: str


@dataclass(frozen=True, slots=True)
class FullWorkflow:
    pass


TaskRef = Union[StepTask, PromptTask, FullWorkflow]
