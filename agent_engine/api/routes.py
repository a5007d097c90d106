"""HTTP API exposing agent deployment and execution."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from agent_engine.core.errors import (
    AlreadyDeployed,
    CircularDependencyError,
    EngineError,
    ExecutionTimeout,
    LoadError,
    NotDeployed,
    TaskNotFound,
    WorkflowDefinitionError,
    WorkflowNotFound,
)
from agent_engine.core.models import AgentMessage, AgentStats, Deployment, Execution
from agent_engine.orchestration.orchestrator import Orchestrator
from agent_engine.runtime import get_orchestrator

router = APIRouter(tags=["agents"])


def to_http_error(exc: EngineError) -> HTTPException:
    """Translate an engine error into the matching HTTP status."""
    if isinstance(exc, AlreadyDeployed):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, (NotDeployed, TaskNotFound, WorkflowNotFound)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, LoadError):
        code = status.HTTP_404_NOT_FOUND if exc.missing else status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, (CircularDependencyError, WorkflowDefinitionError)):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, ExecutionTimeout):
        code = status.HTTP_504_GATEWAY_TIMEOUT
    else:
        code = status.HTTP_502_BAD_GATEWAY
    return HTTPException(status_code=code, detail=str(exc))


class StatsResponse(BaseModel):
    total_executions: int
    successful_executions: int
    failed_executions: int
    avg_duration_ms: float
    success_rate: float
    recent_executions_24h: int
    last_execution: Optional[datetime]

    @classmethod
    def from_stats(cls, stats: AgentStats) -> "StatsResponse":
        return cls(
            total_executions=stats.total_executions,
            successful_executions=stats.successful_executions,
            failed_executions=stats.failed_executions,
            avg_duration_ms=stats.avg_duration_ms,
            success_rate=stats.success_rate,
            recent_executions_24h=stats.recent_executions_24h,
            last_execution=stats.last_execution,
        )


class DeploymentResponse(BaseModel):
    name: str
    version: str
    type: str
    status: str
    options: Dict[str, Any]
    deployed_at: datetime
    execution_count: int
    last_execution: Optional[datetime]

    @classmethod
    def from_deployment(cls, deployment: Deployment) -> "DeploymentResponse":
        return cls(
            name=deployment.agent.name,
            version=deployment.agent.version,
            type=deployment.agent.type.value,
            status=deployment.status.value,
            options=deployment.options,
            deployed_at=deployment.deployed_at,
            execution_count=deployment.execution_count,
            last_execution=deployment.last_execution,
        )


class AgentSummary(BaseModel):
    name: str
    version: str
    type: str
    description: str
    tools: List[str]
    steps: List[str]
    prompts: List[str]
    status: str
    statistics: StatsResponse


class AgentStatusResponse(BaseModel):
    name: str
    status: str
    deployment: Optional[DeploymentResponse]
    statistics: StatsResponse


class ExecutionResponse(BaseModel):
    id: str
    agent_name: str
    task: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime]
    duration_ms: Optional[float]
    error: Optional[str]

    @classmethod
    def from_execution(cls, execution: Execution) -> "ExecutionResponse":
        return cls(
            id=execution.id,
            agent_name=execution.agent_name,
            task=execution.task,
            status=execution.status.value,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            duration_ms=execution.duration_ms,
            error=execution.error,
        )


class DeployRequest(BaseModel):
    options: Dict[str, Any] = Field(default_factory=dict)


class ExecuteRequest(BaseModel):
    task: Optional[str] = Field(None, description="Workflow step, prompt name, or 'default'")
    input: Any = Field(default_factory=dict)
    options: Dict[str, Any] = Field(default_factory=dict)


class ExecuteResponse(BaseModel):
    agent: str
    task: str
    result: Any


class MessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(..., alias="from")
    recipient: str = Field(..., alias="to")
    task: Optional[str] = None
    data: Any = Field(default_factory=dict)
    callback: Optional[str] = None


class MessageResponse(BaseModel):
    result: Any


@router.get("/agents", response_model=List[AgentSummary])
async def list_agents(orchestrator: Orchestrator = Depends(get_orchestrator)) -> List[AgentSummary]:
    return [
        AgentSummary(
            name=entry.agent.name,
            version=entry.agent.version,
            type=entry.agent.type.value,
            description=entry.agent.description,
            tools=list(entry.agent.tools),
            steps=[spec.step for spec in entry.agent.workflow],
            prompts=list(entry.agent.prompts),
            status=entry.status,
            statistics=StatsResponse.from_stats(entry.statistics),
        )
        for entry in await orchestrator.list_agents()
    ]


@router.get("/agents/{agent_name}", response_model=AgentStatusResponse)
async def get_agent_status(
    agent_name: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> AgentStatusResponse:
    report = await orchestrator.get_status(agent_name)
    return AgentStatusResponse(
        name=report.name,
        status=report.status,
        deployment=(
            DeploymentResponse.from_deployment(report.deployment) if report.deployment else None
        ),
        statistics=StatsResponse.from_stats(report.statistics),
    )


@router.get("/agents/{agent_name}/executions", response_model=List[ExecutionResponse])
async def list_executions(
    agent_name: str,
    limit: int = 50,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> List[ExecutionResponse]:
    executions = await orchestrator.recorder.list_executions(agent_name, limit=limit)
    return [ExecutionResponse.from_execution(execution) for execution in executions]


@router.post(
    "/agents/{agent_name}/deploy",
    response_model=DeploymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def deploy_agent(
    agent_name: str,
    request: DeployRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> DeploymentResponse:
    try:
        deployment = await orchestrator.deploy(agent_name, request.options)
    except EngineError as exc:
        raise to_http_error(exc) from exc
    return DeploymentResponse.from_deployment(deployment)


@router.delete("/agents/{agent_name}")
async def stop_agent(agent_name: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict:
    try:
        return await orchestrator.stop(agent_name)
    except EngineError as exc:
        raise to_http_error(exc) from exc


@router.post("/agents/{agent_name}/execute", response_model=ExecuteResponse)
async def execute_agent(
    agent_name: str,
    request: ExecuteRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> ExecuteResponse:
    try:
        result = await orchestrator.execute(agent_name, request.task, request.input, request.options)
    except EngineError as exc:
        raise to_http_error(exc) from exc
    return ExecuteResponse(agent=agent_name, task=request.task or "default", result=result)


@router.post("/messages", response_model=MessageResponse)
async def send_message(
    request: MessageRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    message = AgentMessage(
        sender=request.sender,
        recipient=request.recipient,
        task=request.task,
        data=request.data,
        callback=request.callback,
    )
    try:
        result = await orchestrator.send_message(message)
    except EngineError as exc:
        raise to_http_error(exc) from exc
    return MessageResponse(result=result)
