"""HTTP API for cross-agent workflow runs."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from agent_engine.api.routes import to_http_error
from agent_engine.core.errors import CircularDependencyError, EngineError
from agent_engine.core.models import WorkflowFailurePolicy, WorkflowRun
from agent_engine.orchestration.orchestrator import Orchestrator
from agent_engine.runtime import get_orchestrator

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])


class WorkflowStepRequest(BaseModel):
    id: Optional[str] = None
    agent: str
    task: Optional[str] = None
    input: Any = Field(default_factory=dict)
    options: Dict[str, Any] = Field(default_factory=dict)
    depends_on: Union[str, List[str], None] = None


class WorkflowCreateRequest(BaseModel):
    name: Optional[str] = None
    steps: List[WorkflowStepRequest]
    failure_policy: WorkflowFailurePolicy = WorkflowFailurePolicy.FAIL_FAST
    wait: bool = Field(True, description="Run to completion before responding")
    timeout: Optional[float] = None


class WorkflowResponse(BaseModel):
    id: str
    name: str
    status: str
    failure_policy: str
    steps: List[str]
    results: Dict[str, Any]
    failed_steps: List[str]
    error: Optional[str]
    created_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]

    @classmethod
    def from_run(cls, run: WorkflowRun) -> "WorkflowResponse":
        return cls(
            id=run.id,
            name=run.name,
            status=run.status.value,
            failure_policy=run.failure_policy.value,
            steps=[step.id for step in run.steps],
            results=run.results,
            failed_steps=run.failed_steps,
            error=run.error,
            created_at=run.created_at,
            started_at=run.started_at,
            completed_at=run.completed_at,
        )


@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    request: WorkflowCreateRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> WorkflowResponse:
    """Create a workflow and run it, either inline or in the background."""
    try:
        run = orchestrator.create_workflow(
            [step.model_dump(exclude_none=True) for step in request.steps],
            name=request.name,
            failure_policy=request.failure_policy,
        )
    except EngineError as exc:
        raise to_http_error(exc) from exc

    if not request.wait:
        orchestrator.start_workflow(run.id)
        return WorkflowResponse.from_run(run)

    try:
        await orchestrator.execute_workflow(run.id, timeout=request.timeout)
    except CircularDependencyError as exc:
        raise to_http_error(exc) from exc
    except Exception as exc:  # noqa: BLE001
        # The run carries the failure; report it through the response body.
        LOGGER.debug("Workflow %s finished with error: %s", run.id, exc)
    return WorkflowResponse.from_run(run)


@router.get("", response_model=List[WorkflowResponse])
async def list_workflows(orchestrator: Orchestrator = Depends(get_orchestrator)) -> List[WorkflowResponse]:
    return [WorkflowResponse.from_run(run) for run in orchestrator.list_workflows()]


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> WorkflowResponse:
    try:
        return WorkflowResponse.from_run(orchestrator.get_workflow(workflow_id))
    except EngineError as exc:
        raise to_http_error(exc) from exc


@router.post("/{workflow_id}/cancel", response_model=WorkflowResponse)
async def cancel_workflow(
    workflow_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> WorkflowResponse:
    try:
        return WorkflowResponse.from_run(await orchestrator.cancel_workflow(workflow_id))
    except EngineError as exc:
        raise to_http_error(exc) from exc
