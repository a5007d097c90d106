"""Tests for dependency batching and cross-agent workflow runs."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, List

import pytest
from conftest import ScriptedBackend

from agent_engine.core.errors import CircularDependencyError, WorkflowDefinitionError, WorkflowNotFound
from agent_engine.core.events import WORKFLOW_COMPLETE, WORKFLOW_ERROR
from agent_engine.core.models import (
    CrossAgentStep,
    WorkflowFailurePolicy,
    WorkflowStatus,
    normalize_dependencies,
)
from agent_engine.orchestration.orchestrator import Orchestrator, parse_workflow_steps
from agent_engine.orchestration.scheduler import resolve_execution_order
from agent_engine.services.catalog import AgentCatalog
from agent_engine.services.recorder import InMemoryRecorder


def _steps(*specs: Dict[str, Any]) -> List[CrossAgentStep]:
    return parse_workflow_steps(list(specs))


def _batch_ids(batches: List[List[CrossAgentStep]]) -> List[List[str]]:
    return [sorted(step.id for step in batch) for batch in batches]


def test_normalize_dependencies() -> None:
    assert normalize_dependencies(None) == frozenset()
    assert normalize_dependencies("a") == frozenset({"a"})
    assert normalize_dependencies(["a", "b"]) == frozenset({"a", "b"})


def test_diamond_resolves_into_three_batches() -> None:
    steps = _steps(
        {"id": "A", "agent": "x", "task": "t"},
        {"id": "B", "agent": "x", "task": "t", "depends_on": "A"},
        {"id": "C", "agent": "x", "task": "t", "depends_on": ["A"]},
        {"id": "D", "agent": "x", "task": "t", "depends_on": ["B", "C"]},
    )
    assert _batch_ids(resolve_execution_order(steps)) == [["A"], ["B", "C"], ["D"]]


def test_steps_land_in_earliest_possible_batch() -> None:
    steps = _steps(
        {"id": "late", "agent": "x", "task": "t", "depends_on": ["mid"]},
        {"id": "root", "agent": "x", "task": "t"},
        {"id": "mid", "agent": "x", "task": "t", "depends_on": "root"},
        {"id": "free", "agent": "x", "task": "t"},
    )
    batches = resolve_execution_order(steps)

    assert _batch_ids(batches) == [["free", "root"], ["mid"], ["late"]]
    position = {step.id: index for index, batch in enumerate(batches) for step in batch}
    for step in steps:
        for dep in step.depends_on:
            assert position[dep] < position[step.id]


def test_cycle_raises() -> None:
    steps = _steps(
        {"id": "A", "agent": "x", "task": "t", "depends_on": "B"},
        {"id": "B", "agent": "x", "task": "t", "depends_on": "A"},
    )
    with pytest.raises(CircularDependencyError) as exc_info:
        resolve_execution_order(steps)
    assert set(exc_info.value.remaining) == {"A", "B"}


def test_dangling_reference_is_treated_as_cycle() -> None:
    steps = _steps(
        {"id": "A", "agent": "x", "task": "t"},
        {"id": "B", "agent": "x", "task": "t", "depends_on": "missing"},
    )
    with pytest.raises(CircularDependencyError) as exc_info:
        resolve_execution_order(steps)
    assert exc_info.value.remaining == ("B",)


def test_step_ids_and_result_keys_default() -> None:
    first, second = _steps(
        {"agent": "code-reviewer", "task": "step1"},
        {"id": "tests", "agent": "test-writer", "task": "write", "depends_on": "step_0"},
    )
    assert first.id == "step_0"
    assert first.result_key == "code-reviewer_step1"
    assert second.result_key == "tests"


def test_duplicate_ids_are_rejected() -> None:
    with pytest.raises(WorkflowDefinitionError, match="Duplicate step id"):
        _steps({"id": "a", "agent": "x", "task": "t"}, {"id": "a", "agent": "y", "task": "t"})
    with pytest.raises(WorkflowDefinitionError, match="result key"):
        _steps({"agent": "x", "task": "t"}, {"agent": "x", "task": "t"})


@pytest.mark.anyio
async def test_workflow_runs_batches_with_barrier(
    orchestrator: Orchestrator, backend: ScriptedBackend, recorder: InMemoryRecorder
) -> None:
    backend.delay = 0.01
    run = orchestrator.create_workflow(
        [
            {"id": "A", "agent": "code-reviewer", "task": "step1"},
            {"id": "B", "agent": "test-writer", "task": "write", "depends_on": "A"},
            {"id": "C", "agent": "security-auditor", "task": "scan", "depends_on": "A"},
            {"id": "D", "agent": "code-reviewer", "task": "report", "depends_on": ["B", "C"]},
        ],
        name="review-pipeline",
    )
    assert run.status is WorkflowStatus.CREATED

    async with orchestrator.events.subscribe() as events:
        results = await orchestrator.execute_workflow(run.id)
        names = [events.get_nowait().name for _ in range(events.qsize())]

    assert set(results) == {"A", "B", "C", "D"}
    assert backend.calls[0] == "code-reviewer.step1"
    assert set(backend.calls[1:3]) == {"test-writer.write", "security-auditor.scan"}
    assert backend.calls[3] == "code-reviewer.report"
    assert backend.max_active == 2
    assert run.status is WorkflowStatus.COMPLETED
    assert run.duration_ms is not None and run.duration_ms >= 0
    assert names[-1] == WORKFLOW_COMPLETE
    record = recorder.get_workflow_record(run.id)
    assert record["status"] == "completed"
    assert record["name"] == "review-pipeline"


@pytest.mark.anyio
async def test_cycle_fails_run_without_executions(
    orchestrator: Orchestrator, backend: ScriptedBackend, recorder: InMemoryRecorder
) -> None:
    async with orchestrator.events.subscribe() as events:
        with pytest.raises(CircularDependencyError):
            await orchestrator.run_workflow(
                [
                    {"id": "A", "agent": "code-reviewer", "task": "step1", "depends_on": "B"},
                    {"id": "B", "agent": "test-writer", "task": "write", "depends_on": "A"},
                ]
            )
        names = [events.get_nowait().name for _ in range(events.qsize())]

    assert backend.calls == []
    [run] = orchestrator.list_workflows()
    assert run.status is WorkflowStatus.FAILED
    assert names == [WORKFLOW_ERROR]
    assert recorder.get_workflow_record(run.id)["status"] == "failed"


@pytest.mark.anyio
async def test_failing_step_fails_whole_run(agents_dir: Path) -> None:
    backend = ScriptedBackend(failing={"test-writer.write"})
    orchestrator = Orchestrator(catalog=AgentCatalog(agents_dir), backend=backend)

    with pytest.raises(RuntimeError, match="exploded"):
        await orchestrator.run_workflow(
            [
                {"id": "A", "agent": "code-reviewer", "task": "step1"},
                {"id": "B", "agent": "test-writer", "task": "write", "depends_on": "A"},
                {"id": "C", "agent": "code-reviewer", "task": "report", "depends_on": "B"},
            ]
        )

    [run] = orchestrator.list_workflows()
    assert run.status is WorkflowStatus.FAILED
    assert "exploded" in run.error
    assert "A" in run.results
    assert "code-reviewer.report" not in backend.calls


@pytest.mark.anyio
async def test_fail_fast_cancels_slow_siblings(agents_dir: Path) -> None:
    class SlowSibling(ScriptedBackend):
        async def run_step(self, context):
            if context.agent == "security-auditor":
                await asyncio.sleep(5)
            return await super().run_step(context)

    backend = SlowSibling(failing={"test-writer.write"})
    recorder = InMemoryRecorder()
    orchestrator = Orchestrator(catalog=AgentCatalog(agents_dir), backend=backend, recorder=recorder)

    with pytest.raises(RuntimeError):
        await orchestrator.run_workflow(
            [
                {"id": "fails", "agent": "test-writer", "task": "write"},
                {"id": "slow", "agent": "security-auditor", "task": "scan"},
            ]
        )

    [execution] = await recorder.list_executions("security-auditor")
    assert execution.error == "cancelled"


@pytest.mark.anyio
async def test_continue_policy_skips_dependents_of_failed_steps(agents_dir: Path) -> None:
    backend = ScriptedBackend(failing={"test-writer.write"})
    orchestrator = Orchestrator(catalog=AgentCatalog(agents_dir), backend=backend)

    results = await orchestrator.run_workflow(
        [
            {"id": "A", "agent": "code-reviewer", "task": "step1"},
            {"id": "B", "agent": "test-writer", "task": "write", "depends_on": "A"},
            {"id": "C", "agent": "security-auditor", "task": "scan", "depends_on": "A"},
            {"id": "D", "agent": "code-reviewer", "task": "report", "depends_on": "B"},
            {"id": "E", "agent": "code-reviewer", "task": "step3", "depends_on": "C"},
        ],
        failure_policy=WorkflowFailurePolicy.CONTINUE,
    )

    assert results["B"] == {"error": "test-writer.write exploded"}
    assert results["D"]["skipped"] is True
    assert results["E"]["step"] == "step3"
    [run] = orchestrator.list_workflows()
    assert run.status is WorkflowStatus.COMPLETED
    assert run.failed_steps == ["B", "D"]
    assert "code-reviewer.report" not in backend.calls


@pytest.mark.anyio
async def test_shared_agent_in_one_batch_is_deployed_once(
    orchestrator: Orchestrator, backend: ScriptedBackend
) -> None:
    results = await orchestrator.run_workflow(
        [
            {"agent": "code-reviewer", "task": "step1"},
            {"agent": "code-reviewer", "task": "step3"},
        ]
    )
    assert set(results) == {"code-reviewer_step1", "code-reviewer_step3"}
    assert orchestrator.registry.get("code-reviewer").execution_count == 2


@pytest.mark.anyio
async def test_workflow_timeout_cancels_run(agents_dir: Path) -> None:
    backend = ScriptedBackend(delay=5)
    orchestrator = Orchestrator(catalog=AgentCatalog(agents_dir), backend=backend)
    run = orchestrator.create_workflow([{"id": "slow", "agent": "test-writer", "task": "write"}])

    with pytest.raises(asyncio.TimeoutError):
        await orchestrator.execute_workflow(run.id, timeout=0.05)

    assert run.status is WorkflowStatus.FAILED
    assert run.error == "cancelled"
    assert backend.active == 0


@pytest.mark.anyio
async def test_cancel_background_workflow(agents_dir: Path) -> None:
    backend = ScriptedBackend(delay=5)
    orchestrator = Orchestrator(catalog=AgentCatalog(agents_dir), backend=backend)
    run = orchestrator.create_workflow([{"id": "slow", "agent": "test-writer", "task": "write"}])

    task = orchestrator.start_workflow(run.id)
    await asyncio.sleep(0.05)
    await orchestrator.cancel_workflow(run.id)
    with pytest.raises(asyncio.CancelledError):
        await task

    assert run.status is WorkflowStatus.FAILED


@pytest.mark.anyio
async def test_cancel_created_workflow_and_unknown_id(orchestrator: Orchestrator) -> None:
    run = orchestrator.create_workflow([{"agent": "test-writer", "task": "write"}])
    await orchestrator.cancel_workflow(run.id)
    assert run.status is WorkflowStatus.FAILED

    with pytest.raises(WorkflowDefinitionError):
        orchestrator.start_workflow(run.id)
    with pytest.raises(WorkflowNotFound):
        orchestrator.get_workflow("workflow_missing")


@pytest.mark.anyio
async def test_cancel_before_first_step_fails_run(
    orchestrator: Orchestrator, recorder: InMemoryRecorder
) -> None:
    run = orchestrator.create_workflow([{"id": "write", "agent": "test-writer", "task": "write"}])

    async with orchestrator.events.subscribe() as events:
        task = orchestrator.start_workflow(run.id)
        await orchestrator.cancel_workflow(run.id)
        names = [events.get_nowait().name for _ in range(events.qsize())]

    assert task.cancelled()
    assert run.status is WorkflowStatus.FAILED
    assert run.error == "cancelled"
    assert names == [WORKFLOW_ERROR]
    assert recorder.get_workflow_record(run.id)["status"] == "failed"
    with pytest.raises(WorkflowDefinitionError):
        orchestrator.start_workflow(run.id)


@pytest.mark.anyio
async def test_workflow_table_drops_oldest_finished_runs(agents_dir: Path) -> None:
    orchestrator = Orchestrator(
        catalog=AgentCatalog(agents_dir), backend=ScriptedBackend(), max_workflows=2
    )
    ids = []
    for _ in range(3):
        run = orchestrator.create_workflow([{"agent": "security-auditor", "task": "scan"}])
        await orchestrator.execute_workflow(run.id)
        ids.append(run.id)

    assert [run.id for run in orchestrator.list_workflows()] == ids[1:]
    with pytest.raises(WorkflowNotFound):
        orchestrator.get_workflow(ids[0])


def test_unfinished_runs_are_never_dropped(agents_dir: Path) -> None:
    orchestrator = Orchestrator(catalog=AgentCatalog(agents_dir), max_workflows=1)
    first = orchestrator.create_workflow([{"agent": "test-writer", "task": "write"}])
    second = orchestrator.create_workflow([{"agent": "test-writer", "task": "write"}])
    assert orchestrator.list_workflows() == [first, second]
