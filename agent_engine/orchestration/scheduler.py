"""Dependency-batched scheduling of cross-agent workflows."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Sequence, Set

from agent_engine.core.errors import CircularDependencyError
from agent_engine.core.events import WORKFLOW_COMPLETE, WORKFLOW_ERROR, EventBus
from agent_engine.core.models import CrossAgentStep, WorkflowFailurePolicy, WorkflowRun
from agent_engine.orchestration.dispatcher import ExecutionDispatcher
from agent_engine.services.recorder import ExecutionRecorder

LOGGER = logging.getLogger(__name__)


def resolve_execution_order(steps: Sequence[CrossAgentStep]) -> List[List[CrossAgentStep]]:
    """Partition steps into batches whose dependencies all lie in earlier batches.

    Each step lands in the earliest batch its dependencies allow. Raises
    ``CircularDependencyError`` when no step is ready but some remain, which
    covers both cycles and references to unknown step ids.
    """
    batches: List[List[CrossAgentStep]] = []
    completed: Set[str] = set()
    remaining = list(steps)

    while remaining:
        batch = [step for step in remaining if step.depends_on <= completed]
        if not batch:
            raise CircularDependencyError(step.id for step in remaining)
        batches.append(batch)
        completed.update(step.id for step in batch)
        remaining = [step for step in remaining if step.id not in completed]

    return batches


class WorkflowScheduler:
    """Drive a workflow run batch by batch through the dispatcher."""

    def __init__(
        self,
        *,
        dispatcher: ExecutionDispatcher,
        recorder: ExecutionRecorder,
        events: EventBus,
    ) -> None:
        self._dispatcher = dispatcher
        self._recorder = recorder
        self._events = events

    async def run(self, run: WorkflowRun) -> Dict[str, Any]:
        """Execute ``run`` and return its results keyed by step result key."""
        run.mark_running()
        try:
            batches = resolve_execution_order(run.steps)
            LOGGER.info("Workflow %s resolved into %d batches", run.id, len(batches))
            skipped: Set[str] = set()
            for index, batch in enumerate(batches):
                LOGGER.debug(
                    "Workflow %s batch %d: %s", run.id, index, ", ".join(step.id for step in batch)
                )
                await self._run_batch(run, batch, skipped)
        except asyncio.CancelledError:
            await self.finish_failed(run, "cancelled")
            raise
        except Exception as exc:
            await self.finish_failed(run, str(exc), exc)
            raise

        run.mark_completed()
        await self._recorder.record_workflow_execution(run)
        LOGGER.info("Workflow %s completed successfully", run.id)
        self._events.publish(WORKFLOW_COMPLETE, workflow_id=run.id, results=run.results)
        return run.results

    async def finish_failed(self, run: WorkflowRun, message: str, error: Any = None) -> None:
        run.mark_failed(message)
        await self._recorder.record_workflow_execution(run)
        LOGGER.error("Workflow %s failed: %s", run.id, message)
        self._events.publish(WORKFLOW_ERROR, workflow_id=run.id, error=error or message)

    async def _run_batch(self, run: WorkflowRun, batch: List[CrossAgentStep], skipped: Set[str]) -> None:
        """Launch every runnable step of the batch, then wait until all have settled."""
        fail_fast = run.failure_policy is WorkflowFailurePolicy.FAIL_FAST
        tasks: Dict[asyncio.Task, CrossAgentStep] = {}

        for step in batch:
            blocked = step.depends_on & skipped
            if blocked:
                skipped.add(step.id)
                run.failed_steps.append(step.id)
                run.results[step.result_key] = {
                    "error": f"skipped: dependency {', '.join(sorted(blocked))} failed",
                    "skipped": True,
                }
                continue
            tasks[asyncio.ensure_future(self._run_step(run, step))] = step

        if not tasks:
            return

        try:
            await asyncio.wait(
                tasks,
                return_when=asyncio.FIRST_EXCEPTION if fail_fast else asyncio.ALL_COMPLETED,
            )
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        for task, step in tasks.items():
            if task.cancelled() or task.exception() is None:
                continue
            if fail_fast:
                raise task.exception()
            skipped.add(step.id)
            run.failed_steps.append(step.id)
            run.results[step.result_key] = {"error": str(task.exception())}

    async def _run_step(self, run: WorkflowRun, step: CrossAgentStep) -> Any:
        result = await self._dispatcher.execute(step.agent, step.task, step.input, dict(step.options))
        run.results[step.result_key] = result
        return result
