"""Shared fixtures: agent definitions on disk and a scriptable tool backend."""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import pytest

from agent_engine.orchestration.orchestrator import Orchestrator
from agent_engine.services.catalog import AgentCatalog
from agent_engine.services.recorder import InMemoryRecorder
from agent_engine.services.tools import PromptContext, StepContext

DEFINITIONS: Dict[str, Dict[str, Any]] = {
    "code-reviewer": {
        "name": "code-reviewer",
        "version": "1.0.0",
        "description": "Reviews code",
        "type": "review",
        "tools": ["read_file", "grep"],
        "workflow": [
            {"step": "step1", "description": "first"},
            {"step": "step2", "description": "second", "tools": ["grep"]},
            {"step": "step3", "description": "third"},
        ],
        "prompts": {"report": "Write the review report."},
    },
    "test-writer": {
        "name": "test-writer",
        "version": "2.0.0",
        "description": "Writes tests",
        "type": "testing",
        "tools": ["write_file"],
        "workflow": [{"step": "write", "description": "write tests"}],
        "prompts": {"on-review": "React to a review."},
    },
    "security-auditor": {
        "name": "security-auditor",
        "version": "0.1.0",
        "description": "Audits dependencies",
        "type": "security",
        "workflow": [{"step": "scan", "description": "scan dependencies"}],
    },
}


class ScriptedBackend:
    """Backend recording every call; steps listed in ``failing`` raise."""

    def __init__(self, failing: Optional[Set[str]] = None, delay: float = 0.0) -> None:
        self.failing = failing or set()
        self.delay = delay
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0

    async def _enter(self, label: str) -> None:
        self.calls.append(label)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1

    async def run_step(self, context: StepContext) -> Dict[str, Any]:
        label = f"{context.agent}.{context.step}"
        await self._enter(label)
        if context.step in self.failing or label in self.failing:
            raise RuntimeError(f"{label} exploded")
        return {"step": context.step, "tools": list(context.tools), "input": context.input}

    async def run_prompt(self, context: PromptContext) -> Dict[str, Any]:
        label = f"{context.agent}.{context.task}"
        await self._enter(label)
        if label in self.failing:
            raise RuntimeError(f"{label} exploded")
        return {"prompt": context.prompt, "input": context.input}


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def agents_dir(tmp_path: Path) -> Path:
    root = tmp_path / "agents"
    root.mkdir()
    for name, definition in DEFINITIONS.items():
        (root / f"{name}.json").write_text(json.dumps(definition), encoding="utf-8")
    return root


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def recorder() -> InMemoryRecorder:
    return InMemoryRecorder()


@pytest.fixture
def orchestrator(agents_dir: Path, backend: ScriptedBackend, recorder: InMemoryRecorder) -> Orchestrator:
    return Orchestrator(catalog=AgentCatalog(agents_dir), recorder=recorder, backend=backend)
