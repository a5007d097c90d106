"""CLI demonstration of deploying agents and running a cross-agent workflow."""
from __future__ import annotations

import asyncio
import json
from pathlib import Path

from agent_engine.logging_config import configure_logging
from agent_engine.orchestration.orchestrator import Orchestrator
from agent_engine.services.catalog import AgentCatalog

DEFINITIONS_DIR = Path(__file__).resolve().parent.parent / "agent_definitions"


async def main() -> None:
    configure_logging("INFO")
    orchestrator = Orchestrator(catalog=AgentCatalog(DEFINITIONS_DIR))

    async with orchestrator.events.subscribe() as events:
        orchestrator.set_context("current_feature", "demo-feature")
        deployment = await orchestrator.deploy("code-reviewer")
        print(f"Deployed {deployment.agent_name} v{deployment.agent.version}")

        results = await orchestrator.run_workflow(
            [
                {"id": "analyze", "agent": "code-reviewer", "task": "analyze"},
                {"id": "tests", "agent": "test-writer", "task": "write-tests", "depends_on": "analyze"},
                {"id": "docs", "agent": "docs-writer", "task": "default", "depends_on": "analyze"},
                {"id": "review", "agent": "code-reviewer", "task": "report", "depends_on": ["tests", "docs"]},
            ],
            name="demo",
        )
        print(f"Workflow finished with steps: {', '.join(results)}")

        while not events.empty():
            event = events.get_nowait()
            print(f"{event.timestamp:%H:%M:%S} {event.name}")

    status = await orchestrator.get_status("code-reviewer")
    print(json.dumps({"agent": status.name, "executions": status.statistics.total_executions}))
    await orchestrator.shutdown()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
