"""File-backed catalog of agent definitions."""
from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from agent_engine.core.errors import LoadError
from agent_engine.core.models import AgentDefinition, AgentType, WorkflowStepSpec

LOGGER = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "version", "description", "type")
DEFINITION_SUFFIXES = (".json", ".yaml", ".yml")


def validate_agent(data: Any, agent_name: Optional[str] = None) -> AgentDefinition:
    """Validate a raw definition document and build an ``AgentDefinition``.

    Raises ``LoadError`` naming the first missing or invalid field.
    """
    label = agent_name or "<unknown>"
    if not isinstance(data, Mapping):
        raise LoadError(label, "definition must be a mapping")
    label = agent_name or str(data.get("name") or label)

    for required in REQUIRED_FIELDS:
        if not data.get(required):
            raise LoadError(label, f"Agent missing required field: {required}")

    try:
        agent_type = AgentType(data["type"])
    except ValueError:
        valid = ", ".join(kind.value for kind in AgentType)
        raise LoadError(label, f"Invalid agent type: {data['type']}. Must be one of: {valid}") from None

    tools = data.get("tools") or []
    if not isinstance(tools, list):
        raise LoadError(label, "Agent tools must be an array")

    workflow = data.get("workflow") or []
    if not isinstance(workflow, list):
        raise LoadError(label, "Agent workflow must be an array")

    prompts = data.get("prompts") or {}
    if not isinstance(prompts, Mapping):
        raise LoadError(label, "Agent prompts must be a mapping")

    steps: List[WorkflowStepSpec] = []
    seen = set()
    for position, entry in enumerate(workflow):
        if not isinstance(entry, Mapping) or not entry.get("step"):
            raise LoadError(label, f"Workflow entry {position} is missing 'step'")
        if not isinstance(entry["step"], str):
            raise LoadError(label, f"Workflow entry {position} has a non-string 'step'")
        if entry["step"] in seen:
            raise LoadError(label, f"Duplicate workflow step: {entry['step']}")
        seen.add(entry["step"])
        step_tools = entry.get("tools") or []
        if not isinstance(step_tools, list):
            raise LoadError(label, f"Tools of workflow step {entry['step']} must be an array")
        steps.append(
            WorkflowStepSpec(
                step=str(entry["step"]),
                description=str(entry.get("description", "")),
                tools=tuple(str(tool) for tool in step_tools),
            )
        )

    return AgentDefinition(
        name=str(data["name"]),
        version=str(data["version"]),
        description=str(data["description"]),
        type=agent_type,
        tools=tuple(str(tool) for tool in tools),
        workflow=tuple(steps),
        prompts={str(key): str(value) for key, value in prompts.items()},
    )


def _read_document(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        if path.suffix == ".json":
            return json.load(handle)
        return yaml.safe_load(handle)


class AgentCatalog:
    """Catalog reading ``<agents_dir>/<name>.json`` (or ``.yaml``/``.yml``) files."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _path_for(self, agent_name: str) -> Optional[Path]:
        for suffix in DEFINITION_SUFFIXES:
            candidate = self.root / f"{agent_name}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    async def load_agent(self, agent_name: str) -> AgentDefinition:
        """Load and validate a single agent definition."""
        path = self._path_for(agent_name)
        if path is None:
            raise LoadError(agent_name, f"no definition in {self.root}", missing=True)
        try:
            data = _read_document(path)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            raise LoadError(agent_name, str(exc)) from exc
        agent = validate_agent(data, agent_name)
        return replace(agent, source=str(path))

    async def list_agents(self) -> List[AgentDefinition]:
        """Return every valid definition in the catalog directory."""
        agents: Dict[str, AgentDefinition] = {}
        if not self.root.is_dir():
            LOGGER.warning("Agent directory %s does not exist", self.root)
            return []

        for path in sorted(self.root.iterdir()):
            if path.suffix not in DEFINITION_SUFFIXES or not path.is_file():
                continue
            try:
                agent = validate_agent(_read_document(path), path.stem)
            except (OSError, ValueError, yaml.YAMLError, LoadError) as exc:
                LOGGER.warning("Failed to load agent %s: %s", path.name, exc)
                continue
            agents.setdefault(agent.name, replace(agent, source=str(path)))
        return list(agents.values())

