"""Registry of live agent deployments."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from agent_engine.core.errors import AlreadyDeployed, EngineError, NotDeployed
from agent_engine.core.events import AGENT_DEPLOYED, AGENT_STOPPED, EventBus
from agent_engine.core.models import AgentStatusReport, Deployment
from agent_engine.services.catalog import AgentCatalog
from agent_engine.services.recorder import ExecutionRecorder

LOGGER = logging.getLogger(__name__)


class DeploymentRegistry:
    """Track which agents are active; at most one deployment per agent name."""

    def __init__(
        self,
        *,
        catalog: AgentCatalog,
        recorder: ExecutionRecorder,
        events: EventBus,
    ) -> None:
        self._catalog = catalog
        self._recorder = recorder
        self._events = events
        self._deployments: Dict[str, Deployment] = {}
        self._lock = asyncio.Lock()

    async def deploy(self, agent_name: str, options: Optional[Dict[str, Any]] = None) -> Deployment:
        """Load ``agent_name`` from the catalog and make it active."""
        async with self._lock:
            if agent_name in self._deployments:
                LOGGER.error("Failed to deploy agent %s: already deployed", agent_name)
                raise AlreadyDeployed(agent_name)
            return await self._deploy_locked(agent_name, options or {})

    async def ensure_deployed(self, agent_name: str) -> Deployment:
        """Return the live deployment, deploying with default options on first use."""
        async with self._lock:
            deployment = self._deployments.get(agent_name)
            if deployment is not None:
                return deployment
            return await self._deploy_locked(agent_name, {})

    async def _deploy_locked(self, agent_name: str, options: Dict[str, Any]) -> Deployment:
        try:
            agent = await self._catalog.load_agent(agent_name)
        except EngineError as exc:
            LOGGER.error("Failed to deploy agent %s: %s", agent_name, exc)
            raise
        deployment = Deployment(agent=agent, options=dict(options))
        self._deployments[agent_name] = deployment
        LOGGER.info("Agent %s deployed successfully", agent_name)
        self._events.publish(AGENT_DEPLOYED, agent_name=agent_name, deployment=deployment)
        return deployment

    async def deploy_multiple(
        self, agent_names: Iterable[str], options: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Union[Deployment, Dict[str, str]]]:
        """Deploy each name independently; failures are reported per name."""
        results: Dict[str, Union[Deployment, Dict[str, str]]] = {}
        for agent_name in agent_names:
            try:
                results[agent_name] = await self.deploy(agent_name, options)
            except EngineError as exc:
                results[agent_name] = {"error": str(exc)}
        return results

    async def stop(self, agent_name: str) -> Dict[str, Any]:
        """Remove the live deployment of ``agent_name``."""
        if self._deployments.pop(agent_name, None) is None:
            raise NotDeployed(agent_name)
        LOGGER.info("Agent %s stopped", agent_name)
        self._events.publish(AGENT_STOPPED, agent_name=agent_name)
        return {"success": True, "message": f"Agent {agent_name} stopped"}

    async def stop_all(self) -> List[str]:
        """Stop every live deployment and return the stopped names."""
        names = list(self._deployments)
        for agent_name in names:
            await self.stop(agent_name)
        return names

    async def get_status(self, agent_name: str) -> AgentStatusReport:
        deployment = self._deployments.get(agent_name)
        statistics = await self._recorder.get_agent_stats(agent_name)
        return AgentStatusReport(
            name=agent_name,
            status="active" if deployment is not None else "inactive",
            deployment=deployment,
            statistics=statistics,
        )

    def get(self, agent_name: str) -> Optional[Deployment]:
        return self._deployments.get(agent_name)

    def is_deployed(self, agent_name: str) -> bool:
        return agent_name in self._deployments

    def list_deployments(self) -> List[Deployment]:
        return list(self._deployments.values())
