"""HTTP API for the shared context store."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from agent_engine.orchestration.orchestrator import Orchestrator
from agent_engine.runtime import get_orchestrator

router = APIRouter(prefix="/context", tags=["context"])


class ContextValue(BaseModel):
    key: str
    value: Any = None


class ContextUpdate(BaseModel):
    value: Any = None


@router.get("/{key}", response_model=ContextValue)
async def get_context(key: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> ContextValue:
    return ContextValue(key=key, value=orchestrator.get_context(key))


@router.put("/{key}", response_model=ContextValue)
async def set_context(
    key: str,
    request: ContextUpdate,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> ContextValue:
    orchestrator.set_context(key, request.value)
    return ContextValue(key=key, value=request.value)
