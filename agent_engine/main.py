"""FastAPI entry-point exposing the agent engine."""
from __future__ import annotations

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from agent_engine.api.context import router as context_router
from agent_engine.api.routes import router as agents_router
from agent_engine.api.workflows import router as workflows_router
from agent_engine.config import config
from agent_engine.logging_config import configure_logging
from agent_engine.runtime import get_orchestrator


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application."""
    configure_logging(config.log_level)
    yield
    # Shutdown: cancel running workflows and stop all deployments
    await get_orchestrator().shutdown()


app = FastAPI(title="Agent Engine", lifespan=lifespan)
app.include_router(agents_router)
app.include_router(workflows_router)
app.include_router(context_router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


def serve(host: str = "127.0.0.1", port: int = 8000) -> None:
    """Run the API with uvicorn."""
    uvicorn.run("agent_engine.main:app", host=host, port=port)


if __name__ == "__main__":
    serve()
