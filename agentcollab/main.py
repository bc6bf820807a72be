"""FastAPI entry-point exposing the collaboration orchestrator."""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from agentcollab.api.agents import router as agents_router
from agentcollab.api.conversations import router as conversations_router
from agentcollab.api.memory import router as memory_router
from agentcollab.api.providers import router as providers_router
from agentcollab.api.workflows import router as workflows_router
from agentcollab.config import config
from agentcollab.core.registry import json_file_loader
from agentcollab.logs import configure_logging
from agentcollab.runtime import get_orchestrator, get_registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application."""
    configure_logging(config.log_level)
    if config.agents_file:
        await get_registry().refresh(json_file_loader(config.agents_file))
    orchestrator = get_orchestrator()
    await orchestrator.start()
    yield
    await orchestrator.stop()


app = FastAPI(title="Agent Collaboration Orchestrator", lifespan=lifespan)
app.include_router(agents_router)
app.include_router(conversations_router)
app.include_router(workflows_router)
app.include_router(memory_router)
app.include_router(providers_router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "environment": config.environment}
