"""Plan Coordination Service FastAPI application.

One process per workspace.  The lifespan starts the scheduler loop as a
background task and stops it on shutdown; the HTTP routes only enqueue
signals, so a request never waits on plan generation.

Run with ``uvicorn src.plan_service.main:app --port 8010``.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI

from src.plan_service.generator import CommandPlanGenerator
from src.plan_service.service import PlanCoordinationService
from src.registry.client import RegistryClient
from src.shared.config import PlanServiceSettings
from src.shared.constants import PLAN_SERVICE_NAME, PLAN_SERVICE_PORT, VERSION
from src.shared.errors import register_exception_handlers
from src.shared.logging import TraceIDMiddleware, setup_logging

config = PlanServiceSettings()
logger = setup_logging(PLAN_SERVICE_NAME, config.log_level)


def build_service(settings: PlanServiceSettings) -> PlanCoordinationService:
    """Wire the service from environment settings."""
    workspace = Path(settings.workspace_root)
    return PlanCoordinationService(
        registry=RegistryClient.from_settings(settings),
        generator=CommandPlanGenerator(
            settings.generator_command, workspace, settings.generator_timeout,
        ),
        workspace_root=workspace,
        discovery_limit=settings.discovery_limit,
        idle_interval=settings.idle_interval,
    )


def create_app(
    service: PlanCoordinationService | None = None,
    run_loop: bool = True,
) -> FastAPI:
    """Build the FastAPI app around *service* (or one built from settings)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan - start and stop the scheduler loop."""
        if app.state.service is None:
            if not config.generator_command:
                raise RuntimeError("PLAN_GENERATOR_COMMAND must be set")
            app.state.service = build_service(config)
        svc: PlanCoordinationService = app.state.service
        app.state.loop_task = asyncio.create_task(svc.run_forever()) if run_loop else None

        logger.info(
            "Service started: name=%s version=%s port=%d workspace=%s",
            PLAN_SERVICE_NAME, VERSION, PLAN_SERVICE_PORT, svc.workspace_root,
        )
        yield

        svc.stop()
        if app.state.loop_task is not None:
            await app.state.loop_task
        aclose = getattr(svc.registry, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.info("Service stopped: name=%s", PLAN_SERVICE_NAME)

    app = FastAPI(
        title="Plan Coordination Service",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.loop_task = None

    app.add_middleware(TraceIDMiddleware)
    register_exception_handlers(app)

    from src.plan_service.routers.health import router as health_router
    from src.plan_service.routers.signals import router as signals_router

    app.include_router(health_router)
    app.include_router(signals_router)
    return app


app = create_app()
