"""
HTTP API - health checks and admin endpoints for the operator.

Provides liveness/readiness checks, a manual reconcile trigger, queue and
registry introspection, and an SSE stream of watch events.
"""

import asyncio
import logging
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from controller import Controller
from events import EventBus, ResourceEvent
from plugins.registry import PluginRegistry
from resources import DUMMY_KIND

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Response model for health endpoints."""

    status: str
    service: str = "dummy-operator"


class ReconcilerInfo(BaseModel):
    """A registered reconciler and the kinds it handles."""

    name: str
    kind: str
    owns: List[str] = Field(default_factory=list)


class QueueInfo(BaseModel):
    """Work queue depth."""

    depth: int
    running: bool


class ReconcileTriggerResponse(BaseModel):
    """Response model for a manual reconcile trigger."""

    message: str
    kind: str
    namespace: str
    name: str


def create_app(
    registry: PluginRegistry,
    controller: Optional[Controller] = None,
    event_bus: Optional[EventBus] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Routes:
    - Health: GET /healthz, GET /readyz
    - Registry: GET /api/v1/reconcilers
    - Queue: GET /api/v1/queue
    - Manual trigger: POST /api/v1/reconcile/{namespace}/{name}
    - Events: GET /api/v1/events (SSE)
    """
    app = FastAPI(
        title="Dummy Operator API",
        description="Health checks and admin endpoints for the Dummy operator",
        version="0.1.0",
    )

    @app.get("/healthz", response_model=HealthResponse)
    async def healthz():
        """Liveness check."""
        return HealthResponse(status="ok")

    @app.get("/readyz", response_model=HealthResponse)
    async def readyz():
        """Readiness check: ready once the controller is running."""
        if controller is None or not controller.running:
            return JSONResponse(
                status_code=503,
                content=HealthResponse(status="not ready").model_dump(),
            )
        return HealthResponse(status="ok")

    @app.get("/api/v1/reconcilers", response_model=List[ReconcilerInfo])
    async def list_reconcilers():
        """List registered reconcilers."""
        infos = []
        for name in registry.list_reconciler_plugins():
            info = registry.get_reconciler_plugin_info(name)
            if info:
                infos.append(ReconcilerInfo(**info))
        return infos

    @app.get("/api/v1/queue", response_model=QueueInfo)
    async def queue_info():
        """Report work queue depth."""
        if controller is None:
            raise HTTPException(status_code=503, detail="Controller not available")
        return QueueInfo(depth=len(controller.queue), running=controller.running)

    @app.post(
        "/api/v1/reconcile/{namespace}/{name}",
        response_model=ReconcileTriggerResponse,
        status_code=202,
    )
    async def trigger_reconciliation(namespace: str, name: str, kind: str = DUMMY_KIND):
        """Manually trigger reconciliation for a resource."""
        if controller is None:
            raise HTTPException(status_code=503, detail="Controller not available")
        if not controller.trigger_reconciliation(kind, namespace, name):
            raise HTTPException(
                status_code=404, detail=f"No reconciler registered for kind {kind}"
            )
        return ReconcileTriggerResponse(
            message="Reconciliation triggered",
            kind=kind,
            namespace=namespace,
            name=name,
        )

    @app.get("/api/v1/events")
    async def stream_events(kind: Optional[str] = None):
        """SSE stream of watch events, optionally filtered by kind."""
        if event_bus is None:
            raise HTTPException(
                status_code=503,
                detail="Event streaming not available",
            )

        if kind:
            wanted = kind

            def filter_fn(event: ResourceEvent) -> bool:
                return event.kind == wanted

        else:
            filter_fn = None

        subscriber_id, subscription = event_bus.subscribe(filter_fn)

        async def event_generator():
            try:
                async for event in subscription:
                    yield event.to_sse()
            except asyncio.CancelledError:
                pass
            finally:
                event_bus.unsubscribe(subscriber_id)

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    return app


class APIServer:
    """Runs the API application under uvicorn."""

    def __init__(self, app: FastAPI, host: str = "0.0.0.0", port: int = 8081):
        self.app = app
        self.host = host
        self.port = port
        self.server: Optional[uvicorn.Server] = None

    async def start(self) -> None:
        """Start the HTTP server."""
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="info",
        )
        self.server = uvicorn.Server(config)

        logger.info(f"Starting API server on {self.host}:{self.port}")
        await self.server.serve()

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        logger.info("Stopping API server")
        if self.server:
            self.server.should_exit = True
