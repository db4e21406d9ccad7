"""
Status API - Read-only HTTP view of the operator.

This module provides a FastAPI app exposing health probes, the last
reconciliation Results per NicClusterPolicy, the watched kinds and an
SSE stream of watch events.
"""

import asyncio
import logging
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from config import APIConfig
from controller import Controller, ReconcileRecord
from events import EventBus, WatchEvent

logger = logging.getLogger(__name__)


class StateResultResponse(BaseModel):
    """Sync outcome of a single State."""

    name: str
    state: str
    message: Optional[str] = None


class PolicyStatusResponse(BaseModel):
    """Last reconciliation outcome of a NicClusterPolicy."""

    name: str
    state: str = Field(..., description="Aggregate status (ready/notReady)")
    applied_states: List[StateResultResponse] = []
    last_reconciled: str
    duration_seconds: float
    requeue_after: Optional[int] = None

    @classmethod
    def from_record(cls, record: ReconcileRecord) -> "PolicyStatusResponse":
        return cls(
            name=record.name,
            state=record.results.status.value,
            applied_states=[
                StateResultResponse(**r.to_dict()) for r in record.results.states_status
            ],
            last_reconciled=record.timestamp,
            duration_seconds=record.duration_seconds,
            requeue_after=record.requeue_after,
        )


class KindResponse(BaseModel):
    """A kind the operator watches."""

    api_version: str
    kind: str


class StatusAPI:
    """
    HTTP server for operator status.

    Routes are bound to the controller the server was created with.
    """

    def __init__(
        self,
        controller: Controller,
        event_bus: Optional[EventBus] = None,
        config: Optional[APIConfig] = None,
    ):
        self.controller = controller
        self.config = config or APIConfig()
        self.server: Optional[uvicorn.Server] = None
        self._event_bus = event_bus
        self.app = FastAPI(
            title="Network Operator Status API",
            description="Reconciliation status of NicClusterPolicy resources",
            version="1.0.0",
        )
        self._setup_routes()

    def _setup_routes(self) -> None:
        """
        Set up all FastAPI routes.

        Configures the following endpoint groups:
        - Probes: GET /healthz, GET /readyz
        - Policies: /api/v1/policies
        - Reconciliation: POST /api/v1/policies/{name}/reconcile
        - Watched kinds: GET /api/v1/watched-kinds
        - Events: GET /api/v1/events (SSE)
        """

        @self.app.get("/healthz")
        async def healthz():
            """Liveness probe."""
            return {"status": "ok"}

        @self.app.get("/readyz")
        async def readyz():
            """Readiness probe, ready while the controller loop runs."""
            if not self.controller.running:
                return JSONResponse(
                    status_code=503,
                    content={"status": "unavailable", "detail": "Controller not running"},
                )
            return {"status": "ok"}

        # ==================== Policy Endpoints ====================

        @self.app.get("/api/v1/policies", response_model=List[PolicyStatusResponse])
        async def list_policies():
            """Last Results of every reconciled policy."""
            return [
                PolicyStatusResponse.from_record(record)
                for record in self.controller.list_records()
            ]

        @self.app.get("/api/v1/policies/{name}", response_model=PolicyStatusResponse)
        async def get_policy(name: str):
            """Last Results of one policy."""
            record = self.controller.last_results.get(name)
            if record is None:
                raise HTTPException(status_code=404, detail="Policy not found")
            return PolicyStatusResponse.from_record(record)

        @self.app.post("/api/v1/policies/{name}/reconcile", status_code=202)
        async def trigger_reconciliation(name: str):
            """Manually trigger reconciliation for a policy."""
            self.controller.enqueue(name)
            return {"message": "Reconciliation triggered", "name": name}

        @self.app.get("/api/v1/watched-kinds", response_model=List[KindResponse])
        async def list_watched_kinds():
            """Kinds whose changes trigger reconciliation."""
            return [
                KindResponse(api_version=k.api_version, kind=k.kind)
                for k in self.controller.manager.watched_kinds()
            ]

        # ==================== Event Streaming Endpoints ====================

        @self.app.get("/api/v1/events")
        async def stream_events(kind: Optional[str] = None):
            """SSE stream of watch events.

            Optionally filter by kind.
            """
            if not self._event_bus:
                raise HTTPException(
                    status_code=503,
                    detail="Event streaming not available",
                )

            if kind:

                def filter_fn(event: WatchEvent) -> bool:
                    return event.kind == kind

            else:
                filter_fn = None

            subscriber_id, subscription = await self._event_bus.subscribe(filter_fn)

            async def event_generator():
                try:
                    async for event in subscription:
                        yield event.to_sse()
                except asyncio.CancelledError:
                    pass
                finally:
                    await self._event_bus.unsubscribe(subscriber_id)

            return StreamingResponse(
                event_generator(),
                media_type="text/event-stream",
                headers={
                    "Cache-Control": "no-cache",
                    "X-Accel-Buffering": "no",
                },
            )

    async def start(self) -> None:
        """Start the HTTP server."""
        config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower(),
        )
        self.server = uvicorn.Server(config)

        logger.info(f"Starting status API on {self.config.host}:{self.config.port}")
        await self.server.serve()

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        logger.info("Stopping status API")
        if self.server:
            self.server.should_exit = True
