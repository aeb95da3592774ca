from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import asdict

from fastapi import FastAPI, HTTPException, Query

from .api_models import (
    CountersModel,
    EventModel,
    PolicyModel,
    ServerStatusModel,
    StatusResponse,
    TargetModel,
)
from .policy import effective_threshold
from .reconciler import BudgetReconciler


def create_app(reconciler: BudgetReconciler, manage_loop: bool = True) -> FastAPI:
    """Status API over a reconciler.

    With manage_loop the app's lifespan starts the reconciler thread and stops
    it (bounded by the shutdown grace period) when the server shuts down.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_loop:
            reconciler.start()
        try:
            yield
        finally:
            if manage_loop:
                reconciler.stop()

    app = FastAPI(title="Minecraft PDB manager", lifespan=lifespan)
    runtime = reconciler.runtime
    s = reconciler.settings

    @app.get("/health")
    def health():
        if not reconciler.is_running():
            raise HTTPException(status_code=503, detail="Reconciler loop is not running")
        return {"status": "healthy"}

    @app.get("/status", response_model=StatusResponse)
    def status():
        last_status, last_applied, last_tick_at, counters = runtime.snapshot()
        return StatusResponse(
            running=reconciler.is_running(),
            target=TargetModel(
                host=s.server_host,
                port=s.server_port,
                namespace=s.namespace,
                pdb_name=s.pdb_name,
                pdb_field=s.pdb_field.value,
            ),
            policy=PolicyModel(
                min_players=s.policy.min_players,
                min_players_percent=s.policy.min_players_percent,
            ),
            last_status=ServerStatusModel(**asdict(last_status)) if last_status else None,
            threshold=effective_threshold(s.policy, last_status.max) if last_status else None,
            last_applied=last_applied.value if last_applied else None,
            last_tick_at=last_tick_at,
            counters=CountersModel(**asdict(counters)),
        )

    @app.get("/events", response_model=list[EventModel])
    def events(limit: int = Query(50, ge=1, le=500)):
        return [EventModel(**asdict(e)) for e in runtime.recent_events(limit)]

    return app
