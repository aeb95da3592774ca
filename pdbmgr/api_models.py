from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class TargetModel(BaseModel):
    host: str
    port: int = Field(..., ge=1, le=65535)
    namespace: str
    pdb_name: str
    pdb_field: str = Field(..., description="minAvailable|maxUnavailable")


class PolicyModel(BaseModel):
    min_players: int = Field(..., ge=0)
    min_players_percent: float | None = Field(None, ge=0.0, le=1.0)


class ServerStatusModel(BaseModel):
    online: int
    max: int
    observed_at: datetime
    version_name: str | None = None
    protocol: int | None = None
    latency_ms: float | None = None


class CountersModel(BaseModel):
    ticks: int = 0
    probe_failures: int = 0
    writes: int = 0
    conflicts: int = 0
    exhaustions: int = 0


class StatusResponse(BaseModel):
    running: bool
    target: TargetModel
    policy: PolicyModel
    last_status: ServerStatusModel | None = None
    threshold: int | None = Field(None, description="Effective threshold for the last probed max")
    last_applied: str | None = Field(None, description="blocked|allowed, None until first write or seed")
    last_tick_at: datetime | None = None
    counters: CountersModel


class EventModel(BaseModel):
    ts: datetime
    level: str
    kind: str
    message: str
