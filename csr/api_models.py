from __future__ import annotations

from pydantic import BaseModel, Field


class CycleReportOut(BaseModel):
    started_at: str
    finished_at: str | None = None
    hosts: int = Field(0, description="Control-plane and worker nodes processed")
    tasks: int = Field(0, description="Running tasks processed")
    skipped: int = Field(0, description="Tasks excluded (migration label, not allowed, unknown agent)")
    registered: int = 0
    confirmed: int = Field(0, description="Cached entries left untouched")
    replaced: int = Field(0, description="Cached entries re-registered because their tags changed")
    deregistered: int = 0
    error: str | None = None


class StatusOut(BaseModel):
    running: bool
    last_cycle: CycleReportOut | None = None


class EventOut(BaseModel):
    id: int
    ts: str
    level: str
    service_name: str | None = None
    entry_id: str | None = None
    message: str
