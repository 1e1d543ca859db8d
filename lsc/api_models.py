from __future__ import annotations

from pydantic import BaseModel, Field


class DeployRequest(BaseModel):
    only: list[str] | None = Field(None, description="Subset of services to deploy, in stack order")


class ServiceReportModel(BaseModel):
    name: str
    outcome: str = Field(..., description="success|failure|skipped")
    stage: str | None = Field(None, description="secrets|configs|container|health|bootstrap")
    state: str | None = Field(None, description="absent|stopped|running|running-unhealthy")
    detail: str = ""
    configs_written: int = 0
    configs_unchanged: int = 0


class DeployResponse(BaseModel):
    ok: bool
    services: list[ServiceReportModel]


class AppliedModel(BaseModel):
    service_name: str
    container_id: str
    image: str
    fingerprint: str
    applied_at: str
