from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from vpsdeck.schemas.preflight import PreflightResult


class ServiceStatus(BaseModel):
    running: bool = False
    healthy: bool = False
    url: str | None = None


class ServiceStatuses(BaseModel):
    postgres: ServiceStatus = Field(default_factory=ServiceStatus)
    n8n: ServiceStatus = Field(default_factory=ServiceStatus)
    ntfy: ServiceStatus = Field(default_factory=ServiceStatus)
    fetcher: ServiceStatus = Field(default_factory=ServiceStatus)

    @classmethod
    def all_down(cls) -> "ServiceStatuses":
        return cls()


class DeploymentOutcome(BaseModel):
    success: bool
    message: str
    logs: list[str] = Field(default_factory=list)
    services: ServiceStatuses = Field(default_factory=ServiceStatuses)


class DeploymentState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    DEPLOYING = "deploying"
    SUCCESS = "success"
    ERROR = "error"


class DeploymentStatus(BaseModel):
    status: DeploymentState = DeploymentState.IDLE
    message: str = "Ready to scan VPS"
    last_scan: str | None = None
    last_deploy: str | None = None
    services: ServiceStatuses | None = None


class StatusResponse(BaseModel):
    deployment_status: DeploymentStatus
    last_preflight_result: PreflightResult | None = None
    secrets_configured: bool


class HealthCheckResponse(BaseModel):
    services: ServiceStatuses


class NotificationTestRequest(BaseModel):
    topic: str = "strijps"
    message: str = "Test notification from LivingRental Alert"


class NotificationTestResponse(BaseModel):
    success: bool
    result: str
    topic: str
