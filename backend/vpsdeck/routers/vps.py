from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException

from vpsdeck.dependencies import get_vps_service, require_admin_key
from vpsdeck.schemas.deployment import (
    DeploymentOutcome,
    HealthCheckResponse,
    NotificationTestRequest,
    NotificationTestResponse,
    StatusResponse,
)
from vpsdeck.schemas.preflight import PreflightResult, ProxyConfigResponse
from vpsdeck.services.vps import VPSService
from vpsdeck.validators import ValidationError


logger = logging.getLogger(__name__)


router = APIRouter(prefix="/api", tags=["vps"])


@router.get("/status", response_model=StatusResponse)
async def get_status(
    _user: str = Depends(require_admin_key),
    service: VPSService = Depends(get_vps_service),
):
    """Current deployment status, last scan and whether SSH secrets are set."""
    return service.status()


@router.post("/preflight", response_model=PreflightResult)
async def run_preflight(
    user: str = Depends(require_admin_key),
    service: VPSService = Depends(get_vps_service),
):
    """Scan the VPS and compute a safe placement plan."""
    return await service.scan(user=user)


@router.post("/deploy", response_model=DeploymentOutcome)
async def deploy(
    user: str = Depends(require_admin_key),
    service: VPSService = Depends(get_vps_service),
):
    """Deploy the service stack using the ports from the last scan."""
    return await asyncio.to_thread(service.deploy, user)


@router.get("/health-check", response_model=HealthCheckResponse)
async def health_check(
    user: str = Depends(require_admin_key),
    service: VPSService = Depends(get_vps_service),
):
    """Re-probe the deployed services without redeploying."""
    services = await asyncio.to_thread(service.check_health, user)
    return HealthCheckResponse(services=services)


@router.post("/test-ntfy", response_model=NotificationTestResponse)
async def test_ntfy(
    request: NotificationTestRequest,
    user: str = Depends(require_admin_key),
    service: VPSService = Depends(get_vps_service),
):
    """Publish a test message to an ntfy topic on the VPS."""
    try:
        return await asyncio.to_thread(
            service.send_test_notification, request.topic, request.message, user
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/proxy-config", response_model=ProxyConfigResponse)
async def proxy_config(
    _user: str = Depends(require_admin_key),
    service: VPSService = Depends(get_vps_service),
):
    """Reverse-proxy snippet for the detected proxy, if one is supported."""
    return service.proxy_config()
