from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from vpsdeck.dependencies import get_audit_service, require_admin_key
from vpsdeck.schemas.audit import AuditLogResponse
from vpsdeck.services.audit import AuditService


router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("", response_model=AuditLogResponse)
async def get_audit_logs(
    action_type: str | None = Query(None, description="Filter by action type"),
    status: str | None = Query(None, description="Filter by status"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=200, description="Items per page"),
    _user: str = Depends(require_admin_key),
    service: AuditService = Depends(get_audit_service),
):
    """Get scan, deploy and health-check history with optional filters."""
    return service.get_logs(action_type=action_type, status=status, page=page, page_size=page_size)
