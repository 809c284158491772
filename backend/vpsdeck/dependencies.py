from functools import lru_cache

from fastapi import Depends, Header, HTTPException

from vpsdeck.config import Settings, get_settings
from vpsdeck.services.audit import AuditService
from vpsdeck.services.state import StatusStore
from vpsdeck.services.vps import VPSService


def require_admin_key(
    x_admin_key: str | None = Header(None, alias="X-Admin-Key"),
    x_forwarded_user: str | None = Header(None, alias="X-Forwarded-User"),
    settings: Settings = Depends(get_settings),
) -> str:
    """Require the admin key when REQUIRE_AUTH is enabled.

    Raises HTTPException 500 if auth is required but no key is configured,
    and 401 if the X-Admin-Key header is missing or wrong.
    """
    if settings.require_auth:
        if not settings.admin_api_key:
            raise HTTPException(status_code=500, detail="ADMIN_API_KEY not configured on server")
        if not x_admin_key or x_admin_key != settings.admin_api_key:
            raise HTTPException(status_code=401, detail="Unauthorized - invalid or missing admin key")
        return x_forwarded_user or "admin"

    return x_forwarded_user or "anonymous"


@lru_cache
def get_status_store() -> StatusStore:
    return StatusStore()


@lru_cache
def get_audit_service() -> AuditService:
    return AuditService(get_settings())


@lru_cache
def get_vps_service() -> VPSService:
    return VPSService(get_settings(), get_status_store(), get_audit_service())
