from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ActionType(str, Enum):
    PREFLIGHT_SCAN = "preflight_scan"
    STACK_DEPLOY = "stack_deploy"
    HEALTH_CHECK = "health_check"
    NOTIFICATION_TEST = "notification_test"


class ActionStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class AuditLogEntry(BaseModel):
    id: int
    timestamp: datetime
    action_type: str
    target_name: str
    status: str
    user: str | None = None
    output: str | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    duration_ms: float | None = None


class AuditLogResponse(BaseModel):
    logs: list[AuditLogEntry]
    total: int
    page: int
    page_size: int
    total_pages: int
