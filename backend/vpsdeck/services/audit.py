from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generator

from sqlalchemy import desc
from sqlalchemy.orm import Session

from vpsdeck.config import Settings
from vpsdeck.database import AuditLog, get_database
from vpsdeck.schemas.audit import ActionStatus, AuditLogEntry, AuditLogResponse


logger = logging.getLogger(__name__)


def _to_entry(log: AuditLog) -> AuditLogEntry:
    return AuditLogEntry(
        id=log.id,
        timestamp=log.timestamp,
        action_type=log.action_type,
        target_name=log.target_name,
        status=log.status,
        user=log.user,
        output=log.output,
        error_message=log.error_message,
        metadata=log.get_metadata(),
        duration_ms=log.duration_ms,
    )


class AuditService:
    """Records every remote operation the dashboard performs."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.db = get_database(settings.sqlite_db_path)

    def _get_session(self) -> Session:
        return self.db.get_session()

    def _truncate(self, text: str | None) -> str | None:
        limit = self.settings.audit_max_output_length
        if text and len(text) > limit:
            return text[:limit] + "... [truncated]"
        return text

    def log_action(
        self,
        action_type: str,
        target_name: str,
        status: str = ActionStatus.SUCCESS,
        user: str | None = None,
        output: str | None = None,
        error_message: str | None = None,
        metadata: dict[str, Any] | None = None,
        duration_ms: float | None = None,
    ) -> AuditLogEntry:
        """Persist one action and emit a structured log line for it.

        Args:
            action_type: One of ActionType (preflight_scan, stack_deploy, ...)
            target_name: Host the action ran against
            status: success or failure
            user: Who triggered it, when known
            output: Combined command output or step log
            error_message: Error message if the action failed
            metadata: Extra details (ports, warnings, ...)
            duration_ms: Wall time of the action
        """
        session = self._get_session()
        try:
            log_entry = AuditLog(
                timestamp=datetime.utcnow(),
                action_type=str(getattr(action_type, "value", action_type)),
                target_name=target_name,
                status=str(getattr(status, "value", status)),
                user=user,
                output=self._truncate(output),
                error_message=error_message,
                duration_ms=duration_ms,
            )
            if metadata:
                log_entry.set_metadata(metadata)

            session.add(log_entry)
            session.commit()
            session.refresh(log_entry)

            log_data = {
                "action": log_entry.action_type,
                "target": target_name,
                "status": log_entry.status,
                "duration_ms": round(duration_ms, 2) if duration_ms else None,
                "user": user,
            }
            if error_message:
                log_data["error"] = error_message[:200]

            if log_entry.status == ActionStatus.SUCCESS.value:
                logger.info(f"Action completed: {log_entry.action_type} on {target_name}", extra=log_data)
            else:
                logger.warning(f"Action failed: {log_entry.action_type} on {target_name}", extra=log_data)

            return _to_entry(log_entry)
        finally:
            session.close()

    def get_logs(
        self,
        action_type: str | None = None,
        status: str | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> AuditLogResponse:
        """Query audit logs, newest first, with optional filters and pagination."""
        session = self._get_session()
        try:
            query = session.query(AuditLog)
            if action_type:
                query = query.filter(AuditLog.action_type == action_type)
            if status:
                query = query.filter(AuditLog.status == status)

            total = query.count()
            total_pages = (total + page_size - 1) // page_size
            offset = (page - 1) * page_size
            logs = query.order_by(desc(AuditLog.timestamp)).offset(offset).limit(page_size).all()

            return AuditLogResponse(
                logs=[_to_entry(log) for log in logs],
                total=total,
                page=page,
                page_size=page_size,
                total_pages=total_pages,
            )
        finally:
            session.close()

    @contextmanager
    def track_action(
        self,
        action_type: str,
        target_name: str,
        user: str | None = None,
    ) -> Generator[dict[str, Any], None, None]:
        """Context manager to track an action with timing and status.

        The body may fill ``output``, ``metadata``, ``failed`` and ``error``
        in the yielded dict; an exception is recorded as a failure and
        re-raised.
        """
        context: dict[str, Any] = {"output": None, "metadata": None, "failed": False, "error": None}
        start_time = time.time()

        try:
            yield context
        except Exception as e:
            self.log_action(
                action_type=action_type,
                target_name=target_name,
                status=ActionStatus.FAILURE,
                user=user,
                output=context.get("output"),
                error_message=str(e),
                metadata=context.get("metadata"),
                duration_ms=(time.time() - start_time) * 1000,
            )
            raise

        self.log_action(
            action_type=action_type,
            target_name=target_name,
            status=ActionStatus.FAILURE if context.get("failed") else ActionStatus.SUCCESS,
            user=user,
            output=context.get("output"),
            error_message=context.get("error"),
            metadata=context.get("metadata"),
            duration_ms=(time.time() - start_time) * 1000,
        )
