from __future__ import annotations

import threading

from vpsdeck.schemas.deployment import DeploymentStatus, ServiceStatuses
from vpsdeck.schemas.preflight import PreflightResult


class StatusStore:
    """Thread-safe holder for the dashboard status and the last scan.

    Both slots are replaced wholesale; no history is kept. Nothing here stops
    a scan and a deploy from overlapping, callers are expected to issue one
    at a time.
    """

    def __init__(self):
        self._status = DeploymentStatus()
        self._last_scan: PreflightResult | None = None
        self._lock = threading.Lock()

    def get_status(self) -> DeploymentStatus:
        with self._lock:
            return self._status

    def set_status(self, status: DeploymentStatus) -> None:
        with self._lock:
            self._status = status

    def set_services(self, services: ServiceStatuses) -> DeploymentStatus:
        with self._lock:
            self._status = self._status.model_copy(update={"services": services})
            return self._status

    def get_last_scan(self) -> PreflightResult | None:
        with self._lock:
            return self._last_scan

    def set_last_scan(self, result: PreflightResult) -> None:
        with self._lock:
            self._last_scan = result
