from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from vpsdeck.config import Settings, require_ssh_credentials
from vpsdeck.schemas.audit import ActionType
from vpsdeck.schemas.deployment import (
    DeploymentOutcome,
    DeploymentState,
    DeploymentStatus,
    NotificationTestResponse,
    ServiceStatuses,
    StatusResponse,
)
from vpsdeck.schemas.preflight import PreflightResult, ProxyConfigResponse
from vpsdeck.services.audit import AuditService
from vpsdeck.services.deployer import deploy_stack
from vpsdeck.services.health_probe import probe_services
from vpsdeck.services.planner import build_plan
from vpsdeck.services.preflight import collect_host_facts
from vpsdeck.services.ssh_client import connect_from_settings, open_session
from vpsdeck.services.state import StatusStore
from vpsdeck.validators import quote_shell_arg, validate_message, validate_topic


logger = logging.getLogger(__name__)


class PreconditionError(RuntimeError):
    """The requested operation needs a (successful) preflight scan first."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class VPSService:
    """Runs scans, deploys and health checks and records them in the status store.

    The preflight, planner, deployer and health modules never see the store;
    this class is the only place their results are merged into it.
    """

    def __init__(self, settings: Settings, store: StatusStore, audit: AuditService):
        self.settings = settings
        self.store = store
        self.audit = audit

    @property
    def target(self) -> str:
        return self.settings.vps_host or "unconfigured"

    def status(self) -> StatusResponse:
        return StatusResponse(
            deployment_status=self.store.get_status(),
            last_preflight_result=self.store.get_last_scan(),
            secrets_configured=self.settings.secrets_configured,
        )

    def _require_scan(self) -> PreflightResult:
        result = self.store.get_last_scan()
        if result is None:
            raise PreconditionError("Run preflight scan first")
        return result

    async def scan(self, user: str | None = None) -> PreflightResult:
        with self.audit.track_action(ActionType.PREFLIGHT_SCAN, self.target, user) as ctx:
            try:
                require_ssh_credentials(self.settings)
                self.store.set_status(
                    DeploymentStatus(status=DeploymentState.SCANNING, message="Running preflight scan...")
                )
                session = await asyncio.to_thread(connect_from_settings, self.settings)
                try:
                    facts = await collect_host_facts(session)
                finally:
                    session.close()
                result = PreflightResult(facts=facts, safe_plan=build_plan(facts))
            except Exception as exc:
                logger.error("Preflight scan failed: %s", exc)
                self.store.set_status(DeploymentStatus(status=DeploymentState.ERROR, message=str(exc)))
                raise

            self.store.set_last_scan(result)
            self.store.set_status(
                DeploymentStatus(
                    status=DeploymentState.IDLE,
                    message="Preflight scan completed",
                    last_scan=facts.timestamp,
                )
            )
            ctx["metadata"] = {
                "ports_to_use": result.safe_plan.ports_to_use.model_dump(),
                "warnings": result.safe_plan.warnings,
                "ready_to_deploy": result.safe_plan.ready_to_deploy,
            }
            return result

    def deploy(self, user: str | None = None) -> DeploymentOutcome:
        scan = self._require_scan()
        if not scan.safe_plan.ready_to_deploy:
            raise PreconditionError("VPS is not ready for deployment. Docker may not be installed.")
        ports = scan.safe_plan.ports_to_use

        with self.audit.track_action(ActionType.STACK_DEPLOY, self.target, user) as ctx:
            ctx["metadata"] = {"ports_to_use": ports.model_dump()}
            try:
                require_ssh_credentials(self.settings)
                self.store.set_status(
                    DeploymentStatus(status=DeploymentState.DEPLOYING, message="Deploying services to VPS...")
                )
                session = connect_from_settings(self.settings)
                try:
                    outcome = deploy_stack(session, ports, settle_seconds=self.settings.deploy_settle_seconds)
                finally:
                    session.close()
            except Exception as exc:
                logger.error("Deployment failed: %s", exc)
                self.store.set_status(DeploymentStatus(status=DeploymentState.ERROR, message=str(exc)))
                raise

            self.store.set_status(
                DeploymentStatus(
                    status=DeploymentState.SUCCESS if outcome.success else DeploymentState.ERROR,
                    message=outcome.message,
                    last_deploy=_now(),
                    services=outcome.services,
                )
            )
            ctx["output"] = "\n".join(outcome.logs)
            if not outcome.success:
                ctx["failed"] = True
                ctx["error"] = outcome.message
            return outcome

    def check_health(self, user: str | None = None) -> ServiceStatuses:
        scan = self._require_scan()
        with self.audit.track_action(ActionType.HEALTH_CHECK, self.target, user) as ctx:
            with open_session(self.settings) as session:
                services = probe_services(session, scan.safe_plan.ports_to_use)
            self.store.set_services(services)
            ctx["metadata"] = services.model_dump()
            return services

    def send_test_notification(self, topic: str, message: str, user: str | None = None) -> NotificationTestResponse:
        topic = validate_topic(topic)
        message = validate_message(message)
        scan = self._require_scan()
        ntfy_port = scan.safe_plan.ports_to_use.ntfy

        with self.audit.track_action(ActionType.NOTIFICATION_TEST, self.target, user) as ctx:
            with open_session(self.settings) as session:
                result = session.execute(
                    f"curl -s -d {quote_shell_arg(message)} http://127.0.0.1:{ntfy_port}/{topic}"
                )
            ctx["output"] = result
            ctx["metadata"] = {"topic": topic}
            return NotificationTestResponse(success=True, result=result, topic=topic)

    def proxy_config(self) -> ProxyConfigResponse:
        scan = self._require_scan()
        return ProxyConfigResponse(
            proxy_type=scan.facts.reverse_proxy.type,
            config_snippet=scan.safe_plan.proxy_config_snippet,
        )
