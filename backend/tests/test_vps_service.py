"""Tests for the control surface that ties scans, deploys and checks together."""

import pytest
from unittest.mock import MagicMock, patch

from conftest import FakeSession
from vpsdeck.config import ConfigurationError
from vpsdeck.schemas.audit import ActionStatus, ActionType
from vpsdeck.schemas.deployment import DeploymentState
from vpsdeck.services import preflight
from vpsdeck.services.bundle import ENV_PATH, REMOTE_ROOT
from vpsdeck.services.health_probe import fetcher_command, ntfy_command, postgres_command
from vpsdeck.services.ssh_client import SSHConnectionError
from vpsdeck.services.state import StatusStore
from vpsdeck.services.vps import PreconditionError, VPSService
from vpsdeck.validators import ValidationError


def scan_session(docker_installed=True):
    docker_version = "Docker version 24.0.7, build afdd53b\n" if docker_installed else "not installed\n"
    return FakeSession(responses={
        preflight.CMD_DISTRO: "Debian GNU/Linux 12 (bookworm)\n",
        preflight.CMD_HOSTNAME: "vps-01\n",
        preflight.CMD_DOCKER_VERSION: docker_version,
        preflight.CMD_PORTS: (
            "State Recv-Q Send-Q Local Address:Port Peer Address:Port\n"
            "LISTEN 0 511 0.0.0.0:80 0.0.0.0:*\n"
            "LISTEN 0 4096 127.0.0.1:8080 0.0.0.0:*\n"
        ),
        preflight.CMD_NGINX: "/usr/sbin/nginx\n",
    })


def deploy_session():
    return FakeSession(responses={
        f"cd {REMOTE_ROOT} && docker compose up -d --build 2>&1": "Started",
        fetcher_command(3001): '{"status":"ok"}',
        ntfy_command(8081): '{"healthy":true}',
        postgres_command(): "accepting connections",
    })


@pytest.fixture
def store():
    return StatusStore()


@pytest.fixture
def service(settings, store, audit_service):
    return VPSService(settings, store, audit_service)


async def run_scan(service, session=None):
    with patch("vpsdeck.services.vps.connect_from_settings", return_value=session or scan_session()):
        return await service.scan(user="alice")


class TestScan:
    @pytest.mark.asyncio
    async def test_scan_records_result_and_status(self, service, store):
        session = scan_session()

        result = await run_scan(service, session)

        assert store.get_last_scan() == result
        assert result.safe_plan.ports_to_use.ntfy == 8081
        assert result.safe_plan.ready_to_deploy is True
        assert result.safe_plan.warnings == ["Port 80 is in use - will bind to localhost only"]
        status = store.get_status()
        assert status.status == DeploymentState.IDLE
        assert status.message == "Preflight scan completed"
        assert status.last_scan == result.facts.timestamp
        assert session.closed is True

    @pytest.mark.asyncio
    async def test_connection_failure_sets_error(self, service, store):
        connect = MagicMock(side_effect=SSHConnectionError("SSH connection to 203.0.113.10 failed: timed out"))

        with patch("vpsdeck.services.vps.connect_from_settings", connect):
            with pytest.raises(SSHConnectionError):
                await service.scan()

        assert store.get_status().status == DeploymentState.ERROR
        assert "timed out" in store.get_status().message
        assert store.get_last_scan() is None

    @pytest.mark.asyncio
    async def test_missing_credentials_fail_before_connecting(self, settings, store, audit_service):
        settings.vps_host = ""
        service = VPSService(settings, store, audit_service)
        connect = MagicMock()

        with patch("vpsdeck.services.vps.connect_from_settings", connect):
            with pytest.raises(ConfigurationError, match="VPS_HOST"):
                await service.scan()

        connect.assert_not_called()
        assert store.get_status().status == DeploymentState.ERROR

    @pytest.mark.asyncio
    async def test_scan_is_audited(self, service, audit_service):
        await run_scan(service)

        logs = audit_service.get_logs(action_type=ActionType.PREFLIGHT_SCAN.value).logs
        assert len(logs) == 1
        assert logs[0].status == ActionStatus.SUCCESS.value
        assert logs[0].user == "alice"
        assert logs[0].target_name == "203.0.113.10"
        assert logs[0].metadata["ready_to_deploy"] is True


class TestDeploy:
    def test_deploy_without_scan_is_rejected(self, service):
        connect = MagicMock()

        with patch("vpsdeck.services.vps.connect_from_settings", connect):
            with pytest.raises(PreconditionError, match="Run preflight scan first"):
                service.deploy()

        connect.assert_not_called()

    @pytest.mark.asyncio
    async def test_deploy_on_host_without_docker_is_rejected(self, service, store):
        await run_scan(service, scan_session(docker_installed=False))
        connect = MagicMock()

        with patch("vpsdeck.services.vps.connect_from_settings", connect):
            with pytest.raises(PreconditionError, match="Docker may not be installed"):
                service.deploy()

        connect.assert_not_called()
        assert store.get_status().status == DeploymentState.IDLE

    @pytest.mark.asyncio
    async def test_successful_deploy_updates_status(self, service, store, audit_service):
        await run_scan(service)
        session = deploy_session()

        with patch("vpsdeck.services.vps.connect_from_settings", return_value=session):
            outcome = service.deploy(user="alice")

        assert outcome.success is True
        assert ENV_PATH in session.uploads
        assert session.closed is True
        status = store.get_status()
        assert status.status == DeploymentState.SUCCESS
        assert status.last_deploy is not None
        assert status.services.fetcher.healthy is True
        assert status.services.fetcher.url == "http://127.0.0.1:3001"

        logs = audit_service.get_logs(action_type=ActionType.STACK_DEPLOY.value).logs
        assert logs[0].status == ActionStatus.SUCCESS.value
        assert "Connected to VPS" in logs[0].output

    @pytest.mark.asyncio
    async def test_failed_deploy_sets_error_status(self, service, store, audit_service):
        await run_scan(service)
        session = deploy_session()
        session.fail_upload_path = f"{REMOTE_ROOT}/docker-compose.yml"

        with patch("vpsdeck.services.vps.connect_from_settings", return_value=session):
            outcome = service.deploy()

        assert outcome.success is False
        status = store.get_status()
        assert status.status == DeploymentState.ERROR
        assert status.services.n8n.running is False

        logs = audit_service.get_logs(action_type=ActionType.STACK_DEPLOY.value).logs
        assert logs[0].status == ActionStatus.FAILURE.value
        assert "permission denied" in logs[0].error_message


class TestHealthCheck:
    def test_requires_scan(self, service):
        with pytest.raises(PreconditionError):
            service.check_health()

    @pytest.mark.asyncio
    async def test_merges_services_only(self, service, store):
        await run_scan(service)
        before = store.get_status()
        session = FakeSession(responses={fetcher_command(3001): '{"status":"ok"}'})

        with patch("vpsdeck.services.ssh_client.connect_from_settings", return_value=session):
            services = service.check_health()

        after = store.get_status()
        assert after.services == services
        assert after.status == before.status
        assert after.message == before.message
        assert after.last_scan == before.last_scan
        assert services.fetcher.healthy is True
        assert services.postgres.healthy is False
        assert session.closed is True


class TestSendTestNotification:
    @pytest.mark.asyncio
    async def test_message_is_shell_quoted(self, service):
        await run_scan(service)
        session = FakeSession()

        with patch("vpsdeck.services.ssh_client.connect_from_settings", return_value=session):
            response = service.send_test_notification("alerts", "it's up; rm -rf /")

        assert response.success is True
        assert response.topic == "alerts"
        assert session.commands == [
            "curl -s -d 'it'\"'\"'s up; rm -rf /' http://127.0.0.1:8081/alerts"
        ]

    @pytest.mark.asyncio
    async def test_invalid_topic_never_reaches_host(self, service):
        await run_scan(service)
        connect = MagicMock()

        with patch("vpsdeck.services.ssh_client.connect_from_settings", connect):
            with pytest.raises(ValidationError):
                service.send_test_notification("alerts; reboot", "hello")

        connect.assert_not_called()


class TestProxyConfig:
    @pytest.mark.asyncio
    async def test_returns_snippet_for_detected_proxy(self, service):
        await run_scan(service)

        response = service.proxy_config()

        assert response.proxy_type == "nginx"
        assert "proxy_pass http://127.0.0.1:8081/;" in response.config_snippet

    def test_requires_scan(self, service):
        with pytest.raises(PreconditionError):
            service.proxy_config()
