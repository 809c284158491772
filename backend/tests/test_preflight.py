"""Tests for the preflight fact collector and its parsers."""

import time

import pytest
from pydantic import ValidationError

from conftest import FakeSession
from vpsdeck.schemas.preflight import ContainerInfo, ListeningPort, ProxyKind
from vpsdeck.services import preflight
from vpsdeck.services.planner import build_plan
from vpsdeck.services.preflight import (
    collect_host_facts,
    detect_existing_services,
    detect_reverse_proxy,
    parse_containers,
    parse_free_total,
    parse_listening_ports,
)
from vpsdeck.services.ssh_client import SSHExecutionError


SS_OUTPUT = """State  Recv-Q Send-Q Local Address:Port  Peer Address:Port Process
LISTEN 0      4096         0.0.0.0:22         0.0.0.0:*     users:(("sshd",pid=812,fd=3))
LISTEN 0      511          0.0.0.0:80         0.0.0.0:*     users:(("nginx",pid=901,fd=6))
LISTEN 0      4096            [::]:443           [::]:*
"""

NETSTAT_OUTPUT = """Active Internet connections (only servers)
Proto Recv-Q Send-Q Local Address           Foreign Address         State       PID/Program name
tcp        0      0 0.0.0.0:22              0.0.0.0:*               LISTEN      812/sshd
tcp6       0      0 :::5432                 :::*                    LISTEN      1044/postgres
"""


class TestParseListeningPorts:
    """Test parsing of ss / netstat port tables."""

    def test_parses_ss_output(self):
        ports = parse_listening_ports(SS_OUTPUT)
        assert [p.port for p in ports] == [22, 80, 443]
        assert ports[0].process == "sshd"
        assert ports[1].process == "nginx"
        assert all(p.protocol == "tcp" for p in ports)
        assert all(p.state == "LISTEN" for p in ports)

    def test_ss_without_process_column_defaults_to_unknown(self):
        ports = parse_listening_ports(SS_OUTPUT)
        assert ports[2].process == "unknown"

    def test_parses_netstat_output(self):
        ports = parse_listening_ports(NETSTAT_OUTPUT)
        assert [p.port for p in ports] == [22, 5432]
        assert ports[0].protocol == "tcp"
        assert ports[1].protocol == "tcp6"
        assert ports[1].process == "postgres"
        assert ports[1].state == "LISTEN"

    def test_skips_malformed_lines(self):
        raw = SS_OUTPUT + "garbage line\nLISTEN 0\n"
        ports = parse_listening_ports(raw)
        assert [p.port for p in ports] == [22, 80, 443]

    def test_skips_lines_without_port_suffix(self):
        raw = "header\nLISTEN 0 128 nowhere nothing\n"
        assert parse_listening_ports(raw) == []

    def test_header_only_returns_empty(self):
        assert parse_listening_ports("State Recv-Q Send-Q Local Address:Port") == []

    def test_empty_output_returns_empty(self):
        assert parse_listening_ports("") == []


class TestParseContainers:
    """Test pipe-delimited container inventory parsing."""

    def test_parses_complete_lines(self):
        raw = "web|nginx:alpine|Up 2 hours|0.0.0.0:80->80/tcp\ndb|postgres:15|Exited (0)|\n"
        containers = parse_containers(raw)
        assert containers[0] == ContainerInfo(
            name="web", image="nginx:alpine", status="Up 2 hours", ports="0.0.0.0:80->80/tcp"
        )
        assert containers[1].ports == ""

    def test_missing_fields_default_to_empty(self):
        containers = parse_containers("lonely\n")
        assert containers == [ContainerInfo(name="lonely", image="", status="", ports="")]

    def test_blank_lines_ignored(self):
        assert parse_containers("\n\n") == []


class TestDetectReverseProxy:
    """Test proxy detection priority."""

    def test_nginx_wins_over_caddy(self):
        info = detect_reverse_proxy("/usr/sbin/nginx\nsyntax is ok", "/usr/bin/caddy", "")
        assert info.type == ProxyKind.NGINX
        assert info.detected is True
        assert info.config_path == "/etc/nginx/sites-available/"

    def test_caddy_when_no_nginx(self):
        info = detect_reverse_proxy("", "caddy\n", "traefik\n")
        assert info.type == ProxyKind.CADDY
        assert info.config_path == "/etc/caddy/Caddyfile"

    def test_traefik_has_no_config_path(self):
        info = detect_reverse_proxy("  \n", "", "traefik\n")
        assert info.type == ProxyKind.TRAEFIK
        assert info.config_path is None

    def test_nothing_detected(self):
        info = detect_reverse_proxy("", "\n", "")
        assert info.type == ProxyKind.NONE
        assert info.detected is False


class TestDetectExistingServices:
    """Test name-fragment matching against the container inventory."""

    def test_matches_case_insensitively(self):
        containers = [
            ContainerInfo(name="My-N8N"),
            ContainerInfo(name="shared_PostgreSQL"),
            ContainerInfo(name="page-fetcher"),
        ]
        flags = detect_existing_services(containers)
        assert flags.n8n is True
        assert flags.postgres is True
        assert flags.playwright is True
        assert flags.ntfy is False

    def test_empty_inventory(self):
        flags = detect_existing_services([])
        assert not any(flags.model_dump().values())


class TestParseFreeTotal:
    def test_splits_pair(self):
        assert parse_free_total("31G|38G\n") == ("31G", "38G")

    def test_missing_values_are_unknown(self):
        assert parse_free_total("") == ("unknown", "unknown")


def _host_responses(docker_installed=True):
    responses = {
        preflight.CMD_DISTRO: "Ubuntu 22.04.4 LTS\n",
        preflight.CMD_KERNEL: "5.15.0-105-generic\n",
        preflight.CMD_HOSTNAME: "vps-01\n",
        preflight.CMD_PORTS: SS_OUTPUT,
        preflight.CMD_DISK: "31G|38G\n",
        preflight.CMD_MEMORY: "1.2Gi|3.8Gi\n",
        preflight.CMD_NGINX: "/usr/sbin/nginx\nnginx: configuration file /etc/nginx/nginx.conf test is successful\n",
    }
    if docker_installed:
        responses.update({
            preflight.CMD_DOCKER_VERSION: "Docker version 24.0.7, build afdd53b\n",
            preflight.CMD_COMPOSE_VERSION: "Docker Compose version v2.21.0\n",
            preflight.CMD_CONTAINERS: "old_n8n|n8nio/n8n|Up 3 days|127.0.0.1:5678->5678/tcp\n",
            preflight.CMD_NETWORKS: "bridge\nhost\nnone\n",
            preflight.CMD_VOLUMES: "n8n_data\n",
        })
    else:
        responses.update({
            preflight.CMD_DOCKER_VERSION: "not installed\n",
            preflight.CMD_COMPOSE_VERSION: "not installed\n",
        })
    return responses


class TestCollectHostFacts:
    """Test the full probe battery against a fake session."""

    @pytest.mark.asyncio
    async def test_collects_facts_with_docker(self):
        session = FakeSession(responses=_host_responses())

        facts = await collect_host_facts(session)

        assert facts.os_info.distro == "Ubuntu 22.04.4 LTS"
        assert facts.os_info.kernel == "5.15.0-105-generic"
        assert facts.os_info.hostname == "vps-01"
        assert facts.used_ports == {22, 80, 443}
        assert facts.docker.installed is True
        assert facts.docker.version == "Docker version 24.0.7, build afdd53b"
        assert facts.docker.compose_version == "Docker Compose version v2.21.0"
        assert facts.docker.containers[0].name == "old_n8n"
        assert facts.docker.networks == ("bridge", "host", "none")
        assert facts.docker.volumes == ("n8n_data",)
        assert facts.reverse_proxy.type == ProxyKind.NGINX
        assert facts.existing_services.n8n is True
        assert facts.resources.disk_free == "31G"
        assert facts.resources.memory_total == "3.8Gi"

    @pytest.mark.asyncio
    async def test_skips_inventory_without_docker(self):
        session = FakeSession(responses=_host_responses(docker_installed=False))

        facts = await collect_host_facts(session)

        assert facts.docker.installed is False
        assert facts.docker.version is None
        assert facts.docker.compose_version is None
        assert facts.docker.containers == ()
        assert facts.docker.networks == ()
        assert facts.docker.volumes == ()
        assert preflight.CMD_CONTAINERS not in session.commands
        assert preflight.CMD_NETWORKS not in session.commands
        assert preflight.CMD_VOLUMES not in session.commands

    @pytest.mark.asyncio
    async def test_channel_failure_propagates(self):
        responses = _host_responses()
        responses[preflight.CMD_KERNEL] = SSHExecutionError("transport closed")
        session = FakeSession(responses=responses)

        with pytest.raises(SSHExecutionError):
            await collect_host_facts(session)

    @pytest.mark.asyncio
    async def test_facts_are_frozen(self):
        facts = await collect_host_facts(FakeSession(responses=_host_responses()))

        with pytest.raises(ValidationError):
            facts.timestamp = "later"

    @pytest.mark.asyncio
    async def test_nested_facts_are_frozen(self):
        facts = await collect_host_facts(FakeSession(responses=_host_responses()))
        plan_before = build_plan(facts)

        with pytest.raises(ValidationError):
            facts.docker.installed = False
        with pytest.raises(ValidationError):
            facts.ports[0].port = 5432
        with pytest.raises(ValidationError):
            facts.existing_services.postgres = True
        with pytest.raises(AttributeError):
            facts.ports.append(ListeningPort(port=5432))
        with pytest.raises(AttributeError):
            facts.docker.networks.append("extra")

        assert build_plan(facts) == plan_before

    @pytest.mark.asyncio
    async def test_failure_waits_for_running_probes(self):
        finished = []

        class SlowDistroSession(FakeSession):
            def execute(self, command):
                if command == preflight.CMD_DISTRO:
                    time.sleep(0.2)
                    finished.append(command)
                return super().execute(command)

        responses = _host_responses()
        responses[preflight.CMD_KERNEL] = SSHExecutionError("transport closed")
        session = SlowDistroSession(responses=responses)

        with pytest.raises(SSHExecutionError, match="transport closed"):
            await collect_host_facts(session)

        assert finished == [preflight.CMD_DISTRO]
