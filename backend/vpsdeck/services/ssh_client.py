from __future__ import annotations

import io
import logging
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import paramiko

from vpsdeck.config import Settings, require_ssh_credentials


logger = logging.getLogger(__name__)

_KEY_CLASSES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)
_RECV_CHUNK = 32768
_POLL_INTERVAL = 0.01


class SSHConnectionError(ConnectionError):
    """The remote session could not be established."""


class SSHExecutionError(RuntimeError):
    """A command or upload failed at the channel level."""


def _load_private_key(key_text: str) -> paramiko.PKey:
    for key_cls in _KEY_CLASSES:
        try:
            return key_cls.from_private_key(io.StringIO(key_text))
        except (paramiko.SSHException, ValueError):
            continue
    raise SSHConnectionError("Unsupported or malformed SSH private key")


def _drain(channel: paramiko.Channel) -> tuple[str, str]:
    """Read stdout and stderr together until the command exits.

    Both streams share one flow-control window, so reading them one after
    the other can stall once the unread stream fills it.
    """
    out: list[bytes] = []
    err: list[bytes] = []
    while True:
        progressed = False
        if channel.recv_ready():
            out.append(channel.recv(_RECV_CHUNK))
            progressed = True
        if channel.recv_stderr_ready():
            err.append(channel.recv_stderr(_RECV_CHUNK))
            progressed = True
        if progressed:
            continue
        if channel.exit_status_ready():
            break
        time.sleep(_POLL_INTERVAL)
    return b"".join(out).decode(errors="replace"), b"".join(err).decode(errors="replace")


class SSHSession:
    """One authenticated SSH connection to the VPS.

    Sessions are never pooled: open one per operation and close it when done.
    Paramiko multiplexes channels over a single transport, so ``execute`` is
    safe to call from several threads at once.
    """

    def __init__(self, client: paramiko.SSHClient, host: str, log_commands: bool = True):
        self._client = client
        self.host = host
        self.log_commands = log_commands
        self._closed = False
        self._lock = threading.Lock()

    @classmethod
    def connect(
        cls,
        host: str,
        username: str,
        credential: str,
        *,
        port: int = 22,
        known_hosts: str | None = None,
        accept_unknown_hosts: bool = False,
        timeout: float | None = None,
        log_commands: bool = True,
    ) -> "SSHSession":
        client = paramiko.SSHClient()

        known_hosts_paths = [
            Path.home() / ".ssh" / "known_hosts",
            Path("/etc/ssh/ssh_known_hosts"),
        ]
        if known_hosts:
            known_hosts_paths.insert(0, Path(known_hosts).expanduser())

        for kh_path in known_hosts_paths:
            if kh_path.exists():
                try:
                    client.load_host_keys(str(kh_path))
                    logger.info(f"Loaded SSH known_hosts from {kh_path}")
                    break
                except (OSError, paramiko.SSHException) as e:
                    logger.warning(f"Failed to load known_hosts from {kh_path}: {e}")

        if accept_unknown_hosts:
            logger.warning("Accepting unknown SSH host keys for %s", host)
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.RejectPolicy())

        connect_kwargs: dict = {
            "hostname": host,
            "port": port,
            "username": username,
            "timeout": timeout,
            "allow_agent": False,
            "look_for_keys": False,
        }
        if "PRIVATE KEY" in credential:
            connect_kwargs["pkey"] = _load_private_key(credential)
        else:
            connect_kwargs["key_filename"] = credential

        try:
            client.connect(**connect_kwargs)
        except paramiko.SSHException as e:
            client.close()
            if "not found in known_hosts" in str(e).lower() or "host key" in str(e).lower():
                raise SSHConnectionError(
                    f"SSH host key verification failed for {host}. "
                    f"Add the host key to known_hosts: ssh-keyscan -H {host} >> ~/.ssh/known_hosts"
                ) from e
            raise SSHConnectionError(f"SSH connection to {host} failed: {e}") from e
        except OSError as e:
            client.close()
            raise SSHConnectionError(f"SSH connection to {host} failed: {e}") from e

        logger.info("SSH session opened to %s@%s:%d", username, host, port)
        return cls(client, host, log_commands=log_commands)

    def execute(self, command: str) -> str:
        """Run a command and return stdout followed by stderr.

        A non-zero exit status is not an error here; commands signal failure
        through their own ``|| echo ...`` fallbacks.
        """
        if self.log_commands:
            logger.debug("SSH exec: %s", command)
        try:
            _, stdout, _ = self._client.exec_command(command)
            out, err = _drain(stdout.channel)
            exit_code = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise SSHExecutionError(f"Command dispatch failed on {self.host}: {e}") from e
        if exit_code != 0:
            logger.debug("Command exited %d: %s", exit_code, command)
        return out + err

    def upload(self, content: str, remote_path: str) -> None:
        if self.log_commands:
            logger.debug("SFTP upload: %s (%d bytes)", remote_path, len(content))
        try:
            sftp = self._client.open_sftp()
            try:
                with sftp.open(remote_path, "w") as remote_file:
                    remote_file.write(content.encode())
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as e:
            raise SSHExecutionError(f"Upload of {remote_path} failed: {e}") from e

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._client.close()
        except Exception as e:  # noqa: BLE001
            logger.warning("Error while closing SSH session to %s: %s", self.host, e)
        logger.info("SSH session to %s closed", self.host)

    @property
    def closed(self) -> bool:
        return self._closed


def connect_from_settings(settings: Settings) -> SSHSession:
    require_ssh_credentials(settings)
    return SSHSession.connect(
        settings.vps_host,
        settings.vps_user,
        settings.ssh_credential,
        port=settings.vps_port,
        known_hosts=settings.ssh_known_hosts,
        accept_unknown_hosts=settings.ssh_accept_unknown_hosts,
        timeout=settings.ssh_timeout,
        log_commands=settings.log_ssh_commands,
    )


@contextmanager
def open_session(settings: Settings) -> Iterator[SSHSession]:
    """Open a fresh session and close it on every exit path."""
    session = connect_from_settings(settings)
    try:
        yield session
    finally:
        session.close()
