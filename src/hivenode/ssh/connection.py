# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hivenode/ssh/connection.py

from __future__ import annotations

import io
import logging
import socket
import threading
from typing import Callable, Optional, Tuple, TypeVar

import paramiko

from hivenode.config.models import TimingSpec
from hivenode.errors import CommandTimeoutError, SshAuthenticationError, SshConnectionError
from hivenode.ssh.credentials import SshCredentials
from hivenode.ssh.gate import DEFAULT_GATE, ConnectGate
from hivenode.utils.retry import retry_call

log = logging.getLogger("hivenode")

T = TypeVar("T")

CIPHER = "aes256-ctr"

# Errors that mean the transport is gone rather than the command failing.
TRANSPORT_ERRORS = (paramiko.SSHException, OSError, EOFError)


def _disabled_ciphers() -> dict:
    return {"ciphers": [c for c in paramiko.Transport._preferred_ciphers if c != CIPHER]}


def _is_active(client: Optional[paramiko.SSHClient]) -> bool:
    if client is None:
        return False
    transport = client.get_transport()
    return transport is not None and transport.is_active()


def _close_quietly(what: str, closeable) -> None:
    if closeable is None:
        return
    try:
        closeable.close()
    except Exception as exc:
        # nothing useful to do with a failed close; the peer is gone anyway
        log.debug("closing %s failed: %s", what, exc)


class SessionPair:
    """
    Owns the two SSH connections to a node: one for commands and one for
    SFTP transfers.  Both are opened lazily and reopened on demand after a
    transport failure.
    """

    def __init__(
        self,
        name: str,
        credentials: SshCredentials,
        endpoint: Callable[[], Tuple[str, int]],
        *,
        timing: Optional[TimingSpec] = None,
        gate: ConnectGate = DEFAULT_GATE,
    ):
        self.name = name
        self.credentials = credentials
        self.timing = timing or TimingSpec()
        self.gate = gate
        self._endpoint = endpoint
        self._lock = threading.RLock()
        self._ssh: Optional[paramiko.SSHClient] = None
        self._sftp_client: Optional[paramiko.SSHClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None

    @property
    def endpoint(self) -> Tuple[str, int]:
        """The (address, port) to connect to, resolved on every connect."""
        return self._endpoint()

    # ------------------ connecting ------------------

    def _connect_once(self, timeout: float) -> paramiko.SSHClient:
        address, port = self.endpoint
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        with self.gate.acquire(address):
            try:
                client.connect(
                    hostname=address,
                    port=port,
                    timeout=timeout,
                    banner_timeout=timeout,
                    auth_timeout=timeout,
                    disabled_algorithms=_disabled_ciphers(),
                    **self.credentials.connect_kwargs(),
                )
            except paramiko.AuthenticationException as exc:
                _close_quietly("ssh client", client)
                raise SshAuthenticationError(
                    f"{self.name}: authentication failed for [{self.credentials.username}@{address}]: {exc}"
                ) from exc
            except TRANSPORT_ERRORS as exc:
                _close_quietly("ssh client", client)
                raise SshConnectionError(f"{self.name}: cannot connect to [{address}:{port}]: {exc}") from exc

        transport = client.get_transport()
        if transport is not None:
            transport.set_keepalive(self.timing.keepalive)
        return client

    def open_client(self, timeout: Optional[float] = None, attempts: Optional[int] = None) -> paramiko.SSHClient:
        """
        Open a new connected client.  Authentication failures are raised
        immediately; other connect failures are retried.
        """
        timeout = timeout if timeout is not None else self.timing.connect_timeout
        attempts = attempts if attempts is not None else self.timing.connect_attempts

        def on_retry(attempt: int, exc: Exception) -> None:
            log.debug("%s: connect attempt %d/%d failed: %s", self.name, attempt, attempts, exc)

        return retry_call(
            lambda: self._connect_once(timeout),
            retries=attempts,
            delay=self.timing.connect_delay,
            retry_on=(SshConnectionError,),
            on_retry=on_retry,
        )

    def ensure_command_session(self) -> paramiko.SSHClient:
        with self._lock:
            if not _is_active(self._ssh):
                _close_quietly("command session", self._ssh)
                self._ssh = None
                self._ssh = self.open_client()
            return self._ssh

    def ensure_file_session(self) -> paramiko.SFTPClient:
        with self._lock:
            if self._sftp is None or not _is_active(self._sftp_client):
                self.drop_file_session()
                client = self.open_client(timeout=self.timing.file_timeout)
                try:
                    sftp = client.open_sftp()
                    # bounds each transfer read/write
                    sftp.get_channel().settimeout(self.timing.file_timeout)
                except TRANSPORT_ERRORS as exc:
                    _close_quietly("file session", client)
                    raise SshConnectionError(f"{self.name}: cannot open SFTP session: {exc}") from exc
                self._sftp_client = client
                self._sftp = sftp
            return self._sftp

    @property
    def connected(self) -> bool:
        return _is_active(self._ssh)

    # ------------------ disconnecting ------------------

    def drop_command_session(self) -> None:
        with self._lock:
            client, self._ssh = self._ssh, None
        _close_quietly("command session", client)

    def drop_file_session(self) -> None:
        with self._lock:
            sftp, self._sftp = self._sftp, None
            client, self._sftp_client = self._sftp_client, None
        _close_quietly("sftp", sftp)
        _close_quietly("file session", client)

    def disconnect(self) -> None:
        """
        Close both sessions.  paramiko can hang closing a transport whose
        peer vanished, so teardown runs on a daemon thread and is abandoned
        after ``teardown_timeout``.
        """
        with self._lock:
            ssh, self._ssh = self._ssh, None
            sftp, self._sftp = self._sftp, None
            sftp_client, self._sftp_client = self._sftp_client, None

        if ssh is None and sftp is None and sftp_client is None:
            return

        def teardown() -> None:
            _close_quietly("sftp", sftp)
            _close_quietly("file session", sftp_client)
            _close_quietly("command session", ssh)

        worker = threading.Thread(target=teardown, name=f"teardown-{self.name}", daemon=True)
        worker.start()
        worker.join(self.timing.teardown_timeout)
        if worker.is_alive():
            log.warning("%s: SSH teardown did not finish in %.0fs, abandoning it", self.name, self.timing.teardown_timeout)

    # ------------------ primitives ------------------

    def _exec_on(
        self,
        client: paramiko.SSHClient,
        command: str,
        timeout: Optional[float],
    ) -> Tuple[int, bytes, str]:
        try:
            _stdin, stdout, stderr = client.exec_command(command, timeout=timeout)
            out = stdout.read()
            err = stderr.read().decode("utf-8", errors="replace")
            exit_code = stdout.channel.recv_exit_status()
        except socket.timeout as exc:
            raise CommandTimeoutError(f"{self.name}: [{command}] timed out after {timeout}s") from exc
        except TRANSPORT_ERRORS as exc:
            raise SshConnectionError(f"{self.name}: SSH session failed: {exc}") from exc

        if exit_code == -1:
            # paramiko reports -1 when the channel closed without an exit status
            raise SshConnectionError(f"{self.name}: connection dropped while running a command")
        return exit_code, out, err

    def exec_raw(
        self,
        command: str,
        *,
        binary: bool = False,
        timeout: Optional[float] = None,
    ) -> Tuple[int, str | bytes, str]:
        """
        Run ``command`` on the command session and wait for it.

        Returns (exit_code, stdout, stderr); stdout is bytes when ``binary``.
        """
        client = self.ensure_command_session()
        try:
            exit_code, out, err = self._exec_on(client, command, timeout)
        except (SshConnectionError, CommandTimeoutError):
            self.drop_command_session()
            raise

        if binary:
            return exit_code, out, err
        return exit_code, out.decode("utf-8", errors="replace"), err

    def exec_fresh(self, command: str, attempts: Optional[int] = None) -> Tuple[int, str, str]:
        """
        Run ``command`` on a throwaway connection, bypassing the command
        session and its retry machinery.  Used for reboot/shutdown and boot
        polling where the connection is expected to die.
        """
        client = self.open_client(attempts=attempts)
        try:
            exit_code, out, err = self._exec_on(client, command, None)
        finally:
            _close_quietly("ssh client", client)
        return exit_code, out.decode("utf-8", errors="replace"), err

    def upload(self, remote_path: str, data: bytes) -> None:
        sftp = self.ensure_file_session()
        try:
            sftp.putfo(io.BytesIO(data), remote_path)
        except TRANSPORT_ERRORS as exc:
            self.drop_file_session()
            raise SshConnectionError(f"{self.name}: upload to [{remote_path}] failed: {exc}") from exc

    def download(self, remote_path: str) -> bytes:
        sftp = self.ensure_file_session()
        buf = io.BytesIO()
        try:
            sftp.getfo(remote_path, buf)
        except TRANSPORT_ERRORS as exc:
            self.drop_file_session()
            raise SshConnectionError(f"{self.name}: download of [{remote_path}] failed: {exc}") from exc
        return buf.getvalue()

    # ------------------ retry wrappers ------------------

    def _safe(self, kind: str, fn: Callable[[], T]) -> T:
        retries = self.timing.retry_count + 1

        def on_retry(attempt: int, exc: Exception) -> None:
            log.debug("%s: %s operation attempt %d/%d failed: %s", self.name, kind, attempt, retries, exc)

        return retry_call(
            fn,
            retries=retries,
            delay=self.timing.retry_delay,
            retry_on=(SshConnectionError,),
            on_retry=on_retry,
        )

    def safe_ssh_operation(self, fn: Callable[[], T]) -> T:
        """
        Run ``fn`` against the command session, reconnecting and retrying on
        transport failures up to ``retry_count`` extra times.
        """
        return self._safe("ssh", fn)

    def safe_file_operation(self, fn: Callable[[], T]) -> T:
        return self._safe("file", fn)
