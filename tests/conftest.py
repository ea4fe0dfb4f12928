import os
import stat
import subprocess
import threading
import time
import types
from pathlib import Path

import paramiko
import pytest

from hivenode.config.models import HostFolders, TimingSpec
from hivenode.proxy.node import NodeProxy
from hivenode.ssh.credentials import SshCredentials
from hivenode.ssh.gate import ConnectGate

# ----------------- Shim commands for the fake node -----------------

SHIMS = {
    # drop the user switch and run the command as ourselves
    "sudo": """#!/bin/bash
while [ $# -gt 0 ]; do
  case "$1" in
    -u) shift 2 ;;
    -S|-n|-E|-H) shift ;;
    *) break ;;
  esac
done
exec "$@"
""",
    "reboot": """#!/bin/bash
echo reboot >> "$FAKE_ROOT/reboots"
if [ "$FAKE_REBOOT_CLEARS" = "1" ]; then rm -rf "$FAKE_TMPFS"; fi
""",
    "shutdown": """#!/bin/bash
echo "shutdown $*" >> "$FAKE_ROOT/shutdowns"
""",
    "docker": """#!/bin/bash
n=$(cat "$FAKE_ROOT/docker-count" 2>/dev/null || echo 0)
n=$((n+1))
echo $n > "$FAKE_ROOT/docker-count"
if [ "$n" -le "$FAKE_DOCKER_FAILS" ]; then
  echo "$FAKE_DOCKER_ERROR" >&2
  exit 1
fi
echo "docker $*"
""",
    "ip": """#!/bin/bash
echo "1: lo    inet 127.0.0.1/8 scope host lo\\       valid_lft forever preferred_lft forever"
echo "2: eth0    inet 10.0.0.11/24 brd 10.0.0.255 scope global eth0\\       valid_lft forever preferred_lft forever"
echo "2: eth0    inet6 fe80::1/64 scope link \\       valid_lft forever preferred_lft forever"
""",
}


class FakeHost:
    """
    A pretend node: commands run in local bash, files live under ``root``.
    Shared by every fake client opened against it.
    """

    def __init__(self, root: Path):
        self.root = root
        self.bin = root / "bin"
        self.bin.mkdir(parents=True)
        for name, text in SHIMS.items():
            p = self.bin / name
            p.write_text(text)
            p.chmod(p.stat().st_mode | stat.S_IEXEC | stat.S_IXGRP | stat.S_IXOTH)

        self.folders = HostFolders(
            home_root=str(root / "home"),
            state=str(root / "state"),
            tmpfs=str(root / "shm"),
            tools=str(root / "tools"),
        )
        self.remote_path = f"{self.bin}:{os.environ.get('PATH', '/usr/bin:/bin')}"

        self.commands = []
        self.connects = []
        self.sftp_timeouts = []
        self.keepalives = []
        self.fail_connects = 0
        self.auth_fail = False
        self.drop_when = None            # predicate(cmd) -> drop the connection after running cmd
        self.reject_when = None          # predicate(cmd) -> drop the connection before running cmd
        self.reboot_clears = True
        self.docker_fails = 0
        self.docker_error = "dial tcp 10.0.0.1:443: i/o timeout"

        self.connect_delay = 0.0
        self._lock = threading.Lock()
        self.in_flight = 0
        self.max_in_flight = 0

    def env(self):
        env = dict(os.environ)
        env.update({
            "PATH": self.remote_path,
            "FAKE_ROOT": str(self.root),
            "FAKE_TMPFS": str(self.root / "shm"),
            "FAKE_REBOOT_CLEARS": "1" if self.reboot_clears else "0",
            "FAKE_DOCKER_FAILS": str(self.docker_fails),
            "FAKE_DOCKER_ERROR": self.docker_error,
        })
        return env

    def count_lines(self, name):
        p = self.root / name
        return len(p.read_text().splitlines()) if p.exists() else 0


# ----------------- Fakes for Paramiko -----------------

class _Buf:
    def __init__(self, data: bytes, rc=0):
        self._data = data
        self.channel = types.SimpleNamespace(recv_exit_status=lambda: rc)

    def read(self):
        return self._data


class FakeTransport:
    def __init__(self, client):
        self.client = client

    def is_active(self):
        return self.client.active

    def set_keepalive(self, interval):
        self.client.host.keepalives.append(interval)


class FakeChannel:
    def __init__(self, host):
        self.host = host

    def settimeout(self, timeout):
        self.host.sftp_timeouts.append(timeout)


class FakeSFTP:
    def __init__(self, client):
        self.client = client

    def putfo(self, fl, remotepath):
        if not self.client.active:
            raise paramiko.SSHException("sftp session closed")
        Path(remotepath).write_bytes(fl.read())

    def getfo(self, remotepath, fl):
        if not self.client.active:
            raise paramiko.SSHException("sftp session closed")
        fl.write(Path(remotepath).read_bytes())

    def get_channel(self):
        return FakeChannel(self.client.host)

    def close(self):
        pass


class FakeSSHClient:
    def __init__(self, host: FakeHost):
        self.host = host
        self.active = False

    def set_missing_host_key_policy(self, policy):
        pass

    def connect(self, **kw):
        host = self.host
        with host._lock:
            host.in_flight += 1
            host.max_in_flight = max(host.max_in_flight, host.in_flight)
        try:
            if host.connect_delay:
                threading.Event().wait(host.connect_delay)
            host.connects.append(kw)
            if host.auth_fail:
                raise paramiko.AuthenticationException("Authentication failed.")
            if host.fail_connects > 0:
                host.fail_connects -= 1
                raise paramiko.SSHException("Error reading SSH protocol banner")
            self.active = True
        finally:
            with host._lock:
                host.in_flight -= 1

    def get_transport(self):
        return FakeTransport(self) if self.active else None

    def open_sftp(self):
        return FakeSFTP(self)

    def exec_command(self, command, timeout=None):
        if not self.active:
            raise paramiko.SSHException("SSH session not active")
        self.host.commands.append(command)
        if self.host.reject_when is not None and self.host.reject_when(command):
            self.active = False
            raise paramiko.SSHException("Connection reset by peer")
        cp = subprocess.run(
            ["bash", "-c", command],
            capture_output=True,
            env=self.host.env(),
            cwd=str(self.host.root),
        )
        if self.host.drop_when is not None and self.host.drop_when(command):
            self.active = False
            raise paramiko.SSHException("Connection reset by peer")
        stdin = types.SimpleNamespace(write=lambda *a, **k: None, flush=lambda: None)
        return stdin, _Buf(cp.stdout, cp.returncode), _Buf(cp.stderr)

    def close(self):
        self.active = False


# ----------------- Fixtures -----------------

FAST_TIMING = TimingSpec(
    retry_count=3,
    retry_delay=0,
    connect_attempts=3,
    connect_delay=0,
    poll_interval=0,
    reboot_grace=0,
    docker_retry_delay=0,
    teardown_timeout=5,
)


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda s: None)


@pytest.fixture
def fake_host(tmp_path, monkeypatch, no_sleep):
    host = FakeHost(tmp_path / "node")
    monkeypatch.setattr(paramiko, "SSHClient", lambda: FakeSSHClient(host))
    return host


@pytest.fixture
def credentials():
    return SshCredentials.from_password("hive", "secret")


@pytest.fixture
def make_node(fake_host, credentials):
    created = []

    def _make(**kw):
        params = dict(
            credentials=credentials,
            timing=FAST_TIMING,
            folders=fake_host.folders,
            remote_path=fake_host.remote_path,
            gate=ConnectGate(),
        )
        params.update(kw)
        node = NodeProxy("node-1", "10.0.0.11", **params)
        created.append(node)
        return node

    yield _make
    for node in created:
        node.close()


@pytest.fixture
def node(make_node, fake_host):
    n = make_node()
    Path(n.exec_root).mkdir(parents=True)
    return n


@pytest.fixture
def timing():
    return FAST_TIMING
