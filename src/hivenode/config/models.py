# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hivenode/config/models.py

from __future__ import annotations

import ipaddress
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from hivenode.ssh.credentials import SshCredentials

DEFAULT_REMOTE_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"


class CredentialsSpec(BaseModel):
    """SSH login for the hive's sudo-capable admin account."""

    username: str
    password: Optional[str] = None
    private_key_path: Optional[Path] = None
    private_key: Optional[str] = None          # PEM text, usually from secrets.yaml
    passphrase: Optional[str] = None

    @model_validator(mode="after")
    def _one_method(self) -> "CredentialsSpec":
        methods = [m for m in (self.password, self.private_key_path, self.private_key) if m]
        if len(methods) != 1:
            raise ValueError("credentials need exactly one of password, private_key_path or private_key")
        return self

    def to_credentials(self) -> SshCredentials:
        if self.password:
            return SshCredentials.from_password(self.username, self.password)
        if self.private_key_path:
            return SshCredentials.from_key_file(self.username, self.private_key_path, self.passphrase)
        return SshCredentials.from_key_text(self.username, self.private_key or "", self.passphrase)


class TimingSpec(BaseModel):
    """Timeouts, retry budgets and poll intervals (seconds)."""

    connect_timeout: float = 5.0
    file_timeout: float = 30.0
    retry_count: int = Field(default=10, ge=0)
    retry_delay: float = 5.0
    connect_attempts: int = Field(default=10, ge=1)
    connect_delay: float = 5.0
    keepalive: int = 15
    poll_interval: float = 5.0
    exec_timeout: Optional[float] = None       # None = wait for the command indefinitely
    teardown_timeout: float = 30.0
    reboot_grace: float = 10.0
    boot_timeout: float = 600.0
    docker_max_attempts: int = Field(default=10, ge=1)
    docker_retry_delay: float = 15.0


class HostFolders(BaseModel):
    """
    Remote folder layout.  ``{home}`` expands to the login user's home.
    """

    home_root: str = "/home"
    exec_root: str = "{home}/.exec"
    upload: str = "{home}/.upload"
    download: str = "{home}/.download"
    state: str = "/var/local/hive"
    tmpfs: str = "/dev/shm/hive"
    tools: str = "/lib/hive/tools"

    def home(self, username: str) -> str:
        return f"{self.home_root.rstrip('/')}/{username}"

    def resolve(self, folder: str, username: str) -> str:
        return getattr(self, folder).format(home=self.home(username)).rstrip("/")


class NodeSpec(BaseModel):
    name: str
    private_address: str
    public_address: Optional[str] = None
    port: int = 22
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("private_address")
    @classmethod
    def _ip(cls, v: str) -> str:
        return str(ipaddress.ip_address(v))


class HiveConfig(BaseModel):
    name: str = "hive"
    use_public_address: bool = False
    remote_path: str = DEFAULT_REMOTE_PATH
    log_dir: Optional[Path] = None
    credentials: CredentialsSpec
    timing: TimingSpec = Field(default_factory=TimingSpec)
    folders: HostFolders = Field(default_factory=HostFolders)
    nodes: List[NodeSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_names(self) -> "HiveConfig":
        seen = set()
        for node in self.nodes:
            key = node.name.lower()
            if key in seen:
                raise ValueError(f"duplicate node name: {node.name}")
            seen.add(key)
        return self

    def by_name(self) -> Dict[str, NodeSpec]:
        return {n.name: n for n in self.nodes}
