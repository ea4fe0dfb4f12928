# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hivenode/ssh/credentials.py

from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import paramiko

_KEY_CLASSES = (
    paramiko.RSAKey,
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
)


def load_private_key(
    *,
    path: Optional[str | Path] = None,
    text: Optional[str] = None,
    passphrase: Optional[str] = None,
) -> paramiko.PKey:
    """
    Load a private key from a file or PEM text, trying each key type in turn.
    """
    last_exc: Optional[Exception] = None
    for key_cls in _KEY_CLASSES:
        try:
            if path is not None:
                return key_cls.from_private_key_file(str(path), password=passphrase)
            return key_cls.from_private_key(io.StringIO(text or ""), password=passphrase)
        except paramiko.SSHException as exc:
            last_exc = exc
            continue
    raise paramiko.SSHException(f"Unsupported or invalid private key: {last_exc}")


@dataclass(frozen=True)
class SshCredentials:
    """
    Username plus exactly one authentication method.
    """
    username: str
    password: Optional[str] = None
    pkey: Optional[paramiko.PKey] = None

    def __post_init__(self):
        if not self.username:
            raise ValueError("SSH credentials require a username.")
        if (self.password is None) == (self.pkey is None):
            raise ValueError("SSH credentials require exactly one of password or private key.")

    @classmethod
    def from_password(cls, username: str, password: str) -> "SshCredentials":
        return cls(username=username, password=password)

    @classmethod
    def from_key_file(
        cls,
        username: str,
        path: str | Path,
        passphrase: Optional[str] = None,
    ) -> "SshCredentials":
        return cls(username=username, pkey=load_private_key(path=path, passphrase=passphrase))

    @classmethod
    def from_key_text(
        cls,
        username: str,
        text: str,
        passphrase: Optional[str] = None,
    ) -> "SshCredentials":
        return cls(username=username, pkey=load_private_key(text=text, passphrase=passphrase))

    def connect_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``paramiko.SSHClient.connect``."""
        return {
            "username": self.username,
            "password": self.password,
            "pkey": self.pkey,
            "allow_agent": False,
            "look_for_keys": False,
        }

    def __repr__(self) -> str:
        method = "password" if self.password is not None else "pkey"
        return f"SshCredentials(username={self.username!r}, method={method})"
