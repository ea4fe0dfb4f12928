# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hivenode/errors.py
from __future__ import annotations

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from hivenode.ssh.models import CommandResponse


class HiveError(RuntimeError):
    """Base class for hive node failures."""


class SshConnectionError(HiveError):
    """Raised when the remote-shell transport cannot be established or drops."""


class SshAuthenticationError(HiveError):
    """Raised when the node rejects our credentials.  Never retried."""


class NodeDisposedError(HiveError):
    """Raised when a closed node proxy is used."""


class CommandTimeoutError(HiveError, TimeoutError):
    """Raised when a remote command does not finish within the exec timeout."""


class InvalidCommandError(HiveError, ValueError):
    """Raised for commands rejected before any remote interaction."""


class BundleError(HiveError, ValueError):
    """Raised when a command bundle is malformed."""


class RemoteCommandError(HiveError):
    """
    Raised when a command exits non-zero and the caller asked for
    fault-on-error semantics.
    """

    def __init__(self, message: str, response: Optional["CommandResponse"] = None):
        super().__init__(message)
        self.response = response
