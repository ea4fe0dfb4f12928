# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hivenode/ssh/models.py

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Optional

from hivenode.errors import RemoteCommandError


@dataclass(frozen=True)
class RunOptions:
    """
    Controls how a single remote command is executed and logged.

    Options combine with ``|``.  ``use_defaults`` asks the proxy to merge its
    ``default_options`` into the options passed.
    """

    sudo: bool = False
    use_defaults: bool = False
    fault_on_error: bool = False
    run_when_faulted: bool = False
    binary_output: bool = False
    redact: bool = False
    log_on_error_only: bool = False
    log_output: bool = False
    ignore_remote_path: bool = False
    shutdown: bool = False
    log_bundle: bool = False    # internal: the bundle runner already logged START

    def __or__(self, other: "RunOptions") -> "RunOptions":
        if not isinstance(other, RunOptions):
            return NotImplemented
        return RunOptions(**{
            f.name: getattr(self, f.name) or getattr(other, f.name)
            for f in fields(self)
        })

    def merged(self, defaults: "RunOptions") -> "RunOptions":
        """Returns these options with ``defaults`` ORed in when requested."""
        if not self.use_defaults:
            return self
        return self | defaults

    def with_(self, **changes) -> "RunOptions":
        return replace(self, **changes)


NONE = RunOptions()
DEFAULTS = RunOptions(use_defaults=True)


@dataclass(frozen=True)
class CommandResponse:
    """
    The result of a remote command.
    """
    command: str = ""
    bash_command: str = ""
    exit_code: int = 0
    output_text: Optional[str] = None
    output_binary: Optional[bytes] = None
    error_text: str = ""
    proxy_is_faulted: bool = False

    def __post_init__(self):
        if self.output_text is not None and self.output_binary is not None:
            raise ValueError("A response cannot carry both text and binary output.")

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def all_text(self) -> str:
        out = self.output_text or ""
        if self.output_binary is not None:
            out = f"[binary output length={len(self.output_binary)}]"
        return out + self.error_text

    @property
    def error_summary(self) -> str:
        # First non-blank stderr line, falling back to stdout.
        for text in (self.error_text, self.output_text or ""):
            for line in text.splitlines():
                if line.strip():
                    return f"[exitcode={self.exit_code}]: {line.strip()}"
        return f"[exitcode={self.exit_code}]"

    def ensure_success(self) -> "CommandResponse":
        if self.exit_code != 0:
            raise RemoteCommandError(self.error_summary, response=self)
        return self
