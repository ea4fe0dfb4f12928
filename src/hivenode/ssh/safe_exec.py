# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hivenode/ssh/safe_exec.py

from __future__ import annotations

import logging
import time
import uuid
from typing import Optional, Tuple

from hivenode.errors import CommandTimeoutError, HiveError, SshConnectionError
from hivenode.ssh.connection import SessionPair
from hivenode.ssh.scripts import safe_command_script

log = logging.getLogger("hivenode")


class SafeCommandRunner:
    """
    Runs a command at most once even when the SSH session drops mid-run.

    The command is wrapped in a script that records ``invoked``, ``stdout``,
    ``stderr`` and ``exit`` files in a scratch folder under
    ``<exec_root>/cmd/<token>``.  A guard refuses to start the script a second
    time, and the result is collected from those files once ``exit`` appears,
    reconnecting between polls as needed.
    """

    def __init__(self, session: SessionPair, exec_root: str):
        self.session = session
        self.exec_root = exec_root.rstrip("/")

    @property
    def timing(self):
        return self.session.timing

    def _check(self, command: str) -> None:
        exit_code, _, err = self.session.exec_raw(command)
        if exit_code != 0:
            raise HiveError(f"{self.session.name}: [{command}] failed with exit code {exit_code}: {err.strip()}")

    def _probe(self) -> None:
        if not self.session.connected:
            return
        try:
            exit_code, _, _ = self.session.exec_raw("echo ping", timeout=self.timing.connect_timeout)
        except (SshConnectionError, CommandTimeoutError) as exc:
            log.debug("%s: ping failed, reconnecting: %s", self.session.name, exc)
            self.session.drop_command_session()
            return
        if exit_code != 0:
            self.session.drop_command_session()

    def _finished(self, folder: str) -> bool:
        exit_code, _, _ = self.session.exec_raw(f"if [ -f {folder}/exit ] ; then exit 0; else exit 1; fi;")
        return exit_code == 0

    def run(self, command: str, binary: bool = False) -> Tuple[int, str | bytes, str]:
        """
        Returns (exit_code, stdout, stderr); stdout is raw bytes when ``binary``.
        """
        self._probe()

        folder = f"{self.exec_root}/cmd/{uuid.uuid4()}"
        safe_ssh = self.session.safe_ssh_operation
        safe_file = self.session.safe_file_operation
        exec_timeout: Optional[float] = self.timing.exec_timeout

        safe_ssh(lambda: self._check(f"mkdir -p {folder} && chmod 770 {folder}"))

        script = safe_command_script(folder, command).encode("utf-8")
        safe_file(lambda: self.session.upload(f"{folder}/cmd.sh", script))

        started = time.monotonic()
        guard = f"if [ ! -f {folder}/invoked ] ; then bash {folder}/cmd.sh; fi;"
        # rerunning the guard after a drop cannot start the script twice
        safe_ssh(lambda: self.session.exec_raw(guard, timeout=exec_timeout))

        while not safe_ssh(lambda: self._finished(folder)):
            if exec_timeout is not None and time.monotonic() - started >= exec_timeout:
                raise CommandTimeoutError(
                    f"{self.session.name}: [{command}] did not finish within {exec_timeout}s"
                )
            time.sleep(self.timing.poll_interval)

        exit_text = safe_file(lambda: self.session.download(f"{folder}/exit")).decode("utf-8").strip()
        stdout = safe_file(lambda: self.session.download(f"{folder}/stdout"))
        stderr = safe_file(lambda: self.session.download(f"{folder}/stderr"))

        safe_ssh(lambda: self._check(f"rm -rf {folder}"))

        try:
            exit_code = int(exit_text)
        except ValueError as exc:
            raise HiveError(f"{self.session.name}: unreadable exit code [{exit_text}] for [{command}]") from exc

        err = stderr.decode("utf-8", errors="replace")
        if binary:
            return exit_code, stdout, err
        return exit_code, stdout.decode("utf-8", errors="replace"), err
