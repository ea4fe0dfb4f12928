# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hivenode/proxy/boot.py

from __future__ import annotations

import logging
import time
from typing import Optional

from hivenode.errors import CommandTimeoutError, HiveError, SshAuthenticationError, SshConnectionError
from hivenode.observers.events import NodeRebooted
from hivenode.ssh.models import RunOptions

log = logging.getLogger("hivenode")

_POWER = RunOptions(shutdown=True, run_when_faulted=True)


class BootMixin:
    """
    Reboot, shutdown and boot detection for ``NodeProxy``.

    Before a reboot a marker is written to the node's tmpfs folder.  The node
    counts as rebooted only once a fresh connection finds the marker gone,
    which proves the filesystem was remounted and not just that sshd
    restarted.
    """

    @property
    def reboot_marker(self) -> str:
        return f"{self.tmpfs_root}/rebooting"

    def reboot(self, wait: bool = True) -> None:
        self.status = "rebooting..."
        started = time.monotonic()
        try:
            self.sudo_command(
                f"mkdir -p {self.tmpfs_root} && touch {self.reboot_marker}",
                options=RunOptions(run_when_faulted=True),
            )
            self.sudo_command("reboot", options=_POWER)
        except (SshConnectionError, CommandTimeoutError) as exc:
            # expected: the node usually drops the connection mid-command
            log.debug("%s: connection lost while rebooting: %s", self.name, exc)

        self.disconnect()
        time.sleep(self.timing.reboot_grace)

        if wait:
            self.wait_for_boot()
            self.bus.emit(NodeRebooted(**self._ctx(), node=self.name, elapsed_s=round(time.monotonic() - started, 1)))

    def wait_for_boot(self, timeout: Optional[float] = None) -> None:
        """
        Poll until the node is reachable and the reboot marker is gone.

        Authentication failures are raised immediately.  Other connection
        errors are retried until ``timeout`` and then the last one is raised.
        """
        timeout = timeout if timeout is not None else self.timing.boot_timeout
        deadline = time.monotonic() + timeout
        marker = self.reboot_marker
        test = f"if [ -f {marker} ] ; then exit 0; else exit 1; fi"
        last_error: Optional[Exception] = None

        while True:
            try:
                exit_code, _, _ = self.session.exec_fresh(test, attempts=1)
            except SshAuthenticationError:
                raise
            except (SshConnectionError, CommandTimeoutError) as exc:
                last_error = exc
                log.debug("%s: waiting for boot: %s", self.name, exc)
            else:
                if exit_code != 0:
                    self.status = "online"
                    self.is_ready = True
                    return

                # marker still there: the reboot was lost, so send it again
                last_error = None
                try:
                    self.session.exec_fresh("sudo reboot", attempts=1)
                except (SshConnectionError, CommandTimeoutError) as exc:
                    log.debug("%s: connection lost re-sending reboot: %s", self.name, exc)

            if time.monotonic() >= deadline:
                if last_error is not None:
                    raise last_error
                raise HiveError(f"Node [{self.name}] did not reboot within {timeout}s.")
            time.sleep(self.timing.poll_interval)

    def connect(self, timeout: Optional[float] = None) -> None:
        """
        Verify the node is reachable, waiting up to ``timeout`` seconds.
        """
        timeout = timeout if timeout is not None else self.timing.boot_timeout
        try:
            self.wait_for_boot(timeout)
        except SshAuthenticationError:
            raise
        except HiveError as exc:
            raise SshConnectionError(f"Unable to connect to [{self.name}] within {timeout}s.") from exc

    def shutdown(self) -> None:
        self.status = "shutting down..."
        try:
            self.sudo_command("shutdown -h 0", options=_POWER)
        except (SshConnectionError, CommandTimeoutError) as exc:
            log.debug("%s: connection lost while shutting down: %s", self.name, exc)

        self.disconnect()
        time.sleep(self.timing.reboot_grace)
        self.status = "stopped"
