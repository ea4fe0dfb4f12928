# src/hivenode/proxy/docker.py

from __future__ import annotations

import logging
import time
from typing import Any, Optional

from hivenode.ssh.models import CommandResponse, RunOptions

log = logging.getLogger("hivenode")

# stderr fragments of registry/network hiccups worth retrying
TRANSIENT_ERRORS = ("i/o timeout", "Client.Timeout")

DOCKER_DEFAULTS = RunOptions(log_output=True, use_defaults=True)


def is_transient(response: CommandResponse) -> bool:
    return any(fragment in response.error_text for fragment in TRANSIENT_ERRORS)


class DockerMixin:

    def docker_command(self, command: str, *args: Any, options: Optional[RunOptions] = None) -> CommandResponse:
        """
        Run a Docker command as root, retrying registry timeouts.

        Transient failures are retried up to ``docker_max_attempts`` times.
        Any other failure faults the node when ``fault_on_error`` is set.
        """
        options = options or DOCKER_DEFAULTS
        max_attempts = self.timing.docker_max_attempts
        original_status = self.status
        # faulting is decided here, after the retries
        run_options = options.merged(self.default_options).with_(fault_on_error=False, use_defaults=False)

        response: Optional[CommandResponse] = None
        for attempt in range(1, max_attempts + 1):
            response = self.sudo_command(command, *args, options=run_options)
            if response.success or response.proxy_is_faulted:
                return response
            if not is_transient(response):
                break
            if attempt < max_attempts:
                self.status = f"[retry:{attempt}/{max_attempts}]: {original_status}"
                time.sleep(self.timing.docker_retry_delay)
        else:
            log.warning("%s: [%s] still failing after %d attempts", self.name, command, max_attempts)

        if options.merged(self.default_options).fault_on_error:
            self.fault(response.error_summary)
        return response
