# src/hivenode/proxy/ledger.py

from __future__ import annotations

import re
from typing import Any, Callable, Optional

from hivenode.errors import InvalidCommandError
from hivenode.ssh.models import NONE, CommandResponse, RunOptions

_ACTION_ID = re.compile(r"[A-Za-z0-9.\-/]+")


def split_action_id(action_id: str):
    """
    Returns (subfolder, marker) for an action ID like ``setup/docker/install``.
    """
    if not action_id or not _ACTION_ID.fullmatch(action_id):
        raise InvalidCommandError(f"Invalid idempotent action ID [{action_id}].")
    parts = action_id.split("/")
    if any(part in ("", ".", "..") for part in parts):
        raise InvalidCommandError(f"Invalid idempotent action ID [{action_id}].")
    return "/".join(parts[:-1]), parts[-1]


class LedgerMixin:
    """Marker files under the state folder recording actions already performed."""

    def invoke_idempotent_action(self, action_id: str, action: Callable[[], Any]) -> bool:
        """
        Run ``action`` unless it already completed on this node.

        Returns True when the action ran.  The marker is only written when
        the action left the node unfaulted.
        """
        subfolder, marker = split_action_id(action_id)
        folder = f"{self.state_root}/{subfolder}" if subfolder else self.state_root
        path = f"{folder}/{marker}"

        self.sudo_command(f"mkdir -p {folder}", options=NONE | RunOptions(fault_on_error=True))
        if self.file_exists(path):
            return False

        action()

        if not self.is_faulted:
            self.sudo_command(f"touch {path}", options=NONE | RunOptions(fault_on_error=True))
        return True

    def idempotent_docker_command(
        self,
        action_id: str,
        post_action: Optional[Callable[[CommandResponse], Any]],
        command: str,
        *args: Any,
        options: Optional[RunOptions] = None,
    ) -> bool:
        """
        Run a Docker command once per node, handing its response to
        ``post_action`` when it succeeds.
        """

        def action() -> None:
            response = self.docker_command(command, *args, options=options)
            if response.success and post_action is not None:
                post_action(response)

        return self.invoke_idempotent_action(action_id, action)
