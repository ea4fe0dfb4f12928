# src/hivenode/observers/logger.py
from __future__ import annotations

import logging

from .events import BaseEvent, CommandCompleted, NodeFaulted, NodeRebooted, NodeStatusChanged


def describe(event: BaseEvent) -> str:
    """One log line per hive event, keyed by node."""
    if isinstance(event, NodeStatusChanged):
        return f"[{event.node}] status: {event.status}"
    if isinstance(event, NodeFaulted):
        return f"[{event.node}] FAULTED: {event.message or 'no details'}"
    if isinstance(event, NodeRebooted):
        return f"[{event.node}] rebooted in {event.elapsed_s:.1f}s"
    if isinstance(event, CommandCompleted):
        outcome = "ok" if event.exit_code == 0 else f"exit={event.exit_code}"
        return f"[{event.node}] {outcome}: {event.command}"
    fields = ", ".join(f"{k}={v}" for k, v in event.dict().items() if k not in ("ts", "run_id", "hive"))
    return f"{event.__class__.__name__}: {fields}"


class LoggerObserver:
    """Writes hive events to a logger; faults at WARNING, commands at DEBUG."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        if isinstance(event, NodeFaulted):
            level = logging.WARNING
        elif isinstance(event, CommandCompleted):
            level = logging.DEBUG
        else:
            level = logging.INFO
        self.logger.log(level, "%s/%s %s", event.hive, event.run_id[:8], describe(event))
