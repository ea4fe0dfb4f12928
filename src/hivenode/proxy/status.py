# src/hivenode/proxy/status.py

from __future__ import annotations

import threading
from typing import Optional

from hivenode.logging.node_log import NodeLog
from hivenode.observers.dispatcher import EventBus
from hivenode.observers.events import NodeFaulted, NodeStatusChanged, new_ctx

FAULTED_STATUS = "*** FAULTED ***"


class NodeState:
    """
    Status line and fault flag for one node proxy.

    Faulted is terminal: once set it stays set for the life of the proxy.
    """

    def __init__(self, node: str, node_log: NodeLog, bus: EventBus, hive: str = "hive", run_id: Optional[str] = None):
        self.node = node
        self.node_log = node_log
        self.bus = bus
        self.hive = hive
        self.run_id = run_id
        self._lock = threading.Lock()
        self._status = ""
        self._ready = False
        self._faulted = False
        self._fault_message: Optional[str] = None

    def _ctx(self):
        return new_ctx(self.hive, self.run_id)

    @property
    def status(self) -> str:
        with self._lock:
            if self._faulted:
                if self._fault_message:
                    return f"*** FAULT: {self._fault_message}"
                return FAULTED_STATUS
            return self._status.splitlines()[0] if self._status else ""

    @status.setter
    def status(self, value: str) -> None:
        value = value or ""
        with self._lock:
            changed = value != self._status
            self._status = value
        if changed and value:
            self.node_log.log_line(f"*** STATUS: {value}")
            self.bus.emit(NodeStatusChanged(**self._ctx(), node=self.node, status=value))

    @property
    def is_faulted(self) -> bool:
        return self._faulted

    @property
    def fault_message(self) -> Optional[str]:
        return self._fault_message

    @property
    def is_ready(self) -> bool:
        # Faulted nodes count as ready so callers waiting on a fleet stop waiting.
        return self._faulted or self._ready

    @is_ready.setter
    def is_ready(self, value: bool) -> None:
        self._ready = value

    def fault(self, message: Optional[str] = None) -> None:
        with self._lock:
            self._faulted = True
            if message:
                self._fault_message = message

        if message:
            self.node_log.log_line(f"*** ERROR: {message}")
        else:
            self.node_log.log_line("*** ERROR: Unspecified FAULT")
        self.bus.emit(NodeFaulted(**self._ctx(), node=self.node, message=message))
