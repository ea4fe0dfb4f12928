# src/hivenode/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single invocation
    hive: str         # hive name

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(hive: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "run_id": run_id or str(uuid.uuid4()),
        "hive": hive,
    }


# ---------------------------------------------------------------------
# Node lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class NodeStatusChanged(BaseEvent):
    node: str
    status: str

@dataclass(frozen=True)
class NodeFaulted(BaseEvent):
    node: str
    message: Optional[str] = None

@dataclass(frozen=True)
class NodeRebooted(BaseEvent):
    node: str
    elapsed_s: float

@dataclass(frozen=True)
class CommandCompleted(BaseEvent):
    node: str
    command: str
    exit_code: int
