# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hivenode/logging/node_log.py
from __future__ import annotations

import logging
import threading
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, TextIO

log = logging.getLogger("hivenode")


class NodeLog:
    """
    Per-node operation log.

    Lines go to an optional text writer (usually a per-node file) and are
    mirrored to the ``hivenode`` logger at DEBUG, tagged with the node name.
    """

    def __init__(self, node: str, writer: Optional[TextIO] = None, *, owns_writer: bool = False):
        self.node = node
        self._writer = writer
        self._owns_writer = owns_writer
        self._lock = threading.Lock()
        self._partial = ""

    @classmethod
    def for_node(cls, node: str, base_dir: Path) -> "NodeLog":
        """
        Open ``<base_dir>/<node>-<timestamp>.log`` for appending.
        """
        base_dir.mkdir(parents=True, exist_ok=True)
        ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        path = base_dir / f"{node}-{ts}.log"
        writer = open(path, "a", encoding="utf-8")
        writer.write(f"# {node} operation log started {ts} UTC\n\n")
        return cls(node, writer, owns_writer=True)

    @property
    def writer(self) -> Optional[TextIO]:
        return self._writer

    def log(self, text: str) -> None:
        """Write text without a line terminator."""
        with self._lock:
            if self._writer is not None:
                self._writer.write(text)
            self._partial += text
            while "\n" in self._partial:
                line, self._partial = self._partial.split("\n", 1)
                log.debug("[%s] %s", self.node, line)

    def log_line(self, text: str) -> None:
        with self._lock:
            if self._writer is not None:
                self._writer.write(text + "\n")
                self._writer.flush()
            line, self._partial = self._partial + text, ""
            log.debug("[%s] %s", self.node, line)

    def flush(self) -> None:
        with self._lock:
            if self._writer is not None:
                self._writer.flush()

    def log_exception(self, message: str, exc: BaseException) -> None:
        self.log_line(f"*** ERROR: {message}: {type(exc).__name__}: {exc}")
        stack = "".join(traceback.format_tb(exc.__traceback__)).rstrip()
        if stack:
            self.log_line(f"*** STACK: {stack}")

    def close(self) -> None:
        with self._lock:
            writer, self._writer = self._writer, None
        if writer is not None and self._owns_writer:
            try:
                writer.close()
            except ValueError:
                # already closed by the caller
                log.debug("[%s] node log writer was already closed", self.node)
