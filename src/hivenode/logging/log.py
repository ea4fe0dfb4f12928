# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

#src/hivenode/logging/log.py

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

LOGGER_NAME = "hivenode"
HIVE_LOG = "hive.log"


def default_log_dir() -> Path:
    return Path.home() / ".hivenode" / "logs"


@dataclass(frozen=True)
class RunLogs:
    """Where one CLI run writes: ``hive.log`` plus one operation log per node."""
    logger: logging.Logger
    run_id: str
    run_dir: Path

    @property
    def hive_log(self) -> Path:
        return self.run_dir / HIVE_LOG


def run_folder(base_dir: Path, hive: str, run_id: str) -> Path:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return base_dir / hive / f"{stamp}-{run_id[:8]}"


def init_logging(
    hive: str,
    *,
    base_dir: Path | None = None,
    verbose: bool = False,
) -> RunLogs:
    """
    Set up the ``hivenode`` logger for a run against ``hive``.

    The run folder is ``<base_dir>/<hive>/<utc stamp>-<run id>``.  Node logs
    written by ``NodeLog.for_node`` are mirrored into ``hive.log`` at DEBUG,
    so the console stays at INFO unless ``verbose``.
    """
    run_id = str(uuid.uuid4())
    run_dir = run_folder(base_dir or default_log_dir(), hive, run_id)
    run_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False

    fh = logging.FileHandler(run_dir / HIVE_LOG, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)-7s %(threadName)s | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    ))

    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(logging.Formatter("%(levelname)-7s %(message)s"))

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.debug("hive=%s run_id=%s run_dir=%s", hive, run_id, run_dir)
    return RunLogs(logger=logger, run_id=run_id, run_dir=run_dir)
