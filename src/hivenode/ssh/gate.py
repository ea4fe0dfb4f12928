# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hivenode/ssh/gate.py

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class ConnectGate:
    """
    Serializes connection attempts per SSH hostname.

    paramiko handshakes racing against the same server from several threads
    can corrupt authentication state, so only one attempt per hostname may be
    in flight at a time.  Locks are created on first use and never evicted:
    the map grows by one entry per distinct hostname ever seen.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._host_locks: Dict[str, threading.Lock] = {}

    def lock_for(self, hostname: str) -> threading.Lock:
        key = hostname.lower()
        with self._lock:
            host_lock = self._host_locks.get(key)
            if host_lock is None:
                host_lock = threading.Lock()
                self._host_locks[key] = host_lock
            return host_lock

    @contextmanager
    def acquire(self, hostname: str) -> Iterator[None]:
        host_lock = self.lock_for(hostname)
        with host_lock:
            yield

    def __len__(self) -> int:
        with self._lock:
            return len(self._host_locks)


DEFAULT_GATE = ConnectGate()
