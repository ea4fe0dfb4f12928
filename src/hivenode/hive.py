# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hivenode/hive.py

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from hivenode.config.loader import load_config
from hivenode.config.models import HiveConfig
from hivenode.errors import HiveError
from hivenode.logging.node_log import NodeLog
from hivenode.observers.dispatcher import EventBus
from hivenode.proxy.node import EndpointResolver, NodeProxy
from hivenode.ssh.gate import DEFAULT_GATE, ConnectGate

log = logging.getLogger("hivenode")


@dataclass
class NodeResult:
    node: str
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Hive:
    """
    The set of node proxies described by a ``HiveConfig``.

    All proxies share credentials, timing, folder layout, the event bus and
    the per-host connect gate.
    """

    def __init__(
        self,
        config: HiveConfig,
        *,
        bus: Optional[EventBus] = None,
        run_id: Optional[str] = None,
        endpoint_resolver: Optional[EndpointResolver] = None,
        gate: ConnectGate = DEFAULT_GATE,
        log_dir: Optional[Path] = None,
    ):
        self.config = config
        self.name = config.name
        self.bus = bus or EventBus()
        self.run_id = run_id
        self.endpoint_resolver = endpoint_resolver
        self.gate = gate
        self.log_dir = log_dir or config.log_dir

        credentials = config.credentials.to_credentials()
        self._nodes: Dict[str, NodeProxy] = {}
        for spec in config.nodes:
            node_log = NodeLog.for_node(spec.name, self.log_dir) if self.log_dir else NodeLog(spec.name)
            self._nodes[spec.name.lower()] = NodeProxy(
                spec.name,
                spec.private_address,
                public_address=spec.public_address,
                port=spec.port,
                credentials=credentials,
                use_public_address=config.use_public_address,
                endpoint_resolver=endpoint_resolver,
                timing=config.timing,
                folders=config.folders,
                remote_path=config.remote_path,
                node_log=node_log,
                bus=self.bus,
                hive=config.name,
                run_id=run_id,
                gate=gate,
                metadata=dict(spec.metadata),
            )

    @classmethod
    def from_config(cls, config: HiveConfig, **kwargs) -> "Hive":
        return cls(config, **kwargs)

    @classmethod
    def from_file(cls, path: str | Path, **kwargs) -> "Hive":
        return cls(load_config(path), **kwargs)

    def node(self, name: str) -> NodeProxy:
        try:
            return self._nodes[name.lower()]
        except KeyError:
            raise HiveError(f"Hive [{self.name}] has no node named [{name}].") from None

    def __iter__(self) -> Iterator[NodeProxy]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def select(self, names: Optional[Iterable[str]] = None) -> List[NodeProxy]:
        if names is None:
            return list(self)
        return [self.node(n) for n in names]

    def invoke(
        self,
        action: Callable[[NodeProxy], Any],
        names: Optional[Iterable[str]] = None,
        parallel: bool = True,
        max_workers: Optional[int] = None,
    ) -> Dict[str, NodeResult]:
        """
        Run ``action`` against a clone of each selected node.

        Failures are captured per node and logged, never raised, so one bad
        node does not hide the results of the others.
        """
        nodes = self.select(names)
        results: Dict[str, NodeResult] = {}

        def run(node: NodeProxy) -> NodeResult:
            with node.clone() as clone:
                return NodeResult(node.name, value=action(clone))

        def failed(node: NodeProxy, exc: BaseException) -> NodeResult:
            log.error("%s: %s", node.name, exc)
            node.node_log.log_exception("action failed", exc)
            return NodeResult(node.name, error=exc)

        if not parallel or len(nodes) <= 1:
            for node in nodes:
                try:
                    results[node.name] = run(node)
                except Exception as exc:
                    results[node.name] = failed(node, exc)
            return results

        with ThreadPoolExecutor(max_workers=max_workers or len(nodes)) as executor:
            futures = {executor.submit(run, node): node for node in nodes}
            for future in as_completed(futures):
                node = futures[future]
                try:
                    results[node.name] = future.result()
                except Exception as exc:
                    results[node.name] = failed(node, exc)
        return results

    def close(self) -> None:
        for node in self:
            node.close()
            node.node_log.close()

    def __enter__(self) -> "Hive":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
