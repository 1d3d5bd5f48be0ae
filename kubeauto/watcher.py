"""
Resource status streams.

For every watchable, namespaced kind of the configured API group: list the
matching objects and print their status, then watch from the list's
resourceVersion and print a status line per event. Each kind gets its own task.

Listing happens up front and any failure there aborts startup. A broken watch
only ends the stream of its own kind.
"""

import asyncio
import logging
from typing import Any, List, Mapping

from kubeauto.cluster import Cluster, ResourceKind
from kubeauto.state import infer, nested_str
from kubeauto.text import Printer

logger = logging.getLogger(__name__)


class ResourceWatcher:
    def __init__(self, cluster: Cluster, printer: Printer, namespace: str, selector: str = ""):
        self.cluster = cluster
        self.printer = printer
        self.namespace = namespace
        self.selector = selector
        self.tasks: List[asyncio.Task] = []

    def show(self, kind: ResourceKind, obj: Mapping[str, Any]) -> None:
        self.printer.status(kind.name, nested_str(obj, "metadata", "name"), infer(obj))

    async def start(self, group: str) -> List[asyncio.Task]:
        """List every watchable kind of group, then spawn one watch task per kind."""
        kinds = await self.cluster.discover(group)
        for kind in kinds:
            if not kind.watchable:
                logger.warning(f"Skipping {kind.name}: does not support watch (verbs: {', '.join(kind.verbs)})")
                continue

            resource_version, items = await self.cluster.list(kind, self.namespace, self.selector)
            for obj in items:
                self.show(kind, obj)

            self.tasks.append(
                asyncio.create_task(
                    self.follow(kind, resource_version),
                    name=f"watch:{kind.name}",
                )
            )
        logger.debug(f"Watching {len(self.tasks)} resource kinds in {self.namespace}")
        return list(self.tasks)

    async def follow(self, kind: ResourceKind, resource_version: str) -> None:
        try:
            async for _, obj in self.cluster.watch(kind, self.namespace, self.selector, resource_version):
                self.show(kind, obj)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Watch of {kind.name} stopped: {e}")
        else:
            logger.info(f"Watch of {kind.name} ended")

    async def stop(self) -> None:
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks.clear()
