"""
Pod supervision.

Every pod notification is turned into a PodView and, for each running
container that passes the container filter, kubeauto asks the registries to
start a log tail and one port forward per declared port. Views are never
diffed: a repeated notification simply loses every start-if-absent race
against the tasks already running, and a task that has ended is restarted by
the next notification that sees its container running.

Port forwards are keyed by local port (offset + containerPort), so two pods
exposing the same port share one forward at a time.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, NamedTuple, Optional

from pydantic import ValidationError

from kubeauto.cluster import Cluster
from kubeauto.errors import TunnelLost
from kubeauto.models import Pod
from kubeauto.registry import PortLocks, TaskRegistry
from kubeauto.settings import KubeautoSettings
from kubeauto.state import identify
from kubeauto.text import Printer

logger = logging.getLogger(__name__)

DEFAULT_CONTAINER_ANNOTATION = "kubectl.kubernetes.io/default-container"


class LogKey(NamedTuple):
    pod: str
    container: str


@dataclass
class ContainerView:
    name: str
    running: bool
    ports: List[int] = field(default_factory=list)


@dataclass
class PodView:
    name: str
    namespace: str
    containers: List[ContainerView] = field(default_factory=list)


def build_pod_view(pod: Pod) -> PodView:
    running = {s.name: s.state.running is not None for s in pod.all_container_statuses()}
    return PodView(
        name=pod.metadata.name,
        namespace=pod.metadata.namespace,
        containers=[
            ContainerView(
                name=ctr.name,
                running=running.get(ctr.name, False),
                ports=[p.container_port for p in ctr.ports],
            )
            for ctr in pod.all_containers()
        ],
    )


def container_filter(pod: Pod, container: Optional[str], all_containers: bool) -> Optional[str]:
    """Name of the only container to follow, or None for all of them."""
    if all_containers:
        return None
    if container:
        return container
    return pod.metadata.annotations.get(DEFAULT_CONTAINER_ANNOTATION) or None


class PodSupervisor:
    def __init__(
        self,
        cluster: Cluster,
        printer: Printer,
        settings: KubeautoSettings,
        logs: Optional[TaskRegistry] = None,
        forwards: Optional[TaskRegistry] = None,
        port_locks: Optional[PortLocks] = None,
    ):
        self.cluster = cluster
        self.printer = printer
        self.settings = settings
        self.logs = logs if logs is not None else TaskRegistry("logs")
        self.forwards = forwards if forwards is not None else TaskRegistry("forwards")
        self.port_locks = port_locks if port_locks is not None else PortLocks()

    def on_pod(self, obj: Mapping[str, Any]) -> List[asyncio.Task]:
        """Start whatever is missing for this pod; returns the tasks started."""
        try:
            pod = Pod.model_validate(obj)
        except ValidationError as e:
            logger.warning(f"Cannot convert {identify(obj)}: {e}")
            return []

        view = build_pod_view(pod)
        only = container_filter(pod, self.settings.container, self.settings.all_containers)
        started: List[asyncio.Task] = []

        for ctr in view.containers:
            if not ctr.running:
                continue
            if only is not None and ctr.name != only:
                continue

            task = self.logs.start(
                LogKey(view.name, ctr.name),
                self.tail_logs, view.namespace, view.name, ctr.name,
                name=f"logs:{view.name}/{ctr.name}",
            )
            if task is not None:
                started.append(task)

            for container_port in ctr.ports:
                host_port = self.settings.host_port_offset + container_port
                task = self.forwards.start(
                    host_port,
                    self.forward_port, view.namespace, view.name, ctr.name, container_port, host_port,
                    name=f"forward:{host_port}",
                )
                if task is not None:
                    started.append(task)
        return started

    async def tail_logs(self, namespace: str, pod: str, container: str) -> None:
        # the pod may have been deleted since the notification
        if not await self.cluster.pod_exists(namespace, pod):
            return
        try:
            async for line in self.cluster.stream_logs(namespace, pod, container):
                if line:
                    self.printer.log(pod, container, line)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[pods/{pod}/{container}] error while tailing logs: {e}")

    async def forward_port(self, namespace: str, pod: str, container: str, container_port: int, host_port: int) -> None:
        async with self.port_locks[host_port]:
            tunnel = self.cluster.open_port_forward(namespace, pod, host_port, container_port)
            serving = asyncio.create_task(tunnel.serve(), name=f"tunnel:{host_port}")
            probing: Optional[asyncio.Task] = None
            try:
                ready = asyncio.create_task(tunnel.ready.wait())
                await asyncio.wait({serving, ready}, return_when=asyncio.FIRST_COMPLETED)
                ready.cancel()
                if tunnel.ready.is_set():
                    self.printer.pod_event(pod, container, f"forwarding port {host_port} -> {container_port}")
                    probing = asyncio.create_task(self.probe(tunnel, host_port), name=f"probe:{host_port}")
                await serving
            except TunnelLost:
                logger.info(f"[pods/{pod}/{container}] lost connection, stopped forwarding {host_port} -> {container_port}")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    f"[pods/{pod}/{container}] error while port-forwarding {host_port} -> {container_port}: {e}"
                )
            finally:
                tunnel.close()
                for task in (serving, probing):
                    if task is not None and not task.done():
                        task.cancel()
                await asyncio.gather(*(t for t in (serving, probing) if t is not None), return_exceptions=True)

    async def probe(self, tunnel: Any, host_port: int) -> None:
        """Dial the local port every probe_interval; close the tunnel when it fails."""
        while True:
            await asyncio.sleep(self.settings.probe_interval)
            try:
                _, writer = await asyncio.open_connection("localhost", host_port)
            except OSError as e:
                logger.info(f"Liveness probe of port {host_port} failed: {e}")
                tunnel.close()
                return
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    async def close(self) -> None:
        await asyncio.gather(self.logs.close(), self.forwards.close())
