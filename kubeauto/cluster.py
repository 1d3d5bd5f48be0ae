"""
Kubernetes access.

Cluster wraps the official client for everything kubeauto needs from the API
server: discovery, list and watch of arbitrary kinds (dynamic client), pod
lookups, log streams and port-forward tunnels.

The client is synchronous. Short calls go through asyncio.to_thread; long-lived
streams (watches, logs, tunnel reads) are drained by a daemon thread into an
asyncio queue so a blocked read never holds up shutdown.
"""

import asyncio
import logging
import socket
import threading
from dataclasses import dataclass, field
from functools import partial
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Set, Tuple

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.stream import portforward
from kubernetes.watch import Watch
from kubernetes.watch.watch import iter_resp_lines

from kubeauto.errors import SetupError, TunnelLost

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_NAMESPACE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"
BUFFER_SIZE = 32 * 1024

_DONE = object()


# =========================
# Thread-to-loop streaming
# =========================

async def iterate_in_thread(factory: Callable[[], Iterable[Any]], name: str) -> AsyncIterator[Any]:
    """
    Iterate a blocking iterable on a daemon thread and yield its items here.

    An exception raised by the iterable is re-raised in the consumer.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    stopped = threading.Event()

    def post(item: Any, exc: Optional[BaseException] = None) -> None:
        try:
            loop.call_soon_threadsafe(queue.put_nowait, (item, exc))
        except RuntimeError:
            # loop already closed, nobody is listening
            stopped.set()

    def worker() -> None:
        try:
            for item in factory():
                if stopped.is_set():
                    return
                post(item)
        except Exception as exc:
            post(_DONE, exc)
        else:
            post(_DONE)

    threading.Thread(target=worker, name=name, daemon=True).start()
    try:
        while True:
            item, exc = await queue.get()
            if item is _DONE:
                if exc is not None:
                    raise exc
                return
            yield item
    finally:
        stopped.set()


# =========================
# Discovery
# =========================

@dataclass(frozen=True)
class ResourceKind:
    group: str
    api_version: str
    kind: str
    name: str
    verbs: Tuple[str, ...] = ()
    resource: Any = field(default=None, compare=False, repr=False)

    @property
    def watchable(self) -> bool:
        return "watch" in self.verbs


# =========================
# Cluster
# =========================

class Cluster:
    def __init__(self, api_client: Optional[client.ApiClient] = None, in_cluster: bool = False):
        self.api_client = api_client or client.ApiClient()
        self.in_cluster = in_cluster
        self.core_v1 = client.CoreV1Api(self.api_client)
        self._dynamic: Optional[DynamicClient] = None

    @classmethod
    def connect(cls) -> "Cluster":
        """Load in-cluster config, falling back to kubeconfig."""
        try:
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration")
            return cls(in_cluster=True)
        except config.ConfigException:
            pass
        try:
            config.load_kube_config()
            logger.info("Loaded kubeconfig")
        except (config.ConfigException, OSError) as e:
            raise SetupError(f"Cannot load Kubernetes configuration: {e}") from e
        return cls()

    def current_namespace(self) -> str:
        if self.in_cluster:
            try:
                with open(SERVICE_ACCOUNT_NAMESPACE) as f:
                    return f.read().strip() or "default"
            except OSError:
                return "default"
        try:
            _, active = config.list_kube_config_contexts()
        except (config.ConfigException, OSError):
            return "default"
        return ((active or {}).get("context") or {}).get("namespace") or "default"

    @property
    def dynamic(self) -> DynamicClient:
        if self._dynamic is None:
            try:
                self._dynamic = DynamicClient(self.api_client)
            except Exception as e:
                raise SetupError(f"Cannot discover server resources: {e}") from e
        return self._dynamic

    def stream_api(self) -> client.CoreV1Api:
        """
        Fresh CoreV1Api for websocket operations.

        kubernetes.stream patches the api client's request method while a
        stream is open; sharing self.core_v1 would break concurrent calls.
        """
        return client.CoreV1Api()

    # ---- Resource Watch Service ----

    async def discover(self, group: str) -> List[ResourceKind]:
        """Preferred namespaced resources of one API group ("" is core)."""
        return await asyncio.to_thread(self._discover, group)

    def _discover(self, group: str) -> List[ResourceKind]:
        search = self.dynamic.resources.search
        try:
            if group:
                found = search(prefix="apis", group=group)
            else:
                found = search(prefix="api")
        except ApiException as e:
            raise SetupError(f"Cannot discover resources of group {group!r}: {e}") from e

        kinds: Dict[Tuple[str, str], ResourceKind] = {}
        for res in found:
            verbs = getattr(res, "verbs", None)
            if verbs is None or not getattr(res, "namespaced", False):
                # resource lists and cluster-scoped kinds
                continue
            if not getattr(res, "preferred", False) or "/" in res.name:
                continue
            kinds[(res.group, res.kind)] = ResourceKind(
                group=res.group,
                api_version=res.group_version,
                kind=res.kind,
                name=res.name,
                verbs=tuple(verbs),
                resource=res,
            )
        return sorted(kinds.values(), key=lambda k: k.name)

    async def list(self, kind: ResourceKind, namespace: str, selector: str) -> Tuple[str, List[Dict[str, Any]]]:
        result = await asyncio.to_thread(
            partial(kind.resource.get, namespace=namespace, label_selector=selector or None)
        )
        body = result.to_dict()
        resource_version = (body.get("metadata") or {}).get("resourceVersion", "")
        items = body.get("items") or []
        for item in items:
            # list items come back without their type
            item.setdefault("apiVersion", kind.api_version)
            item.setdefault("kind", kind.kind)
        return resource_version, items

    async def watch(
        self,
        kind: ResourceKind,
        namespace: str,
        selector: str,
        resource_version: str,
    ) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        watcher = Watch()

        def events() -> Iterable[Any]:
            return kind.resource.watch(
                namespace=namespace,
                label_selector=selector or None,
                resource_version=resource_version or None,
                watcher=watcher,
            )

        try:
            async for event in iterate_in_thread(events, name=f"watch-{kind.name}"):
                obj = event.get("raw_object")
                if obj is None:
                    obj = event["object"].to_dict()
                if event["type"] == "ERROR":
                    raise ApiException(status=obj.get("code"), reason=obj.get("message"))
                obj.setdefault("apiVersion", kind.api_version)
                obj.setdefault("kind", kind.kind)
                yield event["type"], obj
        finally:
            watcher.stop()

    async def pod_exists(self, namespace: str, name: str) -> bool:
        try:
            await asyncio.to_thread(self.core_v1.read_namespaced_pod, name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return True

    # ---- Stream Transport ----

    async def stream_logs(self, namespace: str, pod: str, container: str) -> AsyncIterator[str]:
        """Follow a container's log from now on, one line at a time."""
        resp = await asyncio.to_thread(
            partial(
                self.core_v1.read_namespaced_pod_log,
                name=pod,
                namespace=namespace,
                container=container,
                follow=True,
                tail_lines=0,
                _preload_content=False,
            )
        )
        try:
            async for line in iterate_in_thread(lambda: iter_resp_lines(resp), name=f"logs-{pod}-{container}"):
                yield line
        finally:
            resp.close()

    def connect_port_forward(self, namespace: str, pod: str, port: int) -> Any:
        """Blocking: open one websocket port-forward stream to a pod port."""
        return portforward(
            self.stream_api().connect_get_namespaced_pod_portforward,
            pod,
            namespace,
            ports=str(port),
        )

    def open_port_forward(self, namespace: str, pod: str, local_port: int, container_port: int) -> "PortForwardTunnel":
        return PortForwardTunnel(self, namespace, pod, local_port, container_port)


# =========================
# Port forwarding
# =========================

class PortForwardTunnel:
    """
    Local TCP listener relaying each accepted connection to a pod port.

    serve() runs until close() is called. If a connection cannot be opened
    because the pod is gone, the tunnel closes itself and serve() raises
    TunnelLost.
    """

    def __init__(self, cluster: Cluster, namespace: str, pod: str, local_port: int, container_port: int):
        self.cluster = cluster
        self.namespace = namespace
        self.pod = pod
        self.local_port = local_port
        self.container_port = container_port
        self.ready = asyncio.Event()
        self._closing = asyncio.Event()
        self._lost = False
        self._connections: Set[asyncio.Task] = set()

    def close(self) -> None:
        self._closing.set()

    async def serve(self) -> None:
        server = await asyncio.start_server(self._accept, "localhost", self.local_port)
        self.ready.set()
        try:
            await self._closing.wait()
        finally:
            server.close()
            for task in list(self._connections):
                task.cancel()
            await asyncio.gather(*self._connections, return_exceptions=True)
            await server.wait_closed()
        if self._lost:
            raise TunnelLost(self.pod, self.container_port)

    async def _accept(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        self._connections.add(task)
        try:
            await self._relay(reader, writer)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"[pods/{self.pod}] connection to port {self.container_port} failed: {e}")
        finally:
            self._connections.discard(task)
            writer.close()

    async def _relay(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            pf = await asyncio.to_thread(
                self.cluster.connect_port_forward, self.namespace, self.pod, self.container_port
            )
        except ApiException:
            if not await self.cluster.pod_exists(self.namespace, self.pod):
                self._lost = True
                self.close()
                return
            raise

        sock = pf.socket(self.container_port)
        sock.setblocking(True)
        pumps = [
            asyncio.ensure_future(self._to_pod(reader, sock)),
            asyncio.ensure_future(self._to_client(sock, writer)),
        ]
        try:
            done, pending = await asyncio.wait(pumps, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                task.result()
        finally:
            for task in pumps:
                task.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()

        error = pf.error(self.container_port)
        if error:
            logger.warning(f"[pods/{self.pod}] port {self.container_port}: {error}")

    async def _to_pod(self, reader: asyncio.StreamReader, sock: Any) -> None:
        while True:
            data = await reader.read(BUFFER_SIZE)
            if not data:
                return
            await asyncio.to_thread(sock.sendall, data)

    async def _to_client(self, sock: Any, writer: asyncio.StreamWriter) -> None:
        def chunks() -> Iterable[bytes]:
            return iter(partial(sock.recv, BUFFER_SIZE), b"")

        async for data in iterate_in_thread(chunks, name=f"forward-{self.pod}-{self.container_port}"):
            writer.write(data)
            await writer.drain()
