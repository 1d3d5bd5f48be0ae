"""
Process wiring.

run() connects to the cluster, starts the resource status streams and then
runs an embedded kopf operator whose only handler feeds pod events to the
PodSupervisor. kopf is used as a read-only event source: standalone (no
peering), no posted events, and only @kopf.on.event handlers, which keep no
state on the objects they see.

Everything stops when kopf's stop flag is set (SIGINT/SIGTERM, or the
stop_flag passed in).
"""

import asyncio
import concurrent.futures
import logging
import re
import threading
from typing import Any, Callable, Dict, Optional, Union

import kopf

from kubeauto.cluster import Cluster
from kubeauto.settings import KubeautoSettings
from kubeauto.supervisor import PodSupervisor
from kubeauto.text import Printer
from kubeauto.watcher import ResourceWatcher

logger = logging.getLogger(__name__)

# anything kopf.operator accepts as stop_flag
StopFlag = Union[asyncio.Event, asyncio.Future, threading.Event, concurrent.futures.Future]

_SET_SELECTOR = re.compile(r"^\s*([^\s!=]+)\s+(in|notin)\s*\(([^)]*)\)\s*$")


# =========================
# Label selectors
# =========================

def split_selector(selector: str):
    """Split on commas outside parentheses."""
    depth = 0
    current = ""
    for char in selector:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            yield current
            current = ""
        else:
            current += char
    yield current


def label_filters(selector: str) -> Dict[str, Any]:
    """
    Translate a label selector string into kopf label filters.

    Supports key=value, key==value, key!=value, key, !key,
    key in (a,b) and key notin (a,b).
    """
    filters: Dict[str, Any] = {}
    for term in split_selector(selector):
        term = term.strip()
        if not term:
            continue

        match = _SET_SELECTOR.match(term)
        if match:
            key, op, values = match.groups()
            allowed = frozenset(v.strip() for v in values.split(",") if v.strip())
            if op == "in":
                filters[key] = _value_in(allowed)
            else:
                filters[key] = _value_not_in(allowed)
        elif "!=" in term:
            key, value = (part.strip() for part in term.split("!=", 1))
            filters[key] = _value_not_in(frozenset({value}))
        elif "=" in term:
            key, value = (part.strip() for part in term.replace("==", "=").split("=", 1))
            filters[key] = value
        elif term.startswith("!"):
            filters[term[1:].strip()] = kopf.ABSENT
        else:
            filters[term] = kopf.PRESENT
    return filters


def _value_in(allowed: frozenset) -> Callable[..., bool]:
    def check(value: Optional[str], **_: Any) -> bool:
        return value in allowed
    return check


def _value_not_in(denied: frozenset) -> Callable[..., bool]:
    # kubernetes matches objects without the label for != and notin
    def check(value: Optional[str], **_: Any) -> bool:
        return value not in denied
    return check


# =========================
# kopf registry
# =========================

def build_registry(supervisor: PodSupervisor, selector: str = "") -> kopf.OperatorRegistry:
    registry = kopf.OperatorRegistry()

    @kopf.on.login(registry=registry)
    def login(**kwargs: Any) -> Optional[kopf.ConnectionInfo]:
        return kopf.login_via_client(**kwargs)

    @kopf.on.event("pods", labels=label_filters(selector) or None, registry=registry)
    async def on_pod_event(event: Dict[str, Any], **_: Any) -> None:
        if event.get("type") == "DELETED":
            return
        supervisor.on_pod(event["object"])

    return registry


def operator_settings(settings: KubeautoSettings) -> kopf.OperatorSettings:
    op = kopf.OperatorSettings()
    op.posting.enabled = False
    op.scanning.disabled = True
    # pods are re-listed every time the watch is re-established
    op.watching.server_timeout = settings.resync_seconds
    op.watching.client_timeout = settings.resync_seconds + 10
    return op


# =========================
# Entry point
# =========================

async def run(
    settings: KubeautoSettings,
    stop_flag: Optional[StopFlag] = None,
    cluster: Optional[Cluster] = None,
    printer: Optional[Printer] = None,
) -> None:
    cluster = cluster or Cluster.connect()
    printer = printer or Printer(force_terminal=settings.color)
    namespace = settings.namespace or cluster.current_namespace()
    logger.info(
        f"Watching namespace={namespace} group={settings.group or 'core'} "
        f"labels={settings.labels or '<all>'} port_offset={settings.host_port_offset}"
    )

    watcher = ResourceWatcher(cluster, printer, namespace, settings.labels)
    supervisor = PodSupervisor(cluster, printer, settings)
    try:
        await watcher.start(settings.group)
        await kopf.operator(
            registry=build_registry(supervisor, settings.labels),
            settings=operator_settings(settings),
            namespaces=[namespace],
            standalone=True,
            stop_flag=stop_flag,
        )
    finally:
        await watcher.stop()
        await supervisor.close()
