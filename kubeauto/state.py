"""
Status inference.

Maps one resource snapshot (a nested mapping as returned by the API server) to
a normalized Status(phase, reason, message). Rules run in a fixed order and a
later rule overrides an earlier one:

1. seed from status.phase/reason/message (or the document root, e.g. events)
2. status.conditions, in sequence order
3. a kind-specific rule looked up by (apiVersion, kind)
4. deletionTimestamp, which always wins

infer() never raises. A kind rule that cannot convert the snapshot to its typed
view logs a warning and contributes nothing.
"""

import logging
from typing import Any, Callable, Dict, Mapping, NamedTuple, Tuple

from pydantic import ValidationError

from kubeauto.models import Ingress, Pod, Replicated, Service

logger = logging.getLogger(__name__)


class Status(NamedTuple):
    phase: str = ""
    reason: str = ""
    message: str = ""


FAILURE_CONDITION_TYPES = frozenset({"ReplicaFailure", "PodFailed", "Failed"})

NO_LOAD_BALANCER = "no load balancer found"
POD_READY_MESSAGE = "Pod is ready and running"

KindRule = Callable[[Mapping[str, Any], Status], Status]


# =========================
# Helpers
# =========================

def nested(obj: Any, *path: str) -> Any:
    """Walk mappings along path, returning None on any miss."""
    for key in path:
        if not isinstance(obj, Mapping):
            return None
        obj = obj.get(key)
    return obj


def nested_str(obj: Any, *path: str) -> str:
    value = nested(obj, *path)
    return value if isinstance(value, str) else ""


def identify(snapshot: Mapping[str, Any]) -> str:
    kind = nested_str(snapshot, "kind") or "?"
    name = nested_str(snapshot, "metadata", "name") or "?"
    return f"{kind}/{name}"


# =========================
# Seed and conditions
# =========================

def seed(snapshot: Mapping[str, Any]) -> Status:
    source = snapshot.get("status")
    if not isinstance(source, Mapping):
        # events and a few other kinds keep their state at the root
        source = snapshot
    return Status(
        nested_str(source, "phase"),
        nested_str(source, "reason"),
        nested_str(source, "message"),
    )


def apply_conditions(snapshot: Mapping[str, Any], status: Status) -> Status:
    conditions = nested(snapshot, "status", "conditions")
    if not isinstance(conditions, list):
        return status
    for condition in conditions:
        if not isinstance(condition, Mapping):
            continue
        type_ = nested_str(condition, "type")
        if type_ in FAILURE_CONDITION_TYPES:
            status = Status(
                "Failed",
                nested_str(condition, "reason"),
                nested_str(condition, "message"),
            )
        elif type_ == "Ready" and nested_str(condition, "status") == "True":
            status = status._replace(phase="Ready")
    return status


# =========================
# Kind rules
# =========================

def ingress_rule(snapshot: Mapping[str, Any], status: Status) -> Status:
    ingress = Ingress.model_validate(snapshot)
    if ingress.status.load_balancer.ingress:
        return status._replace(phase="Ready")
    return status._replace(phase="Failed", message=NO_LOAD_BALANCER)


def replicas_rule(snapshot: Mapping[str, Any], status: Status) -> Status:
    workload = Replicated.model_validate(snapshot)
    desired = workload.spec.replicas
    if desired is None:
        desired = 1
    ready = workload.status.ready_replicas or 0

    if desired == 0:
        return status._replace(phase="Inactive")
    if ready == desired:
        return status._replace(phase="Ready")
    return status._replace(
        phase="Pending",
        message=f"ready replicas {ready} does not match replicas {desired}",
    )


def service_rule(snapshot: Mapping[str, Any], status: Status) -> Status:
    service = Service.model_validate(snapshot)
    status = status._replace(message=f"{service.spec.type}: {service.spec.cluster_ip}")
    if service.spec.type == "LoadBalancer":
        if service.status.load_balancer.ingress:
            status = status._replace(phase="Serving")
        else:
            status = status._replace(phase="Failed", message=NO_LOAD_BALANCER)
    return status


def pod_rule(snapshot: Mapping[str, Any], status: Status) -> Status:
    pod = Pod.model_validate(snapshot)

    for ctr in pod.all_container_statuses():
        waiting = ctr.state.waiting
        if waiting is not None:
            status = Status(
                "Waiting",
                waiting.reason,
                f'container "{ctr.name}" is waiting: {waiting.message}',
            )
        terminated = ctr.state.terminated
        if terminated is not None and terminated.exit_code != 0:
            status = Status(
                "Failed",
                terminated.reason,
                f'container "{ctr.name}" exited with code {terminated.exit_code}: {terminated.message}',
            )

    ready = [c for c in pod.status.conditions if c.type == "Ready"]
    if ready and all(c.status == "True" for c in ready) and pod.status.phase == "Running":
        status = Status("Ready", "", POD_READY_MESSAGE)
    return status


KIND_RULES: Dict[Tuple[str, str], KindRule] = {
    ("networking.k8s.io/v1", "Ingress"): ingress_rule,
    ("extensions/v1beta1", "Ingress"): ingress_rule,
    ("apps/v1", "Deployment"): replicas_rule,
    ("apps/v1", "ReplicaSet"): replicas_rule,
    ("apps/v1", "StatefulSet"): replicas_rule,
    ("v1", "Service"): service_rule,
    ("v1", "Pod"): pod_rule,
}


# =========================
# Entry point
# =========================

def infer(snapshot: Mapping[str, Any]) -> Status:
    """Derive the normalized status of one resource snapshot."""
    if not isinstance(snapshot, Mapping):
        return Status()

    status = seed(snapshot)
    status = apply_conditions(snapshot, status)

    rule = KIND_RULES.get((nested_str(snapshot, "apiVersion"), nested_str(snapshot, "kind")))
    if rule is not None:
        try:
            status = rule(snapshot, status)
        except (ValidationError, TypeError, ValueError, AttributeError) as exc:
            logger.warning(f"Cannot convert {identify(snapshot)}: {exc}")

    if nested(snapshot, "metadata", "deletionTimestamp"):
        status = status._replace(phase="Deleting", message="")
    return status
