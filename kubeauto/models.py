"""
Typed views over raw Kubernetes documents.

Only the fields kubeauto reads are modelled; everything else is ignored.
Snapshots stay plain mappings, these models are built on demand and a failed
conversion surfaces as a pydantic ValidationError.
"""

from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _none_as_empty(value: Any) -> Any:
    return "" if value is None else value


Text = Annotated[str, BeforeValidator(_none_as_empty)]


class KubeModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# =========================
# Shared
# =========================

class Condition(KubeModel):
    type: Text = ""
    status: Text = ""
    reason: Text = ""
    message: Text = ""


class LoadBalancerStatus(KubeModel):
    ingress: List[Dict[str, Any]] = Field(default_factory=list)


# =========================
# Pods
# =========================

class ContainerStateWaiting(KubeModel):
    reason: Text = ""
    message: Text = ""


class ContainerStateTerminated(KubeModel):
    exit_code: int = 0
    reason: Text = ""
    message: Text = ""


class ContainerState(KubeModel):
    waiting: Optional[ContainerStateWaiting] = None
    running: Optional[Dict[str, Any]] = None
    terminated: Optional[ContainerStateTerminated] = None


class ContainerStatus(KubeModel):
    name: str
    state: ContainerState = Field(default_factory=ContainerState)


class ContainerPort(KubeModel):
    container_port: int
    name: Text = ""
    protocol: Text = "TCP"


class Container(KubeModel):
    name: str
    ports: List[ContainerPort] = Field(default_factory=list)


class PodSpec(KubeModel):
    init_containers: List[Container] = Field(default_factory=list)
    containers: List[Container] = Field(default_factory=list)


class PodStatus(KubeModel):
    phase: Text = ""
    conditions: List[Condition] = Field(default_factory=list)
    init_container_statuses: List[ContainerStatus] = Field(default_factory=list)
    container_statuses: List[ContainerStatus] = Field(default_factory=list)


class ObjectMeta(KubeModel):
    name: Text = ""
    namespace: Text = ""
    annotations: Dict[str, str] = Field(default_factory=dict)


class Pod(KubeModel):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: PodSpec = Field(default_factory=PodSpec)
    status: PodStatus = Field(default_factory=PodStatus)

    def all_container_statuses(self) -> List[ContainerStatus]:
        return self.status.init_container_statuses + self.status.container_statuses

    def all_containers(self) -> List[Container]:
        return self.spec.init_containers + self.spec.containers


# =========================
# Services / Ingresses
# =========================

class ServiceSpec(KubeModel):
    type: Text = "ClusterIP"
    cluster_ip: Text = Field(default="", alias="clusterIP")


class ServiceStatus(KubeModel):
    load_balancer: LoadBalancerStatus = Field(default_factory=LoadBalancerStatus)


class Service(KubeModel):
    spec: ServiceSpec = Field(default_factory=ServiceSpec)
    status: ServiceStatus = Field(default_factory=ServiceStatus)


class IngressStatus(KubeModel):
    load_balancer: LoadBalancerStatus = Field(default_factory=LoadBalancerStatus)


class Ingress(KubeModel):
    status: IngressStatus = Field(default_factory=IngressStatus)


# =========================
# Workloads with replicas
# =========================

class ReplicatedSpec(KubeModel):
    replicas: Optional[int] = None


class ReplicatedStatus(KubeModel):
    ready_replicas: Optional[int] = None


class Replicated(KubeModel):
    """Deployments, ReplicaSets and StatefulSets share the replica fields."""

    spec: ReplicatedSpec = Field(default_factory=ReplicatedSpec)
    status: ReplicatedStatus = Field(default_factory=ReplicatedStatus)
