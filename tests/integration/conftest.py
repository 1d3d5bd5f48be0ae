"""Integration test fixtures using pytest-kubernetes for cluster management."""
import os
import time
from pathlib import Path

import pytest
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from pytest_kubernetes.providers import AClusterManager

NAMESPACE = "kubeauto-it"
DEMO_IMAGE = "python:3.12-alpine"
DEMO_PORT = 8080


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """
    Expose test outcome on the test item so fixtures can react in teardown.

    Pattern:
      if request.node.rep_call.failed: ...
    """
    outcome = yield
    rep = outcome.get_result()
    setattr(item, f"rep_{rep.when}", rep)


def _debug_dump(k8s: AClusterManager, namespace: str = NAMESPACE) -> None:
    """Best-effort dump of the demo namespace (events and pod logs). Never raises."""

    def safe_kubectl(args: list[str]) -> str:
        try:
            return k8s.kubectl(args, as_dict=False)
        except Exception as e:  # noqa: BLE001 - best-effort debug helper
            return f"[debug-dump] failed: kubectl {' '.join(args)}: {e}"

    print("\n==================== DEBUG DUMP (kubeauto) ====================")
    print(safe_kubectl(["get", "all", "-n", namespace, "-o", "wide"]))
    print("\n--- events (newest last) ---")
    print(safe_kubectl(["get", "events", "-n", namespace, "--sort-by=.lastTimestamp"]))
    print("\n--- logs: deploy/demo ---")
    print(safe_kubectl(["logs", "deploy/demo", "-n", namespace, "--tail=100"]))


def _create(call, *args, **kwargs) -> None:
    try:
        call(*args, **kwargs)
    except ApiException as e:
        if e.status != 409:  # Already exists
            raise


@pytest.fixture
def cluster(k8s: AClusterManager, request):
    """
    A pytest-kubernetes cluster with a namespace kubeauto can watch.

    pytest-kubernetes picks the first available provider (k3d, kind,
    minikube); override with --k8s-provider.
    """
    always = os.environ.get("KUBEAUTO_TEST_DEBUG") == "1"
    try:
        if not k8s.ready(timeout=5):
            print(f"[cluster] Creating cluster '{k8s.cluster_name}'...")
            k8s.create()
        print(f"[cluster] Cluster '{k8s.cluster_name}' is ready")

        # kubeauto loads its configuration the same way kubectl does
        os.environ["KUBECONFIG"] = str(k8s.kubeconfig)
        config.load_kube_config(config_file=str(k8s.kubeconfig))
        core_v1 = client.CoreV1Api()
        apps_v1 = client.AppsV1Api()

        _create(core_v1.create_namespace, client.V1Namespace(metadata=client.V1ObjectMeta(name=NAMESPACE)))

        k8s.core_v1 = core_v1
        k8s.apps_v1 = apps_v1
        yield k8s

    finally:
        rep_call = getattr(request.node, "rep_call", None)
        if always or bool(rep_call and rep_call.failed):
            _debug_dump(k8s)


@pytest.fixture
def demo_deployment(cluster: AClusterManager):
    """Deploy demo/app.py (mounted from a ConfigMap) behind a Service, cleanup after test."""
    core_v1 = cluster.core_v1
    apps_v1 = cluster.apps_v1
    source = (Path(__file__).parent.parent.parent / "demo" / "app.py").read_text()

    _create(
        core_v1.create_namespaced_config_map,
        namespace=NAMESPACE,
        body=client.V1ConfigMap(metadata=client.V1ObjectMeta(name="demo-app"), data={"app.py": source}),
    )
    _create(
        core_v1.create_namespaced_service,
        namespace=NAMESPACE,
        body=client.V1Service(
            metadata=client.V1ObjectMeta(name="demo", labels={"app": "demo"}),
            spec=client.V1ServiceSpec(
                selector={"app": "demo"},
                ports=[client.V1ServicePort(port=DEMO_PORT, name="http")],
            ),
        ),
    )
    _create(
        apps_v1.create_namespaced_deployment,
        namespace=NAMESPACE,
        body=client.V1Deployment(
            metadata=client.V1ObjectMeta(name="demo", labels={"app": "demo"}),
            spec=client.V1DeploymentSpec(
                replicas=1,
                selector=client.V1LabelSelector(match_labels={"app": "demo"}),
                template=client.V1PodTemplateSpec(
                    metadata=client.V1ObjectMeta(labels={"app": "demo"}),
                    spec=client.V1PodSpec(
                        termination_grace_period_seconds=1,
                        containers=[client.V1Container(
                            name="app",
                            image=DEMO_IMAGE,
                            command=["python", "-u", "/demo/app.py"],
                            env=[client.V1EnvVar(name="PORT", value=str(DEMO_PORT))],
                            ports=[client.V1ContainerPort(name="http", container_port=DEMO_PORT)],
                            readiness_probe=client.V1Probe(
                                http_get=client.V1HTTPGetAction(path="/readyz", port="http"),
                                initial_delay_seconds=2,
                                period_seconds=2,
                            ),
                            volume_mounts=[client.V1VolumeMount(name="app", mount_path="/demo")],
                        )],
                        volumes=[client.V1Volume(
                            name="app",
                            config_map=client.V1ConfigMapVolumeSource(name="demo-app"),
                        )],
                    ),
                ),
            ),
        ),
    )

    deadline = time.time() + 300
    while time.time() < deadline:
        try:
            deployment = apps_v1.read_namespaced_deployment("demo", NAMESPACE)
            if (deployment.status.ready_replicas or 0) == 1:
                break
        except ApiException as e:
            print(f"Error checking Deployment: {e}")
        time.sleep(2)
    else:
        raise RuntimeError("Deployment did not become ready within timeout")

    yield

    try:
        apps_v1.delete_namespaced_deployment("demo", NAMESPACE, propagation_policy="Background")
        core_v1.delete_namespaced_service("demo", NAMESPACE)
        core_v1.delete_namespaced_config_map("demo-app", NAMESPACE)
    except ApiException:
        pass
