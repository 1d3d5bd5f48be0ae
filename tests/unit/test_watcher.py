"""Unit tests for ResourceWatcher."""
import asyncio
import logging

import pytest
from kubernetes.client.rest import ApiException

from fakes import kind
from kubeauto.watcher import ResourceWatcher


def config_map(name):
    return {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": name}}


def deployment(name, replicas, ready):
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name},
        "spec": {"replicas": replicas},
        "status": {"readyReplicas": ready},
    }


@pytest.mark.unit
class TestStart:
    """Test listing and spawning one watch per kind."""

    def test_lists_then_watches(self, cluster, printer, output):
        cluster.kinds = [kind("configmaps", "ConfigMap")]
        cluster.listings["configmaps"] = ("10", [config_map("a"), config_map("b")])
        cluster.events["configmaps"] = [("MODIFIED", config_map("a"))]
        watcher = ResourceWatcher(cluster, printer, "default")

        async def scenario():
            tasks = await watcher.start("")
            await asyncio.gather(*tasks)
            return tasks

        tasks = asyncio.run(scenario())
        assert len(tasks) == 1
        assert output.getvalue().splitlines() == [
            "[configmaps/a]",
            "[configmaps/b]",
            "[configmaps/a]",
        ]

    def test_prints_inferred_status(self, cluster, printer, output):
        deployments = kind("deployments", "Deployment", api_version="apps/v1", group="apps")
        cluster.kinds = [deployments]
        cluster.listings["deployments"] = ("5", [deployment("web", 3, 3)])
        cluster.events["deployments"] = [("MODIFIED", deployment("web", 3, 1))]
        watcher = ResourceWatcher(cluster, printer, "default")

        async def scenario():
            await asyncio.gather(*await watcher.start("apps"))

        asyncio.run(scenario())
        lines = output.getvalue().splitlines()
        assert lines[0] == "[deployments/web] (Ready)"
        assert lines[1].startswith("[deployments/web] (Pending)")

    def test_only_requested_group(self, cluster, printer, output):
        cluster.kinds = [
            kind("configmaps", "ConfigMap"),
            kind("deployments", "Deployment", api_version="apps/v1", group="apps"),
        ]
        watcher = ResourceWatcher(cluster, printer, "default")

        async def scenario():
            tasks = await watcher.start("apps")
            names = [t.get_name() for t in tasks]
            await watcher.stop()
            return names

        assert asyncio.run(scenario()) == ["watch:deployments"]

    def test_skips_kinds_without_watch(self, cluster, printer, caplog):
        cluster.kinds = [
            kind("bindings", "Binding", verbs=("create",)),
            kind("configmaps", "ConfigMap"),
        ]
        watcher = ResourceWatcher(cluster, printer, "default")

        async def scenario():
            tasks = await watcher.start("")
            await watcher.stop()
            return len(tasks)

        with caplog.at_level(logging.WARNING):
            assert asyncio.run(scenario()) == 1
        assert "Skipping bindings" in caplog.text

    def test_list_failure_aborts(self, cluster, printer):
        cluster.kinds = [kind("configmaps", "ConfigMap")]
        cluster.list_error = ApiException(status=403, reason="Forbidden")
        watcher = ResourceWatcher(cluster, printer, "default")

        async def scenario():
            await watcher.start("")

        with pytest.raises(ApiException):
            asyncio.run(scenario())


@pytest.mark.unit
class TestFollow:
    """Test the per-kind watch task."""

    def test_watch_error_ends_only_its_kind(self, cluster, printer, output, caplog):
        cluster.kinds = [kind("configmaps", "ConfigMap"), kind("secrets", "Secret")]
        cluster.events["configmaps"] = [("ADDED", config_map("late"))]
        cluster.watch_errors["configmaps"] = ApiException(status=410, reason="Gone")
        cluster.events["secrets"] = [("ADDED", {"apiVersion": "v1", "kind": "Secret", "metadata": {"name": "tls"}})]
        watcher = ResourceWatcher(cluster, printer, "default")

        async def scenario():
            await asyncio.gather(*await watcher.start(""))

        with caplog.at_level(logging.INFO):
            asyncio.run(scenario())
        assert "Watch of configmaps stopped" in caplog.text
        assert "Watch of secrets ended" in caplog.text
        assert "[secrets/tls]" in output.getvalue()
        assert "[configmaps/late]" in output.getvalue()

    def test_stop_cancels_watches(self, cluster, printer):
        hold = asyncio.Event()

        async def endless(kind_, namespace, selector, resource_version):
            await hold.wait()
            yield "ADDED", config_map("never")

        cluster.kinds = [kind("configmaps", "ConfigMap")]
        cluster.watch = endless
        watcher = ResourceWatcher(cluster, printer, "default")

        async def scenario():
            tasks = await watcher.start("")
            await asyncio.sleep(0)
            await watcher.stop()
            return tasks

        tasks = asyncio.run(scenario())
        assert len(tasks) == 1
        assert all(t.cancelled() for t in tasks)
        assert watcher.tasks == []
