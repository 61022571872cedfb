from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client import ApiException

from nodelabeler.src.kube import (
    RESTART_ANNOTATION_KEY,
    WorkloadRestartError,
    build_clients,
    load_kube_configuration,
    node_label,
    reconcile_node_label,
    restart_workload,
)
from nodelabeler.tests.fakes import FakeAppsApi, FakeCoreApi, make_node, make_workload

LABEL_KEY = "vip.example.com/holder"
TIMESTAMP = "2026-01-01T00:00:00Z"


def test_load_kube_configuration_in_cluster() -> None:
    with (
        patch("nodelabeler.src.kube.config.load_incluster_config") as mock_incluster,
        patch("nodelabeler.src.kube.config.load_kube_config") as mock_kubeconfig,
    ):
        load_kube_configuration()

    mock_incluster.assert_called_once()
    mock_kubeconfig.assert_not_called()


def test_load_kube_configuration_local_fallback() -> None:
    from kubernetes.config.config_exception import ConfigException

    with (
        patch(
            "nodelabeler.src.kube.config.load_incluster_config",
            side_effect=ConfigException("not in cluster"),
        ),
        patch("nodelabeler.src.kube.config.load_kube_config") as mock_kubeconfig,
    ):
        load_kube_configuration()

    mock_kubeconfig.assert_called_once()


def test_build_clients_returns_tuple() -> None:
    with patch("nodelabeler.src.kube.client") as mock_client:
        mock_client.CoreV1Api.return_value = SimpleNamespace(name="core")
        mock_client.AppsV1Api.return_value = SimpleNamespace(name="apps")
        core, apps = build_clients()

    assert core.name == "core"
    assert apps.name == "apps"


def test_node_label_handles_missing_labels() -> None:
    assert node_label(make_node(labels=None), LABEL_KEY) is None
    assert node_label(make_node(labels={LABEL_KEY: "true"}), LABEL_KEY) == "true"


# ---------------------------------------------------------------------------
# Label reconciliation
# ---------------------------------------------------------------------------


def test_reconcile_sets_label_and_preserves_others() -> None:
    core_api = FakeCoreApi(labels={"kubernetes.io/hostname": "worker-1", LABEL_KEY: "false"})

    written = reconcile_node_label(core_api, "worker-1", LABEL_KEY, "true")

    assert written is True
    assert core_api.labels == {"kubernetes.io/hostname": "worker-1", LABEL_KEY: "true"}
    assert len(core_api.replaced) == 1


def test_reconcile_creates_label_map_when_absent() -> None:
    core_api = FakeCoreApi(labels=None)

    assert reconcile_node_label(core_api, "worker-1", LABEL_KEY, "false") is True
    assert core_api.labels == {LABEL_KEY: "false"}


def test_reconcile_is_noop_when_value_matches() -> None:
    core_api = FakeCoreApi(labels={LABEL_KEY: "true"})

    assert reconcile_node_label(core_api, "worker-1", LABEL_KEY, "true") is False
    assert core_api.replaced == []
    assert core_api.reads == 1


def test_reconcile_propagates_read_failure() -> None:
    core_api = FakeCoreApi(labels={}, fail_reads=1)

    with pytest.raises(ApiException):
        reconcile_node_label(core_api, "worker-1", LABEL_KEY, "true")
    assert core_api.replaced == []


def test_reconcile_propagates_write_failure() -> None:
    core_api = FakeCoreApi(labels={}, fail_replace=True)

    with pytest.raises(ApiException):
        reconcile_node_label(core_api, "worker-1", LABEL_KEY, "true")


# ---------------------------------------------------------------------------
# Workload restart
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("kind", ["deployment", "statefulset"])
def test_restart_workload_stamps_annotation(kind: str) -> None:
    apps_api = FakeAppsApi(
        deployment=make_workload(annotations={"team": "edge"}),
        stateful_set=make_workload(annotations={"team": "edge"}),
    )

    restart_workload(apps_api, kind, "ingress", "haproxy", TIMESTAMP)

    assert len(apps_api.replaced) == 1
    replaced_kind, namespace, name, body = apps_api.replaced[0]
    assert (replaced_kind, namespace, name) == (kind, "ingress", "haproxy")
    annotations = body.spec.template.metadata.annotations
    assert annotations == {"team": "edge", RESTART_ANNOTATION_KEY: TIMESTAMP}


def test_restart_workload_creates_annotation_map() -> None:
    apps_api = FakeAppsApi(deployment=make_workload(annotations=None))

    restart_workload(apps_api, "deployment", "ingress", "haproxy", TIMESTAMP)

    body = apps_api.replaced[0][3]
    assert body.spec.template.metadata.annotations == {RESTART_ANNOTATION_KEY: TIMESTAMP}


def test_restart_workload_creates_template_metadata() -> None:
    apps_api = FakeAppsApi(deployment=make_workload(with_template_metadata=False))

    restart_workload(apps_api, "deployment", "ingress", "haproxy", TIMESTAMP)

    body = apps_api.replaced[0][3]
    assert body.spec.template.metadata.annotations == {RESTART_ANNOTATION_KEY: TIMESTAMP}


@pytest.mark.parametrize("replicas", [0, None])
def test_restart_workload_rejects_zero_replicas(replicas: int | None) -> None:
    apps_api = FakeAppsApi(stateful_set=make_workload(replicas=replicas))

    with pytest.raises(WorkloadRestartError, match="no replicas"):
        restart_workload(apps_api, "statefulset", "ingress", "haproxy", TIMESTAMP)
    assert apps_api.replaced == []


def test_restart_workload_rejects_missing_object() -> None:
    apps_api = MagicMock()
    apps_api.read_namespaced_deployment.return_value = None

    with pytest.raises(WorkloadRestartError, match="not found"):
        restart_workload(apps_api, "deployment", "ingress", "haproxy", TIMESTAMP)
    apps_api.replace_namespaced_deployment.assert_not_called()


def test_restart_workload_propagates_not_found() -> None:
    apps_api = FakeAppsApi()

    with pytest.raises(ApiException):
        restart_workload(apps_api, "deployment", "ingress", "does-not-exist", TIMESTAMP)


def test_restart_workload_rejects_unknown_kind() -> None:
    with pytest.raises(WorkloadRestartError, match="unsupported"):
        restart_workload(MagicMock(), "daemonset", "ingress", "haproxy", TIMESTAMP)
