from __future__ import annotations

import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client import AppsV1Api, CoreV1Api
from kubernetes.config.config_exception import ConfigException

LOGGER = logging.getLogger(__name__)

RESTART_ANNOTATION_KEY = "kubectl.kubernetes.io/restartedAt"


class WorkloadRestartError(RuntimeError):
    """Raised when a workload cannot be restarted (missing or not running)."""


def load_kube_configuration() -> None:
    """Load Kubernetes client configuration.

    Attempts in-cluster config first (running inside a pod), falling back
    to the local kubeconfig for development.
    """
    try:
        config.load_incluster_config()
        LOGGER.info("Loaded in-cluster Kubernetes configuration")
    except ConfigException:
        config.load_kube_config()
        LOGGER.info("Loaded local kubeconfig")


def build_clients() -> tuple[CoreV1Api, AppsV1Api]:
    """Return CoreV1 and AppsV1 API clients using the active kube configuration."""
    return client.CoreV1Api(), client.AppsV1Api()


def node_label(node: Any, label_key: str) -> str | None:
    """Return the node's value for *label_key*, or ``None`` when unset."""
    labels = getattr(getattr(node, "metadata", None), "labels", None) or {}
    return labels.get(label_key)


def reconcile_node_label(
    core_api: CoreV1Api,
    node_name: str,
    label_key: str,
    desired_value: str,
) -> bool:
    """Make the node's *label_key* equal *desired_value*.

    Reads the node fresh and writes the whole object back only when the value
    differs, keeping every other label. The write is last-writer-wins with no
    conflict retry. Returns True when a write happened. ``ApiException`` from
    either call propagates to the caller.
    """
    node = core_api.read_node(name=node_name)
    current = node_label(node, label_key)
    if current == desired_value:
        return False

    if node.metadata.labels is None:
        node.metadata.labels = {}
    node.metadata.labels[label_key] = desired_value

    core_api.replace_node(name=node_name, body=node)
    return True


def _read_workload(apps_api: AppsV1Api, kind: str, namespace: str, name: str) -> Any:
    if kind == "deployment":
        return apps_api.read_namespaced_deployment(name=name, namespace=namespace)
    if kind == "statefulset":
        return apps_api.read_namespaced_stateful_set(name=name, namespace=namespace)
    raise WorkloadRestartError(f"unsupported workload kind {kind!r}")


def _replace_workload(
    apps_api: AppsV1Api, kind: str, namespace: str, name: str, body: Any
) -> None:
    if kind == "deployment":
        apps_api.replace_namespaced_deployment(name=name, namespace=namespace, body=body)
    else:
        apps_api.replace_namespaced_stateful_set(name=name, namespace=namespace, body=body)


def restart_workload(
    apps_api: AppsV1Api,
    kind: str,
    namespace: str,
    name: str,
    timestamp: str,
    annotation_key: str = RESTART_ANNOTATION_KEY,
) -> None:
    """Stamp a Deployment or StatefulSet pod template to trigger a rolling restart.

    This is the same mechanism used by ``kubectl rollout restart``: changing a
    pod template annotation makes the workload controller roll new pods.

    Refuses with :class:`WorkloadRestartError` when the object is missing or
    reports zero current replicas; nothing is written in that case.
    """
    workload = _read_workload(apps_api, kind, namespace, name)
    if workload is None:
        raise WorkloadRestartError(f"{kind} {namespace}/{name} not found")

    replicas = getattr(getattr(workload, "status", None), "replicas", None) or 0
    if replicas == 0:
        raise WorkloadRestartError(f"{kind} {namespace}/{name} has no replicas")

    template_metadata = workload.spec.template.metadata
    if template_metadata is None:
        template_metadata = client.V1ObjectMeta()
        workload.spec.template.metadata = template_metadata
    if template_metadata.annotations is None:
        template_metadata.annotations = {}
    template_metadata.annotations[annotation_key] = timestamp

    _replace_workload(apps_api, kind, namespace, name, workload)
