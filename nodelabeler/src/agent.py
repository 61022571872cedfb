from __future__ import annotations

import functools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from kubernetes.client import ApiException, AppsV1Api, CoreV1Api

from nodelabeler.src.config import AgentConfig
from nodelabeler.src.kube import (
    WorkloadRestartError,
    node_label,
    reconcile_node_label,
    restart_workload,
)
from nodelabeler.src.metrics import METRICS
from nodelabeler.src.presence import is_ip_present

_KIND_NAMES = {"deployment": "Deployment", "statefulset": "StatefulSet"}


@dataclass(frozen=True)
class CycleResult:
    """Outcome of a single poll cycle.

    ``ip_present`` and ``desired_value`` are ``None`` when the node could not
    be fetched and the cycle stopped early.
    """

    node_fetched: bool
    ip_present: bool | None = None
    desired_value: str | None = None
    label_updated: bool = False
    restart_attempted: bool = False
    restarted: bool = False


def utc_now_rfc3339() -> str:
    """Return the current UTC time as a compact RFC 3339 string (e.g. ``2024-01-15T08:30:00Z``).

    Used as the restart annotation value so Kubernetes sees a template change
    and triggers a rolling update.
    """
    return datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class NodeIPLabeler:
    """Mirrors local IP presence into a node label and restarts a workload on activation.

    Every cycle fetches the node, checks whether the configured IP is bound to
    a local interface and compares the matching label value with the node's
    current label. On a mismatch the label is rewritten; if the new value is
    the active one, the agent waits the settle delay and then stamps the
    configured Deployment or StatefulSet with a restart annotation.

    The node label is the only state carried between cycles. Errors are
    logged and counted, never retried before the next poll interval.
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        apps_api: AppsV1Api,
        config: AgentConfig,
        presence_fn: Callable[[], bool] | None = None,
        logger: logging.Logger | None = None,
        now_fn: Callable[[], str] = utc_now_rfc3339,
    ) -> None:
        self.core_api = core_api
        self.apps_api = apps_api
        self.config = config
        self.presence_fn = presence_fn or functools.partial(
            is_ip_present, config.ip_address, match_mode=config.ip_match_mode
        )
        self.logger = logger or logging.getLogger(__name__)
        self.now_fn = now_fn
        self.ready = threading.Event()

    @property
    def _workload_ref(self) -> str:
        return f"{self.config.resource_namespace}/{self.config.resource_name}"

    def _update_label(self, desired_value: str) -> bool:
        try:
            written = reconcile_node_label(
                core_api=self.core_api,
                node_name=self.config.node_name,
                label_key=self.config.label_key,
                desired_value=desired_value,
            )
        except ApiException:
            self.logger.exception("Failed to update node label on %s", self.config.node_name)
            METRICS.errors_total.labels(operation="update_label").inc()
            return False

        if written:
            METRICS.label_updates_total.labels(value=desired_value).inc()
            self.logger.info(
                "Node label updated successfully: %s=%s", self.config.label_key, desired_value
            )
        else:
            self.logger.debug(
                "Label %s was already %s on re-read, nothing written",
                self.config.label_key,
                desired_value,
            )
        return written

    def restart(self) -> bool:
        """Restart the configured workload once. Returns True on success."""
        kind = self.config.resource_type
        kind_name = _KIND_NAMES[kind]
        try:
            restart_workload(
                apps_api=self.apps_api,
                kind=kind,
                namespace=self.config.resource_namespace,
                name=self.config.resource_name,
                timestamp=self.now_fn(),
            )
        except WorkloadRestartError as exc:
            self.logger.error("Failed to restart %s: %s", kind, exc)
            METRICS.errors_total.labels(operation="restart").inc()
            return False
        except ApiException:
            self.logger.exception("Failed to restart %s %s", kind, self._workload_ref)
            METRICS.errors_total.labels(operation="restart").inc()
            return False

        METRICS.restarts_total.labels(kind=kind).inc()
        self.logger.info("%s restarted successfully: %s", kind_name, self._workload_ref)
        return True

    def run_once(self, stop: threading.Event | None = None) -> CycleResult:
        """Run one poll cycle.

        *stop* interrupts the settle delay: if it is set before the delay
        elapses the restart is abandoned.
        """
        stop = stop or threading.Event()
        try:
            node = self.core_api.read_node(name=self.config.node_name)
        except ApiException:
            self.logger.exception("Failed to get node information for %s", self.config.node_name)
            METRICS.errors_total.labels(operation="get_node").inc()
            return CycleResult(node_fetched=False)
        self.ready.set()

        ip_present = self.presence_fn()
        METRICS.ip_present.set(1 if ip_present else 0)
        desired = self.config.desired_label(ip_present)

        current = node_label(node, self.config.label_key)
        if current == desired:
            self.logger.debug(
                "Label %s is already set to %s, no update needed", self.config.label_key, desired
            )
            return CycleResult(node_fetched=True, ip_present=ip_present, desired_value=desired)

        self.logger.debug("Current label value is %r, updating to %r", current, desired)
        if not self._update_label(desired):
            return CycleResult(node_fetched=True, ip_present=ip_present, desired_value=desired)

        if desired != self.config.label_active:
            return CycleResult(
                node_fetched=True,
                ip_present=ip_present,
                desired_value=desired,
                label_updated=True,
            )

        self.logger.info(
            "IP %s became active, waiting %.1fs before restarting %s %s",
            self.config.ip_address,
            self.config.wait_time,
            self.config.resource_type,
            self._workload_ref,
        )
        if stop.wait(timeout=self.config.wait_time):
            self.logger.warning(
                "Shutdown requested during settle delay; skipping restart of %s",
                self._workload_ref,
            )
            return CycleResult(
                node_fetched=True,
                ip_present=ip_present,
                desired_value=desired,
                label_updated=True,
            )

        return CycleResult(
            node_fetched=True,
            ip_present=ip_present,
            desired_value=desired,
            label_updated=True,
            restart_attempted=True,
            restarted=self.restart(),
        )

    def run_forever(self, shutdown_event: threading.Event | None = None) -> None:
        """Poll until *shutdown_event* is set, sleeping the check interval between cycles.

        There is no backoff: a failed cycle is simply retried at the next
        interval.
        """
        stop = shutdown_event or threading.Event()
        self.logger.info(
            "Watching %s on node %s every %.1fs (label %s)",
            self.config.ip_address,
            self.config.node_name,
            self.config.check_interval,
            self.config.label_key,
        )
        while not stop.is_set():
            try:
                self.run_once(stop)
            except Exception:
                self.logger.exception("Unexpected error during poll cycle")
                METRICS.errors_total.labels(operation="cycle").inc()
            stop.wait(timeout=self.config.check_interval)

        self.ready.clear()
