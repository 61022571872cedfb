from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass

RESOURCE_TYPES = ("deployment", "statefulset")
IP_MATCH_MODES = ("substring", "exact")

_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


class ConfigError(RuntimeError):
    """Raised when the agent configuration is missing or invalid."""


@dataclass(frozen=True)
class AgentConfig:
    """Immutable agent configuration loaded once at startup.

    Attributes:
        node_name:        Kubernetes node to label (``HOSTNAME``).
        check_interval:   Seconds between poll cycles.
        ip_address:       IP whose presence on a local interface is tracked.
        label_key:        Node label reflecting presence.
        label_active:     Label value written while the IP is bound.
        label_inactive:   Label value written while the IP is not bound.
        wait_time:        Settle delay in seconds before restarting the workload.
        resource_namespace, resource_name, resource_type:
                          The Deployment or StatefulSet restarted on activation.
        ip_match_mode:    ``substring`` (default) or ``exact``.
        health_port:      Port for the health/metrics server, ``None`` disables it.
    """

    node_name: str
    check_interval: float
    ip_address: str
    label_key: str
    label_active: str
    label_inactive: str
    wait_time: float
    resource_namespace: str
    resource_name: str
    resource_type: str
    ip_match_mode: str = "substring"
    health_port: int | None = None

    def desired_label(self, ip_present: bool) -> str:
        return self.label_active if ip_present else self.label_inactive


def parse_duration(value: str) -> float:
    """Parse a Go-style duration string (``"1m30s"``, ``"500ms"``) into seconds.

    A sign prefix is accepted, and a bare ``"0"`` means zero. Every other value
    needs a unit on each component, so ``"30"`` is rejected.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f"invalid duration {value!r}")

    total = 0.0
    position = 0
    while position < len(text):
        match = _DURATION_PART.match(text, position)
        if match is None:
            raise ValueError(f"invalid duration {value!r}")
        number, unit = match.groups()
        total += float(number) * _DURATION_UNITS[unit]
        position = match.end()
    return sign * total


def _require(values: Mapping[str, str], name: str, *, non_empty: bool = False) -> str:
    raw = values.get(name)
    if raw is None:
        raise ConfigError(f"environment variable {name} is not set")
    if non_empty and not raw.strip():
        raise ConfigError(f"environment variable {name} must not be empty")
    return raw.strip() if non_empty else raw


def _require_duration(values: Mapping[str, str], name: str) -> float:
    raw = _require(values, name)
    try:
        return parse_duration(raw)
    except ValueError as exc:
        raise ConfigError(f"failed to parse {name}: {exc}") from exc


def _optional_port(values: Mapping[str, str], name: str) -> int | None:
    raw = values.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        port = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer") from exc
    if not 1 <= port <= 65535:
        raise ConfigError(f"{name} must be between 1 and 65535, got: {port}")
    return port


def load_config(env: Mapping[str, str] | None = None) -> AgentConfig:
    """Load the agent config from the environment.

    Every setting except the optional ones (``LOG_LEVEL``, ``IP_MATCH_MODE``,
    ``HEALTH_PORT``) must be present. Raises :class:`ConfigError` on the first
    missing or malformed value so the process never starts half-configured.
    """
    values = env if env is not None else os.environ

    node_name = _require(values, "HOSTNAME", non_empty=True)
    check_interval = _require_duration(values, "CHECK_INTERVAL")
    if check_interval <= 0:
        raise ConfigError("CHECK_INTERVAL must be a positive duration")

    ip_address = _require(values, "IP_ADDRESS", non_empty=True)
    label_key = _require(values, "NODE_LABEL_KEY", non_empty=True)
    label_active = _require(values, "NODE_LABEL_VALUE_ACTIVE")
    label_inactive = _require(values, "NODE_LABEL_VALUE_INACTIVE")
    if label_active == label_inactive:
        raise ConfigError(
            "NODE_LABEL_VALUE_ACTIVE and NODE_LABEL_VALUE_INACTIVE must differ, "
            f"both are {label_active!r}"
        )

    wait_time = _require_duration(values, "WAIT_TIME")
    if wait_time < 0:
        raise ConfigError("WAIT_TIME must not be negative")

    resource_namespace = _require(values, "RESOURCE_NAMESPACE", non_empty=True)
    resource_name = _require(values, "RESOURCE_NAME", non_empty=True)
    resource_type = _require(values, "RESOURCE_TYPE").strip().lower()
    if resource_type not in RESOURCE_TYPES:
        raise ConfigError(
            f"RESOURCE_TYPE must be one of {', '.join(RESOURCE_TYPES)}, got: {resource_type!r}"
        )

    ip_match_mode = values.get("IP_MATCH_MODE", "substring").strip().lower() or "substring"
    if ip_match_mode not in IP_MATCH_MODES:
        raise ConfigError(
            f"IP_MATCH_MODE must be one of {', '.join(IP_MATCH_MODES)}, got: {ip_match_mode!r}"
        )

    return AgentConfig(
        node_name=node_name,
        check_interval=check_interval,
        ip_address=ip_address,
        label_key=label_key,
        label_active=label_active,
        label_inactive=label_inactive,
        wait_time=wait_time,
        resource_namespace=resource_namespace,
        resource_name=resource_name,
        resource_type=resource_type,
        ip_match_mode=ip_match_mode,
        health_port=_optional_port(values, "HEALTH_PORT"),
    )
