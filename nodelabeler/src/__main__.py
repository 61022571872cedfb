from __future__ import annotations

import json
import logging
import os
import re
import signal
import sys
import threading

from kubernetes.config.config_exception import ConfigException

from nodelabeler.src.agent import NodeIPLabeler
from nodelabeler.src.config import ConfigError, load_config
from nodelabeler.src.health import start_health_server
from nodelabeler.src.kube import build_clients, load_kube_configuration
from nodelabeler.src.metrics import METRICS

RUNTIME_VERSION = "0.1.0"
_REDACTION_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~+/=-]+)"),
        r"\1[REDACTED]",
    ),
    (
        re.compile(
            r"(?i)(\b(?:authorization|token|password|passwd|secret|api[_-]?key)\b\s*[:=]\s*)([^\s,;]+)"
        ),
        r"\1[REDACTED]",
    ),
)
_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def redact_sensitive_text(value: str) -> str:
    redacted = value
    for pattern, replacement in _REDACTION_RULES:
        redacted = pattern.sub(replacement, redacted)
    return redacted


class JSONFormatter(logging.Formatter):
    """Emit logs as single-line JSON objects for structured log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": redact_sensitive_text(record.getMessage()),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["error"] = redact_sensitive_text(self.formatException(record.exc_info))
        return json.dumps(log_entry)


def resolve_log_level(raw: str | None) -> int:
    """Map ``LOG_LEVEL`` to a logging level; unset or unknown values mean INFO."""
    return _LOG_LEVELS.get((raw or "").strip().lower(), logging.INFO)


def configure_logging() -> None:
    log_handler = logging.StreamHandler()
    log_handler.setFormatter(JSONFormatter())
    logging.root.addHandler(log_handler)
    logging.root.setLevel(resolve_log_level(os.getenv("LOG_LEVEL")))


def main() -> None:
    """Agent entrypoint: configure logging, load config, and run the poll loop."""
    configure_logging()
    logger = logging.getLogger(__name__)

    try:
        config = load_config()
    except ConfigError as exc:
        logger.critical("Invalid configuration: %s", exc)
        sys.exit(1)

    try:
        load_kube_configuration()
    except ConfigException as exc:
        logger.critical("Failed to load Kubernetes configuration: %s", exc)
        sys.exit(1)
    core_api, apps_api = build_clients()

    METRICS.build_info.info(
        {
            "version": os.getenv("APP_VERSION", RUNTIME_VERSION),
            "revision": os.getenv("GIT_SHA", "unknown"),
        }
    )

    agent = NodeIPLabeler(core_api=core_api, apps_api=apps_api, config=config)

    health_server = None
    if config.health_port is not None:
        health_server = start_health_server(ready=agent.ready, port=config.health_port)

    shutdown_event = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    agent.run_forever(shutdown_event=shutdown_event)

    if health_server is not None:
        health_server.shutdown()
    logger.info("Agent stopped")


if __name__ == "__main__":
    main()
