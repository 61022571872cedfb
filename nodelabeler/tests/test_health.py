from __future__ import annotations

import threading
import urllib.error
import urllib.request

from nodelabeler.src.health import start_health_server


def _get(url: str, timeout: float = 2) -> tuple[int, str]:
    """Helper to make a GET request and return (status_code, body)."""
    try:
        with urllib.request.urlopen(url, timeout=timeout) as response:  # noqa: S310
            return response.status, response.read().decode()
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read().decode()


class TestHealthServer:
    def setup_method(self) -> None:
        self.ready = threading.Event()
        self.server = start_health_server(ready=self.ready, port=0)
        self.base_url = f"http://127.0.0.1:{self.server.server_address[1]}"

    def teardown_method(self) -> None:
        self.server.shutdown()

    def test_healthz_always_returns_200(self) -> None:
        assert _get(f"{self.base_url}/healthz") == (200, "ok")

    def test_readyz_returns_503_before_first_node_fetch(self) -> None:
        assert _get(f"{self.base_url}/readyz") == (503, "ready=false")

    def test_readyz_returns_200_when_ready(self) -> None:
        self.ready.set()
        assert _get(f"{self.base_url}/readyz") == (200, "ready=true")

    def test_metrics_exposes_agent_counters(self) -> None:
        from nodelabeler.src.metrics import METRICS

        METRICS.ip_present.set(1)
        status, body = _get(f"{self.base_url}/metrics")

        assert status == 200
        assert "nodelabeler_ip_present 1.0" in body
        assert "nodelabeler_errors_total" in body

    def test_unknown_path_returns_404(self) -> None:
        status, _ = _get(f"{self.base_url}/nope")
        assert status == 404
