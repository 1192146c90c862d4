"""
Prometheus Middleware Tests - 메트릭 설정 테스트
"""
from fastapi import FastAPI
from prometheus_client import REGISTRY
from prometheus_fastapi_instrumentator import Instrumentator

from pokerclock.middleware.prometheus import (
    record_clock_command,
    record_level_changes,
    setup_prometheus,
)


def _route_paths(app: FastAPI) -> list[str]:
    return [getattr(route, "path", None) for route in app.routes]


class TestSetupPrometheus:
    def test_setup_on_fresh_app(self):
        app = FastAPI()

        instrumentator = setup_prometheus(app)

        assert isinstance(instrumentator, Instrumentator)
        assert "/metrics" in _route_paths(app)

    def test_setup_twice_reuses_registered_metrics(self):
        setup_prometheus(FastAPI())
        app = FastAPI()
        setup_prometheus(app)

        assert "/metrics" in _route_paths(app)

    def test_application_exposes_metrics(self):
        from pokerclock.main import app

        assert "/metrics" in _route_paths(app)


class TestClockMetrics:
    def test_level_changes_counted(self):
        before = REGISTRY.get_sample_value(
            "pokerclock_clock_level_changes_total", {"source": "manual"}
        ) or 0.0

        record_level_changes(2, "manual")
        record_level_changes(0, "manual")

        after = REGISTRY.get_sample_value(
            "pokerclock_clock_level_changes_total", {"source": "manual"}
        )
        assert after == before + 2

    def test_command_counted(self):
        labels = {"command": "pause", "result": "ok"}
        before = REGISTRY.get_sample_value("pokerclock_clock_commands_total", labels) or 0.0

        record_clock_command("pause", "ok")

        assert REGISTRY.get_sample_value("pokerclock_clock_commands_total", labels) == before + 1
