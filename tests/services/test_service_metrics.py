from unittest.mock import patch

import pytest

from nexvoy.monitoring.prometheus_metrics import REGISTRY, prometheus_metrics
from nexvoy.services.base import BaseService


class _Sample(BaseService):
    @BaseService.measure_operation("do_work")
    def do_work(self, fail=False):
        if fail:
            raise ValueError("nope")
        return "done"


def _count(status):
    value = REGISTRY.get_sample_value(
        "nexvoy_service_operation_duration_seconds_count",
        {"service": "_Sample", "operation": "do_work", "status": status},
    )
    return value or 0.0


def test_measure_operation_records_success_and_error():
    before_ok, before_err = _count("success"), _count("error")
    service = _Sample()

    assert service.do_work() == "done"
    with pytest.raises(ValueError):
        service.do_work(fail=True)

    assert _count("success") == before_ok + 1
    assert _count("error") == before_err + 1


def test_slow_operation_warns():
    service = _Sample()
    with patch("nexvoy.services.base.time.perf_counter", side_effect=[0.0, 2.5]):
        with patch.object(service.logger, "warning") as warning:
            service.do_work()

    assert "Slow operation detected: do_work" in warning.call_args.args[0]


def test_metrics_exposition_includes_booking_collectors(booking_service, now):
    prometheus_metrics.record_transition("confirm", "success")

    body = prometheus_metrics.get_metrics().decode()

    assert "nexvoy_booking_transitions_total" in body
    assert prometheus_metrics.get_content_type().startswith("text/plain")
