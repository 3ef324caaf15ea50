"""Tests for the CloudWatch metrics client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from coverage_agent.services.metrics import NAMESPACE, MetricsClient


def _make_client(*, enabled: bool = False) -> MetricsClient:
    with patch.dict("os.environ", {"METRICS_ENABLED": str(enabled).lower()}):
        with patch.object(MetricsClient, "_start_flush_thread"):
            return MetricsClient()


def _dimensions(client: MetricsClient, name: str) -> dict[str, str]:
    metric = next(m for m in client._buffer if m["MetricName"] == name)
    return {d["Name"]: d["Value"] for d in metric["Dimensions"]}


class TestMetricsRecording:
    """Verify that record_call / track buffer the right data."""

    def test_successful_call_buffers_count_and_latency(self):
        client = _make_client()
        client.record_call("coveragex", "get_makes", 123.4)
        assert len(client._buffer) == 2
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"ExternalAPI/RequestCount", "ExternalAPI/Latency"}

    def test_failed_call_adds_error_count(self):
        client = _make_client()
        client.record_call("chatwoot", "send_message", 500.0, error_type="timeout")
        assert len(client._buffer) == 3
        assert _dimensions(client, "ExternalAPI/ErrorCount")["ErrorType"] == "timeout"
        assert _dimensions(client, "ExternalAPI/RequestCount")["Status"] == "failure"

    def test_dimensions_include_service_and_operation(self):
        client = _make_client()
        client.record_call("coveragex", "get_plan", 50.0)
        assert _dimensions(client, "ExternalAPI/RequestCount") == {
            "Service": "coveragex", "Status": "success",
        }
        assert _dimensions(client, "ExternalAPI/Latency") == {
            "Service": "coveragex", "Operation": "get_plan",
        }

    def test_track_records_success(self):
        client = _make_client()
        with client.track("anthropic", "llm_invoke"):
            pass
        assert _dimensions(client, "ExternalAPI/RequestCount")["Status"] == "success"

    def test_track_records_exception_type_and_reraises(self):
        client = _make_client()
        with pytest.raises(TimeoutError):
            with client.track("anthropic", "llm_invoke"):
                raise TimeoutError("slow")
        assert _dimensions(client, "ExternalAPI/ErrorCount")["ErrorType"] == "TimeoutError"


class TestMetricsFlush:
    """Verify flush behaviour with and without CloudWatch enabled."""

    def test_flush_when_disabled_sends_nothing(self):
        client = _make_client()
        client.record_call("coveragex", "get_makes", 100.0)
        assert client.flush() == 0
        assert client._buffer == []

    def test_flush_when_enabled_calls_put_metric_data(self):
        client = _make_client(enabled=True)
        mock_cw = MagicMock()
        client._cw_client = mock_cw

        client.record_call("coveragex", "get_makes", 100.0)
        sent = client.flush()

        assert sent == 2
        mock_cw.put_metric_data.assert_called_once()
        call_args = mock_cw.put_metric_data.call_args
        assert call_args[1]["Namespace"] == NAMESPACE
        assert len(call_args[1]["MetricData"]) == 2

    def test_flush_failure_is_logged_not_raised(self):
        client = _make_client(enabled=True)
        client._cw_client = MagicMock()
        client._cw_client.put_metric_data.side_effect = RuntimeError("throttled")

        client.record_call("coveragex", "get_makes", 100.0)
        assert client.flush() == 0

    def test_flush_empty_buffer_returns_zero(self):
        assert _make_client(enabled=True).flush() == 0
