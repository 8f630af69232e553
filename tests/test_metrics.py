from __future__ import annotations

from src.chatproxy.errors import ErrorCode, UpstreamStatusError, make_error_body
from src.chatproxy.metrics import GatewayMetrics
from src.chatproxy.types import AttemptOutcome, classify_status


def test_snapshot_counts_requests_attempts_and_evictions() -> None:
    metrics = GatewayMetrics()

    metrics.record_attempt(AttemptOutcome.RETRYABLE.value)
    metrics.record_attempt(AttemptOutcome.SUCCESS.value)
    metrics.record_eviction()
    metrics.record_request(status=200, ok=True, latency_ms=120)
    metrics.record_request(status=503, ok=False, latency_ms=40)

    snapshot = metrics.snapshot()
    assert snapshot["attempts"] == {"retryable": 1, "success": 1}
    assert snapshot["evictions"] == 1
    assert snapshot["requests"] == {("200", "true"): 1, ("503", "false"): 1}


def test_render_emits_latency_histogram() -> None:
    metrics = GatewayMetrics()
    metrics.record_request(status=200, ok=True, latency_ms=300)

    text = metrics.render().decode()

    assert 'chatproxy_request_latency_seconds_bucket{ok="true",le="0.25"} 0' in text
    assert 'chatproxy_request_latency_seconds_bucket{ok="true",le="0.5"} 1' in text
    assert 'chatproxy_request_latency_seconds_bucket{ok="true",le="+Inf"} 1' in text
    assert 'chatproxy_request_latency_seconds_count{ok="true"} 1' in text


def test_status_classification() -> None:
    assert [classify_status(s) for s in (200, 204, 401, 402, 403, 429, 400, 500)] == [
        AttemptOutcome.SUCCESS,
        AttemptOutcome.SUCCESS,
        AttemptOutcome.FATAL,
        AttemptOutcome.FATAL,
        AttemptOutcome.FATAL,
        AttemptOutcome.RETRYABLE,
        AttemptOutcome.OTHER,
        AttemptOutcome.OTHER,
    ]


def test_error_body_shape() -> None:
    exc = UpstreamStatusError(418, "teapot")

    assert exc.status_code == 418
    assert make_error_body(message=exc.message, code=exc.code) == {
        "error": "Upstream API error: 418",
        "code": "invalid_request",
    }
    assert ErrorCode.from_status(401) is ErrorCode.INVALID_TOKEN
    assert ErrorCode.from_status(503) is ErrorCode.CREDENTIALS_EXHAUSTED
    assert UpstreamStatusError(500).code is ErrorCode.UPSTREAM_ERROR
