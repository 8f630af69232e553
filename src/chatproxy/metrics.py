from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any

PROM_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"
_HISTOGRAM_BUCKETS: tuple[float, ...] = (0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0)


def _new_histogram_state() -> dict[str, Any]:
    return {"buckets": [0] * (len(_HISTOGRAM_BUCKETS) + 1), "count": 0, "sum": 0.0}


class GatewayMetrics:
    __slots__ = ("_lock", "_requests", "_attempts", "_evictions", "_latency")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests: defaultdict[tuple[str, str], int] = defaultdict(int)
        self._attempts: defaultdict[str, int] = defaultdict(int)
        self._evictions = 0
        self._latency: defaultdict[str, dict[str, Any]] = defaultdict(_new_histogram_state)

    def record_attempt(self, outcome: str) -> None:
        with self._lock:
            self._attempts[outcome] += 1

    def record_eviction(self) -> None:
        with self._lock:
            self._evictions += 1

    def record_request(self, *, status: int, ok: bool, latency_ms: int) -> None:
        ok_label = "true" if ok else "false"
        latency_seconds = max(float(latency_ms) / 1000.0, 0.0)
        with self._lock:
            self._requests[(str(status), ok_label)] += 1
            state = self._latency[ok_label]
            buckets = state["buckets"]
            for idx, bound in enumerate(_HISTOGRAM_BUCKETS):
                if latency_seconds <= bound:
                    buckets[idx] += 1
            buckets[-1] += 1
            state["count"] += 1
            state["sum"] += latency_seconds

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "requests": dict(self._requests),
                "attempts": dict(self._attempts),
                "evictions": self._evictions,
            }

    def render(self) -> bytes:
        with self._lock:
            lines: list[str] = [
                "# HELP chatproxy_requests_total Total number of gateway chat requests",
                "# TYPE chatproxy_requests_total counter",
            ]
            for (status, ok_label), value in sorted(self._requests.items()):
                lines.append(
                    f'chatproxy_requests_total{{status="{status}",ok="{ok_label}"}} {value}'
                )
            lines.append("# HELP chatproxy_upstream_attempts_total Upstream attempts by outcome")
            lines.append("# TYPE chatproxy_upstream_attempts_total counter")
            for outcome, value in sorted(self._attempts.items()):
                lines.append(f'chatproxy_upstream_attempts_total{{outcome="{outcome}"}} {value}')
            lines.append("# HELP chatproxy_credential_evictions_total Credentials evicted from the pool")
            lines.append("# TYPE chatproxy_credential_evictions_total counter")
            lines.append(f"chatproxy_credential_evictions_total {self._evictions}")
            lines.append("# HELP chatproxy_request_latency_seconds Time to first upstream byte or failure")
            lines.append("# TYPE chatproxy_request_latency_seconds histogram")
            for ok_label, state in sorted(self._latency.items()):
                buckets = state["buckets"]
                for idx, bound in enumerate(_HISTOGRAM_BUCKETS):
                    le_value = format(bound, ".6g")
                    lines.append(
                        f'chatproxy_request_latency_seconds_bucket{{ok="{ok_label}",le="{le_value}"}} {buckets[idx]}'
                    )
                lines.append(
                    f'chatproxy_request_latency_seconds_bucket{{ok="{ok_label}",le="+Inf"}} {buckets[-1]}'
                )
                lines.append(
                    f'chatproxy_request_latency_seconds_count{{ok="{ok_label}"}} {state["count"]}'
                )
                lines.append(
                    f'chatproxy_request_latency_seconds_sum{{ok="{ok_label}"}} {state["sum"]}'
                )
        return ("\n".join(lines) + "\n").encode("utf-8")
