"""Prometheus metrics for the Automail engine.

In-process counter store rendered in Prometheus text exposition format on
``/metrics``. Tracks HTTP traffic plus the queue outcomes of every
scheduler run, so a stalled or failing queue shows up on a dashboard
without querying the database.

Each process keeps its own store; the Celery worker and the API process
report independently.
"""

import time
import threading
from collections import defaultdict
from typing import Optional

from fastapi import APIRouter, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

_lock = threading.Lock()

_counters: dict[str, float] = defaultdict(float)
_histograms: dict[str, list[float]] = defaultdict(list)
_start_time = time.time()


def inc(name: str, value: float = 1.0, labels: Optional[dict] = None) -> None:
    key = _label_key(name, labels)
    with _lock:
        _counters[key] += value


def observe(name: str, value: float, labels: Optional[dict] = None) -> None:
    key = _label_key(name, labels)
    with _lock:
        _histograms[key].append(value)
        # Keep only last 10k observations to bound memory
        if len(_histograms[key]) > 10_000:
            _histograms[key] = _histograms[key][-5_000:]


def reset() -> None:
    """Drop all recorded values (tests)."""
    with _lock:
        _counters.clear()
        _histograms.clear()


def get_counter(name: str, labels: Optional[dict] = None) -> float:
    with _lock:
        return _counters.get(_label_key(name, labels), 0.0)


def _label_key(name: str, labels: Optional[dict] = None) -> str:
    if not labels:
        return name
    label_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
    return f"{name}{{{label_str}}}"


# ─── Engine helpers ───────────────────────────────────────────

def record_job_outcome(outcome: str) -> None:
    """Count one processed queue job (advanced, completed, failed, released)."""
    inc("automail_jobs_processed_total", labels={"outcome": outcome})


def record_scheduler_run(stopped_reason: str, duration_seconds: float) -> None:
    inc("automail_scheduler_runs_total", labels={"stopped_reason": stopped_reason})
    observe("automail_scheduler_run_duration_seconds", duration_seconds)


def record_campaign_exploded(job_count: int) -> None:
    inc("automail_campaigns_exploded_total")
    inc("automail_campaign_jobs_created_total", value=float(job_count))


# ─── Exposition ───────────────────────────────────────────────

def generate_metrics() -> str:
    """Generate Prometheus exposition format text."""
    lines: list[str] = []

    lines.append("# HELP automail_uptime_seconds Time since process start.")
    lines.append("# TYPE automail_uptime_seconds gauge")
    lines.append(f"automail_uptime_seconds {time.time() - _start_time:.1f}")
    lines.append("")

    with _lock:
        if _counters:
            seen_names: set[str] = set()
            for key, val in sorted(_counters.items()):
                base_name = key.split("{")[0]
                if base_name not in seen_names:
                    lines.append(f"# TYPE {base_name} counter")
                    seen_names.add(base_name)
                lines.append(f"{key} {val}")
            lines.append("")

        # Simplified summaries: sum and count only
        if _histograms:
            seen_names = set()
            for key, values in sorted(_histograms.items()):
                base_name = key.split("{")[0]
                if base_name not in seen_names:
                    lines.append(f"# TYPE {base_name} summary")
                    seen_names.add(base_name)
                if values:
                    lines.append(f"{key}_count {len(values)}")
                    lines.append(f"{key}_sum {sum(values):.4f}")
            lines.append("")

    return "\n".join(lines) + "\n"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Track HTTP request count and duration per method/route/status."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        # Collapse UUID path segments so per-automation hooks share a series
        parts = [
            "{id}" if len(part) == 36 and part.count("-") == 4 else part
            for part in request.url.path.split("/")
        ]
        labels = {
            "method": request.method,
            "path": "/".join(parts),
            "status": str(response.status_code),
        }

        inc("automail_http_requests_total", labels=labels)
        observe("automail_http_request_duration_seconds", duration, labels=labels)

        return response


metrics_router = APIRouter()


@metrics_router.get("/metrics")
async def prometheus_metrics():
    """Prometheus-compatible metrics endpoint."""
    return Response(
        content=generate_metrics(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
