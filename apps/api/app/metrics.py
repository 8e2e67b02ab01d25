from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

commercial_quotation_transitions_total = Counter(
    "commercial_quotation_transitions_total",
    "Quotation status transitions by action and outcome",
    ["action", "outcome"],
)

commercial_stage_moves_total = Counter(
    "commercial_stage_moves_total",
    "Promise stage moves by outcome",
    ["outcome"],
)

promise_log_write_failures_total = Counter(
    "promise_log_write_failures_total",
    "Promise log writes that failed after the primary mutation committed",
    ["action"],
)

test_promises_purged_total = Counter(
    "test_promises_purged_total",
    "Test promises removed by the purge job",
)

read_cache_hit_total = Counter(
    "read_cache_hit_total",
    "Tag cache hits by tag family",
    ["family"],
)

read_cache_miss_total = Counter(
    "read_cache_miss_total",
    "Tag cache misses by tag family",
    ["family"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_STUDIO_RE = re.compile(r"^/api/studios/[^/]+")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    # studio_slug stays named so dashboards can tell tenant routes apart
    return _PATH_PARAM_RE.sub(lambda match: match.group(0) if match.group(0) == "{studio_slug}" else "{id}", path)


def _sanitize_path(path: str) -> str:
    without_studio = _STUDIO_RE.sub("/api/studios/{studio_slug}", path)
    without_uuids = _UUID_RE.sub("{id}", without_studio)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_quotation_transition(action: str, outcome: str) -> None:
    commercial_quotation_transitions_total.labels(action=action, outcome=outcome).inc()


def observe_stage_move(outcome: str) -> None:
    commercial_stage_moves_total.labels(outcome=outcome).inc()


def observe_promise_log_write_failure(action: str) -> None:
    promise_log_write_failures_total.labels(action=action).inc()


def observe_test_promises_purged(count: int) -> None:
    if count > 0:
        test_promises_purged_total.inc(count)


def observe_read_cache_hit(family: str) -> None:
    read_cache_hit_total.labels(family=family).inc()


def observe_read_cache_miss(family: str) -> None:
    read_cache_miss_total.labels(family=family).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
