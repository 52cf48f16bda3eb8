"""Prometheus metrics helpers."""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

_REGISTRY = CollectorRegistry()

REQUEST_LATENCY = Histogram(
    "govee_api_request_duration_seconds",
    "Time spent processing API requests",
    ["method", "path", "status"],
    registry=_REGISTRY,
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5],
)
REQUEST_COUNT = Counter(
    "govee_api_requests_total",
    "HTTP requests processed by the API",
    ["method", "path", "status"],
    registry=_REGISTRY,
)
DISCOVERY_RESPONSES = Counter(
    "govee_discovery_responses_total",
    "Scan responses parsed",
    registry=_REGISTRY,
)
DISCOVERY_ERRORS = Counter(
    "govee_discovery_errors_total",
    "Scan responses discarded",
    ["reason"],
    registry=_REGISTRY,
)
DISCOVERY_CYCLE_DURATION = Histogram(
    "govee_discovery_cycle_duration_seconds",
    "Time spent performing discovery scans",
    ["result"],
    registry=_REGISTRY,
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10],
)
LAN_COMMANDS = Counter(
    "govee_lan_commands_total",
    "LAN control commands by outcome",
    ["cmd", "result"],
    registry=_REGISTRY,
)
LAN_COMMAND_DURATION = Histogram(
    "govee_lan_command_duration_seconds",
    "Time to deliver LAN control commands",
    ["cmd", "result"],
    registry=_REGISTRY,
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2],
)
CLOUD_REQUESTS = Counter(
    "govee_cloud_requests_total",
    "Requests made to the Govee cloud API",
    ["operation", "result"],
    registry=_REGISTRY,
)
CONTROL_PATH = Counter(
    "govee_control_path_total",
    "Control requests by the path that completed them",
    ["path"],
    registry=_REGISTRY,
)
LAN_FALLBACKS = Counter(
    "govee_lan_fallbacks_total",
    "Control requests that fell back from LAN to cloud",
    ["reason"],
    registry=_REGISTRY,
)


def latest_metrics() -> bytes:
    """Render the latest metrics payload for scraping."""

    return generate_latest(_REGISTRY)


def observe_request(method: str, path: str, status: int, duration_seconds: float) -> None:
    """Record API request metrics."""

    status_str = str(status)
    REQUEST_COUNT.labels(method=method, path=path, status=status_str).inc()
    REQUEST_LATENCY.labels(method=method, path=path, status=status_str).observe(duration_seconds)


def record_discovery_response() -> None:
    """Record a successfully parsed scan response."""

    DISCOVERY_RESPONSES.inc()


def record_discovery_error(reason: str) -> None:
    """Record a discarded scan response."""

    DISCOVERY_ERRORS.labels(reason=reason).inc()


def observe_discovery_cycle(result: str, duration_seconds: float) -> None:
    """Record the duration of a discovery scan."""

    DISCOVERY_CYCLE_DURATION.labels(result=result).observe(duration_seconds)


def observe_lan_command(cmd: str, result: str, duration_seconds: float) -> None:
    """Record the outcome and duration of a LAN control command."""

    LAN_COMMANDS.labels(cmd=cmd, result=result).inc()
    LAN_COMMAND_DURATION.labels(cmd=cmd, result=result).observe(duration_seconds)


def record_cloud_request(operation: str, result: str) -> None:
    """Record a cloud API call outcome."""

    CLOUD_REQUESTS.labels(operation=operation, result=result).inc()


def record_control_path(path: str) -> None:
    """Record which path (lan or cloud) completed a control request."""

    CONTROL_PATH.labels(path=path).inc()


def record_lan_fallback(reason: str) -> None:
    """Record a fallback from LAN to cloud."""

    LAN_FALLBACKS.labels(reason=reason).inc()


METRICS_CONTENT_TYPE = CONTENT_TYPE_LATEST
