from __future__ import annotations

"""Prometheus metrics for the CodeAI endpoint.

Request latency is recorded per method, route and status by an HTTP
middleware. The GitHub and gateway clients count their own upstream calls.
"""

import time
from typing import Awaitable, Callable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

REQUEST_LATENCY = Histogram(
    "codeai_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

GITHUB_REQUESTS = Counter(
    "codeai_github_requests_total",
    "Calls made to the GitHub REST API",
    labelnames=("action", "status"),
)

GATEWAY_REQUESTS = Counter(
    "codeai_gateway_requests_total",
    "Chat completion requests sent to the AI gateway",
    labelnames=("status",),
)


# Both mounts of the endpoint report under one route label.
FUNCTIONS_PREFIX = "/functions/v1"


def route_label(path: str) -> str:
    """Collapse a request path to the route it was served by."""
    route = path.partition("?")[0]
    if route.startswith(FUNCTIONS_PREFIX):
        route = route[len(FUNCTIONS_PREFIX):]
    head = route.strip("/").split("/", 1)[0]
    return "/" + head


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def record_latency(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        route = route_label(request.url.path)
        if route == "/metrics":
            return await call_next(request)
        started = time.perf_counter()
        response = await call_next(request)
        # Streaming responses are timed to first byte, not to completion.
        REQUEST_LATENCY.labels(request.method, route, str(response.status_code)).observe(
            time.perf_counter() - started
        )
        return response

    return record_latency
