"""
Métriques Prometheus pour l'application.

Ce module définit les métriques HTTP et les métriques métier des opérations d'ancrage, expose
`/metrics` et fournit le middleware de mesure par route.
"""

import time

from fastapi import APIRouter, Request
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

metrics_router = APIRouter()

REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "route", "status"]
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Latency of HTTP requests", ["route"]
)

# Anchoring metrics
ANCHOR_OPERATIONS_TOTAL = Counter(
    "anchor_operations_total",
    "Anchor operations by terminal outcome",
    ["kind", "outcome"],
)
ANCHOR_RETRIES_TOTAL = Counter(
    "anchor_retries_total",
    "Retries of transient upstream failures",
    ["stage"],
)
ANCHOR_INFLIGHT_DEDUP_TOTAL = Counter(
    "anchor_inflight_dedup_total",
    "Duplicate requests attached to an existing operation",
    ["kind"],
)
ANCHOR_CONFIRMATION_SECONDS = Histogram(
    "anchor_confirmation_seconds",
    "Time from broadcast to confirmation",
    ["kind"],
    buckets=[0.5, 1, 2, 5, 10, 20, 40, 80, 160],
)
ANCHOR_INFLIGHT_OPERATIONS = Gauge(
    "anchor_inflight_operations",
    "Anchor operations not yet in a terminal state",
)


def route_label(request: Request) -> str:
    """Retourne le gabarit de route (`/evolve/{token_id}`) pour borner la cardinalité."""
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or "unmatched"


@metrics_router.get("/metrics")
def metrics():
    """
    Expose les métriques Prometheus au format texte.

    Returns:
        Response: Réponse HTTP contenant les métriques au format Prometheus.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware Prometheus pour mesurer les métriques HTTP.

    Collecte les métriques de comptage des requêtes et de latence par route pour l'exposition
    Prometheus.
    """

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response: Response = await call_next(request)
        route = route_label(request)
        REQUEST_COUNT.labels(request.method, route, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(route).observe(time.perf_counter() - start)
        return response
