"""
Prometheus metrics for the kubeconfig operator.

This module provides metrics collection for monitoring reconciliation
performance, credential issuance and signing request decisions, plus the
HTTP server that exposes them.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any

# aiohttp is provided transitively by kopf; the metrics server reuses it
from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
    json_response,
)
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Dedicated registry so the operator never exports the default process collectors twice
_metrics_registry = CollectorRegistry()

RECONCILIATION_TOTAL = Counter(
    "kubeconfig_operator_reconciliation_total",
    "Total number of reconciliation attempts",
    ["resource_type", "namespace", "result"],
    registry=_metrics_registry,
)

RECONCILIATION_DURATION = Histogram(
    "kubeconfig_operator_reconciliation_duration_seconds",
    "Time spent on reconciliation operations",
    ["resource_type", "namespace", "operation"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=_metrics_registry,
)

RECONCILIATION_ERRORS = Counter(
    "kubeconfig_operator_reconciliation_errors_total",
    "Total number of reconciliation errors",
    ["resource_type", "namespace", "error_type", "retryable"],
    registry=_metrics_registry,
)

ACCESS_REQUEST_PHASE_TRANSITIONS = Counter(
    "kubeconfig_operator_access_request_phase_transitions_total",
    "Number of AccessRequests that entered each phase",
    ["namespace", "phase"],
    registry=_metrics_registry,
)

SIGNING_REQUEST_DECISIONS = Counter(
    "kubeconfig_operator_signing_request_decisions_total",
    "Signing requests decided by the approval watcher",
    ["decision"],
    registry=_metrics_registry,
)

CREDENTIALS_GENERATED = Counter(
    "kubeconfig_operator_credentials_generated_total",
    "Key and signing request pairs generated",
    ["algorithm"],
    registry=_metrics_registry,
)

KUBECONFIGS_ISSUED = Counter(
    "kubeconfig_operator_kubeconfigs_issued_total",
    "Kubeconfig documents rendered from signed certificates",
    ["namespace"],
    registry=_metrics_registry,
)

OPERATOR_INFO = Gauge(
    "kubeconfig_operator_up",
    "Set to 1 while the operator process is running",
    [],
    registry=_metrics_registry,
)


def get_metrics_registry() -> CollectorRegistry:
    """Get the operator metrics registry."""
    return _metrics_registry


class MetricsCollector:
    """Records operator events against the dedicated registry."""

    def __init__(self):
        self.registry = get_metrics_registry()

    @asynccontextmanager
    async def track_reconciliation(
        self,
        resource_type: str,
        namespace: str | None,
        operation: str = "reconcile",
    ):
        """
        Time the wrapped reconcile and count its outcome.

        Errors are counted with their type and whether kopf will retry them,
        then re-raised unchanged.
        """
        labels = {"resource_type": resource_type, "namespace": namespace or ""}
        started = time.perf_counter()
        result = "success"
        try:
            yield
        except Exception as e:
            result = "error"
            RECONCILIATION_ERRORS.labels(
                **labels,
                error_type=type(e).__name__,
                retryable=str(bool(getattr(e, "retryable", False))).lower(),
            ).inc()
            raise
        finally:
            RECONCILIATION_TOTAL.labels(**labels, result=result).inc()
            RECONCILIATION_DURATION.labels(**labels, operation=operation).observe(
                time.perf_counter() - started
            )

    def record_phase_transition(self, namespace: str, phase: str) -> None:
        ACCESS_REQUEST_PHASE_TRANSITIONS.labels(namespace=namespace, phase=phase).inc()

    def record_signing_decision(self, decision: str) -> None:
        """Count an approval watcher decision, ``approved`` or ``failed``."""
        SIGNING_REQUEST_DECISIONS.labels(decision=decision).inc()

    def record_credentials_generated(self, algorithm: str) -> None:
        CREDENTIALS_GENERATED.labels(algorithm=algorithm).inc()

    def record_kubeconfig_issued(self, namespace: str) -> None:
        KUBECONFIGS_ISSUED.labels(namespace=namespace).inc()


def _probe_failure(status: str, error: Exception, http_status: int) -> Response:
    return json_response(
        {
            "status": status,
            "error": f"{type(error).__name__}. Check logs for details.",
            "timestamp": time.time(),
        },
        status=http_status,
    )


class MetricsServer:
    """
    aiohttp server for Prometheus scrapes and the operator's own probes.

    Routes:
        /metrics  Prometheus exposition of the operator registry
        /health   every health check, 503 when unhealthy
        /ready    API server and AccessRequest CRD checks, 503 until both pass
        /healthz  static liveness answer
    """

    def __init__(self, port: int = 8081, host: str = "0.0.0.0"):
        self.port = port
        self.host = host
        self.app = Application()
        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/health", self._health_handler)
        self.app.router.add_get("/ready", self._ready_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None

    async def _metrics_handler(self, request: Request) -> Response:
        try:
            payload = generate_latest(get_metrics_registry())
        except Exception as e:
            logger.error(f"Failed to render metrics: {e}")
            return Response(
                text=f"Error generating metrics: {type(e).__name__}. "
                "Check logs for details.",
                status=500,
            )
        # aiohttp rejects a charset inside content_type, pass it as a header
        return Response(body=payload, headers={"Content-Type": CONTENT_TYPE_LATEST})

    async def _health_handler(self, request: Request) -> Response:
        from .health import HealthChecker

        try:
            checker = HealthChecker()
            report = checker.to_dict(await checker.check_all())
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return _probe_failure("unhealthy", e, 500)

        healthy = report["status"] in ("healthy", "degraded")
        return json_response(report, status=200 if healthy else 503)

    async def _ready_handler(self, request: Request) -> Response:
        from .health import HealthChecker

        try:
            results: dict[str, Any] = await HealthChecker().check_readiness()
        except Exception as e:
            logger.error(f"Readiness check failed: {e}")
            return _probe_failure("not_ready", e, 503)

        checks = {name: result.status for name, result in results.items()}
        ready = all(status == "healthy" for status in checks.values())
        return json_response(
            {
                "status": "ready" if ready else "not_ready",
                "timestamp": time.time(),
                "checks": checks,
            },
            status=200 if ready else 503,
        )

    async def _healthz_handler(self, request: Request) -> Response:
        return Response(text="ok")

    async def start(self) -> None:
        self.runner = AppRunner(self.app)
        await self.runner.setup()
        self.site = TCPSite(self.runner, self.host, self.port)
        try:
            await self.site.start()
        except OSError:
            await self.runner.cleanup()
            self.runner = None
            self.site = None
            raise
        OPERATOR_INFO.set(1)
        logger.info(f"Metrics server listening on {self.host}:{self.port}")

    async def stop(self) -> None:
        if self.site is not None:
            await self.site.stop()
            self.site = None
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
        OPERATOR_INFO.set(0)
        logger.info("Metrics server stopped")


metrics_collector = MetricsCollector()
