#!/usr/bin/env python3
"""
Kubeconfig Operator - entry point.

Registers the AccessRequest and CertificateSigningRequest handlers with kopf
and configures the process around them: structured logging, the kubernetes
client, tracing, and the metrics/health HTTP server.

Usage:
    python -m kubeconfig_operator.operator
    # Or with kopf directly:
    kopf run -m kubeconfig_operator.operator --all-namespaces

Environment Variables:
    KUBECONFIG_OPERATOR_NAMESPACES: Comma-separated list of namespaces to watch
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
    See kubeconfig_operator.settings for the full list.
"""

import logging
import random
import sys
from typing import Any

import kopf
from kubernetes import config

from kubeconfig_operator import __version__
from kubeconfig_operator.constants import API_GROUP

# Imported for their kopf handler registrations
from kubeconfig_operator.handlers import (  # noqa: F401
    access_request,
    signing_request,
)
from kubeconfig_operator.observability.health import HealthChecker
from kubeconfig_operator.observability.logging import setup_structured_logging
from kubeconfig_operator.observability.metrics import MetricsServer
from kubeconfig_operator.observability.tracing import setup_tracing, shutdown_tracing
from kubeconfig_operator.settings import settings as operator_settings

OPERATOR_NAME = "kubeconfig-operator"
LIVENESS_ENDPOINT = "http://0.0.0.0:8080/healthz"

# kopf.OperatorSettings cannot carry custom attributes
_global_metrics_server: MetricsServer | None = None


def configure_logging() -> None:
    setup_structured_logging(
        log_level=operator_settings.log_level.upper(),
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
        log_health_probes=operator_settings.log_health_probes,
    )


def get_watched_namespaces() -> list[str] | None:
    """Namespaces to watch, or None for cluster-wide operation."""
    return operator_settings.watched_namespaces


def load_kubernetes_config() -> None:
    """Prefer the in-cluster service account, fall back to a local kubeconfig."""
    try:
        config.load_incluster_config()
        logging.info("Using in-cluster Kubernetes configuration")
        return
    except config.ConfigException:
        pass

    try:
        config.load_kube_config()
    except config.ConfigException:
        logging.error("No in-cluster configuration and no usable kubeconfig")
        raise
    logging.info("Using local kubeconfig")


async def start_metrics_server() -> MetricsServer | None:
    """
    Start the metrics and health endpoints.

    A port clash is logged and the operator runs on without the server.
    """
    server = MetricsServer(
        port=operator_settings.metrics_port, host=operator_settings.metrics_host
    )
    try:
        await server.start()
    except OSError as e:
        logging.error(f"Failed to start metrics server: {e}")
        logging.warning("Continuing without metrics server")
        return None
    return server


@kopf.on.startup()
async def startup_handler(settings: kopf.OperatorSettings, **_) -> None:
    """
    Configure kopf and the process before any handler runs.

    kopf keeps its progress and diff-base in annotations because the
    reconcilers own the whole status subresource.
    """
    global _global_metrics_server

    logging.info(f"Starting {OPERATOR_NAME} {__version__}")

    settings.watching.reconnect_backoff = 1.0
    settings.execution.max_workers = operator_settings.max_workers

    # Random priority per replica; the highest one becomes the active peer
    settings.peering.name = OPERATOR_NAME
    settings.peering.priority = random.randint(0, 32767)
    logging.info(f"Peering with priority {settings.peering.priority}")

    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(
        prefix=API_GROUP
    )
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=API_GROUP, key="last-handled-configuration"
    )

    namespaces = get_watched_namespaces()
    logging.info(
        f"Watching namespaces: {', '.join(namespaces)}"
        if namespaces
        else "Watching AccessRequests in all namespaces"
    )

    load_kubernetes_config()

    setup_tracing(
        enabled=operator_settings.tracing_enabled,
        endpoint=operator_settings.tracing_endpoint,
        sample_rate=operator_settings.tracing_sample_rate,
    )

    _global_metrics_server = await start_metrics_server()


@kopf.on.cleanup()
async def cleanup_handler(**_) -> None:
    """Stop the metrics server and flush pending spans."""
    global _global_metrics_server

    logging.info(f"Shutting down {OPERATOR_NAME}")

    if _global_metrics_server is not None:
        try:
            await _global_metrics_server.stop()
        except Exception as e:
            logging.error(f"Error stopping metrics server: {e}")
        _global_metrics_server = None

    shutdown_tracing()


def _probe_response(status: str, error: Exception | None = None) -> dict[str, Any]:
    response = {"status": status, "operator": OPERATOR_NAME}
    if error is not None:
        response["error"] = str(error)
    return response


@kopf.on.probe(id="healthz")
async def health_check(**_) -> dict[str, Any]:
    """Liveness: overall result of every health check."""
    try:
        checker = HealthChecker()
        results = await checker.check_all()
    except Exception as e:
        logging.error(f"Health check failed: {e}")
        return _probe_response("unhealthy", e)
    return _probe_response(checker.get_overall_health(results))


@kopf.on.probe(id="ready")
async def readiness_check(**_) -> dict[str, Any]:
    """Readiness: the API server answers and the AccessRequest CRD exists."""
    try:
        results = await HealthChecker().check_readiness()
    except Exception as e:
        logging.error(f"Readiness check failed: {e}")
        return _probe_response("not_ready", e)
    ready = all(result.status == "healthy" for result in results.values())
    return _probe_response("ready" if ready else "not_ready")


def main() -> None:
    configure_logging()

    namespaces = get_watched_namespaces()
    scope: dict[str, Any] = (
        {"namespaces": namespaces} if namespaces else {"clusterwide": True}
    )

    try:
        kopf.run(liveness_endpoint=LIVENESS_ENDPOINT, **scope)
    except KeyboardInterrupt:
        logging.info("Interrupted, exiting")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Operator failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
