"""
OpenTelemetry tracing for the kubeconfig operator.

Every reconciliation runs inside a span named after the reconciler, carrying
the Kubernetes resource attributes. Tracing is disabled by default; when it
is disabled the OpenTelemetry API hands out no-op tracers, so callers never
need to check.

Usage:
    from kubeconfig_operator.observability.tracing import (
        setup_tracing,
        traced_operation,
    )

    setup_tracing(enabled=True, endpoint="http://otel-collector:4317")

    with traced_operation("reconcile_accessrequest", namespace="team-a", name="alice"):
        ...
"""

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Span, SpanKind, Status, StatusCode, Tracer

logger = logging.getLogger(__name__)

_tracer_provider: TracerProvider | None = None
_initialized: bool = False


def setup_tracing(
    enabled: bool = False,
    endpoint: str = "http://localhost:4317",
    service_name: str = "kubeconfig-operator",
    sample_rate: float = 1.0,
    insecure: bool = True,
) -> TracerProvider | None:
    """
    Initialize OpenTelemetry tracing for the operator.

    Args:
        enabled: Enable tracing (if False, returns None and does nothing)
        endpoint: OTLP collector endpoint (gRPC)
        service_name: Service name for traces
        sample_rate: Sampling rate for root spans (0.0-1.0)
        insecure: Use insecure connection (no TLS)

    Returns:
        TracerProvider if enabled, None otherwise
    """
    global _tracer_provider, _initialized

    if _initialized:
        logger.debug("Tracing already initialized, skipping")
        return _tracer_provider

    if not enabled:
        logger.info("OpenTelemetry tracing is disabled")
        _initialized = True
        return None

    logger.info(
        f"Initializing OpenTelemetry tracing: endpoint={endpoint}, "
        f"service={service_name}, sample_rate={sample_rate}"
    )

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "kubeconfig-operator",
        }
    )
    sampler = ParentBased(root=TraceIdRatioBased(sample_rate))
    _tracer_provider = TracerProvider(resource=resource, sampler=sampler)

    _tracer_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=insecure))
    )

    trace.set_tracer_provider(_tracer_provider)

    _initialized = True
    logger.info("OpenTelemetry tracing initialized successfully")
    return _tracer_provider


def shutdown_tracing() -> None:
    """Shutdown tracing and flush any pending spans."""
    global _tracer_provider, _initialized

    if _tracer_provider is not None:
        logger.info("Shutting down OpenTelemetry tracing")
        _tracer_provider.shutdown()
        _tracer_provider = None

    _initialized = False


def get_tracer(name: str = __name__) -> Tracer:
    """Get a tracer instance (no-op if tracing is disabled)."""
    return trace.get_tracer(name)


@contextmanager
def traced_operation(
    operation_name: str,
    namespace: str | None = None,
    name: str | None = None,
    resource_type: str | None = None,
) -> Iterator[Span]:
    """
    Run a block inside a span with Kubernetes resource attributes.

    Exceptions are recorded on the span and re-raised.
    """
    attributes = {"k8s.resource.name": name or "unknown"}
    if namespace:
        attributes["k8s.namespace"] = namespace
    if resource_type:
        attributes["k8s.resource.type"] = resource_type

    tracer = get_tracer(__name__)
    with tracer.start_as_current_span(
        operation_name, kind=SpanKind.INTERNAL, attributes=attributes
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise
        else:
            span.set_status(Status(StatusCode.OK))


def record_reconcile_outcome(span: Span, status: Mapping[str, Any] | None) -> None:
    """
    Attach the AccessRequest phase, and the failure reason if any, to a span.

    ``status`` is the status a reconcile persisted; None means the reconcile
    had nothing to do.
    """
    if not status:
        span.set_attribute("kubeconfig_operator.noop", True)
        return
    phase = status.get("phase")
    if phase:
        span.set_attribute("kubeconfig_operator.phase", phase)
    for condition in status.get("conditions") or []:
        if condition.get("type") == "Finished" and condition.get("status") == "False":
            span.set_attribute(
                "kubeconfig_operator.failure_reason", condition.get("reason", "")
            )


def is_tracing_enabled() -> bool:
    """Check if tracing is currently enabled and initialized."""
    return _initialized and _tracer_provider is not None
