"""
Health checks for the kubeconfig operator.

The operator depends on three things being served by the API server: the
core API itself, the AccessRequest CRD and ``certificates.k8s.io/v1``.
Readiness only requires the first two; a missing certificates API leaves the
operator running but degraded.
"""

import functools
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import ACCESS_REQUEST_CRD_NAME

logger = logging.getLogger(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"
UNKNOWN = "unknown"

CheckOutcome = tuple[str, str, dict[str, Any] | None]


@dataclass
class HealthCheckResult:
    """Result of a health check operation."""

    name: str
    status: str  # "healthy", "unhealthy", "degraded", "unknown"
    message: str
    details: dict[str, Any] | None = None
    duration: float = 0.0
    timestamp: float = 0.0


def _timed_check(name: str):
    """Turn a check returning (status, message, details) into a timed result."""

    def decorator(
        check: Callable[["HealthChecker"], Awaitable[CheckOutcome]],
    ) -> Callable[["HealthChecker"], Awaitable[HealthCheckResult]]:
        @functools.wraps(check)
        async def wrapper(self: "HealthChecker") -> HealthCheckResult:
            started = time.perf_counter()
            status, message, details = await check(self)
            return HealthCheckResult(
                name=name,
                status=status,
                message=message,
                details=details,
                duration=time.perf_counter() - started,
                timestamp=time.time(),
            )

        return wrapper

    return decorator


class HealthChecker:
    """Performs health checks for the operator."""

    def __init__(self, k8s_client: client.ApiClient | None = None):
        self.k8s_client = k8s_client

    @property
    def kubernetes_client(self) -> client.ApiClient:
        if self.k8s_client is None:
            from ..utils.kubernetes import get_kubernetes_client

            self.k8s_client = get_kubernetes_client()
        return self.k8s_client

    async def check_all(self) -> dict[str, HealthCheckResult]:
        return await self._run_checks(
            {
                "kubernetes_api": self._check_kubernetes_api,
                "crds_installed": self._check_crds_installed,
                "certificates_api": self._check_certificates_api,
            }
        )

    async def check_readiness(self) -> dict[str, HealthCheckResult]:
        """Run only the checks that gate readiness."""
        return await self._run_checks(
            {
                "kubernetes_api": self._check_kubernetes_api,
                "crds_installed": self._check_crds_installed,
            }
        )

    async def _run_checks(
        self, checks: dict[str, Callable[[], Awaitable[HealthCheckResult]]]
    ) -> dict[str, HealthCheckResult]:
        results = {}
        for name, check in checks.items():
            try:
                results[name] = await check()
            except Exception as e:
                logger.warning(f"Health check {name} crashed: {e}")
                results[name] = HealthCheckResult(
                    name=name,
                    status=UNHEALTHY,
                    message=f"Health check failed: {e}",
                    timestamp=time.time(),
                )
        return results

    @_timed_check("kubernetes_api")
    async def _check_kubernetes_api(self) -> CheckOutcome:
        started = time.perf_counter()
        try:
            version = client.VersionApi(self.kubernetes_client).get_code()
        except ApiException as e:
            return (
                UNHEALTHY,
                f"Kubernetes API error: {e.reason}",
                {"status_code": e.status},
            )
        return (
            HEALTHY,
            "Kubernetes API is accessible",
            {
                "api_server_version": getattr(version, "git_version", UNKNOWN),
                "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )

    @_timed_check("crds_installed")
    async def _check_crds_installed(self) -> CheckOutcome:
        api_extensions = client.ApiextensionsV1Api(self.kubernetes_client)
        try:
            api_extensions.read_custom_resource_definition(name=ACCESS_REQUEST_CRD_NAME)
        except ApiException as e:
            if e.status != 404:
                raise
            return (
                UNHEALTHY,
                f"Missing required CRD: {ACCESS_REQUEST_CRD_NAME}",
                {"missing": [ACCESS_REQUEST_CRD_NAME]},
            )
        return (
            HEALTHY,
            "AccessRequest CRD is installed",
            {"installed": [ACCESS_REQUEST_CRD_NAME]},
        )

    @_timed_check("certificates_api")
    async def _check_certificates_api(self) -> CheckOutcome:
        """Signing requests cannot be filed without certificates.k8s.io/v1."""
        try:
            client.CertificatesV1Api(self.kubernetes_client).get_api_resources()
        except ApiException as e:
            return (
                DEGRADED,
                f"certificates.k8s.io/v1 unavailable: {e.reason}",
                {"status_code": e.status},
            )
        return HEALTHY, "certificates.k8s.io/v1 is served", None

    def get_overall_health(self, results: dict[str, HealthCheckResult]) -> str:
        """Worst status wins; no results at all is ``unknown``."""
        if not results:
            return UNKNOWN
        statuses = {result.status for result in results.values()}
        if UNHEALTHY in statuses:
            return UNHEALTHY
        if statuses & {DEGRADED, UNKNOWN}:
            return DEGRADED
        return HEALTHY

    def to_dict(self, results: dict[str, HealthCheckResult]) -> dict[str, Any]:
        return {
            "status": self.get_overall_health(results),
            "timestamp": time.time(),
            "checks": {
                name: {
                    "status": result.status,
                    "message": result.message,
                    "details": result.details,
                    "duration": result.duration,
                    "timestamp": result.timestamp,
                }
                for name, result in results.items()
            },
        }
