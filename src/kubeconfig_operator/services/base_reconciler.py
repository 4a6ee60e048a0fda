"""
Base reconciler class providing common patterns for resource reconciliation.

This module defines the BaseReconciler class that wraps every reconcile in
logging, metrics and tracing and maps failures onto kopf's retry semantics.
"""

import time
from abc import ABC, abstractmethod
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..errors import (
    ConflictError,
    KubernetesAPIError,
    OperatorError,
    TemporaryError,
)
from ..observability.logging import OperatorLogger
from ..observability.tracing import record_reconcile_outcome, traced_operation
from ..settings import settings


class BaseReconciler(ABC):
    """
    Base class for all resource reconcilers.

    Provides common patterns for:
    - Error handling and retry logic
    - Kubernetes client management
    - Reconciliation logging, metrics and tracing
    """

    resource_type = "resource"

    def __init__(self, k8s_client: client.ApiClient | None = None):
        """
        Initialize base reconciler.

        Args:
            k8s_client: Kubernetes API client, will be created if not provided
        """
        self.k8s_client = k8s_client
        self.logger = OperatorLogger(self.__class__.__name__)

    @property
    def kubernetes_client(self) -> client.ApiClient:
        """Get or create Kubernetes API client."""
        if self.k8s_client is None:
            from ..utils.kubernetes import get_kubernetes_client

            self.k8s_client = get_kubernetes_client()
        return self.k8s_client

    async def reconcile(
        self, name: str, namespace: str | None = None, **kwargs
    ) -> dict[str, Any] | None:
        """
        Main reconciliation entry point with metrics tracking.

        Args:
            name: Resource name
            namespace: Resource namespace, None for cluster-scoped resources
            **kwargs: Additional handler arguments

        Returns:
            Whatever ``do_reconcile`` returns

        Raises:
            kopf.TemporaryError: The reconcile should be retried
            kopf.PermanentError: Retrying cannot help
        """
        from ..observability.metrics import metrics_collector

        resource_type = self.resource_type
        start_time = time.time()

        self.logger.log_reconciliation_start(
            resource_type=resource_type, resource_name=name, namespace=namespace
        )

        with traced_operation(
            f"reconcile_{resource_type}",
            namespace=namespace,
            name=name,
            resource_type=resource_type,
        ) as span:
            async with metrics_collector.track_reconciliation(
                resource_type=resource_type,
                namespace=namespace,
                operation="reconcile",
            ):
                try:
                    result = await self.do_reconcile(name, namespace, **kwargs)
                    record_reconcile_outcome(span, result)

                    self.logger.log_reconciliation_success(
                        resource_type=resource_type,
                        resource_name=name,
                        namespace=namespace,
                        duration=time.time() - start_time,
                    )
                    return result

                except OperatorError as e:
                    self._log_failure(name, namespace, e, start_time)
                    raise e.as_kopf_error() from e

                except ApiException as e:
                    error = self.map_api_exception(e, name)
                    self._log_failure(name, namespace, error, start_time)
                    raise error.as_kopf_error() from e

                except Exception as e:
                    # Wrap unexpected errors as temporary to allow retry
                    error = TemporaryError(
                        f"Unexpected error during reconciliation: {str(e)}"
                    )
                    self._log_failure(name, namespace, error, start_time)
                    raise error.as_kopf_error() from e

    def map_api_exception(self, e: ApiException, name: str) -> OperatorError:
        """Translate a Kubernetes API failure into the operator error taxonomy."""
        http_status = getattr(e, "status", None)
        if http_status == 409:
            return ConflictError(
                self.resource_type, name, delay=settings.conflict_retry_delay_seconds
            )
        return KubernetesAPIError.from_api_exception(e, f"HTTP {http_status}")

    def _log_failure(
        self,
        name: str,
        namespace: str | None,
        error: Exception,
        start_time: float,
    ) -> None:
        self.logger.log_reconciliation_error(
            resource_type=self.resource_type,
            resource_name=name,
            namespace=namespace,
            error=error,
            duration=time.time() - start_time,
        )

    @abstractmethod
    async def do_reconcile(
        self, name: str, namespace: str | None, **kwargs
    ) -> dict[str, Any] | None:
        """
        Perform the actual reconciliation logic.

        This method must be implemented by subclasses to provide
        resource-specific reconciliation logic. It must be safe to call
        repeatedly with no change in the cluster.

        Args:
            name: Resource name
            namespace: Resource namespace
            **kwargs: Additional handler arguments
        """
        raise NotImplementedError("Subclasses must implement do_reconcile method")
