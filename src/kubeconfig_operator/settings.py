"""Centralized operator settings using pydantic-settings.

This module provides a single source of truth for all operator configuration
loaded from environment variables. Uses pydantic for automatic validation,
type coercion, and documentation.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Operator configuration loaded from environment variables.

    All settings have sensible defaults for production use. Override via
    environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )
    log_health_probes: bool = Field(
        default=False,
        validation_alias="LOG_HEALTH_PROBES",
        description="Log health probe and metrics scrape requests",
    )

    # Namespace watching
    namespaces: str = Field(
        default="",
        validation_alias="KUBECONFIG_OPERATOR_NAMESPACES",
        description=(
            "Comma-separated list of namespaces to watch (empty = all namespaces)"
        ),
    )

    # Metrics and observability
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )
    tracing_enabled: bool = Field(
        default=False,
        validation_alias="OTEL_TRACING_ENABLED",
        description="Export OpenTelemetry traces for reconciliations",
    )
    tracing_endpoint: str = Field(
        default="http://localhost:4317",
        validation_alias="OTEL_EXPORTER_OTLP_ENDPOINT",
        description="OTLP gRPC collector endpoint",
    )
    tracing_sample_rate: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        validation_alias="OTEL_TRACES_SAMPLER_RATE",
        description="Fraction of root spans to sample",
    )

    # Operator behavior
    max_workers: int = Field(
        default=20,
        ge=1,
        validation_alias="MAX_WORKERS",
        description="Maximum number of concurrent synchronous handler workers",
    )
    certificate_poll_interval_seconds: int = Field(
        default=15,
        ge=1,
        validation_alias="CERTIFICATE_POLL_INTERVAL_SECONDS",
        description=(
            "Delay before re-checking an approved request whose certificate "
            "is not issued yet"
        ),
    )
    conflict_retry_delay_seconds: int = Field(
        default=1,
        ge=0,
        validation_alias="CONFLICT_RETRY_DELAY_SECONDS",
        description="Delay before retrying after an optimistic concurrency conflict",
    )

    # Credential generation
    rsa_key_size: int = Field(
        default=4096,
        ge=2048,
        validation_alias="RSA_KEY_SIZE",
        description="RSA modulus size in bits for generated keys",
    )
    signer_name: str = Field(
        default="kubernetes.io/kube-apiserver-client",
        validation_alias="SIGNER_NAME",
        description="signerName set on created certificate signing requests",
    )

    # Cluster bootstrap inputs
    trust_anchor_namespace: str = Field(
        default="kube-public",
        validation_alias="TRUST_ANCHOR_NAMESPACE",
        description="Namespace of the ConfigMap holding the cluster CA",
    )
    trust_anchor_configmap: str = Field(
        default="kube-root-ca.crt",
        validation_alias="TRUST_ANCHOR_CONFIGMAP",
        description="ConfigMap holding the cluster CA under the ca.crt key",
    )
    cluster_info_namespace: str = Field(
        default="kube-public",
        validation_alias="CLUSTER_INFO_NAMESPACE",
        description="Namespace of the cluster discovery ConfigMap",
    )
    cluster_info_configmap: str = Field(
        default="cluster-info",
        validation_alias="CLUSTER_INFO_CONFIGMAP",
        description="Discovery ConfigMap with a kubeconfig under the kubeconfig key",
    )
    fallback_server: str = Field(
        default="https://localhost:6443",
        validation_alias="FALLBACK_SERVER",
        description="API server endpoint used when discovery yields nothing",
    )
    default_role_kind: str = Field(
        default="ClusterRole",
        validation_alias="DEFAULT_ROLE_KIND",
        description="Kind of the role bound when an AccessRequest has no roleRef",
    )
    default_role_name: str = Field(
        default="cluster-admin",
        validation_alias="DEFAULT_ROLE_NAME",
        description="Name of the role bound when an AccessRequest has no roleRef",
    )

    @property
    def watched_namespaces(self) -> list[str] | None:
        """Parse watched namespaces from comma-separated string.

        Returns:
            List of namespace names, or None to watch all namespaces
        """
        if self.namespaces:
            return [ns.strip() for ns in self.namespaces.split(",") if ns.strip()]
        return None


# Global settings instance - initialized once at module import
settings = Settings()
