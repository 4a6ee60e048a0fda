"""
Structured logging for the kubeconfig operator.

Log lines are JSON objects carrying a correlation ID per reconcile and the
AccessRequest or signing request they are about. Private key material is
handled by this operator, so every handler also redacts PEM private key
blocks before a record is emitted.
"""

import json
import logging
import re
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime

# Correlation ID of the reconcile running in the current task
correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

HEALTH_PROBE_PATHS = frozenset({"/healthz", "/health", "/ready", "/metrics"})

# Record attributes copied into the JSON document when present
STRUCTURED_FIELDS = (
    "resource_type",
    "resource_name",
    "namespace",
    "operation",
    "duration",
    "error_type",
    "phase",
    "signing_request",
    "username",
    "reason",
)

QUIET_LOGGERS = (
    "kopf",
    "kubernetes",
    "aiohttp.access",
    "aiohttp.server",
    "aiohttp.web",
)

PRIVATE_KEY_BLOCK = re.compile(
    r"-----BEGIN (?:[A-Z0-9]+ )?PRIVATE KEY-----.*?"
    r"-----END (?:[A-Z0-9]+ )?PRIVATE KEY-----",
    re.DOTALL,
)
REDACTED = "[REDACTED PRIVATE KEY]"


class HealthProbeFilter(logging.Filter):
    """Drops access log lines for the probe and scrape endpoints."""

    def __init__(self, suppress_health_logs: bool = True):
        super().__init__()
        self.suppress_health_logs = suppress_health_logs

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.suppress_health_logs:
            return True
        message = record.getMessage()
        return not any(path in message for path in HEALTH_PROBE_PATHS)


class PrivateKeyRedactionFilter(logging.Filter):
    """
    Replaces PEM private key blocks in the rendered message.

    The message is rendered once and frozen on the record, so formatters
    downstream never see the original arguments.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if "PRIVATE KEY-----" in message:
            record.msg = PRIVATE_KEY_BLOCK.sub(REDACTED, message)
            record.args = ()
        return True


class CorrelationIDFilter(logging.Filter):
    """Stamps the current correlation ID on every record, creating one if unset."""

    def filter(self, record: logging.LogRecord) -> bool:
        current = correlation_id.get()
        if not current:
            current = set_correlation_id(generate_correlation_id())
        record.correlation_id = current
        return True


class StructuredFormatter(logging.Formatter):
    """Renders records as single-line JSON documents."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", ""),
        }

        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        namespace = log_data.get("namespace")
        name = log_data.get("resource_name")
        if name:
            log_data["resource"] = f"{namespace}/{name}" if namespace else name

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def set_correlation_id(corr_id: str) -> str:
    correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str:
    return correlation_id.get("")


def _build_formatter(json_output: bool, with_correlation: bool) -> logging.Formatter:
    if json_output:
        return StructuredFormatter()
    prefix = "%(asctime)s - "
    if with_correlation:
        prefix += "%(correlation_id)s - "
    return logging.Formatter(prefix + "%(name)s - %(levelname)s - %(message)s")


def setup_structured_logging(
    log_level: str = "INFO",
    enable_json_formatting: bool = True,
    correlation_id_enabled: bool = True,
    log_health_probes: bool = False,
) -> None:
    """
    Replace the root handlers with a single configured stream handler.

    Args:
        log_level: Logging level name
        enable_json_formatting: Emit JSON instead of plain text
        correlation_id_enabled: Attach correlation IDs to records
        log_health_probes: Keep access logs for probe and scrape requests
    """
    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)

    handler = logging.StreamHandler()
    handler.setFormatter(
        _build_formatter(enable_json_formatting, correlation_id_enabled)
    )
    handler.addFilter(PrivateKeyRedactionFilter())
    if correlation_id_enabled:
        handler.addFilter(CorrelationIDFilter())
    if not log_health_probes:
        handler.addFilter(HealthProbeFilter())

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class OperatorLogger:
    """
    Logger used by the reconcilers.

    Keyword arguments passed to the level methods become structured fields.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _resource_event(
        self,
        level: int,
        message: str,
        resource_type: str,
        resource_name: str,
        namespace: str | None,
        operation: str,
        exc_info: bool = False,
        **fields,
    ) -> None:
        self.logger.log(
            level,
            message,
            extra={
                "resource_type": resource_type,
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": operation,
                **fields,
            },
            exc_info=exc_info,
        )

    def log_reconciliation_start(
        self,
        resource_type: str,
        resource_name: str,
        namespace: str | None,
        correlation_id: str | None = None,
    ) -> str:
        """
        Start a new correlation scope for one reconcile and log it.

        Returns:
            The correlation ID now active in this task
        """
        corr_id = set_correlation_id(correlation_id or generate_correlation_id())
        self._resource_event(
            logging.INFO,
            f"Reconciling {resource_type} {resource_name}",
            resource_type,
            resource_name,
            namespace,
            "reconcile_start",
        )
        return corr_id

    def log_reconciliation_success(
        self,
        resource_type: str,
        resource_name: str,
        namespace: str | None,
        duration: float,
    ) -> None:
        self._resource_event(
            logging.INFO,
            f"Reconciled {resource_type} {resource_name} in {duration:.3f}s",
            resource_type,
            resource_name,
            namespace,
            "reconcile_success",
            duration=duration,
        )

    def log_reconciliation_error(
        self,
        resource_type: str,
        resource_name: str,
        namespace: str | None,
        error: Exception,
        duration: float,
    ) -> None:
        """
        Log a failed reconcile.

        Retryable errors (conflicts, a certificate not issued yet) are part of
        normal operation and go out at WARNING without a traceback.
        """
        retryable = getattr(error, "retryable", False)
        self._resource_event(
            logging.WARNING if retryable else logging.ERROR,
            f"Reconcile of {resource_type} {resource_name} failed: {error}",
            resource_type,
            resource_name,
            namespace,
            "reconcile_error",
            exc_info=not retryable,
            error_type=type(error).__name__,
            duration=duration,
        )

    def debug(self, message: str, **kwargs) -> None:
        self.logger.debug(message, extra=kwargs)

    def info(self, message: str, **kwargs) -> None:
        self.logger.info(message, extra=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self.logger.warning(message, extra=kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs) -> None:
        self.logger.error(message, exc_info=exc_info, extra=kwargs)
