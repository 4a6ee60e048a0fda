"""
Operator error hierarchy.

Errors are split by whether kopf should retry them. Retryable errors carry a
delay and surface as ``kopf.TemporaryError``; the others surface as
``kopf.PermanentError``. Terminal provisioning failures also carry a stable
``reason`` code which the reconcilers copy verbatim into the failing status
condition of the AccessRequest.
"""

from enum import StrEnum

import kopf
from kubernetes.client.rest import ApiException
from pydantic import ValidationError as PydanticValidationError

from ..constants import (
    REASON_GENERATION_FAILED,
    REASON_INVALID_SPEC,
    REASON_MALFORMED_REQUEST,
)

# API server reasons that need a human fix first; retried slowly
SLOW_RETRY_API_REASONS = frozenset({"Forbidden", "Unauthorized", "Invalid"})
SLOW_RETRY_DELAY = 300


class ErrorCategory(StrEnum):
    VALIDATION = "validation"
    TEMPORARY = "temporary"
    PERMANENT = "permanent"
    EXTERNAL = "external"
    CONFIGURATION = "configuration"


class OperatorError(Exception):
    """
    Base class for every error the operator raises on purpose.

    Attributes:
        message: Human readable description
        category: Coarse error category, used for metrics labels
        retryable: Whether kopf should run the handler again
        delay: Seconds kopf waits before the retry
        user_action: What a cluster user can do about it, if anything
        cause: The underlying exception
        reason: Stable condition reason code for terminal failures
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        retryable: bool = True,
        delay: int = 30,
        user_action: str | None = None,
        cause: Exception | None = None,
        reason: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.retryable = retryable
        self.delay = delay
        self.user_action = user_action
        self.cause = cause
        self.reason = reason

    def as_kopf_error(self) -> kopf.TemporaryError | kopf.PermanentError:
        if self.retryable:
            return kopf.TemporaryError(str(self), delay=self.delay)
        return kopf.PermanentError(str(self))

    def __str__(self) -> str:
        if self.user_action:
            return f"{self.message}\nAction required: {self.user_action}"
        return self.message


class ValidationError(OperatorError):
    """The AccessRequest spec does not describe a valid request."""

    def __init__(
        self, message: str, field: str | None = None, user_action: str | None = None
    ):
        if field:
            message = f"Validation error in field '{field}': {message}"
        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            retryable=False,
            user_action=user_action
            or "Fix the AccessRequest spec and recreate the resource",
            reason=REASON_INVALID_SPEC,
        )

    @classmethod
    def from_pydantic(cls, error: PydanticValidationError) -> "ValidationError":
        """Summarise a pydantic error as one line per offending field."""
        problems = "; ".join(
            f"{'.'.join(str(part) for part in item['loc']) or 'spec'}: {item['msg']}"
            for item in error.errors(include_url=False)
        )
        return cls(f"Invalid AccessRequest spec: {problems}")


class TemporaryError(OperatorError):
    """A condition that is expected to clear up on its own."""

    def __init__(self, message: str, delay: int = 30, user_action: str | None = None):
        super().__init__(
            message=message,
            category=ErrorCategory.TEMPORARY,
            retryable=True,
            delay=delay,
            user_action=user_action,
        )


class ConflictError(TemporaryError):
    """An object changed between our read and our write."""

    def __init__(self, kind: str, name: str, delay: int = 1):
        super().__init__(
            message=f"Conflict writing {kind} {name}: modified concurrently",
            delay=delay,
        )
        self.kind = kind
        self.name = name


class PermanentError(OperatorError):
    """Base for failures that end provisioning of an AccessRequest."""

    def __init__(
        self,
        message: str,
        reason: str = "Failed",
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.PERMANENT,
            retryable=False,
            user_action=user_action,
            cause=cause,
            reason=reason,
        )


class CredentialGenerationError(PermanentError):
    """Key or certificate signing request material could not be produced."""

    def __init__(
        self,
        message: str,
        reason: str = REASON_GENERATION_FAILED,
        cause: Exception | None = None,
    ):
        super().__init__(
            message=message,
            reason=reason,
            user_action="Fix spec.csr or spec.existingSecret and recreate "
            "the AccessRequest",
            cause=cause,
        )


class UnsupportedAlgorithmError(CredentialGenerationError):
    """The requested signature algorithm is not one the generator knows."""

    def __init__(self, algorithm: str):
        super().__init__(message=f"Unsupported signature algorithm '{algorithm}'")
        self.algorithm = algorithm


class MalformedRequestError(PermanentError):
    """Certificate signing request bytes could not be decoded or parsed."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(
            message=message,
            reason=REASON_MALFORMED_REQUEST,
            user_action="Provide a valid PEM encoded CERTIFICATE REQUEST",
            cause=cause,
        )


class SigningRequestFailedError(PermanentError):
    """The signing request reached a state provisioning cannot recover from."""

    def __init__(self, message: str, reason: str):
        super().__init__(
            message=message,
            reason=reason,
            user_action="Delete and recreate the AccessRequest to request a "
            "new certificate",
        )


class ExternalServiceError(OperatorError):
    """A service the operator talks to misbehaved."""

    def __init__(
        self,
        service: str,
        message: str,
        retryable: bool = True,
        delay: int = 60,
        user_action: str | None = None,
    ):
        super().__init__(
            message=f"{service} error: {message}",
            category=ErrorCategory.EXTERNAL,
            retryable=retryable,
            delay=delay,
            user_action=user_action,
        )


class KubernetesAPIError(ExternalServiceError):
    """
    The Kubernetes API server rejected or failed a call.

    API failures never end provisioning on their own. Rejections that need
    someone to fix RBAC or the operator first are retried slowly.
    """

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        delay: int | None = None,
        status_code: int | None = None,
    ):
        if reason:
            message = f"{message} (reason: {reason})"
        if delay is None:
            delay = SLOW_RETRY_DELAY if reason in SLOW_RETRY_API_REASONS else 60
        super().__init__(
            service="Kubernetes API",
            message=message,
            retryable=True,
            delay=delay,
            user_action="Check the operator's RBAC permissions and cluster "
            "connectivity",
        )
        self.status_code = status_code

    @classmethod
    def from_api_exception(
        cls, error: ApiException, message: str
    ) -> "KubernetesAPIError":
        """Classify an ``ApiException``, honouring a ``Retry-After`` header."""
        headers = getattr(error, "headers", None) or {}
        retry_after = headers.get("Retry-After")
        delay = int(retry_after) if str(retry_after).isdigit() else None
        return cls(
            message,
            reason=getattr(error, "reason", None),
            delay=delay,
            status_code=getattr(error, "status", None),
        )


class ConfigurationError(OperatorError):
    """The operator itself is misconfigured."""

    def __init__(
        self, message: str, retryable: bool = False, user_action: str | None = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            retryable=retryable,
            user_action=user_action or "Review the operator's environment settings",
        )
