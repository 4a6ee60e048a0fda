"""
Error handling module for the kubeconfig operator.

This module provides the error hierarchy used by the reconcilers and maps it
onto kopf's temporary/permanent retry semantics.
"""

from .operator_errors import (
    ConfigurationError,
    ConflictError,
    CredentialGenerationError,
    ErrorCategory,
    ExternalServiceError,
    KubernetesAPIError,
    MalformedRequestError,
    OperatorError,
    PermanentError,
    SigningRequestFailedError,
    TemporaryError,
    UnsupportedAlgorithmError,
    ValidationError,
)

__all__ = [
    "OperatorError",
    "ErrorCategory",
    "ValidationError",
    "TemporaryError",
    "PermanentError",
    "ExternalServiceError",
    "KubernetesAPIError",
    "ConflictError",
    "ConfigurationError",
    "CredentialGenerationError",
    "UnsupportedAlgorithmError",
    "MalformedRequestError",
    "SigningRequestFailedError",
]
