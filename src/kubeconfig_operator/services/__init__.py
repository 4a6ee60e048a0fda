"""
Services module for the kubeconfig operator.

This module contains the reconcilers behind the kopf handlers: the
AccessRequest state machine and the signing request approval watcher.
"""

from .access_request_reconciler import AccessRequestReconciler
from .base_reconciler import BaseReconciler
from .signing_request_reconciler import SigningRequestReconciler

__all__ = [
    "BaseReconciler",
    "AccessRequestReconciler",
    "SigningRequestReconciler",
]
