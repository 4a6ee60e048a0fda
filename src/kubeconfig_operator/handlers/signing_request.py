"""
CertificateSigningRequest handlers - Auto-approval of owned signing requests.

Only requests labelled as managed by this operator and owned by an
AccessRequest reach the approval watcher.
"""

import logging
from typing import Any

import kopf

from kubeconfig_operator.constants import OPERATOR_LABEL_KEY, OPERATOR_LABEL_VALUE
from kubeconfig_operator.services import SigningRequestReconciler
from kubeconfig_operator.utils.kubernetes import get_access_request_owner

logger = logging.getLogger(__name__)


def is_owned_by_access_request(body: kopf.Body, **_: Any) -> bool:
    return get_access_request_owner(body) is not None


@kopf.on.create(
    "certificates.k8s.io",
    "v1",
    "certificatesigningrequests",
    labels={OPERATOR_LABEL_KEY: OPERATOR_LABEL_VALUE},
    when=is_owned_by_access_request,
    backoff=1.5,
)
@kopf.on.resume(
    "certificates.k8s.io",
    "v1",
    "certificatesigningrequests",
    labels={OPERATOR_LABEL_KEY: OPERATOR_LABEL_VALUE},
    when=is_owned_by_access_request,
    backoff=1.5,
)
async def approve_signing_request(name: str, **kwargs: Any) -> None:
    """
    Decide auto-approval for a signing request created by the operator.

    Args:
        name: Name of the CertificateSigningRequest

    Returns:
        None to avoid kopf creating status subpaths
    """
    logger.debug(f"Checking CertificateSigningRequest {name} for auto-approval")

    reconciler = SigningRequestReconciler()
    await reconciler.reconcile(name=name)
    return None
