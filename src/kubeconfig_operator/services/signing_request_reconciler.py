"""
Approval watcher - Auto-approves signing requests created for AccessRequests.

Only CertificateSigningRequests owned by an AccessRequest and annotated for
auto-approval are touched. Anything else is left for manual approval. A
request is decided at most once: objects that already carry Approved, Denied
or Failed are never revisited.
"""

import base64
import binascii
from datetime import UTC, datetime
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import (
    AUTO_APPROVE_ANNOTATION,
    CSR_APPROVED_MESSAGE,
    CSR_APPROVED_REASON,
    CSR_CONDITION_APPROVED,
    CSR_CONDITION_FAILED,
)
from ..errors import MalformedRequestError
from ..observability.metrics import metrics_collector
from ..utils.credentials import parse_certificate_request
from ..utils.kubernetes import (
    get_access_request_owner,
    terminal_signing_request_condition,
)
from .base_reconciler import BaseReconciler


def decode_request(encoded: str | None) -> bytes:
    """
    Decode ``spec.request`` and verify it is a signed PEM certificate request.

    Raises:
        MalformedRequestError: The field is empty, is not base64 or does not
            hold a valid request
    """
    if not encoded:
        raise MalformedRequestError("Signing request carries no request bytes")
    try:
        pem = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedRequestError(f"Request is not valid base64: {e}", cause=e) from e
    parse_certificate_request(pem)
    return pem


class SigningRequestReconciler(BaseReconciler):
    """Reconciler deciding auto-approval for owned CertificateSigningRequests."""

    resource_type = "certificatesigningrequest"

    def __init__(
        self,
        k8s_client: client.ApiClient | None = None,
        certificates_api: client.CertificatesV1Api | None = None,
    ):
        super().__init__(k8s_client)
        self._certificates_api = certificates_api

    @property
    def certificates_api(self) -> client.CertificatesV1Api:
        if self._certificates_api is None:
            self._certificates_api = client.CertificatesV1Api(self.kubernetes_client)
        return self._certificates_api

    async def do_reconcile(
        self, name: str, namespace: str | None = None, **kwargs
    ) -> dict[str, Any] | None:
        try:
            csr = self.certificates_api.read_certificate_signing_request(name)
        except ApiException as e:
            if e.status == 404:
                self.logger.debug(f"CertificateSigningRequest {name} is gone")
                return None
            raise

        if get_access_request_owner(csr) is None:
            self.logger.debug(
                f"CertificateSigningRequest {name} is not owned by an AccessRequest"
            )
            return None

        if terminal_signing_request_condition(csr) is not None:
            self.logger.debug(f"CertificateSigningRequest {name} is already decided")
            return None

        annotations = csr.metadata.annotations or {}
        if annotations.get(AUTO_APPROVE_ANNOTATION) != "true":
            self.logger.info(
                f"CertificateSigningRequest {name} awaits manual approval",
                signing_request=name,
            )
            return None

        try:
            decode_request(csr.spec.request)
        except MalformedRequestError as e:
            self._append_condition(csr, CSR_CONDITION_FAILED, e.reason, e.message)
            self.certificates_api.replace_certificate_signing_request_status(name, csr)
            metrics_collector.record_signing_decision("failed")
            self.logger.warning(
                f"Marked CertificateSigningRequest {name} as failed: {e.message}",
                signing_request=name,
                reason=e.reason,
            )
            return {"decision": CSR_CONDITION_FAILED}

        self._append_condition(
            csr, CSR_CONDITION_APPROVED, CSR_APPROVED_REASON, CSR_APPROVED_MESSAGE
        )
        self.certificates_api.replace_certificate_signing_request_approval(name, csr)
        metrics_collector.record_signing_decision("approved")
        self.logger.info(
            f"Approved CertificateSigningRequest {name}",
            signing_request=name,
            reason=CSR_APPROVED_REASON,
        )
        return {"decision": CSR_CONDITION_APPROVED}

    def _append_condition(
        self,
        csr: client.V1CertificateSigningRequest,
        condition_type: str,
        reason: str | None,
        message: str,
    ) -> None:
        now = datetime.now(UTC)
        if csr.status is None:
            csr.status = client.V1CertificateSigningRequestStatus()
        csr.status.conditions = [
            *(csr.status.conditions or []),
            client.V1CertificateSigningRequestCondition(
                type=condition_type,
                status="True",
                reason=reason,
                message=message,
                last_update_time=now,
                last_transition_time=now,
            ),
        ]
