"""
Unit tests for the AccessRequest reconciler.

The state machine runs against the in-memory cluster from ``tests.unit.fakes``,
so every test observes the objects the reconciler actually wrote.
"""

import base64
from unittest.mock import MagicMock, patch

import kopf
import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from kubeconfig_operator.models.kubeconfig import KubeconfigDocument
from kubeconfig_operator.services.access_request_reconciler import (
    AccessRequestReconciler,
)
from kubeconfig_operator.services.signing_request_reconciler import (
    SigningRequestReconciler,
)
from kubeconfig_operator.utils.conditions import ConditionType, get_condition
from kubeconfig_operator.utils.credentials import (
    generate_credential_material,
    parse_certificate_request,
)

from ..fakes import TEST_CA_PEM

NAMESPACE = "team-a"
NAME = "alice-access"
CSR_NAME = f"{NAMESPACE}.{NAME}"
USER_SECRET = f"{NAME}-client-key"
KUBECONFIG_SECRET = f"{NAME}-kubeconfig"
CERT_PEM = b"-----BEGIN CERTIFICATE-----\nISSUED\n-----END CERTIFICATE-----\n"


def access_request_spec(**overrides):
    spec = {
        "username": "alice",
        "csr": {
            "signatureAlgorithm": "ECDSAWithSHA256",
            "fields": {"organization": ["developers"]},
        },
        "cluster": {"name": "prod", "server": "https://prod.example.com:6443"},
    }
    spec.update(overrides)
    return spec


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


def condition(obj, condition_type):
    return get_condition(obj["status"]["conditions"], condition_type)


@pytest.fixture
def reconciler(cluster, fast_generator):
    return AccessRequestReconciler(
        core_api=cluster.core,
        certificates_api=cluster.certificates,
        rbac_api=cluster.rbac,
        custom_api=cluster.custom,
        generate_material=fast_generator,
    )


@pytest.fixture
def approver(cluster):
    return SigningRequestReconciler(certificates_api=cluster.certificates)


async def reconcile(reconciler):
    return await reconciler.do_reconcile(NAME, NAMESPACE)


class TestFirstReconcile:
    """A new AccessRequest is taken to AwaitingApproval in one pass."""

    @pytest.mark.asyncio
    async def test_awaits_approval_with_material_stored(self, cluster, reconciler):
        cluster.add_access_request(NAME, NAMESPACE, access_request_spec())

        await reconcile(reconciler)

        obj = cluster.access_request(NAME, NAMESPACE)
        assert obj["status"]["phase"] == "AwaitingApproval"
        assert obj["status"]["signingRequest"] == CSR_NAME
        assert obj["status"]["userSecret"] == {
            "name": USER_SECRET,
            "namespace": NAMESPACE,
        }
        assert condition(obj, ConditionType.USER_SECRET_CREATED)["status"] == "True"
        assert condition(obj, ConditionType.SIGNING_REQUEST_CREATED)["status"] == "True"
        assert condition(obj, ConditionType.FINISHED) is None

        secret = cluster.secrets[(NAMESPACE, USER_SECRET)]
        assert secret.type == "kubernetes.io/tls"
        assert b"PRIVATE KEY" in base64.b64decode(secret.data["tls.key"])
        request = parse_certificate_request(base64.b64decode(secret.data["tls.csr"]))
        assert request.subject.rfc4514_string() == "CN=alice,O=developers"
        assert secret.data["tls.crt"] == ""

    @pytest.mark.asyncio
    async def test_signing_request_is_owned_and_labelled(self, cluster, reconciler):
        obj = cluster.add_access_request(NAME, NAMESPACE, access_request_spec())

        await reconcile(reconciler)

        csr = cluster.signing_requests[CSR_NAME]
        secret = cluster.secrets[(NAMESPACE, USER_SECRET)]
        assert csr.spec.request == secret.data["tls.csr"]
        assert csr.spec.usages == ["client auth"]
        assert csr.spec.signer_name == "kubernetes.io/kube-apiserver-client"
        assert csr.metadata.annotations is None
        assert csr.metadata.labels["kubeconfig-operator.dev/namespace"] == NAMESPACE
        owner = csr.metadata.owner_references[0]
        assert owner.kind == "AccessRequest"
        assert owner.uid == obj["metadata"]["uid"]
        assert owner.controller is True
        assert csr.status is None or not csr.status.certificate

    @pytest.mark.asyncio
    async def test_auto_approve_annotates_signing_request(self, cluster, reconciler):
        cluster.add_access_request(
            NAME, NAMESPACE, access_request_spec(autoApprove=True)
        )

        await reconcile(reconciler)

        csr = cluster.signing_requests[CSR_NAME]
        assert csr.metadata.annotations == {
            "kubeconfig-operator.dev/auto-approve": "true"
        }

    @pytest.mark.asyncio
    async def test_second_reconcile_writes_nothing(self, cluster, reconciler):
        cluster.add_access_request(NAME, NAMESPACE, access_request_spec())
        await reconcile(reconciler)
        writes = list(cluster.writes)

        await reconcile(reconciler)

        assert cluster.writes == writes

    @pytest.mark.asyncio
    async def test_missing_access_request_is_ignored(self, cluster, reconciler):
        assert await reconcile(reconciler) is None
        assert cluster.writes == []

    @pytest.mark.asyncio
    async def test_reuses_material_left_in_user_secret(self, cluster):
        material = generate_credential_material("alice", "ECDSAWithSHA256")
        cluster.add_access_request(NAME, NAMESPACE, access_request_spec())
        cluster.add_secret(
            USER_SECRET,
            NAMESPACE,
            {
                "tls.key": b64(material.private_key_pem),
                "tls.csr": b64(material.request_pem),
            },
        )
        generator = MagicMock()
        reconciler = AccessRequestReconciler(
            core_api=cluster.core,
            certificates_api=cluster.certificates,
            rbac_api=cluster.rbac,
            custom_api=cluster.custom,
            generate_material=generator,
        )

        await reconcile(reconciler)

        generator.assert_not_called()
        csr = cluster.signing_requests[CSR_NAME]
        assert csr.spec.request == b64(material.request_pem)


class TestApprovalAndIssue:
    """Approval by the watcher and issuance by the signer finish the request."""

    @pytest.mark.asyncio
    async def test_approved_without_certificate_requeues(
        self, cluster, reconciler, approver
    ):
        cluster.add_access_request(
            NAME, NAMESPACE, access_request_spec(autoApprove=True)
        )
        await reconcile(reconciler)

        decision = await approver.do_reconcile(CSR_NAME)
        assert decision == {"decision": "Approved"}

        with pytest.raises(kopf.TemporaryError) as exc_info:
            await reconciler.reconcile(name=NAME, namespace=NAMESPACE)

        assert exc_info.value.delay == 15
        obj = cluster.access_request(NAME, NAMESPACE)
        assert obj["status"]["phase"] == "AwaitingApproval"
        approved = condition(obj, ConditionType.SIGNING_REQUEST_APPROVED)
        assert approved["status"] == "True"
        assert approved["reason"] == "Approved"
        pending = condition(obj, ConditionType.USER_SECRET_FINISHED)
        assert pending["status"] == "False"
        assert pending["reason"] == "CertificatePending"

    @pytest.mark.asyncio
    async def test_issued_certificate_finishes(self, cluster, reconciler, approver):
        cluster.add_access_request(
            NAME, NAMESPACE, access_request_spec(autoApprove=True)
        )
        await reconcile(reconciler)
        await approver.do_reconcile(CSR_NAME)
        cluster.issue_certificate(CSR_NAME, b64(CERT_PEM))

        await reconcile(reconciler)

        obj = cluster.access_request(NAME, NAMESPACE)
        status = obj["status"]
        assert status["phase"] == "Finished"
        assert condition(obj, ConditionType.FINISHED)["status"] == "True"
        for condition_type in (
            ConditionType.USER_SECRET_FINISHED,
            ConditionType.KUBECONFIG_SECRET_CREATED,
            ConditionType.ROLE_BINDING_READY,
        ):
            assert condition(obj, condition_type)["status"] == "True"

        user_secret = cluster.secrets[(NAMESPACE, USER_SECRET)]
        assert user_secret.data["tls.crt"] == b64(CERT_PEM)

        kubeconfig_secret = cluster.secrets[(NAMESPACE, KUBECONFIG_SECRET)]
        assert kubeconfig_secret.type == "Opaque"
        rendered = base64.b64decode(kubeconfig_secret.data["kubeconfig"]).decode()
        assert user_secret.data["kubeconfig"] == kubeconfig_secret.data["kubeconfig"]
        assert status["kubeconfig"] == rendered
        assert status["kubeconfigSecret"] == {
            "name": KUBECONFIG_SECRET,
            "namespace": NAMESPACE,
        }

        document = KubeconfigDocument.decode(rendered)
        assert document.current_context == "alice@prod"
        assert document.clusters["prod"].server == "https://prod.example.com:6443"
        assert document.clusters["prod"].certificate_authority_data == b64(
            TEST_CA_PEM.encode()
        )
        assert document.users["alice"].client_certificate_data == b64(CERT_PEM)
        assert document.users["alice"].client_key_data == user_secret.data["tls.key"]

    @pytest.mark.asyncio
    async def test_binds_identity_to_default_role(self, cluster, reconciler, approver):
        obj = cluster.add_access_request(
            NAME, NAMESPACE, access_request_spec(autoApprove=True)
        )
        await reconcile(reconciler)
        await approver.do_reconcile(CSR_NAME)
        cluster.issue_certificate(CSR_NAME, b64(CERT_PEM))

        await reconcile(reconciler)

        binding = cluster.role_bindings["kubeconfig-alice-cluster-admin"]
        assert binding.role_ref.kind == "ClusterRole"
        assert binding.role_ref.name == "cluster-admin"
        assert [(s.kind, s.name) for s in binding.subjects] == [("User", "alice")]
        assert binding.metadata.owner_references[0].uid == obj["metadata"]["uid"]
        status = cluster.access_request(NAME, NAMESPACE)["status"]
        assert status["roleBinding"] == "kubeconfig-alice-cluster-admin"

    @pytest.mark.asyncio
    async def test_binds_requested_role(self, cluster, reconciler):
        cluster.add_access_request(
            NAME, NAMESPACE, access_request_spec(roleRef={"name": "view"})
        )
        await reconcile(reconciler)
        cluster.set_signing_request_condition(CSR_NAME, "Approved", reason="Manual")
        cluster.issue_certificate(CSR_NAME, b64(CERT_PEM))

        await reconcile(reconciler)

        binding = cluster.role_bindings["kubeconfig-alice-view"]
        assert binding.role_ref.name == "view"

    @pytest.mark.asyncio
    async def test_discovers_server_when_not_set(self, cluster, reconciler):
        spec = access_request_spec(cluster={"name": "prod"})
        cluster.add_access_request(NAME, NAMESPACE, spec)
        cluster.add_config_map(
            "cluster-info",
            "kube-public",
            {
                "kubeconfig": (
                    "apiVersion: v1\nkind: Config\nclusters:\n"
                    "- name: ''\n  cluster:\n    server: https://10.0.0.1:6443\n"
                )
            },
        )
        await reconcile(reconciler)
        cluster.set_signing_request_condition(CSR_NAME, "Approved")
        cluster.issue_certificate(CSR_NAME, b64(CERT_PEM))

        await reconcile(reconciler)

        rendered = cluster.access_request(NAME, NAMESPACE)["status"]["kubeconfig"]
        document = KubeconfigDocument.decode(rendered)
        assert document.clusters["prod"].server == "https://10.0.0.1:6443"

    @pytest.mark.asyncio
    async def test_finished_request_is_not_revisited(
        self, cluster, reconciler, approver
    ):
        cluster.add_access_request(
            NAME, NAMESPACE, access_request_spec(autoApprove=True)
        )
        await reconcile(reconciler)
        await approver.do_reconcile(CSR_NAME)
        cluster.issue_certificate(CSR_NAME, b64(CERT_PEM))
        await reconcile(reconciler)
        writes = list(cluster.writes)

        cluster.certificates.delete_certificate_signing_request(CSR_NAME)
        assert await reconcile(reconciler) is None

        assert cluster.writes == writes
        status = cluster.access_request(NAME, NAMESPACE)["status"]
        assert status["phase"] == "Finished"

    @pytest.mark.asyncio
    async def test_missing_trust_anchor_is_retried(self, cluster, reconciler):
        cluster.config_maps.clear()
        cluster.add_access_request(NAME, NAMESPACE, access_request_spec())
        await reconcile(reconciler)
        cluster.set_signing_request_condition(CSR_NAME, "Approved")
        cluster.issue_certificate(CSR_NAME, b64(CERT_PEM))

        with pytest.raises(kopf.TemporaryError):
            await reconciler.reconcile(name=NAME, namespace=NAMESPACE)

        status = cluster.access_request(NAME, NAMESPACE)["status"]
        assert status["phase"] == "AwaitingApproval"

    @pytest.mark.asyncio
    async def test_lost_private_key_fails(self, cluster, reconciler):
        cluster.add_access_request(NAME, NAMESPACE, access_request_spec())
        await reconcile(reconciler)
        cluster.secrets[(NAMESPACE, USER_SECRET)].data["tls.key"] = ""
        cluster.set_signing_request_condition(CSR_NAME, "Approved")
        cluster.issue_certificate(CSR_NAME, b64(CERT_PEM))

        await reconcile(reconciler)

        obj = cluster.access_request(NAME, NAMESPACE)
        assert obj["status"]["phase"] == "Failed"
        assert condition(obj, ConditionType.FINISHED)["reason"] == "PrivateKeyMissing"
        assert (NAMESPACE, KUBECONFIG_SECRET) not in cluster.secrets


class TestTerminalFailures:
    """Failures that cannot be fixed by retrying end in phase Failed."""

    @pytest.mark.asyncio
    async def test_decay_without_approval(self, cluster, reconciler):
        cluster.add_access_request(NAME, NAMESPACE, access_request_spec())
        await reconcile(reconciler)
        cluster.certificates.delete_certificate_signing_request(CSR_NAME)

        await reconcile(reconciler)

        obj = cluster.access_request(NAME, NAMESPACE)
        assert obj["status"]["phase"] == "Failed"
        finished = condition(obj, ConditionType.FINISHED)
        assert finished["status"] == "False"
        assert finished["reason"] == "Decayed"
        approved = condition(obj, ConditionType.SIGNING_REQUEST_APPROVED)
        assert approved["status"] == "False"
        assert approved["reason"] == "Decayed"

    @pytest.mark.asyncio
    async def test_decay_after_approval_without_certificate(
        self, cluster, reconciler, approver
    ):
        cluster.add_access_request(
            NAME, NAMESPACE, access_request_spec(autoApprove=True)
        )
        await reconcile(reconciler)
        await approver.do_reconcile(CSR_NAME)
        with pytest.raises(kopf.TemporaryError):
            await reconciler.reconcile(name=NAME, namespace=NAMESPACE)
        cluster.certificates.delete_certificate_signing_request(CSR_NAME)

        await reconcile(reconciler)

        obj = cluster.access_request(NAME, NAMESPACE)
        assert obj["status"]["phase"] == "Failed"
        assert condition(obj, ConditionType.FINISHED)["reason"] == "Decayed"
        approved = condition(obj, ConditionType.SIGNING_REQUEST_APPROVED)
        assert approved["status"] == "True"

    @pytest.mark.asyncio
    async def test_decay_after_certificate_was_stored_finishes(
        self, cluster, reconciler, approver
    ):
        cluster.add_access_request(
            NAME, NAMESPACE, access_request_spec(autoApprove=True)
        )
        await reconcile(reconciler)
        await approver.do_reconcile(CSR_NAME)
        with pytest.raises(kopf.TemporaryError):
            await reconciler.reconcile(name=NAME, namespace=NAMESPACE)
        cluster.secrets[(NAMESPACE, USER_SECRET)].data["tls.crt"] = b64(CERT_PEM)
        cluster.certificates.delete_certificate_signing_request(CSR_NAME)

        await reconcile(reconciler)

        status = cluster.access_request(NAME, NAMESPACE)["status"]
        assert status["phase"] == "Finished"
        assert (NAMESPACE, KUBECONFIG_SECRET) in cluster.secrets

    @pytest.mark.asyncio
    async def test_unsupported_algorithm(self, cluster, reconciler):
        spec = access_request_spec(csr={"signatureAlgorithm": "MD5WithRSA"})
        cluster.add_access_request(NAME, NAMESPACE, spec)

        await reconcile(reconciler)

        obj = cluster.access_request(NAME, NAMESPACE)
        assert obj["status"]["phase"] == "Failed"
        created = condition(obj, ConditionType.SIGNING_REQUEST_CREATED)
        assert created["status"] == "False"
        assert created["reason"] == "GenerationFailed"
        assert "MD5WithRSA" in created["message"]
        assert cluster.signing_requests == {}
        secret = cluster.secrets[(NAMESPACE, USER_SECRET)]
        assert secret.data["tls.key"] == ""
        assert secret.data["tls.csr"] == ""

    @pytest.mark.asyncio
    async def test_denied_signing_request(self, cluster, reconciler):
        cluster.add_access_request(NAME, NAMESPACE, access_request_spec())
        await reconcile(reconciler)
        cluster.set_signing_request_condition(
            CSR_NAME, "Denied", reason="PolicyViolation", message="not allowed"
        )

        await reconcile(reconciler)

        obj = cluster.access_request(NAME, NAMESPACE)
        assert obj["status"]["phase"] == "Failed"
        approved = condition(obj, ConditionType.SIGNING_REQUEST_APPROVED)
        assert approved["status"] == "False"
        assert approved["reason"] == "PolicyViolation"
        assert approved["message"] == "not allowed"

    @pytest.mark.asyncio
    async def test_failed_signing_request_defaults_reason(self, cluster, reconciler):
        cluster.add_access_request(NAME, NAMESPACE, access_request_spec())
        await reconcile(reconciler)
        cluster.set_signing_request_condition(CSR_NAME, "Failed")

        await reconcile(reconciler)

        obj = cluster.access_request(NAME, NAMESPACE)
        assert condition(obj, ConditionType.FINISHED)["reason"] == "SigningFailed"

    @pytest.mark.asyncio
    async def test_invalid_spec(self, cluster, reconciler):
        cluster.add_access_request(NAME, NAMESPACE, {"username": ""})

        await reconcile(reconciler)

        obj = cluster.access_request(NAME, NAMESPACE)
        assert obj["status"]["phase"] == "Failed"
        assert condition(obj, ConditionType.FINISHED)["reason"] == "InvalidSpec"
        assert cluster.secrets == {}

    @pytest.mark.asyncio
    async def test_missing_existing_secret(self, cluster, reconciler):
        spec = access_request_spec(existingSecret={"name": "byo-credentials"})
        cluster.add_access_request(NAME, NAMESPACE, spec)

        await reconcile(reconciler)

        obj = cluster.access_request(NAME, NAMESPACE)
        created = condition(obj, ConditionType.SIGNING_REQUEST_CREATED)
        assert created["reason"] == "ExistingSecretInvalid"
        assert cluster.signing_requests == {}

    @pytest.mark.asyncio
    async def test_mismatched_existing_secret(self, cluster, reconciler):
        first = generate_credential_material("alice", "ECDSAWithSHA256")
        second = generate_credential_material("alice", "ECDSAWithSHA256")
        cluster.add_secret(
            "byo-credentials",
            NAMESPACE,
            {"tls.key": b64(first.private_key_pem), "tls.csr": b64(second.request_pem)},
        )
        spec = access_request_spec(existingSecret={"name": "byo-credentials"})
        cluster.add_access_request(NAME, NAMESPACE, spec)

        await reconcile(reconciler)

        obj = cluster.access_request(NAME, NAMESPACE)
        created = condition(obj, ConditionType.SIGNING_REQUEST_CREATED)
        assert created["reason"] == "ExistingSecretInvalid"

    @pytest.mark.asyncio
    async def test_uses_valid_existing_secret(self, cluster, reconciler):
        material = generate_credential_material("alice", "PureEd25519")
        cluster.add_secret(
            "byo-credentials",
            "shared",
            {
                "tls.key": b64(material.private_key_pem),
                "tls.csr": b64(material.request_pem),
            },
        )
        spec = access_request_spec(
            existingSecret={"name": "byo-credentials", "namespace": "shared"}
        )
        cluster.add_access_request(NAME, NAMESPACE, spec)

        await reconcile(reconciler)

        csr = cluster.signing_requests[CSR_NAME]
        assert csr.spec.request == b64(material.request_pem)
        secret = cluster.secrets[(NAMESPACE, USER_SECRET)]
        assert secret.data["tls.key"] == b64(material.private_key_pem)

    @pytest.mark.asyncio
    async def test_foreign_signing_request_is_a_name_conflict(
        self, cluster, reconciler
    ):
        cluster.certificates.create_certificate_signing_request(
            client.V1CertificateSigningRequest(
                metadata=client.V1ObjectMeta(name=CSR_NAME),
                spec=client.V1CertificateSigningRequestSpec(
                    request="", signer_name="example.com/other"
                ),
            )
        )
        cluster.add_access_request(NAME, NAMESPACE, access_request_spec())

        await reconcile(reconciler)

        obj = cluster.access_request(NAME, NAMESPACE)
        assert obj["status"]["phase"] == "Failed"
        created = condition(obj, ConditionType.SIGNING_REQUEST_CREATED)
        assert created["reason"] == "NameConflict"

    @pytest.mark.asyncio
    async def test_invalid_default_role_fails_before_signing(
        self, cluster, reconciler
    ):
        cluster.add_access_request(NAME, NAMESPACE, access_request_spec())

        with patch(
            "kubeconfig_operator.utils.kubernetes.settings.default_role_kind", "Role"
        ):
            await reconcile(reconciler)

        obj = cluster.access_request(NAME, NAMESPACE)
        assert obj["status"]["phase"] == "Failed"
        bound = condition(obj, ConditionType.ROLE_BINDING_READY)
        assert bound["status"] == "False"
        assert bound["reason"] == "InvalidRoleRef"
        assert condition(obj, ConditionType.FINISHED)["reason"] == "InvalidRoleRef"
        assert cluster.signing_requests == {}
        assert cluster.role_bindings == {}


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_status_conflict_is_retried(self, cluster, reconciler):
        cluster.add_access_request(NAME, NAMESPACE, access_request_spec())
        reconciler.custom_api.replace_namespaced_custom_object_status = MagicMock(
            side_effect=ApiException(status=409, reason="Conflict")
        )

        with pytest.raises(kopf.TemporaryError) as exc_info:
            await reconciler.reconcile(name=NAME, namespace=NAMESPACE)

        assert exc_info.value.delay == 1

    @pytest.mark.asyncio
    async def test_retry_after_conflict_converges(self, cluster, reconciler):
        cluster.add_access_request(NAME, NAMESPACE, access_request_spec())
        original = cluster.custom.replace_namespaced_custom_object_status
        cluster.custom.replace_namespaced_custom_object_status = MagicMock(
            side_effect=ApiException(status=409, reason="Conflict")
        )
        with pytest.raises(kopf.TemporaryError):
            await reconciler.reconcile(name=NAME, namespace=NAMESPACE)
        cluster.custom.replace_namespaced_custom_object_status = original

        await reconcile(reconciler)

        assert len(cluster.signing_requests) == 1
        status = cluster.access_request(NAME, NAMESPACE)["status"]
        assert status["phase"] == "AwaitingApproval"

    @pytest.mark.asyncio
    async def test_user_secret_recreated_with_material(self, cluster, reconciler):
        cluster.add_access_request(NAME, NAMESPACE, access_request_spec())
        ensure_user_secret = reconciler._ensure_user_secret

        def ensure_then_delete(state, spec):
            secret = ensure_user_secret(state, spec)
            cluster.core.delete_namespaced_secret(USER_SECRET, NAMESPACE)
            return secret

        reconciler._ensure_user_secret = ensure_then_delete

        await reconcile(reconciler)

        secret = cluster.secrets[(NAMESPACE, USER_SECRET)]
        assert b"PRIVATE KEY" in base64.b64decode(secret.data["tls.key"])
        csr = cluster.signing_requests[CSR_NAME]
        assert csr.spec.request == secret.data["tls.csr"]

    @pytest.mark.asyncio
    async def test_no_signing_request_without_stored_key(self, cluster, reconciler):
        cluster.add_access_request(NAME, NAMESPACE, access_request_spec())
        ensure_user_secret = reconciler._ensure_user_secret

        def ensure_then_delete(state, spec):
            secret = ensure_user_secret(state, spec)
            cluster.secrets.pop((NAMESPACE, USER_SECRET), None)
            return secret

        reconciler._ensure_user_secret = ensure_then_delete
        cluster.core.create_namespaced_secret = MagicMock(
            return_value=client.V1Secret(
                metadata=client.V1ObjectMeta(name=USER_SECRET, namespace=NAMESPACE),
                data={"tls.key": ""},
            )
        )

        with pytest.raises(kopf.TemporaryError):
            await reconciler.reconcile(name=NAME, namespace=NAMESPACE)

        assert cluster.signing_requests == {}


class TestApiFailures:
    """API failures are retried and never end provisioning on their own."""

    @pytest.mark.asyncio
    async def test_throttled_create_honours_retry_after(self, cluster, reconciler):
        cluster.add_access_request(NAME, NAMESPACE, access_request_spec())
        throttled = ApiException(status=429, reason="Too Many Requests")
        throttled.headers = {"Retry-After": "7"}
        create = cluster.certificates.create_certificate_signing_request
        cluster.certificates.create_certificate_signing_request = MagicMock(
            side_effect=throttled
        )

        with pytest.raises(kopf.TemporaryError) as exc_info:
            await reconciler.reconcile(name=NAME, namespace=NAMESPACE)

        assert exc_info.value.delay == 7
        assert "status" not in cluster.access_request(NAME, NAMESPACE)

        cluster.certificates.create_certificate_signing_request = create
        await reconcile(reconciler)

        status = cluster.access_request(NAME, NAMESPACE)["status"]
        assert status["phase"] == "AwaitingApproval"
        assert CSR_NAME in cluster.signing_requests

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,reason", [(403, "Forbidden"), (422, "Invalid"), (500, "Error")]
    )
    async def test_rejected_create_is_retried(
        self, cluster, reconciler, status, reason
    ):
        cluster.add_access_request(NAME, NAMESPACE, access_request_spec())
        cluster.certificates.create_certificate_signing_request = MagicMock(
            side_effect=ApiException(status=status, reason=reason)
        )

        with pytest.raises(kopf.TemporaryError):
            await reconciler.reconcile(name=NAME, namespace=NAMESPACE)

        assert cluster.signing_requests == {}
