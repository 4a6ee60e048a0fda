"""
Unit tests for Kubernetes helper functions.
"""

import base64
from unittest.mock import MagicMock, patch

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from kubeconfig_operator.errors import (
    ConfigurationError,
    KubernetesAPIError,
    TemporaryError,
)
from kubeconfig_operator.utils.kubernetes import (
    access_request_labels,
    build_owner_reference,
    decode_secret_value,
    default_role_ref,
    discover_cluster_endpoint,
    encode_secret_data,
    get_access_request_owner,
    kubeconfig_secret_name,
    read_trust_anchor,
    role_binding_name,
    sanitize_label_value,
    signing_request_name,
    terminal_signing_request_condition,
    user_secret_name,
)

CLUSTER_INFO = """\
apiVersion: v1
kind: Config
clusters:
- name: ""
  cluster:
    certificate-authority-data: Q0E=
    server: https://10.96.0.1:443
"""


class TestNaming:
    def test_names(self):
        assert signing_request_name("alice-access", "team-a") == "team-a.alice-access"
        assert user_secret_name("alice-access") == "alice-access-client-key"
        assert kubeconfig_secret_name("alice-access") == "alice-access-kubeconfig"

    def test_role_binding_name_is_a_valid_object_name(self):
        name = role_binding_name("Alice@Example.com", "system:view")

        assert name == "kubeconfig-alice-example.com-system-view"

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("alice", "alice"),
            ("alice@example.com", "alice-example.com"),
            ("system:serviceaccount:x", "system-serviceaccount-x"),
            ("-leading", "leading"),
            ("a" * 70, "a" * 63),
        ],
    )
    def test_sanitize_label_value(self, value, expected):
        assert sanitize_label_value(value) == expected


class TestOwnership:
    def test_labels(self):
        labels = access_request_labels("alice-access", "team-a", "alice@example.com")

        assert labels == {
            "app.kubernetes.io/managed-by": "kubeconfig-operator",
            "kubeconfig-operator.dev/for": "alice-access",
            "kubeconfig-operator.dev/namespace": "team-a",
            "kubeconfig-operator.dev/username": "alice-example.com",
        }

    def test_owner_reference(self):
        ref = build_owner_reference("alice-access", "uid-1")

        assert ref.api_version == "kubeconfig-operator.dev/v1alpha1"
        assert ref.kind == "AccessRequest"
        assert ref.controller is True
        assert ref.block_owner_deletion is True

    def test_owner_from_model(self):
        secret = client.V1Secret(
            metadata=client.V1ObjectMeta(
                owner_references=[
                    client.V1OwnerReference(
                        api_version="apps/v1", kind="Deployment", name="x", uid="1"
                    ),
                    build_owner_reference("alice-access", "uid-1"),
                ]
            )
        )

        assert get_access_request_owner(secret).name == "alice-access"

    def test_owner_from_mapping(self):
        body = {
            "metadata": {
                "ownerReferences": [
                    {
                        "apiVersion": "kubeconfig-operator.dev/v1",
                        "kind": "AccessRequest",
                        "name": "alice-access",
                    }
                ]
            }
        }

        assert get_access_request_owner(body)["name"] == "alice-access"

    def test_foreign_group_is_not_an_owner(self):
        body = {
            "metadata": {
                "ownerReferences": [
                    {"apiVersion": "example.com/v1", "kind": "AccessRequest"}
                ]
            }
        }

        assert get_access_request_owner(body) is None
        assert get_access_request_owner(client.V1Secret()) is None


class TestSecretData:
    def test_encode(self):
        encoded = encode_secret_data({"a": b"\x00\x01", "b": "text"})

        assert encoded == {"a": "AAE=", "b": "dGV4dA=="}

    def test_decode(self):
        secret = client.V1Secret(data={"a": "dGV4dA==", "empty": ""})

        assert decode_secret_value(secret, "a") == b"text"
        assert decode_secret_value(secret, "empty") is None
        assert decode_secret_value(secret, "missing") is None
        assert decode_secret_value(client.V1Secret(), "a") is None


class TestTrustAnchor:
    def test_reads_ca_bundle(self, cluster):
        assert read_trust_anchor(cluster.core).startswith(b"-----BEGIN CERTIFICATE")

    def test_missing_config_map_is_temporary(self, cluster):
        cluster.config_maps.clear()

        with pytest.raises(TemporaryError):
            read_trust_anchor(cluster.core)

    def test_missing_key_is_temporary(self, cluster):
        cluster.add_config_map("kube-root-ca.crt", "kube-public", {})

        with pytest.raises(TemporaryError):
            read_trust_anchor(cluster.core)

    def test_forbidden_is_retried_slowly(self):
        core_api = MagicMock()
        core_api.read_namespaced_config_map.side_effect = ApiException(
            status=403, reason="Forbidden"
        )

        with pytest.raises(KubernetesAPIError) as exc_info:
            read_trust_anchor(core_api)

        assert exc_info.value.retryable
        assert exc_info.value.delay == 300


class TestDiscoverClusterEndpoint:
    def test_reads_cluster_info(self, cluster):
        cluster.add_config_map(
            "cluster-info", "kube-public", {"kubeconfig": CLUSTER_INFO}
        )

        assert discover_cluster_endpoint(cluster.core) == "https://10.96.0.1:443"

    def test_falls_back_without_config_map(self, cluster):
        assert discover_cluster_endpoint(cluster.core) == "https://localhost:6443"

    @pytest.mark.parametrize(
        "data",
        [
            {},
            {"kubeconfig": "not: [valid"},
            {"kubeconfig": "clusters:\n- name: other\n  cluster: {server: x}\n"},
        ],
    )
    def test_falls_back_on_unusable_data(self, cluster, data):
        cluster.add_config_map("cluster-info", "kube-public", data)

        assert discover_cluster_endpoint(cluster.core) == "https://localhost:6443"


class TestDefaultRoleRef:
    def test_default_is_cluster_admin(self):
        role_ref = default_role_ref()

        assert role_ref.kind == "ClusterRole"
        assert role_ref.name == "cluster-admin"

    def test_invalid_setting_is_a_configuration_error(self):
        with patch(
            "kubeconfig_operator.utils.kubernetes.settings.default_role_kind", "Role"
        ):
            with pytest.raises(ConfigurationError):
                default_role_ref()


class TestTerminalCondition:
    def csr(self, *conditions):
        return client.V1CertificateSigningRequest(
            spec=client.V1CertificateSigningRequestSpec(
                request=base64.b64encode(b"x").decode(), signer_name="s"
            ),
            status=client.V1CertificateSigningRequestStatus(
                conditions=[
                    client.V1CertificateSigningRequestCondition(type=t, status=s)
                    for t, s in conditions
                ]
            ),
        )

    def test_undecided(self):
        assert terminal_signing_request_condition(self.csr()) is None

    def test_approved(self):
        condition = terminal_signing_request_condition(self.csr(("Approved", "True")))

        assert condition.type == "Approved"

    def test_ignores_non_true_conditions(self):
        csr = self.csr(("Approved", "False"), ("Denied", "True"))

        assert terminal_signing_request_condition(csr).type == "Denied"
