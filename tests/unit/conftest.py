"""Shared pytest fixtures for the unit tests."""

import pytest

from kubeconfig_operator.utils.credentials import generate_credential_material

from .fakes import TEST_CA_PEM, FakeCluster


@pytest.fixture
def cluster():
    """An empty in-memory cluster with the CA bundle ConfigMap in place."""
    fake = FakeCluster()
    fake.add_config_map("kube-root-ca.crt", "kube-public", {"ca.crt": TEST_CA_PEM})
    return fake


@pytest.fixture
def fast_generator():
    """Material generator that keeps RSA keys at the minimum size."""

    def generate(common_name, algorithm, subject=None, rsa_key_size=2048):
        return generate_credential_material(
            common_name, algorithm, subject, rsa_key_size=2048
        )

    return generate
