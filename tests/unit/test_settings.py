"""
Unit tests for operator settings loaded from the environment.
"""

import pytest
from pydantic import ValidationError

from kubeconfig_operator.settings import Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("KUBECONFIG_OPERATOR_NAMESPACES", raising=False)

        settings = Settings(_env_file=None)

        assert settings.watched_namespaces is None
        assert settings.certificate_poll_interval_seconds == 15
        assert settings.rsa_key_size == 4096
        assert settings.signer_name == "kubernetes.io/kube-apiserver-client"
        assert settings.default_role_name == "cluster-admin"

    def test_watched_namespaces(self, monkeypatch):
        monkeypatch.setenv("KUBECONFIG_OPERATOR_NAMESPACES", "team-a, team-b,,")

        settings = Settings(_env_file=None)

        assert settings.watched_namespaces == ["team-a", "team-b"]

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("CERTIFICATE_POLL_INTERVAL_SECONDS", "5")
        monkeypatch.setenv("SIGNER_NAME", "example.com/signer")

        settings = Settings(_env_file=None)

        assert settings.certificate_poll_interval_seconds == 5
        assert settings.signer_name == "example.com/signer"

    def test_rejects_weak_rsa_keys(self, monkeypatch):
        monkeypatch.setenv("RSA_KEY_SIZE", "1024")

        with pytest.raises(ValidationError):
            Settings(_env_file=None)
