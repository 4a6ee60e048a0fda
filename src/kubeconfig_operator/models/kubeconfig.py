"""
Pydantic models for kubeconfig documents and their YAML encoding.

In memory, clusters, contexts and users are name-keyed mappings. The YAML
form uses the usual ordered ``[{name: ..., cluster: {...}}]`` lists; the
conversion happens only in ``encode``/``decode``. Lists are emitted sorted by
name so encoding is deterministic.
"""

from typing import Any

import yaml
from pydantic import BaseModel, Field


class Cluster(BaseModel):
    model_config = {"populate_by_name": True}

    server: str = Field("", description="API server URL")
    certificate_authority_data: str | None = Field(
        None,
        alias="certificate-authority-data",
        description="Base64 encoded PEM CA bundle",
    )
    insecure_skip_tls_verify: bool | None = Field(
        None, alias="insecure-skip-tls-verify"
    )


class Context(BaseModel):
    model_config = {"populate_by_name": True}

    cluster: str
    user: str
    namespace: str | None = None


class User(BaseModel):
    model_config = {"populate_by_name": True}

    client_certificate_data: str | None = Field(
        None,
        alias="client-certificate-data",
        description="Base64 encoded PEM client certificate",
    )
    client_key_data: str | None = Field(
        None,
        alias="client-key-data",
        description="Base64 encoded PEM private key",
    )
    token: str | None = None


class KubeconfigDocument(BaseModel):
    """A kubeconfig file (``kind: Config``)."""

    model_config = {"populate_by_name": True}

    api_version: str = Field("v1", alias="apiVersion")
    kind: str = Field("Config")
    preferences: dict[str, Any] = Field(default_factory=dict)
    current_context: str = Field("", alias="current-context")
    clusters: dict[str, Cluster] = Field(default_factory=dict)
    contexts: dict[str, Context] = Field(default_factory=dict)
    users: dict[str, User] = Field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return the serialisable form with named-entry lists."""

        def entries(items: dict[str, BaseModel], key: str) -> list[dict[str, Any]]:
            return [
                {
                    "name": name,
                    key: items[name].model_dump(by_alias=True, exclude_none=True),
                }
                for name in sorted(items)
            ]

        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "preferences": dict(self.preferences),
            "clusters": entries(self.clusters, "cluster"),
            "users": entries(self.users, "user"),
            "contexts": entries(self.contexts, "context"),
            "current-context": self.current_context,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KubeconfigDocument":
        """Build a document from the serialisable form; ``null`` lists are empty."""

        def named(key: str, inner: str) -> dict[str, Any]:
            result = {}
            for entry in data.get(key) or []:
                if not isinstance(entry, dict) or "name" not in entry:
                    raise ValueError(f"Every entry in '{key}' needs a name")
                result[str(entry["name"])] = entry.get(inner) or {}
            return result

        return cls.model_validate(
            {
                "apiVersion": data.get("apiVersion") or "v1",
                "kind": data.get("kind") or "Config",
                "preferences": data.get("preferences") or {},
                "current-context": data.get("current-context") or "",
                "clusters": named("clusters", "cluster"),
                "contexts": named("contexts", "context"),
                "users": named("users", "user"),
            }
        )

    def encode(self) -> str:
        """Render the document as YAML text."""
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)

    @classmethod
    def decode(cls, text: str | bytes) -> "KubeconfigDocument":
        """
        Parse YAML text into a document.

        Raises:
            ValueError: The text is not a kubeconfig mapping
        """
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid kubeconfig YAML: {e}") from e
        if not isinstance(data, dict):
            raise ValueError("Kubeconfig must be a YAML mapping")
        return cls.from_dict(data)
