"""
Pydantic models for AccessRequest resources.

An AccessRequest asks the operator for a client certificate based kubeconfig
for one identity on one cluster. The spec is immutable once admitted; the
status is written exclusively by the operator.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..constants import DEFAULT_CLUSTER_NAME, RBAC_API_GROUP


class SubjectFields(BaseModel):
    """Distinguished name attributes added next to the Common Name."""

    model_config = {"populate_by_name": True}

    country: list[str] = Field(default_factory=list, description="C attributes")
    province: list[str] = Field(default_factory=list, description="ST attributes")
    locality: list[str] = Field(default_factory=list, description="L attributes")
    organization: list[str] = Field(
        default_factory=list, description="O attributes (Kubernetes groups)"
    )
    organizational_unit: list[str] = Field(
        default_factory=list,
        alias="organizationalUnit",
        description="OU attributes",
    )


class SigningParameters(BaseModel):
    """How the key and certificate signing request are generated."""

    model_config = {"populate_by_name": True}

    signature_algorithm: str = Field(
        "SHA256WithRSA",
        alias="signatureAlgorithm",
        description="Signature algorithm selector",
    )
    fields: SubjectFields = Field(
        default_factory=SubjectFields, description="Subject name fields"
    )
    expiration_seconds: int | None = Field(
        None,
        alias="expirationSeconds",
        ge=600,
        description="Requested certificate lifetime",
    )


class ClusterTarget(BaseModel):
    """Cluster the kubeconfig points at."""

    model_config = {"populate_by_name": True}

    name: str = Field(DEFAULT_CLUSTER_NAME, description="Cluster display name")
    server: str | None = Field(
        None, description="API server URL, discovered when not set"
    )


class RoleRef(BaseModel):
    """Role bound to the requested identity."""

    model_config = {"populate_by_name": True}

    api_group: str = Field(RBAC_API_GROUP, alias="apiGroup")
    kind: str = Field(
        "ClusterRole", description="Only ClusterRole can be bound cluster-wide"
    )
    name: str = Field(..., min_length=1, description="Role name")

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v):
        if v != "ClusterRole":
            raise ValueError("a ClusterRoleBinding can only reference a ClusterRole")
        return v


class SecretReference(BaseModel):
    """Reference to a Secret holding tls.key and tls.csr."""

    name: str = Field(..., description="Secret name")
    namespace: str | None = Field(
        None, description="Secret namespace, defaults to the AccessRequest's"
    )


class AccessRequestSpec(BaseModel):
    """
    Specification for an AccessRequest resource.

    Either ``existingSecret`` supplies key and request material, or the
    operator generates it according to ``csr``.
    """

    model_config = {"populate_by_name": True}

    username: str = Field(..., min_length=1, description="Requested identity")
    existing_secret: SecretReference | None = Field(
        None,
        alias="existingSecret",
        description="Use key and request from this Secret instead of generating",
    )
    auto_approve: bool = Field(
        False,
        alias="autoApprove",
        description="Let the operator approve the signing request",
    )
    csr: SigningParameters = Field(
        default_factory=SigningParameters, description="Signing parameters"
    )
    cluster: ClusterTarget = Field(
        default_factory=ClusterTarget, description="Target cluster"
    )
    role_ref: RoleRef | None = Field(
        None, alias="roleRef", description="Role to bind, defaults to operator setting"
    )

    @field_validator("username")
    @classmethod
    def validate_username(cls, v):
        if v != v.strip():
            raise ValueError("username must not have leading or trailing whitespace")
        return v


class ObjectReference(BaseModel):
    """Namespaced reference to an owned object."""

    name: str
    namespace: str


class AccessRequestStatus(BaseModel):
    """
    Status of an AccessRequest resource.

    Conditions stay plain dicts so the pure helpers in
    ``utils.conditions`` can operate on them directly.
    """

    model_config = {"populate_by_name": True}

    phase: str = Field("Pending", description="Current phase")
    conditions: list[dict[str, Any]] = Field(
        default_factory=list, description="Typed status conditions"
    )
    user_secret: ObjectReference | None = Field(None, alias="userSecret")
    kubeconfig_secret: ObjectReference | None = Field(None, alias="kubeconfigSecret")
    signing_request: str | None = Field(None, alias="signingRequest")
    role_binding: str | None = Field(None, alias="roleBinding")
    kubeconfig: str | None = Field(None, description="Rendered kubeconfig document")

    def to_k8s(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
