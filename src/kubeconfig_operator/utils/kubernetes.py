"""
Kubernetes utilities for the kubeconfig operator.

This module provides helper functions for interacting with the Kubernetes API.

Key functionality:
- Kubernetes client management and configuration
- Ownership metadata (owner references and labels) for created objects
- Secret data encoding
- Cluster bootstrap inputs: CA bundle, API endpoint and default role
"""

import base64
import logging
import re
from collections.abc import Mapping
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from pydantic import ValidationError as PydanticValidationError

from ..constants import (
    ACCESS_REQUEST_KIND,
    API_GROUP,
    API_GROUP_VERSION,
    CSR_TERMINAL_CONDITIONS,
    FOR_LABEL_KEY,
    KUBECONFIG_SECRET_SUFFIX,
    NAMESPACE_LABEL_KEY,
    OPERATOR_LABEL_KEY,
    OPERATOR_LABEL_VALUE,
    RBAC_API_GROUP,
    ROLE_BINDING_PREFIX,
    USERNAME_LABEL_KEY,
    USER_SECRET_SUFFIX,
)
from ..errors import ConfigurationError, KubernetesAPIError, TemporaryError
from ..models.access_request import RoleRef
from ..models.kubeconfig import KubeconfigDocument
from ..settings import settings

logger = logging.getLogger(__name__)

# Label values: at most 63 characters of [A-Za-z0-9._-], alphanumeric at both ends
_LABEL_VALUE_INVALID = re.compile(r"[^A-Za-z0-9._-]+")
# Object names: lowercase RFC 1123 subdomain
_NAME_INVALID = re.compile(r"[^a-z0-9.-]+")


def get_kubernetes_client() -> client.ApiClient:
    """
    Get configured Kubernetes API client.

    Tries in-cluster configuration first and falls back to the local
    kubeconfig for development.
    """
    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()


def sanitize_label_value(value: str) -> str:
    """Turn an arbitrary string (e.g. a username) into a valid label value."""
    cleaned = _LABEL_VALUE_INVALID.sub("-", value)[:63]
    return cleaned.strip("-_.")


def sanitize_name(value: str) -> str:
    """Turn an arbitrary string into a valid object name fragment."""
    cleaned = _NAME_INVALID.sub("-", value.lower())
    return cleaned.strip("-.")


def access_request_labels(
    name: str, namespace: str, username: str
) -> dict[str, str]:
    """Labels put on every object created for an AccessRequest."""
    return {
        OPERATOR_LABEL_KEY: OPERATOR_LABEL_VALUE,
        FOR_LABEL_KEY: sanitize_label_value(name),
        NAMESPACE_LABEL_KEY: namespace,
        USERNAME_LABEL_KEY: sanitize_label_value(username),
    }


def build_owner_reference(owner_name: str, owner_uid: str) -> client.V1OwnerReference:
    """
    Controller owner reference pointing at an AccessRequest.

    Args:
        owner_name: Name of the AccessRequest
        owner_uid: UID of the AccessRequest
    """
    return client.V1OwnerReference(
        api_version=API_GROUP_VERSION,
        kind=ACCESS_REQUEST_KIND,
        name=owner_name,
        uid=owner_uid,
        controller=True,
        block_owner_deletion=True,
    )


def get_access_request_owner(resource: Any) -> Any | None:
    """
    Return the AccessRequest owner reference of a resource, if any.

    Works with both kubernetes client models and mappings (kopf bodies).
    """
    if isinstance(resource, Mapping):
        refs = resource.get("metadata", {}).get("ownerReferences") or []
        for ref in refs:
            if _is_access_request(ref.get("kind"), ref.get("apiVersion")):
                return ref
        return None

    metadata = getattr(resource, "metadata", None)
    for ref in getattr(metadata, "owner_references", None) or []:
        if _is_access_request(ref.kind, ref.api_version):
            return ref
    return None


def _is_access_request(kind: str | None, api_version: str | None) -> bool:
    # Any served version of our group counts
    group = (api_version or "").split("/")[0]
    return kind == ACCESS_REQUEST_KIND and group == API_GROUP


def encode_secret_data(values: dict[str, bytes | str]) -> dict[str, str]:
    """Base64 encode values for the ``data`` field of a Secret."""
    encoded = {}
    for key, value in values.items():
        if isinstance(value, str):
            value = value.encode()
        encoded[key] = base64.b64encode(value).decode()
    return encoded


def decode_secret_value(secret: Any, key: str) -> bytes | None:
    """Return the decoded value of ``key`` in a Secret, or None if absent or empty."""
    data = getattr(secret, "data", None) or {}
    value = data.get(key)
    if not value:
        return None
    return base64.b64decode(value)


def read_trust_anchor(core_api: client.CoreV1Api) -> bytes:
    """
    Read the cluster CA bundle from the well-known ConfigMap.

    Raises:
        TemporaryError: The ConfigMap or its ca.crt key is missing
    """
    namespace = settings.trust_anchor_namespace
    name = settings.trust_anchor_configmap
    try:
        config_map = core_api.read_namespaced_config_map(name, namespace)
    except ApiException as e:
        if e.status == 404:
            raise TemporaryError(
                f"Trust anchor ConfigMap {namespace}/{name} not found", delay=60
            ) from e
        raise KubernetesAPIError.from_api_exception(
            e, f"Failed to read trust anchor ConfigMap {namespace}/{name}"
        ) from e

    ca_data = (config_map.data or {}).get("ca.crt")
    if not ca_data:
        raise TemporaryError(
            f"Trust anchor ConfigMap {namespace}/{name} has no ca.crt", delay=60
        )
    return ca_data.encode()


def discover_cluster_endpoint(core_api: client.CoreV1Api) -> str:
    """
    Discover the API server URL from the cluster-info ConfigMap.

    The ConfigMap holds a kubeconfig whose cluster entry with the empty name
    describes the cluster. Any problem falls back to the configured default.
    """
    namespace = settings.cluster_info_namespace
    name = settings.cluster_info_configmap
    fallback = settings.fallback_server

    try:
        config_map = core_api.read_namespaced_config_map(name, namespace)
    except ApiException as e:
        if e.status == 404:
            logger.info(
                f"Discovery ConfigMap {namespace}/{name} not found, using {fallback}"
            )
            return fallback
        raise KubernetesAPIError.from_api_exception(
            e, f"Failed to read discovery ConfigMap {namespace}/{name}"
        ) from e

    raw = (config_map.data or {}).get("kubeconfig")
    if not raw:
        return fallback

    try:
        document = KubeconfigDocument.decode(raw)
    except ValueError as e:
        logger.warning(f"Discovery ConfigMap {namespace}/{name} is unparsable: {e}")
        return fallback

    cluster = document.clusters.get("")
    if cluster is None or not cluster.server:
        return fallback
    return cluster.server


def default_role_ref() -> RoleRef:
    """
    Role bound when an AccessRequest does not name one.

    Raises:
        ConfigurationError: The configured default role is not a valid ClusterRole
    """
    try:
        return RoleRef(
            api_group=RBAC_API_GROUP,
            kind=settings.default_role_kind,
            name=settings.default_role_name,
        )
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid default role: {e}") from e


def signing_request_name(name: str, namespace: str) -> str:
    """Cluster-wide CSR name for an AccessRequest; namespaces never contain dots."""
    return f"{namespace}.{name}"


def user_secret_name(name: str) -> str:
    return f"{name}{USER_SECRET_SUFFIX}"


def kubeconfig_secret_name(name: str) -> str:
    return f"{name}{KUBECONFIG_SECRET_SUFFIX}"


def role_binding_name(username: str, role_name: str) -> str:
    return f"{ROLE_BINDING_PREFIX}{sanitize_name(username)}-{sanitize_name(role_name)}"


def terminal_signing_request_condition(csr: Any) -> Any | None:
    """
    Return the Approved, Denied or Failed condition of a CSR, if any.

    Conditions with an explicit status other than "True" do not count.
    """
    status = getattr(csr, "status", None)
    for condition in getattr(status, "conditions", None) or []:
        if condition.type not in CSR_TERMINAL_CONDITIONS:
            continue
        if condition.status in (None, "True"):
            return condition
    return None
