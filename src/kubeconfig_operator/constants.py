"""
Constants used throughout the kubeconfig operator.

This module defines all constant values used by the operator including:
- API group and resource identifiers
- Resource labels and annotations
- Well-known secret keys and naming patterns
- Status phases and condition reason codes
"""

# AccessRequest custom resource
API_GROUP = "kubeconfig-operator.dev"
API_VERSION = "v1alpha1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"
ACCESS_REQUEST_KIND = "AccessRequest"
ACCESS_REQUEST_PLURAL = "accessrequests"
ACCESS_REQUEST_CRD_NAME = f"{ACCESS_REQUEST_PLURAL}.{API_GROUP}"

# Label constants for resource identification and management
OPERATOR_LABEL_KEY = "app.kubernetes.io/managed-by"
OPERATOR_LABEL_VALUE = "kubeconfig-operator"
FOR_LABEL_KEY = f"{API_GROUP}/for"
NAMESPACE_LABEL_KEY = f"{API_GROUP}/namespace"
USERNAME_LABEL_KEY = f"{API_GROUP}/username"

# Annotation constants
AUTO_APPROVE_ANNOTATION = f"{API_GROUP}/auto-approve"
OBSERVED_CHANGE_ANNOTATION = f"{API_GROUP}/observed-change"

# Well-known secret keys
SECRET_KEY_PRIVATE_KEY = "tls.key"
SECRET_KEY_REQUEST = "tls.csr"
SECRET_KEY_CERTIFICATE = "tls.crt"
SECRET_KEY_KUBECONFIG = "kubeconfig"

# Secret types
SECRET_TYPE_TLS = "kubernetes.io/tls"
SECRET_TYPE_OPAQUE = "Opaque"

# Resource naming patterns
USER_SECRET_SUFFIX = "-client-key"
KUBECONFIG_SECRET_SUFFIX = "-kubeconfig"
ROLE_BINDING_PREFIX = "kubeconfig-"

# Certificate signing requests
CLIENT_AUTH_USAGE = "client auth"
CSR_PEM_TYPE = "CERTIFICATE REQUEST"
CSR_CONDITION_APPROVED = "Approved"
CSR_CONDITION_DENIED = "Denied"
CSR_CONDITION_FAILED = "Failed"
CSR_TERMINAL_CONDITIONS = frozenset(
    {CSR_CONDITION_APPROVED, CSR_CONDITION_DENIED, CSR_CONDITION_FAILED}
)
CSR_APPROVED_REASON = "AutoApproved"
CSR_APPROVED_MESSAGE = "Automatically approved by kubeconfig-operator"

# RBAC
RBAC_API_GROUP = "rbac.authorization.k8s.io"
USER_SUBJECT_KIND = "User"

# Kubeconfig defaults
DEFAULT_CLUSTER_NAME = "kubernetes"
DEFAULT_CONTEXT_NAMESPACE = "default"

# Condition status constants
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

# Condition reason codes
REASON_CREATED = "Created"
REASON_APPROVED = "Approved"
REASON_DENIED = "Denied"
REASON_SIGNING_FAILED = "SigningFailed"
REASON_DECAYED = "Decayed"
REASON_CERTIFICATE_PENDING = "CertificatePending"
REASON_GENERATION_FAILED = "GenerationFailed"
REASON_EXISTING_SECRET_INVALID = "ExistingSecretInvalid"
REASON_MALFORMED_REQUEST = "MalformedRequest"
REASON_INVALID_SPEC = "InvalidSpec"
REASON_INVALID_ROLE_REF = "InvalidRoleRef"
REASON_NAME_CONFLICT = "NameConflict"
REASON_COMPLETED = "Completed"
REASON_PRIVATE_KEY_MISSING = "PrivateKeyMissing"
