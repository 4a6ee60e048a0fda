"""
Kubeconfig assembly from issued credentials.

``assemble_kubeconfig`` is a pure function: the same inputs always give the
same document, and it performs no I/O.
"""

import base64

from ..constants import DEFAULT_CONTEXT_NAMESPACE
from ..models.kubeconfig import Cluster, Context, KubeconfigDocument, User


def _b64(data: bytes | str) -> str:
    if isinstance(data, str):
        data = data.encode()
    return base64.b64encode(data).decode()


def context_name(username: str, cluster_name: str) -> str:
    return f"{username}@{cluster_name}"


def assemble_kubeconfig(
    ca_data: bytes | str,
    certificate: bytes | str,
    private_key: bytes | str,
    cluster_name: str,
    server: str,
    username: str,
    namespace: str = DEFAULT_CONTEXT_NAMESPACE,
) -> KubeconfigDocument:
    """
    Build a kubeconfig with a single cluster, user and context.

    Args:
        ca_data: PEM CA bundle used to verify the API server
        certificate: PEM client certificate issued by the signer
        private_key: PEM private key matching the certificate
        cluster_name: Display name of the cluster entry
        server: API server URL
        username: Identity, used as the user entry name
        namespace: Default namespace of the context

    Returns:
        Document whose current context joins the cluster and user
    """
    context = context_name(username, cluster_name)
    return KubeconfigDocument(
        clusters={
            cluster_name: Cluster(
                server=server, certificate_authority_data=_b64(ca_data)
            )
        },
        users={
            username: User(
                client_certificate_data=_b64(certificate),
                client_key_data=_b64(private_key),
            )
        },
        contexts={
            context: Context(cluster=cluster_name, user=username, namespace=namespace)
        },
        current_context=context,
    )
