"""
AccessRequest handlers - Drive AccessRequests and react to owned objects.

This module wires the AccessRequest reconciler into kopf:
- create/resume/update handlers run the state machine
- event watchers on owned CertificateSigningRequests and Secrets stamp an
  annotation on the owning AccessRequest, which kopf delivers as an update

The annotation is the only channel between the signing request side and the
AccessRequest side; neither calls the other directly.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

import kopf
from kubernetes import client
from kubernetes.client.rest import ApiException

from kubeconfig_operator.constants import (
    ACCESS_REQUEST_PLURAL,
    API_GROUP,
    API_VERSION,
    NAMESPACE_LABEL_KEY,
    OBSERVED_CHANGE_ANNOTATION,
    OPERATOR_LABEL_KEY,
    OPERATOR_LABEL_VALUE,
)
from kubeconfig_operator.services import AccessRequestReconciler
from kubeconfig_operator.utils.kubernetes import get_access_request_owner

logger = logging.getLogger(__name__)

MANAGED_LABELS = {OPERATOR_LABEL_KEY: OPERATOR_LABEL_VALUE}


@kopf.on.create(
    ACCESS_REQUEST_PLURAL, backoff=1.5, group=API_GROUP, version=API_VERSION
)
@kopf.on.resume(
    ACCESS_REQUEST_PLURAL, backoff=1.5, group=API_GROUP, version=API_VERSION
)
async def ensure_access_request(
    name: str,
    namespace: str,
    **kwargs: Any,
) -> None:
    """
    Provision credentials for a new (or, after restart, existing) AccessRequest.

    Args:
        name: Name of the AccessRequest resource
        namespace: Namespace where the AccessRequest resource exists

    Returns:
        None to avoid kopf creating status subpaths
    """
    logger.info(f"Ensuring AccessRequest {name} in namespace {namespace}")

    reconciler = AccessRequestReconciler()
    await reconciler.reconcile(name=name, namespace=namespace)
    return None


@kopf.on.update(
    ACCESS_REQUEST_PLURAL, backoff=1.5, group=API_GROUP, version=API_VERSION
)
async def update_access_request(
    name: str,
    namespace: str,
    diff: kopf.Diff,
    **kwargs: Any,
) -> None:
    """
    Re-run the state machine after the AccessRequest changed.

    The spec is immutable, so in practice this fires when an owned object
    signalled a change through the observed-change annotation.
    """
    logger.info(
        f"AccessRequest {name} in namespace {namespace} changed "
        f"({len(diff)} field(s)), reconciling"
    )

    reconciler = AccessRequestReconciler()
    await reconciler.reconcile(name=name, namespace=namespace)
    return None


async def signal_owner(owner_name: str, namespace: str, cause: str) -> bool:
    """
    Stamp the observed-change annotation on an AccessRequest.

    Args:
        owner_name: Name of the AccessRequest
        namespace: Namespace of the AccessRequest
        cause: Short description of what changed, stored in the annotation

    Returns:
        True if the AccessRequest was annotated, False if it no longer exists
    """
    custom_api = client.CustomObjectsApi()
    stamp = f"{cause}@{datetime.now(UTC).strftime('%Y-%m-%dT%H:%M:%S.%fZ')}"
    body = {"metadata": {"annotations": {OBSERVED_CHANGE_ANNOTATION: stamp}}}

    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(
            None,
            lambda: custom_api.patch_namespaced_custom_object(
                group=API_GROUP,
                version=API_VERSION,
                namespace=namespace,
                plural=ACCESS_REQUEST_PLURAL,
                name=owner_name,
                body=body,
            ),
        )
    except ApiException as e:
        if e.status == 404:
            logger.debug(
                f"AccessRequest {namespace}/{owner_name} is gone, not signalling"
            )
            return False
        raise

    logger.debug(f"Signalled AccessRequest {namespace}/{owner_name}: {cause}")
    return True


@kopf.on.event(
    "certificates.k8s.io", "v1", "certificatesigningrequests", labels=MANAGED_LABELS
)
async def on_signing_request_event(
    event: dict[str, Any],
    body: kopf.Body,
    name: str,
    **kwargs: Any,
) -> None:
    """Wake the owning AccessRequest when its signing request is decided or removed."""
    event_type = event.get("type")
    if event_type not in ("MODIFIED", "DELETED"):
        return

    owner = get_access_request_owner(body)
    if owner is None:
        return

    # Owner references carry no namespace; cluster-scoped objects are labelled
    labels = body.get("metadata", {}).get("labels") or {}
    owner_namespace = labels.get(NAMESPACE_LABEL_KEY)
    if not owner_namespace:
        logger.warning(
            f"CertificateSigningRequest {name} has no {NAMESPACE_LABEL_KEY} label"
        )
        return

    try:
        await signal_owner(
            owner["name"], owner_namespace, f"certificatesigningrequest-{event_type}"
        )
    except ApiException as e:
        logger.warning(
            f"Failed to signal AccessRequest {owner_namespace}/{owner['name']} "
            f"about CertificateSigningRequest {name}: {e.reason}"
        )


@kopf.on.event("v1", "secrets", labels=MANAGED_LABELS)
async def on_secret_event(
    event: dict[str, Any],
    body: kopf.Body,
    name: str,
    namespace: str,
    **kwargs: Any,
) -> None:
    """Wake the owning AccessRequest when one of its Secrets is deleted."""
    if event.get("type") != "DELETED":
        return

    owner = get_access_request_owner(body)
    if owner is None:
        return

    try:
        await signal_owner(owner["name"], namespace, "secret-DELETED")
    except ApiException as e:
        logger.warning(
            f"Failed to signal AccessRequest {namespace}/{owner['name']} "
            f"about Secret {name}: {e.reason}"
        )
