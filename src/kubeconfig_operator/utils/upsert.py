"""
Idempotent find-or-create / create-or-update helpers.

``ensure`` is the single write primitive the reconcilers use for objects they
own. It is safe to call any number of times with the same inputs: the first
call creates, later calls only update when the mutator actually changes
something, and every update carries the resourceVersion that was read so a
concurrent writer causes a retry instead of a lost update.
"""

import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..errors import ConflictError
from ..settings import settings

logger = logging.getLogger(__name__)

_serializer: client.ApiClient | None = None


def _sanitize(obj: Any) -> Any:
    global _serializer
    if _serializer is None:
        _serializer = client.ApiClient()
    return _serializer.sanitize_for_serialization(obj)


@dataclass(frozen=True)
class ResourceAccessor:
    """Kind-specific read/create/replace calls bound to one object key."""

    kind: str
    name: str
    read: Callable[[], Any]
    create: Callable[[Any], Any]
    replace: Callable[[Any], Any]


@dataclass(frozen=True)
class EnsureResult:
    object: Any
    created: bool
    updated: bool = False


def _read(accessor: ResourceAccessor) -> Any | None:
    try:
        return accessor.read()
    except ApiException as e:
        if e.status == 404:
            return None
        raise


def ensure(
    accessor: ResourceAccessor,
    constructor: Callable[[], Any],
    mutator: Callable[[Any], Any] | None = None,
) -> EnsureResult:
    """
    Get the object, creating it if absent and updating it if the mutator changes it.

    Args:
        accessor: Bound API calls for the object
        constructor: Builds the object to create when it does not exist
        mutator: Receives a copy of the existing object and returns the
            desired object; only fields it may change should be touched

    Returns:
        The resulting object and whether it was created or updated

    Raises:
        ConflictError: The object changed (or vanished) between read and write
        ApiException: Any other API failure
    """
    existing = _read(accessor)

    if existing is None:
        try:
            created = accessor.create(constructor())
            logger.info(f"Created {accessor.kind} {accessor.name}")
            return EnsureResult(object=created, created=True)
        except ApiException as e:
            if e.status != 409:
                raise
        # Someone else created it between our read and create
        existing = _read(accessor)
        if existing is None:
            raise ConflictError(
                accessor.kind,
                accessor.name,
                delay=settings.conflict_retry_delay_seconds,
            )

    if mutator is None:
        return EnsureResult(object=existing, created=False)

    desired = mutator(copy.deepcopy(existing))
    if _sanitize(desired) == _sanitize(existing):
        return EnsureResult(object=existing, created=False)

    try:
        updated = accessor.replace(desired)
    except ApiException as e:
        if e.status in (404, 409):
            raise ConflictError(
                accessor.kind,
                accessor.name,
                delay=settings.conflict_retry_delay_seconds,
            ) from e
        raise

    logger.info(f"Updated {accessor.kind} {accessor.name}")
    return EnsureResult(object=updated, created=False, updated=True)


def secret_accessor(
    core_api: client.CoreV1Api, name: str, namespace: str
) -> ResourceAccessor:
    return ResourceAccessor(
        kind="Secret",
        name=f"{namespace}/{name}",
        read=lambda: core_api.read_namespaced_secret(name, namespace),
        create=lambda body: core_api.create_namespaced_secret(namespace, body),
        replace=lambda body: core_api.replace_namespaced_secret(name, namespace, body),
    )


def cluster_role_binding_accessor(
    rbac_api: client.RbacAuthorizationV1Api, name: str
) -> ResourceAccessor:
    return ResourceAccessor(
        kind="ClusterRoleBinding",
        name=name,
        read=lambda: rbac_api.read_cluster_role_binding(name),
        create=lambda body: rbac_api.create_cluster_role_binding(body),
        replace=lambda body: rbac_api.replace_cluster_role_binding(name, body),
    )


def with_secret_data(values: dict[str, str]) -> Callable[[Any], Any]:
    """
    Mutator that merges already base64 encoded ``values`` into a Secret's data.

    Keys not mentioned are left alone.
    """

    def mutate(secret: Any) -> Any:
        secret.data = {**(secret.data or {}), **values}
        return secret

    return mutate
