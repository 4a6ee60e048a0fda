"""
AccessRequest reconciler - Drives an AccessRequest to a usable kubeconfig.

Every reconcile re-reads the AccessRequest and the signing request and then
advances as far as the cluster state allows:

    Pending -> AwaitingApproval -> Finished | Failed

Secrets are always written before status, and status is replaced through the
status subresource with the resourceVersion that was read, so a concurrent
writer turns into a retry rather than a lost update. Terminal failures are
recorded in status and never raised; transient ones are raised and retried
by kopf.
"""

import asyncio
import base64
from collections.abc import Callable
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException
from pydantic import ValidationError as SpecValidationError

from ..constants import (
    ACCESS_REQUEST_PLURAL,
    API_GROUP,
    API_VERSION,
    AUTO_APPROVE_ANNOTATION,
    CLIENT_AUTH_USAGE,
    CONDITION_FALSE,
    CONDITION_TRUE,
    CSR_CONDITION_APPROVED,
    CSR_CONDITION_DENIED,
    RBAC_API_GROUP,
    REASON_APPROVED,
    REASON_CERTIFICATE_PENDING,
    REASON_COMPLETED,
    REASON_CREATED,
    REASON_DECAYED,
    REASON_DENIED,
    REASON_EXISTING_SECRET_INVALID,
    REASON_INVALID_ROLE_REF,
    REASON_NAME_CONFLICT,
    REASON_PRIVATE_KEY_MISSING,
    REASON_SIGNING_FAILED,
    SECRET_KEY_CERTIFICATE,
    SECRET_KEY_KUBECONFIG,
    SECRET_KEY_PRIVATE_KEY,
    SECRET_KEY_REQUEST,
    SECRET_TYPE_OPAQUE,
    SECRET_TYPE_TLS,
    USER_SUBJECT_KIND,
)
from ..errors import (
    ConfigurationError,
    ConflictError,
    CredentialGenerationError,
    SigningRequestFailedError,
    TemporaryError,
    ValidationError,
)
from ..models.access_request import (
    AccessRequestSpec,
    AccessRequestStatus,
    ObjectReference,
    SecretReference,
)
from ..observability.metrics import metrics_collector
from ..settings import settings
from ..utils.conditions import (
    ConditionType,
    Phase,
    is_condition_true,
    is_terminal,
    set_condition,
)
from ..utils.credentials import (
    CredentialMaterial,
    generate_credential_material,
    validate_credential_material,
)
from ..utils.kubeconfig import assemble_kubeconfig
from ..utils.kubernetes import (
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
    signing_request_name,
    terminal_signing_request_condition,
    user_secret_name,
)
from ..utils.upsert import (
    cluster_role_binding_accessor,
    ensure,
    secret_accessor,
    with_secret_data,
)
from .base_reconciler import BaseReconciler

MaterialGenerator = Callable[..., CredentialMaterial]


class ReconcileState:
    """
    Working copy of one AccessRequest for the duration of a single reconcile.

    Holds the object as read, the status as read and the status being built.
    """

    def __init__(self, obj: dict[str, Any]):
        self.obj = obj
        self.raw_status: dict[str, Any] = dict(obj.get("status") or {})
        self.status = AccessRequestStatus.model_validate(self.raw_status)

    @property
    def name(self) -> str:
        return self.obj["metadata"]["name"]

    @property
    def namespace(self) -> str:
        return self.obj["metadata"]["namespace"]

    @property
    def uid(self) -> str:
        return self.obj["metadata"].get("uid", "")

    @property
    def conditions(self) -> list[dict[str, Any]]:
        return self.status.conditions

    def set(
        self, condition_type: ConditionType, status: str, reason: str, message: str
    ) -> None:
        self.status.conditions = set_condition(
            self.status.conditions, condition_type, status, reason, message
        )

    def merged_status(self) -> dict[str, Any]:
        return {**self.raw_status, **self.status.to_k8s()}


class AccessRequestReconciler(BaseReconciler):
    """
    Reconciler for AccessRequest resources.

    The Kubernetes API objects and the material generator can be injected,
    which is how the unit tests run the state machine against an in-memory
    cluster.
    """

    resource_type = "accessrequest"

    def __init__(
        self,
        k8s_client: client.ApiClient | None = None,
        core_api: client.CoreV1Api | None = None,
        certificates_api: client.CertificatesV1Api | None = None,
        rbac_api: client.RbacAuthorizationV1Api | None = None,
        custom_api: client.CustomObjectsApi | None = None,
        generate_material: MaterialGenerator = generate_credential_material,
    ):
        super().__init__(k8s_client)
        self._core_api = core_api
        self._certificates_api = certificates_api
        self._rbac_api = rbac_api
        self._custom_api = custom_api
        self.generate_material = generate_material

    @property
    def core_api(self) -> client.CoreV1Api:
        if self._core_api is None:
            self._core_api = client.CoreV1Api(self.kubernetes_client)
        return self._core_api

    @property
    def certificates_api(self) -> client.CertificatesV1Api:
        if self._certificates_api is None:
            self._certificates_api = client.CertificatesV1Api(self.kubernetes_client)
        return self._certificates_api

    @property
    def rbac_api(self) -> client.RbacAuthorizationV1Api:
        if self._rbac_api is None:
            self._rbac_api = client.RbacAuthorizationV1Api(self.kubernetes_client)
        return self._rbac_api

    @property
    def custom_api(self) -> client.CustomObjectsApi:
        if self._custom_api is None:
            self._custom_api = client.CustomObjectsApi(self.kubernetes_client)
        return self._custom_api

    async def do_reconcile(
        self, name: str, namespace: str | None, **kwargs
    ) -> dict[str, Any] | None:
        """
        Advance one AccessRequest as far as the cluster state allows.

        Returns:
            The status as persisted, or None when there was nothing to do
        """
        obj = self._read_access_request(name, namespace)
        if obj is None:
            self.logger.info(
                f"AccessRequest {namespace}/{name} no longer exists, skipping",
                resource_name=name,
                namespace=namespace,
            )
            return None

        state = ReconcileState(obj)
        if is_terminal(state.conditions):
            self.logger.debug(
                f"AccessRequest {namespace}/{name} is {state.status.phase}, "
                "nothing to do",
                phase=state.status.phase,
            )
            return None

        try:
            spec = AccessRequestSpec.model_validate(obj.get("spec") or {})
        except SpecValidationError as e:
            error = ValidationError.from_pydantic(e)
            return self._fail(state, None, error.reason, error.message)

        # Resolved up front so no certificate is issued for an unbindable role
        if spec.role_ref is None:
            try:
                spec = spec.model_copy(update={"role_ref": default_role_ref()})
            except ConfigurationError as e:
                return self._fail(
                    state,
                    ConditionType.ROLE_BINDING_READY,
                    REASON_INVALID_ROLE_REF,
                    e.message,
                )

        user_secret = self._ensure_user_secret(state, spec)
        state.status.user_secret = ObjectReference(
            name=user_secret_name(state.name), namespace=state.namespace
        )
        state.set(
            ConditionType.USER_SECRET_CREATED,
            CONDITION_TRUE,
            REASON_CREATED,
            f"Secret {user_secret_name(state.name)} exists",
        )

        csr_name = signing_request_name(state.name, state.namespace)
        csr = self._read_signing_request(csr_name)

        if csr is None:
            if not is_condition_true(
                state.conditions, ConditionType.SIGNING_REQUEST_CREATED
            ):
                return await self._create_signing_request(
                    state, spec, user_secret, csr_name
                )
            return self._handle_vanished_signing_request(state, spec, user_secret)

        if not self._owns(state, csr):
            return self._fail(
                state,
                ConditionType.SIGNING_REQUEST_CREATED,
                REASON_NAME_CONFLICT,
                f"CertificateSigningRequest {csr_name} exists but belongs to "
                "another object",
            )

        self._record_signing_request(state, csr_name)

        try:
            approved = self._signing_request_approved(csr)
        except SigningRequestFailedError as e:
            return self._fail(
                state, ConditionType.SIGNING_REQUEST_APPROVED, e.reason, e.message
            )

        if not approved:
            # Undecided; the signing request watch wakes us up on change
            state.status.phase = Phase.AWAITING_APPROVAL
            return self._persist(state)

        state.set(
            ConditionType.SIGNING_REQUEST_APPROVED,
            CONDITION_TRUE,
            REASON_APPROVED,
            f"CertificateSigningRequest {csr_name} was approved",
        )

        encoded = getattr(csr.status, "certificate", None)
        if not encoded:
            state.set(
                ConditionType.USER_SECRET_FINISHED,
                CONDITION_FALSE,
                REASON_CERTIFICATE_PENDING,
                f"Waiting for the signer to issue a certificate for {csr_name}",
            )
            state.status.phase = Phase.AWAITING_APPROVAL
            self._persist(state)
            raise TemporaryError(
                f"CertificateSigningRequest {csr_name} is approved but the "
                "certificate has not been issued yet",
                delay=settings.certificate_poll_interval_seconds,
            )

        return self._finish(state, spec, base64.b64decode(encoded))

    # Reading

    def _read_access_request(
        self, name: str, namespace: str | None
    ) -> dict[str, Any] | None:
        try:
            return self.custom_api.get_namespaced_custom_object(
                group=API_GROUP,
                version=API_VERSION,
                namespace=namespace,
                plural=ACCESS_REQUEST_PLURAL,
                name=name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def _read_signing_request(
        self, name: str
    ) -> client.V1CertificateSigningRequest | None:
        try:
            return self.certificates_api.read_certificate_signing_request(name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def _owns(self, state: ReconcileState, resource: Any) -> bool:
        owner = get_access_request_owner(resource)
        return owner is not None and owner.uid == state.uid

    def _signing_request_approved(
        self, csr: client.V1CertificateSigningRequest
    ) -> bool:
        """
        Whether the request was approved; False while it is undecided.

        Raises:
            SigningRequestFailedError: The request was denied or failed
        """
        condition = terminal_signing_request_condition(csr)
        if condition is None:
            return False
        if condition.type == CSR_CONDITION_APPROVED:
            return True

        default_reason = (
            REASON_DENIED
            if condition.type == CSR_CONDITION_DENIED
            else REASON_SIGNING_FAILED
        )
        raise SigningRequestFailedError(
            condition.message
            or f"CertificateSigningRequest {csr.metadata.name} was "
            f"{condition.type.lower()}",
            reason=condition.reason or default_reason,
        )

    # Signing request creation

    async def _create_signing_request(
        self,
        state: ReconcileState,
        spec: AccessRequestSpec,
        user_secret: client.V1Secret,
        csr_name: str,
    ) -> dict[str, Any]:
        try:
            material = await self._resolve_material(state, spec, user_secret)
        except CredentialGenerationError as e:
            return self._fail(
                state, ConditionType.SIGNING_REQUEST_CREATED, e.reason, e.message
            )

        material_data = encode_secret_data(
            {
                SECRET_KEY_PRIVATE_KEY: material.private_key_pem,
                SECRET_KEY_REQUEST: material.request_pem,
            }
        )
        stored = ensure(
            self._user_secret_accessor(state),
            lambda: self._user_secret_body(state, spec, material_data),
            with_secret_data(material_data),
        )
        # Never file a request whose private key is stored nowhere
        if not decode_secret_value(stored.object, SECRET_KEY_PRIVATE_KEY):
            raise TemporaryError(
                f"Secret {user_secret_name(state.name)} does not hold the "
                "private key yet",
                delay=settings.conflict_retry_delay_seconds,
            )

        try:
            self.certificates_api.create_certificate_signing_request(
                self._signing_request_body(state, spec, material, csr_name)
            )
            self.logger.info(
                f"Created CertificateSigningRequest {csr_name}",
                signing_request=csr_name,
                username=spec.username,
            )
        except ApiException as e:
            if e.status != 409:
                raise
            existing = self._read_signing_request(csr_name)
            if existing is None:
                raise ConflictError(
                    "CertificateSigningRequest",
                    csr_name,
                    delay=settings.conflict_retry_delay_seconds,
                ) from e
            if not self._owns(state, existing):
                return self._fail(
                    state,
                    ConditionType.SIGNING_REQUEST_CREATED,
                    REASON_NAME_CONFLICT,
                    f"CertificateSigningRequest {csr_name} already exists and "
                    "belongs to another object",
                )

        self._record_signing_request(state, csr_name)
        state.status.phase = Phase.AWAITING_APPROVAL
        return self._persist(state)

    async def _resolve_material(
        self,
        state: ReconcileState,
        spec: AccessRequestSpec,
        user_secret: client.V1Secret,
    ) -> CredentialMaterial:
        """
        Find or produce key and request material.

        Material left in the UserSecret by an earlier attempt wins, then the
        referenced existing secret, then a freshly generated pair.
        """
        private_key = decode_secret_value(user_secret, SECRET_KEY_PRIVATE_KEY)
        request = decode_secret_value(user_secret, SECRET_KEY_REQUEST)
        if private_key and request:
            self.logger.debug("Reusing credential material from the UserSecret")
            return CredentialMaterial(private_key_pem=private_key, request_pem=request)

        if spec.existing_secret is not None:
            return self._read_existing_material(spec.existing_secret, state.namespace)

        algorithm = spec.csr.signature_algorithm
        # Key generation is CPU bound; keep it off the event loop
        material = await asyncio.to_thread(
            self.generate_material,
            spec.username,
            algorithm,
            spec.csr.fields,
            settings.rsa_key_size,
        )
        metrics_collector.record_credentials_generated(algorithm)
        return material

    def _read_existing_material(
        self, ref: SecretReference, default_namespace: str
    ) -> CredentialMaterial:
        namespace = ref.namespace or default_namespace
        try:
            secret = self.core_api.read_namespaced_secret(ref.name, namespace)
        except ApiException as e:
            if e.status == 404:
                raise CredentialGenerationError(
                    f"Existing secret {namespace}/{ref.name} not found",
                    reason=REASON_EXISTING_SECRET_INVALID,
                    cause=e,
                ) from e
            raise

        private_key = decode_secret_value(secret, SECRET_KEY_PRIVATE_KEY)
        request = decode_secret_value(secret, SECRET_KEY_REQUEST)
        missing = [
            key
            for key, value in (
                (SECRET_KEY_PRIVATE_KEY, private_key),
                (SECRET_KEY_REQUEST, request),
            )
            if not value
        ]
        if missing:
            raise CredentialGenerationError(
                f"Existing secret {namespace}/{ref.name} is missing "
                f"{', '.join(missing)}",
                reason=REASON_EXISTING_SECRET_INVALID,
            )

        material = CredentialMaterial(private_key_pem=private_key, request_pem=request)
        validate_credential_material(material)
        return material

    def _record_signing_request(self, state: ReconcileState, csr_name: str) -> None:
        state.status.signing_request = csr_name
        state.set(
            ConditionType.SIGNING_REQUEST_CREATED,
            CONDITION_TRUE,
            REASON_CREATED,
            f"CertificateSigningRequest {csr_name} created",
        )

    def _handle_vanished_signing_request(
        self,
        state: ReconcileState,
        spec: AccessRequestSpec,
        user_secret: client.V1Secret,
    ) -> dict[str, Any]:
        """The CSR was created earlier and has since been garbage collected."""
        if is_condition_true(state.conditions, ConditionType.SIGNING_REQUEST_APPROVED):
            # Recorded approval is authoritative
            certificate = decode_secret_value(user_secret, SECRET_KEY_CERTIFICATE)
            if certificate:
                return self._finish(state, spec, certificate)
            return self._fail(
                state,
                None,
                REASON_DECAYED,
                "CertificateSigningRequest was approved but decayed before a "
                "certificate was stored",
            )

        return self._fail(
            state,
            ConditionType.SIGNING_REQUEST_APPROVED,
            REASON_DECAYED,
            "CertificateSigningRequest decayed without reaching a terminal state",
        )

    # Finishing

    def _finish(
        self, state: ReconcileState, spec: AccessRequestSpec, certificate: bytes
    ) -> dict[str, Any]:
        namespace = state.namespace
        secret_name = user_secret_name(state.name)
        user_secret_access = self._user_secret_accessor(state)

        stored = ensure(
            user_secret_access,
            lambda: self._user_secret_body(state, spec),
            with_secret_data(encode_secret_data({SECRET_KEY_CERTIFICATE: certificate})),
        )

        private_key = decode_secret_value(stored.object, SECRET_KEY_PRIVATE_KEY)
        if not private_key:
            return self._fail(
                state,
                ConditionType.USER_SECRET_FINISHED,
                REASON_PRIVATE_KEY_MISSING,
                f"Secret {secret_name} no longer holds the private key",
            )

        ca_data = read_trust_anchor(self.core_api)
        server = spec.cluster.server or discover_cluster_endpoint(self.core_api)
        document = assemble_kubeconfig(
            ca_data=ca_data,
            certificate=certificate,
            private_key=private_key,
            cluster_name=spec.cluster.name,
            server=server,
            username=spec.username,
        )
        rendered = document.encode()
        rendered_data = encode_secret_data({SECRET_KEY_KUBECONFIG: rendered})

        ensure(
            user_secret_access,
            lambda: self._user_secret_body(state, spec),
            with_secret_data(rendered_data),
        )
        state.set(
            ConditionType.USER_SECRET_FINISHED,
            CONDITION_TRUE,
            REASON_COMPLETED,
            f"Secret {secret_name} holds the certificate and kubeconfig",
        )

        kubeconfig_name = kubeconfig_secret_name(state.name)
        ensure(
            secret_accessor(self.core_api, kubeconfig_name, namespace),
            lambda: self._kubeconfig_secret_body(state, spec, rendered_data),
            with_secret_data(rendered_data),
        )
        state.status.kubeconfig_secret = ObjectReference(
            name=kubeconfig_name, namespace=namespace
        )
        state.set(
            ConditionType.KUBECONFIG_SECRET_CREATED,
            CONDITION_TRUE,
            REASON_CREATED,
            f"Secret {kubeconfig_name} holds the kubeconfig",
        )

        binding_name = self._ensure_role_binding(state, spec)
        state.status.role_binding = binding_name
        state.set(
            ConditionType.ROLE_BINDING_READY,
            CONDITION_TRUE,
            REASON_CREATED,
            f"ClusterRoleBinding {binding_name} binds {spec.username}",
        )

        state.status.kubeconfig = rendered
        state.status.phase = Phase.FINISHED
        state.set(
            ConditionType.FINISHED,
            CONDITION_TRUE,
            REASON_COMPLETED,
            f"Kubeconfig for {spec.username} is ready",
        )

        persisted = self._persist(state)
        metrics_collector.record_kubeconfig_issued(namespace)
        self.logger.info(
            f"Issued kubeconfig for {spec.username} in Secret "
            f"{namespace}/{kubeconfig_name}",
            username=spec.username,
            phase=Phase.FINISHED,
        )
        return persisted

    def _ensure_role_binding(
        self, state: ReconcileState, spec: AccessRequestSpec
    ) -> str:
        role_ref = spec.role_ref
        name = role_binding_name(spec.username, role_ref.name)
        labels = access_request_labels(state.name, state.namespace, spec.username)
        subjects = [
            client.RbacV1Subject(
                kind=USER_SUBJECT_KIND, api_group=RBAC_API_GROUP, name=spec.username
            )
        ]

        def construct() -> client.V1ClusterRoleBinding:
            return client.V1ClusterRoleBinding(
                api_version=f"{RBAC_API_GROUP}/v1",
                kind="ClusterRoleBinding",
                metadata=client.V1ObjectMeta(
                    name=name,
                    labels=labels,
                    owner_references=[build_owner_reference(state.name, state.uid)],
                ),
                role_ref=client.V1RoleRef(
                    api_group=role_ref.api_group,
                    kind=role_ref.kind,
                    name=role_ref.name,
                ),
                subjects=subjects,
            )

        def mutate(
            binding: client.V1ClusterRoleBinding,
        ) -> client.V1ClusterRoleBinding:
            # roleRef is immutable; only subjects and labels are reconciled
            binding.subjects = subjects
            binding.metadata.labels = {**(binding.metadata.labels or {}), **labels}
            return binding

        ensure(cluster_role_binding_accessor(self.rbac_api, name), construct, mutate)
        return name

    # Object bodies

    def _user_secret_body(
        self,
        state: ReconcileState,
        spec: AccessRequestSpec,
        data: dict[str, str] | None = None,
    ) -> client.V1Secret:
        # kubernetes.io/tls secrets must carry the key and certificate entries
        return client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=self._owned_metadata(state, spec, user_secret_name(state.name)),
            type=SECRET_TYPE_TLS,
            data={
                SECRET_KEY_PRIVATE_KEY: "",
                SECRET_KEY_REQUEST: "",
                SECRET_KEY_CERTIFICATE: "",
                **(data or {}),
            },
        )

    def _kubeconfig_secret_body(
        self, state: ReconcileState, spec: AccessRequestSpec, data: dict[str, str]
    ) -> client.V1Secret:
        return client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=self._owned_metadata(
                state, spec, kubeconfig_secret_name(state.name)
            ),
            type=SECRET_TYPE_OPAQUE,
            data=dict(data),
        )

    def _signing_request_body(
        self,
        state: ReconcileState,
        spec: AccessRequestSpec,
        material: CredentialMaterial,
        csr_name: str,
    ) -> client.V1CertificateSigningRequest:
        annotations = {AUTO_APPROVE_ANNOTATION: "true"} if spec.auto_approve else None
        return client.V1CertificateSigningRequest(
            api_version="certificates.k8s.io/v1",
            kind="CertificateSigningRequest",
            metadata=client.V1ObjectMeta(
                name=csr_name,
                labels=access_request_labels(
                    state.name, state.namespace, spec.username
                ),
                annotations=annotations,
                owner_references=[build_owner_reference(state.name, state.uid)],
            ),
            spec=client.V1CertificateSigningRequestSpec(
                request=base64.b64encode(material.request_pem).decode(),
                signer_name=settings.signer_name,
                usages=[CLIENT_AUTH_USAGE],
                expiration_seconds=spec.csr.expiration_seconds,
            ),
        )

    def _owned_metadata(
        self, state: ReconcileState, spec: AccessRequestSpec, name: str
    ) -> client.V1ObjectMeta:
        return client.V1ObjectMeta(
            name=name,
            namespace=state.namespace,
            labels=access_request_labels(state.name, state.namespace, spec.username),
            owner_references=[build_owner_reference(state.name, state.uid)],
        )

    def _user_secret_accessor(self, state: ReconcileState):
        return secret_accessor(
            self.core_api, user_secret_name(state.name), state.namespace
        )

    def _ensure_user_secret(
        self, state: ReconcileState, spec: AccessRequestSpec
    ) -> client.V1Secret:
        result = ensure(
            self._user_secret_accessor(state),
            lambda: self._user_secret_body(state, spec),
        )
        return result.object

    # Status

    def _fail(
        self,
        state: ReconcileState,
        condition_type: ConditionType | None,
        reason: str,
        message: str,
    ) -> dict[str, Any]:
        """Record a terminal failure; the AccessRequest is never revisited."""
        if condition_type is not None:
            state.set(condition_type, CONDITION_FALSE, reason, message)
        state.set(ConditionType.FINISHED, CONDITION_FALSE, reason, message)
        state.status.phase = Phase.FAILED
        self.logger.warning(
            f"AccessRequest {state.namespace}/{state.name} failed: {message}",
            resource_name=state.name,
            namespace=state.namespace,
            reason=reason,
            phase=Phase.FAILED,
        )
        return self._persist(state)

    def _persist(self, state: ReconcileState) -> dict[str, Any]:
        """
        Replace the status subresource if anything changed.

        Raises:
            ConflictError: The AccessRequest changed since it was read
        """
        new_status = state.merged_status()
        if new_status == state.raw_status:
            return new_status

        body = {**state.obj, "status": new_status}
        try:
            updated = self.custom_api.replace_namespaced_custom_object_status(
                group=API_GROUP,
                version=API_VERSION,
                namespace=state.namespace,
                plural=ACCESS_REQUEST_PLURAL,
                name=state.name,
                body=body,
            )
        except ApiException as e:
            if e.status == 409:
                raise ConflictError(
                    "AccessRequest",
                    f"{state.namespace}/{state.name}",
                    delay=settings.conflict_retry_delay_seconds,
                ) from e
            if e.status == 404:
                self.logger.info(
                    f"AccessRequest {state.namespace}/{state.name} was deleted, "
                    "dropping status update"
                )
                return new_status
            raise

        if new_status.get("phase") != state.raw_status.get("phase"):
            metrics_collector.record_phase_transition(
                state.namespace, new_status["phase"]
            )
        state.obj = updated
        state.raw_status = new_status
        return new_status

