from __future__ import annotations

from dataclasses import dataclass, field
import hashlib
import json
from pathlib import Path
from typing import Callable, TypeVar

from kubernetes import client, config
from kubernetes.client import ApiException
import structlog

from .errors import (
    ConfigMapValidationError,
    CustomCAValidationError,
    JobRecreateError,
    KubernetesAuthenticationError,
    KubernetesOperationError,
    PolicyConfigValidationError,
    RepositoryValidationError,
    SecretValidationError,
)
from .models import CustomCASpec, PolicyConfigSpec

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
MAX_NAME_LENGTH = 63
OWNED_BY_LABEL_KEY = "app.kubernetes.io/created-by"
OWNED_BY_LABEL_VALUE = "volsync"
CLEANUP_LABEL_KEY = "volsync.backube/cleanup"
HOSTNAME_LABEL_KEY = "kubernetes.io/hostname"
T = TypeVar("T")

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class KubernetesClients:
    api_client: client.ApiClient
    core_api: client.CoreV1Api
    batch_api: client.BatchV1Api
    custom_objects_api: client.CustomObjectsApi


@dataclass(frozen=True)
class AffinityInfo:
    node_name: str | None = None
    tolerations: list[client.V1Toleration] = field(default_factory=list)

    def node_selector(self) -> dict[str, str] | None:
        if not self.node_name:
            return None
        return {HOSTNAME_LABEL_KEY: self.node_name}


class SecretVolumeObject:
    """A validated Secret that can be projected into the mover pod."""

    def __init__(self, secret: client.V1Secret, key: str | None) -> None:
        self.secret = secret
        self.key = key

    def volume(self, name: str, path: str | None) -> client.V1Volume:
        items = [client.V1KeyToPath(key=self.key, path=path)] if self.key and path else None
        return client.V1Volume(
            name=name,
            secret=client.V1SecretVolumeSource(secret_name=self.secret.metadata.name, items=items),
        )


class ConfigMapVolumeObject:
    """A validated ConfigMap that can be projected into the mover pod."""

    def __init__(self, config_map: client.V1ConfigMap, key: str | None) -> None:
        self.config_map = config_map
        self.key = key

    def volume(self, name: str, path: str | None) -> client.V1Volume:
        items = [client.V1KeyToPath(key=self.key, path=path)] if self.key and path else None
        return client.V1Volume(
            name=name,
            config_map=client.V1ConfigMapVolumeSource(name=self.config_map.metadata.name, items=items),
        )


VolumeObject = SecretVolumeObject | ConfigMapVolumeObject


def load_kubernetes_clients(
    *,
    kubeconfig_path: str | None,
    context: str | None,
    in_cluster: bool,
) -> KubernetesClients:
    expanded = _expand_kubeconfig_path(kubeconfig_path)
    try:
        if in_cluster:
            config.load_incluster_config()
        else:
            config.load_kube_config(config_file=expanded, context=context)
    except Exception as error:  # pylint: disable=broad-except
        raise KubernetesAuthenticationError(
            _format_authentication_error(
                in_cluster=in_cluster,
                kubeconfig_path=expanded,
                context=context,
                error=error,
            )
        ) from error

    api_client = client.ApiClient()
    return KubernetesClients(
        api_client=api_client,
        core_api=client.CoreV1Api(api_client),
        batch_api=client.BatchV1Api(api_client),
        custom_objects_api=client.CustomObjectsApi(api_client),
    )


def get_and_validate_secret(
    clients: KubernetesClients,
    *,
    namespace: str,
    name: str,
    fields: tuple[str, ...] = (),
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> client.V1Secret:
    try:
        secret = clients.core_api.read_namespaced_secret(
            name=name,
            namespace=namespace,
            _request_timeout=request_timeout_seconds,
        )
    except ApiException as error:
        raise SecretValidationError(
            _format_api_exception_message(
                operation=f"read Secret '{namespace}/{name}'",
                hint="Verify the Secret exists in the same namespace as the replication resource.",
                error=error,
            )
        ) from error

    missing = _missing_fields(secret.data, fields)
    if missing is not None:
        raise SecretValidationError(f"secret {namespace}/{name} {missing}")
    return secret


def get_and_validate_config_map(
    clients: KubernetesClients,
    *,
    namespace: str,
    name: str,
    fields: tuple[str, ...] = (),
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> client.V1ConfigMap:
    try:
        config_map = clients.core_api.read_namespaced_config_map(
            name=name,
            namespace=namespace,
            _request_timeout=request_timeout_seconds,
        )
    except ApiException as error:
        raise ConfigMapValidationError(
            _format_api_exception_message(
                operation=f"read ConfigMap '{namespace}/{name}'",
                hint="Verify the ConfigMap exists in the same namespace as the replication resource.",
                error=error,
            )
        ) from error

    missing = _missing_fields(config_map.data, fields)
    if missing is not None:
        raise ConfigMapValidationError(f"configmap {namespace}/{name} {missing}")
    return config_map


def validate_repository_pvc(
    clients: KubernetesClients,
    *,
    namespace: str,
    name: str,
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> client.V1PersistentVolumeClaim:
    try:
        pvc = clients.core_api.read_namespaced_persistent_volume_claim(
            name=name,
            namespace=namespace,
            _request_timeout=request_timeout_seconds,
        )
    except ApiException as error:
        raise RepositoryValidationError(
            f"repository PVC {name} not found: API status {error.status} ({error.reason or 'no reason provided'})"
        ) from error

    phase = pvc.status.phase if pvc.status and pvc.status.phase else ""
    if phase != "Bound":
        raise RepositoryValidationError(f"repository PVC {name} is not bound (phase: {phase})")
    return pvc


def validate_custom_ca(
    clients: KubernetesClients,
    *,
    namespace: str,
    spec: CustomCASpec,
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> VolumeObject | None:
    if not spec.key:
        return None

    try:
        if spec.secret_name:
            secret = get_and_validate_secret(
                clients,
                namespace=namespace,
                name=spec.secret_name,
                fields=(spec.key,),
                request_timeout_seconds=request_timeout_seconds,
            )
            return SecretVolumeObject(secret, spec.key)
        if spec.config_map_name:
            config_map = get_and_validate_config_map(
                clients,
                namespace=namespace,
                name=spec.config_map_name,
                fields=(spec.key,),
                request_timeout_seconds=request_timeout_seconds,
            )
            return ConfigMapVolumeObject(config_map, spec.key)
    except (SecretValidationError, ConfigMapValidationError) as error:
        raise CustomCAValidationError(f"custom CA validation failed: {error}") from error
    return None


def validate_policy_config(
    clients: KubernetesClients,
    *,
    namespace: str,
    spec: PolicyConfigSpec | None,
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> VolumeObject | None:
    """Check the policy configuration and return the object holding policy files, if any."""
    if spec is None:
        return None

    if spec.repository_config:
        try:
            json.loads(spec.repository_config)
        except ValueError as error:
            raise PolicyConfigValidationError("invalid JSON in repositoryConfig") from error

    try:
        if spec.secret_name:
            secret = get_and_validate_secret(
                clients,
                namespace=namespace,
                name=spec.secret_name,
                request_timeout_seconds=request_timeout_seconds,
            )
            return SecretVolumeObject(secret, None)
        if spec.config_map_name:
            config_map = get_and_validate_config_map(
                clients,
                namespace=namespace,
                name=spec.config_map_name,
                request_timeout_seconds=request_timeout_seconds,
            )
            return ConfigMapVolumeObject(config_map, None)
    except (SecretValidationError, ConfigMapValidationError) as error:
        raise PolicyConfigValidationError(f"policy configuration validation failed: {error}") from error
    return None


def pvc_is_read_only(pvc: client.V1PersistentVolumeClaim) -> bool:
    access_modes = list(pvc.status.access_modes or []) if pvc.status else []
    if not access_modes and pvc.spec:
        access_modes = list(pvc.spec.access_modes or [])
    return access_modes == ["ReadOnlyMany"]


def affinity_from_volume(
    clients: KubernetesClients,
    pvc: client.V1PersistentVolumeClaim,
    *,
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> AffinityInfo:
    """Place the mover next to a workload already using ``pvc``.

    RWX volumes can be mounted anywhere. Otherwise the node of a running
    consumer pod (or the first pending one) is used, ignoring pods the
    operator created itself.
    """
    access_modes = pvc.status.access_modes if pvc.status and pvc.status.access_modes else []
    if "ReadWriteMany" in access_modes:
        return AffinityInfo()

    namespace = pvc.metadata.namespace
    pvc_name = pvc.metadata.name
    pods = _safe_kubernetes_call(
        operation=f"list Pods in namespace '{namespace}' to locate consumers of PVC '{pvc_name}'",
        hint="Verify RBAC allows list on pods.",
        func=lambda: clients.core_api.list_namespaced_pod(
            namespace=namespace,
            _request_timeout=request_timeout_seconds,
        ).items,
    )

    candidate: client.V1Pod | None = None
    for pod in pods or []:
        if _is_owned_by_volsync(pod) or not _pod_uses_pvc(pod, pvc_name):
            continue
        phase = pod.status.phase if pod.status else None
        if phase == "Running" or (phase == "Pending" and candidate is None):
            candidate = pod

    if candidate is None or candidate.spec is None:
        return AffinityInfo()
    return AffinityInfo(node_name=candidate.spec.node_name, tolerations=list(candidate.spec.tolerations or []))


def create_or_update_job(
    clients: KubernetesClients,
    *,
    name: str,
    namespace: str,
    mutate: Callable[[client.V1Job], None],
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> client.V1Job:
    """Apply ``mutate`` to the named Job, creating it if needed.

    Jobs whose update is rejected because of an immutable field are deleted
    so the next reconcile can recreate them.
    """
    existing = _read_job_optional(clients, name=name, namespace=namespace, timeout=request_timeout_seconds)
    if existing is None:
        job = client.V1Job(
            api_version="batch/v1",
            kind="Job",
            metadata=client.V1ObjectMeta(name=name, namespace=namespace),
            spec=client.V1JobSpec(template=client.V1PodTemplateSpec(metadata=client.V1ObjectMeta())),
        )
        mutate(job)
        return _safe_kubernetes_call(
            operation=f"create Job '{namespace}/{name}'",
            hint="Verify RBAC allows create on jobs.",
            func=lambda: clients.batch_api.create_namespaced_job(
                namespace=namespace,
                body=job,
                _request_timeout=request_timeout_seconds,
            ),
        )

    mutate(existing)
    try:
        return clients.batch_api.replace_namespaced_job(
            name=name,
            namespace=namespace,
            body=existing,
            _request_timeout=request_timeout_seconds,
        )
    except ApiException as error:
        if error.status == 422 and "field is immutable" in f"{error.body or ''} {error.reason or ''}".lower():
            logger.warning("job_update_immutable", job=name, namespace=namespace)
            delete_job(clients, name=name, namespace=namespace, request_timeout_seconds=request_timeout_seconds)
            raise JobRecreateError(job_name=name, reason="field is immutable") from error
        raise KubernetesOperationError(
            _format_api_exception_message(
                operation=f"update Job '{namespace}/{name}'",
                hint="Verify RBAC allows update on jobs.",
                error=error,
            )
        ) from error


def delete_job(
    clients: KubernetesClients,
    *,
    name: str,
    namespace: str,
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> None:
    try:
        clients.batch_api.delete_namespaced_job(
            name=name,
            namespace=namespace,
            body=client.V1DeleteOptions(propagation_policy="Background"),
            _request_timeout=request_timeout_seconds,
        )
    except ApiException as error:
        if error.status == 404:
            return
        raise KubernetesOperationError(
            _format_api_exception_message(
                operation=f"delete Job '{namespace}/{name}'",
                hint="Verify RBAC allows delete on jobs.",
                error=error,
            )
        ) from error


def job_name(prefix: str, owner_name: str) -> str:
    name = f"{prefix}{owner_name}"
    if len(name) <= MAX_NAME_LENGTH:
        return name
    return f"{prefix}{hashed_name(owner_name)}"


def hashed_name(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:8]


def set_owned_by_volsync(labels: dict[str, str] | None) -> dict[str, str]:
    labels = dict(labels or {})
    labels[OWNED_BY_LABEL_KEY] = OWNED_BY_LABEL_VALUE
    return labels


def mark_for_cleanup(labels: dict[str, str] | None, owner_uid: str) -> dict[str, str]:
    labels = dict(labels or {})
    labels[CLEANUP_LABEL_KEY] = owner_uid
    return labels


def _read_job_optional(clients: KubernetesClients, *, name: str, namespace: str, timeout: int) -> client.V1Job | None:
    try:
        return clients.batch_api.read_namespaced_job(name=name, namespace=namespace, _request_timeout=timeout)
    except ApiException as error:
        if error.status == 404:
            return None
        raise KubernetesOperationError(
            _format_api_exception_message(
                operation=f"read Job '{namespace}/{name}'",
                hint="Verify RBAC allows get on jobs.",
                error=error,
            )
        ) from error


def _missing_fields(data: dict[str, str] | None, fields: tuple[str, ...]) -> str | None:
    data = data or {}
    if len(data) < len(fields):
        return f"should have fields: {list(fields)}"
    for key in fields:
        if key not in data:
            return f"is missing field: {key}"
    return None


def _pod_uses_pvc(pod: client.V1Pod, pvc_name: str) -> bool:
    volumes = pod.spec.volumes if pod.spec and pod.spec.volumes else []
    for volume in volumes:
        claim = volume.persistent_volume_claim
        if claim and claim.claim_name == pvc_name:
            return True
    return False


def _is_owned_by_volsync(pod: client.V1Pod) -> bool:
    labels = pod.metadata.labels if pod.metadata and pod.metadata.labels else {}
    return labels.get(OWNED_BY_LABEL_KEY) == OWNED_BY_LABEL_VALUE


def _safe_kubernetes_call(*, operation: str, hint: str, func: Callable[[], T]) -> T:
    try:
        return func()
    except ApiException as error:
        raise KubernetesOperationError(
            _format_api_exception_message(
                operation=operation,
                hint=hint,
                error=error,
            )
        ) from error


def _format_api_exception_message(*, operation: str, hint: str, error: ApiException) -> str:
    status = error.status if error.status is not None else "unknown"
    reason = error.reason or "no reason provided"
    return f"Kubernetes request failed while trying to {operation}: API status {status} ({reason}). {hint}"


def _expand_kubeconfig_path(kubeconfig_path: str | None) -> str | None:
    if kubeconfig_path is None:
        return None
    stripped = kubeconfig_path.strip()
    if not stripped:
        return None
    return str(Path(stripped).expanduser())


def _format_authentication_error(
    *,
    in_cluster: bool,
    kubeconfig_path: str | None,
    context: str | None,
    error: Exception,
) -> str:
    reason = str(error).strip() or error.__class__.__name__
    if in_cluster:
        return (
            "Kubernetes authentication setup failed while loading in-cluster service account credentials: "
            f"{reason}. Ensure the pod has a mounted service account token and Kubernetes service host "
            "environment variables."
        )

    kubeconfig_source = kubeconfig_path or "default kubeconfig search path"
    context_message = f" with context '{context}'" if context else ""
    return (
        "Kubernetes authentication setup failed while loading kubeconfig "
        f"from '{kubeconfig_source}'{context_message}: {reason}. "
        "Verify the kubeconfig path and context are valid."
    )
