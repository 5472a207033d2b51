"""Build kopia movers from ReplicationSource / ReplicationDestination objects.

Custom resources arrive as the camelCase dictionaries returned by the
CustomObjectsApi. The builder turns them into a ``MoverConfig`` plus the
status objects the mover mutates, and ``render_status`` converts those back
into a camelCase status patch.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
import json
from typing import Any, Mapping

from dateutil import parser as date_parser
from kubernetes.client import ApiException
import structlog

from .collaborators import ObjectCleaner, ServiceAccountHandler, VolumeHandler
from .config import MoverSettings
from .errors import IdentityConfigurationError
from .identity import (
    generate_hostname,
    generate_username,
    resolve_destination_identity,
    validate_destination_identity,
)
from .k8s import KubernetesClients
from .metrics import MoverMetrics
from .models import (
    Actions,
    CacheSpec,
    CustomCASpec,
    DestinationOptions,
    DestinationStatus,
    Identity,
    IdentityInfo,
    MaintenanceStatus,
    MoverConfig,
    MoverPodConfig,
    MoverResult,
    MoverStatus,
    OwnerReference,
    PolicyConfigSpec,
    RetainPolicy,
    SourceOptions,
    SourceStatus,
)
from .mover import MOVER_NAME, Mover

VOLSYNC_GROUP = "volsync.backube"
VOLSYNC_VERSION = "v1alpha1"
SOURCE_PLURAL = "replicationsources"
SOURCE_KIND = "ReplicationSource"
DESTINATION_KIND = "ReplicationDestination"
TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Collaborators:
    volume_handler: VolumeHandler
    service_account_handler: ServiceAccountHandler
    cleaner: ObjectCleaner


@dataclass(frozen=True)
class SourceInfo:
    pvc_name: str = ""
    source_path_override: str | None = None
    repository: str = ""


class _JSONResponse:
    # ApiClient.deserialize reads the body from ``.data``.
    def __init__(self, payload: Any) -> None:
        self.data = json.dumps(payload)


class Builder:
    def __init__(
        self,
        *,
        clients: KubernetesClients,
        settings: MoverSettings,
        metrics: MoverMetrics,
        operator_environ: Mapping[str, str] | None = None,
    ) -> None:
        self.clients = clients
        self.settings = settings
        self.metrics = metrics
        self.operator_environ = operator_environ

    def name(self) -> str:
        return MOVER_NAME

    def version_info(self) -> str:
        return f"Kopia container: {self.settings.kopia_image}"

    def from_source(
        self,
        source: dict[str, Any],
        collaborators: Collaborators,
        *,
        privileged: bool = False,
    ) -> Mover | None:
        spec = source.get("spec") or {}
        kopia = spec.get("kopia")
        if kopia is None:
            return None

        owner = _owner_reference(source, SOURCE_KIND)
        source_pvc = spec.get("sourcePVC", "")
        identity = Identity(
            username=generate_username(kopia.get("username"), owner.name, owner.namespace),
            hostname=generate_hostname(kopia.get("hostname"), source_pvc, owner.namespace, owner.name),
        )
        options = SourceOptions(
            source_pvc=source_pvc,
            compression=kopia.get("compression") or "",
            parallelism=kopia.get("parallelism"),
            retain=_retain_policy(kopia.get("retain")),
            actions=_actions(kopia.get("actions")),
            maintenance_interval_days=kopia.get("maintenanceIntervalDays"),
        )
        config = self._mover_config(
            kopia,
            owner=owner,
            role_options=options,
            repository=kopia.get("repository", ""),
            identity=identity,
            paused=bool(spec.get("paused", False)),
            privileged=privileged,
            source_path_override=kopia.get("sourcePathOverride"),
            cleanup_cache=False,
        )

        status = source.setdefault("status", {}) or {}
        kopia_status = status.get("kopia") or {}
        return Mover(
            clients=self.clients,
            config=config,
            volume_handler=collaborators.volume_handler,
            service_account_handler=collaborators.service_account_handler,
            cleaner=collaborators.cleaner,
            metrics=self.metrics,
            settings=self.settings,
            mover_status=_mover_status(status.get("latestMoverStatus")),
            source_status=SourceStatus(last_maintenance=_parse_time(kopia_status.get("lastMaintenance"))),
            operator_environ=self.operator_environ,
        )

    def from_destination(
        self,
        destination: dict[str, Any],
        collaborators: Collaborators,
        *,
        privileged: bool = False,
    ) -> Mover | None:
        spec = destination.get("spec") or {}
        kopia = spec.get("kopia")
        if kopia is None:
            return None

        owner = _owner_reference(destination, DESTINATION_KIND)
        source_identity = kopia.get("sourceIdentity") or {}
        source_name = source_identity.get("sourceName") or None
        try:
            validate_destination_identity(
                username=kopia.get("username"),
                hostname=kopia.get("hostname"),
                source_name=source_name,
            )
        except IdentityConfigurationError:
            logger.error(
                "invalid_destination_identity",
                destination=owner.name,
                namespace=owner.namespace,
                hint="Please provide either sourceIdentity OR both username and hostname",
            )
            raise

        source_namespace = source_identity.get("sourceNamespace") or owner.namespace
        source_path_override = source_identity.get("sourcePathOverride")
        source_pvc = source_identity.get("sourcePVCName") or None
        repository = kopia.get("repository") or ""

        if source_name and not kopia.get("hostname") and not source_pvc:
            discovered = self.discover_source_info(source_name, source_namespace)
            source_pvc = discovered.pvc_name or None
            if source_path_override is None:
                source_path_override = discovered.source_path_override
            if not repository:
                repository = discovered.repository

        identity = resolve_destination_identity(
            username=kopia.get("username"),
            hostname=kopia.get("hostname"),
            destination_name=owner.name,
            destination_namespace=owner.namespace,
            destination_pvc=kopia.get("destinationPVC"),
            source_name=source_name,
            source_namespace=source_namespace,
            source_pvc=source_pvc,
        )
        options = DestinationOptions(
            destination_pvc=kopia.get("destinationPVC"),
            cleanup_temp_pvc=bool(kopia.get("cleanupTempPVC", False)),
            restore_as_of=kopia.get("restoreAsOf"),
            shallow=kopia.get("shallow"),
            previous=kopia.get("previous"),
        )
        config = self._mover_config(
            kopia,
            owner=owner,
            role_options=options,
            repository=repository,
            identity=identity,
            paused=bool(spec.get("paused", False)),
            privileged=privileged,
            source_path_override=source_path_override,
            cleanup_cache=bool(kopia.get("cleanupCachePVC", False)),
        )

        status = destination.setdefault("status", {}) or {}
        return Mover(
            clients=self.clients,
            config=config,
            volume_handler=collaborators.volume_handler,
            service_account_handler=collaborators.service_account_handler,
            cleaner=collaborators.cleaner,
            metrics=self.metrics,
            settings=self.settings,
            mover_status=_mover_status(status.get("latestMoverStatus")),
            destination_status=_destination_status(status.get("kopia")),
            operator_environ=self.operator_environ,
        )

    def discover_source_info(self, source_name: str, source_namespace: str) -> SourceInfo:
        """Read the ReplicationSource a restore refers to; failures yield an empty SourceInfo."""
        try:
            source = self.clients.custom_objects_api.get_namespaced_custom_object(
                VOLSYNC_GROUP,
                VOLSYNC_VERSION,
                source_namespace,
                SOURCE_PLURAL,
                source_name,
                _request_timeout=self.settings.request_timeout_seconds,
            )
        except ApiException as error:
            logger.info(
                "source_discovery_failed",
                source_name=source_name,
                source_namespace=source_namespace,
                status=error.status,
                reason=error.reason,
            )
            return SourceInfo()

        spec = source.get("spec") or {}
        kopia = spec.get("kopia") or {}
        info = SourceInfo(
            pvc_name=spec.get("sourcePVC") or "",
            source_path_override=kopia.get("sourcePathOverride"),
            repository=kopia.get("repository") or "",
        )
        logger.debug(
            "source_discovered",
            source_name=source_name,
            source_namespace=source_namespace,
            pvc=info.pvc_name,
            repository=info.repository,
        )
        return info

    def _mover_config(
        self,
        kopia: Mapping[str, Any],
        *,
        owner: OwnerReference,
        role_options: SourceOptions | DestinationOptions,
        repository: str,
        identity: Identity,
        paused: bool,
        privileged: bool,
        source_path_override: str | None,
        cleanup_cache: bool,
    ) -> MoverConfig:
        access_modes = kopia.get("cacheAccessModes")
        additional_args = kopia.get("additionalArgs")
        return MoverConfig(
            owner=owner,
            role_options=role_options,
            repository=repository,
            identity=identity,
            image=self.settings.kopia_image,
            repository_pvc=kopia.get("repositoryPVC"),
            cache=CacheSpec(
                capacity=kopia.get("cacheCapacity"),
                storage_class_name=kopia.get("cacheStorageClassName"),
                access_modes=tuple(access_modes) if access_modes is not None else None,
                metadata_cache_size_limit_mb=kopia.get("metadataCacheSizeLimitMB"),
                content_cache_size_limit_mb=kopia.get("contentCacheSizeLimitMB"),
                cleanup=cleanup_cache,
            ),
            custom_ca=_custom_ca(kopia.get("customCA")),
            policy_config=_policy_config(kopia.get("policyConfig")),
            privileged=privileged,
            paused=paused,
            source_path_override=source_path_override,
            additional_args=tuple(additional_args) if additional_args else None,
            pod_config=MoverPodConfig(
                security_context=self._deserialize(kopia.get("moverSecurityContext"), "V1PodSecurityContext"),
                resources=self._deserialize(kopia.get("moverResources"), "V1ResourceRequirements"),
                pod_labels=dict(kopia.get("moverPodLabels") or {}),
            ),
        )

    def _deserialize(self, value: Mapping[str, Any] | None, model: str):
        if not value:
            return None
        return self.clients.api_client.deserialize(_JSONResponse(value), model)


def render_status(mover: Mover) -> dict[str, Any]:
    """Return the camelCase status fields owned by ``mover``."""
    status: dict[str, Any] = {"latestMoverStatus": _render_mover_status(mover.mover_status)}
    if mover.source_status is not None:
        status["kopia"] = {"lastMaintenance": _format_time(mover.source_status.last_maintenance)}
    if mover.destination_status is not None:
        destination = mover.destination_status
        status["kopia"] = {
            "requestedIdentity": destination.requested_identity,
            "snapshotsFound": destination.snapshots_found,
            "availableIdentities": [
                {
                    "identity": info.identity,
                    "snapshotCount": info.snapshot_count,
                    "latestSnapshot": _format_time(info.latest_snapshot),
                }
                for info in destination.available_identities
            ],
        }
    return status


def render_maintenance_status(status: MaintenanceStatus) -> dict[str, Any]:
    return {
        "configured": status.configured,
        "lastSuccessfulTime": _format_time(status.last_successful_time),
        "lastFailedTime": _format_time(status.last_failed_time),
        "failuresSinceLastSuccess": status.failures_since_last_success,
        "lastMaintenanceDuration": status.last_maintenance_duration,
        "lastError": status.last_error or None,
        "nextScheduledTime": _format_time(status.next_scheduled_time),
    }


def _owner_reference(obj: Mapping[str, Any], kind: str) -> OwnerReference:
    metadata = obj.get("metadata") or {}
    return OwnerReference(
        api_version=obj.get("apiVersion") or f"{VOLSYNC_GROUP}/{VOLSYNC_VERSION}",
        kind=obj.get("kind") or kind,
        name=metadata.get("name", ""),
        namespace=metadata.get("namespace", ""),
        uid=metadata.get("uid", ""),
        annotations=dict(metadata.get("annotations") or {}),
    )


def _retain_policy(value: Mapping[str, Any] | None) -> RetainPolicy | None:
    if value is None:
        return None
    return RetainPolicy(
        hourly=value.get("hourly"),
        daily=value.get("daily"),
        weekly=value.get("weekly"),
        monthly=value.get("monthly"),
        yearly=value.get("yearly"),
        latest=value.get("latest"),
    )


def _actions(value: Mapping[str, Any] | None) -> Actions | None:
    if value is None:
        return None
    return Actions(
        before_snapshot=value.get("beforeSnapshot") or "",
        after_snapshot=value.get("afterSnapshot") or "",
    )


def _custom_ca(value: Mapping[str, Any] | None) -> CustomCASpec:
    value = value or {}
    return CustomCASpec(
        secret_name=value.get("secretName") or "",
        config_map_name=value.get("configMapName") or "",
        key=value.get("key") or "",
    )


def _policy_config(value: Mapping[str, Any] | None) -> PolicyConfigSpec | None:
    if value is None:
        return None
    return PolicyConfigSpec(
        secret_name=value.get("secretName") or "",
        config_map_name=value.get("configMapName") or "",
        global_policy_filename=value.get("globalPolicyFilename") or "",
        repository_config_filename=value.get("repositoryConfigFilename") or "",
        repository_config=value.get("repositoryConfig"),
    )


def _mover_status(value: Mapping[str, Any] | None) -> MoverStatus:
    value = value or {}
    result = value.get("result")
    return MoverStatus(
        result=MoverResult(result) if result in {item.value for item in MoverResult} else None,
        logs=value.get("logs") or "",
    )


def _destination_status(value: Mapping[str, Any] | None) -> DestinationStatus:
    value = value or {}
    return DestinationStatus(
        requested_identity=value.get("requestedIdentity") or "",
        available_identities=[
            IdentityInfo(
                identity=item.get("identity", ""),
                snapshot_count=int(item.get("snapshotCount") or 0),
                latest_snapshot=_parse_time(item.get("latestSnapshot")),
            )
            for item in value.get("availableIdentities") or []
        ],
        snapshots_found=int(value.get("snapshotsFound") or 0),
    )


def _render_mover_status(status: MoverStatus) -> dict[str, Any]:
    return {
        "result": status.result.value if status.result is not None else None,
        "logs": status.logs,
    }


def _parse_time(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    parsed = date_parser.isoparse(value)
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _format_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).strftime(TIME_FORMAT)
