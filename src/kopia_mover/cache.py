from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from kubernetes import client
from kubernetes.utils import parse_quantity

from .models import CacheSpec

CACHE_VOLUME_NAME = "cache"
CACHE_MOUNT_PATH = "/cache"
DEFAULT_PVC_CAPACITY = "1Gi"
DEFAULT_EMPTYDIR_LIMIT = "8Gi"
METADATA_CACHE_PERCENT = 70
CONTENT_CACHE_PERCENT = 20
_MIB = 1024 * 1024


@dataclass(frozen=True)
class CachePlan:
    use_pvc: bool
    size_limit: str

    @property
    def cache_type(self) -> str:
        return "pvc" if self.use_pvc else "emptydir"


def plan_cache(capacity: str | None, storage_class_name: str | None, access_modes: Sequence[str] | None) -> CachePlan:
    """Choose between a provisioned cache PVC and a size-capped EmptyDir.

    Any explicit storage class or access mode asks for a real PVC (1Gi unless
    sized). Otherwise the cache is ephemeral, capped at the configured
    capacity or at 8Gi so an unconfigured mover cannot fill the node disk.
    """
    if storage_class_name is not None or access_modes is not None:
        return CachePlan(use_pvc=True, size_limit=capacity or DEFAULT_PVC_CAPACITY)
    return CachePlan(use_pvc=False, size_limit=capacity or DEFAULT_EMPTYDIR_LIMIT)


def resolve_cache_access_modes(
    cache_access_modes: Sequence[str] | None,
    handler_access_modes: Sequence[str] | None,
    data_pvc_access_modes: Sequence[str] | None,
) -> list[str]:
    if cache_access_modes:
        return list(cache_access_modes)
    if handler_access_modes:
        return list(handler_access_modes)
    return list(data_pvc_access_modes or [])


def cache_pvc_name(direction: str, owner_name: str) -> str:
    return f"volsync-{direction}-{owner_name}-cache"


def cache_volume(plan: CachePlan, cache_pvc: client.V1PersistentVolumeClaim | None) -> client.V1Volume:
    if plan.use_pvc and cache_pvc is not None:
        return client.V1Volume(
            name=CACHE_VOLUME_NAME,
            persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(claim_name=cache_pvc.metadata.name),
        )
    return client.V1Volume(
        name=CACHE_VOLUME_NAME,
        empty_dir=client.V1EmptyDirVolumeSource(size_limit=plan.size_limit),
    )


def cache_size_bytes(plan: CachePlan, spec: CacheSpec) -> int | None:
    # PVC caches without an explicit capacity report nothing.
    if plan.use_pvc and spec.capacity is None:
        return None
    return int(parse_quantity(plan.size_limit))


def cache_limits_mb(spec: CacheSpec) -> tuple[int | None, int | None]:
    """Return (metadata, content) cache limits in MiB; a limit of 0 means unlimited."""
    metadata_limit = spec.metadata_cache_size_limit_mb
    content_limit = spec.content_cache_size_limit_mb
    if spec.capacity is not None:
        capacity_mb = int(parse_quantity(spec.capacity)) // _MIB
        if metadata_limit is None:
            metadata_limit = capacity_mb * METADATA_CACHE_PERCENT // 100
        if content_limit is None:
            content_limit = capacity_mb * CONTENT_CACHE_PERCENT // 100
    return metadata_limit, content_limit


def cache_limit_environment(spec: CacheSpec) -> list[client.V1EnvVar]:
    metadata_limit, content_limit = cache_limits_mb(spec)
    env: list[client.V1EnvVar] = []
    if metadata_limit:
        env.append(client.V1EnvVar(name="KOPIA_METADATA_CACHE_SIZE_LIMIT_MB", value=str(metadata_limit)))
    if content_limit:
        env.append(client.V1EnvVar(name="KOPIA_CONTENT_CACHE_SIZE_LIMIT_MB", value=str(content_limit)))
    return env
