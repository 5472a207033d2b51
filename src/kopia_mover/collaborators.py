"""Interfaces of the objects the mover drives but does not implement.

Volume provisioning, ServiceAccount reconciliation and owner-scoped cleanup are
shared by every data mover in the operator, so the mover only depends on
their shape.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from kubernetes import client

from .models import OwnerReference


class VolumeHandler(Protocol):
    def ensure_pvc_from_source(
        self,
        source_pvc: client.V1PersistentVolumeClaim,
        name: str,
        *,
        is_temporary: bool,
    ) -> client.V1PersistentVolumeClaim | None:
        """Snapshot or clone ``source_pvc``. Raises CopyTriggerTimeoutError when waiting on the user."""

    def ensure_new_pvc(self, name: str, *, is_temporary: bool) -> client.V1PersistentVolumeClaim | None:
        ...

    def use_provided_pvc(self, name: str) -> client.V1PersistentVolumeClaim | None:
        ...

    def ensure_image(self, pvc: client.V1PersistentVolumeClaim) -> client.V1TypedLocalObjectReference | None:
        ...

    def remove_snapshot_annotation(self, pvc_name: str) -> None:
        ...

    def is_copy_method_direct(self) -> bool:
        ...

    def get_access_modes(self) -> Sequence[str] | None:
        ...

    def ensure_cache_pvc(
        self,
        name: str,
        *,
        capacity: str,
        access_modes: Sequence[str],
        storage_class_name: str | None,
        is_temporary: bool,
    ) -> client.V1PersistentVolumeClaim | None:
        ...


class ServiceAccountHandler(Protocol):
    def reconcile(self) -> client.V1ServiceAccount | None:
        """Return the mover ServiceAccount once it is ready, else None."""


class ObjectCleaner(Protocol):
    def cleanup_objects(self, owner: OwnerReference, kinds: Sequence[str]) -> None:
        ...
