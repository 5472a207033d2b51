from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import Mock

from kubernetes import client
from kubernetes.client import ApiException
from prometheus_client import CollectorRegistry
import pytest

from kopia_mover.builder import Builder, Collaborators, SourceInfo, render_maintenance_status, render_status
from kopia_mover.config import MoverSettings
from kopia_mover.errors import IdentityConfigurationError
from kopia_mover.k8s import KubernetesClients
from kopia_mover.metrics import MoverMetrics
from kopia_mover.models import (
    DestinationOptions,
    IdentityInfo,
    MaintenanceStatus,
    MoverResult,
    SourceOptions,
)


def _builder(custom_objects_api: Mock | None = None, api_client: object | None = None) -> Builder:
    clients = KubernetesClients(
        api_client=api_client or Mock(),
        core_api=Mock(),
        batch_api=Mock(),
        custom_objects_api=custom_objects_api or Mock(),
    )
    settings = MoverSettings(
        kopia_image="quay.io/backube/volsync:1.0",
        mover_log_max_bytes=1024,
        mover_log_tail_lines=-1,
        mover_log_debug=False,
        request_timeout_seconds=15,
        log_level="INFO",
    )
    return Builder(clients=clients, settings=settings, metrics=MoverMetrics(CollectorRegistry()), operator_environ={})


def _collaborators() -> Collaborators:
    return Collaborators(volume_handler=Mock(), service_account_handler=Mock(), cleaner=Mock())


def _source(kopia: dict | None, **spec) -> dict:
    body = {
        "apiVersion": "volsync.backube/v1alpha1",
        "kind": "ReplicationSource",
        "metadata": {"name": "webapp", "namespace": "prod", "uid": "uid-src"},
        "spec": {"sourcePVC": "webapp-data", **spec},
    }
    if kopia is not None:
        body["spec"]["kopia"] = kopia
    return body


def _destination(kopia: dict | None) -> dict:
    body = {
        "apiVersion": "volsync.backube/v1alpha1",
        "kind": "ReplicationDestination",
        "metadata": {"name": "webapp-restore", "namespace": "staging", "uid": "uid-dst"},
        "spec": {},
    }
    if kopia is not None:
        body["spec"]["kopia"] = kopia
    return body


def test_builder_reports_name_and_image_version() -> None:
    builder = _builder()

    assert builder.name() == "kopia"
    assert builder.version_info() == "Kopia container: quay.io/backube/volsync:1.0"


def test_from_source_without_kopia_section_returns_none() -> None:
    assert _builder().from_source(_source(None), _collaborators()) is None


def test_from_source_maps_spec_into_mover_config() -> None:
    source = _source(
        {
            "repository": "kopia-secret",
            "compression": "zstd",
            "parallelism": 2,
            "retain": {"daily": 7, "weekly": 4},
            "actions": {"beforeSnapshot": "sync"},
            "maintenanceIntervalDays": 7,
            "cacheCapacity": "5Gi",
            "cacheStorageClassName": "fast",
            "cacheAccessModes": ["ReadWriteOnce"],
            "additionalArgs": ["--one-file-system"],
            "moverPodLabels": {"team": "storage"},
            "policyConfig": {"configMapName": "policies", "repositoryConfig": "{}"},
            "customCA": {"secretName": "ca", "key": "ca.crt"},
        },
        paused=True,
    )
    source["status"] = {
        "latestMoverStatus": {"result": "Successful", "logs": "done"},
        "kopia": {"lastMaintenance": "2024-06-01T00:00:00Z"},
    }

    mover = _builder().from_source(source, _collaborators(), privileged=True)

    config = mover.config
    assert isinstance(config.role_options, SourceOptions)
    assert config.role_options.source_pvc == "webapp-data"
    assert config.role_options.retain.configured() == [("daily", 7), ("weekly", 4)]
    assert config.role_options.actions.before_snapshot == "sync"
    assert str(config.identity) == "webapp@prod"
    assert config.repository == "kopia-secret"
    assert config.image == "quay.io/backube/volsync:1.0"
    assert config.cache.capacity == "5Gi"
    assert config.cache.access_modes == ("ReadWriteOnce",)
    assert config.additional_args == ("--one-file-system",)
    assert config.pod_config.pod_labels == {"team": "storage"}
    assert config.policy_config.config_map_name == "policies"
    assert config.custom_ca.secret_name == "ca"
    assert config.paused is True
    assert config.privileged is True
    assert config.owner.uid == "uid-src"
    assert mover.mover_status.result is MoverResult.SUCCESSFUL
    assert mover.source_status.last_maintenance == datetime(2024, 6, 1, tzinfo=UTC)


def test_from_source_with_identity_overrides_uses_them_verbatim() -> None:
    mover = _builder().from_source(
        _source({"repository": "kopia-secret", "username": "custom.user", "hostname": "shared"}),
        _collaborators(),
    )

    assert str(mover.config.identity) == "custom.user@shared"


def test_from_source_deserializes_mover_security_context() -> None:
    source = _source(
        {
            "repository": "kopia-secret",
            "moverSecurityContext": {"runAsUser": 1000, "fsGroup": 2000},
            "moverResources": {"limits": {"memory": "1Gi"}},
        }
    )

    mover = _builder(api_client=client.ApiClient()).from_source(source, _collaborators())

    pod_config = mover.config.pod_config
    assert isinstance(pod_config.security_context, client.V1PodSecurityContext)
    assert pod_config.security_context.run_as_user == 1000
    assert pod_config.security_context.fs_group == 2000
    assert pod_config.resources.limits == {"memory": "1Gi"}


def test_from_destination_without_kopia_section_returns_none() -> None:
    assert _builder().from_destination(_destination(None), _collaborators()) is None


def test_from_destination_with_source_identity_discovers_source_details() -> None:
    custom_objects_api = Mock()
    custom_objects_api.get_namespaced_custom_object.return_value = {
        "spec": {
            "sourcePVC": "webapp-data",
            "kopia": {"repository": "kopia-secret", "sourcePathOverride": "/var/lib/app"},
        }
    }
    destination = _destination(
        {
            "sourceIdentity": {"sourceName": "webapp", "sourceNamespace": "prod"},
            "shallow": 3,
            "cleanupCachePVC": True,
        }
    )

    mover = _builder(custom_objects_api).from_destination(destination, _collaborators())

    config = mover.config
    assert str(config.identity) == "webapp@prod"
    assert config.repository == "kopia-secret"
    assert config.source_path_override == "/var/lib/app"
    assert config.cache.cleanup is True
    assert isinstance(config.role_options, DestinationOptions)
    assert config.role_options.shallow == 3
    custom_objects_api.get_namespaced_custom_object.assert_called_once_with(
        "volsync.backube",
        "v1alpha1",
        "prod",
        "replicationsources",
        "webapp",
        _request_timeout=15,
    )


def test_from_destination_with_explicit_repository_and_override_keeps_them() -> None:
    custom_objects_api = Mock()
    custom_objects_api.get_namespaced_custom_object.return_value = {
        "spec": {"sourcePVC": "webapp-data", "kopia": {"repository": "other", "sourcePathOverride": "/other"}}
    }
    destination = _destination(
        {
            "repository": "restore-secret",
            "sourceIdentity": {"sourceName": "webapp", "sourcePathOverride": "/data/app"},
        }
    )

    config = _builder(custom_objects_api).from_destination(destination, _collaborators()).config

    assert config.repository == "restore-secret"
    assert config.source_path_override == "/data/app"
    assert str(config.identity) == "webapp@staging"


def test_from_destination_with_source_pvc_name_skips_discovery() -> None:
    custom_objects_api = Mock()
    destination = _destination(
        {"repository": "kopia-secret", "sourceIdentity": {"sourceName": "webapp", "sourcePVCName": "webapp-data"}}
    )

    _builder(custom_objects_api).from_destination(destination, _collaborators())

    custom_objects_api.get_namespaced_custom_object.assert_not_called()


def test_from_destination_with_explicit_identity_skips_discovery() -> None:
    custom_objects_api = Mock()
    destination = _destination({"repository": "kopia-secret", "username": "webapp", "hostname": "prod"})

    mover = _builder(custom_objects_api).from_destination(destination, _collaborators())

    assert str(mover.config.identity) == "webapp@prod"
    custom_objects_api.get_namespaced_custom_object.assert_not_called()


def test_from_destination_with_username_only_raises_identity_error() -> None:
    destination = _destination({"repository": "kopia-secret", "username": "webapp"})

    with pytest.raises(IdentityConfigurationError, match="missing 'hostname'"):
        _builder().from_destination(destination, _collaborators())


def test_from_destination_restores_previous_discovery_status() -> None:
    destination = _destination({"repository": "kopia-secret", "username": "webapp", "hostname": "prod"})
    destination["status"] = {
        "kopia": {
            "requestedIdentity": "webapp@prod",
            "snapshotsFound": 0,
            "availableIdentities": [
                {"identity": "webapp@staging", "snapshotCount": 2, "latestSnapshot": "2024-05-03T08:30:00Z"}
            ],
        }
    }

    mover = _builder().from_destination(destination, _collaborators())

    status = mover.destination_status
    assert status.requested_identity == "webapp@prod"
    assert status.available_identities[0].latest_snapshot == datetime(2024, 5, 3, 8, 30, tzinfo=UTC)


def test_discover_source_info_with_missing_source_returns_empty_info() -> None:
    custom_objects_api = Mock()
    custom_objects_api.get_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")

    assert _builder(custom_objects_api).discover_source_info("gone", "prod") == SourceInfo()


def test_render_status_for_source_formats_maintenance_time() -> None:
    source = _source({"repository": "kopia-secret"})
    mover = _builder().from_source(source, _collaborators())
    mover.mover_status.result = MoverResult.FAILED
    mover.mover_status.logs = "ERROR: boom"
    mover.source_status.last_maintenance = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)

    assert render_status(mover) == {
        "latestMoverStatus": {"result": "Failed", "logs": "ERROR: boom"},
        "kopia": {"lastMaintenance": "2024-06-15T12:00:00Z"},
    }


def test_render_status_for_destination_lists_available_identities() -> None:
    destination = _destination({"repository": "kopia-secret", "username": "webapp", "hostname": "prod"})
    mover = _builder().from_destination(destination, _collaborators())
    mover.destination_status.requested_identity = "webapp@prod"
    mover.destination_status.available_identities = [IdentityInfo(identity="webapp@staging", snapshot_count=2)]

    status = render_status(mover)

    assert status["latestMoverStatus"] == {"result": None, "logs": ""}
    assert status["kopia"] == {
        "requestedIdentity": "webapp@prod",
        "snapshotsFound": 0,
        "availableIdentities": [{"identity": "webapp@staging", "snapshotCount": 2, "latestSnapshot": None}],
    }


def test_render_maintenance_status_uses_camel_case_fields() -> None:
    status = MaintenanceStatus(
        configured=True,
        last_successful_time=datetime(2024, 6, 1, 3, 0, tzinfo=UTC),
        failures_since_last_success=0,
        last_maintenance_duration="42s",
    )

    assert render_maintenance_status(status) == {
        "configured": True,
        "lastSuccessfulTime": "2024-06-01T03:00:00Z",
        "lastFailedTime": None,
        "failuresSinceLastSuccess": 0,
        "lastMaintenanceDuration": "42s",
        "lastError": None,
        "nextScheduledTime": None,
    }
