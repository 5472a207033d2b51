from __future__ import annotations

from prometheus_client import CollectorRegistry, generate_latest

from kopia_mover.metrics import METRICS_NAMESPACE, MoverMetrics, metric_labels


def _labels(**extra: str) -> dict[str, str]:
    labels = metric_labels(
        obj_name="webapp",
        obj_namespace="prod",
        role="source",
        operation="backup",
        repository="kopia-secret",
    )
    labels.update(extra)
    return labels


def test_mover_metrics_with_separate_registries_do_not_share_samples() -> None:
    first = MoverMetrics(CollectorRegistry())
    second = MoverMetrics(CollectorRegistry())

    first.operation_success.labels(**_labels()).inc()

    assert first.registry.get_sample_value("volsync_kopia_operation_success_total", _labels()) == 1.0
    assert second.registry.get_sample_value("volsync_kopia_operation_success_total", _labels()) is None


def test_mover_metrics_without_registry_creates_private_registry() -> None:
    metrics = MoverMetrics()

    metrics.repository_connectivity.labels(**_labels()).set(1)

    assert metrics.registry.get_sample_value("volsync_kopia_repository_connectivity", _labels()) == 1.0


def test_mover_metrics_exposition_uses_namespace_prefix() -> None:
    metrics = MoverMetrics(CollectorRegistry())
    metrics.configuration_errors.labels(**_labels(error_type="custom_ca_validation_failed")).inc()
    metrics.operation_duration.labels(**_labels()).observe(12.5)

    exposition = generate_latest(metrics.registry).decode("utf-8")

    assert METRICS_NAMESPACE == "volsync_kopia"
    assert 'volsync_kopia_configuration_errors_total{' in exposition
    assert 'error_type="custom_ca_validation_failed"' in exposition
    assert "volsync_kopia_operation_duration_seconds_count" in exposition


def test_metric_labels_returns_base_label_set() -> None:
    assert _labels() == {
        "obj_name": "webapp",
        "obj_namespace": "prod",
        "role": "source",
        "operation": "backup",
        "repository": "kopia-secret",
    }
