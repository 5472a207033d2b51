from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

METRICS_NAMESPACE = "volsync_kopia"
BASE_LABELS = ("obj_name", "obj_namespace", "role", "operation", "repository")


class MoverMetrics:
    """Prometheus collectors for kopia movers, bound to one registry.

    A single instance is shared by every Mover in the process; tests build
    their own with an isolated ``CollectorRegistry``.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()

        # yapf: disable
        self.operation_success = Counter("operation_success", "Successful kopia operations", BASE_LABELS, namespace=METRICS_NAMESPACE, registry=self.registry)
        self.operation_failure = Counter("operation_failure", "Failed kopia operations", BASE_LABELS + ("failure_reason",), namespace=METRICS_NAMESPACE, registry=self.registry)
        self.operation_duration = Histogram("operation_duration_seconds", "Duration of kopia operations", BASE_LABELS, namespace=METRICS_NAMESPACE, registry=self.registry)
        self.repository_connectivity = Gauge("repository_connectivity", "Repository reachable (1) or not (0)", BASE_LABELS, namespace=METRICS_NAMESPACE, registry=self.registry)
        self.maintenance_operations = Counter("maintenance_operations", "Kopia maintenance operations", BASE_LABELS + ("maintenance_type",), namespace=METRICS_NAMESPACE, registry=self.registry)
        self.snapshot_creation_success = Counter("snapshot_creation_success", "Snapshots created", BASE_LABELS, namespace=METRICS_NAMESPACE, registry=self.registry)
        self.snapshot_creation_failure = Counter("snapshot_creation_failure", "Snapshot creation failures", BASE_LABELS + ("failure_reason",), namespace=METRICS_NAMESPACE, registry=self.registry)
        self.job_retries = Counter("job_retries", "Mover job pod retries", BASE_LABELS + ("retry_reason",), namespace=METRICS_NAMESPACE, registry=self.registry)
        self.cache_type = Gauge("cache_type", "Cache volume type in use", BASE_LABELS + ("cache_type",), namespace=METRICS_NAMESPACE, registry=self.registry)
        self.cache_size = Gauge("cache_size_bytes", "Cache volume size", BASE_LABELS, namespace=METRICS_NAMESPACE, registry=self.registry)
        self.retention_compliance = Gauge("retention_compliance", "Retention period configured", BASE_LABELS + ("retention_type",), namespace=METRICS_NAMESPACE, registry=self.registry)
        self.policy_compliance = Gauge("policy_compliance", "Policy configuration present", BASE_LABELS + ("policy_type",), namespace=METRICS_NAMESPACE, registry=self.registry)
        self.configuration_errors = Counter("configuration_errors", "Mover configuration errors", BASE_LABELS + ("error_type",), namespace=METRICS_NAMESPACE, registry=self.registry)
        self.maintenance_last_run = Gauge("maintenance_last_run_timestamp_seconds", "Last successful maintenance (time_t)", BASE_LABELS, namespace=METRICS_NAMESPACE, registry=self.registry)
        self.maintenance_failures = Counter("maintenance_failures", "Maintenance job failures since last success", BASE_LABELS + ("failure_reason",), namespace=METRICS_NAMESPACE, registry=self.registry)
        self.maintenance_duration = Histogram("maintenance_duration_seconds", "Duration of maintenance jobs", BASE_LABELS, namespace=METRICS_NAMESPACE, registry=self.registry)
        # yapf: enable


def metric_labels(*, obj_name: str, obj_namespace: str, role: str, operation: str, repository: str) -> dict[str, str]:
    return {
        "obj_name": obj_name,
        "obj_namespace": obj_namespace,
        "role": role,
        "operation": operation,
        "repository": repository,
    }
