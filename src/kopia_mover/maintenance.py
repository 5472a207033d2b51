from __future__ import annotations

from datetime import UTC, datetime, timedelta
import hashlib
import json
from typing import Sequence

from dateutil.relativedelta import relativedelta
from kubernetes import client

from .k8s import DEFAULT_REQUEST_TIMEOUT_SECONDS, KubernetesClients
from .models import CustomCASpec, MaintenanceStatus

MAINTENANCE_LABEL_KEY = "volsync.backube/kopia-maintenance"
REPOSITORY_HASH_LABEL_KEY = "volsync.backube/repository-hash"
MAX_JOBS_ANALYZED = 50
UNKNOWN_ERROR = "Unknown error"


def should_run_maintenance(
    interval_days: int | None,
    last_maintenance: datetime | None,
    now: datetime | None = None,
) -> bool:
    if interval_days is None or interval_days <= 0:
        return False
    if last_maintenance is None:
        return True
    now = now or datetime.now(UTC)
    return now > last_maintenance + timedelta(days=interval_days)


def analyze_job_history(jobs: Sequence[client.V1Job]) -> MaintenanceStatus:
    """Summarise maintenance jobs, newest first, into a MaintenanceStatus.

    Only finished jobs (those with a completion time) count. ``configured`` is
    left for the caller to decide.
    """
    status = MaintenanceStatus()
    ordered = sorted(jobs, key=_job_sort_key, reverse=True)[:MAX_JOBS_ANALYZED]

    seen_success = False
    newest_completed = True
    for job in ordered:
        job_status = job.status
        if job_status is None or job_status.completion_time is None:
            continue
        completed_at = job_status.completion_time

        if newest_completed:
            newest_completed = False
            if job_status.start_time is not None:
                elapsed = (completed_at - job_status.start_time).total_seconds()
                status.last_maintenance_duration = f"{int(elapsed)}s"

        if _job_succeeded(job):
            if status.last_successful_time is None or completed_at > status.last_successful_time:
                status.last_successful_time = completed_at
            seen_success = True
            continue

        if status.last_failed_time is None or completed_at > status.last_failed_time:
            status.last_failed_time = completed_at
            status.last_error = _failure_message(job)
        if not seen_success:
            status.failures_since_last_success += 1

    return status


def calculate_next_scheduled_time(cron_expression: str | None, last_time: datetime | None) -> datetime:
    """Estimate the next run for the daily, weekly and monthly shapes the operator exposes."""
    base = last_time or datetime.now(UTC)
    fields = (cron_expression or "").split()
    if len(fields) == 5:
        day_of_month, day_of_week = fields[2], fields[4]
        if day_of_month != "*":
            return base + relativedelta(months=1)
        if day_of_week != "*":
            return base + timedelta(days=7)
    return base + timedelta(hours=24)


def duration_seconds(status: MaintenanceStatus) -> float | None:
    if not status.last_maintenance_duration:
        return None
    return float(status.last_maintenance_duration.rstrip("s"))


def repository_hash(repository: str, custom_ca: CustomCASpec | None = None) -> str:
    """Identify a repository by its secret name and CA, independent of namespace and schedule."""
    document: dict[str, object] = {"repository": repository}
    if custom_ca is not None:
        ca_fields = (
            ("secretName", custom_ca.secret_name),
            ("configMapName", custom_ca.config_map_name),
            ("key", custom_ca.key),
        )
        document["customCA"] = {name: value for name, value in ca_fields if value}
    payload = json.dumps(document, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def maintenance_job_labels(repo_hash: str) -> dict[str, str]:
    return {
        MAINTENANCE_LABEL_KEY: "true",
        REPOSITORY_HASH_LABEL_KEY: repo_hash,
    }


def list_maintenance_jobs(
    clients: KubernetesClients,
    *,
    namespace: str,
    repo_hash: str,
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> list[client.V1Job]:
    selector = ",".join(f"{key}={value}" for key, value in maintenance_job_labels(repo_hash).items())
    return list(
        clients.batch_api.list_namespaced_job(
            namespace=namespace,
            label_selector=selector,
            _request_timeout=request_timeout_seconds,
        ).items
        or []
    )


def _job_sort_key(job: client.V1Job):
    created = job.metadata.creation_timestamp if job.metadata else None
    name = job.metadata.name if job.metadata and job.metadata.name else ""
    return (created.timestamp() if created is not None else 0.0, name)


def _job_succeeded(job: client.V1Job) -> bool:
    for condition in job.status.conditions or []:
        if condition.type == "Complete" and condition.status == "True":
            return True
    return False


def _failure_message(job: client.V1Job) -> str:
    for condition in job.status.conditions or []:
        if condition.type == "Failed" and condition.message:
            return condition.message
    return UNKNOWN_ERROR
