from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
import time
from typing import Callable, Mapping

from kubernetes import client
import structlog

from .cache import (
    CACHE_MOUNT_PATH,
    CACHE_VOLUME_NAME,
    CachePlan,
    cache_pvc_name,
    cache_size_bytes,
    cache_volume,
    plan_cache,
    resolve_cache_access_modes,
)
from .collaborators import ObjectCleaner, ServiceAccountHandler, VolumeHandler
from .config import MoverSettings
from .environment import REPOSITORY_PVC_MOUNT_PATH, REQUIRED_SECRET_KEYS, build_environment, credential_mount
from .errors import (
    CopyTriggerTimeoutError,
    CustomCAValidationError,
    PolicyConfigValidationError,
    RepositoryValidationError,
    SecretValidationError,
)
from .k8s import (
    KubernetesClients,
    VolumeObject,
    affinity_from_volume,
    create_or_update_job,
    delete_job,
    get_and_validate_secret,
    job_name,
    mark_for_cleanup,
    pvc_is_read_only,
    set_owned_by_volsync,
    validate_custom_ca,
    validate_policy_config,
    validate_repository_pvc,
)
from .logparser import all_lines, discovery_log_filter, parse_discovery
from .maintenance import (
    analyze_job_history,
    calculate_next_scheduled_time,
    duration_seconds,
    list_maintenance_jobs,
    repository_hash,
    should_run_maintenance,
)
from .metrics import MoverMetrics, metric_labels
from .models import (
    DestinationStatus,
    JobState,
    MaintenanceStatus,
    MoverConfig,
    MoverResult,
    MoverStatus,
    Result,
    SourceStatus,
)
from .podlogs import LineFilter, capture_job_logs

MOVER_NAME = "kopia"
JOB_BACKOFF_LIMIT = 8
CONTAINER_NAME = "kopia"
ENTRY_POINT = ["/mover-kopia/entry.sh"]
DATA_VOLUME_NAME = "data"
TEMP_VOLUME_NAME = "tempdir"
TEMP_MOUNT_PATH = "/tmp"
RESTORE_VOLUME_NAME = "restore"
RESTORE_MOUNT_PATH = "/restore"
CUSTOM_CA_VOLUME_NAME = "custom-ca"
CUSTOM_CA_MOUNT_PATH = "/customCA"
CUSTOM_CA_FILENAME = "ca.crt"
POLICY_VOLUME_NAME = "kopia-config"
POLICY_MOUNT_PATH = "/kopia-config"
DEFAULT_GLOBAL_POLICY_FILE = "global-policy.json"
DEFAULT_REPOSITORY_CONFIG_FILE = "repository.config"
REPOSITORY_PVC_VOLUME_NAME = "repository-pvc"
PRIVILEGED_CAPABILITIES = ["DAC_OVERRIDE", "CHOWN", "FOWNER"]
CLEANUP_KINDS = ("PersistentVolumeClaim", "VolumeSnapshot", "Job")

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class _Prerequisites:
    cache_plan: CachePlan
    data_pvc: client.V1PersistentVolumeClaim
    cache_pvc: client.V1PersistentVolumeClaim | None
    service_account: client.V1ServiceAccount
    secret: client.V1Secret
    custom_ca: VolumeObject | None
    policy_config: VolumeObject | None


def evaluate_job_state(job: client.V1Job | None) -> JobState:
    if job is None:
        return JobState.NOT_STARTED
    status = job.status or client.V1JobStatus()
    backoff_limit = job.spec.backoff_limit if job.spec and job.spec.backoff_limit is not None else JOB_BACKOFF_LIMIT
    if (status.failed or 0) >= backoff_limit:
        return JobState.JOB_FAILED_RETRYABLE
    if status.succeeded:
        return JobState.JOB_SUCCEEDED
    for condition in status.conditions or []:
        if condition.type == "Failed" and condition.status == "True":
            return JobState.JOB_FAILED_TERMINAL
    return JobState.JOB_RUNNING


class Mover:
    """Drive one kopia backup or restore Job for a replication resource.

    Each ``synchronize`` call does one step of work and returns; the caller is
    expected to call again until the returned Result is completed. Status
    objects passed in are mutated in place and must be written back by the
    caller.
    """

    def __init__(
        self,
        *,
        clients: KubernetesClients,
        config: MoverConfig,
        volume_handler: VolumeHandler,
        service_account_handler: ServiceAccountHandler,
        cleaner: ObjectCleaner,
        metrics: MoverMetrics,
        settings: MoverSettings,
        mover_status: MoverStatus,
        source_status: SourceStatus | None = None,
        destination_status: DestinationStatus | None = None,
        operator_environ: Mapping[str, str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.clients = clients
        self.config = config
        self.volume_handler = volume_handler
        self.service_account_handler = service_account_handler
        self.cleaner = cleaner
        self.metrics = metrics
        self.settings = settings
        self.mover_status = mover_status
        self.source_status = source_status
        self.destination_status = destination_status
        self.operator_environ = operator_environ
        self.clock = clock or _utc_now
        self.job_state = JobState.NOT_STARTED
        self.logger = logger.bind(
            obj_name=config.owner.name,
            obj_namespace=config.owner.namespace,
            role=config.role.value,
            method="Kopia",
        )

    def name(self) -> str:
        return MOVER_NAME

    @property
    def namespace(self) -> str:
        return self.config.owner.namespace

    @property
    def job_name(self) -> str:
        return job_name(f"volsync-{self.config.role_options.direction}-", self.config.owner.name)

    @property
    def operation(self) -> str:
        return self.config.role_options.operation

    def synchronize(self) -> Result:
        if self.config.paused:
            self.logger.info("mover_paused")
            return Result.complete()

        started = time.monotonic()
        labels = self._metric_labels(self.operation)
        self.metrics.repository_connectivity.labels(**labels).set(1)

        self.job_state = JobState.PREREQUISITES_PENDING
        try:
            prerequisites = self._ensure_prerequisites()
        except Exception:
            self.metrics.repository_connectivity.labels(**labels).set(0)
            self._record_operation_failure("prerequisites_failed")
            raise
        if prerequisites is None:
            return Result.in_progress()

        try:
            job = self._ensure_job(prerequisites)
        except Exception:
            self._record_operation_failure("job_creation_failed")
            raise

        try:
            result = self._handle_job_status(job, prerequisites)
        except Exception:
            self._record_operation_failure("job_execution_failed")
            raise

        if result.completed:
            self._record_operation_success(time.monotonic() - started)
        return result

    def cleanup(self) -> Result:
        self.logger.info("mover_cleanup")
        if not self.config.is_source:
            self.volume_handler.remove_snapshot_annotation(self._destination_pvc_name())
        self.cleaner.cleanup_objects(self.config.owner, CLEANUP_KINDS)
        self.logger.info("mover_cleanup_complete")
        return Result.complete()

    def maintenance_status(
        self,
        *,
        schedule: str | None = None,
        previous: MaintenanceStatus | None = None,
    ) -> MaintenanceStatus:
        """Summarise the repository's maintenance Jobs and update maintenance metrics.

        ``previous`` is the status last written to the resource; failures and
        durations are only counted once, when they are newer than it.
        """
        repo_hash = repository_hash(self.config.repository, self.config.custom_ca)
        jobs = list_maintenance_jobs(
            self.clients,
            namespace=self.namespace,
            repo_hash=repo_hash,
            request_timeout_seconds=self.settings.request_timeout_seconds,
        )
        status = analyze_job_history(jobs)
        interval = getattr(self.config.role_options, "maintenance_interval_days", None)
        status.configured = bool(schedule) or (interval is not None and interval > 0)
        if schedule:
            status.next_scheduled_time = calculate_next_scheduled_time(schedule, status.last_successful_time)

        labels = self._metric_labels("maintenance")
        if status.last_successful_time is not None:
            self.metrics.maintenance_last_run.labels(**labels).set(status.last_successful_time.timestamp())
            if previous is None or _is_newer(status.last_successful_time, previous.last_successful_time):
                seconds = duration_seconds(status)
                if seconds is not None:
                    self.metrics.maintenance_duration.labels(**labels).observe(seconds)
        if status.last_failed_time is not None and (
            previous is None or _is_newer(status.last_failed_time, previous.last_failed_time)
        ):
            self.metrics.maintenance_failures.labels(**labels, failure_reason="maintenance_job_failed").inc()

        self.logger.debug(
            "maintenance_status",
            repository_hash=repo_hash,
            jobs=len(jobs),
            failures=status.failures_since_last_success,
        )
        return status

    def _ensure_prerequisites(self) -> _Prerequisites | None:
        cache = self.config.cache
        plan = plan_cache(cache.capacity, cache.storage_class_name, cache.access_modes)
        self._record_cache_metrics(plan)
        self._record_policy_compliance()

        data_pvc = self._ensure_data_pvc()
        if data_pvc is None:
            return None

        cache_pvc = None
        if plan.use_pvc:
            cache_pvc = self._ensure_cache_pvc(plan, data_pvc)
            if cache_pvc is None:
                return None

        service_account = self.service_account_handler.reconcile()
        if service_account is None:
            return None

        try:
            secret = self._validate_repository()
        except (RepositoryValidationError, SecretValidationError):
            self._record_configuration_error("repository_validation_failed")
            raise

        try:
            custom_ca = validate_custom_ca(
                self.clients,
                namespace=self.namespace,
                spec=self.config.custom_ca,
                request_timeout_seconds=self.settings.request_timeout_seconds,
            )
        except CustomCAValidationError:
            self._record_configuration_error("custom_ca_validation_failed")
            raise

        try:
            policy_config = validate_policy_config(
                self.clients,
                namespace=self.namespace,
                spec=self.config.policy_config,
                request_timeout_seconds=self.settings.request_timeout_seconds,
            )
        except PolicyConfigValidationError:
            self._record_configuration_error("policy_config_validation_failed")
            raise

        return _Prerequisites(
            cache_plan=plan,
            data_pvc=data_pvc,
            cache_pvc=cache_pvc,
            service_account=service_account,
            secret=secret,
            custom_ca=custom_ca,
            policy_config=policy_config,
        )

    def _ensure_data_pvc(self) -> client.V1PersistentVolumeClaim | None:
        options = self.config.role_options
        if not self.config.is_source:
            if options.destination_pvc:
                return self.volume_handler.use_provided_pvc(options.destination_pvc)
            return self.volume_handler.ensure_new_pvc(
                self._destination_pvc_name(),
                is_temporary=options.cleanup_temp_pvc,
            )

        source_pvc = self.clients.core_api.read_namespaced_persistent_volume_claim(
            name=options.source_pvc,
            namespace=self.namespace,
            _request_timeout=self.settings.request_timeout_seconds,
        )
        try:
            return self.volume_handler.ensure_pvc_from_source(
                source_pvc,
                f"volsync-{self.config.owner.name}-src",
                is_temporary=True,
            )
        except CopyTriggerTimeoutError as error:
            # Reported through status only; the normal requeue keeps polling.
            self.logger.info("copy_trigger_timeout", reason=str(error))
            self.mover_status.result = MoverResult.FAILED
            self.mover_status.logs = str(error)
            return None

    def _ensure_cache_pvc(
        self,
        plan: CachePlan,
        data_pvc: client.V1PersistentVolumeClaim,
    ) -> client.V1PersistentVolumeClaim | None:
        cache = self.config.cache
        data_access_modes = data_pvc.spec.access_modes if data_pvc.spec else None
        access_modes = resolve_cache_access_modes(
            cache.access_modes,
            self.volume_handler.get_access_modes(),
            data_access_modes,
        )
        return self.volume_handler.ensure_cache_pvc(
            cache_pvc_name(self.config.role_options.direction, self.config.owner.name),
            capacity=plan.size_limit,
            access_modes=access_modes,
            storage_class_name=cache.storage_class_name,
            is_temporary=cache.cleanup,
        )

    def _validate_repository(self) -> client.V1Secret:
        if self.config.repository_pvc:
            validate_repository_pvc(
                self.clients,
                namespace=self.namespace,
                name=self.config.repository_pvc,
                request_timeout_seconds=self.settings.request_timeout_seconds,
            )
        return get_and_validate_secret(
            self.clients,
            namespace=self.namespace,
            name=self.config.repository,
            fields=REQUIRED_SECRET_KEYS,
            request_timeout_seconds=self.settings.request_timeout_seconds,
        )

    def _ensure_job(self, prerequisites: _Prerequisites) -> client.V1Job:
        pod_spec = self._pod_spec(prerequisites)

        def apply(job: client.V1Job) -> None:
            self._configure_job(job, pod_spec)

        return create_or_update_job(
            self.clients,
            name=self.job_name,
            namespace=self.namespace,
            mutate=apply,
            request_timeout_seconds=self.settings.request_timeout_seconds,
        )

    def _configure_job(self, job: client.V1Job, pod_spec: client.V1PodSpec) -> None:
        owner = self.config.owner
        job.metadata.owner_references = [owner.as_owner_reference()]
        job.metadata.labels = mark_for_cleanup(set_owned_by_volsync(job.metadata.labels), owner.uid)
        job.spec.backoff_limit = JOB_BACKOFF_LIMIT
        job.spec.parallelism = 0 if self.config.paused else 1

        template = job.spec.template
        if template.metadata is None:
            template.metadata = client.V1ObjectMeta()
        template.metadata.name = job.metadata.name
        labels = set_owned_by_volsync(template.metadata.labels)
        labels.update(self.config.pod_config.pod_labels)
        template.metadata.labels = labels
        template.spec = pod_spec

    def _pod_spec(self, prerequisites: _Prerequisites) -> client.V1PodSpec:
        options = self.config.role_options
        data_pvc = prerequisites.data_pvc
        read_only = self.config.is_source and pvc_is_read_only(data_pvc)

        env = build_environment(self.config, prerequisites.secret, operator_environ=self.operator_environ)
        if self.destination_status is not None and not self.config.is_source:
            self.destination_status.requested_identity = str(self.config.identity)

        mounts = [
            client.V1VolumeMount(name=DATA_VOLUME_NAME, mount_path=options.data_mount_path, read_only=read_only),
            client.V1VolumeMount(name=TEMP_VOLUME_NAME, mount_path=TEMP_MOUNT_PATH),
        ]
        volumes = [
            client.V1Volume(
                name=DATA_VOLUME_NAME,
                persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(
                    claim_name=data_pvc.metadata.name,
                    read_only=read_only,
                ),
            ),
            client.V1Volume(name=TEMP_VOLUME_NAME, empty_dir=client.V1EmptyDirVolumeSource(medium="Memory")),
        ]
        if not self.config.is_source:
            # Restores write temp files next to /restore/data.
            mounts.append(client.V1VolumeMount(name=RESTORE_VOLUME_NAME, mount_path=RESTORE_MOUNT_PATH))
            volumes.append(client.V1Volume(name=RESTORE_VOLUME_NAME, empty_dir=client.V1EmptyDirVolumeSource()))

        mounts.append(client.V1VolumeMount(name=CACHE_VOLUME_NAME, mount_path=CACHE_MOUNT_PATH))
        volumes.append(cache_volume(prerequisites.cache_plan, prerequisites.cache_pvc))

        if prerequisites.custom_ca is not None:
            env.append(client.V1EnvVar(name="CUSTOM_CA", value=f"{CUSTOM_CA_MOUNT_PATH}/{CUSTOM_CA_FILENAME}"))
            mounts.append(client.V1VolumeMount(name=CUSTOM_CA_VOLUME_NAME, mount_path=CUSTOM_CA_MOUNT_PATH))
            volumes.append(prerequisites.custom_ca.volume(CUSTOM_CA_VOLUME_NAME, CUSTOM_CA_FILENAME))

        self._configure_policy(env, mounts, volumes, prerequisites.policy_config)

        credentials = credential_mount(prerequisites.secret)
        if credentials is not None:
            mounts.append(credentials.volume_mount)
            volumes.append(credentials.volume)
            # Later entries win, so these replace the Secret references with file paths.
            for key, path in credentials.paths.items():
                env.append(client.V1EnvVar(name=key, value=path))

        if self.config.repository_pvc:
            for mount in mounts:
                if mount.mount_path == REPOSITORY_PVC_MOUNT_PATH:
                    raise RepositoryValidationError(
                        f"mount path {REPOSITORY_PVC_MOUNT_PATH} is already in use by volume {mount.name}"
                    )
            mounts.append(client.V1VolumeMount(name=REPOSITORY_PVC_VOLUME_NAME, mount_path=REPOSITORY_PVC_MOUNT_PATH))
            volumes.append(
                client.V1Volume(
                    name=REPOSITORY_PVC_VOLUME_NAME,
                    persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(
                        claim_name=self.config.repository_pvc,
                        read_only=False,
                    ),
                )
            )

        security_context = client.V1SecurityContext(
            allow_privilege_escalation=False,
            capabilities=client.V1Capabilities(drop=["ALL"]),
            privileged=False,
            read_only_root_filesystem=True,
        )
        if self.config.privileged:
            env.append(client.V1EnvVar(name="PRIVILEGED_MOVER", value="1"))
            security_context.capabilities.add = list(PRIVILEGED_CAPABILITIES)
            security_context.run_as_user = 0
        else:
            env.append(client.V1EnvVar(name="PRIVILEGED_MOVER", value="0"))

        container = client.V1Container(
            name=CONTAINER_NAME,
            image=self.config.image,
            command=list(ENTRY_POINT),
            args=[self.operation],
            env=env,
            security_context=security_context,
            volume_mounts=mounts,
            resources=self.config.pod_config.resources,
        )
        pod_spec = client.V1PodSpec(
            containers=[container],
            restart_policy="Never",
            service_account_name=prerequisites.service_account.metadata.name,
            volumes=volumes,
            security_context=self.config.pod_config.security_context,
        )

        if self.volume_handler.is_copy_method_direct():
            affinity = affinity_from_volume(
                self.clients,
                data_pvc,
                request_timeout_seconds=self.settings.request_timeout_seconds,
            )
            pod_spec.node_selector = affinity.node_selector()
            pod_spec.tolerations = affinity.tolerations or None
        return pod_spec

    def _configure_policy(
        self,
        env: list[client.V1EnvVar],
        mounts: list[client.V1VolumeMount],
        volumes: list[client.V1Volume],
        policy_object: VolumeObject | None,
    ) -> None:
        policy = self.config.policy_config
        if policy is not None and policy.repository_config:
            env.append(client.V1EnvVar(name="KOPIA_STRUCTURED_REPOSITORY_CONFIG", value=policy.repository_config))

        if policy_object is None:
            return
        global_policy_file = (policy.global_policy_filename if policy else "") or DEFAULT_GLOBAL_POLICY_FILE
        repository_config_file = (policy.repository_config_filename if policy else "") or DEFAULT_REPOSITORY_CONFIG_FILE
        env.extend(
            [
                client.V1EnvVar(name="KOPIA_CONFIG_PATH", value=POLICY_MOUNT_PATH),
                client.V1EnvVar(name="KOPIA_GLOBAL_POLICY_FILE", value=f"{POLICY_MOUNT_PATH}/{global_policy_file}"),
                client.V1EnvVar(
                    name="KOPIA_REPOSITORY_CONFIG_FILE",
                    value=f"{POLICY_MOUNT_PATH}/{repository_config_file}",
                ),
            ]
        )
        mounts.append(client.V1VolumeMount(name=POLICY_VOLUME_NAME, mount_path=POLICY_MOUNT_PATH))
        volumes.append(policy_object.volume(POLICY_VOLUME_NAME, None))

    def _handle_job_status(self, job: client.V1Job, prerequisites: _Prerequisites) -> Result:
        self.job_state = evaluate_job_state(job)
        failed = job.status.failed if job.status and job.status.failed else 0
        if 0 < failed < JOB_BACKOFF_LIMIT:
            self._record_job_retry("job_pod_failure")

        if self.job_state in (JobState.JOB_FAILED_RETRYABLE, JobState.JOB_FAILED_TERMINAL):
            self._capture_logs(job, job_failed=True)
            if not self.config.is_source:
                self._update_discovery_status()
            self.logger.info("deleting_failed_job", job=job.metadata.name, failed=failed, state=self.job_state.value)
            delete_job(
                self.clients,
                name=job.metadata.name,
                namespace=self.namespace,
                request_timeout_seconds=self.settings.request_timeout_seconds,
            )
            self.job_state = JobState.NOT_STARTED
            return Result.in_progress()

        if self.job_state is not JobState.JOB_SUCCEEDED:
            return Result.in_progress()

        self.logger.info("job_completed", job=job.metadata.name)
        if self.config.is_source and self._maintenance_due():
            self.source_status.last_maintenance = self.clock()
            self._record_maintenance_operation()
            self.logger.info("maintenance_completed", last_maintenance=self.source_status.last_maintenance.isoformat())

        self._capture_logs(job, job_failed=False)

        if self.config.is_source:
            return Result.complete()

        if self.destination_status is not None:
            self.destination_status.available_identities = []
            self.destination_status.snapshots_found = 0
        image = self.volume_handler.ensure_image(prerequisites.data_pvc)
        if image is None:
            return Result.in_progress()
        return Result.complete_with_image(image)

    def _maintenance_due(self) -> bool:
        if self.source_status is None:
            return False
        return should_run_maintenance(
            self.config.role_options.maintenance_interval_days,
            self.source_status.last_maintenance,
            self.clock(),
        )

    def _capture_logs(self, job: client.V1Job, *, job_failed: bool) -> None:
        capture_job_logs(
            self.clients,
            job_name=job.metadata.name,
            namespace=self.namespace,
            job_failed=job_failed,
            status=self.mover_status,
            line_filter=self._log_filter(),
            max_bytes=self.settings.mover_log_max_bytes,
            tail_lines=self.settings.mover_log_tail_lines,
            debug=self.settings.mover_log_debug,
            request_timeout_seconds=self.settings.request_timeout_seconds,
        )

    def _log_filter(self) -> LineFilter:
        if self.config.is_source:
            return all_lines
        return discovery_log_filter

    def _update_discovery_status(self) -> None:
        if self.destination_status is None:
            return
        discovery = parse_discovery(self.mover_status.logs)
        if discovery.requested_identity:
            self.destination_status.requested_identity = discovery.requested_identity
        if discovery.available_identities:
            self.destination_status.available_identities = list(discovery.available_identities)
            for info in discovery.available_identities:
                if info.identity == discovery.requested_identity:
                    self.destination_status.snapshots_found = info.snapshot_count
                    break
        if (
            discovery.message
            and self.mover_status.result is MoverResult.FAILED
            and discovery.message not in self.mover_status.logs
        ):
            self.mover_status.logs = f"{discovery.message}\n\n{self.mover_status.logs}"
        self.logger.debug(
            "destination_discovery_updated",
            requested_identity=discovery.requested_identity,
            available_identities=len(discovery.available_identities),
        )

    def _destination_pvc_name(self) -> str:
        options = self.config.role_options
        return getattr(options, "destination_pvc", None) or f"volsync-{self.config.owner.name}-dest"

    def _metric_labels(self, operation: str) -> dict[str, str]:
        return metric_labels(
            obj_name=self.config.owner.name,
            obj_namespace=self.namespace,
            role=self.config.role.value,
            operation=operation,
            repository=self.config.repository,
        )

    def _record_operation_success(self, duration: float) -> None:
        labels = self._metric_labels(self.operation)
        self.metrics.operation_success.labels(**labels).inc()
        self.metrics.operation_duration.labels(**labels).observe(duration)
        if self.config.is_source:
            self.metrics.snapshot_creation_success.labels(**labels).inc()

    def _record_operation_failure(self, reason: str) -> None:
        labels = self._metric_labels(self.operation)
        self.metrics.operation_failure.labels(**labels, failure_reason=reason).inc()
        if self.config.is_source:
            self.metrics.snapshot_creation_failure.labels(**labels, failure_reason=reason).inc()
        self.logger.warning("mover_operation_failed", failure_reason=reason)

    def _record_maintenance_operation(self) -> None:
        labels = self._metric_labels("maintenance")
        self.metrics.maintenance_operations.labels(**labels, maintenance_type="scheduled").inc()

    def _record_job_retry(self, reason: str) -> None:
        labels = self._metric_labels(self.operation)
        self.metrics.job_retries.labels(**labels, retry_reason=reason).inc()

    def _record_configuration_error(self, error_type: str) -> None:
        labels = self._metric_labels("")
        self.metrics.configuration_errors.labels(**labels, error_type=error_type).inc()

    def _record_cache_metrics(self, plan: CachePlan) -> None:
        labels = self._metric_labels("")
        for cache_type in ("emptydir", "pvc"):
            value = 1 if plan.cache_type == cache_type else 0
            self.metrics.cache_type.labels(**labels, cache_type=cache_type).set(value)
        size = cache_size_bytes(plan, self.config.cache)
        if size is not None:
            self.metrics.cache_size.labels(**labels).set(size)

    def _record_policy_compliance(self) -> None:
        labels = self._metric_labels("")
        retain = getattr(self.config.role_options, "retain", None)
        if retain is not None:
            for period, _count in retain.configured():
                self.metrics.retention_compliance.labels(**labels, retention_type=period).set(1)
        if self.config.policy_config is not None:
            self.metrics.policy_compliance.labels(**labels, policy_type="global").set(1)


def _is_newer(current: datetime, previous: datetime | None) -> bool:
    return previous is None or current > previous


def _utc_now() -> datetime:
    return datetime.now(UTC)
