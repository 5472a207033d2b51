from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Mapping, Union

from kubernetes import client

SOURCE_MOUNT_PATH = "/data"
DESTINATION_MOUNT_PATH = "/restore/data"


class Role(str, Enum):
    SOURCE = "source"
    DESTINATION = "destination"


class MoverResult(str, Enum):
    SUCCESSFUL = "Successful"
    FAILED = "Failed"


class JobState(str, Enum):
    NOT_STARTED = "NotStarted"
    PREREQUISITES_PENDING = "PrerequisitesPending"
    JOB_RUNNING = "JobRunning"
    JOB_SUCCEEDED = "JobSucceeded"
    JOB_FAILED_RETRYABLE = "JobFailedRetryable"
    JOB_FAILED_TERMINAL = "JobFailedTerminal"


@dataclass(frozen=True)
class OwnerReference:
    api_version: str
    kind: str
    name: str
    namespace: str
    uid: str
    annotations: Mapping[str, str] = field(default_factory=dict)

    def as_owner_reference(self) -> client.V1OwnerReference:
        return client.V1OwnerReference(
            api_version=self.api_version,
            kind=self.kind,
            name=self.name,
            uid=self.uid,
            controller=True,
            block_owner_deletion=True,
        )


@dataclass(frozen=True)
class Identity:
    username: str
    hostname: str

    def __str__(self) -> str:
        return f"{self.username}@{self.hostname}"


@dataclass(frozen=True)
class RetainPolicy:
    hourly: int | None = None
    daily: int | None = None
    weekly: int | None = None
    monthly: int | None = None
    yearly: int | None = None
    latest: int | None = None

    def configured(self) -> list[tuple[str, int]]:
        """Return (period, count) pairs for the periods that are set, in a fixed order."""
        periods = (
            ("hourly", self.hourly),
            ("daily", self.daily),
            ("weekly", self.weekly),
            ("monthly", self.monthly),
            ("yearly", self.yearly),
            ("latest", self.latest),
        )
        return [(period, count) for period, count in periods if count is not None]


@dataclass(frozen=True)
class Actions:
    before_snapshot: str = ""
    after_snapshot: str = ""


@dataclass(frozen=True)
class CustomCASpec:
    secret_name: str = ""
    config_map_name: str = ""
    key: str = ""


@dataclass(frozen=True)
class PolicyConfigSpec:
    secret_name: str = ""
    config_map_name: str = ""
    global_policy_filename: str = ""
    repository_config_filename: str = ""
    repository_config: str | None = None


@dataclass(frozen=True)
class MoverPodConfig:
    security_context: client.V1PodSecurityContext | None = None
    resources: client.V1ResourceRequirements | None = None
    pod_labels: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CacheSpec:
    capacity: str | None = None
    storage_class_name: str | None = None
    access_modes: tuple[str, ...] | None = None
    metadata_cache_size_limit_mb: int | None = None
    content_cache_size_limit_mb: int | None = None
    cleanup: bool = False


@dataclass(frozen=True)
class SourceOptions:
    source_pvc: str
    compression: str = ""
    parallelism: int | None = None
    retain: RetainPolicy | None = None
    actions: Actions | None = None
    maintenance_interval_days: int | None = None

    role = Role.SOURCE
    direction = "src"
    data_mount_path = SOURCE_MOUNT_PATH
    operation = "backup"

    def environment(self, *, source_path_override: str | None) -> list[client.V1EnvVar]:
        env: list[client.V1EnvVar] = []
        if self.compression:
            env.append(client.V1EnvVar(name="KOPIA_COMPRESSION", value=self.compression))
        if self.parallelism is not None:
            env.append(client.V1EnvVar(name="KOPIA_PARALLELISM", value=str(self.parallelism)))
        if source_path_override is not None:
            env.append(client.V1EnvVar(name="KOPIA_SOURCE_PATH_OVERRIDE", value=source_path_override))
        if self.retain is not None:
            for period, count in self.retain.configured():
                env.append(client.V1EnvVar(name=f"KOPIA_RETAIN_{period.upper()}", value=str(count)))
        if self.actions is not None:
            if self.actions.before_snapshot:
                env.append(client.V1EnvVar(name="KOPIA_BEFORE_SNAPSHOT", value=self.actions.before_snapshot))
            if self.actions.after_snapshot:
                env.append(client.V1EnvVar(name="KOPIA_AFTER_SNAPSHOT", value=self.actions.after_snapshot))
        return env


@dataclass(frozen=True)
class DestinationOptions:
    destination_pvc: str | None = None
    cleanup_temp_pvc: bool = False
    restore_as_of: str | None = None
    shallow: int | None = None
    previous: int | None = None

    role = Role.DESTINATION
    direction = "dst"
    data_mount_path = DESTINATION_MOUNT_PATH
    operation = "restore"

    def environment(self, *, source_path_override: str | None) -> list[client.V1EnvVar]:
        env: list[client.V1EnvVar] = []
        if self.restore_as_of is not None:
            env.append(client.V1EnvVar(name="KOPIA_RESTORE_AS_OF", value=self.restore_as_of))
        if self.shallow is not None:
            env.append(client.V1EnvVar(name="KOPIA_SHALLOW", value=str(self.shallow)))
        if self.previous is not None:
            env.append(client.V1EnvVar(name="KOPIA_PREVIOUS", value=str(self.previous)))
        if source_path_override is not None:
            env.append(client.V1EnvVar(name="KOPIA_SOURCE_PATH_OVERRIDE", value=source_path_override))
        return env


RoleOptions = Union[SourceOptions, DestinationOptions]


@dataclass(frozen=True)
class MoverConfig:
    owner: OwnerReference
    role_options: RoleOptions
    repository: str
    identity: Identity
    image: str
    repository_pvc: str | None = None
    cache: CacheSpec = field(default_factory=CacheSpec)
    custom_ca: CustomCASpec = field(default_factory=CustomCASpec)
    policy_config: PolicyConfigSpec | None = None
    privileged: bool = False
    paused: bool = False
    source_path_override: str | None = None
    additional_args: tuple[str, ...] | None = None
    pod_config: MoverPodConfig = field(default_factory=MoverPodConfig)

    @property
    def role(self) -> Role:
        return self.role_options.role

    @property
    def is_source(self) -> bool:
        return self.role_options.role is Role.SOURCE


@dataclass
class MoverStatus:
    result: MoverResult | None = None
    logs: str = ""


@dataclass
class SourceStatus:
    last_maintenance: datetime | None = None


@dataclass
class IdentityInfo:
    identity: str
    snapshot_count: int = 0
    latest_snapshot: datetime | None = None


@dataclass
class DestinationStatus:
    requested_identity: str = ""
    available_identities: list[IdentityInfo] = field(default_factory=list)
    snapshots_found: int = 0


@dataclass(frozen=True)
class DiscoveryResult:
    requested_identity: str = ""
    available_identities: tuple[IdentityInfo, ...] = ()
    message: str = ""


@dataclass
class MaintenanceStatus:
    configured: bool = False
    last_successful_time: datetime | None = None
    last_failed_time: datetime | None = None
    failures_since_last_success: int = 0
    last_maintenance_duration: str | None = None
    last_error: str = ""
    next_scheduled_time: datetime | None = None


@dataclass(frozen=True)
class Result:
    completed: bool
    image: client.V1TypedLocalObjectReference | None = None

    @classmethod
    def in_progress(cls) -> Result:
        return cls(completed=False)

    @classmethod
    def complete(cls) -> Result:
        return cls(completed=True)

    @classmethod
    def complete_with_image(cls, image: client.V1TypedLocalObjectReference) -> Result:
        return cls(completed=True, image=image)
