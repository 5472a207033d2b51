"""Container environment for the kopia mover.

Every variable below is part of the contract with the mover entry point:
names, ordering and whether a value is a literal or a Secret reference must
stay stable.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Mapping

from kubernetes import client

from .cache import CACHE_MOUNT_PATH, cache_limit_environment
from .models import MoverConfig

REPOSITORY_PVC_MOUNT_PATH = "/kopia"
REPOSITORY_PATH = f"{REPOSITORY_PVC_MOUNT_PATH}/repository"
CREDENTIALS_VOLUME_NAME = "credentials"
CREDENTIALS_MOUNT_PATH = "/credentials"
ADDITIONAL_ARGS_SEPARATOR = "|VOLSYNC_ARG_SEP|"
DEBUG_MOVER_ANNOTATION = "volsync.backube/enable-debug-mover"
REQUIRED_SECRET_KEYS = ("KOPIA_REPOSITORY", "KOPIA_PASSWORD")

BACKEND_VARIABLES: dict[str, tuple[str, ...]] = {
    "s3": (
        "AWS_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY",
        "AWS_SESSION_TOKEN",
        "AWS_DEFAULT_REGION",
        "AWS_REGION",
        "AWS_PROFILE",
        "AWS_S3_ENDPOINT",
        "KOPIA_S3_BUCKET",
        "KOPIA_S3_ENDPOINT",
        "KOPIA_S3_DISABLE_TLS",
        "AWS_S3_DISABLE_TLS",
    ),
    "azure": (
        "AZURE_ACCOUNT_NAME",
        "AZURE_ACCOUNT_KEY",
        "AZURE_ACCOUNT_SAS",
        "AZURE_ENDPOINT_SUFFIX",
        "AZURE_STORAGE_ACCOUNT",
        "AZURE_STORAGE_KEY",
        "AZURE_STORAGE_SAS_TOKEN",
        "KOPIA_AZURE_CONTAINER",
        "KOPIA_AZURE_STORAGE_ACCOUNT",
        "KOPIA_AZURE_STORAGE_KEY",
    ),
    "gcs": (
        "GOOGLE_PROJECT_ID",
        "GOOGLE_APPLICATION_CREDENTIALS",
        "KOPIA_GCS_BUCKET",
        "GCS_BUCKET",
    ),
    "gdrive": (
        "GOOGLE_DRIVE_FOLDER_ID",
        "GOOGLE_DRIVE_CREDENTIALS",
    ),
    "b2": (
        "B2_ACCOUNT_ID",
        "B2_APPLICATION_KEY",
        "KOPIA_B2_BUCKET",
    ),
    "webdav": (
        "WEBDAV_URL",
        "WEBDAV_USERNAME",
        "WEBDAV_PASSWORD",
    ),
    "sftp": (
        "SFTP_HOST",
        "SFTP_PORT",
        "SFTP_USERNAME",
        "SFTP_PASSWORD",
        "SFTP_PATH",
        "SFTP_KEY_FILE",
        "SFTP_KNOWN_HOSTS",
        "SFTP_KNOWN_HOSTS_DATA",
    ),
    "rclone": (
        "RCLONE_REMOTE_PATH",
        "RCLONE_EXE",
        "RCLONE_CONFIG",
    ),
    "filesystem": ("KOPIA_FS_PATH",),
}

# Secret key -> (file name, file mode). None keeps the volume default mode.
CREDENTIAL_FILES: dict[str, tuple[str, int | None]] = {
    "GOOGLE_APPLICATION_CREDENTIALS": ("gcs.json", None),
    "GOOGLE_DRIVE_CREDENTIALS": ("gdrive.json", None),
    "SFTP_KEY_FILE": ("sftp_key", 0o600),
}
CREDENTIAL_DEFAULT_MODE = 0o400

PROXY_VARIABLES = (
    ("HTTP_PROXY", "http_proxy"),
    ("HTTPS_PROXY", "https_proxy"),
    ("NO_PROXY", "no_proxy"),
)


@dataclass(frozen=True)
class CredentialMount:
    volume: client.V1Volume
    volume_mount: client.V1VolumeMount
    paths: dict[str, str]


def env_from_secret(secret_name: str, key: str, *, optional: bool) -> client.V1EnvVar:
    return client.V1EnvVar(
        name=key,
        value_from=client.V1EnvVarSource(
            secret_key_ref=client.V1SecretKeySelector(name=secret_name, key=key, optional=optional),
        ),
    )


def build_environment(
    config: MoverConfig,
    secret: client.V1Secret,
    *,
    operator_environ: Mapping[str, str] | None = None,
) -> list[client.V1EnvVar]:
    """Assemble the mover container environment.

    Backend variables are always emitted as optional Secret references, so
    keys absent from ``secret`` resolve to nothing at runtime. Values are
    passed through untouched: neither the manual configuration blob nor the
    additional arguments are validated here.
    """
    secret_name = secret.metadata.name
    options = config.role_options

    env = [
        client.V1EnvVar(name="DATA_DIR", value=options.data_mount_path),
        client.V1EnvVar(name="KOPIA_CACHE_DIR", value=CACHE_MOUNT_PATH),
    ]
    env.extend(cache_limit_environment(config.cache))
    env.append(env_from_secret(secret_name, "KOPIA_PASSWORD", optional=False))
    env.append(env_from_secret(secret_name, "KOPIA_MANUAL_CONFIG", optional=True))
    if config.repository_pvc:
        env.append(client.V1EnvVar(name="KOPIA_REPOSITORY", value=f"filesystem://{REPOSITORY_PATH}"))
    else:
        env.append(env_from_secret(secret_name, "KOPIA_REPOSITORY", optional=False))

    for keys in BACKEND_VARIABLES.values():
        env.extend(env_from_secret(secret_name, key, optional=True) for key in keys)

    env.extend(options.environment(source_path_override=config.source_path_override))

    if config.additional_args:
        env.append(
            client.V1EnvVar(name="KOPIA_ADDITIONAL_ARGS", value=ADDITIONAL_ARGS_SEPARATOR.join(config.additional_args))
        )

    env.extend(proxy_environment(os.environ if operator_environ is None else operator_environ))

    env.append(client.V1EnvVar(name="KOPIA_OVERRIDE_USERNAME", value=config.identity.username))
    env.append(client.V1EnvVar(name="KOPIA_OVERRIDE_HOSTNAME", value=config.identity.hostname))
    if not config.is_source:
        env.append(client.V1EnvVar(name="KOPIA_DISCOVER_SNAPSHOTS", value="true"))

    if DEBUG_MOVER_ANNOTATION in (config.owner.annotations or {}):
        env.append(client.V1EnvVar(name="DEBUG_MOVER", value="1"))

    return env


def proxy_environment(environ: Mapping[str, str]) -> list[client.V1EnvVar]:
    env: list[client.V1EnvVar] = []
    for upper, lower in PROXY_VARIABLES:
        if upper in environ:
            env.append(client.V1EnvVar(name=upper, value=environ[upper]))
            env.append(client.V1EnvVar(name=lower, value=environ[upper]))
    return env


def credential_mount(secret: client.V1Secret) -> CredentialMount | None:
    """Mount file-style credentials from the repository Secret, or None when there are none."""
    present = set((secret.data or {}).keys())
    items: list[client.V1KeyToPath] = []
    paths: dict[str, str] = {}
    for key, (file_name, mode) in CREDENTIAL_FILES.items():
        if key not in present:
            continue
        items.append(client.V1KeyToPath(key=key, path=file_name, mode=mode))
        paths[key] = f"{CREDENTIALS_MOUNT_PATH}/{file_name}"

    if not items:
        return None

    return CredentialMount(
        volume=client.V1Volume(
            name=CREDENTIALS_VOLUME_NAME,
            secret=client.V1SecretVolumeSource(
                secret_name=secret.metadata.name,
                items=items,
                default_mode=CREDENTIAL_DEFAULT_MODE,
            ),
        ),
        volume_mount=client.V1VolumeMount(name=CREDENTIALS_VOLUME_NAME, mount_path=CREDENTIALS_MOUNT_PATH, read_only=True),
        paths=paths,
    )

