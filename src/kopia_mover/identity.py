from __future__ import annotations

import re

from .errors import IdentityConfigurationError
from .models import Identity

DEFAULT_IDENTITY = "volsync-default"
MAX_USERNAME_LENGTH = 50
MAX_HOSTNAME_LENGTH = 253

_USERNAME_INVALID = re.compile(r"[^A-Za-z0-9_-]")
_HOSTNAME_INVALID = re.compile(r"[^A-Za-z0-9.-]")

IDENTITY_HELP = (
    "Provide either:\n"
    "  1. Both 'username' and 'hostname' fields, OR\n"
    "  2. A 'sourceIdentity' section with 'sourceName'"
)


def generate_username(override: str | None, object_name: str, namespace: str) -> str:
    """Derive the snapshot username for an object.

    An explicit override is returned verbatim. Otherwise the object name is
    reduced to ``[A-Za-z0-9_-]``. The namespace is accepted for signature
    stability but does not contribute: uniqueness inside a namespace comes
    from Kubernetes object-name uniqueness.
    """
    if override:
        return override

    sanitized = _sanitize_username(object_name)
    if not sanitized:
        return DEFAULT_IDENTITY
    if len(sanitized) > MAX_USERNAME_LENGTH:
        sanitized = sanitized[:MAX_USERNAME_LENGTH].strip("-_")
    return sanitized or DEFAULT_IDENTITY


def generate_hostname(override: str | None, pvc_name: str | None, namespace: str, object_name: str) -> str:
    """Derive the snapshot hostname for an object.

    Generated hostnames are namespace-wide; ``pvc_name`` and ``object_name``
    do not contribute, so every workload in a namespace shares one hostname.
    """
    if override:
        return override

    sanitized = _sanitize_hostname(namespace)
    if not sanitized:
        return DEFAULT_IDENTITY
    if len(sanitized) > MAX_HOSTNAME_LENGTH:
        sanitized = sanitized[:MAX_HOSTNAME_LENGTH].strip("-.")
    return sanitized or DEFAULT_IDENTITY


def resolve_destination_identity(
    *,
    username: str | None,
    hostname: str | None,
    destination_name: str,
    destination_namespace: str,
    destination_pvc: str | None = None,
    source_name: str | None = None,
    source_namespace: str | None = None,
    source_pvc: str | None = None,
) -> Identity:
    """Resolve the identity a restore should read snapshots from.

    Precedence per field: explicit value, then the referenced source object,
    then the destination's own metadata.
    """
    if source_name:
        effective_namespace = source_namespace or destination_namespace
        return Identity(
            username=generate_username(username, source_name, effective_namespace),
            hostname=generate_hostname(hostname, source_pvc or destination_pvc, effective_namespace, source_name),
        )

    return Identity(
        username=generate_username(username, destination_name, destination_namespace),
        hostname=generate_hostname(hostname, destination_pvc, destination_namespace, destination_name),
    )


def validate_destination_identity(*, username: str | None, hostname: str | None, source_name: str | None) -> None:
    has_username = bool(username)
    has_hostname = bool(hostname)
    if (has_username and has_hostname) or source_name:
        return

    if has_username:
        problem = "missing 'hostname' (you provided 'username' but both are required)"
    elif has_hostname:
        problem = "missing 'username' (you provided 'hostname' but both are required)"
    else:
        problem = "missing identity configuration for ReplicationDestination"
    raise IdentityConfigurationError(f"Kopia ReplicationDestination error: {problem}\n\n{IDENTITY_HELP}")


def _sanitize_username(value: str) -> str:
    return _USERNAME_INVALID.sub("", value).strip("-_")


def _sanitize_hostname(value: str) -> str:
    return _HOSTNAME_INVALID.sub("", value.replace("_", "-")).strip("-.")
