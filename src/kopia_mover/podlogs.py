from __future__ import annotations

from typing import Callable

from kubernetes import client
import structlog

from .k8s import DEFAULT_REQUEST_TIMEOUT_SECONDS, KubernetesClients
from .models import MoverResult, MoverStatus

LineFilter = Callable[[str], "str | None"]

logger = structlog.get_logger(__name__)


def capture_job_logs(
    clients: KubernetesClients,
    *,
    job_name: str,
    namespace: str,
    job_failed: bool,
    status: MoverStatus,
    line_filter: LineFilter,
    max_bytes: int,
    tail_lines: int = -1,
    debug: bool = False,
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> None:
    """Record the job outcome and the filtered tail of its pod logs into ``status``.

    The result is set before any API call and failures to read logs are only
    logged, so callers can rely on ``status.result`` whatever happens here.
    """
    status.result = MoverResult.FAILED if job_failed else MoverResult.SUCCESSFUL
    status.logs = ""

    try:
        pod = _select_pod(clients, job_name=job_name, namespace=namespace, job_failed=job_failed,
                          timeout=request_timeout_seconds)
        if pod is None:
            logger.info("mover_pod_not_found", job=job_name, namespace=namespace)
            return

        kwargs = {"name": pod.metadata.name, "namespace": namespace, "_request_timeout": request_timeout_seconds}
        if tail_lines >= 0:
            kwargs["tail_lines"] = tail_lines
        raw = clients.core_api.read_namespaced_pod_log(**kwargs)
    except Exception as error:  # pylint: disable=broad-except
        logger.warning("mover_log_capture_failed", job=job_name, namespace=namespace, error=str(error))
        return

    status.logs = filter_logs(raw or "", line_filter=line_filter, max_bytes=max_bytes, debug=debug)


def filter_logs(text: str, *, line_filter: LineFilter, max_bytes: int, debug: bool = False) -> str:
    if debug:
        kept = text.split("\n")
    else:
        kept = []
        for line in text.split("\n"):
            filtered = line_filter(line)
            if filtered is not None:
                kept.append(filtered)
    return truncate_tail("\n".join(kept), max_bytes)


def truncate_tail(text: str, max_bytes: int) -> str:
    if max_bytes <= 0:
        return ""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[-max_bytes:].decode("utf-8", errors="ignore")


def _select_pod(
    clients: KubernetesClients,
    *,
    job_name: str,
    namespace: str,
    job_failed: bool,
    timeout: int,
) -> client.V1Pod | None:
    pods = clients.core_api.list_namespaced_pod(
        namespace=namespace,
        label_selector=f"job-name={job_name}",
        _request_timeout=timeout,
    ).items

    by_phase: dict[str, list[client.V1Pod]] = {}
    for pod in pods or []:
        phase = pod.status.phase if pod.status and pod.status.phase else "Unknown"
        by_phase.setdefault(phase, []).append(pod)

    if job_failed:
        return _newest(by_phase.get("Failed")) or _newest(by_phase.get("Running"))
    return _newest(by_phase.get("Succeeded"))


def _newest(pods: list[client.V1Pod] | None) -> client.V1Pod | None:
    if not pods:
        return None
    return max(pods, key=_creation_key)


def _creation_key(pod: client.V1Pod):
    created = pod.metadata.creation_timestamp if pod.metadata else None
    # Pods without a timestamp sort oldest.
    return (created is not None, created.timestamp() if created is not None else 0.0)
