from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import Mock

from kubernetes.client import ApiException

from kopia_mover.k8s import KubernetesClients
from kopia_mover.logparser import all_lines, discovery_log_filter
from kopia_mover.models import MoverResult, MoverStatus
from kopia_mover.podlogs import capture_job_logs, filter_logs, truncate_tail

_NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


def _clients(core_api: Mock) -> KubernetesClients:
    return KubernetesClients(api_client=Mock(), core_api=core_api, batch_api=Mock(), custom_objects_api=Mock())


def _pod(name: str, phase: str, created: datetime | None) -> SimpleNamespace:
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name, creation_timestamp=created),
        status=SimpleNamespace(phase=phase),
    )


def _core_api(pods: list[SimpleNamespace], log: str = "") -> Mock:
    core_api = Mock()
    core_api.list_namespaced_pod.return_value = SimpleNamespace(items=pods)
    core_api.read_namespaced_pod_log.return_value = log
    return core_api


def test_capture_job_logs_with_failed_job_reads_newest_failed_pod() -> None:
    core_api = _core_api(
        [
            _pod("old-failure", "Failed", _NOW - timedelta(minutes=10)),
            _pod("new-failure", "Failed", _NOW - timedelta(minutes=1)),
            _pod("running", "Running", _NOW),
        ],
        log="ERROR: repository not found",
    )
    status = MoverStatus(result=MoverResult.SUCCESSFUL, logs="stale")

    capture_job_logs(
        _clients(core_api),
        job_name="volsync-src-app",
        namespace="prod",
        job_failed=True,
        status=status,
        line_filter=all_lines,
        max_bytes=1024,
    )

    assert status.result is MoverResult.FAILED
    assert status.logs == "ERROR: repository not found"
    assert core_api.list_namespaced_pod.call_args.kwargs["label_selector"] == "job-name=volsync-src-app"
    log_kwargs = core_api.read_namespaced_pod_log.call_args.kwargs
    assert log_kwargs["name"] == "new-failure"
    assert "tail_lines" not in log_kwargs


def test_capture_job_logs_with_failed_job_without_failed_pods_falls_back_to_running() -> None:
    core_api = _core_api([_pod("running", "Running", _NOW)], log="still going")
    status = MoverStatus()

    capture_job_logs(
        _clients(core_api),
        job_name="volsync-src-app",
        namespace="prod",
        job_failed=True,
        status=status,
        line_filter=all_lines,
        max_bytes=1024,
        tail_lines=50,
    )

    log_kwargs = core_api.read_namespaced_pod_log.call_args.kwargs
    assert log_kwargs["name"] == "running"
    assert log_kwargs["tail_lines"] == 50


def test_capture_job_logs_with_successful_job_reads_succeeded_pod_through_filter() -> None:
    core_api = _core_api(
        [_pod("done", "Succeeded", _NOW), _pod("failed", "Failed", _NOW)],
        log="hashing file /data/a\nERROR No snapshots found for app@prod:/data\nuploading",
    )
    status = MoverStatus()

    capture_job_logs(
        _clients(core_api),
        job_name="volsync-src-app",
        namespace="prod",
        job_failed=False,
        status=status,
        line_filter=discovery_log_filter,
        max_bytes=1024,
    )

    assert status.result is MoverResult.SUCCESSFUL
    assert status.logs == "ERROR No snapshots found for app@prod:/data"
    assert core_api.read_namespaced_pod_log.call_args.kwargs["name"] == "done"


def test_capture_job_logs_without_matching_pod_leaves_logs_empty() -> None:
    core_api = _core_api([_pod("running", "Running", _NOW)])
    status = MoverStatus(logs="stale")

    capture_job_logs(
        _clients(core_api),
        job_name="volsync-src-app",
        namespace="prod",
        job_failed=False,
        status=status,
        line_filter=all_lines,
        max_bytes=1024,
    )

    assert status.result is MoverResult.SUCCESSFUL
    assert status.logs == ""
    core_api.read_namespaced_pod_log.assert_not_called()


def test_capture_job_logs_with_api_failure_still_sets_result() -> None:
    core_api = Mock()
    core_api.list_namespaced_pod.side_effect = ApiException(status=403, reason="Forbidden")
    status = MoverStatus()

    capture_job_logs(
        _clients(core_api),
        job_name="volsync-dst-app",
        namespace="prod",
        job_failed=True,
        status=status,
        line_filter=all_lines,
        max_bytes=1024,
    )

    assert status.result is MoverResult.FAILED
    assert status.logs == ""


def test_filter_logs_in_debug_mode_keeps_every_line() -> None:
    text = "hashing file /data/a\nuploading 12 files"

    assert filter_logs(text, line_filter=discovery_log_filter, max_bytes=1024, debug=True) == text


def test_truncate_tail_keeps_trailing_bytes() -> None:
    assert truncate_tail("0123456789", 4) == "6789"
    assert truncate_tail("short", 100) == "short"
    assert truncate_tail("anything", 0) == ""


def test_truncate_tail_drops_partial_multibyte_character() -> None:
    assert truncate_tail("aé", 1) == ""
