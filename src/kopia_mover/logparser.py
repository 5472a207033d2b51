"""Recover identity and snapshot information from mover container logs.

The mover entry point prints a discovery section when a restore cannot find
snapshots for its identity. The section either lists snapshots as JSON
records (one per line) or in the older plain-text table format. Both are
scraped here so a destination status can tell the user which identities the
repository actually holds.
"""

from __future__ import annotations

from datetime import UTC, datetime
import json
import re

from dateutil import parser as date_parser

from .models import DiscoveryResult, IdentityInfo

DISCOVERY_HEADER = "=== Discovery Mode: Available Snapshots ==="

_NO_SNAPSHOTS = re.compile(r"No snapshots found for ([^@]+)@([^:]+):(.+)")
_IDENTITY_ERROR = re.compile(r'unable to find snapshots for source "([^"]+)"')
_JSON_SNAPSHOT = re.compile(r'^\{.*"id".*"userName".*"hostName".*\}')
_SNAPSHOT_LISTING = re.compile(r"^([^@]+)@([^:]+):(.+)\s+(\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2})")
_LISTING_LINE = re.compile(r"^[^@]+@[^:]+:.+\s+\d{4}-\d{2}-\d{2}")
_LISTING_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_DISCOVERY_MARKERS = ("=== Discovery Mode", "Available Snapshots", "No snapshots found")
_STATUS_MARKERS = (
    "Snapshot created successfully",
    "Snapshot restore completed",
    "Repository connected",
    "No eligible snapshots",
)


def parse_discovery(log_text: str) -> DiscoveryResult:
    requested_identity = ""
    message = ""
    identities: dict[str, IdentityInfo] = {}
    in_discovery_mode = False

    for raw_line in log_text.split("\n"):
        line = raw_line.strip()

        if DISCOVERY_HEADER in line:
            in_discovery_mode = True
            continue

        match = _NO_SNAPSHOTS.search(line)
        if match:
            requested_identity = f"{match.group(1)}@{match.group(2)}"
            message = line
            continue

        match = _IDENTITY_ERROR.search(line)
        if match:
            requested_identity = match.group(1).split(":")[0]
            message = f"No snapshots found for identity '{requested_identity}'"
            continue

        if in_discovery_mode and _JSON_SNAPSHOT.match(line):
            _record_json_snapshot(line, identities)
            continue

        match = _SNAPSHOT_LISTING.match(line)
        if match:
            try:
                taken_at = datetime.strptime(match.group(4), _LISTING_TIME_FORMAT).replace(tzinfo=UTC)
            except ValueError:
                taken_at = None
            _record(identities, f"{match.group(1)}@{match.group(2)}", taken_at)

    available = tuple(identities[key] for key in sorted(identities))
    if not message and requested_identity and available:
        names = ", ".join(info.identity for info in available)
        message = f"No snapshots found for identity '{requested_identity}'. Available identities: {names}"

    return DiscoveryResult(
        requested_identity=requested_identity,
        available_identities=available,
        message=message,
    )


def discovery_log_filter(line: str) -> str | None:
    lowered = line.lower()
    if "error" in lowered or "failed" in lowered or "unable to" in lowered:
        return line
    if any(marker in line for marker in _DISCOVERY_MARKERS):
        return line
    if _LISTING_LINE.match(line):
        return line
    if '"userName"' in line and '"hostName"' in line:
        return line
    if any(marker in line for marker in _STATUS_MARKERS):
        return line
    return None


def all_lines(line: str) -> str | None:
    return line


def _record_json_snapshot(line: str, identities: dict[str, IdentityInfo]) -> None:
    try:
        record = json.loads(line)
    except (ValueError, RecursionError):
        return
    if not isinstance(record, dict):
        return

    end_time = None
    raw_end_time = record.get("endTime")
    if isinstance(raw_end_time, str) and raw_end_time:
        try:
            end_time = date_parser.isoparse(raw_end_time)
        except (ValueError, OverflowError):
            end_time = None
        if end_time is not None and end_time.tzinfo is None:
            end_time = end_time.replace(tzinfo=UTC)

    _record(identities, f"{record.get('userName') or ''}@{record.get('hostName') or ''}", end_time)


def _record(identities: dict[str, IdentityInfo], identity: str, taken_at: datetime | None) -> None:
    info = identities.setdefault(identity, IdentityInfo(identity=identity))
    info.snapshot_count += 1
    if taken_at is not None and (info.latest_snapshot is None or taken_at > info.latest_snapshot):
        info.latest_snapshot = taken_at
