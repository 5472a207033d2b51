from __future__ import annotations

from dataclasses import dataclass, field
import os

DEFAULT_KOPIA_IMAGE = "quay.io/backube/volsync:latest"


@dataclass(frozen=True)
class MoverSettings:
    kopia_image: str = field(default_factory=lambda: os.getenv("RELATED_IMAGE_KOPIA_CONTAINER", DEFAULT_KOPIA_IMAGE))
    mover_log_max_bytes: int = field(default_factory=lambda: int(os.getenv("MOVER_LOG_MAX_BYTES", "1024")))
    mover_log_tail_lines: int = field(default_factory=lambda: int(os.getenv("MOVER_LOG_TAIL_LINES", "-1")))
    mover_log_debug: bool = field(default_factory=lambda: _env_flag("MOVER_LOG_DEBUG"))
    request_timeout_seconds: int = field(
        default_factory=lambda: int(os.getenv("KOPIA_MOVER_REQUEST_TIMEOUT_SECONDS", "30"))
    )
    log_level: str = field(default_factory=lambda: os.getenv("KOPIA_MOVER_LOG_LEVEL", "INFO"))

    def __post_init__(self) -> None:
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        if not self.kopia_image.strip():
            raise ValueError("kopia_image must not be empty")


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").strip().lower() in {"1", "true", "yes", "on"}
