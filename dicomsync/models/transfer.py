"""Transfer bookkeeping models.

Provides the task, reference and outcome records that flow through the
export and import pipelines.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class Direction(Enum):
    """Transfer direction."""

    UPLOAD = "upload"
    DOWNLOAD = "download"


class TransferResult(Enum):
    """Terminal result of one transfer."""

    OK = "OK"
    FAIL = "FAIL"


class TaskState(Enum):
    """Lifecycle of an export task."""

    QUEUED = "queued"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED)


class PollerState(Enum):
    """Lifecycle of the import poller."""

    IDLE = "idle"
    LISTING = "listing"
    DISPATCHING = "dispatching"
    STOPPED = "stopped"


@dataclass
class TransferTask:
    """A local file handed to the export pipeline."""

    local_path: Path
    size_bytes: int
    state: TaskState = TaskState.QUEUED
    source_path: Path | None = None

    @property
    def subject(self) -> str:
        """Path reported in outcomes: the submitted file, not its staged copy."""
        return str(self.source_path or self.local_path)

    @classmethod
    def from_path(cls, path: Path) -> "TransferTask":
        """Create a task, reading the current size of the file."""
        path = Path(path)
        return cls(local_path=path, size_bytes=path.stat().st_size)


@dataclass(frozen=True)
class RemoteObjectRef:
    """A remote study found by the import poller."""

    remote_id: str
    url: str


@dataclass(frozen=True)
class TransferOutcome:
    """Terminal result of one upload or download. Never mutated."""

    subject: str
    direction: Direction
    result: TransferResult
    detail: str = ""
    recorded_at: datetime = field(default_factory=datetime.now)

    @property
    def ok(self) -> bool:
        return self.result is TransferResult.OK

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for output."""
        return {
            "subject": self.subject,
            "direction": self.direction.value,
            "result": self.result.value,
            "detail": self.detail,
            "recorded_at": self.recorded_at.isoformat(),
        }


@dataclass(frozen=True)
class OutcomeCounts:
    """Aggregate counts for one direction."""

    succeeded: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    @property
    def success_rate(self) -> float:
        """Calculate success rate percentage."""
        if self.total == 0:
            return 100.0
        return (self.succeeded / self.total) * 100
