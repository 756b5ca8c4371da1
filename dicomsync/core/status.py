"""Thread-safe store of transfer outcomes."""

from __future__ import annotations

import threading
from typing import Any, Optional

from dicomsync.core.logging import AuditLogger, get_audit_logger
from dicomsync.models.transfer import (
    Direction,
    OutcomeCounts,
    TransferOutcome,
    TransferResult,
)


class TransferStatusSink:
    """Records the latest outcome per subject for uploads and downloads.

    Subjects are local paths for uploads and URLs for downloads. Every
    recorded outcome is also kept in an append-only history. All access goes
    through one lock, so readers always see whole outcomes.
    """

    def __init__(self, audit_logger: Optional[AuditLogger] = None):
        self._lock = threading.Lock()
        self._latest: dict[tuple[Direction, str], TransferOutcome] = {}
        self._history: list[TransferOutcome] = []
        self._audit = audit_logger or get_audit_logger()

    def record(
        self,
        direction: Direction,
        subject: str,
        result: TransferResult,
        detail: str = "",
    ) -> TransferOutcome:
        """Record a terminal outcome.

        Args:
            direction: Upload or download.
            subject: Local path or remote URL.
            result: OK or FAIL.
            detail: Free-form detail (status code, error text).

        Returns:
            The stored outcome.
        """
        outcome = TransferOutcome(
            subject=str(subject),
            direction=direction,
            result=result,
            detail=detail,
        )
        with self._lock:
            self._latest[(direction, outcome.subject)] = outcome
            self._history.append(outcome)

        self._audit.log_transfer(
            direction.value,
            outcome.subject,
            success=outcome.ok,
            detail=detail or None,
        )
        return outcome

    def get(self, direction: Direction, subject: str) -> TransferOutcome | None:
        """Latest outcome for a subject, if any."""
        with self._lock:
            return self._latest.get((direction, str(subject)))

    def outcomes(self, direction: Direction | None = None) -> list[TransferOutcome]:
        """Latest outcome per subject, in first-recorded order."""
        with self._lock:
            return [
                outcome
                for (d, _), outcome in self._latest.items()
                if direction is None or d is direction
            ]

    def history(self) -> list[TransferOutcome]:
        """Every outcome ever recorded, in order."""
        with self._lock:
            return list(self._history)

    def counts(self, direction: Direction) -> OutcomeCounts:
        """Aggregate success/fail counts over the latest outcomes."""
        with self._lock:
            latest = [o for (d, _), o in self._latest.items() if d is direction]
        succeeded = sum(1 for o in latest if o.ok)
        return OutcomeCounts(succeeded=succeeded, failed=len(latest) - succeeded)

    def summary(self) -> dict[str, dict[str, Any]]:
        """Per-direction totals for reporting."""
        result: dict[str, dict[str, Any]] = {}
        for direction in Direction:
            counts = self.counts(direction)
            result[direction.value] = {
                "succeeded": counts.succeeded,
                "failed": counts.failed,
                "total": counts.total,
            }
        return result

    def clear(self) -> None:
        with self._lock:
            self._latest.clear()
            self._history.clear()
