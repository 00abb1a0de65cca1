"""Append-only failure records for references that could not be mapped."""

from __future__ import annotations

import csv
from dataclasses import dataclass
from datetime import datetime
import logging
from pathlib import Path
import threading
from typing import Any, Protocol, Sequence

logger = logging.getLogger(__name__)

REASON_NOT_RESOLVED = "drive_filename_not_resolved"
REASON_NOT_FOUND = "image_not_found_on_cco"
AUDIT_SUFFIX = " (audit)"
FAILURE_LOG_PREFIX = "drive-images-mapper"
CSV_HEADER = (
    "date",
    "sku",
    "product_name",
    "drive_file_id",
    "drive_name",
    "expected_url",
    "reason",
)


@dataclass(frozen=True)
class ResolutionRecord:
    timestamp: datetime
    sku: str
    product_name: str
    drive_file_id: str
    reason: str
    drive_name: str = ""
    expected_url: str = ""

    def to_row(self) -> list[str]:
        return [
            self.timestamp.isoformat(timespec="seconds"),
            self.sku,
            self.product_name,
            self.drive_file_id,
            self.drive_name,
            self.expected_url,
            self.reason,
        ]

    def to_dict(self) -> dict[str, Any]:
        return dict(zip(CSV_HEADER, self.to_row()))

    def to_log_line(self) -> str:
        return (
            f"[{self.timestamp.isoformat(timespec='seconds')}] "
            f"reason={self.reason} sku={self.sku} product={self.product_name!r} "
            f"drive_file_id={self.drive_file_id} drive_name={self.drive_name!r} "
            f"expected_url={self.expected_url}"
        )


class FailureSinkProtocol(Protocol):
    def record(self, record: ResolutionRecord) -> None:
        """Persist one failure record."""


class InMemoryFailureRecorder(FailureSinkProtocol):
    def __init__(self) -> None:
        self.records: list[ResolutionRecord] = []

    def record(self, record: ResolutionRecord) -> None:
        self.records.append(record)


class FanOutFailureRecorder(FailureSinkProtocol):
    def __init__(self, sinks: Sequence[FailureSinkProtocol]) -> None:
        self._sinks = list(sinks)

    def record(self, record: ResolutionRecord) -> None:
        """Deliver to every sink, then re-raise the first OSError, if any."""
        first_error: OSError | None = None
        for sink in self._sinks:
            try:
                sink.record(record)
            except OSError as exc:
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error


class FileFailureRecorder(FailureSinkProtocol):
    """Monthly ``.log`` + ``.csv`` pair under log_dir.

    The directory is created up front; an OSError here is fatal and must reach
    the operator.
    """

    def __init__(self, log_dir: str | Path) -> None:
        self._log_dir = Path(log_dir)
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def paths_for(self, when: datetime) -> tuple[Path, Path]:
        stem = f"{FAILURE_LOG_PREFIX}-{when:%Y-%m}"
        return self._log_dir / f"{stem}.log", self._log_dir / f"{stem}.csv"

    def record(self, record: ResolutionRecord) -> None:
        log_path, csv_path = self.paths_for(record.timestamp)
        with self._lock:
            with log_path.open("a", encoding="utf-8") as log_file:
                log_file.write(record.to_log_line() + "\n")

            write_header = not csv_path.exists() or csv_path.stat().st_size == 0
            with csv_path.open("a", encoding="utf-8", newline="") as csv_file:
                writer = csv.writer(csv_file)
                if write_header:
                    writer.writerow(CSV_HEADER)
                writer.writerow(record.to_row())
