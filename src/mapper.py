"""Rewrite product-import image fields from Drive share links to local URLs.

``ImageFieldMapper.transform`` is the core entry point. It never raises for
lookup problems: every reference that cannot be mapped is written to the
failure sink and the field still gets a value.

Two modes are supported:

* ``apply`` rewrites the field. Non-Drive references pass through, Drive links
  whose name cannot be resolved are kept as-is, and resolved names become the
  first existing ``uploads_base + name.<ext>`` candidate.
* ``audit`` only records what ``apply`` would fail on and returns the field
  untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Mapping, Protocol, Sequence

from .asset_locator import CandidateAsset
from .failure_log import (
    AUDIT_SUFFIX,
    REASON_NOT_FOUND,
    REASON_NOT_RESOLVED,
    FailureSinkProtocol,
    ResolutionRecord,
)
from .references import extract_drive_file_id, split_references

logger = logging.getLogger(__name__)

MODE_APPLY = "apply"
MODE_AUDIT = "audit"
MAPPER_MODES = (MODE_APPLY, MODE_AUDIT)
DEFAULT_IMAGE_COLUMNS = ("images", "Images", "Images (URL)", "image", "Image", "image_urls")
SKU_COLUMNS = ("SKU", "sku")
NAME_COLUMNS = ("Name", "name", "product_name")


@dataclass(frozen=True)
class RecordContext:
    sku: str = ""
    product_name: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RecordContext":
        return cls(
            sku=_first_text(row, SKU_COLUMNS),
            product_name=_first_text(row, NAME_COLUMNS),
        )


class FilenameResolverProtocol(Protocol):
    def get_filename(self, file_id: str) -> str | None:
        """Return the Drive display name or None."""


class AssetLocatorProtocol(Protocol):
    def locate(self, filename: str) -> CandidateAsset | None:
        """Return the first hosted candidate for filename."""

    def direct_url(self, filename: str) -> str:
        """Return the unverified percent-encoded URL for filename."""

    def raw_url(self, filename: str) -> str:
        """Return uploads_base + filename without encoding."""


class ImageFieldMapper:
    def __init__(
        self,
        resolver: FilenameResolverProtocol,
        locator: AssetLocatorProtocol,
        failure_sink: FailureSinkProtocol,
        mode: str = MODE_APPLY,
        image_columns: Sequence[str] = DEFAULT_IMAGE_COLUMNS,
        append_raw_filename: bool = False,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        if mode not in MAPPER_MODES:
            raise ValueError("mode must be one of: apply, audit")
        self._resolver = resolver
        self._locator = locator
        self._failure_sink = failure_sink
        self._mode = mode
        self._image_columns = tuple(image_columns)
        self._append_raw_filename = append_raw_filename
        self._now_fn = now_fn or (lambda: datetime.now(timezone.utc))

    @property
    def mode(self) -> str:
        return self._mode

    def filter_import_row(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """Rewrite the first non-empty image column of one import row."""
        result = dict(row)
        column = self._find_image_column(result)
        if column is None:
            return result
        result[column] = self.transform(result[column], RecordContext.from_row(result))
        return result

    def transform(self, field_value: str, context: RecordContext | None = None) -> str:
        if self._mode == MODE_AUDIT:
            return self.transform_audit(field_value, context)
        return self.transform_apply(field_value, context)

    def transform_audit(self, field_value: str, context: RecordContext | None = None) -> str:
        context = context or RecordContext()
        for reference in _unique(split_references(field_value)):
            file_id = extract_drive_file_id(reference)
            if not file_id:
                continue

            filename = self._resolver.get_filename(file_id)
            if not filename:
                self._record(context, file_id, REASON_NOT_RESOLVED + AUDIT_SUFFIX)
                continue

            if self._locator.locate(filename) is None:
                self._record(
                    context,
                    file_id,
                    REASON_NOT_FOUND + AUDIT_SUFFIX,
                    drive_name=filename,
                    expected_url=self._locator.direct_url(filename),
                )
        return field_value

    def transform_apply(self, field_value: str, context: RecordContext | None = None) -> str:
        context = context or RecordContext()
        references = split_references(field_value)
        if not references:
            return field_value

        output: list[str] = []
        seen: set[str] = set()
        for reference in _unique(references):
            file_id = extract_drive_file_id(reference)
            if not file_id:
                _append_unique(output, seen, reference)
                continue

            filename = self._resolver.get_filename(file_id)
            if not filename:
                self._record(context, file_id, REASON_NOT_RESOLVED)
                _append_unique(output, seen, reference)
                continue

            candidate = self._locator.locate(filename)
            if candidate is not None:
                _append_unique(output, seen, candidate.url)
                if self._append_raw_filename:
                    _append_unique(output, seen, self._locator.raw_url(filename))
                continue

            fallback_url = (
                self._locator.raw_url(filename)
                if self._append_raw_filename
                else self._locator.direct_url(filename)
            )
            self._record(
                context,
                file_id,
                REASON_NOT_FOUND,
                drive_name=filename,
                expected_url=fallback_url,
            )
            _append_unique(output, seen, fallback_url)

        return ",".join(output)

    def _find_image_column(self, row: Mapping[str, Any]) -> str | None:
        for column in self._image_columns:
            value = row.get(column)
            if isinstance(value, str) and value.strip():
                return column
        return None

    def _record(
        self,
        context: RecordContext,
        file_id: str,
        reason: str,
        drive_name: str = "",
        expected_url: str = "",
    ) -> None:
        record = ResolutionRecord(
            timestamp=self._now_fn(),
            sku=context.sku,
            product_name=context.product_name,
            drive_file_id=file_id,
            reason=reason,
            drive_name=drive_name,
            expected_url=expected_url,
        )
        logger.info("Unmapped image sku=%s drive_file_id=%s reason=%s", context.sku, file_id, reason)
        try:
            self._failure_sink.record(record)
        except OSError as exc:
            logger.error("Could not write failure record %s: %s", record.to_dict(), exc)


def _unique(values: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def _append_unique(output: list[str], seen: set[str], value: str) -> None:
    if value in seen:
        return
    seen.add(value)
    output.append(value)


def _first_text(row: Mapping[str, Any], columns: Sequence[str]) -> str:
    for column in columns:
        value = row.get(column)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""
