"""CLI entrypoint: rewrite Drive image links in a WooCommerce product CSV."""

from __future__ import annotations

import argparse
import csv
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any, Sequence

from .asset_locator import (
    DEFAULT_IMAGE_EXTENSIONS,
    AssetLocator,
    HttpExistenceProbe,
)
from .cache import CacheProtocol, InMemoryTtlCache, JsonFileCache
from .drive_auth import ServiceAccountTokenProvider
from .drive_metadata import (
    DEFAULT_NAME_CACHE_TTL_SEC,
    DriveFilenameResolver,
    GoogleDriveMetadataClient,
)
from .failure_log import FanOutFailureRecorder, FileFailureRecorder, InMemoryFailureRecorder
from .mapper import (
    DEFAULT_IMAGE_COLUMNS,
    MAPPER_MODES,
    MODE_APPLY,
    FilenameResolverProtocol,
    ImageFieldMapper,
)
from .runtime_config import as_string_list, load_runtime_config, value_from_sources

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MapperConfig:
    input_csv: str
    output_csv: str | None
    mode: str
    uploads_base: str
    service_account_file: str
    cache_ttl: int
    cache_file: str | None
    failure_log_dir: str
    image_columns: list[str]
    image_extensions: list[str]
    append_raw_filename: bool
    log_level: str


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m src.pipeline",
        description="Replace Google Drive image links in a product import CSV with local upload URLs.",
    )
    parser.add_argument(
        "--config-file",
        default=None,
        help="Optional JSON config file for runtime settings",
    )
    parser.add_argument(
        "--input-csv",
        default=None,
        help="Product import CSV to read",
    )
    parser.add_argument(
        "--output-csv",
        default=None,
        help="Rewritten CSV path (required in apply mode)",
    )
    parser.add_argument(
        "--mode",
        choices=MAPPER_MODES,
        default=None,
        help="apply rewrites the CSV, audit only records failures (default: apply)",
    )
    parser.add_argument(
        "--uploads-base",
        default=None,
        help="Base URL of the uploads folder (or DRIVE_MAPPER_UPLOADS_BASE env)",
    )
    parser.add_argument(
        "--service-account-file",
        default=None,
        help="Google service-account key file (or GOOGLE_APPLICATION_CREDENTIALS env)",
    )
    parser.add_argument(
        "--cache-ttl",
        type=int,
        default=None,
        help="Seconds to cache resolved Drive filenames (default: 86400)",
    )
    parser.add_argument(
        "--cache-file",
        default=None,
        help="JSON file for the token/filename cache; empty string keeps it in memory",
    )
    parser.add_argument(
        "--failure-log-dir",
        default=None,
        help="Directory for the monthly failure .log/.csv files (default: logs)",
    )
    parser.add_argument(
        "--image-columns",
        default=None,
        help="Comma-separated candidate image column names, first non-empty wins",
    )
    parser.add_argument(
        "--image-extensions",
        default=None,
        help="Comma-separated extensions probed in order (default: png,jpg,jpeg,webp)",
    )
    parser.add_argument(
        "--append-raw-filename",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Also emit uploads_base + unencoded Drive name for every resolved link",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: INFO)",
    )
    return parser


def parse_args(argv: Sequence[str] | None = None) -> MapperConfig:
    args = build_parser().parse_args(argv)
    file_config = load_runtime_config(args.config_file)

    input_csv = value_from_sources(
        cli_value=args.input_csv,
        config=file_config,
        key="input_csv",
    )
    output_csv = value_from_sources(
        cli_value=args.output_csv,
        config=file_config,
        key="output_csv",
    )
    mode = str(
        value_from_sources(
            cli_value=args.mode,
            config=file_config,
            key="mode",
            env_var="DRIVE_MAPPER_MODE",
            default=MODE_APPLY,
        )
    )
    uploads_base = value_from_sources(
        cli_value=args.uploads_base,
        config=file_config,
        key="uploads_base",
        env_var="DRIVE_MAPPER_UPLOADS_BASE",
    )
    service_account_file = value_from_sources(
        cli_value=args.service_account_file,
        config=file_config,
        key="service_account_file",
        env_var="GOOGLE_APPLICATION_CREDENTIALS",
    )
    cache_ttl = int(
        value_from_sources(
            cli_value=args.cache_ttl,
            config=file_config,
            key="cache_ttl",
            default=DEFAULT_NAME_CACHE_TTL_SEC,
        )
    )
    cache_file = value_from_sources(
        cli_value=args.cache_file,
        config=file_config,
        key="cache_file",
        default=".cache/drive_images_mapper.json",
    )
    failure_log_dir = str(
        value_from_sources(
            cli_value=args.failure_log_dir,
            config=file_config,
            key="failure_log_dir",
            default="logs",
        )
    )
    image_columns = as_string_list(
        value_from_sources(
            cli_value=args.image_columns,
            config=file_config,
            key="image_columns",
        ),
        default=DEFAULT_IMAGE_COLUMNS,
    )
    image_extensions = as_string_list(
        value_from_sources(
            cli_value=args.image_extensions,
            config=file_config,
            key="image_extensions",
        ),
        default=DEFAULT_IMAGE_EXTENSIONS,
    )
    append_raw_filename = bool(
        value_from_sources(
            cli_value=args.append_raw_filename,
            config=file_config,
            key="append_raw_filename",
            default=False,
        )
    )
    log_level = str(
        value_from_sources(
            cli_value=args.log_level,
            config=file_config,
            key="log_level",
            default="INFO",
        )
    ).upper()

    if not input_csv:
        raise ValueError("input_csv is required (CLI or config file)")
    if mode not in MAPPER_MODES:
        raise ValueError("mode must be one of: apply, audit")
    if mode == MODE_APPLY and not output_csv:
        raise ValueError("output_csv is required in apply mode")
    if not uploads_base or not str(uploads_base).strip():
        raise ValueError("uploads_base is required (CLI, config file or DRIVE_MAPPER_UPLOADS_BASE)")
    if not service_account_file:
        raise ValueError(
            "service_account_file is required "
            "(CLI, config file or GOOGLE_APPLICATION_CREDENTIALS)."
        )
    if cache_ttl < 1:
        raise ValueError("cache_ttl must be >= 1")

    base = str(uploads_base).strip()
    if not base.endswith("/"):
        base += "/"

    return MapperConfig(
        input_csv=str(input_csv),
        output_csv=str(output_csv) if output_csv else None,
        mode=mode,
        uploads_base=base,
        service_account_file=str(service_account_file),
        cache_ttl=cache_ttl,
        cache_file=str(cache_file) if cache_file else None,
        failure_log_dir=failure_log_dir,
        image_columns=image_columns,
        image_extensions=image_extensions,
        append_raw_filename=append_raw_filename,
        log_level=log_level,
    )


def run_pipeline(config: MapperConfig) -> int:
    failures = InMemoryFailureRecorder()
    failure_sink = FanOutFailureRecorder([failures, FileFailureRecorder(config.failure_log_dir)])
    mapper = ImageFieldMapper(
        resolver=_build_resolver(config),
        locator=AssetLocator(
            uploads_base=config.uploads_base,
            probe=HttpExistenceProbe(),
            extensions=config.image_extensions,
        ),
        failure_sink=failure_sink,
        mode=config.mode,
        image_columns=config.image_columns,
        append_raw_filename=config.append_raw_filename,
    )

    fieldnames, rows = _read_rows(config.input_csv)
    logger.info("Loaded %d rows from %s", len(rows), config.input_csv)

    rewritten_rows: list[dict[str, Any]] = []
    rewritten_count = 0
    for row in rows:
        new_row = mapper.filter_import_row(row)
        if new_row != row:
            rewritten_count += 1
        rewritten_rows.append(new_row)

    if config.mode == MODE_APPLY and config.output_csv:
        _write_rows(config.output_csv, fieldnames, rewritten_rows)

    print(
        f"Rewrite completed. rows={len(rows)} rewritten={rewritten_count} "
        f"failures={len(failures.records)} mode={config.mode}"
    )
    if config.mode == MODE_APPLY and failures.records:
        return 1
    return 0


def _build_cache(config: MapperConfig) -> CacheProtocol:
    if config.cache_file:
        return JsonFileCache(config.cache_file)
    return InMemoryTtlCache()


def _build_resolver(config: MapperConfig) -> FilenameResolverProtocol:
    cache = _build_cache(config)
    return DriveFilenameResolver(
        token_source=ServiceAccountTokenProvider(
            key_file=config.service_account_file,
            cache=cache,
        ),
        metadata_client=GoogleDriveMetadataClient.build_default(),
        cache=cache,
        cache_ttl_sec=config.cache_ttl,
    )


def _read_rows(input_csv: str) -> tuple[list[str], list[dict[str, Any]]]:
    path = Path(input_csv)
    if not path.exists() or not path.is_file():
        raise FileNotFoundError(f"Input CSV not found: {input_csv}")
    with path.open("r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        rows = [dict(row) for row in reader]
        fieldnames = list(reader.fieldnames or [])
    return fieldnames, rows


def _write_rows(output_csv: str, fieldnames: list[str], rows: list[dict[str, Any]]) -> None:
    path = Path(output_csv)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=fieldnames, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(rows)


def main(argv: Sequence[str] | None = None) -> int:
    config = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    return run_pipeline(config)


if __name__ == "__main__":
    raise SystemExit(main())
