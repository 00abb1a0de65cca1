from __future__ import annotations

import csv
import json
from pathlib import Path

import pytest

from src import pipeline
from src.pipeline import MapperConfig, parse_args, run_pipeline

BASE = "https://cco-237.shop/wp-content/uploads/2025/05/"
DRIVE_A = "https://drive.google.com/file/d/AAA/view?usp=sharing"
DRIVE_MISSING = "https://drive.google.com/open?id=GONE"


class FakeResolver:
    def get_filename(self, file_id: str) -> str | None:
        return {"AAA": "238.png"}.get(file_id)


class FakeProbe:
    def exists(self, url: str) -> bool:
        return url == BASE + "238.png"


@pytest.fixture()
def fake_network(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(pipeline, "_build_resolver", lambda config: FakeResolver())
    monkeypatch.setattr(pipeline, "HttpExistenceProbe", FakeProbe)


def _write_input(path: Path, rows: list[dict[str, str]]) -> None:
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(rows[0]))
        writer.writeheader()
        writer.writerows(rows)


def _config(tmp_path: Path, **overrides: object) -> MapperConfig:
    values: dict[str, object] = {
        "input_csv": str(tmp_path / "in.csv"),
        "output_csv": str(tmp_path / "out" / "rewritten.csv"),
        "mode": "apply",
        "uploads_base": BASE,
        "service_account_file": str(tmp_path / "sa.json"),
        "cache_ttl": 86400,
        "cache_file": None,
        "failure_log_dir": str(tmp_path / "logs"),
        "image_columns": ["Images"],
        "image_extensions": ["png", "jpg", "jpeg", "webp"],
        "append_raw_filename": False,
        "log_level": "INFO",
    }
    values.update(overrides)
    return MapperConfig(**values)  # type: ignore[arg-type]


def test_parse_args_requires_uploads_base(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DRIVE_MAPPER_UPLOADS_BASE", raising=False)
    with pytest.raises(ValueError):
        parse_args(
            [
                "--input-csv",
                "in.csv",
                "--output-csv",
                "out.csv",
                "--service-account-file",
                "sa.json",
            ]
        )


def test_parse_args_apply_mode_requires_output(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DRIVE_MAPPER_UPLOADS_BASE", BASE)
    with pytest.raises(ValueError):
        parse_args(["--input-csv", "in.csv", "--service-account-file", "sa.json"])


def test_parse_args_merges_config_file_and_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_file = tmp_path / "mapper.json"
    config_file.write_text(
        json.dumps(
            {
                "input_csv": "products.csv",
                "mode": "audit",
                "image_columns": ["Images", "image_urls"],
                "image_extensions": "webp,png",
                "cache_ttl": 600,
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("DRIVE_MAPPER_UPLOADS_BASE", "https://cco.test/uploads")
    monkeypatch.setenv("GOOGLE_APPLICATION_CREDENTIALS", "/secure/sa.json")

    config = parse_args(["--config-file", str(config_file), "--cache-ttl", "30"])

    assert config.input_csv == "products.csv"
    assert config.output_csv is None
    assert config.mode == "audit"
    assert config.uploads_base == "https://cco.test/uploads/"
    assert config.service_account_file == "/secure/sa.json"
    assert config.cache_ttl == 30
    assert config.image_columns == ["Images", "image_urls"]
    assert config.image_extensions == ["webp", "png"]
    assert config.append_raw_filename is False


def test_parse_args_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DRIVE_MAPPER_MODE", raising=False)
    config = parse_args(
        [
            "--input-csv",
            "in.csv",
            "--output-csv",
            "out.csv",
            "--uploads-base",
            BASE,
            "--service-account-file",
            "sa.json",
            "--append-raw-filename",
        ]
    )
    assert config.mode == "apply"
    assert config.cache_ttl == 86400
    assert config.cache_file == ".cache/drive_images_mapper.json"
    assert config.image_columns[0] == "images"
    assert config.image_extensions == ["png", "jpg", "jpeg", "webp"]
    assert config.append_raw_filename is True


def test_run_pipeline_apply_rewrites_csv(tmp_path: Path, fake_network: None, capsys: pytest.CaptureFixture[str]) -> None:
    _write_input(
        tmp_path / "in.csv",
        [
            {"SKU": "S1", "Name": "Robe", "Images": f"{DRIVE_A}, https://a.test/x.png"},
            {"SKU": "S2", "Name": "Sac", "Images": DRIVE_MISSING},
            {"SKU": "S3", "Name": "Cape", "Images": ""},
        ],
    )
    config = _config(tmp_path)

    exit_code = run_pipeline(config)

    assert exit_code == 1
    with open(config.output_csv or "", encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))
    assert [row["Images"] for row in rows] == [
        f"{BASE}238.png,https://a.test/x.png",
        DRIVE_MISSING,
        "",
    ]
    assert rows[0]["Name"] == "Robe"

    failure_csvs = list((tmp_path / "logs").glob("drive-images-mapper-*.csv"))
    assert len(failure_csvs) == 1
    with failure_csvs[0].open(encoding="utf-8", newline="") as handle:
        failures = list(csv.DictReader(handle))
    assert [(row["sku"], row["drive_file_id"], row["reason"]) for row in failures] == [
        ("S2", "GONE", "drive_filename_not_resolved")
    ]

    out = capsys.readouterr().out
    assert "rows=3" in out
    assert "failures=1" in out


def test_run_pipeline_audit_writes_no_output(tmp_path: Path, fake_network: None) -> None:
    _write_input(tmp_path / "in.csv", [{"SKU": "S1", "Name": "Robe", "Images": DRIVE_MISSING}])
    config = _config(tmp_path, mode="audit", output_csv=str(tmp_path / "never.csv"))

    assert run_pipeline(config) == 0
    assert not (tmp_path / "never.csv").exists()
    failure_csvs = list((tmp_path / "logs").glob("*.csv"))
    with failure_csvs[0].open(encoding="utf-8", newline="") as handle:
        failures = list(csv.DictReader(handle))
    assert failures[0]["reason"] == "drive_filename_not_resolved (audit)"


def test_run_pipeline_clean_import_exits_zero(tmp_path: Path, fake_network: None) -> None:
    _write_input(tmp_path / "in.csv", [{"SKU": "S1", "Name": "Robe", "Images": DRIVE_A}])
    assert run_pipeline(_config(tmp_path)) == 0


def test_run_pipeline_missing_input(tmp_path: Path, fake_network: None) -> None:
    with pytest.raises(FileNotFoundError):
        run_pipeline(_config(tmp_path))


class UnwritableFailureRecorder:
    def __init__(self, log_dir: str) -> None:
        self.log_dir = log_dir

    def record(self, record: object) -> None:
        raise PermissionError(f"cannot write under {self.log_dir}")


def test_run_pipeline_counts_failures_when_log_files_fail(
    tmp_path: Path, fake_network: None, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(pipeline, "FileFailureRecorder", UnwritableFailureRecorder)
    _write_input(tmp_path / "in.csv", [{"SKU": "S2", "Name": "Sac", "Images": DRIVE_MISSING}])

    assert run_pipeline(_config(tmp_path)) == 1
    assert "failures=1" in capsys.readouterr().out
