from __future__ import annotations

import json
import logging
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from typer.testing import CliRunner

import aoa_engine
from aoa_engine.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _reset_root_logger():
    yield
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "aoa_engine_version" in result.output
    assert json.loads(result.output)["aoa_engine_version"] == aoa_engine.__version__


def test_package_exports_resolve():
    for name in aoa_engine.__all__:
        assert hasattr(aoa_engine, name), name


def test_selftest_passes(tmp_path: Path, cfg_path: Path):
    result = runner.invoke(app, ["selftest", "-c", str(cfg_path), "--run-id", "t1"])
    assert result.exit_code == 0, result.output
    report = json.loads((tmp_path / "outputs" / "selftest_report.json").read_text())
    assert report["status"] == "ok"
    assert report["unit_square_di"] == pytest.approx(0.6213, abs=1e-3)


def test_full_run_dry_run_lists_plan(cfg_path: Path):
    result = runner.invoke(app, ["full-run", "-c", str(cfg_path), "--dry-run", "--resume-from", "aoa"])
    assert result.exit_code == 0, result.output
    assert '"aoa"' in result.output and '"report"' in result.output
    assert '"ingest"' not in result.output


def test_full_run_writes_manifest(tmp_path: Path, cfg_path: Path):
    result = runner.invoke(app, ["full-run", "-c", str(cfg_path), "--run-id", "t2", "--no-log-file"])
    assert result.exit_code == 0, result.output
    manifest = json.loads((tmp_path / "outputs" / "run_manifest.json").read_text())
    assert manifest["artifacts"]["run_id"] == "t2"
    assert {"ingest", "train", "aoa", "report"} <= set(manifest["artifacts"])
    assert (tmp_path / "outputs" / "report.md").exists()


def test_stage_override_applies(tmp_path: Path, cfg_path: Path):
    override = json.dumps({"pipeline": {"aoa": {"threshold_method": "quantile", "quantile": 0.9}}})
    for stage in ("ingest", "train"):
        assert runner.invoke(app, [stage, "-c", str(cfg_path)]).exit_code == 0
    result = runner.invoke(app, ["aoa", "-c", str(cfg_path), "-o", override])
    assert result.exit_code == 0, result.output
    summary = json.loads((tmp_path / "outputs" / "aoa_summary.json").read_text())
    assert summary["train_di"]["threshold_method"] == "quantile"


def test_estimate_writes_di_csv(tmp_path: Path, unit_square):
    pd.DataFrame(unit_square, columns=["a", "b"]).assign(label=[0, 1, 0, 1]).to_csv(tmp_path / "ref.csv", index=False)
    pd.DataFrame([[0.5, 0.5], [100.0, 100.0]], columns=["a", "b"]).to_csv(tmp_path / "tgt.csv", index=False)
    (tmp_path / "w.json").write_text(json.dumps({"weights": {"a": 1.0, "b": 1.0}}))
    out = tmp_path / "aoa.csv"
    result = runner.invoke(app, [
        "estimate", "-r", str(tmp_path / "ref.csv"), "-t", str(tmp_path / "tgt.csv"),
        "-w", str(tmp_path / "w.json"), "--out", str(out),
    ])
    assert result.exit_code == 0, result.output
    df = pd.read_csv(out)
    assert list(df.columns) == ["DI", "AOA"]
    assert df["DI"].iloc[0] == pytest.approx(0.6213, abs=1e-3)
    assert df["AOA"].tolist() == [True, False]


def test_estimate_invalid_input_exits_2(tmp_path: Path):
    pd.DataFrame({"a": [1.0, 1.0, 1.0]}).to_csv(tmp_path / "ref.csv", index=False)
    pd.DataFrame({"a": [np.nan]}).to_csv(tmp_path / "tgt.csv", index=False)
    result = runner.invoke(app, [
        "estimate", "-r", str(tmp_path / "ref.csv"), "-t", str(tmp_path / "tgt.csv"),
        "--out", str(tmp_path / "aoa.csv"),
    ])
    assert result.exit_code == 2
