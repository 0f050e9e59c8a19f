from __future__ import annotations

import json
from pathlib import Path

from aoa_engine.applicability import run_aoa
from aoa_engine.ingest import run_ingest
from aoa_engine.report import run_report
from aoa_engine.train import run_train


def test_report_summarises_cv_and_aoa(tmp_path: Path, cfg, cfg_path):
    out = tmp_path / "outputs"
    cfg["run"]["output_dir"] = str(out.as_posix())
    cfg["run"]["config_path"] = str(cfg_path)
    run_ingest(cfg)
    run_train(cfg)
    run_aoa(cfg)
    summary = run_report(cfg)

    md = Path(summary["report_md"]).read_text(encoding="utf-8")
    assert md.startswith("# Test report")
    assert "| random |" in md and "| spatial |" in md
    assert "Pixels inside AOA" in md

    saved = json.loads((out / "report_summary.json").read_text())
    assert saved["config_hash"].startswith("sha256:")
    assert {"aoa_mask.npy", "train_di.json", "report.md"} <= set(saved["files_hashes"])
    assert saved["aoa"]["threshold_method"] == "whisker"
