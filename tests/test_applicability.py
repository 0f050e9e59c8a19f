from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from aoa_engine.applicability import run_aoa
from aoa_engine.ingest import run_ingest
from aoa_engine.models.aoa import AOAEstimator
from aoa_engine.train import run_train


def test_aoa_stage_writes_grids_and_summary(tmp_path: Path, cfg):
    out = tmp_path / "outputs"
    cfg["run"]["output_dir"] = str(out.as_posix())
    run_ingest(cfg)
    run_train(cfg)
    summary = run_aoa(cfg)

    di = np.load(out / "aoa_di.npy")
    mask = np.load(out / "aoa_mask.npy")
    pred = np.load(out / "prediction.npy")
    masked = np.load(out / "prediction_masked.npy")
    assert di.shape == mask.shape == pred.shape == (32, 32)
    assert set(np.unique(mask)) <= {0, 1}
    assert np.all(masked[mask == 0] == -1)
    assert np.array_equal(masked[mask == 1], pred[mask == 1])
    assert np.all((di <= summary["train_di"]["threshold"]) == (mask == 1))

    assert 0.0 <= summary["fraction_inside"] <= 1.0
    assert summary["train_di"]["fold_aware"] is True
    assert "accuracy" in summary and "validation_region" in summary
    assert json.loads((out / "aoa_summary.json").read_text())["n_valid"] == 32 * 32

    est = AOAEstimator.load(str(out / "train_di.json"))
    assert est.train_di_.threshold == pytest.approx(summary["train_di"]["threshold"])


def test_aoa_stage_requires_train(tmp_path: Path, cfg):
    cfg["run"]["output_dir"] = str((tmp_path / "outputs").as_posix())
    run_ingest(cfg)
    with pytest.raises(FileNotFoundError):
        run_aoa(cfg)
