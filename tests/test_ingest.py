from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from aoa_engine.errors import InvalidInput
from aoa_engine.ingest import run_ingest


def test_ingest_synthetic_writes_stack_and_reference(tmp_path: Path, cfg):
    cfg["run"]["output_dir"] = str((tmp_path / "outputs").as_posix())
    art = run_ingest(cfg)
    stack = np.load(art["stack_file"])
    assert stack.shape == (6, 32, 32)
    ref = pd.read_csv(art["reference_file"])
    assert len(ref) == 50
    assert {"label", "group"} <= set(ref.columns)
    assert art["band_names"] == ["b1", "b2", "b3", "b4", "x", "y"]
    summary = json.loads((tmp_path / "outputs" / "ingest_summary.json").read_text())
    assert summary["num_groups"] == 5
    assert Path(summary["truth_file"]).exists()


def test_ingest_files_source(tmp_path: Path, cfg):
    stack = np.random.default_rng(0).normal(size=(3, 10, 12))
    np.save(tmp_path / "stack.npy", stack)
    pd.DataFrame(
        {"red": [0.1, 0.2, 0.3], "nir": [0.5, 0.4, 0.6], "slope": [1.0, 2.0, 3.0],
         "cls": ["forest", "water", "forest"], "plot": [1, 1, 2]}
    ).to_csv(tmp_path / "ref.csv", index=False)
    cfg["run"]["output_dir"] = str((tmp_path / "outputs").as_posix())
    cfg["data"] = {
        "source": "files",
        "stack": str(tmp_path / "stack.npy"),
        "reference": str(tmp_path / "ref.csv"),
        "band_names": ["red", "nir", "slope"],
        "label_column": "cls",
        "group_column": "plot",
    }
    art = run_ingest(cfg)
    ref = pd.read_csv(art["reference_file"])
    assert list(ref.columns) == ["red", "nir", "slope", "label", "group"]
    assert art["classes"] == ["forest", "water"]
    assert art["truth_file"] is None


def test_ingest_files_missing_predictor_column(tmp_path: Path, cfg):
    np.save(tmp_path / "stack.npy", np.zeros((2, 4, 4)))
    pd.DataFrame({"a": [1.0, 2.0], "label": [0, 1]}).to_csv(tmp_path / "ref.csv", index=False)
    cfg["run"]["output_dir"] = str((tmp_path / "outputs").as_posix())
    cfg["data"] = {"source": "files", "stack": str(tmp_path / "stack.npy"), "reference": str(tmp_path / "ref.csv")}
    with pytest.raises(InvalidInput):
        run_ingest(cfg)


def test_ingest_unknown_source(tmp_path: Path, cfg):
    cfg["run"]["output_dir"] = str((tmp_path / "outputs").as_posix())
    cfg["data"] = {"source": "s3"}
    with pytest.raises(ValueError):
        run_ingest(cfg)
