"""
Shared pytest fixtures for the AOA engine tests.

Creates a minimal pipeline config (synthetic data source) in a temp folder, points
outputs to tmp_path, and provides a loaded config dict via aoa_engine.utils.config_loader.
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict

import numpy as np
import pytest
from aoa_engine.utils.config_loader import load_yaml


_MIN_PIPELINE_YAML = """\
run:
  random_seed: 42
  n_jobs: 1
  output_dir: "{OUT}"

data:
  source: "synthetic"
  synthetic: {height: 32, width: 32, n_regions: 5, samples_per_region: 10}

pipeline:
  ingest: {enabled: true}
  train:
    enabled: true
    cv_folds: 3
    classifier: {n_estimators: 25, importance: "model"}
  aoa:
    enabled: true
    threshold_method: "whisker"
    fold_aware: true
  report:
    enabled: true
    title: "Test report"

logging:
  level: "INFO"
  to_file: false
"""


@pytest.fixture(scope="function")
def cfg_path(tmp_path: Path) -> Path:
    """Writes a minimal pipeline.yaml into tmp_path/configs/ and returns its path."""
    cfg_dir = tmp_path / "configs"
    cfg_dir.mkdir(parents=True, exist_ok=True)
    out_dir = tmp_path / "outputs"
    text = _MIN_PIPELINE_YAML.replace("{OUT}", str(out_dir.as_posix()))
    p = cfg_dir / "pipeline.yaml"
    p.write_text(text, encoding="utf-8")
    return p


@pytest.fixture(scope="function")
def cfg(tmp_path: Path, cfg_path: Path) -> Dict:
    """Loads the YAML produced by cfg_path for convenience."""
    return load_yaml(cfg_path)


@pytest.fixture
def unit_square() -> np.ndarray:
    return np.array([[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [1.0, 1.0]])


@pytest.fixture
def two_regions() -> np.ndarray:
    """Two reference regions at coords (0,0) and (10,10), each a 5x5 spectral grid.

    Region B's grid is offset by 0.125 in s1. Columns: x, y, s1, s2.
    """
    g = np.arange(5) / 4.0
    s1, s2 = np.meshgrid(g, g)
    spectral = np.column_stack([s1.ravel(), s2.ravel()])
    a = np.column_stack([np.zeros((25, 2)), spectral])
    b = np.column_stack([np.full((25, 2), 10.0), spectral + [0.125, 0.0]])
    return np.vstack([a, b])
