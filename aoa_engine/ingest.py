"""
Stage 1 - Ingest: predictor stack & reference samples

This stage:
- Loads the predictor stack ([bands, H, W]) from `.npy` or GeoTIFF, and the reference
  samples from CSV (one column per predictor, plus `label` and `group`).
- Or, with `data.source: synthetic`, builds a deterministic synthetic scene
  (see aoa_engine.simulate) and also writes its true class grid.
- Writes outputs/stack.npy, outputs/reference.csv and outputs/ingest_summary.json.

Expected config (subset)
------------------------
data.source            : "synthetic" | "files"
data.synthetic         : {height, width, n_regions, samples_per_region}
data.stack             : path to .npy or GeoTIFF (files)
data.reference         : path to CSV (files)
data.band_names        : optional list, overrides names from the raster
data.label_column      : default "label"
data.group_column      : default "group"
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from .errors import InvalidInput
from .raster import read_stack
from .simulate import make_scene
from .utils.io import output_dir, utc_now_iso, write_json
from .utils.logging_utils import get_logger


def _band_names(cfg_data: Dict[str, Any], n_bands: int, profile: Optional[Dict[str, Any]]) -> List[str]:
    names = cfg_data.get("band_names")
    if names is None and profile is not None:
        names = profile.get("band_names")
    if names is None:
        names = [f"b{i + 1}" for i in range(n_bands)]
    names = [str(n) for n in names]
    if len(names) != n_bands:
        raise InvalidInput(f"Got {len(names)} band names for a stack with {n_bands} bands.")
    return names


def _load_reference(path: Path, predictors: List[str], label_col: str, group_col: str) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Reference table not found: {path}")
    df = pd.read_csv(path)
    missing = [c for c in predictors + [label_col] if c not in df.columns]
    if missing:
        raise InvalidInput(f"Reference table {path.name} lacks columns {missing}.")
    out = df[predictors].astype(np.float64)
    out["label"] = df[label_col].to_numpy()
    if group_col in df.columns:
        out["group"] = df[group_col].to_numpy()
    else:
        get_logger("aoa.ingest").warning(
            "Reference table has no '%s' column; every sample is its own spatial group.", group_col
        )
        out["group"] = np.arange(len(df))
    return out


def run_ingest(cfg: Dict[str, Any], prev: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Run the ingest stage. Returns the artifact summary dict."""
    log = get_logger("aoa.ingest")
    out_dir = output_dir(cfg)
    data = cfg.get("data") or {}
    source = str(data.get("source", "synthetic")).lower()

    truth_path: Optional[Path] = None
    validation_path: Optional[Path] = None
    stack_source: Optional[str] = None
    if source == "synthetic":
        syn = data.get("synthetic") or {}
        scene = make_scene(
            height=int(syn.get("height", 64)),
            width=int(syn.get("width", 64)),
            n_regions=int(syn.get("n_regions", 8)),
            samples_per_region=int(syn.get("samples_per_region", 20)),
            seed=int(cfg["run"].get("random_seed", 42)),
        )
        stack, band_names, reference = scene.stack, scene.band_names, scene.reference
        truth_path = out_dir / "truth.npy"
        np.save(truth_path, scene.classes)
        validation_path = out_dir / "validation_mask.npy"
        np.save(validation_path, scene.validation_mask)
    elif source == "files":
        stack_source = str(Path(data["stack"]).resolve())
        stack, profile = read_stack(stack_source)
        band_names = _band_names(data, stack.shape[0], profile)
        reference = _load_reference(
            Path(data["reference"]),
            band_names,
            str(data.get("label_column", "label")),
            str(data.get("group_column", "group")),
        )
    else:
        raise ValueError(f"Unknown data.source: {source!r} (expected 'synthetic' or 'files').")

    if len(reference) < 2:
        raise InvalidInput(f"Need at least 2 reference samples, got {len(reference)}.")

    stack_path = out_dir / "stack.npy"
    np.save(stack_path, stack)
    ref_path = out_dir / "reference.csv"
    reference.to_csv(ref_path, index=False)

    summary = {
        "stage": "ingest",
        "generated_at": utc_now_iso(),
        "source": source,
        "stack_file": str(stack_path),
        "stack_source": stack_source,
        "reference_file": str(ref_path),
        "band_names": band_names,
        "shape": [int(s) for s in stack.shape],
        "num_reference": int(len(reference)),
        "num_groups": int(reference["group"].nunique()),
        "classes": sorted(str(c) for c in pd.unique(reference["label"])),
        "truth_file": str(truth_path) if truth_path else None,
        "validation_mask_file": str(validation_path) if validation_path else None,
    }
    write_json(out_dir / "ingest_summary.json", summary)
    log.info(
        "Ingest (%s): stack %s, %d reference samples in %d groups → %s",
        source, "x".join(str(s) for s in stack.shape), summary["num_reference"], summary["num_groups"], out_dir,
    )
    return summary
