"""
Stage 3 - AOA: dissimilarity index, applicability mask and masked prediction

This stage:
- Fits the AOAEstimator on outputs/reference.csv, weighting predictors by
  outputs/importance.json. With `fold_aware: true` the reference DIs are computed
  against other spatial CV folds only (fold ids from outputs/cv_comparison.json).
- Scores every valid pixel of outputs/stack.npy and predicts land cover with
  outputs/model.joblib; predictions outside the AOA are masked.
- If the scene's true classes are known (synthetic source), reports accuracy inside
  vs. outside the AOA.

Artifacts
---------
aoa_di.npy              : [H, W] float, NaN = no data
aoa_mask.npy            : [H, W] uint8, 1 inside / 0 outside / 255 no data
prediction.npy          : [H, W] int, index into `classes`, -1 = no data
prediction_masked.npy   : prediction with pixels outside the AOA set to -1
train_di.json           : fitted estimator (AOAEstimator.load reads it back)
aoa_summary.json        : coverage, threshold, reference DI stats, accuracy split
aoa_di.tif, aoa_mask.tif: only when the stack came from a GeoTIFF and rasterio is present
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from .models.aoa import AOAConfig, AOAEstimator
from .models.landcover import LandCoverModel
from .raster import matrix_to_grid, read_profile, stack_to_matrix, write_grid
from .utils.io import output_dir, read_json, require, utc_now_iso, write_json
from .utils.logging_utils import get_logger

NO_CLASS = -1


def _accuracy_split(
    truth: np.ndarray, pred_labels: np.ndarray, mask: np.ndarray, region: Optional[np.ndarray] = None
) -> Dict[str, Any]:
    """Accuracy of predicted vs. true classes, inside and outside the AOA."""
    valid = mask != 255
    if region is not None:
        valid &= region
    inside = valid & (mask == 1)
    outside = valid & (mask == 0)

    def _acc(sel: np.ndarray) -> Optional[float]:
        if not sel.any():
            return None
        return float(np.mean(pred_labels[sel] == truth[sel]))

    return {
        "n_inside": int(inside.sum()),
        "n_outside": int(outside.sum()),
        "accuracy_inside": _acc(inside),
        "accuracy_outside": _acc(outside),
        "accuracy_all": _acc(valid),
    }


def _write_geotiffs(out_dir: Path, stack_source: Optional[str], di: np.ndarray, mask: np.ndarray) -> List[str]:
    log = get_logger("aoa.aoa")
    if not stack_source:
        return []
    profile = read_profile(stack_source)
    if profile is None:
        log.info("No raster profile for %s (or rasterio missing); skipping GeoTIFF export.", stack_source)
        return []
    written = [
        write_grid(out_dir / "aoa_di.tif", di.astype(np.float32), profile, nodata=float("nan")),
        write_grid(out_dir / "aoa_mask.tif", mask, profile, nodata=255),
    ]
    return [str(p) for p in written]


def run_aoa(cfg: Dict[str, Any], prev: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Run the AOA stage. Returns the summary dict (also written to aoa_summary.json)."""
    log = get_logger("aoa.aoa")
    out_dir = output_dir(cfg)
    hint = "Run `ingest` and `train` first."
    ingest = read_json(require(out_dir / "ingest_summary.json", hint))
    ref = pd.read_csv(require(out_dir / "reference.csv", hint))
    stack = np.load(require(out_dir / "stack.npy", hint))
    importance = read_json(require(out_dir / "importance.json", hint))
    model = LandCoverModel.load(str(require(out_dir / "model.joblib", hint)))

    acfg = dict((cfg.get("pipeline") or {}).get("aoa") or {})
    acfg.setdefault("n_jobs", cfg["run"].get("n_jobs", 1))
    fold_aware = bool(acfg.pop("fold_aware", False))
    est = AOAEstimator(AOAConfig.from_dict(acfg))

    predictors = list(ingest["band_names"])
    folds = None
    if fold_aware:
        cv = read_json(require(out_dir / "cv_comparison.json", hint))
        folds = cv["spatial"]["fold_ids"]
    est.fit(ref[predictors], weights=importance["weights"], folds=folds)
    est.save(str(out_dir / "train_di.json"))

    di_grid, aoa_grid = est.predict_raster(stack)
    np.save(out_dir / "aoa_di.npy", di_grid)
    np.save(out_dir / "aoa_mask.npy", aoa_grid)

    # land-cover prediction on the same valid pixels
    X, valid = stack_to_matrix(stack)
    classes = list(model.classes_ or [])
    labels = model.predict(pd.DataFrame(X, columns=predictors))
    pred_idx = np.searchsorted(np.asarray(classes), labels).astype(np.int64)
    prediction = matrix_to_grid(pred_idx, valid, fill=NO_CLASS).astype(np.int64)
    masked = np.where(aoa_grid == 1, prediction, NO_CLASS)
    np.save(out_dir / "prediction.npy", prediction)
    np.save(out_dir / "prediction_masked.npy", masked)

    n_valid = int(valid.sum())
    n_inside = int((aoa_grid == 1).sum())
    summary: Dict[str, Any] = {
        "stage": "aoa",
        "generated_at": utc_now_iso(),
        "classes": [str(c) for c in classes],
        "n_pixels": int(valid.size),
        "n_valid": n_valid,
        "n_inside": n_inside,
        "fraction_inside": float(n_inside / n_valid) if n_valid else 0.0,
        "train_di": est.train_di_.summary(),  # type: ignore[union-attr]
    }

    truth_file = ingest.get("truth_file")
    if truth_file and Path(truth_file).exists():
        truth = np.load(truth_file)
        pred_labels = np.asarray(classes)[np.clip(prediction, 0, None)]
        summary["accuracy"] = _accuracy_split(truth, pred_labels, aoa_grid)
        vm_file = ingest.get("validation_mask_file")
        if vm_file and Path(vm_file).exists():
            region = np.load(vm_file)
            summary["validation_region"] = _accuracy_split(truth, pred_labels, aoa_grid, region)
            summary["validation_region"]["fraction_inside"] = float(
                ((aoa_grid == 1) & region).sum() / max(int(((aoa_grid != 255) & region).sum()), 1)
            )

    summary["geotiffs"] = _write_geotiffs(out_dir, ingest.get("stack_source"), di_grid, aoa_grid)
    write_json(out_dir / "aoa_summary.json", summary)
    log.info(
        "AOA: %d/%d valid pixels inside (%.1f%%), threshold %.4g",
        n_inside, n_valid, 100.0 * summary["fraction_inside"], summary["train_di"]["threshold"],
    )
    return summary
