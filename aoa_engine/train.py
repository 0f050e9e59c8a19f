"""
Stage 2 - Train: land-cover classifier, random vs. spatial CV, predictor importances

This stage:
- Loads outputs/reference.csv and the band names from outputs/ingest_summary.json.
- Cross-validates a random forest twice: random folds and spatial (group) folds.
- Fits the final model on all reference samples and derives predictor importances,
  which become the AOA weights.
- Writes outputs/model.joblib, outputs/cv_comparison.json, outputs/importance.json.

Expected config (subset)
------------------------
pipeline.train.cv_folds     : int (default 5)
pipeline.train.classifier   : LandCoverConfig fields (n_estimators, importance, ...)
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from .folds import random_folds, spatial_folds
from .models.landcover import LandCoverConfig, LandCoverModel
from .utils.io import output_dir, read_json, require, utc_now_iso, write_json
from .utils.logging_utils import get_logger

_CV_KEYS = ("accuracy", "kappa", "n_folds", "per_fold", "f1_per_class")


def _cv_block(report: Dict[str, Any], fold_ids: np.ndarray) -> Dict[str, Any]:
    block = {k: report[k] for k in _CV_KEYS}
    block["fold_ids"] = [int(f) for f in fold_ids]
    return block


def run_train(cfg: Dict[str, Any], prev: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Run the train stage. Returns the artifact summary dict."""
    log = get_logger("aoa.train")
    out_dir = output_dir(cfg)
    ingest = read_json(require(out_dir / "ingest_summary.json", "Run `ingest` first."))
    ref = pd.read_csv(require(out_dir / "reference.csv", "Run `ingest` first."))

    tcfg = (cfg.get("pipeline") or {}).get("train") or {}
    seed = int(cfg["run"].get("random_seed", 42))
    clf_cfg = dict(tcfg.get("classifier") or {})
    clf_cfg.setdefault("random_state", seed)
    clf_cfg.setdefault("n_jobs", cfg["run"].get("n_jobs", 1))
    model = LandCoverModel(LandCoverConfig.from_dict(clf_cfg))

    predictors = list(ingest["band_names"])
    X = ref[predictors]
    y = ref["label"].to_numpy()
    groups = ref["group"].to_numpy()

    k = int(tcfg.get("cv_folds", 5))
    n_groups = int(np.unique(groups).size)
    k_spatial = min(k, n_groups)
    if k_spatial < k:
        log.warning("Only %d spatial groups; spatial CV uses %d folds instead of %d.", n_groups, k_spatial, k)

    rnd_ids = random_folds(len(ref), k, seed=seed)
    sp_ids = spatial_folds(groups, k_spatial, seed=seed)
    cv_random = model.cross_validate(X, y, rnd_ids)
    cv_spatial = model.cross_validate(X, y, sp_ids)

    comparison = {
        "generated_at": utc_now_iso(),
        "random": _cv_block(cv_random, rnd_ids),
        "spatial": _cv_block(cv_spatial, sp_ids),
        "optimism": {
            "accuracy": cv_random["accuracy"] - cv_spatial["accuracy"],
            "kappa": cv_random["kappa"] - cv_spatial["kappa"],
        },
    }
    cv_path = out_dir / "cv_comparison.json"
    write_json(cv_path, comparison)
    log.info(
        "CV accuracy: random %.3f vs spatial %.3f (kappa %.3f vs %.3f)",
        cv_random["accuracy"], cv_spatial["accuracy"], cv_random["kappa"], cv_spatial["kappa"],
    )

    model.fit(X, y)
    model_path = out_dir / "model.joblib"
    model.save(str(model_path))

    weights = model.feature_importance(X, y)
    imp_path = out_dir / "importance.json"
    write_json(imp_path, {"kind": model.cfg.importance, "weights": weights})
    top = sorted(weights.items(), key=lambda kv: kv[1], reverse=True)[:3]
    log.info("Top predictors: %s", ", ".join(f"{n}={v:.3f}" for n, v in top))

    return {
        "stage": "train",
        "model_file": str(model_path),
        "cv_file": str(cv_path),
        "importance_file": str(imp_path),
        "cv_random_accuracy": cv_random["accuracy"],
        "cv_spatial_accuracy": cv_spatial["accuracy"],
        "num_predictors": len(predictors),
    }
