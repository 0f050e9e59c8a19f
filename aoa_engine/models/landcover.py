# /aoa_engine/models/landcover.py
# ======================================================================================
# AOA Engine
# LandCoverModel - Random-forest land-cover classifier with random vs. spatial CV
# --------------------------------------------------------------------------------------
# Purpose
#   Train the classifier whose predictor importances drive the AOA weighting, and report
#   how optimistic random cross-validation is compared with spatial (group-wise) CV.
#
# Highlights
#   • scikit-learn RandomForestClassifier inside a Pipeline (step name "model").
#   • Metrics in the caret vocabulary: accuracy and Cohen's kappa, plus per-class F1 and a
#     confusion matrix.
#   • CV from explicit fold ids (see aoa_engine.folds) on a fresh clone, with out-of-fold
#     predictions kept for reporting.
#   • Importances: model-native (mean decrease in impurity) or permutation, returned as a
#     predictor -> non-negative weight mapping.
#   • Save/load via joblib (single artifact with config + pipeline + metadata).
#
# License
#   MIT (c) 2025 AOA Engine contributors
# ======================================================================================

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import joblib
import numpy as np
import pandas as pd
from sklearn.base import clone
from sklearn.ensemble import RandomForestClassifier
from sklearn.inspection import permutation_importance
from sklearn.metrics import accuracy_score, cohen_kappa_score, confusion_matrix, f1_score
from sklearn.model_selection import PredefinedSplit, cross_val_predict
from sklearn.pipeline import Pipeline

from ..errors import InvalidInput
from ..utils.logging_utils import get_logger

log = get_logger("aoa.models.landcover")

FORMAT_VERSION = "1.0.0"


@dataclass
class LandCoverConfig:
    """
    Configuration for the random-forest classifier.

    n_estimators : int
        Number of trees.
    max_depth : Optional[int]
        Depth limit per tree (None = unlimited).
    max_features : Union[str, int, float]
        Predictors tried per split ("sqrt" is the randomForest default for classification).
    min_samples_leaf : int
        Minimum samples per leaf.
    class_weight : Optional[str]
        e.g. "balanced" for skewed class frequencies.
    importance : str
        {"model", "permutation"} source of the predictor weights.
    permutation_repeats : int
        Repeats for permutation importance.
    random_state : int
        RNG seed.
    n_jobs : Optional[int]
        Workers for tree building and prediction.
    """
    n_estimators: int = 200
    max_depth: Optional[int] = None
    max_features: Union[str, int, float] = "sqrt"
    min_samples_leaf: int = 1
    class_weight: Optional[str] = None
    importance: str = "model"
    permutation_repeats: int = 5
    random_state: int = 42
    n_jobs: Optional[int] = 1

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "LandCoverConfig":
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in (d or {}).items() if k in known})


def _as_frame(X: Union[np.ndarray, pd.DataFrame], names: Optional[List[str]] = None) -> pd.DataFrame:
    if isinstance(X, pd.DataFrame):
        return X
    arr = np.asarray(X, dtype=np.float64)
    if arr.ndim != 2:
        raise InvalidInput(f"Expected a 2D feature matrix, got ndim={arr.ndim}.")
    cols = names if names is not None else [f"feat_{i}" for i in range(arr.shape[1])]
    return pd.DataFrame(arr, columns=cols)


def classification_report(y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, Any]:
    """Accuracy, kappa, per-class F1 and confusion matrix for a set of predictions."""
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    labels = np.unique(np.concatenate([y_true, y_pred]))
    f1 = f1_score(y_true, y_pred, labels=labels, average=None, zero_division=0)
    return {
        "n": int(y_true.size),
        "accuracy": float(accuracy_score(y_true, y_pred)),
        "kappa": float(cohen_kappa_score(y_true, y_pred)),
        "f1_per_class": {str(c): float(s) for c, s in zip(labels, f1)},
        "labels": [str(c) for c in labels],
        "confusion_matrix": confusion_matrix(y_true, y_pred, labels=labels).tolist(),
    }


class LandCoverModel:
    """
    Random-forest land-cover classifier.

    Typical usage
    -------------
        model = LandCoverModel(LandCoverConfig(n_estimators=300))
        cv_random = model.cross_validate(X, y, random_folds(len(y), 5))
        cv_spatial = model.cross_validate(X, y, spatial_folds(groups, 5))
        model.fit(X, y)
        weights = model.feature_importance(X, y)
    """

    def __init__(self, config: Optional[LandCoverConfig] = None):
        self.cfg = config or LandCoverConfig()
        if self.cfg.importance not in ("model", "permutation"):
            raise InvalidInput(f"Unknown importance kind: {self.cfg.importance!r}.")
        self.pipeline_: Optional[Pipeline] = None
        self.feature_names_in_: Optional[List[str]] = None
        self.classes_: Optional[List[Any]] = None

    # ----------------------------- Public API -----------------------------------------

    def fit(self, X: Union[np.ndarray, pd.DataFrame], y: Sequence) -> "LandCoverModel":
        Xf = _as_frame(X)
        y = np.asarray(y)
        if len(Xf) != y.size:
            raise InvalidInput(f"X has {len(Xf)} rows but y has {y.size} labels.")
        self.feature_names_in_ = [str(c) for c in Xf.columns]
        self.pipeline_ = self._build_pipeline()
        self.pipeline_.fit(Xf, y)
        self.classes_ = list(self.pipeline_.named_steps["model"].classes_)
        log.info("Fitted random forest on %d samples, %d predictors, %d classes",
                 len(Xf), Xf.shape[1], len(self.classes_))
        return self

    def predict(self, X: Union[np.ndarray, pd.DataFrame]) -> np.ndarray:
        self._assert_fitted()
        return self.pipeline_.predict(_as_frame(X, self.feature_names_in_))  # type: ignore[union-attr]

    def evaluate(self, X: Union[np.ndarray, pd.DataFrame], y: Sequence) -> Dict[str, Any]:
        return classification_report(np.asarray(y), self.predict(X))

    def cross_validate(
        self,
        X: Union[np.ndarray, pd.DataFrame],
        y: Sequence,
        fold_ids: Sequence[int],
    ) -> Dict[str, Any]:
        """
        Out-of-fold predictions on an unfitted clone, one fold held out at a time.
        """
        Xf = _as_frame(X)
        y = np.asarray(y)
        folds = np.asarray(fold_ids)
        if folds.shape != (len(Xf),):
            raise InvalidInput(f"Got {folds.size} fold ids for {len(Xf)} samples.")
        n_folds = int(np.unique(folds).size)
        if n_folds < 2:
            raise InvalidInput("Cross-validation needs at least 2 folds.")

        pipe = clone(self._build_pipeline())
        oof = cross_val_predict(pipe, Xf, y, cv=PredefinedSplit(folds), n_jobs=None)

        report = classification_report(y, oof)
        per_fold = []
        for fid in np.unique(folds):
            m = folds == fid
            per_fold.append({
                "fold": int(fid),
                "n": int(m.sum()),
                "accuracy": float(accuracy_score(y[m], oof[m])),
            })
        report.update({"n_folds": n_folds, "per_fold": per_fold, "oof_predictions": oof.tolist()})
        return report

    def feature_importance(
        self,
        X: Optional[Union[np.ndarray, pd.DataFrame]] = None,
        y: Optional[Sequence] = None,
    ) -> Dict[str, float]:
        """
        Predictor -> non-negative importance, in predictor order.

        "model" uses the forest's impurity importances; "permutation" needs X and y and
        clips negative mean drops to zero.
        """
        self._assert_fitted()
        names = list(self.feature_names_in_ or [])
        if self.cfg.importance == "permutation":
            if X is None or y is None:
                raise InvalidInput("Permutation importance needs X and y.")
            r = permutation_importance(
                self.pipeline_, _as_frame(X, names), np.asarray(y),
                n_repeats=self.cfg.permutation_repeats,
                random_state=self.cfg.random_state,
                n_jobs=self.cfg.n_jobs,
            )
            scores = np.clip(r.importances_mean, 0.0, None)
        else:
            scores = np.asarray(self.pipeline_.named_steps["model"].feature_importances_, dtype=float)  # type: ignore[union-attr]
        return {n: float(s) for n, s in zip(names, scores)}

    def save(self, path: str) -> None:
        self._assert_fitted()
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        payload = {
            "config": asdict(self.cfg),
            "feature_names_in": self.feature_names_in_,
            "classes": self.classes_,
            "pipeline": self.pipeline_,
            "format_version": FORMAT_VERSION,
        }
        joblib.dump(payload, path)

    @classmethod
    def load(cls, path: str) -> "LandCoverModel":
        payload = joblib.load(path)
        obj = cls(LandCoverConfig(**payload["config"]))
        obj.feature_names_in_ = payload.get("feature_names_in")
        obj.classes_ = payload.get("classes")
        obj.pipeline_ = payload["pipeline"]
        return obj

    # ----------------------------- Internals ------------------------------------------

    def _build_pipeline(self) -> Pipeline:
        rf = RandomForestClassifier(
            n_estimators=self.cfg.n_estimators,
            max_depth=self.cfg.max_depth,
            max_features=self.cfg.max_features,
            min_samples_leaf=self.cfg.min_samples_leaf,
            class_weight=self.cfg.class_weight,
            random_state=self.cfg.random_state,
            n_jobs=self.cfg.n_jobs,
        )
        return Pipeline([("model", rf)])

    def _assert_fitted(self) -> None:
        if self.pipeline_ is None:
            raise RuntimeError("Model is not fitted yet. Call fit() first.")
