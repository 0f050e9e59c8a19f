# /aoa_engine/models/aoa.py
# ======================================================================================
# AOA Engine
# AOAEstimator - Area of Applicability via a weighted nearest-neighbour dissimilarity index
# --------------------------------------------------------------------------------------
# What this is
# ------------
# Given a reference (training) feature matrix, the predictor importances of the model that
# was trained on it, and a target (prediction-domain) feature matrix, compute per target
# sample:
#   • DI  : weighted nearest-neighbour distance to the reference set, divided by the mean
#           pairwise distance inside the reference set
#   • AOA : True iff DI <= threshold, where the threshold is derived from the reference
#           set's own leave-one-out DI distribution
#
# Steps
# -----
#   1) mean / sample std per predictor from the reference set only
#   2) standardize reference and target with those parameters
#   3) multiply each column by weight / mean(weight)
#   4) d̄ = mean pairwise distance over the scaled reference set
#   5) reference DI = leave-one-out NN distance / d̄   (optionally: NN in another CV fold)
#   6) threshold from the reference DI distribution ("whisker" = Q3 + 1.5 * IQR by default)
#   7) target DI = NN distance to the reference set / d̄
#   8) AOA = DI <= threshold
#
# Design goals
# ------------
#   • Numpy-first API; pandas DataFrames accepted (column order defines predictor order)
#   • Fail fast on NaN/Inf, shape mismatch, negative weights (InvalidInput)
#   • Zero-variance predictors dropped with a warning, or DegenerateVariance by policy
#   • Deterministic; target scoring chunked and parallel (joblib threads), order preserved
#   • Save/Load of the fitted state as JSON with versioned metadata
#
# License
# -------
# MIT (c) 2025 AOA Engine contributors
# ======================================================================================

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.metrics import pairwise_distances_chunked
from sklearn.neighbors import NearestNeighbors

from ..errors import DegenerateVariance, InvalidInput
from ..raster import matrix_to_grid, stack_to_matrix
from ..utils.logging_utils import get_logger

log = get_logger("aoa.models.aoa")

API_FORMAT_VERSION = "1.0.0"
THRESHOLD_METHODS = ("whisker", "boxplot", "quantile", "fixed")
DEGENERATE_POLICIES = ("drop", "raise")

# Relative tolerance under which a reference column counts as constant.
_STD_RTOL = 1e-12

ArrayLike = Union[np.ndarray, pd.DataFrame, Sequence[Sequence[float]]]
WeightsLike = Union[Mapping, Sequence[float], np.ndarray, pd.Series, None]


# ======================================================================================
# Input coercion
# ======================================================================================

def _as_matrix(X: ArrayLike, what: str) -> Tuple[np.ndarray, Optional[List[str]]]:
    """
    Return (float64 copy of X, column names or None). Validates 2D shape and finiteness.
    """
    names: Optional[List[str]] = None
    if isinstance(X, pd.DataFrame):
        names = [str(c) for c in X.columns]
        values = X.to_numpy()
    else:
        values = X
    try:
        arr = np.array(values, dtype=np.float64, copy=True)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"{what} must be numeric: {e}") from e
    if arr.ndim != 2:
        raise InvalidInput(f"{what} must be a 2D [n_samples, n_predictors] matrix, got ndim={arr.ndim}.")
    if arr.shape[1] == 0:
        raise InvalidInput(f"{what} has zero predictors.")
    if not np.all(np.isfinite(arr)):
        bad = int((~np.isfinite(arr)).any(axis=1).sum())
        raise InvalidInput(f"{what} contains NaN/Inf values in {bad} sample(s).")
    return arr, names


def _align_columns(X: ArrayLike, feature_names: List[str], what: str) -> np.ndarray:
    """
    Coerce X and put its columns in the fitted predictor order.
    DataFrames are matched by name; plain arrays must already have the same width.
    """
    if isinstance(X, pd.DataFrame):
        missing = [f for f in feature_names if f not in set(map(str, X.columns))]
        if missing:
            raise InvalidInput(f"{what} is missing predictors {missing}.")
        X = X.rename(columns=str)[feature_names]
    arr, _ = _as_matrix(X, what)
    if arr.shape[1] != len(feature_names):
        raise InvalidInput(
            f"{what} has {arr.shape[1]} predictors, reference has {len(feature_names)}."
        )
    return arr


def _resolve_weights(weights: WeightsLike, feature_names: List[str]) -> np.ndarray:
    """
    Raw (unnormalized) weight per predictor, in predictor order.
    """
    p = len(feature_names)
    if weights is None:
        return np.ones(p, dtype=np.float64)
    if isinstance(weights, Mapping) or isinstance(weights, pd.Series):
        lookup = {str(k): v for k, v in weights.items()}
        missing = [f for f in feature_names if f not in lookup]
        if missing:
            raise InvalidInput(f"Weights are missing predictors {missing}.")
        extra = sorted(set(lookup) - set(feature_names))
        if extra:
            log.debug("Ignoring weights for unknown predictors: %s", extra)
        raw = [lookup[f] for f in feature_names]
    else:
        raw = list(np.asarray(weights).reshape(-1))
        if len(raw) != p:
            raise InvalidInput(f"Got {len(raw)} weights for {p} predictors.")
    try:
        w = np.asarray(raw, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"Weights must be numeric: {e}") from e
    if not np.all(np.isfinite(w)):
        raise InvalidInput("Weights contain NaN/Inf.")
    if np.any(w < 0):
        neg = [f for f, v in zip(feature_names, w) if v < 0]
        raise InvalidInput(f"Weights must be non-negative; negative for {neg}.")
    return w


# ======================================================================================
# Pure numerical helpers
# ======================================================================================

@dataclass
class ScalingParams:
    """Per-predictor centre and spread, computed from the reference set only."""
    mean: np.ndarray
    std: np.ndarray

    def degenerate(self) -> np.ndarray:
        """Boolean mask of predictors with (numerically) zero spread."""
        return self.std <= _STD_RTOL * np.maximum(1.0, np.abs(self.mean))

    def to_dict(self) -> Dict[str, List[float]]:
        return {"mean": self.mean.tolist(), "std": self.std.tolist()}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ScalingParams":
        return cls(mean=np.asarray(d["mean"], dtype=np.float64), std=np.asarray(d["std"], dtype=np.float64))


def compute_scaling(reference: np.ndarray) -> ScalingParams:
    """
    Column means and sample standard deviations (ddof=1) of the reference matrix.
    """
    R = np.asarray(reference, dtype=np.float64)
    if R.ndim != 2 or R.shape[0] < 2:
        raise InvalidInput("Scaling needs a 2D reference matrix with at least 2 samples.")
    return ScalingParams(mean=R.mean(axis=0), std=R.std(axis=0, ddof=1))


def normalize_weights(weights: np.ndarray) -> np.ndarray:
    """
    Divide weights by their mean so differently weighted models share a distance scale.
    """
    w = np.asarray(weights, dtype=np.float64)
    if w.size == 0:
        raise InvalidInput("No weights to normalize.")
    m = float(w.mean())
    if not m > 0.0:
        raise InvalidInput("All predictor weights are zero.")
    return w / m


def reference_distance_summary(
    Z: np.ndarray,
    folds: Optional[np.ndarray] = None,
    n_jobs: Optional[int] = None,
    working_memory: Optional[int] = None,
) -> Tuple[np.ndarray, float]:
    """
    One chunked pass over the scaled reference matrix.

    Returns
    -------
    nn : (n,) nearest-neighbour distance of each row to any OTHER row
         (to any row of another fold when `folds` is given)
    mean_distance : mean distance over all unordered pairs of rows
    """
    Z = np.asarray(Z, dtype=np.float64)
    n = Z.shape[0]
    if n < 2:
        raise InvalidInput("Reference set must contain at least 2 samples.")
    if folds is not None:
        folds = np.asarray(folds)
        if folds.shape != (n,):
            raise InvalidInput(f"Got {folds.shape[0] if folds.ndim else 0} fold ids for {n} reference samples.")

    nn = np.empty(n, dtype=np.float64)
    total = 0.0
    start = 0
    chunks = pairwise_distances_chunked(
        Z, metric="minkowski", p=2, n_jobs=n_jobs, working_memory=working_memory
    )
    for D in chunks:
        rows = D.shape[0]
        idx = np.arange(start, start + rows)
        # Self-distances are exact zeros, so the row sums only add real pairs.
        total += float(D.sum())
        D[np.arange(rows), idx] = np.inf
        if folds is not None:
            D[folds[idx][:, None] == folds[None, :]] = np.inf
        nn[start:start + rows] = D.min(axis=1)
        start += rows

    if np.any(np.isinf(nn)):
        orphan = int(np.isinf(nn).sum())
        raise InvalidInput(f"{orphan} reference sample(s) have no neighbour outside their own fold.")
    return nn, total / (n * (n - 1))


def mean_pairwise_distance(Z: np.ndarray) -> float:
    """Mean Euclidean distance over all unordered pairs of rows of Z."""
    return reference_distance_summary(Z)[1]


def reference_nn_distances(Z: np.ndarray, folds: Optional[np.ndarray] = None) -> np.ndarray:
    """Leave-one-out (or leave-fold-out) nearest-neighbour distance for every row of Z."""
    return reference_distance_summary(Z, folds=folds)[0]


def _nn_chunk(index: NearestNeighbors, chunk: np.ndarray) -> np.ndarray:
    dist, _ = index.kneighbors(chunk, n_neighbors=1, return_distance=True)
    return dist[:, 0]


def target_nn_distances(
    index: NearestNeighbors,
    Z: np.ndarray,
    chunk_size: int = 4096,
    n_jobs: Optional[int] = 1,
) -> np.ndarray:
    """
    Nearest-reference distance for each row of Z.

    Z is split into contiguous chunks scored independently against the read-only index;
    joblib returns results in submission order, so concatenation restores row order.
    """
    Z = np.asarray(Z, dtype=np.float64)
    n = Z.shape[0]
    if n == 0:
        return np.empty(0, dtype=np.float64)
    step = max(1, int(chunk_size))
    starts = range(0, n, step)
    if n_jobs in (None, 1) or n <= step:
        parts = [_nn_chunk(index, Z[s:s + step]) for s in starts]
    else:
        parts = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_nn_chunk)(index, Z[s:s + step]) for s in starts
        )
    return np.concatenate(parts)


def resolve_threshold(
    train_di: np.ndarray,
    method: str = "whisker",
    iqr_multiplier: float = 1.5,
    quantile: float = 0.95,
    fixed: Optional[float] = None,
) -> float:
    """
    AOA threshold from the reference DI distribution.

    method:
      - 'whisker'  : Q3 + iqr_multiplier * IQR
      - 'boxplot'  : largest reference DI not above the whisker
      - 'quantile' : the given quantile of the reference DIs
      - 'fixed'    : `fixed`, as is
    """
    m = str(method).lower().strip()
    if m == "fixed":
        if fixed is None:
            raise InvalidInput("threshold_method='fixed' needs fixed_threshold.")
        return float(fixed)
    d = np.asarray(train_di, dtype=np.float64).reshape(-1)
    d = d[np.isfinite(d)]
    if d.size == 0:
        raise InvalidInput("No reference DI values to derive a threshold from.")
    if m in ("whisker", "boxplot"):
        q1, q3 = np.percentile(d, [25.0, 75.0])
        upper = float(q3 + iqr_multiplier * (q3 - q1))
        if m == "whisker":
            return upper
        return float(d[d <= upper].max())
    if m == "quantile":
        if not 0.0 <= quantile <= 1.0:
            raise InvalidInput(f"quantile must be in [0, 1], got {quantile}.")
        return float(np.quantile(d, quantile))
    raise InvalidInput(f"Unknown threshold method: {method!r}. Use one of {THRESHOLD_METHODS}.")


# ======================================================================================
# Config & results
# ======================================================================================

@dataclass
class AOAConfig:
    """
    Parameters controlling the AOAEstimator.

    threshold_method : str
        {'whisker','boxplot','quantile','fixed'}
    iqr_multiplier : float
        Whisker length in IQRs ('whisker'/'boxplot').
    quantile : float
        Quantile of reference DIs ('quantile').
    fixed_threshold : Optional[float]
        Threshold used as is ('fixed').
    on_degenerate : str
        {'drop','raise'} for zero-variance reference predictors.
    n_jobs : Optional[int]
        Workers for target scoring and the reference distance pass.
    chunk_size : int
        Target rows per scoring chunk.
    working_memory : Optional[int]
        MiB per reference distance chunk (None = scikit-learn default).
    nn_algorithm : str
        Neighbour index used for target queries (scikit-learn NearestNeighbors algorithm).
    """
    threshold_method: str = "whisker"
    iqr_multiplier: float = 1.5
    quantile: float = 0.95
    fixed_threshold: Optional[float] = None
    on_degenerate: str = "drop"
    n_jobs: Optional[int] = 1
    chunk_size: int = 4096
    working_memory: Optional[int] = None
    nn_algorithm: str = "kd_tree"

    def validate(self) -> "AOAConfig":
        if self.threshold_method not in THRESHOLD_METHODS:
            raise InvalidInput(f"Unknown threshold method: {self.threshold_method!r}.")
        if self.on_degenerate not in DEGENERATE_POLICIES:
            raise InvalidInput(f"on_degenerate must be one of {DEGENERATE_POLICIES}.")
        if self.iqr_multiplier < 0:
            raise InvalidInput("iqr_multiplier must be >= 0.")
        if not 0.0 <= self.quantile <= 1.0:
            raise InvalidInput(f"quantile must be in [0, 1], got {self.quantile}.")
        if self.chunk_size < 1:
            raise InvalidInput("chunk_size must be >= 1.")
        if self.threshold_method == "fixed" and self.fixed_threshold is None:
            raise InvalidInput("threshold_method='fixed' needs fixed_threshold.")
        return self

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "AOAConfig":
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in (d or {}).items() if k in known}).validate()


@dataclass
class TrainDI:
    """
    Fitted state of the estimator: everything needed to score new samples.
    """
    feature_names: List[str]
    scaling: ScalingParams
    weights: np.ndarray          # normalized; 0 for dropped predictors
    active: np.ndarray           # predictors contributing to distances
    dropped: List[str]
    mean_distance: float
    train_di: np.ndarray
    threshold: float
    threshold_method: str
    reference: np.ndarray        # scaled reference matrix
    folds: Optional[np.ndarray] = None

    def summary(self) -> Dict[str, Any]:
        d = self.train_di
        q = np.quantile(d, [0.0, 0.25, 0.5, 0.75, 0.9, 0.95, 1.0])
        return {
            "n_reference": int(d.size),
            "n_predictors": len(self.feature_names),
            "predictors_used": [f for f, a in zip(self.feature_names, self.active) if a],
            "predictors_dropped": list(self.dropped),
            "weights": {f: float(w) for f, w in zip(self.feature_names, self.weights)},
            "mean_distance": float(self.mean_distance),
            "threshold": float(self.threshold),
            "threshold_method": self.threshold_method,
            "fold_aware": self.folds is not None,
            "train_di_quantiles": {
                k: float(v) for k, v in zip(["min", "q25", "median", "q75", "q90", "q95", "max"], q)
            },
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature_names": list(self.feature_names),
            "scaling": self.scaling.to_dict(),
            "weights": self.weights.tolist(),
            "active": [bool(a) for a in self.active],
            "dropped": list(self.dropped),
            "mean_distance": float(self.mean_distance),
            "train_di": self.train_di.tolist(),
            "threshold": float(self.threshold),
            "threshold_method": self.threshold_method,
            "reference": self.reference.tolist(),
            "folds": None if self.folds is None else self.folds.tolist(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TrainDI":
        return cls(
            feature_names=[str(f) for f in d["feature_names"]],
            scaling=ScalingParams.from_dict(d["scaling"]),
            weights=np.asarray(d["weights"], dtype=np.float64),
            active=np.asarray(d["active"], dtype=bool),
            dropped=list(d.get("dropped", [])),
            mean_distance=float(d["mean_distance"]),
            train_di=np.asarray(d["train_di"], dtype=np.float64),
            threshold=float(d["threshold"]),
            threshold_method=str(d["threshold_method"]),
            reference=np.asarray(d["reference"], dtype=np.float64),
            folds=None if d.get("folds") is None else np.asarray(d["folds"]),
        )


@dataclass
class AOAResult:
    """Per-target dissimilarity index and applicability flag."""
    di: np.ndarray
    aoa: np.ndarray
    threshold: float

    @property
    def fraction_inside(self) -> float:
        if self.aoa.size == 0:
            return 0.0
        return float(self.aoa.mean())

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"DI": self.di, "AOA": self.aoa.astype(bool)})


# ======================================================================================
# Estimator
# ======================================================================================

class AOAEstimator:
    """
    Area of Applicability estimator.

    Typical usage
    -------------
        est = AOAEstimator(AOAConfig(threshold_method="whisker"))
        est.fit(X_train, weights=model.feature_importance())
        res = est.predict(X_pixels)
        res.di, res.aoa, res.fraction_inside
    """

    def __init__(self, config: Optional[AOAConfig] = None):
        self.config = (config or AOAConfig()).validate()
        self.train_di_: Optional[TrainDI] = None
        self._index: Optional[NearestNeighbors] = None

    # --------------------------------- Core API ---------------------------------------

    def fit(
        self,
        reference: ArrayLike,
        weights: WeightsLike = None,
        feature_names: Optional[Sequence[str]] = None,
        folds: Optional[Sequence[Any]] = None,
    ) -> "AOAEstimator":
        R, df_names = _as_matrix(reference, "Reference")
        n, p = R.shape
        if n < 2:
            raise InvalidInput(f"Reference set must contain at least 2 samples, got {n}.")
        if feature_names is not None:
            names = [str(f) for f in list(feature_names)]
        else:
            names = df_names or [f"feat_{i}" for i in range(p)]
        if len(names) != p:
            raise InvalidInput(f"Got {len(names)} predictor names for {p} predictor columns.")
        if len(set(names)) != p:
            raise InvalidInput("Predictor names must be unique.")

        raw_w = _resolve_weights(weights, names)
        scaling = compute_scaling(R)
        degenerate = scaling.degenerate()
        dropped = [f for f, d in zip(names, degenerate) if d]
        if dropped:
            if self.config.on_degenerate == "raise":
                raise DegenerateVariance(f"Zero variance in reference predictors {dropped}.", dropped)
            log.warning("Dropping zero-variance predictors from the AOA: %s", dropped)

        usable = ~degenerate
        if not np.any(usable & (raw_w > 0)):
            if dropped:
                raise DegenerateVariance(
                    "No weighted predictor with non-zero variance is left after dropping "
                    f"{dropped}.", dropped
                )
            raise InvalidInput("All predictor weights are zero.")

        w = np.zeros(p, dtype=np.float64)
        w[usable] = normalize_weights(raw_w[usable])
        active = usable & (w > 0)

        fold_ids = None if folds is None else np.asarray(folds)
        self.train_di_ = TrainDI(
            feature_names=names,
            scaling=scaling,
            weights=w,
            active=active,
            dropped=dropped,
            mean_distance=0.0,
            train_di=np.empty(0),
            threshold=float("nan"),
            threshold_method=self.config.threshold_method,
            reference=np.empty((0, p)),
            folds=fold_ids,
        )
        Zr = self.transform(R, what="Reference")
        nn, mean_dist = reference_distance_summary(
            Zr, folds=fold_ids, n_jobs=self.config.n_jobs, working_memory=self.config.working_memory
        )
        if not mean_dist > 0.0:
            raise InvalidInput("All reference samples are identical in the weighted predictors.")

        train_di = nn / mean_dist
        threshold = resolve_threshold(
            train_di,
            method=self.config.threshold_method,
            iqr_multiplier=self.config.iqr_multiplier,
            quantile=self.config.quantile,
            fixed=self.config.fixed_threshold,
        )
        tdi = self.train_di_
        tdi.mean_distance = float(mean_dist)
        tdi.train_di = train_di
        tdi.threshold = threshold
        tdi.reference = Zr
        self._build_index()
        log.info(
            "AOA fitted on %d reference samples, %d/%d predictors active, d̄=%.4g, threshold=%.4g (%s)",
            n, int(active.sum()), p, mean_dist, threshold, self.config.threshold_method,
        )
        return self

    def transform(self, X: ArrayLike, what: str = "Target") -> np.ndarray:
        """
        Standardize with the reference parameters and apply normalized weights.
        Dropped predictors come out as zero columns.
        """
        tdi = self._fitted()
        A = _align_columns(X, tdi.feature_names, what)
        std = np.where(tdi.active, tdi.scaling.std, 1.0)
        Z = (A - tdi.scaling.mean) / std
        return Z * tdi.weights

    def dissimilarity(self, X: ArrayLike) -> np.ndarray:
        tdi = self._fitted()
        Z = self.transform(X)
        d = target_nn_distances(self._index, Z, chunk_size=self.config.chunk_size, n_jobs=self.config.n_jobs)
        return d / tdi.mean_distance

    def predict(self, X: ArrayLike) -> AOAResult:
        tdi = self._fitted()
        di = self.dissimilarity(X)
        res = AOAResult(di=di, aoa=di <= tdi.threshold, threshold=tdi.threshold)
        log.info("AOA: %d/%d target samples inside (%.1f%%)",
                 int(res.aoa.sum()), res.aoa.size, 100.0 * res.fraction_inside)
        return res

    def predict_raster(self, stack: np.ndarray, fill: float = np.nan) -> Tuple[np.ndarray, np.ndarray]:
        """
        Score every valid pixel of a [bands, H, W] stack (bands in predictor order).

        Returns
        -------
        di_grid  : [H, W] float, `fill` where any band is non-finite
        aoa_grid : [H, W] uint8, 1 inside / 0 outside / 255 no data
        """
        X, valid = stack_to_matrix(stack)
        res = self.predict(X)
        di_grid = matrix_to_grid(res.di, valid, fill=fill)
        aoa_grid = matrix_to_grid(res.aoa.astype(np.uint8), valid, fill=255).astype(np.uint8)
        return di_grid, aoa_grid

    # -------------------------------- Persistence -------------------------------------

    def save(self, path: str) -> None:
        tdi = self._fitted()
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        blob = {
            "format_version": API_FORMAT_VERSION,
            "config": asdict(self.config),
            "train_di": tdi.to_dict(),
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(blob, f, indent=2)

    @classmethod
    def load(cls, path: str) -> "AOAEstimator":
        with open(path, "r", encoding="utf-8") as f:
            blob = json.load(f)
        obj = cls(AOAConfig.from_dict(blob.get("config")))
        obj.train_di_ = TrainDI.from_dict(blob["train_di"])
        obj._build_index()
        return obj

    # -------------------------------- Internals ---------------------------------------

    def _fitted(self) -> TrainDI:
        if self.train_di_ is None:
            raise RuntimeError("AOAEstimator not fitted.")
        return self.train_di_

    def _build_index(self) -> None:
        tdi = self._fitted()
        self._index = NearestNeighbors(n_neighbors=1, algorithm=self.config.nn_algorithm)
        self._index.fit(tdi.reference)


# ======================================================================================
# One-call convenience
# ======================================================================================

def estimate_aoa(
    reference: ArrayLike,
    target: ArrayLike,
    weights: WeightsLike = None,
    config: Optional[AOAConfig] = None,
    feature_names: Optional[Sequence[str]] = None,
    folds: Optional[Sequence[Any]] = None,
) -> AOAResult:
    """
    Fit on `reference` and score `target` in one call.
    """
    est = AOAEstimator(config).fit(reference, weights=weights, feature_names=feature_names, folds=folds)
    return est.predict(target)
