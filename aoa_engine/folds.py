"""
Fold builders for random vs. spatial cross-validation.

Random folds deal individual samples into k folds. Spatial folds deal whole groups
(training polygons, clusters, regions) so that no group is split between training and
validation, which is what makes the error estimate honest for unseen locations.

Fold ids are plain integer arrays; `fold_indices` turns them into the
(train_idx, test_idx) pairs scikit-learn expects.
"""
from __future__ import annotations

from typing import List, Sequence, Tuple

import numpy as np

from .errors import InvalidInput


def random_folds(n: int, k: int, seed: int = 42) -> np.ndarray:
    """Balanced random fold id (0..k-1) for each of n samples."""
    if k < 2:
        raise InvalidInput(f"Need at least 2 folds, got {k}.")
    if n < k:
        raise InvalidInput(f"Cannot split {n} samples into {k} folds.")
    rng = np.random.default_rng(seed)
    ids = np.arange(n) % k
    rng.shuffle(ids)
    return ids


def spatial_folds(groups: Sequence, k: int, seed: int = 42) -> np.ndarray:
    """Fold id per sample such that every group lands in exactly one fold.

    Unique groups are shuffled and dealt round-robin into k folds.
    """
    if k < 2:
        raise InvalidInput(f"Need at least 2 folds, got {k}.")
    g = np.asarray(groups)
    if g.ndim != 1 or g.size == 0:
        raise InvalidInput("groups must be a non-empty 1D sequence.")
    uniq, inverse = np.unique(g, return_inverse=True)
    if uniq.size < k:
        raise InvalidInput(f"Cannot build {k} spatial folds from {uniq.size} groups.")
    rng = np.random.default_rng(seed)
    order = rng.permutation(uniq.size)
    group_fold = np.empty(uniq.size, dtype=int)
    group_fold[order] = np.arange(uniq.size) % k
    return group_fold[inverse]


def fold_indices(fold_ids: Sequence[int]) -> List[Tuple[np.ndarray, np.ndarray]]:
    """(train_idx, test_idx) per fold, folds in ascending id order."""
    f = np.asarray(fold_ids)
    out = []
    for fid in np.unique(f):
        test = np.flatnonzero(f == fid)
        train = np.flatnonzero(f != fid)
        out.append((train, test))
    return out
