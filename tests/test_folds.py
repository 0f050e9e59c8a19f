from __future__ import annotations

import numpy as np
import pytest

from aoa_engine.errors import InvalidInput
from aoa_engine.folds import fold_indices, random_folds, spatial_folds


def test_random_folds_balanced_and_deterministic():
    a = random_folds(23, 5, seed=1)
    b = random_folds(23, 5, seed=1)
    assert np.array_equal(a, b)
    counts = np.bincount(a)
    assert counts.size == 5 and counts.max() - counts.min() <= 1


def test_spatial_folds_never_split_a_group():
    groups = np.repeat(["a", "b", "c", "d", "e", "f", "g"], 4)
    folds = spatial_folds(groups, 3, seed=7)
    for g in np.unique(groups):
        assert np.unique(folds[groups == g]).size == 1
    assert set(np.unique(folds)) == {0, 1, 2}


def test_fold_builders_reject_bad_k():
    with pytest.raises(InvalidInput):
        random_folds(10, 1)
    with pytest.raises(InvalidInput):
        random_folds(3, 5)
    with pytest.raises(InvalidInput):
        spatial_folds([0, 0, 1, 1], 3)


def test_fold_indices_partition_samples():
    folds = np.array([0, 1, 0, 2, 1, 2])
    pairs = fold_indices(folds)
    assert len(pairs) == 3
    tested = np.sort(np.concatenate([test for _, test in pairs]))
    assert np.array_equal(tested, np.arange(6))
    for train, test in pairs:
        assert not set(train) & set(test)
