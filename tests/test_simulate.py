from __future__ import annotations

import numpy as np
import pytest

from aoa_engine.errors import InvalidInput
from aoa_engine.simulate import make_scene


def test_scene_shapes_and_reference_table():
    scene = make_scene(height=32, width=40, n_regions=4, samples_per_region=6, seed=3)
    assert scene.stack.shape == (6, 32, 40)
    assert scene.shape == (32, 40)
    assert scene.classes.shape == (32, 40)
    assert len(scene.reference) == 24
    assert list(scene.reference.columns) == scene.band_names + ["label", "group"]
    assert scene.reference["group"].nunique() == 4


def test_reference_samples_come_from_their_regions():
    scene = make_scene(height=32, width=32, n_regions=3, samples_per_region=5, seed=11)
    for g, (r0, r1, c0, c1) in enumerate(scene.regions):
        rows = scene.reference[scene.reference["group"] == g]
        assert rows["y"].between(r0, r1 - 1).all()
        assert rows["x"].between(c0, c1 - 1).all()
        labels = scene.classes[rows["y"].astype(int), rows["x"].astype(int)]
        assert np.array_equal(labels, rows["label"].to_numpy())


def test_validation_region_is_never_sampled():
    scene = make_scene(seed=5)
    ys = scene.reference["y"].astype(int).to_numpy()
    xs = scene.reference["x"].astype(int).to_numpy()
    assert scene.validation_mask.any()
    assert not scene.validation_mask[ys, xs].any()


def test_deterministic_per_seed():
    a = make_scene(height=16, width=16, n_regions=2, samples_per_region=3, seed=9)
    b = make_scene(height=16, width=16, n_regions=2, samples_per_region=3, seed=9)
    assert np.array_equal(a.stack, b.stack)
    assert a.reference.equals(b.reference)


def test_rejects_tiny_scene():
    with pytest.raises(InvalidInput):
        make_scene(height=8, width=8)
    with pytest.raises(InvalidInput):
        make_scene(n_regions=1)
