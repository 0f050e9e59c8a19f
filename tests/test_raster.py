from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from aoa_engine.raster import matrix_to_grid, read_profile, read_stack, stack_to_matrix


def test_stack_to_matrix_skips_nonfinite_pixels():
    stack = np.arange(2 * 2 * 3, dtype=float).reshape(2, 2, 3)
    stack[1, 0, 2] = np.nan
    X, valid = stack_to_matrix(stack)
    assert X.shape == (5, 2)
    assert not valid[0, 2] and valid.sum() == 5
    assert np.array_equal(X[0], [0.0, 6.0])


def test_matrix_to_grid_restores_layout():
    valid = np.array([[True, False], [True, True]])
    grid = matrix_to_grid(np.array([1.0, 2.0, 3.0]), valid)
    assert np.isnan(grid[0, 1])
    assert grid[1, 1] == 3.0
    with pytest.raises(ValueError):
        matrix_to_grid(np.array([1.0]), valid)


def test_read_stack_npy(tmp_path: Path):
    p = tmp_path / "s.npy"
    np.save(p, np.ones((4, 5)))
    stack, profile = read_stack(p)
    assert stack.shape == (1, 4, 5) and profile is None
    assert read_profile(p) is None


def test_read_stack_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        read_stack(tmp_path / "nope.tif")


def test_geotiff_roundtrip(tmp_path: Path):
    rasterio = pytest.importorskip("rasterio")
    from rasterio.transform import from_origin

    from aoa_engine.raster import write_grid

    src = tmp_path / "stack.tif"
    profile = {
        "driver": "GTiff", "height": 4, "width": 3, "count": 2, "dtype": "float32",
        "crs": "EPSG:4326", "transform": from_origin(10.0, 50.0, 0.1, 0.1),
    }
    data = np.arange(24, dtype="float32").reshape(2, 4, 3)
    with rasterio.open(src, "w", **profile) as dst:
        dst.write(data)
        dst.set_band_description(1, "red")
        dst.set_band_description(2, "nir")

    stack, prof = read_stack(src)
    assert stack.shape == (2, 4, 3)
    assert prof["band_names"] == ["red", "nir"]

    out = write_grid(tmp_path / "di.tif", stack[0], prof, nodata=-1.0)
    with rasterio.open(out) as ds:
        assert ds.count == 1 and ds.transform == prof["transform"]
