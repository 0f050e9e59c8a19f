# aoa_engine/raster.py
# Raster adapter: predictor stacks <-> feature matrices, plus lazy GeoTIFF I/O.
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import numpy as np


def _lazy_rasterio():
    try:
        import rasterio
    except Exception:
        rasterio = None
    return rasterio


def stack_to_matrix(stack: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Flatten a [bands, H, W] stack into a [n_valid, bands] matrix.

    Pixels where any band is NaN/Inf are left out; `valid` is the [H, W] mask of the
    pixels that made it into the matrix (row-major order).
    """
    arr = np.asarray(stack, dtype=np.float64)
    if arr.ndim == 2:
        arr = arr[None, :, :]
    if arr.ndim != 3:
        raise ValueError(f"Expected a [bands, H, W] stack, got shape {arr.shape}.")
    bands, h, w = arr.shape
    flat = arr.reshape(bands, h * w).T
    valid = np.all(np.isfinite(flat), axis=1)
    return flat[valid], valid.reshape(h, w)


def matrix_to_grid(values: np.ndarray, valid: np.ndarray, fill: Any = np.nan) -> np.ndarray:
    """Scatter per-pixel values back into an [H, W] grid; invalid pixels get `fill`."""
    values = np.asarray(values)
    valid = np.asarray(valid, dtype=bool)
    n_valid = int(valid.sum())
    if values.shape[0] != n_valid:
        raise ValueError(f"Got {values.shape[0]} values for {n_valid} valid pixels.")
    dtype = np.result_type(values.dtype, np.asarray(fill).dtype)
    grid = np.full(valid.shape, fill, dtype=dtype)
    grid[valid] = values
    return grid


def read_stack(path: str | Path) -> Tuple[np.ndarray, Optional[Dict[str, Any]]]:
    """Read a predictor stack. `.npy` via NumPy (no profile), anything else via rasterio.

    Returns (stack [bands, H, W] float64, rasterio profile or None). Band descriptions
    from the GeoTIFF, if set, are returned under profile["band_names"].
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Raster not found: {p}")
    if p.suffix.lower() == ".npy":
        arr = np.load(p)
        if arr.ndim == 2:
            arr = arr[None, :, :]
        return arr.astype(np.float64), None
    rasterio = _lazy_rasterio()
    if rasterio is None:
        raise RuntimeError("rasterio is unavailable in this environment (pip install 'aoa-engine[geo]').")
    with rasterio.open(str(p)) as ds:
        data = ds.read(masked=True).astype(np.float64)
        stack = data.filled(np.nan)
        profile = dict(ds.profile)
        profile["band_names"] = [d or f"band_{i + 1}" for i, d in enumerate(ds.descriptions)]
    return stack, profile


def write_grid(path: str | Path, grid: np.ndarray, profile: Dict[str, Any], nodata: Optional[float] = None) -> Path:
    """Write a single-band grid as GeoTIFF using the georeferencing of `profile`."""
    rasterio = _lazy_rasterio()
    if rasterio is None:
        raise RuntimeError("rasterio is unavailable in this environment (pip install 'aoa-engine[geo]').")
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    out = {k: v for k, v in profile.items() if k != "band_names"}
    out.update(
        driver="GTiff",
        height=grid.shape[0],
        width=grid.shape[1],
        count=1,
        dtype=str(grid.dtype),
        nodata=nodata,
    )
    with rasterio.open(str(p), "w", **out) as dst:
        dst.write(grid, 1)
    return p


def read_profile(path: str | Path) -> Optional[Dict[str, Any]]:
    """Georeferencing profile of a raster, or None for `.npy` stacks / missing rasterio."""
    p = Path(path)
    if p.suffix.lower() == ".npy" or not p.exists():
        return None
    rasterio = _lazy_rasterio()
    if rasterio is None:
        return None
    with rasterio.open(str(p)) as ds:
        return dict(ds.profile)
