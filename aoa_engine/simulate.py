# aoa_engine/simulate.py
# Synthetic land-cover scene for exercising the workflow end to end without external data.
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np
import pandas as pd

from .errors import InvalidInput

SPECTRAL_BANDS = ["b1", "b2", "b3", "b4"]
COORD_BANDS = ["x", "y"]


@dataclass
class Scene:
    """
    A synthetic predictor stack with known land cover.

    stack : [6, H, W] float64, bands b1..b4 (smooth spectral fields) then x, y (pixel coords)
    classes : [H, W] int, true land-cover class per pixel
    reference : DataFrame with one column per band plus `label` and `group`
    regions : (row0, row1, col0, col1) per training region, group id = list position
    validation_mask : [H, W] bool, held-out region never sampled for reference
    """
    stack: np.ndarray
    band_names: List[str]
    classes: np.ndarray
    reference: pd.DataFrame
    regions: List[Tuple[int, int, int, int]] = field(default_factory=list)
    validation_mask: np.ndarray = field(default_factory=lambda: np.zeros((0, 0), dtype=bool))

    @property
    def shape(self) -> Tuple[int, int]:
        return int(self.stack.shape[1]), int(self.stack.shape[2])


def _smooth_field(rng: np.random.Generator, h: int, w: int, n_waves: int = 3) -> np.ndarray:
    yy, xx = np.mgrid[0:h, 0:w].astype(np.float64)
    yy /= max(h - 1, 1)
    xx /= max(w - 1, 1)
    out = np.zeros((h, w))
    for _ in range(n_waves):
        fx, fy = rng.uniform(0.3, 2.0, size=2)
        phase = rng.uniform(0, 2 * np.pi)
        amp = rng.uniform(0.5, 1.0)
        out += amp * np.sin(2 * np.pi * (fx * xx + fy * yy) + phase)
    return out + 0.05 * rng.standard_normal((h, w))


def make_scene(
    height: int = 64,
    width: int = 64,
    n_regions: int = 8,
    samples_per_region: int = 20,
    seed: int = 42,
) -> Scene:
    """Build a deterministic scene with clustered training samples.

    Training regions are squares placed in the left three quarters of the scene; the
    validation region is a block in the right-most fifth, so a model that leans on the
    coordinate bands has to extrapolate there.
    """
    if height < 16 or width < 16:
        raise InvalidInput(f"Scene must be at least 16x16, got {height}x{width}.")
    if n_regions < 2:
        raise InvalidInput(f"Need at least 2 training regions, got {n_regions}.")
    rh, rw = max(2, height // 8), max(2, width // 8)
    if samples_per_region < 1 or samples_per_region > rh * rw:
        raise InvalidInput(f"samples_per_region must be in [1, {rh * rw}], got {samples_per_region}.")

    rng = np.random.default_rng(seed)
    spectral = np.stack([_smooth_field(rng, height, width) for _ in SPECTRAL_BANDS])
    yy, xx = np.mgrid[0:height, 0:width].astype(np.float64)
    stack = np.concatenate([spectral, xx[None], yy[None]], axis=0)
    classes = np.argmax(spectral, axis=0).astype(int)

    validation_mask = np.zeros((height, width), dtype=bool)
    validation_mask[height // 4: 3 * height // 4, int(0.8 * width):] = True

    col_limit = int(0.75 * width) - rw
    regions: List[Tuple[int, int, int, int]] = []
    rows: List[np.ndarray] = []
    labels: List[np.ndarray] = []
    groups: List[np.ndarray] = []
    for g in range(n_regions):
        r0 = int(rng.integers(0, height - rh + 1))
        c0 = int(rng.integers(0, col_limit + 1))
        regions.append((r0, r0 + rh, c0, c0 + rw))
        pick = rng.choice(rh * rw, size=samples_per_region, replace=False)
        pr, pc = r0 + pick // rw, c0 + pick % rw
        rows.append(stack[:, pr, pc].T)
        labels.append(classes[pr, pc])
        groups.append(np.full(samples_per_region, g))

    band_names = SPECTRAL_BANDS + COORD_BANDS
    reference = pd.DataFrame(np.vstack(rows), columns=band_names)
    reference["label"] = np.concatenate(labels)
    reference["group"] = np.concatenate(groups)
    return Scene(
        stack=stack,
        band_names=band_names,
        classes=classes,
        reference=reference,
        regions=regions,
        validation_mask=validation_mask,
    )
