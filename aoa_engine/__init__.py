"""
AOA Engine - Area of Applicability for spatial prediction models

This package implements a four-stage workflow:
1) ingest → predictor stack + reference samples (files or a synthetic scene)
2) train  → random-forest land cover, random vs. spatial cross-validation, importances
3) aoa    → dissimilarity index per pixel, threshold from reference DIs, masked prediction
4) report → Markdown/JSON summary with artifact hashes

The estimator itself (`aoa_engine.models.aoa`) is usable without the pipeline:

    from aoa_engine import estimate_aoa
    res = estimate_aoa(reference, target, weights={"b1": 0.4, "b2": 0.6})

Design goals
------------
- CLI-first: the Typer CLI orchestrates the pipeline.
- Config-driven: everything is controlled via YAML in /configs.
- Reproducible: deterministic seeds, logged runs, JSON artifacts.
"""
from __future__ import annotations

__version__ = "0.1.0"

from .errors import AOAError, DegenerateVariance, InvalidInput
from .models.aoa import AOAConfig, AOAEstimator, AOAResult, TrainDI, estimate_aoa

__all__ = [
    "AOAConfig",
    "AOAEstimator",
    "AOAResult",
    "TrainDI",
    "estimate_aoa",
    "AOAError",
    "InvalidInput",
    "DegenerateVariance",
]
