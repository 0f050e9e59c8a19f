# /aoa_engine/models/__init__.py
# ======================================================================================
# AOA Engine
# models package - import surface and a small name -> factory registry
# --------------------------------------------------------------------------------------
# Public surface
#   • AOAEstimator, AOAConfig, AOAResult, TrainDI, estimate_aoa
#   • LandCoverModel, LandCoverConfig
#
# Registry keys (aliases)
#   "aoa", "aoa_estimator"
#   "landcover", "rf_classifier"
#
# License
# -------
# MIT (c) 2025 AOA Engine contributors
# ======================================================================================

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from .aoa import AOAConfig, AOAEstimator, AOAResult, TrainDI, estimate_aoa
from .landcover import LandCoverConfig, LandCoverModel

__all__ = [
    "AOAConfig",
    "AOAEstimator",
    "AOAResult",
    "TrainDI",
    "estimate_aoa",
    "LandCoverConfig",
    "LandCoverModel",
    "create_model",
    "list_models",
]


def _make_aoa(cfg: Optional[Dict[str, Any]] = None) -> AOAEstimator:
    return AOAEstimator(AOAConfig.from_dict(cfg))


def _make_landcover(cfg: Optional[Dict[str, Any]] = None) -> LandCoverModel:
    return LandCoverModel(LandCoverConfig.from_dict(cfg))


_REGISTRY: Dict[str, Callable[..., Any]] = {
    "aoa": _make_aoa,
    "aoa_estimator": _make_aoa,
    "landcover": _make_landcover,
    "rf_classifier": _make_landcover,
}


def list_models() -> List[str]:
    """Registered model keys, sorted."""
    return sorted(_REGISTRY)


def create_model(name: str, cfg: Optional[Dict[str, Any]] = None) -> Any:
    """Instantiate a model by registry key from a plain config dict.

    Unknown keys in `cfg` are ignored; unknown model names raise KeyError.
    """
    key = name.strip().lower()
    if key not in _REGISTRY:
        raise KeyError(f"Unknown model '{name}'. Available: {', '.join(list_models())}")
    return _REGISTRY[key](cfg)
