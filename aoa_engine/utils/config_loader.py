"""
Config loader & resolver

- load_yaml(path): loads YAML into dict (requires PyYAML)
- resolve_config(path, overrides_json): loads and applies optional JSON overrides
- with_defaults(cfg): fills the sections every stage expects

We avoid hard dependencies beyond PyYAML (very common) and standard library.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import yaml
except ImportError as e:
    raise ImportError(
        "PyYAML is required to load configs. Install with: pip install pyyaml"
    ) from e


_DEFAULT_RUN = {"output_dir": "outputs", "random_seed": 42, "n_jobs": 1}


def load_yaml(path: str | Path) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")
    return yaml.safe_load(p.read_text(encoding="utf-8")) or {}


def deep_merge(a: Dict, b: Dict) -> Dict:
    """Recursively merge dict b into a (returns a new dict)."""
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def with_defaults(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Fill the run/pipeline/logging sections if they are missing."""
    out = dict(cfg or {})
    out["run"] = deep_merge(_DEFAULT_RUN, out.get("run") or {})
    out.setdefault("pipeline", {})
    out.setdefault("logging", {"level": "INFO", "to_file": False})
    return out


def resolve_config(path: str | Path, overrides_json: Optional[str] = None) -> Dict:
    cfg = load_yaml(path)
    if overrides_json:
        # Accept a JSON string (e.g. {"pipeline":{"aoa":{"threshold_method":"quantile"}}})
        overrides = json.loads(overrides_json)
        if not isinstance(overrides, dict):
            raise ValueError("Overrides must be a JSON object.")
        cfg = deep_merge(cfg, overrides)
    cfg = with_defaults(cfg)
    cfg["run"].setdefault("config_path", str(Path(path)))
    return cfg
