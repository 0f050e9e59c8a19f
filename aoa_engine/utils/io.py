"""
Small I/O helpers shared by the pipeline stages (JSON read/write, hashing, timestamps).
"""
from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def write_json(path: str | Path, obj: Any) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(obj, indent=2, ensure_ascii=False), encoding="utf-8")
    return p


def read_json(path: str | Path) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def sha256_file(path: str | Path) -> str:
    h = hashlib.sha256()
    with Path(path).open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return "sha256:" + h.hexdigest()


def sha256_bytes(b: bytes) -> str:
    return "sha256:" + hashlib.sha256(b).hexdigest()


def output_dir(cfg: Dict[str, Any]) -> Path:
    """Resolve and create cfg["run"]["output_dir"]."""
    out = Path(cfg["run"]["output_dir"]).resolve()
    out.mkdir(parents=True, exist_ok=True)
    return out


def require(path: Path, hint: str) -> Path:
    """Raise FileNotFoundError with a stage hint if an upstream artifact is missing."""
    if not path.exists():
        raise FileNotFoundError(f"Missing {path.name}. {hint}")
    return path
