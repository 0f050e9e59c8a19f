# FILE: aoa_engine/cli.py
# =============================================================================
# AOA Engine - Typer CLI
#
# Commands
# --------
#   version            Package version + config hash
#   env                Environment snapshot (python, platform, library versions)
#   effective-config   Emit the fully resolved config (after overrides) as JSON or YAML
#   selftest           Config sanity + a unit-square estimator check
#   full-run           ingest → train → aoa → report, with run_manifest.json
#   ingest | train | aoa | report   Single stages
#   estimate           Standalone AOA over reference/target CSV files
#
# Logging controls on every pipeline command:
#   --run-id auto|<str>   → stamps file/JSON logs with a run id (auto = ts + git short hash)
#   --log-level LEVEL     → overrides config.logging.level
#   --log-file/--no-log-file, --log-json/--no-log-json → force on/off regardless of config
#
# Usage examples
# --------------
#   python -m aoa_engine full-run -c configs/pipeline.yaml --run-id auto --log-file
#   python -m aoa_engine aoa -c configs/pipeline.yaml -o '{"pipeline":{"aoa":{"threshold_method":"quantile"}}}'
#   python -m aoa_engine estimate --reference ref.csv --target pixels.csv --weights importance.json --out aoa.csv
# =============================================================================

from __future__ import annotations

import hashlib
import json
import platform
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
import typer
import yaml

from . import __version__
from .applicability import run_aoa
from .errors import AOAError
from .ingest import run_ingest
from .models.aoa import AOAConfig, estimate_aoa
from .report import run_report
from .train import run_train
from .utils.config_loader import resolve_config
from .utils.io import read_json, sha256_bytes, sha256_file, utc_now_iso, write_json
from .utils.logging_utils import get_logger, init_logging

app = typer.Typer(add_completion=False, help="AOA Engine - Area of Applicability pipeline CLI")

STAGES = ["ingest", "train", "aoa", "report"]
_RUNNERS = {"ingest": run_ingest, "train": run_train, "aoa": run_aoa, "report": run_report}

# =============================================================================
# Helpers - provenance
# =============================================================================


def _safe_get(d: Dict, *keys, default=None):
    cur = d
    for k in keys:
        if not isinstance(cur, dict) or k not in cur:
            return default
        cur = cur[k]
    return cur


def _repo_files_for_hash(
    roots: Iterable[Path],
    include_ext: Tuple[str, ...] = (".py", ".yaml", ".yml", ".toml"),
    exclude_dirs: Tuple[str, ...] = ("__pycache__", ".venv", "venv", "outputs"),
) -> List[Path]:
    files: List[Path] = []
    for root in roots:
        if not root.exists():
            continue
        for p in root.rglob("*"):
            if p.is_file() and p.suffix.lower() in include_ext and not set(p.parts) & set(exclude_dirs):
                files.append(p)
    files.sort()
    return files


def _hash_tree(files: List[Path]) -> Dict[str, Any]:
    h = hashlib.sha256()
    for p in files:
        h.update(sha256_file(p).encode("utf-8"))
    return {"tree_hash": "sha256:" + h.hexdigest(), "count": len(files)}


def _env_snapshot_dict() -> Dict[str, Any]:
    import joblib
    import sklearn

    return {
        "python": sys.version.replace("\n", " "),
        "platform": platform.platform(),
        "executable": sys.executable,
        "cwd": str(Path.cwd()),
        "aoa_engine": __version__,
        "numpy": np.__version__,
        "pandas": pd.__version__,
        "scikit_learn": sklearn.__version__,
        "joblib": joblib.__version__,
    }


def _record_run_manifest(
    out_dir: Path,
    artifacts: Dict[str, Any],
    cfg_path: Optional[Path],
    extra: Optional[Dict[str, Any]] = None,
) -> Path:
    run_info = {
        "version": __version__,
        "timestamp_utc": utc_now_iso(),
        "config_path": str(cfg_path.as_posix()) if cfg_path else None,
        "config_hash": sha256_file(cfg_path) if cfg_path and cfg_path.exists() else None,
        "artifacts": artifacts,
        "environment": _env_snapshot_dict(),
    }
    if extra:
        run_info.update(extra)
    return write_json(out_dir / "run_manifest.json", run_info)


# =============================================================================
# Run-id & Logging overrides
# =============================================================================


def _git_short_hash() -> Optional[str]:
    try:
        out = subprocess.check_output(["git", "rev-parse", "--short", "HEAD"], stderr=subprocess.DEVNULL)
        return out.decode("utf-8").strip()
    except (OSError, subprocess.CalledProcessError):
        return None


def _auto_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    g = _git_short_hash()
    return f"{ts}_{g}" if g else ts


def _merge_logging_overrides(cfg: Dict[str, Any],
                             level: Optional[str],
                             to_file: Optional[bool],
                             to_json: Optional[bool]) -> Dict[str, Any]:
    c = dict(cfg or {})
    lc = dict(c.get("logging", {}) or {})
    if level:
        lc["level"] = level
    if to_file is not None:
        lc["to_file"] = bool(to_file)
    if to_json is not None:
        lc["to_json"] = bool(to_json)
    lc.setdefault("dir", "logs")
    c["logging"] = lc
    return c


def _bootstrap_logging(cfg: Dict[str, Any],
                       run_id: Optional[str],
                       level: Optional[str],
                       to_file: Optional[bool],
                       to_json: Optional[bool]) -> Tuple[Dict[str, Any], str]:
    """
    Apply CLI logging overrides, compute run_id (auto|str), and initialize logging.
    Returns (merged_cfg, resolved_run_id).
    """
    merged = _merge_logging_overrides(cfg, level, to_file, to_json)
    rid = _auto_run_id() if (run_id == "auto" or not run_id) else run_id
    init_logging(merged, run_id=rid)
    log = get_logger("aoa.cli")
    log.info("[RunMeta] run_id=%s cfg_hash=%s", rid, sha256_bytes(json.dumps(merged, sort_keys=True).encode("utf-8")))
    return merged, rid


# =============================================================================
# Core CLI Commands
# =============================================================================


@app.command("version")
def cli_version(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to pipeline config YAML.")
):
    cfg_hash = None
    if config and Path(config).exists():
        cfg_hash = sha256_file(Path(config))
    payload = {"aoa_engine_version": __version__, "config_hash": cfg_hash, "timestamp_utc": utc_now_iso()}
    typer.echo(json.dumps(payload, indent=2))


@app.command("env")
def cli_env():
    typer.echo(json.dumps(_env_snapshot_dict(), indent=2))


@app.command("selftest")
def cli_selftest(
    config: str = typer.Option(..., "--config", "-c", help="Path to pipeline config YAML."),
    run_id: str = typer.Option("auto", "--run-id", help='Run identifier ("auto" => timestamp+git).'),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override logging level (e.g. INFO, DEBUG)."),
    log_file: Optional[bool] = typer.Option(None, "--log-file/--no-log-file", help="Enable/disable file logging."),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--no-log-json", help="Enable/disable JSONL logging."),
):
    """
    Check that the config has the sections every stage reads and that the estimator
    reproduces the unit-square reference value (centre of the square: DI ≈ 0.621).
    """
    cfg = resolve_config(config)
    cfg, rid = _bootstrap_logging(cfg, run_id, log_level, log_file, log_json)
    out_dir = Path(cfg["run"]["output_dir"]).resolve()
    out_dir.mkdir(parents=True, exist_ok=True)
    log = get_logger("aoa.cli")

    required_sections = ["run", "data", "pipeline"]
    missing = [s for s in required_sections if s not in cfg]

    corners = np.array([[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [1.0, 1.0]])
    res = estimate_aoa(corners, np.array([[0.5, 0.5]]))
    di_centre = float(res.di[0])
    estimator_ok = abs(di_centre - 0.6213) < 1e-3 and bool(res.aoa[0])

    report = {
        "timestamp_utc": utc_now_iso(),
        "run_id": rid,
        "config_path": str(Path(config).resolve().as_posix()),
        "config_hash": sha256_file(Path(config)),
        "output_dir": str(out_dir.as_posix()),
        "status": "ok" if not missing and estimator_ok else "failed",
        "missing_sections": missing,
        "unit_square_di": di_centre,
        "environment": _env_snapshot_dict(),
    }
    write_json(out_dir / "selftest_report.json", report)
    if missing:
        log.error("Selftest found missing sections: %s", missing)
        raise typer.Exit(code=2)
    if not estimator_ok:
        log.error("Selftest estimator check failed: unit-square DI=%.4f", di_centre)
        raise typer.Exit(code=2)
    log.info("Selftest passed. → %s", (out_dir / "selftest_report.json").as_posix())


@app.command("effective-config")
def cli_effective_config(
    config: str = typer.Option(..., "--config", "-c", help="Path to YAML config."),
    overrides: Optional[str] = typer.Option(None, "--override", "-o", help="JSON string of overrides."),
    out: Optional[str] = typer.Option(None, "--out", help="Write resolved config to this path (json|yaml)."),
):
    """
    Render the fully-resolved config (after JSON overrides).
    """
    cfg = resolve_config(config, overrides_json=overrides)
    if out:
        outp = Path(out)
        outp.parent.mkdir(parents=True, exist_ok=True)
        if outp.suffix.lower() in (".yml", ".yaml"):
            outp.write_text(yaml.safe_dump(cfg, sort_keys=False), encoding="utf-8")
        else:
            write_json(outp, cfg)
        typer.echo(f"Wrote resolved config → {outp.as_posix()}")
    else:
        typer.echo(json.dumps(cfg, indent=2))


# ------------------------------- STAGES ---------------------------------------


@app.command("full-run")
def full_run(
    config: str = typer.Option(..., "--config", "-c", help="Path to pipeline config YAML."),
    overrides: Optional[str] = typer.Option(None, "--override", "-o", help='JSON string of overrides.'),
    resume_from: Optional[str] = typer.Option(None, "--resume-from", help="ingest|train|aoa|report"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview stages without executing."),
    run_id: str = typer.Option("auto", "--run-id", help='Run identifier ("auto" => timestamp+git).'),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override logging level (e.g. INFO, DEBUG)."),
    log_file: Optional[bool] = typer.Option(None, "--log-file/--no-log-file", help="Enable/disable file logging."),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--no-log-json", help="Enable/disable JSONL logging."),
):
    cfg = resolve_config(config, overrides_json=overrides)
    cfg, rid = _bootstrap_logging(cfg, run_id, log_level, log_file, log_json)
    out_dir = Path(cfg["run"]["output_dir"]).resolve()
    out_dir.mkdir(parents=True, exist_ok=True)
    log = get_logger("aoa.cli")
    log.info("=== AOA :: FULL RUN :: run_id=%s ===", rid)
    artifacts: Dict[str, Any] = {"run_id": rid}

    order = list(STAGES)
    if resume_from:
        resume_from = resume_from.strip().lower()
        if resume_from not in order:
            raise typer.BadParameter("resume-from must be one of: " + "|".join(STAGES))
        order = order[order.index(resume_from):]

    def _would_run(stage: str) -> bool:
        if not _safe_get(cfg, "pipeline", stage, "enabled", default=True):
            log.warning("%s stage disabled by config.", stage.capitalize())
            return False
        return True

    plan = [s for s in order if _would_run(s)]
    if dry_run:
        typer.echo(json.dumps({"plan": plan, "resume_from": resume_from, "dry_run": True, "run_id": rid}, indent=2))
        return

    prev = None
    for stage in plan:
        prev = _RUNNERS[stage](cfg, prev=prev)
        artifacts[stage] = prev

    code_tree = _hash_tree(_repo_files_for_hash([Path(__file__).resolve().parent, Path("configs")]))
    manifest_path = _record_run_manifest(
        out_dir=out_dir, artifacts=artifacts, cfg_path=Path(config), extra={"code_tree": code_tree}
    )
    log.info("Full run completed. Artifacts manifest → %s", manifest_path.as_posix())


def _stage_entry(
    stage_name: str,
    config: str,
    overrides: Optional[str],
    dry_run: bool,
    run_id: str,
    log_level: Optional[str],
    log_file: Optional[bool],
    log_json: Optional[bool],
):
    cfg = resolve_config(config, overrides_json=overrides)
    cfg, rid = _bootstrap_logging(cfg, run_id, log_level, log_file, log_json)
    if dry_run:
        typer.echo(json.dumps({"stage": stage_name, "dry_run": True, "run_id": rid}, indent=2))
        return None
    return _RUNNERS[stage_name](cfg)


@app.command("ingest")
def cli_ingest(
    config: str = typer.Option(..., "--config", "-c"),
    overrides: Optional[str] = typer.Option(None, "--override", "-o"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without executing."),
    run_id: str = typer.Option("auto", "--run-id", help='Run identifier ("auto" => timestamp+git).'),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
    log_file: Optional[bool] = typer.Option(None, "--log-file/--no-log-file"),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--no-log-json"),
):
    _stage_entry("ingest", config, overrides, dry_run, run_id, log_level, log_file, log_json)


@app.command("train")
def cli_train(
    config: str = typer.Option(..., "--config", "-c"),
    overrides: Optional[str] = typer.Option(None, "--override", "-o"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without executing."),
    run_id: str = typer.Option("auto", "--run-id"),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
    log_file: Optional[bool] = typer.Option(None, "--log-file/--no-log-file"),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--no-log-json"),
):
    _stage_entry("train", config, overrides, dry_run, run_id, log_level, log_file, log_json)


@app.command("aoa")
def cli_aoa(
    config: str = typer.Option(..., "--config", "-c"),
    overrides: Optional[str] = typer.Option(None, "--override", "-o"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without executing."),
    run_id: str = typer.Option("auto", "--run-id"),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
    log_file: Optional[bool] = typer.Option(None, "--log-file/--no-log-file"),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--no-log-json"),
):
    _stage_entry("aoa", config, overrides, dry_run, run_id, log_level, log_file, log_json)


@app.command("report")
def cli_report(
    config: str = typer.Option(..., "--config", "-c"),
    overrides: Optional[str] = typer.Option(None, "--override", "-o"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without executing."),
    run_id: str = typer.Option("auto", "--run-id"),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
    log_file: Optional[bool] = typer.Option(None, "--log-file/--no-log-file"),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--no-log-json"),
):
    _stage_entry("report", config, overrides, dry_run, run_id, log_level, log_file, log_json)


# =============================================================================
# Standalone estimator
# =============================================================================


def _load_weights(path: Optional[str]) -> Optional[Dict[str, float]]:
    if not path:
        return None
    blob = read_json(path)
    # accepts a bare mapping or the train stage's importance.json
    if isinstance(blob, dict) and isinstance(blob.get("weights"), dict):
        blob = blob["weights"]
    if not isinstance(blob, dict):
        raise typer.BadParameter("weights JSON must be an object of predictor -> weight.")
    return {str(k): float(v) for k, v in blob.items()}


@app.command("estimate")
def cli_estimate(
    reference: str = typer.Option(..., "--reference", "-r", help="CSV of reference (training) samples."),
    target: str = typer.Option(..., "--target", "-t", help="CSV of samples to score."),
    weights: Optional[str] = typer.Option(None, "--weights", "-w", help="JSON predictor -> weight mapping."),
    columns: Optional[str] = typer.Option(None, "--columns", help="Comma-separated predictor columns."),
    folds_column: Optional[str] = typer.Option(None, "--folds-column", help="Reference column with CV fold ids."),
    threshold_method: str = typer.Option("whisker", "--threshold-method", help="whisker|boxplot|quantile|fixed"),
    quantile: float = typer.Option(0.95, "--quantile"),
    fixed_threshold: Optional[float] = typer.Option(None, "--fixed-threshold"),
    n_jobs: int = typer.Option(1, "--n-jobs"),
    out: str = typer.Option("aoa.csv", "--out", help="Output CSV with DI and AOA columns."),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
):
    """
    Fit on the reference CSV and write the dissimilarity index and AOA flag per target row.
    """
    init_logging({"logging": {"level": log_level or "INFO"}})
    log = get_logger("aoa.cli")
    ref = pd.read_csv(reference)
    tgt = pd.read_csv(target)

    if columns:
        predictors = [c.strip() for c in columns.split(",") if c.strip()]
    else:
        skip = {"label", "group", folds_column}
        predictors = [
            c for c in ref.columns
            if c not in skip and c in tgt.columns and pd.api.types.is_numeric_dtype(ref[c])
        ]
    missing = [c for c in predictors if c not in ref.columns or c not in tgt.columns]
    if missing or not predictors:
        typer.secho(f"Predictor columns missing from reference/target: {missing or 'none selected'}",
                    fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)

    folds = ref[folds_column].to_numpy() if folds_column else None
    try:
        cfg = AOAConfig(
            threshold_method=threshold_method,
            quantile=quantile,
            fixed_threshold=fixed_threshold,
            n_jobs=n_jobs,
        ).validate()
        res = estimate_aoa(ref[predictors], tgt[predictors], weights=_load_weights(weights), config=cfg, folds=folds)
    except AOAError as e:
        typer.secho(f"AOA failed: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)

    outp = Path(out)
    outp.parent.mkdir(parents=True, exist_ok=True)
    res.to_frame().to_csv(outp, index=False)
    summary = {
        "out": str(outp),
        "n_target": int(res.di.size),
        "n_inside": int(res.aoa.sum()),
        "fraction_inside": res.fraction_inside,
        "threshold": res.threshold,
        "predictors": predictors,
    }
    log.info("Wrote %d rows → %s", summary["n_target"], outp.as_posix())
    typer.echo(json.dumps(summary, indent=2))


# =============================================================================
# Entrypoint
# =============================================================================


@app.callback(invoke_without_command=False)
def _root() -> None:
    """AOA Engine - CLI entrypoint."""
    return


def main() -> None:
    app()


if __name__ == "__main__":
    main()
