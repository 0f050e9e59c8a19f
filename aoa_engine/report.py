# FILE: aoa_engine/report.py
# -------------------------------------------------------------------------------------------------
# Stage 4 - Report: random vs. spatial CV and AOA coverage (Markdown + JSON)
#
# Input files (produced by previous stages)
# -----------------------------------------
# {output_dir}/cv_comparison.json   : train
# {output_dir}/importance.json      : train
# {output_dir}/aoa_summary.json     : aoa
#
# Output files
# ------------
# {output_dir}/report.md            : human-readable summary
# {output_dir}/report_summary.json  : machine summary with sha256 hashes of the artifacts
#
# Expected config (subset)
# ------------------------
# cfg["run"]["config_path"]              : str (optional) -> hashed into provenance
# cfg["pipeline"]["report"]["title"]     : str (default "Area of Applicability report")
# -------------------------------------------------------------------------------------------------

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from . import __version__
from .utils.io import output_dir, read_json, require, sha256_file, utc_now_iso, write_json
from .utils.logging_utils import get_logger

_HASHED = [
    "stack.npy",
    "reference.csv",
    "model.joblib",
    "cv_comparison.json",
    "importance.json",
    "train_di.json",
    "aoa_di.npy",
    "aoa_mask.npy",
    "prediction.npy",
    "prediction_masked.npy",
    "aoa_summary.json",
]


def _fmt(v: Optional[float], digits: int = 3) -> str:
    return "n/a" if v is None else f"{v:.{digits}f}"


def _md_lines(title: str, cv: Dict[str, Any], importance: Dict[str, Any], aoa: Dict[str, Any]) -> List[str]:
    tdi = aoa["train_di"]
    lines = [
        f"# {title}",
        "",
        f"- Generated: {utc_now_iso()}",
        f"- aoa-engine: {__version__}",
        "",
        "## Cross-validation",
        "",
        "| Strategy | Folds | Accuracy | Kappa |",
        "|:--|:-:|:-:|:-:|",
    ]
    for name in ("random", "spatial"):
        b = cv[name]
        lines.append(f"| {name} | {b['n_folds']} | {_fmt(b['accuracy'])} | {_fmt(b['kappa'])} |")
    lines += [
        "",
        f"- Optimism of random CV: accuracy {_fmt(cv['optimism']['accuracy'])}, "
        f"kappa {_fmt(cv['optimism']['kappa'])}",
        "",
        f"## Predictor weights ({importance.get('kind', 'model')})",
        "",
    ]
    for n, w in sorted(importance["weights"].items(), key=lambda kv: kv[1], reverse=True):
        lines.append(f"- {n}: {w:.4f}")
    lines += [
        "",
        "## Area of applicability",
        "",
        f"- Threshold ({tdi['threshold_method']}): {_fmt(tdi['threshold'], 4)}",
        f"- Mean reference distance: {_fmt(tdi['mean_distance'], 4)}",
        f"- Reference DI median / max: {_fmt(tdi['train_di_quantiles']['median'], 4)} / "
        f"{_fmt(tdi['train_di_quantiles']['max'], 4)}",
        f"- Fold-aware reference DI: {tdi['fold_aware']}",
        f"- Pixels inside AOA: {aoa['n_inside']} / {aoa['n_valid']} ({100.0 * aoa['fraction_inside']:.1f}%)",
    ]
    if tdi["predictors_dropped"]:
        lines.append(f"- Dropped (zero variance): {', '.join(tdi['predictors_dropped'])}")
    acc = aoa.get("accuracy")
    if acc:
        lines += [
            "",
            "## Accuracy against known classes",
            "",
            "| Area | Pixels inside | Acc. inside | Pixels outside | Acc. outside |",
            "|:--|:-:|:-:|:-:|:-:|",
            f"| scene | {acc['n_inside']} | {_fmt(acc['accuracy_inside'])} | {acc['n_outside']} | "
            f"{_fmt(acc['accuracy_outside'])} |",
        ]
        vr = aoa.get("validation_region")
        if vr:
            lines.append(
                f"| validation region | {vr['n_inside']} | {_fmt(vr['accuracy_inside'])} | {vr['n_outside']} | "
                f"{_fmt(vr['accuracy_outside'])} |"
            )
    lines.append("")
    return lines


def run_report(cfg: Dict[str, Any], prev: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Write report.md and report_summary.json from the train and aoa artifacts.

    Returns the summary dict.
    """
    log = get_logger("aoa.report")
    out_dir = output_dir(cfg)
    cv = read_json(require(out_dir / "cv_comparison.json", "Run `train` first."))
    importance = read_json(require(out_dir / "importance.json", "Run `train` first."))
    aoa = read_json(require(out_dir / "aoa_summary.json", "Run `aoa` first."))

    rcfg = (cfg.get("pipeline") or {}).get("report") or {}
    title = str(rcfg.get("title", "Area of Applicability report"))
    md_path = out_dir / "report.md"
    md_path.write_text("\n".join(_md_lines(title, cv, importance, aoa)), encoding="utf-8")

    config_path = Path(cfg.get("run", {}).get("config_path", "configs/pipeline.yaml"))
    hashes = {name: sha256_file(out_dir / name) for name in _HASHED if (out_dir / name).exists()}
    hashes["report.md"] = sha256_file(md_path)

    summary = {
        "stage": "report",
        "generated_at": utc_now_iso(),
        "version": __version__,
        "config_path": str(config_path),
        "config_hash": sha256_file(config_path) if config_path.exists() else None,
        "report_md": str(md_path),
        "cv": {
            name: {"accuracy": cv[name]["accuracy"], "kappa": cv[name]["kappa"], "n_folds": cv[name]["n_folds"]}
            for name in ("random", "spatial")
        },
        "aoa": {
            "fraction_inside": aoa["fraction_inside"],
            "threshold": aoa["train_di"]["threshold"],
            "threshold_method": aoa["train_di"]["threshold_method"],
        },
        "files_hashes": hashes,
    }
    write_json(out_dir / "report_summary.json", summary)
    log.info("Report complete → %s (%d artifacts hashed)", md_path, len(hashes))
    return summary
