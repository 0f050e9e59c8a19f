# aoa_engine/utils/logging_utils.py
# ======================================================================================
# AOA Engine
# Logging Utilities - Config-driven, reproducible, CI-friendly logging
# --------------------------------------------------------------------------------------
# Purpose
#   One logging setup for the pipeline stages and the CLI:
#     • Configurable level and destinations (console, file, JSONL).
#     • Defaults: INFO to stdout; file logs optional.
#     • Log file names stamped with the run id so runs can be told apart.
#
# Design
#   - init_logging(cfg, run_id): resets the root logger and attaches handlers.
#   - get_logger(name): namespaced logger ("aoa.<stage>").
#
# Dependencies: Python stdlib only (logging, json, datetime, pathlib).
#
# License
#   MIT (c) 2025 AOA Engine contributors
# ======================================================================================

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

_CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class _JSONLogHandler(logging.Handler):
    """
    Writes one JSON object per record (JSONL).
    """

    def __init__(self, path: Path, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.path.open("a", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                "time": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "module": record.module,
                "func": record.funcName,
                "line": record.lineno,
            }
            run_id = getattr(record, "run_id", None)
            if run_id:
                entry["run_id"] = run_id
            self._fh.write(json.dumps(entry, ensure_ascii=False) + "\n")
            self._fh.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        try:
            if not self._fh.closed:
                self._fh.close()
        finally:
            super().close()


def _run_tag(run_id: Optional[str]) -> str:
    return run_id or datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")


def init_logging(cfg: Dict[str, Any], run_id: Optional[str] = None) -> None:
    """
    Configure logging from the config dictionary.

    Parameters
    ----------
    cfg : dict
        Config dictionary (reads the "logging" section: level, to_file, to_json, dir).
    run_id : str, optional
        Run identifier used in log file names.
    """
    log_cfg = cfg.get("logging", {}) if cfg else {}
    level_str = str(log_cfg.get("level", "INFO")).upper()
    level = getattr(logging, level_str, logging.INFO)

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    root.setLevel(level)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(level)
    ch.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    root.addHandler(ch)

    log_dir = Path(log_cfg.get("dir", "logs"))
    if log_cfg.get("to_file", False):
        log_file = log_dir / f"aoa_{_run_tag(run_id)}.log"
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(_FILE_FORMAT))
        root.addHandler(fh)

    if log_cfg.get("to_json", False):
        root.addHandler(_JSONLogHandler(log_dir / f"aoa_{_run_tag(run_id)}.jsonl", level=level))

    root.debug("Logging initialized", extra={"run_id": run_id})


def get_logger(name: str) -> logging.Logger:
    """
    Retrieve a module-specific logger.
    """
    return logging.getLogger(name)
