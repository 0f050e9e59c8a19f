# FILE: aoa_engine/__main__.py
# =============================================================================
# AOA Engine
# Package entrypoint - enables `python -m aoa_engine` to launch the CLI.
#
#     python -m aoa_engine --help
#     python -m aoa_engine full-run -c configs/pipeline.yaml
#     python -m aoa_engine estimate --reference ref.csv --target tgt.csv
# =============================================================================

from __future__ import annotations

import sys


def _run() -> int:
    """Import and invoke the Typer CLI entrypoint; returns the process exit code."""
    from aoa_engine.cli import main as _cli_main

    _cli_main()
    return 0


if __name__ == "__main__":
    sys.exit(_run())
