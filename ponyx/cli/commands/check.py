"""
PONYX CLI Check Command
=======================

Run the whole pipeline over units without writing artifacts.
"""

from __future__ import annotations

from typing import List

from ponyx.cli.commands.build import report_diagnostics, run_units
from ponyx.core.config import CompilerOptions, Config
from ponyx.engine.component import discover


def check_units(
    files: List[str],
    config: Config,
    jobs: int = 1,
    json_output: bool = False,
) -> int:
    """
    Check units.

    Returns:
        Exit code: 0 when every unit compiles, 1 otherwise
    """
    paths = discover(files)
    results = run_units(paths, CompilerOptions.from_config(config), None, jobs)

    failed = report_diagnostics(results, json_output)
    if not json_output:
        for result in results:
            if result.ok:
                print(f"ok  {result.path} ({result.name})")
        print(f"{len(results)} unit(s) checked, {failed} failed")
    return 1 if failed else 0
