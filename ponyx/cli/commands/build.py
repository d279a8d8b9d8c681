"""
PONYX CLI Build Command
=======================

Compile units to artifacts.

Each unit is compiled independently; with ``--jobs N`` units are spread over
a process pool, one worker call per unit, and results are reported in input
order. A failing unit produces a diagnostic and no artifact; other units are
unaffected.
"""

from __future__ import annotations

import sys
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import orjson

from ponyx.core.config import CompilerOptions, Config
from ponyx.engine.component import Component, discover_relative
from ponyx.engine.errors import PonyxError
from ponyx.utils.logger import get_logger

logger = get_logger("ponyx.cli.build")

SUFFIXES = {"json": ".json", "source": ".rs"}


@dataclass
class UnitResult:
    """
    Outcome of compiling one unit.

    Only plain data crosses the process boundary: the artifact as bytes,
    the diagnostic as its dict and rendered text.
    """
    path: str
    name: Optional[str] = None
    artifact: Optional[bytes] = None
    diagnostic: Optional[Dict[str, Any]] = None
    rendered: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.diagnostic is None


def compile_path(path: str, options: CompilerOptions, fmt: Optional[str] = None) -> UnitResult:
    """
    Compile one unit file.

    Args:
        path: Unit file
        options: Compiler options
        fmt: ``"json"``, ``"source"`` or None to skip rendering the artifact
    """
    try:
        generated = Component.from_file(path, options).compile()
    except PonyxError as e:
        return UnitResult(path=path, diagnostic=e.to_dict(), rendered=e.render())

    artifact: Optional[bytes] = None
    if fmt == "json":
        artifact = generated.to_json()
    elif fmt == "source":
        artifact = generated.render_source().encode("utf-8")
    return UnitResult(path=path, name=generated.name, artifact=artifact)


def run_units(
    paths: Iterable[Path],
    options: CompilerOptions,
    fmt: Optional[str] = None,
    jobs: int = 1,
) -> List[UnitResult]:
    """Compile units, in a process pool when ``jobs > 1``; input order is kept."""
    paths = [str(path) for path in paths]
    if jobs > 1 and len(paths) > 1:
        with ProcessPoolExecutor(max_workers=jobs) as pool:
            futures = [pool.submit(compile_path, path, options, fmt) for path in paths]
            return [future.result() for future in futures]
    return [compile_path(path, options, fmt) for path in paths]


def report_diagnostics(results: List[UnitResult], json_output: bool = False) -> int:
    """
    Print diagnostics of failed units.

    Returns:
        Number of failed units
    """
    failed = [result for result in results if not result.ok]
    if json_output:
        sys.stdout.write(orjson.dumps([r.diagnostic for r in failed], option=orjson.OPT_INDENT_2).decode() + "\n")
    else:
        for result in failed:
            print(result.rendered, file=sys.stderr)
    return len(failed)


def artifact_targets(units: List[Tuple[Path, Path]], output: Path, fmt: str) -> List[Path]:
    """
    Target file of every unit: its path relative to the argument that
    named it, mirrored under ``output`` with the format's suffix.
    """
    return [output / relative.with_suffix(SUFFIXES[fmt]) for _, relative in units]


def find_collisions(units: List[Tuple[Path, Path]], targets: List[Path]) -> Dict[Path, List[str]]:
    """Targets claimed by more than one unit, with the units claiming them."""
    claims: Dict[Path, List[str]] = {}
    for (path, _), target in zip(units, targets):
        claims.setdefault(target, []).append(str(path))
    return {target: paths for target, paths in claims.items() if len(paths) > 1}


def build_units(
    files: List[str],
    config: Config,
    out_dir: Optional[str] = None,
    fmt: str = "json",
    jobs: int = 1,
    json_output: bool = False,
) -> int:
    """
    Build units.

    With an output directory, each artifact mirrors its unit's path
    relative to the argument that named it. Units that would share an
    artifact fail the build before anything is compiled.

    Args:
        files: Unit files or directories
        config: Configuration
        out_dir: Output directory; artifacts go to stdout when None
        fmt: ``"json"`` or ``"source"``
        jobs: Number of worker processes
        json_output: Print diagnostics as JSON

    Returns:
        Exit code
    """
    if fmt not in SUFFIXES:
        print(f"Error: unknown format {fmt!r}", file=sys.stderr)
        return 1

    options = CompilerOptions.from_config(config)
    units = discover_relative(files)
    output = Path(out_dir) if out_dir else None

    targets: List[Optional[Path]] = [None] * len(units)
    if output is not None:
        targets = list(artifact_targets(units, output, fmt))
        collisions = find_collisions(units, targets)
        if collisions:
            for target, paths in collisions.items():
                logger.debug("Artifact collision", target=str(target), units=",".join(paths))
                print(f"Error: {' and '.join(paths)} would both be written to {target}", file=sys.stderr)
            return 1

    with logger.timed("Build finished", units=len(units), format=fmt, jobs=jobs) as summary:
        results = run_units((path for path, _ in units), options, fmt, jobs)

        for result, target in zip(results, targets):
            if not result.ok or result.artifact is None:
                continue
            if target is None:
                sys.stdout.write(result.artifact.decode("utf-8"))
                if not result.artifact.endswith(b"\n"):
                    sys.stdout.write("\n")
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(result.artifact)
                logger.debug("Wrote artifact", unit=result.path, target=str(target))

        failed = report_diagnostics(results, json_output)
        summary["failed"] = failed
    return 1 if failed else 0
