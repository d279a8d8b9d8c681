"""
PONYX CLI
=========

Command-line interface for the PONYX compiler.

Commands:
- build: Compile units to JSON artifacts or host source
- check: Run the pipeline and report diagnostics only
- graph: Print the binding to fragment dependency graph of a unit
"""

from ponyx.cli.main import main, cli

__all__ = ["main", "cli"]
