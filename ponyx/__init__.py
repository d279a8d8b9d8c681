"""
PONYX - Reactive Component Compiler
===================================

A compile-time transpiler for components written as hybrid JSX and
Svelte-style block markup embedded in Rust-like host source. Each unit is
parsed, its bindings classified, its markup analyzed into reactive fragments
and finally lowered to a host struct with fine-grained update actions.

Features:
---------
- Mixed markup: elements, fragments, ``{#if}``, ``{#for}``, ``{#match}``,
  ``{#async}``, ``{#key}`` and ``{@let}`` / ``{@debug}`` tags
- ``extern`` props and ``let`` state with mutability checks
- Static dependency graph from bindings to the fragments reading them
- Deterministic output: same input, byte-identical artifact
- CLI for building, checking and inspecting units

Quick Start:
    $ pip install ponyx
    $ ponyx check components/
    $ ponyx build components/ --out generated/
"""

from __future__ import annotations

__version__ = "0.4.0"
__author__ = "PONYX Team"
__license__ = "MIT"

from ponyx.core.config import CompilerOptions, Config
from ponyx.engine.component import Component, compile_file, compile_unit
from ponyx.engine.errors import PonyxError

__all__ = [
    # Metadata
    "__version__",
    "__author__",
    "__license__",
    # Config
    "Config",
    "CompilerOptions",
    # Compiler
    "Component",
    "compile_unit",
    "compile_file",
    "PonyxError",
]
