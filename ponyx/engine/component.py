"""
PONYX Component Interface
=========================

High-level API that runs the whole pipeline for one source unit:

    SourceUnit -> PonyxParser -> ComponentDraft
               -> BindingClassifier -> ComponentDefinition
               -> ReactiveAnalyzer -> AnalysisResult
               -> PonyxCompiler -> GeneratedComponent

Every stage either succeeds completely or raises a PonyxError; a unit that
fails produces no artifact.

Example:
    # Compile a string
    component = compile_unit(source, "Counter.ponyx")
    print(component.dispatcher)          # {0: (0, 2)}

    # Compile a file
    component = compile_file("components/Counter.ponyx")

    # Using the Component class
    unit = Component.from_file("components/Counter.ponyx")
    unit.definition.function("increment").kind
    unit.generated.render_source()
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from ponyx.core.config import CompilerOptions, Config
from ponyx.engine.analyzer import AnalysisResult, ReactiveAnalyzer
from ponyx.engine.classifier import BindingClassifier, ComponentDefinition
from ponyx.engine.ponyx_compiler import GeneratedComponent, PonyxCompiler
from ponyx.engine.ponyx_parser import ComponentDraft, PonyxParser
from ponyx.engine.source import SourceUnit
from ponyx.utils.logger import get_logger

logger = get_logger("ponyx.component")

EXTENSION = ".ponyx"


class Component:
    """
    One source unit moving through the pipeline.

    Stages run lazily, each at most once; results are cached on the
    instance so a unit is parsed once per compile.

    Example:
        component = Component(source, "Counter.ponyx")
        component.draft.root.to_dict()
        component.analysis.graph.readers_of(0)
    """

    def __init__(
        self,
        source: Union[str, SourceUnit],
        path: str = "<string>",
        options: Optional[CompilerOptions] = None,
    ) -> None:
        """
        Create a component from source text.

        Args:
            source: Unit text or a SourceUnit
            path: File identity used in diagnostics
            options: Compiler options (read from global config when None)
        """
        self.unit = source if isinstance(source, SourceUnit) else SourceUnit(source, path)
        self.options = options or CompilerOptions.from_config()
        self._draft: Optional[ComponentDraft] = None
        self._definition: Optional[ComponentDefinition] = None
        self._analysis: Optional[AnalysisResult] = None
        self._generated: Optional[GeneratedComponent] = None

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        options: Optional[CompilerOptions] = None,
        encoding: str = "utf-8",
    ) -> "Component":
        """
        Load a unit from disk.

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        return cls(SourceUnit.from_file(path, encoding=encoding), options=options)

    @property
    def draft(self) -> ComponentDraft:
        if self._draft is None:
            self._draft = PonyxParser(self.options).parse(self.unit)
        return self._draft

    @property
    def definition(self) -> ComponentDefinition:
        if self._definition is None:
            self._definition = BindingClassifier(self.options).classify(self.draft)
        return self._definition

    @property
    def analysis(self) -> AnalysisResult:
        if self._analysis is None:
            self._analysis = ReactiveAnalyzer(self.options).analyze(self.definition)
        return self._analysis

    @property
    def generated(self) -> GeneratedComponent:
        if self._generated is None:
            self._generated = PonyxCompiler().compile(self.analysis)
            logger.info("Compiled unit", unit=self.unit.path, name=self._generated.name)
        return self._generated

    def compile(self) -> GeneratedComponent:
        """Run every stage and return the generated component."""
        return self.generated

    def __repr__(self) -> str:
        return f"Component({self.unit.path!r})"


def compile_unit(
    text: str,
    path: str = "<string>",
    config: Optional[Config] = None,
) -> GeneratedComponent:
    """
    Compile unit text in one call.

    Args:
        text: Unit text
        path: File identity used in diagnostics
        config: Configuration (global config when None)

    Returns:
        GeneratedComponent

    Raises:
        PonyxError: On any diagnostic
    """
    return Component(text, path, CompilerOptions.from_config(config)).compile()


def compile_file(path: Union[str, Path], config: Optional[Config] = None) -> GeneratedComponent:
    """Compile a unit file."""
    return Component.from_file(path, CompilerOptions.from_config(config)).compile()


def discover(paths: Iterable[Union[str, Path]]) -> List[Path]:
    """
    Expand files and directories into unit paths.

    Directories are searched recursively for ``*.ponyx`` files; explicit
    files are kept whatever their extension. Order is stable: arguments in
    order, directory contents sorted.

    Raises:
        FileNotFoundError: If a path does not exist
    """
    return [path for path, _ in discover_relative(paths)]


def discover_relative(paths: Iterable[Union[str, Path]]) -> List[Tuple[Path, Path]]:
    """
    Like :func:`discover`, pairing each unit with its path relative to the
    argument that named it (an explicit file is relative to its parent).
    """
    found: List[Tuple[Path, Path]] = []
    for path in map(Path, paths):
        if path.is_dir():
            found.extend((unit, unit.relative_to(path)) for unit in sorted(path.rglob(f"*{EXTENSION}")))
        elif path.exists():
            found.append((path, Path(path.name)))
        else:
            raise FileNotFoundError(f"No such file or directory: {path}")
    return found
