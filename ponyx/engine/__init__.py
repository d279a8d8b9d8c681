"""
PONYX Engine Module
===================

The PONYX compiler pipeline - turns a unit of hybrid JSX and Svelte-block
markup embedded in host source into a reactive component.

Components:
- PONYX Parser: Parses units into a ComponentDraft (markup tree + script items)
- Binding Classifier: Resolves props, state and functions into a definition
- Reactive Analyzer: Builds the fragment table and dependency graph
- PONYX Compiler: Emits the component struct, update actions and dispatcher
- Component: High-level interface over the whole pipeline
- Reactive: Runtime model of state cells and fragment behaviour
"""

from ponyx.engine.errors import BindingError, CodegenError, ParseError, PonyxError, StructuralError
from ponyx.engine.source import Code, SourceUnit, Span
from ponyx.engine.ponyx_parser import ComponentDraft, PonyxNode, PonyxParser
from ponyx.engine.classifier import BindingClassifier, Binding, ComponentDefinition
from ponyx.engine.analyzer import AnalysisResult, Fragment, ReactiveAnalyzer, ReactiveGraph
from ponyx.engine.ponyx_compiler import GeneratedComponent, PonyxCompiler
from ponyx.engine.component import Component, compile_file, compile_unit
from ponyx.engine.reactive import Dispatcher, State

__all__ = [
    "PonyxError",
    "ParseError",
    "BindingError",
    "StructuralError",
    "CodegenError",
    "Code",
    "SourceUnit",
    "Span",
    "PonyxParser",
    "PonyxNode",
    "ComponentDraft",
    "BindingClassifier",
    "Binding",
    "ComponentDefinition",
    "ReactiveAnalyzer",
    "ReactiveGraph",
    "Fragment",
    "AnalysisResult",
    "PonyxCompiler",
    "GeneratedComponent",
    "Component",
    "compile_unit",
    "compile_file",
    "State",
    "Dispatcher",
]
