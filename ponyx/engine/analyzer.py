"""
PONYX Reactive Dependency Analyzer
==================================

Walks the markup of a classified component and derives, for every template
fragment, the bindings it reads and writes. The result is a bipartite
reactive graph kept as two flat tables (bindings, fragments) plus adjacency
lists of ids, and one compiled form per logic block.

Fragments:
    - MUSTACHE     {expr} / {expr:spec}
    - ATTRIBUTE    name={expr}
    - SPREAD       {..expr}
    - HANDLER      closures and on* attributes (edges recorded, never re-rendered)
    - IF / FOR / MATCH / ASYNC / KEY   logic-block headers
    - LET_TAG / DEBUG_TAG / MACRO_TAG  {@let} {@debug} {@name!(..)}

Rules:
    1. Fragments are numbered in pre-order: attributes before children,
       a block before its arms
    2. Template locals (for patterns, if-let and case patterns, await
       names, {@let}) shadow bindings and carry the reads of the
       expression that introduced them
    3. A reference to a component function adds that function's reads
       and writes, following its calls transitively
    4. Fragments inside a {#for} body are item-scoped: the FOR fragment
       reads everything its body reads and updates the items itself

Example:
    result = ReactiveAnalyzer().analyze(definition)
    result.graph.readers_of(count.id)   # (0, 2)
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum, auto
from typing import Dict, FrozenSet, List, Optional, Set, Tuple, Union

from ponyx.core.config import CompilerOptions
from ponyx.engine.classifier import Binding, ComponentDefinition, scan_code
from ponyx.engine.errors import (
    IMMUTABLE_WRITE,
    UNRESOLVED_IDENTIFIER,
    BindingError,
    ParseError,
)
from ponyx.engine.format_spec import FormatSpec
from ponyx.engine.ponyx_parser import AttributeKind, Attribute, Branch, NodeType, PonyxNode
from ponyx.engine.scanner import Reference, ScanError, build_tree, is_closure, pattern_names, tokenize
from ponyx.engine.source import Code, Span
from ponyx.utils.logger import get_logger

logger = get_logger("ponyx.analyzer")


class FragmentKind(Enum):
    """Kinds of template fragments."""
    MUSTACHE = auto()
    ATTRIBUTE = auto()
    SPREAD = auto()
    HANDLER = auto()
    IF = auto()
    FOR = auto()
    MATCH = auto()
    ASYNC = auto()
    KEY = auto()
    LET_TAG = auto()
    DEBUG_TAG = auto()
    MACRO_TAG = auto()


class Access(Enum):
    """Direction of a dependency edge."""
    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class Fragment:
    """
    One independently updatable piece of template output.

    Attributes:
        id: Pre-order index
        kind: Fragment kind
        span: Source span of the fragment
        expr: Embedded expression (header, mustache body, attribute value)
        reads: Binding ids the fragment depends on
        writes: Binding ids the fragment may assign
        parent: Id of the enclosing logic-block fragment
        renders: False for handlers and ``{@let}`` tags
        item_scoped: Inside a ``{#for}`` body
        name: Attribute name, or macro name for macro tags
        format_spec: Mustache format suffix
        captures: Binding ids named directly in ``expr``
        locals: Template locals used, with the fragment that introduces them
        calls: References to component functions in ``expr``
    """
    id: int
    kind: FragmentKind
    span: Span
    expr: Optional[Code]
    reads: FrozenSet[int]
    writes: FrozenSet[int]
    parent: Optional[int]
    renders: bool = True
    item_scoped: bool = False
    name: Optional[str] = None
    format_spec: Optional[FormatSpec] = None
    captures: FrozenSet[int] = frozenset()
    locals: Tuple[Tuple[str, int], ...] = ()
    calls: Tuple[Reference, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "kind": self.kind.name,
            "expr": self.expr.text if self.expr else None,
            "reads": sorted(self.reads),
            "writes": sorted(self.writes),
            "parent": self.parent,
            "renders": self.renders,
            "item_scoped": self.item_scoped,
            "name": self.name,
            "format": self.format_spec.text if self.format_spec else None,
        }


@dataclass(frozen=True)
class DependencyEdge:
    """(fragment) <-> (binding), tagged read or write."""
    fragment: int
    binding: int
    access: Access


@dataclass(frozen=True)
class ReactiveGraph:
    """
    Bipartite graph between bindings and fragments.

    Tables are indexed by id; adjacency lists hold ids only, so no object
    refers to another directly.
    """
    bindings: Tuple[Binding, ...]
    fragments: Tuple[Fragment, ...]
    edges: Tuple[DependencyEdge, ...]
    readers: Tuple[Tuple[int, ...], ...]
    writers: Tuple[Tuple[int, ...], ...]

    @classmethod
    def build(cls, bindings: Tuple[Binding, ...], fragments: Tuple[Fragment, ...]) -> "ReactiveGraph":
        edges: List[DependencyEdge] = []
        readers: List[List[int]] = [[] for _ in bindings]
        writers: List[List[int]] = [[] for _ in bindings]
        for fragment in fragments:
            for binding in sorted(fragment.reads):
                edges.append(DependencyEdge(fragment.id, binding, Access.READ))
                readers[binding].append(fragment.id)
            for binding in sorted(fragment.writes):
                edges.append(DependencyEdge(fragment.id, binding, Access.WRITE))
                writers[binding].append(fragment.id)
        return cls(
            bindings=bindings,
            fragments=fragments,
            edges=tuple(edges),
            readers=tuple(tuple(ids) for ids in readers),
            writers=tuple(tuple(ids) for ids in writers),
        )

    def readers_of(self, binding: int) -> Tuple[int, ...]:
        """Fragments reading ``binding``, in first-appearance order."""
        return self.readers[binding]

    def writers_of(self, binding: int) -> Tuple[int, ...]:
        """Fragments writing ``binding``, in first-appearance order."""
        return self.writers[binding]

    def has_edge(self, fragment: int, binding: int, access: Access) -> bool:
        return DependencyEdge(fragment, binding, access) in self.edges

    def to_dict(self) -> Dict[str, object]:
        return {
            "bindings": [b.to_dict() for b in self.bindings],
            "fragments": [f.to_dict() for f in self.fragments],
            "edges": [
                {"fragment": e.fragment, "binding": e.binding, "access": e.access.value}
                for e in self.edges
            ],
        }


# ----------------------------------------------------------------------
# Logic-block forms
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class IfArm:
    """One arm of an if chain; ``condition`` is None for ``else``."""
    kind: str
    condition: Optional[Code]
    pattern: Optional[str]
    reads: FrozenSet[int]
    body: Tuple[int, ...]


@dataclass(frozen=True)
class IfForm:
    fragment: int
    arms: Tuple[IfArm, ...]

    @property
    def has_else(self) -> bool:
        return self.arms[-1].kind == "else"


@dataclass(frozen=True)
class ForForm:
    """
    List fragment.

    ``keying`` is ``keyed`` when the header names a key, otherwise the
    configured ``compiler.for_keying`` strategy.
    """
    fragment: int
    pattern: str
    source: Code
    key: Optional[Code]
    keying: str
    source_reads: FrozenSet[int]
    body_reads: FrozenSet[int]
    body: Tuple[int, ...]


@dataclass(frozen=True)
class MatchCase:
    pattern: str
    guard: Optional[Code]
    body: Tuple[int, ...]


@dataclass(frozen=True)
class MatchForm:
    """Pattern dispatch; a subject matching no case renders nothing."""
    fragment: int
    subject: Code
    cases: Tuple[MatchCase, ...]
    fallback: str = "none"


@dataclass(frozen=True)
class AsyncForm:
    """Two-phase fragment: pending until one completion, then ready."""
    fragment: int
    future: Code
    binding: Optional[str]
    shorthand: bool
    pending: Tuple[int, ...]
    ready: Tuple[int, ...]


@dataclass(frozen=True)
class KeyForm:
    """Body re-created whenever the key value changes."""
    fragment: int
    key: Code
    body: Tuple[int, ...]


Form = Union[IfForm, ForForm, MatchForm, AsyncForm, KeyForm]

FORM_KINDS = {
    IfForm: FragmentKind.IF,
    ForForm: FragmentKind.FOR,
    MatchForm: FragmentKind.MATCH,
    AsyncForm: FragmentKind.ASYNC,
    KeyForm: FragmentKind.KEY,
}


def _plain(value: object) -> object:
    if isinstance(value, Code):
        return value.text
    if is_dataclass(value):
        return {f.name: _plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    return value


def form_to_dict(form: Form) -> Dict[str, object]:
    """Serializable view of a logic-block form."""
    data: Dict[str, object] = {"form": type(form).__name__}
    data.update(_plain(form))
    return data


@dataclass(frozen=True)
class AnalysisResult:
    """Reactive graph plus compiled logic-block forms."""
    definition: ComponentDefinition
    graph: ReactiveGraph
    forms: Tuple[Form, ...]

    def form(self, fragment: int) -> Optional[Form]:
        for form in self.forms:
            if form.fragment == fragment:
                return form
        return None


# Local name -> (derived binding ids, fragment that introduces it)
Env = Dict[str, Tuple[FrozenSet[int], int]]


@dataclass
class _Effects:
    reads: Set[int] = field(default_factory=set)
    writes: Set[int] = field(default_factory=set)
    captures: Set[int] = field(default_factory=set)
    locals: Dict[str, int] = field(default_factory=dict)
    calls: List[Reference] = field(default_factory=list)


class ReactiveAnalyzer:
    """
    Builds the reactive graph and logic-block forms.

    Example:
        analyzer = ReactiveAnalyzer(CompilerOptions(for_keying="positional"))
        result = analyzer.analyze(definition)
        for form in result.forms:
            print(form)
    """

    def __init__(self, options: Optional[CompilerOptions] = None) -> None:
        self.options = options or CompilerOptions()
        self.definition: Optional[ComponentDefinition] = None
        self.fragments: List[Optional[Fragment]] = []
        self.forms: List[Form] = []
        self._function_effects: Dict[str, Tuple[FrozenSet[int], FrozenSet[int]]] = {}

    def analyze(self, definition: ComponentDefinition) -> AnalysisResult:
        """
        Analyze a classified component.

        Raises:
            BindingError: Unresolved identifier or write to an immutable binding
        """
        self.definition = definition
        self.fragments = []
        self.forms = []
        self._function_effects = {}

        self._visit_children(definition.root.children, {}, None, False)

        fragments = tuple(self.fragments)
        graph = ReactiveGraph.build(definition.bindings, fragments)
        forms = tuple(sorted(self.forms, key=lambda form: form.fragment))

        logger.debug(
            "Analyzed component",
            unit=definition.unit.path,
            fragments=len(fragments),
            edges=len(graph.edges),
            forms=len(forms),
        )
        return AnalysisResult(definition=definition, graph=graph, forms=forms)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _function_effect(self, name: str) -> Tuple[FrozenSet[int], FrozenSet[int]]:
        """Reads and writes of a function, following its calls."""
        if name in self._function_effects:
            return self._function_effects[name]

        reads: Set[int] = set()
        writes: Set[int] = set()
        seen = {name}
        stack = [name]
        while stack:
            function = self.definition.function(stack.pop())
            reads |= function.reads
            writes |= function.writes
            for callee in sorted(function.calls):
                if callee not in seen:
                    seen.add(callee)
                    stack.append(callee)

        effect = (frozenset(reads), frozenset(writes))
        self._function_effects[name] = effect
        return effect

    def _resolve(self, code: Code, env: Env, effects: Optional[_Effects] = None) -> _Effects:
        """Collect the effects of one embedded expression."""
        definition = self.definition
        effects = effects or _Effects()
        for ref in scan_code(definition.unit, code):
            self._resolve_reference(ref, env, effects)
        return effects

    def _resolve_reference(self, ref: Reference, env: Env, effects: _Effects) -> None:
        definition = self.definition
        name = ref.name
        if name in env:
            derived, owner = env[name]
            effects.reads |= derived
            effects.locals.setdefault(name, owner)
            return

        binding = definition.binding(name)
        if binding is not None:
            effects.captures.add(binding.id)
            if ref.read:
                effects.reads.add(binding.id)
            if ref.write:
                if not binding.mutable:
                    raise BindingError(
                        IMMUTABLE_WRITE,
                        f"cannot assign to `{name}`, which is not declared `mut`",
                        definition.unit,
                        binding.span,
                        related=[("assigned here", ref.span)],
                    )
                effects.writes.add(binding.id)
            return

        if definition.function(name) is not None:
            reads, writes = self._function_effect(name)
            effects.reads |= reads
            effects.writes |= writes
            effects.calls.append(ref)
            return

        if not definition.resolves(name):
            raise BindingError(
                UNRESOLVED_IDENTIFIER,
                f"cannot find value `{name}` in this component",
                definition.unit,
                ref.span,
            )

    def _format_parameters(self, node: PonyxNode, env: Env, effects: _Effects) -> None:
        """``name$`` width and precision parameters are reads."""
        spec = node.format_spec
        if not spec.parameters:
            return
        base = self.definition.unit.text.rfind(node.content, node.span.start, node.span.end)
        for name, offset in spec.parameters:
            start = base + offset
            self._resolve_reference(Reference(name, Span(start, start + len(name))), env, effects)

    def _pattern_names(self, code: Optional[Code]) -> FrozenSet[str]:
        if code is None:
            return frozenset()
        unit = self.definition.unit
        try:
            return pattern_names(build_tree(tokenize(unit.text, code.span.start, code.span.end)))
        except ScanError as e:
            raise ParseError(e.code, e.message, unit, e.span) from None

    def _is_closure(self, code: Code) -> bool:
        unit = self.definition.unit
        try:
            return is_closure(tokenize(unit.text, code.span.start, code.span.end))
        except ScanError as e:
            raise ParseError(e.code, e.message, unit, e.span) from None

    @staticmethod
    def _bind(env: Env, names: FrozenSet[str], reads: FrozenSet[int], owner: int) -> Env:
        scoped = dict(env)
        for name in names:
            scoped[name] = (reads, owner)
        return scoped

    # ------------------------------------------------------------------
    # Fragments
    # ------------------------------------------------------------------

    def _reserve(self) -> int:
        self.fragments.append(None)
        return len(self.fragments) - 1

    def _add(
        self,
        kind: FragmentKind,
        span: Span,
        expr: Optional[Code],
        effects: _Effects,
        parent: Optional[int],
        item_scoped: bool,
        fragment_id: Optional[int] = None,
        **extra,
    ) -> Fragment:
        if fragment_id is None:
            fragment_id = self._reserve()
        fragment = Fragment(
            id=fragment_id,
            kind=kind,
            span=span,
            expr=expr,
            reads=frozenset(effects.reads),
            writes=frozenset(effects.writes),
            parent=parent,
            item_scoped=item_scoped,
            captures=frozenset(effects.captures),
            locals=tuple(sorted(effects.locals.items())),
            calls=tuple(effects.calls),
            **extra,
        )
        self.fragments[fragment_id] = fragment
        return fragment

    def _range(self, start: int) -> Tuple[int, ...]:
        return tuple(range(start, len(self.fragments)))

    def _visit_children(
        self,
        children: List[PonyxNode],
        env: Env,
        parent: Optional[int],
        item_scoped: bool,
    ) -> None:
        for child in children:
            env = self._visit(child, env, parent, item_scoped)

    def _visit(self, node: PonyxNode, env: Env, parent: Optional[int], item_scoped: bool) -> Env:
        """Visit one node; returns the environment for following siblings."""
        kind = node.type

        if kind in (NodeType.ELEMENT, NodeType.FRAGMENT):
            for attribute in node.attributes:
                self._visit_attribute(attribute, env, parent, item_scoped)
            self._visit_children(node.children, env, parent, item_scoped)
        elif kind is NodeType.MUSTACHE:
            self._visit_mustache(node, env, parent, item_scoped)
        elif kind is NodeType.TAG:
            return self._visit_tag(node, env, parent, item_scoped)
        elif kind is NodeType.IF:
            self._visit_if(node, env, parent, item_scoped)
        elif kind is NodeType.FOR:
            self._visit_for(node, env, parent, item_scoped)
        elif kind is NodeType.MATCH:
            self._visit_match(node, env, parent, item_scoped)
        elif kind is NodeType.ASYNC:
            self._visit_async(node, env, parent, item_scoped)
        elif kind is NodeType.KEY:
            self._visit_key(node, env, parent, item_scoped)
        return env

    def _visit_attribute(self, attribute: Attribute, env: Env, parent: Optional[int], item_scoped: bool) -> None:
        if attribute.kind is AttributeKind.STATIC:
            return
        effects = self._resolve(attribute.expr, env)
        if attribute.kind is AttributeKind.SPREAD:
            self._add(FragmentKind.SPREAD, attribute.span, attribute.expr, effects, parent, item_scoped)
            return
        if attribute.name.startswith("on") or self._is_closure(attribute.expr):
            self._add(
                FragmentKind.HANDLER, attribute.span, attribute.expr, effects, parent, item_scoped,
                renders=False, name=attribute.name,
            )
            return
        self._add(
            FragmentKind.ATTRIBUTE, attribute.span, attribute.expr, effects, parent, item_scoped,
            name=attribute.name,
        )

    def _visit_mustache(self, node: PonyxNode, env: Env, parent: Optional[int], item_scoped: bool) -> None:
        effects = self._resolve(node.expr, env)
        if self._is_closure(node.expr):
            self._add(FragmentKind.HANDLER, node.span, node.expr, effects, parent, item_scoped, renders=False)
            return
        if node.format_spec is not None:
            self._format_parameters(node, env, effects)
        self._add(
            FragmentKind.MUSTACHE, node.span, node.expr, effects, parent, item_scoped,
            format_spec=node.format_spec,
        )

    def _visit_tag(self, node: PonyxNode, env: Env, parent: Optional[int], item_scoped: bool) -> Env:
        if node.tag == "let":
            effects = self._resolve(node.expr, env)
            fragment = self._add(
                FragmentKind.LET_TAG, node.span, node.expr, effects, parent, item_scoped,
                renders=False, name=node.pattern.text,
            )
            return self._bind(env, self._pattern_names(node.pattern), fragment.reads, fragment.id)
        if node.tag == "debug":
            effects = self._resolve(node.expr, env) if node.expr is not None else _Effects()
            self._add(FragmentKind.DEBUG_TAG, node.span, node.expr, effects, parent, item_scoped)
            return env
        effects = self._resolve(node.expr, env)
        self._add(FragmentKind.MACRO_TAG, node.span, node.expr, effects, parent, item_scoped, name=node.content)
        return env

    def _visit_if(self, node: PonyxNode, env: Env, parent: Optional[int], item_scoped: bool) -> None:
        fragment_id = self._reserve()
        header = _Effects()
        arms: List[IfArm] = []
        for branch in node.branches:
            arm_env = env
            arm_reads: FrozenSet[int] = frozenset()
            if branch.expr is not None:
                effects = self._resolve(branch.expr, env)
                arm_reads = frozenset(effects.reads)
                self._merge(header, effects)
                if branch.pattern is not None:
                    arm_env = self._bind(env, self._pattern_names(branch.pattern), arm_reads, fragment_id)
            start = len(self.fragments)
            self._visit_children(branch.children, arm_env, fragment_id, item_scoped)
            arms.append(IfArm(
                kind=branch.kind,
                condition=branch.expr,
                pattern=branch.pattern.text if branch.pattern else None,
                reads=arm_reads,
                body=self._range(start),
            ))
        self._add(FragmentKind.IF, node.span, node.branches[0].expr, header, parent, item_scoped, fragment_id=fragment_id)
        self.forms.append(IfForm(fragment=fragment_id, arms=tuple(arms)))

    def _visit_for(self, node: PonyxNode, env: Env, parent: Optional[int], item_scoped: bool) -> None:
        fragment_id = self._reserve()
        source = self._resolve(node.expr, env)
        source_reads = frozenset(source.reads)
        header = _Effects()
        self._merge(header, source)

        body_env = self._bind(env, self._pattern_names(node.pattern), source_reads, fragment_id)
        if node.key is not None:
            self._merge(header, self._resolve(node.key, body_env))

        start = len(self.fragments)
        self._visit_children(node.children, body_env, fragment_id, True)
        body = self._range(start)

        body_reads: Set[int] = set()
        for index in body:
            fragment = self.fragments[index]
            if fragment.renders:
                body_reads |= fragment.reads
        header.reads |= body_reads

        self._add(FragmentKind.FOR, node.span, node.expr, header, parent, item_scoped, fragment_id=fragment_id)
        self.forms.append(ForForm(
            fragment=fragment_id,
            pattern=node.pattern.text,
            source=node.expr,
            key=node.key,
            keying="keyed" if node.key is not None else self.options.for_keying,
            source_reads=source_reads,
            body_reads=frozenset(body_reads),
            body=body,
        ))

    def _visit_match(self, node: PonyxNode, env: Env, parent: Optional[int], item_scoped: bool) -> None:
        fragment_id = self._reserve()
        subject = self._resolve(node.expr, env)
        subject_reads = frozenset(subject.reads)
        header = _Effects()
        self._merge(header, subject)

        cases: List[MatchCase] = []
        for branch in node.branches:
            case_env = self._bind(env, self._pattern_names(branch.pattern), subject_reads, fragment_id)
            if branch.expr is not None:
                self._merge(header, self._resolve(branch.expr, case_env))
            start = len(self.fragments)
            self._visit_children(branch.children, case_env, fragment_id, item_scoped)
            cases.append(MatchCase(
                pattern=branch.pattern.text,
                guard=branch.expr,
                body=self._range(start),
            ))

        self._add(FragmentKind.MATCH, node.span, node.expr, header, parent, item_scoped, fragment_id=fragment_id)
        self.forms.append(MatchForm(fragment=fragment_id, subject=node.expr, cases=tuple(cases)))

    def _visit_async(self, node: PonyxNode, env: Env, parent: Optional[int], item_scoped: bool) -> None:
        fragment_id = self._reserve()
        future = self._resolve(node.expr, env)
        pending_branch = node.branches[0]
        ready_branch: Optional[Branch] = node.branches[1] if len(node.branches) > 1 else None

        start = len(self.fragments)
        self._visit_children(pending_branch.children, env, fragment_id, item_scoped)
        pending = self._range(start)

        ready: Tuple[int, ...] = ()
        if ready_branch is not None:
            ready_env = self._bind(env, self._pattern_names(ready_branch.pattern), frozenset(future.reads), fragment_id)
            start = len(self.fragments)
            self._visit_children(ready_branch.children, ready_env, fragment_id, item_scoped)
            ready = self._range(start)

        self._add(FragmentKind.ASYNC, node.span, node.expr, future, parent, item_scoped, fragment_id=fragment_id)
        self.forms.append(AsyncForm(
            fragment=fragment_id,
            future=node.expr,
            binding=node.pattern.text if node.pattern else None,
            shorthand=node.shorthand,
            pending=pending,
            ready=ready,
        ))

    def _visit_key(self, node: PonyxNode, env: Env, parent: Optional[int], item_scoped: bool) -> None:
        fragment_id = self._reserve()
        key = self._resolve(node.expr, env)
        start = len(self.fragments)
        self._visit_children(node.children, env, fragment_id, item_scoped)
        self._add(FragmentKind.KEY, node.span, node.expr, key, parent, item_scoped, fragment_id=fragment_id)
        self.forms.append(KeyForm(fragment=fragment_id, key=node.expr, body=self._range(start)))

    @staticmethod
    def _merge(target: _Effects, other: _Effects) -> None:
        target.reads |= other.reads
        target.writes |= other.writes
        target.captures |= other.captures
        for name, owner in other.locals.items():
            target.locals.setdefault(name, owner)
        target.calls.extend(other.calls)
