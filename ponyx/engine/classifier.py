"""
PONYX Binding Classifier
========================

Resolves the prop/state table of a component draft and classifies every
top-level function by the bindings its body touches:

- INSTANCE_METHOD: the body references at least one binding that is not
  shadowed by a parameter or a local
- ASSOCIATED_FUNCTION: the body references no binding
- PLAIN_ITEM: structs, enums, traits, type aliases, modules, statics,
  consts, ``use`` and ``impl`` items, relocated untouched

Classification is a single pass over each body. A function never looks at
another function's kind, so the result does not depend on declaration
order.

Example:
    draft = PonyxParser().parse(text, "Counter.ponyx")
    definition = BindingClassifier().classify(draft)
    definition.function("increment").kind   # FunctionKind.INSTANCE_METHOD
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from ponyx.core.config import CompilerOptions
from ponyx.engine.errors import (
    DUPLICATE_BINDING,
    IMMUTABLE_WRITE,
    UNRESOLVED_IDENTIFIER,
    BindingError,
    ParseError,
)
from ponyx.engine.ponyx_parser import ComponentDraft, PonyxNode
from ponyx.engine.scanner import Reference, ScanError, scan
from ponyx.engine.script import FunctionItem, PlainItem, PropDecl, StateDecl
from ponyx.engine.source import Code, SourceUnit, Span
from ponyx.utils.helpers import pascal_case
from ponyx.utils.logger import get_logger

logger = get_logger("ponyx.classifier")


# Lowercase names that always resolve: primitive types and crate roots
HOST_PRELUDE = frozenset({
    "bool", "char", "str", "f32", "f64",
    "i8", "i16", "i32", "i64", "i128", "isize",
    "u8", "u16", "u32", "u64", "u128", "usize",
    "std", "core", "alloc", "drop",
})


def is_lowercase_name(name: str) -> bool:
    """Lowercase names must resolve; capitalised ones belong to the host."""
    return name[:1].islower() or name[:1] == "_"


def scan_code(unit: SourceUnit, code: Code, env: Iterable[str] = ()) -> List[Reference]:
    """Scan embedded code, reporting lexing problems as parse errors."""
    try:
        return scan(unit.text, code.span.start, code.span.end, env)
    except ScanError as e:
        raise ParseError(e.code, e.message, unit, e.span) from None


class BindingScope(Enum):
    """Where a binding's value comes from."""
    EXTERN = "extern"
    INTERNAL = "internal"


class FunctionKind(Enum):
    """Classification of a top-level item."""
    INSTANCE_METHOD = auto()
    ASSOCIATED_FUNCTION = auto()
    PLAIN_ITEM = auto()


@dataclass(frozen=True)
class Binding:
    """
    A component-level value eligible for dependency tracking.

    Attributes:
        id: Stable index (props first, then internal state)
        name: Binding name
        type_text: Declared type, if any
        mutable: Whether writes are allowed
        default: Default or initial value expression
        doc: Doc comment text
        scope: EXTERN for props, INTERNAL for state
        span: Declaration span (the target of immutable-write errors)
        name_span: Span of the name itself
    """
    id: int
    name: str
    type_text: Optional[str]
    mutable: bool
    default: Optional[str]
    doc: str
    scope: BindingScope
    span: Span
    name_span: Span

    @property
    def required(self) -> bool:
        """Props without a default must be passed to the constructor."""
        return self.scope is BindingScope.EXTERN and self.default is None

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type_text,
            "mutable": self.mutable,
            "default": self.default,
            "doc": self.doc,
            "scope": self.scope.value,
        }


@dataclass(frozen=True)
class ClassifiedFunction:
    """
    A function with its kind and the direct effects of its body.

    ``reads`` and ``writes`` hold binding ids touched by the body itself;
    ``calls`` holds the names of other component functions it references.
    """
    item: FunctionItem
    kind: FunctionKind
    reads: FrozenSet[int]
    writes: FrozenSet[int]
    calls: FrozenSet[str]

    @property
    def name(self) -> str:
        return self.item.name

    @property
    def receiver(self) -> Optional[str]:
        if self.kind is not FunctionKind.INSTANCE_METHOD:
            return None
        return "&mut self" if self.writes else "&self"


@dataclass(frozen=True)
class ComponentDefinition:
    """
    Fully annotated component, immutable once classification succeeds.

    Attributes:
        name: Component type name
        props: Extern bindings in declaration order
        state: Internal bindings in declaration order
        functions: Classified functions in declaration order
        items: Pass-through items
        root: Markup root
        unit: Source unit
        known_names: Item, import and prelude names that resolve without
            being bindings or functions
    """
    name: str
    props: Tuple[Binding, ...]
    state: Tuple[Binding, ...]
    functions: Tuple[ClassifiedFunction, ...]
    items: Tuple[PlainItem, ...]
    root: PonyxNode
    unit: SourceUnit
    known_names: FrozenSet[str]

    @property
    def bindings(self) -> Tuple[Binding, ...]:
        return self.props + self.state

    def binding(self, name: str) -> Optional[Binding]:
        for binding in self.bindings:
            if binding.name == name:
                return binding
        return None

    def function(self, name: str) -> Optional[ClassifiedFunction]:
        for function in self.functions:
            if function.name == name:
                return function
        return None

    def resolves(self, name: str) -> bool:
        """Check whether a free identifier resolves to something declared."""
        if not is_lowercase_name(name):
            return True
        return (
            name in self.known_names
            or self.binding(name) is not None
            or self.function(name) is not None
        )


class BindingClassifier:
    """
    Builds the binding table and classifies functions.

    Example:
        classifier = BindingClassifier(CompilerOptions(prelude=frozenset({"log"})))
        definition = classifier.classify(draft)
    """

    def __init__(self, options: Optional[CompilerOptions] = None) -> None:
        self.options = options or CompilerOptions()

    def classify(self, draft: ComponentDraft, name: Optional[str] = None) -> ComponentDefinition:
        """
        Annotate a parsed draft.

        Raises:
            BindingError: Duplicate names, unresolved identifiers, or a
                function writing an immutable binding
        """
        unit = draft.unit
        props = tuple(self._binding(index, decl, BindingScope.EXTERN) for index, decl in enumerate(draft.props))
        offset = len(props)
        state = tuple(
            self._binding(offset + index, decl, BindingScope.INTERNAL)
            for index, decl in enumerate(draft.state)
        )
        bindings: Dict[str, Binding] = {b.name: b for b in props + state}
        self._check_duplicates(draft)

        known = set(HOST_PRELUDE) | set(self.options.prelude)
        for item in draft.items:
            known |= item.names
        function_names = {fn.name for fn in draft.functions}

        self._check_defaults(draft, bindings, function_names, known)

        functions = tuple(
            self._classify_function(unit, fn, bindings, function_names, known)
            for fn in draft.functions
        )

        definition = ComponentDefinition(
            name=name or pascal_case(unit.name),
            props=props,
            state=state,
            functions=functions,
            items=tuple(draft.items),
            root=draft.root,
            unit=unit,
            known_names=frozenset(known),
        )

        logger.debug(
            "Classified component",
            unit=unit.path,
            bindings=len(bindings),
            methods=sum(1 for f in functions if f.kind is FunctionKind.INSTANCE_METHOD),
            associated=sum(1 for f in functions if f.kind is FunctionKind.ASSOCIATED_FUNCTION),
            items=len(draft.items),
        )
        return definition

    def _binding(self, index: int, decl, scope: BindingScope) -> Binding:
        return Binding(
            id=index,
            name=decl.name,
            type_text=decl.type.text if decl.type is not None else None,
            mutable=decl.mutable,
            default=decl.default.text if decl.default is not None else None,
            doc=decl.doc,
            scope=scope,
            span=decl.span,
            name_span=decl.name_span,
        )

    def _check_duplicates(self, draft: ComponentDraft) -> None:
        """Bindings and functions share one namespace on the generated type."""
        seen: Dict[str, Span] = {}
        declared: List[Tuple[str, Span]] = []
        declared.extend((decl.name, decl.name_span) for decl in draft.props)
        declared.extend((decl.name, decl.name_span) for decl in draft.state)
        declared.extend((fn.name, fn.name_span) for fn in draft.functions)
        for name, span in declared:
            if name in seen:
                raise BindingError(
                    DUPLICATE_BINDING,
                    f"`{name}` is declared more than once",
                    draft.unit,
                    span,
                    related=[("first declared here", seen[name])],
                )
            seen[name] = span

    def _check_defaults(self, draft: ComponentDraft, bindings, function_names, known) -> None:
        """Defaults may only use earlier bindings, functions and known names."""
        earlier: set = set()
        for decl in list(draft.props) + list(draft.state):
            if decl.default is not None:
                for ref in scan_code(draft.unit, decl.default):
                    name = ref.name
                    if name in earlier or name in function_names or name in known or not is_lowercase_name(name):
                        continue
                    message = (
                        f"`{name}` is declared after `{decl.name}`"
                        if name in bindings
                        else f"cannot find value `{name}` in this component"
                    )
                    raise BindingError(UNRESOLVED_IDENTIFIER, message, draft.unit, ref.span)
            earlier.add(decl.name)

    def _classify_function(
        self,
        unit: SourceUnit,
        fn: FunctionItem,
        bindings: Dict[str, Binding],
        function_names: set,
        known: set,
    ) -> ClassifiedFunction:
        """Scan one body; locals and parameters shadow bindings."""
        reads = set()
        writes = set()
        calls = set()

        for ref in scan_code(unit, fn.body, fn.param_names):
            binding = bindings.get(ref.name)
            if binding is not None:
                if ref.read:
                    reads.add(binding.id)
                if ref.write:
                    if not binding.mutable:
                        raise self._immutable_write(unit, binding, ref)
                    writes.add(binding.id)
                continue
            if ref.name in function_names:
                calls.add(ref.name)
                continue
            if ref.name in known or not is_lowercase_name(ref.name):
                continue
            raise BindingError(
                UNRESOLVED_IDENTIFIER,
                f"cannot find value `{ref.name}` in `{fn.name}`",
                unit,
                ref.span,
            )

        kind = FunctionKind.INSTANCE_METHOD if reads or writes else FunctionKind.ASSOCIATED_FUNCTION
        return ClassifiedFunction(
            item=fn,
            kind=kind,
            reads=frozenset(reads),
            writes=frozenset(writes),
            calls=frozenset(calls),
        )

    @staticmethod
    def _immutable_write(unit: SourceUnit, binding: Binding, ref: Reference) -> BindingError:
        return BindingError(
            IMMUTABLE_WRITE,
            f"cannot assign to `{binding.name}`, which is not declared `mut`",
            unit,
            binding.span,
            related=[("assigned here", ref.span)],
        )
