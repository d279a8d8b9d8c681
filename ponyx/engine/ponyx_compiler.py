"""
PONYX Compiler
==============

Turns an analysis result into a generated component. The compiler:
- Lays out fields for props and internal state
- Builds a constructor that defaults unset optional props
- Relocates methods and associated functions with their bodies unchanged
- Emits one update action per rendering fragment
- Derives the per-binding update dispatcher from the reactive graph

Output:
    The compiler produces GeneratedComponent objects containing:
    - fields / constructor / methods / items
    - actions: fragment update actions
    - dispatcher: binding id -> ordered fragment ids
    - forms: compiled logic-block forms
    - render_source(): host-language text of the component
    - to_json(): deterministic artifact

Generation is total-or-fail: any inconsistency raises CodegenError and no
artifact is produced.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import orjson

from ponyx.engine.analyzer import (
    FORM_KINDS,
    AnalysisResult,
    AsyncForm,
    ForForm,
    Form,
    Fragment,
    FragmentKind,
    IfForm,
    KeyForm,
    MatchForm,
    form_to_dict,
)
from ponyx.engine.classifier import Binding, BindingScope, ClassifiedFunction, FunctionKind
from ponyx.engine.errors import MALFORMED_FRAGMENT, CodegenError
from ponyx.engine.source import Code, Span
from ponyx.utils.logger import get_logger

logger = get_logger("ponyx.compiler")


BLOCK_KINDS = frozenset(FORM_KINDS.values())

# Literal defaults whose type can be stated without the host compiler
_LITERAL_TYPES = [
    (re.compile(r"-?\d[\d_]*(?P<suffix>[iu](?:8|16|32|64|128|size))$"), ""),
    (re.compile(r"-?\d[\d_]*(?:\.\d[\d_]*)?(?P<suffix>f32|f64)$"), ""),
    (re.compile(r"-?\d[\d_]*$"), "i32"),
    (re.compile(r"-?\d[\d_]*\.\d[\d_]*(?:[eE][+-]?\d+)?$"), "f64"),
    (re.compile(r"(?:true|false)$"), "bool"),
    (re.compile(r"'(?:\\.|[^'\\])'$"), "char"),
    (re.compile(r'"(?:\\.|[^"\\])*"$'), "&'static str"),
    (re.compile(r'(?:String::(?:new|from)\(.*\)|"(?:\\.|[^"\\])*"\.to_(?:string|owned)\(\))$'), "String"),
]


def infer_literal_type(default: str) -> Optional[str]:
    """Type of a literal initializer such as ``0``, ``10u8`` or ``"x"``."""
    for pattern, type_text in _LITERAL_TYPES:
        match = pattern.match(default)
        if match:
            return type_text or match.group("suffix")
    return None


@dataclass(frozen=True)
class GeneratedField:
    """A field of the generated type."""
    name: str
    type: str
    binding: int
    scope: BindingScope
    doc: str


@dataclass(frozen=True)
class ConstructorParam:
    """A constructor parameter; optional props take ``Option<T>``."""
    name: str
    type: str
    required: bool
    default: Optional[str]


@dataclass(frozen=True)
class GeneratedMethod:
    """A relocated function."""
    name: str
    kind: FunctionKind
    receiver: Optional[str]
    signature: str
    body: str
    doc: str
    attrs: Tuple[str, ...]


@dataclass(frozen=True)
class UpdateAction:
    """Re-renders one fragment."""
    fragment: int
    kind: FragmentKind
    name: str
    body: Tuple[str, ...]


@dataclass(frozen=True)
class GeneratedComponent:
    """
    Generated component ready to be written out.

    Contains the component layout and the update dispatcher.
    """
    name: str
    path: str
    source_hash: str
    fields: Tuple[GeneratedField, ...]
    constructor: Tuple[ConstructorParam, ...]
    methods: Tuple[GeneratedMethod, ...]
    items: Tuple[str, ...]
    actions: Tuple[UpdateAction, ...]
    dispatcher: Dict[int, Tuple[int, ...]]
    forms: Tuple[Form, ...]
    analysis: AnalysisResult

    def action(self, fragment: int) -> Optional[UpdateAction]:
        for action in self.actions:
            if action.fragment == fragment:
                return action
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        return {
            "name": self.name,
            "path": self.path,
            "source_hash": self.source_hash,
            "fields": [
                {"name": f.name, "type": f.type, "binding": f.binding, "scope": f.scope.value, "doc": f.doc}
                for f in self.fields
            ],
            "constructor": [
                {"name": p.name, "type": p.type, "required": p.required, "default": p.default}
                for p in self.constructor
            ],
            "methods": [
                {
                    "name": m.name,
                    "kind": m.kind.name,
                    "receiver": m.receiver,
                    "signature": m.signature,
                    "body": m.body,
                }
                for m in self.methods
            ],
            "items": list(self.items),
            "actions": [
                {"fragment": a.fragment, "kind": a.kind.name, "name": a.name, "body": list(a.body)}
                for a in self.actions
            ],
            "dispatcher": {str(binding): list(ids) for binding, ids in self.dispatcher.items()},
            "forms": [form_to_dict(form) for form in self.forms],
            "graph": self.analysis.graph.to_dict(),
        }

    def to_json(self) -> bytes:
        """Deterministic JSON artifact."""
        return orjson.dumps(self.to_dict(), option=orjson.OPT_SORT_KEYS | orjson.OPT_INDENT_2)

    def render_source(self) -> str:
        """Host-language text of the component."""
        return SourceEmitter(self).emit()


class CompilerContext:
    """Indenting line emitter."""

    def __init__(self) -> None:
        self.indent_level = 0
        self.output_parts: List[str] = []

    def indent(self) -> str:
        """Get current indentation."""
        return "    " * self.indent_level

    def emit(self, code: str = "") -> None:
        """Emit a line of code."""
        self.output_parts.append(f"{self.indent()}{code}" if code else "")

    def emit_block(self, text: str) -> None:
        """Emit multi-line text verbatim, indenting every line after the first."""
        lines = text.splitlines() or [""]
        self.emit(lines[0])
        for line in lines[1:]:
            self.output_parts.append(f"{self.indent()}{line}" if line.strip() else "")

    def enter_scope(self) -> None:
        """Enter a new scope (increase indent)."""
        self.indent_level += 1

    def exit_scope(self) -> None:
        """Exit scope (decrease indent)."""
        self.indent_level -= 1

    def get_code(self) -> str:
        """Get generated code."""
        return "\n".join(self.output_parts) + "\n"


class PonyxCompiler:
    """
    Compiles an analysis result into a GeneratedComponent.

    Example:
        compiler = PonyxCompiler()
        component = compiler.compile(result)
        print(component.render_source())
    """

    def __init__(self) -> None:
        self.result: Optional[AnalysisResult] = None
        self._calls: Dict[Span, str] = {}

    def compile(self, result: AnalysisResult) -> GeneratedComponent:
        """
        Compile analysis output.

        Raises:
            CodegenError: Dangling ids, mismatched forms or untyped state
        """
        self.result = result
        definition = result.definition
        self._validate()
        self._calls = self._call_rewrites()

        actions = tuple(
            self._action(fragment)
            for fragment in result.graph.fragments
            if self._has_action(fragment)
        )
        dispatcher = {
            binding.id: tuple(
                fragment_id
                for fragment_id in result.graph.readers_of(binding.id)
                if self._has_action(result.graph.fragments[fragment_id])
            )
            for binding in definition.bindings
        }

        component = GeneratedComponent(
            name=definition.name,
            path=definition.unit.path,
            source_hash=definition.unit.content_hash,
            fields=tuple(self._field(binding) for binding in definition.bindings),
            constructor=tuple(self._param(binding) for binding in definition.props),
            methods=tuple(self._method(function) for function in definition.functions),
            items=tuple(item.code.text for item in definition.items),
            actions=actions,
            dispatcher=dispatcher,
            forms=result.forms,
            analysis=result,
        )

        logger.debug(
            "Generated component",
            unit=definition.unit.path,
            name=component.name,
            actions=len(actions),
            methods=len(component.methods),
        )
        return component

    def _error(self, message: str, span: Optional[Span] = None) -> CodegenError:
        return CodegenError(MALFORMED_FRAGMENT, message, self.result.definition.unit, span)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self) -> None:
        graph = self.result.graph
        binding_count = len(graph.bindings)
        fragments = graph.fragments

        for index, fragment in enumerate(fragments):
            if fragment is None or fragment.id != index:
                raise self._error(f"fragment table is not dense at index {index}")
            for binding in fragment.reads | fragment.writes:
                if not 0 <= binding < binding_count:
                    raise self._error(f"fragment {index} refers to unknown binding {binding}", fragment.span)
            if fragment.parent is not None and not 0 <= fragment.parent < index:
                raise self._error(f"fragment {index} has a dangling parent {fragment.parent}", fragment.span)

        formed = set()
        for form in self.result.forms:
            if not 0 <= form.fragment < len(fragments):
                raise self._error(f"form refers to unknown fragment {form.fragment}")
            fragment = fragments[form.fragment]
            if fragment.kind is not FORM_KINDS[type(form)]:
                raise self._error(
                    f"{type(form).__name__} attached to a {fragment.kind.name} fragment",
                    fragment.span,
                )
            if form.fragment in formed:
                raise self._error(f"fragment {form.fragment} has more than one form", fragment.span)
            formed.add(form.fragment)
            for body_id in self._form_bodies(form):
                if not form.fragment < body_id < len(fragments):
                    raise self._error(f"form {form.fragment} refers to fragment {body_id} outside its block", fragment.span)

        for fragment in fragments:
            if fragment.kind in BLOCK_KINDS and fragment.id not in formed:
                raise self._error(f"{fragment.kind.name} fragment {fragment.id} has no form", fragment.span)

    @staticmethod
    def _form_bodies(form: Form) -> Tuple[int, ...]:
        if isinstance(form, IfForm):
            return tuple(i for arm in form.arms for i in arm.body)
        if isinstance(form, MatchForm):
            return tuple(i for case in form.cases for i in case.body)
        if isinstance(form, AsyncForm):
            return form.pending + form.ready
        return form.body

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def _field_type(self, binding: Binding) -> str:
        if binding.type_text:
            return binding.type_text
        inferred = infer_literal_type(binding.default or "")
        if inferred is None:
            raise self._error(f"cannot infer a type for `{binding.name}`; declare one", binding.span)
        return inferred

    def _field(self, binding: Binding) -> GeneratedField:
        return GeneratedField(
            name=binding.name,
            type=self._field_type(binding),
            binding=binding.id,
            scope=binding.scope,
            doc=binding.doc,
        )

    def _param(self, binding: Binding) -> ConstructorParam:
        type_text = self._field_type(binding)
        return ConstructorParam(
            name=binding.name,
            type=type_text if binding.required else f"Option<{type_text}>",
            required=binding.required,
            default=binding.default,
        )

    def _method(self, function: ClassifiedFunction) -> GeneratedMethod:
        item = function.item
        params = [f"{p.pattern.text}: {p.type.text}" for p in item.params]
        if function.receiver:
            params.insert(0, function.receiver)

        signature = ""
        if item.visibility:
            signature += f"{item.visibility} "
        if item.is_async:
            signature += "async "
        signature += f"fn {item.name}"
        if item.generics:
            signature += item.generics.text
        signature += f"({', '.join(params)})"
        if item.ret:
            signature += f" -> {item.ret.text}"
        if item.where:
            signature += f" {item.where.text}"

        return GeneratedMethod(
            name=item.name,
            kind=function.kind,
            receiver=function.receiver,
            signature=signature,
            body=item.body.text,
            doc=item.doc,
            attrs=item.attrs,
        )

    # ------------------------------------------------------------------
    # Update actions
    # ------------------------------------------------------------------

    @staticmethod
    def _has_action(fragment: Fragment) -> bool:
        return fragment.renders and not fragment.item_scoped

    def _call_rewrites(self) -> Dict[Span, str]:
        """Calls to component functions go through ``self`` or ``Self``."""
        definition = self.result.definition
        rewrites: Dict[Span, str] = {}
        for fragment in self.result.graph.fragments:
            for ref in fragment.calls:
                function = definition.function(ref.name)
                if function.kind is FunctionKind.INSTANCE_METHOD:
                    rewrites[ref.span] = f"self.{ref.name}"
                else:
                    rewrites[ref.span] = f"Self::{ref.name}"
        return rewrites

    def _host(self, code: Code) -> str:
        """Expression text with component calls rewritten."""
        text = code.text
        base = code.span.start
        spans = sorted((span for span in self._calls if code.span.contains(span)), reverse=True)
        for span in spans:
            text = text[:span.start - base] + self._calls[span] + text[span.end - base:]
        return text

    def _prologue(self, fragment: Fragment) -> List[str]:
        bindings = self.result.graph.bindings
        lines = []
        for binding_id in sorted(fragment.captures):
            name = bindings[binding_id].name
            borrow = "&mut " if binding_id in fragment.writes else "&"
            lines.append(f"let {name} = {borrow}self.{name};")
        for name, owner in fragment.locals:
            if owner == fragment.id:
                # bound by the fragment's own pattern (for item, match case)
                continue
            lines.append(f'let {name} = self.__local({owner}, "{name}");')
        return lines

    def _action(self, fragment: Fragment) -> UpdateAction:
        builder = {
            FragmentKind.MUSTACHE: self._mustache_action,
            FragmentKind.ATTRIBUTE: self._attribute_action,
            FragmentKind.SPREAD: self._spread_action,
            FragmentKind.IF: self._if_action,
            FragmentKind.FOR: self._for_action,
            FragmentKind.MATCH: self._match_action,
            FragmentKind.ASYNC: self._async_action,
            FragmentKind.KEY: self._key_action,
            FragmentKind.DEBUG_TAG: self._debug_action,
            FragmentKind.MACRO_TAG: self._macro_action,
        }.get(fragment.kind)
        if builder is None:
            raise self._error(f"no update action for {fragment.kind.name} fragment {fragment.id}", fragment.span)
        body = self._prologue(fragment) + builder(fragment)
        return UpdateAction(
            fragment=fragment.id,
            kind=fragment.kind,
            name=f"__update_{fragment.id}",
            body=tuple(body),
        )

    def _form(self, fragment: Fragment, form_type: type) -> Any:
        form = self.result.form(fragment.id)
        if not isinstance(form, form_type):
            raise self._error(f"fragment {fragment.id} expects a {form_type.__name__}", fragment.span)
        return form

    def _mustache_action(self, fragment: Fragment) -> List[str]:
        spec = fragment.format_spec.host_format() if fragment.format_spec else "{}"
        template = spec.replace("\\", "\\\\").replace('"', '\\"')
        return [f'self.__set_text({fragment.id}, format!("{template}", {self._host(fragment.expr)}));']

    def _attribute_action(self, fragment: Fragment) -> List[str]:
        return [f'self.__set_attr({fragment.id}, "{fragment.name}", {self._host(fragment.expr)});']

    def _spread_action(self, fragment: Fragment) -> List[str]:
        return [f"self.__spread_attrs({fragment.id}, {self._host(fragment.expr)});"]

    def _if_action(self, fragment: Fragment) -> List[str]:
        form: IfForm = self._form(fragment, IfForm)
        lines = []
        for index, arm in enumerate(form.arms):
            if arm.kind == "else":
                lines.append("} else {")
            else:
                keyword = "let arm = if" if index == 0 else "} else if"
                condition = self._host(arm.condition)
                if arm.pattern is not None:
                    condition = f"let {arm.pattern} = {condition}"
                lines.append(f"{keyword} {condition} {{")
            lines.append(f"    Some({index})")
        if not form.has_else:
            lines.extend(["} else {", "    None"])
        lines.append("};")
        lines.append(f"self.__switch({fragment.id}, arm);")
        return lines

    def _for_action(self, fragment: Fragment) -> List[str]:
        form: ForForm = self._form(fragment, ForForm)
        source = self._host(form.source)
        if form.keying == "keyed":
            return [
                f"let keys: Vec<_> = ({source}).into_iter().map(|{form.pattern}| {self._host(form.key)}).collect();",
                f"self.__keyed_list({fragment.id}, keys);",
            ]
        method = "__positional_list" if form.keying == "positional" else "__rebuild_list"
        return [
            f"let len = ({source}).into_iter().count();",
            f"self.{method}({fragment.id}, len);",
        ]

    def _match_action(self, fragment: Fragment) -> List[str]:
        form: MatchForm = self._form(fragment, MatchForm)
        lines = [f"let arm = match {self._host(form.subject)} {{"]
        for index, case in enumerate(form.cases):
            guard = f" if {self._host(case.guard)}" if case.guard is not None else ""
            lines.append(f"    {case.pattern}{guard} => Some({index}),")
        lines.append("    _ => None,")
        lines.append("};")
        lines.append(f"self.__switch({fragment.id}, arm);")
        return lines

    def _async_action(self, fragment: Fragment) -> List[str]:
        form: AsyncForm = self._form(fragment, AsyncForm)
        return [f"self.__await({fragment.id}, {self._host(form.future)});"]

    def _key_action(self, fragment: Fragment) -> List[str]:
        form: KeyForm = self._form(fragment, KeyForm)
        return [f"self.__rekey({fragment.id}, {self._host(form.key)});"]

    def _debug_action(self, fragment: Fragment) -> List[str]:
        if fragment.expr is None:
            return [f'eprintln!("[debug] fragment {fragment.id}");']
        return [f'eprintln!("{{:#?}}", ({self._host(fragment.expr)},));']

    def _macro_action(self, fragment: Fragment) -> List[str]:
        return [f"{self._host(fragment.expr)};"]


class SourceEmitter:
    """Renders a GeneratedComponent as host-language source."""

    def __init__(self, component: GeneratedComponent) -> None:
        self.component = component
        self.context = CompilerContext()

    def emit(self) -> str:
        component = self.component
        ctx = self.context

        ctx.emit(f"// Generated from {component.path} ({component.source_hash}). Do not edit.")
        ctx.emit()
        for item in component.items:
            ctx.emit_block(item)
            ctx.emit()

        self._emit_struct()
        ctx.emit()
        ctx.emit(f"impl {component.name} {{")
        ctx.enter_scope()
        self._emit_constructor()
        for method in component.methods:
            ctx.emit()
            self._emit_method(method)
        for action in component.actions:
            ctx.emit()
            self._emit_action(action)
        ctx.emit()
        self._emit_dispatcher()
        ctx.exit_scope()
        ctx.emit("}")
        return ctx.get_code()

    def _emit_doc(self, doc: str) -> None:
        for line in doc.splitlines():
            self.context.emit(f"/// {line}" if line else "///")

    def _emit_struct(self) -> None:
        ctx = self.context
        ctx.emit(f"pub struct {self.component.name} {{")
        ctx.enter_scope()
        for f in self.component.fields:
            self._emit_doc(f.doc)
            visibility = "pub " if f.scope is BindingScope.EXTERN else ""
            ctx.emit(f"{visibility}{f.name}: {f.type},")
        ctx.exit_scope()
        ctx.emit("}")

    def _emit_constructor(self) -> None:
        ctx = self.context
        params = ", ".join(f"{p.name}: {p.type}" for p in self.component.constructor)
        ctx.emit(f"pub fn new({params}) -> Self {{")
        ctx.enter_scope()
        defaults = {p.name: p for p in self.component.constructor}
        for f in self.component.fields:
            param = defaults.get(f.name)
            if param is not None:
                if not param.required:
                    ctx.emit(f"let {f.name}: {f.type} = {f.name}.unwrap_or_else(|| {param.default});")
                continue
            binding = self.component.analysis.graph.bindings[f.binding]
            value = binding.default if binding.default is not None else "Default::default()"
            ctx.emit(f"let {f.name}: {f.type} = {value};")
        names = ", ".join(f.name for f in self.component.fields)
        ctx.emit(f"Self {{ {names} }}" if names else "Self {}")
        ctx.exit_scope()
        ctx.emit("}")

    def _emit_method(self, method: GeneratedMethod) -> None:
        self._emit_doc(method.doc)
        for attr in method.attrs:
            self.context.emit(attr)
        self.context.emit_block(f"{method.signature} {method.body}")

    def _emit_action(self, action: UpdateAction) -> None:
        ctx = self.context
        ctx.emit(f"fn {action.name}(&mut self) {{")
        ctx.enter_scope()
        for line in action.body:
            ctx.emit(line)
        ctx.exit_scope()
        ctx.emit("}")

    def _emit_dispatcher(self) -> None:
        ctx = self.context
        bindings = self.component.analysis.graph.bindings
        ctx.emit("pub fn update(&mut self, binding: usize) {")
        ctx.enter_scope()
        ctx.emit("match binding {")
        ctx.enter_scope()
        for binding_id, fragment_ids in self.component.dispatcher.items():
            if not fragment_ids:
                continue
            ctx.emit(f"{binding_id} => {{ // {bindings[binding_id].name}")
            ctx.enter_scope()
            for fragment_id in fragment_ids:
                ctx.emit(f"self.__update_{fragment_id}();")
            ctx.exit_scope()
            ctx.emit("}")
        ctx.emit("_ => {}")
        ctx.exit_scope()
        ctx.emit("}")
        ctx.exit_scope()
        ctx.emit("}")
