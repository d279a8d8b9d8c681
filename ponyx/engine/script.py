"""
PONYX Script Items
==================

Parses the host-language items that sit at the top level of a unit, next to
the markup: prop declarations, internal state, functions, and every other
item that is passed through untouched.

Forms:
    extern let [mut] NAME: TYPE [= DEFAULT];        singleton prop
    extern { /// doc
             let [mut] NAME: TYPE [= DEFAULT]; }     grouped props
    let [mut] NAME[: TYPE] [= EXPR];                 internal state
    [pub] [async] fn NAME<G>(PARAMS) -> RET { .. }   function
    struct / enum / trait / type / mod / use /
    impl / const / static ...                        plain item

Types, defaults, parameters and bodies are captured as opaque code spans.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Sequence, Tuple, Union

from ponyx.engine.errors import MALFORMED_ITEM, ParseError
from ponyx.engine.scanner import (
    Group,
    HostLexer,
    HostToken,
    HostTokenType,
    Item,
    ScanError,
    build_tree,
    pattern_names,
    split_top_level,
    use_names,
)
from ponyx.engine.source import Code, SourceUnit, Span


# Recognizes the start of a script item at the top level of a unit
ITEM_START = re.compile(
    r"(?:///|/\*\*|#!?\[|(?:pub|extern|let|fn|async|const|static|struct|enum"
    r"|trait|type|mod|use|impl|unsafe)\b)"
)

SEMICOLON_ITEMS = frozenset({"let", "const", "static", "type", "use"})
DECISIVE_KEYWORDS = SEMICOLON_ITEMS | {"fn", "struct", "enum", "trait", "mod", "impl"}


@dataclass(frozen=True)
class PropDecl:
    """``extern let`` declaration: a prop supplied by the parent."""
    name: str
    type: Code
    mutable: bool
    default: Optional[Code]
    doc: str
    span: Span
    name_span: Span
    grouped: bool = False


@dataclass(frozen=True)
class StateDecl:
    """``let`` declaration: internal component state."""
    name: str
    type: Optional[Code]
    mutable: bool
    default: Optional[Code]
    doc: str
    span: Span
    name_span: Span


@dataclass(frozen=True)
class Param:
    """A function parameter: pattern, type and the names it binds."""
    pattern: Code
    type: Optional[Code]
    names: FrozenSet[str]


@dataclass(frozen=True)
class FunctionItem:
    """Top-level function, body kept as opaque text."""
    name: str
    params: Tuple[Param, ...]
    ret: Optional[Code]
    generics: Optional[Code]
    where: Optional[Code]
    body: Code
    is_async: bool
    visibility: Optional[str]
    doc: str
    attrs: Tuple[str, ...]
    span: Span
    name_span: Span

    @property
    def param_names(self) -> FrozenSet[str]:
        names: FrozenSet[str] = frozenset()
        for param in self.params:
            names |= param.names
        return names


@dataclass(frozen=True)
class PlainItem:
    """Any other item; relocated verbatim."""
    kind: str
    name: Optional[str]
    names: FrozenSet[str]
    code: Code
    doc: str
    span: Span


ScriptItem = Union[PropDecl, StateDecl, FunctionItem, PlainItem]


def item_end(text: str, start: int) -> int:
    """
    Find where the script item starting at ``start`` ends.

    ``let``/``const``/``static``/``type``/``use`` items end at a depth-0
    ``;``. Other items end at a depth-0 ``;`` or when a brace block closes
    back to depth 0.

    Raises:
        ScanError: If the item never ends
    """
    lexer = HostLexer(text, start)
    depth = 0
    kind: Optional[str] = None
    while True:
        token = lexer.next_token()
        if token is None:
            raise ScanError(MALFORMED_ITEM, "unterminated item", start, start + 1)

        if depth == 0 and kind in (None, "const?"):
            if kind == "const?":
                kind = "fn" if token.is_keyword("fn", "unsafe", "async", "extern") else "const"
            elif token.is_keyword("const"):
                kind = "const?"
                continue
            elif token.type is HostTokenType.KEYWORD and token.value in DECISIVE_KEYWORDS:
                kind = token.value
            elif token.type is HostTokenType.OPEN and token.value == "{":
                kind = "block"

        if token.type is HostTokenType.OPEN:
            depth += 1
        elif token.type is HostTokenType.CLOSE:
            depth -= 1
            if depth < 0:
                raise ScanError(MALFORMED_ITEM, f"unbalanced `{token.value}` in item", token.start, token.end)
            if depth == 0 and token.value == "}" and kind not in SEMICOLON_ITEMS:
                return token.end
        elif depth == 0 and token.is_punct(";"):
            return token.end


def _punct(item: Optional[Item], *values: str) -> bool:
    return isinstance(item, HostToken) and item.is_punct(*values)


def _keyword(item: Optional[Item], *values: str) -> bool:
    return isinstance(item, HostToken) and item.is_keyword(*values)


def _ident(item: Optional[Item]) -> bool:
    return isinstance(item, HostToken) and item.type is HostTokenType.IDENT


def _index(items: Sequence[Item], start: int, predicate, stop: Optional[int] = None) -> Optional[int]:
    for index in range(start, len(items) if stop is None else stop):
        if predicate(items[index]):
            return index
    return None


class ScriptParser:
    """
    Parser for top-level script items.

    Example:
        parser = ScriptParser(unit)
        items = parser.parse(0, item_end(unit.text, 0))
    """

    def __init__(self, unit: SourceUnit) -> None:
        self.unit = unit

    def parse(self, start: int, end: int) -> List[ScriptItem]:
        """Parse the item spanning ``[start, end)``."""
        try:
            tokens = HostLexer(self.unit.text, start, end, keep_docs=True).tokenize()
            tree = build_tree(tokens)
        except ScanError as e:
            raise ParseError(e.code, e.message, self.unit, e.span) from None
        return self._item(tree, start, end)

    def _error(self, message: str, start: int, end: int) -> ParseError:
        return ParseError(MALFORMED_ITEM, message, self.unit, Span(start, max(start, end)))

    def _code(self, items: Sequence[Item]) -> Code:
        return self.unit.code(items[0].start, items[-1].end)

    def _item(self, tree: List[Item], start: int, end: int) -> List[ScriptItem]:
        docs: List[str] = []
        attrs: List[str] = []
        visibility: Optional[str] = None
        k = 0
        n = len(tree)
        while k < n:
            item = tree[k]
            if isinstance(item, HostToken) and item.type is HostTokenType.DOC:
                docs.append(item.value)
                k += 1
            elif _punct(item, "#") and k + 1 < n and isinstance(tree[k + 1], Group):
                attrs.append(self.unit.text[item.start:tree[k + 1].end])
                k += 2
            elif _punct(item, "#") and _punct(tree[k + 1] if k + 1 < n else None, "!") and k + 2 < n:
                attrs.append(self.unit.text[item.start:tree[k + 2].end])
                k += 3
            elif _keyword(item, "pub"):
                if k + 1 < n and isinstance(tree[k + 1], Group) and tree[k + 1].delimiter == "(":
                    visibility = self.unit.text[item.start:tree[k + 1].end]
                    k += 2
                else:
                    visibility = "pub"
                    k += 1
            else:
                break

        if k >= n:
            raise self._error("expected an item after attributes", start, end)

        doc = "\n".join(docs)
        head = tree[k]
        body = tree[k:]

        if _keyword(head, "extern"):
            nxt = tree[k + 1] if k + 1 < n else None
            if _keyword(nxt, "let"):
                return [self._prop(tree[k + 1:], doc, head.start, grouped=False)]
            if isinstance(nxt, Group) and nxt.delimiter == "{":
                return self._grouped_props(nxt)

        if _keyword(head, "let"):
            return [self._state(body, doc)]

        fn = _index(body, 0, lambda item: _keyword(item, "fn") or not (
            _keyword(item, "async", "const", "unsafe", "extern")
            or (isinstance(item, HostToken) and item.type is HostTokenType.STRING)
        ))
        if fn is not None and _keyword(body[fn], "fn"):
            return [self._function(body, fn, visibility, doc, attrs, start)]

        return [self._plain(body, doc, start, end)]

    def _binding(self, items: Sequence[Item], what: str):
        """Split ``let [mut] NAME[: TYPE] [= EXPR];`` into its parts."""
        j = 1
        mutable = _keyword(items[j] if j < len(items) else None, "mut")
        if mutable:
            j += 1
        name = items[j] if j < len(items) else None
        after = items[j + 1] if j + 1 < len(items) else None
        if not _ident(name) or not _punct(after, ":", "=", ";"):
            raise self._error(f"expected `let [mut] NAME: TYPE` in {what} declaration", items[0].start, items[-1].end)

        semi = _index(items, j + 1, lambda item: _punct(item, ";"))
        if semi is None or semi != len(items) - 1:
            last = items[-1]
            raise self._error(f"expected `;` after {what} declaration", last.start, last.end)

        eq = _index(items, j + 1, lambda item: _punct(item, "="), stop=semi)
        type_code: Optional[Code] = None
        if _punct(after, ":"):
            type_end = eq if eq is not None else semi
            if type_end == j + 2:
                raise self._error(f"missing type for `{name.value}`", after.start, after.end)
            type_code = self._code(items[j + 2:type_end])

        default: Optional[Code] = None
        if eq is not None:
            if eq + 1 == semi:
                raise self._error(f"missing value for `{name.value}`", items[eq].start, items[eq].end)
            default = self._code(items[eq + 1:semi])

        return name, mutable, type_code, default, Span(items[0].start, items[semi].end)

    def _prop(self, items: Sequence[Item], doc: str, start: int, grouped: bool) -> PropDecl:
        name, mutable, type_code, default, span = self._binding(items, "prop")
        if type_code is None:
            raise self._error(f"prop `{name.value}` needs a type", name.start, name.end)
        return PropDecl(
            name=name.value,
            type=type_code,
            mutable=mutable,
            default=default,
            doc=doc,
            span=Span(start, span.end),
            name_span=name.span,
            grouped=grouped,
        )

    def _grouped_props(self, group: Group) -> List[ScriptItem]:
        props: List[ScriptItem] = []
        docs: List[str] = []
        current: List[Item] = []
        for item in group.items:
            if isinstance(item, HostToken) and item.type is HostTokenType.DOC and not current:
                docs.append(item.value)
                continue
            if not current and not _keyword(item, "let"):
                raise self._error("only `let` declarations are allowed inside `extern { }`", item.start, item.end)
            current.append(item)
            if _punct(item, ";"):
                props.append(self._prop(current, "\n".join(docs), current[0].start, grouped=True))
                current, docs = [], []
        if current:
            raise self._error("expected `;` after prop declaration", current[-1].start, current[-1].end)
        return props

    def _state(self, items: Sequence[Item], doc: str) -> StateDecl:
        name, mutable, type_code, default, span = self._binding(items, "state")
        if type_code is None and default is None:
            raise self._error(f"state `{name.value}` needs a type or an initial value", name.start, name.end)
        return StateDecl(
            name=name.value,
            type=type_code,
            mutable=mutable,
            default=default,
            doc=doc,
            span=span,
            name_span=name.span,
        )

    def _function(
        self,
        items: Sequence[Item],
        fn: int,
        visibility: Optional[str],
        doc: str,
        attrs: List[str],
        start: int,
    ) -> FunctionItem:
        name = items[fn + 1] if fn + 1 < len(items) else None
        if not _ident(name):
            raise self._error("expected a function name after `fn`", items[fn].start, items[fn].end)

        params = _index(items, fn + 2, lambda item: isinstance(item, Group) and item.delimiter == "(")
        body = items[-1]
        if params is None:
            raise self._error(f"expected parameters for `{name.value}`", name.start, name.end)
        if not (isinstance(body, Group) and body.delimiter == "{") or len(items) - 1 == params:
            raise self._error(f"function `{name.value}` has no body", name.start, name.end)

        generics = self._code(items[fn + 2:params]) if params > fn + 2 else None

        arrow = _index(items, params + 1, lambda item: _punct(item, "->"), stop=len(items) - 1)
        where = _index(items, params + 1, lambda item: _keyword(item, "where"), stop=len(items) - 1)
        ret = None
        if arrow is not None:
            ret_end = where if where is not None else len(items) - 1
            if ret_end == arrow + 1:
                raise self._error(f"missing return type for `{name.value}`", items[arrow].start, items[arrow].end)
            ret = self._code(items[arrow + 1:ret_end])
        where_code = self._code(items[where:len(items) - 1]) if where is not None else None

        return FunctionItem(
            name=name.value,
            params=tuple(self._params(items[params])),
            ret=ret,
            generics=generics,
            where=where_code,
            body=self.unit.code(body.start, body.end),
            is_async=any(_keyword(item, "async") for item in items[:fn]),
            visibility=visibility,
            doc=doc,
            attrs=tuple(attrs),
            span=Span(start, body.end),
            name_span=name.span,
        )

    def _params(self, group: Group) -> List[Param]:
        params = []
        for part in split_top_level(group.items):
            if any(_keyword(item, "self") for item in part):
                raise self._error("`self` receivers are implicit in component functions", part[0].start, part[-1].end)
            colon = _index(part, 0, lambda item: _punct(item, ":"))
            if colon is None or colon == 0 or colon == len(part) - 1:
                raise self._error("expected `PATTERN: TYPE` parameter", part[0].start, part[-1].end)
            params.append(Param(
                pattern=self._code(part[:colon]),
                type=self._code(part[colon + 1:]),
                names=pattern_names(part[:colon]),
            ))
        return params

    def _plain(self, items: Sequence[Item], doc: str, start: int, end: int) -> PlainItem:
        head = items[0]
        kind = head.value if isinstance(head, HostToken) else "item"
        k = 0
        while _keyword(items[k] if k < len(items) else None, "unsafe", "extern") and k + 1 < len(items):
            k += 1
            if isinstance(items[k], HostToken) and items[k].type is HostTokenType.STRING:
                k += 1
        if k < len(items) and isinstance(items[k], HostToken):
            kind = items[k].value

        name: Optional[str] = None
        names: FrozenSet[str] = frozenset()
        if kind == "use":
            names = use_names(items[k + 1:-1])
        elif kind != "impl":
            candidate = items[k + 1] if k + 1 < len(items) else None
            if _ident(candidate):
                name = candidate.value
                names = frozenset({name})

        return PlainItem(
            kind=kind,
            name=name,
            names=names,
            code=self.unit.code(start, end),
            doc=doc,
            span=Span(start, end),
        )
