"""
PONYX Parser
============

The parser turns one source unit into a component draft: the script items
declared at the top level plus a markup tree whose dynamic parts carry
embedded host-language code.

PONYX Format:
    PONYX mixes host-language items with JSX-style markup and
    Svelte-style logic blocks:

    - extern let NAME: TYPE [= DEFAULT];   Props
    - let [mut] NAME: TYPE = EXPR;          Internal state
    - fn NAME(...) { ... }                  Functions (methods or helpers)
    - <a::B attr="lit" attr={expr} {..spread}/>   Elements and fragments <>...</>
    - {expr} / {expr:fmt}                   Mustaches with an optional format
    - {#if c}..{:else if d}..{:else}..{/if} Conditionals (also `if let P = E`)
    - {#for pat in iter; key = k}..{/for}   Lists
    - {#match e}{:case P}..{/match}         Pattern dispatch
    - {#async fut}..{:await v}..{/async}    Two-phase async
    - {#key expr}..{/key}                   Keyed re-creation
    - {@let P[: T] = E} {@debug a} {@m!(..)} Tags

Example .ponyx:
    extern let mut count: i32 = 0;

    fn increment() {
        count += 1;
    }

    <div class="counter">
        <h1>Count: {count:>4}</h1>
        <button onclick={|_| increment()}>+1</button>

        {#if count > 10}
            <p class="warning">Count is high!</p>
        {/if}
    </div>

Parser Architecture:
    1. Lexer: Tokenize markup, cutting ``{...}`` regions with the host scanner
    2. Parser: Build the node tree and check divider ordering
    3. Structural checks: ``{#match}`` case-first, ``{#async}`` await count
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple, Union

from ponyx.core.config import CompilerOptions
from ponyx.engine.errors import (
    ASYNC_AWAIT_COUNT,
    DIVIDER_ORDER,
    MALFORMED_HEADER,
    MATCH_WITHOUT_CASE,
    MISMATCHED_CLOSE,
    MIXED_EXTERN,
    UNEXPECTED_CHAR,
    UNTERMINATED_LITERAL,
    UNTERMINATED_NODE,
    ParseError,
    StructuralError,
)
from ponyx.engine.format_spec import FormatSpec, FormatSpecError
from ponyx.engine.scanner import (
    HostLexer,
    HostToken,
    ScanError,
    comment_end,
    find_region_end,
    find_top_level,
    is_closure,
    tokenize,
)
from ponyx.engine.script import (
    ITEM_START,
    FunctionItem,
    PlainItem,
    PropDecl,
    ScriptItem,
    ScriptParser,
    StateDecl,
    item_end,
)
from ponyx.engine.source import Code, SourceUnit, Span
from ponyx.utils.logger import get_logger

logger = get_logger("ponyx.parser")


class TokenType(Enum):
    """Token types for the PONYX markup lexer."""
    TEXT = auto()
    COMMENT = auto()           # <!-- ... -->

    # Markup tokens
    TAG_OPEN = auto()          # <
    TAG_END_OPEN = auto()      # </
    TAG_NAME = auto()          # div, a::B
    ATTR_NAME = auto()         # class
    ATTR_VALUE = auto()        # "literal"
    ATTR_EXPR = auto()         # {expr}
    SPREAD = auto()            # {..expr}
    TAG_CLOSE = auto()         # >
    TAG_SELF_CLOSE = auto()    # />

    # Brace regions
    MUSTACHE = auto()          # {expr}
    BLOCK_OPEN = auto()        # {#if ...}
    DIVIDER = auto()           # {:else}
    BLOCK_CLOSE = auto()       # {/if}
    TAG = auto()               # {@let ...}

    SCRIPT_ITEM = auto()       # top-level host item
    EOF = auto()


@dataclass
class Token:
    """Represents a lexer token."""
    type: TokenType
    value: str
    span: Span
    code: Optional[Code] = None

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.value!r}, {self.span.start})"


class NodeType(Enum):
    """AST node types."""
    ROOT = auto()
    ELEMENT = auto()
    FRAGMENT = auto()
    TEXT = auto()
    COMMENT = auto()
    MUSTACHE = auto()
    IF = auto()
    FOR = auto()
    MATCH = auto()
    ASYNC = auto()
    KEY = auto()
    TAG = auto()


class AttributeKind(Enum):
    """Attribute flavours."""
    STATIC = auto()    # name or name="literal"
    EXPR = auto()      # name={expr}
    SPREAD = auto()    # {..expr}


@dataclass
class Attribute:
    """Element attribute."""
    kind: AttributeKind
    name: Optional[str]
    span: Span
    value: Optional[str] = None
    expr: Optional[Code] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.name,
            "name": self.name,
            "value": self.value,
            "expr": self.expr.text if self.expr else None,
        }


@dataclass
class Branch:
    """
    One divider-separated arm of a logic block.

    Kinds: ``if``, ``else if``, ``else`` (If); ``case`` (Match);
    ``pending``, ``ready`` (Async).
    """
    kind: str
    span: Span
    children: List["PonyxNode"] = field(default_factory=list)
    expr: Optional[Code] = None       # condition / guard
    pattern: Optional[Code] = None    # if-let / case pattern / await binding

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "expr": self.expr.text if self.expr else None,
            "pattern": self.pattern.text if self.pattern else None,
            "children": [c.to_dict() for c in self.children],
        }


@dataclass
class PonyxNode:
    """
    AST Node for PONYX markup.

    Represents any element of the markup tree:
    - Elements and fragments
    - Text and comments
    - Mustaches
    - Logic blocks (with their branches)
    - Tags
    """
    type: NodeType
    span: Span
    tag: Optional[str] = None
    attributes: List[Attribute] = field(default_factory=list)
    children: List["PonyxNode"] = field(default_factory=list)
    branches: List[Branch] = field(default_factory=list)
    content: Optional[str] = None
    expr: Optional[Code] = None
    pattern: Optional[Code] = None
    key: Optional[Code] = None
    annotation: Optional[Code] = None
    format_spec: Optional[FormatSpec] = None
    shorthand: bool = False
    is_self_closing: bool = False

    def add_child(self, child: "PonyxNode") -> None:
        """Add a child node."""
        self.children.append(child)

    def walk(self):
        """Yield this node and all descendants in pre-order."""
        yield self
        for child in self.children:
            yield from child.walk()
        for branch in self.branches:
            for child in branch.children:
                yield from child.walk()

    def find_by_type(self, node_type: NodeType) -> List["PonyxNode"]:
        """Find all descendant nodes with given type."""
        return [node for node in self.walk() if node.type is node_type]

    def to_dict(self) -> Dict[str, Any]:
        """Convert node to dictionary representation."""
        data: Dict[str, Any] = {"type": self.type.name}
        if self.tag is not None:
            data["tag"] = self.tag
        if self.attributes:
            data["attributes"] = [a.to_dict() for a in self.attributes]
        if self.content is not None:
            data["content"] = self.content
        for name in ("expr", "pattern", "key", "annotation"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value.text
        if self.format_spec is not None:
            data["format"] = self.format_spec.text
        if self.shorthand:
            data["shorthand"] = True
        if self.children:
            data["children"] = [c.to_dict() for c in self.children]
        if self.branches:
            data["branches"] = [b.to_dict() for b in self.branches]
        return data


@dataclass
class ComponentDraft:
    """
    Parser output: script items and the markup tree of one unit.

    Contains:
    - Prop and state declarations in source order
    - Functions and pass-through items
    - Root markup node
    """
    unit: SourceUnit
    root: PonyxNode
    props: List[PropDecl] = field(default_factory=list)
    state: List[StateDecl] = field(default_factory=list)
    functions: List[FunctionItem] = field(default_factory=list)
    items: List[PlainItem] = field(default_factory=list)

    def add_item(self, item: ScriptItem) -> None:
        if isinstance(item, PropDecl):
            self.props.append(item)
        elif isinstance(item, StateDecl):
            self.state.append(item)
        elif isinstance(item, FunctionItem):
            self.functions.append(item)
        else:
            self.items.append(item)


class PonyxLexer:
    """
    Tokenizer for PONYX markup.

    Brace regions are cut with the host scanner so that braces inside host
    closures, blocks, strings and comments never end a region early.
    Script items are only recognized at the top level.
    """

    PATTERNS = {
        "tag_name": re.compile(r"[A-Za-z_][A-Za-z0-9_\-]*(?:::[A-Za-z_][A-Za-z0-9_\-]*)*"),
        "attr_name": re.compile(r"[A-Za-z_][A-Za-z0-9_\-]*(?::[A-Za-z_][A-Za-z0-9_\-]*)?"),
        "whitespace": re.compile(r"\s+"),
        "word": re.compile(r"[A-Za-z_][A-Za-z0-9_]*"),
        "else_if": re.compile(r"\s+if\b"),
        "text": re.compile(r"[^<>{}]+"),
    }

    def __init__(self, unit: SourceUnit) -> None:
        self.unit = unit
        self.source = unit.text
        self.pos = 0
        self.depth = 0
        self.tokens: List[Token] = []

    def tokenize(self) -> List[Token]:
        """Tokenize the entire source."""
        while self.pos < len(self.source):
            self._next_token()
        end = len(self.source)
        self.tokens.append(Token(TokenType.EOF, "", Span(end, end)))
        return self.tokens

    def _error(self, code: str, message: str, start: int, end: Optional[int] = None) -> ParseError:
        return ParseError(code, message, self.unit, Span(start, start + 1 if end is None else end))

    def _add_token(self, type: TokenType, value: str, start: int, end: int, code: Optional[Code] = None) -> None:
        self.tokens.append(Token(type, value, Span(start, end), code))

    def _skip_whitespace(self) -> None:
        match = self.PATTERNS["whitespace"].match(self.source, self.pos)
        if match:
            self.pos = match.end()

    def _next_token(self) -> None:
        """Extract next token from source."""
        source, pos = self.source, self.pos

        if self.depth == 0 and self._top_level():
            return

        char = source[pos]
        if source.startswith("<!--", pos):
            self._tokenize_comment()
        elif source.startswith("</", pos):
            self._add_token(TokenType.TAG_END_OPEN, "</", pos, pos + 2)
            self.pos += 2
            self._tokenize_end_tag()
        elif char == "<":
            self._add_token(TokenType.TAG_OPEN, "<", pos, pos + 1)
            self.pos += 1
            self._tokenize_tag()
        elif char == "{":
            self._tokenize_region(in_tag=False)
        elif char in "}>":
            raise self._error(UNEXPECTED_CHAR, f"unexpected `{char}`", pos)
        else:
            self._tokenize_text()

    def _top_level(self) -> bool:
        """Skip host trivia and cut script items. Returns True if consumed."""
        start = self.pos
        self._skip_whitespace()
        source, pos = self.source, self.pos
        if pos >= len(source):
            return True
        try:
            if source.startswith("//", pos) and not source.startswith("///", pos):
                self.pos = comment_end(source, pos)
                return True
            if source.startswith("/*", pos) and not source.startswith("/**", pos):
                self.pos = comment_end(source, pos)
                return True
            if ITEM_START.match(source, pos):
                end = item_end(source, pos)
                self._add_token(TokenType.SCRIPT_ITEM, source[pos:end], pos, end)
                self.pos = end
                return True
        except ScanError as e:
            raise ParseError(e.code, e.message, self.unit, e.span) from None
        return self.pos > start

    def _tokenize_comment(self) -> None:
        """Tokenize <!-- comment -->."""
        start = self.pos
        close = self.source.find("-->", start + 4)
        if close == -1:
            raise self._error(UNTERMINATED_LITERAL, "unterminated comment `<!--`", start, start + 4)
        self.pos = close + 3
        self._add_token(TokenType.COMMENT, self.source[start + 4:close], start, self.pos)

    def _tokenize_text(self) -> None:
        """Tokenize plain text content."""
        match = self.PATTERNS["text"].match(self.source, self.pos)
        start, self.pos = self.pos, match.end()
        text = match.group()
        # Whitespace-only text spanning lines is layout, not content
        if not text.strip() and ("\n" in text or self.depth == 0):
            return
        self._add_token(TokenType.TEXT, text, start, self.pos)

    def _tokenize_end_tag(self) -> None:
        """Tokenize the rest of a closing tag ``</name>`` or ``</>``."""
        self._skip_whitespace()
        name = self.PATTERNS["tag_name"].match(self.source, self.pos)
        if name:
            self._add_token(TokenType.TAG_NAME, name.group(), self.pos, name.end())
            self.pos = name.end()
            self._skip_whitespace()
        if self.pos >= len(self.source):
            raise self._error(UNTERMINATED_NODE, "unterminated closing tag", self.tokens[-1].span.start)
        if self.source[self.pos] != ">":
            raise self._error(MALFORMED_HEADER, "expected `>` to end the closing tag", self.pos)
        self._add_token(TokenType.TAG_CLOSE, ">", self.pos, self.pos + 1)
        self.pos += 1
        self.depth -= 1

    def _tokenize_tag(self) -> None:
        """Tokenize an opening tag and its attributes."""
        open_pos = self.pos - 1
        self._skip_whitespace()
        name = self.PATTERNS["tag_name"].match(self.source, self.pos)
        if name:
            self._add_token(TokenType.TAG_NAME, name.group(), self.pos, name.end())
            self.pos = name.end()
        elif not self.source.startswith(">", self.pos):
            raise self._error(UNEXPECTED_CHAR, "unexpected `<`", open_pos)

        while True:
            self._skip_whitespace()
            pos = self.pos
            if pos >= len(self.source):
                raise self._error(UNTERMINATED_NODE, "unterminated tag", open_pos)

            if self.source.startswith("/>", pos):
                self._add_token(TokenType.TAG_SELF_CLOSE, "/>", pos, pos + 2)
                self.pos += 2
                return
            if self.source[pos] == ">":
                self._add_token(TokenType.TAG_CLOSE, ">", pos, pos + 1)
                self.pos += 1
                self.depth += 1
                return
            if self.source[pos] == "{":
                self._tokenize_region(in_tag=True)
                continue

            attr = self.PATTERNS["attr_name"].match(self.source, pos)
            if not attr:
                raise self._error(MALFORMED_HEADER, f"unexpected `{self.source[pos]}` in tag", pos)
            self._add_token(TokenType.ATTR_NAME, attr.group(), pos, attr.end())
            self.pos = attr.end()
            self._skip_whitespace()
            if self.source.startswith("=", self.pos):
                self.pos += 1
                self._skip_whitespace()
                self._tokenize_attr_value()

    def _tokenize_attr_value(self) -> None:
        """Tokenize ``"literal"`` or ``{expr}`` after ``=``."""
        pos = self.pos
        if self.source.startswith('"', pos):
            try:
                token = HostLexer(self.source, pos).next_token()
            except ScanError as e:
                raise ParseError(e.code, "unterminated attribute string", self.unit, e.span) from None
            self._add_token(TokenType.ATTR_VALUE, token.value[1:-1], token.start, token.end)
            self.pos = token.end
            return
        if self.source.startswith("{", pos):
            close = self._region_end(pos)
            code = self.unit.code(pos + 1, close)
            self._add_token(TokenType.ATTR_EXPR, code.text, pos, close + 1, code)
            self.pos = close + 1
            return
        raise self._error(MALFORMED_HEADER, 'expected `"literal"` or `{expr}` attribute value', pos)

    def _region_end(self, open_pos: int) -> int:
        try:
            return find_region_end(self.source, open_pos)
        except ScanError as e:
            raise ParseError(e.code, e.message, self.unit, e.span) from None

    def _tokenize_region(self, in_tag: bool) -> None:
        """Tokenize a ``{...}`` region: mustache, block, divider, tag or spread."""
        source = self.source
        open_pos = self.pos
        close = self._region_end(open_pos)
        end = close + 1
        inner = self.unit.code(open_pos + 1, close)
        body = inner.text
        start = inner.span.start
        self.pos = end

        if body.startswith(".."):
            code = self.unit.code(start + 2, close)
            self._add_token(TokenType.SPREAD, code.text, open_pos, end, code)
            return
        if in_tag:
            raise self._error(MALFORMED_HEADER, "expected `{..expr}` spread inside a tag", open_pos, end)

        sigil = body[:1]
        if sigil == "#":
            word = self.PATTERNS["word"].match(source, start + 1, close)
            kind = word.group() if word else ""
            header = self.unit.code(word.end() if word else start + 1, close)
            self._add_token(TokenType.BLOCK_OPEN, kind, open_pos, end, header)
            self.depth += 1
        elif sigil == ":" and not body.startswith("::"):
            word = self.PATTERNS["word"].match(source, start + 1, close)
            kind = word.group() if word else ""
            after = word.end() if word else start + 1
            if kind == "else":
                else_if = self.PATTERNS["else_if"].match(source, after, close)
                if else_if:
                    kind, after = "else if", else_if.end()
            self._add_token(TokenType.DIVIDER, kind, open_pos, end, self.unit.code(after, close))
        elif sigil == "/" and not body.startswith(("//", "/*")):
            word = self.PATTERNS["word"].match(source, start + 1, close)
            kind = word.group() if word else ""
            if not word or self.unit.code(word.end(), close).text:
                raise self._error(MALFORMED_HEADER, f"malformed closing block `{{{body}}}`", open_pos, end)
            self._add_token(TokenType.BLOCK_CLOSE, kind, open_pos, end)
            self.depth -= 1
        elif sigil == "@":
            word = self.PATTERNS["word"].match(source, start + 1, close)
            if word and word.group() in ("let", "debug"):
                self._add_token(TokenType.TAG, word.group(), open_pos, end, self.unit.code(word.end(), close))
            elif word and source.startswith("!", word.end()):
                self._add_token(TokenType.TAG, "macro", open_pos, end, self.unit.code(start + 1, close))
            else:
                raise self._error(MALFORMED_HEADER, f"unknown tag `{{{body}}}`", open_pos, end)
        else:
            self._add_token(TokenType.MUSTACHE, body, open_pos, end, inner)


class PonyxParser:
    """
    Parser for PONYX units.

    Converts token stream into a component draft for the binding classifier.

    Example:
        parser = PonyxParser()
        draft = parser.parse(SourceUnit(text, "Counter.ponyx"))
        print(draft.root.to_dict())
    """

    BLOCK_KINDS = ("if", "for", "match", "async", "key")

    def __init__(self, options: Optional[CompilerOptions] = None) -> None:
        self.options = options or CompilerOptions()
        self.unit: Optional[SourceUnit] = None
        self.tokens: List[Token] = []
        self.pos = 0
        self.draft: Optional[ComponentDraft] = None

    def parse(self, source: Union[str, SourceUnit], path: str = "<string>") -> ComponentDraft:
        """
        Parse a unit into a component draft.

        Args:
            source: Unit text or a SourceUnit
            path: File identity when ``source`` is text

        Returns:
            ComponentDraft with script items and markup root

        Raises:
            ParseError: Malformed markup, regions or items
            StructuralError: Wrong logic-block shape
        """
        unit = source if isinstance(source, SourceUnit) else SourceUnit(source, path)
        self.unit = unit
        root = PonyxNode(type=NodeType.ROOT, span=Span(0, len(unit.text)))
        self.draft = ComponentDraft(unit=unit, root=root)

        try:
            self.tokens = PonyxLexer(unit).tokenize()
            self.pos = 0
            self._parse_children(root.children)
            self._expect_end_of_unit()
            self._check_extern_forms()
        except ParseError as e:
            if not e.partial:
                e.partial = list(root.children)
            raise

        logger.debug(
            "Parsed unit",
            unit=unit.path,
            nodes=sum(1 for _ in root.walk()) - 1,
            props=len(self.draft.props),
            state=len(self.draft.state),
            functions=len(self.draft.functions),
        )
        return self.draft

    def _current(self) -> Token:
        """Get current token."""
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        """Advance to next token and return current."""
        token = self.tokens[self.pos]
        if token.type is not TokenType.EOF:
            self.pos += 1
        return token

    def _error(self, code: str, message: str, span: Span) -> ParseError:
        return ParseError(code, message, self.unit, span)

    def _host_tokens(self, code: Code) -> List[HostToken]:
        try:
            return tokenize(self.unit.text, code.span.start, code.span.end)
        except ScanError as e:
            raise self._error(e.code, e.message, e.span) from None

    def _code(self, start: int, end: int) -> Code:
        return self.unit.code(start, end)

    def _parse_children(self, children: Optional[List[PonyxNode]] = None) -> List[PonyxNode]:
        """Parse nodes until a divider, a close or the end of input."""
        children = [] if children is None else children
        while True:
            token = self._current()
            if token.type in (TokenType.DIVIDER, TokenType.BLOCK_CLOSE, TokenType.TAG_END_OPEN, TokenType.EOF):
                return children
            node = self._parse_node()
            if node is not None:
                children.append(node)

    def _parse_node(self) -> Optional[PonyxNode]:
        """Parse a single node."""
        token = self._current()

        if token.type is TokenType.TEXT:
            self._advance()
            return PonyxNode(type=NodeType.TEXT, span=token.span, content=token.value)
        elif token.type is TokenType.COMMENT:
            self._advance()
            return PonyxNode(type=NodeType.COMMENT, span=token.span, content=token.value)
        elif token.type is TokenType.TAG_OPEN:
            return self._parse_element()
        elif token.type is TokenType.MUSTACHE:
            return self._parse_mustache()
        elif token.type is TokenType.BLOCK_OPEN:
            return self._parse_block()
        elif token.type is TokenType.TAG:
            return self._parse_tag()
        elif token.type is TokenType.SCRIPT_ITEM:
            self._advance()
            for item in ScriptParser(self.unit).parse(token.span.start, token.span.end):
                self.draft.add_item(item)
            return None
        elif token.type is TokenType.SPREAD:
            raise self._error(MALFORMED_HEADER, "spread `{..expr}` is only valid among element attributes", token.span)
        raise self._error(UNEXPECTED_CHAR, f"unexpected `{token.value}`", token.span)

    def _expect_end_of_unit(self) -> None:
        token = self._current()
        if token.type is TokenType.EOF:
            return
        if token.type is TokenType.DIVIDER:
            raise self._error(DIVIDER_ORDER, f"`{{:{token.value}}}` outside of a block", token.span)
        if token.type is TokenType.BLOCK_CLOSE:
            raise self._error(MISMATCHED_CLOSE, f"`{{/{token.value}}}` without an open block", token.span)
        raise self._error(MISMATCHED_CLOSE, "closing tag without an open element", token.span)

    # ------------------------------------------------------------------
    # Elements
    # ------------------------------------------------------------------

    def _parse_element(self) -> PonyxNode:
        """Parse an element or fragment."""
        open_token = self._advance()
        name: Optional[str] = None
        if self._current().type is TokenType.TAG_NAME:
            name = self._advance().value

        node = PonyxNode(
            type=NodeType.ELEMENT if name else NodeType.FRAGMENT,
            span=open_token.span,
            tag=name,
        )
        label = f"<{name}>" if name else "<>"

        while self._current().type in (TokenType.ATTR_NAME, TokenType.SPREAD):
            if name is None:
                raise self._error(MALFORMED_HEADER, "fragments cannot have attributes", self._current().span)
            node.attributes.append(self._parse_attribute())

        token = self._advance()
        if token.type is TokenType.TAG_SELF_CLOSE:
            node.is_self_closing = True
            node.span = open_token.span.to(token.span)
            return node

        node.children = self._parse_children()
        token = self._current()
        if token.type is TokenType.EOF:
            raise self._error(UNTERMINATED_NODE, f"unterminated element `{label}`", open_token.span)
        if token.type is TokenType.DIVIDER:
            raise self._error(DIVIDER_ORDER, f"`{{:{token.value}}}` is not valid inside `{label}`", token.span)
        if token.type is TokenType.BLOCK_CLOSE:
            raise self._error(MISMATCHED_CLOSE, f"`{{/{token.value}}}` closes a block that is not open inside `{label}`", token.span)

        end_open = self._advance()
        close_name = self._advance().value if self._current().type is TokenType.TAG_NAME else None
        end = self._advance()
        if close_name != name:
            found = f"</{close_name}>" if close_name else "</>"
            expected = f"</{name}>" if name else "</>"
            raise self._error(MISMATCHED_CLOSE, f"mismatched closing tag: expected `{expected}`, found `{found}`", end_open.span.to(end.span))

        node.span = open_token.span.to(end.span)
        return node

    def _parse_attribute(self) -> Attribute:
        token = self._advance()
        if token.type is TokenType.SPREAD:
            if not token.code.text:
                raise self._error(MALFORMED_HEADER, "empty spread `{..}`", token.span)
            return Attribute(AttributeKind.SPREAD, None, token.span, expr=token.code)

        value_token = self._current()
        if value_token.type is TokenType.ATTR_VALUE:
            self._advance()
            return Attribute(AttributeKind.STATIC, token.value, token.span.to(value_token.span), value=value_token.value)
        if value_token.type is TokenType.ATTR_EXPR:
            self._advance()
            if not value_token.code.text:
                raise self._error(MALFORMED_HEADER, f"empty expression for attribute `{token.value}`", value_token.span)
            return Attribute(AttributeKind.EXPR, token.value, token.span.to(value_token.span), expr=value_token.code)
        return Attribute(AttributeKind.STATIC, token.value, token.span)

    # ------------------------------------------------------------------
    # Mustaches and tags
    # ------------------------------------------------------------------

    def _parse_mustache(self) -> PonyxNode:
        """Parse ``{expr}`` or ``{expr:spec}``."""
        token = self._advance()
        code = token.code
        if not code.text:
            raise self._error(MALFORMED_HEADER, "empty mustache `{}`", token.span)

        node = PonyxNode(type=NodeType.MUSTACHE, span=token.span, expr=code)
        host = self._host_tokens(code)
        if is_closure(host):
            return node

        colon = find_top_level(host, lambda t: t.is_punct(":"))
        if colon is None:
            return node

        expr = self._code(code.span.start, host[colon].start)
        if not expr.text:
            raise self._error(MALFORMED_HEADER, "missing expression before format spec", token.span)
        spec_start = host[colon].end
        spec_text = self.unit.text[spec_start:code.span.end]
        try:
            node.format_spec = FormatSpec.parse(spec_text)
        except FormatSpecError as e:
            offset = spec_start + e.offset
            raise self._error(MALFORMED_HEADER, str(e), Span(offset, max(offset + 1, code.span.end))) from None
        node.expr = expr
        node.content = spec_text
        return node

    def _parse_tag(self) -> PonyxNode:
        """Parse ``{@let P = E}``, ``{@debug a, b}`` or ``{@name!(...)}``."""
        token = self._advance()
        node = PonyxNode(type=NodeType.TAG, span=token.span, tag=token.value)

        if token.value == "let":
            node.pattern, node.expr, node.annotation = self._split_let(
                token.code, "{@let PATTERN[: TYPE] = EXPR}", token.span, keyword=False
            )
        elif token.value == "debug":
            node.expr = token.code if token.code.text else None
        else:
            node.content = token.code.text.split("!", 1)[0].strip()
            node.expr = token.code
        return node

    def _split_let(
        self,
        code: Code,
        form: str,
        span: Span,
        keyword: bool = True,
    ) -> Tuple[Code, Code, Optional[Code]]:
        """
        Split ``[let] PATTERN[: TYPE] = EXPR``.

        Returns (pattern, expression, type); the type is None when the
        pattern carries no annotation.
        """
        host = self._host_tokens(code)
        first = 1 if keyword else 0
        eq = find_top_level(host, lambda t: t.is_punct("="), first)
        if eq is None or eq == first or eq == len(host) - 1:
            raise self._error(MALFORMED_HEADER, f"expected `{form}`", span)
        expr = self._code(host[eq].end, code.span.end)

        colon = find_top_level(host[:eq], lambda t: t.is_punct(":"), first)
        if colon is None:
            return self._code(host[first].start, host[eq].start), expr, None
        # `x: = e` and `: T = e`
        if colon == first or colon == eq - 1:
            raise self._error(MALFORMED_HEADER, f"expected `{form}`", span)
        pattern = self._code(host[first].start, host[colon].start)
        return pattern, expr, self._code(host[colon].end, host[eq].start)

    # ------------------------------------------------------------------
    # Logic blocks
    # ------------------------------------------------------------------

    def _parse_block(self) -> PonyxNode:
        """Dispatch on the block kind."""
        token = self._advance()
        handler = {
            "if": self._parse_if_block,
            "for": self._parse_for_block,
            "match": self._parse_match_block,
            "async": self._parse_async_block,
            "key": self._parse_key_block,
        }.get(token.value)
        if handler is None:
            raise self._error(MALFORMED_HEADER, f"unknown block `{{#{token.value}}}`", token.span)
        return handler(token)

    def _expect_block_end(self, kind: str, open_token: Token) -> Token:
        """Consume ``{/kind}`` or raise for whatever stands in its place."""
        token = self._current()
        if token.type is TokenType.BLOCK_CLOSE:
            if token.value != kind:
                raise self._error(MISMATCHED_CLOSE, f"expected `{{/{kind}}}`, found `{{/{token.value}}}`", token.span)
            return self._advance()
        if token.type is TokenType.EOF:
            raise self._error(UNTERMINATED_NODE, f"unterminated `{{#{kind}}}` block", open_token.span)
        if token.type is TokenType.DIVIDER:
            raise self._error(DIVIDER_ORDER, f"`{{:{token.value}}}` is not valid in a `{{#{kind}}}` block", token.span)
        raise self._error(MISMATCHED_CLOSE, f"closing tag inside `{{#{kind}}}` block", token.span)

    def _require(self, code: Code, message: str, span: Span) -> Code:
        if not code.text:
            raise self._error(MALFORMED_HEADER, message, span)
        return code

    def _condition(self, code: Code, span: Span) -> Tuple[Code, Optional[Code]]:
        """Parse ``COND`` or ``let PATTERN = EXPR``; returns (expr, pattern)."""
        self._require(code, "missing condition", span)
        host = self._host_tokens(code)
        if host[0].is_keyword("let"):
            pattern, expr, annotation = self._split_let(code, "if let PATTERN = EXPR", span)
            if annotation is not None:
                raise self._error(MALFORMED_HEADER, "`if let` patterns take no type annotation", span)
            return expr, pattern
        return code, None

    def _parse_if_block(self, open_token: Token) -> PonyxNode:
        """Parse ``{#if}...{:else if}...{:else}...{/if}``."""
        node = PonyxNode(type=NodeType.IF, span=open_token.span)
        expr, pattern = self._condition(open_token.code, open_token.span)
        branch = Branch("if", open_token.span, expr=expr, pattern=pattern)
        seen_else = False

        while True:
            branch.children = self._parse_children()
            node.branches.append(branch)
            token = self._current()
            if token.type is TokenType.DIVIDER and token.value in ("else", "else if"):
                if seen_else:
                    raise self._error(DIVIDER_ORDER, f"`{{:{token.value}}}` after `{{:else}}`", token.span)
                self._advance()
                if token.value == "else":
                    if token.code.text:
                        raise self._error(MALFORMED_HEADER, "unexpected text after `{:else}`", token.span)
                    seen_else = True
                    branch = Branch("else", token.span)
                else:
                    expr, pattern = self._condition(token.code, token.span)
                    branch = Branch("else if", token.span, expr=expr, pattern=pattern)
                continue

            end = self._expect_block_end("if", open_token)
            node.span = open_token.span.to(end.span)
            return node

    def _parse_for_block(self, open_token: Token) -> PonyxNode:
        """Parse ``{#for PATTERN in EXPR[; key = EXPR]}...{/for}``."""
        code = self._require(open_token.code, "expected `{#for PATTERN in EXPR}`", open_token.span)
        host = self._host_tokens(code)
        keyword_in = find_top_level(host, lambda t: t.is_keyword("in"))
        if keyword_in is None or keyword_in == 0:
            raise self._error(MALFORMED_HEADER, "expected `{#for PATTERN in EXPR}`", open_token.span)

        semi = find_top_level(host, lambda t: t.is_punct(";"), keyword_in + 1)
        source_end = host[semi].start if semi is not None else code.span.end
        node = PonyxNode(
            type=NodeType.FOR,
            span=open_token.span,
            pattern=self._code(host[0].start, host[keyword_in].start),
            expr=self._require(
                self._code(host[keyword_in].end, source_end),
                "missing iterator after `in`",
                open_token.span,
            ),
        )

        if semi is not None:
            rest = host[semi + 1:]
            if len(rest) < 3 or rest[0].value != "key" or not rest[1].is_punct("="):
                raise self._error(MALFORMED_HEADER, "expected `key = EXPR` after `;`", open_token.span)
            node.key = self._code(rest[1].end, code.span.end)

        node.children = self._parse_children()
        end = self._expect_block_end("for", open_token)
        node.span = open_token.span.to(end.span)
        return node

    def _parse_match_block(self, open_token: Token) -> PonyxNode:
        """Parse ``{#match EXPR}{:case P}...{/match}``."""
        node = PonyxNode(
            type=NodeType.MATCH,
            span=open_token.span,
            expr=self._require(open_token.code, "missing subject in `{#match}`", open_token.span),
        )

        for child in self._parse_children():
            if child.type is NodeType.COMMENT:
                continue
            if child.type is NodeType.TEXT and not child.content.strip():
                continue
            raise StructuralError(
                MATCH_WITHOUT_CASE,
                "`{#match}` body must start with a `{:case}` divider",
                self.unit,
                child.span,
            )

        while self._current().type is TokenType.DIVIDER:
            token = self._advance()
            if token.value != "case":
                raise self._error(DIVIDER_ORDER, f"`{{:{token.value}}}` is not valid in a `{{#match}}` block", token.span)
            pattern = self._require(token.code, "missing pattern in `{:case}`", token.span)
            host = self._host_tokens(pattern)
            guard_index = find_top_level(host, lambda t: t.is_keyword("if"))
            guard = None
            if guard_index is not None:
                guard = self._require(
                    self._code(host[guard_index].end, pattern.span.end),
                    "missing guard after `if`",
                    token.span,
                )
                pattern = self._require(
                    self._code(pattern.span.start, host[guard_index].start),
                    "missing pattern in `{:case}`",
                    token.span,
                )
            node.branches.append(Branch("case", token.span, children=self._parse_children(), expr=guard, pattern=pattern))

        end = self._expect_block_end("match", open_token)
        node.span = open_token.span.to(end.span)
        return node

    def _parse_async_block(self, open_token: Token) -> PonyxNode:
        """Parse ``{#async EXPR}..{:await NAME}..{/async}`` or the ``async let`` shorthand."""
        code = self._require(open_token.code, "missing future in `{#async}`", open_token.span)
        host = self._host_tokens(code)
        node = PonyxNode(type=NodeType.ASYNC, span=open_token.span)

        if host[0].is_keyword("let"):
            name, awaited, node.annotation = self._split_let(
                code, "{#async let NAME[: TYPE] = EXPR.await}", open_token.span
            )
            awaited_host = self._host_tokens(awaited)
            if len(awaited_host) < 3 or not (awaited_host[-2].is_punct(".") and awaited_host[-1].is_keyword("await")):
                raise self._error(MALFORMED_HEADER, "expected `{#async let NAME = EXPR.await}`", open_token.span)
            node.shorthand = True
            node.expr = self._code(awaited.span.start, awaited_host[-2].start)
            node.pattern = name
            body = self._parse_children()
            token = self._current()
            if token.type is TokenType.DIVIDER and token.value == "await":
                raise StructuralError(
                    ASYNC_AWAIT_COUNT,
                    "`{#async let}` blocks take no `{:await}` divider",
                    self.unit,
                    token.span,
                )
            node.branches = [
                Branch("pending", open_token.span),
                Branch("ready", open_token.span, children=body, pattern=name),
            ]
        else:
            node.expr = code
            node.branches = [Branch("pending", open_token.span, children=self._parse_children())]
            while self._current().type is TokenType.DIVIDER:
                token = self._advance()
                if token.value != "await":
                    raise self._error(DIVIDER_ORDER, f"`{{:{token.value}}}` is not valid in a `{{#async}}` block", token.span)
                if len(node.branches) > 1:
                    raise StructuralError(
                        ASYNC_AWAIT_COUNT,
                        "`{#async}` allows at most one `{:await}` divider",
                        self.unit,
                        token.span,
                    )
                binding = token.code if token.code.text else None
                node.pattern = binding
                node.branches.append(Branch("ready", token.span, children=self._parse_children(), pattern=binding))

        end = self._expect_block_end("async", open_token)
        node.span = open_token.span.to(end.span)
        return node

    def _parse_key_block(self, open_token: Token) -> PonyxNode:
        """Parse ``{#key EXPR}...{/key}``."""
        node = PonyxNode(
            type=NodeType.KEY,
            span=open_token.span,
            expr=self._require(open_token.code, "missing key expression in `{#key}`", open_token.span),
        )
        node.children = self._parse_children()
        end = self._expect_block_end("key", open_token)
        node.span = open_token.span.to(end.span)
        return node

    # ------------------------------------------------------------------
    # Script checks
    # ------------------------------------------------------------------

    def _check_extern_forms(self) -> None:
        """Apply the ``compiler.mixed_extern`` policy."""
        props = self.draft.props
        grouped = [p for p in props if p.grouped]
        singleton = [p for p in props if not p.grouped]
        if not grouped or not singleton:
            return

        offender = max(grouped[0], singleton[0], key=lambda p: p.span.start)
        message = "singleton `extern let` and grouped `extern { }` props are mixed"
        if self.options.mixed_extern == "error":
            raise StructuralError(MIXED_EXTERN, message, self.unit, offender.span)
        logger.warning(message, unit=self.unit.path, prop=offender.name)
