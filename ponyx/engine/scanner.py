"""
PONYX Host Scanner
==================

Tokenizer and identifier recognizer for the host-language code embedded in
PONYX units. Host code is never parsed into a full syntax tree: it is
captured as opaque spans and only scanned for identifiers, which is all the
binding classifier and the dependency analyzer need.

Responsibilities:
    1. Lexing: identifiers, keywords, lifetimes, string/char/raw literals,
       numbers, comments and punctuation (longest match)
    2. Brace regions: find the ``}`` that closes a ``{`` while ignoring
       braces inside literals and comments
    3. Token trees: group tokens by ``()``, ``[]`` and ``{}``
    4. Reference scanning: free identifiers in value position, honoring
       shadowing by ``let``, closure parameters, ``for``/``if let``/
       ``while let``/``match`` patterns and nested items

Example:
    refs = scan("let n = count + 1; n * step", 0, 27)
    [r.name for r in refs]   # ["count", "step"]
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, FrozenSet, Iterable, List, Optional, Sequence, Union

from ponyx.engine.errors import (
    MALFORMED_HEADER,
    UNTERMINATED_LITERAL,
    UNTERMINATED_REGION,
)
from ponyx.engine.source import Span


class HostTokenType(Enum):
    """Token types for host-language code."""
    IDENT = auto()
    KEYWORD = auto()
    LIFETIME = auto()
    STRING = auto()
    CHAR = auto()
    NUMBER = auto()
    PUNCT = auto()
    OPEN = auto()
    CLOSE = auto()
    DOC = auto()


KEYWORDS = frozenset({
    "as", "async", "await", "break", "const", "continue", "crate", "dyn",
    "else", "enum", "extern", "false", "fn", "for", "if", "impl", "in",
    "let", "loop", "match", "mod", "move", "mut", "pub", "ref", "return",
    "self", "Self", "static", "struct", "super", "trait", "true", "type",
    "unsafe", "use", "where", "while", "yield",
})

# Longest first so that the lexer always takes the maximal operator
PUNCTUATION = sorted(
    [
        ">>=", "<<=", "...", "..=",
        "::", "->", "=>", "==", "!=", "<=", ">=", "&&", "||", "..",
        "+=", "-=", "*=", "/=", "%=", "^=", "&=", "|=", "<<", ">>",
        "+", "-", "*", "/", "%", "^", "!", "&", "|", "=", "<", ">",
        "@", ".", ",", ";", ":", "#", "$", "?", "~",
    ],
    key=len,
    reverse=True,
)

ASSIGN_OPS = frozenset({
    "=", "+=", "-=", "*=", "/=", "%=", "^=", "&=", "|=", "<<=", ">>=",
})

OPENERS = {"(": ")", "[": "]", "{": "}"}
CLOSERS = {")": "(", "]": "[", "}": "{"}

# Tokens after which `|` starts a closure rather than a binary or
CLOSURE_PRECEDERS = ASSIGN_OPS | {",", ";", "=>", ":", "&&", "!", "(", "[", "{"}
CLOSURE_KEYWORDS = frozenset({"move", "return", "async", "yield", "else"})


class ScanError(Exception):
    """Lexing failure inside host code, converted to a ParseError by callers."""

    def __init__(self, code: str, message: str, start: int, end: int) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.span = Span(start, max(start, end))


@dataclass(frozen=True)
class HostToken:
    """A single host-language token with absolute offsets."""
    type: HostTokenType
    value: str
    start: int
    end: int

    @property
    def span(self) -> Span:
        return Span(self.start, self.end)

    def is_punct(self, *values: str) -> bool:
        return self.type is HostTokenType.PUNCT and self.value in values

    def is_keyword(self, *values: str) -> bool:
        return self.type is HostTokenType.KEYWORD and self.value in values

    def __repr__(self) -> str:
        return f"HostToken({self.type.name}, {self.value!r}, {self.start})"


@dataclass
class Group:
    """Delimited token group: ``( ... )``, ``[ ... ]`` or ``{ ... }``."""
    open: HostToken
    items: List["Item"] = field(default_factory=list)
    close: Optional[HostToken] = None

    @property
    def delimiter(self) -> str:
        return self.open.value

    @property
    def start(self) -> int:
        return self.open.start

    @property
    def end(self) -> int:
        return self.close.end if self.close else self.open.end


Item = Union[HostToken, Group]


@dataclass(frozen=True)
class Reference:
    """
    A free identifier found by the scanner.

    Attributes:
        name: Identifier text
        span: Location in the unit
        read: Value is read (plain use or compound assignment)
        write: Place rooted at the identifier is assigned or borrowed mutably
        call: Identifier is immediately called
    """
    name: str
    span: Span
    read: bool = True
    write: bool = False
    call: bool = False


class HostLexer:
    """
    Tokenizer for host-language code.

    Lexes ``text[start:end]`` and reports absolute offsets so tokens can be
    mapped straight back to the source unit.
    """

    IDENT = re.compile(r"r#[A-Za-z_][A-Za-z0-9_]*|[A-Za-z_][A-Za-z0-9_]*")
    NUMBER = re.compile(
        r"0[xX][0-9a-fA-F_]+|0[oO][0-7_]+|0[bB][01_]+"
        r"|\d[\d_]*(?:\.(?![.A-Za-z_])[\d_]*)?(?:[eE][+-]?[\d_]+)?"
    )
    SUFFIX = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
    RAW_STRING = re.compile(r"b?r(#*)\"")

    def __init__(
        self,
        text: str,
        start: int = 0,
        end: Optional[int] = None,
        keep_docs: bool = False,
    ) -> None:
        self.text = text
        self.pos = start
        self.end = len(text) if end is None else end
        self.keep_docs = keep_docs
        self.tokens: List[HostToken] = []

    def tokenize(self) -> List[HostToken]:
        """Tokenize the whole range."""
        while True:
            token = self.next_token()
            if token is None:
                break
            self.tokens.append(token)
        return self.tokens

    def next_token(self) -> Optional[HostToken]:
        """Lex the next token, or return None at the end of the range."""
        while self.pos < self.end:
            char = self.text[self.pos]
            if char.isspace():
                self.pos += 1
                continue
            if self.text.startswith("//", self.pos):
                doc = self._line_comment()
                if doc is not None:
                    return doc
                continue
            if self.text.startswith("/*", self.pos):
                doc = self._block_comment()
                if doc is not None:
                    return doc
                continue
            return self._token()
        return None

    def _token(self) -> HostToken:
        text, pos = self.text, self.pos
        char = text[pos]

        raw = self.RAW_STRING.match(text, pos, self.end)
        if raw:
            return self._raw_string(len(raw.group(1)), raw.end())
        if char == "b" and pos + 1 < self.end and text[pos + 1] in "\"'":
            self.pos += 1
            token = self._string() if text[pos + 1] == '"' else self._char()
            return HostToken(token.type, text[pos:self.pos], pos, self.pos)
        if char == '"':
            return self._string()
        if char == "'":
            return self._char()

        ident = self.IDENT.match(text, pos, self.end)
        if ident:
            value = ident.group()
            self.pos = ident.end()
            kind = HostTokenType.KEYWORD if value in KEYWORDS else HostTokenType.IDENT
            return HostToken(kind, value, pos, self.pos)

        number = self.NUMBER.match(text, pos, self.end)
        if number:
            self.pos = number.end()
            suffix = self.SUFFIX.match(text, self.pos, self.end)
            if suffix:
                self.pos = suffix.end()
            return HostToken(HostTokenType.NUMBER, text[pos:self.pos], pos, self.pos)

        if char in OPENERS:
            self.pos += 1
            return HostToken(HostTokenType.OPEN, char, pos, self.pos)
        if char in CLOSERS:
            self.pos += 1
            return HostToken(HostTokenType.CLOSE, char, pos, self.pos)

        for punct in PUNCTUATION:
            if text.startswith(punct, pos) and pos + len(punct) <= self.end:
                self.pos += len(punct)
                return HostToken(HostTokenType.PUNCT, punct, pos, self.pos)

        # Anything else is passed through for the host compiler to judge
        self.pos += 1
        return HostToken(HostTokenType.PUNCT, char, pos, self.pos)

    def _line_comment(self) -> Optional[HostToken]:
        start = self.pos
        newline = self.text.find("\n", start, self.end)
        self.pos = self.end if newline == -1 else newline
        body = self.text[start:self.pos]
        if self.keep_docs and body.startswith("///") and not body.startswith("////"):
            return HostToken(HostTokenType.DOC, body[3:].strip(), start, self.pos)
        return None

    def _block_comment(self) -> Optional[HostToken]:
        start = self.pos
        depth = 0
        while self.pos < self.end:
            if self.text.startswith("/*", self.pos):
                depth += 1
                self.pos += 2
            elif self.text.startswith("*/", self.pos):
                depth -= 1
                self.pos += 2
                if depth == 0:
                    break
            else:
                self.pos += 1
        else:
            raise ScanError(UNTERMINATED_LITERAL, "unterminated block comment", start, start + 2)

        body = self.text[start:self.pos]
        if self.keep_docs and body.startswith("/**") and not body.startswith(("/***", "/**/")):
            lines = [line.strip().lstrip("*").strip() for line in body[3:-2].splitlines()]
            return HostToken(HostTokenType.DOC, "\n".join(l for l in lines if l), start, self.pos)
        return None

    def _string(self) -> HostToken:
        start = self.pos
        self.pos += 1
        while self.pos < self.end:
            char = self.text[self.pos]
            if char == "\\":
                self.pos += 2
                continue
            self.pos += 1
            if char == '"':
                return HostToken(HostTokenType.STRING, self.text[start:self.pos], start, self.pos)
        raise ScanError(UNTERMINATED_LITERAL, "unterminated string literal", start, start + 1)

    def _raw_string(self, hashes: int, body_start: int) -> HostToken:
        start = self.pos
        terminator = '"' + "#" * hashes
        close = self.text.find(terminator, body_start, self.end)
        if close == -1:
            raise ScanError(UNTERMINATED_LITERAL, "unterminated raw string literal", start, body_start)
        self.pos = close + len(terminator)
        return HostToken(HostTokenType.STRING, self.text[start:self.pos], start, self.pos)

    def _char(self) -> HostToken:
        start = self.pos
        text = self.text
        if start + 1 < self.end and text[start + 1] == "\\":
            close = text.find("'", start + 3, self.end)
            if close == -1:
                raise ScanError(UNTERMINATED_LITERAL, "unterminated character literal", start, start + 2)
            self.pos = close + 1
            return HostToken(HostTokenType.CHAR, text[start:self.pos], start, self.pos)
        if start + 2 < self.end and text[start + 2] == "'":
            self.pos = start + 3
            return HostToken(HostTokenType.CHAR, text[start:self.pos], start, self.pos)
        label = self.IDENT.match(text, start + 1, self.end)
        if label:
            self.pos = label.end()
            return HostToken(HostTokenType.LIFETIME, text[start:self.pos], start, self.pos)
        raise ScanError(UNTERMINATED_LITERAL, "unterminated character literal", start, start + 1)


def find_region_end(text: str, open_pos: int, end: Optional[int] = None) -> int:
    """
    Find the ``}`` closing the ``{`` at ``open_pos``.

    Only the region's own brace depth counts; braces in literals and
    comments are invisible, and markup angle brackets never close it.

    Returns:
        Offset of the closing brace

    Raises:
        ScanError: If the region or a literal inside it is unterminated
    """
    lexer = HostLexer(text, open_pos + 1, end)
    depth = 1
    while True:
        token = lexer.next_token()
        if token is None:
            raise ScanError(UNTERMINATED_REGION, "unterminated `{` region", open_pos, open_pos + 1)
        if token.type is HostTokenType.OPEN and token.value == "{":
            depth += 1
        elif token.type is HostTokenType.CLOSE and token.value == "}":
            depth -= 1
            if depth == 0:
                return token.start


def comment_end(text: str, pos: int) -> int:
    """End offset of the line or block comment starting at ``pos``."""
    lexer = HostLexer(text, pos)
    if text.startswith("//", pos):
        lexer._line_comment()
    else:
        lexer._block_comment()
    return lexer.pos


def tokenize(text: str, start: int = 0, end: Optional[int] = None) -> List[HostToken]:
    """Tokenize ``text[start:end]``."""
    return HostLexer(text, start, end).tokenize()


def build_tree(tokens: Sequence[HostToken]) -> List[Item]:
    """Group a flat token list into nested delimiter groups."""
    root: List[Item] = []
    stack: List[Group] = []
    for token in tokens:
        target = stack[-1].items if stack else root
        if token.type is HostTokenType.OPEN:
            group = Group(open=token)
            target.append(group)
            stack.append(group)
        elif token.type is HostTokenType.CLOSE:
            if not stack or OPENERS[stack[-1].delimiter] != token.value:
                raise ScanError(MALFORMED_HEADER, f"unbalanced `{token.value}`", token.start, token.end)
            stack.pop().close = token
        else:
            target.append(token)
    if stack:
        group = stack[-1]
        raise ScanError(MALFORMED_HEADER, f"unclosed `{group.delimiter}`", group.open.start, group.open.end)
    return root


def find_top_level(
    tokens: Sequence[HostToken],
    predicate: Callable[[HostToken], bool],
    start: int = 0,
) -> Optional[int]:
    """Index of the first depth-0 token matching ``predicate``."""
    depth = 0
    for index in range(start, len(tokens)):
        token = tokens[index]
        if token.type is HostTokenType.OPEN:
            depth += 1
        elif token.type is HostTokenType.CLOSE:
            depth -= 1
        elif depth == 0 and predicate(token):
            return index
    return None


def is_closure(tokens: Sequence[HostToken]) -> bool:
    """Check whether the code is a closure expression."""
    index = 0
    while index < len(tokens) and tokens[index].is_keyword("move", "async"):
        index += 1
    return index < len(tokens) and tokens[index].is_punct("|", "||")


def _punct(item: Optional[Item], *values: str) -> bool:
    return isinstance(item, HostToken) and item.is_punct(*values)


def _keyword(item: Optional[Item], *values: str) -> bool:
    return isinstance(item, HostToken) and item.is_keyword(*values)


def _brace(item: Optional[Item]) -> bool:
    return isinstance(item, Group) and item.delimiter == "{"


def _find(
    items: Sequence[Item],
    start: int,
    predicate: Callable[[Item], bool],
    stop: Optional[int] = None,
) -> Optional[int]:
    for index in range(start, len(items) if stop is None else stop):
        if predicate(items[index]):
            return index
    return None


def split_top_level(items: Sequence[Item], separator: str = ",") -> List[List[Item]]:
    """Split a token-tree sequence on a top-level punctuation token."""
    parts: List[List[Item]] = [[]]
    for item in items:
        if _punct(item, separator):
            parts.append([])
        else:
            parts[-1].append(item)
    return [part for part in parts if part]


def pattern_names(items: Sequence[Item]) -> FrozenSet[str]:
    """
    Names bound by a host pattern.

    Lowercase identifiers bind; capitalised ones are constants, variants or
    struct paths. Field names before ``:`` and path segments never bind.
    """
    names = set()

    def visit(seq: Sequence[Item]) -> None:
        for index, item in enumerate(seq):
            if isinstance(item, Group):
                visit(item.items)
                continue
            if item.type is not HostTokenType.IDENT or item.value == "_":
                continue
            name = item.value[2:] if item.value.startswith("r#") else item.value
            if not (name[0].islower() or name[0] == "_"):
                continue
            prev = seq[index - 1] if index else None
            nxt = seq[index + 1] if index + 1 < len(seq) else None
            if _punct(prev, "::", ".") or _punct(nxt, "::", ":", "!"):
                continue
            if isinstance(nxt, Group) and nxt.delimiter in "({":
                continue
            names.add(name)

    visit(items)
    return frozenset(names)


def param_names(items: Sequence[Item]) -> FrozenSet[str]:
    """Names bound by a comma-separated parameter list (types skipped)."""
    names: FrozenSet[str] = frozenset()
    for part in split_top_level(items):
        colon = _find(part, 0, lambda item: _punct(item, ":"))
        names |= pattern_names(part if colon is None else part[:colon])
    return names


def use_names(items: Sequence[Item]) -> FrozenSet[str]:
    """Names brought into scope by a ``use`` tree (globs bring none)."""
    names = set()

    def visit(seq: Sequence[Item]) -> None:
        for part in split_top_level(seq):
            last = part[-1]
            if isinstance(last, Group):
                visit(last.items)
            elif last.type is HostTokenType.IDENT and last.value != "_":
                names.add(last.value)
            elif last.is_keyword("self") and len(part) >= 3 and isinstance(part[-3], HostToken):
                names.add(part[-3].value)

    visit(items)
    return frozenset(names)


class ReferenceScanner:
    """
    Collects free identifier references from a token tree.

    The walk keeps an environment of locally bound names; a local shadows
    any component binding of the same name within its sub-scope.
    """

    FORMAT_ARG = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)(?=[:}])")
    FORMAT_PARAM = re.compile(r"([A-Za-z_][A-Za-z0-9_]*)\$")
    NESTED_ITEMS = frozenset({"struct", "enum", "trait", "type", "mod", "impl", "const", "static"})

    def __init__(self) -> None:
        self.references: List[Reference] = []

    def scan(self, items: Sequence[Item], env: Iterable[str] = ()) -> List[Reference]:
        """Scan a token tree and return the free references in order."""
        self._walk(items, frozenset(env))
        return self.references

    def _walk_group(self, group: Group, env: FrozenSet[str], macro: bool = False) -> None:
        self._walk(group.items, env, macro)

    def _walk(self, items: Sequence[Item], env: FrozenSet[str], macro: bool = False) -> None:
        k = 0
        n = len(items)
        while k < n:
            item = items[k]

            if isinstance(item, Group):
                self._walk_group(item, env, macro and item.delimiter != "{")
                k += 1
                continue

            if item.type is HostTokenType.STRING and macro:
                self._format_references(item, env)
            elif item.type is HostTokenType.KEYWORD:
                k, env = self._keyword(items, k, env)
                continue
            elif item.is_punct("#") and k + 1 < n and isinstance(items[k + 1], Group):
                # Attribute: #[...]
                k += 2
                continue
            elif item.is_punct("#") and _punct(items[k + 1] if k + 1 < n else None, "!"):
                k += 3
                continue
            elif item.is_punct("|", "||") and self._closure_start(items, k):
                k = self._closure(items, k, env)
                continue
            elif item.type is HostTokenType.IDENT:
                k = self._identifier(items, k, env, macro)
                continue
            k += 1

    def _closure_start(self, items: Sequence[Item], k: int) -> bool:
        if k == 0:
            return True
        prev = items[k - 1]
        if isinstance(prev, Group):
            return False
        if prev.type is HostTokenType.KEYWORD:
            return prev.value in CLOSURE_KEYWORDS
        return prev.type is HostTokenType.PUNCT and prev.value in CLOSURE_PRECEDERS

    def _closure(self, items: Sequence[Item], k: int, env: FrozenSet[str]) -> int:
        n = len(items)
        if items[k].is_punct("||"):
            names: FrozenSet[str] = frozenset()
            body = k + 1
        else:
            close = _find(items, k + 1, lambda item: _punct(item, "|"))
            if close is None:
                return k + 1
            names = param_names(items[k + 1:close])
            body = close + 1
        if _punct(items[body] if body < n else None, "->"):
            block = _find(items, body, _brace)
            body = n if block is None else block
        if body < n and _brace(items[body]):
            self._walk_group(items[body], env | names)
            return body + 1
        stop = _find(items, body, lambda item: _punct(item, ",", ";"))
        stop = n if stop is None else stop
        self._walk(items[body:stop], env | names)
        return stop

    def _keyword(self, items: Sequence[Item], k: int, env: FrozenSet[str]):
        """Handle scoping keywords. Returns the next index and environment."""
        n = len(items)
        token = items[k]
        value = token.value
        nxt = items[k + 1] if k + 1 < n else None

        if value == "let":
            end = _find(items, k + 1, lambda item: _punct(item, ";"))
            end = n if end is None else end
            eq = _find(items, k + 1, lambda item: _punct(item, "="), stop=end)
            colon = _find(items, k + 1, lambda item: _punct(item, ":"), stop=eq if eq is not None else end)
            pattern_end = min(index for index in (colon, eq, end) if index is not None)
            names = pattern_names(items[k + 1:pattern_end])
            if eq is not None:
                self._walk(items[eq + 1:end], env)
            return end + 1, env | names

        if value in ("if", "while") and _keyword(nxt, "let"):
            eq = _find(items, k + 2, lambda item: _punct(item, "="))
            if eq is None:
                return k + 2, env
            block = _find(items, eq + 1, _brace)
            stop = n if block is None else block
            names = pattern_names(items[k + 2:eq])
            self._walk(items[eq + 1:stop], env)
            if block is not None:
                self._walk_group(items[block], env | names)
                return block + 1, env
            return n, env

        if value == "for":
            keyword_in = _find(items, k + 1, lambda item: _keyword(item, "in"))
            if keyword_in is None:
                return k + 1, env
            block = _find(items, keyword_in + 1, _brace)
            stop = n if block is None else block
            names = pattern_names(items[k + 1:keyword_in])
            self._walk(items[keyword_in + 1:stop], env)
            if block is not None:
                self._walk_group(items[block], env | names)
                return block + 1, env
            return n, env

        if value == "match":
            block = _find(items, k + 1, _brace)
            if block is None:
                return k + 1, env
            self._walk(items[k + 1:block], env)
            self._match_arms(items[block].items, env)
            return block + 1, env

        if value == "fn":
            name = nxt.value if isinstance(nxt, HostToken) and nxt.type is HostTokenType.IDENT else None
            params = _find(items, k + 1, lambda item: isinstance(item, Group) and item.delimiter == "(")
            block = _find(items, k + 1, _brace) if params is not None else None
            inner = env | ({name} if name else set())
            if params is None or block is None:
                return k + 1, inner
            self._walk_group(items[block], inner | param_names(items[params].items))
            return block + 1, inner

        if value == "use":
            end = _find(items, k + 1, lambda item: _punct(item, ";"))
            end = n if end is None else end
            return end + 1, env | use_names(items[k + 1:end])

        if value in self.NESTED_ITEMS:
            name = nxt.value if isinstance(nxt, HostToken) and nxt.type is HostTokenType.IDENT else None
            if value in ("const", "static") and name is not None:
                end = _find(items, k + 1, lambda item: _punct(item, ";"))
                end = n if end is None else end
                eq = _find(items, k + 1, lambda item: _punct(item, "="), stop=end)
                if eq is not None:
                    self._walk(items[eq + 1:end], env)
                return end + 1, env | {name}
            if value == "impl" or name is not None:
                end = _find(items, k + 1, lambda item: _punct(item, ";") or _brace(item))
                end = n if end is None else end
                return end + 1, env | ({name} if name else set())

        if value == "as":
            j = k + 1
            while j < n and (
                _punct(items[j], "::", "&", "*")
                or _keyword(items[j], "mut", "const")
                or (isinstance(items[j], HostToken) and items[j].type is HostTokenType.IDENT)
            ):
                j += 1
            return j, env

        return k + 1, env

    def _match_arms(self, items: Sequence[Item], env: FrozenSet[str]) -> None:
        k = 0
        n = len(items)
        while k < n:
            arrow = _find(items, k, lambda item: _punct(item, "=>"))
            if arrow is None:
                self._walk(items[k:], env)
                return
            guard = _find(items, k, lambda item: _keyword(item, "if"), stop=arrow)
            names = pattern_names(items[k:guard if guard is not None else arrow])
            arm_env = env | names
            if guard is not None:
                self._walk(items[guard + 1:arrow], arm_env)
            body = arrow + 1
            if body < n and _brace(items[body]):
                self._walk_group(items[body], arm_env)
                k = body + 1
                if k < n and _punct(items[k], ","):
                    k += 1
                continue
            stop = _find(items, body, lambda item: _punct(item, ","))
            stop = n if stop is None else stop
            self._walk(items[body:stop], arm_env)
            k = stop + 1

    def _identifier(self, items: Sequence[Item], k: int, env: FrozenSet[str], macro: bool) -> int:
        n = len(items)
        token = items[k]
        prev = items[k - 1] if k else None
        nxt = items[k + 1] if k + 1 < n else None
        name = token.value[2:] if token.value.startswith("r#") else token.value

        if name == "_" or _punct(prev, ".", "::") or _punct(nxt, "::"):
            return k + 1
        if _punct(nxt, "!") and k + 2 < n and isinstance(items[k + 2], Group):
            self._macro(name, items[k + 2], env)
            return k + 3
        if _punct(nxt, ":") or (macro and _punct(nxt, "=")):
            return k + 1
        if name in env:
            return k + 1

        # Follow the place expression: a.b.0[i] ...
        j = k + 1
        while j < n:
            item = items[j]
            if (
                _punct(item, ".")
                and j + 1 < n
                and isinstance(items[j + 1], HostToken)
                and items[j + 1].type in (HostTokenType.IDENT, HostTokenType.NUMBER)
                and not (j + 2 < n and isinstance(items[j + 2], Group) and items[j + 2].delimiter == "(")
            ):
                j += 2
            elif isinstance(item, Group) and item.delimiter == "[":
                j += 1
            else:
                break
        after = items[j] if j < n else None

        write = False
        read = True
        if isinstance(after, HostToken) and after.type is HostTokenType.PUNCT and after.value in ASSIGN_OPS:
            write = True
            read = after.value != "="
        elif _keyword(prev, "mut") and k >= 2 and _punct(items[k - 2], "&", "&&"):
            write = True

        call = isinstance(nxt, Group) and nxt.delimiter == "("
        self.references.append(Reference(name, token.span, read=read, write=write, call=call))
        return k + 1

    def _macro(self, name: str, group: Group, env: FrozenSet[str]) -> None:
        if name == "matches":
            # matches!(expr, PATTERN): only the scrutinee is an expression
            parts = split_top_level(group.items)
            if parts:
                self._walk(parts[0], env, macro=True)
            return
        self._walk(group.items, env, macro=True)

    def _format_references(self, token: HostToken, env: FrozenSet[str]) -> None:
        quote = token.value.index('"')
        body = token.value[quote:]
        masked = body.replace("{{", "  ").replace("}}", "  ")
        base = token.start + quote
        for match in self.FORMAT_ARG.finditer(masked):
            self._format_name(match.group(1), base + match.start(1), env)
            close = masked.find("}", match.end())
            spec_end = len(masked) if close == -1 else close
            for param in self.FORMAT_PARAM.finditer(masked, match.end(), spec_end):
                self._format_name(param.group(1), base + param.start(1), env)

    def _format_name(self, name: str, start: int, env: FrozenSet[str]) -> None:
        if name in env or name in KEYWORDS:
            return
        self.references.append(Reference(name, Span(start, start + len(name))))


def scan_items(items: Sequence[Item], env: Iterable[str] = ()) -> List[Reference]:
    """Scan an already-built token tree."""
    return ReferenceScanner().scan(items, env)


def scan(text: str, start: int, end: int, env: Iterable[str] = ()) -> List[Reference]:
    """
    Scan ``text[start:end]`` for free references.

    Args:
        text: Full unit text (offsets stay absolute)
        start: Start offset of the code
        end: End offset of the code
        env: Names already bound locally

    Returns:
        References in textual order
    """
    return scan_items(build_tree(tokenize(text, start, end)), env)
