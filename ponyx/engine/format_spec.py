"""
PONYX Format Specs
==================

Grammar for the optional format suffix of a mustache, ``{expr:spec}``.
The suffix follows the host's ``std::fmt`` grammar:

    [[fill]align][sign][#][0][width][.precision]type

    fill       a character literal, e.g. '*' (requires an align)
    align      < ^ >
    sign       + -
    width      integer or ``name$``
    precision  integer, ``*`` or ``name$``
    type       empty (Display), ?, x?, X? or an identifier (x, X, o, b, e, E)

Formatting itself is done by the host; only the grammar is checked here.

Example:
    spec = FormatSpec.parse("'*'^+#010.3x?")
    spec.align        # "center"
    spec.render()     # "{:'*'^+#010.3x?}"
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union


class FormatSpecError(ValueError):
    """Malformed format suffix; ``offset`` is relative to the suffix text."""

    def __init__(self, message: str, offset: int) -> None:
        super().__init__(message)
        self.offset = offset


ALIGNMENTS = {"<": "left", "^": "center", ">": "right"}

_CHAR = re.compile(r"'(\\u\{[0-9a-fA-F]{1,6}\}|\\x[0-7][0-9a-fA-F]|\\.|[^'\\])'")
_INTEGER = re.compile(r"\d+")
_PARAMETER = re.compile(r"([A-Za-z_][A-Za-z0-9_]*)\$")
_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

Count = Union[int, str]


@dataclass(frozen=True)
class FormatSpec:
    """Parsed ``std::fmt`` format suffix."""
    text: str
    fill: Optional[str] = None
    align: Optional[str] = None
    sign: Optional[str] = None
    alternate: bool = False
    zero: bool = False
    width: Optional[Count] = None
    precision: Optional[Count] = None
    type: str = "Display"
    parameters: Tuple[Tuple[str, int], ...] = ()

    @classmethod
    def parse(cls, text: str) -> "FormatSpec":
        """
        Parse a format suffix.

        Raises:
            FormatSpecError: If the suffix does not follow the grammar
        """
        return _SpecReader(text).read()

    def render(self) -> str:
        """The host format string for this spec, e.g. ``{:>8.2}``."""
        return "{:" + self.text + "}" if self.text else "{}"

    def host_format(self) -> str:
        """The spec as written in a host ``format!`` string, fill unquoted."""
        if not self.text:
            return "{}"
        text = self.text
        if self.fill is not None:
            text = self.fill + text[len(self.fill) + 2:]
        return "{:" + text + "}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fill": self.fill,
            "align": self.align,
            "sign": self.sign,
            "alternate": self.alternate,
            "zero": self.zero,
            "width": self.width,
            "precision": self.precision,
            "type": self.type,
        }


class _SpecReader:
    """Cursor over the suffix text."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0
        self.parameters: List[Tuple[str, int]] = []

    def _peek(self, count: int = 1) -> str:
        return self.text[self.pos:self.pos + count]

    def read(self) -> FormatSpec:
        fill, align = self._align()

        sign = None
        if self._peek() in ("+", "-"):
            sign = self._peek()
            self.pos += 1

        alternate = self._peek() == "#"
        if alternate:
            self.pos += 1

        zero = False
        width: Optional[Count] = None
        digits = _INTEGER.match(self.text, self.pos)
        if digits:
            value = digits.group()
            if value.startswith("00"):
                raise FormatSpecError("expected at most one leading `0`", self.pos)
            if len(value) > 1 and value.startswith("0"):
                zero = True
                width = int(value[1:])
            else:
                width = int(value)
            self.pos = digits.end()
        else:
            width = self._parameter()

        precision: Optional[Count] = None
        if self._peek() == ".":
            self.pos += 1
            if self._peek() == "*":
                self.pos += 1
                precision = "*"
            else:
                digits = _INTEGER.match(self.text, self.pos)
                if digits:
                    precision = int(digits.group())
                    self.pos = digits.end()
                else:
                    precision = self._parameter()
                    if precision is None:
                        raise FormatSpecError("expected an integer, `*` or `name$` precision", self.pos)

        kind = self._type()
        if self.pos != len(self.text):
            raise FormatSpecError(f"unexpected `{self.text[self.pos:]}` in format spec", self.pos)

        return FormatSpec(
            text=self.text,
            fill=fill,
            align=align,
            sign=sign,
            alternate=alternate,
            zero=zero,
            width=width,
            precision=precision,
            type=kind,
            parameters=tuple(self.parameters),
        )

    def _align(self) -> Tuple[Optional[str], Optional[str]]:
        char = _CHAR.match(self.text, self.pos)
        if char:
            after = char.end()
            if self.text[after:after + 1] not in ALIGNMENTS:
                raise FormatSpecError("fill character must be followed by `<`, `^` or `>`", after)
            self.pos = after + 1
            return char.group(1), ALIGNMENTS[self.text[after]]
        if self._peek() in ALIGNMENTS:
            self.pos += 1
            return None, ALIGNMENTS[self.text[self.pos - 1]]
        return None, None

    def _parameter(self) -> Optional[str]:
        match = _PARAMETER.match(self.text, self.pos)
        if not match:
            return None
        self.parameters.append((match.group(1), self.pos))
        self.pos = match.end()
        return match.group(1)

    def _type(self) -> str:
        if self.pos == len(self.text):
            return "Display"
        if self._peek() == "?":
            self.pos += 1
            return "Debug"
        ident = _IDENT.match(self.text, self.pos)
        if not ident:
            raise FormatSpecError(f"unexpected `{self.text[self.pos:]}` in format spec", self.pos)
        name = ident.group()
        self.pos = ident.end()
        if self._peek() == "?":
            if name not in ("x", "X"):
                raise FormatSpecError("expected either `x` or `X` before `?`", ident.start())
            self.pos += 1
            return "LowerHexDebug" if name == "x" else "UpperHexDebug"
        return name
