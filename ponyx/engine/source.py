"""
PONYX Source Units
==================

A source unit is the compilation granularity: the full text of one
component file plus its identity. Everything downstream refers back into
the unit through character spans; diagnostics convert those spans into
UTF-8 byte ranges and line/column positions.

Example:
    unit = SourceUnit("extern let name: String;\\n<p>{name}</p>", "Hello.ponyx")
    span = Span(11, 15)
    unit.slice(span)        # "name"
    unit.byte_range(span)   # (11, 15)
    unit.line_col(11)       # (1, 12)
"""

from __future__ import annotations

import hashlib
from bisect import bisect_right
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple, Union


@dataclass(frozen=True, order=True)
class Span:
    """Half-open character range ``[start, end)`` into a source unit."""
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Span end {self.end} precedes start {self.start}")

    def __len__(self) -> int:
        return self.end - self.start

    def contains(self, other: "Span") -> bool:
        """Check whether ``other`` lies inside this span."""
        return self.start <= other.start and other.end <= self.end

    def to(self, other: "Span") -> "Span":
        """Span covering both ``self`` and ``other``."""
        return Span(min(self.start, other.start), max(self.end, other.end))


@dataclass(frozen=True)
class Code:
    """
    Opaque host-language code captured from the unit.

    Only identifier scanning is ever applied to the text; type checking
    belongs to the host compiler.
    """
    text: str
    span: Span

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class SourceUnit:
    """
    Raw text plus file identity.

    Attributes:
        text: Complete unit text, materialized before parsing starts
        path: File identity used in diagnostics
    """
    text: str
    path: str = "<string>"
    _line_starts: Tuple[int, ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        starts: List[int] = [0]
        for index, char in enumerate(self.text):
            if char == "\n":
                starts.append(index + 1)
        object.__setattr__(self, "_line_starts", tuple(starts))

    @classmethod
    def from_file(cls, path: Union[str, Path], encoding: str = "utf-8") -> "SourceUnit":
        """Read a unit from disk."""
        path = Path(path)
        return cls(path.read_text(encoding=encoding), str(path))

    @property
    def name(self) -> str:
        """File stem, used as the default component name."""
        return Path(self.path).stem if self.path != "<string>" else "Component"

    @property
    def content_hash(self) -> str:
        """Stable hash of the unit text."""
        return hashlib.sha256(self.text.encode("utf-8")).hexdigest()[:16]

    def slice(self, span: Span) -> str:
        """Text covered by ``span``."""
        return self.text[span.start:span.end]

    def code(self, start: int, end: int, strip: bool = True) -> Code:
        """Capture ``[start, end)`` as opaque code, optionally trimmed."""
        if strip:
            while start < end and self.text[start].isspace():
                start += 1
            while end > start and self.text[end - 1].isspace():
                end -= 1
        return Code(self.text[start:end], Span(start, end))

    def byte_offset(self, offset: int) -> int:
        """Convert a character offset into a UTF-8 byte offset."""
        return len(self.text[:offset].encode("utf-8"))

    def byte_range(self, span: Span) -> Tuple[int, int]:
        """Convert a character span into a UTF-8 byte range."""
        start = self.byte_offset(span.start)
        return start, start + len(self.slice(span).encode("utf-8"))

    def line_col(self, offset: int) -> Tuple[int, int]:
        """1-based line and column of a character offset."""
        line = bisect_right(self._line_starts, offset) - 1
        return line + 1, offset - self._line_starts[line] + 1

    def line_text(self, line: int) -> str:
        """Text of a 1-based line, without its newline."""
        start = self._line_starts[line - 1]
        end = self.text.find("\n", start)
        return self.text[start:] if end == -1 else self.text[start:end]

    def context(self, span: Span, radius: int = 24) -> str:
        """
        Source excerpt around ``span`` for diagnostics.

        Returns the offending line followed by a caret marker under the
        span (clipped to the line).
        """
        line, column = self.line_col(span.start)
        text = self.line_text(line)
        start = max(0, column - 1 - radius)
        excerpt = text[start:column - 1 + max(len(span), 1) + radius]
        width = max(1, min(len(span), len(text) - (column - 1)))
        marker = " " * (column - 1 - start) + "^" * width
        return f"{excerpt}\n{marker}"
