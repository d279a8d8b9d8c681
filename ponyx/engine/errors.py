"""
PONYX Diagnostics
=================

Compile-time error taxonomy. Every failure carries the source file
identity, a byte-offset range, and a stable error code so editors and
build tools can render inline diagnostics.

Hierarchy:
    PonyxError
    ├── ParseError       P0xx  lexing / markup / divider ordering
    ├── BindingError     B0xx  unresolved identifiers, immutable writes
    ├── StructuralError  S0xx  logic-block shape violations
    └── CodegenError     G0xx  malformed fragment forms

All errors are fail-fast at unit granularity: a unit that raises produces
no generated artifact.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from ponyx.engine.source import SourceUnit, Span


# Stable error codes
UNTERMINATED_REGION = "P001"
MISMATCHED_CLOSE = "P002"
DIVIDER_ORDER = "P003"
UNTERMINATED_NODE = "P004"
UNTERMINATED_LITERAL = "P005"
MALFORMED_HEADER = "P006"
MALFORMED_ITEM = "P007"
UNEXPECTED_CHAR = "P008"

UNRESOLVED_IDENTIFIER = "B001"
IMMUTABLE_WRITE = "B002"
DUPLICATE_BINDING = "B003"

MATCH_WITHOUT_CASE = "S001"
ASYNC_AWAIT_COUNT = "S002"
MIXED_EXTERN = "S003"

MALFORMED_FRAGMENT = "G001"


class PonyxError(Exception):
    """
    Base exception for compile diagnostics.

    Attributes:
        code: Stable error code (e.g. ``"P001"``)
        message: Human readable message
        unit: Source unit the error belongs to
        span: Primary character span
        related: Secondary spans with labels
    """

    kind = "error"

    def __init__(
        self,
        code: str,
        message: str,
        unit: Optional[SourceUnit] = None,
        span: Optional[Span] = None,
        related: Sequence[Tuple[str, Span]] = (),
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.unit = unit
        self.span = span
        self.related: List[Tuple[str, Span]] = list(related)

    @property
    def file(self) -> str:
        return self.unit.path if self.unit else "<unknown>"

    @property
    def byte_range(self) -> Optional[Tuple[int, int]]:
        if self.unit is None or self.span is None:
            return None
        return self.unit.byte_range(self.span)

    @property
    def line(self) -> int:
        return self._position()[0]

    @property
    def column(self) -> int:
        return self._position()[1]

    @property
    def context(self) -> str:
        if self.unit is None or self.span is None:
            return ""
        return self.unit.context(self.span)

    def _position(self) -> Tuple[int, int]:
        if self.unit is None or self.span is None:
            return 0, 0
        return self.unit.line_col(self.span.start)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        data: Dict[str, Any] = {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "file": self.file,
            "range": list(self.byte_range) if self.byte_range else None,
            "line": self.line,
            "column": self.column,
        }
        if self.related and self.unit is not None:
            data["related"] = [
                {"label": label, "range": list(self.unit.byte_range(span))}
                for label, span in self.related
            ]
        return data

    def render(self) -> str:
        """Format as ``file:line:col: CODE message`` with context."""
        header = f"{self.file}:{self.line}:{self.column}: {self.code} {self.message}"
        context = self.context
        lines = [header]
        if context:
            lines.append(context)
        for label, span in self.related:
            if self.unit is not None:
                line, column = self.unit.line_col(span.start)
                lines.append(f"  note: {label} at {self.file}:{line}:{column}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return f"{self.code} {self.message}"


class ParseError(PonyxError):
    """
    Raised when a unit cannot be lexed or parsed.

    ``partial`` holds whatever nodes were built before the failure; it is
    for diagnostics only and never reaches code generation.
    """

    kind = "parse"

    def __init__(self, *args: Any, partial: Optional[List[Any]] = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.partial: List[Any] = partial or []


class BindingError(PonyxError):
    """Raised for unresolved identifiers and writes to immutable bindings."""
    kind = "binding"


class StructuralError(PonyxError):
    """Raised when a logic block has the wrong shape."""
    kind = "structural"


class CodegenError(PonyxError):
    """Raised when code generation meets an inconsistent fragment form."""
    kind = "codegen"
