"""
PONYX Helpers
=============

Name conversion used to derive component names from file names.
"""

from __future__ import annotations

import re


# =============================================================================
# String Helpers
# =============================================================================

def snake_case(text: str) -> str:
    """
    Convert text to snake_case.

    Example:
        >>> snake_case("TodoList")
        'todo_list'
    """
    # Insert underscore before uppercase letters
    text = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", text)
    text = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", text)

    # Replace spaces, dots and hyphens
    text = re.sub(r"[-.\s]+", "_", text)

    return text.lower()


def pascal_case(text: str) -> str:
    """
    Convert text to PascalCase, keeping existing word boundaries.

    Example:
        >>> pascal_case("todo-list")
        'TodoList'
        >>> pascal_case("TodoList")
        'TodoList'
    """
    parts = [p for p in snake_case(text).split("_") if p]
    name = "".join(p.capitalize() for p in parts)
    if not name or not (name[0].isalpha() or name[0] == "_"):
        name = f"Component{name}"
    return name
