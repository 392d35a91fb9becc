"""Utility functions for graph operations.

Helpers for naming stored properties, validating identifiers that are
interpolated into Cypher text, and reading driver nodes and records.
"""

import re
from collections.abc import Iterable, Mapping
from typing import Any

from graphrepo.errors import ArgumentError

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def to_snake_case(name: str) -> str:
    """Derive a stored property name from a field identifier.

    The first character is lower-cased; every later upper-case character is
    prefixed with an underscore and lower-cased.

    Args:
        name: The field identifier.

    Returns:
        The lower-snake-case name.
    """
    if not name:
        return name

    chars = [name[0].lower()]
    for char in name[1:]:
        if char.isupper():
            chars.append("_")
            chars.append(char.lower())
        else:
            chars.append(char)
    return "".join(chars)


def validate_identifier(value: str, kind: str = "identifier") -> str:
    """Validate a label, relationship type or property name.

    These cannot be passed as Cypher parameters, so anything interpolated
    into statement text must pass this check first.

    Args:
        value: The identifier to check.
        kind: What the identifier names, used in the error message.

    Returns:
        The identifier unchanged.

    Raises:
        ArgumentError: If the value is not a plain Cypher identifier.
    """
    if not isinstance(value, str) or not _IDENTIFIER_RE.match(value):
        raise ArgumentError(f"Invalid {kind}: {value!r}")
    return value


def validate_identifiers(values: Iterable[str], kind: str = "identifier") -> list[str]:
    """Validate several identifiers at once.

    Raises:
        ArgumentError: If the iterable is empty or any value is invalid.
    """
    checked = [validate_identifier(value, kind) for value in values]
    if not checked:
        raise ArgumentError(f"At least one {kind} is required")
    return checked


def node_element_id(node: Any) -> str | None:
    """Get the store-assigned identifier of a driver node."""
    return getattr(node, "element_id", None)


def node_properties(node: Any) -> dict[str, Any]:
    """Get the property bag of a driver node as a plain dictionary.

    Args:
        node: A ``neo4j.graph.Node`` or any mapping-like object.

    Returns:
        Dictionary of stored properties.
    """
    if node is None:
        return {}
    if isinstance(node, Mapping):
        return dict(node)
    return dict(node.items())


def record_has(record: Any, key: str) -> bool:
    """Check whether a result row has a column."""
    return key in record.keys()
