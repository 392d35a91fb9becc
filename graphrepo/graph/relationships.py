"""Relationship patterns and edge write statements.

Every multi-step edge write is a single statement, so there is no
read-modify-write window between round trips.
"""

from collections.abc import Iterable, Sequence
from typing import Any

from .models import RelationshipDirection
from .utils import validate_identifier, validate_identifiers


def direction_pattern(
    direction: str | RelationshipDirection,
    relationship_types: str | Sequence[str],
    variable: str | None = None,
) -> str:
    """Build the relationship part of a Cypher pattern.

    Args:
        direction: Direction seen from the left-hand node.
        relationship_types: One type or several, joined as alternatives.
        variable: Optional variable bound to the relationship.

    Returns:
        A pattern such as ``-[:LIKE]->``, ``<-[r:LIKE]-`` or ``-[:A|B]-``.

    Raises:
        ArgumentError: If a type or the variable is not a valid identifier.
    """
    if isinstance(relationship_types, str):
        relationship_types = [relationship_types]
    types = validate_identifiers(relationship_types, "relationship type")
    name = validate_identifier(variable, "variable") if variable else ""
    inner = f"[{name}:{'|'.join(types)}]"

    direction = RelationshipDirection.parse(direction)
    if direction is RelationshipDirection.INCOMING:
        return f"<-{inner}-"
    if direction is RelationshipDirection.BOTH:
        return f"-{inner}-"
    return f"-{inner}->"


def normalize_target_ids(target_ids: Iterable[str] | None) -> list[str]:
    """De-duplicate target ids, keeping order and dropping blanks."""
    seen: set[str] = set()
    ids: list[str] = []
    for target_id in target_ids or ():
        if not target_id or not str(target_id).strip() or target_id in seen:
            continue
        seen.add(target_id)
        ids.append(target_id)
    return ids


def build_create_relationship_query(
    source_id: str,
    relationship_type: str,
    target_id: str,
    direction: str | RelationshipDirection = RelationshipDirection.OUTGOING,
) -> tuple[str, dict[str, Any]]:
    """Build an idempotent merge of one edge between two nodes.

    Returns:
        Tuple of (query, parameters); the query returns the edge as ``r``.
    """
    pattern = direction_pattern(direction, relationship_type, "r")
    query = (
        "MATCH (source) WHERE elementId(source) = $source_id\n"
        "MATCH (target) WHERE elementId(target) = $target_id\n"
        f"MERGE (source){pattern}(target)\n"
        "RETURN r"
    )
    return query, {"source_id": source_id, "target_id": target_id}


def build_sync_relationships_query(
    source_id: str,
    relationship_type: str,
    target_ids: Iterable[str] | None,
    direction: str | RelationshipDirection = RelationshipDirection.OUTGOING,
) -> tuple[str, dict[str, Any]]:
    """Build a statement reconciling a node's edges to a desired target set.

    Edges of the given type and direction to targets outside ``target_ids``
    are deleted, then an edge to every listed target is merged. Running the
    statement again with the same set changes nothing. An empty set removes
    every such edge. Ids that match no node are ignored.

    Returns:
        Tuple of (query, parameters); the query returns ``synced_count``, the
        number of listed targets that were found.
    """
    old_pattern = direction_pattern(direction, relationship_type, "old_rel")
    new_pattern = direction_pattern(direction, relationship_type, "r")
    query = (
        "MATCH (source) WHERE elementId(source) = $source_id\n"
        f"OPTIONAL MATCH (source){old_pattern}(old_target)\n"
        "WHERE NOT elementId(old_target) IN $target_ids\n"
        "DELETE old_rel\n"
        "WITH DISTINCT source\n"
        "UNWIND $target_ids AS target_id\n"
        "MATCH (target) WHERE elementId(target) = target_id\n"
        f"MERGE (source){new_pattern}(target)\n"
        "RETURN count(target) AS synced_count"
    )
    return query, {"source_id": source_id, "target_ids": normalize_target_ids(target_ids)}
