"""Graph module for mapping typed entities onto Neo4j.

This module provides the schema markers, the node converter, the Cypher
statement builders, connection management and the generic repository.

Example usage:
    ```python
    from typing import Annotated

    from graphrepo.graph import (
        BaseGraphRepository,
        BaseNode,
        GraphConnection,
        GraphField,
        graph_entity,
    )

    @graph_entity
    class Tag(BaseNode):
        name: Annotated[str, GraphField(searchable=True)] = ""

    async with GraphConnection.from_settings() as conn:
        tags = BaseGraphRepository(conn, Tag)
        tag = await tags.create(Tag(name="python"))
        page = await tags.get_all()
    ```
"""

from .connection import GraphConnection, GraphConnectionError
from .converter import (
    NodeConverter,
    coerce_value,
    get_list_property,
    get_property,
    parse_datetime,
)
from .models import (
    BaseNode,
    RelationshipDirection,
    SearchModel,
    SearchResult,
)
from .queries import QUERIES, CypherQueries, QueryBuilder
from .relationships import (
    build_create_relationship_query,
    build_sync_relationships_query,
    direction_pattern,
    normalize_target_ids,
)
from .repository import BaseGraphRepository
from .schema import (
    EntitySchema,
    FieldDescriptor,
    FieldKind,
    GraphField,
    GraphRelationship,
    build_schema,
    get_schema,
    graph_entity,
)
from .utils import to_snake_case, validate_identifier

__all__ = [
    # Connection
    "GraphConnection",
    "GraphConnectionError",
    # Repository
    "BaseGraphRepository",
    # Models
    "BaseNode",
    "SearchModel",
    "SearchResult",
    "RelationshipDirection",
    # Schema
    "GraphField",
    "GraphRelationship",
    "FieldKind",
    "FieldDescriptor",
    "EntitySchema",
    "build_schema",
    "get_schema",
    "graph_entity",
    # Conversion
    "NodeConverter",
    "coerce_value",
    "get_list_property",
    "get_property",
    "parse_datetime",
    # Queries
    "QUERIES",
    "CypherQueries",
    "QueryBuilder",
    "direction_pattern",
    "normalize_target_ids",
    "build_create_relationship_query",
    "build_sync_relationships_query",
    # Utils
    "to_snake_case",
    "validate_identifier",
]
