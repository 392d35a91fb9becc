"""Generic repository for mapped entities.

``BaseGraphRepository`` exposes create/read/update/delete, search and
relationship operations for one entity type. Statements come from
``QueryBuilder`` and the relationship builders; rows are mapped back with a
``NodeConverter``.

Driver failures are logged with the operation and identifiers involved and
re-raised unchanged. Nothing is retried.
"""

from collections.abc import Iterable
from typing import Any, Generic

import structlog
from neo4j import Record
from neo4j.exceptions import DriverError, Neo4jError

from graphrepo.errors import ArgumentError, GraphRepositoryError

from .connection import GraphConnection
from .converter import NodeConverter
from .models import NodeT, RelationshipDirection, SearchModel, SearchResult
from .queries import QueryBuilder
from .relationships import build_create_relationship_query, build_sync_relationships_query

logger = structlog.get_logger(__name__)


def _require_id(value: str | None, name: str) -> str:
    if value is None or not str(value).strip():
        raise ArgumentError(f"{name} is required")
    return value


class BaseGraphRepository(Generic[NodeT]):
    """Repository for one entity type.

    Subclasses may set ``entity_type`` as a class attribute instead of
    passing it to the constructor, and may pass an entity-specific converter
    that hydrates related entities.

    Attributes:
        connection: Connection used for every statement.
        entity_type: The entity class handled by this repository.
        converter: Converter between rows and entities.
        queries: Statement builder for the entity's schema.
    """

    entity_type: type[NodeT]

    def __init__(
        self,
        connection: GraphConnection,
        entity_type: type[NodeT] | None = None,
        converter: NodeConverter[NodeT] | None = None,
    ) -> None:
        entity_type = entity_type or getattr(type(self), "entity_type", None)
        if entity_type is None and converter is not None:
            entity_type = converter.entity_type
        if entity_type is None:
            raise ArgumentError("An entity type is required")

        self.connection = connection
        self.entity_type = entity_type
        self.converter = converter or NodeConverter(entity_type)
        self.queries = QueryBuilder(self.converter.schema)

    @property
    def label(self) -> str:
        return self.queries.label

    # ==========================================================================
    # Execution
    # ==========================================================================

    async def _run(
        self,
        mode: str,
        operation: str,
        query: str,
        parameters: dict[str, Any],
        **context: Any,
    ) -> list[Record]:
        logger.debug(
            "Executing statement",
            operation=operation,
            entity_type=self.entity_type.__name__,
            query=query,
            parameters=parameters,
        )
        execute = {
            "read": self.connection.execute_read,
            "write": self.connection.execute_write,
            "auto": self.connection.execute_query,
        }[mode]
        try:
            return await execute(query, parameters)
        except (Neo4jError, DriverError) as e:
            logger.error(
                "Statement failed",
                operation=operation,
                entity_type=self.entity_type.__name__,
                error=str(e),
                **context,
            )
            raise

    async def _read(self, operation: str, query: str, parameters: dict[str, Any], **context: Any):
        return await self._run("read", operation, query, parameters, **context)

    async def _write(self, operation: str, query: str, parameters: dict[str, Any], **context: Any):
        return await self._run("write", operation, query, parameters, **context)

    # ==========================================================================
    # Node Operations
    # ==========================================================================

    async def create(self, entity: NodeT) -> NodeT:
        """Create a node from an entity.

        Relationship fields are not written; use ``create_relationship`` or
        ``sync_relationships`` for edges.

        Returns:
            The created entity, carrying its element id and creation time.

        Raises:
            ArgumentError: If entity is None.
        """
        if entity is None:
            raise ArgumentError("Cannot create a missing entity")

        properties = self.converter.convert_to_properties(entity)
        query, parameters = self.queries.build_create_query(properties)
        records = await self._write("create", query, parameters)
        if not records:
            raise GraphRepositoryError(f"Create returned no {self.label} node")

        created = self.converter.convert_from_node(records[0]["n"])
        logger.debug("Created node", label=self.label, node_id=created.id)
        return created

    async def get_by_id(self, node_id: str) -> NodeT | None:
        """Get a node that has not been soft-deleted by its element id."""
        node_id = _require_id(node_id, "node_id")
        query, parameters = self.queries.build_get_by_id_query(node_id)
        records = await self._read("get_by_id", query, parameters, node_id=node_id)
        if not records:
            return None
        return self.converter.convert_from_node(records[0]["n"])

    async def get_by_field(self, field_name: str, value: Any) -> NodeT | None:
        """Get the first node whose property equals a value.

        Args:
            field_name: Field identifier or stored property name.
            value: Value to match exactly.
        """
        if not field_name or not field_name.strip():
            raise ArgumentError("field_name is required")

        query, parameters = self.queries.build_get_by_field_query(field_name.strip(), value)
        records = await self._read("get_by_field", query, parameters, field=field_name)
        if not records:
            return None
        return self.converter.convert_from_node(records[0]["n"])

    async def update(self, entity: NodeT) -> NodeT | None:
        """Apply an entity's set fields to its stored node.

        Blank and unset fields leave the stored values untouched.

        Returns:
            The updated entity, or None if no node has the entity's id.

        Raises:
            ArgumentError: If entity is None or has no id.
        """
        if entity is None:
            raise ArgumentError("Cannot update a missing entity")
        node_id = _require_id(entity.id, "entity.id")

        properties = self.converter.convert_to_properties(entity)
        query, parameters = self.queries.build_update_query(node_id, properties)
        records = await self._write("update", query, parameters, node_id=node_id)
        if not records:
            return None
        return self.converter.convert_from_node(records[0]["n"])

    async def delete(self, node_id: str) -> bool:
        """Soft-delete a node by stamping ``deleted_at``.

        Returns:
            True if the node was found and marked.
        """
        node_id = _require_id(node_id, "node_id")
        query, parameters = self.queries.build_soft_delete_query(node_id)
        records = await self._write("delete", query, parameters, node_id=node_id)
        return any(record["deleted_id"] == node_id for record in records)

    async def detach_delete(self, node_id: str) -> bool:
        """Delete a node and all its relationships.

        Returns:
            True if the node existed and was removed.
        """
        node_id = _require_id(node_id, "node_id")
        query, parameters = self.queries.build_detach_delete_query(node_id)
        records = await self._write("detach_delete", query, parameters, node_id=node_id)
        if not records:
            return False
        return node_id in (records[0]["deleted_ids"] or [])

    # ==========================================================================
    # Search
    # ==========================================================================

    async def get_all(self, search: SearchModel | None = None) -> SearchResult[NodeT]:
        """Get one page of matching entities and the total match count.

        Without a search model every node that is not soft-deleted is
        returned on a single page. When the entity declares relationship
        fields they are aggregated per node and hydrated by the converter.

        The total comes from a separate count statement, so it reflects every
        match rather than the page size.
        """
        search = search or SearchModel(page_size=0)

        if self.converter.schema.relationships:
            query, parameters = self.queries.build_search_query_with_relationships(search)
            records = await self._read("get_all", query, parameters)
            results = [self.converter.convert_from_record(record) for record in records]
        else:
            query, parameters = self.queries.build_search_query(search)
            records = await self._read("get_all", query, parameters)
            results = [self.converter.convert_from_node(record["n"]) for record in records]

        total = await self.count(search)
        return SearchResult[self.entity_type](results=results, total_results=total)

    async def search(
        self, text: str, skip: int | None = None, limit: int | None = None
    ) -> list[NodeT]:
        """Free-text search over the entity's searchable fields.

        String fields are searched when none is marked searchable. Results
        are newest first.
        """
        query, parameters = self.queries.build_text_search_query(text, skip, limit)
        records = await self._read("search", query, parameters, text=text)
        return [self.converter.convert_from_node(record["n"]) for record in records]

    async def count(self, search: SearchModel | None = None) -> int:
        """Count every node matching a search, ignoring paging."""
        query, parameters = self.queries.build_count_query(search)
        records = await self._read("count", query, parameters)
        if not records:
            return 0
        return int(records[0]["total_count"] or 0)

    # ==========================================================================
    # Raw Statements
    # ==========================================================================

    async def execute_query(
        self, query: str, parameters: dict[str, Any] | None = None
    ) -> list[Record]:
        """Run an arbitrary statement and return its raw records."""
        if not query or not query.strip():
            raise ArgumentError("query is required")
        return await self._run("auto", "execute_query", query, parameters or {})

    async def execute_query_as(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
        node_alias: str = "n",
    ) -> list[NodeT]:
        """Run an arbitrary statement and convert every row to an entity.

        Raises:
            MissingColumnError: If a row has no ``node_alias`` column.
        """
        records = await self.execute_query(query, parameters)
        return [self.converter.convert_from_record(record, node_alias) for record in records]

    # ==========================================================================
    # Relationship Operations
    # ==========================================================================

    async def get_related_entities(
        self,
        node_id: str,
        relationship_type: str,
        direction: str | RelationshipDirection = RelationshipDirection.OUTGOING,
        target_label: str | None = None,
    ) -> list[NodeT]:
        """Get the nodes related to a node, newest first.

        Related nodes are converted with this repository's converter.
        """
        node_id = _require_id(node_id, "node_id")
        query, parameters = self.queries.build_related_entities_query(
            node_id, relationship_type, direction, target_label
        )
        records = await self._read(
            "get_related_entities",
            query,
            parameters,
            node_id=node_id,
            relationship_type=relationship_type,
        )
        return [self.converter.convert_from_node(record["target"]) for record in records]

    async def get_relationships(
        self,
        node_id: str,
        relationship_type: str,
        direction: str | RelationshipDirection = RelationshipDirection.OUTGOING,
    ) -> list[Record]:
        """Get raw ``r``, ``source`` and ``target`` rows for a node's edges."""
        node_id = _require_id(node_id, "node_id")
        query, parameters = self.queries.build_relationships_query(
            node_id, relationship_type, direction
        )
        return await self._read(
            "get_relationships",
            query,
            parameters,
            node_id=node_id,
            relationship_type=relationship_type,
        )

    async def create_relationship(
        self,
        source_id: str,
        relationship_type: str,
        target_id: str,
        direction: str | RelationshipDirection = RelationshipDirection.OUTGOING,
    ) -> bool:
        """Merge one edge between two nodes.

        Returns:
            True if both nodes were found and the edge exists.
        """
        source_id = _require_id(source_id, "source_id")
        target_id = _require_id(target_id, "target_id")
        query, parameters = build_create_relationship_query(
            source_id, relationship_type, target_id, direction
        )
        records = await self._write(
            "create_relationship",
            query,
            parameters,
            source_id=source_id,
            target_id=target_id,
            relationship_type=relationship_type,
        )
        return len(records) > 0

    async def sync_relationships(
        self,
        source_id: str,
        relationship_type: str,
        target_ids: Iterable[str] | None,
        direction: str | RelationshipDirection = RelationshipDirection.OUTGOING,
    ) -> int:
        """Reconcile a node's edges of one type to exactly ``target_ids``.

        Returns:
            Number of listed targets that exist and are now connected.
        """
        source_id = _require_id(source_id, "source_id")
        query, parameters = build_sync_relationships_query(
            source_id, relationship_type, target_ids, direction
        )
        records = await self._write(
            "sync_relationships",
            query,
            parameters,
            source_id=source_id,
            relationship_type=relationship_type,
            target_ids=parameters["target_ids"],
        )
        if not records:
            return 0
        synced = int(records[0]["synced_count"] or 0)
        logger.info(
            "Synchronized relationships",
            label=self.label,
            source_id=source_id,
            relationship_type=relationship_type,
            synced=synced,
        )
        return synced
