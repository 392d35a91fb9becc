"""Cypher statement templates and the search query builder.

Values always travel as parameters. Labels, relationship types and property
names cannot be parameterized in Cypher, so they are validated as plain
identifiers before they are interpolated.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from graphrepo.errors import ArgumentError

from .models import RelationshipDirection, SearchModel
from .relationships import direction_pattern
from .schema import EntitySchema, FieldDescriptor, FieldKind, get_schema
from .utils import validate_identifier

RETURN_NODE = "RETURN DISTINCT n"


@dataclass(frozen=True)
class CypherQueries:
    """Collection of Cypher statement templates.

    ``{label}`` and the other brace placeholders are filled with validated
    identifiers; everything prefixed with ``$`` is a bound parameter.
    """

    # ==========================================================================
    # Node Writes
    # ==========================================================================

    CREATE_NODE = """
        CREATE (n:{label} $properties)
        SET n.created_at = datetime()
        RETURN n
    """

    UPDATE_NODE = """
        MATCH (n:{label}) WHERE elementId(n) = $id
        SET n += $properties, n.updated_at = datetime()
        RETURN n
    """

    SOFT_DELETE_NODE = """
        MATCH (n:{label}) WHERE elementId(n) = $id
        SET n.deleted_at = datetime()
        RETURN elementId(n) AS deleted_id
    """

    DETACH_DELETE_NODE = """
        MATCH (n:{label}) WHERE elementId(n) = $id
        WITH n, elementId(n) AS deleted_id
        DETACH DELETE n
        RETURN collect(deleted_id) AS deleted_ids
    """

    # ==========================================================================
    # Node Reads
    # ==========================================================================

    GET_NODE_BY_ID = """
        MATCH (n:{label}) WHERE elementId(n) = $id AND n.deleted_at IS NULL
        RETURN n
    """

    GET_NODE_BY_FIELD = """
        MATCH (n:{label}) WHERE n.{field} = $field_value AND n.deleted_at IS NULL
        RETURN n
        LIMIT 1
    """

    # ==========================================================================
    # Relationship Reads
    # ==========================================================================

    GET_RELATED_NODES = """
        MATCH (source:{label}) WHERE elementId(source) = $node_id
        MATCH (source){pattern}{target}
        RETURN target
        ORDER BY target.created_at DESC
    """

    GET_RELATIONSHIPS = """
        MATCH (source:{label}) WHERE elementId(source) = $node_id
        MATCH (source){pattern}(target)
        RETURN r, source, target
        ORDER BY r.created_at DESC
    """


# Singleton instance for easy access
QUERIES = CypherQueries()


def _string_list(value: Any) -> list[str] | None:
    """Return the value as a list of strings, or None if unusable as a filter."""
    if not isinstance(value, (list, tuple, set, frozenset)) or not value:
        return None
    items = [str(item) for item in value if item is not None]
    if len(items) != len(value) or any(not item.strip() for item in items):
        return None
    return items


def _parameter_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_parameter_value(item) for item in value]
    return value


def _check_paging(value: int | None, name: str) -> int:
    if value is None:
        return 0
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ArgumentError(f"{name} must be a non-negative integer, got {value!r}")
    return value


class QueryBuilder:
    """Builds parameterized statements for one entity type.

    Every ``build_*`` method returns a ``(query, parameters)`` tuple.

    Attributes:
        schema: Schema of the entity type.
        label: Validated node label.
    """

    def __init__(self, schema: EntitySchema) -> None:
        self.schema = schema
        self.label = validate_identifier(schema.label, "label")

    # ==========================================================================
    # Search
    # ==========================================================================

    def build_search_query(self, search: SearchModel) -> tuple[str, dict[str, Any]]:
        """Build the page statement for a search, returning the node as ``n``."""
        head, parameters = self._match_and_where(search)
        suffix = self._order_and_page(search)
        return " ".join([head, RETURN_NODE, *suffix]), parameters

    def build_search_query_with_relationships(
        self, search: SearchModel
    ) -> tuple[str, dict[str, Any]]:
        """Build the page statement with every relationship field aggregated.

        ``RETURN DISTINCT n`` becomes one ``OPTIONAL MATCH`` per relationship
        field, a ``WITH`` that aggregates per source node, and a
        ``RETURN DISTINCT`` of the aggregated columns. Ordering and paging
        follow, so they apply to distinct source nodes rather than expanded
        rows.
        """
        if not self.schema.relationships:
            return self.build_search_query(search)

        head, parameters = self._match_and_where(search)
        suffix = self._order_and_page(search)

        optional_matches: list[str] = []
        with_items = ["n"]
        return_items = ["n"]

        for relationship in self.schema.relationships:
            variable = f"rel_{relationship.name.lower()}"
            pattern = direction_pattern(relationship.direction, relationship.relationship_types)
            optional_matches.append(
                f"OPTIONAL MATCH (n){pattern}{self._node_pattern(variable, relationship.target_label)}"
            )

            alias = relationship.record_alias
            if relationship.is_count_only:
                with_items.append(f"count(DISTINCT {variable}) AS {alias}")
            elif relationship.is_collection:
                with_items.append(f"collect(DISTINCT {variable}) AS {alias}")
            else:
                with_items.append(f"head(collect(DISTINCT {variable})) AS {alias}")
            return_items.append(alias)

        query = " ".join(
            [
                head,
                *optional_matches,
                f"WITH {', '.join(with_items)}",
                f"RETURN DISTINCT {', '.join(return_items)}",
                *suffix,
            ]
        )
        return query, parameters

    def build_count_query(self, search: SearchModel | None = None) -> tuple[str, dict[str, Any]]:
        """Build a statement counting every match of a search, ignoring paging."""
        search = search or SearchModel()
        head, parameters = self._match_and_where(search)
        return f"{head} RETURN count(DISTINCT n) AS total_count", parameters

    def build_text_search_query(
        self, text: str, skip: int | None = None, limit: int | None = None
    ) -> tuple[str, dict[str, Any]]:
        """Build a free-text search over searchable fields.

        Falls back to every string field when no field is marked searchable.
        """
        skip = _check_paging(skip, "skip")
        limit = _check_paging(limit, "limit")

        fields = self.schema.searchable_fields or self.schema.string_fields
        conditions = ["n.deleted_at IS NULL"]
        parameters: dict[str, Any] = {}
        if text and text.strip() and fields:
            conditions.append(self.text_condition(f.stored_name for f in fields))
            parameters["text_search"] = text.lower()

        parts = [
            f"MATCH (n:{self.label})",
            f"WHERE {' AND '.join(conditions)}",
            "RETURN n",
            "ORDER BY n.created_at DESC",
        ]
        if skip > 0:
            parts.append(f"SKIP {skip}")
        if limit > 0:
            parts.append(f"LIMIT {limit}")
        return " ".join(parts), parameters

    def build_where_clause(
        self,
        search: SearchModel,
        parameters: dict[str, Any],
        filter_schema: EntitySchema | None = None,
    ) -> str:
        """Assemble the WHERE conditions of a search, without the keyword.

        Adds bound values to ``parameters``. Returns an empty string when no
        condition applies.
        """
        filter_schema = filter_schema or get_schema(type(search))
        conditions: list[str] = []

        if not search.include_deleted:
            conditions.append("n.deleted_at IS NULL")

        if search.text_search and search.text_search.strip():
            names = self._searchable_names(filter_schema)
            if names:
                conditions.append(self.text_condition(names))
                parameters["text_search"] = search.text_search.lower()

        for descriptor in (*filter_schema.fields, *filter_schema.relationships):
            value = getattr(search, descriptor.name, None)
            if value is None or value == self._filter_default(search, descriptor):
                continue
            condition = self._filter_condition(descriptor, value, parameters)
            if condition:
                conditions.append(condition)

        return " AND ".join(conditions)

    @staticmethod
    def text_condition(stored_names: Any) -> str:
        """OR together a case-insensitive containment check per property."""
        checks = [
            f"toLower(toString(n.{validate_identifier(name, 'property')})) CONTAINS $text_search"
            for name in stored_names
        ]
        return f"({' OR '.join(checks)})"

    def _match_and_where(self, search: SearchModel) -> tuple[str, dict[str, Any]]:
        filter_schema = get_schema(type(search))
        parameters: dict[str, Any] = {}
        parts = [f"MATCH (n:{self.label})"]
        parts.extend(self._relationship_matches(search, filter_schema))

        where = self.build_where_clause(search, parameters, filter_schema)
        if where:
            parts.append(f"WHERE {where}")
        return " ".join(parts), parameters

    def _relationship_matches(self, search: SearchModel, filter_schema: EntitySchema) -> list[str]:
        matches = []
        for descriptor in filter_schema.relationships:
            if _string_list(getattr(search, descriptor.name, None)) is None:
                continue
            variable = f"target_{descriptor.parameter_name}"
            pattern = direction_pattern(descriptor.direction, descriptor.relationship_types)
            matches.append(
                f"MATCH (n){pattern}{self._node_pattern(variable, descriptor.target_label)}"
            )
        return matches

    def _filter_condition(
        self, descriptor: FieldDescriptor, value: Any, parameters: dict[str, Any]
    ) -> str | None:
        name = descriptor.parameter_name

        if descriptor.is_relationship:
            ids = _string_list(value)
            if ids is None:
                return None
            if descriptor.target_field_name:
                target_field = validate_identifier(descriptor.target_field_name, "property")
                parameters[name] = [item.lower() for item in ids]
                return f"toLower(target_{name}.{target_field}) IN ${name}"
            parameters[name] = ids
            return f"elementId(target_{name}) IN ${name}"

        prop = validate_identifier(descriptor.stored_name, "property")
        kind = descriptor.kind

        if kind is FieldKind.STRING:
            text = str(value)
            if not text.strip():
                return None
            parameters[name] = text.lower()
            return f"toLower(n.{prop}) CONTAINS ${name}"

        if kind is FieldKind.LIST:
            if descriptor.element_kind is FieldKind.STRING:
                items: list[Any] | None = _string_list(value)
            else:
                items = list(value) or None
            if items is None:
                return None
            parameters[name] = _parameter_value(items)
            return f"n.{prop} IN ${name}"

        # Enumerations, numbers, booleans and datetimes compare by equality.
        parameters[name] = _parameter_value(value)
        return f"n.{prop} = ${name}"

    def _searchable_names(self, filter_schema: EntitySchema) -> list[str]:
        names: list[str] = []
        for descriptor in (*self.schema.searchable_fields, *filter_schema.searchable_fields):
            if descriptor.stored_name not in names:
                names.append(descriptor.stored_name)
        return names

    @staticmethod
    def _filter_default(search: SearchModel, descriptor: FieldDescriptor) -> Any:
        info = type(search).model_fields.get(descriptor.name)
        if info is None:
            return None
        return info.get_default(call_default_factory=True)

    def _order_and_page(self, search: SearchModel) -> list[str]:
        suffix = []
        if search.order_by_field and search.order_by_field.strip():
            field = validate_identifier(
                self.schema.stored_name_for(search.order_by_field.strip()), "order field"
            )
            suffix.append(f"ORDER BY n.{field} {'DESC' if search.descending else 'ASC'}")
        if search.skip > 0:
            suffix.append(f"SKIP {search.skip}")
        if search.page_size > 0:
            suffix.append(f"LIMIT {search.page_size}")
        return suffix

    @staticmethod
    def _node_pattern(variable: str, label: str | None) -> str:
        if label:
            return f"({variable}:{validate_identifier(label, 'label')})"
        return f"({variable})"

    # ==========================================================================
    # Node Statements
    # ==========================================================================

    def build_create_query(self, properties: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Build a node insert.

        Args:
            properties: Stored property names mapped to values.

        Returns:
            Tuple of (query, parameters); the query returns the node as ``n``.
        """
        return QUERIES.CREATE_NODE.format(label=self.label), {"properties": properties}

    def build_get_by_id_query(self, node_id: str) -> tuple[str, dict[str, Any]]:
        """Build a lookup of one node that has not been soft-deleted."""
        return QUERIES.GET_NODE_BY_ID.format(label=self.label), {"id": node_id}

    def build_get_by_field_query(self, field_name: str, value: Any) -> tuple[str, dict[str, Any]]:
        """Build an exact-match lookup on one property.

        ``field_name`` may be the field identifier or its stored name.
        """
        field = validate_identifier(self.schema.stored_name_for(field_name), "property")
        query = QUERIES.GET_NODE_BY_FIELD.format(label=self.label, field=field)
        return query, {"field_value": _parameter_value(value)}

    def build_update_query(
        self, node_id: str, properties: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        """Build a partial update.

        Null and blank values are dropped so they never overwrite stored ones.
        """
        properties = {
            key: value
            for key, value in properties.items()
            if value is not None and not (isinstance(value, str) and not value.strip())
        }
        query = QUERIES.UPDATE_NODE.format(label=self.label)
        return query, {"id": node_id, "properties": properties}

    def build_soft_delete_query(self, node_id: str) -> tuple[str, dict[str, Any]]:
        """Build a soft delete that stamps ``deleted_at``.

        Returns:
            Tuple of (query, parameters); the query returns ``deleted_id``.
        """
        return QUERIES.SOFT_DELETE_NODE.format(label=self.label), {"id": node_id}

    def build_detach_delete_query(self, node_id: str) -> tuple[str, dict[str, Any]]:
        """Build a delete of a node and all its relationships.

        Returns:
            Tuple of (query, parameters); the query returns ``deleted_ids``.
        """
        return QUERIES.DETACH_DELETE_NODE.format(label=self.label), {"id": node_id}

    # ==========================================================================
    # Relationship Reads
    # ==========================================================================

    def build_related_entities_query(
        self,
        node_id: str,
        relationship_type: str,
        direction: str | RelationshipDirection = RelationshipDirection.OUTGOING,
        target_label: str | None = None,
    ) -> tuple[str, dict[str, Any]]:
        query = QUERIES.GET_RELATED_NODES.format(
            label=self.label,
            pattern=direction_pattern(direction, relationship_type),
            target=self._node_pattern("target", target_label),
        )
        return query, {"node_id": node_id}

    def build_relationships_query(
        self,
        node_id: str,
        relationship_type: str,
        direction: str | RelationshipDirection = RelationshipDirection.OUTGOING,
    ) -> tuple[str, dict[str, Any]]:
        query = QUERIES.GET_RELATIONSHIPS.format(
            label=self.label,
            pattern=direction_pattern(direction, relationship_type, "r"),
        )
        return query, {"node_id": node_id}
