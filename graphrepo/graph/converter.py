"""Conversion between driver nodes/records and typed entities.

``NodeConverter`` is the default converter for an entity type. It maps scalar
fields and relationship counts; related-entity collections are filled from
converters registered per relationship field, or by subclasses that override
``convert_from_record``.
"""

from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from enum import Enum
from typing import Any, Generic

import structlog

from graphrepo.errors import ArgumentError, ConversionError, MissingColumnError

from .models import NodeT
from .schema import EntitySchema, FieldDescriptor, FieldKind, get_schema
from .utils import node_element_id, node_properties, record_has

logger = structlog.get_logger(__name__)

TIMESTAMP_FIELDS = ("created_at", "updated_at", "deleted_at")

# Values treated as "not set" when writing properties.
_ZERO_VALUES: dict[FieldKind, Any] = {
    FieldKind.STRING: "",
    FieldKind.INTEGER: 0,
    FieldKind.FLOAT: 0.0,
    FieldKind.BOOLEAN: False,
}


def parse_datetime(value: Any) -> datetime | None:
    """Parse a stored timestamp leniently.

    Accepts native datetimes, driver temporal values (anything with
    ``to_native``) and ISO-8601 strings.

    Returns:
        The parsed datetime, or None if the value cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value

    to_native = getattr(value, "to_native", None)
    if callable(to_native):
        try:
            native = to_native()
        except (ValueError, TypeError, OverflowError):
            return None
        return native if isinstance(native, datetime) else None

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            return None

    return None


def _coerce_string(value: Any, enum_type: type[Enum] | None) -> str:
    if isinstance(value, (list, tuple, dict, set)):
        raise ConversionError(f"Cannot convert {type(value).__name__} to string")
    return str(value)


def _coerce_integer(value: Any, enum_type: type[Enum] | None) -> int:
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ConversionError(f"Cannot convert non-integral {value!r} to integer")
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError as e:
            raise ConversionError(f"Cannot convert {value!r} to integer") from e
    raise ConversionError(f"Cannot convert {type(value).__name__} to integer")


def _coerce_float(value: Any, enum_type: type[Enum] | None) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError as e:
            raise ConversionError(f"Cannot convert {value!r} to float") from e
    raise ConversionError(f"Cannot convert {type(value).__name__} to float")


def _coerce_boolean(value: Any, enum_type: type[Enum] | None) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "false"):
            return lowered == "true"
    raise ConversionError(f"Cannot convert {value!r} to boolean")


def _coerce_datetime(value: Any, enum_type: type[Enum] | None) -> datetime:
    parsed = parse_datetime(value)
    if parsed is None:
        raise ConversionError(f"Cannot convert {value!r} to datetime")
    return parsed


def _coerce_enum(value: Any, enum_type: type[Enum] | None) -> Enum:
    if enum_type is None:
        raise ConversionError("Enumeration field has no enum type")
    if isinstance(value, enum_type):
        return value

    text = str(value).strip().lower()
    for member in enum_type:
        if member.name.lower() == text or str(member.value).lower() == text:
            return member
    raise ConversionError(f"{value!r} is not a member of {enum_type.__name__}")


_COERCERS: dict[FieldKind, Callable[[Any, type[Enum] | None], Any]] = {
    FieldKind.STRING: _coerce_string,
    FieldKind.INTEGER: _coerce_integer,
    FieldKind.FLOAT: _coerce_float,
    FieldKind.BOOLEAN: _coerce_boolean,
    FieldKind.DATETIME: _coerce_datetime,
    FieldKind.ENUM: _coerce_enum,
}


def _coerce_list(value: Any, element_kind: FieldKind | None, enum_type: type[Enum] | None) -> list:
    if not isinstance(value, (list, tuple)):
        raise ConversionError(f"Cannot convert {type(value).__name__} to list")
    coerce_element = _COERCERS.get(element_kind)
    if coerce_element is None:
        raise ConversionError("List has no convertible element kind")
    items = []
    for item in value:
        if item is None:
            continue
        try:
            items.append(coerce_element(item, enum_type))
        except ConversionError:
            continue
    return items


def coerce_value(value: Any, descriptor: FieldDescriptor) -> Any:
    """Coerce a stored value to the kind declared by a field.

    Lists are rebuilt element by element into the field's declared container
    type; ``None`` elements and elements that fail to coerce are dropped.

    Raises:
        ConversionError: If the value cannot be coerced.
    """
    if descriptor.kind is FieldKind.LIST:
        items = _coerce_list(value, descriptor.element_kind, descriptor.enum_type)
        return items if descriptor.container is list else descriptor.container(items)

    coercer = _COERCERS.get(descriptor.kind)
    if coercer is None:
        raise ConversionError(f"Field '{descriptor.name}' has no convertible kind")
    return coercer(value, descriptor.enum_type)


def get_property(
    node: Any,
    name: str,
    kind: FieldKind,
    default: Any = None,
    enum_type: type[Enum] | None = None,
) -> Any:
    """Read one property of a node as a scalar kind.

    For converters that build entities by hand. Missing properties and
    values that fail to coerce give ``default``.

    Args:
        node: A driver node or a mapping of properties.
        name: Stored property name.
        kind: Scalar kind to coerce to.
        default: Value returned when the property is absent or unconvertible.
        enum_type: Enumeration class, required for ``FieldKind.ENUM``.

    Returns:
        The coerced value, or ``default``.

    Raises:
        ArgumentError: If ``kind`` is ``FieldKind.LIST``.
    """
    if kind is FieldKind.LIST:
        raise ArgumentError("Use get_list_property for list properties")
    if node is None:
        return default

    value = node_properties(node).get(name)
    if value is None:
        return default
    try:
        return _COERCERS[kind](value, enum_type)
    except ConversionError:
        return default


def get_list_property(
    node: Any,
    name: str,
    element_kind: FieldKind,
    default: list | None = None,
    enum_type: type[Enum] | None = None,
) -> list:
    """Read one list property of a node, coercing each element.

    ``None`` elements and elements that fail to coerce are dropped. A missing
    or non-list value gives ``default``, or an empty list.

    Args:
        node: A driver node or a mapping of properties.
        name: Stored property name.
        element_kind: Scalar kind of the elements.
        default: Value returned when the property is absent or not a list.
        enum_type: Enumeration class for enum elements.
    """
    fallback = [] if default is None else default
    if node is None:
        return fallback

    value = node_properties(node).get(name)
    if value is None:
        return fallback
    try:
        return _coerce_list(value, element_kind, enum_type)
    except ConversionError:
        return fallback


def _to_stored(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_to_stored(item) for item in value]
    return value


def _is_unset(value: Any, descriptor: FieldDescriptor) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if descriptor.kind is FieldKind.LIST:
        return len(value) == 0
    if descriptor.kind in _ZERO_VALUES:
        return value == _ZERO_VALUES[descriptor.kind]
    return False


class NodeConverter(Generic[NodeT]):
    """Default converter for one entity type.

    Attributes:
        entity_type: The entity class produced by this converter.
        related: Converters for related nodes, keyed by relationship field name.
    """

    def __init__(
        self,
        entity_type: type[NodeT],
        related: Mapping[str, "NodeConverter[Any]"] | None = None,
    ) -> None:
        self.entity_type = entity_type
        self.related: dict[str, NodeConverter[Any]] = dict(related or {})

    @classmethod
    def for_type(
        cls,
        entity_type: type[NodeT],
        related: Mapping[str, "NodeConverter[Any]"] | None = None,
    ) -> "NodeConverter[NodeT]":
        """Build the default converter for an entity type.

        Args:
            entity_type: The entity class to produce.
            related: Converters for related nodes, keyed by relationship field.
        """
        return cls(entity_type, related)

    @property
    def schema(self) -> EntitySchema:
        """Cached schema of the entity type."""
        return get_schema(self.entity_type)

    def convert_from_node(self, node: Any) -> NodeT:
        """Build an entity from a driver node.

        A field whose value cannot be coerced keeps its model default; it
        never stops the other fields from being converted.

        Args:
            node: A ``neo4j.graph.Node`` (or anything with ``element_id`` and
                ``items()``).

        Returns:
            The populated entity.

        Raises:
            ArgumentError: If node is None.
        """
        if node is None:
            raise ArgumentError("Cannot convert a missing node")

        properties = node_properties(node)
        values: dict[str, Any] = {"id": node_element_id(node)}

        for descriptor in self.schema.fields:
            raw = properties.get(descriptor.stored_name)
            if raw is None:
                continue
            try:
                values[descriptor.name] = coerce_value(raw, descriptor)
            except ConversionError as e:
                logger.debug(
                    "Skipping unconvertible field",
                    entity_type=self.entity_type.__name__,
                    field=descriptor.name,
                    error=str(e),
                )

        for timestamp in TIMESTAMP_FIELDS:
            parsed = parse_datetime(properties.get(timestamp))
            if parsed is not None:
                values[timestamp] = parsed

        return self.entity_type.model_construct(**values)

    def convert_from_record(self, record: Any, node_alias: str = "n") -> NodeT:
        """Build an entity from a result row.

        Converts the node column, assigns count-only relationships from their
        ``<field>_collection`` columns and hydrates relationships that have a
        registered related converter.

        Raises:
            ArgumentError: If record is None.
            MissingColumnError: If the row has no ``node_alias`` column.
        """
        if record is None:
            raise ArgumentError("Cannot convert a missing record")
        if not record_has(record, node_alias):
            raise MissingColumnError(node_alias)

        entity = self.convert_from_node(record[node_alias])

        for relationship in self.schema.relationships:
            alias = relationship.record_alias
            if not record_has(record, alias):
                continue
            value = record[alias]

            if relationship.is_count_only:
                try:
                    setattr(entity, relationship.name, _coerce_integer(value or 0, None))
                except ConversionError as e:
                    logger.debug(
                        "Skipping unconvertible count",
                        entity_type=self.entity_type.__name__,
                        field=relationship.name,
                        error=str(e),
                    )
                continue

            converter = self.related.get(relationship.name)
            if converter is None:
                continue
            if relationship.is_collection:
                setattr(entity, relationship.name, self.convert_related_nodes(value, converter))
            elif value is not None and value is not False:
                setattr(entity, relationship.name, converter.convert_from_node(value))

        return entity

    @staticmethod
    def convert_related_nodes(nodes: Iterable[Any] | None, converter: "NodeConverter[Any]") -> list:
        """Convert a collected list of related nodes, skipping empty slots."""
        if nodes is None or nodes is False:
            return []
        return [converter.convert_from_node(node) for node in nodes if node is not None]

    def convert_to_properties(self, entity: NodeT) -> dict[str, Any]:
        """Map an entity's scalar fields to node properties.

        Fields that are None, blank, or equal to their kind's zero value are
        omitted. Relationship fields are never included.
        Enum members are stored by value and collections as lists; datetimes
        are passed to the driver as native values.

        Raises:
            ArgumentError: If entity is None.
        """
        if entity is None:
            raise ArgumentError("Cannot convert a missing entity")

        properties: dict[str, Any] = {}
        for descriptor in self.schema.fields:
            value = getattr(entity, descriptor.name, None)
            if _is_unset(value, descriptor):
                continue
            properties[descriptor.stored_name] = _to_stored(value)
        return properties
