"""Per-type mapping metadata for entities and search models.

Fields are declared on pydantic models with ``typing.Annotated`` markers:

    ```python
    @graph_entity
    class Post(BaseNode):
        title: Annotated[str, GraphField(searchable=True)] = ""
        liked_by: Annotated[
            list["User"],
            GraphRelationship("LIKE", target_label="User", direction="Incoming"),
        ] = Field(default_factory=list)
    ```

``get_schema`` turns the declared field table into an ``EntitySchema`` once per
type and serves it from a cache for the rest of the process.
"""

import types
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import lru_cache
from typing import Any, TypeVar, Union, get_args, get_origin

from pydantic import BaseModel
from pydantic.fields import FieldInfo

from .models import BaseNode, RelationshipDirection, SearchModel
from .utils import to_snake_case

ModelT = TypeVar("ModelT", bound=type[BaseModel])


class FieldKind(str, Enum):
    """Closed set of field kinds the converter knows how to coerce."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    ENUM = "enum"
    LIST = "list"


# bool must be checked before int: bool is a subclass of int.
_SCALAR_KINDS: dict[type, FieldKind] = {
    bool: FieldKind.BOOLEAN,
    str: FieldKind.STRING,
    int: FieldKind.INTEGER,
    float: FieldKind.FLOAT,
    datetime: FieldKind.DATETIME,
}

_SEQUENCE_ORIGINS = (list, tuple, set, frozenset, Sequence)

_LABELS: dict[type, str] = {}


@dataclass(frozen=True)
class GraphField:
    """Marker for a scalar field.

    Attributes:
        stored_name: Property key on the node; derived from the field name when None.
        searchable: Whether free-text search covers this field.
    """

    stored_name: str | None = None
    searchable: bool = False


@dataclass(frozen=True, init=False)
class GraphRelationship:
    """Marker for a relationship field.

    On an entity the field holds related entities (a list or a single one) or,
    with ``count_only``, the number of related nodes. On a search model the
    field is a list of strings matched against ``target_field`` of the related
    nodes.
    """

    types: tuple[str, ...]
    target_label: str | None
    direction: RelationshipDirection
    count_only: bool
    target_field: str | None

    def __init__(
        self,
        types: str | Sequence[str],
        target_label: str | None = None,
        direction: str | RelationshipDirection = RelationshipDirection.OUTGOING,
        count_only: bool = False,
        target_field: str | None = None,
    ) -> None:
        if isinstance(types, str):
            types = (types,)
        object.__setattr__(self, "types", tuple(types))
        object.__setattr__(self, "target_label", target_label)
        object.__setattr__(self, "direction", RelationshipDirection.parse(direction))
        object.__setattr__(self, "count_only", count_only)
        object.__setattr__(self, "target_field", target_field)


@dataclass(frozen=True)
class FieldDescriptor:
    """Mapping metadata for one model field."""

    name: str
    stored_name: str
    kind: FieldKind | None
    element_kind: FieldKind | None = None
    enum_type: type[Enum] | None = None
    container: type = list
    nullable: bool = False
    is_searchable: bool = False
    is_relationship: bool = False
    relationship_types: tuple[str, ...] = ()
    target_label: str | None = None
    target_field_name: str | None = None
    direction: RelationshipDirection = RelationshipDirection.OUTGOING
    is_count_only: bool = False
    is_collection: bool = False

    @property
    def parameter_name(self) -> str:
        """Name of the bound parameter used when filtering on this field."""
        return self.name.lower()

    @property
    def record_alias(self) -> str:
        """Result column holding this relationship after expansion."""
        alias = self.name.lower()
        if self.is_count_only or self.is_collection:
            return f"{alias}_collection"
        return alias


@dataclass(frozen=True)
class EntitySchema:
    """Immutable mapping metadata for one model type."""

    entity_type: type
    label: str
    fields: tuple[FieldDescriptor, ...] = ()
    relationships: tuple[FieldDescriptor, ...] = ()
    _by_name: dict[str, FieldDescriptor] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        for descriptor in (*self.fields, *self.relationships):
            self._by_name.setdefault(descriptor.name, descriptor)
            self._by_name.setdefault(descriptor.stored_name, descriptor)

    @property
    def searchable_fields(self) -> tuple[FieldDescriptor, ...]:
        """Scalar fields marked searchable, in declaration order."""
        return tuple(f for f in self.fields if f.is_searchable)

    @property
    def string_fields(self) -> tuple[FieldDescriptor, ...]:
        """Scalar string fields, used for text search when none is searchable."""
        return tuple(f for f in self.fields if f.kind is FieldKind.STRING)

    @property
    def count_only_relationships(self) -> tuple[FieldDescriptor, ...]:
        """Relationships mapped to a number of related nodes."""
        return tuple(r for r in self.relationships if r.is_count_only)

    def field(self, name: str) -> FieldDescriptor | None:
        """Look up a descriptor by field name or stored name."""
        return self._by_name.get(name)

    def stored_name_for(self, name: str) -> str:
        """Stored property name for a field, or the name itself if unmapped."""
        descriptor = self.field(name)
        return descriptor.stored_name if descriptor else name


def _unwrap_optional(annotation: Any) -> tuple[Any, bool]:
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = get_args(annotation)
        non_null = [arg for arg in args if arg is not type(None)]
        if len(non_null) == 1:
            return non_null[0], len(non_null) != len(args)
        raise TypeError(f"Unsupported union field type: {annotation!r}")
    return annotation, False


def _scalar_kind(annotation: Any) -> tuple[FieldKind, type[Enum] | None]:
    if isinstance(annotation, type):
        if issubclass(annotation, Enum):
            return FieldKind.ENUM, annotation
        for python_type, kind in _SCALAR_KINDS.items():
            if issubclass(annotation, python_type):
                return kind, None
    raise TypeError(f"Unsupported field type: {annotation!r}")


def resolve_kind(
    annotation: Any,
) -> tuple[FieldKind, FieldKind | None, type[Enum] | None, bool]:
    """Resolve a field annotation to its kind.

    Args:
        annotation: The declared type, possibly Optional and possibly a sequence.

    Returns:
        Tuple of (kind, element kind, enum type, nullable).

    Raises:
        TypeError: If the annotation is outside the supported kinds.
    """
    inner, nullable = _unwrap_optional(annotation)
    origin = get_origin(inner)
    if origin is not None and isinstance(origin, type) and issubclass(origin, _SEQUENCE_ORIGINS):
        args = [arg for arg in get_args(inner) if arg is not Ellipsis]
        if len(args) != 1:
            raise TypeError(f"Unsupported sequence field type: {annotation!r}")
        element, _ = _unwrap_optional(args[0])
        element_kind, enum_type = _scalar_kind(element)
        return FieldKind.LIST, element_kind, enum_type, nullable
    if inner in _SEQUENCE_ORIGINS:
        raise TypeError(f"Sequence field needs an element type: {annotation!r}")

    kind, enum_type = _scalar_kind(inner)
    return kind, None, enum_type, nullable


def _container_type(annotation: Any) -> type:
    inner, _ = _unwrap_optional(annotation)
    origin = get_origin(inner)
    if origin in (tuple, set, frozenset):
        return origin
    return list


def _is_collection(annotation: Any) -> bool:
    try:
        inner, _ = _unwrap_optional(annotation)
    except TypeError:
        return False
    origin = get_origin(inner) or inner
    return (
        isinstance(origin, type)
        and origin is not str
        and issubclass(origin, _SEQUENCE_ORIGINS)
    )


def _marker(info: FieldInfo, marker_type: type) -> Any:
    return next((m for m in info.metadata if isinstance(m, marker_type)), None)


def _base_field_names(model_type: type[BaseModel]) -> frozenset[str]:
    if issubclass(model_type, BaseNode):
        return frozenset(BaseNode.model_fields)
    if issubclass(model_type, SearchModel):
        return frozenset(SearchModel.model_fields)
    return frozenset()


def _relationship_descriptor(
    name: str, info: FieldInfo, marker: GraphRelationship
) -> FieldDescriptor:
    # Entity relationship fields hold models, which have no scalar kind;
    # search filters over relationships are lists of strings.
    try:
        kind, element_kind, enum_type, nullable = resolve_kind(info.annotation)
    except TypeError:
        kind, element_kind, enum_type, nullable = None, None, None, True

    return FieldDescriptor(
        name=name,
        stored_name=to_snake_case(name),
        kind=kind,
        element_kind=element_kind,
        enum_type=enum_type,
        nullable=nullable,
        is_relationship=True,
        relationship_types=marker.types,
        target_label=marker.target_label,
        target_field_name=marker.target_field,
        direction=marker.direction,
        is_count_only=marker.count_only,
        is_collection=not marker.count_only and _is_collection(info.annotation),
    )


def _scalar_descriptor(name: str, info: FieldInfo, marker: GraphField | None) -> FieldDescriptor:
    kind, element_kind, enum_type, nullable = resolve_kind(info.annotation)
    stored_name = marker.stored_name if marker and marker.stored_name else to_snake_case(name)
    return FieldDescriptor(
        name=name,
        stored_name=stored_name,
        kind=kind,
        element_kind=element_kind,
        enum_type=enum_type,
        container=_container_type(info.annotation) if kind is FieldKind.LIST else list,
        nullable=nullable,
        is_searchable=bool(marker and marker.searchable),
    )


def build_schema(model_type: type[BaseModel], label: str | None = None) -> EntitySchema:
    """Build the schema of a model type from its declared fields.

    Base identifier/timestamp fields, paging fields and frozen fields are
    skipped. Markers are taken as declared;
    a relationship without a target label is not rejected here.

    Args:
        model_type: An entity or search model class.
        label: Node label, defaulting to the class name.

    Returns:
        The entity schema.

    Raises:
        TypeError: If a scalar field has an unsupported type.
    """
    skipped = _base_field_names(model_type)
    fields: list[FieldDescriptor] = []
    relationships: list[FieldDescriptor] = []

    for name, info in model_type.model_fields.items():
        if name in skipped or info.frozen:
            continue

        relationship = _marker(info, GraphRelationship)
        if relationship is not None:
            relationships.append(_relationship_descriptor(name, info, relationship))
        else:
            fields.append(_scalar_descriptor(name, info, _marker(info, GraphField)))

    return EntitySchema(
        entity_type=model_type,
        label=label or _LABELS.get(model_type, model_type.__name__),
        fields=tuple(fields),
        relationships=tuple(relationships),
    )


@lru_cache(maxsize=None)
def get_schema(model_type: type[BaseModel]) -> EntitySchema:
    """Get the cached schema for a model type, building it on first use.

    The cache is keyed by type identity and never invalidated. Concurrent
    first calls may both build the schema; the results are equal.
    """
    return build_schema(model_type)


def graph_entity(cls: ModelT | None = None, *, label: str | None = None) -> Any:
    """Register an entity type and build its schema eagerly.

    Can be used bare (``@graph_entity``) or with a label
    (``@graph_entity(label="BlogPost")``).
    """

    def register(model_type: ModelT) -> ModelT:
        if label:
            _LABELS[model_type] = label
        # Models with unresolved forward references are built on first use,
        # after model_rebuild().
        if getattr(model_type, "__pydantic_complete__", True):
            get_schema(model_type)
        return model_type

    if cls is not None:
        return register(cls)
    return register
