"""Base models shared by every mapped entity and search.

Application entities subclass ``BaseNode``; entity-specific searches subclass
``SearchModel`` and add filter fields.
"""

from datetime import datetime
from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field


class RelationshipDirection(str, Enum):
    """Direction of a relationship, seen from the source node."""

    OUTGOING = "Outgoing"
    INCOMING = "Incoming"
    BOTH = "Both"

    @classmethod
    def parse(cls, value: "str | RelationshipDirection | None") -> "RelationshipDirection":
        """Parse a direction name case-insensitively, defaulting to outgoing.

        Args:
            value: A direction member or its name in any case.

        Returns:
            The matching direction, or OUTGOING when unrecognised.
        """
        if isinstance(value, cls):
            return value
        if value:
            lowered = str(value).lower()
            for member in cls:
                if member.value.lower() == lowered:
                    return member
        return cls.OUTGOING


class BaseNode(BaseModel):
    """Base model for all mapped entities.

    The identifier is the store-assigned element id; it is never generated
    here. Timestamps are written by the generated statements.

    Attributes:
        id: Element id of the node.
        created_at: Creation timestamp.
        updated_at: Last update timestamp.
        deleted_at: Soft-delete timestamp.
    """

    model_config = ConfigDict(extra="forbid")

    id: str | None = Field(default=None, description="Store-assigned element id")
    created_at: datetime | None = Field(default=None, description="Creation timestamp")
    updated_at: datetime | None = Field(default=None, description="Last update timestamp")
    deleted_at: datetime | None = Field(default=None, description="Soft-delete timestamp")


class SearchModel(BaseModel):
    """Paging, ordering and free-text options for a search.

    Subclasses add filter fields; each one becomes a condition when set to a
    non-default value.

    Attributes:
        text_search: Free text matched against searchable fields.
        page: 1-based page number.
        page_size: Results per page, 0 for unlimited.
        include_deleted: Whether soft-deleted nodes are returned.
        order_by_field: Stored property to order by, or None for no ordering.
        descending: Sort direction.
    """

    model_config = ConfigDict(extra="forbid")

    text_search: str | None = Field(default=None, description="Free-text search")
    page: int = Field(default=1, ge=1, description="1-based page number")
    page_size: int = Field(default=25, ge=0, description="Page size, 0 for unlimited")
    include_deleted: bool = Field(default=False, description="Include soft-deleted nodes")
    order_by_field: str | None = Field(default="created_at", description="Order field")
    descending: bool = Field(default=True, description="Sort descending")

    @property
    def skip(self) -> int:
        """Number of results before the current page."""
        return (self.page - 1) * self.page_size


NodeT = TypeVar("NodeT", bound=BaseNode)


class SearchResult(BaseModel, Generic[NodeT]):
    """One page of entities plus the total number of matches.

    ``total_results`` comes from a separate count statement, so it does not
    depend on paging.

    Attributes:
        results: Entities on the requested page.
        total_results: Number of matches across all pages.
    """

    results: list[NodeT] = Field(default_factory=list, description="Entities on this page")
    total_results: int = Field(default=0, ge=0, description="Matches across all pages")
