"""Pytest configuration and shared fixtures for graphrepo tests.

This module provides test entities and search models, a stand-in for driver
nodes, a mocked connection and a small stateful fake graph that interprets
the statements the repository generates.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any
from unittest.mock import AsyncMock

import pytest
from pydantic import Field

from graphrepo.graph import (
    BaseNode,
    GraphConnection,
    GraphField,
    GraphRelationship,
    RelationshipDirection,
    SearchModel,
    graph_entity,
)

# ---------------------------------------------------------------------------
# Test Entities
# ---------------------------------------------------------------------------


class Status(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


@graph_entity
class Author(BaseNode):
    name: Annotated[str, GraphField(searchable=True)] = ""
    email: str = ""


@graph_entity(label="Article")
class Article(BaseNode):
    title: Annotated[str, GraphField(searchable=True)] = ""
    content: str = ""
    view_count: int = 0
    rating: float = 0.0
    featured: bool = False
    status: Status | None = None
    tags: list[str] = Field(default_factory=list)
    published_at: datetime | None = None
    headline: Annotated[str, GraphField(stored_name="head_line")] = ""
    liked_by: Annotated[
        list[Author],
        GraphRelationship("LIKE", target_label="Author", direction=RelationshipDirection.INCOMING),
    ] = Field(default_factory=list)
    like_count: Annotated[
        int,
        GraphRelationship("LIKE", target_label="Author", direction="incoming", count_only=True),
    ] = 0
    written_by: Annotated[
        Author | None,
        GraphRelationship("WROTE", target_label="Author", direction="Incoming"),
    ] = None


@graph_entity
class Memo(BaseNode):
    """Entity without searchable fields or relationships."""

    subject: str = ""
    body: str = ""
    priority: int = 0


class ArticleSearch(SearchModel):
    title: str | None = None
    subtitle: Annotated[str | None, GraphField(searchable=True)] = None
    status: Status | None = None
    featured: bool | None = None
    view_count: int | None = None
    tags: list[str] | None = None
    tagged_with: Annotated[
        list[str] | None,
        GraphRelationship(["TAGGED", "LABELLED"], target_label="Topic", target_field="name"),
    ] = None


# ---------------------------------------------------------------------------
# Driver Stand-ins
# ---------------------------------------------------------------------------


class FakeNode(dict):
    """Property bag with an element id, shaped like ``neo4j.graph.Node``."""

    def __init__(self, element_id: str, labels: tuple[str, ...] = (), **properties: Any):
        super().__init__(properties)
        self.element_id = element_id
        self.labels = frozenset(labels)


@pytest.fixture
def make_node():
    """Factory for fake driver nodes."""

    def _make(element_id: str = "4:test:1", **properties: Any) -> FakeNode:
        return FakeNode(element_id, **properties)

    return _make


@pytest.fixture
def mock_connection() -> GraphConnection:
    """GraphConnection whose query helpers are AsyncMocks returning no rows."""
    connection = GraphConnection(uri="bolt://localhost:7687", user="neo4j", password="password")
    connection.execute_read = AsyncMock(return_value=[])
    connection.execute_write = AsyncMock(return_value=[])
    connection.execute_query = AsyncMock(return_value=[])
    return connection


# ---------------------------------------------------------------------------
# Stateful Fake Graph
# ---------------------------------------------------------------------------

_LABEL_RE = re.compile(r"(?:MATCH|CREATE) \(n:(\w+)")
_TEXT_FIELD_RE = re.compile(r"toString\(n\.(\w+)\)")
_OPTIONAL_RE = re.compile(r"OPTIONAL MATCH \(n\)(<?)-\[:([\w|]+)\]-(>?)\((rel_\w+)")
_AGGREGATE_RE = re.compile(r"(head\(collect|count|collect)\(DISTINCT (rel_\w+)\)\)? AS (\w+)")
_EDGE_RE = re.compile(r"\(source\)(<?)-\[r:(\w+)\]-(>?)\(target\)")


class FakeGraph:
    """In-memory graph that answers the statements the repository emits.

    Only the statement shapes produced by ``QueryBuilder`` and the
    relationship builders are understood.
    """

    def __init__(self) -> None:
        self.nodes: dict[str, tuple[str, dict[str, Any]]] = {}
        self.edges: set[tuple[str, str, str]] = set()
        self._counter = 0

    def add_node(self, label: str, **properties: Any) -> str:
        self._counter += 1
        node_id = f"4:fake:{self._counter}"
        properties.setdefault(
            "created_at", datetime(2024, 1, 1, tzinfo=timezone.utc).replace(second=self._counter)
        )
        self.nodes[node_id] = (label, dict(properties))
        return node_id

    def add_edge(self, start: str, relationship_type: str, end: str) -> None:
        self.edges.add((start, relationship_type, end))

    def node(self, node_id: str) -> FakeNode:
        label, properties = self.nodes[node_id]
        return FakeNode(node_id, (label,), **properties)

    def properties(self, node_id: str) -> dict[str, Any]:
        return self.nodes[node_id][1]

    def neighbours(self, node_id: str, types: list[str], incoming: bool, outgoing: bool) -> list[str]:
        found = []
        for start, relationship_type, end in sorted(self.edges):
            if relationship_type not in types:
                continue
            if outgoing and start == node_id:
                found.append(end)
            elif incoming and end == node_id:
                found.append(start)
        return found

    def _live(self, label: str) -> list[str]:
        return [
            node_id
            for node_id, (node_label, props) in self.nodes.items()
            if node_label == label and props.get("deleted_at") is None
        ]

    async def execute_write(self, query: str, parameters: dict | None = None) -> list[dict]:
        parameters = parameters or {}

        if "UNWIND $target_ids" in query:
            return self._sync(query, parameters)
        if query.lstrip().startswith("MATCH (source)") and "MERGE" in query:
            incoming, relationship_type = self._edge(query)
            source, target = parameters["source_id"], parameters["target_id"]
            if source not in self.nodes or target not in self.nodes:
                return []
            edge = (target, relationship_type, source) if incoming else (source, relationship_type, target)
            self.edges.add(edge)
            return [{"r": edge}]

        node_id = parameters.get("id")
        if "CREATE (n:" in query:
            label = _LABEL_RE.search(query).group(1)
            new_id = self.add_node(label, **parameters["properties"])
            return [{"n": self.node(new_id)}]
        if node_id not in self.nodes:
            return [{"deleted_ids": []}] if "DETACH DELETE" in query else []
        if "SET n += $properties" in query:
            self.properties(node_id).update(parameters["properties"])
            self.properties(node_id)["updated_at"] = datetime.now(timezone.utc)
            return [{"n": self.node(node_id)}]
        if "SET n.deleted_at" in query:
            self.properties(node_id)["deleted_at"] = datetime.now(timezone.utc)
            return [{"deleted_id": node_id}]
        if "DETACH DELETE" in query:
            del self.nodes[node_id]
            self.edges = {e for e in self.edges if node_id not in (e[0], e[2])}
            return [{"deleted_ids": [node_id]}]
        return []

    async def execute_read(self, query: str, parameters: dict | None = None) -> list[dict]:
        parameters = parameters or {}
        label = _LABEL_RE.search(query).group(1)
        node_ids = self._live(label)

        if "elementId(n) = $id" in query:
            node_id = parameters["id"]
            return [{"n": self.node(node_id)}] if node_id in node_ids else []

        if "$text_search" in query:
            needle = parameters["text_search"]
            fields = _TEXT_FIELD_RE.findall(query)
            node_ids = [
                node_id
                for node_id in node_ids
                if any(needle in str(self.properties(node_id).get(f, "")).lower() for f in fields)
            ]

        if "total_count" in query:
            return [{"total_count": len(node_ids)}]

        patterns = {
            variable: (types.split("|"), bool(incoming) or not outgoing, bool(outgoing) or not incoming)
            for incoming, types, outgoing, variable in _OPTIONAL_RE.findall(query)
        }
        rows = []
        for node_id in node_ids:
            row: dict[str, Any] = {"n": self.node(node_id)}
            for aggregate, variable, alias in _AGGREGATE_RE.findall(query):
                types, incoming, outgoing = patterns[variable]
                related = [
                    self.node(r)
                    for r in self.neighbours(node_id, types, incoming=incoming, outgoing=outgoing)
                ]
                if aggregate == "count":
                    row[alias] = len(related)
                elif aggregate == "collect":
                    row[alias] = related
                else:
                    row[alias] = related[0] if related else None
            rows.append(row)
        return rows

    def _edge(self, query: str) -> tuple[bool, str]:
        incoming, relationship_type, _ = _EDGE_RE.search(query).groups()
        return bool(incoming), relationship_type

    def _sync(self, query: str, parameters: dict) -> list[dict]:
        incoming, relationship_type = self._edge(query)
        source = parameters["source_id"]
        if source not in self.nodes:
            return []
        wanted = parameters["target_ids"]

        def other_end(edge: tuple[str, str, str]) -> str | None:
            start, edge_type, end = edge
            if edge_type != relationship_type:
                return None
            if incoming and end == source:
                return start
            if not incoming and start == source:
                return end
            return None

        self.edges = {e for e in self.edges if other_end(e) is None or other_end(e) in wanted}
        synced = 0
        for target in wanted:
            if target not in self.nodes:
                continue
            self.edges.add((target, relationship_type, source) if incoming else (source, relationship_type, target))
            synced += 1
        return [{"synced_count": synced}]


@pytest.fixture
def fake_graph() -> FakeGraph:
    return FakeGraph()


@pytest.fixture
def graph_connection(fake_graph: FakeGraph) -> GraphConnection:
    """GraphConnection backed by the fake graph."""
    connection = GraphConnection(uri="bolt://localhost:7687", user="neo4j", password="password")
    connection.execute_write = AsyncMock(side_effect=fake_graph.execute_write)
    connection.execute_read = AsyncMock(side_effect=fake_graph.execute_read)
    return connection
