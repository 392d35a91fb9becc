"""Typed entity mapping and repositories for Neo4j."""

__version__ = "0.1.0"
