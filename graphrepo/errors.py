"""Exception types raised by graphrepo.

Query execution failures are not wrapped: the driver's own
``neo4j.exceptions.Neo4jError`` / ``DriverError`` reach the caller unchanged.
"""


class GraphRepositoryError(Exception):
    """Base class for errors raised by this package."""

    pass


class ConfigurationError(GraphRepositoryError):
    """Raised when required connection settings are missing."""

    pass


class ArgumentError(GraphRepositoryError, ValueError):
    """Raised for invalid input to a public operation."""

    pass


class MissingColumnError(ArgumentError):
    """Raised when a result row lacks the requested node column."""

    def __init__(self, column: str) -> None:
        super().__init__(f"Record does not contain a column named '{column}'")
        self.column = column


class ConversionError(GraphRepositoryError, ValueError):
    """Raised when a stored value cannot be coerced to a field's kind.

    The converter recovers from this per field; it never aborts a conversion.
    """

    pass
