"""
The data types and capabilities the shell core consumes from a database
backend. The core only talks to these protocols; sqcl.backend supplies the
SQLAlchemy implementation.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

from sqcl.dialect import Dialect


@dataclass(frozen=True)
class ColumnInfo:
    """
    Metadata for a single table column, as reported by the metadata source.
    """

    name: str
    data_type: str
    is_nullable: bool = True
    is_primary_key: bool = False
    default_value: str | None = None


@dataclass(frozen=True)
class QueryResult:
    """
    The result of running one SQL statement. For statements that return rows,
    `is_select` is True and `columns` and `rows` are filled in. Otherwise,
    `rows_affected` and (where the driver reports it) `last_insert_id` are.
    `duration` is the elapsed time in seconds.
    """

    columns: Sequence[str] = field(default_factory=tuple)
    rows: Sequence[Sequence[Any]] = field(default_factory=tuple)
    rows_affected: int = 0
    last_insert_id: int | None = None
    is_select: bool = False
    duration: float = 0.0


class Connector(Protocol):
    """
    Connects to a database and runs statements against it. Every call that
    talks to the database takes a timeout, in seconds (None means wait
    forever). Failures raise ConnectorError; timeouts raise QueryTimeoutError.
    """

    @property
    def dialect(self) -> Dialect:
        """The dialect of the connected database."""

    def connect(self, url: str, timeout: float | None = None) -> None:
        """Connect to the database at `url`."""

    def execute(
        self,
        query: str,
        params: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> QueryResult:
        """Run one statement."""

    def ping(self, timeout: float | None = None) -> None:
        """Check that the database is reachable."""

    def current_database_name(self, timeout: float | None = None) -> str:
        """Return the name of the current database, or ""."""

    def close(self) -> None:
        """Release the connection pool."""


class MetadataProvider(Protocol):
    """
    Lists tables, columns and databases. Failures raise MetadataError.
    """

    def list_tables(self) -> Sequence[str]:
        """Names of the tables in the current database."""

    def list_columns(self, table_name: str) -> Sequence[ColumnInfo]:
        """Columns of `table_name`, in table order."""

    def list_databases(self) -> Sequence[str]:
        """Names of the databases on the server."""
