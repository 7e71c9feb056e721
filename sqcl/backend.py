"""
SQLAlchemy implementations of the Connector and MetadataProvider
capabilities. One SQLAlchemy engine (and therefore one connection pool) is
shared by the statements the user runs and the metadata queries behind
completion.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from time import perf_counter
from typing import Any, Callable, Mapping, TypeVar

import sqlalchemy
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from sqcl.db import ColumnInfo, QueryResult
from sqcl.dialect import Dialect, get_dialect
from sqcl.errors import (
    ConnectorError,
    MetadataError,
    QueryTimeoutError,
    UnsupportedDriverError,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)

PING_SQL = "SELECT 1"


def call_with_timeout(
    executor: ThreadPoolExecutor,
    fn: Callable[[], T],
    timeout: float | None,
    what: str,
) -> T:
    """
    Run `fn` and return its result, giving up after `timeout` seconds. With
    no timeout, `fn` runs in the calling thread. Otherwise it runs on
    `executor`; a call that times out keeps running there, but its result
    is thrown away.

    :param executor: where to run `fn` when there's a timeout
    :param fn: the function to call
    :param timeout: seconds to wait, or None to wait forever
    :param what: a description of the call, for the timeout message

    :raises QueryTimeoutError: if `fn` doesn't finish in time
    """
    if timeout is None:
        return fn()

    future: Future[T] = executor.submit(fn)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        # pylint: disable=raise-missing-from
        future.cancel()
        raise QueryTimeoutError(f"{what} timed out after {timeout:g} seconds.")


class SQLAlchemyConnector:
    """
    A Connector backed by a SQLAlchemy engine. Works with any SQLAlchemy URL
    whose engine has a dialect (see sqcl.dialect).
    """

    def __init__(self, max_workers: int = 4) -> None:
        self._engine: Engine | None = None
        self._dialect: Dialect | None = None
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="sqcl-db"
        )

    @property
    def engine(self) -> Engine:
        """
        The SQLAlchemy engine. Raises ConnectorError if not connected.
        """
        if self._engine is None:
            raise ConnectorError("Not connected to a database.")

        return self._engine

    @property
    def dialect(self) -> Dialect:
        """
        The dialect of the connected database.
        """
        if self._dialect is None:
            raise ConnectorError("Not connected to a database.")

        return self._dialect

    def connect(self, url: str, timeout: float | None = None) -> None:
        """
        Connect to a database. Some databases don't complain about a bad URL
        until the first operation, so this pings the database before
        declaring success.

        :param url: the SQLAlchemy URL
        :param timeout: how long to wait for the database, in seconds

        :raises ConnectorError: if the connection fails
        :raises UnsupportedDriverError: if there's no dialect for the engine
        """
        try:
            engine = sqlalchemy.create_engine(url)
        except (sqlalchemy.exc.SQLAlchemyError, ValueError) as e:
            raise ConnectorError(f"Unable to connect to {url}: {e}") from e

        try:
            dialect = get_dialect(engine.name)
        except UnsupportedDriverError:
            engine.dispose()
            raise

        self._engine = engine
        self._dialect = dialect
        try:
            self.ping(timeout)
        except ConnectorError as e:
            self.close()
            raise ConnectorError(f"Unable to connect to {url}: {e}") from e

        logger.debug("Connected to %s (%s).", url, dialect.name)

    def execute(
        self,
        query: str,
        params: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> QueryResult:
        """
        Run a SQL statement and collect its results.

        :param query: the statement, which may contain :name bind parameters
        :param params: values for the bind parameters, if any
        :param timeout: how long to wait, in seconds, or None

        :returns: the QueryResult

        :raises ConnectorError: if the statement fails
        :raises QueryTimeoutError: if the statement doesn't finish in time
        """
        engine = self.engine

        def run() -> QueryResult:
            start = perf_counter()
            with Session(engine) as session:
                result = session.execute(sqlalchemy.text(query), params or {})
                if result.returns_rows:
                    columns = list(result.keys())
                    rows = [tuple(row) for row in result.fetchall()]
                    session.commit()
                    return QueryResult(
                        columns=columns,
                        rows=rows,
                        is_select=True,
                        duration=perf_counter() - start,
                    )

                # Not every driver supports these, and DDL often reports -1.
                rows_affected = max(getattr(result, "rowcount", 0) or 0, 0)
                last_insert_id = getattr(result, "lastrowid", None)
                session.commit()
                return QueryResult(
                    rows_affected=rows_affected,
                    last_insert_id=last_insert_id,
                    is_select=False,
                    duration=perf_counter() - start,
                )

        try:
            return call_with_timeout(self._executor, run, timeout, "Query")
        except sqlalchemy.exc.SQLAlchemyError as e:
            raise ConnectorError(str(e)) from e

    def ping(self, timeout: float | None = None) -> None:
        """
        Check that the database is reachable.

        :raises ConnectorError: if it isn't
        """
        engine = self.engine

        def run() -> None:
            with engine.connect() as conn:
                conn.execute(sqlalchemy.text(PING_SQL))

        try:
            call_with_timeout(self._executor, run, timeout, "Ping")
        except sqlalchemy.exc.SQLAlchemyError as e:
            raise ConnectorError(str(e)) from e

    def current_database_name(self, timeout: float | None = None) -> str:
        """
        Get the name of the current database. Returns "" if there isn't one
        (e.g., MySQL without a default schema).
        """
        engine = self.engine
        sql = self.dialect.current_database_query

        def run() -> str:
            with engine.connect() as conn:
                name = conn.execute(sqlalchemy.text(sql)).scalar()
                return "" if name is None else str(name)

        try:
            return call_with_timeout(
                self._executor, run, timeout, "Current database lookup"
            )
        except sqlalchemy.exc.SQLAlchemyError as e:
            raise ConnectorError(str(e)) from e

    def close(self) -> None:
        """
        Dispose of the engine's connection pool. Safe to call more than once.
        """
        self._executor.shutdown(wait=False, cancel_futures=True)
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None


class SQLAlchemyMetadataProvider:
    """
    A MetadataProvider that runs the dialect's introspection queries through
    a SQLAlchemy engine.
    """

    def __init__(self, engine: Engine, dialect: Dialect) -> None:
        self._engine = engine
        self._dialect = dialect

    def _query(
        self, sql: str, params: Mapping[str, Any] | None = None
    ) -> list[tuple[Any, ...]]:
        try:
            with self._engine.connect() as conn:
                result = conn.execute(sqlalchemy.text(sql), params or {})
                return [tuple(row) for row in result.fetchall()]
        except sqlalchemy.exc.SQLAlchemyError as e:
            raise MetadataError(str(e)) from e

    def list_tables(self) -> list[str]:
        """
        Names of the tables in the current database.
        """
        return [str(row[0]) for row in self._query(self._dialect.tables_query)]

    def list_columns(self, table_name: str) -> list[ColumnInfo]:
        """
        Columns of a table, in table order. An unknown table has no columns.
        """
        rows = self._query(
            self._dialect.columns_query, {"table_name": table_name}
        )
        columns: list[ColumnInfo] = []
        for name, data_type, nullable, key, default in rows:
            columns.append(
                ColumnInfo(
                    name=str(name),
                    data_type=str(data_type or ""),
                    is_nullable=str(nullable).upper() == "YES",
                    is_primary_key=str(key).upper() == "PRI",
                    default_value=None if default is None else str(default),
                )
            )

        return columns

    def list_databases(self) -> list[str]:
        """
        Names of the databases on the server.
        """
        return [
            str(row[0]) for row in self._query(self._dialect.databases_query)
        ]
