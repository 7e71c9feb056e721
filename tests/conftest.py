"""Shared fakes for the sqcl tests.

The fakes stand in for the database and the terminal: a metadata provider
that counts its calls, a controllable clock, a connector that records the
statements it's given, and a line editor that replays a script.
"""

import threading
from typing import Any, Callable, Iterable, Mapping

import pytest

from sqcl.cache import MetadataCache
from sqcl.config import ShellSettings
from sqcl.db import ColumnInfo, QueryResult
from sqcl.dialect import MYSQL, Dialect
from sqcl.errors import ConnectorError, MetadataError
from sqcl.repl import Repl


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingProvider:
    """A MetadataProvider backed by dicts, counting calls per method."""

    def __init__(
        self,
        tables: Iterable[str] = ("users", "orders"),
        columns: Mapping[str, list[ColumnInfo]] | None = None,
        databases: Iterable[str] = ("app", "information_schema"),
    ) -> None:
        self.tables = list(tables)
        self.columns = dict(
            columns
            if columns is not None
            else {
                "users": [
                    ColumnInfo("id", "int", is_nullable=False, is_primary_key=True),
                    ColumnInfo("name", "varchar(64)"),
                    ColumnInfo("email", "varchar(128)", default_value="''"),
                ],
                "orders": [
                    ColumnInfo("id", "int", is_nullable=False, is_primary_key=True),
                    ColumnInfo("user_id", "int", is_nullable=False),
                    ColumnInfo("total", "decimal(10,2)"),
                ],
            }
        )
        self.databases = list(databases)
        self.calls: dict[str, int] = {}
        self.failing: set[str] = set()
        # When set, fetches block until the event is set.
        self.gate: threading.Event | None = None
        self._lock = threading.Lock()

    def _record(self, what: str) -> None:
        with self._lock:
            self.calls[what] = self.calls.get(what, 0) + 1

        if self.gate is not None:
            self.gate.wait(5)

        if what in self.failing:
            raise MetadataError(f"{what} is broken")

    def count(self, what: str) -> int:
        with self._lock:
            return self.calls.get(what, 0)

    def list_tables(self) -> list[str]:
        self._record("tables")
        return list(self.tables)

    def list_columns(self, table_name: str) -> list[ColumnInfo]:
        self._record(f"columns:{table_name}")
        return list(self.columns.get(table_name, []))

    def list_databases(self) -> list[str]:
        self._record("databases")
        return list(self.databases)


class FakeConnector:
    """A Connector that records statements and replays canned results."""

    def __init__(self, dialect: Dialect = MYSQL, database: str = "app") -> None:
        self._dialect = dialect
        self.database = database
        self.executed: list[tuple[str, Mapping[str, Any] | None]] = []
        self.result = QueryResult(
            columns=["1"], rows=[(1,)], is_select=True, duration=0.001
        )
        self.fail_with: Exception | None = None
        self.reachable = True
        self.closed = False

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    def connect(self, url: str, timeout: float | None = None) -> None:
        pass

    def execute(
        self,
        query: str,
        params: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> QueryResult:
        self.executed.append((query, params))
        if self.fail_with is not None:
            raise self.fail_with
        return self.result

    def ping(self, timeout: float | None = None) -> None:
        if not self.reachable:
            raise ConnectorError("connection refused")

    def current_database_name(self, timeout: float | None = None) -> str:
        if not self.reachable:
            raise ConnectorError("connection refused")
        return self.database

    def close(self) -> None:
        self.closed = True


class ScriptedEditor:
    """
    A LineEditor that replays a list of inputs. An exception instance in the
    script (e.g., KeyboardInterrupt()) is raised instead of returning a line.
    Running off the end of the script is end of input.
    """

    def __init__(self, script: Iterable[str | BaseException]) -> None:
        self._script = list(script)
        self.prompts: list[str] = []
        self.opened = False
        self.close_calls = 0

    def open(self) -> None:
        self.opened = True

    def read_line(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if len(self._script) == 0:
            raise EOFError()

        item = self._script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        self.close_calls += 1


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> CountingProvider:
    return CountingProvider()


@pytest.fixture
def cache(provider, clock):
    c = MetadataCache(provider, ttl=0.1, clock=clock)
    yield c
    c.close()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def make_repl(cache, connector) -> Callable[..., tuple[Repl, ScriptedEditor]]:
    """Build a Repl around a scripted editor and the fake connector."""

    def make(
        script: Iterable[str | BaseException] = (),
        settings: ShellSettings | None = None,
    ) -> tuple[Repl, ScriptedEditor]:
        editor = ScriptedEditor(script)
        repl = Repl(
            connector=connector,
            cache=cache,
            dialect=MYSQL,
            editor=editor,
            settings=settings,
        )
        return repl, editor

    return make
