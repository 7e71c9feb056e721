"""
A time-to-live cache for database metadata (tables, columns per table, and
databases). It's read-through: expiry is checked lazily on access, and a
missing or expired entry is fetched from the metadata source before it's
returned. There's no background eviction.

The cache is shared by the completer (called from readline) and by the
shell's commands, so it's thread-safe:

- Lookups hold the shared (read) lock.
- On a miss, the caller takes the exclusive (write) lock, checks again, and
  either starts a fetch or joins the one already in flight for that key.
  The fetch itself runs on a worker thread, outside the lock, so a slow
  database doesn't block lookups of other keys.
- Storing a fetched value, and reload(), hold the exclusive lock.

So there's at most one in-flight fetch per key, no matter how many callers
miss at the same time.
"""

import logging
import threading
import time
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Tuple

from sqcl.config import DEFAULT_CACHE_TTL
from sqcl.db import ColumnInfo, MetadataProvider
from sqcl.errors import MetadataError, MetadataTimeoutError

logger = logging.getLogger(__name__)

# Cache keys. Column entries are keyed by ("columns", table_name).
CacheKey = Tuple[str, ...]
TABLES_KEY: CacheKey = ("tables",)
DATABASES_KEY: CacheKey = ("databases",)


def columns_key(table_name: str) -> CacheKey:
    """The cache key for a table's columns."""
    return ("columns", table_name)


class ReadWriteLock:
    """
    A lock that allows any number of concurrent readers or a single writer.
    Waiting writers block new readers, so a stream of readers can't starve a
    writer. Not reentrant.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        """
        Hold the shared lock for the duration of the `with` block.
        """
        with self._cond:
            while self._writer or self._waiting_writers > 0:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        """
        Hold the exclusive lock for the duration of the `with` block.
        """
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers > 0:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(frozen=True)
class CacheEntry:
    """
    A cached value and the (clock) time after which it's stale.
    """

    value: tuple[Any, ...]
    expiry: float

    def is_valid(self, now: float) -> bool:
        """True if the entry hasn't expired yet."""
        return now < self.expiry


class MetadataCache:
    """
    TTL cache in front of a MetadataProvider. All entries share one TTL;
    table, per-table column, and database entries expire independently.
    Values are returned as tuples, so callers can't modify the cache's copy.
    """

    def __init__(
        self,
        provider: MetadataProvider,
        ttl: float = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
        max_workers: int = 4,
    ) -> None:
        """
        Initialize the cache.

        :param provider: the metadata source
        :param ttl: how long, in seconds, a fetched value stays valid
        :param clock: the time source, in seconds; tests can substitute their
            own
        :param max_workers: maximum number of concurrent fetches
        """
        self._provider = provider
        self._ttl = ttl
        self._clock = clock
        self._lock = ReadWriteLock()
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._in_flight: dict[CacheKey, Future] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="sqcl-metadata"
        )

    @property
    def ttl(self) -> float:
        """The time-to-live for all entries, in seconds."""
        return self._ttl

    def get_tables(self, timeout: float | None = None) -> tuple[str, ...]:
        """
        Get the table names, from the cache if possible.

        :param timeout: how long to wait for a fetch, in seconds, or None

        :raises MetadataError: if the fetch fails
        :raises MetadataTimeoutError: if the fetch takes too long
        """
        return self._get(TABLES_KEY, self._provider.list_tables, timeout)

    def get_columns(
        self, table_name: str, timeout: float | None = None
    ) -> tuple[ColumnInfo, ...]:
        """
        Get the columns of a table, from the cache if possible.

        :param table_name: the table
        :param timeout: how long to wait for a fetch, in seconds, or None

        :raises MetadataError: if the fetch fails
        :raises MetadataTimeoutError: if the fetch takes too long
        """
        return self._get(
            columns_key(table_name),
            lambda: self._provider.list_columns(table_name),
            timeout,
        )

    def get_databases(self, timeout: float | None = None) -> tuple[str, ...]:
        """
        Get the database names, from the cache if possible.

        :param timeout: how long to wait for a fetch, in seconds, or None

        :raises MetadataError: if the fetch fails
        :raises MetadataTimeoutError: if the fetch takes too long
        """
        return self._get(DATABASES_KEY, self._provider.list_databases, timeout)

    def get_all_columns(self, timeout: float | None = None) -> list[str]:
        """
        Get the distinct column names across all known tables. Tables whose
        columns can't be fetched are skipped. The timeout applies to the
        whole operation, not to each table.

        :param timeout: how long to wait overall, in seconds, or None

        :raises MetadataError: if the table list itself can't be fetched
        """
        deadline = None if timeout is None else self._clock() + timeout

        def remaining() -> float | None:
            if deadline is None:
                return None
            return max(deadline - self._clock(), 0.0)

        columns: dict[str, None] = {}
        for table in self.get_tables(remaining()):
            try:
                table_columns = self.get_columns(table, remaining())
            except MetadataError as e:
                logger.debug("Skipping columns of %s: %s", table, e)
                continue

            for col in table_columns:
                columns.setdefault(col.name, None)

        return list(columns)

    def reload(self) -> None:
        """
        Invalidate every entry, so the next access of each kind refetches.
        Fetches already in flight are disowned: their results are discarded.
        """
        with self._lock.write():
            self._entries.clear()
            self._in_flight.clear()

        logger.debug("Metadata cache cleared.")

    def close(self) -> None:
        """
        Stop the fetch threads. Queued fetches are cancelled; running ones are
        abandoned.
        """
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _get(
        self,
        key: CacheKey,
        fetch: Callable[[], Any],
        timeout: float | None,
    ) -> tuple[Any, ...]:
        with self._lock.read():
            entry = self._entries.get(key)
            if (entry is not None) and entry.is_valid(self._clock()):
                return entry.value

        with self._lock.write():
            # Double-check: another caller may have stored the value while
            # we were waiting for the write lock.
            entry = self._entries.get(key)
            if (entry is not None) and entry.is_valid(self._clock()):
                return entry.value

            future = self._in_flight.get(key)
            started = future is None
            if future is None:
                logger.debug("Fetching %s.", key)
                try:
                    future = self._executor.submit(fetch)
                except RuntimeError as e:
                    raise MetadataError("The metadata cache is closed.") from e
                self._in_flight[key] = future

        if started:
            # Registered outside the lock: if the fetch is already done, the
            # callback runs right here and needs the write lock itself.
            future.add_done_callback(
                lambda f: self._store(key, f)  # type: ignore[arg-type]
            )

        try:
            return tuple(future.result(timeout=timeout))
        except FutureTimeoutError:
            # pylint: disable=raise-missing-from
            raise MetadataTimeoutError(
                f"Fetching {' '.join(key)} timed out after {timeout:g} seconds."
            )
        except CancelledError:
            # pylint: disable=raise-missing-from
            raise MetadataError(f"Fetching {' '.join(key)} was cancelled.")

    def _store(self, key: CacheKey, future: Future) -> None:
        """
        Completion callback for a fetch. Stores the value, unless the fetch
        failed or reload() disowned it.
        """
        with self._lock.write():
            if self._in_flight.get(key) is not future:
                return

            del self._in_flight[key]
            if future.cancelled() or (future.exception() is not None):
                return

            self._entries[key] = CacheEntry(
                value=tuple(future.result()), expiry=self._clock() + self._ttl
            )
