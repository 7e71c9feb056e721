"""
SQL-aware tab completion. Given the line typed so far and the cursor
position, figure out what kind of thing is being typed (see sqcl.context),
gather candidates from the metadata cache and the dialect's keywords, and
return the suffixes that complete the current word.
"""

import logging
import readline
import time
from typing import Callable, Iterable

from sqcl.cache import MetadataCache
from sqcl.config import DEFAULT_COMPLETION_TIMEOUT
from sqcl.context import (
    CompletionContext,
    detect_context,
    is_internal_command,
    table_names_in_input,
)
from sqcl.dialect import Dialect
from sqcl.errors import MetadataError
from sqcl.tokenizer import last_incomplete_word

logger = logging.getLogger(__name__)

# Characters readline treats as word boundaries. Everything that can't be
# part of a word (see last_incomplete_word) is a delimiter.
COMPLETER_DELIMS = " \t\n()[]{},;*=<>!+-/%'\".:@$#&|^~?"


def unique_sorted(items: Iterable[str]) -> list[str]:
    """
    Remove case-insensitive duplicates (the first spelling wins), then sort.
    """
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        lowered = item.lower()
        if lowered in seen:
            continue

        seen.add(lowered)
        result.append(item)

    return sorted(result)


class SQLCompleter:
    """
    Produces completions for SQL input. Metadata comes from the cache; any
    candidate source that fails or times out just contributes nothing. The
    timeout covers a whole completion, however many lookups it takes.
    """

    def __init__(
        self,
        cache: MetadataCache,
        dialect: Dialect,
        timeout: float = DEFAULT_COMPLETION_TIMEOUT,
        commands: Iterable[str] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        :param cache: the metadata cache
        :param dialect: supplies the keywords
        :param timeout: how long, in seconds, one completion may wait for
            metadata, in total
        :param commands: internal command names (without the ":"), offered
            when the line is a command
        :param clock: the time source for the timeout
        """
        self._cache = cache
        self._dialect = dialect
        self._timeout = timeout
        self._commands = list(commands)
        self._clock = clock
        self._matches: list[str] = []

    def complete(self, line: str, pos: int) -> tuple[list[str], int]:
        """
        Complete the word before the cursor.

        :param line: the whole input line
        :param pos: the cursor position in `line`

        :returns: a tuple of the suffixes to insert (sorted, one per
            candidate) and the length of the prefix they complete
        """
        matches, prefix_length = self.matches(line, pos)
        return ([m[prefix_length:] for m in matches], prefix_length)

    def matches(self, line: str, pos: int) -> tuple[list[str], int]:
        """
        Like complete(), but returns the whole candidates (in their own case)
        rather than suffixes.
        """
        text = line[:pos]
        prefix = last_incomplete_word(text)
        lowered = prefix.lower()

        if is_internal_command(text):
            candidates = self._command_names(text)
        else:
            deadline = self._clock() + self._timeout
            candidates = self._candidates(text, deadline)

        return (
            unique_sorted(c for c in candidates if c.lower().startswith(lowered)),
            len(prefix),
        )

    def _command_names(self, text: str) -> list[str]:
        # Only the command name itself is completed, not its arguments.
        if len(text.strip().split()) > 1 or text[-1:].isspace():
            return []

        return list(self._commands)

    def _candidates(self, text: str, deadline: float) -> list[str]:
        match detect_context(text):
            case CompletionContext.TABLE:
                return self._tables(deadline)
            case CompletionContext.DATABASE:
                return self._databases(deadline)
            case CompletionContext.COLUMN:
                return self._columns(text, deadline) + self._keywords()
            case _:
                return self._keywords() + self._tables(deadline)

    def _remaining(self, deadline: float) -> float:
        return max(deadline - self._clock(), 0.0)

    def _keywords(self) -> list[str]:
        return list(self._dialect.keywords)

    def _tables(self, deadline: float) -> list[str]:
        return self._safely(
            lambda: self._cache.get_tables(self._remaining(deadline))
        )

    def _databases(self, deadline: float) -> list[str]:
        return self._safely(
            lambda: self._cache.get_databases(self._remaining(deadline))
        )

    def _columns(self, text: str, deadline: float) -> list[str]:
        tables = table_names_in_input(text)
        if len(tables) == 0:
            return self._safely(
                lambda: self._cache.get_all_columns(self._remaining(deadline))
            )

        columns: list[str] = []
        for table in tables:
            try:
                table_columns = self._cache.get_columns(
                    table, self._remaining(deadline)
                )
            except MetadataError as e:
                logger.debug("No columns for %s: %s", table, e)
                continue

            columns.extend(c.name for c in table_columns)

        return columns

    @staticmethod
    def _safely(fetch: Callable[[], Iterable[str]]) -> list[str]:
        try:
            return list(fetch())
        except MetadataError as e:
            logger.debug("No completion candidates: %s", e)
            return []

    def readline_completer(self, text: str, state: int) -> str | None:
        """
        A completer for Python's readline module. readline replaces `text`
        (the characters since the last delimiter) with whatever's returned,
        so this returns whole words rather than suffixes, and the typed
        prefix takes on the candidate's case.
        """
        if state == 0:
            line = readline.get_line_buffer()
            pos = readline.get_endidx()
            matches, replace_length = self.matches(line, pos)
            head = text[: max(len(text) - replace_length, 0)]
            self._matches = [f"{head}{m}" for m in matches]

        if state < len(self._matches):
            return self._matches[state]

        return None
