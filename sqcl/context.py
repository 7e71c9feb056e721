"""
Figure out what kind of thing the user is completing (a table, a column, a
database, or a keyword), using nothing more than the token stream. This is a
heuristic: there's no grammar, just a look at the last few tokens and
whether we're inside a SELECT list.
"""

from enum import StrEnum
from typing import Sequence

from sqcl.tokenizer import Token, TokenKind, non_whitespace, tokenize

# Keywords that are followed by a table name. Note that DROP is here, so
# "DROP DATABASE" is treated as a table context, too.
TABLE_CONTEXT_KEYWORDS = frozenset(
    {
        "FROM",
        "JOIN",
        "UPDATE",
        "INTO",
        "TABLE",
        "DESC",
        "DESCRIBE",
        "TRUNCATE",
        "DROP",
    }
)

# Keywords that are followed by a column name (or expression).
COLUMN_CONTEXT_KEYWORDS = frozenset(
    {
        "SELECT",
        "WHERE",
        "AND",
        "OR",
        "ON",
        "SET",
        "ORDER",
        "GROUP",
        "HAVING",
        "BY",
        "BETWEEN",
    }
)

DATABASE_CONTEXT_KEYWORD = "USE"

# Lines starting with this are shell commands, not SQL.
COMMAND_MARKER = ":"


class CompletionContext(StrEnum):
    """
    The kinds of completion candidates that make sense at the cursor.
    """

    KEYWORD_OR_TABLE = "keyword_or_table"
    TABLE = "table"
    COLUMN = "column"
    DATABASE = "database"


def is_internal_command(line: str) -> bool:
    """
    True if the line is an internal command (starts with ":"), rather than
    SQL.
    """
    return line.strip().startswith(COMMAND_MARKER)


def _upper(token: Token) -> str:
    return token.value.upper()


def _in_select_list(tokens: Sequence[Token]) -> bool:
    """
    True if there's a SELECT somewhere in the tokens, but no FROM anywhere.
    """
    values = {_upper(t) for t in tokens}
    return ("SELECT" in values) and ("FROM" not in values)


def detect_context(text: str) -> CompletionContext:
    """
    Determine the completion context for the text typed so far.

    :param text: the input, up to the cursor

    :returns: the completion context
    """
    tokens = non_whitespace(tokenize(text))
    if len(tokens) == 0:
        return CompletionContext.KEYWORD_OR_TABLE

    last = _upper(tokens[-1])
    if last in TABLE_CONTEXT_KEYWORDS:
        return CompletionContext.TABLE

    if last == DATABASE_CONTEXT_KEYWORD:
        return CompletionContext.DATABASE

    if _in_select_list(tokens):
        return CompletionContext.COLUMN

    if last in COLUMN_CONTEXT_KEYWORDS:
        return CompletionContext.COLUMN

    # The last token might be a partially typed word, so look at the one
    # before it.
    if len(tokens) >= 2:
        previous = _upper(tokens[-2])
        if previous in TABLE_CONTEXT_KEYWORDS:
            return CompletionContext.TABLE

        if previous == DATABASE_CONTEXT_KEYWORD:
            return CompletionContext.DATABASE

        if previous in COLUMN_CONTEXT_KEYWORDS:
            return CompletionContext.COLUMN

        # Redundant while BY is in COLUMN_CONTEXT_KEYWORDS.
        if (
            previous == "BY"
            and len(tokens) >= 3
            and _upper(tokens[-3]) in ("ORDER", "GROUP")
        ):
            return CompletionContext.COLUMN

    return CompletionContext.KEYWORD_OR_TABLE


def table_names_in_input(text: str) -> list[str]:
    """
    Find the tables referenced in the input: every word that directly follows
    a table-context keyword (e.g., "FROM users JOIN `orders`" yields "users"
    and "orders"). Backticks are stripped.

    :param text: the input

    :returns: the table names, in the order they appear
    """
    tokens = non_whitespace(tokenize(text))
    tables: list[str] = []
    for token, following in zip(tokens, tokens[1:]):
        if _upper(token) not in TABLE_CONTEXT_KEYWORDS:
            continue

        if following.kind == TokenKind.WORD:
            tables.append(following.value.strip("`"))

    return tables
