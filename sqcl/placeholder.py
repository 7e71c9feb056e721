"""
Support for "?" placeholders in SQL statements. When a statement contains
placeholders, the shell prompts for a value for each one, and the statement
is run with bound parameters rather than by pasting values into the SQL.
"""

from typing import Any

from sqcl.tokenizer import TokenKind, tokenize

PLACEHOLDER = "?"
NULL = "NULL"


def _is_placeholder(value: str, kind: TokenKind) -> bool:
    # String literals and backtick identifiers are separate tokens, so a "?"
    # inside one of them never shows up here on its own.
    return (kind == TokenKind.PUNCTUATION) and (value == PLACEHOLDER)


def count_placeholders(query: str) -> int:
    """
    Count the "?" placeholders in a statement, ignoring any inside quoted
    strings and backtick-quoted identifiers.
    """
    return sum(1 for t in tokenize(query) if _is_placeholder(t.value, t.kind))


def bind_placeholders(query: str) -> str:
    """
    Rewrite the "?" placeholders in a statement as named bind parameters
    ":p1", ":p2", and so on, in order.
    """
    parts: list[str] = []
    n = 0
    for token in tokenize(query):
        if _is_placeholder(token.value, token.kind):
            n += 1
            parts.append(f":p{n}")
        else:
            parts.append(token.value)

    return "".join(parts)


def parameter_name(index: int) -> str:
    """
    The bind parameter name for the placeholder at 0-based `index`.
    """
    return f"p{index + 1}"


def parse_value(text: str) -> Any:
    """
    Convert a value typed at a placeholder prompt to a parameter value.

    - An empty string or "NULL" (any case) is None.
    - Something that parses as an integer is an int.
    - Something that parses as a float is a float.
    - Anything else is the (stripped) string.
    """
    s = text.strip()
    if (s == "") or (s.upper() == NULL):
        return None

    try:
        return int(s)
    except ValueError:
        pass

    try:
        return float(s)
    except ValueError:
        return s
