"""
A small SQL tokenizer. It's not a parser: it just splits input into words,
strings, numbers, operators and punctuation, which is enough to figure out
what the user is in the middle of typing. It never fails; unterminated
strings and quoted identifiers simply run to the end of the input.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Iterable

PUNCTUATION = "(),;*"
EXTENDING_OPERATORS = "=<>!"
OPERATORS = EXTENDING_OPERATORS + "+-/%"
QUOTES = ("'", '"')
BACKTICK = "`"


class TokenKind(StrEnum):
    """
    The kinds of tokens the tokenizer produces.
    """

    WORD = "word"
    OPERATOR = "operator"
    STRING = "string"
    NUMBER = "number"
    PUNCTUATION = "punctuation"
    WHITESPACE = "whitespace"


@dataclass(frozen=True)
class Token:
    """
    A single token. `value` is the raw text, so concatenating the values of
    all tokens gives back the original input.
    """

    value: str
    kind: TokenKind


def _is_word_char(c: str) -> bool:
    return c.isalnum() or c == "_"


def _scan_quoted(text: str, start: int, quote: str, escapes: bool) -> int:
    """
    Find the end (exclusive) of a quoted run starting at `start`, which is
    the index of the opening quote. If `escapes` is set, a backslash skips
    the following character.
    """
    i = start + 1
    n = len(text)
    while i < n and text[i] != quote:
        if escapes and text[i] == "\\" and i + 1 < n:
            i += 1
        i += 1

    # Include the closing quote, if there is one.
    return i + 1 if i < n else n


def tokenize(text: str) -> list[Token]:
    """
    Split SQL text into tokens.

    :param text: the text to tokenize

    :returns: the (possibly empty) list of tokens, in input order
    """
    # pylint: disable=too-many-branches
    tokens: list[Token] = []
    i = 0
    n = len(text)

    while i < n:
        c = text[i]
        start = i

        if c.isspace():
            while i < n and text[i].isspace():
                i += 1
            kind = TokenKind.WHITESPACE

        elif c in QUOTES:
            i = _scan_quoted(text, i, c, escapes=True)
            kind = TokenKind.STRING

        elif c == BACKTICK:
            i = _scan_quoted(text, i, c, escapes=False)
            kind = TokenKind.WORD

        elif c.isalpha() or c == "_":
            while i < n and _is_word_char(text[i]):
                i += 1
            kind = TokenKind.WORD

        elif c.isdigit():
            # Only the first "." counts as a decimal point.
            seen_dot = False
            i += 1
            while i < n:
                if text[i].isdigit():
                    i += 1
                elif text[i] == "." and not seen_dot:
                    seen_dot = True
                    i += 1
                else:
                    break
            kind = TokenKind.NUMBER

        elif c in PUNCTUATION:
            i += 1
            kind = TokenKind.PUNCTUATION

        elif c in OPERATORS:
            if c in EXTENDING_OPERATORS:
                while i < n and text[i] in EXTENDING_OPERATORS:
                    i += 1
            else:
                i += 1
            kind = TokenKind.OPERATOR

        else:
            i += 1
            kind = TokenKind.PUNCTUATION

        tokens.append(Token(value=text[start:i], kind=kind))

    return tokens


def non_whitespace(tokens: Iterable[Token]) -> list[Token]:
    """
    Return only the tokens that aren't whitespace.
    """
    return [t for t in tokens if t.kind != TokenKind.WHITESPACE]


def last_incomplete_word(text: str) -> str:
    """
    Get the word the user is in the middle of typing: the trailing run of
    letters, digits, underscores and backticks. This isn't necessarily a
    complete token (e.g., "`us" for a partially typed quoted identifier).

    :param text: the text up to the cursor

    :returns: the trailing word, or "" if the text doesn't end in one
    """
    start = len(text)
    while start > 0 and (
        _is_word_char(text[start - 1]) or text[start - 1] == BACKTICK
    ):
        start -= 1

    return text[start:]
