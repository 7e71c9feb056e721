"""
SQL syntax highlighting for the terminal.
"""

from termcolor import colored

from sqcl.dialect import Dialect
from sqcl.tokenizer import TokenKind, tokenize

KEYWORD_COLOR = "cyan"
STRING_COLOR = "yellow"
NUMBER_COLOR = "green"


class SQLHighlighter:
    """
    Recolors the keywords, string literals and numbers in a line of SQL.
    Everything else is left alone, so stripping the color codes gives back
    the original line.
    """

    def __init__(
        self, dialect: Dialect, force_color: bool | None = None
    ) -> None:
        """
        :param dialect: supplies the keywords to highlight
        :param force_color: passed to termcolor. None lets termcolor decide
            (based on the terminal and environment); True always colors.
        """
        self._keywords = frozenset(k.upper() for k in dialect.keywords)
        self._force_color = force_color

    def _color(self, text: str, color: str) -> str:
        return colored(text, color, force_color=self._force_color)

    def highlight(self, line: str) -> str:
        """
        Return `line` with ANSI color sequences added.
        """
        parts: list[str] = []
        for token in tokenize(line):
            match token.kind:
                case TokenKind.STRING:
                    parts.append(self._color(token.value, STRING_COLOR))
                case TokenKind.NUMBER:
                    parts.append(self._color(token.value, NUMBER_COLOR))
                case TokenKind.WORD if token.value.upper() in self._keywords:
                    parts.append(self._color(token.value, KEYWORD_COLOR))
                case _:
                    parts.append(token.value)

        return "".join(parts)
