"""
Renderers that turn a QueryResult into text, in one of the supported output
formats. The shell picks the renderer from its current output format; the
renderers don't print anything themselves.
"""

import csv
import io
import json
from datetime import date, datetime, time
from decimal import Decimal
from enum import StrEnum
from typing import Any, Protocol, Sequence

from sqcl.db import QueryResult

NULL_DISPLAY = "NULL"


class OutputFormat(StrEnum):
    """
    The supported output formats.
    """

    TABLE = "table"
    CSV = "csv"
    JSON = "json"


class Renderer(Protocol):
    """
    Something that can format a query result.
    """

    def render(self, result: QueryResult) -> str:
        """Format the result as text."""


def format_value(value: Any) -> str:
    """
    Convert a column value to display text. None becomes "NULL", and byte
    strings are decoded, if possible.
    """
    match value:
        case None:
            return NULL_DISPLAY
        case bytes() | bytearray():
            try:
                return bytes(value).decode("utf-8")
            except UnicodeDecodeError:
                return bytes(value).hex()
        case _:
            return str(value)


def format_elapsed(seconds: float) -> str:
    """
    Format an elapsed time the way all the renderers show it.
    """
    return f"({seconds:.03f} seconds)"


def rows_epilog(result: QueryResult) -> str:
    """
    The row-count line that follows a result set, e.g., "2 rows in set".
    """
    n = len(result.rows)
    suffix = "" if n == 1 else "s"
    return f"{n:,} row{suffix} in set {format_elapsed(result.duration)}"


def exec_summary(result: QueryResult) -> str:
    """
    The summary for a statement that doesn't return rows.
    """
    n = result.rows_affected
    suffix = "" if n == 1 else "s"
    summary = f"Query OK, {n:,} row{suffix} affected"
    if (result.last_insert_id is not None) and (result.last_insert_id > 0):
        summary = f"{summary} (last insert ID: {result.last_insert_id})"

    return f"{summary} {format_elapsed(result.duration)}"


class TableRenderer:
    """
    Renders results as an ASCII table, padded and aligned:

        +----+-------+
        | id | name  |
        +----+-------+
        | 1  | Alice |
        +----+-------+
    """

    def render(self, result: QueryResult) -> str:
        """
        Format the result as a table.
        """
        if not result.is_select:
            return exec_summary(result)

        if len(result.rows) == 0:
            return f"Empty set {format_elapsed(result.duration)}"

        def make_output_line(
            fields: Sequence[str], delim: str = "|", pad_char: str = " "
        ) -> str:
            """
            Format a single output line, ensuring that the output is suitably
            padded and aligned.
            """
            return (
                f"{delim}{pad_char}"
                + f"{pad_char}{delim}{pad_char}".join(fields)
                + f"{pad_char}{delim}"
            )

        columns = list(result.columns)
        data = [[format_value(v) for v in row] for row in result.rows]

        # For each column, figure out how wide to make it in the display,
        # based on the data.
        widths = [len(col) for col in columns]
        for row in data:
            for i, datum in enumerate(row):
                widths[i] = max(widths[i], len(datum))

        sep = make_output_line(["-" * w for w in widths], "+", "-")
        lines = [
            sep,
            make_output_line(
                [col.ljust(w) for col, w in zip(columns, widths)]
            ),
            sep,
        ]
        for row in data:
            lines.append(
                make_output_line(
                    [datum.ljust(w) for datum, w in zip(row, widths)]
                )
            )
        lines.append(sep)
        lines.append(rows_epilog(result))
        return "\n".join(lines)


class CSVRenderer:
    """
    Renders results as CSV, with a header line.
    """

    def render(self, result: QueryResult) -> str:
        """
        Format the result as CSV.
        """
        if not result.is_select:
            return exec_summary(result)

        buf = io.StringIO()
        c_out = csv.writer(buf, lineterminator="\n")
        c_out.writerow(result.columns)
        for row in result.rows:
            c_out.writerow([format_value(v) for v in row])

        return f"{buf.getvalue()}\n{rows_epilog(result)}"


def _json_value(value: Any) -> Any:
    """
    Convert a column value to something json.dumps() can handle.
    """
    match value:
        case datetime() | time():
            return value.isoformat()
        case date():
            return value.strftime("%Y-%m-%d")
        case Decimal():
            return str(value)
        case bytes() | bytearray():
            return format_value(value)
        case _:
            return value


class JSONRenderer:
    """
    Renders results as a JSON array of objects, one per row, keyed by
    column name.
    """

    def __init__(self, indent: int | None = 2) -> None:
        self._indent = indent

    def render(self, result: QueryResult) -> str:
        """
        Format the result as JSON.
        """
        if not result.is_select:
            return exec_summary(result)

        rows = [
            {col: _json_value(v) for col, v in zip(result.columns, row)}
            for row in result.rows
        ]
        text = json.dumps(rows, indent=self._indent, default=str)
        return f"{text}\n\n{rows_epilog(result)}"


def get_renderer(output_format: OutputFormat) -> Renderer:
    """
    Get the renderer for an output format.
    """
    match output_format:
        case OutputFormat.CSV:
            return CSVRenderer()
        case OutputFormat.JSON:
            return JSONRenderer()
        case _:
            return TableRenderer()
