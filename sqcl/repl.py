"""
The read-eval-print loop. Input goes through a small state machine:

    IDLE --(":command")--> dispatch command, stay IDLE
    IDLE --(SQL line)----> ACCUMULATING
    ACCUMULATING --(line)--> ACCUMULATING, or dispatch and back to IDLE once
                             the buffer ends with ";"
    ACCUMULATING --(Ctrl-C)--> discard buffer, IDLE

The state machine doesn't do any I/O, so it can be driven without a
terminal. The Repl class wires it to a line editor, the command handler,
the database connector and the renderers.
"""

# pylint: disable=too-few-public-methods

import sys
import textwrap
import traceback
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Sequence

from termcolor import colored

from sqcl.cache import MetadataCache
from sqcl.config import ShellSettings
from sqcl.context import COMMAND_MARKER, is_internal_command
from sqcl.db import Connector, QueryResult
from sqcl.dialect import Dialect
from sqcl.editor import LineEditor
from sqcl.errors import ConnectorError, MetadataError, SQCLException, UsageError
from sqcl.highlight import SQLHighlighter
from sqcl.placeholder import (
    bind_placeholders,
    count_placeholders,
    parameter_name,
    parse_value,
)
from sqcl.render import OutputFormat, Renderer, get_renderer

NAME = "sqcl"
STATEMENT_TERMINATOR = ";"
CONTINUATION_PROMPT = "   -> "
SCREEN_WIDTH = 79


def error(msg: str) -> None:
    """
    Print error messages in a consistent way.
    """
    print(f"{colored('Error:', 'red')} {msg}", file=sys.stderr)


class InputAccumulator:
    """
    Buffers the lines of a (possibly multi-line) SQL statement until it's
    terminated with a ";". No attempt is made to skip a ";" inside a quoted
    string; only a trailing ";" counts.
    """

    def __init__(self) -> None:
        self._lines: list[str] = []

    def add(self, line: str) -> None:
        """
        Append a line. Lines are joined with newlines.
        """
        self._lines.append(line)

    def is_empty(self) -> bool:
        """True if nothing has been added since the last clear()."""
        return len(self._lines) == 0

    def is_complete(self) -> bool:
        """
        True if the buffer, ignoring surrounding whitespace, ends with ";".
        """
        return self.get().strip().endswith(STATEMENT_TERMINATOR)

    def get(self) -> str:
        """The buffer contents, as typed."""
        return "\n".join(self._lines)

    def get_trimmed(self) -> str:
        """
        The buffer contents with surrounding whitespace and the trailing ";"
        removed.
        """
        content = self.get().strip()
        return content.removesuffix(STATEMENT_TERMINATOR)

    def clear(self) -> None:
        """Empty the buffer."""
        self._lines = []


def parse_command(line: str) -> tuple[str, list[str]]:
    """
    Split an internal command line into a lower-case command name and its
    whitespace-separated arguments. ":columns users" becomes
    ("columns", ["users"]). Returns ("", []) for a line that isn't a command
    or has no name.
    """
    trimmed = line.strip()
    if not trimmed.startswith(COMMAND_MARKER):
        return ("", [])

    match trimmed[len(COMMAND_MARKER):].split():
        case []:
            return ("", [])
        case [name, *args]:
            return (name.lower(), args)

    return ("", [])


class ReplState(StrEnum):
    """
    States of the input state machine.
    """

    IDLE = "idle"
    ACCUMULATING = "accumulating"


@dataclass(frozen=True)
class CommandInput:
    """An internal command to dispatch."""

    name: str
    args: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class StatementInput:
    """A complete SQL statement to run, without its trailing ";"."""

    sql: str


class InputStateMachine:
    """
    Turns input lines into commands and complete statements.
    """

    def __init__(self) -> None:
        self._state = ReplState.IDLE
        self._buffer = InputAccumulator()

    @property
    def state(self) -> ReplState:
        """The current state."""
        return self._state

    @property
    def buffer(self) -> str:
        """The statement accumulated so far."""
        return self._buffer.get()

    def feed(self, line: str) -> CommandInput | StatementInput | None:
        """
        Process one input line.

        :param line: the line, without its trailing newline

        :returns: a CommandInput for an internal command, a StatementInput
            once a statement is complete, or None if there's nothing to do
            yet
        """
        if self._state == ReplState.IDLE:
            if line.strip() == "":
                return None

            if is_internal_command(line):
                name, args = parse_command(line)
                return CommandInput(name=name, args=args)

            self._state = ReplState.ACCUMULATING

        # Blank lines while accumulating become embedded newlines.
        self._buffer.add(line)
        if not self._buffer.is_complete():
            return None

        sql = self._buffer.get_trimmed()
        self._reset()
        if sql.strip() == "":
            # A lone ";".
            return None

        return StatementInput(sql=sql)

    def interrupt(self) -> bool:
        """
        Handle an interrupt (Ctrl-C). Discards any partial statement.

        :returns: True if a partial statement was discarded, False if the
            machine was already idle
        """
        if self._state == ReplState.IDLE:
            return False

        self._reset()
        return True

    def end_of_input(self) -> None:
        """
        Handle end of input (Ctrl-D). A partial statement is discarded, not
        run.
        """
        self._reset()

    def _reset(self) -> None:
        self._buffer.clear()
        self._state = ReplState.IDLE


class Command(StrEnum):
    """
    Internal commands. Several have aliases.
    """

    HELP = "help"
    HELP_SHORT = "h"
    HELP_QUESTION = "?"
    QUIT = "quit"
    QUIT_SHORT = "q"
    EXIT = "exit"
    RELOAD = "reload"
    REFRESH = "refresh"
    TABLES = "tables"
    COLUMNS = "columns"
    COLS = "cols"
    DATABASES = "databases"
    DBS = "dbs"
    STATUS = "status"
    FORMAT = "format"
    FMT = "fmt"


@dataclass(frozen=True)
class HelpTopic:
    """
    A help topic, consisting of a command or commands, a usage line, and
    help text. The help text can be a multi-line string, for readability. The
    newlines will be removed.
    """

    commands: Sequence[Command]
    usage: str
    help: str


HELP: Sequence[HelpTopic] = (
    HelpTopic(
        commands=(Command.HELP, Command.HELP_SHORT, Command.HELP_QUESTION),
        usage=":help, :h, :? [<command>]",
        help="""
Show help for <command>. If <command> is omitted, show help for all commands.
""",
    ),
    HelpTopic(
        commands=(Command.QUIT, Command.QUIT_SHORT, Command.EXIT),
        usage=":quit, :q, :exit",
        help=f"Quit {NAME}. Ctrl-D also quits.",
    ),
    HelpTopic(
        commands=(Command.RELOAD, Command.REFRESH),
        usage=":reload, :refresh",
        help="""
Throw away the cached table, column and database names, so they're fetched
again the next time they're needed. Use this after creating or dropping
tables.
""",
    ),
    HelpTopic(
        commands=(Command.TABLES,),
        usage=":tables",
        help="List the tables in the current database.",
    ),
    HelpTopic(
        commands=(Command.COLUMNS, Command.COLS),
        usage=":columns, :cols <table>",
        help="""
Show the columns of <table>, with their types, nullability, primary key
membership and default values.
""",
    ),
    HelpTopic(
        commands=(Command.DATABASES, Command.DBS),
        usage=":databases, :dbs",
        help="List the databases on the server.",
    ),
    HelpTopic(
        commands=(Command.STATUS,),
        usage=":status",
        help="Check that the database is reachable, and show the session state.",
    ),
    HelpTopic(
        commands=(Command.FORMAT, Command.FMT),
        usage=":format, :fmt [table | csv | json]",
        help="""
Set the output format for query results. If the format is omitted, show the
current format.
""",
    ),
)

HELP_EPILOG = (
    'Anything else is interpreted as SQL. SQL statements must end with a ";", '
    "and multi-line input is supported. A \"?\" in a statement is a "
    "placeholder; you'll be prompted for its value before the statement runs.",
    "",
    "Use TAB to complete keywords, table names, column names and database "
    "names. Ctrl-C cancels the statement being typed. Ctrl-D quits.",
)


def help_text(command: str | None = None) -> str:
    """
    Format the help output.

    :param command: The command for which help is being requested, or None
        for general help on all commands

    :raises UsageError: if there's no such command
    """
    help_topics: list[HelpTopic]

    if command is None:
        help_topics = list(HELP)
    else:
        name = command.removeprefix(COMMAND_MARKER).lower()
        help_topics = [
            topic
            for topic in HELP
            if name in [cmd.value for cmd in topic.commands]
        ]

        if len(help_topics) == 0:
            raise UsageError(f'Unknown command "{command}".')

    prefix_width = max(len(topic.usage) for topic in help_topics)

    # How much room do we have left for text? Allow for separating " - ".
    separator = " - "
    text_width = SCREEN_WIDTH - len(separator) - prefix_width
    if text_width < 20:
        text_width = SCREEN_WIDTH // 2

    lines: list[str] = []
    for topic in help_topics:
        padded_prefix = topic.usage.ljust(prefix_width)
        adj_help = " ".join(topic.help.split())
        text_lines = textwrap.wrap(adj_help, width=text_width)
        lines.append(f"{padded_prefix}{separator}{text_lines[0]}")
        padding = " " * (prefix_width + len(separator))
        for text_line in text_lines[1:]:
            lines.append(f"{padding}{text_line}")

    if command is None:
        lines.append("")
        for paragraph in HELP_EPILOG:
            if paragraph.strip() == "":
                lines.append("")
            else:
                lines.append(textwrap.fill(paragraph, width=SCREEN_WIDTH))

    return "\n".join(lines)


@dataclass(frozen=True)
class CommandResult:
    """
    The outcome of an internal command: text to show (if any) and whether
    the shell should exit.
    """

    output: str | None = None
    quit: bool = False


class CommandHandler:
    """
    Runs internal commands. Usage problems raise UsageError; metadata and
    connection failures propagate. Reporting them is the Repl's job.
    """

    def __init__(self, repl: "Repl") -> None:
        self._repl = repl

    @property
    def _cache(self) -> MetadataCache:
        return self._repl.cache

    @property
    def _settings(self) -> ShellSettings:
        return self._repl.settings

    def execute(self, name: str, args: list[str]) -> CommandResult:
        """
        Run an internal command.

        :param name: the lower-case command name, without the ":"
        :param args: the command's arguments

        :raises UsageError: if the command or its arguments are invalid
        :raises MetadataError: if metadata can't be fetched
        :raises ConnectorError: if the database can't be reached
        """
        # pylint: disable=too-many-return-statements
        match (name, args):
            case (Command.HELP | Command.HELP_SHORT | Command.HELP_QUESTION, []):
                return CommandResult(output=help_text())

            case (
                Command.HELP | Command.HELP_SHORT | Command.HELP_QUESTION,
                [topic, *_],
            ):
                return CommandResult(output=help_text(topic))

            case (Command.QUIT | Command.QUIT_SHORT | Command.EXIT, _):
                return CommandResult(quit=True)

            case (Command.RELOAD | Command.REFRESH, _):
                self._cache.reload()
                return CommandResult(output="Metadata cache reloaded.")

            case (Command.TABLES, _):
                return CommandResult(output=self._tables())

            case (Command.COLUMNS | Command.COLS, [table_name, *_]):
                return CommandResult(output=self._columns(table_name))

            case (Command.COLUMNS | Command.COLS, []):
                raise UsageError(
                    f"Usage: {COMMAND_MARKER}{Command.COLUMNS.value} <table>"
                )

            case (Command.DATABASES | Command.DBS, _):
                return CommandResult(output=self._databases())

            case (Command.STATUS, _):
                return CommandResult(output=self._status())

            case (Command.FORMAT | Command.FMT, []):
                return CommandResult(
                    output=f"Output format is {self._repl.output_format}."
                )

            case (Command.FORMAT | Command.FMT, [fmt, *_]):
                try:
                    output_format = OutputFormat(fmt.lower())
                except ValueError:
                    # pylint: disable=raise-missing-from
                    choices = ", ".join(f.value for f in OutputFormat)
                    raise UsageError(
                        f'Unknown format "{fmt}". Choose one of: {choices}.'
                    )

                self._repl.set_format(output_format)
                return CommandResult(
                    output=f"Output format set to {output_format}."
                )

            case _:
                raise UsageError(
                    f'Unknown command "{COMMAND_MARKER}{name}". Type '
                    f"{COMMAND_MARKER}{Command.HELP.value} for help."
                )

    def _render(self, columns: list[str], rows: list[tuple[Any, ...]]) -> str:
        return self._repl.renderer.render(
            QueryResult(columns=columns, rows=rows, is_select=True)
        )

    def _tables(self) -> str:
        tables = self._cache.get_tables(self._settings.command_timeout)
        if len(tables) == 0:
            return "No tables found."

        return self._render(["Table"], [(t,) for t in tables])

    def _columns(self, table_name: str) -> str:
        columns = self._cache.get_columns(
            table_name, self._settings.command_timeout
        )
        if len(columns) == 0:
            return f'No columns found for table "{table_name}".'

        rows = [
            (
                col.name,
                col.data_type,
                "YES" if col.is_nullable else "NO",
                "PRI" if col.is_primary_key else "",
                col.default_value,
            )
            for col in columns
        ]
        return self._render(
            ["Column", "Type", "Nullable", "Key", "Default"], rows
        )

    def _databases(self) -> str:
        databases = self._cache.get_databases(self._settings.command_timeout)
        if len(databases) == 0:
            return "No databases found."

        return self._render(["Database"], [(d,) for d in databases])

    def _status(self) -> str:
        connector = self._repl.connector
        timeout = self._settings.status_timeout
        try:
            connector.ping(timeout)
            status = "Connected"
        except ConnectorError as e:
            status = f"Disconnected ({e})"

        lines = [f"Connection status: {status}"]
        if status == "Connected":
            try:
                database = connector.current_database_name(timeout)
            except ConnectorError:
                database = ""
            lines.append(f"Database:          {database or '(none)'}")

        lines.append(f"Dialect:           {self._repl.dialect.name}")
        lines.append(f"Output format:     {self._repl.output_format}")
        lines.append(f"Cache TTL:         {self._cache.ttl:g} seconds")
        return "\n".join(lines)


class Repl:
    """
    The shell's main loop. Owns the line editor's lifecycle and the output
    format, and is the one place where errors become messages: nothing that
    goes wrong with a single command or statement ends the loop.
    """

    # pylint: disable=too-many-instance-attributes,too-many-arguments

    def __init__(
        self,
        connector: Connector,
        cache: MetadataCache,
        dialect: Dialect,
        editor: LineEditor,
        settings: ShellSettings | None = None,
        highlighter: SQLHighlighter | None = None,
    ) -> None:
        self.connector = connector
        self.cache = cache
        self.dialect = dialect
        self.settings = settings or ShellSettings()
        self._editor = editor
        self._highlighter = highlighter or SQLHighlighter(dialect)
        self._machine = InputStateMachine()
        self._commands = CommandHandler(self)
        self.output_format = OutputFormat.TABLE
        self.renderer: Renderer = get_renderer(self.output_format)

    @property
    def state(self) -> ReplState:
        """The input state machine's current state."""
        return self._machine.state

    def set_format(self, output_format: OutputFormat) -> None:
        """
        Change the output format, and with it, the renderer.
        """
        self.output_format = output_format
        self.renderer = get_renderer(output_format)

    def prompt(self) -> str:
        """
        Make the prompt: "sqcl(<database>)> " when idle, a continuation
        prompt in the middle of a statement.
        """
        if self._machine.state == ReplState.ACCUMULATING:
            return CONTINUATION_PROMPT

        try:
            database = self.connector.current_database_name(
                self.settings.prompt_timeout
            )
        except ConnectorError:
            database = ""

        label = f"{NAME}({database})" if database else NAME
        return colored(f"{label}> ", "cyan", attrs=["bold"])

    def run(self) -> None:
        """
        Read and process input until the user quits or input ends.
        """
        print(colored(f"Welcome to {NAME}", "blue", attrs=["bold"]))
        print(
            f"Type {COMMAND_MARKER}{Command.HELP.value} for help, "
            f"{COMMAND_MARKER}{Command.QUIT.value} to exit\n"
        )

        self._editor.open()
        try:
            self._loop()
        finally:
            self.close()

        print("Goodbye!")

    def close(self) -> None:
        """
        Release the line editor. Safe to call more than once.
        """
        self._editor.close()

    def _loop(self) -> None:
        while True:
            try:
                line = self._editor.read_line(self.prompt())
            except KeyboardInterrupt:
                print()
                if self._machine.interrupt():
                    print("Query cancelled.")
                continue
            except EOFError:
                # Ctrl-D. A partial statement is dropped, not run.
                print()
                self._machine.end_of_input()
                return

            match self._machine.feed(line):
                case CommandInput(name=name, args=args):
                    if self.run_command(name, args):
                        return
                case StatementInput(sql=sql):
                    self.execute_statement(sql)
                case None:
                    pass

    def run_command(self, name: str, args: list[str]) -> bool:
        """
        Run an internal command, reporting any error.

        :returns: True if the shell should exit
        """
        try:
            result = self._commands.execute(name, args)
        except (UsageError, MetadataError, ConnectorError) as e:
            error(str(e))
            return False
        except KeyboardInterrupt:
            print()
            error("Command interrupted.")
            return False

        # pylint: disable=broad-except
        except Exception as e:
            error(f"{type(e)}: {e}")
            traceback.print_exception(e, file=sys.stdout)
            return False

        if result.output:
            print(result.output)

        return result.quit

    def execute_statement(self, sql: str) -> QueryResult | None:
        """
        Run a SQL statement and print the rendered result. If the statement
        has "?" placeholders, prompt for their values first.

        :param sql: the statement, without a trailing ";"

        :returns: the result, or None if the statement failed or was
            cancelled (and the problem was reported)
        """
        if self.settings.echo:
            print(f"{self._highlighter.highlight(sql)}\n")

        params: dict[str, Any] | None = None
        if (count := count_placeholders(sql)) > 0:
            values = self._read_placeholder_values(sql, count)
            if values is None:
                print("Query cancelled.")
                return None

            params = {parameter_name(i): v for i, v in enumerate(values)}
            sql = bind_placeholders(sql)

        try:
            result = self.connector.execute(
                sql, params, timeout=self.settings.query_timeout
            )
        except SQCLException as e:
            error(str(e))
            return None
        except KeyboardInterrupt:
            print()
            error("Query interrupted.")
            return None

        # pylint: disable=broad-except
        except Exception as e:
            error(f"{type(e)}: {e}")
            traceback.print_exception(e, file=sys.stdout)
            return None

        print(self.renderer.render(result))
        print()
        return result

    def _read_placeholder_values(
        self, sql: str, count: int
    ) -> list[Any] | None:
        """
        Prompt for a value for each placeholder. Returns None if the user
        cancels with Ctrl-C or Ctrl-D.
        """
        suffix = "" if count == 1 else "s"
        print(f"\nQuery: {sql}")
        print(f"Enter values for {count} placeholder{suffix}:")
        print("  (Press Enter for NULL, Ctrl-C to cancel)\n")

        values: list[Any] = []
        for i in range(count):
            try:
                line = self._editor.read_line(f"  [{i + 1}]> ")
            except (KeyboardInterrupt, EOFError):
                print()
                return None

            values.append(parse_value(line))

        print()
        return values
