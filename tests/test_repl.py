"""Tests for sqcl.repl."""

import json
import re

import pytest

from sqcl.config import ShellSettings
from sqcl.db import QueryResult
from sqcl.errors import ConnectorError, QueryTimeoutError, UsageError
from sqcl.render import CSVRenderer, JSONRenderer, OutputFormat, TableRenderer
from sqcl.repl import (
    CommandHandler,
    CommandInput,
    InputAccumulator,
    InputStateMachine,
    ReplState,
    StatementInput,
    help_text,
    is_internal_command,
    parse_command,
)

ANSI = re.compile(r"\x1b\[[0-9;]*m")


def plain(text: str) -> str:
    return ANSI.sub("", text)


class TestInputAccumulator:
    def test_multi_line_statement(self):
        acc = InputAccumulator()
        acc.add("SELECT *")
        assert not acc.is_complete()
        acc.add("FROM users;")
        assert acc.is_complete()
        assert acc.get() == "SELECT *\nFROM users;"
        assert acc.get_trimmed() == "SELECT *\nFROM users"

    def test_semicolon_inside_string_is_not_a_terminator(self):
        acc = InputAccumulator()
        acc.add("SELECT 'a;b' FROM t")
        assert not acc.is_complete()

    def test_trailing_whitespace_after_semicolon(self):
        acc = InputAccumulator()
        acc.add("  SELECT 1;   ")
        assert acc.is_complete()
        assert acc.get_trimmed() == "SELECT 1"

    def test_only_one_trailing_semicolon_is_removed(self):
        acc = InputAccumulator()
        acc.add("SELECT 1;;")
        assert acc.get_trimmed() == "SELECT 1;"

    def test_clear(self):
        acc = InputAccumulator()
        assert acc.is_empty()
        acc.add("SELECT")
        assert not acc.is_empty()
        acc.clear()
        assert acc.is_empty()
        assert acc.get() == ""


class TestParseCommand:
    @pytest.mark.parametrize(
        "line,expected",
        [
            (":columns users", ("columns", ["users"])),
            (":quit", ("quit", [])),
            ("  :FORMAT   Json  ", ("format", ["Json"])),
            (":", ("", [])),
            (":   ", ("", [])),
            ("quit", ("", [])),
        ],
    )
    def test_parse_command(self, line, expected):
        assert parse_command(line) == expected

    def test_is_internal_command(self):
        assert is_internal_command(":q")
        assert is_internal_command("   :help")
        assert not is_internal_command("quit")
        assert not is_internal_command("SELECT ':'")


class TestInputStateMachine:
    def test_command_in_idle(self):
        machine = InputStateMachine()
        assert machine.feed(":columns users") == CommandInput(
            "columns", ["users"]
        )
        assert machine.state == ReplState.IDLE

    def test_bare_word_starts_accumulating(self):
        machine = InputStateMachine()
        assert machine.feed("quit") is None
        assert machine.state == ReplState.ACCUMULATING
        assert machine.buffer == "quit"

    def test_blank_line_in_idle_is_ignored(self):
        machine = InputStateMachine()
        assert machine.feed("   ") is None
        assert machine.state == ReplState.IDLE

    def test_multi_line_statement(self):
        machine = InputStateMachine()
        assert machine.feed("SELECT *") is None
        assert machine.feed("") is None
        assert machine.feed("FROM users;") == StatementInput(
            "SELECT *\n\nFROM users"
        )
        assert machine.state == ReplState.IDLE
        assert machine.buffer == ""

    def test_command_marker_while_accumulating_is_sql(self):
        machine = InputStateMachine()
        machine.feed("SELECT")
        assert machine.feed(":quit;") == StatementInput("SELECT\n:quit")

    def test_lone_semicolon_does_nothing(self):
        machine = InputStateMachine()
        assert machine.feed(";") is None
        assert machine.state == ReplState.IDLE

    def test_interrupt_discards_partial_statement(self):
        machine = InputStateMachine()
        machine.feed("SELECT *")
        assert machine.interrupt()
        assert machine.state == ReplState.IDLE
        assert machine.buffer == ""
        assert machine.feed("SELECT 2;") == StatementInput("SELECT 2")

    def test_interrupt_when_idle(self):
        assert not InputStateMachine().interrupt()

    def test_end_of_input_discards_partial_statement(self):
        machine = InputStateMachine()
        machine.feed("SELECT *")
        machine.end_of_input()
        assert machine.state == ReplState.IDLE
        assert machine.buffer == ""


class TestHelp:
    def test_general_help_lists_every_command(self):
        text = help_text()
        for usage in (":help", ":quit", ":reload", ":tables", ":columns",
                      ":databases", ":status", ":format"):
            assert usage in text
        assert "Ctrl-D quits" in text

    def test_help_for_one_command(self):
        text = help_text("cols")
        assert text.startswith(":columns, :cols <table>")
        assert ":quit" not in text

    def test_help_accepts_colon(self):
        assert help_text(":q").startswith(":quit")

    def test_unknown_topic(self):
        with pytest.raises(UsageError, match='Unknown command "bogus"'):
            help_text("bogus")

    def test_lines_fit_the_screen(self):
        assert all(len(line) <= 79 for line in help_text().splitlines())


class TestCommandHandler:
    @pytest.fixture
    def handler(self, make_repl):
        repl, _ = make_repl()
        return CommandHandler(repl)

    def test_quit_aliases(self, handler):
        for name in ("quit", "q", "exit"):
            assert handler.execute(name, []).quit

    def test_help(self, handler):
        result = handler.execute("?", [])
        assert ":status" in result.output
        assert not result.quit

    def test_tables(self, handler):
        output = handler.execute("tables", []).output
        assert "| users  |" in output
        assert "| orders |" in output
        assert "2 rows in set" in output

    def test_no_tables(self, handler, provider):
        provider.tables = []
        assert handler.execute("tables", []).output == "No tables found."

    def test_columns(self, handler):
        output = handler.execute("cols", ["users"]).output
        assert "| Column | Type" in output
        assert re.search(r"\| id\s+\| int\s+\| NO\s+\| PRI \| NULL", output)
        assert re.search(r"\| email\s+\| varchar\(128\)\s+\| YES\s+\|\s+\| ''", output)

    def test_columns_of_unknown_table(self, handler):
        assert handler.execute("columns", ["nope"]).output == (
            'No columns found for table "nope".'
        )

    def test_columns_requires_a_table(self, handler):
        with pytest.raises(UsageError, match="Usage: :columns <table>"):
            handler.execute("columns", [])

    def test_databases(self, handler):
        output = handler.execute("dbs", []).output
        assert "| app " in output
        assert "information_schema" in output

    def test_reload(self, handler, provider):
        handler.execute("tables", [])
        assert handler.execute("refresh", []).output == "Metadata cache reloaded."
        handler.execute("tables", [])
        assert provider.count("tables") == 2

    def test_format(self, make_repl):
        repl, _ = make_repl()
        handler = CommandHandler(repl)
        assert handler.execute("format", []).output == "Output format is table."
        assert handler.execute("fmt", ["CSV"]).output == (
            "Output format set to csv."
        )
        assert repl.output_format == OutputFormat.CSV
        assert isinstance(repl.renderer, CSVRenderer)

    def test_unknown_format(self, handler):
        with pytest.raises(UsageError, match="table, csv, json"):
            handler.execute("format", ["xml"])

    def test_unknown_command(self, handler):
        with pytest.raises(UsageError, match='Unknown command ":frob"'):
            handler.execute("frob", [])

    def test_status_connected(self, handler):
        output = handler.execute("status", []).output
        assert "Connection status: Connected" in output
        assert "Database:          app" in output
        assert "Dialect:           mysql" in output
        assert "Output format:     table" in output
        assert "Cache TTL:         0.1 seconds" in output

    def test_status_disconnected(self, handler, connector):
        connector.reachable = False
        output = handler.execute("status", []).output
        assert "Disconnected (connection refused)" in output
        assert "Database:" not in output

    def test_command_output_follows_output_format(self, make_repl):
        repl, _ = make_repl()
        repl.set_format(OutputFormat.JSON)
        output = CommandHandler(repl).execute("tables", []).output
        rows = json.loads(output.split("\n\n")[0])
        assert rows == [{"Table": "users"}, {"Table": "orders"}]


class TestRepl:
    def test_interrupted_command_keeps_the_shell(
        self, make_repl, connector, capsys
    ):
        def interrupted_ping(timeout=None):
            raise KeyboardInterrupt

        connector.ping = interrupted_ping
        repl, _ = make_repl([":status", "SELECT 1;"])
        repl.run()

        assert "Command interrupted." in plain(capsys.readouterr().err)
        assert connector.executed == [("SELECT 1", None)]

    def test_format_json_then_select(self, make_repl, capsys):
        repl, _ = make_repl([":format json", "SELECT 1;"])
        repl.run()

        out = capsys.readouterr().out
        assert "Output format set to json." in out
        assert '"1": 1' in out
        assert "| 1 |" not in out
        assert isinstance(repl.renderer, JSONRenderer)

    def test_default_output_is_a_table(self, make_repl, connector, capsys):
        repl, _ = make_repl(["SELECT 1;"])
        repl.run()

        assert "| 1 |" in capsys.readouterr().out
        assert isinstance(repl.renderer, TableRenderer)
        assert connector.executed == [("SELECT 1", None)]

    def test_multi_line_statement(self, make_repl, connector):
        repl, editor = make_repl(["SELECT *", "FROM users", ";"])
        repl.run()

        assert connector.executed == [("SELECT *\nFROM users\n", None)]
        assert plain(editor.prompts[0]) == "sqcl(app)> "
        assert editor.prompts[1] == "   -> "
        assert editor.prompts[2] == "   -> "
        assert plain(editor.prompts[3]) == "sqcl(app)> "

    def test_prompt_without_database(self, make_repl, connector):
        connector.database = ""
        repl, _ = make_repl()
        assert plain(repl.prompt()) == "sqcl> "

    def test_prompt_when_unreachable(self, make_repl, connector):
        connector.reachable = False
        repl, _ = make_repl()
        assert plain(repl.prompt()) == "sqcl> "

    def test_quit_stops_the_loop(self, make_repl, connector, capsys):
        repl, editor = make_repl([":quit", "SELECT 1;"])
        repl.run()

        assert connector.executed == []
        assert editor.opened
        assert editor.close_calls >= 1
        assert "Goodbye!" in capsys.readouterr().out

    def test_ctrl_c_discards_partial_statement(
        self, make_repl, connector, capsys
    ):
        repl, _ = make_repl(["SELECT *", KeyboardInterrupt(), "SELECT 2;"])
        repl.run()

        assert connector.executed == [("SELECT 2", None)]
        assert "Query cancelled." in capsys.readouterr().out

    def test_ctrl_c_when_idle_keeps_going(self, make_repl, connector, capsys):
        repl, _ = make_repl([KeyboardInterrupt(), "SELECT 2;"])
        repl.run()

        assert connector.executed == [("SELECT 2", None)]
        assert "Query cancelled." not in capsys.readouterr().out

    def test_eof_mid_statement_discards_it(self, make_repl, connector):
        repl, _ = make_repl(["SELECT *", "FROM users"])
        repl.run()

        assert connector.executed == []
        assert repl.state == ReplState.IDLE

    def test_usage_error_is_reported_and_loop_continues(
        self, make_repl, connector, capsys
    ):
        repl, _ = make_repl([":columns", ":bogus", "SELECT 1;"])
        repl.run()

        err = plain(capsys.readouterr().err)
        assert "Error: Usage: :columns <table>" in err
        assert 'Error: Unknown command ":bogus"' in err
        assert connector.executed == [("SELECT 1", None)]

    def test_metadata_error_is_reported(self, make_repl, provider, capsys):
        provider.failing.add("tables")
        repl, _ = make_repl([":tables"])
        repl.run()

        assert "Error: tables is broken" in plain(capsys.readouterr().err)

    def test_query_error_is_reported_and_loop_continues(
        self, make_repl, connector, capsys
    ):
        connector.fail_with = ConnectorError("no such table: nope")
        repl, _ = make_repl(["SELECT * FROM nope;", ":q"])
        repl.run()

        captured = capsys.readouterr()
        assert "Error: no such table: nope" in plain(captured.err)
        assert "Goodbye!" in captured.out

    def test_query_timeout_is_reported(self, make_repl, connector, capsys):
        connector.fail_with = QueryTimeoutError("Query timed out after 1 seconds.")
        repl, _ = make_repl()
        assert repl.execute_statement("SELECT SLEEP(5)") is None
        assert "timed out" in capsys.readouterr().err

    def test_unexpected_error_does_not_end_the_loop(
        self, make_repl, connector, capsys
    ):
        connector.fail_with = RuntimeError("boom")
        repl, _ = make_repl(["SELECT 1;", ":q"])
        repl.run()

        captured = capsys.readouterr()
        assert "boom" in captured.err
        assert "Goodbye!" in captured.out

    def test_non_select_result(self, make_repl, connector, capsys):
        connector.result = QueryResult(
            rows_affected=3, last_insert_id=7, duration=0.0
        )
        repl, _ = make_repl(["INSERT INTO t VALUES (1), (2), (3);"])
        repl.run()

        assert (
            "Query OK, 3 rows affected (last insert ID: 7) (0.000 seconds)"
            in capsys.readouterr().out
        )

    def test_echo(self, make_repl, capsys):
        repl, _ = make_repl(settings=ShellSettings(echo=True))
        repl.execute_statement("SELECT 1")
        out = plain(capsys.readouterr().out)
        assert out.startswith("SELECT 1\n")


class TestPlaceholders:
    def test_values_are_prompted_and_bound(self, make_repl, connector):
        repl, editor = make_repl(
            ["SELECT * FROM users WHERE id = ? AND name = ?;", "42", "Bob"]
        )
        repl.run()

        assert connector.executed == [
            (
                "SELECT * FROM users WHERE id = :p1 AND name = :p2",
                {"p1": 42, "p2": "Bob"},
            )
        ]
        assert "  [1]> " in editor.prompts
        assert "  [2]> " in editor.prompts

    def test_empty_value_is_null(self, make_repl, connector):
        repl, _ = make_repl(["UPDATE t SET x = ?;", ""])
        repl.run()

        assert connector.executed == [("UPDATE t SET x = :p1", {"p1": None})]

    def test_question_mark_in_string_is_not_a_placeholder(
        self, make_repl, connector
    ):
        repl, _ = make_repl(["SELECT '?' FROM t;"])
        repl.run()

        assert connector.executed == [("SELECT '?' FROM t", None)]

    def test_cancel_while_prompting(self, make_repl, connector, capsys):
        repl, _ = make_repl(["SELECT ?;", KeyboardInterrupt(), "SELECT 2;"])
        repl.run()

        assert connector.executed == [("SELECT 2", None)]
        assert "Query cancelled." in capsys.readouterr().out
