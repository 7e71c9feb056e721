"""
The line-editing boundary. The shell reads lines through an editor; this
module's ReadlineEditor uses Python's readline module, which supplies key
bindings, history, and tab completion. The shell core only provides the
completion callback.
"""

import logging
import readline
from contextlib import suppress
from pathlib import Path
from typing import Callable, Protocol

from sqcl.completer import COMPLETER_DELIMS

logger = logging.getLogger(__name__)

HISTORY_LENGTH = 10000
# Note that Python's readline library can be based on GNU Readline
# or the BSD Editline library, and it's not selectable. It's whatever
# has been compiled in. They use different initialization files, so we'll
# load whichever one is appropriate.
EDITLINE_BINDINGS_FILE = Path("~/.editrc").expanduser()
READLINE_BINDINGS_FILE = Path("~/.inputrc").expanduser()

Completer = Callable[[str, int], str | None]


class LineEditor(Protocol):
    """
    What the shell needs from a line editor. read_line() raises EOFError on
    end of input and KeyboardInterrupt on an interrupt, just like input().
    """

    def open(self) -> None:
        """Set up the editor."""

    def read_line(self, prompt: str) -> str:
        """Read one line, without the trailing newline."""

    def close(self) -> None:
        """Release the editor's resources."""


def using_editline() -> bool:
    """
    True if Python's readline module is really editline (libedit).
    """
    return (readline.__doc__ is not None) and ("libedit" in readline.__doc__)


class ReadlineEditor:
    """
    A LineEditor built on the readline module.
    """

    def __init__(
        self, completer: Completer | None, history_file: Path | None
    ) -> None:
        """
        :param completer: a readline completer, or None for no completion
        :param history_file: where to load and save history, or None to not
            persist history. The file doesn't have to exist.
        """
        self._completer = completer
        self._history_file = history_file
        self._open = False

    def open(self) -> None:
        """
        Load history and bindings, and install the completer.
        """
        if self._history_file is not None:
            with suppress(FileNotFoundError):
                print(f'Loading history from "{self._history_file}".')
                readline.read_history_file(str(self._history_file))

        # default history len is -1 (infinite), which may grow unruly
        readline.set_history_length(HISTORY_LENGTH)

        if using_editline():
            init_file = EDITLINE_BINDINGS_FILE
            completion_binding = "bind '^I' rl_complete"
        else:
            init_file = READLINE_BINDINGS_FILE
            completion_binding = "Control-I: rl_complete"

        if init_file.exists():
            print(f'Loading bindings from "{init_file}"')
            readline.read_init_file(str(init_file))

        # Ensure that tab = complete
        readline.parse_and_bind(completion_binding)
        if self._completer is not None:
            readline.set_completer_delims(COMPLETER_DELIMS)
            readline.set_completer(self._completer)

        self._open = True

    def read_line(self, prompt: str) -> str:
        """
        Read a line. input() automatically uses the readline library, once
        it's been loaded.
        """
        return input(prompt)

    def close(self) -> None:
        """
        Save the history and remove the completer. Safe to call more than
        once.
        """
        if not self._open:
            return

        self._open = False
        readline.set_completer(None)
        if self._history_file is not None:
            try:
                self._history_file.parent.mkdir(parents=True, exist_ok=True)
                readline.write_history_file(str(self._history_file))
            except OSError as e:
                logger.warning(
                    'Unable to save history to "%s": %s', self._history_file, e
                )

