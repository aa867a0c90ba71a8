"""
Terminal input and screen control for tunequeue.
"""
import os
import select
import shutil
import sys
import termios
import tty
from contextlib import contextmanager
from typing import FrozenSet, Iterator, List, NamedTuple, Optional, Tuple

from .logging_config import get_logger, TerminalError

logger = get_logger('terminal')

# Key codes for non-printable keys
UP = "up"
DOWN = "down"
LEFT = "left"
RIGHT = "right"
ENTER = "enter"
TAB = "tab"
BACKSPACE = "backspace"
ESCAPE = "escape"

SHIFT = "shift"
CTRL = "ctrl"
ALT = "alt"

HIDE_CURSOR = "\033[?25l"
SHOW_CURSOR = "\033[?25h"
CLEAR_SCREEN = "\033[2J\033[H"
ALT_SCREEN_ON = "\033[?1049h"
ALT_SCREEN_OFF = "\033[?1049l"

# Escape sequences, longest first so prefixes don't shadow them
_ESCAPE_SEQUENCES: Tuple[Tuple[str, str, FrozenSet[str]], ...] = (
    ("\x1b[27;2;13~", ENTER, frozenset({SHIFT})),
    ("\x1b[13;2u", ENTER, frozenset({SHIFT})),
    ("\x1b[1;2A", UP, frozenset({SHIFT})),
    ("\x1b[1;2B", DOWN, frozenset({SHIFT})),
    ("\x1b[1;2C", RIGHT, frozenset({SHIFT})),
    ("\x1b[1;2D", LEFT, frozenset({SHIFT})),
    ("\x1b[A", UP, frozenset()),
    ("\x1b[B", DOWN, frozenset()),
    ("\x1b[C", RIGHT, frozenset()),
    ("\x1b[D", LEFT, frozenset()),
    ("\x1bOA", UP, frozenset()),
    ("\x1bOB", DOWN, frozenset()),
    ("\x1bOC", RIGHT, frozenset()),
    ("\x1bOD", LEFT, frozenset()),
    ("\x1b[Z", TAB, frozenset({SHIFT})),
    ("\x1b\r", ENTER, frozenset({ALT})),
)


class KeyEvent(NamedTuple):
    """A decoded key press: a key code plus its modifier set."""

    code: str
    modifiers: FrozenSet[str] = frozenset()

    def has(self, modifier: str) -> bool:
        return modifier in self.modifiers


def decode_keys(data: str) -> List[KeyEvent]:
    """Decode raw terminal input into key events.

    Unrecognised escape sequences are dropped up to their final byte.
    """
    events: List[KeyEvent] = []
    i = 0
    while i < len(data):
        ch = data[i]
        if ch == "\x1b":
            for seq, code, modifiers in _ESCAPE_SEQUENCES:
                if data.startswith(seq, i):
                    events.append(KeyEvent(code, modifiers))
                    i += len(seq)
                    break
            else:
                i = _skip_unknown_escape(data, i, events)
            continue

        if ch in ("\r", "\n"):
            events.append(KeyEvent(ENTER))
        elif ch == "\t":
            events.append(KeyEvent(TAB))
        elif ch in ("\x7f", "\x08"):
            events.append(KeyEvent(BACKSPACE))
        elif ch < " ":
            events.append(KeyEvent(chr(ord(ch) + 96), frozenset({CTRL})))
        else:
            events.append(KeyEvent(ch))
        i += 1
    return events


def _skip_unknown_escape(data: str, start: int, events: List[KeyEvent]) -> int:
    if start + 1 >= len(data):
        events.append(KeyEvent(ESCAPE))
        return start + 1
    if data[start + 1] not in "[O":
        # Alt+key arrives as ESC followed by the key
        events.append(KeyEvent(data[start + 1], frozenset({ALT})))
        return start + 2
    i = start + 2
    while i < len(data) and not ("@" <= data[i] <= "~"):
        i += 1
    logger.debug(f"Ignoring escape sequence {data[start:i + 1]!r}")
    return i + 1


def read_keys(timeout: float, fd: Optional[int] = None) -> List[KeyEvent]:
    """Wait at most ``timeout`` seconds for input and decode what is ready.

    Returns an empty list when nothing arrives in time.
    """
    if fd is None:
        fd = sys.stdin.fileno()
    try:
        ready, _, _ = select.select([fd], [], [], max(0.0, timeout))
    except InterruptedError:
        return []
    if not ready:
        return []

    chunks = []
    while True:
        chunk = os.read(fd, 1024)
        if not chunk:
            break
        chunks.append(chunk)
        # Drain the rest of a burst (escape sequences, key repeat)
        if not select.select([fd], [], [], 0)[0]:
            break
    return decode_keys(b"".join(chunks).decode("utf-8", errors="replace"))


def terminal_size() -> Tuple[int, int]:
    """Return (rows, columns) of the controlling terminal."""
    size = shutil.get_terminal_size()
    return size.lines, size.columns


@contextmanager
def interactive_terminal() -> Iterator[int]:
    """Put stdin in cbreak mode on an alternate screen for the session.

    Raises:
        TerminalError: if stdin is not an interactive terminal
    """
    if not sys.stdin.isatty():
        raise TerminalError("Must run in an interactive terminal")

    fd = sys.stdin.fileno()
    old = termios.tcgetattr(fd)
    tty.setcbreak(fd)
    sys.stdout.write(ALT_SCREEN_ON + HIDE_CURSOR)
    sys.stdout.flush()
    try:
        yield fd
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, old)
        sys.stdout.write(SHOW_CURSOR + ALT_SCREEN_OFF)
        sys.stdout.flush()
