"""
Screen rendering for tunequeue.

``render()`` is a pure function of a ``PlayerView``: it returns the screen as
a list of lines, each exactly ``width`` display columns wide.
"""
import re
import sys
import unicodedata
from typing import List, Optional, Sequence, Tuple

from .state import PlayerView

# ANSI styles
C_SELECTION = "\033[1;30;102m"  # bold on light green
C_ERROR = "\033[31m"
C_SECONDARY = "\033[90m"
C_RESET = "\033[0m"

BORDER_TL = "┌"
BORDER_TR = "┐"
BORDER_BL = "└"
BORDER_BR = "┘"
BORDER_H = "─"
BORDER_V = "│"

HIGHLIGHT_SYMBOL = ">> "

CONTROLS: Tuple[Tuple[str, str], ...] = (
    ("Play", "Enter"),
    ("Queue", "Shift + Enter / a"),
    ("Pause", "Space"),
    ("Loop", "="),
    ("Shuffle", "Tab"),
    ("Skip", "Backspace"),
    ("Volume Up", "Right Arrow"),
    ("Volume Down", "Left Arrow"),
    ("Quit", "q"),
)

STATUS_HEIGHT = 6
LABEL_WIDTH = 13
MIN_WIDTH = 40
MIN_HEIGHT = 12

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")


def _strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


def _char_display_width(ch: str) -> int:
    """Return the number of terminal columns a character occupies."""
    if unicodedata.combining(ch):
        return 0
    if unicodedata.east_asian_width(ch) in ("W", "F"):
        return 2
    return 1


def _display_width(text: str) -> int:
    return sum(_char_display_width(ch) for ch in _strip_ansi(text))


def _fit(text: str, width: int, ellipsis: str = "...") -> str:
    """Truncate or pad plain text to exactly ``width`` columns."""
    if width <= 0:
        return ""
    if _display_width(text) > width:
        budget = max(0, width - len(ellipsis))
        out, used = [], 0
        for ch in text:
            w = _char_display_width(ch)
            if used + w > budget:
                break
            out.append(ch)
            used += w
        text = "".join(out) + ellipsis[:width - used]
    return text + " " * (width - _display_width(text))


def _style(text: str, style: str, use_colors: bool) -> str:
    return f"{style}{text}{C_RESET}" if use_colors and style else text


def _box(
    title: str,
    rows: Sequence[Tuple[str, str]],
    width: int,
    height: int,
    use_colors: bool,
) -> List[str]:
    """Draw a bordered panel; rows are (text, style) pairs."""
    inner = width - 2
    head = _fit(BORDER_H + title, inner).rstrip(" ")
    head += BORDER_H * (inner - _display_width(head))
    lines = [f"{BORDER_TL}{head}{BORDER_TR}"]
    for i in range(height - 2):
        text, style = rows[i] if i < len(rows) else ("", "")
        lines.append(f"{BORDER_V}{_style(_fit(text, inner), style, use_colors)}{BORDER_V}")
    lines.append(f"{BORDER_BL}{BORDER_H * inner}{BORDER_BR}")
    return lines


def _two_columns(pairs: Sequence[Tuple[str, str]]) -> List[str]:
    return [_fit(left, LABEL_WIDTH) + right for left, right in pairs]


def _song_rows(view: PlayerView, visible: int) -> List[Tuple[str, str]]:
    """Rows of the songs panel, scrolled to keep the selection visible."""
    offset = 0
    if view.selected_index is not None and view.selected_index >= visible:
        offset = view.selected_index - visible + 1
    rows = []
    for idx in range(offset, min(len(view.catalog), offset + visible)):
        name = view.catalog[idx]
        if idx == view.selected_index:
            rows.append((HIGHLIGHT_SYMBOL + name, C_SELECTION))
        else:
            rows.append((" " * len(HIGHLIGHT_SYMBOL) + name, ""))
    if not view.catalog:
        rows.append(("No tracks found", C_SECONDARY))
    return rows


def _status_rows(view: PlayerView) -> List[Tuple[str, str]]:
    now = view.now_playing or "None"
    modes = f"loop {'on' if view.looping else 'off'}, shuffle {'on' if view.shuffle else 'off'}"
    pairs = [
        (view.status_label, now),
        ("Volume", f"{view.volume}%"),
        ("Mode", modes),
    ]
    rows = [(line, "") for line in _two_columns(pairs)]
    if view.last_error:
        rows.append((view.last_error, C_ERROR))
    return rows


def render(view: PlayerView, width: int, height: int, use_colors: bool = True) -> List[str]:
    """Lay out the songs, controls, status and queue panels."""
    width = max(MIN_WIDTH, width)
    height = max(MIN_HEIGHT, height)

    left_w = width // 2
    right_w = width - left_w

    songs = _box("Songs", _song_rows(view, height - 2), left_w, height, use_colors)

    status_h = STATUS_HEIGHT
    controls_h = (height - status_h) // 2
    queue_h = height - status_h - controls_h

    controls = _box(
        "Controls",
        [(line, "") for line in _two_columns(CONTROLS)],
        right_w, controls_h, use_colors,
    )
    status = _box("Status", _status_rows(view), right_w, status_h, use_colors)
    queue = _box("Queue", [(name, "") for name in view.queue], right_w, queue_h, use_colors)

    right = controls + status + queue
    return [left + r for left, r in zip(songs, right)]


def draw(view: PlayerView, size: Tuple[int, int], use_colors: bool = True,
         out: Optional[object] = None) -> None:
    """Write a full frame to the terminal.

    Args:
        view: Snapshot to draw
        size: (rows, columns) of the terminal
        use_colors: Whether to emit ANSI styles
        out: Stream to write to (stdout by default)
    """
    out = out or sys.stdout
    rows, cols = size
    lines = render(view, cols, rows, use_colors)
    out.write("\033[H" + "\r\n".join(lines))
    out.flush()
