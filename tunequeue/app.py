"""
Driver loop and command-line entry point for tunequeue.
"""
import argparse
import random
import signal
import sys
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from . import __description__, __version__
from .audio import open_sink
from .config import AppConfig, default_config_path, load_config
from .controller import Command, PlaybackController
from .display import draw
from .library import load_catalog
from .logging_config import (
    get_logger,
    setup_logging,
    ConfigurationError,
    DeviceUnavailableError,
    TerminalError,
)
from .state import PlayerView
from .terminal import (
    BACKSPACE, CLEAR_SCREEN, DOWN, ENTER, LEFT, RIGHT, SHIFT, TAB, UP,
    KeyEvent, interactive_terminal, read_keys, terminal_size,
)

logger = get_logger('app')

KEY_BINDINGS: Dict[KeyEvent, Command] = {
    KeyEvent(DOWN): Command.SELECT_NEXT,
    KeyEvent("j"): Command.SELECT_NEXT,
    KeyEvent(UP): Command.SELECT_PREVIOUS,
    KeyEvent("k"): Command.SELECT_PREVIOUS,
    KeyEvent(ENTER): Command.PLAY_SELECTED,
    KeyEvent(ENTER, frozenset({SHIFT})): Command.QUEUE_SELECTED,
    KeyEvent("a"): Command.QUEUE_SELECTED,
    KeyEvent(" "): Command.TOGGLE_PAUSE,
    KeyEvent("="): Command.TOGGLE_LOOP,
    KeyEvent(TAB): Command.TOGGLE_SHUFFLE,
    KeyEvent(BACKSPACE): Command.SKIP,
    KeyEvent(RIGHT): Command.VOLUME_UP,
    KeyEvent(LEFT): Command.VOLUME_DOWN,
}

QUIT_KEYS = frozenset({KeyEvent("q")})


def command_for(event: KeyEvent) -> Optional[Command]:
    """Map a key event to a controller command, if it is bound."""
    return KEY_BINDINGS.get(event)


class Session:
    """Runs the poll / tick / render cycle until the user quits.

    Each cycle waits for input no longer than what is left of the tick
    budget, dispatches every ready key, then always runs one scheduling tick
    and one render pass.
    """

    def __init__(
        self,
        controller: PlaybackController,
        read_events: Callable[[float], List[KeyEvent]],
        render: Callable[[PlayerView], None],
        tick_seconds: float = 0.25,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.controller = controller
        self.read_events = read_events
        self.render = render
        self.tick_seconds = tick_seconds
        self.clock = clock
        self.running = False
        self.cycles = 0

    def step(self) -> None:
        self.controller.tick()
        self.controller.trim_queue()
        self.render(self.controller.view())
        self.cycles += 1

    def dispatch(self, events: List[KeyEvent]) -> None:
        for event in events:
            if event in QUIT_KEYS:
                logger.info("Quit requested")
                self.running = False
                return
            command = command_for(event)
            if command is not None:
                self.controller.handle(command)
            else:
                logger.debug(f"Unbound key: {event}")

    def run(self) -> None:
        self.running = True
        last_tick = self.clock()
        self.step()
        while self.running:
            remaining = self.tick_seconds - (self.clock() - last_tick)
            events = self.read_events(max(0.0, remaining))
            self.dispatch(events)
            if not self.running:
                break
            self.step()
            if self.clock() - last_tick >= self.tick_seconds:
                last_tick = self.clock()


class TerminalRenderer:
    """Draws views to stdout, clearing the screen after a resize."""

    def __init__(self, use_colors: bool = True):
        self.use_colors = use_colors
        self.resized = True

    def handle_resize(self, signum: Optional[int] = None, frame: Any = None) -> None:
        self.resized = True

    def __call__(self, view: PlayerView) -> None:
        if self.resized:
            sys.stdout.write(CLEAR_SCREEN)
            self.resized = False
        draw(view, terminal_size(), self.use_colors)


def _raise_exit(signum: int, frame: Any) -> None:
    raise SystemExit(0)


def _install_signal_handlers(renderer: TerminalRenderer) -> None:
    """Exit cleanly on SIGTERM/SIGHUP and redraw fully after a resize."""
    try:
        signal.signal(signal.SIGTERM, _raise_exit)
        signal.signal(signal.SIGHUP, _raise_exit)
        signal.signal(signal.SIGWINCH, renderer.handle_resize)
    except (ValueError, AttributeError) as e:
        logger.warning(f"Could not install signal handlers: {e}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tunequeue", description=__description__)
    parser.add_argument("--music-dir", type=Path, help="directory holding the tracks")
    parser.add_argument("--config", type=Path, help=f"config file (default: {default_config_path()})")
    parser.add_argument("--tick-ms", type=int, help="scheduling cadence in milliseconds")
    parser.add_argument("--volume", type=int, help="starting volume in percent")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR or CRITICAL")
    parser.add_argument("--log-file", help="write logs to this file")
    parser.add_argument("--dry-run", action="store_true", help="use a silent sink instead of mpg123")
    parser.add_argument("--list", action="store_true", help="print the catalog and exit")
    parser.add_argument("--version", action="version", version=f"tunequeue {__version__}")
    return parser


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Let command-line flags win over config file values."""
    if args.music_dir is not None:
        config.music_directory = str(args.music_dir)
    if args.tick_ms is not None:
        config.tick_ms = args.tick_ms
    if args.volume is not None:
        config.volume = args.volume
    if args.log_level is not None:
        config.log_level = args.log_level.upper()
    if args.log_file is not None:
        config.log_file = args.log_file
    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the player.

    Returns:
        Process exit status
    """
    args = build_parser().parse_args(argv)

    config = apply_overrides(load_config(args.config), args)
    try:
        config.validate()
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    setup_logging(config.log_level, config.log_path, console=args.list)
    catalog = load_catalog(config.music_path, config.extensions)

    if args.list:
        for name in catalog:
            print(name)
        return 0

    rng = random.Random(config.shuffle_seed)
    renderer = TerminalRenderer(config.use_colors)

    try:
        with open_sink(config.audio_player, config.music_path, dry_run=args.dry_run) as sink, \
                interactive_terminal() as fd:
            _install_signal_handlers(renderer)
            controller = PlaybackController(catalog, sink, volume=config.volume, rng=rng)
            session = Session(
                controller,
                read_events=lambda timeout: read_keys(timeout, fd),
                render=renderer,
                tick_seconds=config.tick_seconds,
            )
            session.run()
    except (DeviceUnavailableError, TerminalError) as e:
        logger.critical(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")

    print("Bye!")
    return 0
