"""
Playback scheduling for tunequeue.

The controller owns the catalog, the play queue and the policy flags, and is
the only component that talks to the audio sink. The driver loop calls
``tick()`` once per cycle and forwards user input through ``handle()``.
"""
import random
from collections import deque
from enum import Enum
from typing import Callable, Deque, Dict, Iterable, NamedTuple, Optional

from .audio import AudioSink
from .config import VOLUME_MAX, VOLUME_MIN, VOLUME_STEP
from .logging_config import get_logger, TrackOpenError
from .state import PlayerView, SelectionList

logger = get_logger('controller')


class Track(NamedTuple):
    """A catalog entry; ``index`` is its identity, ``name`` its file name."""

    index: int
    name: str


class Command(Enum):
    SELECT_NEXT = "select_next"
    SELECT_PREVIOUS = "select_previous"
    PLAY_SELECTED = "play_selected"
    QUEUE_SELECTED = "queue_selected"
    TOGGLE_PAUSE = "toggle_pause"
    TOGGLE_LOOP = "toggle_loop"
    TOGGLE_SHUFFLE = "toggle_shuffle"
    SKIP = "skip"
    VOLUME_UP = "volume_up"
    VOLUME_DOWN = "volume_down"


def clamp_volume(volume: int) -> int:
    """Snap to the volume step and clamp into the allowed range."""
    snapped = int(round(volume / VOLUME_STEP)) * VOLUME_STEP
    return max(VOLUME_MIN, min(VOLUME_MAX, snapped))


class PlaybackController:
    """Decides what plays next and applies user commands."""

    def __init__(
        self,
        catalog: Iterable[str],
        sink: AudioSink,
        volume: int = 100,
        rng: Optional[random.Random] = None,
    ):
        self.catalog = SelectionList.with_items(catalog)
        self.sink = sink
        self.queue: Deque[Track] = deque()
        self.looping = False
        self.shuffle = False
        self.now_playing: Optional[Track] = None
        self.last_error: Optional[str] = None
        self.rng = rng or random.Random()
        self.volume = clamp_volume(volume)
        self.sink.set_volume(self.volume / 100)

        self._commands: Dict[Command, Callable[[], None]] = {
            Command.SELECT_NEXT: self.select_next,
            Command.SELECT_PREVIOUS: self.select_previous,
            Command.PLAY_SELECTED: self.play_selected,
            Command.QUEUE_SELECTED: self.queue_selected,
            Command.TOGGLE_PAUSE: self.toggle_pause,
            Command.TOGGLE_LOOP: self.toggle_loop,
            Command.TOGGLE_SHUFFLE: self.toggle_shuffle,
            Command.SKIP: self.skip,
            Command.VOLUME_UP: self.volume_up,
            Command.VOLUME_DOWN: self.volume_down,
        }

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def tick(self) -> Optional[Track]:
        """Start the next track if the sink has run dry.

        A track the sink gave up on is reported instead, and nothing new
        starts until the following tick.

        Returns:
            The track handed to the sink this tick, if any
        """
        try:
            pending = self.sink.pending_count()
            failure = self.sink.take_failure()
            if failure is not None:
                self._report_failure(failure)
                return None
            if pending > 0:
                return None

            if self.shuffle:
                track = self._pick_shuffled()
                if track is not None:
                    self._play(track)
                return track

            if self.looping and self.now_playing is not None:
                track = self.now_playing
                self._play(track)
                return track

            if self.queue:
                track = self.queue.popleft()
                self._play(track)
                return track

            if self.now_playing is not None:
                logger.info("Queue exhausted, stopping")
            self.now_playing = None
            return None
        except TrackOpenError as e:
            self._report_failure(e)
            return None

    def _pick_shuffled(self) -> Optional[Track]:
        """Draw uniformly among catalog positions other than the current one."""
        items = self.catalog.items
        if not items:
            return None
        if len(items) == 1:
            return Track(0, items[0])

        current = self.now_playing.index if self.now_playing is not None else None
        if current is None or current >= len(items):
            index = self.rng.randrange(len(items))
        else:
            index = self.rng.randrange(len(items) - 1)
            if index >= current:
                index += 1
        return Track(index, items[index])

    def _play(self, track: Track) -> None:
        """Hand a track to the sink and record it as now playing.

        Raises:
            TrackOpenError: if the sink cannot open the track
        """
        self.now_playing = None
        self.sink.append(track.name)
        self.now_playing = track
        self.last_error = None
        logger.info(f"Now playing: {track.name}")

    def _report_failure(self, error: TrackOpenError) -> None:
        self.now_playing = None
        self.last_error = str(error)
        logger.error(f"Skipping track: {error}")

    def trim_queue(self) -> None:
        """Drop queue entries the sink has consumed without a tick noticing."""
        try:
            pending = self.sink.pending_count()
        except TrackOpenError as e:
            self._report_failure(e)
            return
        while len(self.queue) > pending:
            dropped = self.queue.popleft()
            logger.debug(f"Trimmed {dropped.name} from queue")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def handle(self, command: Command) -> None:
        logger.debug(f"Command: {command.value}")
        self._commands[command]()

    def selected_track(self) -> Optional[Track]:
        index = self.catalog.selected_index
        if index is None:
            return None
        return Track(index, self.catalog.items[index])

    def select_next(self) -> None:
        self.catalog.next()

    def select_previous(self) -> None:
        self.catalog.previous()

    def play_selected(self) -> None:
        """Replace whatever the sink holds with the selected track."""
        track = self.selected_track()
        if track is None:
            return
        self.sink.stop()
        try:
            self._play(track)
        except TrackOpenError as e:
            self._report_failure(e)
        self._resume()

    def queue_selected(self) -> None:
        track = self.selected_track()
        if track is None:
            return
        self.queue.append(track)
        logger.info(f"Queued {track.name} ({len(self.queue)} in queue)")

    def toggle_pause(self) -> None:
        if self.sink.is_paused():
            self._resume()
        else:
            self.sink.pause()

    def toggle_loop(self) -> None:
        self.looping = not self.looping
        logger.info(f"Loop {'on' if self.looping else 'off'}")

    def toggle_shuffle(self) -> None:
        self.shuffle = not self.shuffle
        logger.info(f"Shuffle {'on' if self.shuffle else 'off'}")

    def skip(self) -> None:
        """Drop the sink's content; the next tick picks a new track."""
        self.sink.stop()
        logger.info("Skipped")
        self._resume()

    def _resume(self) -> None:
        """Resume the sink; restarting a held track can fail to open it."""
        try:
            self.sink.play()
        except TrackOpenError as e:
            self._report_failure(e)

    def volume_up(self) -> None:
        self._set_volume(self.volume + VOLUME_STEP)

    def volume_down(self) -> None:
        self._set_volume(self.volume - VOLUME_STEP)

    def _set_volume(self, volume: int) -> None:
        volume = clamp_volume(volume)
        if volume == self.volume:
            return
        self.volume = volume
        try:
            self.sink.set_volume(volume / 100)
        except TrackOpenError as e:
            self._report_failure(e)

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------
    def view(self) -> PlayerView:
        return PlayerView(
            catalog=self.catalog.items,
            selected_index=self.catalog.selected_index,
            queue=tuple(track.name for track in self.queue),
            now_playing=self.now_playing.name if self.now_playing else None,
            looping=self.looping,
            shuffle=self.shuffle,
            paused=self.sink.is_paused(),
            volume=self.volume,
            last_error=self.last_error,
        )
