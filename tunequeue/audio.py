"""
Audio output sinks for tunequeue.

A sink holds at most one sounding track plus any tracks appended behind it.
The controller is the only writer; it polls ``pending_count()`` to decide
when the next track is due.
"""
import os
import shutil
import signal
import subprocess
import time
from collections import deque
from contextlib import contextmanager
from pathlib import Path
from typing import Deque, Iterator, List, Optional, Set

from .logging_config import get_logger, DeviceUnavailableError, TrackOpenError

logger = get_logger('audio')

# Fallback when a file's first frame header can't be read: 44.1 kHz Layer III
MPG123_FRAMES_PER_SECOND: float = 44100 / 1152
MPG123_UNITY_SCALE: int = 32768

SUPPORTED_PLAYERS = ("mpg123",)

# MPEG version bits -> sample rates by rate index
_SAMPLE_RATES = {
    0b11: (44100, 48000, 32000),  # MPEG 1
    0b10: (22050, 24000, 16000),  # MPEG 2
    0b00: (11025, 12000, 8000),   # MPEG 2.5
}
_HEADER_SCAN_BYTES = 64 * 1024


def _samples_per_frame(version: int, layer: int) -> int:
    if layer == 0b11:  # Layer I
        return 384
    if layer == 0b01 and version != 0b11:  # Layer III, MPEG 2/2.5
        return 576
    return 1152


def frames_per_second(path: Path) -> float:
    """Read the first MPEG audio frame header of ``path``.

    mpg123's ``--skip`` counts frames, so seeking by seconds needs the
    file's own sample rate and frame size. Falls back to
    ``MPG123_FRAMES_PER_SECOND`` when no valid header is found.
    """
    try:
        with open(path, "rb") as f:
            head = f.read(10)
            if len(head) == 10 and head[:3] == b"ID3":
                size = (head[6] << 21) | (head[7] << 14) | (head[8] << 7) | head[9]
                if head[5] & 0x10:  # footer present
                    size += 10
                f.seek(10 + size)
            else:
                f.seek(0)
            data = f.read(_HEADER_SCAN_BYTES)
    except OSError as e:
        logger.debug(f"Cannot read frame header of {path}: {e}")
        return MPG123_FRAMES_PER_SECOND

    for i in range(len(data) - 3):
        if data[i] != 0xFF or (data[i + 1] & 0xE0) != 0xE0:
            continue
        version = (data[i + 1] >> 3) & 0b11
        layer = (data[i + 1] >> 1) & 0b11
        rate_index = (data[i + 2] >> 2) & 0b11
        if version not in _SAMPLE_RATES or layer == 0 or rate_index == 0b11:
            continue
        rate = _SAMPLE_RATES[version][rate_index]
        return rate / _samples_per_frame(version, layer)

    return MPG123_FRAMES_PER_SECOND


class AudioSink:
    """Base class for audio sinks."""

    def append(self, track: str) -> None:
        """Queue a track behind the current content.

        Raises:
            TrackOpenError: if the track cannot be opened
        """
        raise NotImplementedError("Subclasses must implement append()")

    def play(self) -> None:
        """Resume playback."""
        raise NotImplementedError("Subclasses must implement play()")

    def pause(self) -> None:
        """Pause playback."""
        raise NotImplementedError("Subclasses must implement pause()")

    def stop(self) -> None:
        """Drop the current track and everything pending."""
        raise NotImplementedError("Subclasses must implement stop()")

    def is_paused(self) -> bool:
        raise NotImplementedError("Subclasses must implement is_paused()")

    def pending_count(self) -> int:
        """Number of tracks still playing or waiting in the sink."""
        raise NotImplementedError("Subclasses must implement pending_count()")

    def volume(self) -> float:
        raise NotImplementedError("Subclasses must implement volume()")

    def set_volume(self, factor: float) -> None:
        """Set the gain factor (1.0 is unity)."""
        raise NotImplementedError("Subclasses must implement set_volume()")

    def take_failure(self) -> Optional[TrackOpenError]:
        """Return and clear the error of a track that stopped abnormally."""
        return None


class NullSink(AudioSink):
    """In-memory sink that makes no sound.

    Tracks finish when ``finish()`` is called, or on their own after
    ``track_seconds`` of unpaused playback when that is set.
    """

    def __init__(self, track_seconds: Optional[float] = None, missing: Optional[Set[str]] = None):
        self.track_seconds = track_seconds
        self.missing: Set[str] = set(missing or ())
        self.pending: Deque[str] = deque()
        self.appended: List[str] = []
        self.paused = False
        self.stop_count = 0
        self.failure: Optional[TrackOpenError] = None
        self._volume = 1.0
        self._played_for = 0.0
        self._resumed_at: Optional[float] = None

    def append(self, track: str) -> None:
        if track in self.missing:
            raise TrackOpenError(track, "file not found")
        self.pending.append(track)
        self.appended.append(track)
        if len(self.pending) == 1:
            self._restart_clock()

    def play(self) -> None:
        if self.paused:
            self.paused = False
            self._resumed_at = time.monotonic()

    def pause(self) -> None:
        if not self.paused:
            self._played_for += self._running_for()
            self._resumed_at = None
            self.paused = True

    def stop(self) -> None:
        self.pending.clear()
        self.failure = None
        self.stop_count += 1

    def is_paused(self) -> bool:
        return self.paused

    def pending_count(self) -> int:
        if self.track_seconds is not None and self.pending:
            if self._played_for + self._running_for() >= self.track_seconds:
                self.finish()
        return len(self.pending)

    def volume(self) -> float:
        return self._volume

    def set_volume(self, factor: float) -> None:
        self._volume = factor

    def finish(self) -> Optional[str]:
        """End the sounding track, as if it had played to the end."""
        if not self.pending:
            return None
        done = self.pending.popleft()
        self._restart_clock()
        return done

    def fail(self, reason: str = "cannot decode") -> Optional[str]:
        """End the sounding track as a player would on a decode error."""
        done = self.finish()
        if done is not None:
            self.failure = TrackOpenError(done, reason)
        return done

    def take_failure(self) -> Optional[TrackOpenError]:
        failure, self.failure = self.failure, None
        return failure

    def _running_for(self) -> float:
        if self._resumed_at is None:
            return 0.0
        return time.monotonic() - self._resumed_at

    def _restart_clock(self) -> None:
        self._played_for = 0.0
        self._resumed_at = None if self.paused else time.monotonic()


class MPG123Sink(AudioSink):
    """Sink that runs one mpg123 process per track.

    Pause and resume stop and continue the process group; volume changes
    restart the sounding track at its elapsed position with a new scale.
    A process that exits non-zero is kept as a failure for ``take_failure()``.
    """

    SUPPORTED_SUFFIXES = (".mp3", ".mp2", ".mp1")

    def __init__(self, music_dir: Path, executable: str = "mpg123"):
        self.music_dir = Path(music_dir)
        self.executable = executable
        self.process: Optional[subprocess.Popen] = None
        self.current_path: Optional[Path] = None
        self._failure: Optional[TrackOpenError] = None
        self._pending: Deque[Path] = deque()
        self._paused = False
        self._volume = 1.0
        self._offset = 0.0
        self._started_at: Optional[float] = None
        self._restart_on_resume = False

    # ------------------------------------------------------------------
    # Sink interface
    # ------------------------------------------------------------------
    def append(self, track: str) -> None:
        path = self.music_dir / track
        if not path.is_file():
            raise TrackOpenError(track, "file not found")
        if not os.access(path, os.R_OK):
            raise TrackOpenError(track, "permission denied")
        if path.suffix.lower() not in self.SUPPORTED_SUFFIXES:
            raise TrackOpenError(track, f"{path.suffix or 'no extension'} is not supported by mpg123")
        self._pending.append(path)
        logger.debug(f"Appended {track} ({len(self._pending)} pending)")
        self._advance()

    def play(self) -> None:
        if not self._paused:
            self._advance()
            return
        self._paused = False
        if self._alive():
            if self._restart_on_resume:
                self._restart_on_resume = False
                self._restart_at(self._offset)
            else:
                self._signal(signal.SIGCONT)
                self._started_at = time.monotonic()
        self._restart_on_resume = False
        logger.info("Playback resumed")
        self._advance()

    def pause(self) -> None:
        if self._paused:
            return
        self._paused = True
        if self._alive():
            self._offset = self.position()
            self._started_at = None
            self._signal(signal.SIGSTOP)
        logger.info("Playback paused")

    def stop(self) -> None:
        self._pending.clear()
        self._terminate()
        self._restart_on_resume = False
        self._failure = None

    def is_paused(self) -> bool:
        return self._paused

    def pending_count(self) -> int:
        self._advance()
        return (1 if self.process is not None else 0) + len(self._pending)

    def volume(self) -> float:
        return self._volume

    def set_volume(self, factor: float) -> None:
        self._volume = factor
        if not self._alive():
            return
        if self._paused:
            self._restart_on_resume = True
        else:
            self._restart_at(self.position())
        logger.info(f"Volume set to {int(round(factor * 100))}%")

    def take_failure(self) -> Optional[TrackOpenError]:
        self._advance()
        failure, self._failure = self._failure, None
        return failure

    # ------------------------------------------------------------------
    # Process management
    # ------------------------------------------------------------------
    def position(self) -> float:
        """Seconds into the sounding track."""
        if self._started_at is None:
            return self._offset
        return self._offset + time.monotonic() - self._started_at

    def _alive(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def _advance(self) -> None:
        """Reap a finished process and start the next pending track."""
        if self.process is not None and self.process.poll() is not None:
            code = self.process.returncode
            if code != 0:
                logger.warning(f"{self.executable} exited with status {code} for {self.current_path}")
                self._failure = TrackOpenError(
                    self.current_path.name, f"{self.executable} exited with status {code}"
                )
            else:
                logger.debug(f"Finished {self.current_path}")
            self.process = None
            self.current_path = None
        if self.process is None and self._pending and not self._paused:
            self._start(self._pending.popleft())

    def _start(self, path: Path, start_pos: float = 0.0) -> None:
        cmd = [self.executable, "-q", "--scale", str(int(MPG123_UNITY_SCALE * self._volume))]
        if start_pos > 0:
            frame_skip = int(start_pos * frames_per_second(path))
            cmd.extend(["--skip", str(max(1, frame_skip))])
        cmd.append(str(path))

        try:
            self.process = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                preexec_fn=os.setsid,
            )
        except OSError as e:
            logger.error(f"Failed to start {self.executable}: {e}")
            raise TrackOpenError(path.name, str(e)) from e

        self.current_path = path
        self._offset = start_pos
        self._started_at = time.monotonic()
        logger.info(f"Started playback: {path.name}")

    def _restart_at(self, position: float) -> None:
        path = self.current_path
        self._terminate()
        if path is not None:
            self._start(path, position)

    def _signal(self, signum: int) -> None:
        try:
            os.killpg(os.getpgid(self.process.pid), signum)
        except (ProcessLookupError, PermissionError) as e:
            logger.warning(f"Signal {signum} to audio process failed: {e}")

    def _terminate(self) -> None:
        """Stop the sounding process, escalating to SIGKILL."""
        if self.process is not None and self.process.poll() is None:
            try:
                os.killpg(os.getpgid(self.process.pid), signal.SIGTERM)
                # A stopped process only handles SIGTERM once continued
                os.killpg(os.getpgid(self.process.pid), signal.SIGCONT)
                logger.info(f"Stopping audio process: {self.process.pid}")
                self.process.wait(timeout=1.0)
            except (ProcessLookupError, PermissionError) as e:
                logger.warning(f"Process termination error: {e}")
            except subprocess.TimeoutExpired:
                try:
                    os.killpg(os.getpgid(self.process.pid), signal.SIGKILL)
                    logger.warning(f"Force killed audio process: {self.process.pid}")
                    self.process.wait(timeout=0.5)
                except (ProcessLookupError, PermissionError, subprocess.TimeoutExpired) as e:
                    logger.warning(f"Force kill failed: {e}")
        self.process = None
        self.current_path = None
        self._offset = 0.0
        self._started_at = None


def detect_available_player() -> Optional[str]:
    """Return the path of the first supported player found on PATH."""
    for player in SUPPORTED_PLAYERS:
        found = shutil.which(player)
        if found:
            return found
    return None


@contextmanager
def open_sink(player: str, music_dir: Path, dry_run: bool = False) -> Iterator[AudioSink]:
    """Open an audio sink for the session and stop it on exit.

    Raises:
        DeviceUnavailableError: if no supported player can be found
    """
    if dry_run:
        sink: AudioSink = NullSink(track_seconds=5.0)
        logger.info("Using silent sink (dry run)")
    else:
        if player == "auto":
            executable = detect_available_player()
        elif player in SUPPORTED_PLAYERS:
            executable = shutil.which(player)
        else:
            raise DeviceUnavailableError(f"Unsupported audio player: {player}")
        if not executable:
            raise DeviceUnavailableError(
                "No audio player found; install mpg123 or run with --dry-run"
            )
        sink = MPG123Sink(music_dir, executable)
        logger.info(f"Using audio player: {executable}")

    try:
        yield sink
    finally:
        sink.stop()
