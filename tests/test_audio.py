import signal
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))
from tunequeue import audio
from tunequeue.audio import MPG123Sink, NullSink, frames_per_second, open_sink
from tunequeue.controller import PlaybackController
from tunequeue.logging_config import DeviceUnavailableError, TrackOpenError


# MPEG 1 Layer III, 128 kbit/s, 48 kHz frame header
MPEG1_LAYER3_48K = b"\xff\xfb\x94\x00"


class FakeProcess:
    """Stands in for an mpg123 subprocess."""

    instances = []

    def __init__(self, cmd, **kwargs):
        self.args = cmd
        self.pid = 1000 + len(FakeProcess.instances)
        self.returncode = None
        FakeProcess.instances.append(self)

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        if self.returncode is None:
            self.returncode = -signal.SIGTERM
        return self.returncode


class TestNullSink:
    """Tests for the silent in-memory sink."""

    def test_append_and_finish(self):
        sink = NullSink()
        sink.append("a")
        sink.append("b")

        assert sink.pending_count() == 2
        assert sink.finish() == "a"
        assert sink.pending_count() == 1

    def test_finish_when_empty(self):
        assert NullSink().finish() is None

    def test_missing_track_raises(self):
        sink = NullSink(missing={"gone.mp3"})

        with pytest.raises(TrackOpenError) as exc:
            sink.append("gone.mp3")

        assert exc.value.track == "gone.mp3"
        assert sink.pending_count() == 0

    def test_fail_records_failure_once(self):
        sink = NullSink()
        sink.append("a")

        assert sink.fail("bad frame") == "a"
        failure = sink.take_failure()

        assert failure.track == "a"
        assert failure.reason == "bad frame"
        assert sink.take_failure() is None
        assert sink.pending_count() == 0

    def test_stop_clears_everything(self):
        sink = NullSink()
        sink.append("a")
        sink.append("b")

        sink.stop()

        assert sink.pending_count() == 0

    def test_pause_and_play(self):
        sink = NullSink()
        sink.pause()
        assert sink.is_paused() is True
        sink.play()
        assert sink.is_paused() is False

    def test_tracks_end_after_duration(self, monkeypatch):
        """Test timed tracks only advance while unpaused."""
        now = [100.0]
        monkeypatch.setattr(audio.time, "monotonic", lambda: now[0])
        sink = NullSink(track_seconds=5.0)
        sink.append("a")

        now[0] += 3.0
        sink.pause()
        now[0] += 10.0
        assert sink.pending_count() == 1

        sink.play()
        now[0] += 2.0
        assert sink.pending_count() == 0


class TestMPG123Sink:
    """Tests for the mpg123 process sink."""

    @pytest.fixture(autouse=True)
    def fake_processes(self, monkeypatch):
        FakeProcess.instances = []
        self.signals = []
        self.now = [50.0]
        monkeypatch.setattr(audio.subprocess, "Popen", FakeProcess)
        monkeypatch.setattr(audio.os, "getpgid", lambda pid: pid)
        monkeypatch.setattr(audio.os, "killpg", lambda pgid, sig: self.signals.append((pgid, sig)))
        monkeypatch.setattr(audio.time, "monotonic", lambda: self.now[0])

    def test_append_missing_file(self, temp_music_dir):
        sink = MPG123Sink(temp_music_dir)

        with pytest.raises(TrackOpenError):
            sink.append("nope.mp3")

        assert FakeProcess.instances == []

    def test_append_starts_process(self, temp_music_dir):
        sink = MPG123Sink(temp_music_dir, "/usr/bin/mpg123")
        sink.append("beta.mp3")

        proc = FakeProcess.instances[0]
        assert proc.args == ["/usr/bin/mpg123", "-q", "--scale", "32768",
                             str(temp_music_dir / "beta.mp3")]
        assert sink.pending_count() == 1

    def test_pending_tracks_start_in_order(self, temp_music_dir):
        sink = MPG123Sink(temp_music_dir)
        sink.append("beta.mp3")
        sink.append("Alpha.mp2")

        assert sink.pending_count() == 2
        assert len(FakeProcess.instances) == 1

        FakeProcess.instances[0].returncode = 0
        assert sink.pending_count() == 1
        assert FakeProcess.instances[1].args[-1].endswith("Alpha.mp2")

        FakeProcess.instances[1].returncode = 0
        assert sink.pending_count() == 0

    def test_pause_and_resume_signal_process(self, temp_music_dir):
        sink = MPG123Sink(temp_music_dir)
        sink.append("beta.mp3")
        pid = FakeProcess.instances[0].pid

        sink.pause()
        sink.play()

        assert self.signals == [(pid, signal.SIGSTOP), (pid, signal.SIGCONT)]
        assert sink.is_paused() is False

    def test_paused_sink_holds_new_tracks(self, temp_music_dir):
        sink = MPG123Sink(temp_music_dir)
        sink.pause()
        sink.append("beta.mp3")

        assert FakeProcess.instances == []
        assert sink.pending_count() == 1

        sink.play()
        assert len(FakeProcess.instances) == 1

    def test_stop_terminates_and_clears(self, temp_music_dir):
        sink = MPG123Sink(temp_music_dir)
        sink.append("beta.mp3")
        sink.append("Alpha.mp2")
        pid = FakeProcess.instances[0].pid

        sink.stop()

        assert (pid, signal.SIGTERM) in self.signals
        assert sink.pending_count() == 0
        assert len(FakeProcess.instances) == 1

    def test_volume_restarts_at_position(self, temp_music_dir):
        """Test a volume change replays the track from where it was."""
        sink = MPG123Sink(temp_music_dir)
        sink.append("beta.mp3")
        self.now[0] += 10.0

        sink.set_volume(1.5)

        restarted = FakeProcess.instances[-1]
        assert len(FakeProcess.instances) == 2
        assert restarted.args[1:5] == ["-q", "--scale", str(int(32768 * 1.5)), "--skip"]
        assert int(restarted.args[5]) == int(10.0 * audio.MPG123_FRAMES_PER_SECOND)
        assert sink.volume() == 1.5

    def test_volume_while_paused_waits_for_resume(self, temp_music_dir):
        sink = MPG123Sink(temp_music_dir)
        sink.append("beta.mp3")
        self.now[0] += 4.0
        sink.pause()
        self.now[0] += 60.0

        sink.set_volume(0.5)
        assert len(FakeProcess.instances) == 1

        sink.play()
        assert len(FakeProcess.instances) == 2
        assert int(FakeProcess.instances[1].args[5]) == int(4.0 * audio.MPG123_FRAMES_PER_SECOND)

    def test_volume_when_idle_only_records(self, temp_music_dir):
        sink = MPG123Sink(temp_music_dir)
        sink.set_volume(0.3)

        assert FakeProcess.instances == []
        assert sink.volume() == 0.3

    def test_volume_restart_uses_file_sample_rate(self, temp_music_dir):
        """Test the restart offset is counted in the file's own frames."""
        (temp_music_dir / "beta.mp3").write_bytes(MPEG1_LAYER3_48K + bytes(64))
        sink = MPG123Sink(temp_music_dir)
        sink.append("beta.mp3")
        self.now[0] += 10.0

        sink.set_volume(0.5)

        assert int(FakeProcess.instances[1].args[5]) == int(10.0 * 48000 / 1152)

    def test_unsupported_format_rejected(self, temp_music_dir):
        sink = MPG123Sink(temp_music_dir)

        with pytest.raises(TrackOpenError) as exc:
            sink.append("lossless.flac")

        assert exc.value.track == "lossless.flac"
        assert FakeProcess.instances == []

    def test_suffix_check_ignores_case(self, temp_music_dir):
        sink = MPG123Sink(temp_music_dir)
        sink.append("gamma.MP3")

        assert len(FakeProcess.instances) == 1

    def test_failed_exit_is_kept_as_failure(self, temp_music_dir):
        """Test a player that exits non-zero leaves a failure to collect."""
        sink = MPG123Sink(temp_music_dir)
        sink.append("beta.mp3")

        FakeProcess.instances[0].returncode = 1

        assert sink.pending_count() == 0
        failure = sink.take_failure()
        assert failure.track == "beta.mp3"
        assert "status 1" in failure.reason
        assert sink.take_failure() is None

    def test_clean_exit_is_not_a_failure(self, temp_music_dir):
        sink = MPG123Sink(temp_music_dir)
        sink.append("beta.mp3")

        FakeProcess.instances[0].returncode = 0

        assert sink.take_failure() is None

    def test_stopped_process_is_not_a_failure(self, temp_music_dir):
        sink = MPG123Sink(temp_music_dir)
        sink.append("beta.mp3")
        sink.set_volume(0.5)

        sink.stop()

        assert sink.take_failure() is None

    def test_failure_reaches_controller(self, temp_music_dir):
        controller = PlaybackController(["beta.mp3"], MPG123Sink(temp_music_dir))
        controller.play_selected()
        controller.toggle_loop()

        FakeProcess.instances[0].returncode = 1
        controller.tick()
        controller.tick()

        assert controller.now_playing is None
        assert "beta.mp3" in controller.last_error
        assert len(FakeProcess.instances) == 1

    def test_resume_with_missing_player_is_reported(self, temp_music_dir, monkeypatch):
        """Test a restart that cannot launch the player leaves the session running."""
        controller = PlaybackController(["beta.mp3"], MPG123Sink(temp_music_dir))
        controller.play_selected()
        controller.toggle_pause()
        controller.volume_up()

        def no_player(cmd, **kwargs):
            raise FileNotFoundError(2, "No such file or directory", cmd[0])

        monkeypatch.setattr(audio.subprocess, "Popen", no_player)
        controller.toggle_pause()
        controller.tick()

        assert controller.now_playing is None
        assert "beta.mp3" in controller.last_error

    def test_held_track_with_missing_player_is_reported(self, temp_music_dir, monkeypatch):
        sink = MPG123Sink(temp_music_dir)
        controller = PlaybackController(["beta.mp3"], sink)
        controller.toggle_pause()
        controller.queue_selected()
        controller.tick()

        def no_player(cmd, **kwargs):
            raise FileNotFoundError(2, "No such file or directory", cmd[0])

        monkeypatch.setattr(audio.subprocess, "Popen", no_player)
        controller.toggle_pause()
        assert controller.tick() is None

        assert controller.last_error is not None
        assert sink.pending_count() == 0


class TestFramesPerSecond:
    """Tests for reading the frame rate from an MPEG audio header."""

    def test_mpeg1_layer3_48k(self, tmp_path):
        path = tmp_path / "a.mp3"
        path.write_bytes(MPEG1_LAYER3_48K)

        assert frames_per_second(path) == pytest.approx(48000 / 1152)

    def test_mpeg2_layer3_22k(self, tmp_path):
        path = tmp_path / "a.mp3"
        path.write_bytes(b"\xff\xf3\x90\x00")

        assert frames_per_second(path) == pytest.approx(22050 / 576)

    def test_mpeg1_layer2_32k(self, tmp_path):
        path = tmp_path / "a.mp2"
        path.write_bytes(b"\xff\xfd\x98\x00")

        assert frames_per_second(path) == pytest.approx(32000 / 1152)

    def test_skips_id3_tag(self, tmp_path):
        """Test the tag body is skipped even when it contains sync-like bytes."""
        tag_body = b"\xff\xfb\x90\x00" + bytes(16)
        tag = b"ID3\x04\x00\x00" + bytes([0, 0, 0, len(tag_body)]) + tag_body
        path = tmp_path / "a.mp3"
        path.write_bytes(tag + MPEG1_LAYER3_48K)

        assert frames_per_second(path) == pytest.approx(48000 / 1152)

    def test_leading_garbage_skipped(self, tmp_path):
        path = tmp_path / "a.mp3"
        path.write_bytes(b"\x00\xff\x00\x12\x34" + MPEG1_LAYER3_48K)

        assert frames_per_second(path) == pytest.approx(48000 / 1152)

    @pytest.mark.parametrize("data", [b"", b"not audio at all", b"\xff\xfb\x9c\x00"])
    def test_falls_back_without_header(self, tmp_path, data):
        path = tmp_path / "a.mp3"
        path.write_bytes(data)

        assert frames_per_second(path) == audio.MPG123_FRAMES_PER_SECOND

    def test_unreadable_file_falls_back(self, tmp_path):
        assert frames_per_second(tmp_path / "gone.mp3") == audio.MPG123_FRAMES_PER_SECOND

class TestOpenSink:
    """Tests for sink selection at startup."""

    def test_no_player_is_fatal(self, monkeypatch, temp_music_dir):
        monkeypatch.setattr(audio.shutil, "which", lambda name: None)

        with pytest.raises(DeviceUnavailableError):
            with open_sink("auto", temp_music_dir):
                pass

    def test_unknown_player_is_fatal(self, temp_music_dir):
        with pytest.raises(DeviceUnavailableError):
            with open_sink("winamp", temp_music_dir):
                pass

    def test_dry_run_uses_null_sink(self, temp_music_dir):
        with open_sink("auto", temp_music_dir, dry_run=True) as sink:
            assert isinstance(sink, NullSink)

    def test_mpg123_found(self, monkeypatch, temp_music_dir):
        monkeypatch.setattr(audio.shutil, "which", lambda name: f"/opt/bin/{name}")

        with open_sink("auto", temp_music_dir) as sink:
            assert isinstance(sink, MPG123Sink)
            assert sink.executable == "/opt/bin/mpg123"
