import logging
import random
import sys
import tempfile
import pytest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import tunequeue


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers a test's setup_logging() call attached."""
    yield
    root = logging.getLogger("tunequeue")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = True
    root.setLevel(logging.NOTSET)


@pytest.fixture
def temp_music_dir():
    """Create a temporary music directory with test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        music_dir = Path(tmpdir) / "music"
        music_dir.mkdir()

        (music_dir / "subdir").mkdir()

        (music_dir / "beta.mp3").touch()
        (music_dir / "Alpha.mp2").touch()
        (music_dir / "gamma.MP3").touch()
        (music_dir / "lossless.flac").touch()
        (music_dir / "notes.txt").touch()

        (music_dir / "subdir" / "nested.mp3").touch()

        yield music_dir


@pytest.fixture
def sink():
    """Provide a silent sink whose tracks end only when told to."""
    return tunequeue.NullSink()


@pytest.fixture
def catalog():
    return ["a.mp3", "b.mp3", "c.mp3", "d.mp3"]


@pytest.fixture
def controller(catalog, sink):
    """Provide a controller over a four-track catalog with a seeded RNG."""
    return tunequeue.PlaybackController(catalog, sink, rng=random.Random(1234))
