"""
tunequeue - Terminal audio player with queue, loop and shuffle.
"""

__version__ = "1.0.0"
__description__ = "A terminal audio player with a play queue, track loop and no-repeat shuffle."

from .audio import AudioSink, MPG123Sink, NullSink, detect_available_player, open_sink
from .config import AppConfig, load_config
from .controller import Command, PlaybackController, Track
from .library import load_catalog, scan_catalog
from .logging_config import (
    get_logger,
    setup_logging,
    TuneQueueError,
    CatalogUnavailableError,
    TrackOpenError,
    DeviceUnavailableError,
    ConfigurationError,
    TerminalError,
)
from .state import PlayerView, SelectionList

__all__ = [
    # Audio
    'AudioSink',
    'MPG123Sink',
    'NullSink',
    'detect_available_player',
    'open_sink',

    # Core
    'Command',
    'PlaybackController',
    'Track',
    'PlayerView',
    'SelectionList',

    # Catalog
    'load_catalog',
    'scan_catalog',

    # Config
    'AppConfig',
    'load_config',

    # Logging and errors
    'get_logger',
    'setup_logging',
    'TuneQueueError',
    'CatalogUnavailableError',
    'TrackOpenError',
    'DeviceUnavailableError',
    'ConfigurationError',
    'TerminalError',
]
