"""
Configuration management for tunequeue.
"""
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

try:
    # Python 3.11+
    import tomllib
except ImportError:
    import tomli as tomllib

from .logging_config import get_logger, ConfigurationError

logger = get_logger('config')


VOLUME_MIN: int = 10
VOLUME_MAX: int = 200
VOLUME_STEP: int = 10

DEFAULT_EXTENSIONS: Tuple[str, ...] = (".mp3", ".mp2", ".mp1")

DEFAULT_CONFIG = """\
# tunequeue configuration

[music]
# Directory whose files make up the track catalog
directory = "~/Music"
extensions = [".mp3", ".mp2", ".mp1"]

[playback]
# Starting volume in percent (10-200, multiples of 10)
volume = 100
# Scheduling/redraw cadence in milliseconds
tick_ms = 250
# Audio backend: "auto" or "mpg123"
player = "auto"

[ui]
use_colors = true

[logging]
level = "INFO"
# file = "~/.local/state/tunequeue/tunequeue.log"
"""

# Maps "section.key" in the TOML file to AppConfig attributes
_TOML_KEYS: Dict[str, str] = {
    "music.directory": "music_directory",
    "music.extensions": "extensions",
    "playback.volume": "volume",
    "playback.tick_ms": "tick_ms",
    "playback.player": "audio_player",
    "playback.shuffle_seed": "shuffle_seed",
    "ui.use_colors": "use_colors",
    "logging.level": "log_level",
    "logging.file": "log_file",
}


@dataclass
class AppConfig:
    """Application configuration settings."""

    # Music library
    music_directory: str = "~/Music"
    extensions: List[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))

    # Playback settings
    volume: int = 100
    tick_ms: int = 250
    audio_player: str = "auto"  # auto, mpg123
    shuffle_seed: Optional[int] = None

    # UI settings
    use_colors: bool = True

    # Logging settings
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def music_path(self) -> Path:
        """Get the actual path to the music directory."""
        return Path(self.music_directory).expanduser()

    @property
    def log_path(self) -> Path:
        """Get the log file path, defaulting to the XDG state directory."""
        if self.log_file:
            return Path(self.log_file).expanduser()
        return get_state_dir() / "tunequeue.log"

    @property
    def tick_seconds(self) -> float:
        return self.tick_ms / 1000.0

    def validate(self) -> None:
        """Validate current configuration.

        Raises:
            ConfigurationError: listing every problem found
        """
        issues = []

        if not (VOLUME_MIN <= self.volume <= VOLUME_MAX) or self.volume % VOLUME_STEP:
            issues.append(
                f"Volume must be a multiple of {VOLUME_STEP} in "
                f"{VOLUME_MIN}-{VOLUME_MAX}, got {self.volume}"
            )

        if not (20 <= self.tick_ms <= 5000):
            issues.append(f"Tick must be 20-5000 ms, got {self.tick_ms}")

        if self.audio_player not in ("auto", "mpg123"):
            issues.append(f"Invalid audio player: {self.audio_player}")

        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_levels:
            issues.append(f"Invalid log level: {self.log_level}")

        if not self.extensions:
            issues.append("At least one audio extension is required")

        if issues:
            raise ConfigurationError("; ".join(issues))


def get_config_dir() -> Path:
    """Get the configuration directory following XDG spec.

    Returns:
        Path to the config directory (~/.config/tunequeue by default)
    """
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / "tunequeue"
    return Path.home() / ".config" / "tunequeue"


def get_state_dir() -> Path:
    """Get the directory for log files (~/.local/state/tunequeue by default)."""
    xdg_state = os.environ.get("XDG_STATE_HOME")
    if xdg_state:
        return Path(xdg_state) / "tunequeue"
    return Path.home() / ".local" / "state" / "tunequeue"


def default_config_path() -> Path:
    return get_config_dir() / "tunequeue.toml"


def init_config(config_file: Path) -> bool:
    """Write the default config file if it doesn't exist.

    Returns:
        True if config was created, False if it already existed
    """
    if config_file.exists():
        return False
    try:
        config_file.parent.mkdir(parents=True, exist_ok=True)
        config_file.write_text(DEFAULT_CONFIG)
    except OSError as e:
        logger.warning(f"Failed to create default config: {e}")
        return False
    logger.info(f"Created default config at {config_file}")
    return True


def apply_config_data(config: AppConfig, data: Dict[str, Any]) -> AppConfig:
    """Apply parsed TOML sections onto an AppConfig object.

    Unknown sections and keys are logged and ignored.
    """
    known = {f.name for f in fields(config)}
    for section, values in data.items():
        if not isinstance(values, dict):
            logger.warning(f"Ignoring top-level config key: {section}")
            continue
        for key, value in values.items():
            attr = _TOML_KEYS.get(f"{section}.{key}")
            if attr is None or attr not in known:
                logger.warning(f"Unknown config key: {section}.{key}")
                continue
            setattr(config, attr, value)
            logger.debug(f"Config updated: {attr} = {value!r}")
    return config


def load_config(config_path: Optional[Path] = None, create: bool = True) -> AppConfig:
    """Load configuration from a TOML file.

    A missing file is created with defaults (when ``create`` is set); an
    unreadable or malformed file is logged and defaults are used.
    """
    config_path = config_path or default_config_path()
    config = AppConfig()

    if not config_path.exists():
        if create:
            init_config(config_path)
        else:
            logger.info(f"Config file not found at {config_path}, using defaults")
        return config

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as e:
        logger.error(f"Failed to load config: {e}")
        logger.info("Using default configuration")
        return config

    apply_config_data(config, data)
    logger.info(f"Loaded configuration from {config_path}")
    return config
