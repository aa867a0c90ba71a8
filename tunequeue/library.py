"""
Track catalog discovery.
"""
from pathlib import Path
from typing import Iterable, List, Tuple

from .logging_config import get_logger, CatalogUnavailableError

logger = get_logger('library')


def scan_catalog(directory: Path, extensions: Iterable[str]) -> List[str]:
    """List playable file names directly inside ``directory``.

    Args:
        directory: Music directory to scan (not recursed)
        extensions: Accepted suffixes, compared case-insensitively

    Returns:
        File names sorted case-insensitively

    Raises:
        CatalogUnavailableError: if the directory cannot be listed
    """
    wanted = {ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in extensions}
    try:
        entries = list(Path(directory).iterdir())
    except OSError as e:
        raise CatalogUnavailableError(f"Cannot read music directory {directory}: {e}") from e

    names = []
    for entry in entries:
        try:
            if entry.is_file() and entry.suffix.lower() in wanted:
                names.append(entry.name)
        except OSError as e:
            logger.debug(f"Skipping {entry}: {e}")

    names.sort(key=lambda n: (n.lower(), n))
    return names


def load_catalog(directory: Path, extensions: Iterable[str]) -> Tuple[str, ...]:
    """Scan the catalog, degrading to an empty one when it is unavailable."""
    try:
        names = scan_catalog(directory, extensions)
    except CatalogUnavailableError as e:
        logger.warning(f"{e}; starting with an empty catalog")
        return ()
    logger.info(f"Found {len(names)} tracks in {directory}")
    return tuple(names)
