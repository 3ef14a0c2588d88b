from __future__ import annotations

import logging
import tarfile
import zipfile
from pathlib import Path

from .errors import ArchiveReadError

logger = logging.getLogger(__name__)

ZIP = "zip"
TAR = "tar"


def normalize_entry_name(name: str) -> str:
    """Return an archive member name with ``/`` separators, no ``./`` prefix and no trailing slash."""
    value = name.replace("\\", "/")
    while value.startswith("./"):
        value = value[2:]
    return value.rstrip("/")


def archive_format(archive_path: Path) -> str:
    """
    Detect the archive format from the file content.

    The extension is never trusted: a ``.tar.gz`` that is really a zip file is read as a zip.
    """
    path = Path(archive_path)
    if path.is_dir():
        raise ArchiveReadError("The installer was given a directory, not a file.")
    if not path.is_file():
        raise ArchiveReadError(f"Archive does not exist: {path}")
    try:
        if zipfile.is_zipfile(path):
            return ZIP
        if tarfile.is_tarfile(path):
            return TAR
    except OSError as e:
        raise ArchiveReadError(f"Could not read archive: {path}") from e
    raise ArchiveReadError(f"Unsupported or corrupt archive: {path}")


def list_entries(archive_path: Path) -> list[str]:
    """List member names of a zip or tar archive without extracting any contents."""
    path = Path(archive_path)
    fmt = archive_format(path)
    names: list[str] = []
    try:
        if fmt == ZIP:
            with zipfile.ZipFile(path, "r") as zf:
                raw = [info.filename for info in zf.infolist()]
        else:
            with tarfile.open(path, "r:*") as tf:
                raw = [member.name for member in tf.getmembers()]
    except (OSError, zipfile.BadZipFile, tarfile.TarError, EOFError) as e:
        raise ArchiveReadError(f"Unable to list the skin archive contents: {path}") from e

    for name in raw:
        entry = normalize_entry_name(name)
        if entry:
            names.append(entry)

    logger.debug("Listed %d entries in %s (%s)", len(names), path, fmt)
    return names
