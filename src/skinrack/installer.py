from __future__ import annotations

import logging
import os
import re
import shutil
import stat
import tarfile
import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Collection, Iterator

from .archive import TAR, ZIP, archive_format, normalize_entry_name
from .errors import ArchiveReadError, ExtractError, RemovalError, SkinPermissionError

logger = logging.getLogger(__name__)

DEFAULT_MAX_EXTRACT_BYTES = 64 * 1024 * 1024  # 64 MiB of declared uncompressed content
STAGING_DIRNAME = ".tmp"

_DRIVE_RE = re.compile(r"^[A-Za-z]:")


@dataclass(frozen=True)
class _Member:
    parts: tuple[str, ...]
    is_dir: bool
    size: int
    info: Any

    @property
    def top_level(self) -> str:
        return self.parts[0]


def _checked_parts(name: str, base: Path) -> tuple[str, ...]:
    if name.startswith("/") or _DRIVE_RE.match(name):
        raise ExtractError(f"Archive contains an absolute path entry: {name!r}")
    target = (base / name).resolve()
    try:
        rel = target.relative_to(base)
    except ValueError:
        raise ExtractError(f"Archive contains an entry outside the install directory: {name!r}") from None
    return rel.parts


def _zip_members(zf: zipfile.ZipFile, base: Path) -> Iterator[_Member]:
    for info in zf.infolist():
        name = normalize_entry_name(info.filename)
        if not name:
            continue
        parts = _checked_parts(name, base)
        if not parts:
            continue
        mode = info.external_attr >> 16
        if mode and stat.S_ISLNK(mode):
            raise ExtractError(f"Archive contains a symbolic link: {name!r}")
        yield _Member(parts=parts, is_dir=info.is_dir(), size=info.file_size, info=info)


def _tar_members(tf: tarfile.TarFile, base: Path) -> Iterator[_Member]:
    for member in tf.getmembers():
        name = normalize_entry_name(member.name)
        if not name:
            continue
        parts = _checked_parts(name, base)
        if not parts:
            continue
        if not (member.isfile() or member.isdir()):
            raise ExtractError(f"Archive contains a link or special file: {name!r}")
        yield _Member(parts=parts, is_dir=member.isdir(), size=member.size, info=member)


def _ensure_writable_root(destination_root: Path) -> None:
    nearest = destination_root
    while not nearest.exists():
        if nearest.parent == nearest:
            break
        nearest = nearest.parent
    if not os.access(nearest, os.W_OK):
        raise SkinPermissionError(f"The skin install directory is not writable: {destination_root}")


def install_archive(
    archive_path: Path,
    destination_root: Path,
    *,
    include: Collection[str] | None = None,
    max_bytes: int = DEFAULT_MAX_EXTRACT_BYTES,
) -> list[Path]:
    """
    Extract a skin archive into ``destination_root``.

    Every member is checked before anything is written. The archive is unpacked into a staging
    directory and its top-level directories are then moved into place, so a failed install never
    leaves a partial skin visible. The top-level targets must not exist yet; replacing an
    installed skin is the caller's decision and happens before this call.

    ``include`` limits extraction to the named top-level directories. Returns the installed
    top-level paths.
    """
    archive_path = Path(archive_path)
    dest = Path(destination_root).expanduser().resolve()

    try:
        fmt = archive_format(archive_path)
    except ArchiveReadError as e:
        raise ExtractError("The skin archive file could not be opened.") from e

    _ensure_writable_root(dest)

    try:
        if fmt == ZIP:
            with zipfile.ZipFile(archive_path, "r") as zf:
                return _install_members(list(_zip_members(zf, dest)), dest, include, max_bytes, zf.open)
        with tarfile.open(archive_path, "r:*") as tf:
            return _install_members(list(_tar_members(tf, dest)), dest, include, max_bytes, tf.extractfile)
    except (zipfile.BadZipFile, tarfile.TarError, EOFError) as e:
        raise ExtractError(f"Could not extract skin archive: {archive_path}") from e
    except OSError as e:
        raise ExtractError(f"Could not write skin files to {dest}") from e


def _install_members(
    members: list[_Member],
    dest: Path,
    include: Collection[str] | None,
    max_bytes: int,
    opener: Any,
) -> list[Path]:
    if include is not None:
        allowed = set(include)
        members = [m for m in members if m.top_level in allowed]
    if not members:
        raise ExtractError("The skin archive contains nothing to install.")

    total = sum(m.size for m in members if not m.is_dir)
    if total > max_bytes:
        raise ExtractError(f"The skin archive expands to {total} bytes which exceeds the limit of {max_bytes}.")

    top_levels: list[str] = []
    for m in members:
        if m.top_level not in top_levels:
            top_levels.append(m.top_level)
    for top in top_levels:
        if (dest / top).exists():
            raise ExtractError(f"A skin directory named {top!r} already exists in {dest}.")

    dest.mkdir(parents=True, exist_ok=True)
    staging_root = dest / STAGING_DIRNAME
    created_staging = not staging_root.exists()
    staging_root.mkdir(parents=True, exist_ok=True)

    try:
        with tempfile.TemporaryDirectory(prefix="skinrack-", dir=staging_root) as td:
            unpack_root = Path(td)
            for m in members:
                target = unpack_root.joinpath(*m.parts)
                if m.is_dir:
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                src = opener(m.info)
                if src is None:
                    raise ExtractError(f"Could not read archive entry: {'/'.join(m.parts)!r}")
                with src, target.open("wb") as out:
                    shutil.copyfileobj(src, out)

            moved: list[Path] = []
            try:
                for top in top_levels:
                    target = dest / top
                    if target.exists():
                        raise ExtractError(f"A skin directory named {top!r} appeared during install.")
                    os.replace(unpack_root / top, target)
                    moved.append(target)
            except Exception:
                for path in moved:
                    if path.is_dir():
                        shutil.rmtree(path, ignore_errors=True)
                    else:
                        path.unlink(missing_ok=True)
                raise
    finally:
        if created_staging:
            try:
                staging_root.rmdir()
            except OSError:
                pass

    installed = [dest / top for top in top_levels]
    logger.info("Installed %s into %s", ", ".join(top_levels), dest)
    return installed


def move_aside(skin_dir: Path) -> Path:
    """Rename an installed skin to a hidden backup next to it; the registry never scans hidden entries."""
    backup = skin_dir.with_name(f".{skin_dir.name}.skinrack-backup")
    try:
        if backup.exists():
            shutil.rmtree(backup)
        skin_dir.rename(backup)
    except OSError as e:
        raise RemovalError(f"Could not delete the existing skin at {skin_dir}") from e
    return backup


def restore_backup(backup: Path, skin_dir: Path) -> None:
    try:
        if skin_dir.exists():
            shutil.rmtree(skin_dir, ignore_errors=True)
        backup.rename(skin_dir)
    except OSError as e:
        logger.error("Could not restore %s from %s: %s", skin_dir, backup, e)


def remove_skin_dir(skin_dir: Path) -> None:
    try:
        if skin_dir.is_symlink():
            skin_dir.unlink()
        else:
            shutil.rmtree(skin_dir)
    except OSError as e:
        raise RemovalError(f"Could not remove skin directory {skin_dir}") from e
    logger.info("Removed skin directory %s", skin_dir)
