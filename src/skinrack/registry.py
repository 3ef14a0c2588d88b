from __future__ import annotations

import enum
import locale
import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from .errors import RebuildWarning
from .metadata import SkinMetadataError, read_skin_description
from .validator import TABS_FILENAME, TITLE_FILENAME

logger = logging.getLogger(__name__)

DEFAULT_SKIN_ID = "default"
UNKNOWN_AUTHOR = "Unknown"


class SkinOrigin(enum.Enum):
    BUNDLED = "bundled"
    MANUALLY_INSTALLED = "manual"
    GALLERY_INSTALLED = "gallery"


@dataclass(frozen=True)
class SkinRoots:
    bundled: Path
    manual: Path
    gallery: Path

    def in_priority_order(self) -> list[tuple[SkinOrigin, Path]]:
        return [
            (SkinOrigin.BUNDLED, self.bundled),
            (SkinOrigin.MANUALLY_INSTALLED, self.manual),
            (SkinOrigin.GALLERY_INSTALLED, self.gallery),
        ]


@dataclass(frozen=True)
class SkinDescriptor:
    id: str
    display_name: str
    author: str
    icon: Path | None
    source_dir: Path
    origin: SkinOrigin

    @property
    def installed_with_gallery(self) -> bool:
        return self.origin is SkinOrigin.GALLERY_INSTALLED


def build_descriptor(skin_dir: Path, origin: SkinOrigin) -> SkinDescriptor:
    """Build a descriptor from a skin directory; raises ``SkinMetadataError`` for unreadable metadata."""
    skin_id = skin_dir.name
    title = read_skin_description(skin_dir / TITLE_FILENAME)
    tabs = read_skin_description(skin_dir / TABS_FILENAME)

    name = title.name or tabs.name or skin_id
    author = title.author or tabs.author or UNKNOWN_AUTHOR
    icon_ref = title.icon or tabs.icon
    icon = skin_dir / icon_ref if icon_ref else None

    return SkinDescriptor(
        id=skin_id,
        display_name=name,
        author=author,
        icon=icon,
        source_dir=skin_dir.resolve(),
        origin=origin,
    )


def _sort_key(descriptor: SkinDescriptor) -> tuple[str, str]:
    name = descriptor.display_name.casefold()
    try:
        collated = locale.strxfrm(name)
    except (ValueError, OSError):
        collated = name
    return collated, descriptor.id


def _skin_dirs(root: Path) -> list[Path]:
    if not root.is_dir():
        return []
    out: list[Path] = []
    for child in sorted(root.iterdir()):
        if child.name.startswith("."):
            continue
        if not child.is_dir():
            continue
        # Both description files are required; a directory with only one is not a skin.
        if (child / TITLE_FILENAME).is_file() and (child / TABS_FILENAME).is_file():
            out.append(child)
    return out


def scan_roots(roots: SkinRoots) -> tuple[list[SkinDescriptor], list[RebuildWarning]]:
    """
    Scan the three roots in priority order and merge them by id.

    The first root that provides an id wins; later duplicates are dropped whole. The result is
    sorted by display name (locale-aware, case-insensitive) with ties broken by id.
    """
    by_id: dict[str, SkinDescriptor] = {}
    warnings: list[RebuildWarning] = []

    for origin, root in roots.in_priority_order():
        try:
            skin_dirs = _skin_dirs(root)
        except OSError as e:
            warning = RebuildWarning(path=root, reason=str(e))
            logger.warning("%s", warning)
            warnings.append(warning)
            continue

        for skin_dir in skin_dirs:
            if skin_dir.name in by_id:
                logger.debug("Skipping %s: id already provided by %s", skin_dir, by_id[skin_dir.name].source_dir)
                continue
            try:
                descriptor = build_descriptor(skin_dir, origin)
            except SkinMetadataError as e:
                warning = RebuildWarning(path=skin_dir, reason=str(e))
                logger.warning("%s", warning)
                warnings.append(warning)
                continue
            by_id[descriptor.id] = descriptor

    return sorted(by_id.values(), key=_sort_key), warnings


class SkinRegistry:
    """In-memory catalog of every skin visible from the three roots, rebuilt wholesale."""

    def __init__(self, roots: SkinRoots) -> None:
        self.roots = roots
        self._lock = threading.Lock()
        self._generation_lock = threading.Lock()
        self._generation = 0
        self._descriptors: list[SkinDescriptor] = []
        self._by_id: dict[str, SkinDescriptor] = {}
        self._warnings: list[RebuildWarning] = []

    def invalidate(self) -> None:
        """Mark the on-disk state as changed; an in-flight rebuild restarts its scan."""
        with self._generation_lock:
            self._generation += 1

    def _current_generation(self) -> int:
        with self._generation_lock:
            return self._generation

    def rebuild(self, roots: SkinRoots | None = None) -> list[SkinDescriptor]:
        with self._lock:
            if roots is not None:
                self.roots = roots
            while True:
                generation = self._current_generation()
                descriptors, warnings = scan_roots(self.roots)
                if generation == self._current_generation():
                    break
                logger.debug("Skin roots changed during rebuild; rescanning")

            self._descriptors = descriptors
            self._by_id = {d.id: d for d in descriptors}
            self._warnings = warnings
            logger.debug("Registry rebuilt: %d skins, %d skipped", len(descriptors), len(warnings))
            return list(descriptors)

    def find(self, skin_id: str) -> SkinDescriptor | None:
        with self._lock:
            return self._by_id.get(skin_id)

    @property
    def descriptors(self) -> list[SkinDescriptor]:
        with self._lock:
            return list(self._descriptors)

    @property
    def warnings(self) -> list[RebuildWarning]:
        with self._lock:
            return list(self._warnings)

    def __len__(self) -> int:
        with self._lock:
            return len(self._descriptors)
