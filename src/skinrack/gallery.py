from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from .errors import InvalidPackageError, SkinrackError
from .validator import extract_gallery_skin_ids, find_duplicate_ids, validate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GalleryEntry:
    name: str
    installed_files: tuple[str, ...] = ()


@dataclass(frozen=True)
class GallerySession:
    """What the gallery tool reports after its dialog closes."""

    installed: tuple[GalleryEntry, ...] = ()
    changed: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, raw: Any) -> "GallerySession":
        if not isinstance(raw, dict):
            raise SkinrackError("Gallery session must be a JSON object.")
        installed: list[GalleryEntry] = []
        for item in raw.get("installed") or []:
            if not isinstance(item, dict):
                continue
            name = str(item.get("name", "")).strip()
            files = item.get("installed_files")
            if not isinstance(files, list):
                files = []
            installed.append(GalleryEntry(name=name, installed_files=tuple(str(f) for f in files)))
        changed = raw.get("changed")
        if not isinstance(changed, list):
            changed = []
        return cls(installed=tuple(installed), changed=tuple(str(c) for c in changed))


@dataclass(frozen=True)
class GalleryReport:
    valid_ids: tuple[str, ...]
    invalid_entries: tuple[str, ...]
    needs_rebuild: bool

    def describe(self) -> str | None:
        if not self.invalid_entries:
            return None
        names = ", ".join(self.invalid_entries)
        if len(self.invalid_entries) == 1:
            return f"The following skin is missing required files. Thus it was removed: {names}"
        return f"The following skins are missing required files. Thus they were removed: {names}"


def validate_gallery_entry(entry: GalleryEntry, gallery_root: Path) -> list[str]:
    """
    Validate every skin a gallery entry installed.

    One archive may carry several skins. Returns their ids, or raises ``InvalidPackageError``
    naming every skin that is missing a description file or repeats an earlier id.
    """
    skin_ids = extract_gallery_skin_ids(entry.installed_files, gallery_root)
    if not skin_ids:
        raise InvalidPackageError(f"Gallery entry {entry.name!r} did not install any skin.")

    duplicates = find_duplicate_ids(skin_ids)
    problems = [f"{duplicate} (duplicate id)" for duplicate in duplicates]
    for skin_id in skin_ids:
        if skin_id in duplicates:
            continue
        if not validate(skin_id, entry.installed_files):
            logger.debug("Skin %r is missing title.skin or tabs.skin", skin_id)
            problems.append(skin_id)

    if problems:
        raise InvalidPackageError(f"Gallery entry {entry.name!r} has invalid skins: {', '.join(problems)}")
    return skin_ids


def process_gallery_session(
    session: GallerySession,
    gallery_root: Path,
    *,
    uninstall: Callable[[GalleryEntry], None],
) -> GalleryReport:
    """
    Check every entry the gallery tool installed and uninstall the invalid ones.

    Entries are handled independently so one broken package never blocks the rest of the batch.
    """
    valid: list[str] = []
    invalid: list[str] = []

    for entry in session.installed:
        try:
            valid.extend(validate_gallery_entry(entry, gallery_root))
            continue
        except InvalidPackageError as e:
            logger.warning("%s", e)
            invalid.append(entry.name or "(unnamed)")

        try:
            uninstall(entry)
        except (SkinrackError, OSError) as e:
            logger.warning("Could not uninstall invalid gallery entry %r: %s", entry.name, e)

    return GalleryReport(
        valid_ids=tuple(valid),
        invalid_entries=tuple(invalid),
        needs_rebuild=bool(session.changed) or bool(invalid),
    )
