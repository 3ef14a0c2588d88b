from __future__ import annotations

from pathlib import Path
from typing import Iterable, Sequence

from .errors import InvalidPackageError

TITLE_FILENAME = "title.skin"
TABS_FILENAME = "tabs.skin"


def _top_level(entry: str) -> str:
    parts = [p for p in entry.replace("\\", "/").split("/") if p and p != "."]
    return parts[0] if parts else ""


def derive_candidate_id(entries: Sequence[str]) -> str:
    if not entries:
        raise InvalidPackageError("The skin archive is empty.")
    candidate = _top_level(entries[0])
    if not candidate:
        raise InvalidPackageError(f"Cannot derive a skin id from archive entry {entries[0]!r}.")
    return candidate


def derive_candidate_ids(entries: Iterable[str]) -> list[str]:
    """Every distinct top-level directory, in order of first appearance."""
    seen: set[str] = set()
    out: list[str] = []
    for entry in entries:
        normalized = entry.replace("\\", "/").strip("/")
        if "/" not in normalized:
            # A bare top-level name is a directory only if something lives below it.
            continue
        top = _top_level(normalized)
        if top and top not in seen:
            seen.add(top)
            out.append(top)
    return out


def _ends_with_path(entry: str, suffix: str) -> bool:
    # Match whole path segments so "myskin/title.skin" does not satisfy id "skin".
    return entry == suffix or entry.endswith("/" + suffix)


def validate(candidate_id: str, entries: Iterable[str], *, anchored: bool = False) -> bool:
    """
    True when both description files of ``candidate_id`` are present.

    Gallery file lists are absolute, so by default any entry ending in ``<id>/title.skin`` counts.
    With ``anchored`` the files must sit directly at ``<id>/title.skin`` relative to the archive
    root, which is where extraction will put the skin.
    """
    title_found = False
    tabs_found = False
    title_suffix = f"{candidate_id}/{TITLE_FILENAME}"
    tabs_suffix = f"{candidate_id}/{TABS_FILENAME}"
    for entry in entries:
        normalized = entry.replace("\\", "/")
        if anchored:
            normalized = "/".join(p for p in normalized.split("/") if p and p != ".")
            title_found = title_found or normalized == title_suffix
            tabs_found = tabs_found or normalized == tabs_suffix
        elif _ends_with_path(normalized, title_suffix):
            title_found = True
        elif _ends_with_path(normalized, tabs_suffix):
            tabs_found = True
        if title_found and tabs_found:
            return True
    return False


def find_duplicate_ids(ids: Iterable[str]) -> list[str]:
    """Ids that collide case-insensitively with an earlier id."""
    seen: set[str] = set()
    duplicates: list[str] = []
    for skin_id in ids:
        key = skin_id.casefold()
        if key in seen:
            duplicates.append(skin_id)
            continue
        seen.add(key)
    return duplicates


def extract_gallery_skin_ids(installed_files: Iterable[str], gallery_root: Path | str) -> list[str]:
    """
    Skin ids of files a gallery tool installed under ``gallery_root``.

    Files outside the gallery root are ignored. The first path segment below the root is the id.
    """
    root = str(gallery_root).replace("\\", "/").rstrip("/") + "/"
    root_folded = root.casefold()
    ids: list[str] = []
    for file in installed_files:
        normalized = file.replace("\\", "/")
        if not normalized.casefold().startswith(root_folded):
            continue
        skin_id = _top_level(normalized[len(root):])
        if skin_id and skin_id not in ids:
            ids.append(skin_id)
    return ids
