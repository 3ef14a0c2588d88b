from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from .registry import DEFAULT_SKIN_ID, SkinDescriptor, SkinOrigin, SkinRegistry
from .validator import TITLE_FILENAME


@dataclass(frozen=True)
class NoConflict:
    pass


@dataclass(frozen=True)
class ConflictRemovable:
    existing: SkinDescriptor

    @property
    def existing_dir(self) -> Path:
        return self.existing.source_dir


@dataclass(frozen=True)
class ConflictBlocked:
    existing: SkinDescriptor
    reason: str


ConflictOutcome = Union[NoConflict, ConflictRemovable, ConflictBlocked]


def is_writable_skin_dir(skin_dir: Path) -> bool:
    """A skin directory can be replaced only if it, its title file and its parent are writable."""
    title = skin_dir / TITLE_FILENAME
    if title.exists() and not os.access(title, os.W_OK):
        return False
    return os.access(skin_dir, os.W_OK) and os.access(skin_dir.parent, os.W_OK)


def check_conflict(candidate_id: str, registry: SkinRegistry) -> ConflictOutcome:
    existing = registry.find(candidate_id)
    if existing is None:
        return NoConflict()

    if existing.origin is SkinOrigin.GALLERY_INSTALLED:
        return ConflictBlocked(
            existing=existing,
            reason="This skin was installed through the gallery and can only be replaced there.",
        )
    if existing.origin is SkinOrigin.BUNDLED and existing.id == DEFAULT_SKIN_ID:
        return ConflictBlocked(existing=existing, reason="The default skin cannot be replaced.")
    if not is_writable_skin_dir(existing.source_dir):
        return ConflictBlocked(
            existing=existing,
            reason="This skin appears to be already installed and you lack the required permissions to overwrite it.",
        )
    return ConflictRemovable(existing=existing)
