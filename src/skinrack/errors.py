from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


class SkinrackError(RuntimeError):
    """Base error. ``stage`` names the install step that failed."""

    stage = ""

    def describe(self) -> str:
        msg = str(self)
        cause = self.__cause__
        if cause is not None:
            cause_text = str(cause).strip()
            if cause_text and cause_text not in msg:
                msg = f"{msg} ({cause_text})"
        if not self.stage:
            return msg
        return f"{self.stage} failed: {msg}"


class DownloadError(SkinrackError):
    stage = "download"


class ArchiveReadError(SkinrackError):
    stage = "listing"


class InvalidPackageError(SkinrackError):
    stage = "validation"


class SkinPermissionError(SkinrackError):
    stage = "permission"


class RemovalError(SkinrackError):
    stage = "removal"


class ExtractError(SkinrackError):
    stage = "extraction"


class InstallInProgressError(SkinrackError):
    stage = "conflict check"


@dataclass(frozen=True)
class RebuildWarning:
    path: Path
    reason: str

    def __str__(self) -> str:
        return f"Skipping skin at {self.path}: {self.reason}"
