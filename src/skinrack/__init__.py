from ._version import __version__
from .errors import (
    ArchiveReadError,
    DownloadError,
    ExtractError,
    InstallInProgressError,
    InvalidPackageError,
    RebuildWarning,
    RemovalError,
    SkinPermissionError,
    SkinrackError,
)
from .manager import SkinManager
from .pipeline import InstallPipeline, InstallResult, InstallState
from .registry import SkinDescriptor, SkinOrigin, SkinRegistry, SkinRoots

__all__ = [
    "__version__",
    "ArchiveReadError",
    "DownloadError",
    "ExtractError",
    "InstallInProgressError",
    "InstallPipeline",
    "InstallResult",
    "InstallState",
    "InvalidPackageError",
    "RebuildWarning",
    "RemovalError",
    "SkinDescriptor",
    "SkinManager",
    "SkinOrigin",
    "SkinPermissionError",
    "SkinRegistry",
    "SkinRoots",
    "SkinrackError",
]
