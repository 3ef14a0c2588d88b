from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlsplit

import httpx

from .config import DEFAULT_TIMEOUT_S
from .errors import DownloadError

logger = logging.getLogger(__name__)

_ARCHIVE_SUFFIXES = (".tar.gz", ".tar.bz2", ".tar.xz", ".tgz", ".tbz2", ".txz", ".tar", ".zip")


@dataclass(frozen=True)
class FetchedArchive:
    path: Path
    temporary: bool


def is_remote_reference(source: str | Path) -> bool:
    if isinstance(source, Path):
        return False
    return source.strip().lower().startswith(("http://", "https://"))


def local_path(source: str | Path) -> Path:
    if isinstance(source, Path):
        return source.expanduser()
    raw = source.strip()
    try:
        parts = urlsplit(raw)
    except ValueError as e:
        raise DownloadError(f"Invalid skin source: {raw}") from e
    if parts.scheme.lower() == "file":
        return Path(unquote(parts.path))
    return Path(raw).expanduser()


def discard_download(fetched: FetchedArchive) -> None:
    if not fetched.temporary:
        return
    try:
        fetched.path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove temporary download %s: %s", fetched.path, e)


def _suffix_for(url_path: str) -> str:
    lowered = url_path.lower()
    for suffix in _ARCHIVE_SUFFIXES:
        if lowered.endswith(suffix):
            return suffix
    return ""


class SkinFetcher:
    """
    Turns a skin source reference into a readable local file.

    ``http(s)://`` URLs are streamed into a temporary file; ``file://`` URLs and plain paths are
    used in place.
    """

    def __init__(self, *, timeout_s: float = DEFAULT_TIMEOUT_S, temp_dir: Path | None = None) -> None:
        self.timeout_s = timeout_s
        self.temp_dir = temp_dir
        self._http = httpx.Client(timeout=timeout_s, follow_redirects=True)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "SkinFetcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def fetch(self, source: str | Path) -> FetchedArchive:
        if is_remote_reference(source):
            raw = str(source).strip()
            try:
                suffix = _suffix_for(urlsplit(raw).path)
            except ValueError as e:
                raise DownloadError(f"Invalid skin URL: {raw}") from e
            return self._download(raw, suffix)
        return self._local(local_path(source))

    def _local(self, path: Path) -> FetchedArchive:
        path = path.expanduser()
        if not path.exists():
            raise DownloadError(f"File does not exist: {path}")
        return FetchedArchive(path=path, temporary=False)

    def _download(self, url: str, suffix: str) -> FetchedArchive:
        fd, tmp_name = tempfile.mkstemp(prefix="skinrack-", suffix=suffix, dir=self.temp_dir)
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as out:
                with self._http.stream("GET", url) as resp:
                    if resp.status_code >= 400:
                        raise DownloadError(f"HTTP {resp.status_code} while downloading {url}")
                    for chunk in resp.iter_bytes():
                        out.write(chunk)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            tmp.unlink(missing_ok=True)
            raise DownloadError(f"Failed to download skin from {url}") from e
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise DownloadError(f"Could not save download from {url}") from e
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        logger.info("Downloaded %s to %s", url, tmp)
        return FetchedArchive(path=tmp, temporary=True)
