from __future__ import annotations

import contextlib
import enum
import logging
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Union

from .archive import list_entries
from .client import FetchedArchive, discard_download, is_remote_reference, local_path
from .conflicts import ConflictBlocked, ConflictRemovable, NoConflict, check_conflict
from .errors import (
    ArchiveReadError,
    DownloadError,
    InstallInProgressError,
    InvalidPackageError,
    SkinPermissionError,
    SkinrackError,
)
from .installer import DEFAULT_MAX_EXTRACT_BYTES, install_archive, move_aside, restore_backup
from .registry import SkinDescriptor, SkinRegistry
from .validator import derive_candidate_id, derive_candidate_ids, find_duplicate_ids, validate

logger = logging.getLogger(__name__)


class InstallState(enum.Enum):
    IDLE = "idle"
    DOWNLOADING = "downloading"
    LISTING = "listing"
    VALIDATING = "validating"
    CONFLICT_CHECKING = "conflict_checking"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    REMOVING = "removing"
    EXTRACTING = "extracting"
    REBUILDING = "rebuilding"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATES = frozenset({InstallState.SUCCEEDED, InstallState.FAILED})


# What a suspended pipeline is waiting for.


@dataclass(frozen=True)
class FetchRequest:
    source: str


@dataclass(frozen=True)
class ListRequest:
    archive_path: Path


@dataclass(frozen=True)
class ConfirmRequest:
    candidate_id: str
    existing: SkinDescriptor


PendingRequest = Union[FetchRequest, ListRequest, ConfirmRequest]


# Completion events fed back through InstallPipeline.dispatch().


@dataclass(frozen=True)
class DownloadCompleted:
    archive: FetchedArchive


@dataclass(frozen=True)
class DownloadFailed:
    error: BaseException


@dataclass(frozen=True)
class ListingCompleted:
    entries: tuple[str, ...]


@dataclass(frozen=True)
class ListingFailed:
    error: BaseException


@dataclass(frozen=True)
class ConfirmationAnswered:
    confirmed: bool


PipelineEvent = Union[DownloadCompleted, DownloadFailed, ListingCompleted, ListingFailed, ConfirmationAnswered]


@dataclass
class InstallSession:
    source: str | Path
    archive_path: Path | None = None
    entries: list[str] = field(default_factory=list)
    candidate_id: str | None = None
    candidates: list[str] = field(default_factory=list)
    destination_existed: bool = False

    def release(self) -> None:
        self.entries.clear()
        self.candidates.clear()


@dataclass(frozen=True)
class InstallResult:
    state: InstallState
    installed: tuple[str, ...] = ()
    rejected: tuple[tuple[str, str], ...] = ()
    noop: bool = False
    selection_changed: bool = False
    error: SkinrackError | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is InstallState.SUCCEEDED

    def describe(self) -> str | None:
        """One user-facing line for a failed install; ``None`` when there is nothing to report."""
        if self.error is None:
            return None
        return self.error.describe()


class IdentifierClaims:
    """Skin ids currently owned by an active pipeline. Only one install may touch an id at a time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: set[str] = set()

    def claim(self, skin_id: str) -> bool:
        with self._lock:
            if skin_id in self._active:
                return False
            self._active.add(skin_id)
            return True

    def release(self, skin_id: str) -> None:
        with self._lock:
            self._active.discard(skin_id)

    def __contains__(self, skin_id: object) -> bool:
        with self._lock:
            return skin_id in self._active


class InstallPipeline:
    """
    Event-driven state machine installing one skin archive.

    The pipeline never blocks on collaborators. When it needs a download, an archive listing or a
    user decision it stops in the matching state and exposes ``pending``; the caller performs the
    work and feeds the outcome back with ``dispatch()``. Temporary resources belong to the session
    and are released exactly once when a terminal state is reached.
    """

    def __init__(
        self,
        *,
        registry: SkinRegistry,
        destination_root: Path,
        claims: IdentifierClaims | None = None,
        selected_skin: str | None = None,
        max_bytes: int = DEFAULT_MAX_EXTRACT_BYTES,
    ) -> None:
        self.registry = registry
        self.destination_root = destination_root
        self.claims = claims if claims is not None else IdentifierClaims()
        self.selected_skin = selected_skin
        self.max_bytes = max_bytes

        self.state = InstallState.IDLE
        self.pending: PendingRequest | None = None
        self.session: InstallSession | None = None
        self.result: InstallResult | None = None

        self._resources: contextlib.ExitStack | None = None
        self._queue: list[str] = []
        self._to_extract: list[str] = []
        self._to_replace: list[SkinDescriptor] = []
        self._rejected: list[tuple[str, str]] = []
        self._awaiting: ConfirmRequest | None = None

    def __enter__(self) -> "InstallPipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self.finished:
            self._fail(SkinrackError("The install was abandoned before it finished."))

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def _enter(self, state: InstallState) -> None:
        logger.debug("Install %s: %s -> %s", self._label(), self.state.value, state.value)
        self.state = state

    def _label(self) -> str:
        if self.session is None:
            return "-"
        return self.session.candidate_id or str(self.session.source)

    # Entry point

    def start(self, source: str | Path) -> InstallState:
        if self.state is not InstallState.IDLE:
            raise RuntimeError(f"Install already started (state={self.state.value}).")

        self.session = InstallSession(source=source)
        self._resources = contextlib.ExitStack()
        self._resources.callback(self.session.release)

        if is_remote_reference(source):
            self._enter(InstallState.DOWNLOADING)
            self.pending = FetchRequest(source=str(source))
            return self.state

        try:
            self.session.archive_path = local_path(source)
        except SkinrackError as e:
            self._fail(e)
            return self.state
        self._begin_listing()
        return self.state

    # Events

    def dispatch(self, event: PipelineEvent) -> InstallState:
        if self.finished:
            raise RuntimeError(f"Install already finished (state={self.state.value}).")
        assert self.session is not None and self._resources is not None

        if isinstance(event, (DownloadCompleted, DownloadFailed)):
            self._expect(InstallState.DOWNLOADING, event)
            self.pending = None
            if isinstance(event, DownloadFailed):
                self._fail(_as_error(event.error, DownloadError, "Failed to download skin."))
                return self.state
            if event.archive.temporary:
                self._resources.callback(discard_download, event.archive)
            self.session.archive_path = event.archive.path
            self._begin_listing()
            return self.state

        if isinstance(event, (ListingCompleted, ListingFailed)):
            self._expect(InstallState.LISTING, event)
            self.pending = None
            if isinstance(event, ListingFailed):
                self._fail(_as_error(event.error, ArchiveReadError, "Unable to list the skin archive contents."))
                return self.state
            self.session.entries = list(event.entries)
            self._validate()
            return self.state

        if isinstance(event, ConfirmationAnswered):
            self._expect(InstallState.AWAITING_CONFIRMATION, event)
            request = self._awaiting
            assert request is not None
            self.pending = None
            self._awaiting = None
            if event.confirmed:
                self._to_replace.append(request.existing)
                self._to_extract.append(request.candidate_id)
            else:
                logger.info("Overwrite of %s declined", request.candidate_id)
            self._check_conflicts()
            return self.state

        raise TypeError(f"Unknown pipeline event: {event!r}")

    def cancel(self) -> InstallState:
        """Cancel while waiting for confirmation; any other suspension point cannot be cancelled."""
        if self.state is not InstallState.AWAITING_CONFIRMATION:
            raise RuntimeError(f"Install cannot be cancelled in state {self.state.value}.")
        return self.dispatch(ConfirmationAnswered(confirmed=False))

    def _expect(self, state: InstallState, event: PipelineEvent) -> None:
        if self.state is not state:
            raise RuntimeError(f"Unexpected {type(event).__name__} in state {self.state.value}.")

    # Stages

    def _begin_listing(self) -> None:
        assert self.session is not None and self.session.archive_path is not None
        self._enter(InstallState.LISTING)
        self.pending = ListRequest(archive_path=self.session.archive_path)

    def _validate(self) -> None:
        assert self.session is not None
        self._enter(InstallState.VALIDATING)
        entries = self.session.entries
        try:
            primary = derive_candidate_id(entries)
        except InvalidPackageError as e:
            self._fail(e)
            return

        self.session.candidate_id = primary
        candidates = [primary] + [c for c in derive_candidate_ids(entries) if c != primary]
        self.session.candidates = candidates

        if not validate(primary, entries, anchored=True):
            self._fail(
                InvalidPackageError(
                    "Unable to locate required files in the skin archive. The archive appears to be invalid."
                )
            )
            return

        duplicates = set(find_duplicate_ids(candidates))
        for candidate in candidates[1:]:
            if candidate in duplicates:
                self._reject(candidate, "duplicates another skin id in the same archive")
            elif not validate(candidate, entries, anchored=True):
                self._reject(candidate, "missing title.skin or tabs.skin")
            else:
                self._queue.append(candidate)
        self._queue.insert(0, primary)

        self._enter(InstallState.CONFLICT_CHECKING)
        self._check_conflicts()

    def _reject(self, candidate: str, reason: str) -> None:
        logger.warning("Skipping skin %s in %s: %s", candidate, self.session.source if self.session else "-", reason)
        self._rejected.append((candidate, reason))

    def _check_conflicts(self) -> None:
        assert self.session is not None and self._resources is not None
        if self.state is not InstallState.CONFLICT_CHECKING:
            self._enter(InstallState.CONFLICT_CHECKING)

        while self._queue:
            candidate = self._queue.pop(0)
            is_primary = candidate == self.session.candidate_id

            if not self.claims.claim(candidate):
                if is_primary:
                    self._fail(InstallInProgressError(f"Skin {candidate!r} is already being installed."))
                    return
                self._reject(candidate, "already being installed")
                continue
            self._resources.callback(self.claims.release, candidate)

            outcome = check_conflict(candidate, self.registry)
            if isinstance(outcome, NoConflict):
                self._to_extract.append(candidate)
                continue
            if isinstance(outcome, ConflictBlocked):
                if is_primary:
                    self._fail(SkinPermissionError(outcome.reason))
                    return
                self._reject(candidate, outcome.reason)
                continue
            if isinstance(outcome, ConflictRemovable):
                self._awaiting = ConfirmRequest(candidate_id=candidate, existing=outcome.existing)
                self._enter(InstallState.AWAITING_CONFIRMATION)
                self.pending = self._awaiting
                return
            raise AssertionError("unreachable")

        self._apply()

    def _apply(self) -> None:
        assert self.session is not None and self.session.archive_path is not None
        if not self._to_extract:
            self._succeed(installed=(), noop=True)
            return

        backups: list[tuple[Path, Path]] = []
        if self._to_replace:
            self._enter(InstallState.REMOVING)
            self.session.destination_existed = True
            try:
                for existing in self._to_replace:
                    backups.append((move_aside(existing.source_dir), existing.source_dir))
            except SkinrackError as e:
                for backup, original in reversed(backups):
                    restore_backup(backup, original)
                self._fail(e)
                return
            self.registry.invalidate()

        self._enter(InstallState.EXTRACTING)
        try:
            install_archive(
                self.session.archive_path,
                self.destination_root,
                include=self._to_extract,
                max_bytes=self.max_bytes,
            )
        except SkinrackError as e:
            for backup, original in reversed(backups):
                restore_backup(backup, original)
            if backups:
                self.registry.invalidate()
            self._fail(e)
            return

        for backup, _original in backups:
            try:
                shutil.rmtree(backup)
            except OSError as e:
                logger.warning("Could not delete replaced skin backup %s: %s", backup, e)

        self._enter(InstallState.REBUILDING)
        try:
            self.registry.rebuild()
        except Exception as e:  # noqa: BLE001
            logger.warning("Registry rebuild after installing %s failed: %s", ", ".join(self._to_extract), e)

        self._succeed(installed=tuple(self._to_extract), noop=False)

    # Terminal transitions

    def _succeed(self, *, installed: tuple[str, ...], noop: bool) -> None:
        selection_changed = bool(self.selected_skin and self.selected_skin in installed)
        self._finish(
            InstallResult(
                state=InstallState.SUCCEEDED,
                installed=installed,
                rejected=tuple(self._rejected),
                noop=noop,
                selection_changed=selection_changed,
            )
        )

    def _fail(self, error: SkinrackError) -> None:
        logger.warning("Install %s failed: %s", self._label(), error.describe())
        self._finish(InstallResult(state=InstallState.FAILED, rejected=tuple(self._rejected), error=error))

    def _finish(self, result: InstallResult) -> None:
        self._enter(result.state)
        self.pending = None
        self._awaiting = None
        self.result = result
        resources, self._resources = self._resources, None
        if resources is not None:
            resources.close()


def _as_error(error: BaseException, kind: type[SkinrackError], message: str) -> SkinrackError:
    if isinstance(error, SkinrackError):
        return error
    wrapped = kind(message)
    wrapped.__cause__ = error
    return wrapped


def run_pipeline(
    pipeline: InstallPipeline,
    source: str | Path,
    *,
    fetch: Callable[[str], FetchedArchive],
    confirm: Callable[[str, str], bool],
    list_archive: Callable[[Path], list[str]] = list_entries,
) -> InstallResult:
    """Drive a pipeline to completion, answering each pending request with the given collaborators."""
    with pipeline:
        pipeline.start(source)
        while not pipeline.finished:
            request = pipeline.pending
            if isinstance(request, FetchRequest):
                try:
                    fetched = fetch(request.source)
                except SkinrackError as e:
                    pipeline.dispatch(DownloadFailed(e))
                    continue
                pipeline.dispatch(DownloadCompleted(fetched))
            elif isinstance(request, ListRequest):
                try:
                    entries = list_archive(request.archive_path)
                except SkinrackError as e:
                    pipeline.dispatch(ListingFailed(e))
                    continue
                pipeline.dispatch(ListingCompleted(tuple(entries)))
            elif isinstance(request, ConfirmRequest):
                answer = confirm(request.existing.display_name, request.existing.author)
                pipeline.dispatch(ConfirmationAnswered(bool(answer)))
            else:
                raise AssertionError("unreachable")

    assert pipeline.result is not None
    return pipeline.result
