from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from .client import FetchedArchive
from .config import Config, reset_selection, resolve_roots, select_skin
from .conflicts import is_writable_skin_dir
from .errors import InstallInProgressError, RemovalError, SkinPermissionError, SkinrackError
from .gallery import GalleryEntry, GalleryReport, GallerySession, process_gallery_session
from .installer import remove_skin_dir
from .pipeline import IdentifierClaims, InstallPipeline, InstallResult, run_pipeline
from .registry import DEFAULT_SKIN_ID, SkinDescriptor, SkinOrigin, SkinRegistry, SkinRoots

logger = logging.getLogger(__name__)


class SkinManager:
    """
    Application-facing facade over the registry, the install pipeline and the selection setting.

    The manager owns the current ``Config`` but not its storage: every change is handed to
    ``persist`` so the surrounding application decides where it is written.
    """

    def __init__(
        self,
        *,
        config: Config,
        roots: SkinRoots | None = None,
        persist: Callable[[Config], object] | None = None,
    ) -> None:
        self.config = config
        self.roots = roots if roots is not None else resolve_roots(config)
        self.registry = SkinRegistry(self.roots)
        self.claims = IdentifierClaims()
        self._persist = persist
        self.registry.rebuild()

    def refresh(self) -> list[SkinDescriptor]:
        return self.registry.rebuild()

    def _update_config(self, cfg: Config) -> None:
        self.config = cfg
        if self._persist is not None:
            self._persist(cfg)

    # Install

    def new_install(self) -> InstallPipeline:
        return InstallPipeline(
            registry=self.registry,
            destination_root=self.roots.manual,
            claims=self.claims,
            selected_skin=self.config.skin,
        )

    def install(
        self,
        source: str | Path,
        *,
        fetch: Callable[[str], FetchedArchive],
        confirm: Callable[[str, str], bool],
    ) -> InstallResult:
        result = run_pipeline(self.new_install(), source, fetch=fetch, confirm=confirm)
        if result.selection_changed:
            logger.info("The selected skin %r was reinstalled", self.config.skin)
        return result

    # Removal

    def is_removable(self, descriptor: SkinDescriptor) -> bool:
        if len(self.registry) <= 1:
            return False
        if descriptor.origin is SkinOrigin.GALLERY_INSTALLED:
            return False
        if descriptor.origin is SkinOrigin.BUNDLED and descriptor.id == DEFAULT_SKIN_ID:
            return False
        return is_writable_skin_dir(descriptor.source_dir)

    def remove(self, skin_id: str, *, confirm: Callable[[str, str], bool] | None = None) -> bool:
        """
        Delete an installed skin. Returns ``False`` when the user declined.

        If the removed skin was selected, the selection falls back to the default skin.
        """
        if len(self.registry) <= 1:
            raise RemovalError("The last remaining skin cannot be removed.")
        descriptor = self.registry.find(skin_id)
        if descriptor is None:
            raise RemovalError(f"Unknown skin: {skin_id!r}")
        if descriptor.origin is SkinOrigin.GALLERY_INSTALLED:
            raise RemovalError(f"Skin {skin_id!r} was installed through the gallery; remove it there.")
        if descriptor.origin is SkinOrigin.BUNDLED and descriptor.id == DEFAULT_SKIN_ID:
            raise RemovalError("The default skin cannot be removed.")
        if not is_writable_skin_dir(descriptor.source_dir):
            raise SkinPermissionError(f"You lack the required permissions to remove skin {skin_id!r}.")

        if not self.claims.claim(skin_id):
            raise InstallInProgressError(f"Skin {skin_id!r} is being installed.")
        try:
            if confirm is not None and not confirm(descriptor.display_name, descriptor.author):
                return False
            remove_skin_dir(descriptor.source_dir)
            self.registry.invalidate()
            if self.config.skin == skin_id:
                self._update_config(reset_selection(self.config))
        finally:
            self.claims.release(skin_id)

        self.registry.rebuild()
        return True

    # Selection

    def select(self, skin_id: str) -> Config:
        descriptor = self.registry.find(skin_id)
        if descriptor is None:
            raise SkinrackError(f"Unknown skin: {skin_id!r}")
        self._update_config(select_skin(self.config, descriptor))
        return self.config

    def current(self) -> SkinDescriptor | None:
        descriptor = self.registry.find(self.config.skin)
        if descriptor is not None:
            return descriptor
        return self.registry.find(DEFAULT_SKIN_ID)

    # Gallery

    def sync_gallery(self, session: GallerySession, *, uninstall: Callable[[GalleryEntry], None]) -> GalleryReport:
        report = process_gallery_session(session, self.roots.gallery, uninstall=uninstall)
        if report.needs_rebuild:
            self.registry.invalidate()
            self.registry.rebuild()
            if self.registry.find(self.config.skin) is None:
                logger.info("Selected skin %r is gone; falling back to %r", self.config.skin, DEFAULT_SKIN_ID)
                self._update_config(reset_selection(self.config))
        return report
