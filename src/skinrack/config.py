from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any

from platformdirs import user_config_path, user_data_path

from .registry import DEFAULT_SKIN_ID, SkinDescriptor, SkinRoots

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0
BUNDLED_SKINS_DIR = Path(__file__).resolve().parent / "data" / "skins"


@dataclass(frozen=True)
class Config:
    skin: str = DEFAULT_SKIN_ID
    skin_installed_with_gallery: bool = False
    bundled_dir: str | None = None
    skins_dir: str | None = None  # manually installed skins
    gallery_dir: str | None = None  # skins installed by the gallery tool
    timeout_s: float = DEFAULT_TIMEOUT_S


# JSON types accepted per field; a stale or hand-edited value falls back to the default.
_FIELD_TYPES: dict[str, type | tuple[type, ...]] = {
    "skin": str,
    "skin_installed_with_gallery": bool,
    "bundled_dir": str,
    "skins_dir": str,
    "gallery_dir": str,
    "timeout_s": (int, float),
}
_OPTIONAL_FIELDS = frozenset({"bundled_dir", "skins_dir", "gallery_dir"})


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("SKINRACK_CONFIG_PATH"):
        return Path(env).expanduser()
    return user_config_path("skinrack") / "config.json"


def load_config(path_override: str | Path | None = None) -> Config:
    path = config_path(path_override)
    if not path.exists():
        return Config()

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        logger.warning("Ignoring %s: expected a JSON object", path)
        return Config()

    values: dict[str, Any] = {}
    for key, value in raw.items():
        expected = _FIELD_TYPES.get(key)
        if expected is None:
            continue
        if value is None and key in _OPTIONAL_FIELDS:
            values[key] = None
        elif isinstance(value, expected) and not (isinstance(value, bool) and expected is not bool):
            values[key] = float(value) if key == "timeout_s" else value
        else:
            logger.warning("Ignoring config value %s=%r in %s", key, value, path)
    return Config(**values)


def save_config(cfg: Config, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)
    return path


def resolve_roots(cfg: Config) -> SkinRoots:
    # Env overrides config; the CLI merges its flags into the config before calling this.
    data_dir = user_data_path("skinrack")
    bundled = os.getenv("SKINRACK_BUNDLED_DIR") or cfg.bundled_dir
    manual = os.getenv("SKINRACK_SKINS_DIR") or cfg.skins_dir
    gallery = os.getenv("SKINRACK_GALLERY_DIR") or cfg.gallery_dir
    return SkinRoots(
        bundled=Path(bundled).expanduser() if bundled else BUNDLED_SKINS_DIR,
        manual=Path(manual).expanduser() if manual else data_dir / "skins",
        gallery=Path(gallery).expanduser() if gallery else data_dir / "gallery_skins",
    )


def select_skin(cfg: Config, descriptor: SkinDescriptor) -> Config:
    return replace(cfg, skin=descriptor.id, skin_installed_with_gallery=descriptor.installed_with_gallery)


def reset_selection(cfg: Config) -> Config:
    return replace(cfg, skin=DEFAULT_SKIN_ID, skin_installed_with_gallery=False)
