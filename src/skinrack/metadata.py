from __future__ import annotations

import configparser
from dataclasses import dataclass
from pathlib import Path

DESCRIPTION_SECTION = "Description"


class SkinMetadataError(ValueError):
    pass


@dataclass(frozen=True)
class SkinDescription:
    name: str = ""
    author: str = ""
    icon: str = ""


def read_skin_description(path: Path) -> SkinDescription:
    """
    Read the ``[Description]`` section of a ``title.skin``/``tabs.skin`` file.

    A file without that section yields empty fields; an unreadable or unparsable file raises
    ``SkinMetadataError``.
    """
    parser = configparser.ConfigParser(interpolation=None, strict=False, delimiters=("=",))
    try:
        text = path.read_text(encoding="utf-8")
        parser.read_string(text, source=str(path))
    except (OSError, UnicodeDecodeError, configparser.Error) as e:
        raise SkinMetadataError(f"Could not read {path.name}: {e}") from e

    if not parser.has_section(DESCRIPTION_SECTION):
        return SkinDescription()

    section = parser[DESCRIPTION_SECTION]
    return SkinDescription(
        name=section.get("Skin", "").strip(),
        author=section.get("Author", "").strip(),
        icon=section.get("Icon", "").strip(),
    )
