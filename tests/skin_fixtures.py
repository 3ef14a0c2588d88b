import io
import tarfile
import zipfile
from pathlib import Path

from skinrack.registry import SkinRoots


def description(name: str = "", author: str = "", icon: str = "") -> str:
    lines = ["[Description]"]
    if name:
        lines.append(f"Skin={name}")
    if author:
        lines.append(f"Author={author}")
    if icon:
        lines.append(f"Icon={icon}")
    return "\n".join(lines) + "\n"


def write_skin(
    root: Path,
    skin_id: str,
    *,
    name: str = "",
    author: str = "",
    icon: str = "",
    tabs_name: str = "",
    tabs_author: str = "",
    tabs_icon: str = "",
    title: bool = True,
    tabs: bool = True,
) -> Path:
    skin_dir = root / skin_id
    skin_dir.mkdir(parents=True, exist_ok=True)
    if title:
        (skin_dir / "title.skin").write_text(description(name, author, icon), encoding="utf-8")
    if tabs:
        (skin_dir / "tabs.skin").write_text(description(tabs_name, tabs_author, tabs_icon), encoding="utf-8")
    return skin_dir


def skin_archive_files(skin_id: str, *, name: str = "", author: str = "") -> dict[str, str]:
    return {
        f"{skin_id}/title.skin": description(name or skin_id.title(), author or "Someone"),
        f"{skin_id}/tabs.skin": description(name or skin_id.title(), author or "Someone"),
        f"{skin_id}/title.png": "png",
    }


def make_zip(path: Path, files: dict[str, str]) -> Path:
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return path


def make_tar(path: Path, files: dict[str, str], mode: str = "w:gz") -> Path:
    with tarfile.open(path, mode) as tf:
        for name, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return path


def make_roots(base: Path, *, with_default: bool = True) -> SkinRoots:
    roots = SkinRoots(bundled=base / "bundled", manual=base / "skins", gallery=base / "gallery_skins")
    for root in (roots.bundled, roots.manual, roots.gallery):
        root.mkdir(parents=True, exist_ok=True)
    if with_default:
        write_skin(roots.bundled, "default", name="Default", author="Maintainers")
    return roots


def tree(root: Path) -> list[str]:
    return sorted(str(p.relative_to(root)) for p in root.rglob("*"))
