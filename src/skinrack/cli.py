from __future__ import annotations

import argparse
import json
import locale
import logging
import sys
import textwrap
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Callable

from ._version import __version__
from .client import SkinFetcher
from .config import Config, config_path, load_config, resolve_roots, save_config
from .errors import SkinrackError
from .gallery import GalleryEntry, GallerySession
from .manager import SkinManager
from .registry import SkinDescriptor


_TABLE_HEADER = ("", "ID", "NAME", "AUTHOR", "ORIGIN", "REMOVABLE")
_MAX_CELL = 32


def _cell(text: str) -> str:
    # Skin metadata is free text; keep one skin per line.
    text = " ".join(text.split())
    return text if len(text) <= _MAX_CELL else text[: _MAX_CELL - 3] + "..."


def _print_skin_table(manager: SkinManager, descriptors: list[SkinDescriptor], selected: str) -> None:
    rows = [_TABLE_HEADER]
    for d in descriptors:
        removable = "yes" if manager.is_removable(d) else "no"
        rows.append(("*" if d.id == selected else "", d.id, _cell(d.display_name), _cell(d.author), d.origin.value, removable))
    widths = [max(len(r[i]) for r in rows) for i in range(len(_TABLE_HEADER))]
    for r in rows:
        print("  ".join(c.ljust(w) for c, w in zip(r, widths)).rstrip())


def _descriptor_dict(d: SkinDescriptor) -> dict[str, Any]:
    return {
        "id": d.id,
        "display_name": d.display_name,
        "author": d.author,
        "icon": str(d.icon) if d.icon else None,
        "source_dir": str(d.source_dir),
        "origin": d.origin.value,
    }


def _merge_cfg(base: Config, args: argparse.Namespace) -> Config:
    # CLI overrides config; env overrides are applied when the roots are resolved.
    timeout_s = getattr(args, "timeout_s", None) or base.timeout_s
    return replace(
        base,
        bundled_dir=getattr(args, "bundled_dir", None) or base.bundled_dir,
        skins_dir=getattr(args, "skins_dir", None) or base.skins_dir,
        gallery_dir=getattr(args, "gallery_dir", None) or base.gallery_dir,
        timeout_s=float(timeout_s),
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="skinrack",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Manage and install terminal skins.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              SKINRACK_CONFIG_PATH, SKINRACK_BUNDLED_DIR, SKINRACK_SKINS_DIR, SKINRACK_GALLERY_DIR
            """
        ),
    )

    def _add_runtime_overrides(parser: argparse.ArgumentParser) -> None:
        # Available both before and after subcommands, e.g.:
        #   skinrack --skins-dir ./skins list
        #   skinrack list --skins-dir ./skins
        parser.add_argument("--bundled-dir", default=argparse.SUPPRESS, help="Directory of skins shipped with the application")
        parser.add_argument("--skins-dir", default=argparse.SUPPRESS, help="Directory for manually installed skins")
        parser.add_argument(
            "--gallery-dir", default=argparse.SUPPRESS, help="Directory for skins installed by the gallery tool"
        )
        parser.add_argument("--timeout-s", type=float, default=argparse.SUPPRESS, help="Download timeout in seconds")
        parser.add_argument("-v", "--verbose", action="store_true", default=argparse.SUPPRESS, help="Debug logging")

    _add_runtime_overrides(p)
    p.add_argument("--version", action="version", version=f"skinrack {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    cfg = sub.add_parser("config", help="Manage local config")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print config path")
    cfg_sub.add_parser("show", help="Show config")
    cfg_set = cfg_sub.add_parser("set", help="Set config fields")
    cfg_set.add_argument("--bundled-dir")
    cfg_set.add_argument("--skins-dir")
    cfg_set.add_argument("--gallery-dir")
    cfg_set.add_argument("--timeout-s", type=float)

    ls = sub.add_parser("list", aliases=["ls"], help="List every available skin")
    _add_runtime_overrides(ls)
    ls.add_argument("--json", action="store_true", help="Output JSON")

    show = sub.add_parser("show", help="Show one skin")
    _add_runtime_overrides(show)
    show.add_argument("skin_id")
    show.add_argument("--json", action="store_true", help="Output JSON")

    install = sub.add_parser("install", aliases=["i"], help="Install a skin archive (path or URL)")
    _add_runtime_overrides(install)
    install.add_argument("source", help="Path, file:// URL or http(s):// URL of a .tar.gz/.tar.bz2/.zip skin archive")
    answer = install.add_mutually_exclusive_group()
    answer.add_argument("--yes", "-y", action="store_true", help="Overwrite an installed skin without asking")
    answer.add_argument("--no", action="store_true", help="Never overwrite an installed skin")
    install.add_argument("--json", action="store_true", help="Output JSON")

    remove = sub.add_parser("remove", aliases=["uninstall", "rm"], help="Remove a manually installed skin")
    _add_runtime_overrides(remove)
    remove.add_argument("skin_id")
    remove.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    select = sub.add_parser("select", help="Select the active skin")
    _add_runtime_overrides(select)
    select.add_argument("skin_id")

    current = sub.add_parser("current", help="Print the active skin")
    _add_runtime_overrides(current)
    current.add_argument("--json", action="store_true", help="Output JSON")

    gallery = sub.add_parser("gallery-sync", help="Validate skins a gallery tool just installed")
    _add_runtime_overrides(gallery)
    gallery.add_argument("session", help="JSON file: {\"installed\": [{\"name\", \"installed_files\"}], \"changed\": [...]}")
    gallery.add_argument("--json", action="store_true", help="Output JSON")

    return p


def _ask(question: str) -> bool:
    if not sys.stdin.isatty():
        return False
    try:
        reply = input(f"{question} [y/N] ")
    except EOFError:
        return False
    return reply.strip().lower() in ("y", "yes")


def _make_manager(args: argparse.Namespace) -> tuple[SkinManager, Config]:
    cfg = _merge_cfg(load_config(), args)
    manager = SkinManager(config=cfg, roots=resolve_roots(cfg), persist=lambda c: save_config(c))
    for warning in manager.registry.warnings:
        print(f"warning: {warning}", file=sys.stderr)
    return manager, cfg


def cmd_config(args: argparse.Namespace) -> int:
    if args.subcmd == "path":
        print(str(config_path()))
        return 0

    if args.subcmd == "show":
        print(json.dumps(asdict(load_config()), indent=2, sort_keys=True))
        return 0

    if args.subcmd == "set":
        cfg = load_config()
        updates: dict[str, Any] = {}
        for name in ("bundled_dir", "skins_dir", "gallery_dir", "timeout_s"):
            value = getattr(args, name, None)
            if value is not None:
                updates[name] = value
        if not updates:
            raise SkinrackError("Nothing to set.")
        path = save_config(replace(cfg, **updates))
        print(f"Saved: {path}")
        return 0

    raise AssertionError("unreachable")


def cmd_list(args: argparse.Namespace) -> int:
    manager, cfg = _make_manager(args)
    descriptors = manager.registry.descriptors
    if args.json:
        print(json.dumps([_descriptor_dict(d) for d in descriptors], indent=2, sort_keys=True))
        return 0

    _print_skin_table(manager, descriptors, cfg.skin)
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    manager, _cfg = _make_manager(args)
    d = manager.registry.find(args.skin_id)
    if d is None:
        raise SkinrackError(f"Unknown skin: {args.skin_id!r}")
    data = _descriptor_dict(d)
    data["removable"] = manager.is_removable(d)
    if args.json:
        print(json.dumps(data, indent=2, sort_keys=True))
        return 0
    for key in ("id", "display_name", "author", "origin", "source_dir", "icon", "removable"):
        value = data[key]
        if isinstance(value, bool):
            value = "true" if value else "false"
        print(f"{key}: {value if value is not None else ''}")
    return 0


def _install_confirmation(args: argparse.Namespace) -> Callable[[str, str], bool]:
    def _confirm(name: str, author: str) -> bool:
        if args.yes:
            return True
        if args.no:
            return False
        return _ask(f'Skin "{name}" by {author} appears to be already installed. Do you want to overwrite it?')

    return _confirm


def cmd_install(args: argparse.Namespace) -> int:
    manager, cfg = _make_manager(args)
    with SkinFetcher(timeout_s=cfg.timeout_s) as fetcher:
        result = manager.install(args.source, fetch=fetcher.fetch, confirm=_install_confirmation(args))

    if args.json:
        payload = {
            "state": result.state.value,
            "installed": list(result.installed),
            "rejected": [{"id": skin_id, "reason": reason} for skin_id, reason in result.rejected],
            "noop": result.noop,
            "selection_changed": result.selection_changed,
            "error": result.describe(),
        }
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0 if result.succeeded else 1

    for skin_id, reason in result.rejected:
        print(f"skipped: {skin_id} ({reason})", file=sys.stderr)
    if result.error is not None:
        raise result.error
    if result.noop:
        print("Nothing installed.")
        return 0
    for skin_id in result.installed:
        print(f"installed: {skin_id}")
    if result.selection_changed:
        print("The active skin was updated; reload it to see the changes.")
    return 0


def cmd_remove(args: argparse.Namespace) -> int:
    manager, _cfg = _make_manager(args)

    def _confirm(name: str, author: str) -> bool:
        return args.yes or _ask(f'Do you want to remove "{name}" by {author}?')

    if not manager.remove(args.skin_id, confirm=_confirm):
        print("Nothing removed.")
        return 0
    print(f"removed: {args.skin_id}")
    return 0


def cmd_select(args: argparse.Namespace) -> int:
    manager, _cfg = _make_manager(args)
    cfg = manager.select(args.skin_id)
    print(f"selected: {cfg.skin}")
    return 0


def cmd_current(args: argparse.Namespace) -> int:
    manager, _cfg = _make_manager(args)
    d = manager.current()
    if d is None:
        raise SkinrackError("No skins are available.")
    if args.json:
        print(json.dumps(_descriptor_dict(d), indent=2, sort_keys=True))
        return 0
    print(d.id)
    return 0


def _uninstall_gallery_files(gallery_root: Path) -> Callable[[GalleryEntry], None]:
    root = gallery_root.expanduser().resolve()

    def _uninstall(entry: GalleryEntry) -> None:
        dirs: set[Path] = set()
        for file in entry.installed_files:
            path = Path(file).expanduser().resolve()
            try:
                path.relative_to(root)
            except ValueError:
                continue
            if path.is_file() or path.is_symlink():
                path.unlink()
                dirs.add(path.parent)
            elif path.is_dir():
                dirs.add(path)
        # Deepest first so emptied parents can go too.
        for d in sorted(dirs, key=lambda p: len(p.parts), reverse=True):
            while d != root and d.is_dir() and not any(d.iterdir()):
                d.rmdir()
                d = d.parent

    return _uninstall


def cmd_gallery_sync(args: argparse.Namespace) -> int:
    manager, _cfg = _make_manager(args)
    raw = json.loads(Path(args.session).expanduser().read_text(encoding="utf-8"))
    session = GallerySession.from_dict(raw)
    report = manager.sync_gallery(session, uninstall=_uninstall_gallery_files(manager.roots.gallery))

    if args.json:
        payload = {
            "valid": list(report.valid_ids),
            "invalid": list(report.invalid_entries),
            "rebuilt": report.needs_rebuild,
            "selected": manager.config.skin,
        }
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0 if not report.invalid_entries else 1

    for skin_id in report.valid_ids:
        print(f"ok: {skin_id}")
    message = report.describe()
    if message:
        print(f"error: {message}", file=sys.stderr)
        return 1
    return 0


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def _configure_locale() -> None:
    # Skin names sort with the user's collation rules.
    try:
        locale.setlocale(locale.LC_COLLATE, "")
    except locale.Error:
        logging.getLogger(__name__).debug("Could not apply the LC_COLLATE locale from the environment")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args)
    _configure_locale()
    try:
        if args.cmd == "config":
            return cmd_config(args)
        if args.cmd in ("list", "ls"):
            return cmd_list(args)
        if args.cmd == "show":
            return cmd_show(args)
        if args.cmd in ("install", "i"):
            return cmd_install(args)
        if args.cmd in ("remove", "uninstall", "rm"):
            return cmd_remove(args)
        if args.cmd == "select":
            return cmd_select(args)
        if args.cmd == "current":
            return cmd_current(args)
        if args.cmd == "gallery-sync":
            return cmd_gallery_sync(args)
        raise AssertionError("unreachable")
    except SkinrackError as e:
        print(f"error: {e.describe()}", file=sys.stderr)
        return 1
    except (OSError, json.JSONDecodeError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
