import io
import locale
import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from skinrack.cli import build_parser, main
from skinrack.config import Config
from skinrack.registry import SkinRoots

from skin_fixtures import make_roots, make_zip, skin_archive_files, write_skin


def _cfg(roots: SkinRoots, **kwargs) -> Config:
    return Config(bundled_dir=str(roots.bundled), skins_dir=str(roots.manual), gallery_dir=str(roots.gallery), **kwargs)


class _CliCase(unittest.TestCase):
    def run_cli(self, argv: list[str], cfg: Config) -> tuple[int, str, str, list[Config]]:
        saved: list[Config] = []
        with (
            patch("skinrack.cli.load_config", return_value=cfg),
            patch("skinrack.cli.save_config", side_effect=lambda c: saved.append(c)),
            patch.dict("os.environ", {}, clear=False) as env,
            patch("sys.stdout", new=io.StringIO()) as stdout,
            patch("sys.stderr", new=io.StringIO()) as stderr,
        ):
            for name in ("SKINRACK_BUNDLED_DIR", "SKINRACK_SKINS_DIR", "SKINRACK_GALLERY_DIR"):
                env.pop(name, None)
            rc = main(argv)
        return rc, stdout.getvalue(), stderr.getvalue(), saved


class TestParser(unittest.TestCase):
    def test_runtime_overrides_before_and_after_the_subcommand(self) -> None:
        before = build_parser().parse_args(["--skins-dir", "/a", "list"])
        after = build_parser().parse_args(["list", "--skins-dir", "/b", "--json"])
        self.assertEqual(before.skins_dir, "/a")
        self.assertEqual(after.skins_dir, "/b")
        self.assertTrue(after.json)

    def test_install_answers_are_exclusive(self) -> None:
        with patch("sys.stderr", new=io.StringIO()), self.assertRaises(SystemExit):
            build_parser().parse_args(["install", "x.zip", "--yes", "--no"])


class TestLocale(_CliCase):
    def test_collation_locale_comes_from_the_environment(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with patch("skinrack.cli.locale.setlocale") as setlocale:
                rc, _out, _err, _saved = self.run_cli(["list"], _cfg(make_roots(Path(td))))
            self.assertEqual(rc, 0)
            setlocale.assert_any_call(locale.LC_COLLATE, "")

    def test_unsupported_locale_is_not_fatal(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with patch("skinrack.cli.locale.setlocale", side_effect=locale.Error("unsupported locale setting")):
                rc, out, _err, _saved = self.run_cli(["list", "--json"], _cfg(make_roots(Path(td))))
            self.assertEqual(rc, 0)
            self.assertEqual([d["id"] for d in json.loads(out)], ["default"])


class TestListAndShow(_CliCase):
    def test_list_json(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            roots = make_roots(Path(td))
            write_skin(roots.gallery, "ocean", name="Ocean")

            rc, out, _err, _saved = self.run_cli(["list", "--json"], _cfg(roots))

            self.assertEqual(rc, 0)
            data = json.loads(out)
            self.assertEqual([d["id"] for d in data], ["default", "ocean"])
            self.assertEqual(data[1]["origin"], "gallery")

    def test_list_table_marks_the_selected_skin(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            roots = make_roots(Path(td))
            write_skin(roots.manual, "ocean", name="Ocean")

            rc, out, _err, _saved = self.run_cli(["ls"], _cfg(roots, skin="ocean"))

            self.assertEqual(rc, 0)
            lines = out.splitlines()
            self.assertIn("REMOVABLE", lines[0])
            self.assertTrue(any(line.startswith("*") and "ocean" in line for line in lines[1:]))

    def test_list_table_shortens_long_metadata(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            roots = make_roots(Path(td))
            write_skin(roots.manual, "wordy", name="A Very Long Skin Name That Keeps On Going", author="Someone")

            rc, out, _err, _saved = self.run_cli(["list"], _cfg(roots))

            self.assertEqual(rc, 0)
            row = next(line for line in out.splitlines() if "wordy" in line)
            self.assertIn("A Very Long Skin Name That Ke...", row)
            self.assertTrue(row.rstrip().endswith("yes"))

    def test_show_unknown_skin(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            rc, _out, err, _saved = self.run_cli(["show", "missing"], _cfg(make_roots(Path(td))))
            self.assertEqual(rc, 1)
            self.assertIn("error: Unknown skin", err)

    def test_registry_warnings_go_to_stderr(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            roots = make_roots(Path(td))
            broken = write_skin(roots.manual, "broken")
            (broken / "title.skin").write_text("no header\n", encoding="utf-8")

            with self.assertLogs("skinrack.registry", level="WARNING"):
                rc, _out, err, _saved = self.run_cli(["list"], _cfg(roots))

            self.assertEqual(rc, 0)
            self.assertIn("warning: Skipping skin at", err)


class TestInstall(_CliCase):
    def test_install_local_archive(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            roots = make_roots(Path(td))
            archive = make_zip(Path(td) / "ocean.zip", skin_archive_files("ocean"))

            rc, out, _err, _saved = self.run_cli(["install", str(archive)], _cfg(roots))

            self.assertEqual(rc, 0)
            self.assertIn("installed: ocean", out)
            self.assertTrue((roots.manual / "ocean" / "tabs.skin").is_file())

    def test_invalid_archive_reports_the_stage(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            roots = make_roots(Path(td))
            archive = make_zip(Path(td) / "ocean.zip", {"ocean/title.skin": "[Description]\n"})

            rc, _out, err, _saved = self.run_cli(["install", str(archive)], _cfg(roots))

            self.assertEqual(rc, 1)
            self.assertIn("error: validation failed:", err)

    def test_malformed_url_reports_a_download_error(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            roots = make_roots(Path(td))

            rc, _out, err, _saved = self.run_cli(["install", "http://[::1/x.zip"], _cfg(roots))

            self.assertEqual(rc, 1)
            self.assertIn("error: download failed:", err)
            self.assertNotIn("Traceback", err)
            self.assertEqual(list(roots.manual.iterdir()), [])

    def test_existing_skin_with_no(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            roots = make_roots(Path(td))
            write_skin(roots.manual, "ocean", name="Old")
            archive = make_zip(Path(td) / "ocean.zip", skin_archive_files("ocean"))

            rc, out, _err, _saved = self.run_cli(["install", str(archive), "--no", "--json"], _cfg(roots))

            self.assertEqual(rc, 0)
            payload = json.loads(out)
            self.assertEqual(payload["state"], "succeeded")
            self.assertTrue(payload["noop"])
            self.assertIn("Old", (roots.manual / "ocean" / "title.skin").read_text(encoding="utf-8"))

    def test_existing_skin_with_yes(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            roots = make_roots(Path(td))
            write_skin(roots.manual, "ocean", name="Old")
            archive = make_zip(Path(td) / "ocean.zip", skin_archive_files("ocean", name="New"))

            rc, out, _err, _saved = self.run_cli(["i", str(archive), "-y"], _cfg(roots, skin="ocean"))

            self.assertEqual(rc, 0)
            self.assertIn("The active skin was updated", out)
            self.assertIn("New", (roots.manual / "ocean" / "title.skin").read_text(encoding="utf-8"))


class TestRemoveAndSelect(_CliCase):
    def test_remove_selected_skin_saves_the_fallback(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            roots = make_roots(Path(td))
            write_skin(roots.manual, "ocean")

            rc, out, _err, saved = self.run_cli(["rm", "ocean", "--yes"], _cfg(roots, skin="ocean"))

            self.assertEqual(rc, 0)
            self.assertIn("removed: ocean", out)
            self.assertEqual([c.skin for c in saved], ["default"])

    def test_last_skin_is_refused(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            rc, _out, err, _saved = self.run_cli(["remove", "default", "--yes"], _cfg(make_roots(Path(td))))
            self.assertEqual(rc, 1)
            self.assertIn("error: removal failed:", err)

    def test_select_and_current(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            roots = make_roots(Path(td))
            write_skin(roots.gallery, "ocean")

            rc, out, _err, saved = self.run_cli(["select", "ocean"], _cfg(roots))
            self.assertEqual(rc, 0)
            self.assertIn("selected: ocean", out)
            self.assertTrue(saved[0].skin_installed_with_gallery)

            rc, out, _err, _saved = self.run_cli(["current"], _cfg(roots, skin="gone"))
            self.assertEqual(rc, 0)
            self.assertEqual(out.strip(), "default")


class TestGallerySync(_CliCase):
    def test_invalid_gallery_entry_is_uninstalled(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            roots = make_roots(Path(td))
            write_skin(roots.gallery, "good")
            bad = write_skin(roots.gallery, "bad", tabs=False)
            session = Path(td) / "session.json"
            session.write_text(
                json.dumps(
                    {
                        "installed": [
                            {
                                "name": "Good",
                                "installed_files": [str(roots.gallery / "good" / "title.skin"), str(roots.gallery / "good" / "tabs.skin")],
                            },
                            {"name": "Bad", "installed_files": [str(bad / "title.skin")]},
                        ],
                        "changed": [],
                    }
                ),
                encoding="utf-8",
            )

            with self.assertLogs("skinrack.gallery", level="WARNING"):
                rc, out, err, _saved = self.run_cli(["gallery-sync", str(session)], _cfg(roots))

            self.assertEqual(rc, 1)
            self.assertIn("ok: good", out)
            self.assertIn("Thus it was removed: Bad", err)
            self.assertFalse(bad.exists())
            self.assertTrue((roots.gallery / "good").is_dir())


if __name__ == "__main__":
    unittest.main()
