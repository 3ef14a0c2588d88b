import unittest
from pathlib import Path
from unittest.mock import Mock

from skinrack.errors import InvalidPackageError, RemovalError, SkinrackError
from skinrack.gallery import GalleryEntry, GalleryReport, GallerySession, process_gallery_session, validate_gallery_entry

ROOT = Path("/data/gallery_skins")


def _files(skin_id: str, *names: str) -> tuple[str, ...]:
    return tuple(f"{ROOT}/{skin_id}/{name}" for name in names)


class TestValidateEntry(unittest.TestCase):
    def test_entry_with_several_skins(self) -> None:
        entry = GalleryEntry("Pack", _files("a", "title.skin", "tabs.skin") + _files("b", "tabs.skin", "title.skin"))
        self.assertEqual(validate_gallery_entry(entry, ROOT), ["a", "b"])

    def test_missing_file_invalidates_the_entry(self) -> None:
        entry = GalleryEntry("Pack", _files("a", "title.skin", "tabs.skin") + _files("b", "title.skin"))
        with self.assertRaises(InvalidPackageError) as ctx:
            validate_gallery_entry(entry, ROOT)
        self.assertIn("b", str(ctx.exception))

    def test_duplicate_ids_invalidate_the_entry(self) -> None:
        entry = GalleryEntry("Pack", _files("a", "title.skin", "tabs.skin") + _files("A", "title.skin", "tabs.skin"))
        with self.assertRaises(InvalidPackageError) as ctx:
            validate_gallery_entry(entry, ROOT)
        self.assertIn("duplicate", str(ctx.exception))

    def test_entry_without_skins_is_invalid(self) -> None:
        with self.assertRaises(InvalidPackageError):
            validate_gallery_entry(GalleryEntry("Empty", ("/elsewhere/readme.txt",)), ROOT)


class TestProcessSession(unittest.TestCase):
    def test_each_entry_is_handled_independently(self) -> None:
        good = GalleryEntry("Good", _files("good", "title.skin", "tabs.skin"))
        bad = GalleryEntry("Bad", _files("bad", "tabs.skin"))
        worse = GalleryEntry("Worse", _files("worse", "title.skin"))
        uninstall = Mock(side_effect=[RemovalError("locked"), None])

        with self.assertLogs("skinrack.gallery", level="WARNING"):
            report = process_gallery_session(GallerySession(installed=(bad, good, worse)), ROOT, uninstall=uninstall)

        self.assertEqual(report.valid_ids, ("good",))
        self.assertEqual(report.invalid_entries, ("Bad", "Worse"))
        self.assertTrue(report.needs_rebuild)
        self.assertEqual([c.args[0] for c in uninstall.call_args_list], [bad, worse])

    def test_changed_files_alone_trigger_a_rebuild(self) -> None:
        report = process_gallery_session(GallerySession(changed=("x",)), ROOT, uninstall=Mock())
        self.assertTrue(report.needs_rebuild)
        self.assertIsNone(report.describe())

    def test_describe_pluralizes(self) -> None:
        one = GalleryReport(valid_ids=(), invalid_entries=("Bad",), needs_rebuild=True)
        two = GalleryReport(valid_ids=(), invalid_entries=("Bad", "Worse"), needs_rebuild=True)
        self.assertEqual(one.describe(), "The following skin is missing required files. Thus it was removed: Bad")
        self.assertEqual(
            two.describe(), "The following skins are missing required files. Thus they were removed: Bad, Worse"
        )


class TestSessionFromDict(unittest.TestCase):
    def test_parses_and_ignores_junk(self) -> None:
        session = GallerySession.from_dict(
            {
                "installed": [{"name": " Pack ", "installed_files": ["/a/title.skin"]}, "junk", {"name": "NoFiles"}],
                "changed": ["/a/title.skin"],
            }
        )
        self.assertEqual(
            session.installed,
            (GalleryEntry("Pack", ("/a/title.skin",)), GalleryEntry("NoFiles", ())),
        )
        self.assertEqual(session.changed, ("/a/title.skin",))

    def test_rejects_non_objects(self) -> None:
        with self.assertRaises(SkinrackError):
            GallerySession.from_dict(["not", "a", "dict"])


if __name__ == "__main__":
    unittest.main()
