import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core import paths as core_paths


class CorePathsTests(unittest.TestCase):
    def test_is_unc_detects_long_unc(self) -> None:
        long_unc = r"\\?\UNC\server\share\world"
        simple_unc = r"\\server\share"
        self.assertTrue(core_paths.is_unc(long_unc))
        self.assertTrue(core_paths.is_unc(simple_unc))
        self.assertFalse(core_paths.is_unc("C:/data"))

    def test_absolute_destination_forms(self) -> None:
        self.assertTrue(core_paths.is_absolute_destination("/srv/backups"))
        self.assertTrue(core_paths.is_absolute_destination(r"D:\backups"))
        self.assertTrue(core_paths.is_absolute_destination("D:/backups"))
        self.assertTrue(core_paths.is_absolute_destination(r"\\nas\share\backups"))
        self.assertFalse(core_paths.is_absolute_destination("backups"))
        self.assertFalse(core_paths.is_absolute_destination("D:"))

    def test_resolve_destination_relative_and_blank(self) -> None:
        base = Path("/opt/server")
        self.assertEqual(core_paths.resolve_destination("backups/daily", base), base / "backups/daily")
        self.assertEqual(core_paths.resolve_destination("  ", base), base / core_paths.DEFAULT_DESTINATION)
        self.assertEqual(core_paths.resolve_destination("/mnt/b", base), Path("/mnt/b"))

    def test_split_list_drops_blanks(self) -> None:
        self.assertEqual(core_paths.split_list(" world ; ;world_nether;"), ["world", "world_nether"])
        self.assertEqual(core_paths.split_list(""), [])


if __name__ == "__main__":
    unittest.main()
