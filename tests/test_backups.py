import os
import shutil
import tempfile
import time
import unittest
from datetime import datetime
from pathlib import Path
from unittest import mock

from site_deployer.backup import BackupManager
from site_deployer.project import resolve_environment

_real_rmtree = shutil.rmtree


def _config(root: Path, *, cleanup: bool = True, keep: int = 2):
    return resolve_environment(
        {
            "folder_website_name": "shop",
            "iis_website_name": "ShopSite",
            "start_iis": False,
            "stop_iis": False,
            "start_app_pool": False,
            "stop_app_pool": False,
            "is_cleanup": cleanup,
            "max_backups_to_keep": keep,
            "environment_config": {
                "environment": "UAT",
                "base_website_path": str(root / "www"),
                "base_backups_path": str(root / "backups"),
            },
        }
    )


def _make_backups(config, names):
    """Create backup directories with strictly increasing creation times."""
    base = time.time() - 10_000
    for offset, name in enumerate(names):
        path = config.project_backups_path / name
        path.mkdir(parents=True)
        (path / "index.html").write_text(name, encoding="utf-8")
        stamp = base + offset * 60
        os.utime(path, (stamp, stamp))


class BackupCreationTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.manager = BackupManager(clock=lambda: datetime(2024, 1, 2, 3, 4, 5))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_empty_source_creates_no_backup(self) -> None:
        config = _config(self.root)
        config.website_path.mkdir(parents=True)

        record = self.manager.create_backup(config, "42")

        self.assertIsNone(record)
        self.assertTrue(config.project_backups_path.is_dir())
        self.assertEqual(list(config.project_backups_path.iterdir()), [])

    def test_missing_source_creates_no_backup(self) -> None:
        config = _config(self.root)
        self.assertIsNone(self.manager.create_backup(config, "42"))

    def test_copies_live_site_into_named_directory(self) -> None:
        config = _config(self.root)
        (config.website_path / "bin").mkdir(parents=True)
        (config.website_path / "web.config").write_text("<configuration/>", encoding="utf-8")
        (config.website_path / "bin" / "app.dll").write_bytes(b"\x00\x01")

        record = self.manager.create_backup(config, "42")

        self.assertIsNotNone(record)
        assert record is not None
        self.assertEqual(record.name, "42_ShopSite_UAT_2024-01-02_030405")
        self.assertTrue((record.path / "web.config").is_file())
        self.assertTrue((record.path / "bin" / "app.dll").is_file())

    def test_same_second_backups_get_distinct_names(self) -> None:
        config = _config(self.root)
        config.website_path.mkdir(parents=True)
        (config.website_path / "index.html").write_text("live", encoding="utf-8")

        first = self.manager.create_backup(config, "42")
        second = self.manager.create_backup(config, "42")

        assert first is not None and second is not None
        self.assertEqual(first.name, "42_ShopSite_UAT_2024-01-02_030405")
        self.assertEqual(second.name, "42_ShopSite_UAT_2024-01-02_030405_2")
        self.assertTrue((second.path / "index.html").is_file())


class BackupCleanupTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.manager = BackupManager()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _remaining(self, config):
        return sorted(p.name for p in config.project_backups_path.iterdir())

    def test_keeps_newest_n(self) -> None:
        config = _config(self.root, keep=2)
        _make_backups(config, ["d1", "d2", "d3", "d4", "d5"])

        result = self.manager.cleanup_backups(config)

        self.assertEqual(self._remaining(config), ["d4", "d5"])
        self.assertEqual([r.name for r in result.kept], ["d5", "d4"])
        self.assertEqual(sorted(r.name for r in result.removed), ["d1", "d2", "d3"])
        self.assertEqual(result.failed, [])

    def test_no_deletion_when_within_limit(self) -> None:
        config = _config(self.root, keep=3)
        _make_backups(config, ["d1", "d2"])

        result = self.manager.cleanup_backups(config)

        self.assertEqual(self._remaining(config), ["d1", "d2"])
        self.assertEqual(result.removed, [])

    def test_disabled_cleanup_is_noop(self) -> None:
        config = _config(self.root, cleanup=False, keep=1)
        _make_backups(config, ["d1", "d2", "d3"])

        result = self.manager.cleanup_backups(config)

        self.assertEqual(self._remaining(config), ["d1", "d2", "d3"])
        self.assertEqual(result.kept, [])
        self.assertEqual(result.removed, [])

    def test_missing_backup_root_is_noop(self) -> None:
        config = _config(self.root, keep=1)
        result = self.manager.cleanup_backups(config)
        self.assertEqual(result.removed, [])

    def test_deletion_failure_does_not_stop_cleanup(self) -> None:
        config = _config(self.root, keep=1)
        _make_backups(config, ["d1", "d2", "d3"])

        def flaky_rmtree(path, *args, **kwargs):
            if Path(path).name == "d1":
                raise PermissionError("file in use")
            return _real_rmtree(path, *args, **kwargs)

        with mock.patch("site_deployer.backup.manager.shutil.rmtree", side_effect=flaky_rmtree):
            result = self.manager.cleanup_backups(config)

        self.assertEqual([r.name for r in result.failed], ["d1"])
        self.assertEqual([r.name for r in result.removed], ["d2"])
        self.assertEqual(self._remaining(config), ["d1", "d3"])

    def test_new_backup_of_stale_site_survives_cleanup(self) -> None:
        config = _config(self.root, keep=2)
        now = time.time()
        for name, age_days in (("older", 2), ("newer", 1)):
            path = config.project_backups_path / name
            path.mkdir(parents=True)
            (path / "index.html").write_text(name, encoding="utf-8")
            os.utime(path, (now - age_days * 86400, now - age_days * 86400))
        config.website_path.mkdir(parents=True)
        (config.website_path / "index.html").write_text("live", encoding="utf-8")
        month_ago = now - 30 * 86400
        os.utime(config.website_path, (month_ago, month_ago))

        record = self.manager.create_backup(config, "99")
        result = self.manager.cleanup_backups(config)

        assert record is not None
        self.assertGreater(record.created_at, now - 60)
        self.assertEqual([r.name for r in result.kept], [record.name, "newer"])
        self.assertEqual([r.name for r in result.removed], ["older"])
        self.assertTrue(record.path.is_dir())

    def test_list_backups_newest_first(self) -> None:
        config = _config(self.root)
        _make_backups(config, ["a", "b", "c"])
        self.assertEqual([r.name for r in self.manager.list_backups(config)], ["c", "b", "a"])


if __name__ == "__main__":
    unittest.main()
