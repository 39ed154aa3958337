"""Tests for backup retention."""

import os
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from tools.server_backup.errors import RetentionError
from tools.server_backup.retention import RetentionManager


class FakeEntry:
    """Directory entry with a controlled change time."""

    def __init__(self, path, ctime, is_file=True):
        self.path = str(path)
        self.name = os.path.basename(self.path)
        self._ctime = ctime
        self._is_file = is_file

    def is_file(self, follow_symlinks=True):
        return self._is_file

    def stat(self, follow_symlinks=True):
        return SimpleNamespace(st_ctime=self._ctime)


def make_folder(tmp_path, names):
    """Create files and return fake entries whose ctime follows list order."""
    entries = []
    for ctime, name in enumerate(names, start=1):
        path = tmp_path / name
        path.write_text(name)
        entries.append(FakeEntry(path, float(ctime)))
    return entries


class TestRetentionManager:
    """Test RetentionManager.prune."""

    def test_keeps_most_recent(self, tmp_path):
        """Test that only the newest files survive."""
        entries = make_folder(tmp_path, ["a.sql", "b.sql", "c.sql", "d.sql"])

        with patch("tools.server_backup.retention.os.scandir", return_value=entries):
            deleted = RetentionManager().prune(tmp_path, 2)

        assert sorted(deleted) == sorted([str(tmp_path / "a.sql"), str(tmp_path / "b.sql")])
        assert len(deleted) == len(set(deleted))
        assert sorted(p.name for p in tmp_path.iterdir()) == ["c.sql", "d.sql"]

    def test_order_uses_change_time_not_name(self, tmp_path):
        """Test that ordering follows ctime."""
        entries = make_folder(tmp_path, ["z.sql", "a.sql"])  # a.sql is newest

        with patch("tools.server_backup.retention.os.scandir", return_value=entries):
            deleted = RetentionManager().prune(tmp_path, 1)

        assert deleted == [str(tmp_path / "z.sql")]

    def test_under_limit_deletes_nothing(self, tmp_path):
        """Test that pruning at or under the limit is a no-op."""
        entries = make_folder(tmp_path, ["a.sql", "b.sql"])

        with patch("tools.server_backup.retention.os.scandir", return_value=entries):
            assert RetentionManager().prune(tmp_path, 2) == []
            assert RetentionManager().prune(tmp_path, 5) == []

    def test_repeated_prune_is_idempotent(self, tmp_path):
        """Test that a second prune with the same keep deletes nothing."""
        for name in ["a.sql", "b.sql", "c.sql"]:
            (tmp_path / name).write_text(name)

        manager = RetentionManager()
        first = manager.prune(tmp_path, 2)
        second = manager.prune(tmp_path, 2)

        assert len(first) == 1
        assert second == []
        assert len(list(tmp_path.iterdir())) == 2

    def test_hidden_and_non_regular_entries_ignored(self, tmp_path):
        """Test that dotfiles and directories are never deleted."""
        entries = make_folder(tmp_path, [".hidden", "old.sql", "new.sql"])
        (tmp_path / "subdir").mkdir()
        entries.insert(0, FakeEntry(tmp_path / "subdir", 0.0, is_file=False))

        with patch("tools.server_backup.retention.os.scandir", return_value=entries):
            deleted = RetentionManager().prune(tmp_path, 1)

        assert deleted == [str(tmp_path / "old.sql")]
        assert (tmp_path / ".hidden").exists()
        assert (tmp_path / "subdir").is_dir()

    def test_protected_file_not_deleted(self, tmp_path):
        """Test that protected paths take a kept slot even when they are oldest."""
        entries = make_folder(tmp_path, ["current.sql", "b.sql", "c.sql"])

        with patch("tools.server_backup.retention.os.scandir", return_value=entries):
            deleted = RetentionManager().prune(
                tmp_path, 1, protected=[tmp_path / "current.sql"]
            )

        assert deleted == [str(tmp_path / "c.sql"), str(tmp_path / "b.sql")]
        assert (tmp_path / "current.sql").exists()

    def test_missing_folder_raises(self, tmp_path):
        """Test that an unreadable folder raises RetentionError."""
        with pytest.raises(RetentionError) as exc_info:
            RetentionManager().prune(tmp_path / "missing", 1)
        assert exc_info.value.deleted == []
        assert len(exc_info.value.failures) == 1

    def test_deletion_failures_are_aggregated(self, tmp_path):
        """Test that every failed deletion is reported and the rest still deleted."""
        entries = make_folder(tmp_path, ["a.sql", "b.sql", "c.sql", "d.sql"])
        real_unlink = os.unlink

        def flaky_unlink(path):
            if os.path.basename(path) in ("a.sql", "b.sql"):
                raise PermissionError("denied")
            real_unlink(path)

        with patch("tools.server_backup.retention.os.scandir", return_value=entries), patch(
            "tools.server_backup.retention.os.unlink", side_effect=flaky_unlink
        ):
            with pytest.raises(RetentionError) as exc_info:
                RetentionManager().prune(tmp_path, 1)

        error = exc_info.value
        assert sorted(os.path.basename(p) for p, _ in error.failures) == ["a.sql", "b.sql"]
        assert error.deleted == [str(tmp_path / "c.sql")]
        assert "denied" in str(error)
