"""Tests for the configuration repository."""
from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import list_backups
from ec2_terraform_manager.errors import LockTimeoutError, ManagerError
from ec2_terraform_manager.repository import ConfigRepository


def test_read_missing_document_is_empty(tmp_path: Path) -> None:
    repository = ConfigRepository(tmp_path / "main.tf")
    assert not repository.exists()
    assert repository.read() == ""


def test_write_replaces_content_atomically(tmp_path: Path) -> None:
    """Writes leave no temporary files and keep the file mode."""
    path = tmp_path / "main.tf"
    path.write_text("old\n", encoding="utf-8")
    os.chmod(path, 0o600)
    repository = ConfigRepository(path)

    repository.write("new\n")

    assert path.read_text(encoding="utf-8") == "new\n"
    assert (path.stat().st_mode & 0o777) == 0o600
    assert sorted(p.name for p in tmp_path.iterdir()) == ["main.tf"]


def test_write_creates_missing_directories(tmp_path: Path) -> None:
    repository = ConfigRepository(tmp_path / "nested" / "main.tf")
    repository.write("x\n")
    assert repository.read() == "x\n"


def test_write_failure_raises_manager_error(tmp_path: Path) -> None:
    repository = ConfigRepository(tmp_path / "main.tf")
    with patch("ec2_terraform_manager.repository.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(ManagerError, match="disk full"):
            repository.write("x\n")
    assert not repository.exists()
    assert list(tmp_path.iterdir()) == []


def test_backup_without_document_returns_none(tmp_path: Path) -> None:
    assert ConfigRepository(tmp_path / "main.tf").backup() is None


def test_backup_names_and_same_second_collisions(tmp_path: Path) -> None:
    """Backups in the same second get a numeric suffix instead of overwriting."""
    path = tmp_path / "main.tf"
    path.write_text("v1\n", encoding="utf-8")
    repository = ConfigRepository(path, backup_dir=tmp_path / "backups")

    with patch("ec2_terraform_manager.repository._timestamp", return_value="20240101_120000"):
        first = repository.backup()
        path.write_text("v2\n", encoding="utf-8")
        second = repository.backup()

    assert first is not None and second is not None
    assert first.name == "main.tf.backup.20240101_120000"
    assert second.name == "main.tf.backup.20240101_120000.1"
    assert first.read_text(encoding="utf-8") == "v1\n"
    assert second.read_text(encoding="utf-8") == "v2\n"
    assert list_backups(repository) == [first, second]


def test_restore_puts_backup_back(tmp_path: Path) -> None:
    path = tmp_path / "main.tf"
    path.write_text("original\n", encoding="utf-8")
    repository = ConfigRepository(path)
    backup = repository.backup()
    repository.write("broken\n")

    assert backup is not None
    repository.restore(backup)

    assert repository.read() == "original\n"


def test_snapshot_state_copies_document_and_state(tmp_path: Path) -> None:
    path = tmp_path / "main.tf"
    path.write_text("cfg\n", encoding="utf-8")
    (tmp_path / "terraform.tfstate").write_text("{}", encoding="utf-8")
    repository = ConfigRepository(path)

    with patch("ec2_terraform_manager.repository._timestamp", return_value="20240101_120000"):
        target, copied = repository.snapshot_state(tmp_path / "snapshots")

    assert target == tmp_path / "snapshots" / "backup_20240101_120000"
    assert sorted(p.name for p in copied) == ["main.tf", "terraform.tfstate"]
    assert (target / "main.tf").read_text(encoding="utf-8") == "cfg\n"


def test_lock_is_exclusive(tmp_path: Path) -> None:
    """A second holder times out while the first lock is held."""
    repository = ConfigRepository(tmp_path / "main.tf", lock_timeout=1.0)
    contender = ConfigRepository(tmp_path / "main.tf", lock_timeout=0.1)

    with repository.lock() as lock_path:
        assert lock_path == tmp_path / ".main.tf.lock"
        assert lock_path.read_text(encoding="utf-8").strip() == str(os.getpid())
        with pytest.raises(LockTimeoutError):
            with contender.lock():
                pass

    with contender.lock():
        pass


def test_read_rejects_undecodable_document(tmp_path: Path) -> None:
    path = tmp_path / "main.tf"
    path.write_bytes(b"locals {\n  instances = {\xff\xfe}\n}\n")
    with pytest.raises(ManagerError, match="Failed to read"):
        ConfigRepository(path).read()
