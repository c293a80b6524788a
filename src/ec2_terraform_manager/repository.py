"""On-disk store for the main.tf configuration document"""

from __future__ import annotations

import fcntl
import os
import shutil
import tempfile
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from ec2_terraform_manager.console import print_debug
from ec2_terraform_manager.errors import LockTimeoutError, ManagerError

STATE_FILES = ("terraform.tfstate", "terraform.tfstate.backup")


def _timestamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


class ConfigRepository:
    """The configuration document as a read/modify/write store.

    Writes replace the whole file in one ``os.replace`` so a crash leaves
    either the old or the new content. Mutating callers hold :meth:`lock`
    for the whole read-modify-write cycle.
    """

    def __init__(
        self,
        path: os.PathLike | str,
        backup_dir: os.PathLike | str | None = None,
        lock_timeout: float = 10.0,
    ) -> None:
        self.path: Path = Path(path)
        self.backup_dir: Path = Path(backup_dir) if backup_dir is not None else self.path.parent
        self.lock_timeout: float = lock_timeout
        self.lock_path: Path = self.path.with_name(f".{self.path.name}.lock")

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> str:
        """Return the document text, or an empty string when it does not exist"""
        if not self.exists():
            return ""
        try:
            return self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ManagerError(f"Failed to read {self.path}: {e}") from e

    def write(self, text: str) -> None:
        """Atomically replace the document with *text*"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            if self.path.exists():
                shutil.copymode(self.path, tmp_path)
            else:
                os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise ManagerError(f"Failed to write {self.path}: {e}") from e
        finally:
            tmp_path.unlink(missing_ok=True)

    def backup(self) -> Path | None:
        """Copy the document to ``<name>.backup.<timestamp>``; None when there is nothing to back up"""
        if not self.exists():
            return None
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        base = self.backup_dir / f"{self.path.name}.backup.{_timestamp()}"
        target = base
        counter = 1
        while target.exists():
            target = base.with_name(f"{base.name}.{counter}")
            counter += 1
        shutil.copy2(self.path, target)
        print_debug(f"Backed up {self.path} to {target}")
        return target

    def restore(self, backup: os.PathLike | str) -> None:
        """Put the content of *backup* back in place of the document"""
        self.write(Path(backup).read_text(encoding="utf-8"))

    def snapshot_state(self, dest_root: os.PathLike | str | None = None) -> tuple[Path, list[Path]]:
        """Copy the document and terraform state files into ``backup_<timestamp>/``"""
        root = Path(dest_root) if dest_root is not None else self.path.parent
        target = root / f"backup_{_timestamp()}"
        target.mkdir(parents=True, exist_ok=True)
        copied: list[Path] = []
        for source in (self.path, *(self.path.parent / name for name in STATE_FILES)):
            if source.is_file():
                copied.append(Path(shutil.copy2(source, target / source.name)))
        return target, copied

    @contextmanager
    def lock(self) -> Iterator[Path]:
        """Hold an advisory exclusive lock on the document"""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.lock_path, "a+", encoding="utf-8")
        try:
            deadline = time.monotonic() + self.lock_timeout
            while True:
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise LockTimeoutError(
                            f"{self.path} is locked by another operation (lock file {self.lock_path})"
                        ) from None
                    time.sleep(0.05)
            handle.seek(0)
            handle.truncate()
            handle.write(f"{os.getpid()}\n")
            handle.flush()
            try:
                yield self.lock_path
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()
