"""
File Management Utilities

This module manages the per-run scratch directory that holds downloaded and
converted page images, and the exclusive handle on the output document.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Dict, Any
import logging

if os.name == "nt":
    import msvcrt
else:
    import fcntl

from rfbr_loader.core.errors import DestinationLocked


class ScratchStorage:
    """
    Per-run working directory for intermediate raster files.

    Each run gets a freshly created, uniquely named directory. Files are named
    by zero-based page index: ``<index>.png`` for the raw download and
    ``<index>.jpg`` for the converted page.
    """

    def __init__(self, root: Optional[str] = None, prefix: str = "rfbr_"):
        """
        Create the scratch directory.

        Args:
            root: Parent directory; the system temp directory when None
            prefix: Name prefix of the created directory
        """
        self.logger = logging.getLogger(__name__)
        if root:
            os.makedirs(root, exist_ok=True)
        self.path = Path(tempfile.mkdtemp(prefix=prefix, dir=root))
        self.logger.info(f"Scratch directory created at: {self.path}")

    def raw_path(self, page_index: int) -> str:
        return str(self.path / f"{page_index}.png")

    def normalized_path(self, page_index: int) -> str:
        return str(self.path / f"{page_index}.jpg")

    def exists(self) -> bool:
        return self.path.is_dir()

    def cleanup(self) -> None:
        """Remove the scratch directory and everything in it."""
        if self.exists():
            shutil.rmtree(self.path, ignore_errors=True)
            self.logger.info(f"Scratch directory removed: {self.path}")

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the files currently in scratch storage.

        Returns:
            Dictionary with file counts and total size
        """
        stats = {'raw_files': 0, 'normalized_files': 0, 'empty_files': 0, 'total_size_mb': 0.0}
        if not self.exists():
            return stats

        total = 0
        for file_path in self.path.iterdir():
            size = file_path.stat().st_size
            total += size
            if file_path.suffix == '.png':
                stats['raw_files'] += 1
                if size == 0:
                    stats['empty_files'] += 1
            elif file_path.suffix == '.jpg':
                stats['normalized_files'] += 1
        stats['total_size_mb'] = round(total / (1024 * 1024), 2)
        return stats




def _lock_file(fd: int) -> None:
    """Take a non-blocking exclusive lock on an open file; OSError if held."""
    if os.name == "nt":
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
    else:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)


def _unlock_file(fd: int) -> None:
    if os.name == "nt":
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(fd, fcntl.LOCK_UN)


class ExclusiveOutput:
    """
    Exclusive, all-or-nothing handle on the output document.

    The lock is an OS file lock on ``<output>.lock``, so it disappears with
    the process that holds it; a lock file left behind by a killed run does
    not block the next one. Content goes to ``<output>.part`` and only
    replaces the real output on commit(). release() drops the lock and, when
    nothing was committed, removes the partial file.
    """

    def __init__(self, output_path: str):
        self.output_path = os.path.abspath(output_path)
        self.part_path = self.output_path + ".part"
        self.lock_path = self.output_path + ".lock"
        self.committed = False
        self._lock_fd: Optional[int] = None
        self.logger = logging.getLogger(__name__)

    def acquire(self) -> "ExclusiveOutput":
        """
        Lock the destination for this writer.

        Raises:
            DestinationLocked: If a live writer already holds the lock
        """
        os.makedirs(os.path.dirname(self.output_path), exist_ok=True)
        # A holder may unlink the lock file between our open() and flock();
        # retry until the locked file is the one on disk.
        for _ in range(5):
            fd = os.open(self.lock_path, os.O_CREAT | os.O_RDWR, 0o644)
            try:
                _lock_file(fd)
            except OSError as e:
                os.close(fd)
                raise DestinationLocked(self.output_path) from e
            if self._is_current_lock_file(fd):
                break
            os.close(fd)
        else:
            raise DestinationLocked(self.output_path)

        self._lock_fd = fd
        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode('ascii'))
        if os.path.exists(self.part_path):
            os.remove(self.part_path)
            self.logger.info(f"Removed partial output of an earlier run: {self.part_path}")
        self.logger.debug(f"Acquired output lock: {self.lock_path}")
        return self

    def _is_current_lock_file(self, fd: int) -> bool:
        if os.name == "nt":
            return True
        try:
            on_disk = os.stat(self.lock_path)
        except FileNotFoundError:
            return False
        return os.path.samestat(os.fstat(fd), on_disk)

    def commit(self) -> None:
        """
        Move the finished ``.part`` file over the output.

        Raises:
            DestinationLocked: If another program keeps the output open
        """
        try:
            os.replace(self.part_path, self.output_path)
        except PermissionError as e:
            raise DestinationLocked(self.output_path) from e
        self.committed = True

    def release(self) -> None:
        if self._lock_fd is None:
            return
        if not self.committed and os.path.exists(self.part_path):
            os.remove(self.part_path)
            self.logger.info(f"Removed partial output: {self.part_path}")

        fd, self._lock_fd = self._lock_fd, None
        # POSIX: unlink while still locked so a waiter never locks a dead file.
        # Windows cannot delete an open file, so it goes last there.
        if os.name != "nt":
            self._remove_lock_file()
        _unlock_file(fd)
        os.close(fd)
        if os.name == "nt":
            self._remove_lock_file()
        self.logger.debug(f"Released output lock: {self.lock_path}")

    def _remove_lock_file(self) -> None:
        try:
            os.remove(self.lock_path)
        except FileNotFoundError:
            pass
        except PermissionError:
            # Windows: the next writer already has the file open
            self.logger.debug(f"Lock file in use, left in place: {self.lock_path}")

    def __enter__(self) -> "ExclusiveOutput":
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
