# fluidhistory/storage/file_lock.py
"""
历史文件的跨进程独占锁。平台相关的加锁函数在导入时选定。
"""

import sys
from pathlib import Path
from typing import IO, Optional, Union

if sys.platform == "win32":
    import msvcrt

    def _acquire(handle: IO) -> None:
        msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)

    def _release(handle: IO) -> None:
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
else:
    import fcntl

    def _acquire(handle: IO) -> None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)

    def _release(handle: IO) -> None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class FileLock:
    """阻塞式独占锁，配合 with 使用；锁文件目录不存在时自动创建"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._handle: Optional[IO] = None

    @property
    def locked(self) -> bool:
        return self._handle is not None

    def acquire(self) -> "FileLock":
        if self.locked:
            raise RuntimeError(f"Lock {self.path} is already held")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+")
        try:
            _acquire(handle)
        except OSError as e:
            handle.close()
            raise RuntimeError(f"Cannot acquire lock {self.path}: {e}") from e
        self._handle = handle
        return self

    def release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            _release(handle)
        finally:
            handle.close()

    def __enter__(self):
        return self.acquire()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
