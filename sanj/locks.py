from __future__ import annotations

import os
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

try:  # pragma: no cover
    import fcntl  # type: ignore[attr-defined]
except Exception:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

DEFAULT_LOCK_TIMEOUT_S = 30.0

_REGISTRY_LOCK = threading.Lock()
_LOCKS: dict[str, FileLock] = {}


class FileLock:
    """Re-entrant lock for one destination file.

    Threads in this process serialize on an ``RLock``; other processes are
    excluded with ``flock`` on a sidecar ``.<name>.lock`` file, taken once on
    the outermost acquire.
    """

    def __init__(self, target: Path, *, timeout_s: float = DEFAULT_LOCK_TIMEOUT_S) -> None:
        self.target = target
        self.lock_path = target.parent / f".{target.name}.lock"
        self.timeout_s = timeout_s
        self._thread_lock = threading.RLock()
        self._depth = 0
        self._fd: int | None = None

    def _acquire_os_lock(self) -> None:
        if fcntl is None:  # pragma: no cover
            return
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.lock_path), os.O_CREAT | os.O_RDWR, 0o600)
        start = time.monotonic()
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if (time.monotonic() - start) >= self.timeout_s:
                    os.close(fd)
                    raise TimeoutError(f"memory file is busy (lock: {self.lock_path})") from None
                time.sleep(0.05)
        self._fd = fd

    def _release_os_lock(self) -> None:
        fd, self._fd = self._fd, None
        if fd is None or fcntl is None:
            return
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    @contextmanager
    def hold(self) -> Iterator[None]:
        if not self._thread_lock.acquire(timeout=self.timeout_s):
            raise TimeoutError(f"memory file is busy (lock: {self.lock_path})")
        try:
            if self._depth == 0:
                self._acquire_os_lock()
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0:
                    self._release_os_lock()
        finally:
            self._thread_lock.release()


def lock_for(target: Path) -> FileLock:
    key = str(target.expanduser().resolve())
    with _REGISTRY_LOCK:
        lock = _LOCKS.get(key)
        if lock is None:
            lock = FileLock(Path(key))
            _LOCKS[key] = lock
        return lock
