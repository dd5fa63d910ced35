"""Core memory adapters: the long-lived markdown files assistants load."""

from __future__ import annotations

import abc
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path

from ..errors import MemoryWriteFailure
from ..locks import lock_for

logger = logging.getLogger(__name__)

DEFAULT_CLAUDE_MD_PATH = Path("~/.claude/CLAUDE.md")
DEFAULT_AGENTS_MD_PATH = Path("~/AGENTS.md")


def _separator(existing: str) -> str:
    if not existing:
        return ""
    trailing = len(existing) - len(existing.rstrip("\n"))
    return "\n" * max(0, 2 - trailing)


class CoreMemoryAdapter(abc.ABC):
    name: str
    remedy_hint: str = ""

    @abc.abstractmethod
    def get_path(self) -> Path: ...

    @abc.abstractmethod
    def read(self) -> str: ...

    @abc.abstractmethod
    def append(self, content: str) -> None: ...

    @abc.abstractmethod
    def lock(self) -> AbstractContextManager[None]: ...

    def is_available(self) -> bool:
        return True


class MarkdownFileAdapter(CoreMemoryAdapter):
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    def get_path(self) -> Path:
        return self._path

    @contextmanager
    def lock(self) -> Iterator[None]:
        with lock_for(self._path).hold():
            yield

    def is_available(self) -> bool:
        # Writable if the nearest existing ancestor accepts new entries.
        candidate = self._path if self._path.exists() else self._path.parent
        while not candidate.exists() and candidate != candidate.parent:
            candidate = candidate.parent
        return os.access(candidate, os.W_OK)

    def read(self) -> str:
        try:
            return self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
        except (OSError, UnicodeDecodeError) as exc:
            raise MemoryWriteFailure(
                f"cannot read {self._path}: {exc}", adapter=self.name, path=str(self._path)
            ) from exc

    def append(self, content: str) -> None:
        try:
            with self.lock():
                self._append_locked(content)
        except OSError as exc:
            raise MemoryWriteFailure(str(exc), adapter=self.name, path=str(self._path)) from exc

    def _append_locked(self, content: str) -> None:
        existing = self.read()
        updated = existing + _separator(existing) + content
        tmp_name: str | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            mode = self._path.stat().st_mode & 0o777 if self._path.exists() else 0o644
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(updated)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, mode)
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as exc:
            logger.warning(
                "memory append failed",
                extra={"adapter": self.name, "path": str(self._path)},
                exc_info=exc,
            )
            raise MemoryWriteFailure(
                f"cannot write {self._path}: {exc}", adapter=self.name, path=str(self._path)
            ) from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass


class ClaudeMdAdapter(MarkdownFileAdapter):
    name = "claude-md"
    remedy_hint = "Make sure ~/.claude is writable."

    def __init__(self, path: str | Path | None = None) -> None:
        super().__init__(path or DEFAULT_CLAUDE_MD_PATH)


class AgentsMdAdapter(MarkdownFileAdapter):
    name = "agents-md"
    remedy_hint = "Make sure your home directory is writable."

    def __init__(self, path: str | Path | None = None) -> None:
        super().__init__(path or DEFAULT_AGENTS_MD_PATH)
