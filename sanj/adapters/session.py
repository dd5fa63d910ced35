"""Session adapters: read coding-assistant transcripts from local storage."""

from __future__ import annotations

import abc
import datetime as dt
import json
import logging
from pathlib import Path

from ..errors import SessionUnreadable
from ..models import SessionRecord
from ..transcript import (
    ParsedConversation,
    build_transcript,
    parse_claude_events,
    parse_opencode_session,
)

logger = logging.getLogger(__name__)

DEFAULT_CLAUDE_PROJECTS_PATH = Path("~/.claude/projects")
DEFAULT_OPENCODE_SESSIONS_PATH = Path("~/.local/share/opencode/storage/session")


class SessionAdapter(abc.ABC):
    name: str
    remedy_hint: str = ""

    @abc.abstractmethod
    def is_available(self) -> bool: ...

    @abc.abstractmethod
    def list_sessions(self, since: dt.datetime | None = None) -> list[str]: ...

    @abc.abstractmethod
    def read_session(self, session_id: str) -> SessionRecord: ...


class FileSessionAdapter(SessionAdapter):
    """Sessions stored as ``<base>/<project>/<session-id><suffix>`` files."""

    suffix: str = ""

    def __init__(self, base_path: str | Path) -> None:
        self.base_path = Path(base_path).expanduser()
        self._available: bool | None = None
        self._paths: dict[str, Path] = {}

    def is_available(self) -> bool:
        if self._available is None:
            try:
                self._available = self.base_path.is_dir()
            except OSError:
                self._available = False
        return self._available

    def _session_files(self) -> list[Path]:
        files: list[Path] = []
        try:
            project_dirs = [
                entry
                for entry in self.base_path.iterdir()
                if entry.is_dir() and not entry.name.startswith(".")
            ]
        except OSError as exc:
            logger.warning(
                "session directory scan failed",
                extra={"adapter": self.name, "path": str(self.base_path)},
                exc_info=exc,
            )
            return files
        for project_dir in project_dirs:
            try:
                files.extend(
                    path
                    for path in project_dir.iterdir()
                    if path.suffix == self.suffix and not path.name.startswith(".")
                )
            except OSError as exc:
                logger.warning(
                    "project directory scan failed",
                    extra={"adapter": self.name, "path": str(project_dir)},
                    exc_info=exc,
                )
        return files

    def list_sessions(self, since: dt.datetime | None = None) -> list[str]:
        if not self.is_available():
            return []
        cutoff = since.timestamp() if since else None
        found: list[tuple[float, str, Path]] = []
        for path in self._session_files():
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            if cutoff is not None and mtime < cutoff:
                continue
            found.append((mtime, path.stem, path))
        found.sort(key=lambda item: item[0], reverse=True)
        self._paths = {session_id: path for _, session_id, path in found}
        return [session_id for _, session_id, _ in found]

    def _resolve(self, session_id: str) -> Path:
        path = self._paths.get(session_id)
        if path is not None:
            return path
        for candidate in self._session_files():
            if candidate.stem == session_id:
                self._paths[session_id] = candidate
                return candidate
        raise SessionUnreadable(
            f"session {session_id} not found", adapter=self.name, session_id=session_id
        )

    @abc.abstractmethod
    def _parse(self, text: str, path: Path) -> ParsedConversation: ...

    def read_session(self, session_id: str) -> SessionRecord:
        path = self._resolve(session_id)
        try:
            text = path.read_text(encoding="utf-8")
            mtime = path.stat().st_mtime
        except (OSError, UnicodeDecodeError) as exc:
            raise SessionUnreadable(
                f"cannot read {path}: {exc}",
                adapter=self.name,
                session_id=session_id,
            ) from exc
        parsed = self._parse(text, path)
        captured_at = parsed.started_at or dt.datetime.fromtimestamp(mtime, dt.UTC)
        return SessionRecord(
            source_adapter_name=self.name,
            session_id=session_id,
            captured_at=captured_at,
            raw_content=build_transcript(parsed.messages),
            project_path=parsed.cwd,
            file_path=str(path),
        )


class ClaudeCodeSessionAdapter(FileSessionAdapter):
    name = "claude-code"
    suffix = ".jsonl"
    remedy_hint = "Run Claude Code at least once so ~/.claude/projects exists."

    def __init__(self, base_path: str | Path | None = None) -> None:
        super().__init__(base_path or DEFAULT_CLAUDE_PROJECTS_PATH)

    def _parse(self, text: str, path: Path) -> ParsedConversation:
        parsed = parse_claude_events(text.splitlines())
        if parsed.events_seen == 0:
            raise SessionUnreadable(
                f"no parseable events in {path}", adapter=self.name, session_id=path.stem
            )
        return parsed


class OpenCodeSessionAdapter(FileSessionAdapter):
    name = "opencode"
    suffix = ".json"
    remedy_hint = (
        "Run OpenCode at least once so ~/.local/share/opencode/storage/session exists."
    )

    def __init__(self, base_path: str | Path | None = None) -> None:
        super().__init__(base_path or DEFAULT_OPENCODE_SESSIONS_PATH)

    def _parse(self, text: str, path: Path) -> ParsedConversation:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SessionUnreadable(
                f"invalid session json in {path}", adapter=self.name, session_id=path.stem
            ) from exc
        if not isinstance(data, dict):
            raise SessionUnreadable(
                f"session json in {path} is not an object",
                adapter=self.name,
                session_id=path.stem,
            )
        return parse_opencode_session(data)
