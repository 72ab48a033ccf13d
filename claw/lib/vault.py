"""
Markdown vault document store.

Notes are addressed by vault-relative paths without extension
("Projects/claw/features/auth/_feature") and stored as `<vault>/<path>.md`.
Structured data lives in a YAML frontmatter block:

    ---
    id: auth
    status: executing
    ---
    # Body text
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

import yaml

logger = logging.getLogger(__name__)

NOTE_SUFFIX = ".md"
FRONTMATTER_DELIMITER = "---"

SESSION_LOG_HEADER = (
    "# Session Log\n"
    "\n"
    "| Date | Action | Details |\n"
    "|------|--------|---------|\n"
)


@dataclass
class Note:
    path: str
    content: str
    frontmatter: dict = field(default_factory=dict)


@dataclass
class SessionLogEntry:
    date: str
    action: str
    details: str


class DocumentStore(Protocol):
    def read_note(self, path: str) -> Optional[Note]: ...

    def write_note(self, path: str, content: str, frontmatter: Optional[dict] = None) -> None: ...

    def append_session_log(self, path: str, entry: SessionLogEntry) -> bool: ...

    def exists(self, path: str) -> bool: ...

    def delete_note(self, path: str) -> bool: ...

    def list_directory(self, path: str) -> tuple[list[str], list[str]]: ...


def split_frontmatter(text: str) -> tuple[dict, str]:
    """Split a note into (frontmatter, body). Malformed frontmatter is treated as body."""
    if not text.startswith(FRONTMATTER_DELIMITER + "\n"):
        return {}, text

    end = text.find("\n" + FRONTMATTER_DELIMITER, len(FRONTMATTER_DELIMITER))
    if end == -1:
        return {}, text

    raw = text[len(FRONTMATTER_DELIMITER) + 1:end]
    body = text[end + len(FRONTMATTER_DELIMITER) + 1:]
    if body.startswith("\n"):
        body = body[1:]

    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        logger.warning(f"Ignoring malformed frontmatter: {e}")
        return {}, text
    if not isinstance(data, dict):
        return {}, text
    return data, body


def join_frontmatter(frontmatter: Optional[dict], body: str) -> str:
    if not frontmatter:
        return body
    dumped = yaml.safe_dump(frontmatter, sort_keys=False, allow_unicode=True)
    return f"{FRONTMATTER_DELIMITER}\n{dumped}{FRONTMATTER_DELIMITER}\n{body}"


def _escape_cell(value: str) -> str:
    return value.replace("|", "\\|").replace("\n", " ").strip()


class Vault:
    """Document store over a directory of markdown notes."""

    def __init__(self, root: Path):
        self.root = Path(root).expanduser()

    def _resolve(self, path: str, suffix: str = NOTE_SUFFIX) -> Path:
        parts = [p for p in path.strip("/").split("/") if p]
        if any(p == ".." for p in parts):
            raise ValueError(f"Note path escapes the vault: {path}")
        resolved = self.root.joinpath(*parts) if parts else self.root
        return resolved.with_name(resolved.name + suffix) if suffix else resolved

    def read_note(self, path: str) -> Optional[Note]:
        file_path = self._resolve(path)
        if not file_path.exists():
            return None
        frontmatter, body = split_frontmatter(file_path.read_text())
        return Note(path=path, content=body, frontmatter=frontmatter)

    def write_note(self, path: str, content: str, frontmatter: Optional[dict] = None) -> None:
        file_path = self._resolve(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(join_frontmatter(frontmatter, content))
        logger.debug(f"Wrote note {path}")

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def delete_note(self, path: str) -> bool:
        file_path = self._resolve(path)
        if not file_path.exists():
            return False
        file_path.unlink()
        return True

    def list_directory(self, path: str) -> tuple[list[str], list[str]]:
        """Return (subdirectories, note names) under `path`, both sorted."""
        dir_path = self._resolve(path, suffix="")
        if not dir_path.is_dir():
            return [], []
        dirs = sorted(p.name for p in dir_path.iterdir() if p.is_dir() and not p.name.startswith("."))
        files = sorted(p.stem for p in dir_path.iterdir() if p.is_file() and p.suffix == NOTE_SUFFIX)
        return dirs, files

    def append_session_log(self, path: str, entry: SessionLogEntry) -> bool:
        """Append one row to the session log table, creating the note if needed.

        Returns False (and logs) on I/O failure instead of raising.
        """
        row = f"| {_escape_cell(entry.date)} | {_escape_cell(entry.action)} | {_escape_cell(entry.details)} |\n"
        try:
            note = self.read_note(path)
            if note is None:
                self.write_note(path, SESSION_LOG_HEADER + row)
                return True
            body = note.content
            if "| Date | Action | Details |" not in body:
                body = body.rstrip("\n") + ("\n\n" if body.strip() else "") + SESSION_LOG_HEADER
            elif not body.endswith("\n"):
                body += "\n"
            self.write_note(path, body + row, note.frontmatter or None)
            return True
        except OSError as e:
            logger.warning(f"Failed to append session log {path}: {e}")
            return False
