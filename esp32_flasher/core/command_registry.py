"""
Custom Command Registry
=======================

Durable store of user-named serial command shortcuts.  Two backends are
available: a JSON file (default) and an SQLite table.  Both keep records in
insertion order and treat deleting an unknown id as a no-op.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import sqlite3
import tempfile
import threading
import time
from contextlib import closing
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from esp32_flasher.utils.exceptions import CommandValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CustomCommand:
    """A saved serial command."""
    id: str
    name: str
    command: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> CustomCommand:
        return cls(id=str(data['id']), name=str(data['name']), command=str(data['command']))


class CommandStore:
    """Backend interface for :class:`CommandRegistry`."""

    def insert(self, command: CustomCommand) -> None:
        raise NotImplementedError

    def list(self) -> List[CustomCommand]:
        raise NotImplementedError

    def delete(self, command_id: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None


class JsonCommandStore(CommandStore):
    """Commands stored as a JSON list in a single file.

    Every change rewrites the file through a temporary file and
    :func:`os.replace`, so the file on disk is always either the old or
    the new version.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._commands: List[CustomCommand] = self._load()

    def _load(self) -> List[CustomCommand]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            commands = [CustomCommand.from_dict(item) for item in data.get('commands', [])]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"Failed to load custom commands from {self.path}: {e}")
            return []
        logger.info(f"Loaded {len(commands)} custom commands")
        return commands

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            'commands': [cmd.to_dict() for cmd in self._commands],
            'version': "1.0",
        }

        if self.path.exists():
            shutil.copy2(self.path, self.path.with_suffix('.json.bak'))

        fd, tmp_name = tempfile.mkstemp(prefix=self.path.name, suffix='.tmp',
                                        dir=str(self.path.parent))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def insert(self, command: CustomCommand) -> None:
        updated = [c for c in self._commands if c.id != command.id]
        updated.append(command)
        previous, self._commands = self._commands, updated
        try:
            self._save()
        except OSError:
            self._commands = previous
            raise

    def list(self) -> List[CustomCommand]:
        return list(self._commands)

    def delete(self, command_id: str) -> None:
        remaining = [c for c in self._commands if c.id != command_id]
        if len(remaining) == len(self._commands):
            return
        previous, self._commands = self._commands, remaining
        try:
            self._save()
        except OSError:
            self._commands = previous
            raise


class SqliteCommandStore(CommandStore):
    """Commands stored in an SQLite ``custom_commands`` table."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS custom_commands (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            command TEXT NOT NULL
        )
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        if str(path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        with self._conn:
            self._conn.execute(self.SCHEMA)

    def insert(self, command: CustomCommand) -> None:
        with self._conn:
            # Delete first so a replaced record moves to the end, like the JSON store
            self._conn.execute("DELETE FROM custom_commands WHERE id = ?", (command.id,))
            self._conn.execute(
                "INSERT INTO custom_commands (id, name, command) VALUES (?, ?, ?)",
                (command.id, command.name, command.command),
            )

    def list(self) -> List[CustomCommand]:
        with closing(self._conn.execute(
                "SELECT id, name, command FROM custom_commands ORDER BY rowid")) as cursor:
            return [CustomCommand(*row) for row in cursor.fetchall()]

    def delete(self, command_id: str) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM custom_commands WHERE id = ?", (command_id,))

    def close(self) -> None:
        self._conn.close()


def create_store(backend: str, path: Path) -> CommandStore:
    """Return the store implementation named by *backend*."""
    if backend == "sqlite":
        return SqliteCommandStore(path)
    if backend == "json":
        return JsonCommandStore(path)
    raise ValueError(f"Unknown command store backend: {backend!r}")


class CommandRegistry:
    """Thread-safe facade over a :class:`CommandStore`."""

    def __init__(self, store: CommandStore):
        self.store = store
        self._lock = threading.Lock()

    def insert(self, command: CustomCommand) -> None:
        with self._lock:
            self.store.insert(command)
        logger.debug(f"Saved custom command {command.id} ({command.name})")

    def list(self) -> List[CustomCommand]:
        with self._lock:
            return self.store.list()

    def delete(self, command_id: str) -> None:
        with self._lock:
            self.store.delete(command_id)
        logger.debug(f"Deleted custom command {command_id}")

    def get(self, command_id: str) -> Optional[CustomCommand]:
        for command in self.list():
            if command.id == command_id:
                return command
        return None

    def create(self, name: str, command: str) -> CustomCommand:
        """Validate and store a new command with a timestamp id."""
        name = (name or "").strip()
        command = (command or "").strip()
        if not name:
            raise CommandValidationError("Command name cannot be empty")
        if not command:
            raise CommandValidationError("Command text cannot be empty")

        with self._lock:
            existing = {c.id for c in self.store.list()}
            command_id = str(int(time.time() * 1000))
            while command_id in existing:
                command_id = str(int(command_id) + 1)
            record = CustomCommand(id=command_id, name=name, command=command)
            self.store.insert(record)
        logger.info(f"Created custom command '{name}'")
        return record

    def close(self) -> None:
        self.store.close()


__all__ = [
    "CustomCommand",
    "CommandStore",
    "JsonCommandStore",
    "SqliteCommandStore",
    "CommandRegistry",
    "create_store",
]
